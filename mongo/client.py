#!/usr/bin/env python3
"""Direct MongoDB client using Motor (async PyMongo)"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import asyncio
import logging

from mongo.constants import DATABASE_NAME, MONGODB_CONNECTION_STRING

# Configure logging
logger = logging.getLogger(__name__)


class DirectMongoClient:
    """Direct MongoDB client using Motor with a persistent connection pool"""

    def __init__(self, connection_string: str = MONGODB_CONNECTION_STRING, database_name: str = DATABASE_NAME):
        self.client: AsyncIOMotorClient | None = None
        self.connected = False
        self.connection_string = connection_string
        self.database_name = database_name
        self._connect_lock = asyncio.Lock()

    async def connect(self):
        """Initialize MongoDB connection with persistent connection pool"""
        try:
            async with self._connect_lock:
                if self.connected and self.client:
                    return

                self.client = AsyncIOMotorClient(
                    self.connection_string,
                    maxPoolSize=10,
                    serverSelectionTimeoutMS=5000,  # Faster server selection
                    connectTimeoutMS=10000,  # Connection timeout
                    socketTimeoutMS=20000,   # Socket timeout
                )

                # Test connection
                await self.client.admin.command('ping')

                self.connected = True
                logger.info("Connected to MongoDB database '%s'", self.database_name)

        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
        self.connected = False
        self.client = None

    async def database(self) -> AsyncIOMotorDatabase:
        """Return the application database, connecting lazily on first use"""
        if not self.client:
            await self.connect()
        return self.client[self.database_name]


# Global instance shared by the API, hooks and scripts
direct_mongo_client = DirectMongoClient()


async def get_database() -> AsyncIOMotorDatabase:
    return await direct_mongo_client.database()
