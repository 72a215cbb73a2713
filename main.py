from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import asyncio
from contextlib import asynccontextmanager, suppress
import uvicorn
from dotenv import load_dotenv
import logging

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

from mongo.client import direct_mongo_client
from mongo.constants import PORT, RECONCILE_INTERVAL_SECONDS
from mongo.router import router as db_router
from notifications.router import router as telegram_router
from accounting.router import router as accounting_router
from reconcile import reconcile_loop


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the lifespan of the FastAPI application"""
    # Startup
    await direct_mongo_client.connect()

    sweep_task = None
    if RECONCILE_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(reconcile_loop(RECONCILE_INTERVAL_SECONDS))

    yield

    # Shutdown
    if sweep_task:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
    await direct_mongo_client.disconnect()


# Create FastAPI app
app = FastAPI(
    title="Taskflow API",
    description="Task tracking backend: generic MongoDB query API, Telegram notifications and bookkeeping",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(db_router)
app.include_router(telegram_router)
app.include_router(accounting_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "database": "connected" if direct_mongo_client.connected else "disconnected"}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=PORT,
        log_level="info",
        forwarded_allow_ips="*"
        )
