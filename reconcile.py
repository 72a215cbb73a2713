#!/usr/bin/env python3
"""
Consistency sweep for task-derived fields.

Run once from the command line (`python reconcile.py`) or periodically from the
API process when RECONCILE_INTERVAL_SECONDS is set.
"""

import asyncio
import logging

from mongo.client import direct_mongo_client
from mongo.hooks import reconcile_all

logger = logging.getLogger(__name__)


async def run_once():
    db = await direct_mongo_client.database()
    return await reconcile_all(db)


async def reconcile_loop(interval_seconds: float):
    """Sweep forever, sleeping `interval_seconds` between runs, until cancelled."""
    logger.info(f"Reconciliation sweep every {interval_seconds}s")
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_once()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Reconciliation sweep failed: {e}")


async def main():
    try:
        result = await run_once()
        print(f"Synced {result['synced']} tasks, propagated projects for {result['propagated']} tasks")
    finally:
        await direct_mongo_client.disconnect()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())
