"""
pollvault/tasks/status_reconciler.py
Periodic date-driven status sweep (LIVE -> CLOSED -> FINALIZED).
"""

import logging
import asyncio
from typing import List, Optional

from pollvault.database import build_engine, build_sessionmaker
from pollvault.services.lifecycle_service import LifecycleService

logger = logging.getLogger(__name__)


async def run_reconcile_once(session_factory, hackathon_id: Optional[int] = None) -> List[dict]:
    """Run a single sweep in its own transaction. Failures roll back and propagate."""
    async with session_factory() as db:
        try:
            results = await LifecycleService.reconcile_statuses(db, hackathon_id=hackathon_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    updated = [r.to_dict() for r in results]
    if updated:
        logger.info(f"Reconcile completed: {len(updated)} hackathon(s) updated")
    return updated


async def reconcile_with_url(database_url: str, hackathon_id: Optional[int] = None) -> List[dict]:
    engine = build_engine(database_url)
    try:
        return await run_reconcile_once(build_sessionmaker(engine), hackathon_id)
    finally:
        await engine.dispose()


async def reconcile_loop(session_factory, interval_seconds: int = 60):
    """
    Background reconcile loop.
    Runs every interval_seconds; a failed sweep is logged and the next one
    starts from freshly read state.
    """
    logger.info(f"Starting status reconcile loop with interval {interval_seconds}s")

    while True:
        try:
            await run_reconcile_once(session_factory)
        except Exception as e:
            logger.error(f"Reconcile loop error: {str(e)}")

        await asyncio.sleep(interval_seconds)


def start_reconcile_task(session_factory, interval_seconds: int = 60) -> asyncio.Task:
    """Start the reconcile loop as a background task."""
    return asyncio.create_task(reconcile_loop(session_factory, interval_seconds))


if __name__ == "__main__":
    import os
    from dotenv import load_dotenv

    load_dotenv()

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./pollvault.db")

    logging.basicConfig(level=logging.INFO)

    asyncio.run(reconcile_with_url(DATABASE_URL))
