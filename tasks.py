import asyncio
import logging

from celery_app import celery, settings
from services import open_services

logger = logging.getLogger(__name__)


async def run_sync_all(orchestrator, users, delay: float = 2.0, sleep=asyncio.sleep) -> dict:
    """Sync every managed user in turn. A failed user is recorded, then the run waits `delay` and moves on."""
    managed = await users.list()
    summary = {"total": len(managed), "completed": 0, "partial": 0, "failed": []}

    for user in managed:
        email = user["email"]
        try:
            result = await orchestrator.sync_user(email)
        except Exception as e:
            logger.error(f"Sync of {email} failed, continuing: {e}")
            summary["failed"].append({"email": email, "error": str(e)})
            await sleep(delay)
            continue
        summary["completed"] += 1
        if result.partial:
            summary["partial"] += 1

    logger.info(
        f"Completed syncing {summary['completed']} out of {summary['total']} users"
    )
    return summary


@celery.task(bind=True)
def sync_all_users(self):
    """Push the merged addon collection to every managed user."""

    async def run():
        async with open_services(settings) as services:
            return await run_sync_all(
                services.orchestrator,
                services.users,
                delay=settings.sync_all_delay,
            )

    return asyncio.run(run())
