"""
Background sweep that expires unanswered instant consultation requests.

Runs inside the API process (started from the app lifespan) or standalone:

    python -m app.workers.expiry_sweeper
"""
import asyncio

from app.core.config import settings
from app.core.logger import logger
from app.core.utils import Clock, utcnow
from app.db.session import async_session, init_db
from app.services.deadline_service import DeadlineService
from app.services.request_store import RequestStore

log = logger.getChild("sweeper")


async def sweep_once(session_factory=async_session, clock: Clock = utcnow, batch_size: int = settings.SWEEP_BATCH_SIZE) -> int:
    async with session_factory() as session:
        deadlines = DeadlineService(RequestStore(session), clock)
        return await deadlines.sweep(batch_size)


async def run_expiry_sweeper(
    interval: float = settings.SWEEP_INTERVAL_SECONDS,
    session_factory=async_session,
    clock: Clock = utcnow,
):
    log.info(f"Starting expiry sweeper (interval={interval}s)")

    while True:
        try:
            expired = await sweep_once(session_factory, clock)
            if expired:
                log.info(f"Expired {expired} overdue consultation requests")
        except Exception:
            # Every pass is idempotent; the next one picks up where this failed
            log.exception("Expiry sweep failed")

        await asyncio.sleep(interval)


async def main():
    await init_db()
    await run_expiry_sweeper()


if __name__ == "__main__":
    asyncio.run(main())
