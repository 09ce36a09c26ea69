"""
Periodic sweep of expired auth records.

Each run deletes revocation records whose token has expired and OTP / reset
challenges past their deadline.  Reads never rely on this: every flow checks
expiry against the clock itself, so the sweep only bounds table growth.
"""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shared.database import AsyncSessionFactory

from identity.auth.revocation import purge_expired_revocations
from identity.auth.service import purge_expired_challenges
from identity.auth.utils import utcnow

logger = logging.getLogger(__name__)


async def run_sweep(session_factory: AsyncSessionFactory) -> int:
    """Run one sweep in a fresh session.  Returns rows deleted; failures are logged."""
    now = utcnow()
    try:
        async with session_factory() as session:
            revocations = await purge_expired_revocations(session, now)
            challenges = await purge_expired_challenges(session, now)
            await session.commit()
    except Exception:
        logger.exception("Housekeeping sweep failed")
        return 0
    if revocations or challenges:
        logger.info(
            "Housekeeping removed %d revocation record(s) and %d challenge(s)",
            revocations,
            challenges,
        )
    return revocations + challenges


class HousekeepingScheduler:
    """Owns the AsyncIOScheduler; started and stopped by the app lifespan."""

    def __init__(self, session_factory: AsyncSessionFactory, interval_minutes: int) -> None:
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        if self.running:
            logger.warning("Housekeeping scheduler is already started")
            return
        self.scheduler.add_job(
            run_sweep,
            IntervalTrigger(minutes=self.interval_minutes),
            args=[self.session_factory],
            id="auth_housekeeping",
            name="Expired revocation and OTP challenge sweep",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info("Housekeeping scheduler started (every %d min)", self.interval_minutes)

    def stop(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Housekeeping scheduler stopped")
