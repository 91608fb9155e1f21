"""Expiry sweep for abandoned and stale sessions."""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from smart_email.config import settings
from smart_email.models import utcnow

from .session_store import SessionRepository

logger = logging.getLogger(__name__)


class SessionCleanupService:
    """Abandons and purges sessions whose expiry has passed."""

    def __init__(self, store: SessionRepository):
        self.store = store

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Run one sweep; returns the number of sessions purged."""
        swept = self.store.sweep_expired(now or utcnow())
        if swept:
            logger.info(f"Swept {swept} expired session(s)")
        return swept

    def get_cleanup_stats(self, now: Optional[datetime] = None) -> dict[str, int]:
        return self.store.count_by_status(now or utcnow())

    async def run_forever(self, interval_seconds: Optional[float] = None):
        """Sweep on a fixed interval until cancelled. A failed sweep is logged and retried next tick."""
        interval = interval_seconds or settings.cleanup_interval_minutes * 60
        logger.info(f"Session cleanup scheduled every {interval:.0f}s")
        while True:
            try:
                self.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")
            await asyncio.sleep(interval)
