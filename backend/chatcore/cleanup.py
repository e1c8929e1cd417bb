"""Retention sweep for soft-deleted users.

A soft-deleted account can be restored by an admin until the retention
window (``retention.retention_days``, 7 by default) has passed; after that
the sweep removes the record for good. The sweep does not cascade to
messages or conversation memberships.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional

from .config import RetentionSettings, get_config
from .errors import StorageError
from .store import ChatStore, utcnow

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Background task purging users soft-deleted longer than the retention window."""

    def __init__(self, store: ChatStore, settings: Optional[RetentionSettings] = None) -> None:
        self._store = store
        self._settings = settings or get_config().retention
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start background sweep task."""
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Retention sweep task started (retention=%s days, interval=%ss)",
            self._settings.retention_days,
            self._settings.sweep_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.sweep_interval_seconds)
            try:
                await self.sweep_once()
            except StorageError:
                logger.error("Retention sweep failed; retrying next interval")

    async def sweep_once(self) -> int:
        """Hard-delete users soft-deleted more than ``retention_days`` ago.

        Returns:
            Number of users removed.
        """
        cutoff = utcnow() - timedelta(days=self._settings.retention_days)
        removed = await self._store.purge_deleted_users(cutoff)
        if removed:
            logger.info("Retention sweep permanently deleted %d user(s)", removed)
        return removed
