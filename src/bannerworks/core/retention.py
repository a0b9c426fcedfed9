"""Periodic deletion of generated images the user never saved.

Generated images are ephemeral until the user adds them to their library.
The sweeper deletes every unsaved record created more than
``retention_hours`` ago (23 by default).  Each deletion is independent: a
failure is logged and counted, and the sweep moves on.  Running the sweeper
again with nothing eligible is a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from bannerworks.core.store import ImageStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepResult:
    """Outcome of one sweep."""

    deleted: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


class RetentionSweeper:
    """Delete unsaved generated images older than the retention window."""

    def __init__(
        self,
        store: ImageStore,
        *,
        retention_hours: int = 23,
        interval_seconds: float = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self.retention = timedelta(hours=retention_hours)
        self.interval_seconds = interval_seconds
        self._clock = clock

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """Delete every eligible record once.

        Args:
            now: Reference time; defaults to the sweeper's clock

        Returns:
            Ids deleted and per-id error messages
        """
        now = now or self._clock()
        threshold = now - self.retention
        result = SweepResult()

        stale = self._store.find_stale_unsaved_images(threshold)
        for record in stale:
            try:
                # A record saved after the query ran must survive
                if self._store.delete_image_record(record.id, unsaved_only=True):
                    result.deleted.append(record.id)
            except Exception as e:
                logger.error(f"Failed to delete generated image {record.id}: {e}")
                result.errors[record.id] = str(e)

        if stale:
            logger.info(
                f"Retention sweep removed {len(result.deleted)} of {len(stale)} stale images "
                f"(older than {threshold.isoformat()})"
            )
        else:
            logger.debug("Retention sweep found nothing to delete")
        return result

    async def run_forever(self) -> None:
        """Sweep on a fixed interval until cancelled."""
        logger.info(f"Retention sweeper started (every {self.interval_seconds}s)")
        while True:
            try:
                await asyncio.to_thread(self.sweep)
            except Exception:
                logger.exception("Retention sweep failed")
            await asyncio.sleep(self.interval_seconds)
