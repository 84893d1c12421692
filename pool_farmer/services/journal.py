"""Cycle journal — engine events to Python logging and to storage."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ..errors import StorageError
from ..interfaces.storage import Storage
from ..models import LogLevel

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class CycleJournal:
    """Structured log entries tagged with the current cycle id."""

    def __init__(
        self, storage: Storage, clock: Callable[[], datetime] | None = None
    ) -> None:
        self._storage = storage
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.cycle_id: int | None = None

    def record(
        self,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        logger.log(_PY_LEVELS[level], message)
        try:
            self._storage.add_log(
                self.cycle_id, level, message, details, self._clock()
            )
        except StorageError as e:
            logger.error("Could not persist log entry '%s': %s", message, e)

    def info(self, message: str, **details: Any) -> None:
        self.record(LogLevel.INFO, message, details or None)

    def warn(self, message: str, **details: Any) -> None:
        self.record(LogLevel.WARN, message, details or None)

    def error(self, message: str, **details: Any) -> None:
        self.record(LogLevel.ERROR, message, details or None)
