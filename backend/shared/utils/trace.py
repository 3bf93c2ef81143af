"""
Operator-facing trace of one reconciliation cycle.

Each line goes to structlog as well, so the trace returned by the force-update
route and the service logs always agree.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from shared.utils.logging import get_logger

logger = get_logger("sync.trace")


class SyncTrace:
    def __init__(self) -> None:
        self._lines: list[str] = []

    def add(self, event: str, message: str, *, warning: bool = False, **fields: Any) -> None:
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S")
        self._lines.append(f"{stamp} - {message}")
        if warning:
            logger.warning(event, detail=message, **fields)
        else:
            logger.info(event, detail=message, **fields)

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)
