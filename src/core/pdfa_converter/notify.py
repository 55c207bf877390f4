from __future__ import annotations

import logging
import re
from typing import Protocol

from .models import BatchResult
from .utils import format_mb


logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254


def is_valid_email(address: str) -> bool:
    return len(address) <= MAX_EMAIL_LENGTH and EMAIL_RE.match(address) is not None


class Notifier(Protocol):
    async def notify(self, recipient: str, batch: BatchResult, session_id: str) -> None:  # pragma: no cover - interface
        ...


class LoggingNotifier:
    """Record completion notices in the service log instead of sending mail."""

    async def notify(self, recipient: str, batch: BatchResult, session_id: str) -> None:
        names = ", ".join(item.original_name for item in batch.files)
        logger.info(
            "Conversion complete for %s: %d file(s), %s total [%s] session=%s",
            recipient,
            len(batch.files),
            format_mb(batch.total_size),
            names,
            session_id,
        )


__all__ = ["LoggingNotifier", "Notifier", "is_valid_email"]
