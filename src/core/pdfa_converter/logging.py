from __future__ import annotations

import csv
import json
import logging
import sys
import time
from dataclasses import asdict, dataclass, field
from io import StringIO
from pathlib import Path
from typing import Any

from .utils import atomic_write


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PACKAGE_LOGGERS = ("core", "api")
SUMMARY_HEADER = ["session_id", "timestamp", "files", "parts", "total_bytes", "status"]

_configured_handler: logging.Handler | None = None


def configure_logging(level: str = "INFO") -> None:
    """Attach one stdout handler to the package loggers; safe to call repeatedly."""

    global _configured_handler
    numeric = logging.getLevelName(level.upper())
    if _configured_handler is None:
        _configured_handler = logging.StreamHandler(stream=sys.stdout)
        _configured_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        for name in PACKAGE_LOGGERS:
            logging.getLogger(name).addHandler(_configured_handler)
    for name in PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(numeric if isinstance(numeric, int) else logging.INFO)


@dataclass(slots=True)
class RunLogEntry:
    session_id: str
    source: str
    status: str
    parts: list[str]
    output_bytes: int
    was_split: bool
    conformance: str | None
    duration_ms: float
    error: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RunLogger:
    def __init__(self, log_file: Path) -> None:
        self._log_file = log_file

    def append(self, entry: RunLogEntry) -> None:
        self._log_file.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._log_file.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


@dataclass(slots=True)
class BatchSummary:
    session_id: str
    files: int = 0
    parts: int = 0
    total_bytes: int = 0
    status: str = "success"
    timestamp: float = field(default_factory=time.time)

    def as_row(self) -> list[str]:
        return [
            self.session_id,
            time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp)),
            str(self.files),
            str(self.parts),
            str(self.total_bytes),
            self.status,
        ]


def write_summary_csv(path: Path, header: list[str], rows: list[list[str]]) -> None:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)
    atomic_write(path, buffer.getvalue())


def append_summary_row(path: Path, summary: BatchSummary) -> None:
    header = SUMMARY_HEADER
    rows: list[list[str]] = []
    if path.exists():
        with path.open("r", encoding="utf-8", newline="") as handle:
            existing = list(csv.reader(handle))
        if existing:
            header = existing[0]
            rows = existing[1:]
    rows.append(summary.as_row())
    write_summary_csv(path, header, rows)


__all__ = [
    "BatchSummary",
    "RunLogEntry",
    "RunLogger",
    "append_summary_row",
    "configure_logging",
    "write_summary_csv",
]
