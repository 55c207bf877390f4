from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Iterable

from .utils import newest_mtime, remove_path


logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Delete entries under the given roots that nobody has touched for a while.

    Age is the newest mtime anywhere in the entry, so a session directory that
    a running conversion keeps writing into is never old enough to be removed.
    """

    def __init__(
        self,
        roots: Iterable[Path],
        *,
        retention_seconds: float,
        interval_seconds: float,
        exclude: Iterable[str] = (),
    ) -> None:
        self._roots = tuple(roots)
        self._exclude = frozenset(exclude)
        self._retention = retention_seconds
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep_once(self, now: float | None = None) -> list[Path]:
        cutoff = (now if now is not None else time.time()) - self._retention
        removed: list[Path] = []
        for root in self._roots:
            if not root.is_dir():
                continue
            for entry in sorted(root.iterdir()):
                if entry.name in self._exclude or entry.name.startswith("_"):
                    continue
                try:
                    age_marker = newest_mtime(entry)
                except FileNotFoundError:
                    continue
                if age_marker >= cutoff:
                    continue
                remove_path(entry)
                removed.append(entry)
                logger.info("Removed expired artifact %s", entry)
        return removed

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="retention-sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception:
                logger.exception("Retention sweep failed")
            await asyncio.sleep(self._interval)


__all__ = ["RetentionSweeper"]
