from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from .engine import DocumentEngine
from .models import ConversionChunk, PageRange
from .utils import scoped_workdir


logger = logging.getLogger(__name__)

ChunkProgress = Callable[[int, int], None]


def plan_chunks(total_pages: int, workers: int) -> list[PageRange]:
    """Divide ``total_pages`` into ``min(workers, total_pages)`` contiguous spans.

    Spans differ by at most one page; the first ``total_pages % count`` get the extra page.
    """

    if total_pages <= 0:
        raise ValueError("total_pages must be positive")
    count = max(1, min(workers, total_pages))
    base, extra = divmod(total_pages, count)
    ranges: list[PageRange] = []
    start = 1
    for index in range(count):
        end = start + base - (0 if index < extra else 1)
        ranges.append(PageRange(start, end))
        start = end + 1
    return ranges


class ParallelConverter:
    """Convert large documents as concurrently converted page chunks.

    Chunks are merged in page order and the merged file is converted once more,
    because a plain merge of separately converted parts does not keep the
    archival profile intact (document identifiers and metadata collide).
    """

    def __init__(self, engine: DocumentEngine, *, workers: int, min_pages: int, work_dir: Path) -> None:
        self._engine = engine
        self._workers = max(1, workers)
        self._min_pages = max(1, min_pages)
        self._work_dir = work_dir

    @property
    def workers(self) -> int:
        return self._workers

    async def convert_document(
        self,
        source: Path,
        output: Path,
        on_progress: ChunkProgress | None = None,
        *,
        force_sequential: bool = False,
    ) -> int:
        """Convert ``source`` into ``output`` and return the number of chunks used."""

        callback = on_progress or (lambda _done, _total: None)
        output.parent.mkdir(parents=True, exist_ok=True)
        if force_sequential or self._workers <= 1:
            await self._engine.convert(source, output)
            callback(1, 1)
            return 1

        total = await self._engine.count_pages(source)
        if total < self._min_pages:
            await self._engine.convert(source, output)
            callback(1, 1)
            return 1

        ranges = plan_chunks(total, self._workers)
        logger.info("Converting %s (%d pages) in %d chunks", source.name, total, len(ranges))
        with scoped_workdir(self._work_dir, prefix="chunks-") as scratch:
            chunks = [
                ConversionChunk(
                    index=index,
                    range=page_range,
                    extracted_path=scratch / f"chunk-{index:03d}-raw.pdf",
                    converted_path=scratch / f"chunk-{index:03d}-pdfa.pdf",
                )
                for index, page_range in enumerate(ranges)
            ]
            limiter = asyncio.Semaphore(self._workers)

            await self._run_all(
                self._bounded(limiter, self._engine.extract_pages(source, chunk.range, chunk.extracted_path))
                for chunk in chunks
            )

            done = 0

            async def convert_chunk(chunk: ConversionChunk) -> None:
                nonlocal done
                async with limiter:
                    await self._engine.convert(chunk.extracted_path, chunk.converted_path)
                chunk.extracted_path.unlink(missing_ok=True)
                done += 1
                callback(done, len(chunks))

            await self._run_all(convert_chunk(chunk) for chunk in chunks)

            merged = scratch / "merged.pdf"
            ordered = sorted(chunks, key=lambda item: item.range.start)
            await self._engine.merge([chunk.converted_path for chunk in ordered], merged)
            for chunk in ordered:
                chunk.converted_path.unlink(missing_ok=True)
            await self._engine.convert(merged, output)
        return len(chunks)

    @staticmethod
    async def _bounded(limiter: asyncio.Semaphore, operation: Awaitable[None]) -> None:
        async with limiter:
            await operation

    @staticmethod
    async def _run_all(operations: Iterable[Awaitable[None]]) -> None:
        # every operation must settle before the scratch directory can be removed
        results = await asyncio.gather(*operations, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result


__all__ = ["ChunkProgress", "ParallelConverter", "plan_chunks"]
