"""Split a document into the fewest contiguous page ranges that fit a byte ceiling.

Every probe is an external qpdf run, so the search first tries the whole
remainder and only then binary-searches the end page, giving O(log P) probes
per emitted range.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .engine import DocumentEngine, EngineError
from .models import FittedRange, PageRange
from .utils import remove_path, scoped_workdir


logger = logging.getLogger(__name__)


class SizeFittingPartitioner:
    def __init__(self, engine: DocumentEngine, work_dir: Path) -> None:
        self._engine = engine
        self._work_dir = work_dir
        self.probe_count = 0

    async def partition(self, document: Path, ceiling_bytes: int) -> list[FittedRange]:
        if ceiling_bytes <= 0:
            raise ValueError("ceiling_bytes must be positive")
        self.probe_count = 0
        total = await self._engine.count_pages(document)
        if total <= 0:
            raise EngineError("count", f"{document.name} has no pages", path=document)

        with scoped_workdir(self._work_dir, prefix="probe-") as scratch:
            if total == 1:
                size = await self._probe(document, PageRange(1, 1), total, scratch)
                return [FittedRange(PageRange(1, 1), size, over_ceiling=size > ceiling_bytes)]

            ranges: list[FittedRange] = []
            current = 1
            while current <= total:
                fitted = await self._fit_from(document, current, total, ceiling_bytes, scratch)
                if fitted.over_ceiling:
                    logger.warning(
                        "Page %d of %s alone is %d bytes, above the %d byte ceiling",
                        current,
                        document.name,
                        fitted.size_bytes,
                        ceiling_bytes,
                    )
                ranges.append(fitted)
                current = fitted.range.end + 1

        logger.info(
            "Partitioned %s (%d pages) into %d ranges with %d probes",
            document.name,
            total,
            len(ranges),
            self.probe_count,
        )
        return ranges

    async def _fit_from(
        self,
        document: Path,
        current: int,
        total: int,
        ceiling_bytes: int,
        scratch: Path,
    ) -> FittedRange:
        remainder = PageRange(current, total)
        size = await self._probe(document, remainder, total, scratch)
        if size <= ceiling_bytes:
            return FittedRange(remainder, size)

        best_end: int | None = None
        best_size = 0
        low, high = current, total - 1
        while low <= high:
            mid = (low + high) // 2
            candidate = PageRange(current, mid)
            size = await self._probe(document, candidate, total, scratch)
            if size <= ceiling_bytes:
                best_end, best_size = mid, size
                low = mid + 1
            else:
                high = mid - 1

        if best_end is None:
            # the search narrows down to [current, current] last, so size is that page's
            return FittedRange(PageRange(current, current), size, over_ceiling=True)
        return FittedRange(PageRange(current, best_end), best_size)

    async def _probe(self, document: Path, page_range: PageRange, total: int, scratch: Path) -> int:
        page_range.validate(total)
        self.probe_count += 1
        target = scratch / f"probe-{page_range.start}-{page_range.end}.pdf"
        try:
            await self._engine.extract_pages(document, page_range, target)
            return target.stat().st_size
        finally:
            remove_path(target)


__all__ = ["SizeFittingPartitioner"]
