"""In-memory stand-ins for Ghostscript and qpdf.

A fake document is a file that starts with a ``%PDF`` header listing its page
sizes; it is padded so its byte length equals the sum of those sizes. That
keeps size measurements meaningful without any real PDF tooling.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence

from core.pdfa_converter.engine import EngineError
from core.pdfa_converter.models import PageRange

PAGE = 200 * 1024
MB = 1024 * 1024
XMP_MARKER = b'<rdf:Description pdfaid:part="2" pdfaid:conformance="B"/>'


@dataclass(slots=True)
class FakeDocument:
    sizes: list[int]
    broken: bool = False
    marked: bool = False


def write_document(path: Path, sizes: Sequence[int], *, broken: bool = False, marked: bool = False) -> Path:
    header = b"%PDF-1.7\n%pages " + ",".join(str(size) for size in sizes).encode("ascii") + b"\n"
    if broken:
        header += b"%broken\n"
    if marked:
        header += XMP_MARKER + b"\n"
    padding = max(0, sum(sizes) - len(header))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(header + b"0" * padding)
    return path


def read_document(path: Path) -> FakeDocument:
    with path.open("rb") as handle:
        head = handle.read(64 * 1024)
    sizes: list[int] | None = None
    broken = marked = False
    for line in head.split(b"\n")[:4]:
        if line.startswith(b"%pages "):
            sizes = [int(value) for value in line[len(b"%pages ") :].split(b",")]
        elif line == b"%broken":
            broken = True
        elif line == XMP_MARKER:
            marked = True
    if not sizes:
        raise EngineError("count", f"{path.name} is not a document", path=path)
    return FakeDocument(sizes=sizes, broken=broken, marked=marked)


class FakeEngine:
    """Engine double. Conversion multiplies every page by ``inflation(page_count)``.

    Extraction and merging drop the PDF/A marker, mirroring how qpdf builds a
    fresh document; only ``convert`` writes it.
    """

    def __init__(
        self,
        *,
        inflation: Callable[[int], float] | None = None,
        convert_delay: Callable[[list[int]], float] | None = None,
        fail_convert: Callable[[list[int]], bool] | None = None,
    ) -> None:
        self.inflation = inflation or (lambda _pages: 1.0)
        self.convert_delay = convert_delay
        self.fail_convert = fail_convert
        self.calls: list[tuple[str, str]] = []
        self.active_converts = 0
        self.max_active_converts = 0

    async def count_pages(self, path: Path) -> int:
        self.calls.append(("count", path.name))
        return len(read_document(path).sizes)

    async def extract_pages(self, path: Path, page_range: PageRange, output: Path) -> None:
        self.calls.append(("extract", page_range.spec()))
        document = read_document(path)
        page_range.validate(len(document.sizes))
        write_document(output, document.sizes[page_range.start - 1 : page_range.end], broken=document.broken)

    async def merge(self, paths: Sequence[Path], output: Path) -> None:
        self.calls.append(("merge", ",".join(path.name for path in paths)))
        sizes: list[int] = []
        broken = False
        for path in paths:
            document = read_document(path)
            sizes.extend(document.sizes)
            broken = broken or document.broken
        write_document(output, sizes, broken=broken)

    async def convert(self, source: Path, output: Path) -> None:
        self.calls.append(("convert", source.name))
        document = read_document(source)
        self.active_converts += 1
        self.max_active_converts = max(self.max_active_converts, self.active_converts)
        try:
            await asyncio.sleep(self.convert_delay(document.sizes) if self.convert_delay else 0)
            if document.broken or (self.fail_convert and self.fail_convert(document.sizes)):
                raise EngineError("convert", f"cannot convert {source.name}", path=source)
            factor = self.inflation(len(document.sizes))
            write_document(output, [int(size * factor) for size in document.sizes], marked=True)
        finally:
            self.active_converts -= 1

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


class RecordingSink:
    def __init__(self) -> None:
        self.events: list = []

    def publish(self, event) -> None:
        self.events.append(event)

    def messages(self) -> list[str]:
        return [getattr(event, "message", "") for event in self.events]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, int]] = []

    async def notify(self, recipient, batch, session_id) -> None:
        self.sent.append((recipient, session_id, len(batch.files)))
