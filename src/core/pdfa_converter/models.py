"""Domain models for the PDF/A conversion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class PageRange:
    """Inclusive, 1-indexed span of pages."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1:
            raise ValueError(f"Page numbers start at 1, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"Invalid page range {self.start}-{self.end}")

    @property
    def pages(self) -> int:
        return self.end - self.start + 1

    def validate(self, total_pages: int) -> None:
        if self.end > total_pages:
            raise ValueError(f"Page range {self.spec()} exceeds document length {total_pages}")

    def spec(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True, slots=True)
class FittedRange:
    range: PageRange
    size_bytes: int
    over_ceiling: bool = False


@dataclass(frozen=True, slots=True)
class SourceFile:
    original_name: str
    path: Path
    size_bytes: int

    @property
    def base_name(self) -> str:
        return Path(self.original_name).stem or "document"


@dataclass(slots=True)
class ConversionChunk:
    index: int
    range: PageRange
    extracted_path: Path
    converted_path: Path


@dataclass(slots=True)
class PartDetail:
    name: str
    size_bytes: int
    verified: bool
    conformance: str | None
    over_ceiling: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size_bytes,
            "verified": self.verified,
            "pdfaVersion": self.conformance,
            "overCeiling": self.over_ceiling,
        }


@dataclass(slots=True)
class ConvertedFileResult:
    original_name: str
    output_name: str
    output_size: int
    was_split: bool
    parts: int
    verified: bool
    conformance: str | None
    details: list[PartDetail] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "originalName": self.original_name,
            "outputName": self.output_name,
            "outputSize": self.output_size,
            "wasSplit": self.was_split,
            "verified": self.verified,
            "pdfaVersion": self.conformance,
            "warnings": list(self.warnings),
        }
        if self.was_split:
            payload["parts"] = self.parts
            payload["partDetails"] = [detail.to_payload() for detail in self.details]
        return payload


@dataclass(slots=True)
class BatchResult:
    files: list[ConvertedFileResult]

    @property
    def total_size(self) -> int:
        return sum(item.output_size for item in self.files)

    def to_payload(self) -> dict[str, Any]:
        return {
            "files": [item.to_payload() for item in self.files],
            "totalSize": self.total_size,
        }


@dataclass(frozen=True, slots=True)
class LogEvent:
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": "log", "message": self.message}


@dataclass(frozen=True, slots=True)
class ResultEvent:
    result: BatchResult

    def to_payload(self) -> dict[str, Any]:
        return {"type": "result", "data": self.result.to_payload()}


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


ProgressEvent = Union[LogEvent, ResultEvent, ErrorEvent]


__all__ = [
    "BatchResult",
    "ConversionChunk",
    "ConvertedFileResult",
    "ErrorEvent",
    "FittedRange",
    "LogEvent",
    "PageRange",
    "PartDetail",
    "ProgressEvent",
    "ResultEvent",
    "SourceFile",
]
