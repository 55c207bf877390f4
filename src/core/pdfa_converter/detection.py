from __future__ import annotations

import mimetypes
from pathlib import Path


PDF_MIME = "application/pdf"
PDF_MAGIC = b"%PDF"
# Producers may prepend junk before the header; readers tolerate it within the first KiB.
HEADER_WINDOW = 1024


class DetectionError(RuntimeError):
    """Raised when an upload is not a PDF document."""


def accepts_upload(filename: str | None, content_type: str | None) -> bool:
    if content_type == PDF_MIME:
        return True
    if filename and filename.lower().endswith(".pdf"):
        return True
    return False


def sniff_mime(path: Path) -> str:
    with path.open("rb") as handle:
        header = handle.read(HEADER_WINDOW)
    if PDF_MAGIC in header:
        return PDF_MIME
    mime, _ = mimetypes.guess_type(str(path))
    if mime == PDF_MIME:
        return "application/octet-stream"
    return mime or "application/octet-stream"


def ensure_pdf(path: Path, original_name: str | None = None) -> None:
    label = original_name or path.name
    if not path.exists():
        raise DetectionError(f"File not found: {label}")
    if path.stat().st_size == 0:
        raise DetectionError(f"File is empty: {label}")
    mime = sniff_mime(path)
    if mime != PDF_MIME:
        raise DetectionError(f"Only PDF files are accepted: {label} looks like {mime}")


__all__ = ["DetectionError", "PDF_MIME", "accepts_upload", "ensure_pdf", "sniff_mime"]
