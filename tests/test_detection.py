from __future__ import annotations

from pathlib import Path

import pytest

from core.pdfa_converter.detection import DetectionError, accepts_upload, ensure_pdf, sniff_mime


def test_accepts_upload_by_type_or_extension() -> None:
    assert accepts_upload("scan.PDF", None)
    assert accepts_upload("blob", "application/pdf")
    assert not accepts_upload("notes.txt", "text/plain")
    assert not accepts_upload(None, None)


def test_sniff_mime_tolerates_leading_bytes(tmp_path: Path) -> None:
    document = tmp_path / "doc.bin"
    document.write_bytes(b"\x00" * 100 + b"%PDF-1.7\n")
    assert sniff_mime(document) == "application/pdf"


def test_ensure_pdf_rejects_bad_inputs(tmp_path: Path) -> None:
    with pytest.raises(DetectionError, match="not found"):
        ensure_pdf(tmp_path / "missing.pdf")

    empty = tmp_path / "empty.pdf"
    empty.write_bytes(b"")
    with pytest.raises(DetectionError, match="empty"):
        ensure_pdf(empty)

    fake = tmp_path / "fake.pdf"
    fake.write_text("just text", encoding="utf-8")
    with pytest.raises(DetectionError, match="fake.pdf"):
        ensure_pdf(fake)


def test_ensure_pdf_accepts_real_header(tmp_path: Path) -> None:
    document = tmp_path / "ok.pdf"
    document.write_bytes(b"%PDF-1.4\n%%EOF\n")
    ensure_pdf(document, "ok.pdf")
