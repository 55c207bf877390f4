from __future__ import annotations

from pathlib import Path

from core.pdfa_converter.verify import verify_conformance
from fakes import PAGE, write_document


def test_marked_document_is_compliant(tmp_path: Path) -> None:
    document = write_document(tmp_path / "doc.pdf", [PAGE], marked=True)
    result = verify_conformance(document)
    assert result.compliant
    assert result.label == "PDF/A-2b"


def test_element_form_metadata(tmp_path: Path) -> None:
    document = tmp_path / "doc.pdf"
    document.write_bytes(
        b"%PDF-1.7\n<x:xmpmeta><pdfaid:part>3</pdfaid:part>"
        b"<pdfaid:conformance>A</pdfaid:conformance></x:xmpmeta>"
    )
    assert verify_conformance(document).label == "PDF/A-3a"


def test_missing_level_defaults_to_basic(tmp_path: Path) -> None:
    document = tmp_path / "doc.pdf"
    document.write_bytes(b"%PDF-1.4\n<rdf:Description pdfaid:part='1'/>")
    assert verify_conformance(document).label == "PDF/A-1b"


def test_unmarked_document_is_not_compliant(tmp_path: Path) -> None:
    document = write_document(tmp_path / "doc.pdf", [PAGE])
    result = verify_conformance(document)
    assert not result.compliant
    assert result.label is None


def test_unreadable_file_is_not_compliant(tmp_path: Path) -> None:
    assert not verify_conformance(tmp_path / "missing.pdf").compliant
