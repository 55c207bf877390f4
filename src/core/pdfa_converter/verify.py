from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)

FAMILY = "PDF/A"
_PART_RE = re.compile(
    rb"pdfaid:part\s*(?:=\s*[\"']\s*(\d+)|>\s*(\d+)\s*<)",
    re.IGNORECASE,
)
_LEVEL_RE = re.compile(
    rb"pdfaid:conformance\s*(?:=\s*[\"']\s*([a-z])|>\s*([a-z])\s*<)",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class Conformance:
    compliant: bool
    label: str | None = None


def _first_group(match: re.Match[bytes] | None) -> str | None:
    if match is None:
        return None
    value = match.group(1) or match.group(2)
    return value.decode("ascii") if value else None


def verify_conformance(path: Path) -> Conformance:
    """Report whether ``path`` declares PDF/A conformance in its XMP metadata."""

    try:
        data = path.read_bytes()
    except OSError as exc:
        logger.warning("Cannot read %s for verification: %s", path, exc)
        return Conformance(False)

    part = _first_group(_PART_RE.search(data))
    if part is None:
        return Conformance(False)
    level = _first_group(_LEVEL_RE.search(data))
    return Conformance(True, f"{FAMILY}-{part}{(level or 'b').lower()}")


__all__ = ["Conformance", "FAMILY", "verify_conformance"]
