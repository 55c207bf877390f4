from __future__ import annotations

import json
from pathlib import Path
from zipfile import ZIP_DEFLATED, ZipFile

from .utils import atomic_write


CONVERTED_DIR = "converted"
NAMES_FILE = "original_names.json"
BUNDLE_FILE = "bundle.zip"
FALLBACK_BUNDLE_NAME = "file_convertiti_pdfa.zip"


class BundleNotFound(FileNotFoundError):
    """Raised when a session has no artifacts to package."""


def write_original_names(session_dir: Path, names: list[str]) -> None:
    atomic_write(session_dir / NAMES_FILE, json.dumps(names, ensure_ascii=False))


def bundle_filename(session_dir: Path) -> str:
    meta = session_dir / NAMES_FILE
    if not meta.exists():
        return FALLBACK_BUNDLE_NAME
    try:
        names = json.loads(meta.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return FALLBACK_BUNDLE_NAME
    if not isinstance(names, list) or not names:
        return FALLBACK_BUNDLE_NAME
    return f"{'_'.join(str(name) for name in names)}_convertito_pdfa.zip"


def list_artifacts(session_dir: Path) -> list[Path]:
    converted = session_dir / CONVERTED_DIR
    if not converted.is_dir():
        raise BundleNotFound(f"No artifacts for session {session_dir.name}")
    files = sorted(path for path in converted.iterdir() if path.is_file() and path.suffix.lower() == ".pdf")
    if not files:
        raise BundleNotFound(f"No converted files for session {session_dir.name}")
    return files


def build_bundle(session_dir: Path) -> Path:
    files = list_artifacts(session_dir)
    zip_path = session_dir / BUNDLE_FILE
    with ZipFile(zip_path, "w", compression=ZIP_DEFLATED, compresslevel=9) as archive:
        for file_path in files:
            archive.write(file_path, file_path.name)
    return zip_path


__all__ = [
    "BUNDLE_FILE",
    "BundleNotFound",
    "CONVERTED_DIR",
    "build_bundle",
    "bundle_filename",
    "list_artifacts",
    "write_original_names",
]
