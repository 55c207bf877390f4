from __future__ import annotations

import logging
import os
import re
import secrets
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


logger = logging.getLogger(__name__)

SAFE_FILENAME_RE = re.compile(r"[^\w.-]+", re.UNICODE)


def slugify(value: str, max_length: int = 120) -> str:
    normalized = SAFE_FILENAME_RE.sub("-", value.strip())
    normalized = re.sub("-+", "-", normalized)
    normalized = normalized.replace("-.", ".")
    normalized = normalized.strip("-._")
    if not normalized:
        normalized = "file"
    if len(normalized) > max_length:
        normalized = normalized[:max_length]
    return normalized


def generate_session_id() -> str:
    return secrets.token_urlsafe(18)


def decode_upload_name(raw: str | bytes) -> str:
    """Recover a UTF-8 filename that arrived decoded as latin-1.

    Multipart parsers commonly hand over filenames as latin-1; names that were
    really UTF-8 are re-decoded, anything else is returned unchanged.
    """

    if isinstance(raw, bytes):
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw.decode("latin-1")
    try:
        return raw.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return raw


def format_mb(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.2f} MB"


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding=encoding) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
    os.replace(tmp.name, path)


def remove_path(path: Path) -> None:
    """Delete a file or directory tree, logging instead of raising."""

    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("Cleanup failed for %s: %s", path, exc)


@contextmanager
def scoped_workdir(parent: Path, prefix: str = "work-") -> Iterator[Path]:
    """Create a scratch directory under ``parent`` removed on every exit path."""

    parent.mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))
    try:
        yield path
    finally:
        remove_path(path)


def newest_mtime(path: Path) -> float:
    latest = path.stat().st_mtime
    if path.is_dir():
        for child in path.rglob("*"):
            try:
                latest = max(latest, child.stat().st_mtime)
            except FileNotFoundError:
                continue
    return latest


__all__ = [
    "atomic_write",
    "decode_upload_name",
    "format_mb",
    "generate_session_id",
    "newest_mtime",
    "remove_path",
    "scoped_workdir",
    "slugify",
]
