"""Helpers for running blocking work and consuming uploads from async handlers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

from fastapi import UploadFile

T = TypeVar("T")

UPLOAD_CHUNK_BYTES = 1024 * 1024


async def run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Execute *func* in a worker thread and return the result."""

    return await asyncio.to_thread(func, *args, **kwargs)


async def read_limited(upload: UploadFile, limit: int) -> bytes | None:
    """Read *upload* in chunks; ``None`` once it grows past *limit* bytes."""

    buffer = bytearray()
    while True:
        chunk = await upload.read(UPLOAD_CHUNK_BYTES)
        if not chunk:
            return bytes(buffer)
        buffer.extend(chunk)
        if len(buffer) > limit:
            return None


__all__ = ["read_limited", "run_sync"]
