from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence

from .broadcast import SessionRegistry, SessionSink
from .config import AppConfig
from .core import ConversionError, ConversionService
from .detection import DetectionError, ensure_pdf
from .models import ErrorEvent, SourceFile
from .notify import is_valid_email
from .sweeper import RetentionSweeper
from .utils import decode_upload_name, generate_session_id, remove_path


logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(slots=True)
class JobHandle:
    session_id: str
    sources: list[SourceFile]
    task: asyncio.Task[None] | None = None
    status: JobStatus = JobStatus.RUNNING
    submitted_at: float = field(default_factory=time.time)
    started: bool = False


class JobManager:
    def __init__(self, config: AppConfig, service: ConversionService, registry: SessionRegistry) -> None:
        self._config = config
        self._service = service
        self._registry = registry
        self._jobs: dict[str, JobHandle] = {}
        runtime = config.runtime
        self._sweeper = RetentionSweeper(
            (runtime.output_dir, runtime.upload_dir),
            retention_seconds=runtime.retention.retention_s,
            interval_seconds=runtime.retention.sweep_interval_s,
            exclude=(runtime.log_file, runtime.summary_csv),
        )
        self._shutdown = False

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def sweeper(self) -> RetentionSweeper:
        return self._sweeper

    def start(self) -> None:
        self._sweeper.start()

    def stage_upload(self, filename: str | bytes | None, payload: bytes) -> SourceFile:
        """Write one uploaded document into the upload area after validating it."""

        original_name = decode_upload_name(filename) if filename else "document.pdf"
        if len(payload) > self._config.max_upload_bytes:
            raise ConversionError(
                "TOO_LARGE",
                f"{original_name} exceeds the {self._config.runtime.max_upload_mb} MB upload limit",
            )
        upload_dir = self._config.runtime.upload_dir
        upload_dir.mkdir(parents=True, exist_ok=True)
        target = upload_dir / f"{generate_session_id()}.pdf"
        target.write_bytes(payload)
        try:
            ensure_pdf(target, original_name)
        except DetectionError as exc:
            remove_path(target)
            raise ConversionError("INVALID_INPUT", str(exc)) from exc
        return SourceFile(original_name=original_name, path=target, size_bytes=len(payload))

    def discard(self, sources: Sequence[SourceFile]) -> None:
        for source in sources:
            remove_path(source.path)

    def submit(
        self,
        sources: Sequence[SourceFile],
        *,
        output_name: str | None = None,
        notify_email: str | None = None,
    ) -> str:
        if self._shutdown:
            raise RuntimeError("Job manager is shut down")
        if not sources:
            raise ConversionError("INVALID_INPUT", "No files uploaded")
        if len(sources) > self._config.runtime.max_files:
            raise ConversionError("INVALID_INPUT", f"At most {self._config.runtime.max_files} files per batch")
        if notify_email and not is_valid_email(notify_email):
            raise ConversionError("INVALID_INPUT", f"Invalid email address: {notify_email}")

        session_id = self._registry.create_session()
        handle = JobHandle(session_id=session_id, sources=list(sources))
        self._jobs[session_id] = handle
        handle.task = asyncio.get_running_loop().create_task(
            self._run_job(handle, output_name=output_name or None, notify_email=notify_email or None),
            name=f"conversion-{session_id}",
        )
        handle.task.add_done_callback(lambda task: self._finalize(handle, task))
        logger.info("Session %s accepted with %d file(s)", session_id, len(sources))
        return session_id

    async def _run_job(self, handle: JobHandle, *, output_name: str | None, notify_email: str | None) -> None:
        handle.started = True
        sink = SessionSink(self._registry, handle.session_id)
        started = time.perf_counter()
        try:
            await self._service.run_batch(
                handle.session_id,
                handle.sources,
                sink,
                output_name=output_name,
                notify_email=notify_email,
            )
        except ConversionError as exc:
            handle.status = JobStatus.FAILED
            logger.warning("Session %s failed [%s]: %s", handle.session_id, exc.code, exc)
        else:
            handle.status = JobStatus.SUCCEEDED
            logger.info(
                "Session %s finished in %.1fs",
                handle.session_id,
                time.perf_counter() - started,
            )

    def _finalize(self, handle: JobHandle, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            handle.status = JobStatus.CANCELED
            logger.info("Session %s canceled", handle.session_id)
            if not handle.started and handle.session_id in self._registry:
                self._registry.publish(handle.session_id, ErrorEvent("Conversion canceled"))
                self.discard(handle.sources)
        elif task.exception() is not None:
            handle.status = JobStatus.FAILED
            logger.error("Session %s crashed", handle.session_id, exc_info=task.exception())
        self._registry.mark_done(handle.session_id)
        self._jobs.pop(handle.session_id, None)

    def status(self, session_id: str) -> JobStatus | None:
        handle = self._jobs.get(session_id)
        return handle.status if handle is not None else None

    def cancel(self, session_id: str) -> bool:
        handle = self._jobs.get(session_id)
        if handle is None or handle.status is not JobStatus.RUNNING:
            return False
        if handle.task is None or handle.task.done():
            return False
        handle.task.cancel()
        return True

    def is_active(self, session_id: str) -> bool:
        return session_id in self._jobs

    def active_sessions(self) -> list[str]:
        return sorted(self._jobs)

    def session_dir(self, session_id: str) -> Path:
        return self._config.runtime.output_dir / session_id

    async def shutdown(self) -> None:
        self._shutdown = True
        tasks = [handle.task for handle in self._jobs.values() if handle.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._sweeper.stop()
        self._registry.close()


__all__ = ["JobHandle", "JobManager", "JobStatus"]
