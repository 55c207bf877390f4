from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from .bundle import CONVERTED_DIR, write_original_names
from .broadcast import ProgressSink
from .config import AppConfig
from .detection import DetectionError, ensure_pdf
from .engine import DocumentEngine, EngineError, SubprocessEngine
from .logging import BatchSummary, RunLogEntry, RunLogger, append_summary_row
from .models import (
    BatchResult,
    ConvertedFileResult,
    ErrorEvent,
    LogEvent,
    PageRange,
    PartDetail,
    ResultEvent,
    SourceFile,
)
from .notify import LoggingNotifier, Notifier
from .parallel import ParallelConverter
from .partition import SizeFittingPartitioner
from .utils import format_mb, remove_path, slugify
from .verify import verify_conformance


logger = logging.getLogger(__name__)


class ConversionError(RuntimeError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(slots=True)
class SessionPaths:
    base_dir: Path
    converted_dir: Path
    work_dir: Path


@dataclass(slots=True)
class _FileContext:
    source: SourceFile
    base_name: str
    paths: SessionPaths
    converter: ParallelConverter
    partitioner: SizeFittingPartitioner
    sink: ProgressSink
    force_sequential: bool
    details: list[PartDetail] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def log(self, message: str) -> None:
        logger.info(message)
        self.sink.publish(LogEvent(message))


class ConversionService:
    """Run upload batches through convert, measure, split and verify."""

    def __init__(
        self,
        config: AppConfig,
        engine: DocumentEngine | None = None,
        *,
        notifier: Notifier | None = None,
    ) -> None:
        self._config = config
        self._engine = engine or SubprocessEngine(config.engine)
        self._notifier = notifier or LoggingNotifier()
        self._run_logger = RunLogger(config.runtime.output_dir / config.runtime.log_file)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def engine(self) -> DocumentEngine:
        return self._engine

    def session_paths(self, session_id: str) -> SessionPaths:
        base = self._config.runtime.output_dir / session_id
        converted = base / CONVERTED_DIR
        work = base / "work"
        for directory in (base, converted, work):
            directory.mkdir(parents=True, exist_ok=True)
        return SessionPaths(base_dir=base, converted_dir=converted, work_dir=work)

    async def run_batch(
        self,
        session_id: str,
        sources: Sequence[SourceFile],
        sink: ProgressSink,
        *,
        output_name: str | None = None,
        notify_email: str | None = None,
        force_sequential: bool = False,
    ) -> BatchResult:
        """Convert ``sources`` in order; the first failure aborts the whole batch.

        On failure the session directory and every staged upload are removed and
        an error event is published before :class:`ConversionError` is raised.
        """

        base_dir = self._config.runtime.output_dir / session_id
        results: list[ConvertedFileResult] = []
        summary = BatchSummary(session_id=session_id)
        used_names: set[str] = set()
        try:
            paths = self.session_paths(session_id)
            for index, source in enumerate(sources, start=1):
                base_name = self._output_base(source, output_name, index, len(sources), used_names)
                started = time.perf_counter()
                try:
                    result = await self._convert_source(source, base_name, paths, sink, force_sequential)
                except Exception as exc:
                    self._log_run(session_id, source, None, started, error=str(exc))
                    raise
                finally:
                    remove_path(source.path)
                self._log_run(session_id, source, result, started)
                results.append(result)

            names = [output_name] if output_name else [source.base_name for source in sources]
            write_original_names(paths.base_dir, names)
            remove_path(paths.work_dir)
        except asyncio.CancelledError:
            self._abort(base_dir, sources, sink, "Conversion canceled", summary)
            raise
        except ConversionError as exc:
            self._abort(base_dir, sources, sink, str(exc), summary)
            raise
        except Exception as exc:
            self._abort(base_dir, sources, sink, f"Conversion failed: {exc}", summary)
            code = "ENGINE" if isinstance(exc, EngineError) else "INTERNAL"
            raise ConversionError(code, str(exc)) from exc

        batch = BatchResult(files=results)
        summary.files = len(results)
        summary.parts = sum(item.parts for item in results)
        summary.total_bytes = batch.total_size
        self._write_summary(summary)
        sink.publish(LogEvent(f"Conversion complete: {len(results)} file(s), {format_mb(batch.total_size)}"))
        sink.publish(ResultEvent(batch))
        if notify_email:
            await self._send_notification(notify_email, batch, session_id)
        return batch

    async def _convert_source(
        self,
        source: SourceFile,
        base_name: str,
        paths: SessionPaths,
        sink: ProgressSink,
        force_sequential: bool,
    ) -> ConvertedFileResult:
        parallel = self._config.runtime.parallel
        context = _FileContext(
            source=source,
            base_name=base_name,
            paths=paths,
            converter=ParallelConverter(
                self._engine,
                workers=parallel.effective_workers,
                min_pages=parallel.min_pages,
                work_dir=paths.work_dir,
            ),
            partitioner=SizeFittingPartitioner(self._engine, paths.work_dir),
            sink=sink,
            force_sequential=force_sequential,
        )
        context.log(f"Processing: {source.original_name} ({format_mb(source.size_bytes)})")
        try:
            ensure_pdf(source.path, source.original_name)
        except DetectionError as exc:
            raise ConversionError("INVALID_INPUT", str(exc)) from exc

        full_output = paths.work_dir / f"{base_name}-full.pdf"
        context.log(f"Converting to PDF/A: {source.original_name}")
        try:
            await context.converter.convert_document(
                source.path,
                full_output,
                self._chunk_progress(context),
                force_sequential=force_sequential,
            )
        except EngineError as exc:
            raise ConversionError("ENGINE", f"Error converting {source.original_name}: {exc}") from exc

        size = full_output.stat().st_size
        ceiling = self._config.runtime.max_part_bytes
        context.log(f"Converted {source.original_name}: {format_mb(size)}")

        if size <= ceiling:
            self._accept_part(context, full_output, f"{base_name}.pdf", over_ceiling=False)
            return self._build_result(context, was_split=False)

        context.log(f"Output is {format_mb(size)} (> {format_mb(ceiling)}), splitting...")
        try:
            await self._split(context, full_output)
        except EngineError as exc:
            raise ConversionError("ENGINE", f"Error splitting {source.original_name}: {exc}") from exc
        finally:
            remove_path(full_output)
        return self._build_result(context, was_split=True)

    async def _split(self, context: _FileContext, document: Path) -> None:
        runtime = self._config.runtime
        target = int(runtime.max_part_bytes * runtime.split_margin)
        fitted = await context.partitioner.partition(document, target)
        context.log(f"Splitting {context.source.original_name} into {len(fitted)} part(s)")
        for item in fitted:
            await self._produce_parts(context, document, item.range, depth=1)

    async def _produce_parts(self, context: _FileContext, document: Path, page_range: PageRange, depth: int) -> None:
        runtime = self._config.runtime
        ceiling = runtime.max_part_bytes
        stem = f"{context.base_name}-p{page_range.start}-{page_range.end}"
        raw = context.paths.work_dir / f"{stem}-raw.pdf"
        candidate = context.paths.work_dir / f"{stem}.pdf"
        try:
            await self._engine.extract_pages(document, page_range, raw)
            await context.converter.convert_document(
                raw,
                candidate,
                force_sequential=context.force_sequential,
            )
        finally:
            remove_path(raw)

        size = candidate.stat().st_size
        if size <= ceiling:
            self._accept_part(context, candidate, self._part_name(context), over_ceiling=False)
            return
        if page_range.pages == 1:
            name = self._part_name(context)
            warning = f"{name} is {format_mb(size)}: a single page cannot be split below {format_mb(ceiling)}"
            context.warnings.append(warning)
            context.log(f"Warning: {warning}")
            self._accept_part(context, candidate, name, over_ceiling=True)
            return

        context.log(
            f"Pages {page_range.spec()} converted to {format_mb(size)} (> {format_mb(ceiling)}), re-splitting..."
        )
        if depth >= runtime.max_refine_depth:
            sub_ranges = [PageRange(page, page) for page in range(page_range.start, page_range.end + 1)]
        else:
            target = int(ceiling * runtime.split_margin ** (depth + 1))
            fitted = await context.partitioner.partition(candidate, target)
            offset = page_range.start - 1
            sub_ranges = [PageRange(item.range.start + offset, item.range.end + offset) for item in fitted]
        remove_path(candidate)
        for sub_range in sub_ranges:
            await self._produce_parts(context, document, sub_range, depth + 1)

    def _accept_part(self, context: _FileContext, produced: Path, name: str, *, over_ceiling: bool) -> PartDetail:
        target = context.paths.converted_dir / name
        produced.replace(target)
        size = target.stat().st_size
        conformance = verify_conformance(target)
        detail = PartDetail(
            name=name,
            size_bytes=size,
            verified=conformance.compliant,
            conformance=conformance.label,
            over_ceiling=over_ceiling,
        )
        context.details.append(detail)
        status = conformance.label if conformance.compliant else "PDF/A metadata not found"
        context.log(f"{name}: {format_mb(size)} - {status}")
        return detail

    def _part_name(self, context: _FileContext) -> str:
        return f"{context.base_name}_parte{len(context.details) + 1}.pdf"

    def _build_result(self, context: _FileContext, *, was_split: bool) -> ConvertedFileResult:
        details = context.details
        labels = {detail.conformance for detail in details}
        verified = bool(details) and all(detail.verified for detail in details)
        result = ConvertedFileResult(
            original_name=context.source.original_name,
            output_name=context.base_name if was_split else details[0].name,
            output_size=sum(detail.size_bytes for detail in details),
            was_split=was_split,
            parts=len(details),
            verified=verified,
            conformance=labels.pop() if len(labels) == 1 else None,
            details=list(details),
            warnings=list(context.warnings),
        )
        outcome = "verified" if verified else "NOT verified"
        context.log(f"PDF/A check for {context.source.original_name}: {outcome}")
        return result

    def _chunk_progress(self, context: _FileContext):  # type: ignore[no-untyped-def]
        def _progress(done: int, total: int) -> None:
            if total > 1:
                context.log(f"{context.source.original_name}: chunk {done}/{total} converted")

        return _progress

    def _output_base(
        self,
        source: SourceFile,
        output_name: str | None,
        index: int,
        count: int,
        used: set[str],
    ) -> str:
        if output_name:
            base = slugify(Path(output_name).stem or output_name)
            base = base if count == 1 else f"{base}_{index}"
        else:
            base = slugify(source.base_name)
        # two uploads with the same name must not overwrite each other
        if base in used:
            base = f"{base}_{index}"
        used.add(base)
        return base

    def _abort(
        self,
        base_dir: Path,
        sources: Sequence[SourceFile],
        sink: ProgressSink,
        message: str,
        summary: BatchSummary,
    ) -> None:
        logger.error("Batch %s aborted: %s", summary.session_id, message)
        for source in sources:
            remove_path(source.path)
        remove_path(base_dir)
        summary.status = "failure"
        self._write_summary(summary)
        sink.publish(ErrorEvent(message))

    def _log_run(
        self,
        session_id: str,
        source: SourceFile,
        result: ConvertedFileResult | None,
        started: float,
        *,
        error: str | None = None,
    ) -> None:
        self._run_logger.append(
            RunLogEntry(
                session_id=session_id,
                source=source.original_name,
                status="success" if result else "failure",
                parts=[detail.name for detail in result.details] if result else [],
                output_bytes=result.output_size if result else 0,
                was_split=result.was_split if result else False,
                conformance=result.conformance if result else None,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=error,
            )
        )

    def _write_summary(self, summary: BatchSummary) -> None:
        runtime = self._config.runtime
        try:
            append_summary_row(runtime.output_dir / runtime.summary_csv, summary)
        except OSError as exc:
            logger.warning("Could not update batch summary: %s", exc)

    async def _send_notification(self, recipient: str, batch: BatchResult, session_id: str) -> None:
        try:
            await self._notifier.notify(recipient, batch, session_id)
        except Exception:
            logger.exception("Notification to %s failed", recipient)


__all__ = [
    "ConversionError",
    "ConversionService",
    "SessionPaths",
]
