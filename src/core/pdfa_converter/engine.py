"""Adapters for the external conversion (Ghostscript) and page (qpdf) engines.

Both tools run as separate processes. Their exit status is not trusted on its
own: qpdf reports recoverable damage with a non-zero status while still writing
a usable file, so that case is normalised to success here.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from .config import DEFAULT_ICC_PROFILE, EngineConfig
from .models import PageRange


logger = logging.getLogger(__name__)

QPDF_WARNING_EXIT = 3
QPDF_WARNING_RE = re.compile(r"operation succeeded with warnings", re.IGNORECASE)


class EngineError(RuntimeError):
    def __init__(self, stage: str, message: str, *, path: Path | None = None, stderr: str = "") -> None:
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
        self.path = path
        self.stderr = stderr


class DocumentEngine(Protocol):
    async def count_pages(self, path: Path) -> int:  # pragma: no cover - interface
        ...

    async def extract_pages(self, path: Path, page_range: PageRange, output: Path) -> None:  # pragma: no cover - interface
        ...

    async def merge(self, paths: Sequence[Path], output: Path) -> None:  # pragma: no cover - interface
        ...

    async def convert(self, source: Path, output: Path) -> None:  # pragma: no cover - interface
        ...


@dataclass(slots=True)
class ProcessOutput:
    returncode: int
    stdout: str
    stderr: str

    @property
    def diagnostics(self) -> str:
        return "\n".join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)


def completed_with_warnings(output: ProcessOutput) -> bool:
    if output.returncode == QPDF_WARNING_EXIT:
        return True
    return bool(QPDF_WARNING_RE.search(output.diagnostics))


class SubprocessEngine:
    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    async def count_pages(self, path: Path) -> int:
        output = await self._run("count", [self._config.qpdf, "--show-npages", str(path)], path)
        if output.returncode != 0 and not completed_with_warnings(output):
            raise self._failure("count", path, output)
        try:
            pages = int(output.stdout.strip().splitlines()[0])
        except (IndexError, ValueError) as exc:
            raise EngineError("count", f"unreadable page count for {path.name}", path=path) from exc
        if pages <= 0:
            raise EngineError("count", f"{path.name} has no pages", path=path)
        return pages

    async def extract_pages(self, path: Path, page_range: PageRange, output: Path) -> None:
        args = [
            self._config.qpdf,
            "--empty",
            "--pages",
            str(path),
            page_range.spec(),
            "--",
            str(output),
        ]
        await self._run_qpdf("extract", args, path, output)

    async def merge(self, paths: Sequence[Path], output: Path) -> None:
        if not paths:
            raise EngineError("merge", "nothing to merge")
        args = [self._config.qpdf, "--empty", "--pages", *(str(p) for p in paths), "--", str(output)]
        await self._run_qpdf("merge", args, paths[0], output)

    async def convert(self, source: Path, output: Path) -> None:
        result = await self._run("convert", self.conversion_args(source, output), source)
        if result.returncode != 0:
            output.unlink(missing_ok=True)
            raise self._failure("convert", source, result)
        if not output.exists():
            raise EngineError("convert", f"no output produced for {source.name}", path=source)

    def conversion_args(self, source: Path, output: Path) -> list[str]:
        cfg = self._config
        args = [
            cfg.ghostscript,
            f"-dPDFA={cfg.pdfa_part}",
            "-dBATCH",
            "-dNOPAUSE",
            "-dNOOUTERSAVE",
            "-dSAFER",
            "-sDEVICE=pdfwrite",
            "-dPDFACompatibilityPolicy=1",
            f"-sColorConversionStrategy={cfg.color_strategy}",
            f"-dPDFSETTINGS={cfg.pdf_settings}",
        ]
        icc_profile = cfg.icc_profile or DEFAULT_ICC_PROFILE
        args.append(f"-sOutputICCProfile={icc_profile}")
        args.append(f"--permit-file-read={icc_profile}")
        args.append(f"-sOutputFile={output}")
        if cfg.pdfa_def:
            args.append(cfg.pdfa_def)
        args.append(str(source))
        return args

    async def _run_qpdf(self, stage: str, args: list[str], source: Path, output: Path) -> None:
        result = await self._run(stage, args, source)
        if result.returncode == 0:
            return
        if completed_with_warnings(result) and output.exists():
            logger.warning("qpdf %s completed with warnings for %s: %s", stage, source.name, result.diagnostics)
            return
        output.unlink(missing_ok=True)
        raise self._failure(stage, source, result)

    async def _run(self, stage: str, args: list[str], source: Path) -> ProcessOutput:
        logger.debug("Running %s: %s", stage, " ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise EngineError(stage, f"executable not found: {args[0]}", path=source) from exc
        timeout = self._config.timeout_s if self._config.timeout_s > 0 else None
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            raise EngineError(stage, f"timed out after {timeout}s on {source.name}", path=source) from exc
        return ProcessOutput(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    def _failure(self, stage: str, source: Path, output: ProcessOutput) -> EngineError:
        detail = output.diagnostics or f"exit status {output.returncode}"
        return EngineError(stage, f"{source.name}: {detail}", path=source, stderr=output.stderr)


__all__ = [
    "DocumentEngine",
    "EngineError",
    "ProcessOutput",
    "SubprocessEngine",
    "completed_with_warnings",
]
