from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from ..constraint import DEFAULT_CONFIG_PATH


DEFAULT_MAX_PART_BYTES = 9 * 1024 * 1024
# resolved from Ghostscript's bundled iccprofiles resource directory
DEFAULT_ICC_PROFILE = "srgb.icc"


@dataclass(slots=True)
class ParallelConfig:
    workers: int = 0
    min_pages: int = 8

    @property
    def effective_workers(self) -> int:
        if self.workers > 0:
            return self.workers
        return max(1, os.cpu_count() or 1)


@dataclass(slots=True)
class RetentionConfig:
    retention_s: int = 3600
    sweep_interval_s: int = 300
    session_grace_s: int = 300


@dataclass(slots=True)
class RuntimeConfig:
    output_dir: Path = Path("runs")
    upload_dir: Path = Path("uploads")
    max_part_bytes: int = DEFAULT_MAX_PART_BYTES
    split_margin: float = 0.9
    max_refine_depth: int = 3
    max_upload_mb: int = 50
    max_files: int = 20
    log_file: str = "log.jsonl"
    summary_csv: str = "summary.csv"
    enable_local_api: bool = True
    parallel: ParallelConfig = field(default_factory=ParallelConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)


@dataclass(slots=True)
class EngineConfig:
    ghostscript: str = "gs"
    qpdf: str = "qpdf"
    pdfa_part: int = 2
    color_strategy: str = "RGB"
    pdf_settings: str = "/printer"
    icc_profile: str = DEFAULT_ICC_PROFILE
    pdfa_def: str = ""
    timeout_s: int = 0


@dataclass(slots=True)
class APIConfig:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(slots=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @property
    def max_upload_bytes(self) -> int:
        return self.runtime.max_upload_mb * 1024 * 1024


def _read_toml(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _section(data: Mapping[str, object] | None, key: str) -> Mapping[str, object] | None:
    if not data:
        return None
    value = data.get(key)
    return value if isinstance(value, Mapping) else None


def _build_parallel(data: Mapping[str, object] | None) -> ParallelConfig:
    if not data:
        return ParallelConfig()
    return ParallelConfig(
        workers=int(data.get("workers", 0)),
        min_pages=int(data.get("min_pages", 8)),
    )


def _build_retention(data: Mapping[str, object] | None) -> RetentionConfig:
    if not data:
        return RetentionConfig()
    return RetentionConfig(
        retention_s=int(data.get("retention_s", 3600)),
        sweep_interval_s=int(data.get("sweep_interval_s", 300)),
        session_grace_s=int(data.get("session_grace_s", 300)),
    )


def _build_runtime(data: Mapping[str, object] | None) -> RuntimeConfig:
    if not data:
        return RuntimeConfig()
    margin = float(data.get("split_margin", 0.9))
    if not 0.0 < margin <= 1.0:
        raise ValueError(f"split_margin must be in (0, 1], got {margin}")
    return RuntimeConfig(
        output_dir=Path(str(data.get("output_dir", "runs"))),
        upload_dir=Path(str(data.get("upload_dir", "uploads"))),
        max_part_bytes=int(data.get("max_part_bytes", DEFAULT_MAX_PART_BYTES)),
        split_margin=margin,
        max_refine_depth=int(data.get("max_refine_depth", 3)),
        max_upload_mb=int(data.get("max_upload_mb", 50)),
        max_files=int(data.get("max_files", 20)),
        log_file=str(data.get("log_file", "log.jsonl")),
        summary_csv=str(data.get("summary_csv", "summary.csv")),
        enable_local_api=bool(data.get("enable_local_api", True)),
        parallel=_build_parallel(_section(data, "parallel")),
        retention=_build_retention(_section(data, "retention")),
    )


def _build_engine(data: Mapping[str, object] | None) -> EngineConfig:
    if not data:
        return EngineConfig()
    return EngineConfig(
        ghostscript=str(data.get("ghostscript", "gs")),
        qpdf=str(data.get("qpdf", "qpdf")),
        pdfa_part=int(data.get("pdfa_part", 2)),
        color_strategy=str(data.get("color_strategy", "RGB")),
        pdf_settings=str(data.get("pdf_settings", "/printer")),
        icc_profile=str(data.get("icc_profile") or DEFAULT_ICC_PROFILE),
        pdfa_def=str(data.get("pdfa_def", "")),
        timeout_s=int(data.get("timeout_s", 0)),
    )


def _build_api(data: Mapping[str, object] | None) -> APIConfig:
    if not data:
        return APIConfig()
    return APIConfig(host=str(data.get("host", "127.0.0.1")), port=int(data.get("port", 8000)))


def load_config(path: Path | None = None) -> AppConfig:
    path = path or DEFAULT_CONFIG_PATH
    raw = _read_toml(path)
    return AppConfig(
        runtime=_build_runtime(_section(raw, "runtime")),
        engine=_build_engine(_section(raw, "engine")),
        api=_build_api(_section(raw, "api")),
    )


def dump_config(config: AppConfig) -> str:
    runtime = config.runtime
    payload = {
        "runtime": {
            "output_dir": str(runtime.output_dir),
            "upload_dir": str(runtime.upload_dir),
            "max_part_bytes": runtime.max_part_bytes,
            "split_margin": runtime.split_margin,
            "max_refine_depth": runtime.max_refine_depth,
            "max_upload_mb": runtime.max_upload_mb,
            "max_files": runtime.max_files,
            "log_file": runtime.log_file,
            "summary_csv": runtime.summary_csv,
            "enable_local_api": runtime.enable_local_api,
            "parallel": {
                "workers": runtime.parallel.workers,
                "min_pages": runtime.parallel.min_pages,
            },
            "retention": {
                "retention_s": runtime.retention.retention_s,
                "sweep_interval_s": runtime.retention.sweep_interval_s,
                "session_grace_s": runtime.retention.session_grace_s,
            },
        },
        "engine": {
            "ghostscript": config.engine.ghostscript,
            "qpdf": config.engine.qpdf,
            "pdfa_part": config.engine.pdfa_part,
            "color_strategy": config.engine.color_strategy,
            "pdf_settings": config.engine.pdf_settings,
            "icc_profile": config.engine.icc_profile,
            "pdfa_def": config.engine.pdfa_def,
            "timeout_s": config.engine.timeout_s,
        },
        "api": {
            "host": config.api.host,
            "port": config.api.port,
        },
    }
    return json.dumps(payload, indent=2)


__all__ = [
    "APIConfig",
    "AppConfig",
    "DEFAULT_ICC_PROFILE",
    "EngineConfig",
    "ParallelConfig",
    "RetentionConfig",
    "RuntimeConfig",
    "load_config",
    "dump_config",
]
