from __future__ import annotations

from pathlib import Path

import pytest

from core.pdfa_converter.config import AppConfig, ParallelConfig, RetentionConfig, RuntimeConfig
from core.pdfa_converter.models import SourceFile
from fakes import FakeEngine, write_document


def build_config(tmp_path: Path, *, workers: int = 4, min_pages: int = 8) -> AppConfig:
    runtime = RuntimeConfig(
        output_dir=tmp_path / "runs",
        upload_dir=tmp_path / "uploads",
        parallel=ParallelConfig(workers=workers, min_pages=min_pages),
        retention=RetentionConfig(retention_s=3600, sweep_interval_s=3600, session_grace_s=60),
    )
    return AppConfig(runtime=runtime)


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return build_config(tmp_path)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def stage(config: AppConfig):
    """Write a fake upload into the upload dir and describe it as a SourceFile."""

    counter = 0

    def _stage(name: str, sizes: list[int], *, broken: bool = False, marked: bool = False) -> SourceFile:
        nonlocal counter
        counter += 1
        path = write_document(
            config.runtime.upload_dir / f"upload-{counter}.pdf", sizes, broken=broken, marked=marked
        )
        return SourceFile(original_name=name, path=path, size_bytes=path.stat().st_size)

    return _stage
