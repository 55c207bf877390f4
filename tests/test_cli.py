from __future__ import annotations

import os
import time
from pathlib import Path

from typer.testing import CliRunner

from core.pdfa_converter.cli import app
from fakes import PAGE, write_document

runner = CliRunner()


def write_config(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        "[runtime]\n"
        f'output_dir = "{(tmp_path / "runs").as_posix()}"\n'
        f'upload_dir = "{(tmp_path / "uploads").as_posix()}"\n',
        encoding="utf-8",
    )
    return path


def test_verify_reports_conformance(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    write_document(tmp_path / "good.pdf", [PAGE], marked=True)
    result = runner.invoke(app, ["verify", "good.pdf"])
    assert result.exit_code == 0
    assert "PDF/A-2b" in result.output


def test_verify_fails_on_missing_metadata(tmp_path: Path) -> None:
    good = write_document(tmp_path / "good.pdf", [PAGE], marked=True)
    plain = write_document(tmp_path / "plain.pdf", [PAGE])
    result = runner.invoke(app, ["verify", str(good), str(plain)])
    assert result.exit_code == 1


def test_clean_removes_stale_sessions(tmp_path: Path) -> None:
    config = write_config(tmp_path)
    stale = tmp_path / "runs" / "stale"
    stale.mkdir(parents=True)
    (stale / "bundle.zip").write_bytes(b"PK")
    fresh = tmp_path / "runs" / "fresh"
    fresh.mkdir()
    stamp = time.time() - 600
    for item in (stale, stale / "bundle.zip"):
        os.utime(item, (stamp, stamp))

    result = runner.invoke(app, ["clean", "--older-than", "60", "--config", str(config)])

    assert result.exit_code == 0
    assert "Removed 1 expired entries." in result.output
    assert not stale.exists()
    assert fresh.exists()
