from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from core.pdfa_converter.config import EngineConfig
from core.pdfa_converter.engine import EngineError, ProcessOutput, SubprocessEngine, completed_with_warnings
from core.pdfa_converter.models import PageRange


class ScriptedEngine(SubprocessEngine):
    """Replays canned process results instead of spawning qpdf or gs."""

    def __init__(self, results: list[ProcessOutput], *, writes_output: bool = True) -> None:
        super().__init__(EngineConfig())
        self.results = results
        self.writes_output = writes_output
        self.invocations: list[list[str]] = []

    async def _run(self, stage: str, args: list[str], source: Path) -> ProcessOutput:
        self.invocations.append(args)
        if self.writes_output:
            target = args[-1]
            for arg in args:
                if arg.startswith("-sOutputFile="):
                    target = arg.split("=", 1)[1]
            Path(target).write_bytes(b"%PDF-1.7\n")
        return self.results.pop(0)


def test_warning_detection() -> None:
    assert completed_with_warnings(ProcessOutput(3, "", ""))
    assert completed_with_warnings(ProcessOutput(2, "", "qpdf: operation succeeded with warnings"))
    assert not completed_with_warnings(ProcessOutput(2, "", "qpdf: file is damaged"))


def test_extract_accepts_qpdf_warnings(tmp_path: Path) -> None:
    engine = ScriptedEngine([ProcessOutput(3, "", "WARNING: recovered xref")])
    output = tmp_path / "part.pdf"
    asyncio.run(engine.extract_pages(tmp_path / "in.pdf", PageRange(2, 5), output))
    assert output.exists()
    assert engine.invocations[0][:4] == ["qpdf", "--empty", "--pages", str(tmp_path / "in.pdf")]
    assert engine.invocations[0][4:] == ["2-5", "--", str(output)]


def test_extract_failure_removes_partial_output(tmp_path: Path) -> None:
    engine = ScriptedEngine([ProcessOutput(2, "", "qpdf: in.pdf: not a PDF file")])
    output = tmp_path / "part.pdf"
    with pytest.raises(EngineError) as excinfo:
        asyncio.run(engine.extract_pages(tmp_path / "in.pdf", PageRange(1, 1), output))
    assert excinfo.value.stage == "extract"
    assert "not a PDF file" in str(excinfo.value)
    assert not output.exists()


def test_merge_passes_inputs_in_order(tmp_path: Path) -> None:
    engine = ScriptedEngine([ProcessOutput(0, "", "")])
    inputs = [tmp_path / "b.pdf", tmp_path / "a.pdf"]
    asyncio.run(engine.merge(inputs, tmp_path / "merged.pdf"))
    assert engine.invocations[0][3:5] == [str(inputs[0]), str(inputs[1])]


def test_count_pages_parses_stdout(tmp_path: Path) -> None:
    engine = ScriptedEngine([ProcessOutput(0, "42\n", "")], writes_output=False)
    assert asyncio.run(engine.count_pages(tmp_path / "in.pdf")) == 42


def test_count_pages_rejects_garbage(tmp_path: Path) -> None:
    engine = ScriptedEngine([ProcessOutput(0, "", "")], writes_output=False)
    with pytest.raises(EngineError):
        asyncio.run(engine.count_pages(tmp_path / "in.pdf"))


def test_convert_failure_is_not_softened(tmp_path: Path) -> None:
    engine = ScriptedEngine([ProcessOutput(3, "", "operation succeeded with warnings")])
    output = tmp_path / "out.pdf"
    with pytest.raises(EngineError):
        asyncio.run(engine.convert(tmp_path / "in.pdf", output))
    assert not output.exists()


def test_conversion_arguments() -> None:
    engine = SubprocessEngine(
        EngineConfig(pdfa_part=2, icc_profile="/icc/srgb.icc", pdfa_def="/gs/PDFA_def.ps")
    )
    args = engine.conversion_args(Path("in.pdf"), Path("out.pdf"))
    assert args[0] == "gs"
    assert "-dPDFA=2" in args
    assert "-dPDFACompatibilityPolicy=1" in args
    assert "-sColorConversionStrategy=RGB" in args
    assert "-sOutputICCProfile=/icc/srgb.icc" in args
    assert "-sOutputFile=out.pdf" in args
    assert args[-2:] == ["/gs/PDFA_def.ps", "in.pdf"]


def test_default_conversion_embeds_color_profile() -> None:
    args = SubprocessEngine(EngineConfig()).conversion_args(Path("in.pdf"), Path("out.pdf"))
    assert "-sOutputICCProfile=srgb.icc" in args
    assert "--permit-file-read=srgb.icc" in args
    assert args[-1] == "in.pdf"


def test_blank_color_profile_falls_back_to_default() -> None:
    args = SubprocessEngine(EngineConfig(icc_profile="")).conversion_args(Path("in.pdf"), Path("out.pdf"))
    assert "-sOutputICCProfile=srgb.icc" in args


def test_missing_executable_is_reported(tmp_path: Path) -> None:
    engine = SubprocessEngine(EngineConfig(qpdf="definitely-not-installed-qpdf"))
    with pytest.raises(EngineError, match="executable not found"):
        asyncio.run(engine.count_pages(tmp_path / "in.pdf"))
