import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from harvester.processor.exceptions import RendererError
from harvester.renderer.artifacts import (
    ArtifactPaths,
    CreateArtifactsExitCode,
    create_artifacts_arguments,
    describe_exit_code,
    find_incomplete_upload,
    read_problem_fonts,
)
from harvester.renderer.invoker import RendererInvoker


class TestDescribeExitCode:
    def test_names_each_bit(self) -> None:
        code = CreateArtifactsExitCode.EPUB_ERROR | CreateArtifactsExitCode.FONT_PROBLEMS

        assert describe_exit_code(code) == ["EPUB_ERROR", "FONT_PROBLEMS"]

    def test_unknown_bits(self) -> None:
        assert describe_exit_code(129) == ["UNHANDLED_EXCEPTION", "Unknown(128)"]

    def test_success_has_no_names(self) -> None:
        assert describe_exit_code(0) == []


class TestCreateArtifactsArguments:
    def test_all_artifacts(self, tmp_path: Path) -> None:
        paths = ArtifactPaths.for_book(tmp_path / "out", "Moon")

        args = create_artifacts_arguments(tmp_path / "Moon", tmp_path / "c.bloomCollection", paths)

        assert args[0] == "createArtifacts"
        assert f"--bookPath={tmp_path / 'Moon'}" in args
        assert f"--epubOutputPath={tmp_path / 'out' / 'epub' / 'Moon.epub'}" in args
        assert f"--problemFontsPath={tmp_path / 'out' / 'problemFonts.txt'}" in args
        assert "--testing" not in args

    def test_skipped_artifacts_are_not_requested(self, tmp_path: Path) -> None:
        paths = ArtifactPaths.for_book(tmp_path, "Moon", epub=False, thumbnails=False)

        args = create_artifacts_arguments(tmp_path, tmp_path / "c", paths, testing=True)

        assert not any(arg.startswith("--epubOutputPath") for arg in args)
        assert not any(arg.startswith("--thumbnailOutputInfoPath") for arg in args)
        assert args[-1] == "--testing"


class TestReadProblemFonts:
    def test_parses_report(self, tmp_path: Path) -> None:
        report = tmp_path / "problemFonts.txt"
        report.write_text(
            "missing font - Andika\ninvalid font - Broken\nillegal font - Pirate\n"
            "missing font - Andika\nnoise\n",
            encoding="utf-8",
        )

        problems = read_problem_fonts(report)

        assert problems.missing == ["Andika"]
        assert problems.invalid == ["Broken", "Pirate"]

    def test_missing_report_is_empty(self, tmp_path: Path) -> None:
        assert not read_problem_fonts(tmp_path / "absent.txt")


class TestFindIncompleteUpload:
    def test_finds_missing_artifact(self) -> None:
        stderr = "Uploading...\nIncomplete upload: missing epub/Moon.epub\nDone"

        assert find_incomplete_upload(stderr) == "epub/Moon.epub"

    def test_none_when_absent(self) -> None:
        assert find_incomplete_upload("") is None


class TestRendererInvoker:
    @patch("harvester.renderer.invoker.subprocess.run")
    def test_returns_exit_code_and_output(self, mock_run: MagicMock) -> None:
        mock_run.return_value = subprocess.CompletedProcess(["x"], 4, "out", "err")

        result = RendererInvoker("xvfb-run BloomHarvester").run(["createArtifacts"], 60)

        assert (result.exit_code, result.stdout, result.stderr) == (4, "out", "err")
        assert result.timed_out is False
        argv = mock_run.call_args.args[0]
        assert argv == ["xvfb-run", "BloomHarvester", "createArtifacts"]
        assert mock_run.call_args.kwargs["timeout"] == 60

    @patch("harvester.renderer.invoker.subprocess.run")
    def test_timeout(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired("BloomHarvester", 60, output=b"partial")

        result = RendererInvoker("BloomHarvester").run([], 60)

        assert result.timed_out is True
        assert result.exit_code is None
        assert result.stdout == "partial"

    @patch("harvester.renderer.invoker.subprocess.run")
    def test_missing_executable_raises(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("No such file")

        with pytest.raises(RendererError, match="Could not start renderer BloomHarvester"):
            RendererInvoker("BloomHarvester").run([], 60)
