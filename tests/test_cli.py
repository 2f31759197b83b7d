"""Tests for the command line interface."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from PIL import Image

from shootcleaner.analysis import ImageAnalysis, save_analyses
from shootcleaner.cli import main
from shootcleaner.instructions import Modulate


def create_photo(path: Path, size: int = 256) -> Path:
    """Create a noisy JPEG large enough to pass the discovery size filter."""
    img = Image.frombytes("RGB", (size, size), os.urandom(size * size * 3))
    img.save(path, format="JPEG", quality=95)
    return path


@pytest.fixture
def shoot(tmp_path: Path) -> Path:
    folder = tmp_path / "shoot"
    folder.mkdir()
    create_photo(folder / "one.jpg")
    create_photo(folder / "two.jpg")
    return folder


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestEnhance:
    """Tests for the enhance command."""

    def test_enhance_writes_artifacts(
        self, runner: CliRunner, shoot: Path, tmp_path: Path
    ) -> None:
        """Test a full enhancement run with a report."""
        out = tmp_path / "enhanced"
        result = runner.invoke(
            main,
            [
                "enhance",
                str(shoot),
                "--saturation",
                "20",
                "--exposure",
                "1",
                "--output-dir",
                str(out),
                "--report",
                str(tmp_path / "report"),
                "--format",
                "both",
            ],
        )

        assert result.exit_code == 0, result.output
        assert len(list(out.glob("job_*/*_modulate_1.jpg"))) == 2
        assert len(list(out.glob("job_*/*_evaluate_2.jpg"))) == 2

        report = json.loads((tmp_path / "report.json").read_text())
        assert report["statistics"]["completed"] == 2
        assert (tmp_path / "report.md").exists()

    def test_enhance_dry_run(self, runner: CliRunner, shoot: Path, tmp_path: Path) -> None:
        """Test that a dry run shows the chain without writing."""
        out = tmp_path / "enhanced"
        result = runner.invoke(
            main,
            ["enhance", str(shoot), "--saturation", "20", "--output-dir", str(out), "--dry-run"],
        )

        assert result.exit_code == 0, result.output
        assert "-modulate 100,120,100" in result.output
        assert "Dry run" in result.output
        assert not out.exists()

    def test_enhance_neutral_settings(self, runner: CliRunner, shoot: Path) -> None:
        """Test that neutral settings do nothing."""
        result = runner.invoke(main, ["enhance", str(shoot)])

        assert result.exit_code == 0, result.output
        assert "nothing to apply" in result.output

    def test_enhance_settings_file(
        self, runner: CliRunner, shoot: Path, tmp_path: Path
    ) -> None:
        """Test that a desktop settings file is migrated and applied."""
        settings = tmp_path / "settings.json"
        settings.write_text(json.dumps({"noiseReduction": 30, "format": "png"}))

        result = runner.invoke(
            main, ["enhance", str(shoot), "--settings", str(settings), "--dry-run"]
        )

        assert result.exit_code == 0, result.output
        assert "-despeckle" in result.output
        assert "-format png" in result.output

    def test_enhance_save_settings(
        self, runner: CliRunner, shoot: Path, tmp_path: Path
    ) -> None:
        """Test writing the effective settings."""
        saved = tmp_path / "saved.json"
        result = runner.invoke(
            main,
            ["enhance", str(shoot), "--brightness", "10", "--save-settings", str(saved), "--dry-run"],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(saved.read_text())["brightness"] == 10

    def test_enhance_slider_out_of_range(self, runner: CliRunner, shoot: Path) -> None:
        """Test that click rejects out-of-range sliders."""
        result = runner.invoke(main, ["enhance", str(shoot), "--saturation", "150"])
        assert result.exit_code == 2

    def test_enhance_bad_resize(self, runner: CliRunner, shoot: Path) -> None:
        """Test that a malformed resize geometry is an error."""
        result = runner.invoke(main, ["enhance", str(shoot), "--resize", "big"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_enhance_settings_file_with_string_slider(
        self, runner: CliRunner, shoot: Path, tmp_path: Path
    ) -> None:
        """Test that a quoted slider value is reported, not a traceback."""
        settings = tmp_path / "settings.json"
        settings.write_text(json.dumps({"version": 2, "brightness": "10"}))

        result = runner.invoke(main, ["enhance", str(shoot), "--settings", str(settings)])

        assert result.exit_code == 1
        assert "Error" in result.output
        assert "brightness must be a number" in result.output

    def test_enhance_failed_job_exit_code(
        self, runner: CliRunner, shoot: Path, tmp_path: Path
    ) -> None:
        """Test that a corrupt image fails its job and the run exits 1."""
        (shoot / "corrupt.jpg").write_bytes(b"x" * 30000)
        out = tmp_path / "enhanced"

        result = runner.invoke(
            main, ["enhance", str(shoot), "--contrast", "10", "--output-dir", str(out)]
        )

        assert result.exit_code == 1
        assert len(list(out.glob("job_*/*_brightness-contrast_1.jpg"))) == 2


class TestApply:
    """Tests for the apply command."""

    def test_apply_recommendations(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that kept images get their recommended edits."""
        keep = create_photo(tmp_path / "keep.jpg")
        reject = create_photo(tmp_path / "reject.jpg")
        analysis_path = tmp_path / "analysis.json"
        save_analyses(
            [
                ImageAnalysis(
                    custom_id="img_0000_keep",
                    filename="keep.jpg",
                    path=str(keep),
                    decision="keep",
                    confidence=0.9,
                    rationale="Sharp",
                    instructions=[Modulate(100, 110, 100)],
                ),
                ImageAnalysis(
                    custom_id="img_0001_reject",
                    filename="reject.jpg",
                    path=str(reject),
                    decision="reject",
                    confidence=0.8,
                    rationale="Blurry",
                    instructions=[Modulate(100, 90, 100)],
                ),
            ],
            analysis_path,
        )
        out = tmp_path / "enhanced"

        result = runner.invoke(main, ["apply", str(analysis_path), "--output-dir", str(out)])

        assert result.exit_code == 0, result.output
        artifacts = list(out.glob("*/*.jpg"))
        assert [p.name for p in artifacts] == ["keep_modulate_1.jpg"]

    def test_apply_invalid_file(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that a non-analysis file is an error."""
        path = tmp_path / "other.json"
        path.write_text("[]")

        result = runner.invoke(main, ["apply", str(path)])

        assert result.exit_code == 1
        assert "Not an analysis file" in result.output


class TestAnalyze:
    """Tests for the analyze command."""

    def test_analyze_dry_run(self, runner: CliRunner, shoot: Path) -> None:
        """Test that a dry run does not call the API."""
        with patch("shootcleaner.cli.VisionBatchClient") as client_cls:
            result = runner.invoke(main, ["analyze", str(shoot), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Would analyze 2 images" in result.output
        client_cls.assert_not_called()

    def test_analyze_writes_analysis(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        """Test the submit, poll and save flow against a mocked client."""
        photo = create_photo(tmp_path / "photo.jpg")
        output = tmp_path / "analysis.json"
        verdict = {
            "decision": "keep",
            "confidence": 0.9,
            "rationale": "Good light",
            "instructions": [{"operation": "modulate", "params": ["100,110,100"]}],
        }

        with patch("shootcleaner.cli.VisionBatchClient") as client_cls:
            client = client_cls.return_value
            client.submit_batch.return_value = "batch_1"
            client.poll_batch.return_value = {
                "status": "completed",
                "request_counts": {"succeeded": 1, "errored": 0},
            }
            client.get_batch_results.return_value = [
                {
                    "custom_id": "img_0000_photo",
                    "result": {
                        "type": "succeeded",
                        "message": {
                            "content": [{"type": "text", "text": json.dumps(verdict)}]
                        },
                    },
                }
            ]

            result = runner.invoke(
                main, ["analyze", str(photo), "--output", str(output)]
            )

        assert result.exit_code == 0, result.output
        data = json.loads(output.read_text())
        assert data["summary"]["keep"] == 1
        assert data["images"][0]["path"] == str(photo)
        assert data["images"][0]["instructions"] == [
            {"operation": "modulate", "params": ["100,110,100"]}
        ]

    def test_analyze_save_error_reports_batch(
        self, runner: CliRunner, tmp_path: Path
    ) -> None:
        """Test that a failure to save the analysis keeps the batch id visible."""
        photo = create_photo(tmp_path / "photo.jpg")

        with patch("shootcleaner.cli.VisionBatchClient") as client_cls, patch(
            "shootcleaner.cli.save_analyses", side_effect=OSError("disk full")
        ):
            client = client_cls.return_value
            client.submit_batch.return_value = "batch_1"
            client.poll_batch.return_value = {
                "status": "completed",
                "request_counts": {"succeeded": 0, "errored": 1},
            }
            client.get_batch_results.return_value = []

            result = runner.invoke(
                main, ["analyze", str(photo), "--output", str(tmp_path / "a.json")]
            )

        assert result.exit_code == 1
        assert "disk full" in result.output
        assert "batch_1" in result.output

    def test_analyze_submit_error(self, runner: CliRunner, tmp_path: Path) -> None:
        """Test that a missing API key is reported."""
        photo = create_photo(tmp_path / "photo.jpg")

        with patch(
            "shootcleaner.cli.VisionBatchClient",
            side_effect=ValueError("API key required"),
        ):
            result = runner.invoke(main, ["analyze", str(photo)])

        assert result.exit_code == 1
        assert "API key required" in result.output
