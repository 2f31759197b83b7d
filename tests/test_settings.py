"""Tests for settings module."""

import json
from pathlib import Path

import pytest

from shootcleaner.settings import (
    SETTINGS_VERSION,
    EnhancementSettings,
    load_settings,
    migrate_settings,
    save_settings,
    settings_from_dict,
)


class TestEnhancementSettings:
    """Tests for EnhancementSettings validation."""

    def test_defaults_are_neutral(self) -> None:
        """Test that the default record changes nothing."""
        settings = EnhancementSettings()
        assert settings.brightness == 0
        assert settings.sharpening == 0
        assert settings.format is None
        assert settings.resize is False

    def test_slider_out_of_range(self) -> None:
        """Test that out-of-range sliders are rejected."""
        with pytest.raises(ValueError, match="saturation"):
            EnhancementSettings(saturation=150)
        with pytest.raises(ValueError, match="exposure"):
            EnhancementSettings(exposure=-6)
        with pytest.raises(ValueError, match="sharpening"):
            EnhancementSettings(sharpening=-1)

    def test_invalid_format(self) -> None:
        """Test that unknown output formats are rejected."""
        with pytest.raises(ValueError, match="Invalid format"):
            EnhancementSettings(format="bmp")

    def test_invalid_quality(self) -> None:
        """Test quality bounds."""
        with pytest.raises(ValueError, match="quality"):
            EnhancementSettings(quality=0)

    def test_resize_needs_positive_dimensions(self) -> None:
        """Test that resize requires positive dimensions."""
        with pytest.raises(ValueError, match="positive"):
            EnhancementSettings(resize=True, width=0)

    def test_non_numeric_slider(self) -> None:
        """Test that a string slider is a ValueError, not a TypeError."""
        with pytest.raises(ValueError, match="brightness must be a number"):
            EnhancementSettings(brightness="10")
        with pytest.raises(ValueError, match="exposure must be a number"):
            EnhancementSettings(exposure=True)

    def test_wrong_field_types(self) -> None:
        """Test that output controls of the wrong type are rejected."""
        with pytest.raises(ValueError, match="quality must be an integer"):
            EnhancementSettings(quality="90")
        with pytest.raises(ValueError, match="width must be an integer"):
            EnhancementSettings(resize=True, width=12.5)
        with pytest.raises(ValueError, match="resize must be true or false"):
            EnhancementSettings(resize="yes")
        with pytest.raises(ValueError, match="Invalid format"):
            EnhancementSettings(format=["png"])

    def test_to_dict_carries_version(self) -> None:
        """Test that serialized settings are versioned."""
        data = EnhancementSettings(saturation=20).to_dict()
        assert data["version"] == SETTINGS_VERSION
        assert data["saturation"] == 20


class TestMigrateSettings:
    """Tests for migrate_settings function."""

    def test_version_one_keys_renamed(self) -> None:
        """Test that camelCase keys from version 1 are migrated."""
        migrated = migrate_settings(
            {"version": 1, "noiseReduction": 30, "maintainAspectRatio": False}
        )
        assert migrated == {"noise_reduction": 30, "maintain_aspect_ratio": False}

    def test_missing_version_is_version_one(self) -> None:
        """Test that unversioned files are treated as version 1."""
        assert migrate_settings({"noiseReduction": 10}) == {"noise_reduction": 10}

    def test_current_version_unchanged(self) -> None:
        """Test that current files pass through."""
        data = {"version": SETTINGS_VERSION, "noise_reduction": 5}
        assert migrate_settings(data) == {"noise_reduction": 5}

    def test_newer_version_rejected(self) -> None:
        """Test that files from a newer version are refused."""
        with pytest.raises(ValueError, match="newer"):
            migrate_settings({"version": SETTINGS_VERSION + 1})


class TestSettingsFromDict:
    """Tests for settings_from_dict function."""

    def test_unknown_keys_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test that unknown keys are dropped with a warning."""
        settings = settings_from_dict(
            {"version": SETTINGS_VERSION, "saturation": 10, "vignette": 5}
        )
        assert settings.saturation == 10
        assert "vignette" in caplog.text


class TestLoadSaveSettings:
    """Tests for load_settings and save_settings."""

    def test_round_trip(self, tmp_path: Path) -> None:
        """Test that saved settings load back unchanged."""
        path = tmp_path / "settings.json"
        settings = EnhancementSettings(brightness=10, format="png", resize=True)
        save_settings(settings, path)
        assert load_settings(path) == settings

    def test_load_desktop_settings(self, tmp_path: Path) -> None:
        """Test loading a version 1 file written by the desktop app."""
        path = tmp_path / "settings.json"
        path.write_text(
            json.dumps({"brightness": 5, "noiseReduction": 20, "format": "jpeg"})
        )
        settings = load_settings(path)
        assert settings.noise_reduction == 20
        assert settings.format == "jpeg"

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        """Test that malformed JSON raises ValueError."""
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="Invalid settings file"):
            load_settings(path)

    def test_load_non_object(self, tmp_path: Path) -> None:
        """Test that a JSON list is rejected."""
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            load_settings(path)

    def test_load_string_values(self, tmp_path: Path) -> None:
        """Test that quoted numbers in a settings file raise ValueError."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"version": SETTINGS_VERSION, "brightness": "10"}))
        with pytest.raises(ValueError, match="brightness"):
            load_settings(path)

    def test_load_non_integer_version(self, tmp_path: Path) -> None:
        """Test that a quoted version is rejected."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"version": "2", "brightness": 10}))
        with pytest.raises(ValueError, match="version"):
            load_settings(path)
