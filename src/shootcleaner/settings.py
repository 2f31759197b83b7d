"""Enhancement settings: the user-adjustable sliders and output controls."""

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from shootcleaner.instructions import OUTPUT_FORMATS

logger = logging.getLogger(__name__)

SETTINGS_VERSION = 2

# Slider ranges (inclusive)
SLIDER_RANGES = {
    "brightness": (-100, 100),
    "contrast": (-100, 100),
    "saturation": (-100, 100),
    "exposure": (-5, 5),
    "highlights": (-100, 100),
    "shadows": (-100, 100),
    "temperature": (-100, 100),
    "tint": (-100, 100),
    "sharpening": (0, 100),
    "noise_reduction": (0, 100),
}

# Version 1 files were written by the desktop app with camelCase keys
_V1_KEY_MAP = {
    "noiseReduction": "noise_reduction",
    "maintainAspectRatio": "maintain_aspect_ratio",
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class EnhancementSettings:
    """Flat enhancement settings record.

    Every field defaults to its neutral value, so ``EnhancementSettings()``
    describes "leave the image alone". ``format=None`` keeps the source
    format.
    """

    brightness: float = 0
    contrast: float = 0
    saturation: float = 0
    exposure: float = 0
    highlights: float = 0
    shadows: float = 0
    temperature: float = 0
    tint: float = 0
    sharpening: float = 0
    noise_reduction: float = 0
    format: str | None = None
    quality: int = 90
    resize: bool = False
    width: int = 1920
    height: int = 1080
    maintain_aspect_ratio: bool = True

    def __post_init__(self) -> None:
        for name, (low, high) in SLIDER_RANGES.items():
            value = getattr(self, name)
            if not _is_number(value):
                raise ValueError(f"{name} must be a number: {value!r}")
            if not low <= value <= high:
                raise ValueError(f"{name} must be between {low} and {high}: {value}")

        if self.format is not None and (
            not isinstance(self.format, str) or self.format not in OUTPUT_FORMATS
        ):
            raise ValueError(
                f"Invalid format: {self.format} "
                f"(expected one of {', '.join(sorted(OUTPUT_FORMATS))})"
            )

        for name in ("quality", "width", "height"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer: {value!r}")

        for name in ("resize", "maintain_aspect_ratio"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ValueError(f"{name} must be true or false: {value!r}")

        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be between 1 and 100: {self.quality}")

        if self.resize and (self.width <= 0 or self.height <= 0):
            raise ValueError(
                f"Resize dimensions must be positive: {self.width}x{self.height}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {"version": SETTINGS_VERSION, **asdict(self)}


def migrate_settings(data: dict[str, Any]) -> dict[str, Any]:
    """Bring a settings mapping up to the current version.

    Files without a ``version`` key are treated as version 1.
    """
    data = dict(data)
    version = data.pop("version", 1)

    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"Settings version must be an integer: {version!r}")

    if version > SETTINGS_VERSION:
        raise ValueError(
            f"Settings version {version} is newer than supported "
            f"({SETTINGS_VERSION})"
        )

    if version == 1:
        logger.debug("Migrating settings from version 1")
        data = {_V1_KEY_MAP.get(key, key): value for key, value in data.items()}

    return data


def settings_from_dict(data: dict[str, Any]) -> EnhancementSettings:
    """Build settings from a (possibly old) mapping, ignoring unknown keys."""
    data = migrate_settings(data)
    known = {f.name for f in fields(EnhancementSettings)}

    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown settings keys: {', '.join(unknown)}")

    return EnhancementSettings(**{k: v for k, v in data.items() if k in known})


def load_settings(path: Path) -> EnhancementSettings:
    """Load settings from a JSON file.

    Raises:
        ValueError: If the file is not valid JSON or holds invalid values
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid settings file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Settings file must contain a JSON object: {path}")

    return settings_from_dict(data)


def save_settings(settings: EnhancementSettings, path: Path) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings.to_dict(), f, indent=2)
    logger.info(f"Settings written to: {path}")
