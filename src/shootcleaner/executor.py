"""Executors: apply one instruction to one image file.

An executor turns ``(instruction, input_path, output_path)`` into a
``StepOutcome``. Executors never raise; every failure comes back as an
unsuccessful outcome so the batch engine can isolate it to one job.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from shootcleaner.discovery import open_image
from shootcleaner.instructions import (
    OUTPUT_FORMATS,
    AutoLevel,
    Blur,
    BrightnessContrast,
    ColorMatrix,
    Despeckle,
    Evaluate,
    Format,
    Instruction,
    Modulate,
    Normalize,
    Quality,
    Resize,
    SepiaTone,
    ShadowsHighlights,
    Unsharp,
    Vignette,
    command_for,
)

logger = logging.getLogger(__name__)

# Quality used when an intermediate JPEG is written without a quality step
DEFAULT_SAVE_QUALITY = 95

# Largest tone shift (in 0-255 levels) a +/-100 shadows or highlights value applies
TONE_SHIFT = 64

# Sepia ramp from shadows to highlights
SEPIA_DARK = (40, 26, 13)
SEPIA_LIGHT = (255, 230, 180)


@dataclass(frozen=True)
class StepOutcome:
    success: bool
    output_path: Path | None = None
    error: str | None = None


class Executor(Protocol):
    def execute(
        self, instruction: Instruction, input_path: Path, output_path: Path
    ) -> StepOutcome:
        ...


def _check_output(output_path: Path) -> StepOutcome:
    if output_path.exists():
        return StepOutcome(success=True, output_path=output_path)
    return StepOutcome(success=False, error="Output file not created")


def _clamp(value: float) -> int:
    return max(0, min(255, int(round(value))))


def _lut(func) -> list[int]:
    return [_clamp(func(level)) for level in range(256)]


def _evaluate_lut(operator: str, value: float) -> list[int]:
    if operator == "multiply":
        return _lut(lambda x: x * value)
    if operator == "divide":
        if value == 0:
            raise ValueError("evaluate divide by zero")
        return _lut(lambda x: x / value)
    if operator == "add":
        return _lut(lambda x: x + value)
    if operator == "subtract":
        return _lut(lambda x: x - value)
    if operator == "pow":
        return _lut(lambda x: 255 * (x / 255) ** value)
    raise ValueError(f"Unsupported evaluate operator: {operator}")


def _tone_lut(shadows: float, highlights: float) -> list[int]:
    """Tone curve lifting darks and pulling brights, leaving midtones close."""

    def curve(x: float) -> float:
        position = x / 255
        lift = shadows / 100 * TONE_SHIFT * (1 - position) ** 2
        pull = highlights / 100 * TONE_SHIFT * position**2
        return x + lift - pull

    return _lut(curve)


def _shift_hue(img: Image.Image, hue: float) -> Image.Image:
    # 100 is unchanged; 0 and 200 are a half turn either way
    shift = int(round((hue - 100) / 200 * 256))
    h, s, v = img.convert("HSV").split()
    h = h.point(lambda x: (x + shift) % 256)
    return Image.merge("HSV", (h, s, v)).convert("RGB")


def _sepia(img: Image.Image, percent: float) -> Image.Image:
    toned = ImageOps.colorize(ImageOps.grayscale(img), SEPIA_DARK, SEPIA_LIGHT)
    return Image.blend(img, toned, percent / 100)


def _vignette(img: Image.Image, amount: float) -> Image.Image:
    # radial_gradient is 0 in the centre and 255 at the edge midpoints
    mask = Image.radial_gradient("L").resize(img.size, Image.Resampling.BILINEAR)
    darkened = ImageEnhance.Brightness(img).enhance(1 - amount / 100)
    return Image.composite(darkened, img, mask)


def apply_instruction(img: Image.Image, instruction: Instruction) -> Image.Image:
    """Apply a single instruction to an RGB image and return the new image.

    ``Format`` and ``Quality`` only affect how the result is saved and
    return the image unchanged.

    Raises:
        ValueError: If the instruction cannot be applied
    """
    if isinstance(instruction, BrightnessContrast):
        img = ImageEnhance.Brightness(img).enhance(1 + instruction.brightness / 100)
        return ImageEnhance.Contrast(img).enhance(1 + instruction.contrast / 100)

    if isinstance(instruction, Modulate):
        img = ImageEnhance.Brightness(img).enhance(instruction.brightness / 100)
        img = ImageEnhance.Color(img).enhance(instruction.saturation / 100)
        if instruction.hue != 100:
            img = _shift_hue(img, instruction.hue)
        return img

    if isinstance(instruction, Evaluate):
        lut = _evaluate_lut(instruction.operator, instruction.value)
        return img.point(lut * len(img.getbands()))

    if isinstance(instruction, ShadowsHighlights):
        lut = _tone_lut(instruction.shadows, instruction.highlights)
        return img.point(lut * len(img.getbands()))

    if isinstance(instruction, ColorMatrix):
        m = instruction.matrix
        matrix = (m[0], m[1], m[2], 0, m[3], m[4], m[5], 0, m[6], m[7], m[8], 0)
        return img.convert("RGB", matrix)

    if isinstance(instruction, Unsharp):
        # A zero radius means "derive from sigma"
        radius = instruction.radius or instruction.sigma
        return img.filter(
            ImageFilter.UnsharpMask(
                radius=radius,
                percent=int(round(instruction.amount * 100)),
                threshold=int(instruction.threshold),
            )
        )

    if isinstance(instruction, Despeckle):
        return img.filter(ImageFilter.MedianFilter(size=3))

    if isinstance(instruction, Blur):
        return img.filter(ImageFilter.GaussianBlur(radius=instruction.sigma))

    if isinstance(instruction, SepiaTone):
        return _sepia(img, instruction.percent)

    if isinstance(instruction, Vignette):
        return _vignette(img, instruction.amount)

    if isinstance(instruction, Resize):
        size = (instruction.width, instruction.height)
        if instruction.maintain_aspect_ratio:
            # Fit inside the box, never enlarge
            result = img.copy()
            result.thumbnail(size, Image.Resampling.LANCZOS)
            return result
        return img.resize(size, Image.Resampling.LANCZOS)

    if isinstance(instruction, AutoLevel):
        return ImageOps.autocontrast(img)

    if isinstance(instruction, Normalize):
        return ImageOps.autocontrast(img, cutoff=(2, 1))

    if isinstance(instruction, (Format, Quality)):
        return img

    raise ValueError(f"Cannot apply operation: {instruction.operation}")


def _save_format(instruction: Instruction, output_path: Path) -> str:
    if isinstance(instruction, Format):
        return OUTPUT_FORMATS[instruction.name]
    extension = output_path.suffix.lower()
    format_name = Image.registered_extensions().get(extension)
    if format_name is None:
        raise ValueError(f"Cannot determine output format for {output_path.name}")
    return format_name


class PillowExecutor:
    """Apply instructions in-process with Pillow."""

    def __init__(self, default_quality: int = DEFAULT_SAVE_QUALITY) -> None:
        self.default_quality = default_quality

    def execute(
        self, instruction: Instruction, input_path: Path, output_path: Path
    ) -> StepOutcome:
        command = type(instruction).__name__

        try:
            command = command_for(instruction)
            logger.debug(f"Applying {command}: {input_path} -> {output_path}")

            with open_image(input_path) as source:
                source.load()
                exif = source.info.get("exif")
                alpha = source.getchannel("A") if source.mode == "RGBA" else None
                img = source.convert("RGB")

            result = apply_instruction(img, instruction)
            format_name = _save_format(instruction, output_path)

            if alpha is not None and format_name in {"PNG", "TIFF", "WEBP"}:
                if alpha.size != result.size:
                    alpha = alpha.resize(result.size, Image.Resampling.LANCZOS)
                result.putalpha(alpha)

            save_kwargs: dict[str, object] = {"format": format_name}
            if format_name in {"JPEG", "WEBP"}:
                save_kwargs["quality"] = (
                    instruction.value
                    if isinstance(instruction, Quality)
                    else self.default_quality
                )
            if exif and format_name in {"JPEG", "PNG", "WEBP"}:
                save_kwargs["exif"] = exif

            output_path.parent.mkdir(parents=True, exist_ok=True)
            result.save(output_path, **save_kwargs)

        except Exception as e:
            logger.error(f"Failed to apply {command} to {input_path}: {e}")
            return StepOutcome(success=False, error=str(e) or type(e).__name__)

        return _check_output(output_path)


class MagickExecutor:
    """Apply instructions by running the ImageMagick ``magick`` command."""

    def __init__(self, binary: str = "magick") -> None:
        self.binary = binary

    def build_args(
        self, instruction: Instruction, input_path: Path, output_path: Path
    ) -> list[str]:
        return [
            self.binary,
            str(input_path),
            *shlex.split(command_for(instruction)),
            str(output_path),
        ]

    def execute(
        self, instruction: Instruction, input_path: Path, output_path: Path
    ) -> StepOutcome:
        try:
            args = self.build_args(instruction, input_path, output_path)
            logger.debug(f"Running: {shlex.join(args)}")
            output_path.parent.mkdir(parents=True, exist_ok=True)
            completed = subprocess.run(
                args, capture_output=True, text=True, check=False
            )
        except OSError as e:
            logger.error(f"Failed to run {self.binary}: {e}")
            return StepOutcome(success=False, error=str(e))
        except Exception as e:
            logger.error(f"Cannot build {self.binary} command for {input_path}: {e}")
            return StepOutcome(success=False, error=str(e) or type(e).__name__)

        if completed.returncode != 0:
            error = completed.stderr.strip() or f"exit status {completed.returncode}"
            logger.error(f"ImageMagick error for {input_path}: {error}")
            return StepOutcome(success=False, error=error)

        if completed.stderr:
            logger.warning(f"ImageMagick warning: {completed.stderr.strip()}")

        return _check_output(output_path)
