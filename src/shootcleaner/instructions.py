"""Enhancement instructions: one typed variant per known image operation."""

import logging
from dataclasses import dataclass, field
from typing import Union

logger = logging.getLogger(__name__)

# Output formats the pipeline can write, mapped to Pillow format names
OUTPUT_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "tiff": "TIFF",
    "webp": "WEBP",
}

# File extension written for each output format
FORMAT_EXTENSIONS = {
    "jpeg": ".jpg",
    "png": ".png",
    "tiff": ".tif",
    "webp": ".webp",
}

# The only format whose encoder takes a quality setting in this pipeline
LOSSY_FORMAT = "jpeg"


def format_number(value: float) -> str:
    """Render a number the way it appears in command parameters.

    Integral values drop the decimal point (2.0 -> "2"), others keep
    the shortest text that reads back as the same float
    (2 ** 0.5 -> "1.4142135623730951").
    """
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


@dataclass(frozen=True)
class BrightnessContrast:
    brightness: float = 0.0
    contrast: float = 0.0

    operation = "brightness-contrast"
    enhancement_type = "brightness_contrast"

    @property
    def params(self) -> list[str]:
        return [f"{format_number(self.brightness)}x{format_number(self.contrast)}"]


@dataclass(frozen=True)
class Modulate:
    """Brightness, saturation and hue as percentages (100 = unchanged)."""

    brightness: float = 100.0
    saturation: float = 100.0
    hue: float = 100.0

    operation = "modulate"
    enhancement_type = "saturation"

    @property
    def params(self) -> list[str]:
        values = (self.brightness, self.saturation, self.hue)
        return [",".join(format_number(v) for v in values)]


@dataclass(frozen=True)
class Evaluate:
    """Per-channel arithmetic; exposure is a ``multiply`` by 2^stops."""

    operator: str = "multiply"
    value: float = 1.0

    operation = "evaluate"
    enhancement_type = "exposure"

    @property
    def params(self) -> list[str]:
        return [self.operator, format_number(self.value)]


@dataclass(frozen=True)
class ShadowsHighlights:
    """Tone recovery; positive shadows lift darks, positive highlights pull brights."""

    shadows: float = 0.0
    highlights: float = 0.0

    operation = "shadows-highlights"
    enhancement_type = "tone"

    @property
    def params(self) -> list[str]:
        return [f"{format_number(self.shadows)}x{format_number(self.highlights)}"]


@dataclass(frozen=True)
class ColorMatrix:
    """Row-major 3x3 RGB matrix."""

    matrix: tuple[float, ...] = (1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0)

    operation = "color-matrix"
    enhancement_type = "color"

    def __post_init__(self) -> None:
        if len(self.matrix) != 9:
            raise ValueError(
                f"color-matrix needs 9 values, got {len(self.matrix)}"
            )

    @property
    def params(self) -> list[str]:
        return [" ".join(format_number(v) for v in self.matrix)]


@dataclass(frozen=True)
class Unsharp:
    radius: float = 1.0
    sigma: float = 1.0
    amount: float = 1.0
    threshold: float = 0.0

    operation = "unsharp"
    enhancement_type = "sharpness"

    @property
    def params(self) -> list[str]:
        return [
            f"{format_number(self.radius)}x{format_number(self.sigma)}"
            f"+{format_number(self.amount)}+{format_number(self.threshold)}"
        ]


@dataclass(frozen=True)
class Despeckle:
    operation = "despeckle"
    enhancement_type = "denoise"

    @property
    def params(self) -> list[str]:
        return []


@dataclass(frozen=True)
class Blur:
    """Gaussian blur with standard deviation ``sigma`` in pixels."""

    sigma: float = 1.0

    operation = "blur"
    enhancement_type = "blur"

    def __post_init__(self) -> None:
        if not self.sigma > 0:
            raise ValueError(f"Blur sigma must be positive: {self.sigma}")

    @property
    def params(self) -> list[str]:
        return [f"0x{format_number(self.sigma)}"]


@dataclass(frozen=True)
class SepiaTone:
    """Sepia toning; ``percent`` is the strength (0 leaves the image alone)."""

    percent: float = 80.0

    operation = "sepia-tone"
    enhancement_type = "sepia"

    def __post_init__(self) -> None:
        if not 0 <= self.percent <= 100:
            raise ValueError(f"Sepia percent must be between 0 and 100: {self.percent}")

    @property
    def params(self) -> list[str]:
        return [f"{format_number(self.percent)}%"]


@dataclass(frozen=True)
class Vignette:
    """Darkened edges.

    ``amount`` is how much the corners darken, in percent; the centre is
    untouched. ImageMagick receives it as the vignette sigma.
    """

    amount: float = 30.0

    operation = "vignette"
    enhancement_type = "vignette"

    def __post_init__(self) -> None:
        if not 0 < self.amount <= 100:
            raise ValueError(f"Vignette amount must be between 0 and 100: {self.amount}")

    @property
    def params(self) -> list[str]:
        return [f"0x{format_number(self.amount)}"]


@dataclass(frozen=True)
class Resize:
    """Resize to a bounding box.

    With ``maintain_aspect_ratio`` the image only ever shrinks to fit
    (``WxH>``); otherwise it is forced to exactly WxH (``WxH!``).
    """

    width: int
    height: int
    maintain_aspect_ratio: bool = True

    operation = "resize"
    enhancement_type = "resize"

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Resize dimensions must be positive: {self.width}x{self.height}"
            )

    @property
    def geometry(self) -> str:
        flag = ">" if self.maintain_aspect_ratio else "!"
        return f"{self.width}x{self.height}{flag}"

    @property
    def params(self) -> list[str]:
        return [self.geometry]


@dataclass(frozen=True)
class Format:
    name: str

    operation = "format"
    enhancement_type = "format"

    def __post_init__(self) -> None:
        if self.name not in OUTPUT_FORMATS:
            raise ValueError(f"Unsupported output format: {self.name}")

    @property
    def extension(self) -> str:
        return FORMAT_EXTENSIONS[self.name]

    @property
    def params(self) -> list[str]:
        return [self.name]


@dataclass(frozen=True)
class Quality:
    value: int

    operation = "quality"
    enhancement_type = "quality"

    def __post_init__(self) -> None:
        if not 1 <= self.value <= 100:
            raise ValueError(f"Quality must be between 1 and 100: {self.value}")

    @property
    def params(self) -> list[str]:
        return [str(self.value)]


@dataclass(frozen=True)
class AutoLevel:
    operation = "auto-level"
    enhancement_type = "auto_level"

    @property
    def params(self) -> list[str]:
        return []


@dataclass(frozen=True)
class Normalize:
    operation = "normalize"
    enhancement_type = "normalize"

    @property
    def params(self) -> list[str]:
        return []


@dataclass(frozen=True)
class UnknownOperation:
    """An operation this version does not know how to apply.

    Kept so recommendations from newer assistants round-trip instead of
    being dropped at parse time; the engine skips it with a warning.
    """

    name: str
    raw_params: tuple[str, ...] = field(default_factory=tuple)

    enhancement_type = "unknown"

    @property
    def operation(self) -> str:
        return self.name

    @property
    def params(self) -> list[str]:
        return list(self.raw_params)


Instruction = Union[
    BrightnessContrast,
    Modulate,
    Evaluate,
    ShadowsHighlights,
    ColorMatrix,
    Unsharp,
    Despeckle,
    Blur,
    SepiaTone,
    Vignette,
    Resize,
    Format,
    Quality,
    AutoLevel,
    Normalize,
    UnknownOperation,
]

KNOWN_OPERATIONS = {
    cls.operation: cls
    for cls in (
        BrightnessContrast,
        Modulate,
        Evaluate,
        ShadowsHighlights,
        ColorMatrix,
        Unsharp,
        Despeckle,
        Blur,
        SepiaTone,
        Vignette,
        Resize,
        Format,
        Quality,
        AutoLevel,
        Normalize,
    )
}


def is_known(instruction: Instruction) -> bool:
    return not isinstance(instruction, UnknownOperation)


def command_for(instruction: Instruction) -> str:
    """Textual command for an instruction, e.g. ``-modulate 100,120,100``."""
    if isinstance(instruction, ColorMatrix):
        # Matrix values are space separated and must stay one argument
        return f'-color-matrix "{instruction.params[0]}"'
    return " ".join([f"-{instruction.operation}", *instruction.params])


def to_dict(instruction: Instruction) -> dict[str, object]:
    """Serialize an instruction to the ``{"operation", "params"}`` shape."""
    return {"operation": instruction.operation, "params": instruction.params}
