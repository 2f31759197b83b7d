"""Instruction compiler: settings records and AI recommendations to instructions."""

import logging
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import fields
from typing import Any

from shootcleaner.instructions import (
    KNOWN_OPERATIONS,
    LOSSY_FORMAT,
    Blur,
    BrightnessContrast,
    ColorMatrix,
    Despeckle,
    Evaluate,
    Format,
    Instruction,
    Modulate,
    Quality,
    Resize,
    SepiaTone,
    ShadowsHighlights,
    UnknownOperation,
    Unsharp,
    Vignette,
    is_known,
)
from shootcleaner.settings import EnhancementSettings

logger = logging.getLogger(__name__)

# Free-text words that are just one settings slider
SLIDER_WORDS = {
    "brightness": "brightness",
    "contrast": "contrast",
    "saturation": "saturation",
    "exposure": "exposure",
    "highlights": "highlights",
    "shadows": "shadows",
    "temperature": "temperature",
    "tint": "tint",
    "sharpening": "sharpening",
    "noise-reduction": "noise_reduction",
}

FORMAT_ALIASES = {"jpg": "jpeg", "tif": "tiff"}

OPERATION_ALIASES = {"sepia": "sepia-tone"}

# Known operations that may be recommended without parameters
DEFAULTED_OPERATIONS = {
    "despeckle",
    "auto-level",
    "normalize",
    "blur",
    "sepia-tone",
    "vignette",
}

_UNSHARP_RE = re.compile(
    r"^(?P<radius>[\d.]+)(?:x(?P<sigma>[\d.]+))?"
    r"(?:\+(?P<amount>[\d.]+))?(?:\+(?P<threshold>[\d.]+))?$"
)
_GEOMETRY_RE = re.compile(r"^(?P<width>\d+)x(?P<height>\d+)(?P<flag>[>!]?)$")


def _round(value: float) -> float:
    return round(value, 4)


def compile_settings(settings: EnhancementSettings) -> list[Instruction]:
    """Compile a settings record into an ordered instruction list.

    Only dimensions that differ from neutral produce an instruction, so
    default settings compile to an empty list. The result depends on
    nothing but ``settings``.
    """
    instructions: list[Instruction] = []

    if settings.brightness != 0 or settings.contrast != 0:
        instructions.append(
            BrightnessContrast(settings.brightness, settings.contrast)
        )

    if settings.saturation != 0:
        instructions.append(Modulate(100, 100 + settings.saturation, 100))

    if settings.exposure != 0:
        # Stops of exposure: +1 doubles, -1 halves
        instructions.append(Evaluate("multiply", 2.0 ** settings.exposure))

    if settings.shadows != 0 or settings.highlights != 0:
        instructions.append(ShadowsHighlights(settings.shadows, settings.highlights))

    if settings.temperature != 0 or settings.tint != 0:
        red = _round(1 + settings.temperature / 200)
        green = _round(1 - settings.tint / 200)
        blue = _round(1 - settings.temperature / 200)
        instructions.append(
            ColorMatrix((red, 0, 0, 0, green, 0, 0, 0, blue))
        )

    if settings.sharpening > 0:
        instructions.append(
            Unsharp(
                radius=_round(settings.sharpening / 100 * 2),
                sigma=1,
                amount=_round(settings.sharpening / 100),
                threshold=0,
            )
        )

    if settings.noise_reduction > 0:
        instructions.append(Despeckle())

    if settings.resize:
        instructions.append(
            Resize(settings.width, settings.height, settings.maintain_aspect_ratio)
        )

    if settings.format is not None:
        instructions.append(Format(settings.format))
        if settings.format == LOSSY_FORMAT:
            instructions.append(Quality(settings.quality))

    logger.debug(f"Compiled settings into {len(instructions)} instructions")
    return instructions


def _number(text: Any) -> float:
    if isinstance(text, bool):
        raise ValueError(f"Expected a number, got {text!r}")
    value = float(str(text).strip().rstrip("%"))
    if not math.isfinite(value):
        raise ValueError(f"Expected a finite number, got {text!r}")
    return value


def _integer(text: Any) -> int:
    value = _number(text)
    if not value.is_integer():
        raise ValueError(f"Expected a whole number, got {text!r}")
    return int(value)


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "yes", "1"}:
        return True
    if text in {"false", "no", "0"}:
        return False
    raise ValueError(f"Expected true or false, got {value!r}")


def _sigma(text: str) -> float:
    # Accepts "2" or ImageMagick's "0x2" radius-by-sigma geometry
    _, _, sigma = text.rpartition("x")
    return _number(sigma)


def _from_params(operation: str, params: list[str]) -> Instruction:
    """Build a known instruction from its textual parameter list."""
    if operation == "brightness-contrast":
        brightness, _, contrast = params[0].partition("x")
        return BrightnessContrast(_number(brightness), _number(contrast or 0))

    if operation == "modulate":
        values = [_number(v) for v in params[0].split(",")]
        values += [100.0] * (3 - len(values))
        return Modulate(*values[:3])

    if operation == "evaluate":
        return Evaluate(params[0].lower(), _number(params[1]))

    if operation == "shadows-highlights":
        shadows, _, highlights = params[0].partition("x")
        return ShadowsHighlights(_number(shadows), _number(highlights or 0))

    if operation == "color-matrix":
        values = re.split(r"[\s,]+", " ".join(params).strip())
        return ColorMatrix(tuple(_number(v) for v in values))

    if operation == "unsharp":
        match = _UNSHARP_RE.match(params[0])
        if not match:
            raise ValueError(f"Invalid unsharp geometry: {params[0]}")
        return Unsharp(
            radius=_number(match["radius"]),
            sigma=_number(match["sigma"] or 1),
            amount=_number(match["amount"] or 1),
            threshold=_number(match["threshold"] or 0),
        )

    if operation == "blur":
        return Blur(_sigma(params[0]))

    if operation == "sepia-tone":
        return SepiaTone(_number(params[0]))

    if operation == "vignette":
        return Vignette(_sigma(params[0]))

    if operation == "resize":
        return _parse_geometry(params[0])

    if operation == "format":
        name = params[0].lower()
        return Format(FORMAT_ALIASES.get(name, name))

    if operation == "quality":
        return Quality(_integer(params[0]))

    # Parameterless operations
    return KNOWN_OPERATIONS[operation]()


def _parse_geometry(text: str) -> Resize:
    match = _GEOMETRY_RE.match(text.strip())
    if not match:
        raise ValueError(f"Invalid resize geometry: {text}")
    return Resize(
        int(match["width"]),
        int(match["height"]),
        maintain_aspect_ratio=match["flag"] != "!",
    )


def _coerce(value: Any, kind: Any) -> Any:
    """Convert one keyword parameter to the type its field declares."""
    if kind is float:
        return _number(value)
    if kind is int:
        return _integer(value)
    if kind is bool:
        return _flag(value)
    if kind is str:
        if not isinstance(value, str):
            raise ValueError(f"Expected text, got {value!r}")
        return value.strip().lower()
    # The only tuple field is the color matrix
    if isinstance(value, str):
        value = re.split(r"[\s,]+", value.strip())
    return tuple(_number(v) for v in value)


def _from_parameters(operation: str, parameters: Mapping[str, Any]) -> Instruction:
    """Build a known instruction from a keyword mapping."""
    cls = KNOWN_OPERATIONS[operation]
    kwargs = {
        f.name: _coerce(parameters[f.name], f.type)
        for f in fields(cls)
        if f.name in parameters
    }
    if cls is Format and "name" in kwargs:
        kwargs["name"] = FORMAT_ALIASES.get(kwargs["name"], kwargs["name"])
    return cls(**kwargs)


def _from_legacy(operation: str, parameters: Mapping[str, Any]) -> list[Instruction] | None:
    """Operation names used by earlier versions of the culling assistant."""
    if operation == "brighten":
        return [BrightnessContrast(_number(parameters.get("brightness", 10)), 0)]
    if operation == "contrast":
        return [BrightnessContrast(0, _number(parameters.get("amount", 10)))]
    if operation == "sharpen":
        return [Unsharp(radius=0, sigma=_number(parameters.get("amount", 1)))]
    if operation == "denoise":
        return [Despeckle()]
    if operation == "enhance":
        result: list[Instruction] = [
            BrightnessContrast(
                _number(parameters.get("brightness", 0)),
                _number(parameters.get("contrast", 0)),
            )
        ]
        sharpness = _number(parameters.get("sharpness", 0))
        if sharpness:
            result.append(Unsharp(radius=0, sigma=sharpness))
        return result
    if operation in SLIDER_WORDS:
        value = parameters.get("amount", parameters.get("value"))
        if value is None:
            raise ValueError(f"Missing value for {operation}")
        settings = EnhancementSettings(**{SLIDER_WORDS[operation]: _number(value)})
        return compile_settings(settings)
    return None


def _from_text(text: str) -> list[Instruction]:
    """Parse a free-text instruction such as ``"saturation -15"``."""
    parts = text.strip().lower().split()
    if not parts:
        return []

    word, args = OPERATION_ALIASES.get(parts[0], parts[0]), parts[1:]

    if word in SLIDER_WORDS:
        if not args:
            raise ValueError(f"Missing value for {word}")
        settings = EnhancementSettings(**{SLIDER_WORDS[word]: _number(args[0])})
        return compile_settings(settings)

    if word in {"sharpen", "denoise", "brighten"}:
        parameters = {"amount": args[0], "brightness": args[0]} if args else {}
        return _from_legacy(word, parameters) or []

    if word in KNOWN_OPERATIONS:
        return [_from_params(word, args) if args else KNOWN_OPERATIONS[word]()]

    return [UnknownOperation(word, tuple(args))]


def parse_recommendation(item: Any) -> list[Instruction]:
    """Convert one externally supplied recommendation into instructions.

    Accepts an instruction object, a free-text string, or a mapping with an
    ``operation`` key plus either a ``params`` list or a ``parameters``
    mapping. Unrecognised operations come back as ``UnknownOperation``;
    malformed parameters for a known operation raise ``ValueError``.
    """
    if isinstance(item, str):
        try:
            return _from_text(item)
        except (ValueError, IndexError, TypeError) as e:
            raise ValueError(f"Malformed instruction {item!r}: {e}") from e

    if not isinstance(item, Mapping):
        if isinstance(item, tuple(KNOWN_OPERATIONS.values()) + (UnknownOperation,)):
            return [item]
        raise ValueError(f"Unsupported recommendation type: {type(item).__name__}")

    operation = str(item.get("operation", "")).strip().lower()
    operation = OPERATION_ALIASES.get(operation, operation)
    if not operation:
        raise ValueError(f"Recommendation has no operation: {item!r}")

    params = [str(p) for p in item.get("params") or []]
    parameters = item.get("parameters") or {}
    if not isinstance(parameters, Mapping):
        raise ValueError(
            f"Malformed {operation} instruction: parameters must be an object"
        )

    try:
        if operation in KNOWN_OPERATIONS:
            if parameters and not params:
                return [_from_parameters(operation, parameters)]
            if not params and operation not in DEFAULTED_OPERATIONS:
                raise ValueError("missing params")
            return [_from_params(operation, params)]

        legacy = _from_legacy(operation, parameters)
        if legacy is not None:
            return legacy
    except (ValueError, IndexError, TypeError) as e:
        raise ValueError(f"Malformed {operation} instruction: {e}") from e

    return [UnknownOperation(operation, tuple(params))]


def compile_recommendations(items: Iterable[Any]) -> list[Instruction]:
    """Compile a list of AI recommendations, dropping what cannot be applied.

    Unknown operations and malformed entries are skipped with a warning so
    one odd recommendation never discards the rest.
    """
    instructions: list[Instruction] = []

    for item in items:
        try:
            parsed = parse_recommendation(item)
        except ValueError as e:
            logger.warning(f"Skipping instruction: {e}")
            continue

        for instruction in parsed:
            if not is_known(instruction):
                logger.warning(f"Skipping unknown operation: {instruction.operation}")
                continue
            instructions.append(instruction)

    return instructions
