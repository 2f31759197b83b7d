"""Finding source images and reading their camera metadata."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from PIL import ExifTags, Image

logger = logging.getLogger(__name__)

# HEIC support
try:
    import pillow_heif

    pillow_heif.register_heif_opener()
    HEIC_SUPPORTED = True
except ImportError:
    HEIC_SUPPORTED = False
    logger.warning("pillow-heif not installed, HEIC images will be skipped")

# Camera RAW support
try:
    import rawpy

    RAW_SUPPORTED = True
except ImportError:
    rawpy = None
    RAW_SUPPORTED = False
    logger.warning("rawpy not installed, RAW images will be skipped")

# Formats the enhancement pipeline can read and write
SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".tif", ".tiff", ".webp", ".heic"}

# Camera RAW formats, decoded with rawpy and written out as TIFF
RAW_EXTENSIONS = {
    ".cr2",
    ".cr3",
    ".crw",
    ".nef",
    ".arw",
    ".raf",
    ".dng",
    ".pef",
    ".orf",
    ".rw2",
    ".srw",
}

# Minimum file size to avoid thumbnails and tiny images (20KB)
MIN_FILE_SIZE = 20 * 1024

# Directory patterns to exclude
EXCLUDED_DIRS = {"_cache", "__MACOSX", "thumbnails", ".thumbnails", "enhanced"}


def is_raw(path: Path) -> bool:
    return path.suffix.lower() in RAW_EXTENSIONS


def is_supported(path: Path) -> bool:
    suffix = path.suffix.lower()
    if suffix == ".heic" and not HEIC_SUPPORTED:
        return False
    if suffix in RAW_EXTENSIONS:
        return RAW_SUPPORTED
    return suffix in SUPPORTED_EXTENSIONS


def open_image(path: Path) -> Image.Image:
    """Open an image for reading, demosaicing camera RAW files.

    RAW files are developed with the camera white balance into an 8-bit
    RGB image; everything else goes through ``Image.open``.

    Raises:
        ValueError: If ``path`` is a RAW file and rawpy is not installed
    """
    if not is_raw(path):
        return Image.open(path)

    if rawpy is None:
        raise ValueError(f"Cannot decode {path.name}: install rawpy for RAW support")

    with rawpy.imread(str(path)) as raw:
        rgb = raw.postprocess(use_camera_wb=True, output_bps=8)
    return Image.fromarray(rgb)


def discover_images(
    path: Path, recursive: bool = False, max_images: int | None = None
) -> list[Path]:
    """Find all supported images in a directory.

    Excludes cache and output folders and files under ``MIN_FILE_SIZE``.
    A single image file is accepted as-is.

    Args:
        path: Directory (or single image) to search
        recursive: If True, search subdirectories
        max_images: Optional limit on number of images to return

    Returns:
        List of image paths, newest first

    Raises:
        ValueError: If path doesn't exist or is an unsupported file
        PermissionError: If directory cannot be read
    """
    if not path.exists():
        raise ValueError(f"Path does not exist: {path}")

    if path.is_file():
        if not is_supported(path):
            raise ValueError(f"Unsupported image format: {path.name}")
        return [path]

    logger.info(f"Discovering images in: {path} (recursive={recursive})")

    images: list[Path] = []
    pattern = "**/*" if recursive else "*"

    try:
        for file_path in path.glob(pattern):
            if not file_path.is_file():
                continue

            relative_parts = file_path.relative_to(path).parts
            if any(excluded in relative_parts for excluded in EXCLUDED_DIRS):
                logger.debug(f"Skipping (excluded dir): {file_path}")
                continue

            if not is_supported(file_path):
                continue

            try:
                size = file_path.stat().st_size
            except OSError as e:
                logger.warning(f"Cannot stat file {file_path}: {e}")
                continue

            if size < MIN_FILE_SIZE:
                logger.debug(f"Skipping (too small): {file_path} ({size} bytes)")
                continue

            images.append(file_path)

            if max_images and len(images) >= max_images:
                logger.info(f"Reached max_images limit: {max_images}")
                break

    except PermissionError:
        logger.error(f"Permission denied reading directory: {path}")
        raise

    images.sort(key=lambda p: p.stat().st_mtime, reverse=True)

    logger.info(f"Discovered {len(images)} images")
    return images


def get_image_stats(images: list[Path]) -> dict[str, Any]:
    """Summarize a list of images: count, sizes and count per extension."""
    if not images:
        return {
            "total": 0,
            "total_size_mb": 0.0,
            "avg_size_mb": 0.0,
            "by_extension": {},
        }

    total_size_mb = sum(img.stat().st_size for img in images) / (1024 * 1024)

    by_extension: dict[str, int] = {}
    for img in images:
        ext = img.suffix.lower()
        by_extension[ext] = by_extension.get(ext, 0) + 1

    return {
        "total": len(images),
        "total_size_mb": round(total_size_mb, 2),
        "avg_size_mb": round(total_size_mb / len(images), 2),
        "by_extension": by_extension,
    }


def format_shutter_speed(exposure_time: float | None) -> str:
    """Format an exposure time in seconds for display (``1/250s``, ``2s``)."""
    if not exposure_time:
        return "Unknown"
    if exposure_time >= 1:
        return f"{exposure_time:g}s"
    return f"1/{round(1 / exposure_time)}s"


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def read_exif(path: Path) -> dict[str, Any]:
    """Read camera metadata from an image.

    Missing tags come back as ``"Unknown"`` (or 0 for numbers); an
    unreadable file yields the same defaults rather than an error.
    """
    metadata: dict[str, Any] = {
        "camera": "Unknown",
        "lens": "Unknown",
        "iso": 0,
        "aperture": "Unknown",
        "shutter": "Unknown",
        "focal": "Unknown",
        "date": None,
        "width": 0,
        "height": 0,
    }

    try:
        with Image.open(path) as img:
            metadata["width"], metadata["height"] = img.size
            exif = img.getexif()
            tags = {ExifTags.TAGS.get(k, k): v for k, v in exif.items()}
            sub_ifd = exif.get_ifd(ExifTags.IFD.Exif)
            tags.update({ExifTags.TAGS.get(k, k): v for k, v in sub_ifd.items()})
    except Exception as e:
        logger.warning(f"Failed to extract EXIF from {path}: {e}")
        return metadata

    make = str(tags.get("Make", "")).strip()
    model = str(tags.get("Model", "")).strip()
    if model:
        metadata["camera"] = model if model.startswith(make) else f"{make} {model}".strip()

    if tags.get("LensModel"):
        metadata["lens"] = str(tags["LensModel"]).strip()

    iso = tags.get("ISOSpeedRatings") or tags.get("PhotographicSensitivity")
    if isinstance(iso, tuple):
        iso = iso[0] if iso else None
    if iso:
        metadata["iso"] = int(iso)

    f_number = _as_float(tags.get("FNumber"))
    if f_number:
        metadata["aperture"] = f"f/{f_number:g}"

    metadata["shutter"] = format_shutter_speed(_as_float(tags.get("ExposureTime")))

    focal = _as_float(tags.get("FocalLength"))
    if focal:
        metadata["focal"] = f"{focal:g}mm"

    taken = tags.get("DateTimeOriginal") or tags.get("DateTime")
    if taken:
        try:
            metadata["date"] = datetime.strptime(
                str(taken), "%Y:%m:%d %H:%M:%S"
            ).isoformat()
        except ValueError:
            metadata["date"] = str(taken)

    return metadata
