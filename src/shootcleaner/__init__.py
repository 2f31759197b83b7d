"""ShootCleaner - batch photo culling and enhancement."""

__version__ = "0.1.0"

from shootcleaner.compiler import compile_recommendations, compile_settings
from shootcleaner.discovery import discover_images, read_exif
from shootcleaner.engine import BatchEngine, CancelToken, EnhancementJob, create_jobs
from shootcleaner.executor import MagickExecutor, PillowExecutor
from shootcleaner.report import generate_report
from shootcleaner.settings import EnhancementSettings, load_settings

__all__ = [
    "EnhancementSettings",
    "load_settings",
    "compile_settings",
    "compile_recommendations",
    "discover_images",
    "read_exif",
    "create_jobs",
    "EnhancementJob",
    "BatchEngine",
    "CancelToken",
    "PillowExecutor",
    "MagickExecutor",
    "generate_report",
]
