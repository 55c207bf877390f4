"""PDF/A conversion pipeline with size-constrained splitting."""

from .broadcast import SessionRegistry
from .config import AppConfig, load_config
from .core import ConversionError, ConversionService
from .engine import DocumentEngine, EngineError, SubprocessEngine
from .jobs import JobManager
from .models import BatchResult, ConvertedFileResult, PageRange, SourceFile

__all__ = [
    "AppConfig",
    "BatchResult",
    "ConversionError",
    "ConversionService",
    "ConvertedFileResult",
    "DocumentEngine",
    "EngineError",
    "JobManager",
    "PageRange",
    "SessionRegistry",
    "SourceFile",
    "SubprocessEngine",
    "load_config",
]
