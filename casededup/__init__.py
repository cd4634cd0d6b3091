"""Case Dedup Engine - deterministic deduplication of generated test cases."""

__version__ = "0.1.0"

from .core.types import TestCaseRecord, Step, DedupMetadata
from .config import DedupConfig
from .service import DedupService

__all__ = ["TestCaseRecord", "Step", "DedupMetadata", "DedupConfig", "DedupService", "__version__"]
