"""turn-capture: chat turn capture, log ingestion, and daily compaction."""

from .config import load_config
from .core.compactor import CompactionJob
from .core.correlator import TurnCorrelator
from .core.writer import LogWriter
from .types import (
    CompactionResult,
    LegacyEventRecord,
    PendingTurn,
    TurnCaptureConfig,
    TurnRecord,
)

__version__ = "0.1.0"

__all__ = [
    "CompactionJob",
    "LogWriter",
    "TurnCorrelator",
    "load_config",
    "CompactionResult",
    "LegacyEventRecord",
    "PendingTurn",
    "TurnCaptureConfig",
    "TurnRecord",
]
