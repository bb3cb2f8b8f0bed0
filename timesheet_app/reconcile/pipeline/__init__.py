"""
Reconciliation pipeline: row decoding, entity resolution, shift extraction,
row persistence, approval and notification gating.
"""

from .approval import ApprovalService
from .cache import LookupCache
from .column_map import ColumnEntry, ColumnMapStore, SentinelPositions, build_entries, locate_sentinels
from .matching import name_similarity, normalize_name
from .notifications import (
    JobPerformance,
    NotificationDecision,
    NotificationGate,
    NotificationSender,
    PerformanceCalculator,
    compute_performance,
)
from .resolver import EntityResolver
from .row_service import RowReconciliationService
from .rows import decode_row, transform_row
from .shifts import ExtractionResult, ShiftExtractor

__all__ = [
    "ApprovalService",
    "ColumnEntry",
    "ColumnMapStore",
    "EntityResolver",
    "ExtractionResult",
    "JobPerformance",
    "LookupCache",
    "NotificationDecision",
    "NotificationGate",
    "NotificationSender",
    "PerformanceCalculator",
    "RowReconciliationService",
    "SentinelPositions",
    "ShiftExtractor",
    "build_entries",
    "compute_performance",
    "decode_row",
    "locate_sentinels",
    "name_similarity",
    "normalize_name",
    "transform_row",
]
