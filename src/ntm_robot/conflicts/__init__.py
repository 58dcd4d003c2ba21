"""Conflict detection between concurrent agents."""

from .detector import (
    ConflictDetector,
    find_likely_modifiers,
    find_reservation_holders,
    find_reservation_overlaps,
    parse_porcelain,
    score_conflict,
    summarize_conflicts,
)
from .models import (
    ActivityWindow,
    ChangeKind,
    ConfidenceLevel,
    ConflictReason,
    ConflictReport,
    DetectedConflict,
    FileChange,
    GitFileStatus,
    Reservation,
    confidence_level,
)
from .patterns import match_pattern

__all__ = [
    "ActivityWindow",
    "ChangeKind",
    "ConfidenceLevel",
    "ConflictDetector",
    "ConflictReason",
    "ConflictReport",
    "DetectedConflict",
    "FileChange",
    "GitFileStatus",
    "Reservation",
    "confidence_level",
    "find_likely_modifiers",
    "find_reservation_holders",
    "find_reservation_overlaps",
    "match_pattern",
    "parse_porcelain",
    "score_conflict",
    "summarize_conflicts",
]
