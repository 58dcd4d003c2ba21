"""Activity classification and pane border indicators."""

from .classifier import ActivityClassifier, ActivitySnapshot
from .indicators import (
    COLOR_ACTIVE,
    COLOR_IDLE,
    COLOR_STALLED,
    IndicatorConfig,
    PaneIndicator,
    classify_activity,
    normalize_thresholds,
)

__all__ = [
    "COLOR_ACTIVE",
    "COLOR_IDLE",
    "COLOR_STALLED",
    "ActivityClassifier",
    "ActivitySnapshot",
    "IndicatorConfig",
    "PaneIndicator",
    "classify_activity",
    "normalize_thresholds",
]
