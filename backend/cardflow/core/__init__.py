"""
Core package initialization.
"""

from cardflow.core.config import Settings, get_settings, settings
from cardflow.core.models import (
    Card,
    CardType,
    LinkCategory,
    MetadataStatus,
    ProcessingStatus,
    Stage,
    StageRecord,
    StageState,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "settings",
    # Enums
    "CardType",
    "LinkCategory",
    "MetadataStatus",
    "Stage",
    "StageState",
    # Models
    "Card",
    "ProcessingStatus",
    "StageRecord",
]
