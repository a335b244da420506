"""
Application settings split into device and sync partitions.
"""

from .engine import SettingsEngine
from .types import (
    GROUPING_FIELDS,
    DeviceSettings,
    GroupingConfiguration,
    Settings,
    SyncSettings,
)

__all__ = [
    "DeviceSettings",
    "GROUPING_FIELDS",
    "GroupingConfiguration",
    "Settings",
    "SettingsEngine",
    "SyncSettings",
]
