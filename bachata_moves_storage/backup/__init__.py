"""
Backup export and import.
"""

from .codec import (
    EXPORT_MARKER,
    EXPORT_VERSION,
    BackupCodec,
    ImportSummary,
    decode_data_url,
    encode_data_url,
)
from .orchestrator import BackupOrchestrator, BackupState, BackupStatus

__all__ = [
    "BackupCodec",
    "BackupOrchestrator",
    "BackupState",
    "BackupStatus",
    "EXPORT_MARKER",
    "EXPORT_VERSION",
    "ImportSummary",
    "decode_data_url",
    "encode_data_url",
]
