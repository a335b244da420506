"""
Reconciliation with the remote drive-backed store.
"""

from .grouping import (
    GroupingReconciler,
    GroupingUpload,
    ReconcileResult,
    RemoteGroupingConfig,
)

__all__ = [
    "GroupingReconciler",
    "GroupingUpload",
    "ReconcileResult",
    "RemoteGroupingConfig",
]
