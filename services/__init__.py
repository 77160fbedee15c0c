# -*- coding: utf-8 -*-
"""
TRRCMS package import service layer
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "ImportPipeline",
    "CommitService",
    "ConflictResolutionService",
    "MatchingService",
    "TransferTracker",
    "AuditService",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name == "ImportPipeline":
        from .import_pipeline import ImportPipeline
        return ImportPipeline
    elif name == "CommitService":
        from .commit_service import CommitService
        return CommitService
    elif name == "ConflictResolutionService":
        from .conflict_resolution import ConflictResolutionService
        return ConflictResolutionService
    elif name == "MatchingService":
        from .matching_service import MatchingService
        return MatchingService
    elif name == "TransferTracker":
        from .transfer_tracker import TransferTracker
        return TransferTracker
    elif name == "AuditService":
        from .audit_service import AuditService
        return AuditService
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
