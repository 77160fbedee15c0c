# -*- coding: utf-8 -*-
"""
TRRCMS Import Pipeline Repository Layer
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "DatabaseAdapter",
    "DatabaseFactory",
    "get_database",
    "StagingRepository",
    "ImportPackageRepository",
    "ConflictRepository",
    "ProductionRepository",
    "AssignmentRepository",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name in ("DatabaseAdapter", "DatabaseFactory", "get_database"):
        from . import db_adapter
        return getattr(db_adapter, name)
    elif name == "StagingRepository":
        from .staging_repository import StagingRepository
        return StagingRepository
    elif name == "ImportPackageRepository":
        from .import_package_repository import ImportPackageRepository
        return ImportPackageRepository
    elif name == "ConflictRepository":
        from .conflict_repository import ConflictRepository
        return ConflictRepository
    elif name == "ProductionRepository":
        from .production_repository import ProductionRepository
        return ProductionRepository
    elif name == "AssignmentRepository":
        from .assignment_repository import AssignmentRepository
        return AssignmentRepository
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
