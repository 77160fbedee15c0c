# -*- coding: utf-8 -*-
"""
TRRCMS Import Pipeline Data Models
"""

from .import_package import ImportPackage, ImportStatus
from .staging import (
    StagingStatus, StagingRecord, StagingBuilding, StagingPropertyUnit, StagingPerson,
    StagingHousehold, StagingPersonPropertyRelation, StagingEvidence, StagingClaim,
    StagingSurvey, EntityFamily, ForeignKey, FAMILIES, COMMIT_ORDER,
)
from .conflict import (
    ConflictResolution, ConflictStatus, ConflictType, ConflictEntityType,
    ResolutionAction, ConfidenceLevel, ConflictPriority,
)
from .manifest import ManifestData
from .assignment import BuildingAssignment, TransferStatus

__all__ = [
    "ImportPackage",
    "ImportStatus",
    "StagingStatus",
    "StagingRecord",
    "StagingBuilding",
    "StagingPropertyUnit",
    "StagingPerson",
    "StagingHousehold",
    "StagingPersonPropertyRelation",
    "StagingEvidence",
    "StagingClaim",
    "StagingSurvey",
    "EntityFamily",
    "ForeignKey",
    "FAMILIES",
    "COMMIT_ORDER",
    "ConflictResolution",
    "ConflictStatus",
    "ConflictType",
    "ConflictEntityType",
    "ResolutionAction",
    "ConfidenceLevel",
    "ConflictPriority",
    "ManifestData",
    "BuildingAssignment",
    "TransferStatus",
]
