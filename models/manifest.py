# -*- coding: utf-8 -*-
"""
Package manifest model (transient, copied onto ImportPackage).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass
class ManifestData:
    """Parsed contents of a container's ``manifest`` table."""

    package_id: str
    created_utc: datetime
    exported_by_user_id: str
    exported_date_utc: datetime
    schema_version: str = "1.0.0"
    device_id: Optional[str] = None
    app_version: Optional[str] = None
    checksum: str = ""
    digital_signature: Optional[str] = None
    form_schema_version: Optional[str] = None

    survey_count: int = 0
    building_count: int = 0
    property_unit_count: int = 0
    person_count: int = 0
    household_count: int = 0
    relation_count: int = 0
    claim_count: int = 0
    document_count: int = 0
    total_attachment_size_bytes: int = 0

    vocab_versions: Dict[str, str] = field(default_factory=dict)

    COUNT_FIELDS = (
        "survey_count", "building_count", "property_unit_count", "person_count",
        "household_count", "relation_count", "claim_count", "document_count",
        "total_attachment_size_bytes",
    )

    @property
    def total_record_count(self) -> int:
        return sum(getattr(self, name) for name in self.COUNT_FIELDS
                   if name != "total_attachment_size_bytes")

    def apply_to(self, package) -> None:
        """Copy manifest values onto an ImportPackage."""
        package.package_id = self.package_id
        package.created_utc = self.created_utc
        package.exported_date_utc = self.exported_date_utc
        package.exported_by_user_id = self.exported_by_user_id
        package.device_id = self.device_id
        package.app_version = self.app_version
        package.checksum = self.checksum
        package.digital_signature = self.digital_signature
        package.schema_version = self.schema_version
        package.form_schema_version = self.form_schema_version
        for name in self.COUNT_FIELDS:
            setattr(package, name, getattr(self, name))
