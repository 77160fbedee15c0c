# -*- coding: utf-8 -*-
"""
Manifest reader.

Parses the ``manifest`` table of a container into ``ManifestData``.
Identity fields are strict (a package without a valid id or export date is
rejected); counts and vocabulary versions are lenient.
"""

import json
import uuid
from pathlib import Path
from typing import Dict, Optional, Union

from models.manifest import ManifestData
from services.container_reader import open_container
from services.exceptions import ManifestInvalid
from utils.datetime_utils import from_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)

REQUIRED_GUIDS = ("package_id", "exported_by_user_id")
REQUIRED_DATES = ("created_utc", "exported_date_utc")
DEFAULT_SCHEMA_VERSION = "1.0.0"


def _required_guid(values: Dict[str, Optional[str]], key: str) -> str:
    raw = (values.get(key) or "").strip()
    if not raw:
        raise ManifestInvalid(f"Manifest is missing required field '{key}'", field=key)
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        raise ManifestInvalid(f"Manifest field '{key}' is not a valid GUID: {raw}",
                              field=key, value=raw) from None


def _required_date(values: Dict[str, Optional[str]], key: str):
    raw = (values.get(key) or "").strip()
    if not raw:
        raise ManifestInvalid(f"Manifest is missing required field '{key}'", field=key)
    parsed = from_isoformat(raw)
    if parsed is None:
        raise ManifestInvalid(f"Manifest field '{key}' is not a valid date: {raw}",
                              field=key, value=raw)
    return parsed


def _count(values: Dict[str, Optional[str]], key: str) -> int:
    raw = values.get(key)
    if raw is None or str(raw).strip() == "":
        return 0
    try:
        return int(float(str(raw).strip()))
    except ValueError:
        logger.warning(f"Manifest count '{key}' is not numeric ({raw}); using 0")
        return 0


def _optional(values: Dict[str, Optional[str]], key: str) -> Optional[str]:
    raw = values.get(key)
    if raw is None:
        return None
    raw = str(raw).strip()
    return raw or None


def parse_vocab_versions(raw: Optional[str]) -> Dict[str, str]:
    """Parse the ``vocab_versions`` JSON object; anything else degrades to {}."""
    if not raw or not str(raw).strip():
        return {}
    try:
        loaded = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Malformed vocab_versions in manifest ({e}); ignoring")
        return {}
    if not isinstance(loaded, dict):
        logger.warning("vocab_versions in manifest is not an object; ignoring")
        return {}
    return {str(domain): str(version) for domain, version in loaded.items() if version is not None}


class ManifestReader:
    """Reads and validates package manifests."""

    def read(self, container_path: Union[str, Path]) -> ManifestData:
        """
        Read the manifest of a container.

        Raises:
            ContainerCorrupt: the file cannot be opened or has no manifest table
            ManifestInvalid: a required field is missing or unparseable
        """
        with open_container(container_path) as container:
            values = container.read_manifest()
        return self.parse(values)

    def parse(self, values: Dict[str, Optional[str]]) -> ManifestData:
        """Build ManifestData from raw key/value pairs (keys case-insensitive)."""
        values = {str(k).strip().lower(): v for k, v in values.items()}

        manifest = ManifestData(
            package_id=_required_guid(values, "package_id"),
            created_utc=_required_date(values, "created_utc"),
            exported_by_user_id=_required_guid(values, "exported_by_user_id"),
            exported_date_utc=_required_date(values, "exported_date_utc"),
            schema_version=_optional(values, "schema_version") or DEFAULT_SCHEMA_VERSION,
            device_id=_optional(values, "device_id"),
            app_version=_optional(values, "app_version"),
            checksum=_optional(values, "checksum") or "",
            digital_signature=_optional(values, "digital_signature"),
            form_schema_version=_optional(values, "form_schema_version"),
            vocab_versions=parse_vocab_versions(values.get("vocab_versions")),
        )
        for name in ManifestData.COUNT_FIELDS:
            setattr(manifest, name, _count(values, name))

        logger.debug(
            f"Manifest read: package {manifest.package_id}, schema {manifest.schema_version}, "
            f"{manifest.total_record_count} declared records"
        )
        return manifest
