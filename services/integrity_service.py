# -*- coding: utf-8 -*-
"""
Package integrity verification.

Two digests are involved:

- the file checksum, SHA-256 over the raw container bytes, used for the
  quarantine sidecar and duplicate-upload detection;
- the content checksum, SHA-256 over a canonical rendering of the data
  tables. This is the value the device declares in the manifest and signs,
  and it does not change when SQLite rewrites pages or rows are stored in a
  different physical order.

Signatures are HMAC-SHA256 over the content checksum with a shared key.
"""

import hashlib
import hmac
from pathlib import Path
from typing import Any, Optional, Union

from app.config import PipelineSettings
from services.container_reader import open_container
from utils.logger import get_logger

logger = get_logger(__name__)

NULL_TOKEN = "\\0"
CHUNK_SIZE = 8192


def render_value(value: Any) -> str:
    """Canonical text of one cell."""
    if value is None:
        return NULL_TOKEN
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


class IntegrityVerifier:
    """Checksum and signature checks for uploaded packages."""

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or PipelineSettings.from_config()

    # ==================== Checksums ====================

    def compute_file_checksum(self, data: Union[bytes, str, Path]) -> str:
        """SHA-256 (lowercase hex) of raw bytes or of a file streamed in chunks."""
        digest = hashlib.sha256()
        if isinstance(data, (bytes, bytearray)):
            digest.update(data)
            return digest.hexdigest()

        with open(data, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def compute_content_checksum(self, container_path: Union[str, Path]) -> str:
        """
        Canonical SHA-256 over the container's data tables.

        Tables are taken in name order (manifest, attachments and sqlite_*
        excluded); within a table columns are taken in name order and every
        row is rendered as tab-joined ``col=value`` pairs. Rendered rows are
        sorted before hashing, so the digest depends only on content.
        """
        digest = hashlib.sha256()
        with open_container(container_path) as container:
            for table in container.data_table_names():
                columns = sorted(container.column_names(table))
                lines = [
                    "\t".join(f"{col}={render_value(row[col])}" for col in columns)
                    for row in container.iter_rows(table, columns)
                ]
                lines.sort()
                digest.update(f"TABLE:{table}\n".encode("utf-8"))
                for line in lines:
                    digest.update(f"{line}\n".encode("utf-8"))
        return digest.hexdigest()

    def verify_checksum(self, expected: Optional[str], actual: str) -> bool:
        """Compare a declared checksum with a computed one (case-insensitive)."""
        if not expected or not expected.strip():
            logger.warning("Package declares no checksum; integrity check skipped")
            return True
        matches = expected.strip().lower() == actual.strip().lower()
        if not matches:
            logger.error(f"Checksum mismatch: declared {expected}, computed {actual}")
        return matches

    # ==================== Signatures ====================

    def sign(self, content_checksum: str) -> str:
        """Signature a device produces for a content checksum."""
        return hmac.new(
            self.settings.signature_key.encode("utf-8"),
            content_checksum.strip().lower().encode("utf-8"),
            hashlib.sha256
        ).hexdigest()

    def verify_signature(self, signature: Optional[str], content_checksum: str) -> bool:
        """
        Verify a package signature.

        Returns True when signing is not required. When it is required, a
        missing signature fails; otherwise the HMAC is compared in constant
        time.
        """
        if not self.settings.require_digital_signature:
            return True

        if not signature or not signature.strip():
            logger.error("Digital signature required but package is unsigned")
            return False

        expected = self.sign(content_checksum)
        valid = hmac.compare_digest(signature.strip().lower(), expected)
        if not valid:
            logger.error("Invalid signature - package may have been tampered with")
        return valid
