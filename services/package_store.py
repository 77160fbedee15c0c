# -*- coding: utf-8 -*-
"""
Package file storage.

Uploaded containers are kept in a quarantine directory until they are
committed, then moved to a dated archive:

    {quarantine}/{packageId}.uhc           container
    {quarantine}/{packageId}.sha256        file checksum sidecar
    {quarantine}/{packageId}.reason.txt    why the package was quarantined
    {archive}/{YYYY}/{MM}/{packageId}.uhc  committed containers
"""

import gc
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from app.config import PipelineSettings
from services.container_reader import close_all_connections
from services.exceptions import PackageStoreError
from utils.datetime_utils import utc_now
from utils.logger import get_logger
from utils.retry import retry_call

logger = get_logger(__name__)

CONTAINER_SUFFIX = ".uhc"
CHECKSUM_SUFFIX = ".sha256"
REASON_SUFFIX = ".reason.txt"


def release_file_handles() -> None:
    """Drop lingering references so the OS releases the container file."""
    closed = close_all_connections()
    gc.collect()
    if closed:
        logger.debug(f"Released {closed} open container connection(s)")


class PackageStore:
    """Quarantine and archive storage for package containers."""

    def __init__(self, settings: Optional[PipelineSettings] = None,
                 release_hook: Callable[[], None] = release_file_handles,
                 sleep: Optional[Callable[[float], None]] = None):
        self.settings = settings or PipelineSettings.from_config()
        self.release_hook = release_hook
        self._sleep = sleep
        self.settings.quarantine_dir.mkdir(parents=True, exist_ok=True)
        self.settings.archive_dir.mkdir(parents=True, exist_ok=True)

    # ==================== Paths ====================

    def quarantine_path(self, package_id: str) -> Path:
        return self.settings.quarantine_dir / f"{package_id}{CONTAINER_SUFFIX}"

    def checksum_path(self, package_id: str) -> Path:
        return self.settings.quarantine_dir / f"{package_id}{CHECKSUM_SUFFIX}"

    def reason_path(self, package_id: str) -> Path:
        return self.settings.quarantine_dir / f"{package_id}{REASON_SUFFIX}"

    def archive_path(self, package_id: str, when: Optional[datetime] = None) -> Path:
        when = when or utc_now()
        return (self.settings.archive_dir / f"{when.year:04d}" / f"{when.month:02d}"
                / f"{package_id}{CONTAINER_SUFFIX}")

    # ==================== Operations ====================

    def save(self, source: Union[str, Path], package_id: str, file_checksum: str) -> Path:
        """
        Copy an uploaded container into quarantine with its checksum sidecar.

        Returns:
            Path of the stored container
        """
        target = self.quarantine_path(package_id)
        shutil.copyfile(str(source), str(target))
        self.checksum_path(package_id).write_text(f"{file_checksum}\n", encoding="utf-8")
        logger.info(f"Stored package {package_id} at {target}")
        return target

    def quarantine_by_hash(self, source: Union[str, Path], file_checksum: str, reason: str) -> Path:
        """
        Quarantine a container that could not be identified (no usable manifest).

        The file is named after its content hash and a reason file is written
        next to it.
        """
        target = self.quarantine_path(file_checksum)
        if Path(source).resolve() != target.resolve():
            shutil.copyfile(str(source), str(target))
        self.checksum_path(file_checksum).write_text(f"{file_checksum}\n", encoding="utf-8")
        self.write_reason(file_checksum, reason)
        logger.warning(f"Quarantined unidentified package as {target.name}: {reason}")
        return target

    def write_reason(self, package_id: str, reason: str) -> Path:
        path = self.reason_path(package_id)
        path.write_text(f"{utc_now().isoformat()}Z {reason}\n", encoding="utf-8")
        return path

    def read_checksum(self, package_id: str) -> Optional[str]:
        path = self.checksum_path(package_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8").strip() or None

    def archive(self, package_id: str, when: Optional[datetime] = None) -> Path:
        """Move a committed container from quarantine to the dated archive."""
        source = self.quarantine_path(package_id)
        if not source.exists():
            raise PackageStoreError(f"Package {package_id} is not in quarantine", path=str(source))

        target = self.archive_path(package_id, when)
        target.parent.mkdir(parents=True, exist_ok=True)
        self.release_hook()
        shutil.move(str(source), str(target))
        for sidecar in (self.checksum_path(package_id), self.reason_path(package_id)):
            if sidecar.exists():
                self.delete(sidecar)
        logger.info(f"Archived package {package_id} to {target}")
        return target

    def delete(self, path: Union[str, Path]) -> bool:
        """
        Delete a file, retrying while the OS still holds it open.

        Returns:
            True if a file was deleted, False if it did not exist

        Raises:
            PackageStoreError: the file is still there after all attempts
        """
        path = Path(path)
        if not path.exists():
            return False

        attempts = self.settings.delete_max_attempts

        def _remove() -> bool:
            try:
                os.remove(str(path))
            except FileNotFoundError:
                # Removed by someone else between attempts
                return False
            return True

        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            removed = retry_call(
                _remove,
                attempts=attempts,
                retry_on=(OSError,),
                on_retry=lambda attempt, error: self.release_hook(),
                base_ms=self.settings.delete_base_delay_ms,
                **kwargs
            )
        except OSError as e:
            logger.error(f"Could not delete {path} after {attempts} attempt(s): {e}")
            raise PackageStoreError(
                f"Could not delete {path}: {e}", path=str(path), attempts=attempts, original_error=e
            ) from e
        if removed:
            logger.debug(f"Deleted {path}")
        return removed

    def delete_package(self, package_id: str) -> int:
        """Delete a quarantined container and its sidecars. Returns files removed."""
        removed = 0
        for path in (self.quarantine_path(package_id), self.checksum_path(package_id),
                     self.reason_path(package_id)):
            if self.delete(path):
                removed += 1
        return removed
