# -*- coding: utf-8 -*-
"""
Vocabulary compatibility checking.

Compares the vocabulary versions a package was collected with against the
server's current versions using semantic versioning:

- MAJOR difference: codes may have been removed or renumbered; the package
  is incompatible.
- MINOR difference: codes were added; compatible, reported as a warning.
- PATCH difference: label fixes only; fully compatible.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from services.vocabulary_service import VocabularyService
from utils.logger import get_logger

logger = get_logger(__name__)


class VersionDifference(Enum):
    IDENTICAL = "Identical"
    PATCH = "PatchDifference"
    MINOR = "MinorDifference"
    MAJOR = "MajorDifference"
    UNKNOWN_DOMAIN = "UnknownDomain"


def parse_semver(version: Optional[str]) -> Tuple[int, int, int]:
    """
    Parse ``MAJOR.MINOR.PATCH``; missing or non-numeric parts count as 0.

    Examples:
        >>> parse_semver("1.2")
        (1, 2, 0)
        >>> parse_semver("v2.0.1")
        (2, 0, 1)
    """
    if not version:
        return (0, 0, 0)
    text = str(version).strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    parts = text.split(".")
    numbers = []
    for i in range(3):
        part = parts[i] if i < len(parts) else ""
        match = re.match(r"\d+", part.strip())
        numbers.append(int(match.group()) if match else 0)
    return numbers[0], numbers[1], numbers[2]


def compare_versions(package_version: str, server_version: str) -> VersionDifference:
    p_major, p_minor, p_patch = parse_semver(package_version)
    s_major, s_minor, s_patch = parse_semver(server_version)
    if p_major != s_major:
        return VersionDifference.MAJOR
    if p_minor != s_minor:
        return VersionDifference.MINOR
    if p_patch != s_patch:
        return VersionDifference.PATCH
    return VersionDifference.IDENTICAL


@dataclass
class VocabularyCompatibilityItem:
    domain: str
    package_version: str
    server_version: str
    level: VersionDifference
    message: str

    @property
    def is_ok(self) -> bool:
        return self.level in (VersionDifference.IDENTICAL, VersionDifference.PATCH)

    def to_dict(self) -> Dict[str, str]:
        return {
            "domain": self.domain,
            "package_version": self.package_version,
            "server_version": self.server_version,
            "level": self.level.value,
            "message": self.message,
        }


@dataclass
class VocabularyCompatibilityResult:
    items: List[VocabularyCompatibilityItem] = field(default_factory=list)
    package_versions: Dict[str, str] = field(default_factory=dict)

    @property
    def is_compatible(self) -> bool:
        return not any(i.level == VersionDifference.MAJOR for i in self.items)

    @property
    def is_fully_compatible(self) -> bool:
        return all(i.is_ok for i in self.items)

    @property
    def issues(self) -> List[str]:
        return [i.message for i in self.items if not i.is_ok]

    @property
    def summary(self) -> str:
        return "; ".join(self.issues)

    @property
    def versions_json(self) -> str:
        return json.dumps(self.package_versions, sort_keys=True)

    @property
    def issues_json(self) -> Optional[str]:
        issues = [i.to_dict() for i in self.items if not i.is_ok]
        return json.dumps(issues, ensure_ascii=False) if issues else None


class VocabularyCompatibilityChecker:
    """Checks package vocabulary versions against the vocabulary service."""

    def __init__(self, vocabulary_service: VocabularyService):
        self.vocabulary_service = vocabulary_service

    def check(self, package_versions: Dict[str, str]) -> VocabularyCompatibilityResult:
        server_versions = self.vocabulary_service.get_all_current_versions()
        result = VocabularyCompatibilityResult(package_versions=dict(package_versions))

        for domain in sorted(package_versions):
            package_version = package_versions[domain]
            server_version = server_versions.get(domain)

            if server_version is None:
                level = VersionDifference.UNKNOWN_DOMAIN
                message = f"{domain}: unknown vocabulary domain (package v{package_version})"
                server_version = "N/A"
            else:
                level = compare_versions(package_version, server_version)
                if level == VersionDifference.MAJOR:
                    message = (f"{domain}: MAJOR incompatibility "
                               f"(package v{package_version}, server v{server_version})")
                elif level == VersionDifference.MINOR:
                    message = (f"{domain}: minor version difference "
                               f"(package v{package_version}, server v{server_version})")
                elif level == VersionDifference.PATCH:
                    message = f"{domain}: patch difference (package v{package_version}, server v{server_version})"
                else:
                    message = f"{domain}: identical (v{package_version})"

            result.items.append(VocabularyCompatibilityItem(
                domain=domain,
                package_version=package_version,
                server_version=server_version,
                level=level,
                message=message,
            ))

        if not result.is_compatible:
            logger.warning(f"Vocabulary incompatible: {result.summary}")
        elif not result.is_fully_compatible:
            logger.info(f"Vocabulary compatible with warnings: {result.summary}")
        return result
