# -*- coding: utf-8 -*-
"""
Vocabulary lookup service adapters.

All adapters answer the same three questions: the current version of every
vocabulary domain, the current version of one domain, and whether a code is
valid in a domain.

- DatabaseVocabularyService reads the ``vocabulary_versions`` /
  ``vocabulary_codes`` tables.
- ApiVocabularyService calls the backend REST API.
- InMemoryVocabularyService serves a fixed set (tests, offline runs).
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

import requests
import urllib3

from models.vocabulary import DEFAULT_VOCABULARIES, VocabularyDomain
from repositories.db_adapter import DatabaseAdapter
from services.exceptions import ApiException, NetworkException
from utils.datetime_utils import utc_now, to_isoformat
from utils.logger import get_logger

logger = get_logger(__name__)


class VocabularyService(ABC):
    """Vocabulary lookup contract."""

    @abstractmethod
    def get_all_current_versions(self) -> Dict[str, str]:
        """Domain -> current version."""

    @abstractmethod
    def get_current_version(self, domain: str) -> Optional[str]:
        """Current version of a domain, or None when the domain is unknown."""

    @abstractmethod
    def is_valid_code(self, domain: str, code) -> bool:
        """Whether ``code`` belongs to ``domain``."""


def _as_code(code) -> Optional[int]:
    if code is None or isinstance(code, bool):
        return None
    try:
        return int(str(code).strip())
    except ValueError:
        return None


class InMemoryVocabularyService(VocabularyService):
    """Vocabularies held in memory."""

    def __init__(self, domains: Optional[Iterable[VocabularyDomain]] = None):
        self._domains: Dict[str, VocabularyDomain] = {}
        for domain in (domains if domains is not None else DEFAULT_VOCABULARIES):
            self.add_domain(domain)

    def add_domain(self, domain: VocabularyDomain) -> None:
        self._domains[domain.name] = VocabularyDomain(domain.name, domain.version, dict(domain.codes))

    def set_version(self, domain: str, version: str) -> None:
        if domain in self._domains:
            self._domains[domain].version = version
        else:
            self._domains[domain] = VocabularyDomain(domain, version)

    def get_all_current_versions(self) -> Dict[str, str]:
        return {name: d.version for name, d in self._domains.items()}

    def get_current_version(self, domain: str) -> Optional[str]:
        entry = self._domains.get(domain)
        return entry.version if entry else None

    def is_valid_code(self, domain: str, code) -> bool:
        entry = self._domains.get(domain)
        return entry is not None and entry.is_valid(code)


class DatabaseVocabularyService(VocabularyService):
    """Vocabularies stored in the pipeline database."""

    def __init__(self, db: DatabaseAdapter):
        self.db = db
        self._codes_cache: Dict[str, Set[int]] = {}

    def get_all_current_versions(self) -> Dict[str, str]:
        rows = self.db.fetch_all("SELECT domain, version FROM vocabulary_versions ORDER BY domain")
        return {row["domain"]: row["version"] for row in rows}

    def get_current_version(self, domain: str) -> Optional[str]:
        row = self.db.fetch_one("SELECT version FROM vocabulary_versions WHERE domain = ?", (domain,))
        return row["version"] if row else None

    def is_valid_code(self, domain: str, code) -> bool:
        value = _as_code(code)
        if value is None:
            return False
        if domain not in self._codes_cache:
            rows = self.db.fetch_all("SELECT code FROM vocabulary_codes WHERE domain = ?", (domain,))
            self._codes_cache[domain] = {row["code"] for row in rows}
        return value in self._codes_cache[domain]

    def save_domain(self, domain: VocabularyDomain) -> None:
        """Insert or replace a domain with its codes."""
        with self.db.transaction():
            self.db.execute("DELETE FROM vocabulary_versions WHERE domain = ?", (domain.name,))
            self.db.execute(
                "INSERT INTO vocabulary_versions (domain, version, updated_at) VALUES (?, ?, ?)",
                (domain.name, domain.version, to_isoformat(utc_now()))
            )
            self.db.execute("DELETE FROM vocabulary_codes WHERE domain = ?", (domain.name,))
            self.db.execute_many(
                "INSERT INTO vocabulary_codes (domain, code, label) VALUES (?, ?, ?)",
                [(domain.name, code, label) for code, label in sorted(domain.codes.items())]
            )
        self._codes_cache.pop(domain.name, None)
        logger.info(f"Vocabulary {domain.name} saved at v{domain.version} ({len(domain.codes)} codes)")

    def seed_defaults(self, overwrite: bool = False) -> int:
        """Load the built-in vocabularies. Existing domains are kept unless ``overwrite``."""
        existing = self.get_all_current_versions()
        seeded = 0
        for domain in DEFAULT_VOCABULARIES:
            if domain.name in existing and not overwrite:
                continue
            self.save_domain(domain)
            seeded += 1
        return seeded


class ApiVocabularyService(VocabularyService):
    """
    Vocabularies served by the backend REST API.

    Endpoints:
        GET {base_url}/v1/Vocabularies/versions
        GET {base_url}/v1/Vocabularies/{domain}

    Responses are cached per instance.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None,
                 token: Optional[str] = None, verify_ssl: Optional[bool] = None):
        from app.config import Config

        self.base_url = (base_url or Config.API_BASE_URL).rstrip("/")
        self.timeout = timeout or Config.API_TIMEOUT
        self.token = token
        self.verify_ssl = Config.API_VERIFY_SSL if verify_ssl is None else verify_ssl
        if not self.verify_ssl:
            # Self-signed certificates on field servers
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self._versions: Optional[Dict[str, str]] = None
        self._codes: Dict[str, Set[int]] = {}

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get(self, endpoint: str):
        url = f"{self.base_url}{endpoint}"
        logger.info(f"[API REQ] GET {endpoint}")
        try:
            response = requests.get(url, headers=self._headers(), timeout=self.timeout,
                                    verify=self.verify_ssl)
            response.raise_for_status()
            result = response.json() if response.text else None
            logger.info(f"[API RES] {response.status_code} {endpoint}")
            return result
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else 0
            response_data = {}
            try:
                response_data = e.response.json() if e.response is not None else {}
            except ValueError:
                response_data = {}
            logger.error(f"[API ERR] {status_code} GET {endpoint} | Response: {response_data}")
            raise ApiException(message=str(e), status_code=status_code,
                               response_data=response_data if isinstance(response_data, dict) else {})
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            logger.error(f"Network error: {endpoint} - {e}")
            raise NetworkException(message=str(e), original_error=e)
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {endpoint} - {e}")
            raise NetworkException(message=str(e), original_error=e)

    @staticmethod
    def _parse_versions(payload) -> Dict[str, str]:
        # Either {"domain": "1.0.0"} or [{"vocabularyName": ..., "version": ...}]
        if isinstance(payload, dict):
            return {str(k): str(v) for k, v in payload.items() if v is not None}
        versions: Dict[str, str] = {}
        for item in payload or []:
            name = item.get("vocabularyName") or item.get("domain") or item.get("name")
            version = item.get("version")
            if name and version:
                versions[str(name)] = str(version)
        return versions

    @staticmethod
    def _parse_codes(payload) -> Set[int]:
        if isinstance(payload, dict):
            items: List = payload.get("values") or payload.get("codes") or []
        else:
            items = payload or []
        codes: Set[int] = set()
        for item in items:
            code = _as_code(item.get("code") if isinstance(item, dict) else item)
            if code is not None:
                codes.add(code)
        return codes

    def get_all_current_versions(self) -> Dict[str, str]:
        if self._versions is None:
            self._versions = self._parse_versions(self._get("/v1/Vocabularies/versions"))
        return dict(self._versions)

    def get_current_version(self, domain: str) -> Optional[str]:
        return self.get_all_current_versions().get(domain)

    def is_valid_code(self, domain: str, code) -> bool:
        value = _as_code(code)
        if value is None:
            return False
        if domain not in self._codes:
            try:
                self._codes[domain] = self._parse_codes(self._get(f"/v1/Vocabularies/{domain}"))
            except ApiException as e:
                if e.status_code == 404:
                    self._codes[domain] = set()
                else:
                    raise
        return value in self._codes[domain]

    def clear_cache(self) -> None:
        self._versions = None
        self._codes.clear()
