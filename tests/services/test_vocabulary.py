# -*- coding: utf-8 -*-
"""
Tests for vocabulary services and compatibility checks.

Tests cover:
- Semantic version comparison
- Package vs server compatibility classification
- In-memory, database and API vocabulary adapters
- API error mapping (HTTP errors, 404 code lists, network errors)
"""

import json

import pytest
import requests

from models.vocabulary import GENDER, RELATION_TYPE, VocabularyDomain, default_versions
from services.exceptions import ApiException, NetworkException
from services.vocabulary_compatibility import (
    VersionDifference, VocabularyCompatibilityChecker, compare_versions, parse_semver,
)
from services.vocabulary_service import (
    ApiVocabularyService, DatabaseVocabularyService, InMemoryVocabularyService,
)


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error", response=self)


@pytest.fixture
def api_responses(monkeypatch):
    """Route requests.get by URL suffix to canned responses; records calls."""
    routes = {}
    calls = []

    def fake_get(url, headers=None, timeout=None, verify=None):
        calls.append({"url": url, "headers": headers, "verify": verify})
        for suffix, response in routes.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse({"error": "not found"}, 404)

    monkeypatch.setattr(requests, "get", fake_get)
    return routes, calls


class TestSemver:

    @pytest.mark.parametrize("package,server,expected", [
        ("1.2.3", "1.2.9", VersionDifference.PATCH),
        ("1.3.0", "1.2.9", VersionDifference.MINOR),
        ("2.0.0", "1.9.9", VersionDifference.MAJOR),
        ("1.0.0", "1.0.0", VersionDifference.IDENTICAL),
        ("1.0", "1.0.0", VersionDifference.IDENTICAL),
    ])
    def test_compare(self, package, server, expected):
        assert compare_versions(package, server) == expected

    def test_parse_tolerates_junk(self):
        assert parse_semver(None) == (0, 0, 0)
        assert parse_semver("v3.1.4-beta") == (3, 1, 4)
        assert parse_semver("x.y") == (0, 0, 0)


class TestCompatibilityChecker:
    """Test package vs server version classification."""

    def test_identical_versions(self, vocabulary):
        result = VocabularyCompatibilityChecker(vocabulary).check(default_versions())

        assert result.is_compatible
        assert result.is_fully_compatible
        assert result.issues_json is None

    def test_major_difference_is_incompatible(self, vocabulary):
        vocabulary.set_version(RELATION_TYPE, "2.0.0")
        result = VocabularyCompatibilityChecker(vocabulary).check(default_versions())

        assert not result.is_compatible
        assert any("relation_type: MAJOR" in issue for issue in result.issues)

    def test_minor_difference_is_compatible_with_warning(self, vocabulary):
        vocabulary.set_version(GENDER, "1.1.0")
        result = VocabularyCompatibilityChecker(vocabulary).check(default_versions())

        assert result.is_compatible
        assert not result.is_fully_compatible
        assert json.loads(result.issues_json)[0]["level"] == "MinorDifference"

    def test_patch_difference_is_fully_compatible(self, vocabulary):
        vocabulary.set_version(GENDER, "1.0.7")
        result = VocabularyCompatibilityChecker(vocabulary).check(default_versions())

        assert result.is_fully_compatible

    def test_unknown_domain_is_a_warning(self, vocabulary):
        result = VocabularyCompatibilityChecker(vocabulary).check({"eye_color": "1.0.0"})

        assert result.is_compatible
        assert not result.is_fully_compatible
        assert result.items[0].level == VersionDifference.UNKNOWN_DOMAIN

    def test_empty_package_versions(self, vocabulary):
        result = VocabularyCompatibilityChecker(vocabulary).check({})
        assert result.is_compatible and result.is_fully_compatible


class TestInMemoryService:

    def test_codes(self, vocabulary):
        assert vocabulary.is_valid_code(GENDER, 1)
        assert vocabulary.is_valid_code(GENDER, "2")
        assert not vocabulary.is_valid_code(GENDER, 3)
        assert not vocabulary.is_valid_code("unknown", 1)

    def test_custom_domains(self):
        service = InMemoryVocabularyService([VocabularyDomain("color", "3.1.0", {7: "Red"})])

        assert service.get_all_current_versions() == {"color": "3.1.0"}
        assert service.is_valid_code("color", 7)


class TestDatabaseService:
    """Test vocabularies stored in the pipeline database."""

    def test_seed_defaults(self, db):
        service = DatabaseVocabularyService(db)

        assert service.seed_defaults() == len(default_versions())
        assert service.seed_defaults() == 0
        assert service.get_all_current_versions() == default_versions()
        assert service.is_valid_code(RELATION_TYPE, 3)
        assert not service.is_valid_code(RELATION_TYPE, 42)
        assert not service.is_valid_code(RELATION_TYPE, "abc")

    def test_save_domain_replaces_codes(self, db):
        service = DatabaseVocabularyService(db)
        service.seed_defaults()
        service.save_domain(VocabularyDomain(GENDER, "2.0.0", {1: "M", 2: "F", 3: "X"}))

        assert service.get_current_version(GENDER) == "2.0.0"
        assert service.is_valid_code(GENDER, 3)

    def test_unknown_domain(self, db):
        assert DatabaseVocabularyService(db).get_current_version("nope") is None


class TestApiService:
    """Test the REST adapter with requests.get patched."""

    def test_versions_as_object(self, api_responses):
        routes, calls = api_responses
        routes["/v1/Vocabularies/versions"] = FakeResponse({"gender": "1.0.0"})
        service = ApiVocabularyService(base_url="http://server/api/", token="t0k")

        assert service.get_current_version("gender") == "1.0.0"
        assert calls[0]["url"] == "http://server/api/v1/Vocabularies/versions"
        assert calls[0]["headers"]["Authorization"] == "Bearer t0k"

    def test_versions_as_list_are_cached(self, api_responses):
        routes, calls = api_responses
        routes["/v1/Vocabularies/versions"] = FakeResponse([
            {"vocabularyName": "gender", "version": "1.2.0"},
            {"vocabularyName": "relation_type", "version": "2.0.0"},
        ])
        service = ApiVocabularyService(base_url="http://server/api")

        assert service.get_all_current_versions() == {"gender": "1.2.0", "relation_type": "2.0.0"}
        service.get_all_current_versions()
        assert len(calls) == 1

    def test_codes_payload_shapes(self, api_responses):
        routes, _ = api_responses
        routes["/v1/Vocabularies/gender"] = FakeResponse({"values": [{"code": 1}, {"code": 2}]})
        routes["/v1/Vocabularies/survey_type"] = FakeResponse([1, "2"])
        service = ApiVocabularyService(base_url="http://server/api")

        assert service.is_valid_code("gender", 2)
        assert not service.is_valid_code("gender", 5)
        assert service.is_valid_code("survey_type", 2)

    def test_missing_domain_has_no_codes(self, api_responses):
        service = ApiVocabularyService(base_url="http://server/api")
        assert not service.is_valid_code("unknown_domain", 1)

    def test_server_error_raises_api_exception(self, api_responses):
        routes, _ = api_responses
        routes["/v1/Vocabularies/versions"] = FakeResponse({"message": "down"}, 503)
        service = ApiVocabularyService(base_url="http://server/api")

        with pytest.raises(ApiException) as exc:
            service.get_all_current_versions()
        assert exc.value.status_code == 503
        assert exc.value.response_data == {"message": "down"}

    def test_connection_error_raises_network_exception(self, api_responses):
        routes, _ = api_responses
        routes["/v1/Vocabularies/versions"] = requests.exceptions.ConnectionError("refused")
        service = ApiVocabularyService(base_url="http://server/api")

        with pytest.raises(NetworkException):
            service.get_all_current_versions()

    def test_ssl_verification_flag_is_passed(self, api_responses):
        routes, calls = api_responses
        routes["/v1/Vocabularies/versions"] = FakeResponse({})
        ApiVocabularyService(base_url="http://server/api", verify_ssl=False).get_all_current_versions()

        assert calls[0]["verify"] is False
