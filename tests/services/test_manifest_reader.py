# -*- coding: utf-8 -*-
"""
Tests for container and manifest reading.

Tests cover:
- Required GUID and date fields
- Lenient counts and vocabulary versions
- Case-insensitive keys
- Corrupt and missing containers
"""

import json
import sqlite3
import uuid

import pytest

from services.container_reader import open_container
from services.exceptions import ContainerCorrupt, ManifestInvalid
from services.manifest_reader import ManifestReader, parse_vocab_versions


def _values(**overrides):
    values = {
        "package_id": str(uuid.uuid4()),
        "created_utc": "2024-03-10T08:00:00Z",
        "exported_by_user_id": str(uuid.uuid4()),
        "exported_date_utc": "2024-03-10T09:30:00+03:00",
        "schema_version": "1.0.0",
        "person_count": "12",
    }
    values.update(overrides)
    return {k: v for k, v in values.items() if v is not None}


@pytest.fixture
def reader():
    return ManifestReader()


class TestParse:
    """Test ManifestReader.parse."""

    def test_valid_manifest(self, reader):
        manifest = reader.parse(_values())

        assert manifest.person_count == 12
        assert manifest.schema_version == "1.0.0"
        # Offsets are converted to UTC
        assert manifest.exported_date_utc.hour == 6

    @pytest.mark.parametrize("key", ["package_id", "exported_by_user_id"])
    def test_missing_guid(self, reader, key):
        with pytest.raises(ManifestInvalid) as exc:
            reader.parse(_values(**{key: None}))
        assert exc.value.field == key

    def test_malformed_guid(self, reader):
        with pytest.raises(ManifestInvalid) as exc:
            reader.parse(_values(package_id="not-a-guid"))
        assert exc.value.value == "not-a-guid"

    def test_malformed_date(self, reader):
        with pytest.raises(ManifestInvalid):
            reader.parse(_values(created_utc="yesterday"))

    def test_missing_export_date(self, reader):
        with pytest.raises(ManifestInvalid):
            reader.parse(_values(exported_date_utc=None))

    def test_keys_are_case_insensitive(self, reader):
        values = {k.upper(): v for k, v in _values().items()}
        manifest = reader.parse(values)

        assert manifest.person_count == 12

    def test_bad_count_degrades_to_zero(self, reader):
        manifest = reader.parse(_values(person_count="many", building_count="3.0"))

        assert manifest.person_count == 0
        assert manifest.building_count == 3

    def test_default_schema_version(self, reader):
        assert reader.parse(_values(schema_version=None)).schema_version == "1.0.0"


class TestVocabVersions:

    def test_json_object(self):
        assert parse_vocab_versions(json.dumps({"gender": "1.2.0"})) == {"gender": "1.2.0"}

    @pytest.mark.parametrize("raw", [None, "", "{not json", "[1, 2]"])
    def test_malformed_is_empty(self, raw):
        assert parse_vocab_versions(raw) == {}


class TestContainers:
    """Test reading real container files."""

    def test_read_written_container(self, reader, make_container):
        path, writer = make_container()
        manifest = reader.read(path)

        assert manifest.package_id == writer.package_id
        assert manifest.person_count == 2
        assert manifest.building_count == 1
        assert manifest.total_attachment_size_bytes == len(b"scanned deed")
        assert manifest.vocab_versions["gender"] == "1.0.0"
        assert manifest.checksum
        assert manifest.digital_signature

    def test_missing_file(self, reader, tmp_path):
        with pytest.raises(ContainerCorrupt):
            reader.read(tmp_path / "absent.uhc")

    def test_not_a_database(self, reader, tmp_path):
        path = tmp_path / "junk.uhc"
        path.write_bytes(b"this is not sqlite" * 100)

        with pytest.raises(ContainerCorrupt):
            reader.read(path)

    def test_no_manifest_table(self, reader, tmp_path):
        path = tmp_path / "bare.uhc"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE persons (id TEXT)")
        conn.commit()
        conn.close()

        with pytest.raises(ContainerCorrupt):
            reader.read(path)

    def test_container_reader_tables(self, make_container):
        path, _ = make_container()
        with open_container(path) as container:
            assert "manifest" not in container.data_table_names()
            assert "attachments" not in container.data_table_names()
            assert container.count_rows("persons") == 2
            assert container.read_attachments()["E-1"] == b"scanned deed"
            assert container.read_rows("no_such_table") == []
