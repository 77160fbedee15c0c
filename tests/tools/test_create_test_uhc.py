# -*- coding: utf-8 -*-
"""
Tests for the sample package generator.

Tests cover:
- Generated tables and attachments
- A generated package validating cleanly end to end
- The duplicate-person variant landing in conflict review
- The command-line wrapper
"""

import pytest

from app.config import PipelineSettings
from models.import_package import ImportStatus
from services.import_pipeline import ImportPipeline
from services.package_store import PackageStore
from tools.create_test_uhc import build_writer, main


@pytest.fixture
def pipeline(db, vocabulary, settings):
    return ImportPipeline(db, vocabulary, settings, store=PackageStore(settings, sleep=lambda s: None))


def upload_and_validate(pipeline, writer, verifier, tmp_path):
    path = writer.write(tmp_path / "generated.uhc", verifier=verifier)
    package_id = pipeline.upload(path, "tester").package.id
    summary = pipeline.stage_and_validate(package_id, "tester")
    return pipeline.get_package(package_id), summary


class TestBuildWriter:

    def test_tables(self):
        writer = build_writer(buildings=2)

        assert len(writer.tables["buildings"]) == 2
        assert len(writer.tables["property_units"]) == 4
        assert len(writer.tables["persons"]) == 4
        assert len(writer.tables["surveys"]) == 4
        assert len(writer.attachments) == 4

    def test_generated_package_is_clean(self, pipeline, verifier, tmp_path):
        package, summary = upload_and_validate(pipeline, build_writer(buildings=2), verifier, tmp_path)

        assert summary.error_count == 0
        assert summary.total == 30
        assert package.status == ImportStatus.READY_TO_COMMIT

    def test_duplicate_person_needs_review(self, pipeline, verifier, tmp_path):
        writer = build_writer(buildings=2, duplicate_person=True)
        package, _ = upload_and_validate(pipeline, writer, verifier, tmp_path)

        assert package.status == ImportStatus.REVIEWING_CONFLICTS
        assert package.person_duplicate_count == 1


class TestMain:

    def test_writes_package(self, tmp_path, settings, monkeypatch, capsys):
        monkeypatch.setattr(PipelineSettings, "from_config", lambda: settings)
        output = tmp_path / "out" / "sample.uhc"

        main([str(output), "--buildings", "1"])

        assert output.exists()
        assert "package_id" in capsys.readouterr().out
