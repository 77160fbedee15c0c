# -*- coding: utf-8 -*-
"""
End-to-end tests of the import pipeline.

Tests cover:
- Upload -> stage & validate -> approve -> commit of a clean package
- Idempotent upload of the same package
- Corrupt and tampered containers
- Duplicate persons routed to conflict review, merged, committed once
- Dangling references excluded from commit, re-run without re-inserts
- Records whose parent is excluded at approval skipped with it
- Vocabulary major mismatch quarantining the package
- A validator that crashes keeps the package in ValidationFailed
- Cancellation, revalidation, retention cleanup and the package report
"""

import sqlite3

import pytest

from app.config import PipelineSettings
from models import staging as st
from models.conflict import ConflictStatus
from models.import_package import ImportStatus
from models.staging import StagingStatus
from models.vocabulary import RELATION_TYPE
from repositories.conflict_repository import ConflictRepository
from repositories.production_repository import ProductionRepository
from services.exceptions import (
    CommitPreconditionFailed, ContainerCorrupt, IntegrityFailure, InvalidStateTransition,
    VocabularyIncompatible,
)
from services.import_pipeline import ImportPipeline
from services.package_store import PackageStore
from services.validation.claim_lifecycle import ClaimLifecycleValidator

ACTOR = "user-reviewer"


def make_pipeline(db, vocabulary, settings):
    return ImportPipeline(db, vocabulary, settings, store=PackageStore(settings, sleep=lambda s: None))


@pytest.fixture
def pipeline(db, vocabulary, settings):
    return make_pipeline(db, vocabulary, settings)


@pytest.fixture
def production(db):
    return ProductionRepository(db)


@pytest.fixture
def twin_rows(sample_rows):
    """P-2 is the same person as P-1 with a different family name spelling (score 92)."""
    p1 = sample_rows["persons"][0]
    p1["family_name_arabic"] = "نجار"
    sample_rows["persons"][1] = dict(p1, id="P-2", family_name_arabic="نصور", national_id="09999999999")
    return sample_rows


class TestCleanPackage:
    """Test the happy path."""

    def test_upload_to_commit(self, pipeline, make_container, production, settings):
        path, writer = make_container()

        upload = pipeline.upload(path, ACTOR)
        package_id = upload.package.id
        assert upload.package.status == ImportStatus.VALIDATING
        assert upload.package.package_id == writer.package_id

        summary = pipeline.stage_and_validate(package_id, ACTOR)
        assert summary.error_count == 0
        assert summary.total == 11
        assert pipeline.get_package(package_id).status == ImportStatus.READY_TO_COMMIT

        assert pipeline.approve(package_id, ACTOR) == {"approved": 11, "skipped": 0}

        report = pipeline.commit(package_id, ACTOR)
        assert report.succeeded
        assert report.status == ImportStatus.COMPLETED.value
        assert report.promoted_count == 11
        assert production.count(st.PERSON) == 2

        package = pipeline.get_package(package_id)
        assert package.status == ImportStatus.COMPLETED
        assert package.is_archived
        assert report.archive_path is not None

    def test_attachment_moves_to_store(self, pipeline, make_container, production, settings):
        path, _ = make_container()
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)
        pipeline.approve(package_id, ACTOR)
        pipeline.commit(package_id, ACTOR)

        evidence = production.get_by_source(st.EVIDENCE, package_id)[0]
        stored = settings.attachments_dir / evidence["id"]
        assert evidence["attachment_path"] == str(stored)
        assert stored.read_bytes() == b"scanned deed"

    def test_same_package_uploaded_twice(self, pipeline, make_container):
        path, _ = make_container()
        first = pipeline.upload(path, ACTOR)
        second = pipeline.upload(path, ACTOR)

        assert second.is_duplicate
        assert second.package.id == first.package.id

    def test_report(self, pipeline, make_container):
        path, _ = make_container()
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)

        report = pipeline.get_package_report(package_id)
        assert report["package"]["status"] == ImportStatus.READY_TO_COMMIT.value
        assert report["records"]["person"] == {StagingStatus.VALID.value: 2}
        assert report["conflicts"] == []
        actions = [entry["action"] for entry in report["audit"]]
        assert actions[0] == "uploaded"
        assert "status_changed" in actions


class TestRejectedContainers:

    def test_corrupt_file_is_quarantined_by_hash(self, pipeline, verifier, settings, tmp_path):
        path = tmp_path / "broken.uhc"
        path.write_bytes(b"definitely not a container")

        with pytest.raises(ContainerCorrupt):
            pipeline.upload(path, ACTOR)

        digest = verifier.compute_file_checksum(path)
        assert (settings.quarantine_dir / f"{digest}.uhc").exists()

    def test_tampered_container_is_quarantined(self, pipeline, make_container):
        path, _ = make_container()
        conn = sqlite3.connect(str(path))
        conn.execute("UPDATE persons SET year_of_birth = 1901 WHERE id = 'P-1'")
        conn.commit()
        conn.close()

        upload = pipeline.upload(path, ACTOR)

        assert upload.is_quarantined
        assert not upload.package.is_checksum_valid
        assert upload.package.error_message.startswith("Checksum mismatch")
        with pytest.raises(IntegrityFailure):
            pipeline.stage_and_validate(upload.package.id, ACTOR)


class TestVocabularyMismatch:
    """A MAJOR relation_type difference between package and server."""

    def test_package_is_quarantined(self, pipeline, make_container, vocabulary):
        vocabulary.set_version(RELATION_TYPE, "2.0.0")
        path, _ = make_container()

        upload = pipeline.upload(path, ACTOR)

        assert upload.package.status == ImportStatus.QUARANTINED
        assert not upload.package.is_vocabulary_compatible
        assert "relation_type" in upload.package.error_message
        with pytest.raises(InvalidStateTransition):
            pipeline.stage_and_validate(upload.package.id, ACTOR)

    def test_blocking_raises_after_persisting(self, db, vocabulary, tmp_path, make_container):
        settings = PipelineSettings.for_directory(tmp_path / "blocking", block_on_major_vocab_mismatch=True)
        pipeline = make_pipeline(db, vocabulary, settings)
        vocabulary.set_version(RELATION_TYPE, "2.0.0")
        path, writer = make_container()

        with pytest.raises(VocabularyIncompatible) as exc:
            pipeline.upload(path, ACTOR)

        assert any("relation_type" in issue for issue in exc.value.issues)
        stored = pipeline.packages.get_by_package_id(writer.package_id)
        assert stored.status == ImportStatus.QUARANTINED

    def test_quarantined_package_can_be_cancelled(self, pipeline, make_container, vocabulary):
        vocabulary.set_version(RELATION_TYPE, "2.0.0")
        path, _ = make_container()
        package_id = pipeline.upload(path, ACTOR).package.id

        cancelled = pipeline.cancel(package_id, ACTOR, "vocabulary update pending")

        assert cancelled.status == ImportStatus.CANCELLED
        assert not pipeline.store.quarantine_path(cancelled.package_id).exists()


class TestDuplicates:
    """Two staged persons scoring 92 with a high threshold of 90."""

    def test_conflict_blocks_until_merged(self, pipeline, make_container, twin_rows, production, db):
        path, _ = make_container(twin_rows)
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)

        package = pipeline.get_package(package_id)
        assert package.status == ImportStatus.REVIEWING_CONFLICTS
        assert package.person_duplicate_count == 1
        conflicts = ConflictRepository(db).get_by_package(package_id)
        assert len(conflicts) == 1
        assert conflicts[0].similarity_score == 92

        pipeline.approve(package_id, ACTOR)
        with pytest.raises(CommitPreconditionFailed):
            pipeline.commit(package_id, ACTOR)
        assert production.count(st.PERSON) == 0

        conflict = conflicts[0]
        pipeline.resolve_conflict(conflict.id, "Merge", ACTOR, merge_target=conflict.first_entity_id,
                                  reason="same person")
        assert pipeline.get_package(package_id).status == ImportStatus.READY_TO_COMMIT

        report = pipeline.commit(package_id, ACTOR)

        assert report.succeeded
        assert production.count(st.PERSON) == 1
        survivor = production.get_by_source(st.PERSON, package_id)[0]
        relations = production.get_by_source(st.PERSON_PROPERTY_RELATION, package_id)
        assert {r["person_id"] for r in relations} == {survivor["id"]}

    def test_escalated_conflict_keeps_package_in_review(self, pipeline, make_container, twin_rows, db):
        path, _ = make_container(twin_rows)
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)
        conflict = ConflictRepository(db).get_by_package(package_id)[0]

        escalated = pipeline.resolve_conflict(conflict.id, "Escalate", ACTOR, reason="needs field visit")

        assert escalated.status == ConflictStatus.ESCALATED
        assert pipeline.get_package(package_id).status == ImportStatus.REVIEWING_CONFLICTS


class TestDanglingReference:
    """R-2 points at a person that exists nowhere."""

    @pytest.fixture
    def package_id(self, pipeline, make_container, sample_rows):
        sample_rows["person_property_relations"][1]["person_id"] = "P-404"
        path, _ = make_container(sample_rows)
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)
        return package_id

    def test_relation_invalid_and_package_failed(self, pipeline, package_id, staged):
        relation = staged("person_property_relation", package_id, "R-2")

        assert relation.validation_status == StagingStatus.INVALID
        assert relation.validation_errors == [
            "PersonPropertyRelation references Person P-404 which does not exist in batch or production"
        ]
        assert pipeline.get_package(package_id).status == ImportStatus.VALIDATION_FAILED

    def test_approval_needs_exclusion(self, pipeline, package_id):
        with pytest.raises(CommitPreconditionFailed):
            pipeline.approve(package_id, ACTOR)

        assert pipeline.approve(package_id, ACTOR, exclude_invalid=True) == {"approved": 10, "skipped": 1}
        assert pipeline.get_package(package_id).status == ImportStatus.READY_TO_COMMIT

    def test_excluded_from_commit_and_rerun_is_idempotent(self, pipeline, package_id, production):
        pipeline.approve(package_id, ACTOR, exclude_invalid=True)
        report = pipeline.commit(package_id, ACTOR)

        assert report.status == ImportStatus.PARTIALLY_COMPLETED.value
        assert report.excluded_count == 1
        assert production.count(st.PERSON_PROPERTY_RELATION) == 1

        pipeline.reset_commit(package_id, ACTOR, "re-run")
        again = pipeline.commit(package_id, ACTOR)

        assert again.succeeded
        assert again.promoted_count == 0
        assert again.skipped_count == 10
        assert production.count(st.PERSON) == 2
        assert production.count(st.BUILDING) == 1


class TestExcludedParent:
    """P-2 fails validation; R-2 is valid but points at it."""

    @pytest.fixture
    def package_id(self, pipeline, make_container, sample_rows):
        sample_rows["persons"][1]["first_name_arabic"] = ""
        path, _ = make_container(sample_rows)
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)
        return package_id

    def test_children_of_excluded_records_are_skipped(self, pipeline, package_id, staged):
        assert staged("person_property_relation", package_id, "R-2").validation_status == StagingStatus.VALID

        assert pipeline.approve(package_id, ACTOR, exclude_invalid=True) == {"approved": 9, "skipped": 2}

        relation = staged("person_property_relation", package_id, "R-2")
        assert relation.validation_status == StagingStatus.SKIPPED
        assert "Skipped: parent Person P-2 excluded" in relation.validation_warnings

    def test_commit_succeeds_without_them(self, pipeline, package_id, production):
        pipeline.approve(package_id, ACTOR, exclude_invalid=True)
        report = pipeline.commit(package_id, ACTOR)

        assert report.succeeded
        assert report.status == ImportStatus.PARTIALLY_COMPLETED.value
        assert report.excluded_count == 2
        assert production.count(st.PERSON) == 1
        assert production.count(st.PERSON_PROPERTY_RELATION) == 1


class TestValidatorCrash:

    def test_crash_keeps_package_out_of_commit(self, pipeline, make_container, monkeypatch):
        def crash(self, family, record):
            raise RuntimeError("lookup table unavailable")

        monkeypatch.setattr(ClaimLifecycleValidator, "check", crash)
        path, _ = make_container()
        package_id = pipeline.upload(path, ACTOR).package.id

        summary = pipeline.stage_and_validate(package_id, ACTOR)

        package = pipeline.get_package(package_id)
        assert summary.crashed_validators == ["ClaimLifecycleValidator"]
        assert summary.error_count == 0
        assert package.status == ImportStatus.VALIDATION_FAILED
        assert "[Validation]: ClaimLifecycleValidator did not complete" in package.processing_notes
        with pytest.raises(CommitPreconditionFailed):
            pipeline.commit(package_id, ACTOR)


class TestHousekeeping:

    def test_revalidate_ready_package(self, pipeline, make_container):
        path, _ = make_container()
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)
        pipeline.approve(package_id, ACTOR)

        summary = pipeline.revalidate(package_id, ACTOR)

        assert summary.valid == 11
        assert pipeline.get_package(package_id).status == ImportStatus.READY_TO_COMMIT

    def test_cancel_clears_staging(self, pipeline, make_container):
        path, _ = make_container()
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)

        pipeline.cancel(package_id, ACTOR, "wrong neighborhood")

        assert sum(pipeline.staging.count_records(package_id).values()) == 0
        with pytest.raises(InvalidStateTransition):
            pipeline.stage_and_validate(package_id, ACTOR)

    def test_cleanup_of_finished_packages(self, pipeline, make_container):
        path, _ = make_container()
        package_id = pipeline.upload(path, ACTOR).package.id
        pipeline.stage_and_validate(package_id, ACTOR)
        pipeline.approve(package_id, ACTOR)
        pipeline.commit(package_id, ACTOR)

        result = pipeline.cleanup(days=0)

        assert result.packages == 1
        assert result.records_removed == 11
        assert pipeline.get_package(package_id).status == ImportStatus.COMPLETED
