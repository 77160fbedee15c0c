# -*- coding: utf-8 -*-
"""
Tests for package file storage.

Tests cover:
- Save with checksum sidecar
- Quarantine of unidentified files
- Dated archive
- Delete with retries and release hook
"""

import os
from datetime import datetime

import pytest

from services.exceptions import PackageStoreError
from services.package_store import PackageStore


@pytest.fixture
def released():
    return []


@pytest.fixture
def store(settings, released):
    return PackageStore(settings, release_hook=lambda: released.append(1), sleep=lambda s: None)


@pytest.fixture
def upload(tmp_path):
    path = tmp_path / "incoming.uhc"
    path.write_bytes(b"container bytes")
    return path


@pytest.fixture
def flaky_remove(monkeypatch):
    """os.remove that fails with PermissionError for the first ``n`` calls."""
    real_remove = os.remove
    state = {"failures": 0, "calls": 0}

    def _install(failures):
        state["failures"] = failures

        def fake_remove(path):
            state["calls"] += 1
            if state["calls"] <= state["failures"]:
                raise PermissionError(f"file in use: {path}")
            real_remove(path)

        monkeypatch.setattr(os, "remove", fake_remove)
        return state

    return _install


class TestSaveAndArchive:

    def test_save_writes_sidecar(self, store, upload):
        path = store.save(upload, "pkg-1", "abc123")

        assert path.read_bytes() == b"container bytes"
        assert store.read_checksum("pkg-1") == "abc123"
        assert upload.exists()

    def test_quarantine_by_hash(self, store, upload):
        path = store.quarantine_by_hash(upload, "deadbeef", "manifest missing")

        assert path.name == "deadbeef.uhc"
        assert "manifest missing" in store.reason_path("deadbeef").read_text(encoding="utf-8")

    def test_archive_moves_to_dated_folder(self, store, upload, released):
        store.save(upload, "pkg-1", "abc123")
        target = store.archive("pkg-1", when=datetime(2024, 3, 10))

        assert target.parts[-3:] == ("2024", "03", "pkg-1.uhc")
        assert target.exists()
        assert not store.quarantine_path("pkg-1").exists()
        assert not store.checksum_path("pkg-1").exists()
        assert released

    def test_archive_unknown_package(self, store):
        with pytest.raises(PackageStoreError):
            store.archive("missing")


class TestDelete:
    """Test deletion with retries."""

    def test_missing_file(self, store, tmp_path):
        assert store.delete(tmp_path / "nothing.uhc") is False

    def test_retries_until_released(self, store, upload, flaky_remove, released):
        state = flaky_remove(2)

        assert store.delete(upload) is True
        assert state["calls"] == 3
        assert len(released) == 2
        assert not upload.exists()

    def test_gives_up_after_max_attempts(self, store, upload, flaky_remove, settings):
        state = flaky_remove(99)

        with pytest.raises(PackageStoreError) as exc:
            store.delete(upload)
        assert exc.value.attempts == settings.delete_max_attempts
        assert state["calls"] == settings.delete_max_attempts
        assert isinstance(exc.value.original_error, PermissionError)

    def test_delete_package_removes_sidecars(self, store, upload):
        store.save(upload, "pkg-1", "abc123")
        store.write_reason("pkg-1", "test")

        assert store.delete_package("pkg-1") == 3
