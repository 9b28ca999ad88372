"""Tests for fingerprint generation and storage."""

from __future__ import annotations

from pathlib import Path

import pytest

from vitransfer.models import LocalFile
from vitransfer.upload_management.fingerprint_store import (
    MemoryFingerprintStore,
    ensure_fresh_upload_on_context_change,
    generate_fingerprint,
)
from vitransfer.upload_management.fingerprint_store_sqlite import (
    SqliteFingerprintStore,
)

ENDPOINT = "https://review.example.com/api/uploads"
UPLOAD_URL = f"{ENDPOINT}/abc"


def test_fingerprint_identifies_file_and_endpoint() -> None:
    file = LocalFile(
        path=Path("/media/cut.mp4"),
        name="cut.mp4",
        size=2048,
        mime_type="video/mp4",
        last_modified_ms=1700000000000,
    )

    assert generate_fingerprint(file, ENDPOINT) == (
        f"tus-py-cut.mp4-video/mp4-2048-1700000000000-{ENDPOINT}"
    )
    assert generate_fingerprint(file, "https://other/uploads") != (
        generate_fingerprint(file, ENDPOINT)
    )


class TestMemoryFingerprintStore:
    def test_set_get_remove(self) -> None:
        store = MemoryFingerprintStore()

        store.set_upload_url("fp", UPLOAD_URL)
        assert store.get_upload_url("fp") == UPLOAD_URL

        store.remove("fp")
        assert store.get_upload_url("fp") is None
        store.remove("fp")

    def test_stale_entries_are_not_returned(self) -> None:
        store = MemoryFingerprintStore(max_age=-1)
        store.set_upload_url("fp", UPLOAD_URL)

        assert store.get_upload_url("fp") is None

    def test_prune_stale(self) -> None:
        store = MemoryFingerprintStore()
        store.set_upload_url("a", UPLOAD_URL)
        store.set_upload_url("b", UPLOAD_URL)

        assert store.prune_stale() == 0
        assert store.prune_stale(max_age=-1) == 2
        assert store.get_upload_url("a") is None

    def test_contexts(self) -> None:
        store = MemoryFingerprintStore()

        store.set_context("fp", "project-1")
        assert store.get_context("fp") == "project-1"
        store.clear_context("fp")
        assert store.get_context("fp") is None


class TestContextTracking:
    def test_first_upload_records_context(self) -> None:
        store = MemoryFingerprintStore()
        store.set_upload_url("fp", UPLOAD_URL)

        assert not ensure_fresh_upload_on_context_change(store, "fp", "project-1")
        assert store.get_context("fp") == "project-1"
        assert store.get_upload_url("fp") == UPLOAD_URL

    def test_same_context_keeps_transfer(self) -> None:
        store = MemoryFingerprintStore()
        store.set_upload_url("fp", UPLOAD_URL)
        store.set_context("fp", "project-1")

        assert not ensure_fresh_upload_on_context_change(store, "fp", "project-1")
        assert store.get_upload_url("fp") == UPLOAD_URL

    def test_changed_context_discards_transfer(self) -> None:
        store = MemoryFingerprintStore()
        store.set_upload_url("fp", UPLOAD_URL)
        store.set_context("fp", "project-1")

        assert ensure_fresh_upload_on_context_change(store, "fp", "project-2")
        assert store.get_upload_url("fp") is None
        assert store.get_context("fp") == "project-2"


class TestSqliteFingerprintStore:
    @pytest.fixture
    def db_path(self, tmp_path: Path) -> Path:
        return tmp_path / "state" / "fingerprints.db"

    @pytest.fixture
    def open_store(self, db_path: Path):
        stores: list[SqliteFingerprintStore] = []

        def open_(**kwargs) -> SqliteFingerprintStore:
            store = SqliteFingerprintStore(db_path, **kwargs)
            stores.append(store)
            return store

        yield open_
        for store in stores:
            store.close()

    def test_persists_across_instances(self, open_store, db_path: Path) -> None:
        store = open_store()
        store.set_upload_url("fp", UPLOAD_URL)
        store.set_context("fp", "project-1")

        reloaded = open_store()

        assert db_path.exists()
        assert reloaded.get_upload_url("fp") == UPLOAD_URL
        assert reloaded.get_context("fp") == "project-1"

    def test_set_replaces_previous_url(self, open_store) -> None:
        store = open_store()
        store.set_upload_url("fp", UPLOAD_URL)
        store.set_upload_url("fp", f"{ENDPOINT}/def")

        assert open_store().get_upload_url("fp") == f"{ENDPOINT}/def"

    def test_removal_is_persisted(self, open_store) -> None:
        store = open_store()
        store.set_upload_url("fp", UPLOAD_URL)
        store.set_context("fp", "project-1")

        store.remove("fp")
        store.clear_context("fp")
        store.remove("fp")

        reloaded = open_store()
        assert reloaded.get_upload_url("fp") is None
        assert reloaded.get_context("fp") is None

    def test_stores_sharing_a_file_keep_each_others_entries(
        self, open_store
    ) -> None:
        first = open_store()
        second = open_store()

        first.set_upload_url("fp-a", f"{ENDPOINT}/a")
        second.set_upload_url("fp-b", f"{ENDPOINT}/b")
        first.set_context("fp-a", "project-1")
        second.remove("fp-missing")

        reloaded = open_store()
        assert reloaded.get_upload_url("fp-a") == f"{ENDPOINT}/a"
        assert reloaded.get_upload_url("fp-b") == f"{ENDPOINT}/b"
        assert reloaded.get_context("fp-a") == "project-1"

    def test_stale_entries_are_not_returned(self, open_store) -> None:
        open_store().set_upload_url("fp", UPLOAD_URL)

        assert open_store(max_age=-1).get_upload_url("fp") is None
        assert open_store().get_upload_url("fp") is None

    def test_prune_stale(self, open_store) -> None:
        store = open_store()
        store.set_upload_url("a", UPLOAD_URL)
        store.set_upload_url("b", UPLOAD_URL)

        assert store.prune_stale() == 0
        assert store.prune_stale(max_age=-1) == 2
        assert store.get_upload_url("a") is None

    def test_context_change_discards_persisted_transfer(self, open_store) -> None:
        store = open_store()
        store.set_upload_url("fp", UPLOAD_URL)
        store.set_context("fp", "project-1")

        assert ensure_fresh_upload_on_context_change(store, "fp", "project-2")
        assert store.get_upload_url("fp") is None
        assert store.get_context("fp") == "project-2"
