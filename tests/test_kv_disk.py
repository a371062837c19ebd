"""Tests for the Disk KV store."""

import shutil
import tempfile

import pytest

from fastfilter.graph import Decision, GraphRewriter
from fastfilter.kv.disk import Disk
from fastfilter.marks import MarkTable
from fastfilter.model import MarkRef


@pytest.fixture
def disk_store():
    tmpdir = tempfile.mkdtemp()
    store = Disk(tmpdir)
    yield store, tmpdir
    store.close()
    shutil.rmtree(tmpdir, ignore_errors=True)


class TestDiskBasic:
    def test_set_get(self, disk_store):
        store, _ = disk_store
        store.set("k", b"v")
        assert store.get("k") == b"v"

    def test_get_missing(self, disk_store):
        store, _ = disk_store
        assert store.get("nope") is None

    def test_contains(self, disk_store):
        store, _ = disk_store
        store.set("k", b"v")
        assert "k" in store
        assert "nope" not in store

    def test_keys(self, disk_store):
        store, _ = disk_store
        store.set("a", b"1")
        store.set("b", b"2")
        assert set(store.keys()) == {"a", "b"}

    def test_type_error_on_non_bytes(self, disk_store):
        store, _ = disk_store
        with pytest.raises(TypeError, match="Expected bytes"):
            store.set("k", "not bytes")  # type: ignore


class TestDiskPersistence:
    def test_survives_reload(self, disk_store):
        store, tmpdir = disk_store
        store.set("k", b"persistent")
        store2 = Disk(tmpdir)
        assert store2.get("k") == b"persistent"
        store2.close()

    def test_mark_table_survives_reload(self, disk_store):
        store, tmpdir = disk_store
        marks = MarkTable(store)
        marks.define(1, kind="blob")
        marks.reassign(1, b"e69de29bb2d1d6434b8b29ae775ad8c2e48c5391")
        store2 = Disk(tmpdir)
        reloaded = MarkTable(store2)
        assert len(reloaded) == 1
        assert reloaded.resolve(MarkRef(1)) == b"e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"
        store2.close()

    def test_graph_decisions_on_disk(self, disk_store):
        store, _ = disk_store
        graph = GraphRewriter(store)
        graph.keep(1, [])
        graph.drop(2, [MarkRef(1)])
        assert graph.decision(2) is Decision.DROP
        assert graph.keep(3, [MarkRef(2)]) == [MarkRef(1)]

