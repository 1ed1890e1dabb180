"""Tests for attribute lookup and full-text search."""

from __future__ import annotations

import pytest

from libreta.content import ContentStore
from libreta.errors import InvalidQuery
from libreta.nodes import Node, NodeManager
from libreta.query import QueryEngine
from libreta.storage import Storage
from tests.conftest import put_node


class TestByAttribute:
    """QueryEngine.by_attribute() is exact key/value equality."""

    async def test_exact_match(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", attributes={"sys.kind": "root"})
        await put_node(storage, "n2", attributes={"sys.kind": "root", "tag": "x"})
        await put_node(storage, "n3", attributes={"sys.kind": "note"})
        assert sorted(await query_engine.by_attribute("sys.kind", "root")) == ["n1", "n2"]

    async def test_no_partial_match(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", attributes={"tag": "project"})
        assert await query_engine.by_attribute("tag", "proj") == []
        assert await query_engine.by_attribute("ta", "project") == []

    async def test_multivalued(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", attributes=[("tag", "a"), ("tag", "b")])
        assert await query_engine.by_attribute("tag", "a") == ["n1"]
        assert await query_engine.by_attribute("tag", "b") == ["n1"]

    async def test_excludes_soft_deleted(
        self, storage: Storage, query_engine: QueryEngine, node_manager: NodeManager
    ) -> None:
        await put_node(storage, "n1", attributes={"tag": "a"})
        await put_node(storage, "n2", attributes={"tag": "a"})
        await node_manager.soft_delete(["n1"])
        assert await query_engine.by_attribute("tag", "a") == ["n2"]


class TestFullTextSearch:
    """QueryEngine.full_text_search() over names and text content."""

    async def test_matches_content(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", name="plain", content=b"some FTS FOUND1 text")
        await put_node(storage, "n2", name="other", content=b"unrelated")
        assert await query_engine.full_text_search("FOUND1") == ["n1"]

    async def test_matches_name(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", name="Quarterly planning", content=b"")
        assert await query_engine.full_text_search("planning") == ["n1"]

    async def test_case_insensitive(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", content=b"Meeting Notes")
        assert await query_engine.full_text_search("meeting notes") == ["n1"]

    async def test_substring(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", content=b"internationalization")
        assert await query_engine.full_text_search("nation") == ["n1"]

    async def test_json_content_indexed(
        self, storage: Storage, query_engine: QueryEngine
    ) -> None:
        await put_node(storage, "n1", content=b'{"city": "Lisbon"}', mimetype="application/json")
        assert await query_engine.full_text_search("Lisbon") == ["n1"]

    async def test_binary_content_not_indexed(
        self, storage: Storage, query_engine: QueryEngine
    ) -> None:
        await put_node(
            storage,
            "n1",
            name="blob",
            content=b"secret FOUND2 words",
            mimetype="application/octet-stream",
        )
        assert await query_engine.full_text_search("FOUND2") == []
        assert await query_engine.full_text_search("blob") == ["n1"]

    async def test_update_reindexes(
        self,
        storage: Storage,
        query_engine: QueryEngine,
        node_manager: NodeManager,
        content_store: ContentStore,
    ) -> None:
        node = await put_node(storage, "n1", name="alpha title", content=b"OLDWORD body")
        new_hash = await content_store.save(b"NEWWORD body")
        await node_manager.save(
            Node(id=node.id, name="omega title", content_hash=new_hash, content_mimetype="text/plain")
        )
        assert await query_engine.full_text_search("OLDWORD") == []
        assert await query_engine.full_text_search("alpha") == []
        assert await query_engine.full_text_search("NEWWORD") == ["n1"]
        assert await query_engine.full_text_search("omega") == ["n1"]

    async def test_excludes_soft_deleted(
        self, storage: Storage, query_engine: QueryEngine, node_manager: NodeManager
    ) -> None:
        await put_node(storage, "n1", content=b"shared phrase")
        await put_node(storage, "n2", content=b"shared phrase")
        await node_manager.soft_delete(["n2"])
        assert await query_engine.full_text_search("shared") == ["n1"]

    async def test_limit(self, storage: Storage, query_engine: QueryEngine) -> None:
        for i in range(5):
            await put_node(storage, f"n{i}", content=f"common word {i}".encode())
        assert len(await query_engine.full_text_search("common", limit=3)) == 3
        assert len(await query_engine.full_text_search("common")) == 5

    async def test_ranked_best_first(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "weak", content=b"apple " + b"filler " * 200)
        await put_node(storage, "strong", name="apple", content=b"apple apple apple")
        hits = await query_engine.full_text_search("apple")
        assert hits[0] == "strong"
        assert set(hits) == {"weak", "strong"}

    async def test_boolean_operators(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", content=b"red apple")
        await put_node(storage, "n2", content=b"green apple")
        assert await query_engine.full_text_search("apple NOT green") == ["n1"]

    @pytest.mark.parametrize("term", ["", "   "])
    async def test_empty_term(
        self, storage: Storage, query_engine: QueryEngine, term: str
    ) -> None:
        await put_node(storage, "n1", content=b"anything")
        assert await query_engine.full_text_search(term) == []

    async def test_zero_limit(self, storage: Storage, query_engine: QueryEngine) -> None:
        await put_node(storage, "n1", content=b"anything")
        assert await query_engine.full_text_search("anything", limit=0) == []

    async def test_negative_limit(self, query_engine: QueryEngine) -> None:
        with pytest.raises(ValueError):
            await query_engine.full_text_search("anything", limit=-1)

    @pytest.mark.parametrize("term", ["apple AND", '"unbalanced'])
    async def test_invalid_query(
        self, storage: Storage, query_engine: QueryEngine, term: str
    ) -> None:
        await put_node(storage, "n1", content=b"apple")
        with pytest.raises(InvalidQuery):
            await query_engine.full_text_search(term)


class TestIndexMaintenance:
    """Triggers keep node_fts_idx in step with the node table."""

    async def test_row_delete_drops_index_entry(
        self, storage: Storage, query_engine: QueryEngine
    ) -> None:
        await put_node(storage, "n1", name="gone", content=b"ZQXTOKEN doomed")
        await put_node(storage, "n2", name="kept", content=b"ZQXTOKEN survivor")
        assert sorted(await query_engine.full_text_search("ZQXTOKEN")) == ["n1", "n2"]

        await storage.execute_transaction(
            lambda conn: conn.execute("DELETE FROM node WHERE id = ?", ("n1",))
        )
        assert await query_engine.full_text_search("ZQXTOKEN") == ["n2"]
        assert await query_engine.full_text_search("doomed") == []
        assert await query_engine.full_text_search("gone") == []

    async def test_row_delete_only_match(
        self, storage: Storage, query_engine: QueryEngine
    ) -> None:
        await put_node(storage, "n1", content=b"QWVUNIQUE lonely")
        await storage.execute_transaction(
            lambda conn: conn.execute("DELETE FROM node WHERE id = ?", ("n1",))
        )
        assert await query_engine.full_text_search("QWVUNIQUE") == []

    async def test_integrity_after_save_update_delete(
        self,
        storage: Storage,
        query_engine: QueryEngine,
        node_manager: NodeManager,
        content_store: ContentStore,
    ) -> None:
        await put_node(storage, "t1", name="text one", content=b"first body")
        await put_node(storage, "j1", content=b'{"k": "v"}', mimetype="application/json")
        await put_node(
            storage, "b1", name="binary", content=b"\x00\x01raw", mimetype="image/png"
        )
        new_hash = await content_store.save(b"second body")
        await node_manager.save(
            Node(id="t1", name="text two", content_hash=new_hash, content_mimetype="text/plain")
        )
        await node_manager.soft_delete(["j1"])
        await storage.execute_write("DELETE FROM node WHERE id = ?", ("b1",))

        await storage.execute_write(
            "INSERT INTO node_fts_idx(node_fts_idx) VALUES ('integrity-check')"
        )
        assert await query_engine.full_text_search("second") == ["t1"]
        assert await query_engine.full_text_search("first") == []
