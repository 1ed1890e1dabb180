"""Single entry point onto a libreta database.

:class:`Libreta` wires the connection manager, the content/node/edge
managers, the query engine and an id generator together, and exposes the
store's public operations to an API layer::

    from libreta.store import Libreta

    async with Libreta(data_dir) as store:
        content_hash = await store.content_save(b"hello")
        node_id = store.generate_id()
        await store.node_save(Node(node_id, "greeting", content_hash, "text/plain"))
        hits = await store.query_full_text_search("hello")

Errors are raised as :class:`~libreta.errors.StorageError` subclasses.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import BinaryIO, Iterable

from libreta.config import LibretaConfig, get_config
from libreta.content import ContentStore
from libreta.edges import Edge, EdgeManager
from libreta.ids import NodeIDGenerator
from libreta.nodes import Node, NodeManager
from libreta.query import QueryEngine
from libreta.storage import Storage


class Libreta:
    """The store facade.  Open with :meth:`open` (or ``async with``).

    Parameters
    ----------
    data_dir:
        Directory holding the database file; defaults to the configured one.
    config:
        Explicit configuration; defaults to :func:`~libreta.config.get_config`.
    id_generator:
        Node id allocator.  Each store gets its own unless one is injected.
    """

    def __init__(
        self,
        data_dir: Path | None = None,
        config: LibretaConfig | None = None,
        id_generator: NodeIDGenerator | None = None,
    ) -> None:
        self._config = config or get_config()
        self._storage = Storage(data_dir, self._config)
        self._ids = id_generator or NodeIDGenerator()
        self._content = ContentStore(self._storage)
        self._nodes = NodeManager(self._storage)
        self._edges = EdgeManager(self._storage)
        self._query = QueryEngine(self._storage)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def storage(self) -> Storage:
        return self._storage

    async def open(self, allow_upgrade: bool | None = None) -> None:
        """Open the database, creating or verifying the schema.

        Raises
        ------
        SchemaMismatch
            If the file was written by an incompatible schema version.
        """
        await self._storage.initialize(allow_upgrade)

    async def close(self) -> None:
        await self._storage.close()

    async def __aenter__(self) -> Libreta:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Ids and content
    # ------------------------------------------------------------------

    def generate_id(self) -> str:
        """Allocate a new, sortable node id."""
        return self._ids.generate()

    async def content_save(self, source: bytes | BinaryIO) -> str:
        """Store content and return its hash (idempotent)."""
        return await self._content.save(source)

    async def content_load(self, content_hash: str) -> io.BytesIO:
        """Return a stream over stored content; raises ``NotFound``."""
        return await self._content.open(content_hash)

    # ------------------------------------------------------------------
    # Nodes and edges
    # ------------------------------------------------------------------

    async def node_save(self, node: Node) -> None:
        await self._nodes.save(node)

    async def nodes_load(self, ids: Iterable[str]) -> dict[str, Node]:
        return await self._nodes.load(ids)

    async def nodes_soft_delete(self, ids: Iterable[str]) -> int:
        return await self._nodes.soft_delete(ids)

    async def edges_add(self, edges: Iterable[Edge]) -> None:
        await self._edges.add_many(edges)

    async def edges_remove(self, edges: Iterable[Edge]) -> None:
        await self._edges.remove_many(edges)

    async def edges_for_nodes(self, ids: Iterable[str]) -> list[Edge]:
        return await self._edges.for_nodes(ids)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query_by_attribute(self, key: str, value: str) -> list[str]:
        return await self._query.by_attribute(key, value)

    async def query_full_text_search(self, term: str, limit: int | None = None) -> list[str]:
        if limit is None:
            limit = self._config.search_limit
        return await self._query.full_text_search(term, limit)
