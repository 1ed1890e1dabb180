"""Shared fixtures and helpers for the libreta test suite."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from libreta.config import LibretaConfig, SQLiteConfig
from libreta.content import ContentStore
from libreta.edges import EdgeManager
from libreta.ids import NodeIDGenerator
from libreta.nodes import Node, NodeAttribute, NodeManager
from libreta.query import QueryEngine
from libreta.storage import Storage
from libreta.store import Libreta


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config(tmp_path: Path) -> LibretaConfig:
    """Configuration rooted in ``tmp_path`` with a short busy timeout.

    Built explicitly so ``LIBRETA_*`` variables in the developer's
    environment never leak into tests.
    """
    return LibretaConfig(
        data_dir=tmp_path / "data",
        sqlite=SQLiteConfig(busy_timeout_ms=200, read_pool_size=4),
    )


@pytest.fixture
async def storage(config: LibretaConfig) -> Storage:
    """Provide an initialized Storage backed by a temp directory."""
    s = Storage(config=config)
    await s.initialize()
    yield s  # type: ignore[misc]
    await s.close()


@pytest.fixture
def content_store(storage: Storage) -> ContentStore:
    return ContentStore(storage)


@pytest.fixture
def node_manager(storage: Storage) -> NodeManager:
    return NodeManager(storage)


@pytest.fixture
def edge_manager(storage: Storage) -> EdgeManager:
    return EdgeManager(storage)


@pytest.fixture
def query_engine(storage: Storage) -> QueryEngine:
    return QueryEngine(storage)


@pytest.fixture
async def store(config: LibretaConfig) -> Libreta:
    """Provide an opened Libreta facade with its own id generator."""
    s = Libreta(config=config, id_generator=NodeIDGenerator())
    await s.open()
    yield s  # type: ignore[misc]
    await s.close()


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


class FixedClock:
    """Callable clock returning a settable time, for id generation tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


async def put_node(
    storage: Storage,
    node_id: str,
    name: str = "",
    content: bytes = b"",
    mimetype: str = "text/plain",
    attributes: dict[str, str] | list[tuple[str, str]] | None = None,
) -> Node:
    """Store *content* and save a node pointing at it, returning the node."""
    content_hash = await ContentStore(storage).save(content)
    pairs = attributes.items() if isinstance(attributes, dict) else (attributes or [])
    node = Node(
        id=node_id,
        name=name or node_id,
        content_hash=content_hash,
        content_mimetype=mimetype,
        attributes=[NodeAttribute(key, value) for key, value in pairs],
    )
    await NodeManager(storage).save(node)
    return node
