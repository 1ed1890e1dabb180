"""libreta -- content-addressed note store on SQLite.

Quick start::

    from libreta import Libreta, Node, NodeAttribute

    async def main():
        async with Libreta("/tmp/notes") as store:
            content_hash = await store.content_save(b"# Shopping list")
            node_id = store.generate_id()
            await store.node_save(Node(
                id=node_id,
                name="Shopping",
                content_hash=content_hash,
                content_mimetype="text/markdown",
                attributes=[NodeAttribute("sys.kind", "root")],
            ))
            print(await store.query_full_text_search("Shopping"))

For lower-level access, import from submodules::

    from libreta.storage import Storage
    from libreta.content import ContentStore
    from libreta.nodes import NodeManager
    from libreta.edges import EdgeManager
    from libreta.query import QueryEngine
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from libreta.edges import EDGE_REL_CHAIN, EDGE_REL_CHILD, EDGE_REL_LINK, Edge
from libreta.errors import (
    ConstraintViolation,
    ContentionTimeout,
    InvalidQuery,
    IOFailure,
    NotFound,
    SchemaMismatch,
    StorageError,
)
from libreta.ids import NodeIDGenerator
from libreta.nodes import NODE_ATTR_KIND, NODE_ATTR_KIND_ROOT, Node, NodeAttribute
from libreta.store import Libreta

__all__ = [
    "__version__",
    "Libreta",
    "Node",
    "NodeAttribute",
    "NODE_ATTR_KIND",
    "NODE_ATTR_KIND_ROOT",
    "Edge",
    "EDGE_REL_CHILD",
    "EDGE_REL_LINK",
    "EDGE_REL_CHAIN",
    "NodeIDGenerator",
    "StorageError",
    "NotFound",
    "ConstraintViolation",
    "InvalidQuery",
    "SchemaMismatch",
    "ContentionTimeout",
    "IOFailure",
]
