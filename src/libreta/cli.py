"""Command-line access to a libreta database.

Usage::

    python -m libreta init
    python -m libreta put notes.md --name "Notes" --attr sys.kind=root
    python -m libreta show 20240105-143000
    python -m libreta cat <hash> > out.bin
    python -m libreta find sys.kind root
    python -m libreta search "meeting notes" --limit 5
    python -m libreta link <src-id> <dst-id> --relation child
    python -m libreta stats

``--data-dir`` overrides the configured database directory.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

from libreta.edges import EDGE_REL_LINK, Edge
from libreta.errors import NotFound, StorageError
from libreta.nodes import Node, NodeAttribute
from libreta.store import Libreta

log = logging.getLogger(__name__)

_DEFAULT_MIMETYPE = "application/octet-stream"


def _parse_attr(raw: str) -> NodeAttribute:
    """Parse a ``key=value`` command-line attribute."""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"attribute must be key=value, got {raw!r}")
    return NodeAttribute(key=key, value=value)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


async def _cmd_init(store: Libreta, args: argparse.Namespace) -> None:
    print(f"{store.storage.db_path} (schema {store.storage.schema_version})")


async def _cmd_version(store: Libreta, args: argparse.Namespace) -> None:
    print(await store.storage.get_schema_version())


async def _cmd_put(store: Libreta, args: argparse.Namespace) -> None:
    path: Path = args.file
    mimetype = args.mimetype or mimetypes.guess_type(path.name)[0] or _DEFAULT_MIMETYPE
    with path.open("rb") as fh:
        content_hash = await store.content_save(fh)
    node_id = args.id or store.generate_id()
    await store.node_save(
        Node(
            id=node_id,
            name=args.name or path.name,
            content_hash=content_hash,
            content_mimetype=mimetype,
            attributes=list(args.attr or []),
        )
    )
    print(node_id)


async def _cmd_cat(store: Libreta, args: argparse.Namespace) -> None:
    stream = await store.content_load(args.hash)
    sys.stdout.buffer.write(stream.getvalue())
    sys.stdout.buffer.flush()


async def _cmd_show(store: Libreta, args: argparse.Namespace) -> None:
    nodes = await store.nodes_load(args.ids)
    missing = [node_id for node_id in args.ids if node_id not in nodes]
    if missing:
        raise NotFound(f"node(s) not found: {', '.join(missing)}")
    _print_json([nodes[node_id].to_dict() for node_id in dict.fromkeys(args.ids)])


async def _cmd_find(store: Libreta, args: argparse.Namespace) -> None:
    for node_id in sorted(await store.query_by_attribute(args.key, args.value)):
        print(node_id)


async def _cmd_search(store: Libreta, args: argparse.Namespace) -> None:
    for node_id in await store.query_full_text_search(args.term, args.limit):
        print(node_id)


async def _cmd_link(store: Libreta, args: argparse.Namespace) -> None:
    edge = Edge(src_id=args.src, dst_id=args.dst, relation=args.relation)
    if args.remove:
        await store.edges_remove([edge])
    else:
        await store.edges_add([edge])


async def _cmd_stats(store: Libreta, args: argparse.Namespace) -> None:
    _print_json(await store.storage.table_counts())


_Command = Callable[[Libreta, argparse.Namespace], Awaitable[None]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="libreta",
        description="Content-addressed note store",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding the database (default: configured data_dir)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the database if missing").set_defaults(func=_cmd_init)
    sub.add_parser("version", help="Print the schema version").set_defaults(func=_cmd_version)

    put = sub.add_parser("put", help="Store a file as a node")
    put.add_argument("file", type=Path)
    put.add_argument("--id", default=None, help="Node id (default: generated)")
    put.add_argument("--name", default=None, help="Node name (default: file name)")
    put.add_argument("--mimetype", default=None, help="Content type (default: guessed)")
    put.add_argument("--attr", type=_parse_attr, action="append", help="key=value attribute")
    put.set_defaults(func=_cmd_put)

    cat = sub.add_parser("cat", help="Write stored content to stdout")
    cat.add_argument("hash")
    cat.set_defaults(func=_cmd_cat)

    show = sub.add_parser("show", help="Print nodes as JSON")
    show.add_argument("ids", nargs="+")
    show.set_defaults(func=_cmd_show)

    find = sub.add_parser("find", help="List nodes with an attribute")
    find.add_argument("key")
    find.add_argument("value")
    find.set_defaults(func=_cmd_find)

    search = sub.add_parser("search", help="Full-text search")
    search.add_argument("term")
    search.add_argument("--limit", type=int, default=None)
    search.set_defaults(func=_cmd_search)

    link = sub.add_parser("link", help="Add (or remove) an edge")
    link.add_argument("src")
    link.add_argument("dst")
    link.add_argument("--relation", default=EDGE_REL_LINK)
    link.add_argument("--remove", action="store_true")
    link.set_defaults(func=_cmd_link)

    sub.add_parser("stats", help="Print table row counts").set_defaults(func=_cmd_stats)
    return parser


async def _run(func: _Command, args: argparse.Namespace) -> None:
    async with Libreta(args.data_dir) as store:
        await func(store, args)


def dispatch(argv: list[str] | None = None) -> int:
    """Parse *argv*, run the command and return the process exit status."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        asyncio.run(_run(args.func, args))
    except NotFound as exc:
        print(f"not found: {exc}", file=sys.stderr)
        return 2
    except (StorageError, ValueError, OSError) as exc:
        log.debug("Command %s failed", args.command, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    sys.exit(dispatch())
