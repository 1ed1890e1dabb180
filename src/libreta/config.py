"""Central configuration for the libreta store.

All tunables live here with sensible defaults.  Values can be overridden
through environment variables prefixed with ``LIBRETA_`` (nested keys use
double underscores, e.g. ``LIBRETA_SQLITE__BUSY_TIMEOUT_MS=10000``).

Usage::

    from libreta.config import get_config

    cfg = get_config()
    print(cfg.db_path)
    print(cfg.sqlite.busy_timeout_ms)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field, is_dataclass
from pathlib import Path
from typing import TypeVar, get_type_hints

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Nested configuration sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SQLiteConfig:
    """Pragmas and pool sizing applied to every connection."""

    busy_timeout_ms: int = 5000
    """How long a writer waits for a lock before giving up.  Also bounds
    the wait for the in-process write lock."""

    cache_size: int = 10000  # pages
    synchronous: str = "NORMAL"

    read_pool_size: int = 0
    """Maximum number of concurrent readers.  ``0`` picks
    ``max(4, cpu_count)``."""

    def effective_read_pool_size(self) -> int:
        if self.read_pool_size > 0:
            return self.read_pool_size
        return max(4, os.cpu_count() or 1)


# ---------------------------------------------------------------------------
# Top-level configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LibretaConfig:
    """Root configuration object for the store.

    ``data_dir`` is stored as a :class:`~pathlib.Path` with ``~`` expanded.
    """

    data_dir: Path = field(default_factory=lambda: Path("~/.libreta"))
    db_filename: str = "data.db"
    slow_query_ms: int = 250
    allow_schema_upgrade: bool = False
    search_limit: int = 20

    sqlite: SQLiteConfig = field(default_factory=SQLiteConfig)

    def __post_init__(self) -> None:
        # Frozen dataclass, hence object.__setattr__.
        object.__setattr__(self, "data_dir", Path(self.data_dir).expanduser())

    @property
    def db_path(self) -> Path:
        """Full path of the database file."""
        return self.data_dir / self.db_filename


# ---------------------------------------------------------------------------
# Environment-variable loader
# ---------------------------------------------------------------------------

_ENV_PREFIX = "LIBRETA_"
_NESTED_SEP = "__"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off", ""})


def _field_types(section: type) -> dict[str, type]:
    """Map each field of *section* to its evaluated annotation."""
    module = sys.modules.get(section.__module__)
    return get_type_hints(section, globalns=vars(module) if module else {})


def _parse_env_value(name: str, raw: str, target: type[T]) -> T:
    """Convert the environment value *raw* of variable *name* to *target*.

    Raises
    ------
    ValueError
        Naming the variable, when *raw* does not fit the field type.
    """
    text = raw.strip()
    if target is bool:
        lowered = text.lower()
        if lowered not in _TRUE | _FALSE:
            raise ValueError(f"{name}={raw!r} is not a boolean")
        return lowered in _TRUE  # type: ignore[return-value]
    try:
        return target(text)  # type: ignore[call-arg]
    except ValueError as exc:
        raise ValueError(f"{name}={raw!r}: {exc}") from exc


def _from_environ(section: type[T], prefix: str) -> T:
    """Build *section* from defaults, overriding fields set in ``os.environ``.

    Fields holding a nested section recurse with ``<PREFIX><FIELD>__``.
    """
    overrides: dict[str, object] = {}
    for name, target in _field_types(section).items():
        var = f"{prefix}{name}".upper()
        if is_dataclass(target):
            overrides[name] = _from_environ(target, var + _NESTED_SEP)
        elif var in os.environ:
            overrides[name] = _parse_env_value(var, os.environ[var], target)
    return section(**overrides)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_config: LibretaConfig | None = None


def get_config(*, reload: bool = False) -> LibretaConfig:
    """Return the process-wide :class:`LibretaConfig`.

    Built once from the defaults and any ``LIBRETA_*`` variables, then
    reused.  Pass ``reload=True`` to re-read the environment.
    """
    global _config  # noqa: PLW0603
    if reload or _config is None:
        _config = _from_environ(LibretaConfig, _ENV_PREFIX)
    return _config
