"""Entry point for ``python -m libreta``."""

from __future__ import annotations

from libreta.cli import main

if __name__ == "__main__":
    main()
