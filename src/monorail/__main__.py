"""Module entrypoint for ``python -m monorail``."""

from __future__ import annotations

from monorail.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
