"""Plain-text rendering for monorail CLI output.

File: src/monorail/ui/render.py

Purpose
- Provide a thin rendering layer for operation results.
- Keep output deterministic: no color, no terminal detection.
"""

from __future__ import annotations

import json
import sys
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from monorail.operations import OperationResult


class CLIRenderer:
    """Thin CLI output renderer writing to ``stream`` (stdout by default)."""

    def __init__(self, *, verbose: bool = False, stream: IO[str] | None = None) -> None:
        self.verbose = verbose
        self._stream = stream

    def heading(self, text: str) -> None:
        self._print(text)

    def kv(self, key: str, value: object) -> None:
        self._print(f"{key}: {value}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._print(f"  {prefix}{entry}")

    def table(self, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return
        widths = [len(header) for header in headers]
        for row in rows:
            for index, cell in enumerate(row[: len(headers)]):
                widths[index] = max(widths[index], len(str(cell)))

        def _pad(cells: Sequence[str]) -> str:
            return "  ".join(
                (str(cells[i]) if i < len(cells) else "").ljust(widths[i])
                for i in range(len(headers))
            ).rstrip()

        self._print(f"  {_pad(headers)}")
        self._print(f"  {'  '.join('-' * width for width in widths)}")
        for row in rows:
            self._print(f"  {_pad(row)}")

    def ok(self, label: str) -> None:
        self._print(f"  OK  {label}")

    def fail(self, label: str) -> None:
        self._print(f"  FAIL  {label}")

    def result(self, result: OperationResult) -> None:
        """Render an operation's diagnostics followed by its outcome line."""

        self.heading(f"monorail {result.operation}")
        self.items(result.diagnostics)
        if self.verbose and result.error is not None:
            self.kv("error kind", result.error.kind)
        if result.success:
            self.ok(f"{result.operation} finished")
        else:
            self.fail(f"{result.operation} failed")

    def json(self, payload: object) -> None:
        self._print(json.dumps(payload, sort_keys=True, indent=2, default=str))

    def _print(self, line: str) -> None:
        print(line, file=self._stream if self._stream is not None else sys.stdout)


__all__ = ["CLIRenderer"]
