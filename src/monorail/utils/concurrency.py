"""Async concurrency primitives used by the build scheduler."""

from __future__ import annotations

import asyncio


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``.

    Cancelling stops new work from being launched; work already running is left
    to finish.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self._reason or "operation cancelled")


__all__ = ["CancellationToken"]
