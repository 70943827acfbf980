"""
Cooperative cancellation signal shared by a prompt call, its model call and
every tool execution it dispatches.
"""

import asyncio

from .errors import OperationAborted


class CancellationSignal:
    """A one-shot, awaitable cancellation flag.

    Tools receive the signal through their call context and are expected to
    honor it for their own waits (subprocesses, network calls). The loop
    guarantees propagation, not that a tool reacts promptly.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "aborted") -> None:
        """Trigger the signal. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> str | None:
        """Block until the signal is triggered and return its reason."""
        await self._event.wait()
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationAborted(self._reason or "aborted")

    def __repr__(self) -> str:
        state = f"cancelled reason={self._reason!r}" if self.cancelled else "active"
        return f"<CancellationSignal {state}>"
