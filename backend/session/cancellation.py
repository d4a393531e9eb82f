"""
Session-wide cancellation signal.

One token per connection, shared by every generator spawned on it.
Set exactly once, on connection teardown. There is no per-generator
cancellation: the control protocol carries no stream identifier.
"""

from __future__ import annotations

import asyncio


class CancellationToken:
    """
    Broadcast, set-once cancellation signal observed cooperatively.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """
        Fire the signal.

        Returns False if it was already fired (idempotent).
        """
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self, timeout: float | None = None) -> bool:
        """
        Wait until cancelled or until `timeout` seconds elapse.

        Returns:
            True if the token is cancelled
        """
        if self._event.is_set():
            return True
        if timeout is not None and timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True
