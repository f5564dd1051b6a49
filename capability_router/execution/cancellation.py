from __future__ import annotations

import asyncio
from typing import Callable

from .exceptions import RequestCancelledError

CancelCallback = Callable[[str], None]


class CancellationToken:
    """
    Cooperative cancellation handle for one inbound request.

    The caller owns the token and passes it unchanged to every execution slot
    call made for the request. Cancelling it stops the in-flight call and keeps
    any later stage from starting. Linked child tokens follow their parent's
    cancellation but can also be cancelled on their own (the execution slot uses
    one per call so a timeout never cancels the whole request).
    """

    def __init__(self) -> None:
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []
        self._event: asyncio.Event | None = None
        self._unlink: Callable[[], None] | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is not None:
            return
        self._reason = reason or "cancelled"
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self._reason)

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Run ``callback(reason)`` on cancellation. Returns a function that unregisters it."""
        if self._reason is not None:
            callback(self._reason)
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    async def wait(self) -> str:
        if self._reason is None:
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        return self._reason or "cancelled"

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise RequestCancelledError(f"Request cancelled: {self._reason}", reason=self._reason)

    def child(self) -> "CancellationToken":
        token = CancellationToken()
        token._unlink = self.add_callback(token.cancel)
        return token

    def close(self) -> None:
        """Detach a child token from its parent once its call has finished."""
        if self._unlink is not None:
            self._unlink()
            self._unlink = None
