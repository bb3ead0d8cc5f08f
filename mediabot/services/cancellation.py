"""Batch cancellation token."""

import asyncio

from .errors import OperationCancelled


class CancelToken:
    """Set once by the caller; checked by batch loops between files."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise OperationCancelled("Operation cancelled")


def is_cancelled(token) -> bool:
    return token is not None and token.cancelled
