"""State containers owned by the poll controller."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Optional, Tuple, TypeVar

from .feeds import Listing

T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot:
    """Published view of the latest refresh cycle.

    Snapshots are never mutated; the controller swaps in a new instance via
    ``dataclasses.replace`` so readers always see one consistent cycle.
    """

    primary: Tuple[Listing, ...] = ()
    secondary: Tuple[Listing, ...] = ()
    primary_average: Optional[float] = None
    secondary_average: Optional[float] = None
    last_updated: Optional[datetime] = None
    loading: bool = False
    error: Optional[str] = None

    @classmethod
    def initial(cls) -> "Snapshot":
        return cls(loading=True)

    @property
    def has_data(self) -> bool:
        return bool(self.primary) or bool(self.secondary)


class RefreshToken:
    """Cancellable handle for the fetches of a single refresh cycle."""

    def __init__(self) -> None:
        self._cancelled = False
        self._task: Optional[asyncio.Future] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` as a task that ``cancel()`` can interrupt."""
        task = asyncio.ensure_future(awaitable)
        if self._cancelled:
            task.cancel()
        self._task = task
        try:
            return await task
        finally:
            self._task = None


__all__ = ["RefreshToken", "Snapshot"]
