"""Poll controller: periodic fetch, derive and publish of P2P rate snapshots."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Sequence, Set

from .client import FetchError
from .feeds import Listing
from .pricing import calculate_average, derive_subsets
from .state import RefreshToken, Snapshot

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECONDS = 10.0
PAGE_COUNT = 2
FALLBACK_ERROR_MESSAGE = "Failed to load data"

SnapshotCallback = Callable[[Snapshot], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PollController:
    """
    Owns the refresh timer, the live refresh token and the current snapshot.

    Every cycle cancels the previous cycle's token before fetching, so only
    the most recently started cycle can publish. Consumers read ``snapshot``
    or ``subscribe()`` to be called with each new one; they never mutate it.
    """

    def __init__(
        self,
        client: Any,
        *,
        interval: float = REFRESH_INTERVAL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.client = client
        self.interval = interval
        self._clock = clock or _utc_now
        self._snapshot = Snapshot.initial()
        self._token: Optional[RefreshToken] = None
        self._subscribers: List[SnapshotCallback] = []
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None
        self._cycles: Set[asyncio.Task[None]] = set()

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def start(self) -> None:
        if self._task is None:
            self._stop.clear()
            self._task = asyncio.create_task(self._loop(), name="p2pwatch-poll")
            logger.info("Poll controller started (interval=%.0fs)", self.interval)

    async def stop(self) -> None:
        self._stop.set()
        if self._token is not None:
            self._token.cancel()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        pending = list(self._cycles)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Poll controller stopped")

    async def __aenter__(self) -> "PollController":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def retry(self) -> "asyncio.Task[None]":
        """Run an extra refresh cycle right away, outside the timer cadence."""
        logger.info("Manual refresh requested")
        return self._spawn_cycle()

    async def _loop(self) -> None:
        while not self._stop.is_set():
            self._spawn_cycle()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    def _spawn_cycle(self) -> "asyncio.Task[None]":
        task = asyncio.create_task(self.refresh(), name="p2pwatch-refresh")
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        return task

    async def refresh(self) -> None:
        """Run one fetch -> derive -> publish cycle."""
        if self._stop.is_set():
            logger.debug("Refresh skipped, controller is stopped")
            return

        if not self._snapshot.has_data and not self._snapshot.loading:
            self._publish(loading=True)

        if self._token is not None:
            self._token.cancel()
        token = RefreshToken()
        self._token = token

        try:
            page1, page2 = await token.run(self._fetch_pages(token))
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            self._abandon_cycle()
            return
        except FetchError as exc:
            logger.warning("Refresh failed: %s", exc)
            self._publish(error=str(exc) or FALLBACK_ERROR_MESSAGE, loading=False)
            return
        except Exception as exc:
            logger.error("Unexpected refresh failure: %s", exc, exc_info=exc)
            self._publish(error=str(exc) or FALLBACK_ERROR_MESSAGE, loading=False)
            return
        finally:
            if self._token is token:
                self._token = None

        if token.cancelled:
            self._abandon_cycle()
            return

        primary, secondary = derive_subsets(page1, page2)
        primary_average = calculate_average(primary)
        secondary_average = calculate_average(secondary)
        self._publish(
            primary=primary,
            secondary=secondary,
            primary_average=primary_average,
            secondary_average=secondary_average,
            last_updated=self._clock(),
            error=None,
            loading=False,
        )
        logger.info(
            "Snapshot published: primary avg=%s (%d offers), secondary avg=%s (%d offers)",
            primary_average,
            len(primary),
            secondary_average,
            len(secondary),
        )

    async def _fetch_pages(self, token: RefreshToken) -> List[Sequence[Listing]]:
        tasks = [
            asyncio.ensure_future(self.client.fetch_page(page, token))
            for page in range(1, PAGE_COUNT + 1)
        ]
        try:
            return await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            raise

    def _abandon_cycle(self) -> None:
        # Superseded or stopped: keep data and error, only drop the loading flag.
        logger.debug("Refresh cycle cancelled")
        if self._snapshot.loading:
            self._publish(loading=False)

    def _publish(self, **changes: Any) -> None:
        self._snapshot = replace(self._snapshot, **changes)
        for callback in list(self._subscribers):
            try:
                callback(self._snapshot)
            except Exception as exc:
                logger.error("Snapshot subscriber failed: %s", exc, exc_info=exc)


__all__ = ["FALLBACK_ERROR_MESSAGE", "PAGE_COUNT", "PollController", "REFRESH_INTERVAL_SECONDS"]
