"""Re-run the daily bar whenever one of the viewer's scratch cards changes."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, Optional, Set

from daily_bar.service import DailyBarAggregator, DailyBarData
from daily_bar.visibility import Viewer

UpdateHandler = Callable[[DailyBarData], Any]


class DailyBarWatcher:
    """Keep a viewer's snapshot current while the watcher is open.

    Every change notification triggers a full pass. Bursts are not coalesced and
    in-flight passes are never cancelled; whichever finishes last is ``latest``.

        async with DailyBarWatcher(aggregator, viewer, on_update=print) as watcher:
            ...
    """

    def __init__(
        self,
        aggregator: DailyBarAggregator,
        viewer: Viewer,
        on_update: Optional[UpdateHandler] = None,
    ) -> None:
        self.aggregator = aggregator
        self.viewer = viewer
        self.on_update = on_update
        self.latest: Optional[DailyBarData] = None
        self._subscription = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    async def start(self) -> DailyBarData:
        snapshot = await self._run_pass(force=False)
        if self.viewer.is_signed_in and self._subscription is None:
            self._subscription = await self.aggregator.store.subscribe_card_changes(
                self.viewer.user_id, self._on_change
            )
        return snapshot

    async def stop(self) -> None:
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        await self.aggregator.store.unsubscribe(subscription)

    async def wait_idle(self) -> None:
        """Wait for passes triggered by notifications received so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def __aenter__(self) -> "DailyBarWatcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
        await self.wait_idle()

    def _on_change(self, payload: Dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._run_pass(force=True))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_pass(self, force: bool) -> DailyBarData:
        snapshot = await self.aggregator.load(self.viewer, force=force)
        self.latest = snapshot
        if self.on_update is not None:
            result = self.on_update(snapshot)
            if inspect.isawaitable(result):
                await result
        return snapshot
