"""Sequential analysis runs over a list of tracked assets.

Idle -> Running(index) -> Completed | Cancelled -> Idle

A run analyzes one asset at a time, strictly in list order, with a fixed
delay between items to respect upstream limits. While running it holds
the RateCoordinator's intensive-operation lock, so other consumers fall
back to cached data. A new run is rejected while one is active or within
the cooldown window after the previous run started.

The completion callback fires exactly once, and only when the last item
has been processed; cancelled runs never fire it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from entrywatch.errors import AnalysisCancelled
from entrywatch.services.entry_analyzer import EntryAnalyzer
from entrywatch.services.rate_coordinator import RateCoordinator
from entrywatch.services.timing import SleepFunc, cancellable_sleep
from entrywatch_core.models import TrackedAsset

logger = logging.getLogger(__name__)

# Callbacks may be plain functions or coroutines
ItemCallback = Callable[[TrackedAsset], Awaitable[None] | None]
CompleteCallback = Callable[[], Awaitable[None] | None]
PersistCallback = Callable[[list[TrackedAsset]], Awaitable[None] | None]


class RunState(str, Enum):
    """Scheduler state."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class SchedulerRun:
    """One analysis run. Exists from start until completion or cancellation."""

    assets: tuple[TrackedAsset, ...]
    started_at: float
    loop: asyncio.AbstractEventLoop
    index: int = 0
    cancel_requested: bool = False
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)


class SequentialAnalysisScheduler:
    """Drives EntryAnalyzer across assets one at a time."""

    def __init__(
        self,
        analyzer: EntryAnalyzer,
        coordinator: RateCoordinator,
        consumer_id: str = "analysis-scheduler",
        item_delay: float = 12.0,
        cooldown: float = 15.0,
        on_item_complete: ItemCallback | None = None,
        on_complete: CompleteCallback | None = None,
        persist: PersistCallback | None = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.analyzer = analyzer
        self.coordinator = coordinator
        self.consumer_id = consumer_id
        self.item_delay = item_delay
        self.cooldown = cooldown
        self.on_item_complete = on_item_complete
        self.on_complete = on_complete
        self.persist = persist
        self._sleep = sleep
        self._clock = clock

        self._lock = threading.Lock()
        self._run: SchedulerRun | None = None
        self._task: asyncio.Task | None = None
        self._state = RunState.IDLE
        self._last_run_started_at: float | None = None

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._run is not None

    @property
    def current_index(self) -> int | None:
        with self._lock:
            return self._run.index if self._run is not None else None

    def start_run(self, assets: Sequence[TrackedAsset]) -> bool:
        """
        Start analyzing `assets` in order. Must be called from a running loop.

        Returns:
            True if a run was started; False if it was rejected (already
            running, inside the cooldown window, or another consumer holds
            the intensive-operation lock)
        """
        loop = asyncio.get_running_loop()

        with self._lock:
            if self._run is not None:
                logger.info(f"[{self.consumer_id}] Analysis already in progress, skipping duplicate request")
                return False

            now = self._clock()
            last = self._last_run_started_at
            if last is not None and now - last < self.cooldown:
                logger.info(
                    f"[{self.consumer_id}] Analysis requested too soon "
                    f"({now - last:.1f}s since last run, cooldown {self.cooldown:.0f}s)"
                )
                return False

            if not self.coordinator.notify_intensive_operation_start(self.consumer_id):
                return False

            run = SchedulerRun(assets=tuple(assets), started_at=now, loop=loop)
            self._run = run
            self._state = RunState.RUNNING
            self._last_run_started_at = now

        logger.info(f"[{self.consumer_id}] Starting analysis run over {len(run.assets)} assets")
        self._task = loop.create_task(self._drive(run))
        return True

    def cancel(self) -> bool:
        """
        Request cooperative cancellation of the active run.

        An in-flight fetch is not interrupted, but no further item is
        started and pending waits end immediately. Safe to call from any
        thread.

        Returns:
            True if a run was active
        """
        with self._lock:
            run = self._run
            if run is None:
                return False
            run.cancel_requested = True

        logger.info(f"[{self.consumer_id}] Cancelling analysis run at item {run.index + 1}/{len(run.assets)}")
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is run.loop:
            run.cancel_event.set()
        else:
            run.loop.call_soon_threadsafe(run.cancel_event.set)
        return True

    async def wait(self) -> None:
        """Wait until the current run (if any) has finished."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def _cancelled(self, run: SchedulerRun) -> bool:
        return run.cancel_requested or run.cancel_event.is_set()

    async def _drive(self, run: SchedulerRun) -> None:
        completed = False
        try:
            total = len(run.assets)
            while run.index < total:
                if self._cancelled(run):
                    break

                asset = run.assets[run.index]
                logger.info(f"[{self.consumer_id}] Analyzing {asset.symbol} ({run.index + 1}/{total})")
                try:
                    await self.analyzer.analyze(
                        asset,
                        consumer_id=self.consumer_id,
                        cancel_event=run.cancel_event,
                    )
                except AnalysisCancelled:
                    with self._lock:
                        run.cancel_requested = True
                    break
                except Exception as e:
                    # Keep going: one asset must not stop the run
                    logger.error(f"Error analyzing {asset.symbol}: {e}", exc_info=True)

                await self._invoke(self.on_item_complete, asset)
                run.index += 1

                if run.index < total:
                    if await cancellable_sleep(self.item_delay, run.cancel_event, self._sleep):
                        break

            # A cancel that arrived during the last item still counts
            completed = not self._cancelled(run)
            if completed:
                await self._finish(run)
            else:
                logger.info(f"[{self.consumer_id}] Analysis run cancelled after {run.index}/{total} items")
        finally:
            self.coordinator.notify_intensive_operation_complete(self.consumer_id)
            with self._lock:
                if self._run is run:
                    self._run = None
                    self._state = RunState.COMPLETED if completed else RunState.CANCELLED

    async def _finish(self, run: SchedulerRun) -> None:
        """Persist, release the lock, then notify completion once."""
        await self._invoke(self.persist, list(run.assets))
        self.coordinator.notify_intensive_operation_complete(self.consumer_id)
        logger.info(f"[{self.consumer_id}] Completed analysis for all {len(run.assets)} assets")
        await self._invoke(self.on_complete)

    async def _invoke(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[{self.consumer_id}] Callback {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)
