"""
Polling Reconciler

Keeps a per-pipeline snapshot of store data fresh by re-fetching on a fixed
interval (live views) or on demand (analytics views).

Ordering rules:
    - every issued fetch gets a sequence number one higher than the last
    - a refresh arriving while a fetch is running joins that fetch; a fetch
      running longer than the poll interval is cancelled and re-issued
    - a response older than the newest issued request is discarded
    - a successful response replaces the snapshot wholesale

A failed fetch keeps the last good snapshot and marks it stale. With no
snapshot yet the error propagates to the caller.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from pipeline_analytics.analytics.types import utcnow
from pipeline_analytics.config import settings
from pipeline_analytics.middleware.metrics import reconciler_responses_total

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetch = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    data: T
    seq: int
    fetched_at: datetime
    stale: bool = False
    error: str | None = None


class _Superseded(Exception):
    """A response arrived after a newer request was issued."""


class PollingReconciler:
    def __init__(
        self,
        fetch: Fetch,
        *,
        interval: float | None = None,
        name: str = "reconciler",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.fetch = fetch
        self.interval = interval if interval is not None else settings.poll_interval_seconds
        self.name = name
        self.clock = clock
        self.discarded_responses = 0
        self._seq = 0
        self._snapshot: Snapshot | None = None
        self._inflight: asyncio.Task | None = None
        self._inflight_started = 0.0
        self._loop_task: asyncio.Task | None = None

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    @property
    def latest_seq(self) -> int:
        return self._seq

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def idle(self) -> bool:
        """No background loop and no fetch in flight."""
        return not self.running and (self._inflight is None or self._inflight.done())

    async def refresh(self) -> Snapshot:
        """Return the snapshot the current (or a newly issued) fetch settles on."""
        loop = asyncio.get_running_loop()
        task = self._inflight
        if task is not None and not task.done():
            if loop.time() - self._inflight_started < self.interval:
                return await self._settle(task)
            task.cancel()
            self._discard(self._seq, "cancelled after %.1fs" % (loop.time() - self._inflight_started))

        self._seq += 1
        task = loop.create_task(self._run(self._seq))
        self._inflight = task
        self._inflight_started = loop.time()
        return await self._settle(task)

    async def _settle(self, task: asyncio.Task) -> Snapshot:
        while True:
            try:
                return await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            except _Superseded:
                pass
            # A newer refresh took over; settle on its result.
            task = self._inflight

    async def _run(self, seq: int) -> Snapshot:
        try:
            data = await self.fetch()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if seq < self._seq:
                self._discard(seq, "failed late")
                raise _Superseded() from exc
            return self._mark_stale(exc)

        if seq < self._seq:
            self._discard(seq, "late")
            raise _Superseded()

        self._snapshot = Snapshot(data=data, seq=seq, fetched_at=self.clock())
        reconciler_responses_total.labels(outcome="applied").inc()
        return self._snapshot

    def _discard(self, seq: int, why: str) -> None:
        self.discarded_responses += 1
        reconciler_responses_total.labels(outcome="discarded").inc()
        logger.debug("%s: discarded response #%d (%s, newest #%d)", self.name, seq, why, self._seq)

    def _mark_stale(self, exc: Exception) -> Snapshot:
        reconciler_responses_total.labels(outcome="failed").inc()
        if self._snapshot is None:
            raise exc
        logger.warning("%s: refresh failed, serving stale snapshot #%d: %s", self.name, self._snapshot.seq, exc)
        self._snapshot = replace(self._snapshot, stale=True, error=str(exc))
        return self._snapshot

    # ── Background polling ───────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._poll_forever())
        logger.info("%s: polling every %.1fs", self.name, self.interval)

    async def stop(self) -> None:
        for task in (self._loop_task, self._inflight):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as exc:
                    logger.debug("%s: in-flight fetch ended with %s during stop", self.name, exc)
        self._loop_task = None
        self._inflight = None

    async def _poll_forever(self) -> None:
        while True:
            try:
                await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("%s: poll failed with no snapshot yet: %s", self.name, exc)
            await asyncio.sleep(self.interval)


class ReconcilerRegistry:
    """One reconciler per pipeline, created on first use.

    At most ``max_entries`` are tracked; beyond that the least recently used
    idle reconciler is dropped. Live (polling) reconcilers are never evicted.
    """

    def __init__(
        self,
        fetch_for: Callable[[str], Fetch],
        *,
        interval: float | None = None,
        max_entries: int | None = None,
    ):
        self.fetch_for = fetch_for
        self.interval = interval
        self.max_entries = max_entries if max_entries is not None else settings.max_tracked_pipelines
        self._reconcilers: OrderedDict[str, PollingReconciler] = OrderedDict()

    def __len__(self) -> int:
        return len(self._reconcilers)

    def __contains__(self, pipeline_config_id: str) -> bool:
        return pipeline_config_id in self._reconcilers

    def get(self, pipeline_config_id: str) -> PollingReconciler:
        reconciler = self._reconcilers.get(pipeline_config_id)
        if reconciler is not None:
            self._reconcilers.move_to_end(pipeline_config_id)
            return reconciler

        reconciler = PollingReconciler(
            self.fetch_for(pipeline_config_id),
            interval=self.interval,
            name=f"pipeline:{pipeline_config_id}",
        )
        self._reconcilers[pipeline_config_id] = reconciler
        self._evict_idle()
        return reconciler

    def _evict_idle(self) -> None:
        excess = len(self._reconcilers) - self.max_entries
        if excess <= 0:
            return
        for pipeline_config_id, reconciler in list(self._reconcilers.items())[:-1]:
            if excess <= 0:
                break
            if reconciler.idle:
                del self._reconcilers[pipeline_config_id]
                excess -= 1
                logger.debug("Evicted idle reconciler for %s", pipeline_config_id)

    def start_live(self, pipeline_config_ids: Iterable[str]) -> None:
        for pipeline_config_id in pipeline_config_ids:
            self.get(pipeline_config_id).start()

    async def stop_all(self) -> None:
        for reconciler in list(self._reconcilers.values()):
            await reconciler.stop()
