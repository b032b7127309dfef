import asyncio
import contextlib
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from .models import PublishedState, RefreshStatus, SessionContext
from .pipeline import ActivityPipeline
from .util import normalize_address

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Runs refresh cycles on a timer and on demand.

    Every trigger starts a new cycle with a higher sequence number and cancels
    the one in flight. A cycle only publishes if its sequence number is still
    the latest when it finishes, and it publishes by swapping the whole
    PublishedState, so readers never see a half-updated feed.
    """

    def __init__(
        self,
        pipeline: ActivityPipeline,
        interval_sec: float = 30,
        context: Optional[SessionContext] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.pipeline = pipeline
        self.interval_sec = interval_sec
        self.clock = clock
        self._context = context or SessionContext()
        self._state = PublishedState.initial()
        self._seq = 0
        self._inflight: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self.stop_event = asyncio.Event()
        self.stats: Dict[str, Any] = {
            "cycles_started": 0,
            "cycles_succeeded": 0,
            "cycles_failed": 0,
            "cycles_superseded": 0,
            "dropped_records": 0,
            "last_trigger": None,
            "started_at": int(clock()),
        }

    @property
    def state(self) -> PublishedState:
        return self._state

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def cycle(self) -> int:
        return self._seq

    async def start(self) -> None:
        self.trigger("startup")
        self._timer_task = asyncio.create_task(self._timer_loop())

    async def stop(self) -> None:
        self.stop_event.set()
        for t in (self._timer_task, self._inflight):
            if t is None:
                continue
            t.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await t
        self._timer_task = None
        self._inflight = None

    async def _timer_loop(self) -> None:
        while not self.stop_event.is_set():
            await asyncio.sleep(max(1, self.interval_sec))
            if self.stop_event.is_set():
                break
            self.trigger("timer")

    def trigger(self, reason: str = "manual") -> int:
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            self.stats["cycles_superseded"] += 1
        self._seq += 1
        seq = self._seq
        self.stats["cycles_started"] += 1
        self.stats["last_trigger"] = reason
        logger.debug("refresh cycle %d triggered by %s", seq, reason)
        self._state = replace(self._state, status=RefreshStatus.FETCHING)
        self._inflight = asyncio.create_task(self._run_cycle(seq, self._context))
        return seq

    def set_subject(self, account: Optional[str]) -> int:
        subject = normalize_address(account) if account else None
        if subject == self._context.subject:
            return self._seq
        self._context = SessionContext(subject=subject)
        self._state = replace(self._state, stats=self._state.stats.without_user())
        logger.info("subject account changed to %s", subject or "none")
        return self.trigger("subject")

    async def wait_idle(self) -> PublishedState:
        while self._inflight is not None and not self._inflight.done():
            await asyncio.gather(self._inflight, return_exceptions=True)
        return self._state

    async def refresh_now(self, reason: str = "manual") -> PublishedState:
        self.trigger(reason)
        return await self.wait_idle()

    async def _run_cycle(self, seq: int, context: SessionContext) -> None:
        try:
            result = await self.pipeline.run_cycle(context)
        except asyncio.CancelledError:
            logger.debug("refresh cycle %d superseded", seq)
            raise
        except Exception as e:
            if seq != self._seq:
                return
            self.stats["cycles_failed"] += 1
            logger.error("refresh cycle %d failed: %s: %s", seq, type(e).__name__, e)
            self._state = replace(
                self._state,
                status=RefreshStatus.FAILED,
                cycle=seq,
                error=f"{type(e).__name__}: {e}",
            )
            return

        if seq != self._seq:
            logger.debug("discarding result of stale cycle %d (latest %d)", seq, self._seq)
            return

        self.stats["cycles_succeeded"] += 1
        self.stats["dropped_records"] += result.dropped_records
        self._state = PublishedState(
            feed=list(result.feed),
            stats=result.stats,
            status=RefreshStatus.SUCCEEDED,
            cycle=seq,
            last_updated=self.clock(),
            block_number=result.block_number,
            stale_sources=list(result.stale_sources),
            error=None,
        )
        if result.stale_sources:
            logger.info(
                "cycle %d published at block %d with stale sources: %s",
                seq,
                result.block_number,
                ", ".join(result.stale_sources),
            )
        else:
            logger.info(
                "cycle %d published at block %d: %d feed records",
                seq,
                result.block_number,
                len(result.feed),
            )
