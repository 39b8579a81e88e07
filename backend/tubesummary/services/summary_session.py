from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from backend.tubesummary.services.errors import TubeSummaryError, user_message_for
from backend.tubesummary.services.summary_service import VideoSummaryResult

LOGGER = logging.getLogger("tubesummary.session")

DEFAULT_CLOSE_RESET_DELAY_SECONDS = 0.3

SummaryRunner = Callable[[str], Awaitable[VideoSummaryResult]]
SnapshotListener = Callable[["SummarySnapshot"], None]


class SummaryState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class SummarySnapshot:
    state: SummaryState
    video_id: str | None = None
    result: VideoSummaryResult | None = None
    error_message: str | None = None
    retryable: bool = False


IDLE_SNAPSHOT = SummarySnapshot(state=SummaryState.IDLE)


class SummarySession:
    """State of the summary modal for one user.

    Idle -> Loading -> Success | Failed -> Idle. At most one run is in flight:
    ``open`` and ``retry`` are ignored while loading. Each run carries a
    generation number and its result is applied only if that generation is
    still current, so results arriving after ``cancel`` or ``close`` are dropped.
    Must be driven from inside a running event loop.
    """

    def __init__(
        self,
        runner: SummaryRunner,
        *,
        close_reset_delay_seconds: float = DEFAULT_CLOSE_RESET_DELAY_SECONDS,
    ) -> None:
        self._runner = runner
        self._close_reset_delay_seconds = max(0.0, close_reset_delay_seconds)
        self._snapshot = IDLE_SNAPSHOT
        self._generation = 0
        self._is_open = False
        self._task: asyncio.Task[None] | None = None
        self._reset_task: asyncio.Task[None] | None = None
        self._listeners: list[SnapshotListener] = []

    @property
    def snapshot(self) -> SummarySnapshot:
        return self._snapshot

    @property
    def state(self) -> SummaryState:
        return self._snapshot.state

    @property
    def is_open(self) -> bool:
        return self._is_open

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def open(self, video_id: str) -> asyncio.Task[None] | None:
        self._cancel_pending_reset()
        self._is_open = True

        current = self._snapshot
        if current.state is SummaryState.LOADING:
            LOGGER.debug("summary session open ignored state=loading video_id=%s", video_id)
            return None
        if current.video_id == video_id and current.state in {
            SummaryState.SUCCESS,
            SummaryState.FAILED,
        }:
            return None
        return self._start(video_id)

    def retry(self) -> asyncio.Task[None] | None:
        if not self._is_open:
            return None
        current = self._snapshot
        if current.state is not SummaryState.FAILED or current.video_id is None:
            return None
        LOGGER.info("summary session retry video_id=%s", current.video_id)
        return self._start(current.video_id)

    def cancel(self) -> None:
        if self._snapshot.state is not SummaryState.LOADING:
            return
        self._generation += 1
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        LOGGER.info("summary session cancelled video_id=%s", self._snapshot.video_id)
        self._set_snapshot(IDLE_SNAPSHOT)

    def close(self) -> None:
        self._is_open = False
        self.cancel()
        self._cancel_pending_reset()
        if self._snapshot.state is SummaryState.IDLE:
            return
        loop = asyncio.get_running_loop()
        self._reset_task = loop.create_task(self._reset_after_delay(self._generation))

    async def wait(self) -> None:
        """Wait for the in-flight run and any pending close reset to settle."""
        for task in (self._task, self._reset_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    def _start(self, video_id: str) -> asyncio.Task[None]:
        loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        self._set_snapshot(SummarySnapshot(state=SummaryState.LOADING, video_id=video_id))
        task = loop.create_task(self._run(video_id, generation))
        self._task = task
        return task

    async def _run(self, video_id: str, generation: int) -> None:
        try:
            result = await self._runner(video_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning(
                "summary session run_failed video_id=%s error=%s",
                video_id,
                type(exc).__name__,
                exc_info=not isinstance(exc, TubeSummaryError),
            )
            self._apply_result(
                generation,
                SummarySnapshot(
                    state=SummaryState.FAILED,
                    video_id=video_id,
                    error_message=user_message_for(exc),
                    retryable=exc.retryable if isinstance(exc, TubeSummaryError) else True,
                ),
            )
            return

        self._apply_result(
            generation,
            SummarySnapshot(state=SummaryState.SUCCESS, video_id=video_id, result=result),
        )

    def _apply_result(self, generation: int, snapshot: SummarySnapshot) -> None:
        if generation != self._generation or self._snapshot.state is not SummaryState.LOADING:
            LOGGER.info(
                "summary session stale_result_discarded video_id=%s state=%s",
                snapshot.video_id,
                snapshot.state.value,
            )
            return
        self._task = None
        self._set_snapshot(snapshot)

    async def _reset_after_delay(self, generation: int) -> None:
        await asyncio.sleep(self._close_reset_delay_seconds)
        if generation != self._generation or self._is_open:
            return
        self._reset_task = None
        self._set_snapshot(IDLE_SNAPSHOT)

    def _cancel_pending_reset(self) -> None:
        reset_task = self._reset_task
        self._reset_task = None
        if reset_task is not None and not reset_task.done():
            reset_task.cancel()

    def _set_snapshot(self, snapshot: SummarySnapshot) -> None:
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(snapshot)
