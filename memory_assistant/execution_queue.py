"""Per-conversation async lanes.

Work for one conversation id runs strictly one at a time in arrival order,
so two requests can never resolve the same tool call concurrently. Lanes
for different conversations run independently.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from memory_assistant.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

DEFAULT_LANE = "main"


class LaneClearedError(RuntimeError):
    """Raised when queued work is rejected after a lane clear."""

    def __init__(self, lane: str | None = None):
        message = f'Conversation lane "{lane}" cleared' if lane else "Conversation lane cleared"
        super().__init__(message)
        self.lane = lane or ""


@dataclass
class LaneEntry:
    task: Callable[[], Awaitable[object]]
    future: asyncio.Future[object]
    enqueued_at_ms: int
    warn_after_ms: int
    on_wait: Callable[[int, int], None] | None = None


@dataclass
class LaneState:
    lane: str
    queue: deque[LaneEntry] = field(default_factory=deque)
    active: bool = False


def _now_ms() -> int:
    return int(asyncio.get_running_loop().time() * 1000)


class ConversationLanes:
    """In-process serial queue per conversation id."""

    def __init__(self, warn_after_ms: int = 2_000):
        self._lanes: dict[str, LaneState] = {}
        self.warn_after_ms = max(0, int(warn_after_ms))

    @staticmethod
    def _clean(lane: str) -> str:
        return str(lane or "").strip() or DEFAULT_LANE

    def _get_lane_state(self, lane: str) -> LaneState:
        existing = self._lanes.get(lane)
        if existing:
            return existing
        created = LaneState(lane=lane)
        self._lanes[lane] = created
        return created

    async def _run_entry(self, state: LaneState, entry: LaneEntry) -> None:
        started_ms = _now_ms()
        try:
            result = await entry.task()
            log.debug(
                "lane task complete",
                lane=state.lane,
                duration_ms=_now_ms() - started_ms,
                queued=len(state.queue),
            )
            if not entry.future.done():
                entry.future.set_result(result)
        except Exception as e:
            log.error(
                "lane task failed",
                lane=state.lane,
                duration_ms=_now_ms() - started_ms,
                error=str(e),
            )
            if not entry.future.done():
                entry.future.set_exception(e)
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        finally:
            state.active = False
            self._drain(state)

    def _drain(self, state: LaneState) -> None:
        if state.active or not state.queue:
            if not state.active and not state.queue:
                self._lanes.pop(state.lane, None)
            return

        entry = state.queue.popleft()
        waited_ms = _now_ms() - entry.enqueued_at_ms
        if waited_ms >= entry.warn_after_ms:
            queued_ahead = len(state.queue)
            if entry.on_wait:
                entry.on_wait(waited_ms, queued_ahead)
            log.warning(
                "lane wait exceeded",
                lane=state.lane,
                waited_ms=waited_ms,
                queued_ahead=queued_ahead,
            )
        state.active = True
        asyncio.create_task(self._run_entry(state, entry))

    async def run_exclusive(
        self,
        lane: str,
        task: Callable[[], Awaitable[T]],
        *,
        warn_after_ms: int | None = None,
        on_wait: Callable[[int, int], None] | None = None,
    ) -> T:
        """Queue ``task`` behind earlier work for ``lane`` and await its result."""
        cleaned = self._clean(lane)
        state = self._get_lane_state(cleaned)
        loop = asyncio.get_running_loop()
        future: asyncio.Future[object] = loop.create_future()
        state.queue.append(
            LaneEntry(
                task=task,
                future=future,
                enqueued_at_ms=_now_ms(),
                warn_after_ms=self.warn_after_ms if warn_after_ms is None else max(0, int(warn_after_ms)),
                on_wait=on_wait,
            )
        )
        self._drain(state)
        result = await future
        return result  # type: ignore[return-value]

    def get_queue_size(self, lane: str) -> int:
        """Queued plus running entries for a lane."""
        state = self._lanes.get(self._clean(lane))
        if not state:
            return 0
        return len(state.queue) + (1 if state.active else 0)

    def is_busy(self, lane: str) -> bool:
        return self.get_queue_size(lane) > 0

    def clear_lane(self, lane: str) -> int:
        """Reject every queued (not yet running) entry of a lane."""
        cleaned = self._clean(lane)
        state = self._lanes.get(cleaned)
        if not state:
            return 0
        removed = len(state.queue)
        while state.queue:
            entry = state.queue.popleft()
            if not entry.future.done():
                entry.future.set_exception(LaneClearedError(cleaned))
        return removed
