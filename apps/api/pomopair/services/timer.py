"""Shared countdown timer replicated between the two peers of a call.

Each peer runs its own countdown. Only discrete control events (start, stop, reset,
adjust) cross the wire, so the two clocks may drift while running; there is no
periodic re-synchronization.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..core.config import settings
from ..schemas.signaling import TimerAction, TimerEvent

TimerEventSender = Callable[[TimerEvent], Awaitable[None]]
StateListener = Callable[["TimerState"], None]
FinishedHandler = Callable[[], Awaitable[None]]

logger = logging.getLogger(__name__)


class Origin(str, enum.Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class TimerState:
    total_time: float
    time_remaining: float
    is_running: bool = False

    @property
    def progress(self) -> float:
        if self.total_time == 0:
            return 0.0
        return self.time_remaining / self.total_time

    @property
    def time_string(self) -> str:
        minutes, seconds = divmod(int(self.time_remaining), 60)
        return f"{minutes:02d}:{seconds:02d}"


class TimerController:
    """Apply timer actions locally and replicate the local ones to the peer.

    Every mutating method takes an ``origin``. Local actions emit the matching event
    through ``on_local_event``; remote ones never do, which is what keeps two peers
    from echoing an event back and forth.
    """

    def __init__(
        self,
        total_time: float | None = None,
        *,
        tick_interval: float | None = None,
        on_local_event: TimerEventSender | None = None,
        on_finished: FinishedHandler | None = None,
        on_change: StateListener | None = None,
    ) -> None:
        total = settings.timer_default_seconds if total_time is None else total_time
        self.state = TimerState(total_time=total, time_remaining=total)
        self.on_local_event = on_local_event
        self.on_finished = on_finished
        self.on_change = on_change
        self._tick = settings.timer_tick_seconds if tick_interval is None else tick_interval
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    async def toggle(self, origin: Origin = Origin.LOCAL) -> None:
        if self.state.is_running:
            await self.stop(origin)
        else:
            await self.start(origin)

    async def start(self, origin: Origin = Origin.LOCAL) -> None:
        if self.state.is_running:
            return
        self.state.is_running = True
        self._task = asyncio.create_task(self._countdown())
        self._changed()
        await self._emit(
            origin,
            TimerEvent(
                action=TimerAction.START,
                time_remaining=self.state.time_remaining,
                total_time=self.state.total_time,
            ),
        )

    async def stop(self, origin: Origin = Origin.LOCAL) -> None:
        if not self.state.is_running:
            return
        self.state.is_running = False
        await self._cancel_countdown()
        self._changed()
        await self._emit(
            origin,
            TimerEvent(
                action=TimerAction.STOP,
                time_remaining=self.state.time_remaining,
                total_time=self.state.total_time,
            ),
        )

    async def reset(self, origin: Origin = Origin.LOCAL) -> None:
        await self.stop(origin)
        self.state.time_remaining = self.state.total_time
        self._changed()
        await self._emit(origin, TimerEvent(action=TimerAction.RESET, total_time=self.state.total_time))

    async def adjust(self, delta: float) -> bool:
        """Shift the total duration by ``delta`` seconds while stopped.

        Returns ``False`` and leaves the state untouched when the timer is running or
        the new total would not be positive.
        """

        if self.state.is_running:
            return False
        new_total = self.state.total_time + delta
        if new_total <= 0:
            return False
        self.state.total_time = new_total
        self.state.time_remaining = new_total
        self._changed()
        await self._emit(Origin.LOCAL, TimerEvent(action=TimerAction.ADJUST, total_time=new_total))
        return True

    async def apply_remote(self, event: TimerEvent) -> None:
        """Mirror a peer's timer event without re-emitting it."""

        logger.info("Remote timer event: %s", event.action.value)
        if event.action is TimerAction.START:
            self._adopt(total_time=event.total_time, time_remaining=event.time_remaining)
            await self.start(Origin.REMOTE)
        elif event.action is TimerAction.STOP:
            self._adopt(time_remaining=event.time_remaining)
            await self.stop(Origin.REMOTE)
        elif event.action is TimerAction.RESET:
            self._adopt(total_time=event.total_time)
            await self.reset(Origin.REMOTE)
        elif event.action is TimerAction.ADJUST:
            self._adopt(total_time=event.total_time, time_remaining=event.total_time)
        self._changed()

    async def close(self) -> None:
        self.state.is_running = False
        await self._cancel_countdown()

    def _adopt(self, *, total_time: float | None = None, time_remaining: float | None = None) -> None:
        if total_time is not None:
            self.state.total_time = total_time
        if time_remaining is not None:
            self.state.time_remaining = time_remaining

    async def _emit(self, origin: Origin, event: TimerEvent) -> None:
        if origin is not Origin.LOCAL or self.on_local_event is None:
            return
        await self.on_local_event(event)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self.state)

    async def _cancel_countdown(self) -> None:
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _countdown(self) -> None:
        while self.state.is_running:
            await asyncio.sleep(self._tick)
            if not self.state.is_running:
                return
            self.state.time_remaining = max(0.0, self.state.time_remaining - 1)
            self._changed()
            if self.state.time_remaining <= 0:
                logger.info("Timer finished")
                try:
                    await self.stop(Origin.LOCAL)
                except Exception:  # noqa: BLE001
                    logger.exception("Could not report the finished timer to the peer")
                if self.on_finished is not None:
                    await self.on_finished()
                return
