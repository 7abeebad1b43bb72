"""Rest countdown between sets.

``RestTimer`` is the state machine; ``RestTimerRunner`` drives one from an
asyncio task. A session owns a single runner, so starting a new rest while
one is counting down replaces it. Pausing stops the countdown task and
resuming starts a fresh one from the remaining time.
"""
import asyncio
import inspect
import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Union

from periolifts.config import settings
from periolifts.core.exceptions import InvalidDurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Running:
    remaining_seconds: int
    total_seconds: int


@dataclass(frozen=True)
class Paused:
    remaining_seconds: int
    total_seconds: int


@dataclass(frozen=True)
class Expired:
    total_seconds: int


TimerState = Union[Idle, Running, Paused, Expired]
ExpiryCallback = Callable[[], Optional[Awaitable[None]]]


def _to_seconds(duration: Union[int, float, timedelta]) -> int:
    seconds = duration.total_seconds() if isinstance(duration, timedelta) else duration
    if not math.isfinite(seconds) or seconds < 1:
        raise InvalidDurationError(f"Rest duration must be at least one second, got {seconds!r}")
    return int(seconds)


class RestTimer:
    def __init__(self) -> None:
        self._state: TimerState = Idle()

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return isinstance(self._state, Running)

    def start(self, duration: Union[int, float, timedelta]) -> Running:
        seconds = _to_seconds(duration)
        self._state = Running(remaining_seconds=seconds, total_seconds=seconds)
        return self._state

    def tick(self) -> TimerState:
        state = self._state
        if isinstance(state, Running):
            remaining = state.remaining_seconds - 1
            if remaining <= 0:
                self._state = Expired(total_seconds=state.total_seconds)
            else:
                self._state = Running(remaining_seconds=remaining, total_seconds=state.total_seconds)
        return self._state

    def pause(self) -> TimerState:
        state = self._state
        if isinstance(state, Running):
            self._state = Paused(remaining_seconds=state.remaining_seconds, total_seconds=state.total_seconds)
        return self._state

    def resume(self) -> TimerState:
        state = self._state
        if isinstance(state, Paused):
            self._state = Running(remaining_seconds=state.remaining_seconds, total_seconds=state.total_seconds)
        return self._state

    def skip(self) -> Idle:
        self._state = Idle()
        return self._state

    cancel = skip

    def add_time(self, seconds: int) -> TimerState:
        state = self._state
        if isinstance(state, (Running, Paused)) and seconds > 0:
            self._state = type(state)(
                remaining_seconds=state.remaining_seconds + seconds,
                total_seconds=state.total_seconds,
            )
        return self._state

    def subtract_time(self, seconds: int) -> TimerState:
        state = self._state
        if isinstance(state, (Running, Paused)) and seconds > 0:
            remaining = max(state.remaining_seconds - seconds, 0)
            if remaining == 0:
                return self.skip()
            self._state = type(state)(remaining_seconds=remaining, total_seconds=state.total_seconds)
        return self._state

    @property
    def remaining_seconds(self) -> int:
        return self._state.remaining_seconds if isinstance(self._state, (Running, Paused)) else 0

    @property
    def progress(self) -> float:
        """Elapsed share of the rest, between 0.0 and 1.0."""
        state = self._state
        if isinstance(state, Expired):
            return 1.0
        if not isinstance(state, (Running, Paused)) or state.total_seconds == 0:
            return 0.0
        elapsed = state.total_seconds - state.remaining_seconds
        return min(max(elapsed / state.total_seconds, 0.0), 1.0)

    @property
    def formatted(self) -> str:
        minutes, seconds = divmod(self.remaining_seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"


class RestTimerRunner:
    def __init__(
        self,
        timer: RestTimer | None = None,
        *,
        tick_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.timer = timer or RestTimer()
        self._tick_interval = tick_interval
        self._sleep = sleep
        self._task: asyncio.Task | None = None
        self._generation = 0
        self._on_expire: ExpiryCallback | None = None

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(
        self,
        duration: Union[int, float, timedelta],
        on_expire: ExpiryCallback | None = None,
    ) -> asyncio.Task:
        """Start counting down, replacing any countdown already in flight."""
        self.timer.start(duration)
        if self.is_active:
            logger.debug("Replacing running rest timer")
        self._on_expire = on_expire
        return self._launch()

    def pause(self) -> None:
        if not isinstance(self.timer.state, Running):
            return
        self._generation += 1
        self._stop_task()
        self.timer.pause()

    def resume(self) -> asyncio.Task | None:
        """Continue a paused countdown from its remaining time."""
        if not isinstance(self.timer.state, Paused):
            return None
        self.timer.resume()
        return self._launch()

    def _launch(self) -> asyncio.Task:
        self._stop_task()
        self._generation += 1
        self._task = asyncio.create_task(self._countdown(self._generation, self._on_expire))
        return self._task

    def skip(self) -> None:
        self._generation += 1
        self._stop_task()
        self.timer.skip()

    cancel = skip

    async def aclose(self) -> None:
        task = self._task
        self.skip()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _stop_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _countdown(self, generation: int, on_expire: ExpiryCallback | None) -> None:
        while True:
            await self._sleep(self._tick_interval)
            if generation != self._generation:
                return
            state = self.timer.tick()
            if isinstance(state, Expired):
                logger.debug("Rest timer expired after %ss", state.total_seconds)
                if on_expire is not None:
                    outcome = on_expire()
                    if inspect.isawaitable(outcome):
                        await outcome
                return
            if not isinstance(state, Running):
                return


def effective_rest_seconds(
    set_rest_seconds: int | None, *, default_seconds: int | None = None, use_default: bool | None = None
) -> int:
    """Rest length for a set: the user's default when forced, else the set's own, else the default.

    Unset arguments come from ``DEFAULT_REST_SECONDS`` and ``USE_DEFAULT_REST_TIME``.
    """
    if default_seconds is None:
        default_seconds = settings.DEFAULT_REST_SECONDS
    if use_default is None:
        use_default = settings.USE_DEFAULT_REST_TIME
    if use_default or not set_rest_seconds:
        return default_seconds
    return set_rest_seconds
