"""
Per-field debounce with last-write-wins delivery.

Each :class:`DebounceController` owns one pending timer and a generation
counter. Submitting supersedes whatever is pending or in flight: the
previous timer is cancelled and any outcome that comes back tagged with an
older generation is dropped.
"""
import asyncio
from typing import Any, Awaitable, Callable, Generic, Optional, Protocol, Set, TypeVar

from structlog import get_logger

logger = get_logger()

T = TypeVar("T")


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Timer(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class LoopTimer:
    """Timer backed by the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class DebounceController(Generic[T]):
    def __init__(
        self,
        field: str,
        resolve: Callable[..., Awaitable[T]],
        on_result: Callable[[T], None],
        *,
        quiet_period: float,
        timer: Optional[Timer] = None,
    ):
        self.field = field
        self.quiet_period = quiet_period
        self._resolve = resolve
        self._on_result = on_result
        self._timer = timer or LoopTimer()
        self._handle: Optional[TimerHandle] = None
        self._generation = 0
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def submit(self, *args: Any, delay: Optional[float] = None) -> int:
        """Schedule ``resolve(*args)`` after the quiet period; returns its generation."""
        generation = self._supersede()
        wait = self.quiet_period if delay is None else delay
        self._handle = self._timer.call_later(wait, lambda: self._fire(generation, args))
        return generation

    def cancel(self) -> int:
        """Drop the pending call and orphan any in-flight one."""
        return self._supersede()

    async def drain(self) -> None:
        """Wait for in-flight resolutions, including superseded ones."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _supersede(self) -> int:
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        return self._generation

    def _fire(self, generation: int, args: tuple) -> None:
        if not self.is_current(generation):
            return
        self._handle = None
        task = asyncio.ensure_future(self._run(generation, args))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, generation: int, args: tuple) -> None:
        result = await self._resolve(*args)
        if not self.is_current(generation):
            logger.info("resolution_discarded", field=self.field, generation=generation, current=self._generation)
            return
        self._on_result(result)
