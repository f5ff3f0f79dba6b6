# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: Session clock. Periodic refresh tick, drill countdown and the
storage watch that picks up writes from other replicas.
Pure scheduling; the callbacks carry all business rules.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from mustering.core.config import settings
from mustering.core.logging import get_logger

logger = get_logger(__name__)

Callback = Callable[[], None]


class SessionClock(ABC):
    """Timer collaborator owned by the mustering session service."""

    def __init__(self, refresh_interval: float | None = None) -> None:
        if refresh_interval is None:
            refresh_interval = settings.REFRESH_INTERVAL_SECONDS
        self.refresh_interval = refresh_interval

    @abstractmethod
    def start(self, on_refresh: Callback) -> None:
        """Call ``on_refresh`` every ``refresh_interval`` seconds until stopped."""

    @abstractmethod
    def stop_refresh(self) -> None:
        """Stop the refresh tick only; a running countdown keeps going."""

    @abstractmethod
    def start_countdown(self, seconds: int, on_complete: Callback) -> None:
        """One-shot countdown; replaces any countdown already running."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the refresh tick and any countdown. Safe to call repeatedly."""

    @abstractmethod
    def watch(self, on_poll: Callback) -> None:
        """
        Call ``on_poll`` every ``refresh_interval`` seconds whatever the
        session state. Only ``stop_watch`` ends it; ``cancel`` does not.
        """

    @abstractmethod
    def stop_watch(self) -> None:
        ...

    @property
    @abstractmethod
    def running(self) -> bool:
        ...

    @property
    @abstractmethod
    def watching(self) -> bool:
        ...

    @property
    @abstractmethod
    def countdown_remaining(self) -> int:
        ...


class AsyncioSessionClock(SessionClock):
    """Clock backed by tasks on the running asyncio event loop."""

    def __init__(self, refresh_interval: float | None = None) -> None:
        super().__init__(refresh_interval)
        self._refresh_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._remaining = 0

    @property
    def running(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    @property
    def watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    @property
    def countdown_remaining(self) -> int:
        return self._remaining

    def start(self, on_refresh: Callback) -> None:
        self._cancel_task(self._refresh_task)
        self._refresh_task = self._spawn(self._repeat("refresh", on_refresh))

    def stop_refresh(self) -> None:
        self._cancel_task(self._refresh_task)
        self._refresh_task = None

    def start_countdown(self, seconds: int, on_complete: Callback) -> None:
        self._cancel_task(self._countdown_task)
        self._remaining = seconds
        self._countdown_task = self._spawn(self._countdown(on_complete))

    def cancel(self) -> None:
        self.stop_refresh()
        self._cancel_task(self._countdown_task)
        self._countdown_task = None
        self._remaining = 0

    def watch(self, on_poll: Callback) -> None:
        self._cancel_task(self._watch_task)
        self._watch_task = self._spawn(self._repeat("storage watch", on_poll))

    def stop_watch(self) -> None:
        self._cancel_task(self._watch_task)
        self._watch_task = None

    async def _repeat(self, name: str, callback: Callback) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            try:
                callback()
            except Exception as exc:
                # A failing run must not kill the loop; the next one retries.
                logger.warning("%s tick failed: %s", name, exc)

    async def _countdown(self, on_complete: Callback) -> None:
        while self._remaining > 0:
            await asyncio.sleep(1)
            self._remaining -= 1
        on_complete()

    @staticmethod
    def _spawn(coro: Awaitable[None]) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(coro)

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done():
            task.cancel()


class ManualSessionClock(SessionClock):
    """Deterministic clock driven by ``advance()``; no event loop required."""

    def __init__(self, refresh_interval: float | None = None) -> None:
        super().__init__(refresh_interval)
        self._on_refresh: Optional[Callback] = None
        self._on_complete: Optional[Callback] = None
        self._on_poll: Optional[Callback] = None
        self._since_tick = 0.0
        self._since_poll = 0.0
        self._remaining = 0
        self.ticks = 0
        self.polls = 0

    @property
    def running(self) -> bool:
        return self._on_refresh is not None

    @property
    def watching(self) -> bool:
        return self._on_poll is not None

    @property
    def countdown_remaining(self) -> int:
        return self._remaining

    def start(self, on_refresh: Callback) -> None:
        self._on_refresh = on_refresh
        self._since_tick = 0.0

    def stop_refresh(self) -> None:
        self._on_refresh = None
        self._since_tick = 0.0

    def start_countdown(self, seconds: int, on_complete: Callback) -> None:
        self._remaining = seconds
        self._on_complete = on_complete

    def cancel(self) -> None:
        self.stop_refresh()
        self._on_complete = None
        self._remaining = 0

    def watch(self, on_poll: Callback) -> None:
        self._on_poll = on_poll
        self._since_poll = 0.0

    def stop_watch(self) -> None:
        self._on_poll = None
        self._since_poll = 0.0

    def advance(self, seconds: int) -> None:
        """Move time forward one second at a time, firing due callbacks."""
        for _ in range(seconds):
            if self._on_complete is not None and self._remaining > 0:
                self._remaining -= 1
                if self._remaining == 0:
                    callback, self._on_complete = self._on_complete, None
                    callback()
            if self._on_poll is not None:
                self._since_poll += 1
                if self._since_poll >= self.refresh_interval:
                    self._since_poll = 0.0
                    self.polls += 1
                    self._on_poll()
            if self._on_refresh is not None:
                self._since_tick += 1
                if self._since_tick >= self.refresh_interval:
                    self._since_tick = 0.0
                    self.ticks += 1
                    self._on_refresh()
