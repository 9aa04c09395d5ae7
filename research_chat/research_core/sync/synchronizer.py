from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from loguru import logger

from research_chat.config import settings
from research_chat.errors import AuthenticationRequired, PollError
from research_chat.research_core.models.interfaces import ReportSnapshot, ResearchBackend
from research_chat.services import logger as log_service

# Returns True to keep polling.
SnapshotHandler = Callable[[object, ReportSnapshot], bool]
PollErrorHandler = Callable[[object, PollError], None]
AuthErrorHandler = Callable[[object, AuthenticationRequired], None]


class PollTimer:
    """A fixed-interval loop running ``tick`` until stopped or ``tick`` returns False.

    The first tick fires one interval after ``start``.
    """

    def __init__(self, interval: float, tick: Callable[["PollTimer"], Awaitable[bool]], *, name: str):
        self.interval = max(float(interval), 0.0)
        self.name = name
        self._tick = tick
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def active(self) -> bool:
        return not self._stopped and self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"Poll timer {self.name} already started")
        self._task = asyncio.create_task(self._run(), name=self.name)
        self._task.add_done_callback(self._on_done)

    def stop(self) -> None:
        self._stopped = True
        task = self._task
        if task is None or task.done():
            return
        # A tick that stops its own timer simply lets the loop exit.
        if task is not asyncio.current_task():
            task.cancel()

    async def wait(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval)
            if self._stopped:
                break
            if not await self._tick(self):
                break
        self._stopped = True

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, AuthenticationRequired):
            logger.error(f"Poll timer {self.name} crashed: {exc!r}")


class ResultSynchronizer:
    """Polls the authoritative report state of one chat at a time.

    At most one ``PollTimer`` exists; ``start`` always stops the previous one
    first. Fetch failures are reported as ``PollError`` and retried on the
    next tick. ``AuthenticationRequired`` stops polling and is re-raised from
    ``wait``.
    """

    def __init__(
        self,
        backend: ResearchBackend,
        on_snapshot: SnapshotHandler,
        *,
        interval: float | None = None,
        on_poll_error: PollErrorHandler | None = None,
        on_auth_required: AuthErrorHandler | None = None,
    ):
        self.backend = backend
        self.interval = float(settings.poll_interval_seconds if interval is None else interval)
        self._on_snapshot = on_snapshot
        self._on_poll_error = on_poll_error
        self._on_auth_required = on_auth_required
        self._timer: PollTimer | None = None
        self._chat_id: str | None = None
        self.ticks = 0

    @property
    def is_polling(self) -> bool:
        return self._timer is not None and not self._timer.stopped

    @property
    def chat_id(self) -> str | None:
        return self._chat_id if self.is_polling else None

    def start(self, token: object, chat_id: str) -> None:
        self.stop()

        async def tick(timer: PollTimer) -> bool:
            return await self._tick(timer, token, chat_id)

        self._chat_id = chat_id
        self._timer = PollTimer(self.interval, tick, name=f"poll-{chat_id}")
        self._timer.start()
        log_service.log_event("polling_started", "Polling for research updates", chat_id=chat_id)

    def stop(self) -> None:
        timer = self._timer
        if timer is None:
            return
        if not timer.stopped:
            log_service.log_event("polling_stopped", "Stopping polling", chat_id=self._chat_id)
        timer.stop()

    async def wait(self) -> None:
        """Wait for the current poll loop to finish; re-raises AuthenticationRequired."""
        if self._timer is not None:
            await self._timer.wait()

    async def poll_once(self, token: object, chat_id: str) -> bool:
        """Run one poll cycle outside the timer. Returns whether polling should continue."""
        snapshot = await self._fetch(token, chat_id)
        if snapshot is None:
            return True
        return self._on_snapshot(token, snapshot)

    async def _tick(self, timer: PollTimer, token: object, chat_id: str) -> bool:
        self.ticks += 1
        try:
            snapshot = await self._fetch(token, chat_id)
        except AuthenticationRequired:
            timer.stop()
            raise
        if timer.stopped:
            logger.debug(f"Discarding poll result for {chat_id}: timer stopped")
            return False
        if snapshot is None:
            return True
        return self._on_snapshot(token, snapshot)

    async def _fetch(self, token: object, chat_id: str) -> ReportSnapshot | None:
        started = time.monotonic()
        try:
            snapshot = await self.backend.fetch_report_state(chat_id)
        except AuthenticationRequired as exc:
            log_service.log_poll(chat_id, status="auth_required", error=str(exc))
            if self._on_auth_required is not None:
                self._on_auth_required(token, exc)
            raise
        except Exception as exc:
            error = PollError(f"Failed to load messages for chat {chat_id}: {exc}")
            log_service.log_poll(chat_id, status="failed", error=str(exc))
            if self._on_poll_error is not None:
                self._on_poll_error(token, error)
            return None

        log_service.log_poll(
            chat_id,
            status="success",
            messages=len(snapshot.messages),
            is_completed=snapshot.is_completed,
            has_error=snapshot.has_error,
        )
        logger.debug(f"Poll for {chat_id} took {int((time.monotonic() - started) * 1000)}ms")
        return snapshot
