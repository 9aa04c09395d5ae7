from __future__ import annotations

import asyncio

import pytest

from research_chat.errors import AuthenticationRequired, PollError
from research_chat.research_core.models.interfaces import ReportSnapshot
from research_chat.research_core.sync.synchronizer import PollTimer, ResultSynchronizer


class ScriptedFetches:
    def __init__(self, *results):
        self.results = list(results)
        self.fetched: list[str] = []

    async def fetch_report_state(self, chat_id: str) -> ReportSnapshot:
        self.fetched.append(chat_id)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class Recorder:
    def __init__(self, keep_polling=lambda snapshot: not snapshot.is_completed):
        self.snapshots: list[tuple[object, ReportSnapshot]] = []
        self.errors: list[PollError] = []
        self.auth_errors: list[AuthenticationRequired] = []
        self.keep_polling = keep_polling

    def on_snapshot(self, token, snapshot) -> bool:
        self.snapshots.append((token, snapshot))
        return self.keep_polling(snapshot)

    def on_poll_error(self, _token, error) -> None:
        self.errors.append(error)

    def on_auth_required(self, _token, error) -> None:
        self.auth_errors.append(error)


def make_synchronizer(backend, recorder, interval=0.01) -> ResultSynchronizer:
    return ResultSynchronizer(
        backend,
        recorder.on_snapshot,
        interval=interval,
        on_poll_error=recorder.on_poll_error,
        on_auth_required=recorder.on_auth_required,
    )


@pytest.mark.asyncio
async def test_polls_until_handler_says_stop():
    backend = ScriptedFetches(
        ReportSnapshot(chat_id="chat-1"),
        ReportSnapshot(chat_id="chat-1"),
        ReportSnapshot(chat_id="chat-1", is_completed=True),
    )
    recorder = Recorder()
    sync = make_synchronizer(backend, recorder)

    sync.start("token", "chat-1")
    assert sync.is_polling
    assert sync.chat_id == "chat-1"
    await asyncio.wait_for(sync.wait(), timeout=5)

    assert backend.fetched == ["chat-1"] * 3
    assert sync.ticks == 3
    assert not sync.is_polling
    assert sync.chat_id is None
    assert {token for token, _ in recorder.snapshots} == {"token"}


@pytest.mark.asyncio
async def test_first_tick_waits_one_interval():
    backend = ScriptedFetches(ReportSnapshot(chat_id="chat-1"))
    sync = make_synchronizer(backend, Recorder(), interval=3600)

    sync.start("token", "chat-1")
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert backend.fetched == []

    sync.stop()
    await sync.wait()
    assert not sync.is_polling


@pytest.mark.asyncio
async def test_start_replaces_previous_timer():
    backend = ScriptedFetches(ReportSnapshot(chat_id="any"))
    recorder = Recorder(keep_polling=lambda snapshot: True)
    sync = make_synchronizer(backend, recorder, interval=3600)

    sync.start("old", "chat-1")
    first = sync._timer
    sync.start("new", "chat-2")

    assert first.stopped
    assert sync.chat_id == "chat-2"
    await first.wait()
    sync.stop()
    await sync.wait()


@pytest.mark.asyncio
async def test_fetch_failure_reported_and_retried():
    backend = ScriptedFetches(
        RuntimeError("connection reset"),
        ReportSnapshot(chat_id="chat-1", is_completed=True),
    )
    recorder = Recorder()
    sync = make_synchronizer(backend, recorder)

    sync.start("token", "chat-1")
    await asyncio.wait_for(sync.wait(), timeout=5)

    assert len(recorder.errors) == 1
    assert "connection reset" in str(recorder.errors[0])
    assert len(recorder.snapshots) == 1
    assert sync.ticks == 2


@pytest.mark.asyncio
async def test_authentication_failure_stops_polling_and_is_raised():
    backend = ScriptedFetches(AuthenticationRequired())
    recorder = Recorder()
    sync = make_synchronizer(backend, recorder)

    sync.start("token", "chat-1")
    with pytest.raises(AuthenticationRequired):
        await asyncio.wait_for(sync.wait(), timeout=5)

    assert len(recorder.auth_errors) == 1
    assert recorder.errors == []
    assert not sync.is_polling
    assert backend.fetched == ["chat-1"]


@pytest.mark.asyncio
async def test_poll_once_reports_errors_without_raising():
    backend = ScriptedFetches(RuntimeError("boom"))
    recorder = Recorder()
    sync = make_synchronizer(backend, recorder)

    assert await sync.poll_once("token", "chat-1") is True
    assert len(recorder.errors) == 1
    assert not sync.is_polling


@pytest.mark.asyncio
async def test_stop_during_fetch_discards_result():
    release = asyncio.Event()

    class SlowBackend:
        async def fetch_report_state(self, chat_id):
            await release.wait()
            return ReportSnapshot(chat_id=chat_id, is_completed=True)

    recorder = Recorder()
    sync = make_synchronizer(SlowBackend(), recorder, interval=0)

    sync.start("token", "chat-1")
    for _ in range(5):
        await asyncio.sleep(0)
    sync.stop()
    release.set()
    await sync.wait()

    assert recorder.snapshots == []


@pytest.mark.asyncio
async def test_poll_timer_stop_from_own_tick_exits_cleanly():
    ticks = []

    async def tick(timer: PollTimer) -> bool:
        ticks.append(1)
        timer.stop()
        return True

    timer = PollTimer(0, tick, name="self-stopping")
    timer.start()
    await asyncio.wait_for(timer.wait(), timeout=5)

    assert ticks == [1]
    assert timer.stopped
    assert not timer.active
    with pytest.raises(RuntimeError):
        timer.start()
