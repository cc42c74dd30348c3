"""Tests for the live code display session."""

from __future__ import annotations

import io
import threading
import time

import pytest

from otp import generate_code, make_entry
from otp_watch import (
    DisplaySession,
    Frame,
    NothingToDisplay,
    SessionError,
    SessionState,
    Stopped,
    TerminalRenderer,
    start_display,
    watch_keypress,
)

SECRET = "JBSWY3DPEHPK3PXP"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class Recorder:
    def __init__(self):
        self.events = []
        self.lock = threading.Lock()

    def __call__(self, event):
        with self.lock:
            self.events.append(event)

    def of(self, kind):
        with self.lock:
            return [e for e in self.events if isinstance(e, kind)]


@pytest.fixture
def entries():
    return [make_entry("GitHub", SECRET), make_entry("AWS", "GEZDGNBVGY3TQOJQ")]


def test_empty_entries_report_nothing_once():
    recorder = Recorder()
    session = start_display([], recorder)

    assert session.state is SessionState.STOPPED
    assert not session.timer_started
    assert recorder.events == [NothingToDisplay()]

    assert session.cancel() is False
    assert session.tick() is False
    assert recorder.events == [NothingToDisplay()]


def test_start_renders_first_frame(entries):
    recorder = Recorder()
    clock = FakeClock()
    session = start_display(entries, recorder, clock=clock, background=False)

    assert session.state is SessionState.RUNNING
    [frame] = recorder.of(Frame)
    assert frame.tick == 1
    assert [row.label for row in frame.rows] == ["GitHub", "AWS"]
    assert frame.rows[0].code == generate_code(SECRET, clock.now)
    assert frame.rows[0].seconds_remaining == 10


def test_each_tick_reads_the_clock(entries):
    recorder = Recorder()
    clock = FakeClock(1_700_000_000.0)
    session = start_display(entries, recorder, clock=clock, background=False)

    # A slow tick that skips a whole window still shows the current code
    clock.advance(47)
    assert session.tick()

    frames = recorder.of(Frame)
    assert frames[-1].timestamp == clock.now
    assert frames[-1].rows[0].code == generate_code(SECRET, clock.now)
    assert frames[-1].rows[0].seconds_remaining == 23


def test_no_frames_after_cancel(entries):
    recorder = Recorder()
    clock = FakeClock()
    session = start_display(entries, recorder, clock=clock, background=False)

    assert session.cancel() is True
    emitted = len(recorder.events)

    for _ in range(5):
        clock.advance(1)
        assert session.tick() is False

    assert len(recorder.events) == emitted
    assert recorder.of(Stopped) == [Stopped(1)]


def test_cannot_restart(entries):
    session = start_display(entries, Recorder(), clock=FakeClock(), background=False)
    session.cancel()
    with pytest.raises(SessionError):
        session.start()


def test_invalid_interval(entries):
    with pytest.raises(ValueError):
        DisplaySession(entries, Recorder(), interval=0)


def test_invalid_secret_does_not_break_session(entries):
    entries.append({"label": "Broken", "secret": "!!!"})
    recorder = Recorder()
    start_display(entries, recorder, clock=FakeClock(), background=False)

    [frame] = recorder.of(Frame)
    broken = frame.rows[-1]
    assert broken.code is None
    assert "Invalid secret" in broken.error
    assert frame.rows[0].code is not None


def test_background_timer_ticks_and_stops(entries):
    recorder = Recorder()
    session = start_display(entries, recorder, interval=0.01)
    assert session.timer_started

    deadline = time.monotonic() + 2
    while len(recorder.of(Frame)) < 3 and time.monotonic() < deadline:
        time.sleep(0.01)

    session.cancel()
    session.join(timeout=2)
    frames_at_stop = len(recorder.of(Frame))
    assert frames_at_stop >= 3

    time.sleep(0.05)
    assert len(recorder.of(Frame)) == frames_at_stop
    assert len(recorder.of(Stopped)) == 1
    assert isinstance(recorder.events[-1], Stopped)


def test_concurrent_cancel_stops_exactly_once(entries):
    recorder = Recorder()
    session = start_display(entries, recorder, interval=0.005)

    barrier = threading.Barrier(8)
    results = []

    def cancel():
        barrier.wait()
        results.append(session.cancel())

    threads = [threading.Thread(target=cancel) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    session.join(timeout=2)

    assert results.count(True) == 1
    assert len(recorder.of(Stopped)) == 1


def test_emit_may_cancel_its_own_session(entries):
    recorder = Recorder()
    holder = {}

    def emit(event):
        recorder(event)
        if isinstance(event, Frame) and event.tick == 2:
            holder["session"].cancel()

    holder["session"] = session = DisplaySession(entries, emit, clock=FakeClock())
    session.start(background=False)
    assert session.tick()
    assert not session.tick()
    assert len(recorder.of(Frame)) == 2
    assert len(recorder.of(Stopped)) == 1


def test_watch_keypress_ignores_other_input(entries):
    session = start_display(entries, Recorder(), clock=FakeClock(), background=False)
    keys = iter(["x\n", "hello\n", "Q\n", "never read\n"])

    assert watch_keypress(session, read_key=lambda: next(keys)) is True
    assert session.state is SessionState.STOPPED
    assert next(keys) == "never read\n"


def test_watch_keypress_stops_on_eof(entries):
    session = start_display(entries, Recorder(), clock=FakeClock(), background=False)

    def read_key():
        raise EOFError

    watch_keypress(session, read_key=read_key)
    assert session.state is SessionState.STOPPED


def test_terminal_renderer_output(entries):
    stream = io.StringIO()
    renderer = TerminalRenderer(stream=stream, footer="\nPress Enter to return to the menu...")
    start_display(entries, renderer, clock=FakeClock(), background=False)

    output = stream.getvalue()
    assert "Key 1: GitHub" in output
    assert "Key 2: AWS" in output
    assert f"Current OTP: {generate_code(SECRET, 1_700_000_000)}" in output
    assert "Next refresh in: 10s" in output
    assert "Press Enter to return to the menu..." in output
    assert TerminalRenderer.CLEAR_SCREEN not in output


def test_terminal_renderer_clears_when_asked(entries):
    stream = io.StringIO()
    start_display(entries, TerminalRenderer(stream=stream, clear=True), clock=FakeClock(), background=False)
    assert stream.getvalue().startswith(TerminalRenderer.CLEAR_SCREEN)


def test_terminal_renderer_nothing_to_display():
    stream = io.StringIO()
    start_display([], TerminalRenderer(stream=stream))
    assert stream.getvalue() == "No 2FA keys found.\n"


def test_failing_emit_stops_the_session(entries):
    recorder = Recorder()

    def emit(event):
        recorder(event)
        if isinstance(event, Frame) and event.tick == 2:
            raise RuntimeError("terminal gone")

    session = DisplaySession(entries, emit, interval=0.001, clock=FakeClock())
    session.start(background=False)

    with pytest.raises(RuntimeError, match="terminal gone"):
        session.run()

    assert session.state is SessionState.STOPPED
    assert recorder.of(Stopped) == [Stopped(2)]
    assert session.tick() is False
