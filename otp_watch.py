"""
OTP CLI - live code display
Redraws the current code of every entry at a fixed interval until the user
returns. A session owns its timer thread and the event used to cancel it.
"""

import enum
import sys
import threading
import time
from typing import NamedTuple

from otp import (
    DEFAULT_PERIOD, REFRESH_INTERVAL, OTPError,
    debug_log, entry_code, seconds_remaining,
)

# Lines that end the display: a bare Enter, or "q"
RETURN_KEYS = ("", "q")


class SessionError(OTPError):
    """A display session was driven from the wrong state"""


class SessionState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class RenderEvent(NamedTuple):
    label: str
    code: str | None
    seconds_remaining: int | None
    error: str | None = None


class Frame(NamedTuple):
    tick: int
    timestamp: float
    rows: tuple


class NothingToDisplay(NamedTuple):
    message: str = "No 2FA keys found."


class Stopped(NamedTuple):
    ticks: int


class DisplaySession:
    """Periodically emits a Frame of codes until cancelled.

    IDLE -> RUNNING on start, RUNNING -> STOPPED on cancel. An empty entry
    list goes straight to STOPPED. A stopped session never runs again.
    """

    def __init__(self, entries, emit, interval: float = REFRESH_INTERVAL, clock=time.time):
        if interval <= 0:
            raise ValueError(f"Refresh interval must be positive, got {interval}")
        self.entries = list(entries)
        self.emit = emit
        self.interval = interval
        self.clock = clock
        self.ticks = 0
        self._state = SessionState.IDLE
        # Re-entrant so an emit callback may cancel its own session
        self._lock = threading.RLock()
        self._cancelled = threading.Event()
        self._thread = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def timer_started(self) -> bool:
        return self._thread is not None

    def start(self, background: bool = True) -> "DisplaySession":
        """Render the first frame and, with background=True, start the timer thread"""
        with self._lock:
            if self._state is not SessionState.IDLE:
                raise SessionError(f"Cannot start a {self._state.value} session")

            if not self.entries:
                debug_log("Nothing to display")
                self._state = SessionState.STOPPED
                self._cancelled.set()
                self.emit(NothingToDisplay())
                return self

            self._state = SessionState.RUNNING
            debug_log(f"Display started for {len(self.entries)} entries")
            self._render()

        if background and self.running:
            self._thread = threading.Thread(target=self.run, name="otp-refresh", daemon=True)
            self._thread.start()
        return self

    def tick(self) -> bool:
        """Emit one frame; False once the session has stopped"""
        with self._lock:
            if self._state is not SessionState.RUNNING:
                return False
            self._render()
            return True

    def run(self):
        try:
            while not self._cancelled.wait(self.interval):
                if not self.tick():
                    break
        finally:
            self.cancel()

    def cancel(self) -> bool:
        """Stop the session; True only for the call that actually stopped it"""
        self._cancelled.set()
        with self._lock:
            if self._state is SessionState.STOPPED:
                return False
            self._state = SessionState.STOPPED
            debug_log(f"Display stopped after {self.ticks} ticks")
            self.emit(Stopped(self.ticks))
            return True

    def join(self, timeout: float = None):
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _render(self):
        # The clock is read on every tick, so a late tick still shows the right code
        now = self.clock()
        rows = tuple(self._row(entry, now) for entry in self.entries)
        self.ticks += 1
        self.emit(Frame(self.ticks, now, rows))

    @staticmethod
    def _row(entry: dict, now: float) -> RenderEvent:
        try:
            code = entry_code(entry, now)
            remaining = seconds_remaining(now, entry.get("period", DEFAULT_PERIOD))
        except ValueError as e:
            return RenderEvent(entry["label"], None, None, str(e))
        return RenderEvent(entry["label"], code, remaining)


def start_display(entries, emit, interval: float = REFRESH_INTERVAL, clock=time.time,
                  background: bool = True) -> DisplaySession:
    """Create and start a display session for entries"""
    return DisplaySession(entries, emit, interval=interval, clock=clock).start(background)


def _read_line() -> str:
    return sys.stdin.readline()


def watch_keypress(session: DisplaySession, keys=RETURN_KEYS, read_key=None) -> bool:
    """Block reading input until a return key arrives, then cancel the session"""
    read_key = read_key or _read_line

    while session.running:
        try:
            key = read_key()
        except EOFError:
            break
        if key.strip().lower() in keys:
            break
        debug_log(f"Ignoring input {key!r}")

    return session.cancel()


class TerminalRenderer:
    """Writes display events to a terminal, redrawing the screen on every frame"""

    CLEAR_SCREEN = "\033[2J\033[H"

    def __init__(self, stream=None, footer: str = "", clear: bool = None):
        self.stream = stream
        self.footer = footer
        self.clear = clear

    def __call__(self, event):
        if isinstance(event, Frame):
            self._write(self.format_frame(event), redraw=True)
        elif isinstance(event, NothingToDisplay):
            self._write(event.message)

    def format_frame(self, frame: Frame) -> str:
        lines = []
        for number, row in enumerate(frame.rows, 1):
            lines.append(f"\nKey {number}: {row.label}")
            if row.error:
                lines.append(f"Error: {row.error}")
            else:
                lines.append(f"Current OTP: {row.code}")
                lines.append(f"Next refresh in: {row.seconds_remaining}s")
        if self.footer:
            lines.append(self.footer)
        return "\n".join(lines)

    def _write(self, text: str, redraw: bool = False):
        stream = self.stream or sys.stdout
        clear = self.clear
        if clear is None:
            clear = stream.isatty()
        if redraw and clear:
            text = self.CLEAR_SCREEN + text
        stream.write(text + "\n")
        stream.flush()
