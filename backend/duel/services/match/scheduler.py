import itertools
import logging
import threading
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


class TimerHandle:
    """A pending callback. Cancelling it turns a later fire into a no-op."""

    def __init__(self, label: str, delay: float, callback: Callable, args: tuple):
        self.id = next(_handle_ids)
        self.label = label
        self.delay = delay
        self.deadline = time.time() + delay
        self._callback = callback
        self._args = args
        self._lock = threading.Lock()
        self._done = False

    @property
    def cancelled(self) -> bool:
        return self._done

    def cancel(self) -> bool:
        with self._lock:
            if self._done:
                return False
            self._done = True
            return True

    def fire(self) -> bool:
        """Run the callback unless already cancelled or fired."""
        with self._lock:
            if self._done:
                return False
            self._done = True
        self._callback(*self._args)
        return True

    def __repr__(self):
        return f"<TimerHandle {self.label}#{self.id} delay={self.delay}>"


class BackgroundScheduler:
    """Runs timers as Socket.IO background tasks."""

    def __init__(self, socketio, heartbeat_sec: int = 0):
        self._socketio = socketio
        self._heartbeat_sec = heartbeat_sec

    def call_later(self, delay: float, label: str, callback: Callable, *args) -> TimerHandle:
        handle = TimerHandle(label, delay, callback, args)
        logger.info(f"[timer-set] {handle!r} deadline={handle.deadline:.3f}")
        self._socketio.start_background_task(self._worker, handle)
        return handle

    def _worker(self, handle: TimerHandle) -> None:
        hb = self._heartbeat_sec
        if hb and hb > 0:
            slept = 0.0
            while slept < handle.delay and not handle.cancelled:
                step = min(hb, handle.delay - slept)
                self._socketio.sleep(step)
                slept += step
                logger.info(f"[timer-heartbeat] {handle!r} remaining={max(0.0, handle.delay - slept)}s")
        else:
            self._socketio.sleep(handle.delay)
        if handle.cancelled:
            logger.info(f"[timer-abort] {handle!r} cancelled")
            return
        logger.info(f"[timer-fire] {handle!r}")
        try:
            handle.fire()
        except Exception:
            logger.exception(f"[timer-error] {handle!r}")


class DeferredScheduler:
    """Queues timers without running them; tests fire them explicitly."""

    def __init__(self):
        self._handles: List[TimerHandle] = []

    def call_later(self, delay: float, label: str, callback: Callable, *args) -> TimerHandle:
        handle = TimerHandle(label, delay, callback, args)
        self._handles.append(handle)
        return handle

    def pending(self, label: Optional[str] = None) -> List[TimerHandle]:
        return [h for h in self._handles
                if not h.cancelled and (label is None or h.label == label)]

    def fire(self, label: Optional[str] = None) -> bool:
        """Fire the oldest pending timer (optionally with ``label``)."""
        for handle in self.pending(label):
            self._handles.remove(handle)
            return handle.fire()
        return False

    def clear(self) -> None:
        self._handles.clear()
