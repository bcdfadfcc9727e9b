import threading
from abc import ABC, abstractmethod
from typing import Callable


class CountdownHandle(ABC):
    @abstractmethod
    def cancel(self) -> bool:
        """Stops the countdown. Returns False if the callback already started."""
        pass


class TimerFactory(ABC):
    @abstractmethod
    def start(self, delay: float, callback: Callable[[], None]) -> CountdownHandle:
        pass


class _ThreadingHandle(CountdownHandle):
    def __init__(self, timer: threading.Timer):
        self._timer = timer
        self._fired = threading.Event()

    def cancel(self):
        self._timer.cancel()
        return not self._fired.is_set()


class ThreadingTimerFactory(TimerFactory):
    """Wall-clock countdowns on daemon `threading.Timer` threads."""

    def start(self, delay, callback):
        handle = None

        def _run():
            handle._fired.set()
            callback()

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        handle = _ThreadingHandle(timer)
        timer.start()
        return handle
