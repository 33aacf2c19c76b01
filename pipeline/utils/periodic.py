import threading
import traceback
from typing import Callable

from bittensor import logging


class PeriodicWorker:
    """
    Runs ``task`` every ``interval`` seconds on a daemon thread until stopped.

    The first run happens one interval after ``start``. ``stop`` sets the stop
    event and joins the thread, so a run already in progress is allowed to
    finish but no further run is scheduled. Exceptions raised by ``task`` are
    logged and never end the loop.
    """

    def __init__(self, interval: float, task: Callable[[], None], name: str):
        self.interval = interval
        self.task = task
        self.name = name
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._started = False

    def start(self) -> "PeriodicWorker":
        if self._started:
            raise RuntimeError(f"{self.name} already started")
        self._started = True
        self._thread.start()
        return self

    def _run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.task()
            except Exception as e:
                logging.error(f"{self.name} tick failed: {e}")
                logging.trace(traceback.format_exc())

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def stop(self):
        self._stop_event.set()
        if self._started and self._thread is not threading.current_thread():
            self._thread.join()
