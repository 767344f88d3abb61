# app/workers.py

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from typing import Callable, Optional

from core.constants import PORT_OPEN_TIMEOUT_S
from core.errors import InstrumentError, TransportError
from core.filter_wheel import FilterWheelController

logger = logging.getLogger(__name__)


def open_unconfigured(port_name: str) -> FilterWheelController:
    return FilterWheelController(port_name, configure=False)


class _Attempt:
    """The wheel being configured by the worker, so the caller can abort it."""
    def __init__(self):
        self.lock = threading.Lock()
        self.wheel: Optional[FilterWheelController] = None
        self.abandoned = False

    def adopt(self, wheel: FilterWheelController):
        with self.lock:
            if self.abandoned:
                wheel.close_port()
                raise TransportError(f"Open of {wheel.port_name} abandoned")
            self.wheel = wheel

    def abandon(self):
        with self.lock:
            self.abandoned = True
            wheel = self.wheel
        if wheel is not None:
            # wakes a command blocked in configure_default()
            wheel.close_port()


class FilterWheelOpener:
    """
    Opens a filter wheel off the caller's thread. One task at a time; the
    caller waits at most `timeout_s`. On timeout the port being configured is
    closed, which ends the pending command; a wheel that still shows up late
    is closed as well.

    `factory(port_name)` must return a controller with its port open but not
    yet configured; the worker runs configure_default() itself.
    """
    def __init__(self, factory: Callable[[str], FilterWheelController] = open_unconfigured,
                 timeout_s: float = PORT_OPEN_TIMEOUT_S):
        self.factory = factory
        self.timeout_s = timeout_s
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="filter-wheel")
        self._pending: Optional[Future] = None

    @property
    def busy(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def _connect(self, port_name: str, attempt: _Attempt) -> FilterWheelController:
        wheel = self.factory(port_name)
        attempt.adopt(wheel)
        wheel.configure_default()
        return wheel

    def open(self, port_name: str) -> Optional[FilterWheelController]:
        if self.busy:
            logger.warning("Filter wheel open still in progress; ignoring request for %s", port_name)
            return None

        attempt = _Attempt()
        future = self._executor.submit(self._connect, port_name, attempt)
        self._pending = future
        try:
            return future.result(timeout=self.timeout_s)
        except FutureTimeout:
            logger.error("Opening filter wheel on %s timed out after %.0f ms",
                         port_name, self.timeout_s * 1000)
            if not future.cancel():
                attempt.abandon()
                future.add_done_callback(_close_late_wheel)
                wait([future], timeout=self.timeout_s)
            return None
        except InstrumentError as e:
            logger.error("Could not open filter wheel on %s: %s", port_name, e)
            return None

    def shutdown(self):
        self._executor.shutdown(wait=False, cancel_futures=True)


def _close_late_wheel(future: Future):
    if future.cancelled() or future.exception() is not None:
        return
    wheel = future.result()
    logger.info("Closing filter wheel on %s that finished opening after timeout", wheel.port_name)
    wheel.close_port()
