"""Search debouncing.

Typing in a search box fires one lookup after the input has been quiet for
the debounce delay. Earlier pending calls are dropped; a call that already
started is not cancelled.
"""
import threading
from typing import Any, Callable, Optional

from docsmile import config
from docsmile.logging_config import get_logger

logger = get_logger(__name__)


class Debouncer:
    """
    Collapse bursts of calls into a single call of the last arguments.

    Example:
        >>> search = Debouncer(lambda term: service.list(search=term))
        >>> search("an"); search("ana")   # one lookup, for "ana"
    """

    def __init__(
        self,
        func: Callable[..., Any],
        delay_ms: Optional[int] = None,
        on_error: Optional[Callable[[Exception], Any]] = None
    ):
        """
        Args:
            func: Callable to run once input settles
            delay_ms: Quiet period in milliseconds (default: DOCSMILE_SEARCH_DEBOUNCE_MS)
            on_error: Receives exceptions raised by func (runs on the timer thread)
        """
        if delay_ms is None:
            delay_ms = config.SEARCH_DEBOUNCE_MS
        self.func = func
        self.delay = delay_ms / 1000.0
        self.on_error = on_error
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending = None

    def __call__(self, *args, **kwargs):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._pending = (args, kwargs)
            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def cancel(self):
        """Drop the pending call, if any."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._pending = None

    def flush(self):
        """Run the pending call now instead of waiting."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
        self._fire()

    def _fire(self):
        with self._lock:
            call = self._pending
            self._pending = None
            self._timer = None
        if call is None:
            return

        args, kwargs = call
        try:
            self.func(*args, **kwargs)
        except Exception as e:
            if self.on_error is None:
                logger.error("debounced_call_failed", error=str(e), exc_info=True)
                raise
            self.on_error(e)
