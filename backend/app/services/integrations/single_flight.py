"""Per-key de-duplication of concurrent calls."""

import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any


class SingleFlight:
    """Coalesce concurrent calls that share a key into one execution.

    The first caller for a key runs the function; callers arriving while it
    is in flight wait for and share its result or exception. The key is
    cleared as soon as the call completes, so later callers start fresh.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, Future[Any]] = {}

    def do(self, key: str, fn: Callable[[], Any]) -> Any:
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if future is None:
                future = Future()
                self._calls[key] = future

        if not leader:
            return future.result()

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._calls


# Token refreshes for one integration share a flight across the process.
refresh_flights = SingleFlight()
