"""
Request coalescing to prevent duplicate upstream API calls.

Feed cache keys are shared by every caller, so concurrent misses on the
same key can be collapsed: the first caller fetches, the rest wait on
its result.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightFetch:
    """An upstream fetch that other callers may join."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    joined: int = 0


class RequestCoalescer:
    """
    Collapses concurrent fetches for one key into a single call.

    The initiator runs fetch_fn; joiners block on an Event and receive
    the same result, or the same exception. Nothing is remembered after
    the fetch completes, so this is not a cache.
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a joiner waits for the initiator
        """
        self._flights: Dict[str, InFlightFetch] = {}
        self._lock = threading.Lock()
        self._timeout = timeout

    def run(self, key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Run fetch_fn, or join an identical fetch already in progress.

        Raises:
            TimeoutError: If the initiator does not finish within the timeout
            Exception: Whatever fetch_fn raised
        """
        with self._lock:
            flight = self._flights.get(key)
            initiator = flight is None
            if initiator:
                flight = InFlightFetch()
                self._flights[key] = flight
            else:
                flight.joined += 1

        if initiator:
            logger.debug(f"Fetching {key}")
            try:
                flight.result = fetch_fn()
            except Exception as e:
                flight.error = e
            finally:
                with self._lock:
                    self._flights.pop(key, None)
                flight.done.set()

            if flight.error is not None:
                raise flight.error
            return flight.result

        logger.debug(f"Joined in-flight fetch for {key} (joined: {flight.joined})")
        if not flight.done.wait(timeout=self._timeout):
            logger.error(f"Timed out waiting for in-flight fetch: {key}")
            raise TimeoutError(f"Fetch for {key} did not finish within {self._timeout}s")

        if flight.error is not None:
            raise flight.error
        return flight.result

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "in_flight": len(self._flights),
                "keys": sorted(self._flights),
            }
