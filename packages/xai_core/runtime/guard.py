import asyncio
import threading
from typing import Dict

from packages.contracts.payloads import ExplanationRecord


class InFlightGuard:
    """
    Tracks fingerprints that are currently being computed.
    Each claim owns a future that late callers can await for the result.
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._lock = threading.Lock()

    def claim(self, fingerprint: str) -> asyncio.Future | None:
        """
        Marks `fingerprint` as computing and returns None.
        If it is already computing, returns the owner's future instead.
        """
        with self._lock:
            existing = self._in_flight.get(fingerprint)
            if existing is not None:
                return existing
            self._in_flight[fingerprint] = asyncio.get_running_loop().create_future()
            return None

    def release(
        self,
        fingerprint: str,
        record: ExplanationRecord | None = None,
        error: BaseException | None = None,
    ):
        with self._lock:
            future = self._in_flight.pop(fingerprint, None)

        if future is None or future.done():
            return
        if error is not None:
            future.set_exception(error)
            # Mark as retrieved; nobody may be waiting on it
            future.exception()
        elif record is None:
            future.cancel()
        else:
            future.set_result(record)

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._in_flight

    def __len__(self) -> int:
        with self._lock:
            return len(self._in_flight)
