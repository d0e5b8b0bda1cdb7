import logging
import threading
import time

logger = logging.getLogger(__name__)

class Throttle:
    """
    Serializes calls to one rate-limited service and keeps at least `min_interval`
    seconds between the end of one call and the start of the next.

        with throttle:
            client.get(...)
    """

    def __init__(self, min_interval: float, name: str = "service"):
        self.min_interval = min_interval
        self.name = name
        self.last_request_time = 0.0
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        elapsed = time.monotonic() - self.last_request_time
        if self.last_request_time and elapsed < self.min_interval:
            wait = self.min_interval - elapsed
            logger.debug(f"{self.name} throttled, waiting {wait:.2f}s")
            time.sleep(wait)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.last_request_time = time.monotonic()
        self._lock.release()
        return False
