from __future__ import annotations

import logging
import threading
from typing import Any

LOGGER = logging.getLogger(__name__)


class RequestVersions:
    """Latest-wins bookkeeping for in-flight widget requests.

    Each parameter change calls ``issue`` for its widget key. When the
    aggregation finishes, ``apply`` keeps the result only if no newer
    version has been issued for that key in the meantime.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._issued: dict[str, int] = {}
        self._results: dict[str, tuple[int, Any]] = {}

    def issue(self, key: str) -> int:
        with self._lock:
            version = self._issued.get(key, 0) + 1
            self._issued[key] = version
            return version

    def latest(self, key: str) -> int:
        with self._lock:
            return self._issued.get(key, 0)

    def is_latest(self, key: str, version: int) -> bool:
        with self._lock:
            return self._issued.get(key, 0) == version

    def apply(self, key: str, version: int, result: Any) -> bool:
        with self._lock:
            if self._issued.get(key, 0) != version:
                LOGGER.debug("Discarding stale result for %s (version %d)", key, version)
                return False
            self._results[key] = (version, result)
            return True

    def result(self, key: str) -> Any:
        with self._lock:
            entry = self._results.get(key)
        return None if entry is None else entry[1]
