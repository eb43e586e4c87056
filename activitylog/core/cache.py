import os
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from activitylog.core.types import ParseResult

CLASSIFICATION_CACHE_TTL_SECONDS = int(os.getenv("CLASSIFICATION_CACHE_TTL_SECONDS", "300"))
CLASSIFICATION_CACHE_MAX_ENTRIES = int(os.getenv("CLASSIFICATION_CACHE_MAX_ENTRIES", "512"))


class ClassificationCache:
    """Bounded TTL cache for fallback classifications keyed by (user_id, text).

    Callers own the instance and pass it into each pipeline invocation.
    """

    def __init__(
        self,
        ttl_seconds: int = CLASSIFICATION_CACHE_TTL_SECONDS,
        max_entries: int = CLASSIFICATION_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[tuple[str, str], tuple[float, ParseResult]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, user_id: str, text: str) -> Optional[ParseResult]:
        if self.ttl_seconds <= 0 or self.max_entries <= 0:
            return None
        key = (user_id, text)
        with self._lock:
            entry = self._entries.get(key)
            if not entry:
                return None
            stored_at, result = entry
            if (self._clock() - stored_at) > self.ttl_seconds:
                self._entries.pop(key, None)
                return None
            self._entries.move_to_end(key)
            return result

    def set(self, user_id: str, text: str, result: ParseResult) -> None:
        if self.ttl_seconds <= 0 or self.max_entries <= 0:
            return
        with self._lock:
            self._entries[(user_id, text)] = (self._clock(), result)
            self._entries.move_to_end((user_id, text))
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
