from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 50


@dataclass(frozen=True)
class CacheEntry:
    """A successful reply remembered for one (scene, role, message prefix)."""

    key: str
    response: str
    stored_at: float


class ResponseCache:
    """Time-bounded memoization of generated replies.

    Keys only look at the first 50 characters of the normalized message, so
    two long messages sharing that prefix share an entry.
    """

    def __init__(
        self, ttl_sec: float = 300, clock: Optional[Callable[[], float]] = None
    ) -> None:
        self.ttl_sec = ttl_sec
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}

    @staticmethod
    def key(scene: str, role_id: str, message: str) -> str:
        normalized = " ".join(message.split()).lower()[:PREFIX_LENGTH]
        raw = "\x1f".join((scene, role_id, normalized))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry):
            del self._entries[key]
            return None
        return entry.response

    def put(self, key: str, response: str) -> None:
        self._entries[key] = CacheEntry(key=key, response=response, stored_at=self._clock())

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""

        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.stored_at >= self.ttl_sec
