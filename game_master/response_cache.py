# game_master/response_cache.py
"""TTL cache for generated responses and the key that addresses it."""

from __future__ import annotations

import base64
import json
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from models.narration_models import CacheEntry, GeneratedResponse, NarrationRequest

logger = structlog.get_logger(__name__)


def stable_cache_key(request: NarrationRequest) -> str:
    """Encode the fields that define request equivalence.

    Only request type, session, player action and constraints take part.
    ``character_id`` and ``additional_context`` do not, so two characters in
    one session sending the same action share an entry.
    """
    constraints: dict[str, Any] = (
        request.constraints.model_dump(mode="json", exclude_none=True)
        if request.constraints
        else {}
    )
    parts = [
        request.request_type.value,
        request.session_id,
        request.player_action or "",
        json.dumps(constraints, sort_keys=True, separators=(",", ":")),
    ]
    return base64.b64encode("|".join(parts).encode("utf-8")).decode("ascii")


class ResponseCache:
    """Simple TTL cache with per-entry hit counters."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._data: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str) -> GeneratedResponse | None:
        """Return a live response and count the hit; drop it if expired."""
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._data[key]
            logger.debug("Expired cache entry dropped on read.", key=key)
            return None
        entry.hit_count += 1
        return entry.response

    def peek(self, key: str) -> CacheEntry | None:
        return self._data.get(key)

    def set(self, key: str, response: GeneratedResponse) -> CacheEntry:
        entry = CacheEntry(
            key=key, response=response, expires_at=self._clock() + self.ttl
        )
        self._data[key] = entry
        return entry

    def sweep(self) -> int:
        """Evict every entry past its expiry. Returns the number evicted."""
        now = self._clock()
        expired = [k for k, entry in self._data.items() if entry.expires_at <= now]
        for key in expired:
            del self._data[key]
        if expired:
            logger.info("Response cache swept.", evicted=len(expired))
        return len(expired)

    def clear(self) -> int:
        count = len(self._data)
        self._data.clear()
        return count

    def info(self) -> dict[str, Any]:
        return {
            "size": len(self._data),
            "entries": [
                {
                    "key": entry.key,
                    "expires_at": datetime.fromtimestamp(
                        entry.expires_at, tz=timezone.utc
                    ).isoformat(),
                    "hit_count": entry.hit_count,
                }
                for entry in list(self._data.values())
            ],
        }
