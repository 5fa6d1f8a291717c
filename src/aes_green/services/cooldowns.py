from __future__ import annotations

import time
from typing import Any

from aes_green.storage import MessagePackStore


class CooldownBucket:
    """Expiry timestamps under store.data["cooldowns"][field], keyed by an opaque string."""

    def __init__(self, store: MessagePackStore, field: str) -> None:
        self.store = store
        self.field = field

    def _bucket(self) -> dict[str, Any]:
        root = self.store.data.setdefault("cooldowns", {})
        return root.setdefault(self.field, {})

    def remaining(self, key: str, now: float | None = None) -> float:
        now_ts = float(now if now is not None else time.time())
        until = float(self._bucket().get(key, 0))
        return max(0.0, until - now_ts)

    def try_acquire(self, key: str, cooldown_seconds: float, now: float | None = None) -> bool:
        now_ts = float(now if now is not None else time.time())
        if self.remaining(key, now_ts) > 0:
            return False
        if cooldown_seconds > 0:
            self._bucket()[key] = now_ts + float(cooldown_seconds)
            self.store.touch()
        return True

    def clear(self, prefix: str = "") -> int:
        bucket = self._bucket()
        keys = [key for key in bucket if key.startswith(prefix)]
        for key in keys:
            bucket.pop(key, None)
        if keys:
            self.store.touch()
        return len(keys)

    def prune(self, now: float | None = None) -> int:
        now_ts = float(now if now is not None else time.time())
        bucket = self._bucket()
        expired = [key for key, until in bucket.items() if float(until) <= now_ts]
        for key in expired:
            bucket.pop(key, None)
        if expired:
            self.store.touch()
        return len(expired)
