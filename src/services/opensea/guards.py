from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Tuple

from .models import token_key


Clock = Callable[[], float]


class CooldownCache:
    """Per-token timestamps that expire after ``window_sec``.

    Lookups evict expired entries, so the map only holds tokens touched
    inside the window.
    """

    def __init__(self, window_sec: float, clock: Clock = time.monotonic) -> None:
        self.window_sec = window_sec
        self._clock = clock
        self._items: Dict[Tuple[str, str], float] = {}

    def mark(self, token_address: str, token_id: str) -> None:
        self._items[token_key(token_address, token_id)] = self._clock()

    def active(self, token_address: str, token_id: str) -> bool:
        key = token_key(token_address, token_id)
        stamped = self._items.get(key)
        if stamped is None:
            return False
        if self._clock() - stamped < self.window_sec:
            return True
        self._items.pop(key, None)
        return False

    def __len__(self) -> int:
        return len(self._items)


class PurchaseCooldown:
    def __init__(self, cooldown_sec: float, clock: Clock = time.monotonic) -> None:
        self.cooldown_sec = cooldown_sec
        self._clock = clock
        self._last: Optional[float] = None

    def stamp(self) -> None:
        self._last = self._clock()

    def remaining(self) -> float:
        if self._last is None:
            return 0.0
        left = self.cooldown_sec - (self._clock() - self._last)
        return max(0.0, left)

    def active(self) -> bool:
        return self.remaining() > 0
