"""
Sliding-window rate limiting keyed by (caller address, endpoint).

State lives in process memory only; separate processes do not share counts.
Keys whose hits have all left their window are swept at most once a minute.
"""
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

SWEEP_INTERVAL_MS = 60 * 1000


@dataclass(frozen=True)
class LimitConfig:
    max_requests: int
    window_ms: int


@dataclass(frozen=True)
class Decision:
    allowed: bool
    remaining: int
    retry_after: int = 0  # seconds


class RateLimiter:
    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._hits: Dict[Tuple[str, str], List[float]] = {}
        self._windows: Dict[Tuple[str, str], int] = {}
        self._last_sweep = self._now_ms()

    def __len__(self) -> int:
        return len(self._hits)

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _sweep(self, now: float) -> None:
        for key in [k for k, hits in self._hits.items() if hits[-1] <= now - self._windows[k]]:
            del self._hits[key]
            del self._windows[key]
        self._last_sweep = now

    def check(self, caller: str, endpoint: str, limit: LimitConfig) -> Decision:
        """Prune expired hits, then either refuse or record the current request."""
        key = (caller, endpoint)
        now = self._now_ms()
        if now - self._last_sweep >= SWEEP_INTERVAL_MS:
            self._sweep(now)

        window_start = now - limit.window_ms
        hits = [t for t in self._hits.get(key, []) if t > window_start]
        self._windows[key] = limit.window_ms

        if len(hits) >= limit.max_requests:
            self._hits[key] = hits
            retry_after = max(1, math.ceil((hits[0] + limit.window_ms - now) / 1000))
            return Decision(False, 0, retry_after)

        hits.append(now)
        self._hits[key] = hits
        return Decision(True, limit.max_requests - len(hits))

    def reset(self, caller: str, endpoint: str) -> bool:
        self._windows.pop((caller, endpoint), None)
        return self._hits.pop((caller, endpoint), None) is not None

    def reset_all(self) -> int:
        count = len(self._hits)
        self._hits.clear()
        self._windows.clear()
        return count


limiter = RateLimiter()
