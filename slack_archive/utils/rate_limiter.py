"""Rate limiting for Slack API calls."""
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional, Tuple
from threading import Lock

from ..config import RATE_LIMIT_TIERS
from .logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """Sliding-window rate limiter keyed by Slack API method.
    
    Limits are requests per window (one minute by default). A method with a
    limit of 0, or with no entry and no ``default`` entry, is not limited.
    The clock and sleep functions are injectable so tests never block.
    """
    
    def __init__(
        self,
        limits: Optional[Dict[str, int]] = None,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.limits = dict(RATE_LIMIT_TIERS if limits is None else limits)
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, Lock] = defaultdict(Lock)
        self._sent: Dict[str, Deque[float]] = defaultdict(deque)
    
    def limit_for(self, method: str) -> int:
        """Requests allowed per window for a method (0 means unlimited)."""
        return self.limits.get(method, self.limits.get("default", 0)) or 0
    
    def _expire(self, method: str, now: float) -> Deque[float]:
        sent = self._sent[method]
        while sent and sent[0] <= now - self.window_seconds:
            sent.popleft()
        return sent
    
    def wait_if_needed(self, method: str) -> float:
        """Block until a request to ``method`` fits in the window.
        
        Returns the number of seconds slept.
        """
        limit = self.limit_for(method)
        if limit <= 0:
            return 0
        
        with self._locks[method]:
            now = self._clock()
            sent = self._expire(method, now)
            waited = 0
            if len(sent) >= limit:
                waited = max(0, sent[0] + self.window_seconds - now)
                if waited > 0:
                    logger.debug(
                        f"{method}: {len(sent)}/{limit} requests in window, "
                        f"sleeping {waited:.2f}s"
                    )
                    self._sleep(waited)
                sent.popleft()
            sent.append(self._clock())
            return waited
    
    def get_current_usage(self, method: str) -> Tuple[int, int]:
        """Requests made in the current window and the method's limit."""
        with self._locks[method]:
            return len(self._expire(method, self._clock())), self.limit_for(method)
    
    def reset(self, method: Optional[str] = None):
        """Forget recorded requests for one method, or for all of them."""
        if method:
            self._sent.pop(method, None)
        else:
            self._sent.clear()
