from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

LOGGER = logging.getLogger("musiccabinet.throttle")


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: float


class Throttle:
    """
    Global sliding-window limit on outbound Last.fm calls.

    Last.fm allows 5 requests per second per originating IP, averaged over a
    five minute period, which is the default of 1500 calls per 300 seconds.
    The limit applies to all call types alike.
    """

    def __init__(
        self,
        *,
        max_calls: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1.")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive.")
        self._max_calls = max_calls
        self._window_seconds = float(window_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._calls: deque[float] = deque()

    @property
    def max_calls(self) -> int:
        return self._max_calls

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def try_acquire(self) -> ThrottleDecision:
        now = self._clock()
        cutoff = now - self._window_seconds

        with self._lock:
            while self._calls and self._calls[0] <= cutoff:
                self._calls.popleft()

            if len(self._calls) >= self._max_calls:
                retry_after_seconds = max(0.0, (self._calls[0] + self._window_seconds) - now)
                return ThrottleDecision(
                    allowed=False,
                    limit=self._max_calls,
                    remaining=0,
                    retry_after_seconds=retry_after_seconds,
                )

            self._calls.append(now)
            return ThrottleDecision(
                allowed=True,
                limit=self._max_calls,
                remaining=max(self._max_calls - len(self._calls), 0),
                retry_after_seconds=0.0,
            )

    def await_allowance(self) -> None:
        """Block until one more call fits in the window, then claim it."""
        while True:
            decision = self.try_acquire()
            if decision.allowed:
                return
            LOGGER.debug(
                "throttle limit reached limit=%s retry_after_seconds=%.3f",
                decision.limit,
                decision.retry_after_seconds,
            )
            # Sleep at least a millisecond so a zero-length wait cannot spin.
            self._sleep(max(decision.retry_after_seconds, 0.001))

