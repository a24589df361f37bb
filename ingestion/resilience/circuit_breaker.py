"""
Circuit breaker guarding an outbound dependency.

One breaker instance is owned per dependency (the feed, the sink). The
clock is injectable so state transitions can be driven in tests without
sleeping.

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(recovery_timeout elapsed)--> HALF_OPEN
    HALF_OPEN --(trial call succeeds)--> CLOSED
    HALF_OPEN --(trial call fails)--> OPEN (fresh timeout)
"""

import enum
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from core.exceptions import CircuitOpenError
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Failure-counting circuit breaker.

    Attributes:
        name: Dependency name used in logs and errors
        failure_threshold: Consecutive failures before the circuit opens
        recovery_timeout: Seconds the circuit stays open before probing
        half_open_max_calls: Trial calls admitted while half-open
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.next_attempt_time: Optional[float] = None
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the timeout has elapsed."""
        if (
            self._state == CircuitState.OPEN
            and self.next_attempt_time is not None
            and self._clock() >= self.next_attempt_time
        ):
            logger.info(f"Circuit breaker '{self.name}' half-open, admitting trial call")
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
        return self._state

    def before_call(self) -> None:
        """
        Admit or reject a call.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with all
                trial slots taken
        """
        state = self.state

        if state == CircuitState.OPEN:
            raise CircuitOpenError(
                f"Circuit breaker '{self.name}' is open",
                context={
                    "breaker": self.name,
                    "state": state.value,
                    "failure_count": self.failure_count,
                    "next_attempt_time": self.next_attempt_time,
                }
            )

        if state == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.half_open_max_calls:
                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is half-open and probing",
                    context={
                        "breaker": self.name,
                        "state": state.value,
                        "half_open_calls": self._half_open_calls,
                    }
                )
            self._half_open_calls += 1

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit breaker '{self.name}' closed after successful trial call")
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.next_attempt_time = None
        self._half_open_calls = 0

    def record_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._trip()
            return

        self.failure_count += 1
        if self._state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold:
            self._trip()

    def release_trial(self) -> None:
        """Return a half-open trial slot for a call that neither failed nor succeeded."""
        if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
            self._half_open_calls -= 1

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self.next_attempt_time = self._clock() + self.recovery_timeout
        self._half_open_calls = 0
        logger.warning(
            f"Circuit breaker '{self.name}' opened after {self.failure_count} failures. "
            f"Will try again after {self.recovery_timeout} seconds."
        )

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        ignore: Tuple[Type[BaseException], ...] = (),
    ) -> T:
        """
        Run ``operation`` through the breaker.

        Exceptions listed in ``ignore`` propagate without counting as a
        failure.
        """
        self.before_call()
        try:
            result = await operation()
        except ignore:
            self.release_trial()
            raise
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "next_attempt_time": self.next_attempt_time,
        }
