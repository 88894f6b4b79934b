"""
Reliability Utilities.

Includes the Circuit Breaker used in front of the payment gateway and
explicit time budgets for store operations.
"""

import time
import asyncio
from functools import wraps
from typing import Awaitable, Callable, Any, TypeVar

from payments_backend.app.core.exceptions import GatewayError, OperationTimeoutError

T = TypeVar("T")


class CircuitOpenError(GatewayError):
    def __init__(self, name: str):
        super().__init__(
            message=f"Circuit '{name}' is OPEN; gateway calls are suspended",
            details={"circuit": name}
        )


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.
    If 'failure_threshold' consecutive gateway failures occur, the circuit
    opens and rejects calls for 'reset_timeout' seconds.

    Only GatewayError counts as a failure: a gateway that answers with a
    business rejection is still reachable, so rejections do not trip it.
    """
    def __init__(self, name: str = "gateway", failure_threshold: int = 5, reset_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(self.name)

        try:
            result = await func(*args, **kwargs)
        except GatewayError as e:
            if e.error_code == "ERR_GATEWAY_001":
                self.record_failure()
            raise

        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.failure_threshold:
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float, operation: str) -> T:
    """Await `awaitable`, converting an expired budget into OperationTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise OperationTimeoutError(operation, timeout_seconds)


def bounded(operation: str):
    """
    Decorator for store methods: bounds each call by the owner's
    `timeout_seconds` attribute.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs) -> Any:
            return await with_timeout(func(self, *args, **kwargs), self.timeout_seconds, operation)
        return wrapper
    return decorator
