"""
Bounded exponential-backoff executor for remote generation calls.

Every Gemini / Veo request goes through RetryExecutor. Only errors that
carry a recognised code/status (google-genai APIError, RemoteCallError) are
retried; anything else fails on the first occurrence.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from schemas import CallFailure, CallOutcome, CallSuccess, ErrorClass
from utils.logger import get_logger

logger = get_logger("retry")

_RATE_LIMIT_CODES = {429}
_RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED"}
_TRANSIENT_CODES = {500, 503}
_TRANSIENT_STATUSES = {"INTERNAL", "UNAVAILABLE"}


def classify_error(exc: BaseException) -> ErrorClass:
    """Map an exception to rate_limited / transient / terminal."""
    code = getattr(exc, "code", None)
    status = getattr(exc, "status", None)
    if isinstance(status, str):
        status = status.upper()

    if code in _RATE_LIMIT_CODES or status in _RATE_LIMIT_STATUSES:
        return ErrorClass.RATE_LIMITED
    if code in _TRANSIENT_CODES or status in _TRANSIENT_STATUSES:
        return ErrorClass.TRANSIENT
    return ErrorClass.TERMINAL


def error_message(exc: BaseException) -> str:
    """Human-readable message for a shot's error field."""
    message = getattr(exc, "message", None) or str(exc)
    return message or exc.__class__.__name__


class RetryExecutor:
    """
    Stateless retry wrapper.

    delay(i) = (rate_limit_delay if rate limited else base_delay) * 2 ** i,
    where i is the 0-based index of the attempt that just failed. The last
    attempt is never followed by a sleep; its error is re-raised unchanged.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_sec: float = 2.0,
        rate_limit_delay_sec: float = 5.0,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_sec = base_delay_sec
        self.rate_limit_delay_sec = rate_limit_delay_sec
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config: dict, **kwargs) -> "RetryExecutor":
        return cls(
            max_attempts=int(config.get("max_attempts", 3)),
            base_delay_sec=float(config.get("base_delay_sec", 2.0)),
            rate_limit_delay_sec=float(config.get("rate_limit_delay_sec", 5.0)),
            **kwargs,
        )

    def backoff_delay(self, attempt_index: int, error_class: ErrorClass) -> float:
        base = self.rate_limit_delay_sec if error_class is ErrorClass.RATE_LIMITED else self.base_delay_sec
        return base * (2 ** attempt_index)

    async def execute(self, operation: Callable[[], Awaitable[Any]], label: str = "remote call") -> Any:
        """
        Run `operation` until it succeeds or the attempt budget is spent.

        Args:
            operation: zero-argument callable returning an awaitable
            label: name used in log lines

        Returns:
            Whatever the operation returns
        """
        for i in range(self.max_attempts):
            try:
                return await operation()
            except Exception as e:
                error_class = classify_error(e)
                if not error_class.retryable or i == self.max_attempts - 1:
                    raise
                delay = self.backoff_delay(i, error_class)
                logger.warning(
                    f"{label} failed ({error_class.value}, attempt {i + 1}/{self.max_attempts}): "
                    f"{error_message(e)} - retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
        # unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without a result")

    async def attempt(self, operation: Callable[[], Awaitable[Any]], label: str = "remote call") -> CallOutcome:
        """Like execute(), but reports the result as a CallSuccess / CallFailure."""
        return await capture_outcome(lambda: self.execute(operation, label=label))


async def capture_outcome(operation: Callable[[], Awaitable[Any]]) -> CallOutcome:
    """Run `operation` once and report it as a CallSuccess / CallFailure."""
    try:
        value = await operation()
    except Exception as e:
        return CallFailure(reason=error_message(e), error_class=classify_error(e))
    return CallSuccess(value=value)
