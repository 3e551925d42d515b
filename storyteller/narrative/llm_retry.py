# ABOUTME: Exponential backoff retry decorator for narrative API calls.
# ABOUTME: Retries transient OpenAI errors with a configurable attempt budget and structured logging.

import inspect
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from openai import APIError, APITimeoutError, RateLimitError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

F = TypeVar("F", bound=Callable[..., Any])

RETRYABLE_ERRORS = (APIError, APITimeoutError, RateLimitError)


def llm_retry(attempts: int = 3, max_wait: float = 10.0) -> Callable[[F], F]:
    """
    Retry decorator factory for async narrative API calls.

    Retries on OpenAI API errors with exponential backoff (1s min). Any
    other exception propagates immediately. The outer per-turn timeout still
    bounds the total time spent here.

    Usage:
        @llm_retry(attempts=3)
        async def complete(...):
            ...

    Args:
        attempts: Total attempts including the first call
        max_wait: Upper bound on a single backoff sleep, in seconds

    Returns:
        Decorator applying the retry policy
    """
    retrying_decorator = retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1, max=max_wait),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, "WARNING"),
        reraise=True,
    )

    def decorator(func: F) -> F:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"llm_retry only wraps coroutine functions, got {func.__name__}")

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            @retrying_decorator
            async def _retry_call() -> Any:
                try:
                    return await func(*args, **kwargs)
                except RETRYABLE_ERRORS as e:
                    logger.warning(
                        f"Narrative API call failed in {func.__name__}: {type(e).__name__}: {e}"
                    )
                    raise

            return await _retry_call()

        return async_wrapper  # type: ignore

    return decorator
