"""Exponential backoff for Agent Mail calls.

Only failures the mail service can recover from are retried: dropped or
refused connections, timeouts, and 429/5xx responses. Everything else
surfaces immediately as :class:`PermanentError`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """Backoff policy; ``retry`` section of the config file."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.2

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RetryConfig":
        data = data or {}
        return cls(
            max_attempts=int(data.get("max_attempts", cls.max_attempts)),
            base_delay=float(data.get("base_delay", cls.base_delay)),
            max_delay=float(data.get("max_delay", cls.max_delay)),
        )

    def delay_for(self, attempt: int) -> float:
        """Sleep before retry number *attempt* (0-based), jitter included."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        jitter = delay * self.jitter_factor * (2 * random.random() - 1)
        return max(0.0, delay + jitter)


class TransientError(Exception):
    """The mail service may succeed if asked again."""


class PermanentError(Exception):
    """Retrying cannot help; the original error is chained as ``__cause__``."""


async def retry_with_backoff(
    func: Callable[..., Union[T, Awaitable[T]]],
    config: RetryConfig,
    *args: Any,
    **kwargs: Any,
) -> T:
    """Call *func* until it succeeds, fails permanently, or attempts run out.

    Raises:
        PermanentError: on the first non-transient failure
        Exception: the last transient error once ``max_attempts`` is reached
    """
    for attempt in range(config.max_attempts):
        try:
            if asyncio.iscoroutinefunction(func):
                result = await func(*args, **kwargs)
            else:
                result = func(*args, **kwargs)
        except (asyncio.CancelledError, PermanentError):
            raise
        except Exception as e:
            if not is_transient_error(e):
                logger.error(f"Not retrying {type(e).__name__}: {e}")
                raise PermanentError(str(e)) from e
            if attempt == config.max_attempts - 1:
                logger.error(f"Giving up after {config.max_attempts} attempts: {e}")
                raise
            delay = config.delay_for(attempt)
            logger.warning(f"Attempt {attempt + 1}/{config.max_attempts} failed ({e}); retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
        else:
            if attempt > 0:
                logger.info(f"Succeeded on attempt {attempt + 1}")
            return result

    raise PermanentError("max_attempts must be at least 1")


def is_transient_error(error: Exception) -> bool:
    """True for connection-level failures and retryable HTTP statuses."""
    if isinstance(error, TransientError):
        return True
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return False
