"""Common utilities for promoctl."""

import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from promoctl.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_duration(duration_str: str | int | float) -> float:
    """Parse duration string to seconds.

    Supports formats like: 30s, 5m, 2h, 1d, 1w and combinations such as
    1h30m. Plain numbers are taken as seconds.

    Raises:
        ValueError: If format is invalid
    """
    if isinstance(duration_str, (int, float)):
        return float(duration_str)

    if not duration_str:
        raise ValueError("Duration string cannot be empty")

    text = duration_str.strip().lower()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return float(text)

    pattern = re.compile(r"(\d+)([smhdw])")
    matches = pattern.findall(text)

    if not matches or "".join(v + u for v, u in matches) != text:
        raise ValueError(f"Invalid duration format: {duration_str}")

    units = {
        "s": "seconds",
        "m": "minutes",
        "h": "hours",
        "d": "days",
        "w": "weeks",
    }

    total = timedelta()
    for value, unit in matches:
        total += timedelta(**{units[unit]: int(value)})

    return total.total_seconds()


def merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


def sanitize_filename(name: str) -> str:
    """Sanitize a string for use as a filename."""
    sanitized = re.sub(r'[<>:"/\\|?*@]', "_", name)
    sanitized = sanitized.strip(". ")
    return sanitized or "unnamed"


def _log_retry(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Retrying after transient error",
        attempt=retry_state.attempt_number,
        error=type(exception).__name__ if exception else "unknown",
        wait=round(retry_state.next_action.sleep, 2) if retry_state.next_action else 0,
    )


def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    retries: int = 3,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    sleep: Callable[[float], None] | None = None,
    **kwargs: Any,
) -> T:
    """Call ``func`` with bounded exponential backoff.

    ``retries`` counts retries after the first call, so ``retries=0``
    means a single attempt. The last exception is re-raised once the
    retries are exhausted.
    """
    retrying_kwargs: dict[str, Any] = {
        "stop": stop_after_attempt(max(retries, 0) + 1),
        "wait": wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        "retry": retry_if_exception_type(retry_on),
        "before_sleep": _log_retry,
        "reraise": True,
    }
    if sleep is not None:
        retrying_kwargs["sleep"] = sleep

    return Retrying(**retrying_kwargs)(func, *args, **kwargs)
