"""HTTP helpers with bounded retries for release lookups and downloads."""
from __future__ import annotations

import json
import logging
import shutil
import ssl
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from . import __version__

LOGGER = logging.getLogger(__name__)
USER_AGENT = f"peertubectl/{__version__}"

T = TypeVar("T")


class NetworkError(RuntimeError):
    """Raised when a request fails after every retry."""


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempts, per-attempt timeout and exponential backoff base."""

    attempts: int = 3
    timeout: float = 30.0
    backoff: float = 2.0

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number *attempt* (1-based)."""
        if self.backoff <= 0:
            return 0.0
        return float(self.backoff ** (attempt - 1))


def with_retries(
    action: Callable[[], T],
    *,
    policy: RetryPolicy,
    description: str,
    retry_on: tuple[type[BaseException], ...] = (OSError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *action* until it succeeds or *policy* runs out of attempts."""
    last_error: BaseException | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            return action()
        except retry_on as exc:
            last_error = exc
            LOGGER.debug("%s failed (attempt %d/%d): %s", description, attempt, policy.attempts, exc)
            if attempt < policy.attempts:
                sleep(policy.delay(attempt))
    raise NetworkError(
        f"{description} failed after {policy.attempts} attempt(s): {last_error}"
    ) from last_error


def fetch_json(url: str, *, timeout: float) -> Any:
    """Return the decoded JSON body of *url*."""
    request = urllib.request.Request(
        url,
        headers={"Accept": "application/json", "User-Agent": USER_AGENT},
    )
    with urllib.request.urlopen(  # noqa: S310 - URLs come from configuration
        request, timeout=timeout, context=ssl.create_default_context()
    ) as response:
        payload = response.read().decode("utf-8")
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{url} returned invalid JSON: {exc}") from exc


def download(url: str, destination: Path, *, timeout: float) -> Path:
    """Stream *url* into *destination*, replacing partial files on retry."""
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    partial = destination.with_name(f"{destination.name}.part")
    try:
        with urllib.request.urlopen(  # noqa: S310 - URLs come from configuration
            request, timeout=timeout, context=ssl.create_default_context()
        ) as response, partial.open("wb") as handle:
            shutil.copyfileobj(response, handle)
        partial.replace(destination)
    finally:
        partial.unlink(missing_ok=True)
    return destination


HTTP_ERRORS: tuple[type[BaseException], ...] = (urllib.error.URLError, OSError, ValueError)


__all__ = [
    "HTTP_ERRORS",
    "NetworkError",
    "RetryPolicy",
    "download",
    "fetch_json",
    "with_retries",
]
