"""Retrying HTTP helper shared by the Overpass and Mapillary clients."""

from __future__ import annotations

from collections.abc import Callable
import logging
import re
import threading
import time
from typing import Any, Final

import requests
from requests.adapters import HTTPAdapter

from hazard_ingest.config import AppSettings, RetryPolicy

from .exceptions import ClientError, FetchError, NetworkError, RateLimited, ServerError


LOGGER = logging.getLogger("hazard_ingest.providers.http")
TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"access_token=[^&\s'\"<>]+")
DEFAULT_USER_AGENT: Final[str] = "hazard-ingest/0.1 (+road hazard ingestion worker)"
BODY_CHUNK_SIZE: Final[int] = 64 * 1024

Sleep = Callable[[float], None]
Clock = Callable[[], float]


def build_http_session(settings: AppSettings) -> requests.Session:
    """Session whose connection pool is sized for the detection fan-out."""
    pool_size = max(1, settings.detection_batch_size)
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=2, pool_maxsize=pool_size)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def fetch_with_retry(
    session: requests.Session,
    url: str,
    *,
    policy: RetryPolicy,
    method: str = "GET",
    max_attempts: int | None = None,
    sleep: Sleep = time.sleep,
    clock: Clock = time.monotonic,
    **request_kwargs: Any,
) -> requests.Response:
    """Issue a request until a 2xx arrives or the attempt budget is spent.

    Each attempt gets ``policy.timeout_seconds`` of wall-clock time, body
    included; running over counts as a network failure. 429 waits for
    ``Retry-After`` seconds when the header is numeric and falls back to
    exponential backoff otherwise. 5xx and transport failures back off
    exponentially. Any other 4xx raises ``ClientError`` straight away, and a
    status outside 2xx/4xx/5xx (an unfollowed redirect, say) raises a plain
    ``FetchError`` without retrying.
    """
    attempts = max_attempts if max_attempts is not None else policy.max_attempts
    if attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    request_kwargs.setdefault("timeout", policy.timeout_seconds)
    request_kwargs["stream"] = True
    headers = {"User-Agent": DEFAULT_USER_AGENT, **request_kwargs.pop("headers", {})}
    safe_url = redact_tokens(url)

    last_status: int | None = None
    last_error: str | None = None
    failure: type[FetchError] = NetworkError

    for attempt in range(1, attempts + 1):
        remaining = attempt < attempts
        deadline = clock() + policy.timeout_seconds
        try:
            response = session.request(method, url, headers=headers, **request_kwargs)
            status = response.status_code
            if 200 <= status < 300:
                _read_body(response, deadline, clock)
                return response
        except requests.RequestException as exc:
            failure = NetworkError
            last_status = None
            last_error = redact_tokens(f"{type(exc).__name__}: {exc}")
            if not remaining:
                break
            delay = policy.backoff_delay(attempt)
            LOGGER.warning(
                "Attempt %s/%s for %s failed: %s; retrying in %.1fs",
                attempt,
                attempts,
                safe_url,
                last_error,
                delay,
            )
            sleep(delay)
            continue

        response.close()
        last_status = status
        last_error = f"HTTP {status}: {response.reason or ''}".strip()

        if status == 429:
            failure = RateLimited
            if not remaining:
                break
            delay = _retry_after_seconds(response)
            if delay is None:
                delay = policy.backoff_delay(attempt)
            LOGGER.warning("Rate limited by %s; waiting %.1fs", safe_url, delay)
            sleep(delay)
            continue

        if status >= 500:
            failure = ServerError
            if not remaining:
                break
            delay = policy.backoff_delay(attempt)
            LOGGER.warning(
                "Server error %s from %s; retry %s/%s in %.1fs",
                status,
                safe_url,
                attempt,
                attempts,
                delay,
            )
            sleep(delay)
            continue

        error_type = ClientError if 400 <= status < 500 else FetchError
        raise error_type(
            f"{method} {safe_url} failed: {last_error}",
            status_code=status,
            last_error=last_error,
            attempts=attempt,
        )

    raise failure(
        f"{method} {safe_url} failed after {attempts} attempts. Last error: {last_error}",
        status_code=last_status,
        last_error=last_error,
        attempts=attempts,
    )


def redact_tokens(value: str) -> str:
    return TOKEN_PATTERN.sub("access_token=<redacted>", value)


def _read_body(response: requests.Response, deadline: float, clock: Clock) -> None:
    """Load a streamed body, closing the connection if the deadline passes first."""
    budget = deadline - clock()
    if budget <= 0:
        response.close()
        raise requests.Timeout("Attempt deadline passed before the body was read")

    # A trickling server can keep single reads under the socket timeout, so a
    # watchdog closes the connection when the attempt runs out of time.
    watchdog = threading.Timer(budget, response.close)
    watchdog.daemon = True
    watchdog.start()
    chunks: list[bytes] = []
    try:
        for chunk in response.iter_content(chunk_size=BODY_CHUNK_SIZE):
            chunks.append(chunk)
            if clock() >= deadline:
                raise requests.Timeout("Attempt deadline passed while reading the body")
    except Exception as exc:
        response.close()
        if clock() >= deadline and not isinstance(exc, requests.Timeout):
            raise requests.Timeout("Attempt deadline passed while reading the body") from exc
        raise
    finally:
        watchdog.cancel()

    response._content = b"".join(chunks)  # pylint: disable=protected-access


def _retry_after_seconds(response: requests.Response) -> float | None:
    header = response.headers.get("Retry-After")
    if header is None:
        return None
    try:
        seconds = float(header.strip())
    except ValueError:
        # HTTP-date form is not honored
        return None
    if seconds < 0:
        return None
    return seconds
