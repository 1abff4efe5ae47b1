from __future__ import annotations

import logging
import math
import threading
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping

import requests

from stockchecker.cancel import CancelToken
from stockchecker.errors import (
    CatalogError,
    RateLimitExceededError,
    TransientNetworkError,
    UpstreamClientError,
    UpstreamServerError,
)

LOG = logging.getLogger(__name__)

RATE_LIMIT_PHRASE = "per second limit"

NETWORK_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()

    if not math.isfinite(seconds):
        return None
    return max(0.0, seconds)


def is_rate_limited(status: int, body: str) -> bool:
    if status == 429:
        return True
    return status == 403 and RATE_LIMIT_PHRASE in body


class RequestThrottle:
    """Minimum spacing between outbound requests, shared across threads."""

    def __init__(self, min_interval: float) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._lock = threading.Lock()
        self._last_sent: float | None = None

    @property
    def last_sent(self) -> float | None:
        with self._lock:
            return self._last_sent

    def acquire(self, cancel: CancelToken) -> float:
        cancel.check()
        while True:
            with self._lock:
                now = time.monotonic()
                if self._last_sent is None or now - self._last_sent >= self.min_interval:
                    self._last_sent = now
                    return now
                wait = self._last_sent + self.min_interval - now

            LOG.debug("throttle wait=%.3fs", wait)
            cancel.sleep(wait)


class RetrievalClient:
    """GET client with request spacing and retry with exponential backoff."""

    def __init__(
        self,
        min_interval: float = 0.35,
        max_retries: int = 5,
        retry_base_wait: float = 1.0,
        request_timeout: float = 30.0,
        call_deadline: float | None = None,
        session: requests.Session | None = None,
        throttle: RequestThrottle | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if retry_base_wait < 0:
            raise ValueError("retry_base_wait must be >= 0")
        self._throttle = throttle or RequestThrottle(min_interval)
        self._max_retries = max_retries
        self._retry_base_wait = retry_base_wait
        self._request_timeout = request_timeout
        self._call_deadline = call_deadline
        self._session = session or self._default_session()

    @staticmethod
    def _default_session() -> requests.Session:
        session = requests.Session()
        session.headers.update({"Accept": "application/json"})
        return session

    @property
    def throttle(self) -> RequestThrottle:
        return self._throttle

    @property
    def min_interval(self) -> float:
        return self._throttle.min_interval

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def retry_base_wait(self) -> float:
        return self._retry_base_wait

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "RetrievalClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def backoff(self, attempt: int) -> float:
        return self._retry_base_wait * (2**attempt)

    def fetch(
        self,
        url: str,
        params: Mapping[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> bytes:
        token = (cancel or CancelToken()).child(self._call_deadline)
        total_attempts = self._max_retries + 1
        last_error: CatalogError | None = None
        last_cause: BaseException | None = None

        for attempt in range(total_attempts):
            self._throttle.acquire(token)
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_for(token))
            except NETWORK_ERRORS as exc:
                last_error = TransientNetworkError(f"request failed: {exc}")
                last_cause = exc
                wait = self.backoff(attempt)
            else:
                status = response.status_code
                if 200 <= status < 300:
                    return response.content

                body = response.text
                last_cause = None
                if is_rate_limited(status, body):
                    hinted = parse_retry_after(response.headers.get("Retry-After"))
                    wait = hinted if hinted is not None else self.backoff(attempt)
                    last_error = RateLimitExceededError(retry_after=wait)
                elif status >= 500:
                    wait = self.backoff(attempt)
                    last_error = UpstreamServerError(status, body)
                else:
                    raise UpstreamClientError(status, body, attempts=attempt + 1)

            if attempt + 1 >= total_attempts:
                break

            LOG.warning(
                "fetch retry path=%s attempt=%d/%d error=%s wait=%.2fs",
                _path_of(url),
                attempt + 1,
                total_attempts,
                last_error,
                wait,
            )
            token.sleep(wait)

        assert last_error is not None
        last_error.attempts = total_attempts
        LOG.error("fetch gave up path=%s attempts=%d error=%s", _path_of(url), total_attempts, last_error)
        raise last_error from last_cause

    def _timeout_for(self, token: CancelToken) -> float:
        remaining = token.remaining()
        if remaining is None:
            return self._request_timeout
        return max(0.001, min(self._request_timeout, remaining))


def _path_of(url: str) -> str:
    return url.split("?", 1)[0]
