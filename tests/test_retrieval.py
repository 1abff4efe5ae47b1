from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest
import requests

from stockchecker.cancel import CancelToken
from stockchecker.errors import (
    Cancelled,
    DeadlineExceeded,
    RateLimitExceededError,
    TransientNetworkError,
    UpstreamClientError,
    UpstreamServerError,
)
from stockchecker.retrieval import RequestThrottle, RetrievalClient, is_rate_limited, parse_retry_after

URL = "https://api.example.test/v1/products"


def make_client(fake_session, **kwargs) -> RetrievalClient:
    kwargs.setdefault("min_interval", 0.0)
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("retry_base_wait", 0.5)
    return RetrievalClient(session=fake_session, **kwargs)


def test_success_returns_body_after_one_request(session, response, recorded_sleeps) -> None:
    fake = session(response(200, {"products": []}))
    client = make_client(fake)

    body = client.fetch(URL, params={"format": "json"})

    assert body == b'{"products": []}'
    assert len(fake.calls) == 1
    assert fake.calls[0]["params"] == {"format": "json"}
    assert recorded_sleeps == []


def test_client_error_is_terminal_after_one_request(session, response, recorded_sleeps) -> None:
    fake = session(response(404, "no such product"))
    client = make_client(fake)

    with pytest.raises(UpstreamClientError) as info:
        client.fetch(URL)

    assert info.value.status == 404
    assert info.value.body == "no such product"
    assert info.value.attempts == 1
    assert info.value.retryable is False
    assert len(fake.calls) == 1
    assert recorded_sleeps == []


def test_forbidden_without_rate_limit_phrase_is_terminal(session, response, recorded_sleeps) -> None:
    fake = session(response(403, "invalid api key"))
    client = make_client(fake)

    with pytest.raises(UpstreamClientError):
        client.fetch(URL)
    assert len(fake.calls) == 1


def test_server_errors_exhaust_retries(session, response, recorded_sleeps) -> None:
    fake = session(response(503, "down"))
    client = make_client(fake, max_retries=3, retry_base_wait=0.5)

    with pytest.raises(UpstreamServerError) as info:
        client.fetch(URL)

    assert info.value.status == 503
    assert info.value.attempts == 4
    assert len(fake.calls) == 4
    # Exponential backoff, and no wait after the final attempt.
    assert recorded_sleeps == [0.5, 1.0, 2.0]


def test_retry_log_counts_against_total_attempts(session, response, recorded_sleeps, caplog) -> None:
    caplog.set_level(logging.WARNING, logger="stockchecker.retrieval")
    client = make_client(session(response(503, "down")), max_retries=2)

    with pytest.raises(UpstreamServerError):
        client.fetch(URL)

    retries = [r.getMessage() for r in caplog.records if "fetch retry" in r.getMessage()]
    assert len(retries) == 2
    assert "attempt=1/3" in retries[0]
    assert "attempt=2/3" in retries[1]


def test_server_error_ignores_retry_after(session, response, recorded_sleeps) -> None:
    fake = session(response(500, "oops", {"Retry-After": "30"}), response(200, "{}"))
    client = make_client(fake, retry_base_wait=0.25)

    assert client.fetch(URL) == b"{}"
    assert recorded_sleeps == [0.25]


def test_rate_limit_prefers_retry_after(session, response, recorded_sleeps) -> None:
    fake = session(response(429, "slow down", {"Retry-After": "7"}), response(200, "{}"))
    client = make_client(fake, retry_base_wait=0.5)

    assert client.fetch(URL) == b"{}"
    assert recorded_sleeps == [7.0]
    assert len(fake.calls) == 2


def test_rate_limit_without_hint_uses_exponential_backoff(session, response, recorded_sleeps) -> None:
    fake = session(response(429, ""), response(429, ""), response(200, "{}"))
    client = make_client(fake, retry_base_wait=0.5)

    client.fetch(URL)

    assert recorded_sleeps == [0.5, 1.0]


def test_vendor_forbidden_rate_limit_is_retried(session, response, recorded_sleeps) -> None:
    body = "<h1>Developer Inactive</h1> Over per second limit"
    fake = session(response(403, body), response(200, "{}"))
    client = make_client(fake)

    assert client.fetch(URL) == b"{}"
    assert len(fake.calls) == 2


def test_rate_limit_exhausted(session, response, recorded_sleeps) -> None:
    fake = session(response(429, "", {"Retry-After": "2"}))
    client = make_client(fake, max_retries=2)

    with pytest.raises(RateLimitExceededError) as info:
        client.fetch(URL)

    assert info.value.retry_after == 2.0
    assert info.value.attempts == 3
    assert info.value.retryable is True
    assert len(fake.calls) == 3


def test_network_failure_is_retried(session, response, recorded_sleeps) -> None:
    fake = session(requests.ConnectionError("connection reset"), response(200, "{}"))
    client = make_client(fake)

    assert client.fetch(URL) == b"{}"
    assert len(fake.calls) == 2


def test_network_failures_exhaust_to_transient_error(session, recorded_sleeps) -> None:
    fake = session(requests.Timeout("timed out"))
    client = make_client(fake, max_retries=1)

    with pytest.raises(TransientNetworkError) as info:
        client.fetch(URL)

    assert isinstance(info.value.__cause__, requests.Timeout)
    assert info.value.attempts == 2


def test_zero_retries_sends_once(session, response, recorded_sleeps) -> None:
    fake = session(response(502, "bad gateway"))
    client = make_client(fake, max_retries=0)

    with pytest.raises(UpstreamServerError):
        client.fetch(URL)
    assert len(fake.calls) == 1
    assert recorded_sleeps == []


def test_consecutive_requests_respect_min_interval(session, response) -> None:
    fake = session(response(200, "{}"))
    client = make_client(fake, min_interval=0.05)

    for _ in range(4):
        client.fetch(URL)

    gaps = [b - a for a, b in zip(fake.sent_at, fake.sent_at[1:])]
    assert len(gaps) == 3
    assert all(gap >= 0.045 for gap in gaps)


def test_concurrent_callers_share_the_watermark(session, response) -> None:
    fake = session(response(200, "{}"))
    client = make_client(fake, min_interval=0.05)

    threads = [threading.Thread(target=client.fetch, args=(URL,)) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    sent = sorted(fake.sent_at)
    assert len(sent) == 4
    assert all(b - a >= 0.045 for a, b in zip(sent, sent[1:]))


def test_retries_move_the_watermark(session, response) -> None:
    fake = session(response(500, ""), response(200, "{}"))
    client = make_client(fake, min_interval=0.0, retry_base_wait=0.01)

    client.fetch(URL)

    assert client.throttle.last_sent is not None
    assert client.throttle.last_sent >= fake.sent_at[0]
    assert client.throttle.last_sent <= fake.sent_at[-1]


def test_cancel_during_backoff_returns_promptly(session, response) -> None:
    fake = session(response(503, "down"))
    client = make_client(fake, retry_base_wait=5.0)
    token = CancelToken()
    timer = threading.Timer(0.1, token.cancel)

    started = time.monotonic()
    timer.start()
    try:
        with pytest.raises(Cancelled):
            client.fetch(URL, cancel=token)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 2.0
    assert len(fake.calls) == 1


def test_cancel_during_throttle_wait_returns_promptly() -> None:
    throttle = RequestThrottle(min_interval=10)
    token = CancelToken()
    first = throttle.acquire(token)
    timer = threading.Timer(0.1, token.cancel)

    started = time.monotonic()
    timer.start()
    try:
        with pytest.raises(Cancelled):
            throttle.acquire(token)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 2.0
    assert throttle.last_sent == first


def test_deadline_reached_mid_backoff(session, response) -> None:
    fake = session(response(503, "down"))
    client = make_client(fake, retry_base_wait=5.0, call_deadline=0.2)

    started = time.monotonic()
    with pytest.raises(DeadlineExceeded):
        client.fetch(URL)

    assert time.monotonic() - started < 2.0


def test_request_timeout_is_clamped_to_deadline(session, response) -> None:
    fake = session(response(200, "{}"))
    client = make_client(fake, request_timeout=30.0)

    client.fetch(URL, cancel=CancelToken.with_timeout(2.0))

    assert fake.calls[0]["timeout"] <= 2.0


def test_cancelled_token_sends_nothing(session, response) -> None:
    fake = session(response(200, "{}"))
    client = make_client(fake)
    token = CancelToken()
    token.cancel()

    with pytest.raises(Cancelled):
        client.fetch(URL, cancel=token)
    assert fake.calls == []


def test_throttle_rejects_negative_interval() -> None:
    with pytest.raises(ValueError):
        RequestThrottle(-1)


def test_parse_retry_after() -> None:
    assert parse_retry_after("7") == 7.0
    assert parse_retry_after(" 1.5 ") == 1.5
    assert parse_retry_after("-3") == 0.0
    assert parse_retry_after("soon") is None
    assert parse_retry_after("") is None
    assert parse_retry_after(None) is None
    assert parse_retry_after("inf") is None

    future = datetime.now(timezone.utc) + timedelta(seconds=120)
    parsed = parse_retry_after(format_datetime(future, usegmt=True))
    assert parsed is not None
    assert 100 <= parsed <= 121


def test_is_rate_limited() -> None:
    assert is_rate_limited(429, "")
    assert is_rate_limited(403, "Over per second limit")
    assert not is_rate_limited(403, "Forbidden")
    assert not is_rate_limited(500, "per second limit")
