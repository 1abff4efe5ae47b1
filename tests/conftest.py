from __future__ import annotations

import json
import time

import pytest

from stockchecker.cancel import CancelToken


class FakeResponse:
    def __init__(self, status_code: int = 200, body: object = None, headers: dict[str, str] | None = None) -> None:
        if body is None:
            body = {}
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.status_code = status_code
        self.content = body
        self.text = body.decode("utf-8")
        self.headers = headers or {}


class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    def __init__(self, *replies: object) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, object]] = []
        self.sent_at: list[float] = []
        self.closed = False

    def get(self, url, params=None, timeout=None):  # type: ignore[no-untyped-def]
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        self.sent_at.append(time.monotonic())
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def response():
    return FakeResponse


@pytest.fixture
def session():
    return FakeSession


@pytest.fixture
def recorded_sleeps(monkeypatch) -> list[float]:
    """Make every CancelToken wait instant and record what was asked for."""
    sleeps: list[float] = []

    def fake_sleep(self: CancelToken, seconds: float) -> None:
        self.check()
        sleeps.append(seconds)

    monkeypatch.setattr(CancelToken, "sleep", fake_sleep)
    return sleeps
