from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from missionsync import retry

# Constants for test expectations
FIRST_SUCCESS_ATTEMPT = 2  # rate limited once then success
EXPECTED_RETRY_COUNT = 2  # total attempts when one retry occurs


@dataclass
class _Response:
    status_code: int
    text: str = ""
    headers: dict[str, str] = field(default_factory=dict)


def test_is_transient_tokens():
    assert retry.is_transient("Rate Limit exceeded")
    assert retry.is_transient("secondary rate limit triggered")
    assert retry.is_transient("ABUSE DETECTION mechanism")
    assert not retry.is_transient("some other error")


def test_is_rate_limited():
    assert retry.is_rate_limited(_Response(429))
    assert retry.is_rate_limited(_Response(403, "You have exceeded a secondary rate limit"))
    assert not retry.is_rate_limited(_Response(403, "Resource not accessible by integration"))
    assert not retry.is_rate_limited(_Response(500, "rate limit"))


def test_run_with_retries_rate_limited_then_success():
    attempts: list[int] = []
    sleeps: list[float] = []

    def fn() -> _Response:
        attempts.append(1)
        if len(attempts) < FIRST_SUCCESS_ATTEMPT:
            return _Response(429, headers={"Retry-After": "2"})
        return _Response(200, "ok")

    cfg = retry.RetryConfig(attempts=3, base_sleep=0.01)
    result = retry.run_with_retries(fn, cfg=cfg, sleep=sleeps.append)
    assert result.status_code == 200
    assert len(attempts) == EXPECTED_RETRY_COUNT
    assert sleeps == [2.0]


def test_run_with_retries_returns_other_errors_untouched():
    attempts: list[int] = []

    def fn() -> _Response:
        attempts.append(1)
        return _Response(500, "boom")

    result = retry.run_with_retries(fn, cfg=retry.RetryConfig(attempts=4, base_sleep=0.0))
    assert result.status_code == 500
    assert len(attempts) == 1


def test_run_with_retries_exhausts_and_returns_last_response():
    attempts: list[int] = []

    def fn() -> _Response:
        attempts.append(1)
        return _Response(403, "secondary rate limit inner error")

    cfg = retry.RetryConfig(attempts=3, base_sleep=0.0)
    result = retry.run_with_retries(fn, cfg=cfg, sleep=lambda _s: None)
    assert result.status_code == 403
    assert len(attempts) == cfg.attempts


def test_max_sleep_cap(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MISSIONSYNC_RETRY_MAX_SLEEP", "1")
    sleeps: list[float] = []
    responses = [_Response(429, headers={"Retry-After": "30"}), _Response(200)]

    retry.run_with_retries(
        lambda: responses.pop(0), cfg=retry.RetryConfig(attempts=2), sleep=sleeps.append
    )
    assert sleeps == [1.0]


def test_retry_config_reads_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MISSIONSYNC_RETRY_ATTEMPTS", "7")
    monkeypatch.setenv("MISSIONSYNC_RETRY_BASE", "0.25")
    cfg = retry.RetryConfig()
    assert (cfg.attempts, cfg.base_sleep) == (7, 0.25)
