"""Tests for retry_with_backoff."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dragonwsl.utils.retry import retry_with_backoff


@pytest.fixture
def sleep(mocker) -> MagicMock:
    return mocker.patch("dragonwsl.utils.retry.time.sleep")


def test_returns_first_success(sleep: MagicMock) -> None:
    func = MagicMock(return_value="ok", __name__="lookup")

    assert retry_with_backoff(max_attempts=3)(func)() == "ok"
    func.assert_called_once()
    sleep.assert_not_called()


def test_retries_until_success(sleep: MagicMock) -> None:
    func = MagicMock(side_effect=[ConnectionError("a"), ConnectionError("b"), "ok"], __name__="lookup")
    seen: list[int] = []

    wrapped = retry_with_backoff(
        max_attempts=3,
        base_delay=1.0,
        jitter=False,
        exceptions=(ConnectionError,),
        on_retry=lambda e, attempt: seen.append(attempt),
    )(func)

    assert wrapped() == "ok"
    assert seen == [1, 2]
    assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]


def test_gives_up_after_max_attempts(sleep: MagicMock) -> None:
    func = MagicMock(side_effect=ConnectionError("down"), __name__="lookup")

    with pytest.raises(ConnectionError, match="down"):
        retry_with_backoff(max_attempts=2, exceptions=(ConnectionError,))(func)()

    assert func.call_count == 2
    assert sleep.call_count == 1


def test_other_exceptions_propagate(sleep: MagicMock) -> None:
    func = MagicMock(side_effect=KeyError("x"), __name__="lookup")

    with pytest.raises(KeyError):
        retry_with_backoff(max_attempts=5, exceptions=(ConnectionError,))(func)()

    func.assert_called_once()


def test_delay_is_capped(sleep: MagicMock) -> None:
    func = MagicMock(side_effect=[ValueError(), ValueError(), ValueError(), "ok"], __name__="lookup")

    retry_with_backoff(max_attempts=4, base_delay=10.0, max_delay=15.0, jitter=False)(func)()

    assert [c.args[0] for c in sleep.call_args_list] == [10.0, 15.0, 15.0]


def test_invalid_max_attempts() -> None:
    with pytest.raises(ValueError):
        retry_with_backoff(max_attempts=0)
