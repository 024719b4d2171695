"""Tests for feedbacker/utils/retry.py."""

from unittest.mock import AsyncMock

import pytest

from feedbacker.exceptions import HostError, PatchError
from feedbacker.utils.retry import backoff_delay, is_retryable, retry_async


class TestIsRetryable:
    """Tests for is_retryable."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (HostError("Bad gateway", status_code=502, transient=True), True),
            (HostError("Not Found", status_code=404), False),
            (PatchError("bad"), False),
            (RuntimeError("boom"), False),
        ],
    )
    def test_predicate(self, error, expected):
        assert is_retryable(error) is expected


def test_backoff_delay():
    assert [backoff_delay(2.0, n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestRetryAsync:
    """Tests for retry_async."""

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_retries_until_success(self, sleep):
        """Should retry retryable failures with exponential backoff."""
        operation = AsyncMock(side_effect=[HostError("x", transient=True), HostError("x", transient=True), "ok"])

        result = await retry_async(operation, name="op", max_attempts=3, backoff_factor=2.0, sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self, sleep):
        operation = AsyncMock(side_effect=HostError("Not Found", status_code=404))

        with pytest.raises(HostError):
            await retry_async(operation, name="op", sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted(self, sleep):
        """Should re-raise the last error after max_attempts."""
        operation = AsyncMock(side_effect=HostError("x", transient=True))

        with pytest.raises(HostError):
            await retry_async(operation, name="op", max_attempts=2, sleep=sleep)

        assert operation.await_count == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self, sleep):
        """Should defer to retry_if when given."""
        operation = AsyncMock(side_effect=[ValueError("flaky"), "ok"])

        result = await retry_async(
            operation, name="op", retry_if=lambda e: isinstance(e, ValueError), backoff_factor=0.0, sleep=sleep
        )

        assert result == "ok"
