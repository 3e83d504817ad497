"""Tests for the background retry queue."""

import pytest


def _estimate(impact=7.0):
    from note_synth.models.scoring import ImpactEstimate

    return ImpactEstimate(impact=impact, reasoning="", keywords=[], confidence=0.8)


class TestRetryQueue:
    """Tests for RetryQueue."""

    def test_job_key(self):
        """Test session scoping of job keys."""
        from note_synth.intelligence.retry import RetryQueue

        assert RetryQueue.job_key("t1") == "t1"
        assert RetryQueue.job_key("t1", "s1") == "s1:t1"

    @pytest.mark.asyncio
    async def test_success_after_failures(self):
        """Test that a job retries until the estimate succeeds."""
        from unittest.mock import AsyncMock

        from note_synth.intelligence.retry import RetryQueue

        estimate_fn = AsyncMock(side_effect=[None, RuntimeError("flaky"), _estimate()])
        on_success = AsyncMock()
        on_failure = AsyncMock()
        queue = RetryQueue(delays=[0])

        assert queue.enqueue("t1", estimate_fn, on_success, on_failure)
        await queue.wait_idle()

        assert estimate_fn.call_count == 3
        on_success.assert_awaited_once()
        assert on_success.call_args.args[0].impact == 7.0
        on_failure.assert_not_awaited()
        assert queue.pending_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_calls_on_failure(self):
        """Test that the failure callback gets the attempt count and last error."""
        from unittest.mock import AsyncMock

        from note_synth.intelligence.retry import RetryQueue

        estimate_fn = AsyncMock(return_value=None)
        on_success = AsyncMock()
        on_failure = AsyncMock()
        queue = RetryQueue(delays=[0])

        queue.enqueue("t1", estimate_fn, on_success, on_failure, max_attempts=2)
        await queue.wait_idle()

        on_success.assert_not_awaited()
        _error, attempts, last_error = on_failure.call_args.args
        assert attempts == 2
        assert last_error == "Impact estimate unavailable"

    @pytest.mark.asyncio
    async def test_duplicate_enqueue_ignored(self):
        """Test that a key already queued is not queued twice."""
        from unittest.mock import AsyncMock

        from note_synth.intelligence.retry import RetryQueue

        queue = RetryQueue(delays=[0])
        estimate_fn = AsyncMock(return_value=_estimate())

        assert queue.enqueue("t1", estimate_fn, AsyncMock(), session_id="s1")
        assert not queue.enqueue("t1", estimate_fn, AsyncMock(), session_id="s1")
        assert queue.enqueue("t1", estimate_fn, AsyncMock(), session_id="s2")
        await queue.wait_idle()

        assert estimate_fn.call_count == 2

    @pytest.mark.asyncio
    async def test_cached_estimate_reused(self):
        """Test that a completed estimate resolves later enqueues without calling again."""
        from unittest.mock import AsyncMock

        from note_synth.intelligence.retry import RetryQueue

        queue = RetryQueue(delays=[0])
        estimate_fn = AsyncMock(return_value=_estimate(9.0))
        queue.enqueue("t1", estimate_fn, AsyncMock(), cache_key="t1:outcome")
        await queue.wait_idle()

        second_success = AsyncMock()
        queue.enqueue("t1", estimate_fn, second_success, cache_key="t1:outcome")
        await queue.wait_idle()

        assert estimate_fn.call_count == 1
        assert second_success.call_args.args[0].impact == 9.0

    @pytest.mark.asyncio
    async def test_status_and_clear(self):
        """Test status snapshots per session and cancellation."""
        from unittest.mock import AsyncMock

        from note_synth.intelligence.retry import RetryQueue

        queue = RetryQueue(delays=[0])
        estimate_fn = AsyncMock(return_value=_estimate())
        on_success = AsyncMock()
        queue.enqueue("t1", estimate_fn, on_success, session_id="s1")
        queue.enqueue("t2", estimate_fn, on_success, session_id="s2")

        status = queue.status("s1")
        assert list(status) == ["t1"]
        assert status["t1"]["status"] == "pending"
        assert status["t1"]["attempts"] == 0
        assert queue.pending_count == 2

        queue.clear("s1")
        assert queue.pending_count == 1
        await queue.wait_idle()

        assert estimate_fn.call_count == 1
        assert on_success.await_count == 1
