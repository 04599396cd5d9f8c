"""Tests for per-kind request supersession."""

import asyncio

import pytest

from core.request_manager import RequestContext, RequestKind, RequestManager


class TestRequestManager:
    """RequestManager keeps at most one current request per kind."""

    def test_new_request_supersedes_old(self):
        manager = RequestManager()
        ctx1, done1 = manager.start_request(RequestKind.LOGS)
        ctx2, done2 = manager.start_request(RequestKind.LOGS)

        assert ctx1.cancelled
        assert not ctx2.cancelled
        assert ctx2.seq > ctx1.seq
        assert not manager.is_current(RequestKind.LOGS, ctx1.seq)
        assert manager.is_current(RequestKind.LOGS, ctx2.seq)

        # The superseded request finishing must not clear its replacement
        done1()
        assert manager.current_seq(RequestKind.LOGS) == ctx2.seq

        done2()
        assert manager.current_seq(RequestKind.LOGS) is None
        assert ctx2.cancelled

    def test_kinds_are_independent(self):
        manager = RequestManager()
        logs_ctx, _ = manager.start_request(RequestKind.LOGS)
        metrics_ctx, _ = manager.start_request(RequestKind.METRICS_AGG)

        assert not logs_ctx.cancelled
        assert not metrics_ctx.cancelled
        assert set(manager.active_kinds()) == {RequestKind.LOGS, RequestKind.METRICS_AGG}

    def test_cancel_single_kind(self):
        manager = RequestManager()
        ctx, _ = manager.start_request(RequestKind.SPANS)
        manager.cancel(RequestKind.SPANS)
        manager.cancel(RequestKind.SPANS)

        assert ctx.cancelled
        assert manager.active_kinds() == []

    def test_cancel_all(self):
        manager = RequestManager()
        contexts = [manager.start_request(kind)[0] for kind in RequestKind]
        manager.cancel_all()

        assert all(ctx.cancelled for ctx in contexts)
        assert manager.active_kinds() == []

    def test_sequence_is_global(self):
        manager = RequestManager()
        first, _ = manager.start_request(RequestKind.LOGS)
        second, _ = manager.start_request(RequestKind.SPANS)
        assert second.seq == first.seq + 1


class TestRequestContext:

    def test_remaining_without_timeout(self):
        assert RequestContext(RequestKind.LOGS, 1).remaining() is None

    def test_remaining_with_timeout(self):
        remaining = RequestContext(RequestKind.LOGS, 1, timeout=5).remaining()
        assert 0 < remaining <= 5

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        async def fetch():
            return 42

        ctx = RequestContext(RequestKind.LOGS, 1, timeout=1)
        assert await ctx.run(fetch()) == 42

    @pytest.mark.asyncio
    async def test_run_times_out(self):
        ctx = RequestContext(RequestKind.LOGS, 1, timeout=0.01)
        with pytest.raises(asyncio.TimeoutError):
            await ctx.run(asyncio.sleep(1))

    @pytest.mark.asyncio
    async def test_run_after_cancel(self):
        ctx = RequestContext(RequestKind.LOGS, 1)
        ctx.cancel()
        with pytest.raises(asyncio.CancelledError):
            await ctx.run(asyncio.sleep(0))

    @pytest.mark.asyncio
    async def test_supersession_cancels_running_task(self):
        manager = RequestManager()
        ctx1, _ = manager.start_request(RequestKind.LOGS)
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        running = asyncio.ensure_future(ctx1.run(slow()))
        await started.wait()
        manager.start_request(RequestKind.LOGS)

        with pytest.raises(asyncio.CancelledError):
            await running
        assert ctx1.cancelled
