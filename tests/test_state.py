import asyncio

import pytest

from quizelo.state import LedgerStateCache, RefreshLoop, View

from conftest import TOKEN, USER


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(ledger, clock):
    return LedgerStateCache(ledger, user=USER, token=TOKEN, max_age=30.0, clock=clock)


class TestLedgerStateCache:

    @pytest.mark.asyncio
    async def test_get_reads_once_while_fresh(self, cache, ledger, clock):
        assert await cache.get(View.USER_INFO) == ledger.user_info
        clock.now = 10
        await cache.get(View.USER_INFO)
        assert ledger.reads.count("user_info") == 1

    @pytest.mark.asyncio
    async def test_stale_after_max_age(self, cache, ledger, clock):
        await cache.get(View.USER_INFO)
        clock.now = 30
        assert cache.is_stale(View.USER_INFO)
        await cache.get(View.USER_INFO)
        assert ledger.reads.count("user_info") == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, cache, ledger):
        await cache.refresh(View.CONTRACT_STATS, View.USER_STATS)
        cache.invalidate(View.CONTRACT_STATS)
        assert cache.is_stale(View.CONTRACT_STATS)
        assert not cache.is_stale(View.USER_STATS)
        assert cache.peek(View.CONTRACT_STATS) == ledger.contract_stats

    @pytest.mark.asyncio
    async def test_views_are_replaced_wholesale(self, cache, ledger):
        await cache.refresh(View.ACTIVE_SESSIONS)
        ledger.active = ["0x" + "01" * 32]
        await cache.refresh(View.ACTIVE_SESSIONS)
        assert cache.active_sessions == ["0x" + "01" * 32]

    @pytest.mark.asyncio
    async def test_failed_read_keeps_previous_value(self, cache, ledger):
        await cache.refresh(View.USER_STATS)
        ledger.failing.add("user_stats")
        updated = await cache.refresh(View.USER_STATS)
        assert updated == set()
        assert cache.user_stats == ledger.user_stats

    @pytest.mark.asyncio
    async def test_refresh_all_skips_unavailable_views(self, ledger, clock):
        cache = LedgerStateCache(ledger, clock=clock)
        updated = await cache.refresh()
        assert updated == {View.QUIZ_FEE, View.ACTIVE_SESSIONS}
        assert cache.quiz_fee == ledger.fee

    @pytest.mark.asyncio
    async def test_switching_user_drops_everything(self, cache):
        await cache.refresh()
        cache.set_user("0x" + "44" * 20)
        assert cache.user_info is None
        assert cache.quiz_fee is None

    @pytest.mark.asyncio
    async def test_switching_token_drops_token_views(self, cache):
        await cache.refresh()
        cache.set_token("0x" + "55" * 20)
        assert cache.balance is None
        assert cache.contract_stats is None
        assert cache.user_info is not None


class TestRefreshLoop:

    @pytest.mark.asyncio
    async def test_polls_until_stopped(self, cache, ledger):
        updates = []
        loop = RefreshLoop(cache, interval=0.01, on_refresh=updates.append)
        async with loop:
            await asyncio.sleep(0.05)
            assert loop.running
        assert not loop.running
        assert len(updates) >= 2
        assert updates[0] == set(RefreshLoop.POLLED_VIEWS)
        assert "balance" not in ledger.reads

    @pytest.mark.asyncio
    async def test_idle_without_user(self, ledger):
        cache = LedgerStateCache(ledger)
        loop = RefreshLoop(cache, interval=0.01)
        loop.start()
        await asyncio.sleep(0.03)
        await loop.stop()
        assert ledger.reads == []

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_polling(self, cache, caplog):
        calls = []

        def on_refresh(updated):
            calls.append(updated)
            raise RuntimeError("display gone")

        loop = RefreshLoop(cache, interval=0.01, on_refresh=on_refresh)
        async with loop:
            await asyncio.sleep(0.05)
            assert loop.running
        assert len(calls) >= 2
        assert "Refresh callback failed" in caplog.text
