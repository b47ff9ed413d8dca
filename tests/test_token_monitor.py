"""
Tests for the candidate monitor: ingestion, promotion and eviction.
"""

import asyncio
import csv
import os

import pytest

from pump_fun import CurveStateError
from token_monitor import MONITOR_CHANNEL, TokenMonitor
from token_registry import TokenRegistry


@pytest.fixture
def candidates():
    return TokenRegistry("candidates")


@pytest.fixture
def active():
    return TokenRegistry("active")


@pytest.fixture
def monitor(config, candidates, active, fetcher):
    return TokenMonitor(config, candidates, active, fetcher)


class TestTick:
    """One monitor pass over the candidate pool."""

    @pytest.mark.asyncio
    async def test_promotes_token_meeting_entry_rules(self, monitor, candidates, active, fetcher,
                                                     make_token, fresh_snapshot):
        """History 3 (> 2) and market cap 40 (>= 35) moves the token to the active pool."""
        token = make_token(market_caps=(20.0, 30.0))
        candidates.set(token)
        fetcher.fetch_snapshot.return_value = fresh_snapshot(40.0)

        await monitor.tick()

        promoted, found = active.get(token.mint)
        assert found is True
        assert len(promoted.history) == 3
        assert promoted.market_cap == 40.0
        assert candidates.get(token.mint)[0].trading is True
        assert monitor.stats["promoted"] == 1

    @pytest.mark.asyncio
    async def test_evicts_stale_low_cap_token(self, monitor, candidates, active, fetcher,
                                             make_token, fresh_snapshot):
        """History 21 (> 20) and market cap 10 (< 35) removes the candidate."""
        token = make_token(market_caps=[10.0] * 20)
        candidates.set(token)
        fetcher.fetch_snapshot.return_value = fresh_snapshot(10.0)

        await monitor.tick()

        assert token.mint not in candidates
        assert token.mint not in active
        assert monitor.stats["evicted"] == 1

    @pytest.mark.asyncio
    async def test_short_history_is_not_promoted(self, monitor, candidates, active, fetcher,
                                                make_token, fresh_snapshot):
        token = make_token(market_caps=(50.0,))
        candidates.set(token)
        fetcher.fetch_snapshot.return_value = fresh_snapshot(50.0)

        await monitor.tick()

        assert active.count() == 0
        assert len(candidates.get(token.mint)[0].history) == 2

    @pytest.mark.asyncio
    async def test_already_trading_is_not_promoted_again(self, monitor, candidates, active, fetcher,
                                                         make_token, fresh_snapshot):
        token = make_token(market_caps=(40.0, 40.0, 40.0), trading=True)
        candidates.set(token)
        fetcher.fetch_snapshot.return_value = fresh_snapshot(40.0)

        await monitor.tick()

        assert active.count() == 0

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_token(self, monitor, candidates, fetcher, make_token):
        token = make_token(market_caps=(10.0,))
        candidates.set(token)
        fetcher.fetch_snapshot.side_effect = CurveStateError("rpc down")

        await monitor.tick()

        stored, found = candidates.get(token.mint)
        assert found is True
        assert len(stored.history) == 1
        assert monitor.stats["fetch_failures"] == 1

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_other_tokens(self, monitor, candidates, fetcher,
                                                          make_token, fresh_snapshot):
        bad, good = make_token(), make_token()
        candidates.set(bad)
        candidates.set(good)
        snapshot = fresh_snapshot(12.0)

        async def fetch(curve):
            if curve == bad.bonding_curve:
                raise CurveStateError("bad account")
            return snapshot

        fetcher.fetch_snapshot.side_effect = fetch

        await monitor.tick()

        assert len(candidates.get(good.mint)[0].history) == 1
        assert len(candidates.get(bad.mint)[0].history) == 0

    @pytest.mark.asyncio
    async def test_clock_step_back_does_not_stop_tick(self, monitor, candidates, fetcher,
                                                      make_token, make_snapshot):
        first, second = make_token(market_caps=(10.0,)), make_token(market_caps=(10.0,))
        candidates.set(first)
        candidates.set(second)
        fetcher.fetch_snapshot.return_value = make_snapshot(12.0, timestamp=1.0)

        await monitor.tick()

        for mint in (first.mint, second.mint):
            history = candidates.get(mint)[0].history
            assert len(history) == 2
            assert history[1].timestamp == history[0].timestamp
            assert history[1].market_cap == 12.0

    @pytest.mark.asyncio
    async def test_writes_audit_rows(self, config, candidates, active, fetcher, session_logger,
                                     make_token, fresh_snapshot):
        monitor = TokenMonitor(config, candidates, active, fetcher, session_logger=session_logger)
        session_logger.open_channel(MONITOR_CHANNEL)
        token = make_token(market_caps=(20.0, 30.0))
        candidates.set(token)
        fetcher.fetch_snapshot.return_value = fresh_snapshot(40.0)

        await monitor.tick()

        with open(os.path.join(session_logger.session_path, MONITOR_CHANNEL), newline="") as f:
            rows = list(csv.reader(f))
        assert rows[0] == ["#"] * 13
        assert [row[0] for row in rows[1:]] == ["MONITOR", "ADD"]
        assert rows[2][1] == token.mint
        assert rows[2][-1] == "True"


class TestEvaluate:
    """Rule evaluation on an already refreshed candidate."""

    def test_eviction_wins_over_promotion(self, monitor, candidates, active, make_token):
        token = make_token(market_caps=[10.0] * 21)
        candidates.set(token)

        assert monitor.evaluate(token) == "REMOVE"
        assert active.count() == 0

    def test_long_history_with_high_cap_is_promoted(self, monitor, candidates, active, make_token):
        token = make_token(market_caps=[40.0] * 21)
        candidates.set(token)

        assert monitor.evaluate(token) == "ADD"
        assert token.mint in active

    def test_entry_threshold_is_inclusive(self, monitor, candidates, make_token):
        token = make_token(market_caps=(35.0, 35.0, 35.0))
        candidates.set(token)

        assert monitor.evaluate(token) == "ADD"

    def test_below_threshold_keeps_monitoring(self, monitor, candidates, make_token):
        token = make_token(market_caps=(30.0, 30.0, 30.0))
        candidates.set(token)

        assert monitor.evaluate(token) == "MONITOR"
        assert token.mint in candidates


class TestIngest:
    """Consuming the listener's discovery queue."""

    @pytest.mark.asyncio
    async def test_ingest_adds_with_first_snapshot(self, monitor, candidates, fetcher,
                                                   make_token, fresh_snapshot):
        queue = asyncio.Queue()
        token = make_token()
        fetcher.fetch_snapshot.return_value = fresh_snapshot(5.0)
        queue.put_nowait(token)
        queue.put_nowait(None)

        await asyncio.wait_for(monitor.ingest(queue), timeout=2)

        stored, found = candidates.get(token.mint)
        assert found is True
        assert len(stored.history) == 1
        assert stored.added_time is not None
        assert monitor.stats["discovered"] == 1

    @pytest.mark.asyncio
    async def test_ingest_keeps_token_when_first_fetch_fails(self, monitor, candidates, fetcher, make_token):
        queue = asyncio.Queue()
        token = make_token()
        fetcher.fetch_snapshot.side_effect = CurveStateError("not yet indexed")
        queue.put_nowait(token)
        queue.put_nowait(None)

        await asyncio.wait_for(monitor.ingest(queue), timeout=2)

        stored, found = candidates.get(token.mint)
        assert found is True
        assert stored.history == []


class TestRun:

    @pytest.mark.asyncio
    async def test_run_stops_on_stop_event(self, config, candidates, active, fetcher, session_logger):
        stop = asyncio.Event()
        monitor = TokenMonitor(config, candidates, active, fetcher,
                               session_logger=session_logger, stop_event=stop)

        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

        assert not session_logger.is_open(MONITOR_CHANNEL)

    @pytest.mark.asyncio
    async def test_run_survives_unexpected_errors(self, config, candidates, active, fetcher, make_token):
        stop = asyncio.Event()
        monitor = TokenMonitor(config, candidates, active, fetcher, stop_event=stop)
        candidates.set(make_token())
        fetcher.fetch_snapshot.side_effect = RuntimeError("unexpected")

        task = asyncio.create_task(monitor.run())
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=2)

        assert fetcher.fetch_snapshot.await_count >= 2
