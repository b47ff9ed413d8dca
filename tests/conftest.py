"""
Shared fixtures for the sniper bot tests.

Nothing here talks to a real RPC node or websocket: curve fetchers and
executors are AsyncMocks, tokens are built from generated keys.
"""

import itertools
import time
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.pubkey import Pubkey

from config import DEFAULT_CONFIG
from models import BondingCurveState, MemeToken, TokenSnapshot
from trade_logger import SessionLogger


# =============================================================================
# Config
# =============================================================================


@pytest.fixture
def config(tmp_path):
    """Default config with no retry delays and files under tmp_path."""
    cfg = dict(DEFAULT_CONFIG)
    cfg.update({
        "RETRY_BASE_DELAY_SECONDS": 0.0,
        "RETRY_MAX_DELAY_SECONDS": 0.0,
        "ORDER_WORKERS": 2,
        "SHUTDOWN_TIMEOUT_SECONDS": 5.0,
        "MONITOR_INTERVAL_SECONDS": 0.01,
        "TRADE_INTERVAL_SECONDS": 0.01,
        "STATUS_REPORT_INTERVAL_SECONDS": 60,
        "LOG_DIR": str(tmp_path / "sessions"),
        "POSITIONS_FILE": str(tmp_path / "positions.json"),
    })
    return cfg


# =============================================================================
# Domain objects
# =============================================================================


@pytest.fixture
def curve_state():
    """A plausible early-curve state: 30 SOL virtual, 1.073B tokens virtual."""
    return BondingCurveState(
        virtual_token_reserves=1_073_000_000_000_000,
        virtual_sol_reserves=30_000_000_000,
        real_token_reserves=793_100_000_000_000,
        real_sol_reserves=0,
        token_total_supply=1_000_000_000_000_000,
        complete=False,
    )


@pytest.fixture
def make_snapshot(curve_state):
    """Factory for snapshots with a chosen market cap; timestamps always increase."""
    counter = itertools.count()

    def _make(market_cap=10.0, price=None, timestamp=None, state=None):
        return TokenSnapshot(
            bonding_state=state or curve_state,
            token_price=price if price is not None else market_cap / 1_000_000_000,
            market_cap=market_cap,
            timestamp=timestamp if timestamp is not None else 1_700_000_000.0 + next(counter),
        )

    return _make


@pytest.fixture
def make_token(make_snapshot):
    """Factory for MemeTokens with one snapshot per market cap given."""

    def _make(market_caps=(), **kwargs):
        fields = {
            "mint": str(Pubkey.new_unique()),
            "name": "Test Token",
            "symbol": "TEST",
            "uri": "https://example.com/meta.json",
            "bonding_curve": str(Pubkey.new_unique()),
            "associated_curve": str(Pubkey.new_unique()),
        }
        fields.update(kwargs)
        token = MemeToken(**fields)
        for cap in market_caps:
            token.append_snapshot(make_snapshot(cap))
        return token

    return _make


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def fetcher():
    """Curve fetcher mock; set fetch_snapshot.return_value or side_effect per test."""
    mock = MagicMock()
    mock.fetch_snapshot = AsyncMock()
    mock.fetch = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def fresh_snapshot(make_snapshot):
    """Snapshot stamped now, so it is newer than any factory-built history."""

    def _make(market_cap):
        return make_snapshot(market_cap, timestamp=time.time())

    return _make


@pytest.fixture
def session_logger(tmp_path):
    logger = SessionLogger(str(tmp_path / "sessions"))
    logger.start_session()
    yield logger
    logger.close_all()
