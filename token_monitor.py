# Filename: token_monitor.py

import asyncio
import logging
from typing import Optional

from models import MemeToken, TokenSnapshot
from pump_fun import CurveStateError
from token_registry import TokenRegistry
from trade_logger import SEPARATOR_ROW, SessionLogger, format_snapshots

logger = logging.getLogger("TokenMonitor")

MONITOR_CHANNEL = "monitor.log"


class TokenMonitor:
    """
    Feeds newly discovered tokens into the candidate pool and, on every tick,
    refreshes each candidate's curve state and decides whether to drop it or
    promote it to the active pool.
    """

    def __init__(self, config, candidates: TokenRegistry, active: TokenRegistry, fetcher,
                 session_logger: Optional[SessionLogger] = None,
                 stop_event: Optional[asyncio.Event] = None):
        self.config = config
        self.candidates = candidates
        self.active = active
        self.fetcher = fetcher
        self.session_logger = session_logger
        self.stop_event = stop_event or asyncio.Event()

        self.interval = config.get("MONITOR_INTERVAL_SECONDS", 30)
        self.entry_market_cap = config.get("ENTRY_MARKET_CAP", 35.0)
        self.min_entry_history = config.get("MIN_ENTRY_HISTORY", 2)
        self.max_entry_history = config.get("MAX_ENTRY_HISTORY", 20)

        self.stats = {"discovered": 0, "promoted": 0, "evicted": 0, "fetch_failures": 0}

    async def _fetch(self, token: MemeToken) -> Optional[TokenSnapshot]:
        try:
            return await self.fetcher.fetch_snapshot(token.bonding_curve)
        except CurveStateError as e:
            self.stats["fetch_failures"] += 1
            logger.warning(f"[MONITOR] Failed to fetch bonding curve state for {token.symbol} ({token.mint}): {e}")
            return None

    def _audit(self, action: str, token: MemeToken) -> None:
        if self.session_logger is None:
            return
        self.session_logger.try_append(MONITOR_CHANNEL, [
            action, token.mint, token.name, token.symbol, token.added_time,
            format_snapshots(token.history), token.trading,
        ])

    async def ingest(self, queue: asyncio.Queue) -> None:
        """Consumes discovered tokens until the listener's None marker arrives."""
        while True:
            token = await queue.get()
            if token is None:
                logger.info("[MONITOR] Discovery stream closed")
                return

            snapshot = await self._fetch(token)
            if snapshot is not None:
                token.append_snapshot(snapshot)
            stored = self.candidates.set(token)
            self.stats["discovered"] += 1
            logger.info(f"[MONITOR] Tracking {stored.name} ({stored.symbol}) mint={stored.mint} "
                        f"market cap={stored.market_cap:.2f} SOL")

    def evaluate(self, token: MemeToken) -> str:
        """
        Applies the eviction and promotion rules to a freshly updated
        candidate. Returns "REMOVE", "ADD" or "MONITOR".
        """
        history_length = len(token.history)
        market_cap = token.market_cap

        if history_length > self.max_entry_history and market_cap < self.entry_market_cap:
            self.candidates.delete(token.mint)
            self.stats["evicted"] += 1
            logger.info(f"[MONITOR] REMOVE {token.symbol} ({token.mint}) market cap={market_cap:.2f}")
            self._audit("REMOVE", token)
            return "REMOVE"

        if (history_length > self.min_entry_history and market_cap >= self.entry_market_cap
                and not token.trading):
            self.active.set(token)
            promoted = self.candidates.update(token.mint, lambda t: setattr(t, "trading", True))
            self.stats["promoted"] += 1
            logger.info(f"[MONITOR] ADD TO TRADES {token.symbol} ({token.mint}) market cap={market_cap:.2f}")
            self._audit("ADD", promoted or token)
            return "ADD"

        return "MONITOR"

    async def tick(self) -> None:
        if self.session_logger is not None:
            self.session_logger.try_append(MONITOR_CHANNEL, SEPARATOR_ROW)

        tokens = self.candidates.snapshot()
        logger.info(f"[MONITOR] Checking {len(tokens)} candidate tokens")

        for mint, token in tokens.items():
            snapshot = await self._fetch(token)
            if snapshot is None:
                continue

            updated = self.candidates.update(mint, lambda t: t.append_snapshot(snapshot))
            if updated is None:
                # deleted while the fetch was in flight
                continue

            self._audit("MONITOR", updated)
            self.evaluate(updated)

    async def run(self) -> None:
        if self.session_logger is not None:
            self.session_logger.open_channel(MONITOR_CHANNEL)
        logger.info(f"[MONITOR] Started, interval={self.interval}s")
        try:
            while not self.stop_event.is_set():
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"[MONITOR] Error in monitor loop: {e}")
                try:
                    await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self.session_logger is not None:
                self.session_logger.close_channel(MONITOR_CHANNEL)
            logger.info("[MONITOR] Stopped")
