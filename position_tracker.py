# Filename: position_tracker.py

import asyncio
import logging
from typing import List, Optional

from models import MemeToken, OrderRequest, OrderType
from pump_fun import CurveStateError
from token_analysis import analyze_token
from token_registry import TokenRegistry
from trade_logger import SEPARATOR_ROW, SessionLogger, format_analyses, format_snapshots

logger = logging.getLogger("PositionTracker")

TRADE_CHANNEL = "trade.log"

ENTRY_REASON = "entry market cap met"
EXIT_REASON = "above exit market cap"


class PositionTracker:
    """
    Trade loop over the active pool: refreshes curve state and analysis for
    every active token, then emits a buy for tokens not yet traded and a sell
    for open positions above the exit market cap.
    """

    def __init__(self, config, active: TokenRegistry, fetcher, order_handler,
                 session_logger: Optional[SessionLogger] = None,
                 stop_event: Optional[asyncio.Event] = None):
        self.config = config
        self.active = active
        self.fetcher = fetcher
        self.order_handler = order_handler
        self.session_logger = session_logger
        self.stop_event = stop_event or asyncio.Event()

        self.interval = config.get("TRADE_INTERVAL_SECONDS", 15)
        self.exit_market_cap = config.get("EXIT_MARKET_CAP", 45.0)
        self.entry_market_cap = config.get("ENTRY_MARKET_CAP", 35.0)
        self.min_reserve_ratio = config.get("MIN_RESERVE_RATIO", 0.75)
        self.stability_threshold = config.get("TOKEN_STABILITY", 0.000005)

    def _refresh(self, token: MemeToken, snapshot) -> None:
        token.append_snapshot(snapshot)
        token.analysis.append(analyze_token(
            token,
            min_market_cap=self.entry_market_cap,
            min_reserve_ratio=self.min_reserve_ratio,
            stability_threshold=self.stability_threshold,
        ))

    def _audit(self, token: MemeToken) -> None:
        if self.session_logger is None:
            return
        self.session_logger.try_append(TRADE_CHANNEL, [
            "CURRENTLY TRADING", token.mint, token.name, token.symbol, token.added_time,
            format_snapshots(token.history), format_analyses(token.analysis), token.trading, token.sold,
        ])

    async def _submit(self, token: MemeToken, order_type: OrderType, reason: str) -> OrderRequest:
        request = OrderRequest(token=token, order_type=order_type, reason=reason)
        await self.order_handler.submit(request)
        return request

    async def tick(self) -> List[OrderRequest]:
        """Runs one pass over the active pool and returns the orders it submitted."""
        if self.session_logger is not None:
            self.session_logger.try_append(TRADE_CHANNEL, SEPARATOR_ROW)

        submitted: List[OrderRequest] = []
        tokens = self.active.snapshot()
        logger.info(f"[TRADE] Checking {len(tokens)} active tokens")

        for mint, token in tokens.items():
            try:
                snapshot = await self.fetcher.fetch_snapshot(token.bonding_curve)
            except CurveStateError as e:
                logger.warning(f"[TRADE] Failed to fetch bonding curve state for {token.symbol} ({mint}): {e}")
                continue

            updated = self.active.update(mint, lambda t: self._refresh(t, snapshot))
            if updated is None:
                continue
            self._audit(updated)

            if not updated.trading:
                logger.info(f"[TRADE] BUY signal {updated.symbol} ({mint}) market cap={updated.market_cap:.2f}")
                submitted.append(await self._submit(updated, OrderType.BUY, ENTRY_REASON))
            elif not updated.sold and updated.market_cap > self.exit_market_cap:
                logger.info(f"[TRADE] SELL signal {updated.symbol} ({mint}) market cap={updated.market_cap:.2f}")
                submitted.append(await self._submit(updated, OrderType.SELL, EXIT_REASON))

        return submitted

    async def run(self) -> None:
        if self.session_logger is not None:
            self.session_logger.open_channel(TRADE_CHANNEL)
        logger.info(f"[TRADE] Started, interval={self.interval}s")
        try:
            while not self.stop_event.is_set():
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"[TRADE] Error in trade loop: {e}")
                try:
                    await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self.session_logger is not None:
                self.session_logger.close_channel(TRADE_CHANNEL)
            logger.info("[TRADE] Stopped")
