# Filename: simulated_trader.py

import json
import time
import logging
from typing import Dict, List, Any, Optional

from models import MemeToken
from trader import Executor, OrderExecutionError

logger = logging.getLogger("SimulatedTrader")

OPEN = "open"
CLOSED = "closed"


class SimulatedTrader(Executor):
    """
    Paper executor. Orders fill at the token's latest curve price and the
    book is kept in a JSON file keyed by mint, so a restart resumes it.
    """

    def __init__(self, config_data: Dict[str, Any], positions_file: Optional[str] = None):
        self.config = config_data
        self.positions_file = positions_file or config_data.get("POSITIONS_FILE", "simulated_positions.json")
        self.amount_sol = config_data.get("POSITION_AMOUNT_SOL", 0.004)
        self.positions: Dict[str, Dict[str, Any]] = {}
        self.load_positions()

    def load_positions(self):
        try:
            with open(self.positions_file, "r") as f:
                self.positions = json.load(f)
        except FileNotFoundError:
            self.positions = {}
            return
        except (OSError, ValueError) as e:
            logger.error(f"[SIM] Could not read {self.positions_file}, starting with an empty book: {e}")
            self.positions = {}
            return
        logger.info(f"[SIM] Resumed {len(self._with_status(OPEN))} open / "
                    f"{len(self._with_status(CLOSED))} closed paper positions.")

    def save_positions(self):
        try:
            with open(self.positions_file, "w") as f:
                json.dump(self.positions, f, indent=2)
        except OSError as e:
            logger.error(f"[SIM] Failed to write {self.positions_file}: {e}")

    def _fill_price(self, token: MemeToken) -> float:
        price = token.price
        if price <= 0:
            raise OrderExecutionError(f"no curve price for {token.symbol} ({token.mint})")
        return price

    async def execute_buy_order(self, token: MemeToken) -> None:
        held = self.positions.get(token.mint)
        if held and held["status"] == OPEN:
            logger.info(f"[SIM] {token.symbol} already open, buy ignored.")
            return

        price = self._fill_price(token)
        self.positions[token.mint] = {
            "mint": token.mint,
            "symbol": token.symbol,
            "name": token.name,
            "amount_sol": self.amount_sol,
            "token_amount": self.amount_sol / price,
            "buy_price": price,
            "buy_market_cap": token.market_cap,
            "timestamp": time.time(),
            "status": OPEN,
        }
        self.save_positions()
        logger.info(f"[SIM BUY] {token.symbol} @ {price:.10f} SOL, mcap {token.market_cap:.2f} SOL")

    async def execute_sell_order(self, token: MemeToken) -> None:
        pos = self.positions.get(token.mint)
        if pos is None or pos["status"] != OPEN:
            raise OrderExecutionError(f"no open paper position for {token.mint}")

        price = self._fill_price(token)
        closed_at = time.time()
        sol_returned = price * pos["token_amount"]
        pos["sell_price"] = price
        pos["sell_market_cap"] = token.market_cap
        pos["pnl_percent"] = (price / pos["buy_price"] - 1) * 100
        pos["sol_returned"] = sol_returned
        pos["profit_sol"] = sol_returned - pos["amount_sol"]
        pos["held_seconds"] = closed_at - pos["timestamp"]
        pos["closed_at"] = closed_at
        pos["status"] = CLOSED
        self.save_positions()

        logger.info(f"[SIM SELL] {pos['symbol']} {pos['pnl_percent']:+.2f}% "
                    f"({pos['profit_sol']:+.6f} SOL after {int(pos['held_seconds'])}s)")

    def _with_status(self, status: str) -> List[Dict[str, Any]]:
        return [p for p in self.positions.values() if p.get("status") == status]

    def get_open_positions(self) -> List[Dict[str, Any]]:
        return self._with_status(OPEN)

    def get_closed_positions(self) -> List[Dict[str, Any]]:
        return self._with_status(CLOSED)

    def get_position_performance_summary(self) -> Dict[str, Any]:
        """Win/loss breakdown of closed paper trades; pnl figures are percentages."""
        closed = self.get_closed_positions()
        wins, losses = [], []
        for pos in closed:
            (wins if pos["pnl_percent"] > 0 else losses).append(pos["pnl_percent"])

        return {
            "total_trades": len(closed),
            "winning_trades": len(wins),
            "avg_profit": sum(wins) / len(wins) if wins else 0,
            "avg_loss": sum(losses) / len(losses) if losses else 0,
            "total_profit_loss": sum(pos["profit_sol"] for pos in closed),
            "best_trade": max(closed, key=lambda pos: pos["pnl_percent"]) if closed else None,
        }
