# Filename: models.py

import asyncio
import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class BondingCurveState:
    """Reserve quantities read from a pump.fun bonding curve account."""
    virtual_token_reserves: int = 0
    virtual_sol_reserves: int = 0
    real_token_reserves: int = 0
    real_sol_reserves: int = 0
    token_total_supply: int = 0
    complete: bool = False

    def __str__(self) -> str:
        return (f"BondingCurveState{{CurrentSupply: {self.token_total_supply}, "
                f"VirtualTokenReserves: {self.virtual_token_reserves}, "
                f"RealTokenReserves: {self.real_token_reserves}, "
                f"VirtualSolReserves: {self.virtual_sol_reserves}, "
                f"RealSolReserves: {self.real_sol_reserves}}}")


@dataclass(frozen=True)
class TokenSnapshot:
    """One observation of a token's curve. Never mutated once appended."""
    bonding_state: BondingCurveState
    token_price: float
    market_cap: float
    timestamp: float

    def __str__(self) -> str:
        return (f"MemeInfo{{BondingState: {self.bonding_state}, TokenPrice: {self.token_price:.20f}, "
                f"MarketCap: {self.market_cap:.2f}, Time: {self.timestamp}}}")


@dataclass(frozen=True)
class TokenAnalysis:
    """
    Aggregate over a token's snapshot history at one point in time.
    A default-constructed instance is the zeroed analysis of an empty history.
    """
    # Basic liquidity & valuation criteria
    market_cap_sufficiency: bool = False
    reserves_sufficiency: bool = False
    data_points: int = 0

    # Liquidity / reserve indicators
    reserve_ratio: float = 0.0
    sol_reserve_ratio: float = 0.0

    # Price behaviour across snapshots
    price_stability: bool = False
    price_convergence: float = 0.0
    simple_moving_average: float = 0.0
    percentage_change: float = 0.0
    price_trend_slope: float = 0.0
    price_trend_slope_by_time: float = 0.0
    consistently_trending_up: bool = False
    min_price: float = 0.0
    max_price: float = 0.0

    # Risk / reward
    volatility: float = 0.0
    theoretical_price: float = 0.0
    current_price: float = 0.0
    risk_reward_score: float = 0.0
    timestamp: float = 0.0

    def __str__(self) -> str:
        return (f"TokenAnalysis{{MarketCapSufficiency: {self.market_cap_sufficiency}, "
                f"ReservesSufficiency: {self.reserves_sufficiency}, DataPoints: {self.data_points}, "
                f"ReserveRatio: {self.reserve_ratio:.4f}, SolReserveRatio: {self.sol_reserve_ratio:.4f}, "
                f"PriceStability: {self.price_stability}, PriceConvergence: {self.price_convergence:.10f}, "
                f"SimpleMovingAverage: {self.simple_moving_average:.10f}, "
                f"PercentageChange: {self.percentage_change:.3f}%, PriceTrendSlope: {self.price_trend_slope:.10f}, "
                f"ConsistentlyTrendingUp: {self.consistently_trending_up}, Volatility: {self.volatility:.10f}, "
                f"TheoreticalPrice: {self.theoretical_price:.8f}, CurrentPrice: {self.current_price:.8f}, "
                f"RiskRewardScore: {self.risk_reward_score:.8f}, Time: {self.timestamp}}}")


@dataclass
class MemeToken:
    """
    A token discovered from a pump.fun create event.
    `mint` is the registry key and must not change after creation.
    """
    mint: str
    name: str
    symbol: str
    uri: str
    bonding_curve: str
    associated_curve: str
    user: str = ""
    added_time: Optional[float] = None
    history: List[TokenSnapshot] = field(default_factory=list)
    analysis: List[TokenAnalysis] = field(default_factory=list)
    migrated: bool = False
    trading: bool = False
    sold: bool = False
    revision: int = 0

    @property
    def latest(self) -> Optional[TokenSnapshot]:
        return self.history[-1] if self.history else None

    @property
    def market_cap(self) -> float:
        return self.history[-1].market_cap if self.history else 0.0

    @property
    def price(self) -> float:
        return self.history[-1].token_price if self.history else 0.0

    def append_snapshot(self, snapshot: TokenSnapshot) -> None:
        # history stays time-ordered even if the wall clock steps back
        if self.history and snapshot.timestamp < self.history[-1].timestamp:
            snapshot = replace(snapshot, timestamp=self.history[-1].timestamp)
        self.history.append(snapshot)

    def mark_sold(self) -> None:
        # sold implies trading
        self.trading = True
        self.sold = True

    def copy(self) -> "MemeToken":
        # Snapshots and analyses are frozen, so copying the lists is enough
        clone = copy.copy(self)
        clone.history = list(self.history)
        clone.analysis = list(self.analysis)
        return clone


class OrderType(Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass
class OrderResponse:
    success: bool
    error: str = ""


@dataclass
class OrderRequest:
    """
    An order for the OrderHandler. `token` is a copy taken at submission time.
    If `result` is set, it receives the OrderResponse once the order is handled.
    """
    token: MemeToken
    order_type: OrderType
    reason: str
    result: Optional["asyncio.Future[OrderResponse]"] = None
