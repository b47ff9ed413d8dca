"""
Price statistics and token analysis over bonding curve snapshots.

Every function tolerates empty or degenerate input and returns a neutral
value (0 or False) instead of raising, so a sparse history never stalls the
trading loops.
"""

import math
import time
from typing import Sequence, List

import numpy as np

from config import DEFAULT_CONFIG
from models import BondingCurveState, MemeToken, TokenAnalysis, TokenSnapshot

SOL_DECIMALS = 9
TOKEN_DECIMALS = 6


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


# ---------------------
# Basic statistics
# ---------------------

def moving_average(prices: Sequence[float]) -> float:
    """Arithmetic mean, 0 for an empty sequence."""
    arr = _as_array(prices)
    if arr.size == 0:
        return 0.0
    return float(np.clip(arr.mean(), arr.min(), arr.max()))


def variance(prices: Sequence[float], mean: float) -> float:
    """Population variance (divides by N) around `mean`."""
    arr = _as_array(prices)
    if arr.size == 0:
        return 0.0
    return float(np.mean((arr - mean) ** 2))


def stddev(prices: Sequence[float]) -> float:
    arr = _as_array(prices)
    if arr.size == 0 or arr.max() == arr.min():
        return 0.0
    return math.sqrt(variance(prices, moving_average(prices)))


def min_price(prices: Sequence[float]) -> float:
    arr = _as_array(prices)
    return float(arr.min()) if arr.size else 0.0


def max_price(prices: Sequence[float]) -> float:
    arr = _as_array(prices)
    return float(arr.max()) if arr.size else 0.0


def price_convergence(prices: Sequence[float]) -> float:
    """Spread between the highest and lowest price."""
    return max_price(prices) - min_price(prices)


def _ols_slope(x: np.ndarray, y: np.ndarray) -> float:
    n = float(y.size)
    sum_x = float(x.sum())
    sum_y = float(y.sum())
    sum_xy = float((x * y).sum())
    sum_x2 = float((x * x).sum())
    denom = n * sum_x2 - sum_x ** 2
    if denom == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denom


def trend_slope(prices: Sequence[float]) -> float:
    """Least squares slope of price against index 0, 1, 2, ..."""
    y = _as_array(prices)
    if y.size == 0:
        return 0.0
    return _ols_slope(np.arange(y.size, dtype=float), y)


def trend_slope_by_time(prices: Sequence[float], timestamps: Sequence[float]) -> float:
    """Least squares slope of price against seconds elapsed since the first timestamp."""
    y = _as_array(prices)
    t = _as_array(timestamps)
    if y.size == 0 or t.size != y.size:
        return 0.0
    return _ols_slope(t - t[0], y)


def percentage_change(prices: Sequence[float]) -> float:
    if len(prices) == 0:
        return 0.0
    first = float(prices[0])
    if first == 0:
        return 0.0
    return (float(prices[-1]) - first) / first * 100.0


def is_monotonic_non_decreasing(prices: Sequence[float]) -> bool:
    arr = _as_array(prices)
    if arr.size == 0:
        return False
    return bool(np.all(np.diff(arr) >= 0))


# ---------------------
# Reserves and valuation
# ---------------------

def compute_reserve_ratio(real: float, virtual: float) -> float:
    """real / virtual, 0 when virtual is 0."""
    if virtual == 0:
        return 0.0
    return real / virtual


def theoretical_price(state: BondingCurveState, quote_virtual_reserves: int,
                      quote_decimals: int = SOL_DECIMALS, token_decimals: int = TOKEN_DECIMALS) -> float:
    if state.virtual_token_reserves == 0:
        return 0.0
    quote_value = quote_virtual_reserves / 10 ** quote_decimals
    token_value = state.virtual_token_reserves / 10 ** token_decimals
    return quote_value / token_value


def risk_reward_score(current_price: float, theoretical: float, volatility: float) -> float:
    """Discount from the theoretical price divided by volatility."""
    if theoretical == 0 or volatility == 0:
        return 0.0
    discount = (theoretical - current_price) / theoretical
    return discount / volatility


def is_market_cap_sufficient(snapshot: TokenSnapshot, min_market_cap: float) -> bool:
    return snapshot.market_cap >= min_market_cap


def has_sufficient_reserves(state: BondingCurveState, min_reserve_ratio: float) -> bool:
    # virtual / real, the inverse of compute_reserve_ratio
    if state.real_token_reserves == 0:
        return False
    ratio = state.virtual_token_reserves / state.real_token_reserves
    return ratio >= min_reserve_ratio


def is_price_stable(history: Sequence[TokenSnapshot], max_variance: float) -> bool:
    if not history:
        return False
    prices = [snap.token_price for snap in history]
    return variance(prices, moving_average(prices)) <= max_variance


def is_undervalued(current_price: float, theoretical: float, discount_threshold: float) -> bool:
    if theoretical == 0:
        return False
    return (theoretical - current_price) / theoretical >= discount_threshold


def compute_price_trend(history: Sequence[TokenSnapshot]) -> float:
    return trend_slope([snap.token_price for snap in history])


def is_trending_up(history: Sequence[TokenSnapshot], min_slope: float) -> bool:
    return compute_price_trend(history) >= min_slope


# ---------------------
# Aggregate analysis
# ---------------------

def analyze_token(token: MemeToken,
                  min_market_cap: float = DEFAULT_CONFIG["ENTRY_MARKET_CAP"],
                  min_reserve_ratio: float = DEFAULT_CONFIG["MIN_RESERVE_RATIO"],
                  stability_threshold: float = DEFAULT_CONFIG["TOKEN_STABILITY"]) -> TokenAnalysis:
    """
    Builds a TokenAnalysis from the token's full snapshot history, using the
    latest snapshot for reserves and market cap.
    """
    history = token.history
    if not history:
        return TokenAnalysis()

    prices: List[float] = [snap.token_price for snap in history]
    timestamps: List[float] = [snap.timestamp for snap in history]
    last = history[-1]
    state = last.bonding_state

    volatility = stddev(prices)
    reserve_ratio = compute_reserve_ratio(state.real_token_reserves, state.virtual_token_reserves)
    theoretical = theoretical_price(state, state.virtual_sol_reserves, SOL_DECIMALS, TOKEN_DECIMALS)

    return TokenAnalysis(
        market_cap_sufficiency=last.market_cap >= min_market_cap,
        reserves_sufficiency=reserve_ratio >= min_reserve_ratio,
        data_points=len(history),
        reserve_ratio=reserve_ratio,
        sol_reserve_ratio=compute_reserve_ratio(state.real_sol_reserves, state.virtual_sol_reserves),
        price_stability=volatility < stability_threshold,
        price_convergence=price_convergence(prices),
        simple_moving_average=moving_average(prices),
        percentage_change=percentage_change(prices),
        price_trend_slope=trend_slope(prices),
        price_trend_slope_by_time=trend_slope_by_time(prices, timestamps),
        consistently_trending_up=is_monotonic_non_decreasing(prices),
        min_price=min_price(prices),
        max_price=max_price(prices),
        volatility=volatility,
        theoretical_price=theoretical,
        current_price=prices[-1],
        risk_reward_score=risk_reward_score(prices[-1], theoretical, volatility),
        timestamp=time.time(),
    )
