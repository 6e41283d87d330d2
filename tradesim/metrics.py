# tradesim/metrics.py
"""
Performance metrics from an agent's recorded portfolio-value series.

cumulative_return = (final - initial) / initial
sharpe_ratio      = mean(r) / std(r) * sqrt(252), r = per-step relative changes
max_drawdown      = max (peak - value) / peak with peak the running maximum, in [0, 1]
total_trades      = steps where the share count changed
win_rate          = fraction of those steps where portfolio value went up
"""
import logging

import numpy as np

import tradesim.config as cfg
from tradesim.models import PerformanceMetrics
from tradeutils.math_utils import running_max_drawdown

logger = logging.getLogger(__name__)


def period_returns(portfolio_values):
    values = np.asarray(portfolio_values, dtype=float)
    prev = values[:-1]
    with np.errstate(divide="ignore", invalid="ignore"):
        returns = np.diff(values) / prev
    return returns[np.isfinite(returns)]


def sharpe_ratio(returns, periods_per_year=cfg.TRADING_DAYS):
    """Annualised mean/std of per-step returns, 0 when std is 0 or undefined."""
    returns = np.asarray(returns, dtype=float)
    if returns.size < 2:
        return 0.0
    std = returns.std(ddof=1)
    if not np.isfinite(std) or std == 0:
        return 0.0
    return float(returns.mean() / std * np.sqrt(periods_per_year))


def trade_statistics(portfolio_values, shares):
    """
    Returns:
        (total_trades, win_rate)
    """
    values = np.asarray(portfolio_values, dtype=float)
    shares = np.asarray(shares)
    n = min(len(values), len(shares))
    trades = 0
    wins = 0
    for i in range(1, n):
        if shares[i] != shares[i - 1]:
            trades += 1
            if values[i] > values[i - 1]:
                wins += 1
    win_rate = wins / trades if trades > 0 else 0.0
    return trades, win_rate


def compute_metrics(portfolio_values, shares) -> PerformanceMetrics:
    """
    Args:
        portfolio_values: Portfolio value at each recorded point, initial value first.
        shares: Share count at the same points.

    Returns:
        PerformanceMetrics. All zeros when fewer than two points were recorded.
    """
    values = np.asarray(portfolio_values, dtype=float)
    if values.size < 2:
        logger.warning("Insufficient data for metrics (%d points)", values.size)
        return PerformanceMetrics.zero()

    initial = values[0]
    final = values[-1]
    cumulative_return = float((final - initial) / initial) if initial != 0 else 0.0

    trades, win_rate = trade_statistics(values, shares)

    return PerformanceMetrics(
        cumulative_return=cumulative_return,
        sharpe_ratio=sharpe_ratio(period_returns(values)),
        max_drawdown=running_max_drawdown(values),
        win_rate=float(win_rate),
        total_trades=int(trades),
    )
