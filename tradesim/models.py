# tradesim/models.py
"""
Data model shared by the market, the belief engine, the agents and the
coordinator.

Market types: MarketParameters, MarketState
Trading types: OrderAction, Order, Position, Experience
POMDP types: POMDPState, Observation, BeliefState
Results: PerformanceMetrics
"""
from __future__ import annotations

import copy
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Tuple

import numpy as np

import tradesim.config as cfg
from tradesim.errors import ConfigurationError, InvariantViolation
from tradeutils.math_utils import shannon_entropy


# ============================================================================
# Market Types
# ============================================================================

@dataclass(frozen=True)
class MarketParameters:
    """
    Configuration of the simulated market.

    Args:
        mu: Drift, expected log-return per step
        sigma: Volatility per step (> 0)
        initial_price: Starting price (> 0)
        slippage_factor: Relative price impact per share (>= 0)
        observation_noise: Relative noise on observed prices (>= 0, 0 = perfect info)
    """
    mu: float = cfg.MU
    sigma: float = cfg.SIGMA
    initial_price: float = cfg.INITIAL_PRICE
    slippage_factor: float = cfg.SLIPPAGE_FACTOR
    observation_noise: float = cfg.OBSERVATION_NOISE

    def __post_init__(self):
        for name in ("mu", "sigma", "initial_price", "slippage_factor", "observation_noise"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ConfigurationError(f"{name} must be finite", {name: value})
        if self.sigma <= 0:
            raise ConfigurationError("Volatility sigma must be positive", {"sigma": self.sigma})
        if self.initial_price <= 0:
            raise ConfigurationError("Initial price must be positive", {"initial_price": self.initial_price})
        if self.slippage_factor < 0:
            raise ConfigurationError("Slippage factor must be non-negative", {"slippage_factor": self.slippage_factor})
        if self.observation_noise < 0:
            raise ConfigurationError("Observation noise must be non-negative", {"observation_noise": self.observation_noise})

    @classmethod
    def default(cls) -> "MarketParameters":
        return cls()


@dataclass
class MarketState:
    """
    Mutable market record, owned by the coordinator for one run.

    price_history includes the initial price, so len(price_history) == time + 1.
    volume_history has one entry per completed step, so len(volume_history) == time.
    """
    time: int
    price: float
    volume: float = 0.0
    price_history: List[float] = field(default_factory=list)
    volume_history: List[float] = field(default_factory=list)

    def snapshot(self) -> "MarketState":
        return copy.deepcopy(self)

    def check_invariants(self):
        if not (self.price > 0 and math.isfinite(self.price)):
            raise InvariantViolation("Market price must be positive and finite", {"price": self.price, "time": self.time})
        if self.volume < 0:
            raise InvariantViolation("Market volume must be non-negative", {"volume": self.volume})
        if len(self.price_history) != self.time + 1:
            raise InvariantViolation(
                "Price history length out of sync with time",
                {"time": self.time, "len": len(self.price_history)},
            )
        if len(self.volume_history) != self.time:
            raise InvariantViolation(
                "Volume history length out of sync with time",
                {"time": self.time, "len": len(self.volume_history)},
            )


# ============================================================================
# Orders and Positions
# ============================================================================

class OrderAction(Enum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass(frozen=True)
class Order:
    """
    One agent's intended trade for one step. quantity is 0 iff action is HOLD.
    """
    action: OrderAction
    quantity: float = 0

    def __post_init__(self):
        if not isinstance(self.action, OrderAction):
            raise InvariantViolation("Invalid order action", {"action": self.action})
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, (int, float, np.integer, np.floating)):
            raise InvariantViolation("Order quantity must be numeric", {"quantity": self.quantity})
        if not math.isfinite(self.quantity):
            raise InvariantViolation("Order quantity must be finite", {"quantity": self.quantity})
        if self.quantity < 0:
            raise InvariantViolation("Order quantity must be non-negative", {"quantity": self.quantity})
        if (self.action is OrderAction.HOLD) != (self.quantity == 0):
            raise InvariantViolation(
                "Quantity must be zero exactly for hold orders",
                {"action": self.action.value, "quantity": self.quantity},
            )

    @classmethod
    def hold(cls) -> "Order":
        return cls(OrderAction.HOLD, 0)

    @classmethod
    def buy(cls, quantity) -> "Order":
        return cls(OrderAction.BUY, quantity)

    @classmethod
    def sell(cls, quantity) -> "Order":
        return cls(OrderAction.SELL, quantity)

    @property
    def is_hold(self) -> bool:
        return self.action is OrderAction.HOLD

    @property
    def signed_quantity(self) -> float:
        if self.action is OrderAction.BUY:
            return self.quantity
        if self.action is OrderAction.SELL:
            return -self.quantity
        return 0


@dataclass
class Position:
    """
    Cash and shares held by one agent.

    portfolio_value == cash + shares * price at the last mark, and
    pnl == portfolio_value - initial_value.
    """
    cash: float
    shares: int = 0
    portfolio_value: float = 0.0
    pnl: float = 0.0
    initial_value: float = 0.0

    @classmethod
    def open(cls, initial_cash: float) -> "Position":
        return cls(
            cash=initial_cash,
            shares=0,
            portfolio_value=initial_cash,
            pnl=0.0,
            initial_value=initial_cash,
        )

    def apply_fill(self, order: Order, execution_price: float, market_price: float):
        """Books an executed order, then marks the position at market_price."""
        if order.action is OrderAction.BUY:
            self.cash -= order.quantity * execution_price
            self.shares += order.quantity
        elif order.action is OrderAction.SELL:
            self.cash += order.quantity * execution_price
            self.shares -= order.quantity
        self.mark_to_market(market_price)

    def mark_to_market(self, price: float):
        self.portfolio_value = self.cash + self.shares * price
        self.pnl = self.portfolio_value - self.initial_value


@dataclass(frozen=True)
class Experience:
    """One Q-learning transition."""
    state: int
    action: OrderAction
    reward: float
    next_state: int
    done: bool = False


# ============================================================================
# POMDP Types
# ============================================================================

@dataclass(frozen=True)
class POMDPState:
    """One hypothesised market condition."""
    price: float
    trend: float = 0.0
    volatility: float = cfg.AGENT_BELIEF_VOLATILITY
    time: int = 0


@dataclass(frozen=True)
class Observation:
    """What an agent sees: a noisy price, the exact volume and the time."""
    observed_price: float
    volume: float
    time: int


@dataclass(frozen=True, eq=False)
class BeliefState:
    """
    Discrete distribution over hypothesised states.

    Immutable: updates build a new BeliefState. Weights are stored as a
    read-only float array aligned with states.
    """
    states: Tuple[POMDPState, ...]
    weights: np.ndarray

    def __post_init__(self):
        states = tuple(self.states)
        weights = np.array(self.weights, dtype=float)
        if weights.ndim != 1:
            raise InvariantViolation("Belief weights must be one-dimensional", {"shape": weights.shape})
        if len(states) == 0:
            raise InvariantViolation("Belief support must not be empty")
        if len(states) != len(weights):
            raise InvariantViolation(
                "Belief states and weights differ in length",
                {"states": len(states), "weights": len(weights)},
            )
        if not np.all(np.isfinite(weights)) or np.any(weights < 0):
            raise InvariantViolation("Belief weights must be finite and non-negative")
        total = float(weights.sum())
        if abs(total - 1.0) > cfg.BELIEF_SUM_TOL:
            raise InvariantViolation("Belief weights must sum to 1", {"sum": total})
        weights.setflags(write=False)
        object.__setattr__(self, "states", states)
        object.__setattr__(self, "weights", weights)

    def __len__(self) -> int:
        return len(self.states)

    def prices(self) -> np.ndarray:
        return np.array([s.price for s in self.states], dtype=float)

    def expected_price(self) -> float:
        return float(np.dot(self.weights, self.prices()))

    def most_likely_state(self) -> POMDPState:
        return self.states[int(np.argmax(self.weights))]

    def entropy(self) -> float:
        return shannon_entropy(self.weights)


# ============================================================================
# Performance Metrics
# ============================================================================

@dataclass(frozen=True)
class PerformanceMetrics:
    cumulative_return: float
    sharpe_ratio: float
    max_drawdown: float
    win_rate: float
    total_trades: int

    @classmethod
    def zero(cls) -> "PerformanceMetrics":
        return cls(0.0, 0.0, 0.0, 0.0, 0)

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)
