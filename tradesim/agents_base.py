# tradesim/agents_base.py
"""Agent capability contract consumed by the simulation coordinator.

Every strategy (Q-learning, policy gradient, heuristics) implements
TradingAgent so the coordinator can drive them interchangeably.

Lifecycle per run:
    1. ``bind_rng``: receive the run's shared random generator;
       ``bind_market``: receive the market's slippage factor.
    2. each step: ``observe`` -> ``act`` -> (coordinator executes) -> ``learn``.
    3. ``end_episode``: always called once when the run finishes.
    4. ``reset``: between runs; keeps learned parameters.

``learning_cadence`` tells callers whether ``learn`` updates the agent
immediately (STEP) or only accumulates experience that ``end_episode``
consumes (EPISODE). The coordinator calls both in every case; the flag
exists for logging and for callers that care about update timing.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

import tradesim.config as cfg
from tradesim.models import BeliefState, Observation, Order, Position


class LearningCadence(Enum):
    STEP = "step"
    EPISODE = "episode"


@dataclass(frozen=True)
class StepFeedback:
    """What an agent learns from after its order executed.

    reward = change in the agent's portfolio value from the fill minus
    slippage_cost.
    """
    step: int
    price: float
    order: Order
    execution_price: float
    slippage_cost: float
    reward: float


class TradingAgent(ABC):
    """Common interface for trading strategies.

    An agent owns its Position and whatever belief/learning state it keeps.
    It only ever sees its own observation and its own feedback.
    """

    learning_cadence: LearningCadence = LearningCadence.STEP
    name: str = "agent"

    def __init__(self, agent_id, initial_cash: float = cfg.INITIAL_CASH) -> None:
        self.agent_id = agent_id
        self.initial_cash = initial_cash
        self.position = Position.open(initial_cash)
        self.rng: np.random.Generator = np.random.default_rng()
        self.slippage_factor = cfg.SLIPPAGE_FACTOR

    def __repr__(self) -> str:
        return f"{type(self).__name__}(agent_id={self.agent_id!r})"

    def bind_rng(self, rng: np.random.Generator) -> None:
        """Use the run's generator for every stochastic decision."""
        self.rng = rng

    def bind_market(self, params) -> None:
        """Learn the public execution rule so buys can be sized against slippage."""
        self.slippage_factor = params.slippage_factor

    @abstractmethod
    def observe(self, observation: Observation) -> BeliefState:
        """Turn the step's noisy observation into a belief."""

    @abstractmethod
    def act(self, belief: BeliefState, current_price: float) -> Order:
        """Decide this step's order from the belief."""

    @abstractmethod
    def learn(self, feedback: StepFeedback) -> None:
        """Consume the step's reward. Called once per step."""

    def end_episode(self) -> None:
        """Finish the episode. Trajectory learners update here."""

    def decay_exploration(self) -> None:
        """Shrink exploration between training episodes, if the agent explores."""

    def reset(self, initial_cash: Optional[float] = None) -> None:
        """Fresh position and episode state. Learned parameters are kept."""
        if initial_cash is not None:
            self.initial_cash = initial_cash
        self.position = Position.open(self.initial_cash)
        self._reset_episode_state()

    def _reset_episode_state(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Order helpers shared by the strategies
    # ------------------------------------------------------------------

    def _buy_or_hold(self, quantity: int, price: float) -> Order:
        """
        Buy up to ``quantity`` shares that current cash covers once slippage
        is paid: qty * price * (1 + slippage_factor * qty) <= cash.
        """
        if price <= 0 or self.position.cash <= 0:
            return Order.hold()
        qty = min(quantity, int(math.floor(self.position.cash / price)))
        while qty > 0 and qty * price * (1 + self.slippage_factor * qty) > self.position.cash:
            qty -= 1
        return Order.buy(qty) if qty > 0 else Order.hold()

    def _sell_or_hold(self, quantity: int) -> Order:
        """Sell up to ``quantity`` of the shares held. No shorting."""
        qty = min(quantity, self.position.shares)
        return Order.sell(qty) if qty > 0 else Order.hold()
