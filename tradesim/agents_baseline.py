# tradesim/agents_baseline.py
from collections import deque
from enum import Enum

import numpy as np

import tradesim.config as cfg
from tradesim.agents_base import LearningCadence, StepFeedback, TradingAgent
from tradesim.errors import ConfigurationError
from tradesim.models import BeliefState, Observation, Order
from tradesim.pomdp import point_belief


class BaselineStrategy(Enum):
    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"
    RANDOM = "random"


class BaselineAgent(TradingAgent):
    """
    Fixed heuristic trader. Keeps a sliding window of observed prices and
    never learns.
    """
    learning_cadence = LearningCadence.STEP

    def __init__(self, agent_id, initial_cash=cfg.INITIAL_CASH, strategy=BaselineStrategy.MOMENTUM,
                 lot_size=cfg.LOT_SIZE, window=cfg.BASELINE_WINDOW):
        super().__init__(agent_id, initial_cash)
        try:
            self.strategy = BaselineStrategy(strategy)
        except ValueError:
            raise ConfigurationError(
                "Invalid strategy, must be momentum, mean_reversion or random",
                {"strategy": strategy},
            ) from None
        self.lot_size = lot_size
        self.price_history = deque(maxlen=window)

    @property
    def name(self):
        return self.strategy.value.replace("_", " ").title()

    def observe(self, observation: Observation) -> BeliefState:
        self.price_history.append(observation.observed_price)
        # No uncertainty tracking: all mass on what was seen
        return point_belief(observation)

    def act(self, belief: BeliefState, current_price: float) -> Order:
        if self.strategy is BaselineStrategy.MOMENTUM:
            return self.momentum_strategy(current_price)
        if self.strategy is BaselineStrategy.MEAN_REVERSION:
            return self.mean_reversion_strategy(current_price)
        return self.random_strategy(current_price)

    def learn(self, feedback: StepFeedback):
        pass

    def _reset_episode_state(self):
        self.price_history.clear()

    def momentum_strategy(self, current_price):
        """Follow the last move if it exceeds 1% of the price."""
        if len(self.price_history) < 2:
            return Order.hold()

        price_change = current_price - self.price_history[-2]
        threshold = current_price * cfg.MOMENTUM_THRESHOLD

        if price_change > threshold:
            return self._buy_or_hold(self.lot_size, current_price)
        if price_change < -threshold and self.position.shares >= self.lot_size:
            return Order.sell(self.lot_size)
        return Order.hold()

    def mean_reversion_strategy(self, current_price):
        """Trade against moves outside a 2% band around the window mean."""
        if len(self.price_history) < cfg.MEAN_REVERSION_MIN_HISTORY:
            return Order.hold()

        mean_price = float(np.mean(self.price_history))
        threshold = mean_price * cfg.MEAN_REVERSION_THRESHOLD

        if current_price < mean_price - threshold:
            return self._buy_or_hold(self.lot_size, current_price)
        if current_price > mean_price + threshold and self.position.shares >= self.lot_size:
            return Order.sell(self.lot_size)
        return Order.hold()

    def random_strategy(self, current_price):
        choice = self.rng.integers(3)
        if choice == 0:
            return self._buy_or_hold(self.lot_size, current_price)
        if choice == 1 and self.position.shares >= self.lot_size:
            return Order.sell(self.lot_size)
        return Order.hold()


def create_baseline_agent(agent_id, initial_cash=cfg.INITIAL_CASH, strategy=BaselineStrategy.MOMENTUM):
    return BaselineAgent(agent_id, initial_cash, strategy)
