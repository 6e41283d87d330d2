# tradesim/agents_policy_gradient.py
import logging
import math

import numpy as np

import tradesim.config as cfg
from tradesim.agents_base import LearningCadence, StepFeedback, TradingAgent
from tradesim.errors import ConfigurationError
from tradesim.models import BeliefState, Observation, Order, OrderAction
from tradesim.pomdp import PriceBeliefTracker
from tradeutils.math_utils import discounted_returns, softmax

logger = logging.getLogger(__name__)

ACTIONS = (OrderAction.BUY, OrderAction.SELL, OrderAction.HOLD)
FEATURE_NAMES = ("bias", "price_deviation", "trend", "uncertainty", "holding", "mispricing")
N_FEATURES = len(FEATURE_NAMES)


class PolicyGradientAgent(TradingAgent):
    """
    REINFORCE with a linear-softmax policy over buy/sell/hold.

    pi(a|s) = softmax(theta @ phi(s))[a], theta has one row per action.
    learn() only records (phi, a, r); end_episode() computes discounted
    returns, subtracts a moving-average baseline and takes one gradient
    step per recorded step:
        theta += lr * clip(grad log pi(a|s)) * advantage
    with grad log pi(a|s)[k] = (1[k == a] - pi_k) * phi.
    """
    learning_cadence = LearningCadence.EPISODE
    name = "Policy Gradient"

    def __init__(self, agent_id,
                 initial_cash=cfg.INITIAL_CASH,
                 learning_rate=cfg.PG_LEARNING_RATE,
                 discount=cfg.PG_DISCOUNT,
                 lot_size=cfg.LOT_SIZE,
                 tracker=None):
        super().__init__(agent_id, initial_cash)
        if not learning_rate > 0:
            raise ConfigurationError("learning_rate must be positive", {"learning_rate": learning_rate})
        if not 0 <= discount <= 1:
            raise ConfigurationError("discount must be in [0, 1]", {"discount": discount})

        self.learning_rate = learning_rate
        self.discount = discount
        self.lot_size = lot_size

        # Learned state (survives reset). theta is drawn from the bound
        # generator on first use so a run seed fixes it.
        self.policy_params = None
        self.baseline = 0.0
        self.reference_price = None
        self.updates = 0

        # Episode state
        self.tracker = tracker or PriceBeliefTracker()
        self.trajectory = [] # (features, action_index, reward)
        self._last_features = None
        self._last_action_index = None

    def _ensure_params(self):
        if self.policy_params is None:
            self.policy_params = self.rng.standard_normal((len(ACTIONS), N_FEATURES)) * cfg.PG_INIT_SCALE

    def features(self, belief: BeliefState, current_price: float) -> np.ndarray:
        """
        phi(s) from the agent's own belief and position:
        bias, deviation of believed price from reference, last observed
        log-return, normalised belief entropy, holding flag, and the gap
        between quoted price and believed price.
        """
        expected = belief.expected_price()
        n = len(belief)
        uncertainty = belief.entropy() / math.log(n) if n > 1 else 0.0
        return np.array([
            1.0,
            expected / self.reference_price - 1.0,
            self.tracker.trend,
            uncertainty,
            1.0 if self.position.shares > 0 else 0.0,
            (current_price - expected) / expected,
        ])

    def action_probabilities(self, features):
        self._ensure_params()
        return softmax(self.policy_params @ features)

    # ------------------------------------------------------------------
    # Agent contract
    # ------------------------------------------------------------------

    def observe(self, observation: Observation) -> BeliefState:
        if self.reference_price is None:
            self.reference_price = observation.observed_price
        return self.tracker.observe(observation)

    def act(self, belief: BeliefState, current_price: float) -> Order:
        phi = self.features(belief, current_price)
        probs = self.action_probabilities(phi)
        idx = int(self.rng.choice(len(ACTIONS), p=probs))

        self._last_features = phi
        self._last_action_index = idx

        action = ACTIONS[idx]
        if action is OrderAction.BUY:
            return self._buy_or_hold(self.lot_size, current_price)
        if action is OrderAction.SELL:
            return self._sell_or_hold(self.lot_size)
        return Order.hold()

    def learn(self, feedback: StepFeedback):
        # Nothing to credit if act() did not complete this step
        if self._last_features is None:
            return
        self.trajectory.append((self._last_features, self._last_action_index, float(feedback.reward)))
        self._last_features = None
        self._last_action_index = None

    def end_episode(self):
        self.policy_gradient_update()

    def _reset_episode_state(self):
        self.tracker.reset()
        self.trajectory = []
        self._last_features = None
        self._last_action_index = None

    # ------------------------------------------------------------------
    # REINFORCE
    # ------------------------------------------------------------------

    def log_policy_gradient(self, features, action_index):
        probs = self.action_probabilities(features)
        indicator = np.zeros(len(ACTIONS))
        indicator[action_index] = 1.0
        return np.outer(indicator - probs, features)

    def policy_gradient_update(self):
        if not self.trajectory:
            logger.debug("Empty trajectory, skipping policy gradient update (agent %s)", self.agent_id)
            return

        try:
            rewards = [r for _, _, r in self.trajectory]
            returns = discounted_returns(rewards, self.discount)

            # Baseline b ~ E[G], moving average across episodes
            m = cfg.PG_BASELINE_MOMENTUM
            self.baseline = m * self.baseline + (1 - m) * float(np.mean(returns))
            advantages = returns - self.baseline
            scale = advantages.std()
            if scale > 0:
                advantages = advantages / scale

            for (phi, a, _), adv in zip(self.trajectory, advantages):
                grad = self.log_policy_gradient(phi, a)
                if not np.all(np.isfinite(grad)):
                    logger.warning("Non-finite gradient, skipping step (agent %s)", self.agent_id)
                    continue
                grad = np.clip(grad, -cfg.PG_GRAD_CLIP, cfg.PG_GRAD_CLIP)
                self.policy_params += self.learning_rate * grad * adv

            self.updates += 1
            logger.debug(
                "Policy gradient update agent=%s steps=%d mean_return=%.4f baseline=%.4f",
                self.agent_id, len(self.trajectory), float(np.mean(returns)), self.baseline,
            )
        finally:
            self.trajectory = []


def create_policy_gradient_agent(agent_id, initial_cash=cfg.INITIAL_CASH, learning_rate=cfg.PG_LEARNING_RATE):
    return PolicyGradientAgent(agent_id, initial_cash, learning_rate)
