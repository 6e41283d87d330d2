# tradesim/agents_qlearning.py
import logging
import math
from collections import deque

import numpy as np

import tradesim.config as cfg
from tradesim.agents_base import LearningCadence, StepFeedback, TradingAgent
from tradesim.errors import ConfigurationError, InvariantViolation
from tradesim.models import BeliefState, Experience, Observation, Order, OrderAction
from tradesim.pomdp import PriceBeliefTracker, discretize_relative

logger = logging.getLogger(__name__)

ACTIONS = (OrderAction.BUY, OrderAction.SELL, OrderAction.HOLD)


class QLearningAgent(TradingAgent):
    """
    Tabular Q-learning over (price bin, action).

    The state is the bin of the belief's expected price, so the agent acts on
    what it believes rather than on the true price. Transitions are completed
    one step late: the next state is only known at the following learn() call,
    and the last transition of an episode is flushed as terminal.
    """
    learning_cadence = LearningCadence.STEP
    name = "Q-Learning"

    def __init__(self, agent_id,
                 initial_cash=cfg.INITIAL_CASH,
                 learning_rate=cfg.Q_LEARNING_RATE,
                 discount=cfg.Q_DISCOUNT,
                 epsilon=cfg.Q_EPSILON,
                 n_bins=cfg.N_BINS,
                 lot_size=cfg.LOT_SIZE,
                 tracker=None):
        """
        Args:
            agent_id: Unique ID
            initial_cash: Starting cash
            learning_rate: alpha in (0, 1]
            discount: gamma in [0, 1)
            epsilon: Exploration rate in [0, 1]
            n_bins: Number of price bins (state space size)
            lot_size: Shares per buy/sell
            tracker: PriceBeliefTracker, a default one if None
        """
        super().__init__(agent_id, initial_cash)
        if not 0 < learning_rate <= 1:
            raise ConfigurationError("learning_rate must be in (0, 1]", {"learning_rate": learning_rate})
        if not 0 <= discount < 1:
            raise ConfigurationError("discount must be in [0, 1)", {"discount": discount})
        if not 0 <= epsilon <= 1:
            raise ConfigurationError("epsilon must be in [0, 1]", {"epsilon": epsilon})

        # Policy Params
        self.learning_rate = learning_rate
        self.discount = discount
        self.epsilon = epsilon
        self.n_bins = n_bins
        self.lot_size = lot_size

        # Learned state (survives reset)
        self.q_table = {} # (state, action) -> value
        self.replay_buffer = deque(maxlen=cfg.REPLAY_CAPACITY)
        self.reference_price = None # Bins cover [0.5, 1.5] x first observed price

        # Episode state
        self.tracker = tracker or PriceBeliefTracker()
        self._last_state = None
        self._pending = None # (state, action, reward) waiting for its next state

    # ------------------------------------------------------------------
    # Q-table
    # ------------------------------------------------------------------

    def q_value(self, state, action):
        return self.q_table.get((state, action), 0.0)

    def q_update(self, experience: Experience):
        """
        TD(0): Q(s,a) += alpha * (r + gamma * max_a' Q(s',a') - Q(s,a)),
        clipped to +/- cfg.Q_VALUE_CLIP.
        """
        if not math.isfinite(experience.reward):
            raise InvariantViolation("Reward must be finite", {"reward": experience.reward})

        q_current = self.q_value(experience.state, experience.action)
        if experience.done:
            q_next_max = 0.0
        else:
            q_next_max = max(self.q_value(experience.next_state, a) for a in ACTIONS)

        td_error = experience.reward + self.discount * q_next_max - q_current
        q_new = q_current + self.learning_rate * td_error
        q_new = float(np.clip(q_new, -cfg.Q_VALUE_CLIP, cfg.Q_VALUE_CLIP))
        self.q_table[(experience.state, experience.action)] = q_new
        return td_error

    def epsilon_greedy(self, state):
        """Random action with probability epsilon, else a best action (ties broken at random)."""
        if self.rng.random() < self.epsilon:
            return ACTIONS[self.rng.integers(len(ACTIONS))]
        q_values = np.array([self.q_value(state, a) for a in ACTIONS])
        best = np.flatnonzero(q_values == q_values.max())
        return ACTIONS[int(self.rng.choice(best))]

    def state_for_price(self, price):
        return discretize_relative(price, self.reference_price, self.n_bins)

    # ------------------------------------------------------------------
    # Agent contract
    # ------------------------------------------------------------------

    def observe(self, observation: Observation) -> BeliefState:
        if self.reference_price is None:
            self.reference_price = observation.observed_price
        return self.tracker.observe(observation)

    def act(self, belief: BeliefState, current_price: float) -> Order:
        state = self.state_for_price(belief.expected_price())
        self._last_state = state

        action = self.epsilon_greedy(state)
        if action is OrderAction.BUY:
            return self._buy_or_hold(self.lot_size, current_price)
        if action is OrderAction.SELL:
            return self._sell_or_hold(self.lot_size)
        return Order.hold()

    def learn(self, feedback: StepFeedback):
        if not math.isfinite(feedback.reward):
            raise InvariantViolation("Reward must be finite", {"reward": feedback.reward})

        state = self._last_state
        if state is None:
            state = self.state_for_price(feedback.price)

        if self._pending is not None:
            prev_state, prev_action, prev_reward = self._pending
            self._store(Experience(prev_state, prev_action, prev_reward, state, False))

        self._pending = (state, feedback.order.action, feedback.reward)
        self._last_state = None

    def end_episode(self):
        if self._pending is not None:
            state, action, reward = self._pending
            self._store(Experience(state, action, reward, state, True))
            self._pending = None
        logger.debug("Episode end agent=%s q_entries=%d replay=%d epsilon=%.4f",
                     self.agent_id, len(self.q_table), len(self.replay_buffer), self.epsilon)

    def decay_exploration(self):
        self.epsilon = max(self.epsilon * cfg.EPSILON_DECAY, cfg.EPSILON_MIN)

    def _reset_episode_state(self):
        self.tracker.reset()
        self._last_state = None
        self._pending = None

    # ------------------------------------------------------------------
    # Experience replay
    # ------------------------------------------------------------------

    def _store(self, experience: Experience):
        self.q_update(experience)
        self.replay_buffer.append(experience)
        if len(self.replay_buffer) >= cfg.REPLAY_MIN_SIZE:
            self.replay(cfg.REPLAY_BATCH)

    def replay(self, batch_size):
        """Re-applies a random batch of stored transitions."""
        if len(self.replay_buffer) < batch_size:
            return
        indices = self.rng.integers(0, len(self.replay_buffer), size=batch_size)
        for i in indices:
            self.q_update(self.replay_buffer[int(i)])


def create_qlearning_agent(agent_id, initial_cash=cfg.INITIAL_CASH,
                           learning_rate=cfg.Q_LEARNING_RATE,
                           discount=cfg.Q_DISCOUNT,
                           epsilon=cfg.Q_EPSILON):
    return QLearningAgent(agent_id, initial_cash, learning_rate, discount, epsilon)
