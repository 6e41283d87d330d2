# tradesim/simulation.py
"""
Multi-agent simulation coordinator.

Each step, for all agents before the market moves:
    1. one noisy observation per agent of the current (pre-step) market
    2. each agent turns its observation into a belief
    3. each agent decides an order (all decided before any executes)
    4. each order executes at the same pre-step price, the agent's position
       is updated and the agent learns from reward = value change - slippage
    5. volume = sum of |quantity| over executed non-hold orders
    6. the price moves (GBM), histories are appended, time advances
    7. every position is marked at the new price and recorded

A failure inside one agent's observe/act/execute/learn only turns that
agent's step into a hold; it is logged and counted. A failure of the market
step aborts the run with MarketStepFailure.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
import pandas as pd

import tradesim.config as cfg
from tradesim.agents_base import StepFeedback, TradingAgent
from tradesim.errors import AgentStepFailure, ConfigurationError, InvariantViolation, MarketStepFailure
from tradesim.market import MarketEnvironment
from tradesim.metrics import compute_metrics
from tradesim.models import BeliefState, MarketParameters, MarketState, Order, PerformanceMetrics, Position

logger = logging.getLogger(__name__)


@dataclass
class AgentHistory:
    """Per-agent time series. cash/shares/portfolio_value/pnl start with the initial point."""
    agent_id: object
    cash: List[float] = field(default_factory=list)
    shares: List[int] = field(default_factory=list)
    portfolio_value: List[float] = field(default_factory=list)
    pnl: List[float] = field(default_factory=list)
    rewards: List[float] = field(default_factory=list)

    def record(self, position: Position):
        self.cash.append(position.cash)
        self.shares.append(position.shares)
        self.portfolio_value.append(position.portfolio_value)
        self.pnl.append(position.portfolio_value - self.portfolio_value[0])


@dataclass(frozen=True)
class AgentFailureRecord:
    step: int
    phase: str
    message: str


@dataclass
class SimulationResult:
    market_history: List[MarketState]
    agent_histories: Dict[object, AgentHistory]
    price_history: List[float]
    metrics: Dict[object, PerformanceMetrics]
    agent_failures: Dict[object, List[AgentFailureRecord]]
    agent_names: Dict[object, str] = field(default_factory=dict)
    step_log: List[dict] = field(default_factory=list)

    @property
    def n_steps(self) -> int:
        return len(self.price_history) - 1

    def failure_count(self, agent_id) -> int:
        return len(self.agent_failures.get(agent_id, []))

    def to_frame(self) -> pd.DataFrame:
        """One row per time point: price, volume and every agent's series."""
        data = {
            "price": self.price_history,
            "volume": [np.nan] + [m.volume for m in self.market_history[1:]],
        }
        for agent_id, h in self.agent_histories.items():
            data[f"{agent_id}:cash"] = h.cash
            data[f"{agent_id}:shares"] = h.shares
            data[f"{agent_id}:portfolio_value"] = h.portfolio_value
            data[f"{agent_id}:pnl"] = h.pnl
        df = pd.DataFrame(data)
        df.index.name = "time"
        return df

    def summary_frame(self) -> pd.DataFrame:
        """Metrics per agent, one row each."""
        rows = []
        for agent_id, m in self.metrics.items():
            row = {"agent_id": agent_id, "name": self.agent_names.get(agent_id, str(agent_id))}
            row.update(m.as_dict())
            row["failures"] = self.failure_count(agent_id)
            rows.append(row)
        return pd.DataFrame(rows).set_index("agent_id")


class SimulationCoordinator:
    def __init__(self, market_params: MarketParameters, agents, seed=None, rng: np.random.Generator = None):
        if not isinstance(market_params, MarketParameters):
            raise ConfigurationError("market_params must be MarketParameters", {"type": type(market_params).__name__})
        agents = list(agents)
        if not agents:
            raise ConfigurationError("Must have at least one agent")
        for agent in agents:
            if not isinstance(agent, TradingAgent):
                raise ConfigurationError("Agents must implement TradingAgent", {"type": type(agent).__name__})
        ids = [a.agent_id for a in agents]
        if len(set(ids)) != len(ids):
            raise ConfigurationError("Agent ids must be unique", {"ids": ids})

        self.market_params = market_params
        self.agents = agents
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        self.market = None
        self.histories = {}
        self.market_history = []
        self.failures = {}
        self.step_log = []

    def run(self, n_steps) -> SimulationResult:
        if isinstance(n_steps, bool) or not isinstance(n_steps, (int, np.integer)):
            raise ConfigurationError("Number of steps must be an integer", {"n_steps": n_steps})
        if n_steps <= 0:
            raise ConfigurationError("Number of steps must be positive", {"n_steps": n_steps})

        logger.info("Starting simulation: %d agent(s), %d step(s)", len(self.agents), n_steps)

        self.market = MarketEnvironment(self.market_params, self.rng)
        self.histories = {}
        self.failures = {a.agent_id: [] for a in self.agents}
        self.step_log = []

        for agent in self.agents:
            agent.bind_rng(self.rng)
            agent.bind_market(self.market_params)
            agent.position.mark_to_market(self.market.price)
            history = AgentHistory(agent.agent_id)
            history.record(agent.position)
            self.histories[agent.agent_id] = history
            logger.debug("Agent %s learns per %s", agent.agent_id, agent.learning_cadence.value)

        self.market_history = [self.market.get_state()]

        for step in range(1, n_steps + 1):
            self.step(step)
            if step % cfg.PROGRESS_LOG_INTERVAL == 0:
                logger.info("Simulation progress: step %d price=%.4f volume=%.1f", step, self.market.price, self.market.state.volume)

        for agent in self.agents:
            self._guarded(agent, n_steps, "end_episode", agent.end_episode)

        metrics = {
            agent_id: compute_metrics(h.portfolio_value, h.shares)
            for agent_id, h in self.histories.items()
        }

        n_failures = sum(len(v) for v in self.failures.values())
        logger.info("Simulation complete: %d step(s), final price %.4f, %d agent failure(s)",
                    n_steps, self.market.price, n_failures)

        return SimulationResult(
            market_history=self.market_history,
            agent_histories=self.histories,
            price_history=list(self.market.state.price_history),
            metrics=metrics,
            agent_failures=self.failures,
            agent_names={a.agent_id: a.name for a in self.agents},
            step_log=self.step_log,
        )

    def _guarded(self, agent, step, phase, fn, *args):
        """
        Runs one agent call. Returns (ok, value); on failure the error is
        logged, recorded, and (False, None) is returned.
        """
        try:
            return True, fn(*args)
        except Exception as exc:
            failure = AgentStepFailure(
                f"Agent failed in {phase}",
                {"agent_id": agent.agent_id, "step": step, "cause": repr(exc)},
            )
            logger.warning("%s", failure, exc_info=True)
            self.failures[agent.agent_id].append(AgentFailureRecord(step, phase, repr(exc)))
            return False, None

    def step(self, step):
        price = self.market.price

        # 1. Observations of the pre-step market, one per agent
        try:
            observations = [self.market.observe() for _ in self.agents]
        except Exception as exc:
            logger.exception("Market observation failed at step %d", step)
            raise MarketStepFailure("Market observation failed", {"step": step}) from exc

        # 2. Beliefs (agent-specific)
        beliefs = []
        for agent, obs in zip(self.agents, observations):
            ok, belief = self._guarded(agent, step, "observe", self._perceive, agent, obs)
            beliefs.append(belief if ok else None)

        # 3. Orders, all decided before any executes
        orders = []
        for agent, belief in zip(self.agents, beliefs):
            order = Order.hold()
            if belief is not None:
                ok, decided = self._guarded(agent, step, "act", self._decide, agent, belief, price)
                if ok:
                    order = decided
            orders.append(order)

        # 4. Execute at the pre-step price, update positions, learn
        executed = []
        step_orders = {}
        for agent, order in zip(self.agents, orders):
            prev_value = agent.position.portfolio_value
            ok, fill = self._guarded(agent, step, "execute", self._fill, agent, order, price)
            if ok:
                execution_price, slippage_cost = fill
                executed.append(order)
            else:
                order = Order.hold()
                execution_price, slippage_cost = price, 0.0

            reward = agent.position.portfolio_value - prev_value - slippage_cost
            self.histories[agent.agent_id].rewards.append(reward)
            step_orders[agent.agent_id] = (order.action.value, order.quantity)

            feedback = StepFeedback(step, price, order, execution_price, slippage_cost, reward)
            self._guarded(agent, step, "learn", agent.learn, feedback)

        # 5-6. Aggregate volume, move the market
        try:
            volume = self.market.step(executed)
            self.market_history.append(self.market.get_state())
        except Exception as exc:
            logger.exception("Market step failed at step %d", step)
            raise MarketStepFailure("Market step failed", {"step": step}) from exc

        # 7. Mark to the new price and record
        new_price = self.market.price
        for agent in self.agents:
            agent.position.mark_to_market(new_price)
            self.histories[agent.agent_id].record(agent.position)

        self.step_log.append({
            "time": self.market.time,
            "price_before": price,
            "price": new_price,
            "volume": volume,
            "orders": step_orders,
        })

    def _fill(self, agent, order, price):
        execution_price, slippage_cost = self.market.execute(order)
        agent.position.apply_fill(order, execution_price, price)
        return execution_price, slippage_cost

    @staticmethod
    def _perceive(agent, observation):
        belief = agent.observe(observation)
        if not isinstance(belief, BeliefState):
            raise InvariantViolation("observe() must return a BeliefState", {"returned": type(belief).__name__})
        return belief

    @staticmethod
    def _decide(agent, belief, price):
        order = agent.act(belief, price)
        if not isinstance(order, Order):
            raise InvariantViolation("act() must return an Order", {"returned": type(order).__name__})
        return order


def run_simulation(market_params: MarketParameters, agents, n_steps, seed=None, rng=None) -> SimulationResult:
    """
    Runs agents against a fresh market for n_steps.

    Raises:
        ConfigurationError: n_steps <= 0, no agents, duplicate ids.
        MarketStepFailure: the market itself failed mid-run.
    """
    return SimulationCoordinator(market_params, agents, seed=seed, rng=rng).run(n_steps)
