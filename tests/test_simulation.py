"""
Tests for the multi-agent simulation coordinator.
"""
import math

import numpy as np
import pytest

from tradesim.agents_base import TradingAgent
from tradesim.agents_baseline import BaselineStrategy, create_baseline_agent
from tradesim.agents_policy_gradient import create_policy_gradient_agent
from tradesim.agents_qlearning import create_qlearning_agent
from tradesim.errors import ConfigurationError, MarketStepFailure
from tradesim.market import MarketEnvironment
from tradesim.models import Order
from tradesim.pomdp import point_belief
from tradesim.simulation import SimulationCoordinator, run_simulation


class RecordingAgent(TradingAgent):
    """Buys one share every step and remembers everything it was given."""
    name = "Recorder"

    def __init__(self, agent_id, initial_cash=10000.0):
        super().__init__(agent_id, initial_cash)
        self.observations = []
        self.feedback = []
        self.episodes_ended = 0

    def observe(self, observation):
        self.observations.append(observation)
        return point_belief(observation)

    def act(self, belief, current_price):
        return self._buy_or_hold(1, current_price)

    def learn(self, feedback):
        self.feedback.append(feedback)

    def end_episode(self):
        self.episodes_ended += 1


class FaultyAgent(RecordingAgent):
    """Fails in act() on chosen steps."""
    name = "Faulty"

    def __init__(self, agent_id, fail_on=(2, 4)):
        super().__init__(agent_id)
        self.fail_on = set(fail_on)
        self.calls = 0

    def act(self, belief, current_price):
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError("strategy blew up")
        return super().act(belief, current_price)


class BadOrderAgent(RecordingAgent):
    name = "BadOrder"

    def act(self, belief, current_price):
        return "buy everything"


class NoBeliefAgent(RecordingAgent):
    """observe() hands back nothing usable."""
    name = "NoBelief"

    def observe(self, observation):
        self.observations.append(observation)
        return None


class BlindAgent(RecordingAgent):
    """observe() always fails; counts act() calls."""
    name = "Blind"

    def __init__(self, agent_id):
        super().__init__(agent_id)
        self.act_calls = 0

    def observe(self, observation):
        raise ValueError("sensor offline")

    def act(self, belief, current_price):
        self.act_calls += 1
        return super().act(belief, current_price)


class ForgetfulAgent(RecordingAgent):
    """Trades normally but learn() always fails."""
    name = "Forgetful"

    def learn(self, feedback):
        self.feedback.append(feedback)
        raise RuntimeError("update diverged")


class DumpingAgent(RecordingAgent):
    """Tries to sell more than the slippage model can fill."""
    name = "Dumping"

    def act(self, belief, current_price):
        return Order.sell(200)


class TestRunSimulation:
    def test_three_agents_hundred_steps(self, params, three_agents):
        result = run_simulation(params, three_agents, 100, seed=42)

        assert len(result.price_history) == 101
        assert result.n_steps == 100
        assert len(result.agent_histories) == 3
        for history in result.agent_histories.values():
            assert len(history.portfolio_value) == 101
            assert len(history.rewards) == 100
            assert all(math.isfinite(v) and v > 0 for v in history.portfolio_value)
        assert len(result.market_history) == 101
        assert set(result.metrics) == {1, 2, 3}

    @pytest.mark.parametrize("n_steps", [0, -5])
    def test_non_positive_steps_rejected(self, params, three_agents, n_steps):
        with pytest.raises(ConfigurationError):
            run_simulation(params, three_agents, n_steps)

    def test_non_integer_steps_rejected(self, params, three_agents):
        with pytest.raises(ConfigurationError):
            run_simulation(params, three_agents, 10.5)

    def test_empty_agents_rejected(self, params):
        with pytest.raises(ConfigurationError):
            run_simulation(params, [], 10)

    def test_duplicate_ids_rejected(self, params):
        with pytest.raises(ConfigurationError):
            run_simulation(params, [RecordingAgent(1), RecordingAgent(1)], 10)

    def test_non_agent_rejected(self, params):
        with pytest.raises(ConfigurationError):
            run_simulation(params, [object()], 10)

    def test_same_seed_reproduces_run(self, params):
        def agents():
            return [
                create_qlearning_agent(1),
                create_policy_gradient_agent(2),
                create_baseline_agent(3, strategy=BaselineStrategy.RANDOM),
            ]

        a = run_simulation(params, agents(), 60, seed=11)
        b = run_simulation(params, agents(), 60, seed=11)
        assert a.price_history == b.price_history
        for agent_id in (1, 2, 3):
            assert a.agent_histories[agent_id].portfolio_value == b.agent_histories[agent_id].portfolio_value

    def test_different_seeds_differ(self, params):
        a = run_simulation(params, [RecordingAgent(1)], 20, seed=1)
        b = run_simulation(params, [RecordingAgent(1)], 20, seed=2)
        assert a.price_history != b.price_history


class TestStepProtocol:
    def test_orders_execute_at_pre_step_price(self, noiseless_params):
        agent = RecordingAgent(1)
        result = run_simulation(noiseless_params, [agent], 5, seed=0)
        for fb, state in zip(agent.feedback, result.market_history[:-1]):
            assert fb.price == state.price
            assert fb.execution_price == pytest.approx(state.price * 1.01)

    def test_reward_is_value_change_minus_slippage(self, noiseless_params):
        agent = RecordingAgent(1)
        run_simulation(noiseless_params, [agent], 1, seed=0)
        fb = agent.feedback[0]
        # Buying 1 share at P*1.01 marked at P loses 0.01*P, then slippage cost 0.01*P
        assert fb.reward == pytest.approx(-0.02 * fb.price)

    def test_volume_is_sum_of_executed_quantities(self, noiseless_params):
        agents = [RecordingAgent(1), RecordingAgent(2)]
        result = run_simulation(noiseless_params, agents, 3, seed=0)
        assert [m.volume for m in result.market_history[1:]] == [2.0, 2.0, 2.0]

    def test_each_agent_sees_its_own_noisy_observation(self, params):
        agents = [RecordingAgent(1), RecordingAgent(2)]
        run_simulation(params, agents, 10, seed=5)
        own = [o.observed_price for o in agents[0].observations]
        other = [o.observed_price for o in agents[1].observations]
        assert own != other

    def test_observation_reflects_pre_step_state(self, noiseless_params):
        agent = RecordingAgent(1)
        result = run_simulation(noiseless_params, [agent], 4, seed=0)
        for obs, state in zip(agent.observations, result.market_history[:-1]):
            assert obs.observed_price == state.price
            assert obs.time == state.time

    def test_end_episode_called_once(self, params):
        agent = RecordingAgent(1)
        run_simulation(params, [agent], 7, seed=0)
        assert agent.episodes_ended == 1

    def test_histories_record_positions(self, noiseless_params):
        agent = RecordingAgent(1)
        result = run_simulation(noiseless_params, [agent], 3, seed=0)
        history = result.agent_histories[1]
        assert history.shares == [0, 1, 2, 3]
        assert history.pnl[0] == 0.0
        for cash, shares, value, price in zip(history.cash, history.shares, history.portfolio_value, result.price_history):
            assert value == pytest.approx(cash + shares * price)


class TestFailureIsolation:
    def test_failing_agent_holds_and_others_continue(self, params):
        faulty = FaultyAgent(1)
        healthy = RecordingAgent(2)
        result = run_simulation(params, [faulty, healthy], 6, seed=3)

        assert result.failure_count(1) == 2
        assert [f.step for f in result.agent_failures[1]] == [2, 4]
        assert all(f.phase == "act" for f in result.agent_failures[1])
        assert result.failure_count(2) == 0

        assert len(healthy.feedback) == 6
        assert result.agent_histories[2].shares[-1] == 6
        # Faulty agent held on two steps
        assert result.agent_histories[1].shares[-1] == 4
        assert faulty.feedback[1].order.is_hold

    def test_non_order_return_is_a_failure(self, params):
        result = run_simulation(params, [BadOrderAgent(1)], 3, seed=0)
        assert result.failure_count(1) == 3
        assert result.agent_histories[1].shares[-1] == 0

    def test_observe_returning_non_belief_is_a_failure(self, params):
        result = run_simulation(params, [NoBeliefAgent(1)], 5, seed=0)
        assert result.failure_count(1) == 5
        assert all(f.phase == "observe" for f in result.agent_failures[1])
        assert all(entry["orders"][1] == ("hold", 0) for entry in result.step_log)

    def test_observe_failure_skips_act_but_still_learns(self, params):
        agent = BlindAgent(1)
        result = run_simulation(params, [agent], 4, seed=0)
        assert result.failure_count(1) == 4
        assert all(f.phase == "observe" for f in result.agent_failures[1])
        assert agent.act_calls == 0
        assert len(agent.feedback) == 4
        assert all(fb.order.is_hold for fb in agent.feedback)
        assert all(fb.reward == 0.0 for fb in agent.feedback)
        assert result.agent_histories[1].shares[-1] == 0

    def test_learn_failure_keeps_the_fill(self, params):
        agent = ForgetfulAgent(1)
        result = run_simulation(params, [agent], 3, seed=0)
        assert result.failure_count(1) == 3
        assert all(f.phase == "learn" for f in result.agent_failures[1])
        assert result.agent_histories[1].shares == [0, 1, 2, 3]
        assert all(entry["orders"][1] == ("buy", 1) for entry in result.step_log)
        assert [m.volume for m in result.market_history[1:]] == [1.0, 1.0, 1.0]

    def test_execute_failure_leaves_position_untouched(self, params):
        agent = DumpingAgent(1)
        agent.position.shares = 500
        result = run_simulation(params, [agent], 2, seed=0)
        assert result.failure_count(1) == 2
        assert all(f.phase == "execute" for f in result.agent_failures[1])
        assert result.agent_histories[1].shares == [500, 500, 500]
        assert all(fb.order.is_hold for fb in agent.feedback)
        assert [m.volume for m in result.market_history[1:]] == [0.0, 0.0]

    def test_failures_are_logged(self, params, caplog):
        run_simulation(params, [FaultyAgent(1)], 3, seed=0)
        assert "AGENT_STEP_FAILURE" in caplog.text

    def test_market_failure_aborts_run(self, params, monkeypatch):
        def broken_step(self, orders):
            raise FloatingPointError("price exploded")

        monkeypatch.setattr(MarketEnvironment, "step", broken_step)
        with pytest.raises(MarketStepFailure) as excinfo:
            run_simulation(params, [RecordingAgent(1)], 5, seed=0)
        assert isinstance(excinfo.value.__cause__, FloatingPointError)


class TestSimulationResult:
    def test_to_frame(self, params, three_agents):
        result = run_simulation(params, three_agents, 20, seed=1)
        df = result.to_frame()
        assert len(df) == 21
        assert df.index.name == "time"
        assert "price" in df.columns
        assert "2:portfolio_value" in df.columns
        assert np.isnan(df["volume"].iloc[0])

    def test_summary_frame(self, params, three_agents):
        result = run_simulation(params, three_agents, 20, seed=1)
        summary = result.summary_frame()
        assert list(summary.index) == [1, 2, 3]
        assert summary.loc[1, "name"] == "Q-Learning"
        assert summary.loc[2, "name"] == "Policy Gradient"
        assert summary.loc[3, "name"] == "Momentum"
        assert (summary["failures"] == 0).all()

    def test_step_log(self, params):
        result = run_simulation(params, [RecordingAgent(7)], 4, seed=0)
        assert len(result.step_log) == 4
        assert result.step_log[0]["orders"][7] == ("buy", 1)
        assert result.step_log[-1]["time"] == 4

    def test_coordinator_reuses_given_rng(self, params):
        rng = np.random.default_rng(9)
        agent = RecordingAgent(1)
        SimulationCoordinator(params, [agent], rng=rng).run(2)
        assert agent.rng is rng
