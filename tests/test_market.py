"""
Tests for the price process, order execution and observation model.
"""
import math

import numpy as np
import pytest

from tradesim.errors import ConfigurationError, InvariantViolation
from tradesim.market import (
    MarketEnvironment,
    advance_price,
    execute_order,
    initialize_market,
    observe_market,
    step_market,
    total_volume,
)
from tradesim.models import MarketParameters, Order


class TestMarketParameters:
    def test_defaults_are_valid(self):
        params = MarketParameters.default()
        assert params.sigma > 0
        assert params.initial_price > 0

    @pytest.mark.parametrize("kwargs", [
        {"sigma": 0.0},
        {"sigma": -0.1},
        {"initial_price": 0.0},
        {"initial_price": -5.0},
        {"slippage_factor": -0.01},
        {"observation_noise": -0.001},
        {"mu": float("nan")},
        {"sigma": float("inf")},
    ])
    def test_invalid_parameters_rejected(self, kwargs):
        with pytest.raises(ConfigurationError):
            MarketParameters(**kwargs)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            MarketParameters(sigma=0.0)


class TestInitializeMarket:
    def test_initial_state(self, params):
        state = initialize_market(params)
        assert state.time == 0
        assert state.price == 100.0
        assert state.volume == 0.0
        assert state.price_history == [100.0]
        assert state.volume_history == []


class TestAdvancePrice:
    def test_price_stays_positive_under_extreme_volatility(self, rng):
        params = MarketParameters(mu=0.0, sigma=0.5, initial_price=100.0)
        price = params.initial_price
        for _ in range(2000):
            price = advance_price(price, params, rng)
            assert price > 0
            assert math.isfinite(price)

    def test_price_floor(self, rng):
        params = MarketParameters(mu=-50.0, sigma=0.01, initial_price=1.0)
        assert advance_price(1.0, params, rng) == pytest.approx(0.01)

    def test_gbm_log_return_statistics(self):
        params = MarketParameters(mu=0.0005, sigma=0.02, initial_price=100.0)
        rng = np.random.default_rng(1234)
        prices = [params.initial_price]
        for _ in range(10000):
            prices.append(advance_price(prices[-1], params, rng))
        log_returns = np.diff(np.log(prices))

        expected_mean = params.mu - 0.5 * params.sigma ** 2
        # Mean is noisy relative to its size, so compare against sigma/sqrt(n) scale
        assert abs(log_returns.mean() - expected_mean) < 4 * params.sigma / np.sqrt(len(log_returns))
        assert log_returns.std(ddof=1) == pytest.approx(params.sigma, rel=0.1)

    @pytest.mark.parametrize("bad_price", [0.0, -1.0, float("nan")])
    def test_non_positive_price_raises(self, params, rng, bad_price):
        with pytest.raises(InvariantViolation):
            advance_price(bad_price, params, rng)

    def test_same_seed_same_path(self, params):
        a = np.random.default_rng(7)
        b = np.random.default_rng(7)
        assert advance_price(100.0, params, a) == advance_price(100.0, params, b)


class TestExecuteOrder:
    def test_buy_scenario(self, params):
        exec_price, cost = execute_order(100.0, Order.buy(10), params)
        assert exec_price > 100.0
        assert cost == pytest.approx(10.0, rel=1e-6)
        assert exec_price == pytest.approx(110.0)

    def test_sell_executes_below_market(self, params):
        exec_price, cost = execute_order(100.0, Order.sell(10), params)
        assert exec_price == pytest.approx(90.0)
        assert cost == pytest.approx(10.0)

    def test_hold_is_free(self, params):
        assert execute_order(100.0, Order.hold(), params) == (100.0, 0.0)

    def test_slippage_is_linear_in_size(self, params):
        _, cost_1 = execute_order(100.0, Order.buy(1), params)
        _, cost_100 = execute_order(100.0, Order.buy(100), params)
        assert cost_100 / cost_1 == pytest.approx(100.0)

    def test_slippage_strictly_increasing(self, params):
        costs = [execute_order(50.0, Order.buy(q), params)[1] for q in range(1, 20)]
        assert all(b > a for a, b in zip(costs, costs[1:]))

    def test_buy_sell_symmetry(self, params):
        buy_price, _ = execute_order(100.0, Order.buy(7), params)
        sell_price, _ = execute_order(100.0, Order.sell(7), params)
        assert buy_price - 100.0 == pytest.approx(-(sell_price - 100.0))

    def test_zero_slippage_factor(self):
        params = MarketParameters(slippage_factor=0.0)
        assert execute_order(100.0, Order.buy(50), params) == (100.0, 0.0)

    def test_invalid_market_price(self, params):
        with pytest.raises(InvariantViolation):
            execute_order(0.0, Order.buy(1), params)

    def test_non_order_rejected(self, params):
        with pytest.raises(InvariantViolation):
            execute_order(100.0, "buy", params)

    def test_sell_that_would_fill_at_non_positive_price(self, params):
        # slippage 0.01 * 150 = 1.5 would fill at -50
        with pytest.raises(InvariantViolation):
            execute_order(100.0, Order.sell(150), params)
        with pytest.raises(InvariantViolation):
            execute_order(100.0, Order.sell(100), params)

    def test_large_buy_still_executes(self, params):
        exec_price, _ = execute_order(100.0, Order.buy(150), params)
        assert exec_price == pytest.approx(250.0)


class TestOrder:
    @pytest.mark.parametrize("action_factory,quantity", [
        (Order.buy, 0),
        (Order.sell, 0),
        (Order.buy, -1),
        (Order.buy, float("nan")),
    ])
    def test_invalid_orders(self, action_factory, quantity):
        with pytest.raises(InvariantViolation):
            action_factory(quantity)

    def test_hold_with_quantity_rejected(self):
        from tradesim.models import OrderAction
        with pytest.raises(InvariantViolation):
            Order(OrderAction.HOLD, 5)

    def test_signed_quantity(self):
        assert Order.buy(3).signed_quantity == 3
        assert Order.sell(3).signed_quantity == -3
        assert Order.hold().signed_quantity == 0


class TestObserveMarket:
    def test_zero_noise_is_exact_and_draws_nothing(self, noiseless_params):
        rng = np.random.default_rng(0)
        before = rng.bit_generator.state
        obs = observe_market(123.45, 20.0, 3, noiseless_params, rng)
        assert obs.observed_price == 123.45
        assert obs.volume == 20.0
        assert obs.time == 3
        assert rng.bit_generator.state == before

    def test_noisy_observation_is_close(self, params, rng):
        prices = [observe_market(100.0, 0.0, 0, params, rng).observed_price for _ in range(2000)]
        assert np.mean(prices) == pytest.approx(100.0, abs=0.1)
        assert np.std(prices) == pytest.approx(0.5, rel=0.15)
        assert min(prices) > 0


class TestStepMarket:
    def test_volume_sums_executed_orders(self):
        orders = [Order.buy(10), Order.sell(4), Order.hold()]
        assert total_volume(orders) == 14.0

    def test_step_appends_histories(self, params, rng):
        state = initialize_market(params)
        volume = step_market(state, params, [Order.buy(5)], rng)
        assert volume == 5.0
        assert state.time == 1
        assert len(state.price_history) == 2
        assert state.volume_history == [5.0]
        state.check_invariants()


class TestMarketEnvironment:
    def test_snapshot_is_independent(self, params, rng):
        env = MarketEnvironment(params, rng)
        snap = env.get_state()
        env.step([])
        assert snap.time == 0
        assert len(snap.price_history) == 1
        assert env.time == 1

    def test_execute_does_not_move_price(self, params, rng):
        env = MarketEnvironment(params, rng)
        env.execute(Order.buy(10))
        assert env.price == 100.0
