# tradesim/market.py
"""
Market dynamics: price process, order execution with slippage and the noisy
observation model, plus the MarketEnvironment wrapper the coordinator drives.

All randomness comes from the numpy Generator passed in by the caller.
"""
import logging
import math

import numpy as np

import tradesim.config as cfg
from tradesim.errors import InvariantViolation
from tradesim.models import MarketParameters, MarketState, Observation, Order, OrderAction

logger = logging.getLogger(__name__)


def initialize_market(params: MarketParameters) -> MarketState:
    """
    Fresh market at time 0. MarketParameters already validated itself, so the
    only thing left is to seed the histories with the initial price.
    """
    logger.info(
        "Initializing market mu=%s sigma=%s initial_price=%s",
        params.mu, params.sigma, params.initial_price,
    )
    return MarketState(
        time=0,
        price=params.initial_price,
        volume=0.0,
        price_history=[params.initial_price],
        volume_history=[],
    )


def _check_price(price, what="Current price"):
    if not (math.isfinite(price) and price > 0):
        raise InvariantViolation(f"{what} must be positive and finite", {"price": price})


def advance_price(current_price: float, params: MarketParameters, rng: np.random.Generator, dt: float = cfg.DT) -> float:
    """
    One GBM step:
    P_t = P_{t-1} * exp((mu - 0.5*sigma^2)*dt + sigma*sqrt(dt)*Z)

    The -0.5*sigma^2 term is the Ito correction: log-returns have mean
    mu - sigma^2/2 and std sigma. The result is floored at cfg.PRICE_FLOOR.

    Raises:
        InvariantViolation: current_price is not positive (earlier state corruption).
    """
    _check_price(current_price)

    z = rng.standard_normal()
    drift = (params.mu - 0.5 * (params.sigma ** 2)) * dt
    diffusion = params.sigma * np.sqrt(dt) * z

    new_price = current_price * np.exp(drift + diffusion)
    new_price = max(float(new_price), cfg.PRICE_FLOOR)

    logger.debug("Price updated %.4f -> %.4f", current_price, new_price)
    return new_price


def execute_order(market_price: float, order: Order, params: MarketParameters):
    """
    Linear market-impact execution.

    slippage = slippage_factor * |quantity|
    Buy: exec = P * (1 + slippage). Sell: exec = P * (1 - slippage), which
    must stay positive, so sells with slippage >= 1 are rejected.
    slippage_cost = slippage * P for both sides, 0 for hold.

    Returns:
        (execution_price, slippage_cost)
    """
    _check_price(market_price, "Market price")
    if not isinstance(order, Order) or not isinstance(order.action, OrderAction):
        raise InvariantViolation("execute_order needs a valid Order", {"order": order})
    if not math.isfinite(order.quantity):
        raise InvariantViolation("Order quantity must be finite", {"quantity": order.quantity})

    if order.action is OrderAction.HOLD:
        return market_price, 0.0

    slippage = params.slippage_factor * abs(order.quantity)
    if order.action is OrderAction.BUY:
        execution_price = market_price * (1 + slippage)
    else:
        execution_price = market_price * (1 - slippage)
        if execution_price <= 0:
            raise InvariantViolation(
                "Sell slippage consumes the whole price",
                {"quantity": order.quantity, "slippage": slippage},
            )
    slippage_cost = slippage * market_price

    logger.debug(
        "Order executed %s %s at %.4f (market %.4f, slippage cost %.4f)",
        order.action.value, order.quantity, execution_price, market_price, slippage_cost,
    )
    return execution_price, slippage_cost


def observe_market(market_price: float, volume: float, time: int, params: MarketParameters, rng: np.random.Generator) -> Observation:
    """
    Noisy view of the market: observed = P * (1 + N(0,1) * noise), floored.
    Volume and time pass through exactly. With zero noise the observed price
    is the market price and no random draw is made.
    """
    _check_price(market_price, "Market price")
    if params.observation_noise == 0:
        return Observation(market_price, volume, time)

    noise = rng.standard_normal() * params.observation_noise
    noisy_price = max(market_price * (1 + noise), cfg.PRICE_FLOOR)
    return Observation(float(noisy_price), volume, time)


def total_volume(orders) -> float:
    """Sum of |quantity| over non-hold orders."""
    return float(sum(abs(o.quantity) for o in orders if not o.is_hold))


def step_market(market: MarketState, params: MarketParameters, orders, rng: np.random.Generator) -> float:
    """
    Closes one step in place: records the aggregate volume, moves the price,
    appends both histories and advances time.

    Returns:
        Total traded volume this step.
    """
    volume = total_volume(orders)
    new_price = advance_price(market.price, params, rng)

    market.price = new_price
    market.volume = volume
    market.price_history.append(new_price)
    market.volume_history.append(volume)
    market.time += 1

    logger.debug("Market stepped t=%d price=%.4f volume=%.1f", market.time, market.price, volume)
    return volume


class MarketEnvironment:
    """
    Single-asset market owned by the coordinator for one run.
    """
    def __init__(self, params: MarketParameters, rng: np.random.Generator):
        self.params = params
        self.rng = rng
        self.state = initialize_market(params)

    @property
    def price(self) -> float:
        return self.state.price

    @property
    def time(self) -> int:
        return self.state.time

    def observe(self) -> Observation:
        """One independent noisy observation of the current (pre-step) state."""
        return observe_market(self.state.price, self.state.volume, self.state.time, self.params, self.rng)

    def execute(self, order: Order):
        """Executes against the current price. Does not move the price."""
        return execute_order(self.state.price, order, self.params)

    def step(self, orders) -> float:
        """Advances the market by one time step."""
        volume = step_market(self.state, self.params, orders, self.rng)
        self.state.check_invariants()
        return volume

    def get_state(self) -> MarketState:
        return self.state.snapshot()
