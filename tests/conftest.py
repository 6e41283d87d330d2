"""
Shared fixtures for the trading simulator tests.
"""
import numpy as np
import pytest

from tradesim.agents_baseline import BaselineStrategy, create_baseline_agent
from tradesim.agents_policy_gradient import create_policy_gradient_agent
from tradesim.agents_qlearning import create_qlearning_agent
from tradesim.models import MarketParameters
from tradesim.pomdp import build_price_support, uniform_belief


@pytest.fixture
def params():
    """Reference market: mu=1bp, sigma=2%, P0=100, slippage=1%, noise=0.5%."""
    return MarketParameters(mu=0.0001, sigma=0.02, initial_price=100.0,
                            slippage_factor=0.01, observation_noise=0.005)


@pytest.fixture
def noiseless_params():
    return MarketParameters(mu=0.0001, sigma=0.02, initial_price=100.0,
                            slippage_factor=0.01, observation_noise=0.0)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def three_agents():
    """One agent of each kind."""
    return [
        create_qlearning_agent(1),
        create_policy_gradient_agent(2),
        create_baseline_agent(3, strategy=BaselineStrategy.MOMENTUM),
    ]


@pytest.fixture
def price_support():
    return build_price_support(100.0, n_states=21, width=0.05)


@pytest.fixture
def uniform_prior(price_support):
    return uniform_belief(price_support)

