# tradesim/pomdp.py
"""
Belief engine for the POMDP layer.

Beliefs are discrete distributions over hypothesised POMDPStates. Every
function here is a pure transform: it builds a new BeliefState or array and
never mutates its inputs.

Bayes update:
    posterior_i ∝ P(obs | state_i) * prior_i
with a Gaussian likelihood of fixed scale sigma_obs. The likelihood's scale
belongs to the belief engine and is independent of the market's own
observation noise.

When every likelihood underflows (observation far outside the support, or
a tight noise model) the posterior mass is zero; the update then falls back
to a uniform belief over the same support instead of producing NaN.
"""
import logging
import math

import numpy as np
from scipy.stats import norm

import tradesim.config as cfg
from tradesim.errors import ConfigurationError, InvariantViolation
from tradesim.models import BeliefState, Observation, POMDPState
from tradeutils.math_utils import shannon_entropy

logger = logging.getLogger(__name__)


def uniform_belief(states) -> BeliefState:
    """Weight 1/n on each of n states: the no-information prior."""
    states = tuple(states)
    n = len(states)
    if n == 0:
        raise InvariantViolation("Cannot build a belief over an empty support")
    return BeliefState(states, np.full(n, 1.0 / n))


def point_belief(observation: Observation, volatility: float = cfg.AGENT_BELIEF_VOLATILITY) -> BeliefState:
    """All mass on the observed price. For agents that do not track uncertainty."""
    state = POMDPState(observation.observed_price, 0.0, volatility, observation.time)
    return BeliefState((state,), np.ones(1))


def _check_sigma(sigma_obs):
    if not (math.isfinite(sigma_obs) and sigma_obs > 0):
        raise ConfigurationError("Likelihood noise scale must be positive", {"sigma_obs": sigma_obs})


def observation_likelihood(observation: Observation, state: POMDPState, sigma_obs: float = cfg.BELIEF_OBS_SIGMA) -> float:
    """
    Gaussian density of the observed price given the hypothesised price:
    exp(-0.5 * ((obs - price) / sigma)^2) / (sigma * sqrt(2*pi))
    Depends only on |obs - price|.
    """
    _check_sigma(sigma_obs)
    return float(norm.pdf(observation.observed_price, loc=state.price, scale=sigma_obs))


def likelihoods(observation: Observation, states, sigma_obs: float = cfg.BELIEF_OBS_SIGMA) -> np.ndarray:
    """Vectorised observation_likelihood over a support."""
    _check_sigma(sigma_obs)
    prices = np.array([s.price for s in states], dtype=float)
    return norm.pdf(observation.observed_price, loc=prices, scale=sigma_obs)


def normalize(weights) -> np.ndarray:
    """
    weights / sum(weights).

    - All-zero weights give the uniform distribution.
    - Negative weights within round-off (>= -cfg.NEGATIVE_WEIGHT_TOL) are
      clipped to zero with a warning.
    - Genuinely negative or non-finite weights are a caller bug and raise
      InvariantViolation.
    """
    w = np.array(weights, dtype=float)
    if w.ndim != 1 or w.size == 0:
        raise InvariantViolation("Cannot normalize an empty weight vector")
    if not np.all(np.isfinite(w)):
        raise InvariantViolation("Belief weights must be finite")
    if np.any(w < 0):
        if np.any(w < -cfg.NEGATIVE_WEIGHT_TOL):
            raise InvariantViolation("Negative belief weight", {"min_weight": float(w.min())})
        logger.warning("Clipping round-off negative belief weights (min %.3e)", w.min())
        w = np.clip(w, 0.0, None)

    peak = w.max()
    if peak == 0:
        logger.debug("All belief weights zero, using uniform distribution")
        return np.full(w.size, 1.0 / w.size)
    # Scale by the largest weight first so the sum cannot overflow
    w = w / peak
    return w / w.sum()


def belief_from_weights(states, weights) -> BeliefState:
    return BeliefState(tuple(states), normalize(weights))


def diffuse(weights, mixing: float = cfg.AGENT_BELIEF_DIFFUSION) -> np.ndarray:
    """
    Transition model that mixes the belief with the uniform distribution:
    (1 - mixing) * w + mixing / n. Keeps some mass on every state so that
    the next observation can move the belief.
    """
    if not 0.0 <= mixing <= 1.0:
        raise ConfigurationError("Diffusion mixing must be in [0, 1]", {"mixing": mixing})
    w = np.asarray(weights, dtype=float)
    return (1.0 - mixing) * w + mixing / w.size


def update_belief(prior: BeliefState, observation: Observation, transition=None,
                  sigma_obs: float = cfg.BELIEF_OBS_SIGMA) -> BeliefState:
    """
    Bayes' rule over the prior's support.

    Args:
        prior: Current belief.
        observation: New noisy observation.
        transition: Optional callable applied to the prior weights before the
                    update (prediction step), e.g. diffuse.
        sigma_obs: Likelihood noise scale.

    Returns:
        New BeliefState on the same support. Uniform if the posterior mass
        underflows to zero or is not finite.
    """
    prior_w = prior.weights
    if transition is not None:
        prior_w = np.asarray(transition(prior_w), dtype=float)
        prior_sum = prior_w.sum()
        if abs(prior_sum - 1.0) > cfg.PRIOR_SUM_TOL:
            logger.warning("Predicted prior sums to %.6f, renormalizing", prior_sum)
        prior_w = normalize(prior_w)

    with np.errstate(under="ignore", over="ignore", invalid="ignore"):
        lik = likelihoods(observation, prior.states, sigma_obs)
        posterior = lik * prior_w
        total = posterior.sum()

    n = len(prior)
    if not np.isfinite(total) or total <= 0:
        logger.warning(
            "Observation %.4f has no likelihood mass over %d states, using uniform belief",
            observation.observed_price, n,
        )
        return BeliefState(prior.states, np.full(n, 1.0 / n))

    posterior = posterior / total
    logger.debug(
        "Belief updated: entropy %.4f -> %.4f",
        shannon_entropy(prior_w), shannon_entropy(posterior),
    )
    return BeliefState(prior.states, posterior)


def entropy(weights) -> float:
    """Shannon entropy in nats. log(n) for uniform over n states, 0 for one-hot."""
    if isinstance(weights, BeliefState):
        weights = weights.weights
    return shannon_entropy(weights)


def discretize_price(price: float, min_price: float, max_price: float, n_bins: int = cfg.N_BINS) -> int:
    """
    Maps a price onto bins 1..n_bins covering [min_price, max_price].
    Prices outside the range clip to the edge bins. Non-decreasing in price.
    """
    if n_bins < 1:
        raise ConfigurationError("n_bins must be at least 1", {"n_bins": n_bins})
    if not max_price > min_price:
        raise ConfigurationError("max_price must exceed min_price", {"min": min_price, "max": max_price})
    if not math.isfinite(price):
        raise InvariantViolation("Cannot discretize a non-finite price", {"price": price})

    clipped = min(max(price, min_price), max_price)
    bin_width = (max_price - min_price) / n_bins
    b = int(math.ceil((clipped - min_price) / bin_width))
    return min(max(b, 1), n_bins)


def discretize_relative(price: float, reference_price: float, n_bins: int = cfg.N_BINS) -> int:
    """discretize_price over [0.5, 1.5] x reference_price."""
    if not reference_price > 0:
        raise ConfigurationError("Reference price must be positive", {"reference_price": reference_price})
    return discretize_price(
        price,
        cfg.RELATIVE_BIN_LOW * reference_price,
        cfg.RELATIVE_BIN_HIGH * reference_price,
        n_bins,
    )


def build_price_support(center: float, n_states: int = cfg.AGENT_BELIEF_STATES, width: float = cfg.AGENT_BELIEF_WIDTH,
                        trend: float = 0.0, volatility: float = cfg.AGENT_BELIEF_VOLATILITY, time: int = 0):
    """Evenly spaced hypothesised prices over center * [1 - width, 1 + width]."""
    if n_states < 1:
        raise ConfigurationError("n_states must be at least 1", {"n_states": n_states})
    if not 0 < width < 1:
        raise ConfigurationError("width must be in (0, 1)", {"width": width})
    if not center > 0:
        raise InvariantViolation("Support centre must be positive", {"center": center})
    prices = np.linspace(center * (1 - width), center * (1 + width), n_states)
    return tuple(POMDPState(float(p), trend, volatility, time) for p in prices)


class PriceBeliefTracker:
    """
    Agent-owned belief over the hidden price.

    Starts from a uniform prior around the first observation, then diffuses
    and Bayes-updates on each observation. If an observation lands outside
    the support the grid is rebuilt around it with a fresh uniform prior.
    """
    def __init__(self, n_states=cfg.AGENT_BELIEF_STATES, width=cfg.AGENT_BELIEF_WIDTH,
                 sigma_obs=cfg.AGENT_BELIEF_SIGMA, diffusion=cfg.AGENT_BELIEF_DIFFUSION,
                 volatility=cfg.AGENT_BELIEF_VOLATILITY):
        _check_sigma(sigma_obs)
        self.n_states = n_states
        self.width = width
        self.sigma_obs = sigma_obs
        self.diffusion = diffusion
        self.volatility = volatility

        self.belief = None
        self.trend = 0.0
        self.last_observed_price = None
        self.rebuilds = 0

    def reset(self):
        self.belief = None
        self.trend = 0.0
        self.last_observed_price = None

    def _outside_support(self, price):
        prices = self.belief.prices()
        return price < prices[0] or price > prices[-1]

    def observe(self, observation: Observation) -> BeliefState:
        price = observation.observed_price
        if self.last_observed_price is not None:
            self.trend = float(np.log(price / self.last_observed_price))
        self.last_observed_price = price

        if self.belief is None or self._outside_support(price):
            states = build_price_support(price, self.n_states, self.width, self.trend, self.volatility, observation.time)
            prior = uniform_belief(states)
            if self.belief is not None:
                self.rebuilds += 1
                logger.debug("Observation %.4f left the belief support, rebuilding grid", price)
        else:
            # Same grid, states re-stamped with the current trend and time
            states = tuple(
                POMDPState(s.price, self.trend, s.volatility, observation.time) for s in self.belief.states
            )
            prior = BeliefState(states, self.belief.weights)

        self.belief = update_belief(
            prior,
            observation,
            transition=lambda w: diffuse(w, self.diffusion),
            sigma_obs=self.sigma_obs,
        )
        return self.belief
