# tradesim/training.py
"""
Episode-based training.

An episode is one full market lifecycle: a fresh market, the agent reset to
its initial cash (learned parameters kept), n_steps of the coordinator's
protocol with per-step learning, then end_episode(). Training repeats
episodes, decaying exploration after each.
"""
import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np

import tradesim.config as cfg
from tradesim.errors import ConfigurationError
from tradesim.simulation import SimulationCoordinator
from tradeutils.math_utils import moving_average

logger = logging.getLogger(__name__)


@dataclass
class TrainingStats:
    episode_returns: List[float] = field(default_factory=list)
    episode_lengths: List[int] = field(default_factory=list)
    learning_curve: List[float] = field(default_factory=list)


def run_episode(agent, market_params, n_steps, rng=None, seed=None):
    """
    Args:
        agent: TradingAgent, trained in place.
        market_params: MarketParameters for the fresh market.
        n_steps: Steps in the episode.
        rng: Generator to draw from; a new one from `seed` if None.

    Returns:
        (total_reward, steps_taken)
    """
    agent.reset(agent.initial_cash)
    result = SimulationCoordinator(market_params, [agent], seed=seed, rng=rng).run(n_steps)
    rewards = result.agent_histories[agent.agent_id].rewards
    return float(np.sum(rewards)), len(rewards)


def train_agent(agent, market_params, n_episodes, n_steps, seed=None) -> TrainingStats:
    """
    Trains one agent over n_episodes independent episodes drawn from a single
    generator, so the whole training run is fixed by `seed`.
    """
    if n_episodes <= 0:
        raise ConfigurationError("Number of episodes must be positive", {"n_episodes": n_episodes})
    if n_steps <= 0:
        raise ConfigurationError("Number of steps must be positive", {"n_steps": n_steps})

    logger.info("Starting training: agent %s, %d episode(s) x %d step(s)", agent.agent_id, n_episodes, n_steps)
    rng = np.random.default_rng(seed)
    stats = TrainingStats()

    for episode in range(1, n_episodes + 1):
        total_reward, steps = run_episode(agent, market_params, n_steps, rng=rng)
        stats.episode_returns.append(total_reward)
        stats.episode_lengths.append(steps)

        if episode % cfg.TRAINING_LOG_INTERVAL == 0:
            recent = stats.episode_returns[-cfg.TRAINING_LOG_INTERVAL:]
            logger.info("Training progress: episode %d, avg return (last %d) %.4f", episode, len(recent), np.mean(recent))

        agent.decay_exploration()

    stats.learning_curve = moving_average(stats.episode_returns, cfg.LEARNING_CURVE_WINDOW).tolist()
    logger.info("Training complete: agent %s, final avg return %.4f", agent.agent_id, stats.learning_curve[-1])
    return stats
