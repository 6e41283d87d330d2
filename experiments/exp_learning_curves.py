# experiments/exp_learning_curves.py
import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from tradesim.agents_policy_gradient import create_policy_gradient_agent
from tradesim.agents_qlearning import create_qlearning_agent
from tradesim.models import MarketParameters
from tradesim.training import train_agent


def run_learning_curves(output_dir="plots", n_episodes=50, n_steps=200, seed=7):
    print("Running Learning Curves...")
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)

    params = MarketParameters.default()
    agents = [create_qlearning_agent(1), create_policy_gradient_agent(2)]

    plt.figure(figsize=(10, 6))
    for agent in agents:
        print(f"  Training {agent.name} ({n_episodes} episodes x {n_steps} steps)...")
        stats = train_agent(agent, params, n_episodes, n_steps, seed=seed)
        print(f"    First episode return {stats.episode_returns[0]:.2f}, "
              f"final smoothed return {stats.learning_curve[-1]:.2f}")

        episodes = range(1, n_episodes + 1)
        line, = plt.plot(episodes, stats.episode_returns, alpha=0.3)
        plt.plot(episodes, stats.learning_curve, color=line.get_color(), label=agent.name)

    plt.title("Episode Reward During Training")
    plt.xlabel("Episode")
    plt.ylabel("Total reward")
    plt.legend()
    plt.grid(True)

    filename = f"{output_dir}/learning_curves.png"
    plt.savefig(filename)
    plt.close()
    print(f"  Saved {filename}")


if __name__ == "__main__":
    run_learning_curves()
