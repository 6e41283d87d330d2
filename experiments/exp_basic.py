# experiments/exp_basic.py
import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from tradesim.agents_baseline import BaselineStrategy, create_baseline_agent
from tradesim.agents_policy_gradient import create_policy_gradient_agent
from tradesim.agents_qlearning import create_qlearning_agent
from tradesim.models import MarketParameters
from tradesim.pomdp import entropy
from tradesim.simulation import run_simulation


def run_basic_simulation(output_dir="plots", n_steps=1000, seed=42):
    print("Running Basic Simulation (3 agents)...")
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)

    params = MarketParameters(mu=0.0001, sigma=0.02, initial_price=100.0,
                              slippage_factor=0.01, observation_noise=0.005)
    agents = [
        create_qlearning_agent(1),
        create_policy_gradient_agent(2),
        create_baseline_agent(3, strategy=BaselineStrategy.MOMENTUM),
    ]

    result = run_simulation(params, agents, n_steps, seed=seed)

    prices = result.price_history
    print(f"  Price: {prices[0]:.2f} -> {prices[-1]:.2f} (min {min(prices):.2f}, max {max(prices):.2f})")
    print(result.summary_frame().to_string(float_format=lambda x: f"{x:.4f}"))

    # Final belief spread of the RL agents
    for agent in agents[:2]:
        belief = agent.tracker.belief
        if belief is not None:
            print(f"  {agent.name}: believed price {belief.expected_price():.2f}, entropy {entropy(belief):.3f}")

    # PLOT
    df = result.to_frame()
    fig, axes = plt.subplots(2, 1, figsize=(10, 8), sharex=True)
    axes[0].plot(df.index, df["price"], color="black")
    axes[0].set_ylabel("Price")
    axes[0].set_title("Market Price (GBM)")
    axes[0].grid(True)

    for agent in agents:
        axes[1].plot(df.index, df[f"{agent.agent_id}:portfolio_value"], label=agent.name)
    axes[1].set_xlabel("Time step")
    axes[1].set_ylabel("Portfolio value")
    axes[1].legend()
    axes[1].grid(True)
    fig.tight_layout()

    filename = f"{output_dir}/basic_simulation.png"
    fig.savefig(filename)
    plt.close(fig)
    print(f"  Saved {filename}")
    return result


if __name__ == "__main__":
    run_basic_simulation()
