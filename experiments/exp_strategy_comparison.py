# experiments/exp_strategy_comparison.py
import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd

import tradesim.config as cfg
from tradesim.agents_baseline import BaselineStrategy, create_baseline_agent
from tradesim.agents_policy_gradient import create_policy_gradient_agent
from tradesim.agents_qlearning import create_qlearning_agent
from tradesim.models import MarketParameters
from tradesim.simulation import run_simulation


def create_agent_set(initial_cash=cfg.INITIAL_CASH):
    return [
        create_qlearning_agent(1, initial_cash),
        create_policy_gradient_agent(2, initial_cash),
        create_baseline_agent(3, initial_cash, BaselineStrategy.MOMENTUM),
        create_baseline_agent(4, initial_cash, BaselineStrategy.MEAN_REVERSION),
        create_baseline_agent(5, initial_cash, BaselineStrategy.RANDOM),
    ]


def run_strategy_comparison(output_dir="plots", n_episodes=5, n_steps=1000, seed=0):
    print("Running Strategy Comparison...")
    if not os.path.exists(output_dir):
        os.makedirs(output_dir)

    params = MarketParameters.default()
    print(f"  Market: mu={params.mu}, sigma={params.sigma}, P0={params.initial_price}")
    print(f"  Simulation: {n_episodes} episodes x {n_steps} steps")

    # Independent runs, fresh agents each time
    frames = []
    for episode in range(n_episodes):
        print(f"  Episode {episode + 1}/{n_episodes}...")
        result = run_simulation(params, create_agent_set(), n_steps, seed=seed + episode)
        summary = result.summary_frame()
        summary["episode"] = episode
        frames.append(summary)

    all_metrics = pd.concat(frames)
    table = all_metrics.groupby("name").agg(
        mean_return=("cumulative_return", "mean"),
        std_return=("cumulative_return", "std"),
        sharpe=("sharpe_ratio", "mean"),
        drawdown=("max_drawdown", "mean"),
        win_rate=("win_rate", "mean"),
        trades=("total_trades", "mean"),
    )

    print("\nAggregate Performance")
    print("-" * 90)
    print(f"{'STRATEGY':<20} {'RETURN %':>14} {'SHARPE':>8} {'DRAWDOWN %':>11} {'WIN RATE %':>11} {'TRADES':>8}")
    print("-" * 90)
    for name, row in table.iterrows():
        print(f"{name:<20} {row.mean_return * 100:>7.2f}±{row.std_return * 100:<6.2f} "
              f"{row.sharpe:>8.2f} {row.drawdown * 100:>11.2f} {row.win_rate * 100:>11.2f} {row.trades:>8.1f}")
    print("-" * 90)

    print(f"\n  Best performer (return): {table.mean_return.idxmax()}")
    print(f"  Best risk-adjusted (Sharpe): {table.sharpe.idxmax()}")
    print(f"  Most consistent: {table.std_return.idxmin()}")

    # PLOT
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    axes[0].bar(table.index, table.mean_return * 100, yerr=table.std_return * 100, capsize=4)
    axes[0].set_title("Mean Cumulative Return (%)")
    axes[1].bar(table.index, table.sharpe)
    axes[1].set_title("Mean Sharpe Ratio")
    for ax in axes:
        ax.tick_params(axis="x", rotation=30)
        ax.grid(True, axis="y")
    fig.tight_layout()

    filename = f"{output_dir}/strategy_comparison.png"
    fig.savefig(filename)
    plt.close(fig)
    print(f"\nSaved {filename}")
    return table


if __name__ == "__main__":
    run_strategy_comparison()
