# run_all.py
from experiments.exp_basic import run_basic_simulation
from experiments.exp_strategy_comparison import run_strategy_comparison
from experiments.exp_learning_curves import run_learning_curves

if __name__ == "__main__":
    print("Starting All Experiments...")
    run_basic_simulation()
    run_strategy_comparison()
    run_learning_curves()
    print("All Experiments Completed.")
