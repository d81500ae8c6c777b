import os
import sys

import pandas as pd

from branch_and_bound import BranchAndBound
from logging_config import setup_multi_level_logging, get_logger
from lp_solvers import create_solver
from mkp_instance import Instance
from Utils.instance_io import read_instance

logger = get_logger(__name__)


def print_assignment(instance, result):
    """Print the knapsack contents of the best solution."""
    print("\n" + "=" * 100)
    print(" KNAPSACK CONTENTS ".center(100, "="))
    print("=" * 100)
    if not result.has_solution:
        print("No solution available.")
        print("=" * 100 + "\n")
        return

    print(f"{'Knapsack':<10} {'Capacity':<12} {'Load':<12} {'Profit':<12} {'Items':<50}")
    print("-" * 96)
    for ks in instance.knapsacks:
        items = [instance.item(j) for j, k in result.assignment.items() if k == ks.id]
        load = sum(item.weight for item in items)
        profit = sum(item.profit for item in items)
        item_str = ", ".join(str(item.id) for item in items)
        print(f"{ks.id:<10} {ks.capacity:<12} {load:<12} {profit:<12} {item_str}")
    unassigned = [j for j, k in result.assignment.items() if k is None]
    print(f"\nUnassigned items: {unassigned}")
    print("=" * 100 + "\n")


def main(instance_path=None):
    """
    Main function to run the MKP Branch-and-Bound solver.
    """

    # ===========================
    # LOGGING CONFIGURATION
    # ===========================
    # Set print_all_logs=True to also print all log levels to console (not just PRINT level)
    print_all_logs = False
    setup_multi_level_logging(base_log_dir=None, enable_console=True, print_all_logs=print_all_logs)

    # ===========================
    # CONFIGURATION PARAMETERS
    # ===========================

    # Solver settings
    solver_name = 'highs'  # 'highs' (SciPy, no licence) or 'gurobi'
    solver_kwargs = {}  # e.g. {'deterministic': True, 'seed': 0} for gurobi

    # Branch-and-Bound settings
    branching_strategy = 'most_fractional'  # 'most_fractional', 'first_fractional', 'profit_density', 'pseudo_cost', 'random'
    search_strategy = 'dfs'  # 'dfs' for Depth-First, 'bfs' for Best-Bound-First
    time_limit = 300  # seconds
    max_nodes = None

    options = {
        'integrality_tolerance': 1e-6,
        'fractional_band': (0.1, 0.9),
        'gap_tolerance': 0.0,
        'node_time_limit': None,
        'n_workers': 1,
        'use_greedy_incumbent': True,
        'use_reduced_cost_fixing': True,
        'integer_pruning': True,
        'random_seed': 0,
        'log_interval': 100,
    }

    # Output settings
    results_dir = 'results'
    export_node_log = True

    # ===========================
    # INSTANCE
    # ===========================
    if instance_path is not None:
        instance = read_instance(instance_path)
    else:
        instance = Instance.from_lists([10], [5, 4, 6], [10, 40, 30], name='example')

    logger.print(str(instance))

    # ===========================
    # SOLVE
    # ===========================
    solver = create_solver(solver_name, **solver_kwargs)
    bnb = BranchAndBound(instance, solver, branching_strategy=branching_strategy,
                         search_strategy=search_strategy, options=options)
    result = bnb.solve(time_limit=time_limit, max_nodes=max_nodes)

    print_assignment(instance, result)

    # ===========================
    # RESULTS DATAFRAME
    # ===========================
    os.makedirs(results_dir, exist_ok=True)
    row = {'instance': instance.name, 'n': instance.num_items, 'm': instance.num_knapsacks}
    row.update(result.as_dict())
    row['assignment'] = str(row['assignment'])
    results_df = pd.DataFrame([row])
    results_df.to_csv(os.path.join(results_dir, f"result_{instance.name}.csv"), index=False)

    if export_node_log:
        bnb.export_node_log(os.path.join(results_dir, f"nodes_{instance.name}.csv"))

    print("\n" + "=" * 100)
    print(" RESULTS DATAFRAME ".center(100, "="))
    print("=" * 100)
    print(results_df.drop(columns=['assignment']).T.to_string(header=False))
    print("=" * 100 + "\n")
    return result


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else None)
