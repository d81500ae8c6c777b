import glob
import logging
import os
import time

import pandas as pd

from branch_and_bound import BranchAndBound
from lp_model import SolverError
from mkp_instance import InvalidInstanceError
from Utils.instance_io import read_instance

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['instance', 'n', 'm', 'status', 'objective', 'bound', 'gap', 'root_bound',
                  'nodes_explored', 'nodes_pruned', 'cuts_added', 'max_depth', 'solve_time',
                  'solver_name', 'branching_strategy', 'search_strategy', 'error']


def list_instance_files(directory, pattern='*.txt'):
    """Instance files of a directory, sorted by name."""
    if not os.path.isdir(directory):
        raise FileNotFoundError(f"Instance directory not found: {directory}")
    return sorted(glob.glob(os.path.join(directory, pattern)))


def run_benchmark(instance_paths, solver_factory, branching_strategy='most_fractional',
                  search_strategy='dfs', options=None, time_limit=None, max_nodes=None, output_csv=None):
    """
    Solve a list of instance files and collect one row per instance.

    Instances that cannot be read or solved get a row with status 'error'
    and the message in the 'error' column; the run continues.

    Parameters:
    - instance_paths (list): instance file paths
    - solver_factory (callable): returns a fresh LPSolver per instance
    - branching_strategy, search_strategy, options: passed to BranchAndBound
    - time_limit, max_nodes: passed to BranchAndBound.solve
    - output_csv (str): optional path, the table is written there

    Returns:
    - results_df (pd.DataFrame): one row per instance, RESULT_COLUMNS
    """
    rows = []
    start = time.time()
    for k, path in enumerate(instance_paths, start=1):
        name = os.path.splitext(os.path.basename(path))[0]
        logger.info(f"[{k}/{len(instance_paths)}] {name}")
        try:
            instance = read_instance(path)
            bnb = BranchAndBound(instance, solver_factory(), branching_strategy=branching_strategy,
                                 search_strategy=search_strategy, options=options)
            result = bnb.solve(time_limit=time_limit, max_nodes=max_nodes)
        except (InvalidInstanceError, SolverError) as e:
            logger.warning(f"{name}: {e}")
            rows.append({'instance': name, 'status': 'error', 'error': str(e)})
            continue

        row = {key: value for key, value in result.as_dict().items() if key in RESULT_COLUMNS}
        row.update({'instance': instance.name, 'n': instance.num_items, 'm': instance.num_knapsacks,
                    'error': None})
        rows.append(row)
        logger.info(f"    -> {result.status.name} obj={result.objective} bound={result.bound} "
                    f"nodes={result.nodes_explored} time={result.solve_time:.2f}s")

    results_df = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    logger.info(f"Benchmark of {len(instance_paths)} instances finished in {time.time() - start:.2f}s")

    if output_csv is not None:
        directory = os.path.dirname(output_csv)
        if directory:
            os.makedirs(directory, exist_ok=True)
        results_df.to_csv(output_csv, index=False)
    return results_df


def summarize(results_df):
    """Per-status counts plus mean time and nodes over the solved instances."""
    solved = results_df[results_df['status'] != 'error']
    return {
        'instances': len(results_df),
        'optimal': int((results_df['status'] == 'optimal').sum()),
        'errors': int((results_df['status'] == 'error').sum()),
        'mean_time': float(solved['solve_time'].mean()) if len(solved) else float('nan'),
        'mean_nodes': float(solved['nodes_explored'].mean()) if len(solved) else float('nan'),
    }
