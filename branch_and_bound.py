"""
Branch-and-Bound driver for the Multiple Knapsack Problem.

Every node solves the L2 relaxation with the node's item fixings and the
current no-good cuts. Nodes are pruned by bound or infeasibility, integral
item selections are checked for packability, and fractional nodes are split
on one item into a FORCED_OUT and a FORCED_IN child.
"""

import logging
import math
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Optional

import pandas as pd

from bnb_node import BranchNode, ItemFixing
from branching import NO_BRANCH_ITEM, BranchingRule, get_strategy
from l2_relaxation import L2RelaxedFormulation
from logging_config import PRINT_LEVEL
from mkp_instance import InvalidInstanceError
from thread_safe_state import SharedSearchState
from Utils.greedy import greedy_assignment
from Utils.packing import find_packing
from Utils.reduced_cost_fixing import reduced_cost_fixings

NODE_LOG_COLUMNS = ['node_id', 'parent_id', 'depth', 'path', 'bound', 'lp_objective',
                    'status', 'fathom_reason', 'branch_item', 'worker', 'time']


class DriverPhase(Enum):
    READY = 'ready'
    EXPANDING = 'expanding'
    DONE = 'done'
    RESULT = 'result'


class SearchStatus(Enum):
    OPTIMAL = 'optimal'
    FEASIBLE = 'feasible'
    INFEASIBLE = 'infeasible'
    TIME_LIMIT = 'time_limit'
    NODE_LIMIT = 'node_limit'


@dataclass
class BnBResult:
    """
    Outcome of a Branch-and-Bound run.

    Attributes:
        status: SearchStatus
        assignment: {item id: knapsack id or None}
        objective: Total profit of the best solution (-inf if none was found)
        bound: Proven upper bound on the optimum (equal to objective iff OPTIMAL)
        gap: Relative gap (bound - objective) / objective
    """
    status: SearchStatus
    assignment: Dict[int, Optional[int]]
    objective: float
    bound: float
    gap: float
    nodes_explored: int = 0
    nodes_pruned: int = 0
    nodes_integral: int = 0
    incumbent_updates: int = 0
    cuts_added: int = 0
    max_depth: int = 0
    root_bound: Optional[float] = None
    solve_time: float = 0.0
    solver_name: str = ''
    branching_strategy: str = ''
    search_strategy: str = ''
    stats: dict = field(default_factory=dict, repr=False)

    @property
    def is_optimal(self):
        return self.status == SearchStatus.OPTIMAL

    @property
    def has_solution(self):
        return self.objective > -math.inf

    def selected_items(self):
        return sorted(j for j, k in self.assignment.items() if k is not None)

    def as_dict(self):
        """Flat dictionary (status as its string value), e.g. for a pandas row."""
        result = asdict(self)
        result['status'] = self.status.value
        result.pop('stats')
        return result


class BranchAndBound:
    """
    Branch-and-Bound over the item selection variables t_j of the L2 relaxation.

    Args:
        instance: MKP Instance
        solver: Object implementing the LPSolver protocol
        branching_strategy: Strategy name ('most_fractional', 'first_fractional',
            'profit_density', 'pseudo_cost', 'random') or a BranchingStrategy
        search_strategy: 'dfs' for Depth-First-Search or 'bfs' for Best-Bound-First
        options: Dictionary of search options with the keys below
            - integrality_tolerance (1e-6)
            - fractional_band ((0.1, 0.9))
            - gap_tolerance (0.0): stop with FEASIBLE once the relative gap is this small
            - node_time_limit (None): seconds per relaxation solve
            - n_workers (1): > 1 explores the tree with worker threads
            - use_greedy_incumbent (False)
            - use_reduced_cost_fixing (False)
            - integer_pruning (True): round bounds down when all profits are integral
            - random_seed (0)
            - log_interval (100): progress log every N nodes
    """

    def __init__(self, instance, solver, branching_strategy='most_fractional', search_strategy='dfs',
                 options=None):
        self.logger = logging.getLogger(__name__)
        options = options or {}

        if search_strategy not in ('dfs', 'bfs'):
            raise ValueError(f"Unknown search strategy: {search_strategy} (use 'dfs' or 'bfs')")
        if not instance.is_valid():
            raise InvalidInstanceError(
                f"Instance '{instance.name}' is invalid: no item fits into any knapsack")

        self.instance = instance
        self.solver = solver
        self.search_strategy = search_strategy

        # Options
        self.tolerance = options.get('integrality_tolerance', 1e-6)
        self.band = tuple(options.get('fractional_band', (0.1, 0.9)))
        self.gap_tolerance = options.get('gap_tolerance', 0.0)
        self.node_time_limit = options.get('node_time_limit', None)
        self.n_workers = max(1, int(options.get('n_workers', 1)))
        self.use_greedy_incumbent = options.get('use_greedy_incumbent', False)
        self.use_reduced_cost_fixing = options.get('use_reduced_cost_fixing', False)
        self.integer_pruning = options.get('integer_pruning', True) and instance.has_integral_profits
        self.random_seed = options.get('random_seed', 0)
        self.log_interval = options.get('log_interval', 100)

        # Components
        self.strategy = get_strategy(branching_strategy, instance=instance, seed=self.random_seed)
        self.branching_rule = BranchingRule(instance.num_items, self.strategy, self.band, self.tolerance)
        self.relaxation = L2RelaxedFormulation(instance, solver, self.tolerance)

        # Run state
        self.phase = DriverPhase.READY
        self.state = None
        self.result = None
        self.start_time = None
        self.time_limit = None
        self.max_nodes = None
        self._node_counter = 0
        self._id_lock = threading.Lock()

        self.logger.info("=" * 100)
        self.logger.info(" BRANCH-AND-BOUND INITIALIZED ".center(100, "="))
        self.logger.info("=" * 100)
        self.logger.info(f"Instance: {instance.name} ({instance.num_items} items, "
                         f"{instance.num_knapsacks} knapsacks)")
        self.logger.info(f"LP solver: {solver.name()}")
        self.logger.info(f"Branching strategy: {self.strategy.name}")
        self.logger.info(f"Search strategy: {'Depth-First (DFS)' if search_strategy == 'dfs' else 'Best-Bound (BFS)'}")
        self.logger.info(f"Workers: {self.n_workers}")
        self.logger.info("=" * 100)

    # ========================================================================
    # SOLVE
    # ========================================================================

    def solve(self, time_limit=None, max_nodes=None):
        """
        Run the search.

        Args:
            time_limit: Wall-clock limit in seconds (None = unlimited), checked between nodes
            max_nodes: Maximum number of node relaxations (None = unlimited)

        Returns:
            BnBResult
        """
        if self.phase != DriverPhase.READY:
            raise RuntimeError("BranchAndBound.solve() can only be called once; create a new driver")

        self.phase = DriverPhase.EXPANDING
        self.start_time = time.time()
        self.time_limit = time_limit
        self.max_nodes = max_nodes

        self.state = SharedSearchState(self.search_strategy, {
            'nodes_explored': 0,
            'nodes_pruned': 0,
            'nodes_fathomed': 0,
            'nodes_branched': 0,
            'nodes_integral': 0,
            'nodes_requeued': 0,
            'lp_solves': 0,
            'packing_checks': 0,
            'incumbent_updates': 0,
            'cuts_added': 0,
            'max_depth': 0,
            'root_bound': None,
            'items_fixed_by_reduced_cost': 0,
            'time_to_first_incumbent': None,
        })

        self.logger.info("=" * 100)
        self.logger.info(" BRANCH-AND-BOUND SOLVE ".center(100, "="))
        self.logger.info("=" * 100)
        self.logger.info(f"Time limit: {time_limit}s" if time_limit is not None else "Time limit: none")
        self.logger.info(f"Max nodes: {max_nodes}" if max_nodes is not None else "Max nodes: none")

        root = BranchNode(self._next_node_id(), num_items=self.instance.num_items,
                          bound=self.instance.total_profit)

        if self.use_greedy_incumbent:
            assignment, profit = greedy_assignment(self.instance)
            self.state.try_update_incumbent(profit, assignment, node_id=None,
                                            time_elapsed=time.time() - self.start_time)
            self.logger.info(f"Greedy incumbent: {profit}")

        if self.use_reduced_cost_fixing:
            root = self._apply_reduced_cost_fixing(root)

        self.state.add_nodes([root])

        if self.n_workers > 1:
            self._solve_parallel()
        else:
            self._solve_sequential()

        self.phase = DriverPhase.DONE
        if self.state.error is not None:
            raise self.state.error

        self.result = self._build_result()
        self.phase = DriverPhase.RESULT
        self._print_final_results()
        return self.result

    def _solve_sequential(self):
        while not self._check_limits():
            node = self.state.get_next_node()
            if node is None:
                break
            requeue = False
            try:
                requeue = self._process_node(node)
            finally:
                self.state.task_done(node, requeue=requeue)

    def _solve_parallel(self):
        """
        Parallel tree exploration with worker threads sharing one SharedSearchState.
        """
        self.logger.info("=" * 100)
        self.logger.info(" STARTING WORKER THREADS ".center(100, "="))
        self.logger.info("=" * 100)

        workers = []
        threads = []
        for i in range(self.n_workers):
            worker = _NodeWorker(i, self, self.state)
            thread = threading.Thread(target=worker.run, name=f"Worker-{i}")
            workers.append(worker)
            threads.append(thread)

        for thread in threads:
            thread.start()
            self.logger.debug(f"Started {thread.name}")

        last_report_time = time.time()
        report_interval = 10.0
        while any(t.is_alive() for t in threads):
            for thread in threads:
                thread.join(timeout=0.05)
            if time.time() - last_report_time >= report_interval:
                self._log_progress()
                last_report_time = time.time()

        for worker in workers:
            self.logger.info(f"Worker-{worker.worker_id} completed ({worker.nodes_processed} nodes)")

    # ========================================================================
    # LIMITS
    # ========================================================================

    def _elapsed(self):
        return time.time() - self.start_time

    def _time_exhausted(self):
        return self.time_limit is not None and self._elapsed() >= self.time_limit

    def _solve_budget(self):
        """Seconds available to the next relaxation solve, or None if unlimited."""
        budgets = []
        if self.time_limit is not None:
            budgets.append(max(0.0, self.time_limit - self._elapsed()))
        if self.node_time_limit is not None:
            budgets.append(self.node_time_limit)
        return min(budgets) if budgets else None

    def _relative_gap(self, bound, incumbent):
        if incumbent == -math.inf:
            return math.inf
        if abs(incumbent) > 1e-10:
            return max(0.0, (bound - incumbent) / abs(incumbent))
        return max(0.0, bound - incumbent)

    def _effective_bound(self, bound):
        if self.integer_pruning and math.isfinite(bound):
            return math.floor(bound + 1e-6)
        return bound

    def _check_limits(self):
        """Request shutdown and return True if a time, node or gap limit is reached."""
        state = self.state
        if state.shutdown_requested:
            return True
        if self._time_exhausted():
            self.logger.info(f"Time limit reached: {self._elapsed():.2f}s >= {self.time_limit}s")
            state.request_shutdown('time_limit')
            return True
        if self.max_nodes is not None and state.get_stat('nodes_explored') >= self.max_nodes:
            self.logger.info(f"Node limit reached: {self.max_nodes}")
            state.request_shutdown('node_limit')
            return True
        if self.gap_tolerance > 0:
            incumbent, _ = state.get_incumbent()
            gap = self._relative_gap(self._effective_bound(state.global_bound()), incumbent)
            if gap <= self.gap_tolerance:
                self.logger.info(f"Gap tolerance reached: {gap:.4%} <= {self.gap_tolerance:.4%}")
                state.request_shutdown('gap')
                return True
        return False

    # ========================================================================
    # NODE PROCESSING
    # ========================================================================

    def _next_node_id(self):
        with self._id_lock:
            node_id = self._node_counter
            self._node_counter += 1
            return node_id

    def _process_node(self, node):
        """
        Solve one node and fathom, re-queue or branch it.

        Returns:
            bool: True if the node has to go back to the frontier (it is still open)
        """
        state = self.state
        state.increment_stat('nodes_explored')
        state.update_max_stat('max_depth', node.depth)
        explored = state.get_stat('nodes_explored')

        self.logger.debug(f"Processing {node!r}")
        self._evaluate_node(node)
        state.log_node({
            'node_id': node.node_id,
            'parent_id': node.parent_id,
            'depth': node.depth,
            'path': node.path,
            'bound': node.bound,
            'lp_objective': node.lp_objective,
            'status': node.status,
            'fathom_reason': node.fathom_reason,
            'branch_item': node.branch_item,
            'worker': threading.current_thread().name,
            'time': self._elapsed(),
        })

        if self.log_interval and explored % self.log_interval == 0:
            self._log_progress()
        return node.status == 'open'

    def _evaluate_node(self, node):
        state = self.state

        # Incumbent may have improved since the node was created
        if state.can_prune(node.bound, self.integer_pruning):
            self._fathom(node, 'bound')
            return

        solution = self.relaxation.solve(node, state.get_cuts(), self._solve_budget())
        state.increment_stat('lp_solves')
        first_solve = node.lp_objective is None

        if first_solve and node.parent is not None and node.parent.branch_item is not None:
            child_bound = -math.inf if solution.is_infeasible else (
                solution.objective if solution.is_optimal else None)
            self.strategy.observe(node.parent.branch_item, node.fixing(node.parent.branch_item),
                                  node.parent.bound, child_bound)

        if solution.is_infeasible:
            node.bound = -math.inf
            self._fathom(node, 'infeasible')
            return

        if not solution.has_values:
            if self._time_exhausted():
                # keep the node open so its bound stays part of the global bound
                node.status = 'open'
                state.request_shutdown('time_limit')
                return
            self.logger.warning(f"Relaxation of node {node.node_id} returned {solution.status.name}; "
                                f"branching without an LP solution")
            self._branch_without_solution(node)
            return

        if solution.is_optimal:
            node.lp_objective = solution.objective
            node.bound = min(node.bound, solution.objective)
            if node.is_root:
                with state.lock:
                    if state.stats.get('root_bound') is None:
                        state.stats['root_bound'] = solution.objective
                        self.logger.info(f"Root LP bound: {solution.objective:.6f}")
        node.status = 'solved'

        if state.can_prune(node.bound, self.integer_pruning):
            self._fathom(node, 'bound')
            return

        item = self.branching_rule.select_branch_item(solution, node)
        if item == NO_BRANCH_ITEM:
            self._handle_integral_selection(node, solution)
            return
        self._branch(node, item)

    def _handle_integral_selection(self, node, solution):
        """
        The relaxation is integral in t: turn the selection into an assignment or cut it off.
        """
        state = self.state
        selection = solution.selected_items()

        assignment = None
        if solution.are_assignments_integer():
            candidate = solution.to_assignment()
            if (all(candidate[j] is not None for j in selection)
                    and self.relaxation.is_assignment_feasible(candidate)):
                assignment = candidate

        if assignment is None:
            packing = find_packing(self.instance, selection, self.solver, self._solve_budget())
            state.increment_stat('packing_checks')
            if packing.is_unpackable:
                if state.add_cut(selection):
                    self.logger.info(f"Node {node.node_id}: items {selection} cannot be packed, "
                                     f"no-good cut #{len(state.get_cuts())} added")
                else:
                    self.logger.debug(f"Node {node.node_id}: cut over {selection} already in the pool")
                node.status = 'open'
                state.increment_stat('nodes_requeued')
                return
            self.logger.debug(f"Node {node.node_id}: selection packed by {packing.method}")
            assignment = packing.assignment

        value = sum(self.instance.item(j).profit for j in selection)
        state.increment_stat('nodes_integral')
        state.try_update_incumbent(value, assignment, node.node_id, time_elapsed=self._elapsed())

        if solution.is_optimal:
            self._fathom(node, 'integral')
        else:
            # the selection is feasible but the bound is not proven
            self._branch_without_solution(node)

    def _branch_without_solution(self, node):
        """Branch on the first free item; with every item fixed, evaluate the fixed selection."""
        free = node.free_items()
        if free:
            self._branch(node, free[0])
            return

        selection = node.forced_in_items()
        packing = find_packing(self.instance, selection, self.solver, self._solve_budget())
        self.state.increment_stat('packing_checks')
        if packing.is_unpackable:
            node.bound = -math.inf
            self._fathom(node, 'infeasible')
            return
        value = sum(self.instance.item(j).profit for j in selection)
        node.bound = min(node.bound, value)
        self.state.increment_stat('nodes_integral')
        self.state.try_update_incumbent(value, packing.assignment, node.node_id, time_elapsed=self._elapsed())
        self._fathom(node, 'integral')

    def _branch(self, node, item):
        out_child = node.child(self._next_node_id(), item, ItemFixing.FORCED_OUT)
        in_child = node.child(self._next_node_id(), item, ItemFixing.FORCED_IN)
        node.branch_item = item
        node.status = 'branched'
        self.state.increment_stat('nodes_branched')
        # DFS pops the last node added, so the FORCED_IN child is explored first
        self.state.add_nodes([out_child, in_child])
        self.logger.debug(f"Node {node.node_id} branched on item {item} -> "
                          f"children {out_child.node_id} (out), {in_child.node_id} (in)")

    def _fathom(self, node, reason):
        node.status = 'fathomed'
        node.fathom_reason = reason
        self.state.increment_stat('nodes_fathomed')
        if reason in ('bound', 'infeasible'):
            self.state.increment_stat('nodes_pruned')
        self.logger.debug(f"Node {node.node_id} fathomed: {reason}")

    def _apply_reduced_cost_fixing(self, root):
        """Solve the root relaxation once and fix items by reduced cost against the incumbent."""
        incumbent, _ = self.state.get_incumbent()
        if not self.solver.capabilities().supports_duals:
            self.logger.info(f"Reduced cost fixing skipped: {self.solver.name()} reports no duals")
            return root
        if incumbent == -math.inf:
            self.logger.info("Reduced cost fixing skipped: no incumbent (enable use_greedy_incumbent)")
            return root

        solution = self.relaxation.solve(root, (), self._solve_budget())
        self.state.increment_stat('lp_solves')
        if not solution.is_optimal:
            return root

        self.state.stats['root_bound'] = solution.objective
        fixings = reduced_cost_fixings(solution, incumbent, root, self.tolerance)
        if not fixings:
            return BranchNode(root.node_id, fixings=root.fixings, bound=solution.objective)
        self.state.stats['items_fixed_by_reduced_cost'] = len(fixings)
        return BranchNode(root.node_id, fixings=root.with_fixings(fixings), bound=solution.objective)

    # ========================================================================
    # RESULTS
    # ========================================================================

    def _log_progress(self):
        snapshot = self.state.get_state_snapshot()
        self.logger.info(
            f"[{self._elapsed():8.2f}s] nodes={snapshot['nodes_explored']} "
            f"pruned={snapshot['nodes_pruned']} open={snapshot['queue_size']} "
            f"incumbent={snapshot['incumbent']:.4f} bound={snapshot['global_bound']:.4f} "
            f"cuts={snapshot['cuts_added']}")

    def _build_result(self):
        state = self.state
        incumbent, assignment = state.get_incumbent()

        if state.is_finished():
            status = SearchStatus.OPTIMAL if incumbent > -math.inf else SearchStatus.INFEASIBLE
            bound = incumbent
        else:
            bound = self._effective_bound(state.global_bound())
            if incumbent > -math.inf and bound <= incumbent + 1e-9:
                status = SearchStatus.OPTIMAL
                bound = incumbent
            elif state.stop_reason == 'node_limit':
                status = SearchStatus.NODE_LIMIT
            elif state.stop_reason == 'gap':
                status = SearchStatus.FEASIBLE
            else:
                status = SearchStatus.TIME_LIMIT

        if assignment is None:
            assignment = [None] * self.instance.num_items
        item_to_knapsack = {
            self.instance.item(j).id: (None if k is None else self.instance.knapsack(k).id)
            for j, k in enumerate(assignment)
        }

        stats = dict(state.stats)
        return BnBResult(
            status=status,
            assignment=item_to_knapsack,
            objective=incumbent,
            bound=bound,
            gap=0.0 if status == SearchStatus.OPTIMAL else self._relative_gap(bound, incumbent),
            nodes_explored=stats['nodes_explored'],
            nodes_pruned=stats['nodes_pruned'],
            nodes_integral=stats['nodes_integral'],
            incumbent_updates=stats['incumbent_updates'],
            cuts_added=stats['cuts_added'],
            max_depth=stats['max_depth'],
            root_bound=stats['root_bound'],
            solve_time=self._elapsed(),
            solver_name=self.solver.name(),
            branching_strategy=self.strategy.name,
            search_strategy=self.search_strategy,
            stats=stats,
        )

    def _print_final_results(self):
        result = self.result
        log = self.logger
        log.log(PRINT_LEVEL, "")
        log.log(PRINT_LEVEL, "=" * 100)
        log.log(PRINT_LEVEL, " BRANCH-AND-BOUND RESULTS ".center(100, "="))
        log.log(PRINT_LEVEL, "=" * 100)
        log.log(PRINT_LEVEL, f"Instance:          {self.instance.name}")
        log.log(PRINT_LEVEL, f"Status:            {result.status.name}")
        log.log(PRINT_LEVEL, f"Objective:         {result.objective}")
        log.log(PRINT_LEVEL, f"Bound:             {result.bound}")
        log.log(PRINT_LEVEL, f"Gap:               {result.gap:.4%}" if math.isfinite(result.gap)
                else "Gap:               inf")
        root_bound = f"{result.root_bound:.6f}" if result.root_bound is not None else "n/a"
        log.log(PRINT_LEVEL, f"Root Bound:        {root_bound}")
        log.log(PRINT_LEVEL, f"Nodes Explored:    {result.nodes_explored}")
        log.log(PRINT_LEVEL, f"Nodes Pruned:      {result.nodes_pruned}")
        log.log(PRINT_LEVEL, f"Integral Nodes:    {result.nodes_integral}")
        log.log(PRINT_LEVEL, f"Incumbent Updates: {result.incumbent_updates}")
        log.log(PRINT_LEVEL, f"Cuts Added:        {result.cuts_added}")
        log.log(PRINT_LEVEL, f"Max Depth:         {result.max_depth}")
        log.log(PRINT_LEVEL, f"Solve Time:        {result.solve_time:.2f}s")
        log.log(PRINT_LEVEL, "=" * 100)

    def node_log_frame(self):
        """Per-node log as a pandas DataFrame (one row per processed node visit)."""
        if self.state is None:
            raise RuntimeError("No node log before solve()")
        with self.state.lock:
            records = list(self.state.node_log)
        return pd.DataFrame(records, columns=NODE_LOG_COLUMNS)

    def export_node_log(self, path):
        """Write the per-node log to CSV and return it as a DataFrame."""
        df = self.node_log_frame()
        df.to_csv(path, index=False)
        self.logger.info(f"Node log with {len(df)} rows written to {path}")
        return df


# ============================================================================
# WORKER THREAD CLASS FOR PARALLEL TREE EXPLORATION
# ============================================================================

class _NodeWorker:
    """
    Worker thread for processing nodes in parallel.

    Each worker takes nodes from the shared frontier until the search is
    finished (nothing open, nothing in flight) or a shutdown is requested.
    """

    def __init__(self, worker_id, bnb, shared_state):
        self.worker_id = worker_id
        self.bnb = bnb
        self.shared = shared_state
        self.nodes_processed = 0

    def run(self):
        """Main worker loop."""
        logger = logging.getLogger(f"{__name__}.Worker{self.worker_id}")
        logger.debug(f"Worker {self.worker_id} started")

        while not self.bnb._check_limits():
            node = self.shared.get_next_node(block=True, timeout=0.1)
            if node is None:
                break
            requeue = False
            try:
                requeue = self.bnb._process_node(node)
                self.nodes_processed += 1
            except Exception as e:
                logger.error(f"Worker {self.worker_id} error on node {node.node_id}: {e}")
                self.shared.request_shutdown('error', error=e)
                break
            finally:
                self.shared.task_done(node, requeue=requeue)

        logger.debug(f"Worker {self.worker_id} finished ({self.nodes_processed} nodes processed)")
