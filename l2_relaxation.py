"""
L2 relaxed formulation of the MKP.

    max  sum_j p_j t_j
    s.t. sum_j w_j x_ij        <= c_i             for every knapsack i
         t_j - sum_i x_ij      <= 0               for every item j (linking)
         sum_i x_ij            <= 1               for every item j (single assignment)
         sum_j w_j t_j         <= sum_i c_i       (aggregated capacity)
         sum_{j in S} t_j      <= |S| - 1         for every no-good cut S
         0 <= t_j, x_ij <= 1

A node's fixings tighten the bounds of t_j (and x_ij for items forced out).
"""

import logging
import math

from bnb_node import ItemFixing
from lp_model import LinearProgram, SolutionStatus, SolverError
from mkp_instance import InvalidInstanceError

logger = logging.getLogger(__name__)

INTEGER_TOLERANCE = 1e-6
SELECTION_TOLERANCE = 1e-5


def t_name(j):
    return f"t[{j}]"


def x_name(i, j):
    return f"x[{i},{j}]"


def is_integral_value(value, tolerance=INTEGER_TOLERANCE):
    return abs(value - round(value)) < tolerance


class L2Solution:
    """
    Per-item view of a solved L2 relaxation.

    Attributes:
        status: SolutionStatus of the underlying LP solve
        objective: LP objective value (nan when no values exist)
        tolerance: Integrality tolerance used by the predicates
    """

    def __init__(self, status, objective, t_values, x_values, t_reduced_costs=None,
                 tolerance=INTEGER_TOLERANCE, solve_time=0.0):
        self.status = status
        self.objective = objective
        self.tolerance = tolerance
        self.solve_time = solve_time
        self._t = tuple(t_values)
        self._x = tuple(tuple(row) for row in x_values)
        self._t_rc = tuple(t_reduced_costs) if t_reduced_costs else ()

    @classmethod
    def infeasible(cls, num_items, num_knapsacks, solve_time=0.0):
        return cls(SolutionStatus.INFEASIBLE, -math.inf, [0.0] * num_items,
                   [[0.0] * num_items for _ in range(num_knapsacks)], solve_time=solve_time)

    @property
    def num_items(self):
        return len(self._t)

    @property
    def num_knapsacks(self):
        return len(self._x)

    @property
    def is_optimal(self):
        return self.status == SolutionStatus.OPTIMAL

    @property
    def is_infeasible(self):
        return self.status == SolutionStatus.INFEASIBLE

    @property
    def has_values(self):
        return self.status.has_values

    def item_selection(self, j):
        return self._t[j]

    def item_selections(self):
        return list(self._t)

    def item_assignment(self, i, j):
        return self._x[i][j]

    def item_reduced_cost(self, j):
        return self._t_rc[j] if self._t_rc else 0.0

    @property
    def has_reduced_costs(self):
        return bool(self._t_rc)

    def is_item_selected(self, j):
        return abs(self._t[j] - 1.0) < SELECTION_TOLERANCE

    def is_item_selection_integer(self, j):
        return is_integral_value(self._t[j], self.tolerance)

    def are_item_selections_integer(self):
        return all(self.is_item_selection_integer(j) for j in range(self.num_items))

    def are_assignments_integer(self):
        return all(is_integral_value(v, self.tolerance) for row in self._x for v in row)

    def is_integer(self):
        return self.are_item_selections_integer() and self.are_assignments_integer()

    def selected_items(self):
        return [j for j in range(self.num_items) if self.is_item_selected(j)]

    def to_assignment(self):
        """
        Read an item -> knapsack assignment off an integral solution.

        Only selected items are assigned; an item whose x values point at more
        than one knapsack keeps the first.

        Returns:
            list: knapsack index per item, or None for unassigned items

        Raises:
            ValueError: if t or x is fractional
        """
        if not self.is_integer():
            raise ValueError(f"Cannot read an assignment off a fractional solution "
                             f"({self.first_fractional_variable()})")
        assignment = [None] * self.num_items
        for j in self.selected_items():
            for i in range(self.num_knapsacks):
                if abs(self.item_assignment(i, j) - 1.0) < SELECTION_TOLERANCE:
                    assignment[j] = i
                    break
        return assignment

    def first_fractional_variable(self):
        """Description of the first fractional variable, or None if all are integral."""
        for j, tj in enumerate(self._t):
            if not is_integral_value(tj, self.tolerance):
                return f"t_{j} = {tj:.6f}"
        for i, row in enumerate(self._x):
            for j, xij in enumerate(row):
                if not is_integral_value(xij, self.tolerance):
                    return f"x_{i}_{j} = {xij:.6f}"
        return None

    def __repr__(self):
        return (f"L2Solution(status={self.status.name}, obj={self.objective:.4f}, "
                f"selected={sum(self._t):.2f}/{self.num_items}, "
                f"integer_t={self.are_item_selections_integer()}, "
                f"integer_x={self.are_assignments_integer()})")


class L2RelaxedFormulation:
    """
    Builds and solves the L2 relaxation for one search node.

    The solver is injected; a fresh LinearProgram is built for every call and
    dropped once the L2Solution has been extracted.
    """

    def __init__(self, instance, solver, tolerance=INTEGER_TOLERANCE):
        if not instance.is_valid():
            raise InvalidInstanceError(f"Instance '{instance.name}' is invalid: no item fits in any knapsack")
        self.instance = instance
        self.solver = solver
        self.tolerance = tolerance

    def build_program(self, node=None, cuts=()):
        """
        Build the L2 linear program for a node.

        Args:
            node: BranchNode whose fixings tighten the t_j bounds (None = root, nothing fixed)
            cuts: Iterable of no-good item sets; each adds sum_{j in S} t_j <= |S| - 1

        Returns:
            tuple: (LinearProgram, t_vars, x_vars) with x_vars[i][j]
        """
        inst = self.instance
        n, m = inst.num_items, inst.num_knapsacks
        label = 'root' if node is None else f"node{node.node_id}"
        lp = LinearProgram(f"L2_{inst.name}_{label}", maximize=True)

        t_vars = []
        for j in range(n):
            fixing = ItemFixing.FREE if node is None else node.fixing(j)
            if fixing == ItemFixing.FORCED_IN:
                lb, ub = 1.0, 1.0
            elif fixing == ItemFixing.FORCED_OUT:
                lb, ub = 0.0, 0.0
            else:
                lb, ub = 0.0, 1.0
            t_vars.append(lp.add_variable(t_name(j), lb, ub))

        x_vars = []
        for i, ks in enumerate(inst.knapsacks):
            row = []
            for j, item in enumerate(inst.items):
                forced_out = node is not None and node.fixing(j) == ItemFixing.FORCED_OUT
                ub = 0.0 if forced_out or item.weight > ks.capacity else 1.0
                row.append(lp.add_variable(x_name(i, j), 0.0, ub))
            x_vars.append(row)

        lp.set_objective({t_vars[j]: item.profit for j, item in enumerate(inst.items)})

        for i, ks in enumerate(inst.knapsacks):
            lp.add_less_or_equal(f"capacity({i})",
                                 {x_vars[i][j]: item.weight for j, item in enumerate(inst.items)},
                                 ks.capacity)
        for j in range(n):
            linking = {t_vars[j]: 1.0}
            for i in range(m):
                linking[x_vars[i][j]] = -1.0
            lp.add_less_or_equal(f"linking({j})", linking, 0.0)
            lp.add_less_or_equal(f"assign_once({j})", {x_vars[i][j]: 1.0 for i in range(m)}, 1.0)
        lp.add_less_or_equal("aggregated_capacity",
                             {t_vars[j]: item.weight for j, item in enumerate(inst.items)},
                             inst.total_capacity)

        for k, cut in enumerate(cuts):
            items = sorted(cut)
            lp.add_less_or_equal(f"nogood({k})", {t_vars[j]: 1.0 for j in items}, len(items) - 1)

        return lp, t_vars, x_vars

    def solve(self, node=None, cuts=(), time_limit=None):
        """
        Solve the relaxation of a node.

        Args:
            node: BranchNode (None = root without fixings)
            cuts: No-good item sets currently in the pool
            time_limit: Seconds available to the solver (None = unlimited)

        Returns:
            L2Solution: INFEASIBLE solutions carry objective -inf
        """
        lp, t_vars, x_vars = self.build_program(node, cuts)
        supports_limit = self.solver.capabilities().supports_time_limit
        lp_solution = self.solver.solve(lp, time_limit if supports_limit else None)

        n, m = self.instance.num_items, self.instance.num_knapsacks
        status = lp_solution.status
        if status == SolutionStatus.INFEASIBLE:
            return L2Solution.infeasible(n, m, lp_solution.solve_time)
        if status == SolutionStatus.UNBOUNDED:
            # all variables are boxed, so this can only be a backend defect
            raise SolverError(f"{self.solver.name()} reported an unbounded L2 relaxation for '{lp.name}'")
        if not status.has_values:
            logger.debug(f"L2 solve of {lp.name} returned {status.name}: {lp_solution.message}")
            return L2Solution(status, math.nan, [0.0] * n, [[0.0] * n for _ in range(m)],
                              tolerance=self.tolerance, solve_time=lp_solution.solve_time)

        t_values = [_clip(lp_solution.primal_value(v)) for v in t_vars]
        x_values = [[_clip(lp_solution.primal_value(v)) for v in row] for row in x_vars]
        t_rc = None
        if lp_solution.reduced_costs:
            t_rc = [lp_solution.reduced_cost(v) for v in t_vars]
        return L2Solution(status, lp_solution.objective_value, t_values, x_values, t_rc,
                          tolerance=self.tolerance, solve_time=lp_solution.solve_time)

    def objective_value(self, assignment):
        """Total profit of an item -> knapsack assignment (None = unassigned)."""
        return sum(self.instance.item(j).profit for j, k in enumerate(assignment) if k is not None)

    def is_assignment_feasible(self, assignment, tolerance=1e-9):
        """Check every knapsack's capacity for an item -> knapsack assignment."""
        load = [0.0] * self.instance.num_knapsacks
        for j, k in enumerate(assignment):
            if k is not None:
                load[k] += self.instance.item(j).weight
        return all(load[i] <= ks.capacity + tolerance for i, ks in enumerate(self.instance.knapsacks))

    def __repr__(self):
        return (f"L2RelaxedFormulation(n={self.instance.num_items}, m={self.instance.num_knapsacks}, "
                f"total_cap={self.instance.total_capacity}, solver={self.solver.name()})")


def _clip(value):
    """Clamp solver noise such as -1e-12 or 1.0000000001 into [0, 1]."""
    return min(1.0, max(0.0, value))
