"""
Exact packing check for an item selection.

When the L2 relaxation is integral in t but not in x, the selected items
still have to be distributed over the knapsacks. Two exact checks:

- pack_with_solver: feasibility MIP (binary y_ij) on a MIP-capable backend
- pack_by_backtracking: depth-first search over knapsacks, heaviest item first
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from lp_model import LinearProgram, SolutionStatus

logger = logging.getLogger(__name__)

PACKABLE = 'packable'
UNPACKABLE = 'unpackable'
UNKNOWN = 'unknown'


@dataclass
class PackingResult:
    """
    Outcome of a packing check.

    Attributes:
        status: 'packable', 'unpackable' or 'unknown'
        assignment: Knapsack index per item (None for unselected items) if packable
        method: 'trivial', 'mip' or 'backtracking'
    """
    status: str
    assignment: Optional[List[Optional[int]]] = None
    method: str = ''

    @property
    def is_packable(self):
        return self.status == PACKABLE

    @property
    def is_unpackable(self):
        return self.status == UNPACKABLE


def _trivial_check(instance, items):
    """Cheap necessary conditions; returns a PackingResult or None if undecided."""
    if not items:
        return PackingResult(PACKABLE, [None] * instance.num_items, 'trivial')
    max_capacity = max(k.capacity for k in instance.knapsacks)
    if any(instance.item(j).weight > max_capacity for j in items):
        return PackingResult(UNPACKABLE, method='trivial')
    if sum(instance.item(j).weight for j in items) > instance.total_capacity:
        return PackingResult(UNPACKABLE, method='trivial')
    return None


def build_packing_program(instance, items):
    """
    Feasibility MIP: every selected item in exactly one knapsack it fits into.

    Returns:
        tuple: (LinearProgram, {(i, j): Variable})
    """
    lp = LinearProgram(f"packing_{instance.name}", maximize=True)
    y = {}
    for j in items:
        for i, ks in enumerate(instance.knapsacks):
            if instance.item(j).weight <= ks.capacity:
                y[i, j] = lp.add_binary_variable(f"y[{i},{j}]")

    for j in items:
        lp.add_equal(f"pack({j})", {y[i, j]: 1.0 for i in range(instance.num_knapsacks) if (i, j) in y}, 1.0)
    for i, ks in enumerate(instance.knapsacks):
        row = {y[i, j]: instance.item(j).weight for j in items if (i, j) in y}
        if row:
            lp.add_less_or_equal(f"capacity({i})", row, ks.capacity)
    return lp, y


def pack_with_solver(instance, items, solver, time_limit=None):
    """
    Decide packability with the feasibility MIP.

    Returns:
        PackingResult: 'unknown' if the solver stopped without an answer
    """
    items = sorted(items)
    trivial = _trivial_check(instance, items)
    if trivial is not None:
        return trivial

    lp, y = build_packing_program(instance, items)
    solution = solver.solve(lp, time_limit)
    if solution.status == SolutionStatus.INFEASIBLE:
        return PackingResult(UNPACKABLE, method='mip')
    if not solution.status.has_values:
        logger.debug(f"Packing MIP for {len(items)} items ended with {solution.status.name}")
        return PackingResult(UNKNOWN, method='mip')

    assignment = [None] * instance.num_items
    for (i, j), var in y.items():
        if solution.primal_value(var) > 0.5:
            assignment[j] = i
    return PackingResult(PACKABLE, assignment, 'mip')


def pack_by_backtracking(instance, items):
    """
    Decide packability by exhaustive search.

    Items are placed heaviest first; knapsacks with identical remaining
    capacity are tried only once per item.

    Returns:
        PackingResult: never 'unknown'
    """
    items = sorted(items)
    trivial = _trivial_check(instance, items)
    if trivial is not None:
        return trivial

    order = sorted(items, key=lambda j: (-instance.item(j).weight, j))
    weights = [instance.item(j).weight for j in order]
    remaining = [k.capacity for k in instance.knapsacks]
    # suffix sums prune branches whose leftover weight exceeds the leftover capacity
    suffix = [0] * (len(order) + 1)
    for k in range(len(order) - 1, -1, -1):
        suffix[k] = suffix[k + 1] + weights[k]
    placed = [None] * len(order)

    def place(k):
        if k == len(order):
            return True
        if suffix[k] > sum(remaining):
            return False
        tried = set()
        for i in range(len(remaining)):
            if remaining[i] < weights[k] or remaining[i] in tried:
                continue
            tried.add(remaining[i])
            remaining[i] -= weights[k]
            placed[k] = i
            if place(k + 1):
                return True
            remaining[i] += weights[k]
        return False

    if not place(0):
        return PackingResult(UNPACKABLE, method='backtracking')
    assignment = [None] * instance.num_items
    for k, j in enumerate(order):
        assignment[j] = placed[k]
    return PackingResult(PACKABLE, assignment, 'backtracking')


def find_packing(instance, items, solver=None, time_limit=None):
    """
    Exact packing check: the MIP when the solver supports it, backtracking otherwise
    (or when the MIP stops without an answer).

    Returns:
        PackingResult with status 'packable' or 'unpackable'
    """
    if solver is not None and solver.capabilities().supports_mip:
        result = pack_with_solver(instance, items, solver, time_limit)
        if result.status != UNKNOWN:
            return result
        logger.info(f"Packing MIP inconclusive for {len(items)} items, falling back to backtracking")
    return pack_by_backtracking(instance, items)
