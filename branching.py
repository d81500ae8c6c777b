"""
Branching item selection for the MKP Branch-and-Bound.

The rule narrows the unfixed items down to candidates (fractional band first,
any fractional t_j second) and lets a strategy pick one of them. Every
strategy is deterministic for a fixed input (RANDOM for a fixed seed).
"""

import logging
import random
import threading
from abc import ABC, abstractmethod

from bnb_node import ItemFixing

logger = logging.getLogger(__name__)

NO_BRANCH_ITEM = -1


class BranchingStrategy(ABC):
    """Picks one item out of a non-empty candidate list."""

    name = 'base'

    @abstractmethod
    def select(self, candidates, l2_solution, node):
        """
        Args:
            candidates: Non-empty list of item indices, ascending
            l2_solution: L2Solution of the node
            node: BranchNode being branched

        Returns:
            int: chosen item index (one of candidates)
        """

    def observe(self, item, fixing, parent_bound, child_bound):
        """Hook called after a child created by branching on item has been solved."""

    def __repr__(self):
        return f"{type(self).__name__}()"


class MostFractionalStrategy(BranchingStrategy):
    name = 'most_fractional'

    def select(self, candidates, l2_solution, node):
        # min over (distance to 0.5, index): ties go to the lowest index
        return min(candidates, key=lambda j: (abs(l2_solution.item_selection(j) - 0.5), j))


class FirstFractionalStrategy(BranchingStrategy):
    name = 'first_fractional'

    def select(self, candidates, l2_solution, node):
        return min(candidates)


class ProfitDensityStrategy(BranchingStrategy):
    """Branch on the candidate with the highest profit/weight ratio."""

    name = 'profit_density'

    def __init__(self, instance):
        if instance is None:
            raise ValueError("profit_density branching needs the instance")
        self.densities = [item.profit_density for item in instance.items]

    def select(self, candidates, l2_solution, node):
        return min(candidates, key=lambda j: (-self.densities[j], j))


class PseudoCostStrategy(BranchingStrategy):
    """
    Pseudo-cost branching.

    Each solved child reports the bound degradation per unit of change in t_j
    of the item it was created for. An item's score is the product of its
    average down (FORCED_OUT) and up (FORCED_IN) degradation estimates, each
    weighted by the distance t_j has to move in that direction.
    """

    name = 'pseudo_cost'

    def __init__(self, epsilon=1e-6):
        self.epsilon = epsilon
        self._lock = threading.Lock()
        self._down = {}  # item -> [sum, count]
        self._up = {}

    def observe(self, item, fixing, parent_bound, child_bound):
        if item is None or item < 0:
            return
        if parent_bound is None or child_bound is None:
            return
        if parent_bound in (float('inf'), float('-inf')):
            return
        # an infeasible child counts as a degradation of the whole parent bound
        if child_bound == float('-inf'):
            degradation = abs(parent_bound)
        else:
            degradation = max(0.0, parent_bound - child_bound)
        table = self._up if fixing == ItemFixing.FORCED_IN else self._down
        with self._lock:
            entry = table.setdefault(item, [0.0, 0])
            entry[0] += degradation
            entry[1] += 1

    def _estimate(self, table, item):
        entry = table.get(item)
        if entry is not None and entry[1] > 0:
            return entry[0] / entry[1]
        known = [s / c for s, c in table.values() if c > 0]
        if known:
            return sum(known) / len(known)
        return 1.0

    def pseudo_costs(self, item):
        """(down, up) estimates for an item."""
        with self._lock:
            return self._estimate(self._down, item), self._estimate(self._up, item)

    def select(self, candidates, l2_solution, node):
        best_item = None
        best_score = None
        for j in candidates:
            tj = l2_solution.item_selection(j)
            down, up = self.pseudo_costs(j)
            score = max(down * tj, self.epsilon) * max(up * (1.0 - tj), self.epsilon)
            if best_score is None or score > best_score + 1e-12:
                best_item, best_score = j, score
        return best_item


class RandomStrategy(BranchingStrategy):
    """Uniform choice driven by a seeded generator."""

    name = 'random'

    def __init__(self, seed=0):
        self.seed = seed
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def select(self, candidates, l2_solution, node):
        with self._lock:
            return candidates[self._rng.randrange(len(candidates))]

    def __repr__(self):
        return f"RandomStrategy(seed={self.seed})"


_STRATEGIES = {
    MostFractionalStrategy.name: MostFractionalStrategy,
    FirstFractionalStrategy.name: FirstFractionalStrategy,
    ProfitDensityStrategy.name: ProfitDensityStrategy,
    PseudoCostStrategy.name: PseudoCostStrategy,
    RandomStrategy.name: RandomStrategy,
}


def available_strategies():
    return sorted(_STRATEGIES)


def get_strategy(name, instance=None, seed=0):
    """
    Resolve a strategy by name.

    Args:
        name: Strategy name (case-insensitive), or a BranchingStrategy instance
        instance: MKP instance (required for 'profit_density')
        seed: Seed for 'random'

    Returns:
        BranchingStrategy

    Raises:
        ValueError: for unknown names
    """
    if isinstance(name, BranchingStrategy):
        return name
    key = str(name).lower()
    if key not in _STRATEGIES:
        raise ValueError(f"Unknown branching strategy: {name} (available: {available_strategies()})")
    if key == ProfitDensityStrategy.name:
        return ProfitDensityStrategy(instance)
    if key == RandomStrategy.name:
        return RandomStrategy(seed)
    return _STRATEGIES[key]()


class BranchingRule:
    """
    Chooses the item a node is split on.

    Attributes:
        num_items: Number of items in the instance
        strategy: BranchingStrategy picking among candidates
        band: (low, high), inclusive range of preferred t_j values
        tolerance: Integrality tolerance
    """

    def __init__(self, num_items, strategy=None, band=(0.1, 0.9), tolerance=1e-6):
        low, high = band
        if not 0.0 <= low <= high <= 1.0:
            raise ValueError(f"Invalid fractional band {band}")
        self.num_items = num_items
        self.strategy = strategy if strategy is not None else MostFractionalStrategy()
        self.band = (low, high)
        self.tolerance = tolerance

    def _is_fractional(self, value):
        return self.tolerance <= value <= 1.0 - self.tolerance

    def candidates(self, l2_solution, node=None):
        """
        Candidate items for branching.

        Returns:
            tuple: (candidates, source) where source is 'band', 'fractional' or None
        """
        low, high = self.band
        unfixed = [j for j in range(self.num_items)
                   if node is None or not node.is_item_fixed(j)]

        fractional = [j for j in unfixed if self._is_fractional(l2_solution.item_selection(j))]
        in_band = [j for j in fractional if low <= l2_solution.item_selection(j) <= high]
        if in_band:
            return in_band, 'band'
        if fractional:
            return fractional, 'fractional'
        return [], None

    def select_branch_item(self, l2_solution, node=None):
        """
        Select the item to branch on.

        Args:
            l2_solution: L2Solution of the node
            node: BranchNode (fixed items are never candidates)

        Returns:
            int: item index, or NO_BRANCH_ITEM if every unfixed t_j is integral
        """
        candidates, source = self.candidates(l2_solution, node)
        if not candidates:
            return NO_BRANCH_ITEM
        item = self.strategy.select(candidates, l2_solution, node)
        logger.debug(f"Branch item {item} (t={l2_solution.item_selection(item):.4f}) "
                     f"chosen by {self.strategy.name} from {len(candidates)} {source} candidates")
        return item

    def __repr__(self):
        return f"BranchingRule(strategy={self.strategy.name}, band={self.band}, tol={self.tolerance})"
