"""
Problem description for the Multiple Knapsack Problem (MKP).

An instance is built once (usually by Utils.instance_io) and is read-only
afterwards. Every solver component receives the same Instance object.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple


class InvalidInstanceError(ValueError):
    """Raised when an instance (or an instance file) cannot be solved as given."""


@dataclass(frozen=True)
class Item:
    """
    An item that can be assigned to at most one knapsack.

    Attributes:
        id: Item index (position in the instance)
        weight: Capacity consumption, strictly positive
        profit: Objective contribution if assigned, strictly positive
    """
    id: int
    weight: float
    profit: float

    def __post_init__(self):
        if self.weight <= 0:
            raise ValueError(f"Item[{self.id}] weight must be positive, got {self.weight}")
        if self.profit <= 0:
            raise ValueError(f"Item[{self.id}] profit must be positive, got {self.profit}")

    @property
    def profit_density(self) -> float:
        return self.profit / self.weight


@dataclass(frozen=True)
class Knapsack:
    """A knapsack with a fixed, strictly positive capacity."""
    id: int
    capacity: float

    def __post_init__(self):
        if self.capacity <= 0:
            raise ValueError(f"Knapsack[{self.id}] capacity must be positive, got {self.capacity}")


class Instance:
    """
    Immutable MKP instance: ordered items, ordered knapsacks and a name.

    Items and knapsacks are addressed by their position (0-based), which is also
    how the L2 formulation names its variables (t[j], x[i,j]).
    """

    def __init__(self, items: Sequence[Item], knapsacks: Sequence[Knapsack], name: str = 'unnamed'):
        if not items:
            raise InvalidInstanceError("Instance needs at least one item")
        if not knapsacks:
            raise InvalidInstanceError("Instance needs at least one knapsack")
        self._items: Tuple[Item, ...] = tuple(items)
        self._knapsacks: Tuple[Knapsack, ...] = tuple(knapsacks)
        self._name = name or 'unnamed'

    @classmethod
    def from_lists(cls, capacities, weights, profits, name='unnamed'):
        """
        Build an instance from plain number lists.

        Args:
            capacities: Knapsack capacities (length m)
            weights: Item weights (length n)
            profits: Item profits (length n)
            name: Instance name

        Returns:
            Instance
        """
        if len(weights) != len(profits):
            raise InvalidInstanceError(
                f"Got {len(weights)} weights but {len(profits)} profits")
        items = [Item(j, w, p) for j, (w, p) in enumerate(zip(weights, profits))]
        knapsacks = [Knapsack(i, c) for i, c in enumerate(capacities)]
        return cls(items, knapsacks, name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def items(self) -> Tuple[Item, ...]:
        return self._items

    @property
    def knapsacks(self) -> Tuple[Knapsack, ...]:
        return self._knapsacks

    @property
    def num_items(self) -> int:
        return len(self._items)

    @property
    def num_knapsacks(self) -> int:
        return len(self._knapsacks)

    def item(self, j: int) -> Item:
        return self._items[j]

    def knapsack(self, i: int) -> Knapsack:
        return self._knapsacks[i]

    @property
    def total_capacity(self) -> float:
        return sum(k.capacity for k in self._knapsacks)

    @property
    def total_weight(self) -> float:
        return sum(item.weight for item in self._items)

    @property
    def total_profit(self) -> float:
        return sum(item.profit for item in self._items)

    @property
    def has_integral_profits(self) -> bool:
        """True if every profit is a whole number (objective values are then integral)."""
        return all(float(item.profit).is_integer() for item in self._items)

    def is_valid(self) -> bool:
        """
        Check that at least one item fits into at least one knapsack.

        Returns:
            bool: False if the lightest item is heavier than the largest knapsack
        """
        min_weight = min(item.weight for item in self._items)
        max_capacity = max(k.capacity for k in self._knapsacks)
        return min_weight <= max_capacity

    def __eq__(self, other):
        if not isinstance(other, Instance):
            return NotImplemented
        return self._items == other._items and self._knapsacks == other._knapsacks

    def __hash__(self):
        return hash((self._items, self._knapsacks))

    def __repr__(self):
        return (f"Instance(name='{self._name}', n={self.num_items}, m={self.num_knapsacks}, "
                f"total_capacity={self.total_capacity})")

    def __str__(self):
        info = [
            f"MKP Instance '{self._name}':",
            f"  Items: {self.num_items}",
            f"  Knapsacks: {self.num_knapsacks}",
            f"  Total Capacity: {self.total_capacity}",
            f"  Total Weight: {self.total_weight}",
            f"  Total Profit: {self.total_profit}",
        ]
        return "\n".join(info)
