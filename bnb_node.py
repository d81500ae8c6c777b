from enum import Enum


class ItemFixing(Enum):
    FREE = 'free'
    FORCED_IN = 'in'
    FORCED_OUT = 'out'


class BranchNode:
    """
    Represents a node in the Branch-and-Bound search tree.

    This class only stores state; it never solves anything. Each node carries:
    - Position in tree (ID, parent, depth, path)
    - Fixing state of every item (FREE / FORCED_IN / FORCED_OUT)
    - Bound inherited from the parent, replaced by its own LP bound once solved
    - Status and fathom reason

    Attributes:
        node_id: Unique node ID
        parent: Parent BranchNode (None for root)
        depth: Depth in search tree (root = 0)
        path: Path encoding ('l' = item forced out, 'r' = item forced in)
        bound: Upper bound on the objective reachable from this node
        status: 'open', 'solved', 'branched' or 'fathomed' (integral nodes end as
            'fathomed' with fathom_reason 'integral')
        fathom_reason: 'integral', 'bound', 'infeasible' (if fathomed)
        branch_item: Item this node was split on (set when branched)
    """

    def __init__(self, node_id, num_items=None, fixings=None, parent=None, bound=float('inf'), path=''):
        if fixings is None:
            if num_items is None:
                raise ValueError("Either num_items or fixings is required")
            fixings = (ItemFixing.FREE,) * num_items
        self.node_id = node_id
        self.parent = parent
        self.depth = 0 if parent is None else parent.depth + 1
        self.path = path
        self._fixings = tuple(fixings)

        self.bound = bound
        self.status = 'open'
        self.fathom_reason = None
        self.branch_item = None
        self.lp_objective = None

    @property
    def parent_id(self):
        return None if self.parent is None else self.parent.node_id

    @property
    def is_root(self):
        return self.parent is None

    @property
    def num_items(self):
        return len(self._fixings)

    @property
    def fixings(self):
        return self._fixings

    def fixing(self, item):
        return self._fixings[item]

    def is_item_fixed(self, item):
        return self._fixings[item] != ItemFixing.FREE

    def forced_in_items(self):
        return [j for j, f in enumerate(self._fixings) if f == ItemFixing.FORCED_IN]

    def forced_out_items(self):
        return [j for j, f in enumerate(self._fixings) if f == ItemFixing.FORCED_OUT]

    def free_items(self):
        return [j for j, f in enumerate(self._fixings) if f == ItemFixing.FREE]

    def with_fixings(self, new_fixings):
        """
        Return the fixing tuple extended by new_fixings {item: ItemFixing}.

        Raises:
            ValueError: if an item is already fixed to the opposite state
        """
        fixings = list(self._fixings)
        for item, value in new_fixings.items():
            if value == ItemFixing.FREE:
                raise ValueError(f"Cannot fix item {item} to FREE")
            current = fixings[item]
            if current != ItemFixing.FREE and current != value:
                raise ValueError(f"Item {item} already fixed to {current.name}; cannot fix to {value.name}")
            fixings[item] = value
        return tuple(fixings)

    def child(self, node_id, item, value):
        """
        Create a child node with one additional item fixing.

        Args:
            node_id: ID of the new node
            item: Item index to fix
            value: ItemFixing.FORCED_IN or ItemFixing.FORCED_OUT

        Returns:
            BranchNode: child inheriting this node's bound
        """
        suffix = 'r' if value == ItemFixing.FORCED_IN else 'l'
        return BranchNode(node_id, fixings=self.with_fixings({item: value}), parent=self,
                          bound=self.bound, path=self.path + suffix)

    def is_consistent_extension_of(self, other):
        """True if every item fixed in other is fixed the same way here."""
        if other.num_items != self.num_items:
            return False
        return all(theirs == ItemFixing.FREE or theirs == mine
                   for mine, theirs in zip(self._fixings, other._fixings))

    def __str__(self):
        """Detailed string representation."""
        info = [
            f"Node {self.node_id}:",
            f"  Depth: {self.depth}",
            f"  Parent: {self.parent_id}",
            f"  Status: {self.status}",
            f"  Bound: {self.bound:.6f}",
            f"  Forced in: {self.forced_in_items()}",
            f"  Forced out: {self.forced_out_items()}",
        ]
        if self.fathom_reason:
            info.append(f"  Fathom Reason: {self.fathom_reason}")
        return "\n".join(info)

    def __repr__(self):
        """String representation for debugging."""
        path_str = f"'{self.path}'" if self.path else "'root'"
        return (f"Node(id={self.node_id}, path={path_str}, depth={self.depth}, "
                f"status={self.status}, bound={self.bound:.2f})")
