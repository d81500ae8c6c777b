"""
Thread-Safe Shared State for the MKP Branch-and-Bound search.

Holds everything node processors share: the open-node frontier, the nodes
currently being processed, the incumbent, the no-good cut pool and the
statistics. The sequential driver uses the same object with one consumer.
"""

import heapq
import logging
import math
import threading
from typing import Any, Dict, List, Optional

INCUMBENT_TOLERANCE = 1e-9


class SharedSearchState:
    """
    Manages all shared search state behind a single re-entrant lock.

    Attributes:
        lock: Re-entrant lock guarding every field below
        work_changed: Condition on lock, notified whenever the frontier, the
            in-flight set or the shutdown flag changes
        incumbent: Best objective found so far (-inf if none)
        incumbent_assignment: Item -> knapsack list for the incumbent
        search_strategy: 'dfs' (stack) or 'bfs' (best bound first)
        cuts: No-good item sets (frozensets), in insertion order
        stats: Statistics dictionary
        shutdown_requested: Flag to signal workers to stop
        error: First exception raised by a worker, re-raised by the driver
    """

    def __init__(self, search_strategy: str, initial_stats: Optional[dict] = None):
        if search_strategy not in ('dfs', 'bfs'):
            raise ValueError(f"Unknown search strategy: {search_strategy} (use 'dfs' or 'bfs')")
        self.lock = threading.RLock()
        self.work_changed = threading.Condition(self.lock)
        self.logger = logging.getLogger(__name__)

        self.incumbent = -math.inf
        self.incumbent_assignment = None
        self.incumbent_node_id = None

        self.search_strategy = search_strategy
        self._stack: List[Any] = []
        self._heap: List[tuple] = []
        self._in_flight: Dict[int, Any] = {}

        self.cuts: List[frozenset] = []
        self._cut_set = set()

        self.stats = dict(initial_stats or {})
        self.node_log: List[dict] = []

        self.shutdown_requested = False
        self.stop_reason = None
        self.error = None

    # ------------------------------------------------------------------ frontier

    def add_nodes(self, nodes) -> None:
        """
        Add nodes to the frontier.

        For DFS the last node added is explored first, so callers pass the
        FORCED_OUT child before the FORCED_IN child.
        """
        with self.work_changed:
            for node in nodes:
                self._push(node)
            self.logger.debug(f"[{self.search_strategy.upper()}] Added {len(nodes)} nodes to frontier")
            self.work_changed.notify_all()

    def _push(self, node):
        if self.search_strategy == 'bfs':
            # heapq is a min-heap: highest bound first, ties to lowest node id
            heapq.heappush(self._heap, (-node.bound, node.node_id, node))
        else:
            self._stack.append(node)

    def _pop(self):
        if self.search_strategy == 'bfs':
            return heapq.heappop(self._heap)[2]
        return self._stack.pop()

    def _frontier_size(self) -> int:
        return len(self._heap) if self.search_strategy == 'bfs' else len(self._stack)

    def get_next_node(self, block: bool = False, timeout: Optional[float] = None):
        """
        Take the next node and mark it in flight.

        Args:
            block: Wait while the frontier is empty but other nodes are still
                in flight (they may add children)
            timeout: Maximum seconds to wait per wake-up when blocking

        Returns:
            BranchNode, or None when the search is finished or shut down
        """
        with self.work_changed:
            while True:
                if self.shutdown_requested:
                    return None
                if self._frontier_size() > 0:
                    node = self._pop()
                    self._in_flight[node.node_id] = node
                    return node
                if not block or not self._in_flight:
                    return None
                self.work_changed.wait(timeout)

    def task_done(self, node, requeue: bool = False) -> None:
        """
        Mark a node taken by get_next_node as no longer in flight.

        With requeue the node goes back to the frontier in the same locked step,
        so no other consumer can take it while it is still marked in flight.
        """
        with self.work_changed:
            self._in_flight.pop(node.node_id, None)
            if requeue:
                self._push(node)
            self.work_changed.notify_all()

    def is_finished(self) -> bool:
        """True when no node is open and none is being processed."""
        with self.lock:
            return self._frontier_size() == 0 and not self._in_flight

    def open_nodes(self) -> list:
        """Snapshot of the frontier plus the nodes in flight."""
        with self.lock:
            frontier = [entry[2] for entry in self._heap] if self.search_strategy == 'bfs' else list(self._stack)
            return frontier + list(self._in_flight.values())

    def global_bound(self) -> float:
        """Max of the incumbent and every open or in-flight node bound."""
        with self.lock:
            bounds = [node.bound for node in self.open_nodes()]
            return max([self.incumbent] + bounds)

    # ----------------------------------------------------------------- incumbent

    def try_update_incumbent(self, value: float, assignment, node_id, time_elapsed: float = None) -> bool:
        """
        Replace the incumbent iff value is strictly better.

        Returns:
            True if the incumbent was updated
        """
        with self.lock:
            if value > self.incumbent + INCUMBENT_TOLERANCE:
                old_incumbent = self.incumbent
                self.incumbent = value
                self.incumbent_assignment = list(assignment)
                self.incumbent_node_id = node_id
                self.stats['incumbent_updates'] = self.stats.get('incumbent_updates', 0) + 1
                self.stats['incumbent_node_id'] = node_id
                if time_elapsed is not None and self.stats.get('time_to_first_incumbent') is None:
                    self.stats['time_to_first_incumbent'] = time_elapsed
                self.logger.info(f"NEW INCUMBENT: {value:.6f} (previous: {old_incumbent:.6f}, node: {node_id})")
                return True
            return False

    def get_incumbent(self):
        """(value, assignment copy) read atomically."""
        with self.lock:
            assignment = None if self.incumbent_assignment is None else list(self.incumbent_assignment)
            return self.incumbent, assignment

    def can_prune(self, bound: float, integer_objective: bool = False) -> bool:
        """
        True if a node with this bound cannot contain a strictly better solution.

        With integer_objective the bound is rounded down first.
        """
        if bound == -math.inf:
            return True
        if integer_objective and bound != math.inf:
            bound = math.floor(bound + 1e-6)
        with self.lock:
            return bound <= self.incumbent + INCUMBENT_TOLERANCE

    # ---------------------------------------------------------------------- cuts

    def add_cut(self, items) -> bool:
        """
        Add a no-good cut over an item set.

        Returns:
            True if the set was new
        """
        cut = frozenset(items)
        with self.lock:
            if cut in self._cut_set:
                return False
            self._cut_set.add(cut)
            self.cuts.append(cut)
            self.stats['cuts_added'] = self.stats.get('cuts_added', 0) + 1
            self.logger.debug(f"No-good cut #{len(self.cuts)} over items {sorted(cut)}")
            return True

    def get_cuts(self) -> tuple:
        with self.lock:
            return tuple(self.cuts)

    # ------------------------------------------------------------------ shutdown

    def request_shutdown(self, reason: str = None, error: BaseException = None) -> None:
        """Signal all workers to stop after their current node."""
        with self.work_changed:
            if not self.shutdown_requested:
                self.stop_reason = reason
                self.logger.info(f"Shutdown requested ({reason})")
            if error is not None and self.error is None:
                self.error = error
            self.shutdown_requested = True
            self.work_changed.notify_all()

    # --------------------------------------------------------------- statistics

    def increment_stat(self, stat_name: str, amount: int = 1) -> None:
        with self.lock:
            self.stats[stat_name] = self.stats.get(stat_name, 0) + amount

    def update_max_stat(self, stat_name: str, value) -> None:
        with self.lock:
            if value > self.stats.get(stat_name, value - 1):
                self.stats[stat_name] = value

    def get_stat(self, stat_name: str, default=0):
        with self.lock:
            return self.stats.get(stat_name, default)

    def log_node(self, record: dict) -> None:
        with self.lock:
            self.node_log.append(record)

    def get_state_snapshot(self) -> Dict[str, Any]:
        """
        Get a snapshot of the current state.

        Returns:
            Dictionary with incumbent, global bound, queue size and node counters
        """
        with self.lock:
            return {
                'incumbent': self.incumbent,
                'global_bound': self.global_bound(),
                'queue_size': self._frontier_size(),
                'in_flight': len(self._in_flight),
                'nodes_explored': self.stats.get('nodes_explored', 0),
                'nodes_pruned': self.stats.get('nodes_pruned', 0),
                'nodes_branched': self.stats.get('nodes_branched', 0),
                'cuts_added': len(self.cuts),
                'shutdown_requested': self.shutdown_requested,
            }
