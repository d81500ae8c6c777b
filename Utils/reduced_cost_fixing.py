import logging

from bnb_node import ItemFixing

logger = logging.getLogger(__name__)

TOLERANCE = 1e-6


def reduced_cost_fixings(l2_solution, incumbent, node=None, tolerance=TOLERANCE):
    """
    Fix items whose reduced cost proves the opposite value cannot beat the incumbent.

    With LP bound z and reduced cost d_j of t_j (objective change per unit of t_j):
    - d_j > 0 (t_j at 1): any solution with t_j = 0 is worth at most z - d_j
    - d_j < 0 (t_j at 0): any solution with t_j = 1 is worth at most z + d_j
    If that value is not above the incumbent, the item is fixed the other way.

    Parameters:
    - l2_solution (L2Solution): optimal relaxation with reduced costs
    - incumbent (float): objective of the best known solution
    - node (BranchNode): items already fixed here are skipped
    - tolerance (float): safety margin on the gap

    Returns:
    - fixings (dict): {item: ItemFixing}
    """
    if not l2_solution.is_optimal or not l2_solution.has_reduced_costs:
        logger.debug("Reduced cost fixing skipped: no optimal solution with reduced costs")
        return {}
    bound = l2_solution.objective
    gap = bound - incumbent
    if gap <= tolerance:
        logger.debug(f"Reduced cost fixing skipped: gap {gap:.6f} already closed")
        return {}

    fixings = {}
    for j in range(l2_solution.num_items):
        if node is not None and node.is_item_fixed(j):
            continue
        rc = l2_solution.item_reduced_cost(j)
        if rc > gap + tolerance:
            fixings[j] = ItemFixing.FORCED_IN
            logger.debug(f"[RC Fix] t_{j} <- 1 (rc={rc:.4f} > gap={gap:.4f})")
        elif rc < -(gap + tolerance):
            fixings[j] = ItemFixing.FORCED_OUT
            logger.debug(f"[RC Fix] t_{j} <- 0 (rc={rc:.4f} < -gap={gap:.4f})")

    logger.info(f"Reduced cost fixing: {len(fixings)}/{l2_solution.num_items} items fixed "
                f"(bound={bound:.4f}, incumbent={incumbent:.4f})")
    return fixings
