import logging

logger = logging.getLogger(__name__)


def greedy_assignment(instance):
    """
    Profit-density greedy heuristic for an initial incumbent.

    Items are taken in decreasing profit/weight order (ties to the lower index)
    and put into the first knapsack with enough remaining capacity.

    Parameters:
    - instance (Instance): MKP instance

    Returns:
    - assignment (list): knapsack index per item, None if unassigned
    - profit (float): total profit of the assignment
    """
    order = sorted(range(instance.num_items), key=lambda j: (-instance.item(j).profit_density, j))
    remaining = [k.capacity for k in instance.knapsacks]
    assignment = [None] * instance.num_items
    profit = 0

    for j in order:
        item = instance.item(j)
        for i in range(instance.num_knapsacks):
            if remaining[i] >= item.weight:
                remaining[i] -= item.weight
                assignment[j] = i
                profit += item.profit
                break

    logger.debug(f"Greedy heuristic packed {sum(a is not None for a in assignment)}/{instance.num_items} "
                 f"items, profit {profit}")
    return assignment, profit
