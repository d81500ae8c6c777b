import pytest

from bnb_node import BranchNode, ItemFixing
from branching import (NO_BRANCH_ITEM, BranchingRule, FirstFractionalStrategy, MostFractionalStrategy,
                       ProfitDensityStrategy, PseudoCostStrategy, RandomStrategy, available_strategies,
                       get_strategy)
from l2_relaxation import L2Solution
from lp_model import SolutionStatus
from mkp_instance import Instance


def _solution(t_values):
    return L2Solution(SolutionStatus.OPTIMAL, sum(t_values), t_values, [list(t_values)])


def test_no_branch_item_iff_integral():
    rule = BranchingRule(3)
    assert rule.select_branch_item(_solution([1.0, 0.0, 1.0])) == NO_BRANCH_ITEM
    assert rule.select_branch_item(_solution([1.0, 0.0, 0.3])) == 2


def test_values_within_tolerance_are_integral():
    rule = BranchingRule(2)
    assert rule.select_branch_item(_solution([1.0 - 1e-8, 5e-7])) == NO_BRANCH_ITEM


def test_band_candidates_preferred():
    rule = BranchingRule(3)
    candidates, source = rule.candidates(_solution([0.05, 0.95, 0.2]))
    assert (candidates, source) == ([2], 'band')


def test_falls_back_to_any_fractional():
    rule = BranchingRule(3)
    candidates, source = rule.candidates(_solution([0.05, 0.95, 1.0]))
    assert (candidates, source) == ([0, 1], 'fractional')


def test_band_bounds_are_inclusive():
    rule = BranchingRule(2)
    assert rule.candidates(_solution([0.1, 0.9]))[1] == 'band'


def test_fixed_items_are_never_candidates():
    rule = BranchingRule(3)
    node = BranchNode(1, fixings=(ItemFixing.FREE, ItemFixing.FORCED_IN, ItemFixing.FREE))
    assert rule.select_branch_item(_solution([1.0, 0.5, 0.0]), node) == NO_BRANCH_ITEM


def test_invalid_band_rejected():
    with pytest.raises(ValueError):
        BranchingRule(2, band=(0.9, 0.1))


def test_most_fractional_ties_go_to_lowest_index():
    rule = BranchingRule(4, MostFractionalStrategy())
    assert rule.select_branch_item(_solution([0.3, 0.7, 0.5, 0.5])) == 2
    assert rule.select_branch_item(_solution([0.4, 0.6, 1.0, 0.0])) == 0


def test_first_fractional():
    rule = BranchingRule(3, FirstFractionalStrategy())
    assert rule.select_branch_item(_solution([1.0, 0.8, 0.5])) == 1


def test_profit_density_prefers_dense_items():
    instance = Instance.from_lists([10], [5, 4, 6], [10, 40, 30])
    rule = BranchingRule(3, ProfitDensityStrategy(instance))
    assert rule.select_branch_item(_solution([0.5, 0.5, 0.5])) == 1
    with pytest.raises(ValueError):
        ProfitDensityStrategy(None)


def test_selection_is_deterministic():
    solution = _solution([0.2, 0.45, 0.6, 0.8])
    for name in ['most_fractional', 'first_fractional', 'pseudo_cost']:
        first = BranchingRule(4, get_strategy(name)).select_branch_item(solution)
        second = BranchingRule(4, get_strategy(name)).select_branch_item(solution)
        assert first == second


def test_random_strategy_repeats_for_same_seed():
    solution = _solution([0.5] * 6)
    picks_a = [BranchingRule(6, RandomStrategy(7)).select_branch_item(solution) for _ in range(3)]
    picks_b = [BranchingRule(6, RandomStrategy(7)).select_branch_item(solution) for _ in range(3)]
    assert picks_a == picks_b
    assert all(p in range(6) for p in picks_a)


def test_pseudo_cost_learns_from_observations():
    strategy = PseudoCostStrategy()
    # without history every item scores the same, so the lowest index wins
    assert strategy.select([0, 1], _solution([0.5, 0.5]), None) == 0
    strategy.observe(1, ItemFixing.FORCED_IN, 100.0, 80.0)
    strategy.observe(1, ItemFixing.FORCED_OUT, 100.0, 70.0)
    strategy.observe(0, ItemFixing.FORCED_IN, 100.0, 99.0)
    strategy.observe(0, ItemFixing.FORCED_OUT, 100.0, 99.0)
    assert strategy.pseudo_costs(1) == (pytest.approx(30.0), pytest.approx(20.0))
    assert strategy.select([0, 1], _solution([0.5, 0.5]), None) == 1


def test_pseudo_cost_ignores_unusable_observations():
    strategy = PseudoCostStrategy()
    strategy.observe(None, ItemFixing.FORCED_IN, 10.0, 5.0)
    strategy.observe(0, ItemFixing.FORCED_IN, 10.0, None)
    strategy.observe(0, ItemFixing.FORCED_IN, float('inf'), 5.0)
    assert strategy.pseudo_costs(0) == (1.0, 1.0)
    strategy.observe(0, ItemFixing.FORCED_OUT, 10.0, float('-inf'))
    assert strategy.pseudo_costs(0)[0] == pytest.approx(10.0)


def test_get_strategy():
    assert 'pseudo_cost' in available_strategies()
    assert isinstance(get_strategy('MOST_FRACTIONAL'), MostFractionalStrategy)
    custom = FirstFractionalStrategy()
    assert get_strategy(custom) is custom
    with pytest.raises(ValueError):
        get_strategy('strong_branching')
