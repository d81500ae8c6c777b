import math

import pytest

from bnb_node import BranchNode, ItemFixing
from conftest import ScriptedSolver
from l2_relaxation import L2RelaxedFormulation, L2Solution, t_name, x_name
from lp_model import LPSolution, SolutionStatus
from mkp_instance import Instance, InvalidInstanceError


def test_program_structure(small_instance, highs):
    formulation = L2RelaxedFormulation(small_instance, highs)
    lp, t_vars, x_vars = formulation.build_program()
    n, m = small_instance.num_items, small_instance.num_knapsacks
    assert lp.num_variables == n + m * n
    assert len(t_vars) == n and len(x_vars) == m and all(len(row) == n for row in x_vars)
    # m capacity rows, 2n linking/assign-once rows, one aggregated row
    assert lp.num_constraints == m + 2 * n + 1
    assert lp.constraint("aggregated_capacity").rhs == small_instance.total_capacity
    assert lp.objective[t_vars[2]] == 15


def test_fixings_tighten_bounds(example_instance, highs):
    formulation = L2RelaxedFormulation(example_instance, highs)
    node = BranchNode(3, fixings=(ItemFixing.FORCED_IN, ItemFixing.FORCED_OUT, ItemFixing.FREE))
    lp, _, _ = formulation.build_program(node)
    t0, t1, t2 = (lp.variable(t_name(j)) for j in range(3))
    assert (t0.lower_bound, t0.upper_bound) == (1.0, 1.0)
    assert (t1.lower_bound, t1.upper_bound) == (0.0, 0.0)
    assert (t2.lower_bound, t2.upper_bound) == (0.0, 1.0)
    assert lp.variable(x_name(0, 1)).upper_bound == 0.0


def test_too_heavy_item_cannot_be_assigned(highs):
    instance = Instance.from_lists([10, 4], [6, 3], [5, 5])
    lp, _, x_vars = L2RelaxedFormulation(instance, highs).build_program()
    assert x_vars[1][0].upper_bound == 0.0
    assert x_vars[0][0].upper_bound == 1.0
    assert x_vars[1][1].upper_bound == 1.0


def test_cuts_become_rows(example_instance, highs):
    lp, _, _ = L2RelaxedFormulation(example_instance, highs).build_program(cuts=[frozenset({2, 0})])
    cut = lp.constraint("nogood(0)")
    assert cut.rhs == 1
    assert sorted(v.name for v in cut.coefficients) == [t_name(0), t_name(2)]


def test_invalid_instance_rejected(highs):
    instance = Instance.from_lists([3], [5, 6], [1, 1])
    with pytest.raises(InvalidInstanceError):
        L2RelaxedFormulation(instance, highs)


def test_root_relaxation_of_example(example_instance, highs):
    solution = L2RelaxedFormulation(example_instance, highs).solve()
    assert solution.is_optimal
    assert solution.objective == pytest.approx(70.0)
    assert solution.are_item_selections_integer()
    assert solution.selected_items() == [1, 2]
    assert solution.has_reduced_costs


def test_forced_out_node_bound(example_instance, highs):
    formulation = L2RelaxedFormulation(example_instance, highs)
    node = BranchNode(1, fixings=(ItemFixing.FREE, ItemFixing.FORCED_OUT, ItemFixing.FREE))
    solution = formulation.solve(node)
    # items 0 and 2 together weigh 11 > 10, so item 0 is taken fractionally
    assert solution.objective == pytest.approx(30 + 10 * 4 / 5)
    assert solution.item_selection(1) == 0.0
    assert not solution.are_item_selections_integer()


def test_infeasible_solution_has_minus_infinity(example_instance):
    solver = ScriptedSolver([LPSolution(SolutionStatus.INFEASIBLE)])
    solution = L2RelaxedFormulation(example_instance, solver).solve(time_limit=5.0)
    assert solution.is_infeasible
    assert solution.objective == -math.inf
    assert solver.time_limits == [5.0]


def test_error_solution_has_nan_objective(example_instance):
    solver = ScriptedSolver([LPSolution.error("limit")])
    solution = L2RelaxedFormulation(example_instance, solver).solve()
    assert solution.status == SolutionStatus.ERROR
    assert math.isnan(solution.objective)
    assert not solution.has_values


def test_fractional_solution_accessors():
    solution = L2Solution(SolutionStatus.OPTIMAL, 12.5, [1.0, 0.5], [[1.0, 0.5]])
    assert solution.first_fractional_variable() == "t_1 = 0.500000"
    assert not solution.is_integer()
    with pytest.raises(ValueError):
        solution.to_assignment()


def test_to_assignment_reads_first_knapsack():
    solution = L2Solution(SolutionStatus.OPTIMAL, 2.0, [1.0, 0.0, 1.0],
                          [[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
    assert solution.to_assignment() == [1, None, 0]


def test_objective_value_and_feasibility(example_instance, highs):
    formulation = L2RelaxedFormulation(example_instance, highs)
    assert formulation.objective_value([None, 0, 0]) == 70
    assert formulation.is_assignment_feasible([None, 0, 0])
    assert not formulation.is_assignment_feasible([0, 0, 0])
