import random
from types import SimpleNamespace

import numpy as np
import pytest

from lp_model import LinearProgram, SolutionStatus, SolverError
from lp_solvers import GurobiSolver, HighsSolver, create_solver


def _two_var_lp():
    # max 3x + 2y  s.t.  x + y <= 4,  x <= 3  ->  x=3, y=1, obj 11
    lp = LinearProgram("two_var")
    x = lp.add_variable("x", 0, 10)
    y = lp.add_variable("y", 0, 10)
    lp.set_objective({x: 3.0, y: 2.0})
    total = lp.add_less_or_equal("total", {x: 1.0, y: 1.0}, 4.0)
    cap_x = lp.add_less_or_equal("cap_x", {x: 1.0}, 3.0)
    return lp, x, y, total, cap_x


def test_highs_lp_optimum_and_duals(highs):
    lp, x, y, total, cap_x = _two_var_lp()
    solution = highs.solve(lp)
    assert solution.is_optimal
    assert solution.objective_value == pytest.approx(11.0)
    assert solution.primal_value(x) == pytest.approx(3.0)
    assert solution.primal_value(y) == pytest.approx(1.0)
    assert solution.dual_value(total) == pytest.approx(2.0)
    assert solution.dual_value(cap_x) == pytest.approx(1.0)


def test_highs_greater_equal_dual_in_minimisation(highs):
    lp = LinearProgram("ge", maximize=False)
    x = lp.add_variable("x", 0, 10)
    lp.set_objective({x: 1.0})
    row = lp.add_greater_or_equal("at_least", {x: 1.0}, 2.0)
    solution = highs.solve(lp)
    assert solution.objective_value == pytest.approx(2.0)
    assert solution.dual_value(row) == pytest.approx(1.0)


def test_highs_reduced_cost_at_upper_bound(highs):
    lp = LinearProgram("rc")
    x = lp.add_variable("x", 0, 1)
    y = lp.add_variable("y", 0, 1)
    lp.set_objective({x: 1.0, y: 1.0})
    lp.add_less_or_equal("slack", {x: 1.0, y: 1.0}, 5.0)
    solution = highs.solve(lp)
    assert solution.objective_value == pytest.approx(2.0)
    assert solution.reduced_cost(x) == pytest.approx(1.0)


def test_highs_equality_row(highs):
    lp = LinearProgram("eq")
    x = lp.add_variable("x", 0, 10)
    y = lp.add_variable("y", 0, 10)
    lp.set_objective({x: 1.0, y: 2.0})
    lp.add_equal("sum", {x: 1.0, y: 1.0}, 3.0)
    solution = highs.solve(lp)
    assert solution.objective_value == pytest.approx(6.0)
    assert solution.primal_value(y) == pytest.approx(3.0)


def test_highs_reports_infeasible(highs):
    lp = LinearProgram("infeasible")
    x = lp.add_variable("x", 0, 10)
    lp.set_objective({x: 1.0})
    lp.add_greater_or_equal("low", {x: 1.0}, 2.0)
    lp.add_less_or_equal("high", {x: 1.0}, 1.0)
    solution = highs.solve(lp)
    assert solution.status == SolutionStatus.INFEASIBLE
    assert not solution.status.has_values


def test_highs_reports_unbounded(highs):
    lp = LinearProgram("unbounded")
    x = lp.add_variable("x")
    y = lp.add_variable("y")
    lp.set_objective({x: 1.0})
    lp.add_less_or_equal("diff", {x: 1.0, y: -1.0}, 1.0)
    solution = highs.solve(lp)
    assert solution.status == SolutionStatus.UNBOUNDED


def test_highs_solves_mip(highs):
    # max 5a + 4b + 3c  s.t.  2a + 3b + c <= 5 (binary)  ->  a=1, b=1, obj 9
    lp = LinearProgram("mip")
    a = lp.add_binary_variable("a")
    b = lp.add_binary_variable("b")
    c = lp.add_binary_variable("c")
    lp.set_objective({a: 5.0, b: 4.0, c: 3.0})
    lp.add_less_or_equal("cap", {a: 2.0, b: 3.0, c: 1.0}, 5.0)
    solution = highs.solve(lp)
    assert solution.is_optimal
    assert solution.objective_value == pytest.approx(9.0)
    assert lp.is_feasible(solution.primal_values)


def test_exhausted_budget_returns_error_without_values(highs):
    lp, *_ = _two_var_lp()
    solution = highs.solve(lp, time_limit=0)
    assert solution.status == SolutionStatus.ERROR
    assert not solution.primal_values


def _assignment_mip(num_items=60, num_knapsacks=5, seed=3):
    rng = random.Random(seed)
    lp = LinearProgram("assignment_mip")
    weights = [rng.randint(10, 60) for _ in range(num_items)]
    y = {(i, j): lp.add_binary_variable(f"y[{i},{j}]")
         for i in range(num_knapsacks) for j in range(num_items)}
    lp.set_objective({var: weights[j] + rng.randint(0, 10) for (i, j), var in y.items()})
    for j in range(num_items):
        lp.add_less_or_equal(f"once({j})", {y[i, j]: 1.0 for i in range(num_knapsacks)}, 1.0)
    for i in range(num_knapsacks):
        lp.add_less_or_equal(f"cap({i})", {y[i, j]: weights[j] for j in range(num_items)},
                             rng.randint(100, 200))
    return lp


def test_time_limited_mip_is_never_optimal(highs):
    lp = _assignment_mip()
    solution = highs.solve(lp, time_limit=1e-6)
    assert solution.status in (SolutionStatus.FEASIBLE, SolutionStatus.ERROR)
    if solution.status.has_values:
        assert lp.is_feasible(solution.primal_values)


def _stopped_at_limit(x):
    result = SimpleNamespace(status=HighsSolver._LIMIT, x=np.array(x), fun=0.0,
                             message="Time limit reached")
    return lambda *args: (result, [], [])


def test_limit_with_feasible_values_is_feasible(monkeypatch, highs):
    lp, x, y, _, _ = _two_var_lp()
    monkeypatch.setattr(highs, '_run', _stopped_at_limit([2.0, 1.0]))
    solution = highs.solve(lp, time_limit=5.0)
    assert solution.status == SolutionStatus.FEASIBLE
    assert not solution.is_optimal
    assert solution.objective_value == pytest.approx(8.0)
    assert solution.primal_value(x) == pytest.approx(2.0)
    assert not solution.dual_values


def test_limit_with_infeasible_iterate_is_error(monkeypatch, highs):
    lp, *_ = _two_var_lp()
    monkeypatch.setattr(highs, '_run', _stopped_at_limit([5.0, 5.0]))
    solution = highs.solve(lp, time_limit=5.0)
    assert solution.status == SolutionStatus.ERROR
    assert not solution.primal_values


def test_create_solver():
    assert create_solver('highs').name() == 'highs'
    assert create_solver('HiGHS', presolve=False).presolve is False
    with pytest.raises(ValueError):
        create_solver('cplex')


def test_capabilities(highs):
    caps = highs.capabilities()
    assert caps.supports_lp and caps.supports_mip and caps.supports_duals and caps.supports_time_limit


def _gurobi_or_skip():
    gp = pytest.importorskip("gurobipy")
    try:
        solver = GurobiSolver()
        tiny = LinearProgram("tiny")
        tiny.add_variable("x", 0, 1)
        solver.solve(tiny)
    except (gp.GurobiError, SolverError) as e:
        pytest.skip(f"Gurobi not usable: {e}")
    return solver


def test_gurobi_matches_highs(highs):
    solver = _gurobi_or_skip()
    lp, x, _, total, _ = _two_var_lp()
    gurobi_solution = solver.solve(lp)
    highs_solution = highs.solve(lp)
    assert gurobi_solution.is_optimal
    assert gurobi_solution.objective_value == pytest.approx(highs_solution.objective_value)
    assert gurobi_solution.dual_value(total) == pytest.approx(2.0)


def test_gurobi_reports_infeasible():
    solver = _gurobi_or_skip()
    lp = LinearProgram("infeasible")
    x = lp.add_variable("x", 0, 10)
    lp.add_greater_or_equal("low", {x: 1.0}, 2.0)
    lp.add_less_or_equal("high", {x: 1.0}, 1.0)
    assert solver.solve(lp).status == SolutionStatus.INFEASIBLE
