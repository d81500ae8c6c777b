"""
Solver backends implementing the LPSolver protocol from lp_model.py.

- GurobiSolver: gurobipy (LP + MIP, duals, reduced costs, time limit)
- HighsSolver:  SciPy's HiGHS bindings, linprog for LPs and milp for MIPs

Both translate a LinearProgram into the engine's own model for a single solve
and throw the engine model away afterwards; no state survives between calls.
"""

import logging
import math
import time

import numpy as np
from scipy import sparse
from scipy.optimize import Bounds, LinearConstraint, linprog, milp

from lp_model import (ConstraintSense, LPSolution, SolutionStatus, SolverCapabilities,
                      SolverError, VariableType)

logger = logging.getLogger(__name__)


def _budget_exhausted(time_limit):
    return time_limit is not None and time_limit <= 0


class GurobiSolver:
    """
    Gurobi backend.

    Attributes:
        verbose: If True, Gurobi prints its own log
        deterministic: If True, use a single thread (reproducible node order)
        seed: Gurobi random seed
        method: Gurobi LP method (-1 automatic, 1 dual simplex, 2 barrier)
    """

    def __init__(self, verbose=False, deterministic=True, seed=0, method=-1):
        import gurobipy as gu  # imported lazily so HiGHS-only setups still import this module
        self._gu = gu
        self.verbose = verbose
        self.deterministic = deterministic
        self.seed = seed
        self.method = method

    def name(self):
        return 'gurobi'

    def capabilities(self):
        return SolverCapabilities(supports_lp=True, supports_mip=True,
                                  supports_duals=True, supports_time_limit=True)

    def _bound(self, value):
        gu = self._gu
        if value == math.inf:
            return gu.GRB.INFINITY
        if value == -math.inf:
            return -gu.GRB.INFINITY
        return value

    def solve(self, program, time_limit=None):
        if _budget_exhausted(time_limit):
            return LPSolution.error("time budget exhausted before solve")

        gu = self._gu
        start = time.time()
        env = None
        model = None
        try:
            # Create Gurobi environment with suppressed output
            env = gu.Env(empty=True)
            env.setParam('OutputFlag', 1 if self.verbose else 0)
            env.start()
            model = gu.Model(program.name, env=env)
            model.Params.Seed = self.seed
            if self.deterministic:
                model.Params.Threads = 1
            model.Params.Method = self.method
            if time_limit is not None:
                model.Params.TimeLimit = max(time_limit, 1e-3)

            vtypes = {VariableType.CONTINUOUS: gu.GRB.CONTINUOUS,
                      VariableType.BINARY: gu.GRB.BINARY,
                      VariableType.INTEGER: gu.GRB.INTEGER}
            gvars = {}
            for var in program.variables:
                gvars[var] = model.addVar(lb=self._bound(var.lower_bound), ub=self._bound(var.upper_bound),
                                          vtype=vtypes[var.var_type], name=var.name)

            senses = {ConstraintSense.LE: gu.GRB.LESS_EQUAL,
                      ConstraintSense.EQ: gu.GRB.EQUAL,
                      ConstraintSense.GE: gu.GRB.GREATER_EQUAL}
            gcons = {}
            for c in program.constraints:
                expr = gu.LinExpr([coef for _, coef in c.terms], [gvars[v] for v, _ in c.terms])
                gcons[c] = model.addLConstr(expr, senses[c.sense], c.rhs, name=c.name)

            objective = gu.LinExpr(list(program.objective.values()),
                                   [gvars[v] for v in program.objective])
            model.setObjective(objective, gu.GRB.MAXIMIZE if program.maximize else gu.GRB.MINIMIZE)
            model.update()
            model.optimize()

            status = model.Status
            if status == gu.GRB.INF_OR_UNBD:
                # Re-solve without dual reductions to tell the two apart
                model.Params.DualReductions = 0
                model.optimize()
                status = model.Status

            elapsed = time.time() - start
            if status == gu.GRB.INFEASIBLE:
                return LPSolution(SolutionStatus.INFEASIBLE, solve_time=elapsed)
            if status == gu.GRB.UNBOUNDED:
                return LPSolution(SolutionStatus.UNBOUNDED, solve_time=elapsed)

            if status == gu.GRB.OPTIMAL:
                sol_status = SolutionStatus.OPTIMAL
            elif model.SolCount > 0:
                # TIME_LIMIT, INTERRUPTED, SUBOPTIMAL, ...: values exist but are not proven
                sol_status = SolutionStatus.FEASIBLE
            else:
                logger.debug(f"Gurobi stopped with status {status} and no solution")
                return LPSolution.error(f"gurobi status {status} without solution", elapsed)

            primal = {var: gv.X for var, gv in gvars.items()}
            duals = {}
            reduced = {}
            if sol_status == SolutionStatus.OPTIMAL and not model.IsMIP:
                duals = {c: gc.Pi for c, gc in gcons.items()}
                reduced = {var: gv.RC for var, gv in gvars.items()}
            return LPSolution(sol_status, model.ObjVal, primal, duals, reduced, elapsed)

        except gu.GurobiError as e:
            raise SolverError(f"Gurobi failed on '{program.name}': {e}") from e
        finally:
            if model is not None:
                model.dispose()
            if env is not None:
                env.dispose()


class HighsSolver:
    """
    HiGHS backend through scipy.optimize (linprog for LPs, milp for MIPs).

    Attributes:
        presolve: Enable HiGHS presolve
    """

    # scipy status codes shared by linprog and milp
    _OPTIMAL = 0
    _LIMIT = 1
    _INFEASIBLE = 2
    _UNBOUNDED = 3
    _OTHER = 4

    def __init__(self, presolve=True):
        self.presolve = presolve

    def name(self):
        return 'highs'

    def capabilities(self):
        return SolverCapabilities(supports_lp=True, supports_mip=True,
                                  supports_duals=True, supports_time_limit=True)

    def solve(self, program, time_limit=None):
        if _budget_exhausted(time_limit):
            return LPSolution.error("time budget exhausted before solve")

        start = time.time()
        variables = program.variables
        if not variables:
            return LPSolution(SolutionStatus.OPTIMAL, 0.0, solve_time=time.time() - start)

        index = {var: k for k, var in enumerate(variables)}
        sign = -1.0 if program.maximize else 1.0
        c = np.zeros(len(variables))
        for var, coef in program.objective.items():
            c[index[var]] = sign * coef

        result, ub_rows, eq_rows = self._run(program, index, c, time_limit, self.presolve)
        if result.status == self._OTHER and self.presolve:
            # presolve may stop at "infeasible or unbounded"; solve again without it to tell them apart
            remaining = None if time_limit is None else time_limit - (time.time() - start)
            if _budget_exhausted(remaining):
                return LPSolution.error(result.message, time.time() - start)
            result, ub_rows, eq_rows = self._run(program, index, c, remaining, False)

        elapsed = time.time() - start
        if result.status == self._INFEASIBLE:
            return LPSolution(SolutionStatus.INFEASIBLE, solve_time=elapsed, message=result.message)
        if result.status == self._UNBOUNDED:
            return LPSolution(SolutionStatus.UNBOUNDED, solve_time=elapsed, message=result.message)
        if result.status not in (self._OPTIMAL, self._LIMIT):
            raise SolverError(f"HiGHS failed on '{program.name}' (status {result.status}): {result.message}")

        if result.x is None:
            return LPSolution.error(result.message, elapsed)

        primal = {var: float(result.x[index[var]]) for var in variables}
        if result.status == self._LIMIT:
            # An interrupted LP iterate is not necessarily feasible; only report checked values
            if not program.is_feasible(primal):
                return LPSolution.error(result.message, elapsed)
            return LPSolution(SolutionStatus.FEASIBLE, program.evaluate_objective(primal), primal,
                              solve_time=elapsed, message=result.message)

        duals, reduced = {}, {}
        if not program.is_mip:
            duals, reduced = self._sensitivities(program, result, sign, ub_rows, eq_rows)
        return LPSolution(SolutionStatus.OPTIMAL, sign * float(result.fun), primal, duals, reduced,
                          elapsed, result.message)

    def _bounds(self, program):
        lower = [None if v.lower_bound == -math.inf else v.lower_bound for v in program.variables]
        upper = [None if v.upper_bound == math.inf else v.upper_bound for v in program.variables]
        return list(zip(lower, upper))

    def _matrix(self, rows, index):
        data, row_idx, col_idx = [], [], []
        for r, (constraint, factor) in enumerate(rows):
            for var, coef in constraint.terms:
                data.append(factor * coef)
                row_idx.append(r)
                col_idx.append(index[var])
        return sparse.csr_matrix((data, (row_idx, col_idx)), shape=(len(rows), len(index)))

    def _run(self, program, index, c, time_limit, presolve):
        try:
            if program.is_mip:
                return self._solve_milp(program, index, c, time_limit, presolve), [], []
            return self._solve_lp(program, index, c, time_limit, presolve)
        except ValueError as e:
            raise SolverError(f"HiGHS rejected '{program.name}': {e}") from e

    def _solve_lp(self, program, index, c, time_limit, presolve):
        ub_rows, eq_rows = [], []
        for constraint in program.constraints:
            if constraint.sense == ConstraintSense.EQ:
                eq_rows.append((constraint, 1.0))
            elif constraint.sense == ConstraintSense.GE:
                ub_rows.append((constraint, -1.0))
            else:
                ub_rows.append((constraint, 1.0))

        options = {'presolve': presolve}
        if time_limit is not None:
            options['time_limit'] = float(time_limit)
        result = linprog(
            c,
            A_ub=self._matrix(ub_rows, index) if ub_rows else None,
            b_ub=np.array([f * con.rhs for con, f in ub_rows]) if ub_rows else None,
            A_eq=self._matrix(eq_rows, index) if eq_rows else None,
            b_eq=np.array([con.rhs for con, _ in eq_rows]) if eq_rows else None,
            bounds=self._bounds(program),
            method='highs',
            options=options,
        )
        return result, ub_rows, eq_rows

    def _solve_milp(self, program, index, c, time_limit, presolve):
        variables = program.variables
        integrality = np.array([1 if v.is_integral else 0 for v in variables])
        bounds = Bounds(np.array([v.lower_bound for v in variables], dtype=float),
                        np.array([v.upper_bound for v in variables], dtype=float))
        constraints = None
        if program.constraints:
            rows = [(con, 1.0) for con in program.constraints]
            lower = [con.rhs if con.sense != ConstraintSense.LE else -np.inf for con in program.constraints]
            upper = [con.rhs if con.sense != ConstraintSense.GE else np.inf for con in program.constraints]
            constraints = LinearConstraint(self._matrix(rows, index), lower, upper)

        options = {'disp': False, 'presolve': presolve, 'mip_rel_gap': 0.0}
        if time_limit is not None:
            options['time_limit'] = float(time_limit)
        return milp(c, integrality=integrality, bounds=bounds, constraints=constraints, options=options)

    def _sensitivities(self, program, result, sign, ub_rows, eq_rows):
        """
        Convert HiGHS marginals (sensitivities of the minimised objective) into
        duals and reduced costs in the program's own objective sense.
        """
        duals = {}
        if ub_rows:
            for (con, factor), marginal in zip(ub_rows, result.ineqlin.marginals):
                duals[con] = sign * factor * float(marginal)
        if eq_rows:
            for (con, _), marginal in zip(eq_rows, result.eqlin.marginals):
                duals[con] = sign * float(marginal)

        reduced = {}
        lower = result.lower.marginals
        upper = result.upper.marginals
        for k, var in enumerate(program.variables):
            reduced[var] = sign * float(lower[k] + upper[k])
        return duals, reduced


_SOLVERS = {
    'gurobi': GurobiSolver,
    'highs': HighsSolver,
}


def create_solver(name='highs', **kwargs):
    """
    Create a solver backend by name.

    Args:
        name: 'gurobi' or 'highs'
        **kwargs: Passed to the backend constructor

    Returns:
        An object implementing the LPSolver protocol
    """
    key = name.lower()
    if key not in _SOLVERS:
        raise ValueError(f"Unknown solver backend: {name} (available: {sorted(_SOLVERS)})")
    return _SOLVERS[key](**kwargs)
