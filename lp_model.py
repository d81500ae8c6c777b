"""
Solver-agnostic linear program representation.

A LinearProgram is assembled from validated Variable and Constraint values and
handed to any object implementing the LPSolver protocol (see lp_solvers.py).
The result comes back as an immutable LPSolution snapshot.
"""

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol, Tuple, runtime_checkable


class FormulationError(ValueError):
    """Raised when a program is malformed (unknown variables, duplicate names, ...)."""


class SolverError(RuntimeError):
    """Raised when a solver backend faults; never used for infeasible/unbounded programs."""


class VariableType(Enum):
    CONTINUOUS = 'C'
    BINARY = 'B'
    INTEGER = 'I'


class ConstraintSense(Enum):
    LE = '<='
    EQ = '='
    GE = '>='


class SolutionStatus(Enum):
    OPTIMAL = 'optimal'
    FEASIBLE = 'feasible'
    INFEASIBLE = 'infeasible'
    UNBOUNDED = 'unbounded'
    ERROR = 'error'

    @property
    def has_values(self) -> bool:
        return self in (SolutionStatus.OPTIMAL, SolutionStatus.FEASIBLE)


@dataclass(frozen=True)
class Variable:
    """
    A decision variable. Equality and hashing are structural, so two Variables
    with the same name, bounds and type are the same dict key.
    """
    name: str
    lower_bound: float = 0.0
    upper_bound: float = math.inf
    var_type: VariableType = VariableType.CONTINUOUS

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise FormulationError("Variable name cannot be blank")
        if math.isnan(self.lower_bound) or math.isnan(self.upper_bound):
            raise FormulationError(f"Variable {self.name}: bounds cannot be NaN")
        if self.lower_bound > self.upper_bound:
            raise FormulationError(
                f"Variable {self.name}: lower bound {self.lower_bound} exceeds upper bound {self.upper_bound}")
        if self.var_type == VariableType.BINARY and (self.lower_bound < 0 or self.upper_bound > 1):
            raise FormulationError(f"Binary variable {self.name} must have bounds within [0, 1]")

    @property
    def is_integral(self) -> bool:
        return self.var_type != VariableType.CONTINUOUS


@dataclass(frozen=True)
class Constraint:
    """
    Linear constraint  sum(coef * var) <sense> rhs.

    Terms are stored as a tuple of (Variable, coefficient) pairs with duplicate
    variables merged, which keeps the constraint hashable (it keys dual maps).
    """
    name: str
    terms: Tuple[Tuple[Variable, float], ...]
    sense: ConstraintSense = ConstraintSense.LE
    rhs: float = 0.0

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise FormulationError("Constraint name cannot be blank")
        if not math.isfinite(self.rhs):
            raise FormulationError(f"Constraint {self.name}: rhs must be finite, got {self.rhs}")
        merged: Dict[Variable, float] = {}
        for var, coef in self.terms:
            if not isinstance(var, Variable):
                raise FormulationError(f"Constraint {self.name}: term {var!r} is not a Variable")
            if not math.isfinite(coef):
                raise FormulationError(f"Constraint {self.name}: coefficient of {var.name} must be finite")
            merged[var] = merged.get(var, 0.0) + coef
        object.__setattr__(self, 'terms', tuple(merged.items()))

    @classmethod
    def from_dict(cls, name, coefficients, sense=ConstraintSense.LE, rhs=0.0):
        return cls(name, tuple(coefficients.items()), sense, rhs)

    @property
    def coefficients(self) -> Mapping[Variable, float]:
        return MappingProxyType(dict(self.terms))

    def evaluate(self, values: Mapping[Variable, float]) -> float:
        return sum(coef * values.get(var, 0.0) for var, coef in self.terms)

    def is_satisfied(self, values: Mapping[Variable, float], tolerance: float = 1e-6) -> bool:
        lhs = self.evaluate(values)
        if self.sense == ConstraintSense.LE:
            return lhs <= self.rhs + tolerance
        if self.sense == ConstraintSense.GE:
            return lhs >= self.rhs - tolerance
        return abs(lhs - self.rhs) <= tolerance


class LinearProgram:
    """
    A linear (or mixed-integer) program: variables, constraints, objective.

    Variables must be added through add_variable() before they can appear in a
    constraint or in the objective; anything else is a FormulationError and is
    raised while building, before any solver sees the program.
    """

    def __init__(self, name='lp', maximize=True):
        self.name = name or 'lp'
        self.maximize = maximize
        self._variables: List[Variable] = []
        self._by_name: Dict[str, Variable] = {}
        self._constraints: List[Constraint] = []
        self._constraint_names = set()
        self._objective: Dict[Variable, float] = {}

    # ---------------------------------------------------------------- variables
    def add_variable(self, name, lower_bound=0.0, upper_bound=math.inf,
                     var_type=VariableType.CONTINUOUS) -> Variable:
        if name in self._by_name:
            raise FormulationError(f"Duplicate variable name: {name}")
        var = Variable(name, lower_bound, upper_bound, var_type)
        self._variables.append(var)
        self._by_name[name] = var
        return var

    def add_binary_variable(self, name) -> Variable:
        return self.add_variable(name, 0.0, 1.0, VariableType.BINARY)

    @property
    def variables(self) -> Tuple[Variable, ...]:
        return tuple(self._variables)

    @property
    def num_variables(self) -> int:
        return len(self._variables)

    def variable(self, name) -> Optional[Variable]:
        return self._by_name.get(name)

    def _check_known(self, var, context):
        if not isinstance(var, Variable) or self._by_name.get(var.name) != var:
            name = var.name if isinstance(var, Variable) else repr(var)
            raise FormulationError(f"{context} references undefined variable {name}")

    # -------------------------------------------------------------- constraints
    def add_constraint(self, name, coefficients, sense=ConstraintSense.LE, rhs=0.0) -> Constraint:
        """
        Add a linear constraint.

        Args:
            name: Unique constraint name
            coefficients: Dict {Variable: coefficient}
            sense: ConstraintSense
            rhs: Right-hand side

        Returns:
            Constraint: the stored constraint
        """
        if name in self._constraint_names:
            raise FormulationError(f"Duplicate constraint name: {name}")
        for var in coefficients:
            self._check_known(var, f"Constraint {name}")
        constraint = Constraint.from_dict(name, coefficients, sense, rhs)
        self._constraints.append(constraint)
        self._constraint_names.add(name)
        return constraint

    def add_less_or_equal(self, name, coefficients, rhs) -> Constraint:
        return self.add_constraint(name, coefficients, ConstraintSense.LE, rhs)

    def add_equal(self, name, coefficients, rhs) -> Constraint:
        return self.add_constraint(name, coefficients, ConstraintSense.EQ, rhs)

    def add_greater_or_equal(self, name, coefficients, rhs) -> Constraint:
        return self.add_constraint(name, coefficients, ConstraintSense.GE, rhs)

    @property
    def constraints(self) -> Tuple[Constraint, ...]:
        return tuple(self._constraints)

    @property
    def num_constraints(self) -> int:
        return len(self._constraints)

    def constraint(self, name) -> Optional[Constraint]:
        for c in self._constraints:
            if c.name == name:
                return c
        return None

    # ---------------------------------------------------------------- objective
    def set_objective_coefficient(self, var, coefficient):
        self._check_known(var, "Objective")
        if not math.isfinite(coefficient):
            raise FormulationError(f"Objective coefficient of {var.name} must be finite")
        self._objective[var] = float(coefficient)

    def set_objective(self, coefficients, maximize=None):
        self._objective = {}
        for var, coef in coefficients.items():
            self.set_objective_coefficient(var, coef)
        if maximize is not None:
            self.maximize = maximize

    @property
    def objective(self) -> Mapping[Variable, float]:
        return MappingProxyType(self._objective)

    @property
    def is_mip(self) -> bool:
        return any(v.is_integral for v in self._variables)

    # ------------------------------------------------------------------ helpers
    def evaluate_objective(self, values: Mapping[Variable, float]) -> float:
        return sum(coef * values.get(var, 0.0) for var, coef in self._objective.items())

    def is_feasible(self, values: Mapping[Variable, float], tolerance: float = 1e-6) -> bool:
        """Check bounds, integrality and every constraint for the given values."""
        for var in self._variables:
            val = values.get(var, 0.0)
            if val < var.lower_bound - tolerance or val > var.upper_bound + tolerance:
                return False
            if var.is_integral and abs(val - round(val)) > tolerance:
                return False
        return all(c.is_satisfied(values, tolerance) for c in self._constraints)

    def to_lp_format(self) -> str:
        """Small CPLEX-LP style dump, mostly for debugging and log files."""
        lines = ["Maximize" if self.maximize else "Minimize"]
        lines.append(" obj: " + _format_terms(self._objective.items()))
        lines.append("Subject To")
        for c in self._constraints:
            lines.append(f" {c.name}: {_format_terms(c.terms)} {c.sense.value} {c.rhs:g}")
        lines.append("Bounds")
        for v in self._variables:
            lines.append(f" {v.lower_bound:g} <= {v.name} <= {v.upper_bound:g}")
        integral = [v.name for v in self._variables if v.is_integral]
        if integral:
            lines.append("General")
            lines.append(" " + " ".join(integral))
        lines.append("End")
        return "\n".join(lines) + "\n"

    def __repr__(self):
        return (f"LinearProgram({self.name}, maximize={self.maximize}, "
                f"vars={self.num_variables}, cons={self.num_constraints})")


def _format_terms(terms):
    parts = [f"{coef:+g} {var.name}" for var, coef in terms]
    return " ".join(parts) if parts else "0"


@dataclass(frozen=True)
class SolverCapabilities:
    """Declared feature set of a solver backend. Callers branch on these flags."""
    supports_lp: bool
    supports_mip: bool
    supports_duals: bool
    supports_time_limit: bool


class LPSolution:
    """
    Immutable snapshot of a solve.

    All maps are copied on construction and exposed read-only. Duals and
    reduced costs follow the program's objective sense: the rate of change of
    the objective per unit increase of the right-hand side / variable.
    """

    def __init__(self, status, objective_value=math.nan, primal_values=None, dual_values=None,
                 reduced_costs=None, solve_time=0.0, message=''):
        self._status = status if status is not None else SolutionStatus.ERROR
        self._objective_value = objective_value
        self._primal = MappingProxyType(dict(primal_values or {}))
        self._duals = MappingProxyType(dict(dual_values or {}))
        self._reduced_costs = MappingProxyType(dict(reduced_costs or {}))
        self._solve_time = solve_time
        self._message = message

    @classmethod
    def error(cls, message='', solve_time=0.0):
        return cls(SolutionStatus.ERROR, solve_time=solve_time, message=message)

    @property
    def status(self) -> SolutionStatus:
        return self._status

    @property
    def is_optimal(self) -> bool:
        return self._status == SolutionStatus.OPTIMAL

    @property
    def is_feasible(self) -> bool:
        return self._status.has_values

    @property
    def is_infeasible(self) -> bool:
        return self._status == SolutionStatus.INFEASIBLE

    @property
    def is_unbounded(self) -> bool:
        return self._status == SolutionStatus.UNBOUNDED

    @property
    def objective_value(self) -> float:
        return self._objective_value

    @property
    def solve_time(self) -> float:
        return self._solve_time

    @property
    def message(self) -> str:
        return self._message

    def primal_value(self, var: Variable) -> float:
        return self._primal.get(var, 0.0)

    @property
    def primal_values(self) -> Mapping[Variable, float]:
        return self._primal

    def dual_value(self, constraint: Constraint) -> float:
        return self._duals.get(constraint, 0.0)

    @property
    def dual_values(self) -> Mapping[Constraint, float]:
        return self._duals

    def reduced_cost(self, var: Variable) -> float:
        return self._reduced_costs.get(var, 0.0)

    @property
    def reduced_costs(self) -> Mapping[Variable, float]:
        return self._reduced_costs

    def __repr__(self):
        return (f"LPSolution(status={self._status.name}, obj={self._objective_value}, "
                f"time={self._solve_time:.3f}s)")


@runtime_checkable
class LPSolver(Protocol):
    """
    Solver capability. Any LP/MIP engine plugs in behind this contract.

    solve() returns a status-tagged LPSolution for infeasible or unbounded
    programs; it raises FormulationError for malformed programs and SolverError
    for backend faults. With a time limit, an exhausted budget yields FEASIBLE
    (with values) or ERROR (without), never OPTIMAL.
    """

    def solve(self, program: LinearProgram, time_limit: Optional[float] = None) -> LPSolution:
        ...

    def capabilities(self) -> SolverCapabilities:
        ...

    def name(self) -> str:
        ...
