import pytest

from lp_model import LPSolution, SolverCapabilities
from lp_solvers import HighsSolver
from mkp_instance import Instance


class ScriptedSolver:
    """LPSolver double that returns prepared solutions and records every program it sees."""

    def __init__(self, responses, capabilities=None):
        self.responses = list(responses)
        self.programs = []
        self.time_limits = []
        self._capabilities = capabilities or SolverCapabilities(
            supports_lp=True, supports_mip=False, supports_duals=False, supports_time_limit=True)

    def name(self):
        return 'scripted'

    def capabilities(self):
        return self._capabilities

    def solve(self, program, time_limit=None):
        self.programs.append(program)
        self.time_limits.append(time_limit)
        response = self.responses.pop(0) if self.responses else LPSolution.error("script exhausted")
        if callable(response):
            return response(program)
        return response


@pytest.fixture
def highs():
    return HighsSolver()


@pytest.fixture
def example_instance():
    # m=1, c=10, items (w, p): (5, 10), (4, 40), (6, 30); optimum 70 with items 1 and 2
    return Instance.from_lists([10], [5, 4, 6], [10, 40, 30], name='example')


@pytest.fixture
def two_knapsack_instance():
    # aggregated capacity 20 fits weights 6+7+7, but no split into two knapsacks of 10 does
    return Instance.from_lists([10, 10], [6, 7, 7], [10, 10, 10], name='split')


@pytest.fixture
def small_instance():
    return Instance.from_lists([12, 9], [4, 5, 7, 3, 6, 8], [9, 11, 15, 5, 10, 17], name='small')
