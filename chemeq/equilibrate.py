"""
One-call helpers for direct and inverse equilibrium problems.

Unlike the solvers, which report numerical failures in their results, these
helpers raise ``EquilibriumError`` (carrying the result) when a calculation
does not succeed.
"""

from __future__ import annotations

from typing import Optional, Tuple, Union

from .errors import EquilibriumError
from .inverse import EquilibriumInverseProblem, EquilibriumInverseSolver, InverseResult
from .options import EquilibriumOptions, InverseOptions
from .problem import EquilibriumProblem
from .result import EquilibriumResult
from .solver import EquilibriumSolver
from .state import EquilibriumState

Problem = Union[EquilibriumProblem, EquilibriumInverseProblem]
Result = Union[EquilibriumResult, InverseResult]


def _solve(state: EquilibriumState, problem: Problem, options) -> Result:
    if isinstance(problem, EquilibriumInverseProblem):
        if options is not None and not isinstance(options, InverseOptions):
            options = InverseOptions(equilibrium=options)
        result = EquilibriumInverseSolver(problem.system, options).solve(state, problem)
    else:
        if isinstance(options, InverseOptions):
            options = options.equilibrium
        result = EquilibriumSolver(problem.system, problem.partition, options).solve_problem(state, problem)

    if not result.succeeded:
        raise EquilibriumError(
            f"Equilibrium calculation failed ({result.failure_reason.value}): {result.message}",
            result,
        )
    return result


def equilibrate(
    state: EquilibriumState,
    problem: Problem,
    options: Optional[Union[EquilibriumOptions, InverseOptions]] = None,
) -> Result:
    """Equilibrate ``state`` in place for a direct or inverse problem."""
    return _solve(state, problem, options)


def equilibrate_problem(
    problem: Problem,
    options: Optional[Union[EquilibriumOptions, InverseOptions]] = None,
) -> Tuple[EquilibriumState, Result]:
    """Equilibrate a fresh state; returns ``(state, result)``."""
    base = problem.problem if isinstance(problem, EquilibriumInverseProblem) else problem
    state = EquilibriumState(base.system, base.temperature, base.pressure)
    return state, _solve(state, problem, options)
