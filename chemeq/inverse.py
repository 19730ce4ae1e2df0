"""
Inverse equilibrium problems.

Instead of fixing every element amount, an inverse problem fixes measured
properties of the equilibrium state (pH, a species amount, a phase volume)
and solves for the amounts of titrants added to a base recipe. The element
amounts follow the affine map ``be(x) = be0 + C x`` where column ``j`` of C
is the element vector of titrant ``j``.

The outer loop is Newton's method on ``F(x) = value(state(x)) - desired``.
The Jacobian comes from the equilibrium sensitivity,
``dF/dx = dF/dn . dn/dbe . C``, or from finite differences. A single bounded
unknown is solved with a safeguarded Newton iteration that falls back to
bisection whenever the Newton step leaves the current bracket.
"""

from __future__ import annotations

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from loguru import logger

from .errors import FailureReason, InvalidProblem
from .options import InverseOptions, JacobianStrategy
from .problem import EquilibriumProblem
from .result import EquilibriumResult
from .solver import EquilibriumSolver
from .state import EquilibriumState
from .system import ChemicalSystem

Composition = Union[str, Mapping[str, float], Sequence[float]]

_LN10 = math.log(10.0)


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


class EquilibriumTarget(ABC):
    """A measured property of the equilibrium state and its desired value."""

    def __init__(self, desired: float) -> None:
        self.desired = float(desired)

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def value(self, state: EquilibriumState) -> float:
        """Current value of the property."""

    def gradient(self, state: EquilibriumState) -> Optional[np.ndarray]:
        """d(value)/dn over all species, or None when not available."""
        return None

    def residual(self, state: EquilibriumState) -> float:
        return self.value(state) - self.desired

    def __repr__(self) -> str:
        return f"{self.name}(desired={self.desired})"


class _SpeciesTarget(EquilibriumTarget):
    def __init__(self, species: str, desired: float) -> None:
        super().__init__(desired)
        self.species = species

    @property
    def name(self) -> str:
        return f"{type(self).__name__}[{self.species}]"


class PHTarget(_SpeciesTarget):
    """pH = -log10 a(H+)."""

    def __init__(self, desired: float, species: str = "H+") -> None:
        super().__init__(species, desired)

    def value(self, state):
        return state.pH(self.species)

    def gradient(self, state):
        i = state.system.index_species(self.species)
        _, J = state.system.potentials.ln_activities(state.T, state.P, state.n, jacobian=True)
        return -J[i] / _LN10


class SpeciesAmountTarget(_SpeciesTarget):
    """Amount of one species, mol."""

    def value(self, state):
        return state.species_amount(self.species)

    def gradient(self, state):
        grad = np.zeros(state.system.num_species)
        grad[state.system.index_species(self.species)] = 1.0
        return grad


class SpeciesActivityTarget(_SpeciesTarget):
    """Activity of one species."""

    def value(self, state):
        return state.activity(self.species)

    def gradient(self, state):
        i = state.system.index_species(self.species)
        ln_a, J = state.system.potentials.ln_activities(state.T, state.P, state.n, jacobian=True)
        return math.exp(ln_a[i]) * J[i]


class VolumeTarget(EquilibriumTarget):
    """Total volume of all phases, m³."""

    def value(self, state):
        return state.volume()

    def gradient(self, state):
        return state.system.potentials.standard_volumes(state.T, state.P)


class PhaseVolumeTarget(EquilibriumTarget):
    """Volume of one phase, m³."""

    def __init__(self, phase: str, desired: float) -> None:
        super().__init__(desired)
        self.phase = phase

    @property
    def name(self) -> str:
        return f"PhaseVolumeTarget[{self.phase}]"

    def value(self, state):
        return float(state.phase_volumes()[state.system.index_phase(self.phase)])

    def gradient(self, state):
        v = state.system.potentials.standard_volumes(state.T, state.P)
        grad = np.zeros_like(v)
        sl = state.system.phase_slice(state.system.index_phase(self.phase))
        grad[sl] = v[sl]
        return grad


class PhaseSaturationTarget(EquilibriumTarget):
    """Volume fraction of one phase, V_phase / V."""

    def __init__(self, phase: str, desired: float) -> None:
        super().__init__(desired)
        self.phase = phase

    @property
    def name(self) -> str:
        return f"PhaseSaturationTarget[{self.phase}]"

    def value(self, state):
        volumes = state.phase_volumes()
        return float(volumes[state.system.index_phase(self.phase)] / volumes.sum())

    def gradient(self, state):
        v = state.system.potentials.standard_volumes(state.T, state.P)
        volumes = state.phase_volumes()
        V = volumes.sum()
        Vp = volumes[state.system.index_phase(self.phase)]
        in_phase = np.zeros_like(v)
        in_phase[state.system.phase_slice(state.system.index_phase(self.phase))] = 1.0
        return v * (in_phase * V - Vp) / V ** 2


# ---------------------------------------------------------------------------
# Problem definition
# ---------------------------------------------------------------------------


@dataclass
class Titrant:
    """An unknown amount (mol) of a compound added to the base recipe."""

    name: str
    composition: Composition
    lower: float = -math.inf
    upper: float = math.inf
    initial: float = 0.0

    @property
    def bounded(self) -> bool:
        return math.isfinite(self.lower) and math.isfinite(self.upper)


class EquilibriumInverseProblem:
    """
    Base direct problem plus titrants (unknowns) and targets (equations).

    >>> inv = EquilibriumInverseProblem(problem)
    >>> inv.add_titrant("NaOH", lower=0.0, upper=2e-3).add_target(PHTarget(7.0))
    """

    def __init__(self, problem: EquilibriumProblem) -> None:
        self.problem = problem
        self.titrants: List[Titrant] = []
        self.targets: List[EquilibriumTarget] = []

    @property
    def system(self) -> ChemicalSystem:
        return self.problem.system

    @property
    def num_unknowns(self) -> int:
        return len(self.titrants)

    def add_titrant(
        self,
        name: str,
        composition: Optional[Composition] = None,
        lower: float = -math.inf,
        upper: float = math.inf,
        initial: float = 0.0,
    ) -> "EquilibriumInverseProblem":
        """Add an unknown; ``composition`` defaults to ``name`` as a formula."""
        if any(t.name == name for t in self.titrants):
            raise InvalidProblem(f"Duplicate titrant '{name}'")
        if lower > upper:
            raise InvalidProblem(f"Titrant '{name}' has lower bound {lower} above upper bound {upper}")
        titrant = Titrant(name, name if composition is None else composition, lower, upper, initial)
        self._element_column(titrant)  # fail early on unknown elements
        self.titrants.append(titrant)
        return self

    def add_target(self, target: EquilibriumTarget) -> "EquilibriumInverseProblem":
        self.targets.append(target)
        return self

    def validate(self) -> None:
        if not self.titrants:
            raise InvalidProblem("Inverse problem has no titrants")
        if len(self.targets) != len(self.titrants):
            raise InvalidProblem(
                f"Inverse problem needs as many targets as titrants, "
                f"got {len(self.targets)} targets and {len(self.titrants)} titrants"
            )

    # ------------------------------------------------------------------
    # Affine element map
    # ------------------------------------------------------------------

    def _element_column(self, titrant: Titrant) -> np.ndarray:
        comp = titrant.composition
        if isinstance(comp, (str, Mapping)):
            try:
                full = self.system.element_vector(comp)
            except ValueError as exc:
                raise InvalidProblem(f"Titrant '{titrant.name}': {exc}") from exc
        else:
            full = np.asarray(comp, dtype=float)
            if full.shape != (self.system.num_elements,):
                raise InvalidProblem(
                    f"Titrant '{titrant.name}' needs {self.system.num_elements} element coefficients"
                )
        iee = list(self.problem.indices_equilibrium_elements)
        outside = np.delete(full, iee)
        if np.any(outside != 0):
            raise InvalidProblem(f"Titrant '{titrant.name}' contains elements absent from the equilibrium species")
        return full[iee]

    def element_map(self) -> np.ndarray:
        """Matrix C with one column per titrant."""
        iee = self.problem.indices_equilibrium_elements
        if not self.titrants:
            return np.zeros((len(iee), 0))
        return np.column_stack([self._element_column(t) for t in self.titrants])

    def element_amounts(self, x: Sequence[float]) -> np.ndarray:
        return self.problem.element_amounts + self.element_map() @ np.asarray(x, dtype=float)

    def bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        return (
            np.array([t.lower for t in self.titrants]),
            np.array([t.upper for t in self.titrants]),
        )

    def residuals(self, state: EquilibriumState) -> np.ndarray:
        return np.array([t.residual(state) for t in self.targets])


# ---------------------------------------------------------------------------
# Result and solver
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class InverseResult:
    succeeded: bool
    iterations: int
    unknowns: np.ndarray
    residuals: np.ndarray
    failure_reason: FailureReason = FailureReason.NONE
    message: str = ""
    failed_targets: List[str] = field(default_factory=list)
    equilibrium: Optional[EquilibriumResult] = None
    elapsed_time: float = 0.0


class _EquilibriumFailed(Exception):
    def __init__(self, result: EquilibriumResult) -> None:
        super().__init__(result.message)
        self.result = result


def _adopt(state: EquilibriumState, other: EquilibriumState) -> None:
    state.temperature, state.pressure = other.temperature, other.pressure
    state.species_amounts[:] = other.species_amounts
    state.element_potentials[:] = other.element_potentials
    state.species_stabilities[:] = other.species_stabilities


class EquilibriumInverseSolver:
    """Newton iteration on the targets, one direct solve per evaluation."""

    def __init__(self, system: ChemicalSystem, options: Optional[InverseOptions] = None) -> None:
        self.system = system
        self.options = options or InverseOptions()
        self.solver = EquilibriumSolver(system, options=self.options.equilibrium)

    def solve(
        self,
        state: EquilibriumState,
        problem: EquilibriumInverseProblem,
        options: Optional[InverseOptions] = None,
    ) -> InverseResult:
        """Solve for the titrant amounts; ``state`` ends at the last solve."""
        opts = (options or self.options).model_copy()
        if problem.system is not self.system:
            raise ValueError("Inverse problem belongs to a different chemical system")
        problem.validate()
        self.solver.set_partition(problem.problem.partition)
        self.solver.set_options(opts.equilibrium)

        start = time.perf_counter()
        lower, upper = problem.bounds()
        x = np.clip(np.array([t.initial for t in problem.titrants], dtype=float), lower, upper)

        def finish(succeeded, iterations, x, F, eq_result, reason=FailureReason.NONE, message=""):
            failed = [
                t.name for t, r in zip(problem.targets, F)
                if not (np.isfinite(r) and abs(r) <= opts.tolerance)
            ]
            result = InverseResult(
                succeeded=succeeded,
                iterations=iterations,
                unknowns=np.array(x, dtype=float),
                residuals=np.array(F, dtype=float),
                failure_reason=reason,
                message=message,
                failed_targets=[] if succeeded else failed,
                equilibrium=eq_result,
                elapsed_time=time.perf_counter() - start,
            )
            if succeeded:
                logger.info(
                    "Inverse problem solved in {} iterations: {}",
                    iterations, dict(zip([t.name for t in problem.titrants], result.unknowns.tolist())),
                )
            else:
                logger.warning("Inverse problem failed after {} iterations: {}", iterations, message)
            return result

        try:
            if problem.num_unknowns == 1 and problem.titrants[0].bounded:
                return self._solve_bracketed(state, problem, x, opts, finish)
            return self._solve_newton(state, problem, x, opts, finish)
        except _EquilibriumFailed as exc:
            res = exc.result
            nan = np.full(len(problem.targets), np.nan)
            return finish(False, 0, x, nan, res, res.failure_reason,
                          f"Equilibrium calculation failed: {res.message}")

    # ------------------------------------------------------------------
    # Evaluations
    # ------------------------------------------------------------------

    def _evaluate(self, state, problem, x) -> Tuple[np.ndarray, EquilibriumResult]:
        p = problem.problem
        result = self.solver.solve(state, p.temperature, p.pressure, problem.element_amounts(x))
        if not result.succeeded:
            raise _EquilibriumFailed(result)
        return problem.residuals(state), result

    def _jacobian(self, state, problem, x, F, result, opts) -> np.ndarray:
        if opts.jacobian == JacobianStrategy.SENSITIVITY:
            grads = [t.gradient(state) for t in problem.targets]
            if all(g is not None for g in grads):
                sens = self.solver.sensitivity(result, state)
                ies = list(self.solver.partition.indices_equilibrium_species)
                dFdn = np.array([g[ies] for g in grads])
                return dFdn @ sens.dnedbe @ problem.element_map()
            logger.debug("Target without gradient, using finite differences")

        J = np.empty((F.size, x.size))
        for j in range(x.size):
            h = opts.finite_difference_step * max(1.0, abs(x[j]))
            shifted = x.copy()
            shifted[j] += h
            trial = state.copy()
            F_j, _ = self._evaluate(trial, problem, shifted)
            J[:, j] = (F_j - F) / h
        return J

    # ------------------------------------------------------------------
    # One bounded unknown
    # ------------------------------------------------------------------

    def _solve_bracketed(self, state, problem, x, opts, finish):
        lo, hi = problem.titrants[0].lower, problem.titrants[0].upper
        F_lo, _ = self._evaluate(state.copy(), problem, np.array([lo]))
        F_hi, _ = self._evaluate(state.copy(), problem, np.array([hi]))
        for x_end, F_end in ((lo, F_lo), (hi, F_hi)):
            if abs(F_end[0]) <= opts.tolerance:
                x = np.array([x_end])
                F, res = self._evaluate(state, problem, x)
                return finish(True, 0, x, F, res)
        if F_lo[0] * F_hi[0] > 0:
            F, res = self._evaluate(state, problem, x)
            return finish(False, 0, x, F, res, FailureReason.INFEASIBLE,
                          f"Target not bracketed by [{lo}, {hi}] (residuals {F_lo[0]:.3g}, {F_hi[0]:.3g})")

        # x_neg keeps F < 0, x_pos keeps F > 0
        x_neg, x_pos = (lo, hi) if F_lo[0] < 0 else (hi, lo)
        dx_old = abs(hi - lo)
        F, res = self._evaluate(state, problem, x)

        for iteration in range(1, opts.max_iterations + 1):
            if abs(F[0]) <= opts.tolerance:
                return finish(True, iteration - 1, x, F, res)
            if F[0] < 0:
                x_neg = x[0]
            else:
                x_pos = x[0]

            dF = self._jacobian(state, problem, x, F, res, opts)[0, 0]
            a, b = min(x_neg, x_pos), max(x_neg, x_pos)
            newton = x[0] - F[0] / dF if dF != 0 and np.isfinite(dF) else np.nan
            if not (a < newton < b) or abs(2.0 * F[0]) > abs(dx_old * dF):
                x_new = 0.5 * (x_neg + x_pos)
            else:
                x_new = newton
            dx_old = abs(x_new - x[0])
            if opts.equilibrium.output_verbosity >= 2:
                logger.debug("Inverse iteration {}: x={:.6e} F={:.3e}", iteration, x[0], F[0])
            if dx_old == 0.0 or b - a <= np.finfo(float).eps * max(1.0, abs(x[0])):
                return finish(False, iteration, x, F, res, FailureReason.NON_CONVERGENCE,
                              "Bracket collapsed before the target tolerance was met")
            x = np.array([x_new])
            F, res = self._evaluate(state, problem, x)

        if abs(F[0]) <= opts.tolerance:
            return finish(True, opts.max_iterations, x, F, res)
        return finish(False, opts.max_iterations, x, F, res, FailureReason.NON_CONVERGENCE,
                      f"No convergence in {opts.max_iterations} iterations")

    # ------------------------------------------------------------------
    # General case
    # ------------------------------------------------------------------

    def _solve_newton(self, state, problem, x, opts, finish):
        lower, upper = problem.bounds()
        F, res = self._evaluate(state, problem, x)

        for iteration in range(opts.max_iterations):
            norm = float(np.abs(F).max())
            if norm <= opts.tolerance:
                return finish(True, iteration, x, F, res)

            J = self._jacobian(state, problem, x, F, res, opts)
            try:
                dx = np.linalg.solve(J, -F)
            except np.linalg.LinAlgError:
                return finish(False, iteration, x, F, res, FailureReason.NUMERICAL_SINGULARITY,
                              "Singular inverse-problem Jacobian")

            alpha = 1.0
            for _ in range(opts.max_backtracks + 1):
                x_trial = np.clip(x + alpha * dx, lower, upper)
                trial = state.copy()
                try:
                    F_trial, res_trial = self._evaluate(trial, problem, x_trial)
                except _EquilibriumFailed:
                    alpha *= 0.5
                    continue
                if float(np.abs(F_trial).max()) < norm:
                    break
                alpha *= 0.5
            else:
                return finish(False, iteration, x, F, res, FailureReason.NON_CONVERGENCE,
                              "Line search failed to reduce the target residuals")

            if opts.equilibrium.output_verbosity >= 2:
                logger.debug("Inverse iteration {}: |F|={:.3e} alpha={:.3g}", iteration, norm, alpha)
            _adopt(state, trial)
            x, F, res = x_trial, F_trial, res_trial

        if float(np.abs(F).max()) <= opts.tolerance:
            return finish(True, opts.max_iterations, x, F, res)
        return finish(False, opts.max_iterations, x, F, res, FailureReason.NON_CONVERGENCE,
                      f"No convergence in {opts.max_iterations} iterations")
