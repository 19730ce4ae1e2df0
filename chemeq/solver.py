"""
Gibbs energy minimization by a primal-dual interior-point Newton method.

For the equilibrium species the solver minimizes G(n) = sum(n_i mu_i) in
units of RT subject to the element balance Ae n = be and n >= 0, by Newton
iterations on the perturbed KKT conditions

  g(n) - Ae^T y - z = 0
  Ae n - be        = 0
  n z - tau        = 0

The complementarity block is eliminated so every iteration factorizes the
reduced matrix [[H + Z/N, Ae^T], [Ae, 0]]. The factors of the last iterate
are kept in the result for the sensitivity calculation.

Numerical failures are reported through the result, never raised.
"""

from __future__ import annotations

import time
import warnings
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from loguru import logger
from scipy.linalg import LinAlgError, LinAlgWarning, lu_factor, lu_solve, qr
from scipy.optimize import linprog

from .errors import FailureReason, InvalidProblem
from .options import EquilibriumOptions, HessianStrategy
from .partition import Partition
from .potentials import R_GAS
from .problem import EquilibriumProblem
from .result import EquilibriumResult, KKTFactorization
from .sensitivity import EquilibriumSensitivity, compute_sensitivity
from .state import EquilibriumState
from .system import ChemicalSystem


class _Failure(Exception):
    """Aborts a solve; converted into an unsuccessful result."""

    def __init__(self, reason: FailureReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


@dataclass
class _Reduction:
    """Free species and independent balance rows of a single solve."""

    species: np.ndarray  # global indices of the free species
    positions: np.ndarray  # their positions among the equilibrium species
    pinned: np.ndarray  # global indices of species forced to zero
    rows: np.ndarray  # positions in be of the independent rows kept
    A: np.ndarray
    b: np.ndarray
    num_species: int  # equilibrium species, free or pinned


# ---------------------------------------------------------------------------
# Linear algebra helpers
# ---------------------------------------------------------------------------


def independent_rows(M: np.ndarray, tol: float = 1e-10) -> Tuple[np.ndarray, np.ndarray]:
    """Split the rows of ``M`` into a maximal independent set and the rest."""
    if M.shape[0] == 0 or M.shape[1] == 0:
        return np.arange(0), np.arange(M.shape[0])
    _, R, perm = qr(M.T, mode="economic", pivoting=True)
    d = np.abs(np.diag(R))
    rank = int(np.sum(d > tol * d[0])) if d.size and d[0] > 0 else 0
    return np.sort(perm[:rank]), np.sort(perm[rank:])


def _factorize(K: np.ndarray, nx: int, regularization: float):
    """LU factors of K; one regularized retry. Returns (lu, piv) or None."""
    candidates = [K]
    Kr = K.copy()
    Kr[:nx, :nx] += regularization * np.eye(nx)
    Kr[nx:, nx:] -= regularization * np.eye(K.shape[0] - nx)
    candidates.append(Kr)

    for attempt, M in enumerate(candidates):
        with warnings.catch_warnings():
            warnings.simplefilter("error", LinAlgWarning)
            try:
                lu, piv = lu_factor(M)
            except (LinAlgError, LinAlgWarning, ValueError):
                continue
        d = np.abs(np.diag(lu))
        if np.all(np.isfinite(lu)) and d.min() > np.finfo(float).tiny:
            if attempt:
                logger.debug("KKT matrix regularized with {:.1e}", regularization)
            return lu, piv
    return None


def _max_step(x: np.ndarray, dx: np.ndarray, theta: float) -> float:
    """Largest step in (0, 1] keeping x + alpha dx >= (1 - theta) x."""
    neg = dx < 0
    if not np.any(neg):
        return 1.0
    return float(min(1.0, theta * np.min(-x[neg] / dx[neg])))


def _least_norm(A: np.ndarray, b: np.ndarray, guess: np.ndarray) -> np.ndarray:
    """Closest point to ``guess`` on A n = b, relative to ``guess`` when it is positive."""
    if A.shape[0] == 0:
        return guess.copy()
    w = guess if np.all(guess > 0) else np.ones_like(guess)
    corr, *_ = np.linalg.lstsq(A * w, b - A @ guess, rcond=None)
    return guess + w * corr


def _phase_one(A: np.ndarray, b: np.ndarray, epsilon: float) -> np.ndarray:
    """Strictly positive point of A n = b from max t s.t. A n = b, n >= t."""
    R, nx = A.shape
    cap = max(1.0, float(np.abs(b).max())) if b.size else 1.0
    c = np.zeros(nx + 1)
    c[-1] = -1.0
    A_ub = np.hstack([-np.eye(nx), np.ones((nx, 1))])
    res = linprog(
        c,
        A_ub=A_ub,
        b_ub=np.zeros(nx),
        A_eq=np.hstack([A, np.zeros((R, 1))]) if R else None,
        b_eq=b if R else None,
        bounds=[(0.0, None)] * nx + [(0.0, cap)],
        method="highs",
    )
    if res.status == 2:
        raise _Failure(FailureReason.INFEASIBLE, "No non-negative species amounts satisfy the element balance")
    if res.status != 0 or res.x is None:
        raise _Failure(FailureReason.NON_CONVERGENCE, f"Phase-1 linear program failed: {res.message}")

    t = float(res.x[-1])
    floor = max(0.5 * t, epsilon)
    n0 = np.maximum(res.x[:nx], floor)
    polished = _least_norm(A, b, n0)
    if np.all(polished >= 0.5 * floor):
        n0 = polished
    return n0


# ---------------------------------------------------------------------------
# Solver
# ---------------------------------------------------------------------------


class EquilibriumSolver:
    """
    Interior-point Gibbs energy minimizer.

    The solver keeps no state between calls: warm starts come exclusively
    from the ``EquilibriumState`` passed to ``solve``.
    """

    def __init__(
        self,
        system: ChemicalSystem,
        partition: Optional[Partition] = None,
        options: Optional[EquilibriumOptions] = None,
    ) -> None:
        self.system = system
        self.partition = (partition or Partition(system)).copy()
        self.partition.validate()
        self.options = options or EquilibriumOptions()

    def set_partition(self, partition: Partition) -> None:
        if partition.system is not self.system:
            raise ValueError("Partition belongs to a different chemical system")
        partition.validate()
        self.partition = partition.copy()

    def set_options(self, options: EquilibriumOptions) -> None:
        self.options = options

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def solve(
        self,
        state: EquilibriumState,
        temperature: float,
        pressure: float,
        be: Sequence[float],
        options: Optional[EquilibriumOptions] = None,
    ) -> EquilibriumResult:
        """
        Equilibrate the equilibrium species of ``state`` at (T, P, be).

        On return ``state.species_amounts`` holds the minimizer for the
        equilibrium species; kinetic and inert amounts are untouched.
        """
        return self._solve(state, temperature, pressure, be, self.partition, options)

    def solve_problem(
        self,
        state: EquilibriumState,
        problem: EquilibriumProblem,
        options: Optional[EquilibriumOptions] = None,
    ) -> EquilibriumResult:
        if problem.system is not self.system:
            raise ValueError("Problem belongs to a different chemical system")
        return self._solve(
            state, problem.temperature, problem.pressure,
            problem.element_amounts, problem.partition, options,
        )

    def sensitivity(
        self, result: EquilibriumResult, state: Optional[EquilibriumState] = None
    ) -> EquilibriumSensitivity:
        """Sensitivity of the solve that produced ``result``."""
        return compute_sensitivity(self, result, state)

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def _solve(self, state, temperature, pressure, be, partition, options) -> EquilibriumResult:
        opts = (options or self.options).model_copy()
        start = time.perf_counter()

        if state.system is not self.system:
            raise ValueError("State belongs to a different chemical system")
        T, P = float(temperature), float(pressure)
        be = np.array(be, dtype=float).ravel()

        ies = np.array(partition.indices_equilibrium_species, dtype=int)
        iee = np.array(partition.indices_equilibrium_elements(), dtype=int)
        if be.size != iee.size:
            raise InvalidProblem(f"Expected {iee.size} equilibrium element amounts, got {be.size}")
        Ae = self.system.formula_matrix[np.ix_(iee, ies)]
        element_names = [self.system.elements[j] for j in iee]

        def finish(succeeded, iterations, norms, reason=FailureReason.NONE, message="", factorization=None):
            n_e = state.species_amounts[ies]
            feasibility = float(np.abs(Ae @ n_e - be).max()) if be.size else 0.0
            if succeeded and feasibility > opts.tolerance:
                succeeded, reason, factorization = False, FailureReason.NON_CONVERGENCE, None
                message = f"Element balance residual {feasibility:.2e} exceeds tolerance {opts.tolerance:.2e}"
            result = EquilibriumResult(
                succeeded=succeeded,
                iterations=iterations,
                stationarity=norms[0],
                feasibility=feasibility,
                complementarity=norms[1],
                elapsed_time=time.perf_counter() - start,
                temperature=T,
                pressure=P,
                element_amounts=be.copy(),
                failure_reason=reason,
                message=message,
                factorization=factorization,
            )
            if not succeeded:
                logger.warning(
                    "Equilibrium solve failed at T={:.2f} K, P={:.4g} Pa ({}): {}",
                    T, P, reason.value, message,
                )
            elif opts.output_verbosity >= 1:
                logger.info(
                    "Equilibrium solve converged in {} iterations ({:.2e} s, error={:.2e})",
                    iterations, result.elapsed_time, result.error,
                )
            return result

        if not (np.isfinite(T) and T > 0 and np.isfinite(P) and P > 0):
            raise InvalidProblem(f"Temperature and pressure must be positive and finite, got T={T}, P={P}")
        if not np.all(np.isfinite(be)):
            raise InvalidProblem(f"Element amounts must be finite, got {be.tolist()}")

        try:
            red = self._reduce(Ae, be, ies, element_names, opts.tolerance)
        except _Failure as exc:
            return finish(False, 0, (np.inf, np.inf), exc.reason, str(exc))

        state.temperature, state.pressure = T, P
        if red.pinned.size:
            state.species_amounts[red.pinned] = 0.0
            state.species_stabilities[red.pinned] = 0.0

        if red.species.size == 0:
            return finish(True, 0, (0.0, 0.0), message="No free equilibrium species")

        try:
            x0 = self._starting_point(state, red, iee, T, opts)
            iterations, norms, factorization, failure = self._newton(state, T, P, red, iee, x0, opts)
        except _Failure as exc:
            return finish(False, 0, (np.inf, np.inf), exc.reason, str(exc))

        if failure is not None:
            return finish(False, iterations, norms, failure.reason, str(failure))
        return finish(True, iterations, norms, factorization=factorization)

    @staticmethod
    def _reduce(Ae, be, ies, element_names, tol) -> _Reduction:
        """Pin species forced to zero and drop dependent balance rows."""
        nonneg = np.all(Ae >= 0, axis=1)

        negative = np.flatnonzero(nonneg & (be < 0))
        if negative.size:
            names = [element_names[j] for j in negative]
            raise _Failure(FailureReason.INFEASIBLE, f"Negative amount of element(s) {names}")

        zero = nonneg & (be <= 0)
        pinned_mask = np.any(Ae[zero] > 0, axis=0) if zero.any() else np.zeros(ies.size, dtype=bool)
        free_mask = ~pinned_mask
        Af = Ae[:, free_mask]

        active = np.any(Af != 0, axis=1)
        stranded = np.flatnonzero(~active & (np.abs(be) > tol))
        if stranded.size:
            names = [element_names[j] for j in stranded]
            raise _Failure(FailureReason.INFEASIBLE, f"No free species can hold element(s) {names}")

        candidates = np.flatnonzero(active)
        keep, dependent = independent_rows(Af[candidates])
        rows = candidates[keep]
        if dependent.size:
            drows = candidates[dependent]
            coef, *_ = np.linalg.lstsq(Af[rows].T, Af[drows].T, rcond=None)
            mismatch = np.abs(be[drows] - coef.T @ be[rows])
            if np.any(mismatch > tol):
                names = [element_names[j] for j in drows]
                raise _Failure(
                    FailureReason.INFEASIBLE,
                    f"Amounts of linearly dependent element(s) {names} are inconsistent",
                )

        return _Reduction(
            species=ies[free_mask],
            positions=np.flatnonzero(free_mask),
            pinned=ies[pinned_mask],
            rows=rows,
            A=Af[rows],
            b=be[rows],
            num_species=ies.size,
        )

    def _starting_point(self, state, red, iee, T, opts):
        """Initial (n, y, z): warm start, least-norm correction or phase 1."""
        RT = R_GAS * T
        A, b = red.A, red.b
        n_prev = state.species_amounts[red.species].astype(float)

        if opts.warm_start and np.all(np.isfinite(n_prev)) and np.all(n_prev > 0):
            residual = float(np.abs(A @ n_prev - b).max()) if b.size else 0.0
            if residual <= opts.tolerance:
                z = state.species_stabilities[red.species] / RT
                if np.all(z > 0):
                    y = state.element_potentials[iee[red.rows]] / RT
                    logger.debug("Warm start from supplied state")
                    return n_prev.copy(), y, z
                return n_prev.copy(), None, None

        guess = n_prev if opts.warm_start and np.all(np.isfinite(n_prev)) else np.zeros_like(n_prev)
        n0 = _least_norm(A, b, np.maximum(guess, 0.0))
        if not np.all(n0 > 0):
            logger.debug("Least-norm start not interior, solving phase-1 problem")
            n0 = _phase_one(A, b, opts.epsilon)
        return n0, None, None

    def _newton(self, state, T, P, red, iee, x0, opts):
        model = self.system.potentials
        RT = R_GAS * T
        A, b = red.A, red.b
        nx, ny = A.shape[1], A.shape[0]
        exact = opts.hessian == HessianStrategy.EXACT

        work = state.species_amounts.astype(float).copy()

        def gradient(n, with_jacobian):
            work[red.species] = n
            ev = model.evaluate(T, P, work, jacobian=with_jacobian)
            g = ev.values[red.species] / RT
            if not with_jacobian:
                return g, None
            if ev.jacobian is not None:
                return g, ev.jacobian[np.ix_(red.species, red.species)] / RT
            return g, self._numerical_hessian(n, g, gradient)

        def errors(n, y, z, g):
            ex = float(np.abs(g - A.T @ y - z).max())
            ec = float(np.abs(n * z).max())
            eb = float(np.abs(A @ n - b).max()) if ny else 0.0
            return ex, ec, eb

        n, y, z = x0
        g, H = gradient(n, exact)
        if z is None:
            z = opts.barrier / n
        if y is None:
            y = np.linalg.lstsq(A.T, g - z, rcond=None)[0] if ny else np.zeros(0)

        iteration = 0
        while True:
            if not exact:
                H = np.diag(1.0 / n)

            ex, ec, eb = errors(n, y, z, g)
            tau = max(opts.barrier, opts.barrier_reduction * float(np.mean(n * z)))

            K = np.zeros((nx + ny, nx + ny))
            K[:nx, :nx] = H + np.diag(z / n)
            K[:nx, nx:] = A.T
            K[nx:, :nx] = A
            factors = _factorize(K, nx, opts.regularization)
            if factors is None:
                self._store(state, red, iee, n, y, z, RT)
                return iteration, (ex, ec), None, _Failure(
                    FailureReason.NUMERICAL_SINGULARITY,
                    f"KKT matrix singular at iteration {iteration} after regularization",
                )

            if opts.output_verbosity >= 2:
                logger.debug(
                    "Iteration {}: stationarity={:.2e} feasibility={:.2e} complementarity={:.2e}",
                    iteration, ex, eb, ec,
                )

            if ex <= opts.tolerance and ec <= opts.tolerance and eb <= opts.tolerance:
                self._store(state, red, iee, n, y, z, RT)
                factorization = KKTFactorization(
                    lu=factors[0],
                    piv=factors[1],
                    species=red.species.copy(),
                    positions=red.positions.copy(),
                    rows=red.rows.copy(),
                    num_species=red.num_species,
                    num_elements=iee.size,
                    species_amounts=state.species_amounts.copy(),
                    exact_hessian=exact,
                )
                return iteration, (ex, ec), factorization, None

            if iteration >= opts.max_iterations:
                self._store(state, red, iee, n, y, z, RT)
                return iteration, (ex, ec), None, _Failure(
                    FailureReason.NON_CONVERGENCE,
                    f"No convergence in {opts.max_iterations} iterations (error={max(ex, ec, eb):.2e})",
                )

            # Newton direction on the reduced KKT system
            rx = g - A.T @ y - z
            rc = n * z - tau
            rhs = np.concatenate([-(rx + rc / n), -(A @ n - b)])
            sol = lu_solve(factors, rhs)
            dn = sol[:nx]
            dy = -sol[nx:]
            dz = -(rc + z * dn) / n

            alpha = _max_step(n, dn, opts.fraction_to_boundary)
            alpha_z = _max_step(z, dz, opts.fraction_to_boundary)

            # Backtracking on the barrier merit function
            nu = max(1.0, float(np.abs(y + dy).max())) if ny else 1.0
            rb1 = float(np.abs(A @ n - b).sum()) if ny else 0.0
            phi0 = float(n @ g - tau * np.log(n).sum()) + nu * rb1
            dphi = float((g - tau / n) @ dn) - nu * rb1
            err0 = max(ex, ec, eb)
            slack = 1e-13 * max(1.0, abs(phi0))

            for _ in range(opts.max_backtracks + 1):
                n_trial = n + alpha * dn
                g_trial, _ = gradient(n_trial, False)
                rb1_trial = float(np.abs(A @ n_trial - b).sum()) if ny else 0.0
                phi = float(n_trial @ g_trial - tau * np.log(n_trial).sum()) + nu * rb1_trial
                if np.isfinite(phi) and phi <= phi0 + opts.armijo * alpha * dphi + slack:
                    break
                err = max(errors(n_trial, y + alpha * dy, z + alpha_z * dz, g_trial))
                if np.isfinite(err) and err < (1.0 - opts.armijo * alpha) * err0:
                    break
                alpha *= 0.5
            else:
                logger.debug("Line search exhausted at iteration {}, taking alpha={:.2e}", iteration, alpha)

            n = n + alpha * dn
            y = y + alpha * dy
            z = z + alpha_z * dz
            iteration += 1
            g, H = gradient(n, exact)

    @staticmethod
    def _numerical_hessian(n, g, gradient):
        """Forward-difference Jacobian of the scaled potentials."""
        H = np.empty((n.size, n.size))
        for j in range(n.size):
            h = 1e-7 * n[j]
            shifted = n.copy()
            shifted[j] += h
            H[:, j] = (gradient(shifted, False)[0] - g) / h
        return 0.5 * (H + H.T)

    def _store(self, state, red, iee, n, y, z, RT):
        """Write the iterate back into the state (the warm-start channel)."""
        state.species_amounts[red.species] = n
        state.species_stabilities[red.species] = z * RT
        state.element_potentials[iee] = 0.0
        state.element_potentials[iee[red.rows]] = y * RT
