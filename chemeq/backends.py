"""
Equilibrium backends.

A backend is an adapter exposing one engine through a common contract:
``solve`` a direct problem into a state, and report the formula matrix,
chemical potentials and standard volumes. ``NativeBackend`` wraps the
interior-point solver of this package. ``ScipyMinimizeBackend`` minimizes the
Gibbs energy with SLSQP, the classic reactor approach, and exposes no KKT
factorization, so its sensitivities are computed by finite differences.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np
from loguru import logger
from scipy.optimize import minimize

from .errors import FailureReason
from .options import EquilibriumOptions
from .partition import Partition
from .potentials import R_GAS, ChemicalPotentialModel, PotentialEvaluation
from .result import EquilibriumResult
from .sensitivity import compute_sensitivity
from .solver import EquilibriumSolver
from .state import EquilibriumState
from .system import ChemicalSystem


class EquilibriumBackend(ABC):
    """Common contract of equilibrium engines."""

    system: ChemicalSystem
    partition: Partition
    options: EquilibriumOptions

    @abstractmethod
    def solve(
        self,
        state: EquilibriumState,
        temperature: float,
        pressure: float,
        be: Sequence[float],
        options: Optional[EquilibriumOptions] = None,
    ) -> EquilibriumResult:
        """Equilibrate ``state`` in place, reporting the outcome."""

    @abstractmethod
    def chemical_potentials(self, T: float, P: float, n: np.ndarray) -> np.ndarray:
        """Species chemical potentials, J/mol."""

    def formula_matrix(self) -> np.ndarray:
        return self.system.formula_matrix

    def standard_volumes(self, T: float, P: float) -> np.ndarray:
        return self.system.potentials.standard_volumes(T, P)

    def sensitivity(self, result: EquilibriumResult, state: Optional[EquilibriumState] = None):
        return compute_sensitivity(self, result, state)


class NativeBackend(EquilibriumBackend):
    """The interior-point solver of this package behind the backend contract."""

    def __init__(
        self,
        system: ChemicalSystem,
        partition: Optional[Partition] = None,
        options: Optional[EquilibriumOptions] = None,
    ) -> None:
        self.system = system
        self.solver = EquilibriumSolver(system, partition, options)

    @property
    def partition(self) -> Partition:
        return self.solver.partition

    @property
    def options(self) -> EquilibriumOptions:
        return self.solver.options

    def solve(self, state, temperature, pressure, be, options=None):
        return self.solver.solve(state, temperature, pressure, be, options)

    def chemical_potentials(self, T, P, n):
        return self.system.potentials.values(T, P, np.asarray(n, dtype=float))


class ScipyMinimizeBackend(EquilibriumBackend):
    """
    Gibbs energy minimization with ``scipy.optimize.minimize`` (SLSQP).

    Minimizes sum(n_i mu_i) / RT subject to the element balance with simple
    lower bounds on the amounts. Reliable for gas-phase systems with species
    amounts well above ``floor``; trace species of aqueous systems are better
    served by the native solver.
    """

    def __init__(
        self,
        system: ChemicalSystem,
        partition: Optional[Partition] = None,
        options: Optional[EquilibriumOptions] = None,
        floor: float = 1e-20,
        max_iterations: int = 500,
    ) -> None:
        self.system = system
        self.partition = (partition or Partition(system)).copy()
        self.partition.validate()
        self.options = options or EquilibriumOptions()
        self.floor = floor
        self.max_iterations = max_iterations

    def chemical_potentials(self, T, P, n):
        return self.system.potentials.values(T, P, np.asarray(n, dtype=float))

    def solve(self, state, temperature, pressure, be, options=None):
        opts = (options or self.options).model_copy()
        start = time.perf_counter()
        T, P = float(temperature), float(pressure)
        RT = R_GAS * T
        be = np.array(be, dtype=float).ravel()

        ies = np.array(self.partition.indices_equilibrium_species, dtype=int)
        iee = np.array(self.partition.indices_equilibrium_elements(), dtype=int)
        A = self.system.formula_matrix[np.ix_(iee, ies)]
        bscale = max(1.0, float(np.abs(be).max())) if be.size else 1.0

        def report(succeeded, iterations, n, y, z, reason=FailureReason.NONE, message=""):
            result = EquilibriumResult(
                succeeded=succeeded,
                iterations=iterations,
                stationarity=float(np.abs(z[n > 10 * self.floor]).max(initial=0.0)),
                feasibility=float(np.abs(A @ n - be).max()) if be.size else 0.0,
                complementarity=float(np.abs(n * z).max(initial=0.0)),
                elapsed_time=time.perf_counter() - start,
                temperature=T,
                pressure=P,
                element_amounts=be.copy(),
                failure_reason=reason,
                message=message,
            )
            if not succeeded:
                logger.warning("SLSQP equilibrium failed at T={:.2f} K, P={:.4g} Pa: {}", T, P, message)
            elif opts.output_verbosity >= 1:
                logger.info("SLSQP equilibrium converged in {} iterations", iterations)
            return result

        negative = np.all(A >= 0, axis=1) & (be < 0)
        if np.any(negative):
            n_prev = state.species_amounts[ies]
            empty = np.zeros(ies.size)
            return report(False, 0, n_prev, empty, empty, FailureReason.INFEASIBLE,
                          f"Negative amount of element(s) {[self.system.elements[j] for j in iee[negative]]}")

        work = state.species_amounts.astype(float).copy()

        def scaled_potentials(n):
            work[ies] = n
            return self.system.potentials.values(T, P, work)[ies] / RT

        def objective(n):
            return float(n @ scaled_potentials(n))

        def objective_grad(n):
            # Gibbs-Duhem: d(sum n mu)/dn = mu
            return scaled_potentials(n)

        constraints = {
            "type": "eq",
            "fun": lambda n: A @ n - be,
            "jac": lambda n: A,
        }
        bounds = [(self.floor, None) for _ in ies]

        n0 = np.maximum(state.species_amounts[ies].astype(float), 0.0)
        if not opts.warm_start or n0.sum() <= 0:
            n0, *_ = np.linalg.lstsq(A, be, rcond=None)
        n0 = np.maximum(n0, max(1e-10 * bscale, self.floor))

        res = minimize(
            objective,
            n0,
            method="SLSQP",
            jac=objective_grad,
            bounds=bounds,
            constraints=constraints,
            options={"maxiter": self.max_iterations, "ftol": 1e-14},
        )

        n = np.maximum(res.x, self.floor)
        g = scaled_potentials(n)
        y = np.linalg.lstsq(A.T, g, rcond=None)[0] if be.size else np.zeros(0)
        z = g - A.T @ y

        state.temperature, state.pressure = T, P
        state.species_amounts[ies] = n
        state.element_potentials[iee] = y * RT
        state.species_stabilities[ies] = z * RT

        feasible = (float(np.abs(A @ n - be).max()) if be.size else 0.0) <= opts.tolerance
        # mode 8: no descent direction left, i.e. already at the minimum
        if not res.success and res.status == 8 and feasible:
            logger.debug("SLSQP stopped at a stationary point: {}", res.message)
        elif not res.success:
            return report(False, int(res.nit), n, y, z, FailureReason.NON_CONVERGENCE, str(res.message))
        if not feasible:
            return report(False, int(res.nit), n, y, z, FailureReason.INFEASIBLE,
                          "SLSQP solution violates the element balance")
        return report(True, int(res.nit), n, y, z)


class BackendPotentialModel(ChemicalPotentialModel):
    """Chemical potentials delegated to a backend; no analytic Jacobian."""

    def __init__(self, backend: EquilibriumBackend) -> None:
        self.backend = backend

    def evaluate(self, T, P, n, jacobian=True):
        return PotentialEvaluation(values=np.asarray(self.backend.chemical_potentials(T, P, n), dtype=float))

    def standard_volumes(self, T, P):
        return self.backend.standard_volumes(T, P)
