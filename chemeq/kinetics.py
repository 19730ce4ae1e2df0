"""
Coupling of kinetically controlled species with instantaneous equilibrium.

Each time step is operator-split: the kinetic species are advanced by an ODE
integrator with the rest of the state frozen, then the equilibrium species
are re-equilibrated against the element amounts left over by the kinetic
and inert species, ``be = (b - A_k n_k - A_i n_i)[iee]``, where ``b`` is the
total element vector recorded by ``initialize``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np
from loguru import logger
from scipy.integrate import solve_ivp

from .errors import EquilibriumError, IntegrationError, InvalidState
from .options import KineticOptions, ODEOptions
from .partition import Partition
from .result import EquilibriumResult
from .solver import EquilibriumSolver
from .state import EquilibriumState
from .system import ChemicalSystem

# rates(T, P, n) -> dn_k/dt for the kinetic species, mol/s
RateFunction = Callable[[float, float, np.ndarray], np.ndarray]


class ODEIntegrator(ABC):
    @abstractmethod
    def advance(self, rhs: Callable[[float, np.ndarray], np.ndarray], t: float, y: np.ndarray, dt: float) -> np.ndarray:
        """Integrate dy/dt = rhs(t, y) from t to t + dt."""


class ScipyIntegrator(ODEIntegrator):
    """``scipy.integrate.solve_ivp`` over one step."""

    def __init__(self, options: Optional[ODEOptions] = None) -> None:
        self.options = options or ODEOptions()

    def advance(self, rhs, t, y, dt):
        opts = self.options
        sol = solve_ivp(
            rhs,
            [t, t + dt],
            np.asarray(y, dtype=float),
            method=opts.method,
            rtol=opts.rtol,
            atol=opts.atol,
            max_step=opts.max_step if opts.max_step is not None else np.inf,
        )
        if not sol.success:
            raise IntegrationError(f"Kinetic integration from t={t} failed: {sol.message}")
        return sol.y[:, -1]


class KineticSolver:
    """Advance kinetic species in time and keep the rest at equilibrium."""

    def __init__(
        self,
        system: ChemicalSystem,
        partition: Partition,
        rates: RateFunction,
        options: Optional[KineticOptions] = None,
        integrator: Optional[ODEIntegrator] = None,
    ) -> None:
        self.system = system
        self.partition = partition.copy()
        self.rates = rates
        self.options = options or KineticOptions()
        self.integrator = integrator or ScipyIntegrator(self.options.ode)
        self.equilibrium = EquilibriumSolver(system, self.partition, self.options.equilibrium)

        self._ik = list(self.partition.indices_kinetic_species)
        self._ii = list(self.partition.indices_inert_species)
        self._iee = list(self.partition.indices_equilibrium_elements())
        self._b: Optional[np.ndarray] = None

    def initialize(self, state: EquilibriumState) -> None:
        """Record the total element amounts conserved by the path."""
        if state.system is not self.system:
            raise ValueError("State belongs to a different chemical system")
        self._b = self.system.element_amounts(state.species_amounts)
        logger.debug("Kinetic path initialized with b={}", dict(zip(self.system.elements, self._b.tolist())))

    def _equilibrium_element_amounts(self, state: EquilibriumState) -> np.ndarray:
        A = self.system.formula_matrix
        n = state.species_amounts
        b = self._b - A[:, self._ik] @ n[self._ik] - A[:, self._ii] @ n[self._ii]
        return b[self._iee]

    def step(self, state: EquilibriumState, t: float, dt: float) -> EquilibriumResult:
        """Advance from ``t`` to ``t + dt``; raises on a failed re-equilibration."""
        if self._b is None:
            raise InvalidState("KineticSolver.initialize must be called before step")

        T, P = state.temperature, state.pressure
        work = state.species_amounts.copy()

        def rhs(_t, nk):
            work[self._ik] = nk
            rate = np.asarray(self.rates(T, P, work), dtype=float)
            if rate.shape != (len(self._ik),):
                raise ValueError(f"Rate function returned shape {rate.shape}, expected ({len(self._ik)},)")
            return rate

        if self._ik:
            nk = self.integrator.advance(rhs, t, state.species_amounts[self._ik], dt)
            state.species_amounts[self._ik] = np.maximum(nk, 0.0)

        result = self.equilibrium.solve(state, T, P, self._equilibrium_element_amounts(state))
        if not result.succeeded:
            logger.warning("Re-equilibration failed at t={:.4g}: {}", t + dt, result.message)
            raise EquilibriumError(f"Equilibrium re-solve failed at t={t + dt}: {result.message}", result)
        return result

    def solve(self, state: EquilibriumState, t0: float, t1: float) -> EquilibriumResult:
        """Integrate from ``t0`` to ``t1`` in steps of ``options.step``."""
        if t1 <= t0:
            raise ValueError(f"End time {t1} must be after start time {t0}")
        if self._b is None:
            self.initialize(state)

        t = t0
        result = None
        steps = 0
        while t < t1:
            dt = min(self.options.step, t1 - t)
            result = self.step(state, t, dt)
            t += dt
            steps += 1
            # absorb round-off in the last step
            if t1 - t <= 1e-12 * max(1.0, abs(t1)):
                break
        logger.info("Kinetic path {} -> {} completed in {} steps", t0, t1, steps)
        return result
