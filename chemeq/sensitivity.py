"""
Sensitivity of an equilibrium solution with respect to T, P and be.

At a converged KKT point the implicit function theorem gives, for any
parameter p,

  [[W, Ae^T], [Ae, 0]] [dn/dp; -dy/dp] = [-dg/dp; dbe/dp]

which is solved with the factors the solver kept from its last iterate, so a
sensitivity costs one back-substitution per parameter. Backends that keep no
factorization fall back to finite differences of re-solved states.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from loguru import logger
from scipy.linalg import lu_solve

from .errors import InvalidState
from .potentials import R_GAS
from .result import EquilibriumResult
from .state import EquilibriumState


@dataclass(frozen=True, eq=False)
class EquilibriumSensitivity:
    """Derivatives of the equilibrium species amounts (mol/K, mol/Pa, mol/mol)."""

    dnedT: np.ndarray
    dnedP: np.ndarray
    dnedbe: np.ndarray  # shape (equilibrium species, equilibrium elements)
    approximate: bool = False


def compute_sensitivity(
    solver,
    result: EquilibriumResult,
    state: Optional[EquilibriumState] = None,
) -> EquilibriumSensitivity:
    """
    Sensitivity of the solve that produced ``result``.

    ``solver`` is anything with ``system``, ``partition`` and ``solve`` (the
    native solver or a backend). ``state`` is only needed for the finite
    difference fallback and must hold the converged solution.
    """
    if not result.succeeded:
        raise InvalidState(f"Sensitivity requested for a failed solve: {result.message}")

    if result.factorization is not None:
        return _from_factorization(solver.system, result)

    if state is None:
        raise InvalidState("No factorization available and no converged state given")
    step = getattr(getattr(solver, "options", None), "sensitivity_step", 1e-6)
    return finite_difference_sensitivity(solver, state, result, step)


def _from_factorization(system, result: EquilibriumResult) -> EquilibriumSensitivity:
    fac = result.factorization
    T, P = result.temperature, result.pressure
    RT = R_GAS * T
    model = system.potentials
    n = fac.species_amounts
    sp = fac.species

    mu = model.values(T, P, n)[sp]
    mu_T = model.temperature_derivative(T, P, n)[sp]
    mu_P = model.pressure_derivative(T, P, n)[sp]
    gT = mu_T / RT - mu / (RT * T)
    gP = mu_P / RT

    nx, ny = sp.size, fac.rows.size
    rhs = np.zeros((nx + ny, 2 + ny))
    rhs[:nx, 0] = -gT
    rhs[:nx, 1] = -gP
    rhs[nx:, 2:] = np.eye(ny)
    dn = lu_solve((fac.lu, fac.piv), rhs)[:nx]

    dnedT = np.zeros(fac.num_species)
    dnedP = np.zeros(fac.num_species)
    dnedbe = np.zeros((fac.num_species, fac.num_elements))
    dnedT[fac.positions] = dn[:, 0]
    dnedP[fac.positions] = dn[:, 1]
    dnedbe[np.ix_(fac.positions, fac.rows)] = dn[:, 2:]

    return EquilibriumSensitivity(dnedT, dnedP, dnedbe, approximate=not fac.exact_hessian)


def finite_difference_sensitivity(
    solver,
    state: EquilibriumState,
    result: EquilibriumResult,
    step: float = 1e-6,
) -> EquilibriumSensitivity:
    """Forward differences, one warm-started re-solve per parameter."""
    ies = list(solver.partition.indices_equilibrium_species)
    T, P = result.temperature, result.pressure
    be = np.asarray(result.element_amounts, dtype=float)
    n0 = state.species_amounts[ies].copy()

    def perturbed(T_, P_, be_):
        trial = state.copy()
        res = solver.solve(trial, T_, P_, be_)
        if not res.succeeded:
            raise InvalidState(f"Re-solve for finite-difference sensitivity failed: {res.message}")
        return trial.species_amounts[ies]

    hT = step * T
    dnedT = (perturbed(T + hT, P, be) - n0) / hT
    hP = step * P
    dnedP = (perturbed(T, P + hP, be) - n0) / hP

    dnedbe = np.zeros((len(ies), be.size))
    for j in range(be.size):
        h = step * max(abs(be[j]), 1.0)
        shifted = be.copy()
        shifted[j] += h
        dnedbe[:, j] = (perturbed(T, P, shifted) - n0) / h

    logger.debug("Finite-difference sensitivity from {} re-solves", 2 + be.size)
    return EquilibriumSensitivity(dnedT, dnedP, dnedbe, approximate=True)
