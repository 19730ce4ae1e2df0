"""Value records returned by the equilibrium solvers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .errors import FailureReason


@dataclass(frozen=True, eq=False)
class KKTFactorization:
    """
    LU factors of the reduced KKT matrix at the last iterate of a solve.

    ``species`` are the global indices of the species that were free in the
    solve and ``positions`` the same species counted among the equilibrium
    species. ``rows`` are the positions (within ``be``) of the independent
    balance rows that were kept.
    """

    lu: np.ndarray
    piv: np.ndarray
    species: np.ndarray
    positions: np.ndarray
    rows: np.ndarray
    num_species: int  # equilibrium species
    num_elements: int  # length of be
    species_amounts: np.ndarray  # full vector at the solution
    exact_hessian: bool = True


@dataclass(frozen=True, eq=False)
class EquilibriumResult:
    """Outcome of one equilibrium solve. Never mutated after it is returned."""

    succeeded: bool
    iterations: int
    stationarity: float
    feasibility: float
    complementarity: float
    elapsed_time: float
    temperature: float
    pressure: float
    element_amounts: np.ndarray
    failure_reason: FailureReason = FailureReason.NONE
    message: str = ""
    factorization: Optional[KKTFactorization] = field(default=None, repr=False)

    @property
    def error(self) -> float:
        return max(self.stationarity, self.feasibility, self.complementarity)
