"""
Error taxonomy for equilibrium calculations.

Structural problems (bad partitions, malformed problems, sensitivities
requested on failed solves) raise immediately. Numerical outcomes of a solve
are never raised by the solver itself: they travel in the result through
``succeeded`` and ``failure_reason`` so callers can retry.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class FailureReason(str, Enum):
    """Why a solve did not succeed."""

    NONE = "none"
    NON_CONVERGENCE = "non-convergence"
    INFEASIBLE = "infeasible"
    NUMERICAL_SINGULARITY = "numerical-singularity"


class ChemEqError(Exception):
    """Base class for all chemeq errors."""


class InvalidPartition(ChemEqError, ValueError):
    """Species partition with overlapping, duplicated or out-of-range indices."""


class InvalidProblem(ChemEqError, ValueError):
    """Malformed equilibrium problem (non-positive T/P, bad element budgets...)."""


class InvalidState(ChemEqError, RuntimeError):
    """Operation requires a converged equilibrium calculation."""


class EquilibriumError(ChemEqError, RuntimeError):
    """Raised by the convenience drivers when a calculation did not succeed."""

    def __init__(self, message: str, result: Optional[Any] = None) -> None:
        super().__init__(message)
        self.result = result


class IntegrationError(ChemEqError, RuntimeError):
    """The ODE integrator failed to advance the kinetic species."""
