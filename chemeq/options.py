"""
Numerical options for the equilibrium, inverse and kinetic solvers.

Options are frozen pydantic models: a solver copies them per call and never
mutates them, so one instance can be shared across threads.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class HessianStrategy(str, Enum):
    EXACT = "exact"
    APPROXIMATE = "approximate"


class JacobianStrategy(str, Enum):
    SENSITIVITY = "sensitivity"
    FINITE_DIFFERENCE = "finite-difference"


class EquilibriumOptions(BaseModel):
    """Options of the interior-point Gibbs energy minimizer."""

    model_config = ConfigDict(frozen=True)

    tolerance: float = Field(default=1e-6, gt=0.0)
    max_iterations: int = Field(default=100, gt=0)
    warm_start: bool = True
    hessian: HessianStrategy = HessianStrategy.EXACT
    # 0 = silent, 1 = one line per solve, 2 = one line per iteration
    output_verbosity: int = Field(default=0, ge=0, le=2)

    barrier: float = Field(default=1e-14, gt=0.0)
    barrier_reduction: float = Field(default=0.1, gt=0.0, lt=1.0)
    fraction_to_boundary: float = Field(default=0.99, gt=0.0, lt=1.0)
    epsilon: float = Field(default=1e-50, gt=0.0)
    max_backtracks: int = Field(default=10, ge=0)
    armijo: float = Field(default=1e-4, gt=0.0, lt=1.0)
    regularization: float = Field(default=1e-10, gt=0.0)
    sensitivity_step: float = Field(default=1e-6, gt=0.0)


class InverseOptions(BaseModel):
    """Options of the outer root-finding loop of inverse problems."""

    model_config = ConfigDict(frozen=True)

    equilibrium: EquilibriumOptions = Field(default_factory=EquilibriumOptions)
    tolerance: float = Field(default=1e-6, gt=0.0)
    max_iterations: int = Field(default=50, gt=0)
    jacobian: JacobianStrategy = JacobianStrategy.SENSITIVITY
    finite_difference_step: float = Field(default=1e-6, gt=0.0)
    max_backtracks: int = Field(default=8, ge=0)


class ODEOptions(BaseModel):
    """Options forwarded to ``scipy.integrate.solve_ivp``."""

    model_config = ConfigDict(frozen=True)

    method: str = "BDF"
    rtol: float = Field(default=1e-8, gt=0.0)
    atol: float = Field(default=1e-12, gt=0.0)
    max_step: Optional[float] = Field(default=None, gt=0.0)


class KineticOptions(BaseModel):
    """Options of a kinetic path: equilibrium re-solves plus ODE steps."""

    model_config = ConfigDict(frozen=True)

    equilibrium: EquilibriumOptions = Field(default_factory=EquilibriumOptions)
    ode: ODEOptions = Field(default_factory=ODEOptions)
    step: float = Field(default=1.0, gt=0.0)
