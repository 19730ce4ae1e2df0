"""
Standard-state property providers.

A provider is a pure function of temperature (K) and pressure (Pa) that
returns the standard molar Gibbs energy of a species in J/mol. Providers
may expose analytic derivatives; otherwise ``dT``/``dP`` fall back to
central differences.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np
from scipy.interpolate import RegularGridInterpolator

# Reference state
T_REF = 298.15  # K
P_REF = 1.0e5  # Pa


class StandardGibbsFunction(ABC):
    """Standard molar Gibbs energy G°(T, P) of a single species."""

    @abstractmethod
    def __call__(self, T: float, P: float) -> float:
        """Return G° in J/mol."""

    def dT(self, T: float, P: float) -> float:
        h = 1e-4 * T
        return (self(T + h, P) - self(T - h, P)) / (2.0 * h)

    def dP(self, T: float, P: float) -> float:
        h = 1e-4 * P
        return (self(T, P + h) - self(T, P - h)) / (2.0 * h)


class ConstantStandardGibbs(StandardGibbsFunction):
    """G° that does not depend on T or P."""

    def __init__(self, value: float) -> None:
        self.value = float(value)

    def __call__(self, T: float, P: float) -> float:
        return self.value

    def dT(self, T: float, P: float) -> float:
        return 0.0

    def dP(self, T: float, P: float) -> float:
        return 0.0

    def __repr__(self) -> str:
        return f"ConstantStandardGibbs({self.value!r})"


class LinearStandardGibbs(StandardGibbsFunction):
    """
    G° = H° - T·S° + V°·(P - Pref) with constant H°, S° and V°.

    This is the constant-property approximation used for formation data:
    H° in J/mol, S° in J/(mol·K), V° in m³/mol.
    """

    def __init__(
        self,
        enthalpy: float,
        entropy: float,
        volume: float = 0.0,
        Pref: float = P_REF,
    ) -> None:
        self.enthalpy = float(enthalpy)
        self.entropy = float(entropy)
        self.volume = float(volume)
        self.Pref = float(Pref)

    def __call__(self, T: float, P: float) -> float:
        return self.enthalpy - T * self.entropy + self.volume * (P - self.Pref)

    def dT(self, T: float, P: float) -> float:
        return -self.entropy

    def dP(self, T: float, P: float) -> float:
        return self.volume


class TabulatedStandardGibbs(StandardGibbsFunction):
    """
    G° interpolated bilinearly from a table over a (T, P) grid.

    Parameters
    ----------
    temperatures : increasing temperature points (K), at least two
    pressures : increasing pressure points (Pa), at least two
    values : G° table of shape (len(temperatures), len(pressures)) in J/mol

    Outside the grid the table is extrapolated linearly.
    """

    def __init__(
        self,
        temperatures: Sequence[float],
        pressures: Sequence[float],
        values: Sequence[Sequence[float]],
    ) -> None:
        Ts = np.asarray(temperatures, dtype=float)
        Ps = np.asarray(pressures, dtype=float)
        table = np.asarray(values, dtype=float)
        if Ts.size < 2 or Ps.size < 2:
            raise ValueError("Interpolation tables need at least two temperature and two pressure points")
        if table.shape != (Ts.size, Ps.size):
            raise ValueError(
                f"Table shape {table.shape} does not match grid ({Ts.size}, {Ps.size})"
            )
        self._interp = RegularGridInterpolator(
            (Ts, Ps), table, method="linear", bounds_error=False, fill_value=None
        )

    def __call__(self, T: float, P: float) -> float:
        return float(self._interp([[T, P]])[0])


def as_standard_gibbs(value) -> StandardGibbsFunction:
    """Coerce a number or provider into a ``StandardGibbsFunction``."""
    if isinstance(value, StandardGibbsFunction):
        return value
    if isinstance(value, (int, float)):
        return ConstantStandardGibbs(value)
    raise TypeError(f"Cannot use {value!r} as a standard Gibbs energy provider")
