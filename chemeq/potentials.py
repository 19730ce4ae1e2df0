"""
Chemical potential models.

The solver consumes mu(T, P, n) as an opaque call through
``ChemicalPotentialModel.evaluate``. Models may also supply the Jacobian
d(mu)/dn and the temperature/pressure derivatives; when they do not, the
solver and the sensitivity module differentiate numerically.

``IdealPotentialModel`` is the native model: standard Gibbs energies from
each species' provider plus ideal activities per phase kind

  gas       ln a_i = ln(x_i P / P°)
  solution  ln a_i = ln x_i
  aqueous   ln a_i = ln m_i for solutes, ln a_w = -sum(n_solutes) / n_w
  pure      ln a_i = 0
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Tuple

import numpy as np

from .standard import P_REF, as_standard_gibbs

if TYPE_CHECKING:
    from .system import ChemicalSystem

R_GAS = 8.314462618  # J/(mol·K)
M_WATER = 0.018015268  # kg/mol

# Floor applied to amounts inside logarithms
_TINY = 1e-300


@dataclass
class PotentialEvaluation:
    """Chemical potentials (J/mol) and, optionally, their Jacobian w.r.t. n."""

    values: np.ndarray
    jacobian: Optional[np.ndarray] = None


class ChemicalPotentialModel(ABC):
    """Evaluator of species chemical potentials mu(T, P, n)."""

    @abstractmethod
    def evaluate(self, T: float, P: float, n: np.ndarray, jacobian: bool = True) -> PotentialEvaluation:
        """Chemical potentials at (T, P, n); the Jacobian may be None."""

    def values(self, T: float, P: float, n: np.ndarray) -> np.ndarray:
        return self.evaluate(T, P, n, jacobian=False).values

    def temperature_derivative(self, T: float, P: float, n: np.ndarray) -> np.ndarray:
        """d(mu)/dT at constant P and n, J/(mol·K)."""
        h = 1e-4 * T
        return (self.values(T + h, P, n) - self.values(T - h, P, n)) / (2.0 * h)

    def pressure_derivative(self, T: float, P: float, n: np.ndarray) -> np.ndarray:
        """d(mu)/dP at constant T and n, m³/mol."""
        h = 1e-4 * P
        return (self.values(T, P + h, n) - self.values(T, P - h, n)) / (2.0 * h)

    def ln_activities(
        self, T: float, P: float, n: np.ndarray, jacobian: bool = False
    ) -> Tuple[np.ndarray, Optional[np.ndarray]]:
        raise NotImplementedError(f"{type(self).__name__} does not provide activities")

    def standard_volumes(self, T: float, P: float) -> np.ndarray:
        raise NotImplementedError(f"{type(self).__name__} does not provide standard volumes")


class IdealPotentialModel(ChemicalPotentialModel):
    """Ideal activity models on top of per-species standard Gibbs energies."""

    def __init__(self, system: "ChemicalSystem") -> None:
        self.system = system
        self._g0 = [as_standard_gibbs(s.standard_gibbs) for s in system.species]
        self._gas = np.zeros(system.num_species, dtype=bool)
        self._layout: List[Tuple[str, slice, Optional[int]]] = []
        for iphase, phase in enumerate(system.phases):
            sl = system.phase_slice(iphase)
            solvent = phase.species_names.index(phase.solvent) if phase.kind == "aqueous" else None
            self._layout.append((phase.kind, sl, solvent))
            if phase.kind == "gas":
                self._gas[sl] = True

    # ------------------------------------------------------------------
    # Standard state
    # ------------------------------------------------------------------

    def standard_gibbs_energies(self, T: float, P: float) -> np.ndarray:
        return np.array([g(T, P) for g in self._g0])

    def standard_volumes(self, T: float, P: float) -> np.ndarray:
        v = np.empty(self.system.num_species)
        for i, (species, g0) in enumerate(zip(self.system.species, self._g0)):
            if self._gas[i]:
                v[i] = R_GAS * T / P + g0.dP(T, P)
            elif species.molar_volume > 0:
                v[i] = species.molar_volume
            else:
                v[i] = g0.dP(T, P)
        return v

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def ln_activities(self, T, P, n, jacobian=False):
        n = np.asarray(n, dtype=float)
        N = n.size
        ln_a = np.zeros(N)
        J = np.zeros((N, N)) if jacobian else None

        for kind, sl, solvent in self._layout:
            if kind == "pure":
                continue
            n_p = np.maximum(n[sl], _TINY)
            idx = np.arange(sl.start, sl.stop)

            if kind in ("gas", "solution"):
                nt = n_p.sum()
                local = np.log(n_p / nt)
                if kind == "gas":
                    local += np.log(P / P_REF)
                ln_a[sl] = local
                if jacobian:
                    J[np.ix_(idx, idx)] = np.diag(1.0 / n_p) - 1.0 / nt
                continue

            # aqueous: molality scale for solutes, osmotic solvent activity
            nw = n_p[solvent]
            solutes = np.ones(n_p.size, dtype=bool)
            solutes[solvent] = False
            local = np.log(n_p / (nw * M_WATER))
            local[solvent] = -n_p[solutes].sum() / nw
            ln_a[sl] = local
            if jacobian:
                block = np.diag(1.0 / n_p)
                block[:, solvent] = -1.0 / nw
                block[solvent, :] = -1.0 / nw
                block[solvent, solvent] = n_p[solutes].sum() / nw ** 2
                J[np.ix_(idx, idx)] = block

        return ln_a, J

    # ------------------------------------------------------------------
    # Chemical potentials
    # ------------------------------------------------------------------

    def evaluate(self, T, P, n, jacobian=True):
        RT = R_GAS * T
        ln_a, J = self.ln_activities(T, P, n, jacobian=jacobian)
        mu = self.standard_gibbs_energies(T, P) + RT * ln_a
        return PotentialEvaluation(values=mu, jacobian=RT * J if jacobian else None)

    def temperature_derivative(self, T, P, n):
        ln_a, _ = self.ln_activities(T, P, n)
        g0_T = np.array([g.dT(T, P) for g in self._g0])
        return g0_T + R_GAS * ln_a

    def pressure_derivative(self, T, P, n):
        g0_P = np.array([g.dP(T, P) for g in self._g0])
        return g0_P + np.where(self._gas, R_GAS * T / P, 0.0)
