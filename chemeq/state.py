"""
Mutable equilibrium state.

The state owns the full species amount vector and the last element
potentials ``y`` and species stabilities ``z`` (both J/mol) computed by the
solver. It is created once per simulation node and mutated in place by every
solve, which is how warm starts are carried from one call to the next.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np

from .system import ChemicalSystem


@dataclass
class EquilibriumState:
    system: ChemicalSystem
    temperature: float = 298.15  # K
    pressure: float = 1.0e5  # Pa
    species_amounts: Optional[np.ndarray] = None  # mol
    element_potentials: Optional[np.ndarray] = None  # J/mol, one per element
    species_stabilities: Optional[np.ndarray] = None  # J/mol, one per species

    def __post_init__(self) -> None:
        N = self.system.num_species
        if self.species_amounts is None:
            self.species_amounts = np.zeros(N)
        else:
            self.species_amounts = np.array(self.species_amounts, dtype=float)
        if self.species_amounts.shape != (N,):
            raise ValueError(f"Expected {N} species amounts, got shape {self.species_amounts.shape}")
        if self.element_potentials is None:
            self.element_potentials = np.zeros(self.system.num_elements)
        if self.species_stabilities is None:
            self.species_stabilities = np.zeros(N)

    # Short aliases used throughout the numerical code
    @property
    def n(self) -> np.ndarray:
        return self.species_amounts

    @n.setter
    def n(self, value: Sequence[float]) -> None:
        self.species_amounts = np.array(value, dtype=float)

    @property
    def T(self) -> float:
        return self.temperature

    @property
    def P(self) -> float:
        return self.pressure

    # ------------------------------------------------------------------
    # Amounts
    # ------------------------------------------------------------------

    def set_species_amount(self, species, amount: float) -> None:
        idx = self.system.index_species(species) if isinstance(species, str) else int(species)
        if amount < 0:
            raise ValueError(f"Species amount must be non-negative, got {amount}")
        self.species_amounts[idx] = amount

    def species_amount(self, species) -> float:
        idx = self.system.index_species(species) if isinstance(species, str) else int(species)
        return float(self.species_amounts[idx])

    def element_amounts(self) -> np.ndarray:
        return self.system.element_amounts(self.species_amounts)

    def phase_amounts(self) -> np.ndarray:
        return np.array([
            self.species_amounts[self.system.phase_slice(i)].sum()
            for i in range(self.system.num_phases)
        ])

    # ------------------------------------------------------------------
    # Thermodynamic properties
    # ------------------------------------------------------------------

    def phase_volumes(self) -> np.ndarray:
        """Phase volumes (m³) from the standard molar volumes of the species."""
        v = self.system.potentials.standard_volumes(self.temperature, self.pressure)
        nv = self.species_amounts * v
        return np.array([nv[self.system.phase_slice(i)].sum() for i in range(self.system.num_phases)])

    def volume(self) -> float:
        return float(self.phase_volumes().sum())

    def ln_activities(self) -> np.ndarray:
        ln_a, _ = self.system.potentials.ln_activities(
            self.temperature, self.pressure, self.species_amounts
        )
        return ln_a

    def activity(self, species) -> float:
        idx = self.system.index_species(species) if isinstance(species, str) else int(species)
        return float(np.exp(self.ln_activities()[idx]))

    def pH(self, species: str = "H+") -> float:
        return -float(self.ln_activities()[self.system.index_species(species)]) / math.log(10.0)

    def copy(self) -> "EquilibriumState":
        return EquilibriumState(
            system=self.system,
            temperature=self.temperature,
            pressure=self.pressure,
            species_amounts=self.species_amounts.copy(),
            element_potentials=self.element_potentials.copy(),
            species_stabilities=self.species_stabilities.copy(),
        )

    def as_dict(self) -> Dict[str, float]:
        return dict(zip(self.system.species_names, self.species_amounts.tolist()))
