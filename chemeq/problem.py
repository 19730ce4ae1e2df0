"""
Equilibrium problem definition.

An ``EquilibriumProblem`` is an immutable, validated value: the system, the
species partition, temperature (K), pressure (Pa) and the amounts of the
equilibrium elements ``be`` (mol), ordered as
``partition.indices_equilibrium_elements()``.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import numpy as np

from .errors import InvalidPartition, InvalidProblem
from .partition import Partition
from .system import CHARGE_ELEMENT, ChemicalSystem


@dataclass(frozen=True, eq=False)
class EquilibriumProblem:
    system: ChemicalSystem
    partition: Partition
    temperature: float
    pressure: float
    element_amounts: np.ndarray

    def __post_init__(self) -> None:
        if self.partition.system is not self.system:
            raise InvalidProblem("Partition belongs to a different chemical system")
        try:
            self.partition.validate()
        except InvalidPartition as exc:
            raise InvalidProblem(f"Invalid partition: {exc}") from exc

        try:
            T, P = float(self.temperature), float(self.pressure)
        except (TypeError, ValueError):
            raise InvalidProblem(
                f"Temperature and pressure must be numbers, got {self.temperature!r}, {self.pressure!r}"
            ) from None
        if not (math.isfinite(T) and T > 0):
            raise InvalidProblem(f"Temperature must be positive, got {T!r}")
        if not (math.isfinite(P) and P > 0):
            raise InvalidProblem(f"Pressure must be positive, got {P!r}")

        be = np.array(self.element_amounts, dtype=float).ravel()
        iee = self.partition.indices_equilibrium_elements()
        if be.size != len(iee):
            raise InvalidProblem(
                f"Expected {len(iee)} equilibrium element amounts, got {be.size}"
            )
        if not np.all(np.isfinite(be)):
            raise InvalidProblem(f"Element amounts must be finite, got {be.tolist()}")
        for k, j in enumerate(iee):
            name = self.system.elements[j]
            if name != CHARGE_ELEMENT and be[k] < 0:
                raise InvalidProblem(f"Amount of element {name} is negative: {be[k]}")
        be.setflags(write=False)

        # frozen dataclass: bypass __setattr__ for normalized fields
        object.__setattr__(self, "temperature", T)
        object.__setattr__(self, "pressure", P)
        object.__setattr__(self, "partition", self.partition.copy())
        object.__setattr__(self, "element_amounts", be)

    # ------------------------------------------------------------------
    # Alternative constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_element_amounts(
        cls,
        system: ChemicalSystem,
        b: Sequence[float],
        temperature: float,
        pressure: float,
        partition: Optional[Partition] = None,
    ) -> "EquilibriumProblem":
        """Build from a full element vector ``b`` (one entry per system element)."""
        partition = partition or Partition(system)
        b = np.asarray(b, dtype=float)
        if b.size != system.num_elements:
            raise InvalidProblem(f"Expected {system.num_elements} element amounts, got {b.size}")
        be = b[list(partition.indices_equilibrium_elements())]
        return cls(system, partition, temperature, pressure, be)

    @classmethod
    def from_compounds(
        cls,
        system: ChemicalSystem,
        compounds: Mapping[str, float],
        temperature: float,
        pressure: float,
        partition: Optional[Partition] = None,
    ) -> "EquilibriumProblem":
        """
        Build from a recipe of compounds, e.g. ``{"H2O": 55.508, "HCl": 1e-3}``.

        Compounds are formulas and need not be species of the system.
        """
        try:
            b = system.compound_element_amounts(compounds)
        except ValueError as exc:
            raise InvalidProblem(str(exc)) from exc
        return cls.from_element_amounts(system, b, temperature, pressure, partition)

    # ------------------------------------------------------------------
    # Derived problems
    # ------------------------------------------------------------------

    def with_temperature(self, temperature: float) -> "EquilibriumProblem":
        return dataclasses.replace(self, temperature=temperature)

    def with_pressure(self, pressure: float) -> "EquilibriumProblem":
        return dataclasses.replace(self, pressure=pressure)

    def with_element_amounts(self, element_amounts: Sequence[float]) -> "EquilibriumProblem":
        return dataclasses.replace(self, element_amounts=np.asarray(element_amounts, dtype=float))

    @property
    def indices_equilibrium_elements(self):
        return self.partition.indices_equilibrium_elements()
