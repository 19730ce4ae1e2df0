"""
Partition of the species of a chemical system into equilibrium, kinetic and
inert subsets.

Equilibrium species are set by Gibbs energy minimization, kinetic species by
rate laws integrated in time, and inert species are frozen. Unassigned
species are equilibrium species.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, Union

import numpy as np

from .errors import InvalidPartition
from .system import ChemicalSystem

SpeciesRef = Union[int, str]


class Partition:
    """Classification of the species indices of ``system``."""

    def __init__(self, system: ChemicalSystem) -> None:
        self.system = system
        self._equilibrium: Optional[Tuple[int, ...]] = None
        self._kinetic: Tuple[int, ...] = ()
        self._inert: Tuple[int, ...] = ()

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    def set_equilibrium_species(self, species: Iterable[SpeciesRef]) -> "Partition":
        indices = self._resolve(species, "equilibrium")
        self._check_disjoint(indices, "equilibrium", [("kinetic", self._kinetic), ("inert", self._inert)])
        self._equilibrium = indices
        return self

    def set_kinetic_species(self, species: Iterable[SpeciesRef]) -> "Partition":
        indices = self._resolve(species, "kinetic")
        self._check_disjoint(indices, "kinetic", [("equilibrium", self._equilibrium or ()), ("inert", self._inert)])
        self._kinetic = indices
        return self

    def set_inert_species(self, species: Iterable[SpeciesRef]) -> "Partition":
        indices = self._resolve(species, "inert")
        self._check_disjoint(indices, "inert", [("equilibrium", self._equilibrium or ()), ("kinetic", self._kinetic)])
        self._inert = indices
        return self

    def _resolve(self, species: Iterable[SpeciesRef], subset: str) -> Tuple[int, ...]:
        N = self.system.num_species
        indices: List[int] = []
        for ref in species:
            if isinstance(ref, str):
                try:
                    idx = self.system.index_species(ref)
                except ValueError as exc:
                    raise InvalidPartition(str(exc)) from None
            elif isinstance(ref, (int, np.integer)) and not isinstance(ref, bool):
                idx = int(ref)
            else:
                raise InvalidPartition(f"Invalid species reference {ref!r} in {subset} species")
            if not 0 <= idx < N:
                raise InvalidPartition(f"Species index {idx} out of range [0, {N}) in {subset} species")
            indices.append(idx)
        if len(set(indices)) != len(indices):
            raise InvalidPartition(f"Duplicate indices in {subset} species: {indices}")
        return tuple(sorted(indices))

    @staticmethod
    def _check_disjoint(indices, subset, others) -> None:
        for other_name, other in others:
            overlap = sorted(set(indices) & set(other))
            if overlap:
                raise InvalidPartition(
                    f"Species {overlap} cannot be both {subset} and {other_name}"
                )

    # ------------------------------------------------------------------
    # Index sets
    # ------------------------------------------------------------------

    @property
    def indices_kinetic_species(self) -> Tuple[int, ...]:
        return self._kinetic

    @property
    def indices_inert_species(self) -> Tuple[int, ...]:
        return self._inert

    @property
    def indices_equilibrium_species(self) -> Tuple[int, ...]:
        taken = set(self._kinetic) | set(self._inert)
        rest = [i for i in range(self.system.num_species) if i not in taken]
        if self._equilibrium is not None:
            rest = sorted(set(rest) | set(self._equilibrium))
        return tuple(rest)

    @property
    def num_equilibrium_species(self) -> int:
        return len(self.indices_equilibrium_species)

    def indices_equilibrium_elements(self) -> Tuple[int, ...]:
        """Elements with a non-zero coefficient in some equilibrium species."""
        ies = list(self.indices_equilibrium_species)
        if not ies:
            return ()
        A = self.system.formula_matrix[:, ies]
        return tuple(int(j) for j in np.flatnonzero(np.any(A != 0.0, axis=1)))

    def validate(self) -> None:
        """Check that the three subsets are disjoint and cover every species."""
        e, k, i = (set(self.indices_equilibrium_species), set(self._kinetic), set(self._inert))
        if e & k or e & i or k & i:
            raise InvalidPartition("Equilibrium, kinetic and inert species overlap")
        if e | k | i != set(range(self.system.num_species)):
            raise InvalidPartition("Partition does not cover every species")

    # ------------------------------------------------------------------
    # Formula matrices
    # ------------------------------------------------------------------

    def formula_matrix_equilibrium(self) -> np.ndarray:
        """Ae: equilibrium-species columns restricted to equilibrium elements."""
        A = self.system.formula_matrix
        return A[np.ix_(list(self.indices_equilibrium_elements()), list(self.indices_equilibrium_species))]

    def formula_matrix_kinetic(self) -> np.ndarray:
        return self.system.formula_matrix[:, list(self._kinetic)]

    def formula_matrix_inert(self) -> np.ndarray:
        return self.system.formula_matrix[:, list(self._inert)]

    def copy(self) -> "Partition":
        other = Partition(self.system)
        other._equilibrium = self._equilibrium
        other._kinetic = self._kinetic
        other._inert = self._inert
        return other

    def __repr__(self) -> str:
        return (
            f"Partition(equilibrium={list(self.indices_equilibrium_species)}, "
            f"kinetic={list(self._kinetic)}, inert={list(self._inert)})"
        )
