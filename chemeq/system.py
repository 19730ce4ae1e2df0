"""
Chemical system definition: species, phases, elements and the formula matrix.

The formula matrix A has one row per element (sorted alphabetically, with
the electric charge row ``Z`` appended when any species is charged) and one
column per species, so that ``A @ n`` gives the element amounts of a species
amount vector ``n``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from chemicals.elements import charge_from_formula, simple_formula_parser
from loguru import logger

CHARGE_ELEMENT = "Z"

PHASE_KINDS = ("gas", "aqueous", "solution", "pure")

# Aggregation-state suffixes such as "CO2(g)" or "Na+(aq)"
_STATE_SUFFIX = re.compile(r"\((g|aq|l|s|cr|am)\)$")


def parse_formula(formula: str) -> Tuple[Dict[str, float], float]:
    """
    Parse a chemical formula into element counts and electric charge.

    >>> parse_formula("CO3-2")
    ({'C': 1.0, 'O': 3.0}, -2.0)
    """
    core = _STATE_SUFFIX.sub("", formula.strip())
    if not core:
        raise ValueError(f"Empty formula '{formula}'")
    counts = simple_formula_parser(core)
    if not counts:
        raise ValueError(f"Could not parse formula '{formula}'")
    elements = {elem: float(count) for elem, count in counts.items()}
    charge = float(charge_from_formula(core))
    return elements, charge


# ---------------------------------------------------------------------------
# Species and phases
# ---------------------------------------------------------------------------


@dataclass
class Species:
    """
    A chemical species.

    ``formula`` defaults to ``name``; pass ``elements`` (and ``charge``) to
    skip formula parsing. ``standard_gibbs`` is a number (J/mol) or a
    ``StandardGibbsFunction``. ``molar_volume`` (m³/mol) is used for
    condensed species; gaseous volumes follow the ideal gas law.
    """

    name: str
    formula: Optional[str] = None
    standard_gibbs: Any = 0.0
    molar_volume: float = 0.0
    elements: Dict[str, float] = field(default_factory=dict)
    charge: float = 0.0

    def __post_init__(self) -> None:
        if self.formula is None:
            self.formula = self.name
        if not self.elements:
            self.elements, self.charge = parse_formula(self.formula)


@dataclass
class Phase:
    """
    A phase: a named group of species sharing an activity model.

    ``kind`` is one of ``gas`` (ideal gas), ``aqueous`` (ideal dilute
    solution on the molality scale), ``solution`` (ideal mole-fraction
    solution) or ``pure`` (single condensed species with unit activity).
    """

    name: str
    species: List[Species]
    kind: str = "solution"
    solvent: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind not in PHASE_KINDS:
            raise ValueError(f"Unknown phase kind '{self.kind}', expected one of {PHASE_KINDS}")
        if not self.species:
            raise ValueError(f"Phase '{self.name}' has no species")
        if self.kind == "pure" and len(self.species) != 1:
            raise ValueError(f"Pure phase '{self.name}' must contain exactly one species")
        if self.kind == "aqueous" and self.solvent is None:
            self.solvent = next(
                (s.name for s in self.species if _STATE_SUFFIX.sub("", s.formula) == "H2O"),
                self.species[0].name,
            )

    @property
    def species_names(self) -> List[str]:
        return [s.name for s in self.species]


# ---------------------------------------------------------------------------
# Chemical system
# ---------------------------------------------------------------------------


class ChemicalSystem:
    """
    Species, phases and elements of a chemical system, plus the chemical
    potential model used to evaluate mu(T, P, n).

    Parameters
    ----------
    phases : the phases of the system; species order follows phase order
    potentials : factory ``system -> ChemicalPotentialModel``; defaults to
        the ideal model driven by each species' standard Gibbs energy
    """

    def __init__(
        self,
        phases: Sequence[Phase],
        potentials: Optional[Callable[["ChemicalSystem"], Any]] = None,
    ) -> None:
        if not phases:
            raise ValueError("At least one phase is required")

        self.phases: List[Phase] = list(phases)
        self.species: List[Species] = [s for p in self.phases for s in p.species]

        names = [s.name for s in self.species]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate species names: {duplicates}")
        phase_names = [p.name for p in self.phases]
        if len(set(phase_names)) != len(phase_names):
            raise ValueError(f"Duplicate phase names: {phase_names}")

        self._species_index = {name: i for i, name in enumerate(names)}
        self._phase_index = {name: i for i, name in enumerate(phase_names)}

        offsets = np.cumsum([0] + [len(p.species) for p in self.phases])
        self._phase_slices = [slice(int(offsets[i]), int(offsets[i + 1])) for i in range(len(self.phases))]

        self.formula_matrix, self.elements = self._build_formula_matrix(self.species)
        self._element_index = {name: i for i, name in enumerate(self.elements)}

        logger.debug(
            "ChemicalSystem: {} species, {} phases, elements={}",
            len(self.species), len(self.phases), self.elements,
        )

        if potentials is None:
            from .potentials import IdealPotentialModel

            self.potentials = IdealPotentialModel(self)
        else:
            self.potentials = potentials(self)

    @staticmethod
    def _build_formula_matrix(species: Sequence[Species]) -> "tuple[np.ndarray, List[str]]":
        """A[j, i] = coefficient of element j in species i."""
        all_elements = set()
        for s in species:
            all_elements.update(e for e, c in s.elements.items() if c != 0)
        elements = sorted(all_elements)
        if any(s.charge != 0 for s in species):
            elements.append(CHARGE_ELEMENT)

        A = np.zeros((len(elements), len(species)))
        for j, elem in enumerate(elements):
            for i, s in enumerate(species):
                if elem == CHARGE_ELEMENT:
                    A[j, i] = s.charge
                else:
                    A[j, i] = s.elements.get(elem, 0.0)
        return A, elements

    # ------------------------------------------------------------------
    # Sizes and names
    # ------------------------------------------------------------------

    @property
    def num_species(self) -> int:
        return len(self.species)

    @property
    def num_elements(self) -> int:
        return len(self.elements)

    @property
    def num_phases(self) -> int:
        return len(self.phases)

    @property
    def species_names(self) -> List[str]:
        return [s.name for s in self.species]

    @property
    def phase_names(self) -> List[str]:
        return [p.name for p in self.phases]

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def index_species(self, name: str) -> int:
        try:
            return self._species_index[name]
        except KeyError:
            raise ValueError(f"Species '{name}' not found in system") from None

    def index_element(self, name: str) -> int:
        try:
            return self._element_index[name]
        except KeyError:
            raise ValueError(f"Element '{name}' not found in system") from None

    def index_phase(self, name: str) -> int:
        try:
            return self._phase_index[name]
        except KeyError:
            raise ValueError(f"Phase '{name}' not found in system") from None

    def phase_slice(self, iphase: int) -> slice:
        """Species index range of phase ``iphase``."""
        return self._phase_slices[iphase]

    def index_phase_with_species(self, ispecies: int) -> int:
        for iphase, sl in enumerate(self._phase_slices):
            if sl.start <= ispecies < sl.stop:
                return iphase
        raise ValueError(f"Species index {ispecies} out of range")

    # ------------------------------------------------------------------
    # Element bookkeeping
    # ------------------------------------------------------------------

    def element_amounts(self, n: Sequence[float]) -> np.ndarray:
        return self.formula_matrix @ np.asarray(n, dtype=float)

    def element_vector(self, compound: Union[str, Mapping[str, float]]) -> np.ndarray:
        """
        Element (and charge) coefficients of one mole of ``compound``.

        ``compound`` is a formula string (which need not be a species of
        this system, e.g. ``"NaOH"``) or an explicit ``{element: count}``
        mapping.
        """
        if isinstance(compound, str):
            if compound in self._species_index:
                return self.formula_matrix[:, self._species_index[compound]].copy()
            elements, charge = parse_formula(compound)
        else:
            elements = dict(compound)
            charge = float(elements.pop(CHARGE_ELEMENT, 0.0))

        vec = np.zeros(self.num_elements)
        for elem, count in elements.items():
            if count == 0:
                continue
            if elem not in self._element_index:
                raise ValueError(f"Element '{elem}' of '{compound}' is not in the system")
            vec[self._element_index[elem]] = count
        if charge != 0:
            if CHARGE_ELEMENT not in self._element_index:
                raise ValueError(f"Charged compound '{compound}' in a system without charged species")
            vec[self._element_index[CHARGE_ELEMENT]] = charge
        return vec

    def compound_element_amounts(self, compounds: Mapping[str, float]) -> np.ndarray:
        """Element amounts of a recipe ``{formula: moles}``."""
        b = np.zeros(self.num_elements)
        for compound, amount in compounds.items():
            b += float(amount) * self.element_vector(compound)
        return b

    def __repr__(self) -> str:
        return (
            f"ChemicalSystem(species={self.species_names}, elements={self.elements}, "
            f"phases={self.phase_names})"
        )
