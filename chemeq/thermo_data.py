"""
Standard-state data from the ``thermo``/``chemicals`` databases.

Builds ideal-gas phases whose standard Gibbs energies follow the
constant-property approximation G° = Hf° - T·S° using the ideal-gas
formation enthalpy and absolute entropy of each compound. The element
reference entropies this leaves out are a linear function of the formula
matrix, so they shift the element potentials but not the equilibrium
composition.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from chemicals import identifiers
from loguru import logger
from thermo import ChemicalConstantsPackage

from .standard import LinearStandardGibbs
from .system import Phase, Species

_ALIASES = {
    "h2": "hydrogen",
    "o2": "oxygen",
    "n2": "nitrogen",
    "co": "carbon monoxide",
    "co2": "carbon dioxide",
    "h2o": "water",
    "ch4": "methane",
}


def _normalize_compound_name(name: str) -> str:
    """Map common formulas to names the identifier database resolves."""
    key = name.strip().lower()
    return _ALIASES.get(key, name.strip())


def resolve_cas(names: Sequence[str]) -> List[str]:
    """Resolve compound names or formulas to CAS registry numbers."""
    cas_list: List[str] = []
    for name in names:
        try:
            cas_list.append(identifiers.CAS_from_any(_normalize_compound_name(name)))
        except Exception:
            try:
                cas_list.append(identifiers.CAS_from_any(name))
            except Exception as exc:
                raise ValueError(
                    f"Could not resolve compound '{name}'. "
                    "Use IUPAC or common names (e.g. 'water', 'methane', 'carbon dioxide')."
                ) from exc
    return cas_list


def gas_species_from_thermo(
    compounds: Sequence[str],
    species_names: Optional[Sequence[str]] = None,
) -> List[Species]:
    """
    Ideal-gas species with formation data from ``ChemicalConstantsPackage``.

    ``species_names`` defaults to the database formulas, e.g. ``"CH4"``.
    """
    cas = resolve_cas(compounds)
    constants, _ = ChemicalConstantsPackage.from_IDs(cas)

    species: List[Species] = []
    for i, compound in enumerate(compounds):
        Hf, S0, formula = constants.Hfgs[i], constants.S0gs[i], constants.formulas[i]
        if Hf is None or S0 is None:
            raise ValueError(f"No ideal-gas formation data for '{compound}' (CAS {cas[i]})")
        name = species_names[i] if species_names is not None else formula
        species.append(Species(name=name, formula=formula, standard_gibbs=LinearStandardGibbs(Hf, S0)))
        logger.debug("Loaded {} ({}): Hf={:.1f} J/mol, S0={:.2f} J/mol/K", name, cas[i], Hf, S0)
    return species


def gas_phase_from_thermo(
    compounds: Sequence[str],
    name: str = "gas",
    species_names: Optional[Sequence[str]] = None,
) -> Phase:
    return Phase(name, gas_species_from_thermo(compounds, species_names), kind="gas")
