"""Shared fixtures: small chemical systems with known equilibria."""

import math

import pytest

from chemeq.potentials import R_GAS
from chemeq.system import ChemicalSystem, Phase, Species

T0 = 298.15
P0 = 1.0e5
RT0 = R_GAS * T0

# Standard Gibbs energies chosen so that, with graphite present, the gas
# equilibrates at x(CO2) = 0.3, x(CO) = 0.6, x(O2) = 0.1.
G_CO2 = -RT0 * math.log(3.0)
G_CO = -RT0 * math.log(3.6) / 2.0

# Water autoprotolysis with Kw = 1e-14 exactly
G_WATER = -237181.0
G_OH = G_WATER + RT0 * 14.0 * math.log(10.0)


def carbon_oxygen_gas():
    return Phase(
        "gas",
        [
            Species("CO2(g)", standard_gibbs=G_CO2),
            Species("CO(g)", standard_gibbs=G_CO),
            Species("O2(g)", standard_gibbs=0.0),
        ],
        kind="gas",
    )


@pytest.fixture
def co_system():
    """Ideal gas CO2/CO/O2 in contact with pure graphite."""
    return ChemicalSystem([
        carbon_oxygen_gas(),
        Phase("graphite", [Species("C(s)", standard_gibbs=0.0)], kind="pure"),
    ])


@pytest.fixture
def gas_system():
    return ChemicalSystem([carbon_oxygen_gas()])


@pytest.fixture
def water_system():
    """Dilute ideal aqueous solution of NaCl, HCl and NaOH."""
    return ChemicalSystem([
        Phase(
            "aqueous",
            [
                Species("H2O(l)", standard_gibbs=G_WATER),
                Species("H+", standard_gibbs=0.0),
                Species("OH-", standard_gibbs=G_OH),
                Species("Na+", standard_gibbs=0.0),
                Species("Cl-", standard_gibbs=0.0),
            ],
            kind="aqueous",
        )
    ])
