"""
chemeq: chemical equilibrium by Gibbs energy minimization.

Direct problems fix temperature, pressure and element amounts; inverse
problems fix measured properties (pH, amounts, volumes) and solve for
titrant additions; the kinetic driver couples rate-controlled species with
an equilibrated remainder.
"""

from .backends import BackendPotentialModel, EquilibriumBackend, NativeBackend, ScipyMinimizeBackend
from .equilibrate import equilibrate, equilibrate_problem
from .errors import (
    ChemEqError,
    EquilibriumError,
    FailureReason,
    IntegrationError,
    InvalidPartition,
    InvalidProblem,
    InvalidState,
)
from .inverse import (
    EquilibriumInverseProblem,
    EquilibriumInverseSolver,
    EquilibriumTarget,
    InverseResult,
    PHTarget,
    PhaseSaturationTarget,
    PhaseVolumeTarget,
    SpeciesActivityTarget,
    SpeciesAmountTarget,
    VolumeTarget,
)
from .kinetics import KineticSolver, ODEIntegrator, ScipyIntegrator
from .options import (
    EquilibriumOptions,
    HessianStrategy,
    InverseOptions,
    JacobianStrategy,
    KineticOptions,
    ODEOptions,
)
from .partition import Partition
from .potentials import ChemicalPotentialModel, IdealPotentialModel, PotentialEvaluation
from .problem import EquilibriumProblem
from .result import EquilibriumResult
from .sensitivity import EquilibriumSensitivity, compute_sensitivity
from .solver import EquilibriumSolver
from .standard import ConstantStandardGibbs, LinearStandardGibbs, TabulatedStandardGibbs
from .state import EquilibriumState
from .system import ChemicalSystem, Phase, Species

__version__ = "0.1.0"
