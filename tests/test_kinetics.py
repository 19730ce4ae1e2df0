"""Tests for kinetic species coupled to instantaneous equilibrium."""

import numpy as np
import pytest

from chemeq.errors import EquilibriumError, InvalidState
from chemeq.kinetics import KineticSolver, ODEIntegrator, ScipyIntegrator
from chemeq.options import EquilibriumOptions, KineticOptions, ODEOptions
from chemeq.partition import Partition
from chemeq.state import EquilibriumState

from conftest import P0, T0

K = 0.1  # 1/s, first-order graphite gasification


def _graphite_rate(T, P, n):
    return np.array([-K * n[3]])


@pytest.fixture
def kinetic(co_system):
    partition = Partition(co_system).set_kinetic_species(["C(s)"])
    options = KineticOptions(equilibrium=EquilibriumOptions(tolerance=1e-10), step=0.25)
    return KineticSolver(co_system, partition, _graphite_rate, options)


@pytest.fixture
def state(co_system):
    return EquilibriumState(co_system, T0, P0, species_amounts=[0.0, 0.0, 1.0, 0.5])


def test_graphite_decays_exponentially(kinetic, state):
    kinetic.initialize(state)
    result = kinetic.solve(state, 0.0, 1.0)
    assert result.succeeded
    assert state.species_amount("C(s)") == pytest.approx(0.5 * np.exp(-K), rel=1e-6)


def test_elements_conserved_along_path(kinetic, state, co_system):
    b0 = state.element_amounts()
    kinetic.initialize(state)
    t = 0.0
    for _ in range(3):
        kinetic.step(state, t, 0.5)
        t += 0.5
        np.testing.assert_allclose(state.element_amounts(), b0, atol=1e-9)
    # Released carbon is held by the equilibrium gas
    gas_carbon = co_system.formula_matrix[0, :3] @ state.species_amounts[:3]
    assert gas_carbon == pytest.approx(0.5 * (1.0 - np.exp(-K * 1.5)), rel=1e-6)


def test_step_requires_initialize(kinetic, state):
    with pytest.raises(InvalidState):
        kinetic.step(state, 0.0, 0.1)


def test_failed_re_equilibration_raises(co_system):
    # Graphite turns into more carbon than the oxygen can hold as CO
    partition = Partition(co_system).set_kinetic_species(["C(s)"])

    def fast(T, P, n):
        return np.array([-100.0 * n[3]])

    solver = KineticSolver(co_system, partition, fast)
    state = EquilibriumState(co_system, T0, P0, species_amounts=[0.0, 0.0, 0.1, 5.0])
    solver.initialize(state)
    with pytest.raises(EquilibriumError) as excinfo:
        solver.step(state, 0.0, 1.0)
    assert excinfo.value.result is not None


class _ExplicitEuler(ODEIntegrator):
    def advance(self, rhs, t, y, dt):
        return y + dt * rhs(t, y)


def test_custom_integrator(co_system, state):
    partition = Partition(co_system).set_kinetic_species(["C(s)"])
    solver = KineticSolver(co_system, partition, _graphite_rate, integrator=_ExplicitEuler())
    solver.initialize(state)
    solver.step(state, 0.0, 0.5)
    assert state.species_amount("C(s)") == pytest.approx(0.5 * (1.0 - 0.5 * K))


def test_scipy_integrator_matches_exponential():
    integrator = ScipyIntegrator(ODEOptions(method="RK45", rtol=1e-10, atol=1e-14))
    y = integrator.advance(lambda t, y: -2.0 * y, 0.0, np.array([1.0]), 1.0)
    assert y[0] == pytest.approx(np.exp(-2.0), rel=1e-8)
