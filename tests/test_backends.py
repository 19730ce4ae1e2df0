"""Tests for the interchangeable equilibrium backends."""

import numpy as np
import pytest

from chemeq.backends import BackendPotentialModel, NativeBackend, ScipyMinimizeBackend
from chemeq.errors import FailureReason
from chemeq.options import EquilibriumOptions
from chemeq.state import EquilibriumState
from chemeq.system import ChemicalSystem

from conftest import P0, T0, carbon_oxygen_gas

BE = [1.0, 2.5]  # C, O: a CO2-rich mixture with some CO and O2


@pytest.fixture
def native(gas_system):
    return NativeBackend(gas_system, options=EquilibriumOptions(tolerance=1e-10))


@pytest.fixture
def native_state(native, gas_system):
    state = EquilibriumState(gas_system)
    assert native.solve(state, T0, P0, BE).succeeded
    return state


def test_backend_contract(native, gas_system):
    np.testing.assert_array_equal(native.formula_matrix(), gas_system.formula_matrix)
    n = np.array([0.3, 0.6, 0.1])
    np.testing.assert_allclose(native.chemical_potentials(T0, P0, n), gas_system.potentials.values(T0, P0, n))
    assert native.standard_volumes(T0, P0).shape == (3,)


def test_slsqp_agrees_with_native(gas_system, native_state):
    backend = ScipyMinimizeBackend(gas_system, options=EquilibriumOptions(tolerance=1e-8))
    state = EquilibriumState(gas_system)
    result = backend.solve(state, T0, P0, BE)
    assert result.succeeded, result.message
    assert result.factorization is None
    np.testing.assert_allclose(state.species_amounts, native_state.species_amounts, rtol=1e-3, atol=1e-6)
    np.testing.assert_allclose(state.element_amounts(), BE, atol=1e-8)


def test_slsqp_sensitivity_falls_back_to_finite_differences(gas_system, native, native_state):
    native_result = native.solve(native_state, T0, P0, BE)
    exact = native.sensitivity(native_result)

    backend = ScipyMinimizeBackend(gas_system, options=EquilibriumOptions(tolerance=1e-8, sensitivity_step=1e-4))
    state = EquilibriumState(gas_system)
    result = backend.solve(state, T0, P0, BE)
    sens = backend.sensitivity(result, state)
    assert sens.approximate
    assert not exact.approximate
    np.testing.assert_allclose(sens.dnedbe, exact.dnedbe, atol=1e-2)


def test_slsqp_negative_budget(gas_system):
    backend = ScipyMinimizeBackend(gas_system)
    result = backend.solve(EquilibriumState(gas_system), T0, P0, [-1.0, 2.0])
    assert not result.succeeded
    assert result.failure_reason == FailureReason.INFEASIBLE


def test_native_solver_on_backend_potentials(native, native_state):
    # Same species, potentials delegated to the other backend: no analytic
    # Jacobian, so the solver differentiates numerically
    delegated = ChemicalSystem([carbon_oxygen_gas()], potentials=lambda s: BackendPotentialModel(native))
    backend = NativeBackend(delegated, options=EquilibriumOptions(tolerance=1e-9))
    state = EquilibriumState(delegated)
    result = backend.solve(state, T0, P0, BE)
    assert result.succeeded, result.message
    np.testing.assert_allclose(state.species_amounts, native_state.species_amounts, rtol=1e-6)
