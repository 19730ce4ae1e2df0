"""Tests for the interior-point equilibrium solver."""

import numpy as np
import pytest

from chemeq.errors import FailureReason, InvalidProblem
from chemeq.options import EquilibriumOptions, HessianStrategy
from chemeq.partition import Partition
from chemeq.potentials import R_GAS
from chemeq.problem import EquilibriumProblem
from chemeq.solver import EquilibriumSolver, independent_rows
from chemeq.state import EquilibriumState
from chemeq.system import ChemicalSystem, Phase, Species

from conftest import P0, T0

TIGHT = EquilibriumOptions(tolerance=1e-10)

# Analytic solution of the graphite + CO2/CO/O2 system for b = (C: 2, O: 1)
GAS_TOTAL = 1.0 / 1.4
EXPECTED_CO = np.array([0.3 * GAS_TOTAL, 0.6 * GAS_TOTAL, 0.1 * GAS_TOTAL, 2.0 - 0.9 * GAS_TOTAL])


def _solve_co(co_system, options=TIGHT, state=None):
    state = state or EquilibriumState(co_system)
    problem = EquilibriumProblem.from_element_amounts(co_system, [2.0, 1.0], T0, P0)
    result = EquilibriumSolver(co_system, options=options).solve_problem(state, problem)
    return state, result


class TestTrivialSystem:
    def test_single_species(self):
        system = ChemicalSystem([Phase("gas", [Species("Ar(g)", standard_gibbs=0.0)], kind="gas")])
        state = EquilibriumState(system)
        result = EquilibriumSolver(system).solve(state, T0, P0, [1.0])
        assert result.succeeded
        assert result.iterations <= 1
        np.testing.assert_allclose(state.species_amounts, [1.0])
        assert result.failure_reason == FailureReason.NONE


class TestCarbonOxygen:
    def test_analytic_equilibrium(self, co_system):
        state, result = _solve_co(co_system)
        assert result.succeeded, result.message
        np.testing.assert_allclose(state.species_amounts, EXPECTED_CO, rtol=1e-6)
        assert result.error <= 1e-8

    def test_element_potentials(self, co_system):
        state, _ = _solve_co(co_system)
        # Graphite fixes the carbon potential at its standard Gibbs energy
        assert state.element_potentials[0] == pytest.approx(0.0, abs=1e-4)
        # Oxygen potential from ln x(O2) = 2 y_O
        assert state.element_potentials[1] / (R_GAS * T0) == pytest.approx(np.log(0.1) / 2.0, rel=1e-6)

    def test_mass_conservation_and_non_negativity(self, co_system):
        state, result = _solve_co(co_system)
        np.testing.assert_allclose(state.element_amounts(), [2.0, 1.0], atol=1e-10)
        assert np.all(state.species_amounts >= 0.0)
        assert result.feasibility <= 1e-10

    def test_warm_start_is_idempotent(self, co_system):
        state, first = _solve_co(co_system)
        before = state.species_amounts.copy()
        state, second = _solve_co(co_system, state=state)
        assert second.succeeded
        assert second.iterations <= 1
        np.testing.assert_allclose(state.species_amounts, before, rtol=1e-10)

    def test_warm_start_from_nearby_budget(self, water_system):
        # Budget shift larger than the tolerance but smaller than tolerance * max(be)
        near = water_system.compound_element_amounts({"H2O": 55.508, "HCl": 1e-3, "NaOH": 1e-3 - 5e-9})
        b = water_system.compound_element_amounts({"H2O": 55.508, "HCl": 1e-3, "NaOH": 1e-3})
        solver = EquilibriumSolver(water_system, options=TIGHT)

        state = EquilibriumState(water_system)
        assert solver.solve(state, T0, P0, near).succeeded
        result = solver.solve(state, T0, P0, b)
        assert result.succeeded, result.message
        assert result.iterations > 0
        assert result.feasibility <= TIGHT.tolerance
        assert np.abs(state.element_amounts() - b).max() <= TIGHT.tolerance

        cold = EquilibriumState(water_system)
        assert solver.solve(cold, T0, P0, b).succeeded
        assert state.pH() == pytest.approx(cold.pH(), abs=1e-6)
        np.testing.assert_allclose(state.species_amounts, cold.species_amounts, rtol=1e-6, atol=1e-14)

    def test_cold_start_ignores_supplied_amounts(self, co_system):
        opts = TIGHT.model_copy(update={"warm_start": False})
        state = EquilibriumState(co_system, species_amounts=[5.0, 5.0, 5.0, 5.0])
        state, result = _solve_co(co_system, options=opts, state=state)
        assert result.succeeded
        np.testing.assert_allclose(state.species_amounts, EXPECTED_CO, rtol=1e-6)

    def test_approximate_hessian(self, co_system):
        opts = EquilibriumOptions(tolerance=1e-8, hessian=HessianStrategy.APPROXIMATE, max_iterations=500)
        state, result = _solve_co(co_system, options=opts)
        assert result.succeeded, result.message
        np.testing.assert_allclose(state.species_amounts, EXPECTED_CO, rtol=1e-5)

    def test_state_conditions_updated(self, co_system):
        state, result = _solve_co(co_system)
        assert state.temperature == T0
        assert state.pressure == P0
        assert result.temperature == T0
        np.testing.assert_array_equal(result.element_amounts, [2.0, 1.0])

    def test_other_species_untouched(self, co_system):
        partition = Partition(co_system).set_inert_species(["C(s)"])
        state = EquilibriumState(co_system, species_amounts=[0.0, 0.0, 0.0, 7.0])
        result = EquilibriumSolver(co_system, partition, TIGHT).solve(state, T0, P0, [0.5, 1.5])
        assert result.succeeded
        assert state.species_amounts[3] == 7.0
        np.testing.assert_allclose(co_system.formula_matrix[:, :3] @ state.species_amounts[:3], [0.5, 1.5])


class TestFailures:
    def test_negative_budget_is_infeasible(self, co_system):
        state = EquilibriumState(co_system)
        result = EquilibriumSolver(co_system).solve(state, T0, P0, [-1.0, 1.0])
        assert not result.succeeded
        assert result.failure_reason == FailureReason.INFEASIBLE
        assert "C" in result.message

    @pytest.mark.parametrize("T, P, be", [
        (-5.0, P0, [2.0, 1.0]),
        (T0, 0.0, [2.0, 1.0]),
        (float("nan"), P0, [2.0, 1.0]),
        (T0, P0, [2.0, float("inf")]),
    ])
    def test_malformed_input_raises(self, co_system, T, P, be):
        state = EquilibriumState(co_system)
        before = state.species_amounts.copy()
        with pytest.raises(InvalidProblem):
            EquilibriumSolver(co_system).solve(state, T, P, be)
        np.testing.assert_array_equal(state.species_amounts, before)

    def test_iteration_budget(self, co_system):
        opts = EquilibriumOptions(max_iterations=1, tolerance=1e-12)
        state, result = _solve_co(co_system, options=opts)
        assert not result.succeeded
        assert result.failure_reason == FailureReason.NON_CONVERGENCE
        assert np.all(state.species_amounts >= 0.0)

    def test_inconsistent_charge_is_infeasible(self, water_system):
        # Charge row is a combination of H, O, Na and Cl; a non-zero charge
        # with neutral element amounts cannot be balanced
        b = water_system.compound_element_amounts({"H2O": 55.5, "NaCl": 0.1})
        b[water_system.index_element("Z")] = 0.5
        result = EquilibriumSolver(water_system).solve(EquilibriumState(water_system), T0, P0, b)
        assert result.failure_reason == FailureReason.INFEASIBLE


class TestZeroBudgets:
    def test_species_of_absent_element_pinned_to_zero(self, water_system):
        b = water_system.compound_element_amounts({"H2O": 55.508, "HCl": 1e-3})
        state = EquilibriumState(water_system)
        result = EquilibriumSolver(water_system, options=TIGHT).solve(state, T0, P0, b)
        assert result.succeeded, result.message
        assert state.species_amount("Na+") == 0.0
        assert state.pH() == pytest.approx(3.0, abs=1e-3)

    def test_neutral_water(self, water_system):
        b = water_system.compound_element_amounts({"H2O": 55.508})
        state = EquilibriumState(water_system)
        result = EquilibriumSolver(water_system, options=TIGHT).solve(state, T0, P0, b)
        assert result.succeeded, result.message
        assert state.species_amount("H+") == pytest.approx(state.species_amount("OH-"), rel=1e-8)
        assert state.pH() == pytest.approx(7.0, abs=1e-3)


def test_independent_rows():
    M = np.array([[1.0, 0.0, 1.0], [0.0, 1.0, 1.0], [1.0, 1.0, 2.0]])
    keep, dependent = independent_rows(M)
    assert keep.size == 2
    assert dependent.size == 1
    assert sorted(keep.tolist() + dependent.tolist()) == [0, 1, 2]
