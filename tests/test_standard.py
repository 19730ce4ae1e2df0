"""Tests for standard Gibbs energy providers and the ideal potential model."""

import math

import numpy as np
import pytest

from chemeq.potentials import M_WATER, R_GAS, ChemicalPotentialModel
from chemeq.standard import (
    ConstantStandardGibbs,
    LinearStandardGibbs,
    TabulatedStandardGibbs,
    as_standard_gibbs,
)


class TestStandardGibbs:
    def test_constant(self):
        g = ConstantStandardGibbs(-1000.0)
        assert g(300.0, 1e5) == -1000.0
        assert g.dT(300.0, 1e5) == 0.0
        assert g.dP(300.0, 1e5) == 0.0

    def test_linear(self):
        g = LinearStandardGibbs(enthalpy=-74870.0, entropy=186.25, volume=1e-5)
        assert g(1000.0, 1e5) == pytest.approx(-74870.0 - 1000.0 * 186.25)
        assert g(1000.0, 2e5) - g(1000.0, 1e5) == pytest.approx(1.0)
        assert g.dT(1000.0, 1e5) == -186.25
        assert g.dP(1000.0, 1e5) == 1e-5

    def test_tabulated_reproduces_linear_function(self):
        exact = LinearStandardGibbs(enthalpy=-1e5, entropy=50.0, volume=2e-5)
        Ts = [300.0, 400.0, 500.0]
        Ps = [1e5, 1e6, 1e7]
        table = [[exact(T, P) for P in Ps] for T in Ts]
        g = TabulatedStandardGibbs(Ts, Ps, table)
        for T, P in [(350.0, 2e5), (480.0, 5e6), (300.0, 1e5)]:
            assert g(T, P) == pytest.approx(exact(T, P), rel=1e-12)
        assert g.dT(420.0, 3e6) == pytest.approx(-50.0, rel=1e-6)
        assert g.dP(420.0, 3e6) == pytest.approx(2e-5, rel=1e-4)

    def test_tabulated_extrapolates(self):
        g = TabulatedStandardGibbs([300.0, 400.0], [1e5, 2e5], [[0.0, 0.0], [-100.0, -100.0]])
        assert g(500.0, 1e5) == pytest.approx(-200.0)

    def test_tabulated_shape_checked(self):
        with pytest.raises(ValueError):
            TabulatedStandardGibbs([300.0, 400.0], [1e5, 2e5], [[0.0, 0.0]])
        with pytest.raises(ValueError):
            TabulatedStandardGibbs([300.0], [1e5, 2e5], [[0.0, 0.0]])

    def test_coercion(self):
        assert isinstance(as_standard_gibbs(5), ConstantStandardGibbs)
        with pytest.raises(TypeError):
            as_standard_gibbs("not a number")


class TestIdealPotentialModel:
    def test_gas_activities(self, gas_system):
        model = gas_system.potentials
        n = np.array([1.0, 2.0, 1.0])
        ln_a, _ = model.ln_activities(298.15, 2e5, n)
        np.testing.assert_allclose(ln_a, np.log(n / 4.0) + math.log(2.0))

    def test_pure_phase_unit_activity(self, co_system):
        ln_a, _ = co_system.potentials.ln_activities(298.15, 1e5, np.array([1.0, 1.0, 1.0, 5.0]))
        assert ln_a[3] == 0.0

    def test_aqueous_molality_scale(self, water_system):
        n = np.array([55.508, 1e-7, 1e-7, 0.1, 0.1])
        ln_a, _ = water_system.potentials.ln_activities(298.15, 1e5, n)
        assert ln_a[1] == pytest.approx(math.log(1e-7 / (55.508 * M_WATER)))
        assert ln_a[0] == pytest.approx(-(0.2 + 2e-7) / 55.508)

    @pytest.mark.parametrize("fixture", ["gas_system", "water_system"])
    def test_jacobian_matches_finite_differences(self, fixture, request):
        system = request.getfixturevalue(fixture)
        model = system.potentials
        n = np.linspace(0.5, 2.0, system.num_species)
        ev = model.evaluate(350.0, 3e5, n, jacobian=True)
        np.testing.assert_allclose(ev.jacobian, ev.jacobian.T, rtol=1e-12)
        for j in range(n.size):
            h = 1e-6 * n[j]
            shifted = n.copy()
            shifted[j] += h
            fd = (model.values(350.0, 3e5, shifted) - ev.values) / h
            np.testing.assert_allclose(ev.jacobian[:, j], fd, rtol=1e-4, atol=1e-3)

    def test_analytic_derivatives_match_base_class(self, gas_system):
        model = gas_system.potentials
        n = np.array([0.3, 0.6, 0.1])
        dT = model.temperature_derivative(500.0, 2e5, n)
        dP = model.pressure_derivative(500.0, 2e5, n)
        np.testing.assert_allclose(dT, ChemicalPotentialModel.temperature_derivative(model, 500.0, 2e5, n), rtol=1e-6)
        np.testing.assert_allclose(dP, ChemicalPotentialModel.pressure_derivative(model, 500.0, 2e5, n), rtol=1e-6)
        np.testing.assert_allclose(dP, R_GAS * 500.0 / 2e5)

    def test_gas_volume_is_ideal(self, gas_system):
        v = gas_system.potentials.standard_volumes(300.0, 1e5)
        np.testing.assert_allclose(v, R_GAS * 300.0 / 1e5)
