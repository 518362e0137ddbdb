"""Unit tests for the discrete system."""

import math

import numpy as np
import pytest
import scipy.sparse as sp

from fdmol import D, DiscreteSystem, Domain, Equation, Field, PDESystem, Sym, discretize, sin
from fdmol.pde.discrete_system import DiscreteUnknown, UnknownRegistry, unknown_symbol
from fdmol.pde.fd_boundary_conditions import AliasTable

t, x, y, a = Sym("t"), Sym("x"), Sym("y"), Sym("a")
u, v = Field("u"), Field("v")
Dt, Dxx = D("t"), D("x", 2)


@pytest.fixture
def heat():
    system = PDESystem(
        [Equation(Dt(u(t, x)), a * Dxx(u(t, x)))],
        [Equation(u(0.0, x), a * sin(math.pi * x)), Equation(u(t, 0.0), 0.0), Equation(u(t, 1.0), 0.0)],
        [Domain("t", (0.0, 1.0)), Domain("x", (0.0, 1.0))],
        [u(t, x)],
        parameters={"a": 2.0},
    )
    return discretize(system, step_sizes={"x": 0.25}, time_axis="t")


@pytest.fixture
def plane():
    system = PDESystem(
        [Equation(D("x", 2)(u(x, y)) + D("y", 2)(u(x, y)), 0.0), Equation(v(x, y), u(x, y))],
        [
            Equation(field(*face), value)
            for field in (u, v)
            for face, value in [((0.0, y), 0.0), ((1.0, y), y), ((x, 0.0), 0.0), ((x, 2.0), 2 * x)]
        ],
        [Domain("x", (0.0, 1.0)), Domain("y", (0.0, 2.0))],
        [u(x, y), v(x, y)],
    )
    return discretize(system, step_sizes={"x": 0.5, "y": 0.5})


def test_unknown_symbol():
    assert str(unknown_symbol("u", (2, 3))) == "u[2,3]"
    assert str(unknown_symbol("u", ())) == "u"


def test_registry_order():
    registry = UnknownRegistry.build([("u", (2, 3), True), ("v", (2,), False)])
    assert len(registry) == 8
    assert [u.index for u in registry][:4] == [(0, 0), (0, 1), (0, 2), (1, 0)]
    assert registry.flat_index("v", (1,)) == 7
    assert registry.unknowns[7].time_dependent is False
    with pytest.raises(KeyError):
        registry.flat_index("u", (2, 0))


def test_registry_aliases():
    aliases = AliasTable()
    aliases.union("u", (0,), (4,))
    registry = UnknownRegistry.build([("u", (5,), True)], aliases)
    assert len(registry) == 4
    assert registry.flat_index("u", (4,)) == 0
    assert registry.symbol("u", (4,)) == unknown_symbol("u", (0,))


def test_duplicate_unknown():
    registry = UnknownRegistry()
    unknown = DiscreteUnknown("u", (0,), False, unknown_symbol("u", (0,)))
    registry.add(unknown)
    with pytest.raises(ValueError):
        registry.add(unknown)


def test_index_maps(plane):
    assert isinstance(plane, DiscreteSystem)
    # u and v on 3 x 5 points each
    assert len(plane) == 30
    assert plane.flat_index("u", (1, 2)) == 7
    assert plane.flat_index("v", (0, 0)) == 15
    for flat in range(len(plane)):
        assert plane.flat_index(*plane.multi_index(flat)) == flat


def test_coordinates(plane):
    xs, ys = plane.coordinates("u")
    np.testing.assert_allclose(xs, [0.0, 0.5, 1.0])
    np.testing.assert_allclose(ys, [0.0, 0.5, 1.0, 1.5, 2.0])


def test_reconstruct(plane):
    vector = np.arange(len(plane), dtype=float)
    fields = plane.reconstruct(vector)
    assert fields["u"].shape == (3, 5)
    assert fields["v"].shape == (3, 5)
    assert fields["u"][1, 2] == 7.0
    trajectory = np.stack([vector, 2 * vector], axis=1)
    fields = plane.reconstruct(trajectory)
    assert fields["v"].shape == (3, 5, 2)
    np.testing.assert_array_equal(fields["v"][..., 1], 2 * fields["v"][..., 0])
    with pytest.raises(ValueError):
        plane.reconstruct(np.zeros(3))


def test_reconstruct_periodic():
    system = PDESystem(
        [Equation(Dt(u(t, x)), Dxx(u(t, x)))],
        [Equation(u(0.0, x), sin(2 * math.pi * x)), Equation(u(t, 0.0), u(t, 1.0))],
        [Domain("t", (0.0, 1.0)), Domain("x", (0.0, 1.0))],
        [u(t, x)],
    )
    discrete = discretize(system, step_sizes={"x": 0.25}, time_axis="t")
    assert len(discrete) == 4
    fields = discrete.reconstruct(np.arange(4.0))
    np.testing.assert_array_equal(fields["u"], [0.0, 1.0, 2.0, 3.0, 0.0])
    assert discrete.flat_index("u", (4,)) == 0
    assert len(discrete.aliases) == 1


def test_stationary_solution(plane):
    """The discrete Laplace equation is solved exactly by u = x * y."""
    xs, ys = plane.coordinates("u")
    exact = np.multiply.outer(xs, ys)
    vector = np.concatenate([exact.ravel(), exact.ravel()])
    residual = plane.rhs_function()(0.0, vector)
    np.testing.assert_allclose(residual, 0.0, atol=1e-12)


def test_mass_matrix(heat, plane):
    mass = heat.mass_matrix()
    assert sp.issparse(mass)
    np.testing.assert_array_equal(mass.toarray(), np.diag([0.0, 1.0, 1.0, 1.0, 0.0]))
    assert not plane.mass_matrix().toarray().any()


def test_jacobian_sparsity(heat):
    sparsity = heat.jacobian_sparsity().toarray()
    expected = np.array(
        [
            [1, 0, 0, 0, 0],
            [1, 1, 1, 0, 0],
            [0, 1, 1, 1, 0],
            [0, 0, 1, 1, 1],
            [0, 0, 0, 0, 1],
        ]
    )
    np.testing.assert_array_equal(sparsity, expected)


def test_parameters(heat):
    assert heat.is_time_dependent
    assert heat.parameters == {"a": 2.0}
    u0 = heat.initial_values()
    np.testing.assert_allclose(u0, 2.0 * np.sin(np.pi * np.linspace(0, 1, 5)), atol=1e-12)
    np.testing.assert_allclose(heat.initial_values({"a": 1.0}), u0 / 2, atol=1e-12)
    values = np.array([0.0, 1.0, 0.0, 0.0, 0.0])
    default = heat.rhs_function()(0.0, values)
    assert default[1] == pytest.approx(2.0 * -2.0 / 0.0625)
    assert heat.rhs_function({"a": 1.0})(0.0, values)[1] == pytest.approx(-2.0 / 0.0625)


def test_missing_parameter():
    system = PDESystem(
        [Equation(Dt(u(t, x)), a * Dxx(u(t, x)))],
        [Equation(u(0.0, x), a), Equation(u(t, 0.0), 0.0), Equation(u(t, 1.0), 0.0)],
        [Domain("t", (0.0, 1.0)), Domain("x", (0.0, 1.0))],
        [u(t, x)],
    )
    discrete = discretize(system, step_sizes={"x": 0.25}, time_axis="t")
    with pytest.raises(ValueError):
        discrete.rhs_function()
    with pytest.raises(ValueError):
        discrete.initial_values()
    np.testing.assert_allclose(discrete.initial_values({"a": 3.0}), 3.0)


def test_rhs_function_checks_shape(heat):
    f = heat.rhs_function()
    with pytest.raises(ValueError):
        f(0.0, np.zeros(4))


def test_equation_strings(heat):
    assert str(heat.equations[0]) == "0 = u[0]"
    assert str(heat.equations[1]).startswith("du[1]/dt = ")
    assert "unknowns=5" in repr(heat)
