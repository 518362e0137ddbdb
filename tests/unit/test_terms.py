"""Unit tests for the term classifier."""

import pytest

from fdmol import D, Domain, Field, PDESystem, Sym, UnsupportedDerivativeFormError, laplacian, sin
from fdmol.core.expressions import Derivative
from fdmol.pde.terms import (
    FluxTerm,
    GridValue,
    LaplacianTerm,
    SphericalLaplacianTerm,
    StencilTerm,
    TermClassifier,
    TermKind,
    TimeDerivativeTerm,
    describe,
    spatial_orders,
    time_derivative_fields,
)

t, x, y = Sym("t"), Sym("x"), Sym("y")
u, v, w = Field("u"), Field("v"), Field("w")
Dt, Dx, Dy = D("t"), D("x"), D("y")


@pytest.fixture
def classifier():
    domains = [Domain("t", (0.0, 1.0)), Domain("x", (0.0, 1.0)), Domain("y", (0.0, 1.0))]
    system = PDESystem([], [], domains, [u(t, x, y), v(t, x, y), w(t, x)])
    return TermClassifier(system, "t")


def test_grid_value(classifier):
    assert classifier.classify(u(t, x, y)) == GridValue("u", (t, x, y))


def test_plain_derivatives(classifier):
    assert classifier.classify(Dx(u(t, x, y))) == StencilTerm("u", (t, x, y), (("x", 1),))
    assert classifier.classify(D("y", 3)(u(t, x, y))) == StencilTerm("u", (t, x, y), (("y", 3),))


def test_mixed_derivative(classifier):
    term = classifier.classify(Dy(Dx(u(t, x, y))))
    assert term == StencilTerm("u", (t, x, y), (("x", 1), ("y", 1)))
    assert term.total_order == 2
    assert not term.is_advective


def test_laplacian(classifier):
    term = classifier.classify(laplacian(u(t, x, y), ["x", "y"]))
    assert isinstance(term, LaplacianTerm)
    assert term.field == "u"
    assert [p.orders for p in term.parts] == [(("x", 2),), (("y", 2),)]


def test_derivative_of_laplacian(classifier):
    term = classifier.classify(Dx(laplacian(u(t, x, y), ["x", "y"])))
    assert term.contains(StencilTerm)
    assert spatial_orders(term) == {"u": 3}


def test_spherical_laplacian(classifier):
    term = classifier.classify(Dx(x**2 * Dx(w(t, x))))
    assert term == SphericalLaplacianTerm("w", (t, x), "x")


def test_flux_form(classifier):
    term = classifier.classify(Dx(u(t, x, y) * Dx(u(t, x, y))))
    assert isinstance(term, FluxTerm)
    assert term.axis == "x"
    assert term.weight == GridValue("u", (t, x, y))


def test_time_derivative(classifier):
    expr = classifier.classify(Dt(u(t, x, y)) - D("x", 2)(u(t, x, y)))
    assert expr.contains(TimeDerivativeTerm)
    assert time_derivative_fields(expr) == ["u"]
    kinds = [kind for kind, _ in describe(expr)]
    assert TermKind.TIME_DERIVATIVE in kinds
    assert TermKind.DERIVATIVE in kinds


def test_nested_terms_keep_structure(classifier):
    expr = classifier.classify(sin(u(t, x, y)) * Dx(v(t, x, y)) + 2)
    assert spatial_orders(expr) == {"u": 0, "v": 1}


@pytest.mark.parametrize(
    "expr",
    [
        Dx(u(t, x, y) * v(t, x, y)),
        Dx(u(t, x, y) + 1),
        Dx(sin(u(t, x, y))),
        Dx(u(t, x, y) ** 2),
        D("t", 2)(u(t, x, y)),
        Dt(u(t, x, y) * v(t, x, y)),
        Dy(w(t, x)),
        Dx(Dt(u(t, x, y))),
        Dx(v(t, x, y) * Dy(u(t, x, y))),
    ],
)
def test_unsupported_derivatives(classifier, expr):
    with pytest.raises(UnsupportedDerivativeFormError) as info:
        classifier.classify(expr)
    assert isinstance(info.value.expression, Derivative)
    assert isinstance(info.value, ValueError)
