"""Unit tests for the symbolic expression model."""

import pytest
import sympy

from fdmol import D, Equation, Field, Sym, laplacian, sin
from fdmol.core.expressions import Call, Const, Derivative, FieldRef, Power, Product, Sum, add, mul

t, x, y = Sym("t"), Sym("x"), Sym("y")
u = Field("u")


def to_sympy(expr):
    return expr.to_sympy(lambda node: sympy.Symbol(str(node)))


def test_field_reference():
    ref = u(t, x)
    assert ref == FieldRef("u", (Sym("t"), Sym("x")))
    assert u("t", 0.0) == FieldRef("u", (Sym("t"), Const(0.0)))
    assert str(ref) == "u(t, x)"


def test_sum_and_product_flatten():
    a, b, c = Sym("a"), Sym("b"), Sym("c")
    s = (a + b) + (c + 1)
    assert isinstance(s, Sum)
    assert len(s.terms) == 4
    p = a * (b * c)
    assert isinstance(p, Product)
    assert p.factors == (a, b, c)


def test_neutral_elements():
    a = Sym("a")
    assert add(a, 0) == a
    assert mul(a, 1) == a
    assert mul(a, 0) == Const(0.0)
    assert add() == Const(0.0)


def test_operators():
    a, b = Sym("a"), Sym("b")
    assert to_sympy(a - b) == sympy.Symbol("a") - sympy.Symbol("b")
    assert to_sympy(a / b) == sympy.Symbol("a") / sympy.Symbol("b")
    assert to_sympy(-a) == -sympy.Symbol("a")
    assert to_sympy(2 * a**3 + 1) == 2 * sympy.Symbol("a") ** 3 + 1
    assert isinstance(a**2, Power)


def test_derivative_operator():
    Dxx = D("x", 2)
    d = Dxx(u(t, x))
    assert d == Derivative(u(t, x), "x", 2)
    assert str(d) == "Dx^2(u(t, x))"
    assert D(x).variable == "x"
    with pytest.raises(ValueError):
        D("x", 0)


def test_laplacian():
    lap = laplacian(u(x, y), ["x", "y"])
    assert lap == Sum((Derivative(u(x, y), "x", 2), Derivative(u(x, y), "y", 2)))


def test_functions():
    assert sin(x) == Call("sin", x)
    assert to_sympy(sin(x)) == sympy.sin(sympy.Symbol("x"))
    with pytest.raises(ValueError):
        Call("erf", x)


def test_constants_lower_exactly():
    assert to_sympy(Const(2.0)) == sympy.Integer(2)
    assert to_sympy(Const(0.5)) == sympy.Float(0.5)


def test_walk_and_contains():
    expr = D("x")(u(t, x)) * sin(x)
    assert expr.contains(Derivative)
    assert not (x + 1).contains(Derivative)
    assert sum(isinstance(node, Sym) for node in expr.walk()) == 3


def test_transform():
    expr = u(t, x) + x
    replaced = expr.transform(lambda node: Const(2.0) if node == x else None)
    assert replaced == u(t, Const(2.0)) + 2


def test_equation_residual():
    eq = Equation(u(t, x), 1)
    assert to_sympy(eq.residual()) == sympy.Symbol("u(t, x)") - 1
    assert str(eq) == "u(t, x) ~ 1"


def test_abs():
    x = Sym("x")
    assert abs(x) == Call("abs", x)
    assert abs(x - 1).to_sympy(lambda node: sympy.Symbol(str(node))) == sympy.Abs(sympy.Symbol("x") - 1)
