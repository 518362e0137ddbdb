"""
Symbolic expression model for PDE systems.

Expressions are trees over a closed set of immutable node types: constants,
symbols (independent variables or free parameters), references to dependent
variable fields, derivatives, sums, products, powers and elementary function
calls. Arithmetic operators are overloaded so that systems can be written
naturally::

    t, x = Sym("t"), Sym("x")
    u = Field("u")
    Dt, Dxx = D("t"), D("x", 2)
    heat = Equation(Dt(u(t, x)), Dxx(u(t, x)))

Every node converts to a sympy expression with :meth:`Expr.to_sympy`, given a
callback that resolves the leaves that depend on the grid point.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Union

import sympy

ExprLike = Union["Expr", float, int]
Resolver = Callable[["Expr"], sympy.Expr]


class Expr:
    """Base class of all expression nodes."""

    def children(self) -> tuple[Expr, ...]:
        """Return the direct subexpressions of this node."""
        return ()

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        """Return a copy of this node with the given subexpressions."""
        return self

    def walk(self) -> Iterator[Expr]:
        """Iterate over this node and all of its subexpressions (pre-order)."""
        yield self
        for child in self.children():
            yield from child.walk()

    def transform(self, fn: Callable[[Expr], Expr | None]) -> Expr:
        """
        Rebuild the tree top-down.

        Parameters
        ----------
        fn
            Called on every node before its children are visited. If it returns
            an expression, that expression replaces the node (and is not
            descended into), otherwise the children are transformed.

        Returns
        -------
        Expr
            The transformed tree.
        """
        replacement = fn(self)
        if replacement is not None:
            return replacement
        children = self.children()
        if not children:
            return self
        return self.rebuild(tuple(child.transform(fn) for child in children))

    def to_sympy(self, resolve: Resolver) -> sympy.Expr:
        """
        Convert the expression to sympy.

        Parameters
        ----------
        resolve
            Callback converting the leaves that have no context-free meaning
            (symbols, field references, derivatives and classified terms).

        Returns
        -------
        sympy.Expr
            The sympy expression.
        """
        return resolve(self)

    def contains(self, kind: type | tuple[type, ...]) -> bool:
        """Check if any node in the tree is an instance of the given type(s)."""
        return any(isinstance(node, kind) for node in self.walk())

    # ---- operator overloading ----

    def __add__(self, other: ExprLike) -> Expr:
        return add(self, other)

    def __radd__(self, other: ExprLike) -> Expr:
        return add(other, self)

    def __sub__(self, other: ExprLike) -> Expr:
        return add(self, mul(-1, other))

    def __rsub__(self, other: ExprLike) -> Expr:
        return add(other, mul(-1, self))

    def __mul__(self, other: ExprLike) -> Expr:
        return mul(self, other)

    def __rmul__(self, other: ExprLike) -> Expr:
        return mul(other, self)

    def __truediv__(self, other: ExprLike) -> Expr:
        return mul(self, Power(as_expr(other), Const(-1.0)))

    def __rtruediv__(self, other: ExprLike) -> Expr:
        return mul(other, Power(self, Const(-1.0)))

    def __pow__(self, other: ExprLike) -> Expr:
        return Power(self, as_expr(other))

    def __rpow__(self, other: ExprLike) -> Expr:
        return Power(as_expr(other), self)

    def __neg__(self) -> Expr:
        return mul(-1, self)

    def __abs__(self) -> Expr:
        return Call("abs", self)


@dataclass(frozen=True)
class Const(Expr):
    """A numeric constant."""

    value: float

    def to_sympy(self, resolve: Resolver) -> sympy.Expr:
        return number(self.value)

    def __str__(self) -> str:
        return f"{self.value:g}"


@dataclass(frozen=True)
class Sym(Expr):
    """A named symbol: an independent variable or a free parameter."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class FieldRef(Expr):
    """A dependent variable field evaluated at the given arguments, e.g. u(t, x)."""

    name: str
    args: tuple[Expr, ...]

    def children(self) -> tuple[Expr, ...]:
        return self.args

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        return FieldRef(self.name, children)

    def __str__(self) -> str:
        return f"{self.name}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class Derivative(Expr):
    """The derivative of the inner expression of a given order along one axis."""

    inner: Expr
    axis: str
    order: int = 1

    def children(self) -> tuple[Expr, ...]:
        return (self.inner,)

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        return Derivative(children[0], self.axis, self.order)

    def __str__(self) -> str:
        power = f"^{self.order}" if self.order != 1 else ""
        return f"D{self.axis}{power}({self.inner})"


@dataclass(frozen=True)
class Sum(Expr):
    """A sum of terms."""

    terms: tuple[Expr, ...]

    def children(self) -> tuple[Expr, ...]:
        return self.terms

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        return add(*children)

    def to_sympy(self, resolve: Resolver) -> sympy.Expr:
        return sympy.Add(*(term.to_sympy(resolve) for term in self.terms))

    def __str__(self) -> str:
        return "(" + " + ".join(str(t) for t in self.terms) + ")"


@dataclass(frozen=True)
class Product(Expr):
    """A product of factors."""

    factors: tuple[Expr, ...]

    def children(self) -> tuple[Expr, ...]:
        return self.factors

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        return mul(*children)

    def to_sympy(self, resolve: Resolver) -> sympy.Expr:
        return sympy.Mul(*(factor.to_sympy(resolve) for factor in self.factors))

    def __str__(self) -> str:
        return "*".join(str(f) for f in self.factors)


@dataclass(frozen=True)
class Power(Expr):
    """base ** exponent"""

    base: Expr
    exponent: Expr

    def children(self) -> tuple[Expr, ...]:
        return (self.base, self.exponent)

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        return Power(children[0], children[1])

    def to_sympy(self, resolve: Resolver) -> sympy.Expr:
        return sympy.Pow(self.base.to_sympy(resolve), self.exponent.to_sympy(resolve))

    def __str__(self) -> str:
        return f"({self.base})^{self.exponent}"


# elementary functions that may be called on an expression
FUNCTIONS: dict[str, Callable[[sympy.Expr], sympy.Expr]] = {
    "sin": sympy.sin,
    "cos": sympy.cos,
    "tan": sympy.tan,
    "exp": sympy.exp,
    "log": sympy.log,
    "sqrt": sympy.sqrt,
    "sinh": sympy.sinh,
    "cosh": sympy.cosh,
    "tanh": sympy.tanh,
    "abs": sympy.Abs,
}


@dataclass(frozen=True)
class Call(Expr):
    """An elementary function applied to an expression, e.g. sin(x)."""

    func: str
    arg: Expr

    def __post_init__(self) -> None:
        if self.func not in FUNCTIONS:
            raise ValueError(f"Unknown function '{self.func}', expected one of {sorted(FUNCTIONS)}")

    def children(self) -> tuple[Expr, ...]:
        return (self.arg,)

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        return Call(self.func, children[0])

    def to_sympy(self, resolve: Resolver) -> sympy.Expr:
        return FUNCTIONS[self.func](self.arg.to_sympy(resolve))

    def __str__(self) -> str:
        return f"{self.func}({self.arg})"


def number(value: float) -> sympy.Expr:
    """Convert a python number to sympy, keeping integral values exact."""
    if float(value).is_integer():
        return sympy.Integer(int(value))
    return sympy.Float(value)


def as_expr(x: ExprLike) -> Expr:
    """Convert a number or an expression to an expression."""
    if isinstance(x, Expr):
        return x
    if isinstance(x, (int, float)) and not isinstance(x, bool):
        return Const(float(x))
    raise TypeError(f"Cannot convert type {type(x)} to Expr")


def add(*terms: ExprLike) -> Expr:
    """Build a flattened sum, dropping zero constants."""
    flat: list[Expr] = []
    for term in map(as_expr, terms):
        if isinstance(term, Sum):
            flat.extend(term.terms)
        elif not (isinstance(term, Const) and term.value == 0):
            flat.append(term)
    if not flat:
        return Const(0.0)
    if len(flat) == 1:
        return flat[0]
    return Sum(tuple(flat))


def mul(*factors: ExprLike) -> Expr:
    """Build a flattened product, dropping unit constants."""
    flat: list[Expr] = []
    for factor in map(as_expr, factors):
        if isinstance(factor, Product):
            flat.extend(factor.factors)
        elif isinstance(factor, Const) and factor.value == 0:
            return Const(0.0)
        elif not (isinstance(factor, Const) and factor.value == 1):
            flat.append(factor)
    if not flat:
        return Const(1.0)
    if len(flat) == 1:
        return flat[0]
    return Product(tuple(flat))


# ---- authoring helpers ----


class Field:
    """
    A named dependent variable.

    Calling the field with arguments yields a reference to it::

        u = Field("u")
        u(t, x)      # FieldRef("u", (Sym("t"), Sym("x")))
        u(t, 0.0)    # u evaluated on the face x = 0
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def __call__(self, *args: ExprLike | str) -> FieldRef:
        return FieldRef(self.name, tuple(Sym(a) if isinstance(a, str) else as_expr(a) for a in args))

    def __repr__(self) -> str:
        return f"Field({self.name!r})"


@dataclass(frozen=True)
class D:
    """
    A differential operator of a given order along one axis.

    ``D("x", 2)(u(t, x))`` is the second derivative of u with respect to x.
    """

    axis: str | Sym
    order: int = 1

    def __post_init__(self) -> None:
        if self.order < 1:
            raise ValueError(f"Derivative order must be positive, got {self.order}")

    @property
    def variable(self) -> str:
        return self.axis.name if isinstance(self.axis, Sym) else self.axis

    def __call__(self, expr: ExprLike) -> Derivative:
        return Derivative(as_expr(expr), self.variable, self.order)


def laplacian(expr: ExprLike, axes: tuple[str, ...] | list[str]) -> Expr:
    """Isotropic Laplacian: the sum of the second derivatives along the given axes."""
    return add(*(Derivative(as_expr(expr), axis, 2) for axis in axes))


def _function(name: str) -> Callable[[ExprLike], Call]:
    def call(x: ExprLike) -> Call:
        return Call(name, as_expr(x))

    call.__name__ = name
    call.__doc__ = f"Elementary function {name}(x)."
    return call


sin = _function("sin")
cos = _function("cos")
tan = _function("tan")
exp = _function("exp")
log = _function("log")
sqrt = _function("sqrt")
sinh = _function("sinh")
cosh = _function("cosh")
tanh = _function("tanh")


@dataclass(frozen=True)
class Equation:
    """
    A symbolic equation lhs = rhs.

    Used for governing PDEs as well as for boundary and initial conditions.
    """

    lhs: Expr
    rhs: Expr

    def __init__(self, lhs: ExprLike, rhs: ExprLike) -> None:
        object.__setattr__(self, "lhs", as_expr(lhs))
        object.__setattr__(self, "rhs", as_expr(rhs))

    def residual(self) -> Expr:
        """The expression lhs - rhs, that vanishes if the equation holds."""
        return self.lhs - self.rhs

    def __str__(self) -> str:
        return f"{self.lhs} ~ {self.rhs}"
