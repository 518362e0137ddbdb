"""
Classification of the terms of PDE expressions.

The classifier walks an expression tree and replaces every field reference
and every derivative by a node that states how it is discretized: a direct grid
value lookup, a (possibly mixed) derivative stencil, one of the Laplacian forms,
or the time derivative of the method of lines. Derivatives of any other inner
expression are rejected, as they would require the chain or product rule.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from fdmol.core.errors import DiscretizationError, UnsupportedDerivativeFormError
from fdmol.core.expressions import (
    Call,
    Const,
    Derivative,
    Expr,
    FieldRef,
    Power,
    Product,
    Sum,
    Sym,
    add,
    mul,
)
from fdmol.core.system import PDESystem

logger = logging.getLogger(__name__)


class TermKind(str, Enum):
    """Classes of discretizable terms."""

    FIELD_VALUE = "field value"
    DERIVATIVE = "derivative"
    LAPLACIAN = "laplacian"
    SPHERICAL_LAPLACIAN = "spherical laplacian"
    NONLINEAR_LAPLACIAN = "nonlinear laplacian"
    TIME_DERIVATIVE = "time derivative"
    UPWIND = "upwind derivative"


class Term(Expr):
    """Base class of classified terms."""

    kind: ClassVar[TermKind]


@dataclass(frozen=True)
class GridValue(Term):
    """A field reference, looked up directly on the grid."""

    kind: ClassVar[TermKind] = TermKind.FIELD_VALUE

    field: str
    args: tuple[Expr, ...]

    def __str__(self) -> str:
        return f"{self.field}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class StencilTerm(Term):
    """A (possibly mixed) spatial derivative of a field."""

    kind: ClassVar[TermKind] = TermKind.DERIVATIVE

    field: str
    args: tuple[Expr, ...]
    #: (axis, order) pairs in the axis order of the field
    orders: tuple[tuple[str, int], ...]

    @property
    def total_order(self) -> int:
        return sum(order for _, order in self.orders)

    @property
    def is_advective(self) -> bool:
        """A first derivative along a single axis."""
        return len(self.orders) == 1 and self.orders[0][1] == 1

    def __str__(self) -> str:
        ops = "".join(f"D{axis}" + (f"^{order}" if order > 1 else "") for axis, order in self.orders)
        return f"{ops}({self.field})"


@dataclass(frozen=True)
class LaplacianTerm(Term):
    """The isotropic Laplacian of a field: sum of second derivatives along several axes."""

    kind: ClassVar[TermKind] = TermKind.LAPLACIAN

    parts: tuple[StencilTerm, ...]

    @property
    def field(self) -> str:
        return self.parts[0].field

    def __str__(self) -> str:
        return f"Laplacian[{','.join(p.orders[0][0] for p in self.parts)}]({self.field})"


@dataclass(frozen=True)
class SphericalLaplacianTerm(Term):
    """Dr(r^2 * Dr(u)), expanded as r^2 * Drr(u) + 2r * Dr(u)."""

    kind: ClassVar[TermKind] = TermKind.SPHERICAL_LAPLACIAN

    field: str
    args: tuple[Expr, ...]
    axis: str

    def __str__(self) -> str:
        r = self.axis
        return f"D{r}({r}^2*D{r}({self.field}))"


@dataclass(frozen=True)
class FluxTerm(Term):
    """
    Dv(g * Dv(u)), discretized in conservative flux form.

    The weight g is evaluated at the half points between grid points, with the
    fields it references interpolated there.
    """

    kind: ClassVar[TermKind] = TermKind.NONLINEAR_LAPLACIAN

    field: str
    args: tuple[Expr, ...]
    axis: str
    #: classified weight expression
    weight: Expr

    def __str__(self) -> str:
        return f"D{self.axis}({self.weight}*D{self.axis}({self.field}))"


@dataclass(frozen=True)
class TimeDerivativeTerm(Term):
    """The first time derivative of a field, kept continuous."""

    kind: ClassVar[TermKind] = TermKind.TIME_DERIVATIVE

    field: str
    args: tuple[Expr, ...]

    def __str__(self) -> str:
        return f"Dt({self.field})"


@dataclass(frozen=True)
class UpwindTerm(Term):
    """
    A first derivative in an advection term, discretized on the windward side.

    The direction is the full coefficient the derivative is multiplied with in
    the residual of its equation; its sign at a grid point selects the stencil.
    """

    kind: ClassVar[TermKind] = TermKind.UPWIND

    term: StencilTerm
    direction: Expr

    def children(self) -> tuple[Expr, ...]:
        return (self.direction,)

    def rebuild(self, children: tuple[Expr, ...]) -> Expr:
        return UpwindTerm(self.term, children[0])

    def __str__(self) -> str:
        return f"upwind[{self.direction}]({self.term})"


def _unsupported(node: Derivative, inner: Expr, reason: str) -> UnsupportedDerivativeFormError:
    return UnsupportedDerivativeFormError(
        f"Cannot discretize {node}: {reason} (inner expression {inner}). Derivatives may only be applied "
        "to a field, a sum of derivatives of a field, or the forms Dv(g*Dv(u)) and Dr(r^2*Dr(u)); "
        "expand products and compositions with the chain/product rule first.",
        expression=node,
    )


class TermClassifier:
    """
    Classifies the terms of the expressions of a PDE system.

    Parameters
    ----------
    system
        The PDE system, providing the field signatures.
    time_axis
        The independent variable kept continuous, if any.
    """

    def __init__(self, system: PDESystem, time_axis: str | None = None) -> None:
        self.system = system
        self.time_axis = time_axis
        self._signatures = {f.name: system.signature(f.name) for f in system.fields}

    def signature(self, field: str) -> tuple[str, ...]:
        return self._signatures[field]

    def classify(self, expr: Expr) -> Expr:
        """
        Classify all terms of an expression.

        Parameters
        ----------
        expr
            The expression to classify.

        Returns
        -------
        Expr
            The expression with field references and derivatives replaced by
            classified terms.

        Raises
        ------
        UnsupportedDerivativeFormError
            If a derivative has no stencil expansion.
        """
        return self._visit(expr)

    def _visit(self, node: Expr) -> Expr:
        if isinstance(node, (Const, Sym)):
            return node
        if isinstance(node, FieldRef):
            return self._field_ref(node)
        if isinstance(node, Derivative):
            return self._derivative(node)
        if isinstance(node, Sum):
            return self._laplacian(add(*(self._visit(term) for term in node.terms)))
        if isinstance(node, (Product, Power, Call)):
            return node.rebuild(tuple(self._visit(child) for child in node.children()))
        raise UnsupportedDerivativeFormError(f"Unsupported expression node {node!r}", expression=node)

    def _field_ref(self, node: FieldRef) -> GridValue:
        if node.name not in self._signatures:
            raise DiscretizationError(f"Reference to undeclared field '{node.name}' in {node}")
        signature = self._signatures[node.name]
        if len(node.args) != len(signature):
            raise DiscretizationError(f"{node} has {len(node.args)} arguments, the field signature has {len(signature)}")
        for arg in node.args:
            if arg.contains((FieldRef, Derivative)):
                raise DiscretizationError(f"Field arguments must not contain fields or derivatives: {node}")
        return GridValue(node.name, node.args)

    def _derivative(self, node: Derivative) -> Expr:
        if node.axis == self.time_axis:
            return self._time_derivative(node)
        # collapse nested derivatives into a single mixed derivative
        orders: Counter[str] = Counter()
        inner: Expr = node
        while isinstance(inner, Derivative) and inner.axis != self.time_axis:
            orders[inner.axis] += inner.order
            inner = inner.inner
        if isinstance(inner, Derivative):
            raise _unsupported(node, inner, "mixed space-time derivatives have no method of lines form")
        if isinstance(inner, FieldRef):
            return self._stencil_term(node, inner, orders)
        if isinstance(inner, Sum):
            return self._derivative_of_sum(node, inner, orders)
        if isinstance(inner, Product):
            return self._flux_form(node, inner, orders)
        if isinstance(inner, Call):
            raise _unsupported(node, inner, "derivative of a function composition")
        raise _unsupported(node, inner, "derivative of an expression that is not a field")

    def _time_derivative(self, node: Derivative) -> TimeDerivativeTerm:
        if node.order != 1:
            raise UnsupportedDerivativeFormError(
                f"Only first order time derivatives are supported, got {node}", expression=node
            )
        if not isinstance(node.inner, FieldRef):
            raise _unsupported(node, node.inner, "time derivative of an expression that is not a field")
        ref = self._field_ref(node.inner)
        if self.time_axis not in self.signature(ref.field):
            raise _unsupported(node, node.inner, f"field {ref.field} does not depend on {self.time_axis}")
        return TimeDerivativeTerm(ref.field, ref.args)

    def _stencil_term(self, node: Derivative, inner: FieldRef, orders: Counter[str]) -> StencilTerm:
        ref = self._field_ref(inner)
        signature = self.signature(ref.field)
        for axis in orders:
            if axis not in signature:
                raise _unsupported(node, inner, f"field {ref.field} does not depend on {axis}")
        ordered = tuple((axis, orders[axis]) for axis in signature if axis in orders)
        return StencilTerm(ref.field, ref.args, ordered)

    def _derivative_of_sum(self, node: Derivative, inner: Sum, orders: Counter[str]) -> Expr:
        # Dv of a Laplacian (or any sum of derivatives) distributes over the terms
        terms = []
        for term in inner.terms:
            if not isinstance(term, Derivative):
                raise _unsupported(node, inner, "derivative of a sum that is not a sum of derivatives")
            wrapped = term
            for axis, order in orders.items():
                wrapped = Derivative(wrapped, axis, order)
            terms.append(self._derivative(wrapped))
        return add(*terms)

    def _flux_form(self, node: Derivative, inner: Product, orders: Counter[str]) -> Expr:
        if len(orders) != 1 or next(iter(orders.values())) != 1:
            raise _unsupported(node, inner, "derivative of a product")
        (axis,) = orders
        flux = [
            f
            for f in inner.factors
            if isinstance(f, Derivative) and f.axis == axis and f.order == 1 and isinstance(f.inner, FieldRef)
        ]
        if len(flux) != 1:
            raise _unsupported(node, inner, "derivative of a product")
        weight = mul(*(f for f in inner.factors if f is not flux[0]))
        if weight.contains(Derivative):
            raise _unsupported(node, inner, "the weight of a flux term must not contain derivatives")
        assert isinstance(flux[0], Derivative) and isinstance(flux[0].inner, FieldRef)
        ref = self._field_ref(flux[0].inner)
        if axis not in self.signature(ref.field):
            raise _unsupported(node, inner, f"field {ref.field} does not depend on {axis}")
        if weight == Power(Sym(axis), Const(2.0)):
            return SphericalLaplacianTerm(ref.field, ref.args, axis)
        return FluxTerm(ref.field, ref.args, axis, self._visit(weight))

    @staticmethod
    def _laplacian(expr: Expr) -> Expr:
        # tag sums of second derivatives of one field along distinct axes
        if not isinstance(expr, Sum):
            return expr
        parts = [p for p in expr.terms if isinstance(p, StencilTerm)]
        if len(parts) < 2 or len(parts) != len(expr.terms):
            return expr
        fields = {(p.field, p.args) for p in parts}
        axes = [p.orders[0][0] for p in parts if len(p.orders) == 1 and p.orders[0][1] == 2]
        if len(fields) == 1 and len(axes) == len(parts) and len(set(axes)) == len(axes):
            return LaplacianTerm(tuple(parts))
        return expr


def describe(expr: Expr) -> list[tuple[TermKind, str]]:
    """
    Summarize the classified terms of an expression.

    Nested parts of composite terms are not listed separately.
    """
    summary = []
    for node in expr.walk():
        if isinstance(node, Term):
            summary.append((node.kind, str(node)))
    return summary


def spatial_orders(expr: Expr) -> dict[str, int]:
    """Highest spatial derivative order per field in a classified expression."""
    orders: dict[str, int] = {}

    def note(field: str, order: int) -> None:
        orders[field] = max(orders.get(field, 0), order)

    for node in expr.walk():
        if isinstance(node, StencilTerm):
            note(node.field, node.total_order)
        elif isinstance(node, LaplacianTerm):
            for part in node.parts:
                note(part.field, part.total_order)
        elif isinstance(node, (SphericalLaplacianTerm, FluxTerm)):
            note(node.field, 2)
        elif isinstance(node, UpwindTerm):
            note(node.term.field, node.term.total_order)
        elif isinstance(node, GridValue):
            note(node.field, 0)
    return orders


def time_derivative_fields(expr: Expr) -> list[str]:
    """Fields whose time derivative appears in a classified expression."""
    fields: list[str] = []
    for node in expr.walk():
        if isinstance(node, TimeDerivativeTerm) and node.field not in fields:
            fields.append(node.field)
    return fields
