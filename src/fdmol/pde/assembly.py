"""
Assembly of the discrete equations.

Every grid point of every field gets exactly one equation: the boundary
condition of its face if it lies on a non-periodic boundary, otherwise the
governing PDE of the field with all classified terms expanded into finite
difference stencils at that point.
"""

from __future__ import annotations

import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from fractions import Fraction

import numpy as np
import scipy.sparse as sp
import sympy
from scipy.sparse.csgraph import maximum_bipartite_matching

from fdmol.core.config import AdvectionScheme, DiscretizationConfig
from fdmol.core.errors import DiscretizationError, UnderspecifiedSystemError, UnsupportedDerivativeFormError
from fdmol.core.expressions import Const, Equation, Expr, Product, Sum, Sym, add, mul
from fdmol.core.profiling import profile
from fdmol.core.system import PDESystem
from fdmol.core.types import MultiIndex

from .discrete_system import DiscreteEquation, DiscreteUnknown, UnknownRegistry
from .fd_boundary_conditions import BoundaryFace, BoundaryProcessor
from .finite_differences import Side, StencilLibrary, StencilWeights
from .grid import Grid
from .terms import (
    FluxTerm,
    GridValue,
    LaplacianTerm,
    SphericalLaplacianTerm,
    StencilTerm,
    Term,
    TermClassifier,
    TimeDerivativeTerm,
    UpwindTerm,
    describe,
    spatial_orders,
    time_derivative_fields,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoverningEquation:
    """A PDE assigned to the field it determines."""

    field: str
    equation: Equation
    #: the classified residual lhs - rhs
    residual: Expr

    @property
    def is_differential(self) -> bool:
        return self.field in time_derivative_fields(self.residual)


@dataclass(frozen=True)
class _Point:
    # the grid point an expression is lowered at
    field: str
    point: dict[str, int]
    dudt: sympy.Symbol | None = None
    #: factor turning a residual coefficient into a right hand side coefficient
    orientation: sympy.Expr = sympy.Integer(1)
    #: shift to a half point along one axis: (axis, offset in grid steps, interpolation half width)
    shift: tuple[str, Fraction, int] | None = None


def _has_stencil(expr: Expr) -> bool:
    return any(isinstance(node, Term) and not isinstance(node, GridValue) for node in expr.walk())


class EquationAssembler:
    """
    Builds one discrete equation per unknown.

    Parameters
    ----------
    system
        The PDE system.
    grid
        The grid.
    stencils
        The stencil library.
    config
        The discretization configuration.
    classifier
        The term classifier, by default one for the time axis of the config.
    """

    def __init__(
        self,
        system: PDESystem,
        grid: Grid,
        stencils: StencilLibrary,
        config: DiscretizationConfig,
        classifier: TermClassifier | None = None,
    ) -> None:
        self.system = system
        self.grid = grid
        self.stencils = stencils
        self.config = config
        self.classifier = classifier or TermClassifier(system, config.time_axis)
        self.time_axis = grid.time_variable
        self._time_symbol = sympy.Symbol(self.time_axis) if self.time_axis else None
        #: the governing equation of each field, available after assign_equations()
        self.governing: dict[str, GoverningEquation] = {}
        self._boundaries: BoundaryProcessor | None = None
        self._marked: dict[str, Expr] = {}
        self._registry: UnknownRegistry | None = None

    def spatial_signature(self, name: str) -> tuple[str, ...]:
        return tuple(v for v in self.system.signature(name) if v != self.time_axis)

    @property
    def differential_fields(self) -> list[str]:
        """The fields whose governing equation contains their time derivative."""
        return [name for name, gov in self.governing.items() if gov.is_differential]

    # ---- PDE to field assignment ----

    @profile
    def assign_equations(self) -> dict[str, GoverningEquation]:
        """
        Classify the governing PDEs and assign each one to a field.

        A PDE containing the time derivative of a field governs that field.
        Each remaining PDE is assigned to one of the unassigned fields it
        references. The preferred field is the one with the highest spatial
        derivative order in the PDE, ties broken by field declaration order.
        If these preferences leave a PDE without a field, the assignment is
        taken from a maximum matching of the bipartite PDE to field graph,
        so that it does not depend on the order the PDEs are listed in.

        Raises
        ------
        UnderspecifiedSystemError
            If the PDEs cannot be matched one to one with the fields.
        """
        names = self.system.field_names
        classified = []
        for equation in self.system.equations:
            residual = self.classifier.classify(equation.residual())
            logger.debug("Classified %s: %s", equation, describe(residual))
            classified.append((equation, residual))

        governing: dict[str, GoverningEquation] = {}
        pending = []
        for equation, residual in classified:
            fields = [f for f in time_derivative_fields(residual) if f not in governing]
            if fields:
                governing[fields[0]] = GoverningEquation(fields[0], equation, residual)
            elif time_derivative_fields(residual):
                raise UnderspecifiedSystemError(f"Fields {time_derivative_fields(residual)} have several PDEs: {equation}")
            else:
                pending.append((equation, residual))
        free = [name for name in names if name not in governing]
        for (equation, residual), name in zip(pending, self._match(pending, free)):
            governing[name] = GoverningEquation(name, equation, residual)

        missing = [name for name in names if name not in governing]
        if missing:
            raise UnderspecifiedSystemError(f"No governing equation for the fields {missing}")
        # keep declaration order
        self.governing = {name: governing[name] for name in names}
        for name, gov in self.governing.items():
            logger.debug("%s is governed by %s", name, gov.equation)
        return self.governing

    @staticmethod
    def _match(pending: list[tuple[Equation, Expr]], free: list[str]) -> list[str]:
        # the field of each pending PDE, among the fields without a PDE yet
        orders = [{f: o for f, o in spatial_orders(residual).items() if f in free} for _, residual in pending]
        chosen: list[str] = []
        for candidates in orders:
            left = [f for f in candidates if f not in chosen]
            if not left:
                break
            chosen.append(max(sorted(left, key=free.index), key=candidates.__getitem__))
        else:
            return chosen

        if len(pending) > len(free):
            raise UnderspecifiedSystemError(f"{len(pending)} PDEs without a time derivative left for the fields {free}")
        rows = [i for i, candidates in enumerate(orders) for _ in candidates]
        cols = [free.index(f) for candidates in orders for f in candidates]
        graph = sp.csr_matrix((np.ones(len(rows)), (rows, cols)), shape=(len(pending), len(free)))
        matching = maximum_bipartite_matching(graph, perm_type="column")
        for (equation, _), j in zip(pending, matching):
            if j < 0:
                raise UnderspecifiedSystemError(f"No field left to be determined by {equation}")
        logger.debug("Assigned %d PDEs by bipartite matching", len(pending))
        return [free[j] for j in matching]

    # ---- assembly ----

    @profile
    def assemble(
        self, boundaries: BoundaryProcessor, registry: UnknownRegistry
    ) -> tuple[list[DiscreteEquation], list[sympy.Expr | None]]:
        """
        Build the equations and initial values of all unknowns.

        Parameters
        ----------
        boundaries
            The boundary processor, with its conditions processed.
        registry
            The registry of the unknowns.

        Returns
        -------
        tuple
            The equations and the symbolic initial values, both in the order
            of the unknowns.
        """
        if not self.governing:
            self.assign_equations()
        self._boundaries = boundaries
        self._registry = registry
        self._marked = {name: self._mark_upwind(gov.residual) for name, gov in self.governing.items()}

        workers = self.config.max_workers
        if workers is None or workers == 1:
            results = [self._assemble_unknown(u) for u in registry]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                # map keeps the order of the unknowns
                results = list(executor.map(self._assemble_unknown, registry))
        equations = [equation for equation, _ in results]
        initial = [value for _, value in results]
        return equations, initial

    def _assemble_unknown(self, unknown: DiscreteUnknown) -> tuple[DiscreteEquation, sympy.Expr | None]:
        assert self._boundaries is not None
        equation = self.equation_at(unknown)
        initial = None
        if unknown.field in self._boundaries.processed.initial:
            initial = self._boundaries.initial_value(unknown.field, unknown.index)
        return equation, initial

    def equation_at(self, unknown: DiscreteUnknown) -> DiscreteEquation:
        """The discrete equation of an unknown."""
        assert self._boundaries is not None
        dudt = sympy.Dummy(f"d{unknown.symbol}dt") if self.time_axis else None
        bc = self._boundaries.condition_at(unknown.field, unknown.index)
        if bc is not None:
            residual = self._boundaries.lower(bc, unknown.index, self._value_at, dudt)
            rhs, differential = self._solve(residual, dudt, unknown, bc.equation)
            return DiscreteEquation(unknown, rhs, differential, "boundary", bc.face)

        point = dict(zip(self.spatial_signature(unknown.field), unknown.index))
        expr = self._marked[unknown.field]
        ctx = _Point(unknown.field, point, dudt)
        terms = expr.terms if isinstance(expr, Sum) else (expr,)
        time_terms = [term for term in terms if term.contains(TimeDerivativeTerm)]
        if time_terms and dudt is not None:
            k = sympy.diff(sympy.Add(*(self.lower(term, ctx) for term in time_terms)), dudt)
            ctx = replace(ctx, orientation=-1 / k)
        residual = self.lower(expr, ctx)
        gov = self.governing[unknown.field]
        rhs, differential = self._solve(residual, dudt, unknown, gov.equation)
        return DiscreteEquation(unknown, rhs, differential, "interior")

    @staticmethod
    def _solve(
        residual: sympy.Expr, dudt: sympy.Symbol | None, unknown: DiscreteUnknown, equation: Equation
    ) -> tuple[sympy.Expr, bool]:
        # k * du/dt + G = 0  ->  du/dt = -G / k
        if dudt is None or not residual.has(dudt):
            return residual, False
        k = sympy.diff(residual, dudt)
        if k.has(dudt):
            raise UnsupportedDerivativeFormError(
                f"{equation} is not linear in the time derivative of {unknown.field}", expression=equation
            )
        return -residual.subs(dudt, 0) / k, True

    def _value_at(self, field: str, index: MultiIndex) -> sympy.Expr:
        assert self._registry is not None
        try:
            return self._registry.symbol(field, index)
        except KeyError as err:
            raise DiscretizationError(f"Stencil reaches outside the grid of {field}: {err}") from None

    # ---- upwinding ----

    def _mark_upwind(self, expr: Expr, outer: tuple[Expr, ...] = ()) -> Expr:
        # wrap first derivatives that are plain factors of top level terms
        if self.config.advection_scheme is not AdvectionScheme.UPWIND:
            return expr
        if isinstance(expr, StencilTerm) and expr.is_advective:
            return UpwindTerm(expr, mul(*outer))
        if isinstance(expr, Sum):
            return add(*(self._mark_upwind(term, outer) for term in expr.terms))
        if isinstance(expr, Product):
            factors = []
            for i, factor in enumerate(expr.factors):
                others = expr.factors[:i] + expr.factors[i + 1 :]
                if isinstance(factor, (StencilTerm, Sum)) and not any(_has_stencil(o) for o in others):
                    factors.append(self._mark_upwind(factor, outer + others))
                else:
                    factors.append(factor)
            return mul(*factors)
        return expr

    # ---- lowering ----

    def lower(self, expr: Expr, ctx: _Point) -> sympy.Expr:
        """Expand a classified expression at a grid point."""
        return expr.to_sympy(lambda node: self._resolve(node, ctx))

    def _resolve(self, node: Expr, ctx: _Point) -> sympy.Expr:
        if isinstance(node, Sym):
            return self._symbol(node.name, ctx)
        if isinstance(node, GridValue):
            return self._grid_value(node, ctx)
        if isinstance(node, UpwindTerm):
            return self._upwind(node, ctx)
        if isinstance(node, StencilTerm):
            return self._stencil(node, ctx)
        if isinstance(node, LaplacianTerm):
            return sympy.Add(*(self._stencil(part, ctx) for part in node.parts))
        if isinstance(node, SphericalLaplacianTerm):
            return self._spherical(node, ctx)
        if isinstance(node, FluxTerm):
            return self._flux(node, ctx)
        if isinstance(node, TimeDerivativeTerm):
            if node.field != ctx.field or ctx.dudt is None:
                raise UnsupportedDerivativeFormError(
                    f"The equation of {ctx.field} contains the time derivative of {node.field}", expression=node
                )
            return ctx.dudt
        raise DiscretizationError(f"Cannot lower {node!r}")

    def _symbol(self, name: str, ctx: _Point) -> sympy.Expr:
        if name in ctx.point:
            coordinate = self.grid.axis(name).coordinates[ctx.point[name]]
            if ctx.shift is not None and ctx.shift[0] == name:
                coordinate += float(ctx.shift[1]) * self.grid.axis(name).dx
            return sympy.Float(coordinate)
        if name == self.time_axis:
            assert self._time_symbol is not None
            return self._time_symbol
        if name in self.grid.variables:
            raise DiscretizationError(f"The equation of {ctx.field} refers to {name}, which {ctx.field} does not depend on")
        return sympy.Symbol(name)

    def _check_args(self, field: str, args: tuple[Expr, ...], ctx: _Point) -> tuple[str, ...]:
        # the spatial axes of a referenced field, which must all be axes of the point
        axes = self.spatial_signature(field)
        for variable, arg in zip(self.system.signature(field), args):
            if variable == self.time_axis:
                if arg != Sym(variable):
                    raise DiscretizationError(f"{field} must be referenced at the current time in the equation of {ctx.field}")
            elif isinstance(arg, Sym) and arg.name != variable:
                raise DiscretizationError(f"{field} is evaluated at {variable}={arg.name} in the equation of {ctx.field}")
            elif isinstance(arg, Sym) and variable not in ctx.point:
                raise DiscretizationError(f"{field} depends on {variable}, which {ctx.field} does not depend on")
        return axes

    def _grid_value(self, node: GridValue, ctx: _Point) -> sympy.Expr:
        axes = self._check_args(node.field, node.args, ctx)
        fixed = {
            variable: arg
            for variable, arg in zip(self.system.signature(node.field), node.args)
            if variable != self.time_axis and not isinstance(arg, Sym)
        }
        if fixed:
            return self._face_reference(node, fixed, ctx)
        index = tuple(ctx.point[v] for v in axes)
        if ctx.shift is None or ctx.shift[0] not in axes:
            return self._value_at(node.field, index)
        # interpolate to the half point
        axis, h, k = ctx.shift
        position = axes.index(axis)
        offsets = self._half_nodes(h, k)
        weights = self.stencils.at_coordinate(offsets, h, 0)
        i = ctx.point[axis]
        return sympy.Add(
            *(
                w * self._value_at(node.field, self._shifted(node.field, axis, index, position, i + int(o)))
                for o, w in zip(offsets, weights)
            )
        )

    def _face_reference(self, node: GridValue, fixed: dict[str, Expr], ctx: _Point) -> sympy.Expr:
        # a field evaluated on a boundary face inside a governing equation
        assert self._boundaries is not None
        if len(fixed) != 1:
            raise DiscretizationError(f"{node} is fixed along more than one axis")
        ((variable, arg),) = fixed.items()
        side = self.grid.axis(variable).side_of(arg.value) if isinstance(arg, Const) else None
        if side is None:
            raise DiscretizationError(f"{node} must be evaluated at the grid points or on a boundary face")
        point = dict(ctx.point)
        point[variable] = self.grid.axis(variable).face_index(side)
        return self._boundaries.face_value(node.field, point, BoundaryFace(variable, side), 0, self._value_at)

    def _shifted(self, field: str, axis: str, index: MultiIndex, position: int, i: int) -> MultiIndex:
        wrap = self._registry.aliases.wrap(field, axis) if self._registry is not None else None
        if wrap is not None:
            i = wrap(i)
        return index[:position] + (i,) + index[position + 1 :]

    def _window(self, field: str, axis: str, d: int, i: int, side: Side = Side.CENTERED) -> StencilWeights:
        # the stencil of a derivative along an axis at index i, shifted into range
        size = len(self.grid.axis(axis))
        if side is Side.CENTERED:
            p = self.config.approx_order
            stencil = self.stencils.weights(d, p, Side.CENTERED)
        else:
            p = self.config.upwind_order
            stencil = self.stencils.upwind(d, p, 1 if side is Side.RIGHT else -1, warn=False)
        assert self._registry is not None
        if self._registry.aliases.is_periodic(field, axis):
            return stencil
        if 0 <= i + stencil.offsets[0] and i + stencil.offsets[-1] <= size - 1:
            return stencil
        width = self.stencils.skewed_width(d, p)
        if width > size:
            raise DiscretizationError(
                f"Axis {axis} has {size} points, too few for a derivative of order {d} with approximation order {p}"
            )
        start = max(-i, min(-(width // 2), size - width - i))
        return self.stencils.skewed(d, p, start)

    def _expand(self, field: str, windows: dict[str, StencilWeights], ctx: _Point) -> sympy.Expr:
        # tensor product of the windows along each axis
        axes = self.spatial_signature(field)
        base = tuple(ctx.point[v] for v in axes)
        per_axis = []
        for axis, stencil in windows.items():
            scale = self.grid.axis(axis).step ** stencil.key.derivative_order
            per_axis.append([(axis, o, w / scale) for o, w in stencil if w != 0])
        terms = []
        for combination in itertools.product(*per_axis):
            index = base
            weight = sympy.Integer(1)
            for axis, o, w in combination:
                position = axes.index(axis)
                index = self._shifted(field, axis, index, position, index[position] + o)
                weight *= w
            terms.append(weight * self._value_at(field, index))
        return sympy.Add(*terms)

    def _stencil(self, node: StencilTerm, ctx: _Point, side: Side = Side.CENTERED) -> sympy.Expr:
        self._check_args(node.field, node.args, ctx)
        if any(not isinstance(a, Sym) for a in node.args):
            raise DiscretizationError(f"Derivatives of fields evaluated on a face are not supported in PDEs: {node}")
        windows = {axis: self._window(node.field, axis, d, ctx.point[axis], side) for axis, d in node.orders}
        return self._expand(node.field, windows, ctx)

    def _upwind(self, node: UpwindTerm, ctx: _Point) -> sympy.Expr:
        direction = self.lower(node.direction, ctx) * ctx.orientation
        forward = self._stencil(node.term, ctx, Side.RIGHT)
        backward = self._stencil(node.term, ctx, Side.LEFT)
        if direction.is_number:
            return forward if float(direction) > 0 else backward
        return sympy.Piecewise((forward, direction > 0), (backward, True))

    def _spherical(self, node: SphericalLaplacianTerm, ctx: _Point) -> sympy.Expr:
        r = self._symbol(node.axis, ctx)
        second = StencilTerm(node.field, node.args, ((node.axis, 2),))
        first = StencilTerm(node.field, node.args, ((node.axis, 1),))
        return r**2 * self._stencil(second, ctx) + 2 * r * self._stencil(first, ctx)

    @staticmethod
    def _half_nodes(h: Fraction, k: int) -> list[Fraction]:
        # the 2k integer offsets around the half point h
        return [h + Fraction(2 * j + 1, 2) for j in range(-k, k)]

    def _flux(self, node: FluxTerm, ctx: _Point) -> sympy.Expr:
        self._check_args(node.field, node.args, ctx)
        axis = self.grid.axis(node.axis)
        size = len(axis)
        i = ctx.point[node.axis]
        p = self.config.approx_order + self.config.approx_order % 2
        k = p // 2
        assert self._registry is not None
        if not self._registry.aliases.is_periodic(node.field, node.axis):
            # reduce the order close to the boundaries
            while k > 1 and (i - (2 * k - 1) < 0 or i + 2 * k - 1 > size - 1):
                k -= 1
            if i - 1 < 0 or i + 1 > size - 1:
                raise DiscretizationError(f"Flux term {node} cannot be evaluated on the boundary point {i} of {node.axis}")
        halves = [Fraction(2 * j + 1, 2) for j in range(-k, k)]
        divergence = self.stencils.at_coordinate(halves, 0, 1)
        axes = self.spatial_signature(node.field)
        position = axes.index(node.axis)
        index = tuple(ctx.point[v] for v in axes)
        total = []
        for h, wd in zip(halves, divergence):
            nodes = self._half_nodes(h, k)
            gradient_weights = self.stencils.at_coordinate(nodes, h, 1)
            gradient = sympy.Add(
                *(
                    w / axis.step
                    * self._value_at(node.field, self._shifted(node.field, node.axis, index, position, i + int(o)))
                    for o, w in zip(nodes, gradient_weights)
                    if w != 0
                )
            )
            weight = self.lower(node.weight, replace(ctx, shift=(node.axis, h, k)))
            total.append(wd / axis.step * weight * gradient)
        return sympy.Add(*total)

