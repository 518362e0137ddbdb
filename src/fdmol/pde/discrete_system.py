"""
The discrete system produced by a discretization pass.

Holds the ordered unknowns and equations and provides the index maps and the
numerical helpers needed to hand the system to an ODE/DAE integrator or a
nonlinear solver.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp
import sympy

from fdmol.core.errors import DiscretizationError
from fdmol.core.types import Array, ArrayLike, MultiIndex, ParameterMap, RealArray

from .fd_boundary_conditions import AliasTable, BoundaryFace
from .grid import Grid

logger = logging.getLogger(__name__)


def unknown_symbol(field: str, index: MultiIndex) -> sympy.Symbol:
    """The symbol of the unknown of a field at a multi-index, e.g. u[2,3]."""
    if not index:
        return sympy.Symbol(field)
    return sympy.Symbol(f"{field}[{','.join(str(i) for i in index)}]")


@dataclass(frozen=True)
class DiscreteUnknown:
    """The value of a field at one grid point."""

    field: str
    index: MultiIndex
    #: whether the value depends on the continuous time variable
    time_dependent: bool
    symbol: sympy.Symbol

    def __str__(self) -> str:
        return str(self.symbol)


@dataclass(frozen=True)
class DiscreteEquation:
    """
    The equation of one unknown.

    Reads ``d(unknown)/dt = rhs`` if the equation is differential and
    ``0 = rhs`` otherwise.
    """

    unknown: DiscreteUnknown
    rhs: sympy.Expr
    differential: bool
    #: "interior" or "boundary"
    origin: str
    #: the face a boundary equation was built for
    face: BoundaryFace | None = None

    def __str__(self) -> str:
        lhs = f"d{self.unknown}/dt" if self.differential else "0"
        return f"{lhs} = {self.rhs}"


class UnknownRegistry:
    """
    The ordered unknowns of a discrete system.

    Unknowns are ordered by field declaration order first, then by the
    lexicographic order of their multi-index. Grid points identified with
    another point by a periodic condition are not unknowns of their own.
    """

    def __init__(self, aliases: AliasTable | None = None) -> None:
        #: the unknowns in order
        self.unknowns: list[DiscreteUnknown] = []
        #: the periodic identifications
        self.aliases = aliases if aliases is not None else AliasTable()
        self._flat: dict[tuple[str, MultiIndex], int] = {}
        #: the grid shape of each field
        self.shapes: dict[str, tuple[int, ...]] = {}

    @classmethod
    def build(
        cls, fields: Iterable[tuple[str, tuple[int, ...], bool]], aliases: AliasTable | None = None
    ) -> UnknownRegistry:
        """
        Register the unknowns of all fields.

        Parameters
        ----------
        fields
            (name, grid shape, time dependent) per field, in declaration order.
        aliases
            The periodic identifications.

        Returns
        -------
        UnknownRegistry
            The registry.
        """
        registry = cls(aliases)
        for name, shape, time_dependent in fields:
            registry.shapes[name] = shape
            for index in np.ndindex(*shape):
                index = tuple(int(i) for i in index)
                if registry.aliases.is_aliased(name, index):
                    continue
                registry.add(DiscreteUnknown(name, index, time_dependent, unknown_symbol(name, index)))
        return registry

    def add(self, unknown: DiscreteUnknown) -> None:
        key = (unknown.field, unknown.index)
        if key in self._flat:
            raise DiscretizationError(f"Duplicate unknown {unknown}")
        self._flat[key] = len(self.unknowns)
        self.unknowns.append(unknown)

    def __len__(self) -> int:
        return len(self.unknowns)

    def __iter__(self):
        return iter(self.unknowns)

    def flat_index(self, field: str, index: MultiIndex) -> int:
        """The position of the unknown of a grid point, resolving periodic identifications."""
        index = tuple(int(i) for i in index)
        canonical = self.aliases.canonical(field, index)
        try:
            return self._flat[field, canonical]
        except KeyError:
            raise KeyError(f"No unknown for {field} at {index}") from None

    def symbol(self, field: str, index: MultiIndex) -> sympy.Symbol:
        """The symbol of the unknown of a grid point."""
        return self.unknowns[self.flat_index(field, index)].symbol


class DiscreteSystem:
    """
    A discretized PDE system.

    A system of ordinary differential equations in time (method of lines), a
    differential-algebraic system if some equations are algebraic, or a purely
    algebraic system if no time variable is kept continuous. Equation ``i``
    determines unknown ``i``.
    """

    def __init__(
        self,
        grid: Grid,
        registry: UnknownRegistry,
        equations: list[DiscreteEquation],
        initial: list[sympy.Expr | None] | None = None,
        parameters: ParameterMap | None = None,
        coordinate_axes: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        """
        Initialize the DiscreteSystem.

        Parameters
        ----------
        grid
            The grid.
        registry
            The ordered unknowns.
        equations
            One equation per unknown, in the same order.
        initial
            Symbolic initial value per unknown, None where the field has no
            initial condition.
        parameters
            Default values of the free parameters.
        coordinate_axes
            The spatial axes of each field.
        """
        if len(equations) != len(registry):
            raise DiscretizationError(f"{len(equations)} equations for {len(registry)} unknowns")
        #: the grid
        self.grid = grid
        self.registry = registry
        #: the ordered unknowns
        self.unknowns: list[DiscreteUnknown] = registry.unknowns
        #: the ordered equations
        self.equations = equations
        #: the default values of free parameters
        self.parameters: ParameterMap = dict(parameters or {})
        self._initial = initial if initial is not None else [None] * len(equations)
        self._axes = dict(coordinate_axes or {})
        self._time = sympy.Symbol(grid.time_variable) if grid.time_variable else None

    def __len__(self) -> int:
        return len(self.unknowns)

    def __repr__(self) -> str:
        return (
            f"DiscreteSystem(unknowns={len(self)}, differential={sum(e.differential for e in self.equations)}, "
            f"fields={list(self.registry.shapes)})"
        )

    @property
    def is_time_dependent(self) -> bool:
        """Whether the system has a continuous time variable."""
        return self.grid.time is not None

    @property
    def aliases(self) -> AliasTable:
        """The periodic identifications of grid points."""
        return self.registry.aliases

    @property
    def symbols(self) -> list[sympy.Symbol]:
        return [u.symbol for u in self.unknowns]

    def flat_index(self, field: str, index: MultiIndex) -> int:
        """
        The position of a grid point of a field in the vector of unknowns.

        Aliased (periodic) grid points map to the position of their
        representative.
        """
        return self.registry.flat_index(field, index)

    def multi_index(self, flat: int) -> tuple[str, MultiIndex]:
        """The field and multi-index of an unknown."""
        unknown = self.unknowns[flat]
        return unknown.field, unknown.index

    def coordinates(self, field: str) -> tuple[RealArray, ...]:
        """The grid coordinates along each spatial axis of a field."""
        return tuple(self.grid.axis(v).coordinates for v in self._axes.get(field, ()))

    def reconstruct(self, vector: ArrayLike) -> dict[str, Array]:
        """
        Reshape a vector of unknowns to the grid arrays of the fields.

        Parameters
        ----------
        vector
            A vector of unknowns, shape (N,), or a trajectory of them, shape
            (N, T).

        Returns
        -------
        dict
            One array per field, of the field's grid shape (plus the trailing
            time dimension of a trajectory). Aliased grid points are filled
            with the value of their representative.
        """
        vector = np.asarray(vector)
        if vector.shape[0] != len(self):
            raise ValueError(f"Expected {len(self)} values, got shape {vector.shape}")
        fields = {}
        for name, shape in self.registry.shapes.items():
            flat = np.array([self.flat_index(name, index) for index in np.ndindex(*shape)], dtype=int)
            fields[name] = vector[flat].reshape(shape + vector.shape[1:])
        return fields

    def _parameter_values(self, parameters: ParameterMap | None) -> dict[sympy.Symbol, float]:
        values = dict(self.parameters)
        values.update(parameters or {})
        return {sympy.Symbol(name): float(value) for name, value in values.items()}

    def initial_values(self, parameters: ParameterMap | None = None) -> Array:
        """
        The vector of initial values.

        Unknowns of fields without an initial condition start at zero.

        Parameters
        ----------
        parameters
            Values of free parameters, overriding the system defaults.
        """
        values = self._parameter_values(parameters)
        u0 = np.zeros(len(self))
        for i, expr in enumerate(self._initial):
            if expr is None:
                continue
            value = expr.xreplace(values)
            if not value.is_number:
                raise ValueError(f"Initial value of {self.unknowns[i]} depends on unknown parameters {value.free_symbols}")
            u0[i] = float(value)
        return u0

    def mass_matrix(self) -> sp.csr_matrix:
        """The diagonal mass matrix: 1 for differential, 0 for algebraic equations."""
        diagonal = np.array([1.0 if eq.differential else 0.0 for eq in self.equations])
        return sp.diags(diagonal, 0, shape=(len(self), len(self)), format="csr")

    def jacobian_sparsity(self) -> sp.csr_matrix:
        """The sparsity structure of the Jacobian of the right hand sides."""
        rows, cols = [], []
        positions = {u.symbol: i for i, u in enumerate(self.unknowns)}
        for i, eq in enumerate(self.equations):
            for s in eq.rhs.free_symbols:
                j = positions.get(s)
                if j is not None:
                    rows.append(i)
                    cols.append(j)
        data = np.ones(len(rows), dtype=np.int8)
        return sp.coo_matrix((data, (rows, cols)), shape=(len(self), len(self))).tocsr()

    def rhs_function(self, parameters: ParameterMap | None = None) -> Callable[[float, Array], Array]:
        """
        Compile the right hand sides to a numpy function f(t, u).

        For differential equations f gives du/dt, for algebraic ones the
        residual that vanishes at a solution. Time independent systems ignore t.

        Parameters
        ----------
        parameters
            Values of free parameters, overriding the system defaults.

        Returns
        -------
        Callable
            The function f(t, u).

        Raises
        ------
        ValueError
            If a free parameter has no value.
        """
        values = self._parameter_values(parameters)
        # unknown symbols have names that are not valid python identifiers
        safe = {u.symbol: sympy.Symbol(f"_u{i}") for i, u in enumerate(self.unknowns)}
        t = self._time if self._time is not None else sympy.Symbol("_t")
        allowed = set(safe.values()) | {t}
        exprs = []
        for eq in self.equations:
            expr = eq.rhs.xreplace(values).xreplace(safe)
            unknown = expr.free_symbols - allowed
            if unknown:
                raise ValueError(f"No value given for the parameters {sorted(map(str, unknown))} in {eq}")
            exprs.append(expr)
        logger.debug("Compiling %d right hand sides", len(exprs))
        compiled = sympy.lambdify((t, list(safe.values())), exprs, modules="numpy")
        size = len(self)

        def f(time: float, u: Array) -> Array:
            u = np.asarray(u, dtype=np.float64)
            if u.shape != (size,):
                raise ValueError(f"Expected a vector of {size} unknowns, got shape {u.shape}")
            return np.array(compiled(time, u), dtype=np.float64)

        return f
