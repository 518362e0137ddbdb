"""
Finite difference boundary and initial conditions.

Conditions are given as symbolic equations where fields are evaluated on a
boundary face, e.g. ``u(t, 0.0) ~ 1`` or ``Dx(u(t, 1.0)) ~ 0``. Each condition
is matched to a face and a field, classified (Dirichlet, Neumann, Robin,
periodic) and lowered to one discrete equation per grid point of the face.
Periodic conditions produce no equations; they identify the grid points of the
two faces instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction

import numpy as np
import sympy

from fdmol.core.config import DiscretizationConfig, GridAlign
from fdmol.core.errors import UnderspecifiedSystemError, UnsupportedBCShapeError
from fdmol.core.expressions import Const, Derivative, Equation, Expr, FieldRef, Sym
from fdmol.core.profiling import profile
from fdmol.core.system import PDESystem
from fdmol.core.types import MultiIndex

from .finite_differences import StencilLibrary
from .grid import FaceSide, Grid, GridAxis

logger = logging.getLogger(__name__)

#: callback returning the symbol of the unknown of a field at a multi-index
ValueLookup = Callable[[str, MultiIndex], sympy.Expr]


class BCKind(str, Enum):
    """Kinds of boundary conditions."""

    DIRICHLET = "dirichlet"
    NEUMANN = "neumann"
    ROBIN = "robin"
    PERIODIC = "periodic"


@dataclass(frozen=True)
class BoundaryFace:
    """One of the two faces of a spatial axis."""

    axis: str
    side: FaceSide

    def __str__(self) -> str:
        return f"{self.axis}={self.side.value}"


@dataclass(frozen=True)
class BoundaryCondition:
    """A condition matched to a field and a face."""

    #: the field the condition is an equation for
    field: str
    face: BoundaryFace
    kind: BCKind
    equation: Equation
    #: whether the condition contains the time derivative of the field
    differential: bool = False

    def __str__(self) -> str:
        return f"{self.kind.value} BC for {self.field} at {self.face}: {self.equation}"


@dataclass(frozen=True)
class InitialCondition:
    """The values of a field at the start of the time domain."""

    field: str
    equation: Equation


@dataclass(frozen=True)
class PeriodicWrap:
    """Maps indices beyond the ends of a periodic axis back into one period."""

    start: int
    period: int

    def __call__(self, index: int) -> int:
        return self.start + (index - self.start) % self.period


class AliasTable:
    """
    Identification of the grid points of periodic faces.

    A union-find structure over the multi-indices of each field. The canonical
    representative of a class of identified points is its lexicographically
    smallest multi-index, so that the closure does not depend on the order in
    which periodic conditions were given.
    """

    def __init__(self) -> None:
        self._parent: dict[tuple[str, MultiIndex], MultiIndex] = {}
        #: periodic wraps per (field, axis)
        self.wraps: dict[tuple[str, str], PeriodicWrap] = {}

    def __len__(self) -> int:
        return sum(1 for key in self._parent if self.is_aliased(*key))

    def canonical(self, field: str, index: MultiIndex) -> MultiIndex:
        """The representative of the class of a grid point."""
        root = index
        while (field, root) in self._parent and self._parent[field, root] != root:
            root = self._parent[field, root]
        # path compression
        while index != root:
            parent = self._parent[field, index]
            self._parent[field, index] = root
            index = parent
        return root

    def union(self, field: str, a: MultiIndex, b: MultiIndex) -> None:
        """Identify two grid points of a field."""
        ra, rb = self.canonical(field, a), self.canonical(field, b)
        if ra == rb:
            return
        root, child = (ra, rb) if ra < rb else (rb, ra)
        self._parent.setdefault((field, root), root)
        self._parent[field, child] = root

    def is_aliased(self, field: str, index: MultiIndex) -> bool:
        """Whether a grid point is represented by another one."""
        return self.canonical(field, index) != index

    def wrap(self, field: str, axis: str) -> PeriodicWrap | None:
        return self.wraps.get((field, axis))

    def is_periodic(self, field: str, axis: str) -> bool:
        return (field, axis) in self.wraps

    def aliases(self) -> dict[tuple[str, MultiIndex], MultiIndex]:
        """All aliased grid points and their representatives."""
        return {key: self.canonical(*key) for key in list(self._parent) if self.is_aliased(*key)}


@dataclass
class ProcessedConditions:
    """The result of processing the conditions of a system."""

    #: boundary conditions per (field, face)
    faces: dict[tuple[str, BoundaryFace], BoundaryCondition] = field(default_factory=dict)
    #: periodic identifications
    aliases: AliasTable = field(default_factory=AliasTable)
    #: initial conditions per field
    initial: dict[str, InitialCondition] = field(default_factory=dict)


@dataclass
class _ConditionShape:
    # the faces and time points a condition refers to
    faces: set[BoundaryFace] = field(default_factory=set)
    initial: bool = False
    free_refs: list[FieldRef] = field(default_factory=list)


class BoundaryProcessor:
    """
    Matches the conditions of a PDE system to faces and fields and lowers them
    to discrete boundary equations.

    Parameters
    ----------
    system
        The PDE system.
    grid
        The grid of the spatial domains.
    stencils
        The stencil library, used for the coordinate based face weights.
    config
        The discretization configuration.
    """

    def __init__(
        self, system: PDESystem, grid: Grid, stencils: StencilLibrary, config: DiscretizationConfig
    ) -> None:
        self.system = system
        self.grid = grid
        self.stencils = stencils
        self.config = config
        self.time_axis = grid.time_variable
        #: the processed conditions, available after process()
        self.processed = ProcessedConditions()
        self._time_symbol = sympy.Symbol(self.time_axis) if self.time_axis else None

    def spatial_signature(self, name: str) -> tuple[str, ...]:
        """The spatial variables a field depends on, in argument order."""
        return tuple(v for v in self.system.signature(name) if v != self.time_axis)

    def field_shape(self, name: str) -> tuple[int, ...]:
        return self.grid.shape(self.spatial_signature(name))

    # ---- classification ----

    @profile
    def process(self, differential_fields: Iterable[str] = ()) -> ProcessedConditions:
        """
        Classify all conditions of the system.

        Parameters
        ----------
        differential_fields
            The fields whose time derivative appears in the governing
            equations. Each of them needs an initial condition.

        Returns
        -------
        ProcessedConditions
            The boundary conditions per face, the periodic identifications and
            the initial conditions.

        Raises
        ------
        UnsupportedBCShapeError
            If a condition cannot be translated.
        UnderspecifiedSystemError
            If a face has no condition, or too many.
        """
        self.processed = processed = ProcessedConditions()
        periodic: list[tuple[str, str, Equation]] = []
        for condition in self.system.conditions:
            shape = self._shape_of(condition)
            if shape.initial:
                self._add_initial(condition, shape)
            elif self._is_periodic(condition, shape):
                assert isinstance(condition.lhs, FieldRef)
                (axis,) = {face.axis for face in shape.faces}
                periodic.append((condition.lhs.name, axis, condition))
            else:
                self._add_boundary(condition, shape)

        for name, axis, condition in periodic:
            if processed.aliases.is_periodic(name, axis):
                raise UnderspecifiedSystemError(f"Duplicate periodic condition for {name} along {axis}: {condition}")
            for side in FaceSide:
                if (name, BoundaryFace(axis, side)) in processed.faces:
                    raise UnderspecifiedSystemError(
                        f"{name} is periodic along {axis} but also has a boundary condition on that axis"
                    )
            self._alias_periodic(name, axis)
            logger.debug("Periodic condition for %s along %s", name, axis)

        self._check_complete(differential_fields)
        return processed

    def _shape_of(self, condition: Equation) -> _ConditionShape:
        shape = _ConditionShape()
        for node in (condition.lhs, condition.rhs):
            for ref in node.walk():
                if not isinstance(ref, FieldRef):
                    continue
                if ref.name not in self.system.field_names:
                    raise UnsupportedBCShapeError(f"Condition refers to undeclared field {ref.name}", condition)
                fixed = self._fixed_args(ref, condition)
                spatial = [face for face in fixed if face is not None]
                if len(spatial) > 1:
                    raise UnsupportedBCShapeError(
                        f"{ref} is fixed on more than one face; conditions on edges or corners are not supported",
                        condition,
                    )
                if None in fixed:
                    shape.initial = True
                shape.faces.update(spatial)
                if not fixed:
                    shape.free_refs.append(ref)
        if shape.initial and shape.faces:
            raise UnsupportedBCShapeError(f"Condition mixes an initial time and a boundary face: {condition}", condition)
        if not shape.initial and not shape.faces:
            raise UnsupportedBCShapeError(f"Condition does not refer to a boundary face: {condition}", condition)
        return shape

    def _fixed_args(self, ref: FieldRef, condition: Equation) -> list[BoundaryFace | None]:
        # the faces a field reference is evaluated on, None stands for the initial time
        signature = self.system.signature(ref.name)
        if len(ref.args) != len(signature):
            raise UnsupportedBCShapeError(f"{ref} does not match the signature of {ref.name}", condition)
        fixed: list[BoundaryFace | None] = []
        for variable, arg in zip(signature, ref.args):
            if isinstance(arg, Sym):
                if arg.name != variable:
                    raise UnsupportedBCShapeError(f"{ref} evaluates {variable} at {arg.name}", condition)
                continue
            if not isinstance(arg, Const):
                raise UnsupportedBCShapeError(f"Field arguments in conditions must be variables or numbers: {ref}", condition)
            if variable == self.time_axis:
                assert self.grid.time is not None
                if abs(arg.value - self.grid.time.lo) > 1e-12 * max(1.0, abs(self.grid.time.lo)):
                    raise UnsupportedBCShapeError(
                        f"{ref} is not evaluated at the initial time {self.grid.time.lo:g}", condition
                    )
                fixed.append(None)
                continue
            side = self.grid.axis(variable).side_of(arg.value)
            if side is None:
                raise UnsupportedBCShapeError(
                    f"{ref} is evaluated at {variable}={arg.value:g}, which is not on a boundary", condition
                )
            fixed.append(BoundaryFace(variable, side))
        return fixed

    @staticmethod
    def _is_periodic(condition: Equation, shape: _ConditionShape) -> bool:
        lhs, rhs = condition.lhs, condition.rhs
        if not (isinstance(lhs, FieldRef) and isinstance(rhs, FieldRef)) or lhs.name != rhs.name:
            return False
        differing = [(a, b) for a, b in zip(lhs.args, rhs.args) if a != b]
        if len(differing) != 1:
            return False
        a, b = differing[0]
        if not (isinstance(a, Const) and isinstance(b, Const)):
            return False
        return len(shape.faces) == 2 and len({face.axis for face in shape.faces}) == 1

    def _alias_periodic(self, name: str, axis: str) -> None:
        aliases = self.processed.aliases
        signature = self.spatial_signature(name)
        position = signature.index(axis)
        n = len(self.grid.axis(axis))
        if self.config.grid_align is GridAlign.CENTER:
            pairs = [(n - 1, 0)]
            aliases.wraps[name, axis] = PeriodicWrap(0, n - 1)
        else:
            # the ghost points coincide with the first/last point inside the period
            pairs = [(0, n - 2), (n - 1, 1)]
            aliases.wraps[name, axis] = PeriodicWrap(1, n - 2)
        for index in _ndindex(self.field_shape(name)):
            for source, target in pairs:
                if index[position] == source:
                    image = index[:position] + (target,) + index[position + 1 :]
                    aliases.union(name, index, image)

    def _add_initial(self, condition: Equation, shape: _ConditionShape) -> None:
        names = {ref.name for node in (condition.lhs, condition.rhs) for ref in node.walk() if isinstance(ref, FieldRef)}
        if len(names) != 1:
            raise UnsupportedBCShapeError(f"An initial condition must refer to exactly one field: {condition}", condition)
        if shape.free_refs:
            raise UnsupportedBCShapeError(f"Initial condition refers to fields at time other than t0: {condition}", condition)
        if condition.lhs.contains(Derivative) or condition.rhs.contains(Derivative):
            raise UnsupportedBCShapeError(f"Initial conditions must not contain derivatives: {condition}", condition)
        (name,) = names
        if name in self.processed.initial:
            raise UnderspecifiedSystemError(f"Duplicate initial condition for {name}: {condition}")
        self.processed.initial[name] = InitialCondition(name, condition)
        logger.debug("Initial condition for %s: %s", name, condition)

    def _add_boundary(self, condition: Equation, shape: _ConditionShape) -> None:
        if len(shape.faces) != 1:
            raise UnsupportedBCShapeError(
                f"Condition refers to several faces {sorted(map(str, shape.faces))}: {condition}", condition
            )
        (face,) = shape.faces
        for ref in shape.free_refs:
            if face.axis in self.system.signature(ref.name):
                raise UnsupportedBCShapeError(f"{ref} in a boundary condition is not evaluated on the face", condition)
        owner = self._owner(condition, face)
        normal, differential = self._check_derivatives(condition, face, owner)
        if not normal:
            kind = BCKind.DIRICHLET
        elif self._has_bare_ref(condition, owner):
            kind = BCKind.ROBIN
        else:
            kind = BCKind.NEUMANN
        bc = BoundaryCondition(owner, face, kind, condition, differential)
        self.processed.faces[owner, face] = bc
        logger.debug("%s", bc)

    def _owner(self, condition: Equation, face: BoundaryFace) -> str:
        candidates = []
        for node in (condition.lhs, condition.rhs):
            for ref in node.walk():
                if isinstance(ref, FieldRef) and face.axis in self.system.signature(ref.name):
                    if ref.name not in candidates:
                        candidates.append(ref.name)
        for name in candidates:
            if (name, face) not in self.processed.faces:
                return name
        raise UnderspecifiedSystemError(
            f"Condition {condition} on face {face} has no field left to be assigned to, "
            f"all of {candidates} already have a condition there"
        )

    def _check_derivatives(self, condition: Equation, face: BoundaryFace, owner: str) -> tuple[bool, bool]:
        # returns whether the condition contains normal derivatives and the time derivative
        normal = differential = False
        for node in (condition.lhs, condition.rhs):
            for d in node.walk():
                if not isinstance(d, Derivative):
                    continue
                if d.axis == self.time_axis:
                    if not (d.order == 1 and isinstance(d.inner, FieldRef) and d.inner.name == owner):
                        raise UnsupportedBCShapeError(
                            f"Only the first time derivative of {owner} may appear in its boundary condition: {d}",
                            condition,
                        )
                    if self.config.grid_align is not GridAlign.CENTER:
                        raise UnsupportedBCShapeError(
                            f"Time derivatives in boundary conditions need center aligned grids: {d}", condition
                        )
                    differential = True
                    continue
                if d.axis != face.axis:
                    raise UnsupportedBCShapeError(
                        f"Derivative {d} is transverse to the face {face}; only normal derivatives are supported",
                        condition,
                    )
                inner = d.inner
                while isinstance(inner, Derivative) and inner.axis == face.axis:
                    inner = inner.inner
                if isinstance(inner, Derivative):
                    raise UnsupportedBCShapeError(
                        f"Derivative {d} is transverse to the face {face}; only normal derivatives are supported",
                        condition,
                    )
                if not isinstance(inner, FieldRef):
                    raise UnsupportedBCShapeError(f"Derivatives in conditions must act on a field: {d}", condition)
                normal = True
        return normal, differential

    @staticmethod
    def _has_bare_ref(condition: Equation, owner: str) -> bool:
        # whether the owner appears outside of any derivative
        def visit(node: Expr) -> bool:
            if isinstance(node, Derivative):
                return False
            if isinstance(node, FieldRef) and node.name == owner:
                return True
            return any(visit(child) for child in node.children())

        return visit(condition.lhs) or visit(condition.rhs)

    def _check_complete(self, differential_fields: Iterable[str]) -> None:
        processed = self.processed
        for name in self.system.field_names:
            for axis in self.spatial_signature(name):
                if processed.aliases.is_periodic(name, axis):
                    continue
                for side in FaceSide:
                    if (name, BoundaryFace(axis, side)) not in processed.faces:
                        raise UnderspecifiedSystemError(
                            f"No boundary condition for {name} on the {side.value} face of {axis}"
                        )
        for name in differential_fields:
            if name not in processed.initial:
                raise UnderspecifiedSystemError(f"No initial condition for the time dependent field {name}")

    # ---- lowering ----

    def condition_at(self, name: str, index: MultiIndex) -> BoundaryCondition | None:
        """
        The boundary condition that determines a grid point of a field.

        Points on several faces (edges and corners) take a Dirichlet condition
        first, then the condition of the axis declared first, lower face before
        upper face.
        """
        matches = []
        for position, axis in enumerate(self.spatial_signature(name)):
            if self.processed.aliases.is_periodic(name, axis):
                continue
            grid_axis = self.grid.axis(axis)
            for side in FaceSide:
                if index[position] == grid_axis.face_index(side):
                    bc = self.processed.faces[name, BoundaryFace(axis, side)]
                    matches.append((bc.kind is not BCKind.DIRICHLET, position, side is not FaceSide.LOWER, bc))
        if not matches:
            return None
        return min(matches, key=lambda m: m[:3])[3]

    def face_nodes(self, axis: GridAxis, side: FaceSide, n: int) -> list[tuple[int, Fraction]]:
        """
        Grid points used to evaluate the n-th normal derivative on a face.

        Returns
        -------
        list
            (index, offset) pairs, the offset of each point to the face in
            units of the grid step.
        """
        p = self.config.approx_order
        size = len(axis)
        if axis.align is GridAlign.CENTER:
            count = 1 if n == 0 else n + p
            first = Fraction(0)
        else:
            # the face lies half way between the ghost point and the first inner point
            if n == 0:
                count = p
            elif n == 1 and p == 2:
                count = 2
            else:
                count = n + p
            first = Fraction(-1, 2)
        if count > size:
            raise UnsupportedBCShapeError(
                f"Axis {axis.variable} has {size} points, too few for a derivative of order {n} on its face"
            )
        if side is FaceSide.LOWER:
            return [(k, first + k) for k in range(count)]
        return [(size - 1 - k, -first - k) for k in range(count)]

    def face_weights(self, axis: GridAxis, side: FaceSide, n: int) -> list[tuple[int, sympy.Expr]]:
        """The (index, weight) pairs of the n-th normal derivative on a face."""
        nodes = self.face_nodes(axis, side, n)
        weights = self.stencils.at_coordinate([offset for _, offset in nodes], 0, n)
        if n == 0:
            return [(idx, w) for (idx, _), w in zip(nodes, weights) if w != 0]
        scale = axis.step**n
        return [(idx, w / scale) for (idx, _), w in zip(nodes, weights) if w != 0]

    def face_value(
        self, name: str, point: dict[str, int], face: BoundaryFace, n: int, value_at: ValueLookup
    ) -> sympy.Expr:
        """
        The n-th normal derivative of a field on a face, next to a grid point.

        Parameters
        ----------
        name
            The field.
        point
            The index of the grid point along each spatial axis.
        face
            The face.
        n
            The derivative order, 0 for the value.
        value_at
            Returns the unknown of a field at a multi-index.
        """
        axes = self.spatial_signature(name)
        for axis in axes:
            if axis not in point:
                raise UnsupportedBCShapeError(f"{name} depends on {axis}, which is not an axis of the condition")
        if face.axis not in axes:
            return value_at(name, tuple(point[v] for v in axes))
        terms = []
        for idx, w in self.face_weights(self.grid.axis(face.axis), face.side, n):
            index = tuple(idx if v == face.axis else point[v] for v in axes)
            terms.append(w * value_at(name, index))
        return sympy.Add(*terms)

    def _symbol(self, name: str, point: dict[str, int], face: BoundaryFace | None) -> sympy.Expr:
        if face is not None and name == face.axis:
            return sympy.Float(self.grid.axis(name).face_coordinate(face.side))
        if name in point:
            return sympy.Float(self.grid.axis(name).coordinates[point[name]])
        if name == self.time_axis:
            assert self._time_symbol is not None
            return self._time_symbol
        return sympy.Symbol(name)

    def lower(
        self, bc: BoundaryCondition, index: MultiIndex, value_at: ValueLookup, dudt: sympy.Symbol | None = None
    ) -> sympy.Expr:
        """
        The residual lhs - rhs of a boundary condition at one grid point.

        Parameters
        ----------
        bc
            The boundary condition.
        index
            The multi-index of the grid point of the field of the condition.
        value_at
            Returns the unknown of a field at a multi-index.
        dudt
            Placeholder for the time derivative of the unknown of the point.

        Returns
        -------
        sympy.Expr
            The residual.
        """
        point = dict(zip(self.spatial_signature(bc.field), index))
        face = bc.face

        def resolve(node: Expr) -> sympy.Expr:
            if isinstance(node, Sym):
                return self._symbol(node.name, point, face)
            if isinstance(node, FieldRef):
                return self.face_value(node.name, point, face, 0, value_at)
            if isinstance(node, Derivative):
                if node.axis == self.time_axis:
                    if dudt is None:
                        raise UnsupportedBCShapeError(f"Unexpected time derivative in {bc.equation}", bc.equation)
                    return dudt
                order, inner = 0, node
                while isinstance(inner, Derivative):
                    order += inner.order
                    inner = inner.inner
                assert isinstance(inner, FieldRef)
                return self.face_value(inner.name, point, face, order, value_at)
            raise UnsupportedBCShapeError(f"Cannot lower {node} in {bc.equation}", bc.equation)

        return bc.equation.residual().to_sympy(resolve)

    def initial_value(self, name: str, index: MultiIndex) -> sympy.Expr:
        """
        The initial value of a field at a grid point.

        The initial condition is solved for the field, so it may be given in
        implicit linear form, e.g. ``2 * u(0, x) ~ sin(x)``. The result may
        contain free parameters.

        Raises
        ------
        UnsupportedBCShapeError
            If the condition is not linear in the field.
        """
        ic = self.processed.initial[name]
        point = dict(zip(self.spatial_signature(name), index))
        value = sympy.Dummy(f"{name}0")
        assert self.grid.time is not None
        t0 = sympy.Float(self.grid.time.lo)

        def resolve(node: Expr) -> sympy.Expr:
            if isinstance(node, Sym):
                return t0 if node.name == self.time_axis else self._symbol(node.name, point, None)
            if isinstance(node, FieldRef):
                return value
            raise UnsupportedBCShapeError(f"Cannot lower {node} in {ic.equation}", ic.equation)

        residual = ic.equation.residual().to_sympy(resolve)
        k = sympy.diff(residual, value)
        if k == 0 or k.has(value):
            raise UnsupportedBCShapeError(f"Initial condition must be linear in {name}: {ic.equation}", ic.equation)
        return -residual.subs(value, 0) / k


def _ndindex(shape: tuple[int, ...]) -> Iterable[MultiIndex]:
    return (tuple(int(i) for i in index) for index in np.ndindex(*shape))
