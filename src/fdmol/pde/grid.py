"""Structured Cartesian grids for the spatial domains of a PDE system."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction

import numpy as np
import sympy

from fdmol.core.config import DiscretizationConfig, GridAlign
from fdmol.core.errors import DomainShapeError
from fdmol.core.profiling import profile
from fdmol.core.system import Domain
from fdmol.core.types import RealArray

logger = logging.getLogger(__name__)


class FaceSide(str, Enum):
    """The two boundary faces of a grid axis."""

    LOWER = "lower"
    UPPER = "upper"


@dataclass(frozen=True, eq=False)
class GridAxis:
    """
    The grid points of one spatial variable.

    For center alignment the first and last point lie on the domain
    boundaries. For edge alignment all points are shifted by dx/2 and a ghost
    point is placed half a step outside each boundary, so that the boundaries
    lie exactly between two grid points.
    """

    #: the independent variable
    variable: str
    #: the strictly increasing grid point coordinates
    coordinates: RealArray
    #: the (uniform) grid spacing
    dx: float
    #: the alignment of the points
    align: GridAlign
    #: lower domain boundary
    lo: float
    #: upper domain boundary
    hi: float

    def __len__(self) -> int:
        return len(self.coordinates)

    @property
    def size(self) -> int:
        return len(self.coordinates)

    @property
    def step(self) -> sympy.Rational:
        """The grid spacing as an exact rational, taken from the decimal values of the domain bounds."""
        intervals = len(self) - (2 if self.align is GridAlign.EDGE else 1)
        width = Fraction(repr(float(self.hi))) - Fraction(repr(float(self.lo)))
        return sympy.Rational(width.numerator, width.denominator * intervals)

    def face_index(self, side: FaceSide) -> int:
        """Index of the grid point that carries the boundary condition of a face."""
        return 0 if side is FaceSide.LOWER else len(self) - 1

    def face_coordinate(self, side: FaceSide) -> float:
        """Coordinate of the domain boundary of a face."""
        return self.lo if side is FaceSide.LOWER else self.hi

    def side_of(self, value: float) -> FaceSide | None:
        """The face a coordinate value lies on, if any."""
        tol = 1e-9 * max(1.0, abs(self.hi - self.lo))
        if abs(value - self.lo) <= tol:
            return FaceSide.LOWER
        if abs(value - self.hi) <= tol:
            return FaceSide.UPPER
        return None

    def __repr__(self) -> str:
        return f"GridAxis({self.variable!r}, n={len(self)}, dx={self.dx:g}, align={self.align.value})"


@dataclass(frozen=True)
class Grid:
    """The grid axes of all spatial variables and the (continuous) time domain."""

    axes: tuple[GridAxis, ...]
    time: Domain | None = None

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(axis.variable for axis in self.axes)

    def axis(self, variable: str) -> GridAxis:
        for axis in self.axes:
            if axis.variable == variable:
                return axis
        raise KeyError(f"No grid axis for '{variable}'")

    def shape(self, variables: Iterable[str]) -> tuple[int, ...]:
        """Number of grid points along each of the given variables."""
        return tuple(len(self.axis(v)) for v in variables)

    @property
    def time_variable(self) -> str | None:
        return self.time.variable if self.time is not None else None


def _count_intervals(lo: float, hi: float, dx: float) -> int:
    # number of grid intervals that fit into the domain (tolerant to round-off)
    ratio = (hi - lo) / dx
    nearest = round(ratio)
    if math.isclose(ratio, nearest, rel_tol=1e-9, abs_tol=1e-9):
        return int(nearest)
    return int(math.floor(ratio))


def build_axis(domain: Domain, dx: float, align: GridAlign) -> GridAxis:
    """
    Build the grid axis of a spatial domain.

    Parameters
    ----------
    domain
        The spatial domain.
    dx
        The requested step size.
    align
        The grid alignment.

    Returns
    -------
    GridAxis
        The grid axis.

    Raises
    ------
    DomainShapeError
        If the domain is not a single interval or the step size is too large.
    """
    lo, hi = domain.bounds()
    if not dx > 0:
        raise DomainShapeError(f"Step size of '{domain.variable}' must be positive, got {dx}")
    intervals = _count_intervals(lo, hi, dx)
    if intervals < 1:
        raise DomainShapeError(f"Step size {dx} is larger than the domain [{lo}, {hi}] of '{domain.variable}'")
    # the step is adjusted so that the points stay uniform and hit both boundaries
    actual_dx = (hi - lo) / intervals
    if not math.isclose(actual_dx, dx, rel_tol=1e-9):
        logger.warning(
            "Step size %g of '%s' does not divide [%g, %g], using %g instead", dx, domain.variable, lo, hi, actual_dx
        )
    if align is GridAlign.CENTER:
        x = np.linspace(lo, hi, intervals + 1)
    else:
        x = lo - actual_dx / 2 + actual_dx * np.arange(intervals + 2)
    return GridAxis(domain.variable, np.asarray(x, dtype=np.float64), actual_dx, align, lo, hi)


@profile
def build_grid(domains: Iterable[Domain], config: DiscretizationConfig) -> Grid:
    """
    Build the grid of a PDE system.

    Every domain except the time domain becomes a grid axis; the time domain is
    passed through unchanged.

    Parameters
    ----------
    domains
        The domains of all independent variables.
    config
        The discretization configuration with the step sizes.

    Returns
    -------
    Grid
        The grid.

    Raises
    ------
    DomainShapeError
        If a domain is not a single closed interval, a spatial variable has no
        step size, or a step size or the time axis has no domain.
    """
    domains = list(domains)
    variables = {d.variable for d in domains}
    for variable in config.step_sizes:
        if variable not in variables:
            raise DomainShapeError(f"Step size given for '{variable}', which has no domain")
    if config.time_axis is not None and config.time_axis not in variables:
        raise DomainShapeError(f"Time axis '{config.time_axis}' has no domain")

    axes = []
    time = None
    for domain in domains:
        if domain.variable == config.time_axis:
            domain.bounds()
            time = domain
            continue
        if domain.variable not in config.step_sizes:
            raise DomainShapeError(f"No step size given for spatial variable '{domain.variable}'")
        axis = build_axis(domain, config.step_sizes[domain.variable], config.grid_align)
        logger.debug("Built %r", axis)
        axes.append(axis)
    return Grid(tuple(axes), time)
