"""
Finite difference stencils.

Weights are obtained from the Fornberg (1988) algorithm on exact rational
offsets measured in units of the grid step, so that stencils on integer offsets
are exact. Scaling by the actual grid step happens when a stencil is applied.
"""

from __future__ import annotations

import logging
import threading
import warnings
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction

import numpy as np
import sympy

from fdmol.core.errors import InstabilityWarning
from fdmol.core.types import Array

logger = logging.getLogger(__name__)


class Side(str, Enum):
    """Placement of a stencil window relative to the point of evaluation."""

    CENTERED = "centered"
    #: backward window, offsets -(w-1)..0
    LEFT = "left"
    #: forward window, offsets 0..w-1
    RIGHT = "right"
    #: window of explicit start offset, used close to boundaries
    SKEWED = "skewed"


@dataclass(frozen=True)
class StencilKey:
    """Immutable memoization key of a stencil."""

    derivative_order: int
    approx_order: int
    side: Side
    #: first offset of a SKEWED window
    start: int | None = None


@dataclass(frozen=True, eq=False)
class StencilWeights:
    """
    Offsets and weights of a finite difference stencil on a unit grid.

    The weighted sum of the field values at ``index + offset`` approximates
    the derivative times ``dx**derivative_order``.
    """

    key: StencilKey
    offsets: tuple[int, ...]
    #: exact rational weights
    exact: tuple[sympy.Rational, ...]

    @property
    def coefficients(self) -> Array:
        """The weights as floats."""
        return np.array([float(w) for w in self.exact], dtype=np.float64)

    @property
    def width(self) -> int:
        return len(self.offsets)

    def scaled(self, dx: float) -> Array:
        """The weights for a grid of spacing dx."""
        return self.coefficients / dx**self.key.derivative_order

    def apply(self, values: Sequence[float] | Array, dx: float = 1.0) -> float:
        """
        Apply the stencil to the field values at the stencil offsets.

        Parameters
        ----------
        values
            Field values, one per offset.
        dx
            The grid spacing.

        Returns
        -------
        float
            The approximated derivative.
        """
        values = np.asarray(values, dtype=np.float64)
        if values.shape != (self.width,):
            raise ValueError(f"Expected {self.width} values, got shape {values.shape}")
        return float(np.dot(self.scaled(dx), values))

    def __iter__(self):
        return iter(zip(self.offsets, self.exact))

    def __repr__(self) -> str:
        pairs = ", ".join(f"{o}: {w}" for o, w in self)
        return f"StencilWeights(d={self.key.derivative_order}, p={self.key.approx_order}, {self.key.side.value}, {{{pairs}}})"


def fornberg_weights(nodes: Sequence[Fraction | int], x0: Fraction | int, n: int) -> tuple[sympy.Rational, ...]:
    """
    Exact finite difference weights of the n-th derivative at x0.

    Parameters
    ----------
    nodes
        Node positions in units of the grid step.
    x0
        Point of evaluation in units of the grid step.
    n
        The derivative order (0 interpolates).

    Returns
    -------
    tuple
        One rational weight per node.
    """
    if len(nodes) <= n:
        raise ValueError(f"At least {n + 1} nodes are needed for a derivative of order {n}, got {len(nodes)}")
    x = [sympy.Rational(Fraction(node).numerator, Fraction(node).denominator) for node in nodes]
    x0 = sympy.Rational(Fraction(x0).numerator, Fraction(x0).denominator)
    weights = sympy.finite_diff_weights(n, x, x0)[n][-1]
    return tuple(sympy.Rational(w) for w in weights)


class StencilLibrary:
    """
    Memoized table of finite difference stencils.

    Lookups are thread-safe and every stencil is computed at most once. A
    library instance is owned by a discretization pass and may be shared
    between passes.
    """

    def __init__(self) -> None:
        self._cache: dict[StencilKey, StencilWeights] = {}
        self._coordinate_cache: dict[tuple, tuple[sympy.Rational, ...]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._cache)

    @staticmethod
    def centered_width(derivative_order: int, approx_order: int) -> int:
        """
        Width of the centered window: the minimal odd width reaching the order.

        Odd approximation orders are rounded up to the next even order, as
        centered stencils always have even order.
        """
        p = approx_order + approx_order % 2
        return 2 * ((derivative_order + 1) // 2) - 1 + p

    @staticmethod
    def one_sided_width(derivative_order: int, approx_order: int) -> int:
        """Width of a one-sided window of the requested order."""
        return derivative_order + approx_order

    @staticmethod
    def skewed_width(derivative_order: int, approx_order: int) -> int:
        """Width of a shifted window that keeps the order close to a boundary."""
        return max(
            StencilLibrary.centered_width(derivative_order, approx_order),
            StencilLibrary.one_sided_width(derivative_order, approx_order),
        )

    def weights(self, derivative_order: int, approx_order: int, side: Side = Side.CENTERED) -> StencilWeights:
        """
        Stencil of a derivative order, approximation order and window side.

        Parameters
        ----------
        derivative_order
            The order of the derivative.
        approx_order
            The approximation order.
        side
            CENTERED, LEFT or RIGHT.

        Returns
        -------
        StencilWeights
            The memoized stencil.
        """
        if side is Side.SKEWED:
            raise ValueError("Skewed stencils need a start offset, use StencilLibrary.skewed()")
        return self._lookup(StencilKey(derivative_order, approx_order, Side(side)))

    def skewed(self, derivative_order: int, approx_order: int, start: int) -> StencilWeights:
        """Stencil on the window of :meth:`skewed_width` points starting at offset `start`."""
        return self._lookup(StencilKey(derivative_order, approx_order, Side.SKEWED, start))

    def upwind(
        self, derivative_order: int, upwind_order: int, coefficient_sign: float, warn: bool = True
    ) -> StencilWeights:
        """
        Windward one-sided stencil for an advection term.

        Parameters
        ----------
        derivative_order
            The order of the derivative.
        upwind_order
            The approximation order of the upwind stencil. Orders above 1 are
            accepted, but their stability is not guaranteed.
        coefficient_sign
            Sign of the coefficient c of the term c * D(u) on the right hand
            side: positive coefficients select the forward (RIGHT) window,
            negative ones the backward (LEFT) window.
        warn
            Whether to warn about upwind orders above 1. A discretization pass
            warns once up front and disables the per-lookup warning.

        Returns
        -------
        StencilWeights
            The memoized stencil.
        """
        if warn and upwind_order > 1:
            warnings.warn(
                f"Upwind order {upwind_order} > 1 is not guaranteed to be stable or accurate",
                InstabilityWarning,
                stacklevel=2,
            )
        side = Side.RIGHT if coefficient_sign > 0 else Side.LEFT
        return self.weights(derivative_order, upwind_order, side)

    def at_coordinate(self, nodes: Sequence[Fraction | int], x0: Fraction | int, n: int) -> tuple[sympy.Rational, ...]:
        """
        Memoized weights of the n-th derivative at an arbitrary coordinate.

        Used for boundary faces that do not coincide with a grid point and for
        staggered (half point) stencils.

        Parameters
        ----------
        nodes
            Node positions in units of the grid step.
        x0
            Point of evaluation in units of the grid step.
        n
            The derivative order.

        Returns
        -------
        tuple
            One rational weight per node.
        """
        key = (tuple(Fraction(node) for node in nodes), Fraction(x0), n)
        weights = self._coordinate_cache.get(key)
        if weights is not None:
            return weights
        with self._lock:
            if key not in self._coordinate_cache:
                self._coordinate_cache[key] = fornberg_weights(key[0], key[1], n)
            return self._coordinate_cache[key]

    def _lookup(self, key: StencilKey) -> StencilWeights:
        stencil = self._cache.get(key)
        if stencil is not None:
            return stencil
        with self._lock:
            # another thread may have computed it in the meantime
            if key not in self._cache:
                self._cache[key] = self._compute(key)
            return self._cache[key]

    def _compute(self, key: StencilKey) -> StencilWeights:
        d, p = key.derivative_order, key.approx_order
        if d < 1 or p < 1:
            raise ValueError(f"Derivative and approximation orders must be positive, got d={d}, p={p}")
        if key.side is Side.CENTERED:
            half = self.centered_width(d, p) // 2
            offsets = tuple(range(-half, half + 1))
        elif key.side is Side.LEFT:
            offsets = tuple(range(-self.one_sided_width(d, p) + 1, 1))
        elif key.side is Side.RIGHT:
            offsets = tuple(range(self.one_sided_width(d, p)))
        else:
            assert key.start is not None
            offsets = tuple(range(key.start, key.start + self.skewed_width(d, p)))
        exact = fornberg_weights(offsets, 0, d)
        logger.debug("Computed stencil %s on offsets %s", key, offsets)
        return StencilWeights(key, offsets, exact)
