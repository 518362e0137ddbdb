"""
fdmol: Finite Difference Method of Lines.

Discretizes symbolic PDE systems on structured Cartesian grids with finite
differences. Time is kept continuous (method of lines), so the result is a
system of ODEs or DAEs to be handed to a time integrator, or an algebraic
system for stationary problems.
"""

import logging

from . import pde
from .core import (
    AdvectionScheme,
    D,
    DiscretizationConfig,
    DiscretizationError,
    Domain,
    DomainShapeError,
    Equation,
    Field,
    GridAlign,
    InstabilityWarning,
    PDESystem,
    Profiler,
    Sym,
    UnderspecifiedSystemError,
    UnsupportedBCShapeError,
    UnsupportedDerivativeFormError,
    laplacian,
    profile,
)
from .core.discretization import discretize
from .core.expressions import cos, cosh, exp, log, sin, sinh, sqrt, tan, tanh
from .pde import DiscreteSystem

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "discretize",
    "DiscretizationConfig",
    "GridAlign",
    "AdvectionScheme",
    "PDESystem",
    "Domain",
    "Equation",
    "Field",
    "Sym",
    "D",
    "laplacian",
    "sin",
    "cos",
    "tan",
    "exp",
    "log",
    "sqrt",
    "sinh",
    "cosh",
    "tanh",
    "DiscreteSystem",
    "DiscretizationError",
    "DomainShapeError",
    "UnsupportedDerivativeFormError",
    "UnsupportedBCShapeError",
    "UnderspecifiedSystemError",
    "InstabilityWarning",
    "profile",
    "Profiler",
    "pde",
]
