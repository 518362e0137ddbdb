"""
Core functionality of the fdmol package.

This package contains the symbolic description of PDE systems, the
configuration of a discretization pass, its errors and the profiling tools.
"""

from .config import AdvectionScheme, DiscretizationConfig, GridAlign
from .errors import (
    DiscretizationError,
    DomainShapeError,
    InstabilityWarning,
    UnderspecifiedSystemError,
    UnsupportedBCShapeError,
    UnsupportedDerivativeFormError,
)
from .expressions import (
    Call,
    Const,
    D,
    Derivative,
    Equation,
    Expr,
    Field,
    FieldRef,
    Power,
    Product,
    Sum,
    Sym,
    laplacian,
)
from .profiling import Profiler, profile
from .system import Domain, PDESystem

__all__ = [
    "Expr",
    "Const",
    "Sym",
    "FieldRef",
    "Derivative",
    "Sum",
    "Product",
    "Power",
    "Call",
    "Field",
    "D",
    "laplacian",
    "Equation",
    "Domain",
    "PDESystem",
    "DiscretizationConfig",
    "GridAlign",
    "AdvectionScheme",
    "DiscretizationError",
    "DomainShapeError",
    "UnsupportedDerivativeFormError",
    "UnsupportedBCShapeError",
    "UnderspecifiedSystemError",
    "InstabilityWarning",
    "profile",
    "Profiler",
]
