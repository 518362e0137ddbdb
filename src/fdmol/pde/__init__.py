"""
Finite difference discretization of PDE systems.

This package provides the stages of a discretization pass: grid generation,
finite difference stencils, term classification, boundary conditions,
equation assembly and the resulting discrete system.
"""

from .assembly import EquationAssembler
from .discrete_system import DiscreteEquation, DiscreteSystem, DiscreteUnknown, UnknownRegistry
from .fd_boundary_conditions import AliasTable, BCKind, BoundaryCondition, BoundaryFace, BoundaryProcessor
from .finite_differences import Side, StencilKey, StencilLibrary, StencilWeights
from .grid import FaceSide, Grid, GridAxis, build_grid
from .terms import TermClassifier, TermKind

__all__ = [
    "Grid",
    "GridAxis",
    "FaceSide",
    "build_grid",
    "Side",
    "StencilKey",
    "StencilWeights",
    "StencilLibrary",
    "TermClassifier",
    "TermKind",
    "BCKind",
    "BoundaryFace",
    "BoundaryCondition",
    "BoundaryProcessor",
    "AliasTable",
    "EquationAssembler",
    "DiscreteUnknown",
    "DiscreteEquation",
    "DiscreteSystem",
    "UnknownRegistry",
]
