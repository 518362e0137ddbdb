"""The discretization pass: from a continuous PDE system to a discrete system."""

from __future__ import annotations

import logging
import warnings
from typing import Any

from fdmol.pde.assembly import EquationAssembler
from fdmol.pde.discrete_system import DiscreteSystem, UnknownRegistry
from fdmol.pde.fd_boundary_conditions import BoundaryProcessor
from fdmol.pde.finite_differences import StencilLibrary
from fdmol.pde.grid import build_grid
from fdmol.pde.terms import TermClassifier

from .config import DiscretizationConfig
from .errors import InstabilityWarning
from .profiling import profile
from .system import PDESystem

logger = logging.getLogger(__name__)


@profile
def discretize(
    system: PDESystem,
    config: DiscretizationConfig | None = None,
    stencils: StencilLibrary | None = None,
    **options: Any,
) -> DiscreteSystem:
    """
    Discretize a PDE system with finite differences.

    Spatial derivatives are replaced by finite difference stencils on a
    structured grid. If the configuration names a time axis, time is kept
    continuous and the result is a system of ODEs (or DAEs) in time (method of
    lines), otherwise it is an algebraic system.

    Parameters
    ----------
    system
        The continuous PDE system.
    config
        The discretization configuration.
    stencils
        A stencil library to share memoized stencils between passes.
    **options
        Configuration options, overriding those of `config`.

    Returns
    -------
    DiscreteSystem
        The discrete system.

    Raises
    ------
    DiscretizationError
        If the system cannot be discretized. No partial result is returned.
    pydantic.ValidationError
        If the configuration is invalid.
    """
    if config is None:
        config = DiscretizationConfig(**options)
    elif options:
        config = DiscretizationConfig(**{**config.model_dump(), **options})
    if config.upwind_order > 1:
        # attributed to the caller of the profile wrapper
        warnings.warn(
            f"Upwind order {config.upwind_order} > 1 is not guaranteed to be stable or accurate",
            InstabilityWarning,
            stacklevel=3,
        )
    if stencils is None:
        stencils = StencilLibrary()

    grid = build_grid(system.domains, config)
    logger.debug("Grid: %s", ", ".join(repr(axis) for axis in grid.axes))

    classifier = TermClassifier(system, config.time_axis)
    assembler = EquationAssembler(system, grid, stencils, config, classifier)
    assembler.assign_equations()

    boundaries = BoundaryProcessor(system, grid, stencils, config)
    conditions = boundaries.process(assembler.differential_fields)

    fields = [
        (
            name,
            boundaries.field_shape(name),
            config.time_axis is not None and config.time_axis in system.signature(name),
        )
        for name in system.field_names
    ]
    registry = UnknownRegistry.build(fields, conditions.aliases)
    equations, initial = assembler.assemble(boundaries, registry)

    discrete = DiscreteSystem(
        grid,
        registry,
        equations,
        initial,
        system.parameters,
        {name: boundaries.spatial_signature(name) for name in system.field_names},
    )
    logger.info(
        "Discretized %d fields into %d unknowns (%d differential, %d boundary equations, %d aliased points)",
        len(fields),
        len(discrete),
        sum(eq.differential for eq in equations),
        sum(eq.origin == "boundary" for eq in equations),
        len(conditions.aliases),
    )
    return discrete
