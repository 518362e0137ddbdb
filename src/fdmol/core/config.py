"""Validated configuration of a discretization pass."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class GridAlign(str, Enum):
    """Placement of the grid points relative to the domain boundaries."""

    #: grid points on the domain boundaries
    CENTER = "center"
    #: grid points shifted by dx/2, with one ghost point outside each boundary
    EDGE = "edge"


class AdvectionScheme(str, Enum):
    """Discretization of first order derivative (advection) terms."""

    #: windward one-sided stencil chosen by the sign of the coefficient
    UPWIND = "upwind"
    #: centered stencil of the requested approximation order
    CENTERED = "centered"


class DiscretizationConfig(BaseModel):
    """
    Configuration of a finite difference discretization.

    Validates the step sizes and the requested orders on construction and on
    assignment.
    """

    step_sizes: dict[str, float] = Field(default_factory=dict, description="Grid step size per spatial variable")
    time_axis: str | None = Field(None, description="Independent variable kept continuous (method of lines)")
    approx_order: int = Field(2, ge=2, description="Approximation order of the stencils")
    upwind_order: int = Field(1, ge=1, description="Approximation order of upwind stencils")
    grid_align: GridAlign = Field(GridAlign.CENTER, description="Grid point alignment")
    advection_scheme: AdvectionScheme = Field(AdvectionScheme.UPWIND, description="Scheme for first derivatives")
    max_workers: int | None = Field(None, ge=1, description="Threads used for equation assembly")

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    @field_validator("step_sizes")
    @classmethod
    def validate_step_sizes(cls, v: dict[str, float]) -> dict[str, float]:
        """Validate that all step sizes are positive."""
        for variable, dx in v.items():
            if not dx > 0:
                raise ValueError(f"Step size of '{variable}' must be positive, got {dx}")
        return v

    @model_validator(mode="after")
    def validate_time_axis(self) -> DiscretizationConfig:
        """The time axis must not be gridded."""
        if self.time_axis is not None and self.time_axis in self.step_sizes:
            raise ValueError(f"Time axis '{self.time_axis}' must not have a step size")
        return self

    @property
    def is_time_dependent(self) -> bool:
        return self.time_axis is not None
