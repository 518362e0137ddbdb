"""Unit tests for the grid builder."""

import logging

import numpy as np
import pytest
import sympy

from fdmol import DiscretizationConfig, Domain, DomainShapeError, GridAlign
from fdmol.pde.grid import FaceSide, build_grid


def test_center_grid():
    grid = build_grid([Domain("x", (0.0, 1.0))], DiscretizationConfig(step_sizes={"x": 0.1}))
    (axis,) = grid.axes
    assert len(axis) == 11
    np.testing.assert_allclose(axis.coordinates, np.linspace(0, 1, 11))
    assert axis.dx == pytest.approx(0.1)
    assert axis.face_index(FaceSide.LOWER) == 0
    assert axis.face_index(FaceSide.UPPER) == 10
    assert grid.time is None


def test_edge_grid():
    """Edge points are shifted by dx/2, with one point outside each boundary."""
    config = DiscretizationConfig(step_sizes={"x": 0.2}, grid_align=GridAlign.EDGE)
    grid = build_grid([Domain("x", (0.0, 2.0))], config)
    axis = grid.axis("x")
    np.testing.assert_allclose(axis.coordinates, np.arange(-0.1, 2.2, 0.2), atol=1e-12)
    assert len(axis) == 12
    assert axis.face_coordinate(FaceSide.UPPER) == 2.0


def test_step_size_adjusted(caplog):
    with caplog.at_level(logging.WARNING, logger="fdmol"):
        grid = build_grid([Domain("x", (0.0, 1.0))], DiscretizationConfig(step_sizes={"x": 0.3}))
    axis = grid.axis("x")
    assert len(axis) == 4
    assert axis.dx == pytest.approx(1 / 3)
    assert axis.coordinates[-1] == pytest.approx(1.0)
    assert "does not divide" in caplog.text


def test_exact_step():
    """The step is the exact rational width of the domain per interval."""
    grid = build_grid([Domain("x", (0.0, 1.0))], DiscretizationConfig(step_sizes={"x": 0.1}))
    assert grid.axis("x").step == sympy.Rational(1, 10)
    grid = build_grid([Domain("x", (0.0, 1.0))], DiscretizationConfig(step_sizes={"x": 0.3}))
    assert grid.axis("x").step == sympy.Rational(1, 3)
    config = DiscretizationConfig(step_sizes={"x": 0.2}, grid_align=GridAlign.EDGE)
    grid = build_grid([Domain("x", (0.0, 2.0))], config)
    assert grid.axis("x").step == sympy.Rational(1, 5)


def test_multiple_axes_and_time():
    domains = [Domain("t", (0.0, 5.0)), Domain("x", (0.0, 1.0)), Domain("y", (-1.0, 1.0))]
    config = DiscretizationConfig(step_sizes={"x": 0.25, "y": 0.5}, time_axis="t")
    grid = build_grid(domains, config)
    assert grid.variables == ("x", "y")
    assert grid.shape(["x", "y"]) == (5, 5)
    assert grid.time_variable == "t"
    assert grid.time.bounds() == (0.0, 5.0)


def test_side_of():
    axis = build_grid([Domain("x", (0.0, 1.0))], DiscretizationConfig(step_sizes={"x": 0.5})).axis("x")
    assert axis.side_of(0.0) is FaceSide.LOWER
    assert axis.side_of(1.0) is FaceSide.UPPER
    assert axis.side_of(0.5) is None


@pytest.mark.parametrize(
    "domains, config",
    [
        ([Domain("x", (0.0, 1.0, 2.0))], {"step_sizes": {"x": 0.1}}),
        ([Domain("x", (1.0, 0.0))], {"step_sizes": {"x": 0.1}}),
        ([Domain("x", (0.0, float("inf")))], {"step_sizes": {"x": 0.1}}),
        ([Domain("x", "0..1")], {"step_sizes": {"x": 0.1}}),
        ([Domain("x", (0.0, 1.0))], {"step_sizes": {}}),
        ([Domain("x", (0.0, 1.0))], {"step_sizes": {"x": 2.0}}),
        ([Domain("x", (0.0, 1.0))], {"step_sizes": {"x": 0.1, "y": 0.1}}),
        ([Domain("x", (0.0, 1.0))], {"step_sizes": {"x": 0.1}, "time_axis": "t"}),
    ],
)
def test_invalid_domains(domains, config):
    with pytest.raises(DomainShapeError):
        build_grid(domains, DiscretizationConfig(**config))
