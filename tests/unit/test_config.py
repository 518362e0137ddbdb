"""Unit tests for the discretization configuration."""

import pydantic
import pytest

from fdmol import AdvectionScheme, DiscretizationConfig, GridAlign


def test_defaults():
    config = DiscretizationConfig()
    assert config.approx_order == 2
    assert config.upwind_order == 1
    assert config.grid_align is GridAlign.CENTER
    assert config.advection_scheme is AdvectionScheme.UPWIND
    assert config.max_workers is None
    assert not config.is_time_dependent


def test_string_enums():
    config = DiscretizationConfig(grid_align="edge", advection_scheme="centered", time_axis="t")
    assert config.grid_align is GridAlign.EDGE
    assert config.advection_scheme is AdvectionScheme.CENTERED
    assert config.is_time_dependent


@pytest.mark.parametrize(
    "options",
    [
        {"approx_order": 1},
        {"upwind_order": 0},
        {"step_sizes": {"x": -0.1}},
        {"step_sizes": {"x": 0.0}},
        {"max_workers": 0},
        {"grid_align": "staggered"},
        {"unknown_option": 1},
        {"step_sizes": {"t": 0.1}, "time_axis": "t"},
    ],
)
def test_invalid_config(options):
    with pytest.raises(pydantic.ValidationError):
        DiscretizationConfig(**options)


def test_validate_on_assignment():
    config = DiscretizationConfig()
    config.approx_order = 4
    assert config.approx_order == 4
    with pytest.raises(pydantic.ValidationError):
        config.approx_order = 0


def test_orders_have_no_upper_bound():
    config = DiscretizationConfig(approx_order=12, upwind_order=11)
    assert config.approx_order == 12
    assert config.upwind_order == 11
