"""Unit tests for the profiling of the discretization stages."""

import logging

import pytest

from fdmol import D, Domain, Equation, Field, PDESystem, Profiler, Sym, discretize, profile

t, x = Sym("t"), Sym("x")
u = Field("u")


@pytest.fixture(autouse=True)
def stop_profiler():
    yield
    Profiler.stop()


def heat_system():
    return PDESystem(
        [Equation(D("t")(u(t, x)), D("x", 2)(u(t, x)))],
        [Equation(u(0.0, x), 0.0), Equation(u(t, 0.0), 0.0), Equation(u(t, 1.0), 0.0)],
        [Domain("t", (0.0, 1.0)), Domain("x", (0.0, 1.0))],
        [u(t, x)],
    )


def test_inactive_profiler():
    assert not Profiler.is_active()
    assert "not active" in Profiler.summary()


def test_discretization_stages():
    Profiler.start()
    discretize(heat_system(), step_sizes={"x": 0.1}, time_axis="t")
    profiles = Profiler.profiles()
    for stage in ["discretize", "build_grid", "BoundaryProcessor.process", "EquationAssembler.assemble"]:
        assert stage in profiles
        assert profiles[stage].ncalls == 1
    summary = Profiler.summary()
    assert "EquationAssembler.assign_equations" in summary
    flat = Profiler.summary(nested=False)
    assert "build_grid" in flat


def test_log_summary(caplog):
    Profiler.start()
    discretize(heat_system(), step_sizes={"x": 0.25}, time_axis="t")
    with caplog.at_level(logging.INFO, logger="fdmol"):
        Profiler.log_summary()
    assert "Profiler results" in caplog.text
    assert "discretize" in caplog.text


def test_nested_calls():
    @profile
    def inner():
        return 1

    @profile
    def outer():
        return inner() + inner()

    Profiler.start()
    assert outer() == 2
    profiles = Profiler.profiles()
    assert profiles[inner.__qualname__].ncalls == 2
    assert profiles[outer.__qualname__].ncalls == 1
    # restarting drops the measurements
    Profiler.start()
    assert Profiler.profiles() == {}
