"""Integration tests: time integration of discretized transport problems."""

import math

import numpy as np
import pytest
from scipy.integrate import solve_ivp

from fdmol import D, Domain, Equation, Field, PDESystem, Sym, discretize, sin

t, x = Sym("t"), Sym("x")
u = Field("u")
Dt, Dx = D("t"), D("x")


def periodic_system(rhs, initial):
    return PDESystem(
        [Equation(Dt(u(t, x)), rhs)],
        [Equation(u(0.0, x), initial), Equation(u(t, 0.0), u(t, 1.0))],
        [Domain("t", (0.0, 0.1)), Domain("x", (0.0, 1.0))],
        [u(t, x)],
    )


def integrate(discrete, t_end=0.1):
    f = discrete.rhs_function()
    sol = solve_ivp(f, (0.0, t_end), discrete.initial_values(), method="RK45", rtol=1e-10, atol=1e-12)
    assert sol.success
    return sol.y[:, -1]


def test_periodic_heat_mode_decay():
    """A Fourier mode decays with the eigenvalue of the discrete Laplacian."""
    dx = 0.1
    discrete = discretize(periodic_system(D("x", 2)(u(t, x)), sin(2 * math.pi * x)), step_sizes={"x": dx}, time_axis="t")
    assert len(discrete) == 10
    assert discrete.mass_matrix().diagonal().all()
    u_end = integrate(discrete)
    (xs,) = discrete.coordinates("u")
    eigenvalue = -4 * np.sin(np.pi * dx) ** 2 / dx**2
    expected = np.exp(eigenvalue * 0.1) * np.sin(2 * np.pi * xs[:-1])
    np.testing.assert_allclose(u_end, expected, atol=1e-7)


def test_upwind_advection_conserves_mass():
    initial = sin(2 * math.pi * x) + 2.0
    discrete = discretize(periodic_system(-1.0 * Dx(u(t, x)), initial), step_sizes={"x": 0.05}, time_axis="t")
    u0 = discrete.initial_values()
    u_end = integrate(discrete)
    assert u_end.sum() == pytest.approx(u0.sum(), rel=1e-8)
    # numerical diffusion of the upwind scheme damps the amplitude
    assert np.ptp(u_end) < np.ptp(u0)
    assert u_end.min() > u0.min()


def test_centered_advection_transports_mode():
    """Centered differences do not damp a mode, they only slow it down."""
    dx = 0.05
    discrete = discretize(
        periodic_system(-1.0 * Dx(u(t, x)), sin(2 * math.pi * x)),
        step_sizes={"x": dx},
        time_axis="t",
        advection_scheme="centered",
        approx_order=4,
    )
    u_end = integrate(discrete)
    (xs,) = discrete.coordinates("u")
    np.testing.assert_allclose(u_end, np.sin(2 * np.pi * (xs[:-1] - 0.1)), atol=1e-4)
