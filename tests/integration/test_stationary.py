"""Integration tests: stationary problems solved with a nonlinear solver."""

import numpy as np
import pytest
from scipy.optimize import fsolve

from fdmol import D, Domain, Equation, Field, PDESystem, Sym, discretize

x, y = Sym("x"), Sym("y")
u = Field("u")
Dxx, Dyy = D("x", 2), D("y", 2)


def solve(discrete):
    f = discrete.rhs_function()
    solution, info, ier, message = fsolve(lambda v: f(0.0, v), np.zeros(len(discrete)), full_output=True, xtol=1e-12)
    assert ier == 1, message
    return discrete.reconstruct(solution)["u"]


def poisson_system(conditions):
    return PDESystem([Equation(Dxx(u(x)), -2.0)], conditions, [Domain("x", (0.0, 1.0))], [u(x)])


def test_poisson_dirichlet():
    discrete = discretize(poisson_system([Equation(u(0.0), 0.0), Equation(u(1.0), 0.0)]), step_sizes={"x": 0.1})
    assert not discrete.is_time_dependent
    (xs,) = discrete.coordinates("u")
    np.testing.assert_allclose(solve(discrete), xs * (1 - xs), atol=1e-10)


def test_poisson_neumann_center_grid():
    conditions = [Equation(u(0.0), 0.0), Equation(D("x")(u(1.0)), -1.0)]
    discrete = discretize(poisson_system(conditions), step_sizes={"x": 0.1})
    (xs,) = discrete.coordinates("u")
    np.testing.assert_allclose(solve(discrete), xs * (1 - xs), atol=1e-10)


@pytest.mark.parametrize("dx", [0.1, 0.25])
def test_poisson_neumann_edge_grid(dx):
    """On edge grids the Dirichlet value is interpolated between ghost and first point."""
    conditions = [Equation(u(0.0), 0.0), Equation(D("x")(u(1.0)), -1.0)]
    discrete = discretize(poisson_system(conditions), step_sizes={"x": dx}, grid_align="edge")
    (xs,) = discrete.coordinates("u")
    assert xs[0] == pytest.approx(-dx / 2)
    np.testing.assert_allclose(solve(discrete), xs * (1 - xs) + dx**2 / 4, atol=1e-10)


def test_laplace_plate():
    system = PDESystem(
        [Equation(Dxx(u(x, y)) + Dyy(u(x, y)), 0.0)],
        [
            Equation(u(0.0, y), 0.0),
            Equation(u(1.0, y), y),
            Equation(u(x, 0.0), 0.0),
            Equation(u(x, 1.0), x),
        ],
        [Domain("x", (0.0, 1.0)), Domain("y", (0.0, 1.0))],
        [u(x, y)],
    )
    discrete = discretize(system, step_sizes={"x": 0.25, "y": 0.25})
    assert len(discrete) == 25
    xs, ys = discrete.coordinates("u")
    np.testing.assert_allclose(solve(discrete), np.multiply.outer(xs, ys), atol=1e-10)


def test_fourth_order_stencils():
    """A quartic is reproduced exactly by fourth order stencils."""
    system = PDESystem(
        [Equation(Dxx(u(x)), 12 * x**2)],
        [Equation(u(0.0), 0.0), Equation(u(1.0), 1.0)],
        [Domain("x", (0.0, 1.0))],
        [u(x)],
    )
    discrete = discretize(system, step_sizes={"x": 0.125}, approx_order=4)
    (xs,) = discrete.coordinates("u")
    np.testing.assert_allclose(solve(discrete), xs**4, atol=1e-9)
