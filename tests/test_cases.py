"""
Tests for the analytic flow cases (manufactured solution, Taylor-Couette).
"""

import numpy as np
import pytest

from dolfinx_sharp_ib.cases import (
    mms_force,
    mms_pressure,
    mms_velocity,
    taylor_couette_coefficients,
    taylor_couette_torque,
    taylor_couette_velocity,
)


def _grid(n=9, lo=0.05, hi=0.95):
    s = np.linspace(lo, hi, n)
    X, Y = np.meshgrid(s, s)
    return np.stack([X.ravel(), Y.ravel()], axis=-1)


def _fd_gradient(field, x, eps=1e-5):
    """Central-difference gradient, [..., i, j] = d field_i / d x_j."""
    cols = []
    for j in range(x.shape[-1]):
        e = np.zeros(x.shape[-1])
        e[j] = eps
        cols.append((field(x + e) - field(x - e)) / (2 * eps))
    return np.stack(cols, axis=-1)


def test_mms_velocity_is_divergence_free():
    x = _grid()
    G = _fd_gradient(mms_velocity, x)
    np.testing.assert_allclose(np.trace(G, axis1=-2, axis2=-1), 0.0, atol=1e-8)


def test_mms_velocity_vanishes_on_the_boundary():
    s = np.linspace(0.0, 1.0, 11)
    edges = np.concatenate([
        np.stack([s, np.zeros_like(s)], axis=-1),
        np.stack([s, np.ones_like(s)], axis=-1),
        np.stack([np.zeros_like(s), s], axis=-1),
        np.stack([np.ones_like(s), s], axis=-1),
    ])
    np.testing.assert_allclose(mms_velocity(edges), 0.0, atol=1e-15)
    assert mms_pressure(edges).shape == (44,)


@pytest.mark.parametrize("viscosity", [1.0, 0.01])
def test_mms_force_balances_the_momentum_equation(viscosity):
    """f = (u . grad) u - nu lap u, checked against finite differences."""
    x = _grid()
    u = mms_velocity(x)
    G = _fd_gradient(mms_velocity, x, eps=1e-4)
    convection = np.einsum("nij,nj->ni", G, u)

    eps = 1e-3
    lap = np.zeros_like(u)
    for j in range(2):
        e = np.zeros(2)
        e[j] = eps
        lap += (mms_velocity(x + e) - 2 * u + mms_velocity(x - e)) / eps**2

    f = mms_force(viscosity)(x)
    np.testing.assert_allclose(f, convection - viscosity * lap, atol=1e-4 * max(1.0, 20 * viscosity))


def test_taylor_couette_matches_both_walls():
    r_in, r_out, w_in, w_out = 0.21, 0.91, 1.0, -0.5
    A, B = taylor_couette_coefficients(r_in, r_out, w_in, w_out)
    assert A * r_in + B / r_in == pytest.approx(w_in * r_in)
    assert A * r_out + B / r_out == pytest.approx(w_out * r_out)

    velocity = taylor_couette_velocity((0.1, -0.2), r_in, r_out, w_in, w_out)
    theta = np.linspace(0.0, 2 * np.pi, 7)
    for r, w in [(r_in, w_in), (r_out, w_out)]:
        x = np.stack([0.1 + r * np.cos(theta), -0.2 + r * np.sin(theta)], axis=-1)
        expected = w * np.stack([-(x[:, 1] + 0.2), x[:, 0] - 0.1], axis=-1)
        np.testing.assert_allclose(velocity(x), expected, atol=1e-13)


def test_taylor_couette_velocity_is_divergence_free():
    velocity = taylor_couette_velocity((0.0, 0.0), 0.21, 0.91, 1.0, 0.0)
    theta = np.linspace(0.1, 6.0, 5)
    r = np.linspace(0.3, 0.8, 4)
    R, T = np.meshgrid(r, theta)
    x = np.stack([(R * np.cos(T)).ravel(), (R * np.sin(T)).ravel()], axis=-1)
    G = _fd_gradient(velocity, x)
    np.testing.assert_allclose(np.trace(G, axis1=-2, axis2=-1), 0.0, atol=1e-8)


def test_taylor_couette_torque():
    """T = -4 pi nu B: opposes the inner rotation and vanishes for co-rotation."""
    assert taylor_couette_torque(1.0, 0.21, 0.91, 1.0, 0.0) < 0.0
    assert taylor_couette_torque(1.0, 0.21, 0.91, 1.0, 1.0) == pytest.approx(0.0, abs=1e-15)
    _, B = taylor_couette_coefficients(0.5, 1.0, 2.0, 0.0)
    assert taylor_couette_torque(0.3, 0.5, 1.0, 2.0, 0.0) == pytest.approx(-4.0 * np.pi * 0.3 * B)
