"""
Tests for the GLS stabilization parameter and element size.
"""

import numpy as np
import pytest

from dolfinx_sharp_ib.stabilization import element_size, tau


def test_element_size_equivalent_disk_and_sphere():
    assert element_size(np.pi / 4.0, 2) == pytest.approx(1.0)
    assert element_size(np.pi / 6.0, 3) == pytest.approx(1.0)
    h = element_size(np.array([0.5, 2.0]), 2)
    assert h.shape == (2,)
    assert h[1] == pytest.approx(2.0 * h[0])


def test_element_size_rejects_degenerate_cells():
    with pytest.raises(ValueError, match="positive"):
        element_size(np.array([0.1, 0.0]), 2)
    with pytest.raises(ValueError, match="dim"):
        element_size(1.0, 1)


def test_tau_monotone_in_speed_and_viscosity():
    """tau decreases as |u| or nu grows."""
    speeds = np.array([0.0, 0.1, 1.0, 10.0, 100.0])
    t = tau(speeds, 0.1, 1e-2)
    assert np.all(np.diff(t) < 0)

    viscosities = np.array([1e-4, 1e-2, 1.0, 100.0])
    t = tau(1.0, 0.1, viscosities)
    assert np.all(np.diff(t) < 0)

    assert tau(0.0, 0.1, 1.0) > tau(10.0, 0.1, 1.0)


def test_tau_monotone_over_parameter_grid():
    """Over a (|u|, h, nu) grid tau rises with h and falls with |u|."""
    speeds = np.array([0.0, 0.01, 0.1, 1.0, 10.0, 100.0])
    sizes = np.linspace(0.01, 1.0, 50)
    viscosities = np.array([1e-4, 1e-2, 1.0])
    U, H, NU = np.meshgrid(speeds, sizes, viscosities, indexing="ij")
    t = tau(U, H, NU)
    assert t.shape == U.shape
    assert np.all(np.isfinite(t))
    assert np.all(np.diff(t, axis=1) > 0)
    assert np.all(np.diff(t, axis=0) < 0)


def test_tau_limits():
    """Diffusive limit h^2 / (12 nu); advective limit h / (2 |u|)."""
    h = 0.05
    assert tau(0.0, h, 1.0) == pytest.approx(h**2 / 12.0, rel=1e-12)
    assert tau(1e6, h, 1e-12) == pytest.approx(h / 2e6, rel=1e-9)


def test_tau_finite_at_rest():
    """The velocity floor keeps tau finite for u = 0."""
    t = tau(np.zeros(3), np.full(3, 0.1), 1.0)
    assert np.all(np.isfinite(t))
    assert np.all(t > 0)
