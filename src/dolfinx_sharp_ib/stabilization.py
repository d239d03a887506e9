"""
GLS stabilization parameter.

tau balances the advective and diffusive time scales of a cell:

    tau = 1 / sqrt((2|u|/h)^2 + 9 (4 nu / h^2)^2)

and is evaluated at every quadrature point from the current velocity.
"""

import numpy as np

from dolfinx_sharp_ib.config import VELOCITY_FLOOR


def element_size(measure, dim: int):
    """
    Equivalent-disk (2D) or equivalent-sphere (3D) diameter of a cell.

    Args:
        measure: Cell area (2D) or volume (3D), scalar or array
        dim: Spatial dimension (2 or 3)

    Returns:
        h with the same shape as measure
    """
    measure = np.asarray(measure, dtype=float)
    if np.any(measure <= 0.0):
        raise ValueError("Cell measure must be positive (degenerate cell)")
    if dim == 2:
        return np.sqrt(4.0 * measure / np.pi)
    if dim == 3:
        return np.cbrt(6.0 * measure / np.pi)
    raise ValueError(f"element_size supports dim 2 or 3, got {dim}")


def tau(velocity_magnitude, h, viscosity: float, floor: float = VELOCITY_FLOOR):
    """SUPG/PSPG time scale; |u| is floored at `floor`. Broadcasts over arrays."""
    u = np.maximum(np.asarray(velocity_magnitude, dtype=float), floor)
    h = np.asarray(h, dtype=float)
    advective = 2.0 * u / h
    diffusive = 4.0 * viscosity / h**2
    return 1.0 / np.sqrt(advective**2 + 9.0 * diffusive**2)
