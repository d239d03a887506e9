"""
Flow case registry.

A flow case is a bundle of plain callables picked by name at setup time:
body force, outer-wall velocity, optional exact velocity/pressure and the
embedded boundaries. All callables take points x of shape (..., d).

Usage:
    from dolfinx_sharp_ib.cases import create_case
    case = create_case("couette", flow, immersed)
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np

from dolfinx_sharp_ib.config import FlowParams, ImmersedParams
from dolfinx_sharp_ib.immersed import ImmersedBoundary, rotating_wall


@dataclass(frozen=True)
class FlowCase:
    name: str
    force: Callable
    wall_velocity: Callable
    exact_velocity: Callable | None = None
    exact_pressure: Callable | None = None
    boundaries: tuple = ()


def zero_field(x):
    x = np.asarray(x, dtype=float)
    return np.zeros_like(x)


# =============================================================================
# Manufactured solution on the unit square
#   u =  sin^2(pi x) sin(pi y) cos(pi y)
#   v = -sin(pi x) cos(pi x) sin^2(pi y)
#   p = 0
# Divergence free and zero on the boundary of [0, 1]^2.
# =============================================================================


def mms_velocity(x):
    x = np.asarray(x, dtype=float)
    a, b = np.pi * x[..., 0], np.pi * x[..., 1]
    u = np.empty_like(x)
    u[..., 0] = np.sin(a) ** 2 * 0.5 * np.sin(2 * b)
    u[..., 1] = -0.5 * np.sin(2 * a) * np.sin(b) ** 2
    return u


def mms_pressure(x):
    return np.zeros(np.shape(x)[:-1])


def mms_force(viscosity: float):
    """f = (u . grad) u - nu lap u for the manufactured velocity."""

    def force(x):
        x = np.asarray(x, dtype=float)
        a, b = np.pi * x[..., 0], np.pi * x[..., 1]
        sa, sb = np.sin(a), np.sin(b)
        S2a, S2b = np.sin(2 * a), np.sin(2 * b)
        C2a, C2b = np.cos(2 * a), np.cos(2 * b)
        u = 0.5 * sa**2 * S2b
        v = -0.5 * S2a * sb**2
        du_dx = 0.5 * np.pi * S2a * S2b
        du_dy = np.pi * sa**2 * C2b
        dv_dx = -np.pi * C2a * sb**2
        dv_dy = -0.5 * np.pi * S2a * S2b
        lap_u = np.pi**2 * S2b * (C2a - 2.0 * sa**2)
        lap_v = np.pi**2 * S2a * (2.0 * sb**2 - C2b)
        f = np.empty_like(x)
        f[..., 0] = u * du_dx + v * du_dy - viscosity * lap_u
        f[..., 1] = u * dv_dx + v * dv_dy - viscosity * lap_v
        return f

    return force


def mms_case(flow: FlowParams, immersed: ImmersedParams | None = None) -> FlowCase:
    return FlowCase(
        name="mms",
        force=mms_force(flow.viscosity),
        wall_velocity=mms_velocity,
        exact_velocity=mms_velocity,
        exact_pressure=mms_pressure,
    )


# =============================================================================
# Rotating cylinder(s)
# =============================================================================


def _boundaries(immersed: ImmersedParams | None):
    if immersed is None or not immersed.enabled:
        return ()
    inner = ImmersedBoundary(
        center=immersed.center,
        radius=immersed.radius,
        velocity=rotating_wall(immersed.center, immersed.omega),
        name="inner",
    )
    if immersed.radius_outer is None:
        return (inner,)
    outer = ImmersedBoundary(
        center=immersed.center,
        radius=immersed.radius_outer,
        velocity=rotating_wall(immersed.center, immersed.omega_outer),
        name="outer",
    )
    return (inner, outer)


def couette_case(flow: FlowParams, immersed: ImmersedParams | None = None) -> FlowCase:
    """Cylinder rotating inside a box whose walls are at rest."""
    if immersed is None:
        raise ValueError("Case 'couette' needs an 'immersed' section")
    return FlowCase(
        name="couette",
        force=zero_field,
        wall_velocity=zero_field,
        boundaries=_boundaries(immersed),
    )


def taylor_couette_coefficients(r_in: float, r_out: float, omega_in: float, omega_out: float):
    """(A, B) of u_theta = A r + B / r between two rotating cylinders."""
    denom = r_out**2 - r_in**2
    A = (omega_out * r_out**2 - omega_in * r_in**2) / denom
    B = (omega_in - omega_out) * r_in**2 * r_out**2 / denom
    return A, B


def taylor_couette_velocity(center, r_in: float, r_out: float, omega_in: float, omega_out: float):
    A, B = taylor_couette_coefficients(r_in, r_out, omega_in, omega_out)
    center = np.asarray(center, dtype=float)

    def velocity(x):
        x = np.asarray(x, dtype=float)
        rel = x[..., :2] - center[:2]
        r2 = np.maximum(np.sum(rel**2, axis=-1), 1e-300)
        # u_theta / r
        w = A + B / r2
        u = np.zeros_like(x)
        u[..., 0] = -w * rel[..., 1]
        u[..., 1] = w * rel[..., 0]
        return u

    return velocity


def taylor_couette_torque(viscosity: float, r_in: float, r_out: float, omega_in: float, omega_out: float) -> float:
    """Torque per unit length exerted by the fluid on the inner cylinder (density 1)."""
    _, B = taylor_couette_coefficients(r_in, r_out, omega_in, omega_out)
    return -4.0 * np.pi * viscosity * B


def taylor_couette_case(flow: FlowParams, immersed: ImmersedParams | None = None) -> FlowCase:
    """Annulus between two concentric rotating cylinders."""
    if immersed is None or immersed.radius_outer is None:
        raise ValueError("Case 'taylor_couette' needs immersed.radius_outer")
    return FlowCase(
        name="taylor_couette",
        force=zero_field,
        wall_velocity=zero_field,
        exact_velocity=taylor_couette_velocity(
            immersed.center, immersed.radius, immersed.radius_outer, immersed.omega, immersed.omega_outer
        ),
        boundaries=_boundaries(immersed),
    )


_REGISTRY: dict[str, Callable[..., FlowCase]] = {
    "mms": mms_case,
    "couette": couette_case,
    "taylor_couette": taylor_couette_case,
}


def create_case(name: str, flow: FlowParams, immersed: ImmersedParams | None = None) -> FlowCase:
    """Factory: build a flow case by config name."""
    key = name.lower()
    builder = _REGISTRY.get(key)
    if builder is None:
        supported = ", ".join(sorted(_REGISTRY))
        raise ValueError(f"Unknown flow case '{name}'. Supported: {supported}")
    return builder(flow, immersed)
