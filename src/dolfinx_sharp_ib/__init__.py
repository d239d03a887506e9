"""
dolfinx-sharp-ib: steady Navier-Stokes with sharp-edge immersed boundaries.

A FEniCSx-based GLS/SUPG/PSPG Navier-Stokes solver on a fixed simplex mesh.
Circular (or annular) walls that do not follow the mesh are imposed by
rewriting the DOF rows of cut cells with a three-point sharp stencil; the
nonlinear problem is solved by damped Newton-Raphson.

Requirements:
    - DOLFINx 0.10.0+ with petsc4py/mpi4py (solver, geometry, postprocess)
    - numpy, matplotlib

The numerical kernels (stabilization, assembler, triangle, topology,
immersed, newton, cases) depend on numpy only and are imported here; the
DOLFINx-backed modules are imported explicitly.

Example:
    from dolfinx_sharp_ib import FlowParams, ImmersedParams, MeshParams, NewtonParams, create_case
    from dolfinx_sharp_ib.geometry import create_box_mesh
    from dolfinx_sharp_ib.solver import solve_steady

    mesh_params = MeshParams(n=40, lower=(-1.0, -1.0), upper=(1.0, 1.0))
    flow = FlowParams(case="couette", viscosity=1.0)
    case = create_case("couette", flow, ImmersedParams(radius=0.21))
    problem, result = solve_steady(create_box_mesh(mesh_params), case, flow, NewtonParams())
"""

__version__ = "0.1.0"

from dolfinx_sharp_ib.assembler import DofLayout, local_system, strong_residual
from dolfinx_sharp_ib.cases import FlowCase, create_case
from dolfinx_sharp_ib.config import FlowParams, ImmersedParams, MeshParams, NewtonParams
from dolfinx_sharp_ib.immersed import ImmersedBoundary, SharpEdgeBuilder
from dolfinx_sharp_ib.newton import NewtonResult, NewtonSolver, NewtonState
from dolfinx_sharp_ib.stabilization import element_size, tau

__all__ = [
    "__version__",
    "DofLayout",
    "FlowCase",
    "FlowParams",
    "ImmersedBoundary",
    "ImmersedParams",
    "MeshParams",
    "NewtonParams",
    "NewtonResult",
    "NewtonSolver",
    "NewtonState",
    "SharpEdgeBuilder",
    "create_case",
    "element_size",
    "local_system",
    "strong_residual",
    "tau",
]
