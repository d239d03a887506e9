"""
Mesh generation and mesh/space adapters for dolfinx-sharp-ib.

Contains:
- Box mesh creation (triangles in 2D, tetrahedra in 3D)
- The equal-order blocked velocity/pressure Lagrange space
- CellMesh extraction (node coordinates, cell nodes, vertices, geometry)
- Outer-wall node location
"""

import numpy as np
from mpi4py import MPI

from dolfinx import mesh
from dolfinx.fem import functionspace, locate_dofs_topological
from dolfinx.mesh import CellType

from dolfinx_sharp_ib.config import MeshParams
from dolfinx_sharp_ib.topology import CellMesh


def create_box_mesh(params: MeshParams, n: int | None = None, comm=MPI.COMM_SELF):
    """
    Create a uniform simplex mesh of the box [lower, upper].

    Args:
        params: Mesh parameters
        n: Cells per side (overrides params.n, used by refinement sweeps)
        comm: MPI communicator (serial runs only)
    """
    if comm.size > 1:
        raise ValueError("dolfinx-sharp-ib runs in serial; got a communicator of size > 1")
    n = params.n if n is None else n
    corners = [list(params.lower), list(params.upper)]
    if params.cell_type == "triangle":
        return mesh.create_rectangle(comm, corners, [n, n], cell_type=CellType.triangle)
    return mesh.create_box(comm, corners, [n, n, n], cell_type=CellType.tetrahedron)


def create_flow_space(domain, degree: int = 1):
    """Equal-order Lagrange space with gdim velocity components plus pressure per node."""
    gdim = domain.geometry.dim
    return functionspace(domain, ("Lagrange", degree, (gdim + 1,)))


def cell_mesh_from_space(V) -> CellMesh:
    """Plain-numpy CellMesh of a (blocked) Lagrange space on an affine simplex mesh."""
    domain = V.mesh
    gdim = domain.geometry.dim
    tdim = domain.topology.dim
    n_cells = domain.topology.index_map(tdim).size_local

    domain.topology.create_connectivity(tdim, 0)
    c2v = domain.topology.connectivity(tdim, 0)
    cell_vertices = c2v.array.reshape(-1, tdim + 1)[:n_cells]

    geometry = domain.geometry.x[domain.geometry.dofmap[:n_cells]][:, : tdim + 1, :gdim]

    return CellMesh(
        node_coords=V.tabulate_dof_coordinates()[:, :gdim],
        cell_nodes=np.asarray(V.dofmap.list)[:n_cells],
        cell_vertices=cell_vertices,
        cell_geometry=geometry,
    )


def wall_nodes(V):
    """Nodes of V on the exterior boundary of the box."""
    domain = V.mesh
    fdim = domain.topology.dim - 1
    domain.topology.create_connectivity(fdim, domain.topology.dim)

    def everywhere(x):
        return np.full(x.shape[1], True)

    facets = mesh.locate_entities_boundary(domain, fdim, everywhere)
    # Blocked space: returns node (block) indices
    return np.asarray(locate_dofs_topological(V, fdim, facets), dtype=np.int64)
