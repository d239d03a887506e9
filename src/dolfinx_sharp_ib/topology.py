"""
Mesh data seen by the immersed-boundary builder and the assembler.

CellMesh is a plain-numpy view of a simplex mesh and its Lagrange space:
node (support point) coordinates, nodes per cell, vertices per cell and the
affine vertex coordinates. geometry.cell_mesh_from_space() builds it from a
DOLFINx function space; tests may build it by hand.

Point location is a result, not an exception: PointLocation.found is False
when no candidate cell contains the point.
"""

from dataclasses import dataclass, field

import numpy as np

# Reference-coordinate slack for containment tests
CONTAINMENT_TOL = 1e-10


class VertexCellMap:
    """
    Vertex -> cells adjacency stored as offsets/array (CSR), built once per mesh.

    Example:
        vc = VertexCellMap(cell_vertices)
        vc.cells(12)          # cells touching vertex 12
        vc.patch([3, 4, 7])   # union over several vertices
    """

    def __init__(self, cell_vertices, n_vertices: int | None = None):
        cell_vertices = np.asarray(cell_vertices, dtype=np.int64)
        if n_vertices is None:
            n_vertices = int(cell_vertices.max()) + 1 if cell_vertices.size else 0
        flat = cell_vertices.ravel()
        owners = np.repeat(np.arange(cell_vertices.shape[0]), cell_vertices.shape[1])
        order = np.argsort(flat, kind="stable")
        self.array = owners[order]
        self.offsets = np.concatenate([[0], np.cumsum(np.bincount(flat, minlength=n_vertices))])

    @property
    def n_vertices(self) -> int:
        return len(self.offsets) - 1

    def cells(self, vertex: int):
        return self.array[self.offsets[vertex]:self.offsets[vertex + 1]]

    def patch(self, vertices):
        """Sorted union of the cells touching any of `vertices`."""
        return np.unique(np.concatenate([self.cells(v) for v in vertices]))


@dataclass(frozen=True)
class PointLocation:
    """Outcome of a point search; reference_coordinates is None when not found."""

    found: bool
    cell: int = -1
    reference_coordinates: np.ndarray | None = None


def pull_back(point, vertices, tol: float = CONTAINMENT_TOL):
    """
    Map a physical point into the reference simplex of an affine cell.

    Args:
        point: (d,) physical coordinates
        vertices: (d + 1, d) cell vertex coordinates

    Returns:
        (X, inside): reference coordinates and containment flag
    """
    vertices = np.asarray(vertices, dtype=float)
    J = (vertices[1:] - vertices[0]).T
    X = np.linalg.solve(J, np.asarray(point, dtype=float) - vertices[0])
    inside = bool(np.all(X >= -tol) and X.sum() <= 1.0 + tol)
    return X, inside


@dataclass
class CellMesh:
    """
    Simplex mesh with a Lagrange node layout.

    node_coords: (n_nodes, d) support point of every node
    cell_nodes: (n_cells, n) nodes per cell, reference ordering
    cell_vertices: (n_cells, d + 1) topological vertex indices per cell
    cell_geometry: (n_cells, d + 1, d) vertex coordinates per cell
    """

    node_coords: np.ndarray
    cell_nodes: np.ndarray
    cell_vertices: np.ndarray
    cell_geometry: np.ndarray
    vertex_cells: VertexCellMap = field(init=False)

    def __post_init__(self):
        self.node_coords = np.asarray(self.node_coords, dtype=float)
        self.cell_nodes = np.asarray(self.cell_nodes, dtype=np.int64)
        self.cell_vertices = np.asarray(self.cell_vertices, dtype=np.int64)
        self.cell_geometry = np.asarray(self.cell_geometry, dtype=float)
        self.vertex_cells = VertexCellMap(self.cell_vertices)

    @property
    def dim(self) -> int:
        return self.node_coords.shape[1]

    @property
    def n_cells(self) -> int:
        return self.cell_nodes.shape[0]

    @property
    def n_nodes(self) -> int:
        return self.node_coords.shape[0]

    def node_patch(self, cell: int, local_node: int):
        """
        Candidate cells around a node of `cell`.

        Vertex nodes (local index < d + 1) use the cells of that vertex; other
        nodes (edge/face nodes of P2) use the cells of all vertices of `cell`.
        """
        vertices = self.cell_vertices[cell]
        if local_node < len(vertices):
            return self.vertex_cells.cells(vertices[local_node])
        return self.vertex_cells.patch(vertices)

    def locate(self, point, candidates, tol: float = CONTAINMENT_TOL) -> PointLocation:
        """First candidate cell containing `point`."""
        for cell in candidates:
            X, inside = pull_back(point, self.cell_geometry[cell], tol)
            if inside:
                return PointLocation(True, int(cell), X)
        return PointLocation(False)

    def grow(self, cells):
        """Cells sharing a vertex with any of `cells`, excluding `cells` themselves."""
        cells = np.asarray(cells, dtype=np.int64)
        ring = self.vertex_cells.patch(np.unique(self.cell_vertices[cells]))
        return np.setdiff1d(ring, cells)

    def nearest_node(self, point) -> int:
        return int(np.argmin(np.linalg.norm(self.node_coords - np.asarray(point, dtype=float), axis=1)))
