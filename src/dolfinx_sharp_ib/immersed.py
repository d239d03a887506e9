"""
Sharp-edge immersed boundary for circular and annular embedded walls.

For every velocity DOF on a cell cut by a circle of radius R, the DOF row of
the assembled Newton system is replaced by a one-dimensional three-point
condition along the normal through the DOF support point x:

    x_b = c + R (x - c) / |x - c|          (projection on the circle)
    v   = x - x_b,  dist = |v|
    x_2 = x + v                            (second point, same side as x)

    (g(x_b) - 2 u(x) + u(x_2)) / dist^2 = 0

u(x_2) is interpolated from the cell containing x_2, searched among the cells
around the DOF's vertex. A DOF lying on the circle is pinned to g directly.

The rows are geometric and built once; each Newton assembly rewrites the same
rows (idempotent). Right-hand sides are in update form, target - row . u, so
the Newton update drives row . u to the target.
"""

from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from dolfinx_sharp_ib.assembler import DofLayout
from dolfinx_sharp_ib.topology import CellMesh

# Relative distance (in units of R) below which a DOF counts as on the circle
ON_BOUNDARY_TOL = 1e-12


@dataclass(frozen=True)
class ImmersedBoundary:
    """
    Embedded circle (2D) or cylinder along z (3D).

    velocity: Callable x_b (m, d) -> prescribed wall velocity (m, d)
    """

    center: np.ndarray
    radius: float
    velocity: Callable
    name: str = "inner"

    def __post_init__(self):
        if not self.radius > 0.0:
            raise ValueError(f"Immersed boundary radius must be > 0, got {self.radius}")
        object.__setattr__(self, "center", np.asarray(self.center, dtype=float))


def rotating_wall(center, omega: float):
    """Wall velocity of a circle rotating at angular velocity omega about `center`."""
    center = np.asarray(center, dtype=float)

    def velocity(x):
        x = np.asarray(x, dtype=float)
        g = np.zeros_like(x)
        g[..., 0] = -omega * (x[..., 1] - center[1])
        g[..., 1] = omega * (x[..., 0] - center[0])
        return g

    return velocity


def radial_projection(points, center, radius: float):
    """
    Projection of points on the circle and the normal offset to it.

    Only the first two coordinates are projected (a cylinder along z in 3D).

    Returns:
        (boundary_points, offsets, distances) where offsets = points - boundary_points.
        Points on the axis give NaN.
    """
    points = np.atleast_2d(np.asarray(points, dtype=float))
    center = np.asarray(center, dtype=float)
    rel = points[:, :2] - center[:2]
    r = np.linalg.norm(rel, axis=1)
    boundary = points.copy()
    with np.errstate(invalid="ignore", divide="ignore"):
        boundary[:, :2] = center[:2] + radius * rel / r[:, None]
    offsets = points - boundary
    return boundary, offsets, np.linalg.norm(offsets, axis=1)


def count_inside(node_coords, cell_nodes, center, radius: float):
    """Number of nodes of each cell within `radius` of the circle axis."""
    node_coords = np.asarray(node_coords, dtype=float)
    center = np.asarray(center, dtype=float)
    inside = np.linalg.norm(node_coords[:, :2] - center[:2], axis=1) <= radius
    return inside[np.asarray(cell_nodes)].sum(axis=1)


def cut_cells(node_coords, cell_nodes, center, radius: float):
    """Cells with some but not all nodes inside the circle."""
    counts = count_inside(node_coords, cell_nodes, center, radius)
    n = np.asarray(cell_nodes).shape[1]
    return np.flatnonzero((counts > 0) & (counts < n))


@dataclass(frozen=True)
class Stencil:
    """One rewritten row: row . u = target."""

    row: int
    component: int
    support_point: np.ndarray
    boundary_point: np.ndarray
    second_point: np.ndarray | None
    distance: float
    cell: int
    columns: np.ndarray
    coefficients: np.ndarray
    boundary_value: float
    target: float

    def residual(self, u) -> float:
        """Update-form right-hand side at state u."""
        return self.target - float(self.coefficients @ np.asarray(u)[self.columns])


@dataclass
class StencilReport:
    cut_cells: dict = field(default_factory=dict)
    stencils: int = 0
    pinned: int = 0
    skipped_rows: list = field(default_factory=list)


def _combine(row: int, diagonal: float, columns, coefficients):
    """Merge the diagonal entry into the interpolation entries of one row."""
    entries = {row: diagonal}
    for c, v in zip(columns, coefficients):
        entries[int(c)] = entries.get(int(c), 0.0) + float(v)
    cols = np.fromiter(entries.keys(), dtype=np.int64)
    vals = np.fromiter(entries.values(), dtype=float)
    return cols, vals


class SharpEdgeBuilder:
    """
    Builds and applies sharp-edge rows for one or two concentric circles.

    Boundaries are processed from the smallest radius up; a DOF is rewritten by
    the first stencil that claims it and never by a later one. Constrained
    DOFs (walls, pressure reference) are never rewritten.

    Args:
        mesh: CellMesh of the flow space
        layout: DofLayout (node-major components)
        shape_values: Callable X -> basis values (n,) at a reference point
        boundaries: ImmersedBoundary list (one circle, or two for an annulus)
        constrained: DOFs owned by the constraint handler
        bridging: Also rewrite pressure DOFs of cut cells with the symmetric
            three-point row (p(x - v) - 2 p(x) + p(x + v)) / dist^2 = 0
        verbose: Print warnings for skipped DOFs
    """

    def __init__(
        self,
        mesh: CellMesh,
        layout: DofLayout,
        shape_values,
        boundaries,
        *,
        constrained=(),
        bridging: bool = False,
        verbose: bool = True,
    ):
        self.mesh = mesh
        self.layout = layout
        self.shape_values = shape_values
        self.boundaries = sorted(boundaries, key=lambda b: b.radius)
        self.constrained = {int(d) for d in np.asarray(constrained, dtype=np.int64).ravel()}
        self.bridging = bridging
        self.verbose = verbose
        self._report = StencilReport()
        self._stencils = None

    def _warn(self, message: str) -> None:
        if self.verbose:
            print(f"  WARNING: {message}", flush=True)

    @property
    def stencils(self) -> list:
        if self._stencils is None:
            self._stencils = self.build()
        return self._stencils

    @property
    def report(self) -> StencilReport:
        """Build summary; reading it builds the stencils if needed."""
        if self._stencils is None:
            self._stencils = self.build()
        return self._report

    @property
    def rows(self):
        return np.array([s.row for s in self.stencils], dtype=np.int64)

    def locate(self, point, cell: int, local_node: int):
        """Cell containing `point`: the node patch first, then the ring of cells around it."""
        patch = self.mesh.node_patch(cell, local_node)
        location = self.mesh.locate(point, patch)
        if not location.found:
            location = self.mesh.locate(point, self.mesh.grow(patch))
        return location

    def _interpolation(self, point, cell, local_node):
        """(cell, nodes, basis weights) at `point`, or None when it is not found."""
        location = self.locate(point, cell, local_node)
        if not location.found:
            return None
        weights = self.shape_values(location.reference_coordinates)
        return location.cell, self.mesh.cell_nodes[location.cell], weights

    def build(self) -> list:
        """Geometric stencils for every claimable DOF of every cut cell."""
        d = self.layout.dim
        claimed = set(self.constrained)
        stencils = []
        report = StencilReport()

        for boundary in self.boundaries:
            cells = cut_cells(self.mesh.node_coords, self.mesh.cell_nodes, boundary.center, boundary.radius)
            report.cut_cells[boundary.name] = len(cells)
            for cell in cells:
                for local_node, node in enumerate(self.mesh.cell_nodes[cell]):
                    components = list(range(d)) + ([self.layout.pressure] if self.bridging else [])
                    rows = [int(self.layout.component_offset(node, c)) for c in components]
                    if all(r in claimed for r in rows):
                        continue
                    x = self.mesh.node_coords[node]
                    x_b, offset, dist = radial_projection(x, boundary.center, boundary.radius)
                    x_b, offset, dist = x_b[0], offset[0], float(dist[0])
                    if not np.isfinite(dist):
                        self._warn(f"DOF node {node} sits on the center of '{boundary.name}', skipped")
                        skipped = [r for r in rows if r not in claimed]
                        report.skipped_rows.extend(skipped)
                        claimed.update(skipped)
                        continue
                    g = boundary.velocity(x_b[None, :])[0]

                    if dist <= ON_BOUNDARY_TOL * boundary.radius:
                        for c, row in zip(components, rows):
                            if row in claimed or c == self.layout.pressure:
                                continue
                            value = float(g[c])
                            stencils.append(
                                Stencil(row, c, x, x_b, None, 0.0, int(cell),
                                        np.array([row]), np.array([1.0]), value, value)
                            )
                            claimed.add(row)
                            report.pinned += 1
                        continue

                    scale = 1.0 / dist**2
                    second = x + offset
                    found = self._interpolation(second, cell, local_node)
                    mirror = None
                    for c, row in zip(components, rows):
                        if row in claimed:
                            continue
                        if found is None:
                            self._warn(
                                f"second point {np.round(second, 6).tolist()} of DOF {row} not found in mesh, skipped"
                            )
                            report.skipped_rows.append(row)
                            claimed.add(row)
                            continue
                        cell_2, nodes_2, weights = found
                        cols = self.layout.component_offset(nodes_2, c)
                        if c < d:
                            target = -float(g[c]) * scale
                        else:
                            if mirror is None:
                                mirror = self._interpolation(x - offset, cell, local_node)
                            if mirror is None:
                                self._warn(f"bridging point of DOF {row} not found in mesh, skipped")
                                report.skipped_rows.append(row)
                                claimed.add(row)
                                continue
                            cols = np.concatenate([cols, self.layout.component_offset(mirror[1], c)])
                            weights = np.concatenate([weights, mirror[2]])
                            target = 0.0
                        columns, coefficients = _combine(row, -2.0 * scale, cols, scale * weights)
                        stencils.append(
                            Stencil(row, c, x, x_b, second, dist, int(cell_2),
                                    columns, coefficients, float(g[c]) if c < d else 0.0, target)
                        )
                        claimed.add(row)
                        report.stencils += 1

        self._report = report
        return stencils

    def apply(self, system, evaluation_point, *, assemble_matrix: bool = True) -> StencilReport:
        """
        Rewrite the stencil rows of `system` at `evaluation_point`.

        Must run after weak-form assembly and constraint application of the
        current Newton step. With assemble_matrix=False only the right-hand
        side entries are rewritten (line-search residuals).
        """
        stencils = self.stencils
        if not stencils:
            return self.report
        rows = self.rows
        if assemble_matrix:
            system.zero_rows(rows, diag=0.0)
            for s in stencils:
                system.set_row(s.row, s.columns, s.coefficients)
            system.finalize(matrix=True)
        u = np.asarray(evaluation_point)
        system.set_rhs(rows, np.array([s.residual(u) for s in stencils]))
        return self.report
