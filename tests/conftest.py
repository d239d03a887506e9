"""
Shared numpy-only fixtures: structured P1 triangle meshes, a dense stand-in
for the PETSc linear system and a dense steady Navier-Stokes problem.
"""

import numpy as np
import pytest

from dolfinx_sharp_ib.assembler import DofLayout, GlobalAssembler
from dolfinx_sharp_ib.constraints import Constraints
from dolfinx_sharp_ib.immersed import SharpEdgeBuilder
from dolfinx_sharp_ib.newton import LinearSolveError, NonlinearProblem
from dolfinx_sharp_ib.topology import CellMesh
from dolfinx_sharp_ib.triangle import P1TriangleBasis


def structured_mesh(n: int, lower=(0.0, 0.0), upper=(1.0, 1.0)) -> CellMesh:
    """n x n squares, each split along its diagonal into two counter-clockwise triangles."""
    xs = np.linspace(lower[0], upper[0], n + 1)
    ys = np.linspace(lower[1], upper[1], n + 1)
    X, Y = np.meshgrid(xs, ys, indexing="xy")
    coords = np.column_stack([X.ravel(), Y.ravel()])

    cells = []
    for j in range(n):
        for i in range(n):
            v00 = j * (n + 1) + i
            v10, v01, v11 = v00 + 1, v00 + n + 1, v00 + n + 2
            cells.append([v00, v10, v11])
            cells.append([v00, v11, v01])
    cells = np.array(cells)
    return CellMesh(coords, cells, cells, coords[cells])


class DenseSystem:
    """numpy matrix + rhs with the LinearSystem interface."""

    def __init__(self, size: int):
        self.A = np.zeros((size, size))
        self.b = np.zeros(size)
        self.size = size

    def zero(self, matrix=True):
        if matrix:
            self.A[:] = 0.0
        self.b[:] = 0.0

    def add_local(self, dofs, A_local, b_local):
        for k in range(dofs.shape[0]):
            if A_local is not None:
                self.A[np.ix_(dofs[k], dofs[k])] += A_local[k]
            self.b[dofs[k]] += b_local[k]

    def finalize(self, matrix=True):
        pass

    def zero_rows(self, rows, diag=0.0):
        rows = np.asarray(rows)
        self.A[rows] = 0.0
        self.A[rows, rows] = diag

    def set_row(self, row, columns, values):
        self.A[row, np.asarray(columns)] = values

    def set_rhs(self, rows, values):
        self.b[np.asarray(rows)] = values

    def rhs(self):
        return self.b.copy()

    def residual_norm(self):
        return float(np.linalg.norm(self.b))


def wall_nodes(mesh: CellMesh):
    lo, hi = mesh.node_coords.min(axis=0), mesh.node_coords.max(axis=0)
    on_wall = np.any(np.isclose(mesh.node_coords, lo) | np.isclose(mesh.node_coords, hi), axis=1)
    return np.flatnonzero(on_wall)


class DenseProblem(NonlinearProblem):
    """Steady P1/P1 Navier-Stokes on a CellMesh, solved with numpy.linalg."""

    def __init__(self, mesh: CellMesh, case, viscosity: float, *, full_jacobian=True, pressure_value=0.0):
        self.mesh = mesh
        self.case = case
        self.layout = DofLayout(2)
        self.basis = P1TriangleBasis(mesh.cell_geometry)
        self.n_dofs = mesh.n_nodes * self.layout.block_size
        self.assembler = GlobalAssembler(
            self.basis, self.layout, mesh.cell_nodes, case.force, viscosity, full_jacobian=full_jacobian
        )
        nodes = wall_nodes(mesh)
        g = case.wall_velocity(mesh.node_coords[nodes])
        p_node = mesh.nearest_node(mesh.node_coords.min(axis=0))
        dofs = np.concatenate(
            [self.layout.component_offset(nodes, 0), self.layout.component_offset(nodes, 1),
             [self.layout.component_offset(p_node, 2)]]
        )
        values = np.concatenate([g[:, 0], g[:, 1], [pressure_value]])
        self.constraints = Constraints(dofs, values)
        self.immersed = SharpEdgeBuilder(
            mesh, self.layout, self.basis.shape_values, case.boundaries,
            constrained=self.constraints.dofs, verbose=False,
        )
        self.system = DenseSystem(self.n_dofs)

    def setup(self):
        return np.zeros(self.n_dofs)

    def _assemble(self, evaluation_point, initial_step, assemble_matrix):
        self.assembler.assemble(self.system, evaluation_point, assemble_matrix=assemble_matrix)
        self.constraints.active(initial_step, evaluation_point).apply(self.system, assemble_matrix=assemble_matrix)
        self.immersed.apply(self.system, evaluation_point, assemble_matrix=assemble_matrix)
        return self.system.residual_norm()

    def assemble_system(self, evaluation_point, initial_step):
        return self._assemble(evaluation_point, initial_step, True)

    def assemble_residual(self, evaluation_point, initial_step):
        return self._assemble(evaluation_point, initial_step, False)

    def solve_update(self):
        try:
            return np.linalg.solve(self.system.A, self.system.b)
        except np.linalg.LinAlgError as exc:
            raise LinearSolveError(str(exc)) from exc

    def distribute(self, vector):
        return self.constraints.distribute(vector)

    def velocity_at(self, solution, point):
        """P1 interpolation of the velocity at a physical point."""
        location = self.mesh.locate(point, range(self.mesh.n_cells))
        assert location.found
        nodes = self.mesh.cell_nodes[location.cell]
        weights = self.basis.shape_values(location.reference_coordinates)
        return weights @ solution.reshape(-1, 3)[nodes, :2]


@pytest.fixture
def make_mesh():
    return structured_mesh


@pytest.fixture
def make_system():
    return DenseSystem


@pytest.fixture
def make_problem():
    return DenseProblem
