"""
Steady Navier-Stokes problem with sharp-edge immersed boundaries.

Wires the DOLFINx mesh and blocked P_k/P_k space, the GLS assembler, the
constraint handler, the immersed-boundary builder and the PETSc solve into a
NonlinearProblem for the Newton driver.

Per Newton assembly:
    weak form -> constraint rows -> immersed-boundary rows -> (solve)
"""

from pathlib import Path

import numpy as np

from dolfinx_sharp_ib.assembler import DofLayout, GlobalAssembler
from dolfinx_sharp_ib.basis import BasisEvaluator
from dolfinx_sharp_ib.cases import FlowCase
from dolfinx_sharp_ib.config import FlowParams, MeshParams, NewtonParams
from dolfinx_sharp_ib.constraints import Constraints
from dolfinx_sharp_ib.geometry import cell_mesh_from_space, create_flow_space, wall_nodes
from dolfinx_sharp_ib.immersed import SharpEdgeBuilder
from dolfinx_sharp_ib.linear_system import LinearSolver, LinearSystem
from dolfinx_sharp_ib.newton import NewtonResult, NewtonSolver, NonlinearProblem
from dolfinx_sharp_ib.utils import HistoryWriterCSV


class SteadyNavierStokesProblem(NonlinearProblem):
    """
    Args:
        domain: DOLFINx simplex mesh (serial)
        case: FlowCase (force, wall velocity, embedded boundaries)
        flow: FlowParams (viscosity, linearization flag, tau floor)
        degree: Lagrange order of velocity and pressure
        linear_solver: "direct" or "gmres"
        ksp_rtol: Relative tolerance of the iterative solver
        bridging: Pressure bridging rows on cut cells
        verbose: Print progress and warnings
    """

    def __init__(
        self,
        domain,
        case: FlowCase,
        flow: FlowParams,
        *,
        degree: int = 1,
        linear_solver: str = "direct",
        ksp_rtol: float = 1e-12,
        bridging: bool = False,
        verbose: bool = True,
    ):
        self.domain = domain
        self.case = case
        self.flow = flow
        self.verbose = verbose
        self.comm = domain.comm

        self.V = create_flow_space(domain, degree)
        self.dim = domain.geometry.dim
        self.layout = DofLayout(self.dim)
        self.mesh = cell_mesh_from_space(self.V)
        self.n_dofs = self.mesh.n_nodes * self.layout.block_size

        self.basis = BasisEvaluator(self.mesh.cell_geometry, domain.topology.cell_type.name, degree)
        self.assembler = GlobalAssembler(
            self.basis,
            self.layout,
            self.mesh.cell_nodes,
            case.force,
            flow.viscosity,
            full_jacobian=flow.full_jacobian,
            velocity_floor=flow.velocity_floor,
        )
        self.constraints = self._build_constraints()
        self.immersed = SharpEdgeBuilder(
            self.mesh,
            self.layout,
            self.basis.shape_values,
            case.boundaries,
            constrained=self.constraints.dofs,
            bridging=bridging,
            verbose=verbose,
        )
        self.solver = LinearSolver(self.comm, linear_solver, rtol=ksp_rtol)
        self.system = None

        if verbose and self.comm.rank == 0:
            print(f"Space: P{degree}/P{degree}, {self.mesh.n_cells} cells, {self.n_dofs} DOFs", flush=True)
            print(f"Constrained DOFs: {len(self.constraints)}", flush=True)

    def _build_constraints(self) -> Constraints:
        """Wall velocity on the box boundary plus one pinned pressure DOF."""
        d = self.dim
        nodes = wall_nodes(self.V)
        g = self.case.wall_velocity(self.mesh.node_coords[nodes])
        dofs = [self.layout.component_offset(nodes, c) for c in range(d)]
        values = [g[:, c] for c in range(d)]

        reference = self.flow.pressure_reference
        if reference is None:
            reference = self.mesh.node_coords.min(axis=0)
        p_node = self.mesh.nearest_node(reference)
        p_value = 0.0
        if self.case.exact_pressure is not None:
            p_value = float(self.case.exact_pressure(self.mesh.node_coords[p_node][None, :])[0])
        dofs.append(np.array([self.layout.component_offset(p_node, self.layout.pressure)]))
        values.append(np.array([p_value]))
        return Constraints(np.concatenate(dofs), np.concatenate(values))

    # NonlinearProblem interface

    def setup(self):
        self.system = LinearSystem(self.V)
        stencils = self.immersed.stencils
        report = self.immersed.report
        if self.verbose and self.comm.rank == 0 and self.case.boundaries:
            print(
                f"Immersed rows: {len(stencils)} rows ({report.stencils} stencils, {report.pinned} pinned), "
                f"{len(report.skipped_rows)} skipped, cut cells {report.cut_cells}",
                flush=True,
            )
        return np.zeros(self.n_dofs)

    def _assemble(self, evaluation_point, initial_step: bool, assemble_matrix: bool) -> float:
        self.assembler.assemble(self.system, evaluation_point, assemble_matrix=assemble_matrix)
        self.constraints.active(initial_step, evaluation_point).apply(self.system, assemble_matrix=assemble_matrix)
        self.immersed.apply(self.system, evaluation_point, assemble_matrix=assemble_matrix)
        return self.system.residual_norm()

    def assemble_system(self, evaluation_point, initial_step: bool) -> float:
        return self._assemble(evaluation_point, initial_step, True)

    def assemble_residual(self, evaluation_point, initial_step: bool) -> float:
        return self._assemble(evaluation_point, initial_step, False)

    def solve_update(self):
        return self.solver.solve(self.system)

    def distribute(self, vector):
        return self.constraints.distribute(vector)

    # Field access

    def velocity(self, solution):
        """Nodal velocity (n_nodes, d)."""
        return np.asarray(solution).reshape(-1, self.layout.block_size)[:, : self.dim]

    def pressure(self, solution):
        return np.asarray(solution).reshape(-1, self.layout.block_size)[:, self.dim]


def solve_steady(
    domain,
    case: FlowCase,
    flow: FlowParams,
    newton: NewtonParams,
    *,
    mesh_params: MeshParams | None = None,
    bridging: bool = False,
    history_csv: Path | None = None,
    verbose: bool = True,
):
    """
    Build the problem and run Newton.

    Returns:
        (problem, NewtonResult)
    """
    degree = mesh_params.degree if mesh_params is not None else 1
    problem = SteadyNavierStokesProblem(
        domain,
        case,
        flow,
        degree=degree,
        linear_solver=newton.linear_solver,
        ksp_rtol=newton.ksp_rtol,
        bridging=bridging,
        verbose=verbose,
    )
    history = None
    if history_csv is not None:
        history = HistoryWriterCSV(Path(history_csv), ["iter", "alpha", "residual", "state"])
    try:
        result: NewtonResult = NewtonSolver(problem, newton, history=history, verbose=verbose).solve()
    finally:
        if history is not None:
            history.close()
    return problem, result
