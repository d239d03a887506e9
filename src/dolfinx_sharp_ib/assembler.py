"""
GLS/SUPG/PSPG weak-form assembler for steady incompressible Navier-Stokes.

Residual (strong form) at a quadrature point:

    R(u, p) = (grad u) u + grad p - nu lap u - f,    div u = 0

The local kernels work on numpy arrays only and accept either one cell or a
batch of cells (leading axes are carried through with `...`). Local DOFs are
node-major: all components of node 0, then node 1, ... (see DofLayout).

Shapes (Q quadrature points, n nodes per cell, d spatial dimension):
    CellValues.values      (..., Q, n)
    CellValues.gradients   (..., Q, n, d)
    CellValues.laplacians  (..., Q, n)
    CellValues.JxW         (..., Q)
    state_local            (..., n, d + 1)
"""

from dataclasses import dataclass

import numpy as np

from dolfinx_sharp_ib.config import VELOCITY_FLOOR
from dolfinx_sharp_ib.stabilization import element_size, tau


@dataclass(frozen=True)
class DofLayout:
    """Node-major interleaving of d velocity components and one pressure per node."""

    dim: int

    @property
    def block_size(self) -> int:
        return self.dim + 1

    @property
    def pressure(self) -> int:
        return self.dim

    def component_offset(self, node, component):
        """Global (or cell-local) DOF index of `component` at `node`."""
        return np.asarray(node) * self.block_size + component

    def node_of(self, dof):
        return np.asarray(dof) // self.block_size

    def component_of(self, dof):
        return np.asarray(dof) % self.block_size

    def cell_dofs(self, cell_nodes):
        """Expand node indices (..., n) to interleaved DOF indices (..., n * (d + 1))."""
        cell_nodes = np.asarray(cell_nodes)
        comps = np.arange(self.block_size)
        dofs = self.component_offset(cell_nodes[..., None], comps)
        return dofs.reshape(cell_nodes.shape[:-1] + (-1,))


@dataclass(frozen=True)
class CellValues:
    """Physical basis data on a cell (or batch of cells) at quadrature points."""

    values: np.ndarray
    gradients: np.ndarray
    laplacians: np.ndarray
    JxW: np.ndarray
    points: np.ndarray
    measure: np.ndarray

    @property
    def dim(self) -> int:
        return self.gradients.shape[-1]

    @property
    def n_nodes(self) -> int:
        return self.values.shape[-1]


@dataclass(frozen=True)
class QuadratureState:
    """Evaluation-point fields interpolated at quadrature points."""

    velocity: np.ndarray  # (..., Q, d)
    velocity_gradient: np.ndarray  # (..., Q, d, d), [i, j] = du_i/dx_j
    velocity_laplacian: np.ndarray  # (..., Q, d)
    pressure: np.ndarray  # (..., Q)
    pressure_gradient: np.ndarray  # (..., Q, d)

    @property
    def divergence(self):
        return np.trace(self.velocity_gradient, axis1=-2, axis2=-1)

    @property
    def convection(self):
        return np.einsum("...qij,...qj->...qi", self.velocity_gradient, self.velocity)


def interpolate_state(cv: CellValues, state_local) -> QuadratureState:
    """Interpolate local nodal values (..., n, d + 1) to the quadrature points."""
    d = cv.dim
    state_local = np.asarray(state_local, dtype=float)
    if state_local.shape[-2:] != (cv.n_nodes, d + 1):
        raise ValueError(
            f"Local state must have trailing shape {(cv.n_nodes, d + 1)}, got {state_local.shape}"
        )
    su = state_local[..., :d]
    sp = state_local[..., d]
    return QuadratureState(
        velocity=np.einsum("...qa,...ai->...qi", cv.values, su),
        velocity_gradient=np.einsum("...qaj,...ai->...qij", cv.gradients, su),
        velocity_laplacian=np.einsum("...qa,...ai->...qi", cv.laplacians, su),
        pressure=np.einsum("...qa,...a->...q", cv.values, sp),
        pressure_gradient=np.einsum("...qaj,...a->...qj", cv.gradients, sp),
    )


def strong_residual(state: QuadratureState, force, viscosity: float):
    """Point-wise momentum residual (grad u) u + grad p - nu lap u - f."""
    return (
        state.convection
        + state.pressure_gradient
        - viscosity * state.velocity_laplacian
        - np.asarray(force, dtype=float)
    )


def _stabilization(cv: CellValues, state: QuadratureState, viscosity, velocity_floor):
    h = element_size(cv.measure, cv.dim)
    speed = np.linalg.norm(state.velocity, axis=-1)
    return tau(speed, np.asarray(h)[..., None], viscosity, floor=velocity_floor)


def local_rhs(cv: CellValues, state_local, force, viscosity: float, *, velocity_floor: float = VELOCITY_FLOOR):
    """
    Local right-hand side b = -R(u, p) tested against Galerkin, PSPG and SUPG weights.

    Returns:
        b_local of shape (..., n * (d + 1))
    """
    d = cv.dim
    state = interpolate_state(cv, state_local)
    r = strong_residual(state, force, viscosity)
    t = _stabilization(cv, state, viscosity, velocity_floor)

    N, dN, w = cv.values, cv.gradients, cv.JxW
    wt = w * t
    adv = np.einsum("...qk,...qbk->...qb", state.velocity, dN)  # u . grad(N_b)

    b = np.zeros(np.shape(w)[:-1] + (cv.n_nodes, d + 1))
    b[..., :d] = (
        -viscosity * np.einsum("...q,...qek,...qak->...ae", w, state.velocity_gradient, dN)
        - np.einsum("...q,...qe,...qa->...ae", w, state.convection - force, N)
        + np.einsum("...q,...q,...qae->...ae", w, state.pressure, dN)
        - np.einsum("...q,...qe,...qa->...ae", wt, r, adv)  # SUPG
    )
    b[..., d] = (
        -np.einsum("...q,...q,...qa->...a", w, state.divergence, N)
        - np.einsum("...q,...qk,...qak->...a", wt, r, dN)  # PSPG
    )
    return b.reshape(b.shape[:-2] + (-1,))


def local_matrix(
    cv: CellValues,
    state_local,
    force,
    viscosity: float,
    *,
    full_jacobian: bool = True,
    velocity_floor: float = VELOCITY_FLOOR,
):
    """
    Local Newton matrix dR/dU at the evaluation point.

    With full_jacobian=False the SUPG cross term tau R . (grad(phi_i) phi_j),
    which comes from the test function's dependence on u, is dropped. The
    residual is unchanged so both settings converge to the same solution.

    Returns:
        A_local of shape (..., n * (d + 1), n * (d + 1))
    """
    d = cv.dim
    n = cv.n_nodes
    state = interpolate_state(cv, state_local)
    t = _stabilization(cv, state, viscosity, velocity_floor)

    N, dN, lapN, w = cv.values, cv.gradients, cv.laplacians, cv.JxW
    G = state.velocity_gradient
    wt = w * t
    adv = np.einsum("...qk,...qbk->...qb", state.velocity, dN)
    # Galerkin + SUPG test weight for the momentum rows
    test_u = N + t[..., None] * adv
    trial_lap = adv - viscosity * lapN

    A = np.zeros(np.shape(w)[:-1] + (n, d + 1, n, d + 1))

    diag = (
        viscosity * np.einsum("...q,...qak,...qbk->...ab", w, dN, dN)
        + np.einsum("...q,...qa,...qb->...ab", w, test_u, adv)
        - viscosity * np.einsum("...q,...qa,...qb->...ab", wt, adv, lapN)
    )
    for e in range(d):
        A[..., :, e, :, e] += diag

    # (grad u) phi_j, Galerkin and SUPG
    A[..., :, :d, :, :d] += np.einsum("...q,...qa,...qec,...qb->...aebc", w, test_u, G, N)
    if full_jacobian:
        r = strong_residual(state, force, viscosity)
        A[..., :, :d, :, :d] += np.einsum("...q,...qe,...qac,...qb->...aebc", wt, r, dN, N)

    # Pressure columns of the momentum rows
    A[..., :, :d, :, d] += np.einsum("...q,...qae,...qb->...aeb", -w, dN, N)
    A[..., :, :d, :, d] += np.einsum("...q,...qa,...qbe->...aeb", wt, adv, dN)

    # Continuity rows: Galerkin div + PSPG
    A[..., :, d, :, :d] += np.einsum("...q,...qa,...qbc->...abc", w, N, dN)
    A[..., :, d, :, :d] += np.einsum("...q,...qkc,...qak,...qb->...abc", wt, G, dN, N)
    A[..., :, d, :, :d] += np.einsum("...q,...qac,...qb->...abc", wt, dN, trial_lap)
    A[..., :, d, :, d] += np.einsum("...q,...qak,...qbk->...ab", wt, dN, dN)

    size = n * (d + 1)
    return A.reshape(A.shape[:-4] + (size, size))


def local_system(
    cv: CellValues,
    state_local,
    force,
    viscosity: float,
    *,
    full_jacobian: bool = True,
    velocity_floor: float = VELOCITY_FLOOR,
):
    """Local (A_local, b_local) for one cell or a batch of cells."""
    A = local_matrix(
        cv, state_local, force, viscosity,
        full_jacobian=full_jacobian, velocity_floor=velocity_floor,
    )
    b = local_rhs(cv, state_local, force, viscosity, velocity_floor=velocity_floor)
    return A, b


class GlobalAssembler:
    """
    Cell loop scattering local systems into a global system.

    The basis evaluator must provide `n_cells` and `evaluate(cells)` returning
    CellValues for a batch of cells; `system` must provide `add_local(dofs, A, b)`
    and `finalize()`. Cell data is geometric and is evaluated once.

    Args:
        basis: Basis evaluator for the mesh
        layout: DofLayout of the blocked velocity/pressure space
        cell_nodes: (n_cells, n) node indices per cell
        force: Callable x (..., d) -> f (..., d)
        viscosity: Kinematic viscosity
        full_jacobian: Linearization completeness flag (see local_matrix)
        velocity_floor: Floor on |u| inside tau
        batch_size: Cells per vectorized kernel call
    """

    def __init__(
        self,
        basis,
        layout: DofLayout,
        cell_nodes,
        force,
        viscosity: float,
        *,
        full_jacobian: bool = True,
        velocity_floor: float = VELOCITY_FLOOR,
        batch_size: int = 2048,
    ):
        self.basis = basis
        self.layout = layout
        self.cell_nodes = np.asarray(cell_nodes)
        self.cell_dofs = layout.cell_dofs(self.cell_nodes)
        self.force = force
        self.viscosity = viscosity
        self.full_jacobian = full_jacobian
        self.velocity_floor = velocity_floor
        self.batch_size = batch_size
        self._batches = None

    def _cell_batches(self):
        if self._batches is None:
            n_cells = self.cell_nodes.shape[0]
            self._batches = []
            for start in range(0, n_cells, self.batch_size):
                cells = np.arange(start, min(start + self.batch_size, n_cells))
                cv = self.basis.evaluate(cells)
                self._batches.append((cells, cv, self.force(cv.points)))
        return self._batches

    def assemble(self, system, evaluation_point, *, assemble_matrix: bool = True) -> None:
        """Zero `system` and assemble the weak form at `evaluation_point`."""
        system.zero(matrix=assemble_matrix)
        d = self.layout.dim
        for cells, cv, f in self._cell_batches():
            dofs = self.cell_dofs[cells]
            state_local = evaluation_point[dofs].reshape(len(cells), -1, d + 1)
            b = local_rhs(cv, state_local, f, self.viscosity, velocity_floor=self.velocity_floor)
            A = None
            if assemble_matrix:
                A = local_matrix(
                    cv, state_local, f, self.viscosity,
                    full_jacobian=self.full_jacobian, velocity_floor=self.velocity_floor,
                )
            system.add_local(dofs, A, b)
        system.finalize(matrix=assemble_matrix)
