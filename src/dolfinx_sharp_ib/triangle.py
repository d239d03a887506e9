r"""
Element-constant P1 triangle variant of the GLS kernel and static condensation.

A linear triangle has constant physical gradients and zero Laplacians, so the
basis data is written in closed form and integrated with the fixed 4-point
Hammer rule. The kernel itself is the shared one from assembler.py.

The enriched macro element is a quadrilateral split into six triangles around
two interior nodes:

    v3 ------------ v2
    |  \          / |
    |   a ------ b  |
    |  /          \ |
    v0 ------------ v1

Nodes 0..3 are the corners and 4, 5 are a, b (3 DOFs each, 18 in total). The
six interior DOFs are statically condensed to give a 12x12 corner system.
"""

import numpy as np

from dolfinx_sharp_ib.assembler import CellValues, local_rhs, local_system
from dolfinx_sharp_ib.config import VELOCITY_FLOOR

# Hammer 4-point rule on the reference triangle (area 1/2), exact for cubics
HAMMER_POINTS = np.array(
    [
        [1.0 / 3.0, 1.0 / 3.0],
        [0.2, 0.2],
        [0.6, 0.2],
        [0.2, 0.6],
    ]
)
HAMMER_WEIGHTS = np.array([-27.0, 25.0, 25.0, 25.0]) / 96.0

_REF_GRADIENTS = np.array([[-1.0, -1.0], [1.0, 0.0], [0.0, 1.0]])

# Interior node positions in the bilinear map of the quad, (s, t) in [0, 1]^2
MACRO_INTERIOR = ((1.0 / 3.0, 0.5), (2.0 / 3.0, 0.5))
MACRO_TRIANGLES = np.array(
    [
        [0, 1, 4],
        [1, 5, 4],
        [1, 2, 5],
        [2, 3, 5],
        [3, 4, 5],
        [3, 0, 4],
    ]
)
MACRO_NODES = 6
MACRO_KEPT = 12


def p1_values(X):
    """P1 shape values at reference points X (..., 2) -> (..., 3)."""
    X = np.asarray(X, dtype=float)
    return np.stack([1.0 - X[..., 0] - X[..., 1], X[..., 0], X[..., 1]], axis=-1)


def triangle_values(vertices) -> CellValues:
    """Closed-form P1 basis data of one triangle at the Hammer points."""
    vertices = np.asarray(vertices, dtype=float)
    J = np.column_stack([vertices[1] - vertices[0], vertices[2] - vertices[0]])
    det = np.linalg.det(J)
    if det == 0.0:
        raise ValueError("Degenerate triangle (zero area)")
    K = np.linalg.inv(J)
    grads = _REF_GRADIENTS @ K
    n_q = len(HAMMER_WEIGHTS)
    return CellValues(
        values=p1_values(HAMMER_POINTS),
        gradients=np.broadcast_to(grads, (n_q, 3, 2)),
        laplacians=np.zeros((n_q, 3)),
        JxW=HAMMER_WEIGHTS * abs(det),
        points=vertices[0] + HAMMER_POINTS @ J.T,
        measure=np.asarray(0.5 * abs(det)),
    )


class P1TriangleBasis:
    """
    Batched closed-form P1 basis data over a triangle mesh (Hammer rule).

    Same interface as the Basix evaluator, usable without FEniCSx.

    Args:
        cell_geometry: (n_cells, 3, 2) vertex coordinates
    """

    degree = 1

    def __init__(self, cell_geometry):
        geometry = np.asarray(cell_geometry, dtype=float)
        if geometry.ndim != 3 or geometry.shape[1:] != (3, 2):
            raise ValueError(f"Expected (n_cells, 3, 2) triangle geometry, got {geometry.shape}")
        self.dim = 2
        self._origin = geometry[:, 0]
        self._J = np.transpose(geometry[:, 1:] - geometry[:, :1], (0, 2, 1))
        det = np.linalg.det(self._J)
        if np.any(det == 0.0):
            bad = np.flatnonzero(det == 0.0)
            raise ValueError(f"Zero-measure cells in mesh: {bad[:10].tolist()}")
        self._detJ = np.abs(det)
        self._gradients = np.einsum("ak,ckj->caj", _REF_GRADIENTS, np.linalg.inv(self._J))

    @property
    def n_cells(self) -> int:
        return self._J.shape[0]

    @property
    def n_nodes(self) -> int:
        return 3

    def cell_measure(self, cells=None):
        cells = slice(None) if cells is None else cells
        return 0.5 * self._detJ[cells]

    def evaluate(self, cells) -> CellValues:
        cells = np.asarray(cells)
        n_c, n_q = len(cells), len(HAMMER_WEIGHTS)
        return CellValues(
            values=np.broadcast_to(p1_values(HAMMER_POINTS), (n_c, n_q, 3)),
            gradients=np.broadcast_to(self._gradients[cells][:, None], (n_c, n_q, 3, 2)),
            laplacians=np.zeros((n_c, n_q, 3)),
            JxW=HAMMER_WEIGHTS[None, :] * self._detJ[cells, None],
            points=self._origin[cells][:, None, :]
            + np.einsum("cik,qk->cqi", self._J[cells], HAMMER_POINTS),
            measure=self.cell_measure(cells),
        )

    def shape_values(self, reference_point):
        return p1_values(reference_point)


def triangle_local_system(
    vertices,
    state_local,
    force,
    viscosity: float,
    *,
    full_jacobian: bool = True,
    velocity_floor: float = VELOCITY_FLOOR,
):
    """
    9x9 local system of a P1/P1 triangle.

    Args:
        vertices: (3, 2) vertex coordinates
        state_local: (3, 3) nodal (u, v, p) of the evaluation point
        force: Callable x (..., 2) -> f (..., 2)
        viscosity: Kinematic viscosity
    """
    cv = triangle_values(vertices)
    return local_system(
        cv, state_local, force(cv.points), viscosity,
        full_jacobian=full_jacobian, velocity_floor=velocity_floor,
    )


def macro_nodes(corners):
    """Six node coordinates of the macro element from its four corners (counter-clockwise)."""
    corners = np.asarray(corners, dtype=float)
    interior = []
    for s, t in MACRO_INTERIOR:
        interior.append(
            (1 - s) * (1 - t) * corners[0]
            + s * (1 - t) * corners[1]
            + s * t * corners[2]
            + (1 - s) * t * corners[3]
        )
    return np.vstack([corners, np.array(interior)])


def macro_local_system(corners, state_local, force, viscosity: float, **kwargs):
    """
    18x18 system of the enriched macro element, assembled from its six triangles.

    Args:
        corners: (4, 2) quad corners, counter-clockwise
        state_local: (6, 3) nodal (u, v, p) at corners then interior nodes
        force: Callable x (..., 2) -> f (..., 2)
    """
    nodes = macro_nodes(corners)
    state_local = np.asarray(state_local, dtype=float)
    size = 3 * MACRO_NODES
    A = np.zeros((size, size))
    b = np.zeros(size)
    for tri in MACRO_TRIANGLES:
        A_t, b_t = triangle_local_system(nodes[tri], state_local[tri], force, viscosity, **kwargs)
        dofs = (3 * tri[:, None] + np.arange(3)).ravel()
        A[np.ix_(dofs, dofs)] += A_t
        b[dofs] += b_t
    return A, b


def macro_local_rhs(corners, state_local, force, viscosity: float, *, velocity_floor: float = VELOCITY_FLOOR):
    """18-entry residual of the macro element (line-search evaluations)."""
    nodes = macro_nodes(corners)
    state_local = np.asarray(state_local, dtype=float)
    b = np.zeros(3 * MACRO_NODES)
    for tri in MACRO_TRIANGLES:
        cv = triangle_values(nodes[tri])
        b_t = local_rhs(cv, state_local[tri], force(cv.points), viscosity, velocity_floor=velocity_floor)
        b[(3 * tri[:, None] + np.arange(3)).ravel()] += b_t
    return b


def _eliminate(A, b, n_keep):
    """Eliminate unknowns n-1 .. n_keep on copies of (A, b)."""
    A = np.array(A, dtype=float)
    b = np.array(b, dtype=float)
    n = A.shape[0]
    if A.shape != (n, n) or b.shape != (n,):
        raise ValueError(f"Expected a square system, got {A.shape} and {b.shape}")
    for k in range(n - 1, n_keep - 1, -1):
        pivot = A[k, k]
        if pivot == 0.0:
            raise ValueError(f"Zero pivot while condensing row {k}")
        factors = A[:k, k] / pivot
        A[:k, :k] -= np.outer(factors, A[k, :k])
        b[:k] -= factors * b[k]
    return A, b


def condense(A, b, n_keep: int = MACRO_KEPT):
    """
    Static condensation of the trailing unknowns.

    Rows/columns are eliminated from the last one down to `n_keep`; each
    eliminated row's diagonal is its pivot and its contribution is removed
    from every row above it and from the right-hand side. The result is the
    exact Schur complement system on the first `n_keep` unknowns.

    Returns:
        (A_kept, b_kept) of shape (n_keep, n_keep) and (n_keep,)
    """
    A, b = _eliminate(A, b, n_keep)
    return A[:n_keep, :n_keep].copy(), b[:n_keep].copy()


def recover_interior(A, b, kept_solution):
    """Back-substitute the condensed unknowns given the solution of the kept block."""
    n_keep = len(kept_solution)
    A, b = _eliminate(A, b, n_keep)
    x = np.zeros(A.shape[0])
    x[:n_keep] = kept_solution
    # After elimination row k only couples to columns <= k
    for k in range(n_keep, len(x)):
        x[k] = (b[k] - A[k, :k] @ x[:k]) / A[k, k]
    return x
