"""
Basis evaluation on affine simplex cells with Basix.

The reference element is tabulated once at the quadrature points (values,
gradients and Hessians); physical data follows from the affine map
x = x0 + J X:

    grad phi = K^T grad_X phi,     hess phi = K^T hess_X phi K,    K = J^-1

so each cell only needs its inverse Jacobian and |det J|.
"""

import math

import basix
import numpy as np

from dolfinx_sharp_ib.assembler import CellValues


def _derivative_index(dim: int, *directions: int) -> int:
    alpha = [0] * dim
    for k in directions:
        alpha[k] += 1
    return basix.index(*alpha)


class BasisEvaluator:
    """
    Lagrange basis data per cell at quadrature points.

    Args:
        cell_geometry: (n_cells, d + 1, d) vertex coordinates
        cell_name: "triangle" or "tetrahedron"
        degree: Lagrange order
        quadrature_degree: Exactness degree of the rule (default 2*degree + 2)
    """

    def __init__(self, cell_geometry, cell_name: str, degree: int, quadrature_degree: int | None = None):
        self.cell_type = getattr(basix.CellType, cell_name)
        self.degree = degree
        self.element = basix.create_element(
            basix.ElementFamily.P, self.cell_type, degree, basix.LagrangeVariant.gll_warped
        )
        qdeg = quadrature_degree if quadrature_degree is not None else 2 * degree + 2
        self.ref_points, self.weights = basix.make_quadrature(self.cell_type, qdeg)

        geometry = np.asarray(cell_geometry, dtype=float)
        self.dim = geometry.shape[-1]
        d = self.dim

        tab = self.element.tabulate(2, self.ref_points)[..., 0]  # (nderiv, Q, n)
        self._values = tab[0]
        self._ref_gradients = np.stack([tab[_derivative_index(d, k)] for k in range(d)], axis=-1)
        self._ref_hessians = np.stack(
            [np.stack([tab[_derivative_index(d, k, l)] for l in range(d)], axis=-1) for k in range(d)],
            axis=-2,
        )

        self._origin = geometry[:, 0]
        self._J = np.transpose(geometry[:, 1:] - geometry[:, :1], (0, 2, 1))
        det = np.linalg.det(self._J)
        if np.any(det == 0.0):
            bad = np.flatnonzero(det == 0.0)
            raise ValueError(f"Zero-measure cells in mesh: {bad[:10].tolist()}")
        self._detJ = np.abs(det)
        self._K = np.linalg.inv(self._J)

    @property
    def n_cells(self) -> int:
        return self._J.shape[0]

    @property
    def n_nodes(self) -> int:
        return self._values.shape[1]

    def cell_measure(self, cells=None):
        cells = slice(None) if cells is None else cells
        return self._detJ[cells] / math.factorial(self.dim)

    def evaluate(self, cells) -> CellValues:
        """Physical basis data for a batch of cells."""
        cells = np.asarray(cells)
        K = self._K[cells]
        return CellValues(
            values=np.broadcast_to(self._values, (len(cells),) + self._values.shape),
            gradients=np.einsum("qak,ckj->cqaj", self._ref_gradients, K),
            laplacians=np.einsum("qakl,ckj,clj->cqa", self._ref_hessians, K, K),
            JxW=self.weights[None, :] * self._detJ[cells, None],
            points=self._origin[cells][:, None, :]
            + np.einsum("cik,qk->cqi", self._J[cells], self.ref_points),
            measure=self.cell_measure(cells),
        )

    def shape_values(self, reference_point):
        """All basis values of the reference element at one reference point."""
        X = np.asarray(reference_point, dtype=float).reshape(1, -1)
        return self.element.tabulate(0, X)[0, 0, :, 0]
