"""
Global linear system (PETSc) and the Newton-update linear solve.

The LinearSystem owns one sparse matrix and one right-hand side. It is passed
explicitly through weak-form assembly, constraint application, the
immersed-boundary row rewrite and the solve; nothing else keeps a reference.
"""

import numpy as np
import ufl
from petsc4py import PETSc

from dolfinx.fem import form
from dolfinx.fem.petsc import create_matrix

from dolfinx_sharp_ib.newton import LinearSolveError


class LinearSystem:
    """
    Sparse matrix + right-hand side over the DOFs of a blocked space V.

    The sparsity pattern is the cell-coupling pattern of V (DOLFINx mass-form
    pattern). Entries outside it may be inserted by the stencil builder.
    """

    def __init__(self, V):
        u, v = ufl.TrialFunction(V), ufl.TestFunction(V)
        self.A = create_matrix(form(ufl.inner(u, v) * ufl.dx))
        self.A.setOption(PETSc.Mat.Option.NEW_NONZERO_ALLOCATION_ERR, False)
        self.A.setOption(PETSc.Mat.Option.KEEP_NONZERO_PATTERN, True)
        self.b = self.A.createVecLeft()
        self.size = self.b.getSize()

    def zero(self, matrix: bool = True) -> None:
        if matrix:
            self.A.zeroEntries()
        self.b.zeroEntries()

    def add_local(self, dofs, A_local, b_local) -> None:
        """Add a batch of local systems; A_local may be None for residual-only assembly."""
        dofs = np.asarray(dofs, dtype=PETSc.IntType)
        add = PETSc.InsertMode.ADD_VALUES
        for k in range(dofs.shape[0]):
            if A_local is not None:
                self.A.setValues(dofs[k], dofs[k], A_local[k], addv=add)
            self.b.setValues(dofs[k], b_local[k], addv=add)

    def finalize(self, matrix: bool = True) -> None:
        if matrix:
            self.A.assemble()
        self.b.assemble()

    def zero_rows(self, rows, diag: float = 0.0) -> None:
        """Zero whole matrix rows (assembled matrix), putting `diag` on the diagonal."""
        self.A.zeroRows(np.asarray(rows, dtype=PETSc.IntType), diag=diag)

    def set_row(self, row: int, columns, values) -> None:
        """Insert entries of one row; call finalize() afterwards."""
        self.A.setValues(
            [row], np.asarray(columns, dtype=PETSc.IntType), np.asarray(values, dtype=float),
            addv=PETSc.InsertMode.INSERT_VALUES,
        )

    def set_rhs(self, rows, values) -> None:
        """Overwrite right-hand side entries (assembles the vector)."""
        self.b.setValues(
            np.asarray(rows, dtype=PETSc.IntType), np.asarray(values, dtype=float),
            addv=PETSc.InsertMode.INSERT_VALUES,
        )
        self.b.assemble()

    def rhs(self):
        return self.b.getArray(readonly=True).copy()

    def row(self, i: int):
        """(columns, values) of matrix row i."""
        cols, vals = self.A.getRow(i)
        return np.array(cols), np.array(vals)

    def get(self, i: int, j: int) -> float:
        return self.A.getValue(i, j)

    def residual_norm(self) -> float:
        return self.b.norm(PETSc.NormType.NORM_2)


class LinearSolver:
    """
    PETSc KSP for the Newton update.

    kind="direct": preonly + LU.  kind="gmres": GMRES + ILU.
    """

    def __init__(self, comm, kind: str = "direct", rtol: float = 1e-12, max_it: int = 10000):
        self.kind = kind
        self.ksp = PETSc.KSP().create(comm)
        pc = self.ksp.getPC()
        if kind == "direct":
            self.ksp.setType(PETSc.KSP.Type.PREONLY)
            pc.setType(PETSc.PC.Type.LU)
        elif kind == "gmres":
            self.ksp.setType(PETSc.KSP.Type.GMRES)
            pc.setType(PETSc.PC.Type.ILU)
            self.ksp.setTolerances(rtol=rtol, max_it=max_it)
        else:
            raise ValueError(f"Unknown linear solver '{kind}'. Expected 'direct' or 'gmres'")

    def solve(self, system: LinearSystem):
        """Solve A x = b; raises LinearSolveError when PETSc does not converge."""
        self.ksp.setOperators(system.A)
        x = system.A.createVecRight()
        try:
            self.ksp.solve(system.b, x)
        except PETSc.Error as exc:
            raise LinearSolveError(f"{self.kind} solve failed: {exc}") from exc
        reason = self.ksp.getConvergedReason()
        if reason <= 0:
            raise LinearSolveError(
                f"{self.kind} solve did not converge (KSP reason {reason}, "
                f"{self.ksp.getIterationNumber()} iterations)"
            )
        return x.getArray().copy()
