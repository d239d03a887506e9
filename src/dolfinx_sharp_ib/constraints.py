"""
Dirichlet constraint bookkeeping for the Newton iteration.

The first Newton step imposes the prescribed values through the update
(values g - u at the evaluation point); later steps use the homogeneous set
because the accepted solution already carries g.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ConstraintSet:
    """Constrained DOFs and the values their update rows are pinned to."""

    dofs: np.ndarray
    values: np.ndarray

    def apply(self, system, *, assemble_matrix: bool = True) -> None:
        """Replace constrained rows by identity rows with rhs = values."""
        if len(self.dofs) == 0:
            return
        if assemble_matrix:
            system.zero_rows(self.dofs, diag=1.0)
        system.set_rhs(self.dofs, self.values)


class Constraints:
    """
    Prescribed values g on a set of DOFs.

    Args:
        dofs: Global DOF indices (velocity walls and the pressure reference)
        values: Prescribed values, same length as dofs
    """

    def __init__(self, dofs, values):
        dofs = np.asarray(dofs, dtype=np.int64)
        values = np.asarray(values, dtype=float)
        if dofs.shape != values.shape:
            raise ValueError(f"Constraint dofs/values mismatch: {dofs.shape} vs {values.shape}")
        # Last prescription wins for repeated DOFs
        unique, index = np.unique(dofs[::-1], return_index=True)
        self.dofs = unique
        self.values = values[::-1][index]

    def __len__(self) -> int:
        return len(self.dofs)

    def __contains__(self, dof) -> bool:
        i = np.searchsorted(self.dofs, dof)
        return bool(i < len(self.dofs) and self.dofs[i] == dof)

    def active(self, initial_step: bool, evaluation_point) -> ConstraintSet:
        """Nonzero set (g - u) on the first step, homogeneous set afterwards."""
        if initial_step:
            values = self.values - np.asarray(evaluation_point)[self.dofs]
        else:
            values = np.zeros_like(self.values)
        return ConstraintSet(self.dofs, values)

    def distribute(self, vector):
        """Impose the prescribed values on `vector` in place and return it."""
        vector[self.dofs] = self.values
        return vector
