"""
Damped Newton-Raphson driver.

States: UNINITIALIZED -> FIRST_STEP -> ITERATING -> CONVERGED | MAX_ITER_REACHED

The first step imposes the nonzero Dirichlet values through the update and is
accepted without line search. Later steps use the homogeneous constraint set
and a backtracking line search over alpha = 1, 1/2, 1/4, ... (while alpha >
alpha_min). A line search that never lowers the residual keeps the smallest
alpha tried and carries on. Running out of iterations is a status, not an
error; linear solver failures propagate.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from dolfinx_sharp_ib.config import NewtonParams
from dolfinx_sharp_ib.utils import StepTablePrinter, fmt_sci


class LinearSolveError(RuntimeError):
    """The linear solver failed (singular or ill-conditioned system, divergence). Fatal for the run."""


class NewtonState(Enum):
    UNINITIALIZED = "uninitialized"
    FIRST_STEP = "first_step"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"


@dataclass
class NewtonResult:
    converged: bool
    state: NewtonState
    iterations: int
    residual: float
    solution: np.ndarray
    history: list = field(default_factory=list)


class NonlinearProblem(ABC):
    """
    What the driver needs from a discretized problem.

    The problem owns its linear system; every call below works on it and the
    driver only sees solution vectors and residual norms.
    """

    @abstractmethod
    def setup(self) -> np.ndarray:
        """Allocate system storage; return the initial solution vector."""

    @abstractmethod
    def assemble_system(self, evaluation_point, initial_step: bool) -> float:
        """Assemble matrix + rhs at evaluation_point (constraints and immersed rows included); return rhs norm."""

    @abstractmethod
    def assemble_residual(self, evaluation_point, initial_step: bool) -> float:
        """Assemble the rhs only at evaluation_point; return its norm."""

    @abstractmethod
    def solve_update(self) -> np.ndarray:
        """Solve the last assembled system for the Newton update."""

    @abstractmethod
    def distribute(self, vector) -> np.ndarray:
        """Impose the prescribed constraint values on vector (in place)."""


class NewtonSolver:
    """
    Args:
        problem: NonlinearProblem
        params: NewtonParams (tol, max_iter, alpha_min, log_interval)
        history: Optional HistoryWriterCSV (one row per residual evaluation)
        verbose: Print the iteration table
    """

    def __init__(self, problem: NonlinearProblem, params: NewtonParams, *, history=None, verbose: bool = True):
        self.problem = problem
        self.params = params
        self.history = history
        self.verbose = verbose
        self.state = NewtonState.UNINITIALIZED
        self._table = StepTablePrinter(
            [("iter", 5), ("alpha", 9), ("residual", 10), ("state", 12)], enabled=verbose
        )

    def _log(self, iteration: int, alpha: float, residual: float, residuals: list) -> None:
        residuals.append(residual)
        if self.history is not None:
            self.history.write(
                {"iter": iteration, "alpha": alpha, "residual": residual, "state": self.state.value}
            )
        if iteration % max(self.params.log_interval, 1) == 0 or iteration == 1:
            self._table.row([iteration, fmt_sci(alpha, prec=2), fmt_sci(residual, prec=3), self.state.value])

    def solve(self) -> NewtonResult:
        tol = self.params.tol
        alpha_min = self.params.alpha_min
        problem = self.problem
        residuals: list[float] = []

        self.state = NewtonState.FIRST_STEP
        present = np.array(problem.setup(), dtype=float)
        problem.assemble_system(present.copy(), initial_step=True)
        update = problem.solve_update()
        present = problem.distribute(present + update)
        residual = problem.assemble_residual(present.copy(), initial_step=False)
        iteration = 1
        self._log(iteration, 1.0, residual, residuals)
        previous = residual

        self.state = NewtonState.ITERATING
        while residual >= tol and iteration < self.params.max_iter:
            iteration += 1
            problem.assemble_system(present.copy(), initial_step=False)
            update = problem.solve_update()

            alpha = 1.0
            while True:
                candidate = problem.distribute(present + alpha * update)
                residual = problem.assemble_residual(candidate.copy(), initial_step=False)
                if residual < previous or alpha * 0.5 <= alpha_min:
                    break
                alpha *= 0.5
            if residual >= previous and self.verbose:
                print(
                    f"  WARNING: line search did not reduce the residual "
                    f"({fmt_sci(previous, prec=3)} -> {fmt_sci(residual, prec=3)}), accepting alpha={alpha:g}",
                    flush=True,
                )
            present = candidate
            previous = residual
            self._log(iteration, alpha, residual, residuals)

        converged = residual < tol
        self.state = NewtonState.CONVERGED if converged else NewtonState.MAX_ITER_REACHED
        if self.verbose:
            print(
                f"Newton {self.state.value}: {iteration} iterations, residual {fmt_sci(residual, prec=3)}",
                flush=True,
            )
        return NewtonResult(
            converged=converged,
            state=self.state,
            iterations=iteration,
            residual=residual,
            solution=present,
            history=residuals,
        )
