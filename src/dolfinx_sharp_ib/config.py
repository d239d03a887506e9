"""
Configuration dataclasses for dolfinx-sharp-ib.

Contains:
- Mesh parameters (box domain, simplex cells, Lagrange order)
- Flow parameters (flow case, viscosity, linearization flags)
- Immersed boundary parameters (circle or annulus)
- Newton / linear solver parameters

Physical preconditions are validated once, when the dataclass is built.
"""

from dataclasses import dataclass


CELL_TYPES = ("triangle", "tetrahedron")
LINEAR_SOLVERS = ("direct", "gmres")

# Floor on |u| inside tau (avoids division by zero at rest)
VELOCITY_FLOOR = 1e-12

# Smallest line-search damping factor tried by the Newton driver
ALPHA_MIN = 1e-3


@dataclass(frozen=True)
class MeshParams:
    """
    Background mesh parameters.

    cell_type: "triangle" (2D) or "tetrahedron" (3D)
    n: Cells per side of the box
    lower, upper: Box corners
    degree: Lagrange order of the equal-order velocity/pressure space
    refinements: Number of uniform doublings of n (CLI convergence sweeps)
    """

    n: int  # Cells per side
    lower: tuple = (0.0, 0.0)
    upper: tuple = (1.0, 1.0)
    cell_type: str = "triangle"
    degree: int = 1
    refinements: int = 1

    def __post_init__(self):
        if self.cell_type not in CELL_TYPES:
            raise ValueError(f"Unknown mesh.cell_type='{self.cell_type}'. Expected one of {CELL_TYPES}")
        dim = 2 if self.cell_type == "triangle" else 3
        if len(self.lower) != dim or len(self.upper) != dim:
            raise ValueError(f"mesh.lower/upper must have {dim} coordinates for {self.cell_type}")
        if any(hi <= lo for lo, hi in zip(self.lower, self.upper)):
            raise ValueError(f"mesh.upper must exceed mesh.lower, got {self.lower} / {self.upper}")
        if self.n < 1:
            raise ValueError(f"mesh.n must be >= 1, got {self.n}")
        if self.degree not in (1, 2):
            raise ValueError(f"mesh.degree must be 1 or 2, got {self.degree}")
        if self.refinements < 1:
            raise ValueError(f"mesh.refinements must be >= 1, got {self.refinements}")

    @property
    def dim(self) -> int:
        return len(self.lower)


@dataclass(frozen=True)
class FlowParams:
    """
    Flow parameters.

    case: Flow case name ("mms", "couette", "taylor_couette")
    viscosity: Kinematic viscosity (> 0)
    full_jacobian: Include the SUPG test-function cross term in the Jacobian.
        False gives a Picard-like linearization with the same residual.
    velocity_floor: Floor on |u| inside tau
    """

    case: str
    viscosity: float
    full_jacobian: bool = True
    velocity_floor: float = VELOCITY_FLOOR
    pressure_reference: tuple | None = None  # Point nearest the pinned pressure DOF (None = lower corner)

    def __post_init__(self):
        if not self.viscosity > 0.0:
            raise ValueError(f"flow.viscosity must be > 0, got {self.viscosity}")
        if not self.velocity_floor > 0.0:
            raise ValueError(f"flow.velocity_floor must be > 0, got {self.velocity_floor}")


@dataclass(frozen=True)
class ImmersedParams:
    """
    Embedded circular boundary (or annulus when radius_outer is set).

    center: Circle center
    radius: Inner (small) radius
    omega: Angular velocity of the inner wall
    radius_outer: Optional outer radius (annulus / Taylor-Couette)
    omega_outer: Angular velocity of the outer wall
    bridging: Second-order bridging stencil (experimental, default off)
    """

    radius: float
    center: tuple = (0.0, 0.0)
    omega: float = 1.0
    radius_outer: float | None = None
    omega_outer: float = 0.0
    enabled: bool = True
    bridging: bool = False

    def __post_init__(self):
        if not self.radius > 0.0:
            raise ValueError(f"immersed.radius must be > 0, got {self.radius}")
        if self.radius_outer is not None and not self.radius_outer > self.radius:
            raise ValueError(
                f"immersed.radius_outer must exceed radius, got {self.radius_outer} <= {self.radius}"
            )


@dataclass(frozen=True)
class NewtonParams:
    """
    Newton-Raphson driver and linear solver parameters.

    tol: Absolute tolerance on the residual L2 norm
    max_iter: Max Newton iterations (the first step counts)
    alpha_min: Line-search floor (damping factors 1, 1/2, ... while > alpha_min)
    linear_solver: "direct" (LU) or "gmres" (ILU-preconditioned GMRES)
    ksp_rtol: Relative tolerance of the iterative solver
    log_interval: Print every N Newton iterations
    out_dir: Output directory for results
    """

    tol: float = 1e-10
    max_iter: int = 20
    alpha_min: float = ALPHA_MIN
    linear_solver: str = "direct"
    ksp_rtol: float = 1e-12
    log_interval: int = 1
    out_dir: str = "results"

    def __post_init__(self):
        if self.linear_solver not in LINEAR_SOLVERS:
            raise ValueError(
                f"Unknown newton.linear_solver='{self.linear_solver}'. Expected one of {LINEAR_SOLVERS}"
            )
        if self.max_iter < 1:
            raise ValueError(f"newton.max_iter must be >= 1, got {self.max_iter}")
        if not 0.0 < self.alpha_min < 1.0:
            raise ValueError(f"newton.alpha_min must be in (0, 1), got {self.alpha_min}")
