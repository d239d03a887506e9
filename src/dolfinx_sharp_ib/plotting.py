"""
Plotting utilities for dolfinx-sharp-ib.

Visualizes the mesh with its embedded circles, velocity fields, Newton
convergence history and mesh-refinement error curves. Inputs are plain numpy
data (CellMesh, nodal arrays) so plots can be made from saved results too.
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from dolfinx_sharp_ib.immersed import cut_cells
from dolfinx_sharp_ib.utils import read_history_csv


def _draw_circles(ax, boundaries):
    for boundary in boundaries:
        ax.add_patch(
            plt.Circle(boundary.center[:2], boundary.radius, fill=False, edgecolor="r", linewidth=1.0)
        )


def plot_mesh(mesh, boundaries=(), save_path: Path | None = None):
    """Plot the 2D mesh, the embedded circles and the cells they cut."""
    polys = mesh.cell_geometry[:, :, :2]
    cut = set()
    for boundary in boundaries:
        cut.update(cut_cells(mesh.node_coords, mesh.cell_nodes, boundary.center, boundary.radius).tolist())

    fig, ax = plt.subplots(figsize=(8, 8))
    for c, pts in enumerate(polys):
        ax.add_patch(
            plt.Polygon(pts, fill=c in cut, facecolor="tab:orange", edgecolor="k", linewidth=0.3, alpha=0.8)
        )
    _draw_circles(ax, boundaries)
    lo, hi = polys.reshape(-1, 2).min(axis=0), polys.reshape(-1, 2).max(axis=0)
    ax.set_xlim(lo[0], hi[0])
    ax.set_ylim(lo[1], hi[1])
    ax.set_aspect("equal")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_title(f"{mesh.n_cells} cells, {len(cut)} cut")
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=200, bbox_inches="tight")
        print(f"  Saved mesh plot: {save_path}")
    plt.close(fig)


def plot_velocity(mesh, velocity, boundaries=(), save_path: Path | None = None, n_levels: int = 32):
    """Velocity magnitude (tricontourf over the nodes) with the embedded circles."""
    x, y = mesh.node_coords[:, 0], mesh.node_coords[:, 1]
    speed = np.linalg.norm(velocity[:, :2], axis=1)
    vmin, vmax = float(np.min(speed)), float(np.max(speed))
    if vmax - vmin < 1e-15:
        vmax = vmin + 1e-10
    levels = np.linspace(vmin, vmax, n_levels)

    fig, ax = plt.subplots(figsize=(8, 7))
    tcf = ax.tricontourf(x, y, speed, levels=levels, cmap="viridis")
    _draw_circles(ax, boundaries)
    ax.set_aspect("equal")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_title("|u|")
    plt.colorbar(tcf, ax=ax, shrink=0.8)
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"  Saved velocity plot: {save_path}")
    plt.close(fig)


def plot_convergence(history_file: Path, save_path: Path | None = None):
    """Newton residual per iteration (log) with the accepted damping factor."""
    data = read_history_csv(history_file)
    iters = data["iter"]

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.semilogy(iters, data["residual"], "b-o", linewidth=1.2, markersize=3, label="residual")
    ax.set_xlabel("Newton iteration")
    ax.set_ylabel("Residual L2 (log)")
    ax.grid(True, alpha=0.3, which="both")

    ax2 = ax.twinx()
    ax2.plot(iters, data["alpha"], "k--", linewidth=0.8, alpha=0.6, label=r"$\alpha$")
    ax2.set_ylabel(r"$\alpha$")
    ax2.set_ylim(0.0, 1.05)

    lines1, labels1 = ax.get_legend_handles_labels()
    lines2, labels2 = ax2.get_legend_handles_labels()
    ax.legend(lines1 + lines2, labels1 + labels2, loc="upper right", fontsize=9)

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"  Saved convergence plot: {save_path}")
    plt.close(fig)


def plot_error_convergence(h, errors, order: float | None = None, save_path: Path | None = None):
    """L2 error against element size on log-log axes, with an optional reference slope."""
    h = np.asarray(h, dtype=float)
    errors = np.asarray(errors, dtype=float)

    fig, ax = plt.subplots(figsize=(6, 5))
    ax.loglog(h, errors, "b-o", label=r"$\|u_h - u\|_{L^2}$")
    if order is not None and len(h) > 0:
        ax.loglog(h, errors[0] * (h / h[0]) ** order, "k--", linewidth=0.8, label=f"O(h^{order:g})")
    ax.set_xlabel("h")
    ax.set_ylabel("L2 error")
    ax.grid(True, alpha=0.3, which="both")
    ax.legend(fontsize=9)

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"  Saved error plot: {save_path}")
    plt.close(fig)
