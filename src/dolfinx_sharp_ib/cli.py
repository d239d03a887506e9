"""
Command-line interface for dolfinx-sharp-ib.

Usage:
    dolfinx-sharp-ib config.json
    dolfinx-sharp-ib --print-only config.json
"""

import argparse
import sys
from pathlib import Path

import numpy as np
from mpi4py import MPI

from dolfinx_sharp_ib.cases import create_case, taylor_couette_torque
from dolfinx_sharp_ib.config import FlowParams, ImmersedParams, MeshParams, NewtonParams
from dolfinx_sharp_ib.geometry import create_box_mesh
from dolfinx_sharp_ib.plotting import plot_convergence, plot_error_convergence, plot_mesh, plot_velocity
from dolfinx_sharp_ib.postprocess import (
    immersed_torque,
    l2_velocity_error,
    min_element_size,
    tangential_velocity,
)
from dolfinx_sharp_ib.solver import solve_steady
from dolfinx_sharp_ib.utils import (
    dc_from_dict,
    load_json_config,
    prepare_case_dir,
    print_dc_json,
    write_json,
)


def _parse_config(cfg: dict):
    mesh_params = dc_from_dict(MeshParams, cfg.get("mesh"), name="mesh")
    flow = dc_from_dict(FlowParams, cfg.get("flow"), name="flow")
    newton = dc_from_dict(NewtonParams, cfg.get("newton"), name="newton")
    immersed = None
    if cfg.get("immersed") is not None:
        immersed = dc_from_dict(ImmersedParams, cfg["immersed"], name="immersed")
    return mesh_params, flow, newton, immersed


def _annulus_mask(immersed: ImmersedParams):
    center = np.asarray(immersed.center, dtype=float)

    def mask(x):
        r = np.linalg.norm(x[..., :2] - center[:2], axis=-1)
        return (r >= immersed.radius) & (r <= immersed.radius_outer)

    return mask


def _run_level(n, mesh_params, flow, newton, immersed, case, paths, level):
    """Solve one refinement level; returns a dict of scalar diagnostics."""
    domain = create_box_mesh(mesh_params, n=n)
    history_csv = paths.level_file("history", n, ".csv")
    problem, result = solve_steady(
        domain, case, flow, newton,
        mesh_params=mesh_params,
        bridging=immersed.bridging if immersed is not None else False,
        history_csv=history_csv,
    )

    h = min_element_size(problem)
    row = {
        "n": n,
        "h": h,
        "dofs": problem.n_dofs,
        "converged": result.converged,
        "iterations": result.iterations,
        "residual": result.residual,
        "skipped_rows": len(problem.immersed.report.skipped_rows),
    }

    if case.exact_velocity is not None:
        mask = _annulus_mask(immersed) if case.name == "taylor_couette" else None
        row["l2_error"] = l2_velocity_error(problem, result.solution, case.exact_velocity, mask=mask)
        print(f"  L2 velocity error: {row['l2_error']:.4e}", flush=True)

    for boundary in case.boundaries:
        u_t = tangential_velocity(problem, result.solution, boundary.center, boundary.radius + h)
        row[f"u_theta_{boundary.name}"] = float(np.nanmean(u_t))
        row[f"torque_{boundary.name}"] = immersed_torque(problem, result.solution, boundary, flow.viscosity)
        print(
            f"  {boundary.name}: <u_theta>(R+h) = {row[f'u_theta_{boundary.name}']:.4f}, "
            f"torque = {row[f'torque_{boundary.name}']:.4e}",
            flush=True,
        )
    if case.name == "taylor_couette":
        row["torque_exact"] = taylor_couette_torque(
            flow.viscosity, immersed.radius, immersed.radius_outer, immersed.omega, immersed.omega_outer
        )

    if level == mesh_params.refinements - 1 and domain.geometry.dim == 2:
        plot_mesh(problem.mesh, case.boundaries, save_path=paths.level_file("mesh", n, ".png"))
        plot_velocity(
            problem.mesh, problem.velocity(result.solution), case.boundaries,
            save_path=paths.level_file("velocity", n, ".png"),
        )
    if history_csv.exists():
        plot_convergence(history_csv, save_path=paths.level_file("convergence", n, ".png"))
    return row


def main(argv=None):
    """Run the steady sharp-edge Navier-Stokes solver from the command line."""
    p = argparse.ArgumentParser(
        description="Steady GLS Navier-Stokes with sharp-edge immersed circles (DOLFINx)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    dolfinx-sharp-ib configs/mms.json
    dolfinx-sharp-ib configs/couette.json
    dolfinx-sharp-ib --print-only configs/taylor_couette.json

Environment:
    Requires DOLFINx 0.10.0+ (serial).
        """,
    )
    p.add_argument("config", type=str, help="JSON config file")
    p.add_argument("--print-only", action="store_true", help="Print config and exit")
    args = p.parse_args(argv)

    cfg_path = Path(args.config)
    cfg = load_json_config(cfg_path)
    mesh_params, flow, newton, immersed = _parse_config(cfg)
    case = create_case(flow.case, flow, immersed)

    if args.print_only:
        for section in (mesh_params, flow, immersed, newton):
            if section is not None:
                print_dc_json(section)
        return 0

    if MPI.COMM_WORLD.size > 1:
        print("ERROR: dolfinx-sharp-ib runs in serial only.")
        return 1

    paths = prepare_case_dir(newton.out_dir, config_path=cfg_path, cfg=cfg)

    print("=" * 60)
    print(f"STEADY NAVIER-STOKES, SHARP-EDGE IB - case '{case.name}'")
    print("=" * 60)
    print(f"nu = {flow.viscosity}, full Jacobian: {flow.full_jacobian}")
    for boundary in case.boundaries:
        print(f"Embedded circle '{boundary.name}': center {boundary.center.tolist()}, R = {boundary.radius}")
    print()

    rows = []
    for level in range(mesh_params.refinements):
        n = mesh_params.n * 2**level
        print(f"--- Mesh {n}x{n} ---", flush=True)
        rows.append(_run_level(n, mesh_params, flow, newton, immersed, case, paths, level))

    errors = [r["l2_error"] for r in rows if "l2_error" in r]
    if len(errors) > 1:
        h = [r["h"] for r in rows]
        rates = [float(np.log(errors[i] / errors[i + 1]) / np.log(h[i] / h[i + 1])) for i in range(len(errors) - 1)]
        print(f"Observed L2 orders: {', '.join(f'{r:.2f}' for r in rates)}")
        plot_error_convergence(
            h, errors, order=mesh_params.degree + 1, save_path=paths.case_dir / "error_convergence.png"
        )

    write_json(paths.summary_json, {"case": case.name, "levels": rows})
    print("-" * 60)
    print(f"Results saved to {paths.case_dir}/")
    return 0 if all(r["converged"] for r in rows) else 2


if __name__ == "__main__":
    sys.exit(main())
