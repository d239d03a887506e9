"""
End-to-end tests on DOLFINx meshes with PETSc linear algebra (requires DOLFINx).
"""

import numpy as np
import pytest


def _can_import_dolfinx():
    """Check if DOLFINx is available."""
    try:
        import dolfinx
        return True
    except ImportError:
        return False


pytestmark = pytest.mark.skipif(
    not _can_import_dolfinx(),
    reason="DOLFINx not available"
)


def _problem(case_name, n, lower, upper, immersed=None, viscosity=1.0):
    from dolfinx_sharp_ib.cases import create_case
    from dolfinx_sharp_ib.config import FlowParams, MeshParams
    from dolfinx_sharp_ib.geometry import create_box_mesh
    from dolfinx_sharp_ib.solver import SteadyNavierStokesProblem

    mesh_params = MeshParams(n=n, lower=lower, upper=upper)
    flow = FlowParams(case=case_name, viscosity=viscosity)
    case = create_case(case_name, flow, immersed)
    return SteadyNavierStokesProblem(create_box_mesh(mesh_params), case, flow, verbose=False)


def test_linear_system_row_operations():
    """Rows can be zeroed and refilled with entries outside the cell-coupling pattern."""
    from dolfinx_sharp_ib.config import MeshParams
    from dolfinx_sharp_ib.geometry import create_box_mesh, create_flow_space
    from dolfinx_sharp_ib.linear_system import LinearSystem

    V = create_flow_space(create_box_mesh(MeshParams(n=4)), 1)
    system = LinearSystem(V)
    assert system.size == 25 * 3

    system.zero()
    dofs = np.array([[0, 1, 2, 3, 4, 5]])
    system.add_local(dofs, np.eye(6)[None] * 2.0, np.ones((1, 6)))
    system.add_local(dofs, np.eye(6)[None], np.ones((1, 6)))
    system.finalize()
    assert system.get(3, 3) == pytest.approx(3.0)
    assert system.rhs()[5] == pytest.approx(2.0)

    system.zero_rows([3], diag=0.0)
    system.set_row(3, [3, 72], [-2.0, 1.0])
    system.finalize()
    cols, vals = system.row(3)
    entries = {int(c): v for c, v in zip(cols, vals) if v != 0.0}
    assert entries == {3: -2.0, 72: 1.0}

    system.set_rhs([3], [0.5])
    assert system.rhs()[3] == pytest.approx(0.5)
    assert system.residual_norm() == pytest.approx(np.linalg.norm(system.rhs()))


def test_immersed_rows_on_assembled_system():
    from dolfinx_sharp_ib.config import ImmersedParams
    from dolfinx_sharp_ib.linear_system import LinearSystem

    problem = _problem("couette", 16, (-1.0, -1.0), (1.0, 1.0), ImmersedParams(radius=0.21))
    u0 = problem.setup()
    rng = np.random.default_rng(1)
    u = problem.distribute(u0 + 0.01 * rng.standard_normal(problem.n_dofs))

    problem.assemble_system(u, initial_step=False)
    b1 = problem.system.rhs()
    problem.assemble_system(u, initial_step=False)
    np.testing.assert_array_equal(problem.system.rhs(), b1)

    reference = LinearSystem(problem.V)
    problem.assembler.assemble(reference, u)
    problem.constraints.active(False, u).apply(reference)
    b_ref = reference.rhs()

    rows = problem.immersed.rows
    assert len(rows) > 0
    untouched = np.setdiff1d(np.arange(problem.n_dofs), rows)
    np.testing.assert_allclose(b1[untouched], b_ref[untouched], atol=1e-14)
    for i in untouched[:: max(len(untouched) // 50, 1)]:
        cols, vals = problem.system.row(int(i))
        cols_ref, vals_ref = reference.row(int(i))
        np.testing.assert_array_equal(cols, cols_ref)
        np.testing.assert_allclose(vals, vals_ref, atol=1e-14)

    for s in problem.immersed.stencils:
        cols, vals = problem.system.row(s.row)
        entries = {int(c): v for c, v in zip(cols, vals) if v != 0.0}
        expected = dict(zip(s.columns.tolist(), s.coefficients.tolist()))
        assert entries.keys() == {c for c, v in expected.items() if v != 0.0}
        for c, v in entries.items():
            assert v == pytest.approx(expected[c])
        assert b1[s.row] == pytest.approx(s.residual(u))


def test_mms_converges_under_refinement():
    from dolfinx_sharp_ib.config import NewtonParams
    from dolfinx_sharp_ib.newton import NewtonSolver
    from dolfinx_sharp_ib.postprocess import l2_velocity_error

    errors = []
    for n in (8, 16, 32):
        problem = _problem("mms", n, (0.0, 0.0), (1.0, 1.0))
        result = NewtonSolver(problem, NewtonParams(tol=1e-10), verbose=False).solve()
        assert result.converged
        errors.append(l2_velocity_error(problem, result.solution, problem.case.exact_velocity))
    ratios = np.array(errors[:-1]) / np.array(errors[1:])
    assert np.all(ratios >= 3.0), errors
    assert np.log2(ratios[-1]) >= 1.8, errors


def test_rotating_cylinder_drags_the_fluid(tmp_path):
    from dolfinx_sharp_ib.cases import create_case, taylor_couette_velocity
    from dolfinx_sharp_ib.config import FlowParams, ImmersedParams, MeshParams, NewtonParams
    from dolfinx_sharp_ib.geometry import create_box_mesh
    from dolfinx_sharp_ib.postprocess import tangential_velocity
    from dolfinx_sharp_ib.solver import solve_steady
    from dolfinx_sharp_ib.utils import read_history_csv

    radius = 0.21
    mesh_params = MeshParams(n=40, lower=(-1.0, -1.0), upper=(1.0, 1.0))
    flow = FlowParams(case="couette", viscosity=1.0)
    case = create_case("couette", flow, ImmersedParams(radius=radius))
    history = tmp_path / "history.csv"
    problem, result = solve_steady(
        create_box_mesh(mesh_params), case, flow, NewtonParams(tol=1e-8),
        mesh_params=mesh_params, history_csv=history, verbose=False,
    )
    assert result.converged
    assert len(read_history_csv(history)["iter"]) == result.iterations

    r = radius + 0.05
    u_theta = np.nanmean(tangential_velocity(problem, result.solution, (0.0, 0.0), r))
    point = np.array([[r, 0.0]])
    lower = taylor_couette_velocity((0, 0), radius, 1.0, 1.0, 0.0)(point)[0, 1]
    upper = taylor_couette_velocity((0, 0), radius, np.sqrt(2.0), 1.0, 0.0)(point)[0, 1]
    assert 0.8 * lower <= u_theta <= 1.2 * upper


def test_taylor_couette_annulus():
    from dolfinx_sharp_ib.cases import taylor_couette_torque
    from dolfinx_sharp_ib.config import ImmersedParams, NewtonParams
    from dolfinx_sharp_ib.newton import NewtonSolver
    from dolfinx_sharp_ib.postprocess import immersed_torque, l2_velocity_error

    immersed = ImmersedParams(radius=0.21, radius_outer=0.91, omega=1.0, omega_outer=0.0)
    problem = _problem("taylor_couette", 32, (-1.0, -1.0), (1.0, 1.0), immersed)
    result = NewtonSolver(problem, NewtonParams(tol=1e-8), verbose=False).solve()
    assert result.converged

    def annulus(x):
        r = np.linalg.norm(x[..., :2], axis=-1)
        return (r >= immersed.radius) & (r <= immersed.radius_outer)

    exact = problem.case.exact_velocity
    error = l2_velocity_error(problem, result.solution, exact, mask=annulus)
    norm = l2_velocity_error(problem, np.zeros_like(result.solution), exact, mask=annulus)
    assert error / norm < 0.1

    torque = immersed_torque(problem, result.solution, problem.case.boundaries[0], 1.0)
    exact_torque = taylor_couette_torque(1.0, 0.21, 0.91, 1.0, 0.0)
    assert 0.5 < torque / exact_torque < 1.5


def test_cli_print_only(capsys):
    from pathlib import Path

    from dolfinx_sharp_ib.cli import main

    config = Path(__file__).resolve().parents[1] / "configs" / "taylor_couette.json"
    assert main(["--print-only", str(config)]) == 0
    assert "radius_outer" in capsys.readouterr().out


def test_cli_refinement_sweep(tmp_path):
    import json

    import matplotlib

    matplotlib.use("Agg")
    from dolfinx_sharp_ib.cli import main

    out_dir = tmp_path / "mms"
    cfg = {
        "mesh": {"n": 4, "refinements": 2},
        "flow": {"case": "mms", "viscosity": 1.0},
        "newton": {"tol": 1e-10, "out_dir": str(out_dir)},
    }
    config = tmp_path / "mms.json"
    config.write_text(json.dumps(cfg))

    assert main([str(config)]) == 0
    summary = json.loads((out_dir / "summary.json").read_text())
    assert [level["n"] for level in summary["levels"]] == [4, 8]
    assert all(level["converged"] for level in summary["levels"])
    assert summary["levels"][1]["l2_error"] < summary["levels"][0]["l2_error"]
    assert (out_dir / "error_convergence.png").exists()
