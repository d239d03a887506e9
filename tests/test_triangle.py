"""
Tests for the P1 triangle variant: Hammer rule, macro element and static
condensation.
"""

from math import factorial

import numpy as np
import pytest

from dolfinx_sharp_ib.triangle import (
    HAMMER_POINTS,
    HAMMER_WEIGHTS,
    MACRO_KEPT,
    MACRO_TRIANGLES,
    condense,
    macro_local_rhs,
    macro_local_system,
    macro_nodes,
    recover_interior,
)

CORNERS = np.array([[0.0, 0.0], [1.2, 0.1], [1.0, 0.9], [-0.1, 1.0]])


def _zero_force(x):
    return np.zeros(np.shape(x))


@pytest.mark.parametrize("i,j", [(0, 0), (1, 0), (0, 1), (2, 0), (1, 1), (0, 2), (3, 0), (2, 1), (1, 2), (0, 3)])
def test_hammer_rule_is_exact_for_cubics(i, j):
    """Reference-triangle integral of x^i y^j is i! j! / (i + j + 2)!."""
    x, y = HAMMER_POINTS[:, 0], HAMMER_POINTS[:, 1]
    exact = factorial(i) * factorial(j) / factorial(i + j + 2)
    assert np.sum(HAMMER_WEIGHTS * x**i * y**j) == pytest.approx(exact, abs=1e-15)


def test_macro_triangles_tile_the_quad():
    nodes = macro_nodes(CORNERS)
    assert nodes.shape == (6, 2)

    def signed_area(p):
        e1, e2 = p[1] - p[0], p[2] - p[0]
        return 0.5 * (e1[0] * e2[1] - e1[1] * e2[0])

    areas = np.array([signed_area(nodes[t]) for t in MACRO_TRIANGLES])
    assert np.all(areas > 0)
    x, y = CORNERS[:, 0], CORNERS[:, 1]
    quad_area = 0.5 * abs(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))
    assert areas.sum() == pytest.approx(quad_area, rel=1e-12)


def test_macro_system_at_rest():
    A, b = macro_local_system(CORNERS, np.zeros((6, 3)), _zero_force, 1.0)
    assert A.shape == (18, 18)
    assert np.all(b == 0.0)
    np.testing.assert_array_equal(macro_local_rhs(CORNERS, np.zeros((6, 3)), _zero_force, 1.0), b)


def test_macro_rhs_matches_system_rhs():
    rng = np.random.default_rng(4)
    state = 0.1 * rng.standard_normal((6, 3))

    def force(x):
        return np.stack([np.sin(x[..., 0]), x[..., 1] ** 2], axis=-1)

    _, b = macro_local_system(CORNERS, state, force, 0.5)
    np.testing.assert_allclose(macro_local_rhs(CORNERS, state, force, 0.5), b, rtol=1e-12, atol=1e-15)


def _random_system(n=18, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.standard_normal((n, n))
    A += np.diag(np.abs(A).sum(axis=1) + 1.0)
    b = rng.standard_normal(n)
    return A, b


def test_condensation_matches_full_solve():
    A, b = _random_system()
    x = np.linalg.solve(A, b)

    A_kept, b_kept = condense(A, b)
    assert A_kept.shape == (MACRO_KEPT, MACRO_KEPT)
    x_kept = np.linalg.solve(A_kept, b_kept)
    np.testing.assert_allclose(x_kept, x[:MACRO_KEPT], rtol=1e-10)

    np.testing.assert_allclose(recover_interior(A, b, x_kept), x, rtol=1e-10)


def test_condensation_leaves_inputs_untouched():
    A, b = _random_system(seed=1)
    A0, b0 = A.copy(), b.copy()
    condense(A, b)
    recover_interior(A, b, np.zeros(MACRO_KEPT))
    np.testing.assert_array_equal(A, A0)
    np.testing.assert_array_equal(b, b0)


def test_condensed_macro_matrix_is_the_schur_complement():
    rng = np.random.default_rng(2)
    state = 0.1 * rng.standard_normal((6, 3))
    A, b = macro_local_system(CORNERS, state, _zero_force, 1.0)

    k = MACRO_KEPT
    A11, A12, A21, A22 = A[:k, :k], A[:k, k:], A[k:, :k], A[k:, k:]
    schur = A11 - A12 @ np.linalg.solve(A22, A21)
    reduced = b[:k] - A12 @ np.linalg.solve(A22, b[k:])

    A_kept, b_kept = condense(A, b)
    scale = np.abs(A).max()
    np.testing.assert_allclose(A_kept, schur, rtol=0.0, atol=1e-10 * scale)
    np.testing.assert_allclose(b_kept, reduced, rtol=0.0, atol=1e-10 * max(np.abs(b).max(), 1.0))


def test_condense_rejects_bad_input():
    with pytest.raises(ValueError, match="square"):
        condense(np.zeros((18, 17)), np.zeros(18))
    A = np.eye(18)
    A[17, 17] = 0.0
    with pytest.raises(ValueError, match="Zero pivot"):
        condense(A, np.zeros(18))
