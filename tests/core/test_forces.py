"""ForceAccumulator の各力項と積分に関するテスト群。"""

from __future__ import annotations

import numpy as np

from diffgrowth.core.forces import ForceAccumulator
from diffgrowth.core.integrator import integrate_direct, integrate_velocity
from diffgrowth.core.spatial_grid import brute_force_pairs


def _acc(n: int) -> ForceAccumulator:
    acc = ForceAccumulator()
    acc.reset(n)
    return acc


def test_edge_length_pulls_stretched_edge_toward_rest_length() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]])
    acc = _acc(2)
    acc.add_edge_length(pts, np.array([[0, 1]]), np.array([1.0]), 1.0)

    integrate_direct(pts, acc)
    np.testing.assert_allclose(pts, [[0.5, 0.0, 0.0], [1.5, 0.0, 0.0]])
    assert not acc.move_sum.any()
    assert not acc.weight_sum.any()


def test_edge_length_pushes_compressed_edge_unless_tension_only() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0]])
    acc = _acc(2)
    acc.add_edge_length(pts, np.array([[0, 1]]), np.array([1.0]), 1.0)
    np.testing.assert_allclose(acc.move_sum[:, 0], [-0.25, 0.25])

    acc.reset(2)
    acc.add_edge_length(pts, np.array([[0, 1]]), np.array([1.0]), 1.0, tension_only=True)
    assert not acc.move_sum.any()
    assert not acc.weight_sum.any()


def test_zero_length_edge_is_counted_as_degenerate() -> None:
    pts = np.zeros((2, 3))
    acc = _acc(2)
    acc.add_edge_length(pts, np.array([[0, 1]]), np.array([1.0]), 1.0)
    assert acc.degenerate == 1
    assert not acc.weight_sum.any()


def test_collision_separates_to_radius_in_one_direct_step() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [0.4, 0.0, 0.0]])
    radii = np.ones((2,))
    acc = _acc(2)
    acc.add_collisions(pts, brute_force_pairs(pts, radii), radii, 1.0)
    integrate_direct(pts, acc)
    # 等半径では各点が重なり量の半分ずつ離れる。
    np.testing.assert_allclose(pts[:, 0], [-0.3, 0.7])


def test_collision_share_follows_radii() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0]])
    radii = np.array([1.0, 0.25])
    acc = _acc(2)
    acc.add_collisions(pts, brute_force_pairs(pts, radii), radii, 1.0)
    # d=0.5 は小さい方の半径より大きいので、点 1 は押されない。
    assert acc.weight_sum.tolist() == [1.0, 0.0]
    np.testing.assert_allclose(acc.move_sum[0], [-0.8 * 0.5, 0.0, 0.0])


def test_one_ring_cancellation_undoes_neighbor_collisions() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0], [0.5, 0.5, 0.0]])
    radii = np.ones((3,))
    csr = (np.array([0, 2, 4, 6]), np.array([1, 2, 0, 2, 0, 1]))
    acc = _acc(3)
    acc.add_collisions(pts, brute_force_pairs(pts, radii), radii, 0.3)
    acc.add_one_ring_cancellation(pts, csr, radii, 0.3)
    np.testing.assert_allclose(acc.move_sum, 0.0, atol=1e-12)
    np.testing.assert_allclose(acc.weight_sum, [1.2, 1.2, 1.2])


def test_laplacian_skips_excluded_vertices() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 1.0, 0.0], [2.0, 0.0, 0.0]])
    csr = (np.array([0, 1, 3, 4]), np.array([1, 0, 2, 1]))
    acc = _acc(3)
    acc.add_laplacian(pts, csr, np.array([True, False, True]), 2.0)
    integrate_direct(pts, acc)
    np.testing.assert_allclose(pts, [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 0.0, 0.0]])


def test_boundary_smoothing_conserves_total_move() -> None:
    rng = np.random.default_rng(0)
    pts = rng.normal(size=(6, 3))
    acc = _acc(6)
    acc.add_boundary_smoothing(pts, [np.arange(6)], 0.5)
    np.testing.assert_allclose(acc.move_sum.sum(axis=0), 0.0, atol=1e-12)
    np.testing.assert_allclose(acc.weight_sum, 1.5)


def test_bending_flattens_a_folded_quad() -> None:
    pts = np.array(
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.5, 1.0, 0.5], [0.5, -1.0, 0.5]]
    )
    corners = np.array([[0, 1, 2, 3]])
    acc = _acc(4)
    acc.add_bending(pts, corners, 1.0)
    integrate_direct(pts, acc)
    # 4 点が 1 つの平面に乗る。
    normal = np.cross(pts[1] - pts[0], pts[2] - pts[0])
    assert abs(float(np.dot(pts[3] - pts[0], normal))) < 1e-9


def test_field_and_zero_weight_terms() -> None:
    pts = np.zeros((3, 3))
    acc = _acc(3)
    acc.add_field(np.ones((3, 3)), 0.0)
    acc.add_collisions(pts, brute_force_pairs(pts, np.ones((3,))), np.ones((3,)), 0.0)
    assert not acc.weight_sum.any()

    acc.add_field(np.ones((3, 3)), 0.5)
    integrate_direct(pts, acc)
    np.testing.assert_allclose(pts, 1.0)


def test_velocity_integration_applies_decay() -> None:
    pts = np.zeros((1, 3))
    vel = np.zeros((1, 3))
    acc = _acc(1)
    acc.add_field(np.array([[1.0, 0.0, 0.0]]), 1.0)
    integrate_velocity(pts, vel, acc, time_step=1.0, decay=0.5)
    np.testing.assert_allclose(pts, [[1.0, 0.0, 0.0]])
    np.testing.assert_allclose(vel, [[0.5, 0.0, 0.0]])

    # 力が無くても速度は残り、減衰しながら進む。
    integrate_velocity(pts, vel, acc, time_step=1.0, decay=0.5)
    np.testing.assert_allclose(pts, [[1.5, 0.0, 0.0]])
    np.testing.assert_allclose(vel, [[0.25, 0.0, 0.0]])
