"""補間曲線・再サンプリング・曲線ラプラシアンに関するテスト群。"""

from __future__ import annotations

import numpy as np
import pytest

from diffgrowth.core.curve_kernel import fit_curve, laplacian_smooth, resample_curve
from diffgrowth.core.errors import InvalidConfigurationError
from diffgrowth.core.seeds import circle_points, line_points


def _zigzag() -> np.ndarray:
    return np.array(
        [[0.0, 0.0, 0.0], [1.0, 1.0, 0.0], [2.0, 0.0, 0.0], [3.0, 1.0, 0.0], [4.0, 0.0, 0.0]]
    )


def test_laplacian_full_strength_moves_interior_points_to_neighbor_midpoints() -> None:
    out = laplacian_smooth(_zigzag(), closed=False, strength=1.0, iterations=1)
    np.testing.assert_allclose(
        out,
        [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [2.0, 1.0, 0.0], [3.0, 0.0, 0.0], [4.0, 0.0, 0.0]],
        rtol=0.0,
        atol=1e-12,
    )


def test_laplacian_keeps_open_endpoints_fixed_over_many_iterations() -> None:
    pts = _zigzag()
    out = laplacian_smooth(pts, closed=False, strength=0.5, iterations=50)
    np.testing.assert_allclose(out[[0, -1]], pts[[0, -1]])
    # 端点が固定なので直線へ収束する。
    assert float(np.abs(out[:, 1]).max()) < 1e-3


def test_laplacian_zero_strength_returns_copy() -> None:
    pts = _zigzag()
    out = laplacian_smooth(pts, closed=True, strength=0.0, iterations=3)
    np.testing.assert_array_equal(out, pts)
    assert out is not pts


def _curvature_energy(points: np.ndarray) -> float:
    """閉曲線の離散曲率 `sum(|隣の平均 - p|^2)`。"""
    avg = 0.5 * (np.roll(points, 1, axis=0) + np.roll(points, -1, axis=0))
    return float(np.sum((avg - points) ** 2))


@pytest.mark.parametrize("strength", [0.1, 0.5, 0.9])
def test_closed_laplacian_strictly_reduces_curvature(strength: float) -> None:
    rng = np.random.default_rng(3)
    pts = circle_points(16, 2.0) + rng.normal(0.0, 0.2, size=(16, 3))
    energy = _curvature_energy(pts)
    for _ in range(5):
        pts = laplacian_smooth(pts, closed=True, strength=strength, iterations=1)
        smoothed = _curvature_energy(pts)
        assert smoothed < energy
        energy = smoothed


def test_resampled_open_line_smooths_interior_to_neighbor_midpoints() -> None:
    line = resample_curve(line_points(5, 4.0), closed=False, spacing=0.7)
    assert line.shape[0] > 5
    out = laplacian_smooth(line, closed=False, strength=1.0, iterations=1)
    np.testing.assert_allclose(out[[0, -1]], line[[0, -1]])
    np.testing.assert_allclose(out[1:-1], 0.5 * (line[:-2] + line[2:]), rtol=0.0, atol=1e-12)
    np.testing.assert_allclose(out[:, 1:], 0.0, atol=1e-9)


def test_closed_laplacian_preserves_centroid() -> None:
    pts = circle_points(9, 2.0, center=(1.0, -1.0, 0.0))
    pts[0] += (0.5, 0.5, 0.0)
    out = laplacian_smooth(pts, closed=True, strength=0.5, iterations=4)
    np.testing.assert_allclose(out.mean(axis=0), pts.mean(axis=0), atol=1e-12)


def test_resample_open_line_keeps_endpoints_and_spacing() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [3.0, 0.0, 0.0], [4.0, 0.0, 0.0]])
    out = resample_curve(pts, closed=False, spacing=0.5)
    assert out.shape == (9, 3)
    np.testing.assert_allclose(out[0], pts[0])
    np.testing.assert_allclose(out[-1], pts[-1])
    np.testing.assert_allclose(np.diff(out[:, 0]), 0.5, atol=1e-2)


def test_resample_by_count() -> None:
    out = resample_curve(circle_points(10, 1.0), closed=True, count=25)
    assert out.shape == (25, 3)
    np.testing.assert_allclose(np.linalg.norm(out[:, :2], axis=1), 1.0, atol=2e-2)


def test_resample_requires_exactly_one_of_spacing_and_count() -> None:
    pts = circle_points(6, 1.0)
    with pytest.raises(InvalidConfigurationError):
        resample_curve(pts, closed=True)
    with pytest.raises(InvalidConfigurationError):
        resample_curve(pts, closed=True, spacing=0.1, count=10)
    with pytest.raises(InvalidConfigurationError):
        resample_curve(pts, closed=True, spacing=-1.0)


def test_fit_curve_drops_duplicates_and_needs_enough_points() -> None:
    assert fit_curve(np.zeros((4, 3)), closed=False) is None
    curve = fit_curve(
        np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [2.0, 0.0, 0.0]]), closed=False
    )
    assert curve is not None
    assert curve.length == pytest.approx(2.0, rel=1e-6)
    np.testing.assert_allclose(curve.at_lengths(np.array([1.0])), [[1.0, 0.0, 0.0]], atol=1e-6)
