"""SpatialGrid の格納・探索・ペア列挙に関するテスト群。"""

from __future__ import annotations

import numpy as np

from diffgrowth.core.spatial_grid import SpatialGrid, brute_force_pairs


def _random_points(n: int, *, seed: int = 0, extent: float = 10.0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.uniform(0.0, extent, size=(n, 3))


def _pair_set(pairs: tuple[np.ndarray, np.ndarray, np.ndarray]) -> set[tuple[int, int]]:
    pi, pj, _ = pairs
    return {(int(i), int(j)) for i, j in zip(pi.tolist(), pj.tolist())}


def test_box_search_over_whole_bounds_visits_every_id_once() -> None:
    pts = _random_points(200)
    grid = SpatialGrid.from_points(pts, 1.0)
    grid.rebuild(pts)
    assert len(grid) == 200

    found = list(grid.search_box(grid.bounds_min, grid.bounds_max))
    assert sorted(found) == list(range(200))


def test_sphere_search_matches_brute_force() -> None:
    pts = _random_points(300, seed=1)
    grid = SpatialGrid.from_points(pts, 0.7)
    grid.rebuild(pts)

    center = np.array([5.0, 4.0, 6.0])
    radius = 2.0
    expected = np.flatnonzero(np.linalg.norm(pts - center, axis=1) <= radius).tolist()
    assert sorted(grid.search_sphere(center, radius)) == expected


def test_query_pairs_matches_brute_force_with_per_element_cutoffs() -> None:
    pts = _random_points(250, seed=2)
    cutoffs = np.random.default_rng(3).uniform(0.3, 1.2, size=(250,))
    grid = SpatialGrid.from_points(pts, 0.5)
    grid.rebuild(pts)

    got = grid.query_pairs(pts, cutoffs)
    want = brute_force_pairs(pts, cutoffs)
    assert _pair_set(got) == _pair_set(want)
    assert np.all(got[0] < got[1])

    pi, pj, d = got
    np.testing.assert_allclose(d, np.linalg.norm(pts[pi] - pts[pj], axis=1), rtol=0.0, atol=1e-12)


def test_query_pairs_on_empty_grid_returns_no_pairs() -> None:
    pts = _random_points(10)
    grid = SpatialGrid.from_points(pts, 1.0)
    pi, pj, d = grid.query_pairs(pts, np.ones((10,)))
    assert pi.shape == (0,) and pj.shape == (0,) and d.shape == (0,)


def test_insert_keeps_given_ids_and_clamps_outside_points() -> None:
    grid = SpatialGrid((0.0, 0.0, 0.0), (1.0, 1.0, 1.0), (4, 4, 4))
    grid.insert((0.1, 0.1, 0.1), 10)
    grid.insert((5.0, 5.0, 5.0), 7)

    assert list(grid.search_sphere((0.1, 0.1, 0.1), 0.05)) == [10]
    assert list(grid.search_sphere((5.0, 5.0, 5.0), 0.1)) == [7]

    grid.clear()
    assert len(grid) == 0
    assert list(grid.search_box((0.0, 0.0, 0.0), (1.0, 1.0, 1.0))) == []


def test_fit_rebuilds_only_when_bins_become_too_coarse() -> None:
    pts = _random_points(50, extent=4.0)
    grid = SpatialGrid.from_points(pts, 1.0)
    counts = grid.counts

    assert grid.fit(pts, 1.0) is False
    assert grid.counts == counts

    spread = pts * 5.0
    assert grid.fit(spread, 1.0) is True
    assert np.all(grid.bin_scale <= 2.0)
    np.testing.assert_allclose(grid.bounds_max, spread.max(axis=0))


def test_cell_count_respects_max_cells() -> None:
    pts = _random_points(20, extent=1000.0)
    grid = SpatialGrid.from_points(pts, 0.01, max_cells=1000)
    cx, cy, cz = grid.counts
    assert cx * cy * cz <= 1000


def test_flat_input_uses_single_layer() -> None:
    pts = _random_points(30)
    pts[:, 2] = 0.0
    grid = SpatialGrid.from_points(pts, 1.0)
    assert grid.counts[2] == 1
    grid.rebuild(pts)
    assert sorted(grid.search_box(grid.bounds_min, grid.bounds_max)) == list(range(30))


def test_fit_keeps_resolution_when_max_cells_prevents_finer_bins() -> None:
    pts = _random_points(40, extent=10.0)
    grid = SpatialGrid.from_points(pts, 1.0, max_cells=8)
    counts = grid.counts
    assert np.all(grid.bin_scale > 2.0)

    for k in range(3):
        assert grid.fit(pts + 0.01 * k, 1.0) is False
        assert grid.counts == counts
