"""Polyline / PointSet の隣接・点挿入・再サンプリングに関するテスト群。"""

from __future__ import annotations

import numpy as np
import pytest

from diffgrowth.core.errors import InvalidConfigurationError
from diffgrowth.core.seeds import circle_points, line_points
from diffgrowth.core.topology.pointset import PointSet
from diffgrowth.core.topology.polyline import Polyline


def test_open_polyline_neighbors_and_boundary() -> None:
    line = Polyline(line_points(4, 3.0), closed=False)
    assert line.neighbors(0) == (None, 1)
    assert line.neighbors(3) == (2, None)
    assert line.edge_pairs().tolist() == [[0, 1], [1, 2], [2, 3]]
    assert line.boundary_mask().tolist() == [True, False, False, True]

    indptr, indices = line.neighbor_csr()
    assert indptr.tolist() == [0, 1, 3, 5, 6]
    assert indices.tolist() == [1, 0, 2, 1, 3, 2]


def test_closed_polyline_wraps_around() -> None:
    ring = Polyline(circle_points(5, 1.0), closed=True)
    assert ring.neighbors(0) == (4, 1)
    assert ring.edge_pairs().shape == (5, 2)
    assert ring.edge_pairs()[-1].tolist() == [4, 0]
    assert not ring.boundary_mask().any()


def test_two_dimensional_input_is_padded_with_zero_z() -> None:
    line = Polyline([(0.0, 0.0), (1.0, 0.0)], closed=False)
    assert line.positions.shape == (2, 3)
    assert np.all(line.positions[:, 2] == 0.0)


@pytest.mark.parametrize(
    ("points", "closed"),
    [
        ([(0.0, 0.0, 0.0)], False),
        ([(0.0, 0.0), (1.0, 0.0)], True),
        ([(0.0, np.inf), (1.0, 0.0)], False),
        (np.zeros((3, 4)), False),
    ],
)
def test_invalid_polyline_raises(points, closed: bool) -> None:
    with pytest.raises(InvalidConfigurationError):
        Polyline(points, closed=closed)


def test_insert_midpoints_inserts_after_each_long_segment() -> None:
    pts = np.array([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0], [2.5, 0.0, 0.0], [4.5, 0.0, 0.0]])
    line = Polyline(pts, closed=False)
    inserted = line.insert_midpoints(0.9, max_count=100)
    assert inserted == 2
    np.testing.assert_allclose(line.positions[:, 0], [0.0, 1.0, 2.0, 2.5, 3.5, 4.5])


def test_insert_midpoints_closes_the_loop_segment() -> None:
    ring = Polyline([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)], closed=True)
    inserted = ring.insert_midpoints(0.5, max_count=100)
    assert inserted == 4
    assert ring.element_count == 8
    np.testing.assert_allclose(ring.positions[-1], [0.0, 0.5, 0.0])


def test_insert_midpoints_respects_max_count() -> None:
    line = Polyline(line_points(5, 40.0), closed=False)
    inserted = line.insert_midpoints(1.0, max_count=6)
    assert inserted == 1
    assert line.element_count == 6
    assert line.insert_midpoints(1.0, max_count=6) == 0


def test_insert_after_returns_new_index() -> None:
    line = Polyline(line_points(3, 2.0), closed=False)
    idx = line.insert_after(0, (-0.5, 1.0, 0.0))
    assert idx == 1
    np.testing.assert_allclose(line.positions[1], [-0.5, 1.0, 0.0])
    with pytest.raises(IndexError):
        line.insert_after(10, (0.0, 0.0, 0.0))


def test_resample_grows_ring_to_target_spacing() -> None:
    ring = Polyline(circle_points(12, 5.0), closed=True)
    delta = ring.resample(0.5, max_count=1000)
    n = ring.element_count
    assert delta == n - 12
    # 周長 ~31.4 を 0.5 間隔で分割する。
    assert 60 <= n <= 66
    seg = ring.segment_lengths()
    assert float(seg.max() - seg.min()) < 0.05


def test_resample_is_capped_by_max_count() -> None:
    ring = Polyline(circle_points(12, 5.0), closed=True)
    ring.resample(0.1, max_count=40)
    assert ring.element_count == 40


def test_pointset_has_no_edges_or_boundary() -> None:
    cloud = PointSet([(0.0, 0.0), (1.0, 1.0)])
    assert cloud.element_count == 2
    assert cloud.edge_pairs().shape == (0, 2)
    indptr, indices = cloud.neighbor_csr()
    assert indptr.tolist() == [0, 0, 0]
    assert indices.shape == (0,)
    assert not cloud.boundary_mask().any()
    assert cloud.append((2.0, 2.0, 0.0)) == 2
    assert cloud.copy().element_count == 3


def test_empty_pointset_is_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        PointSet(np.zeros((0, 3)))
