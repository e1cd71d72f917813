"""HalfEdgeMesh の構築・分割・フリップ・巡回に関するテスト群。"""

from __future__ import annotations

import numpy as np
import pytest

from diffgrowth.core.errors import InvalidConfigurationError, TopologyDefectError
from diffgrowth.core.seeds import disc_mesh, icosphere
from diffgrowth.core.topology.halfedge import HalfEdgeMesh


def _square() -> HalfEdgeMesh:
    # 0-1-2-3 の正方形を対角線 0-2 で 2 分割する。
    verts = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]
    return HalfEdgeMesh.from_faces(verts, [(0, 1, 2), (0, 2, 3)])


def _fan(n: int = 6) -> HalfEdgeMesh:
    # 中心 0 を n 枚の三角形が囲む円盤。
    t = np.linspace(0.0, 2.0 * np.pi, n, endpoint=False)
    verts = np.concatenate([[[0.0, 0.0, 0.0]], np.stack([np.cos(t), np.sin(t), 0 * t], axis=1)])
    faces = [(0, 1 + k, 1 + (k + 1) % n) for k in range(n)]
    return HalfEdgeMesh.from_faces(verts, faces)


def _edge_of(mesh: HalfEdgeMesh, a: int, b: int) -> int:
    for e, (u, v) in enumerate(mesh.edge_pairs().tolist()):
        if {u, v} == {a, b}:
            return e
    raise AssertionError(f"edge not found: {(a, b)}")


def test_from_faces_builds_consistent_square() -> None:
    mesh = _square()
    mesh.validate()
    assert mesh.n_vertices == 4
    assert mesh.n_edges == 5
    assert mesh.n_faces == 2
    assert mesh.positions.shape == (4, 3)
    assert mesh.boundary_mask().tolist() == [True, True, True, True]
    assert mesh.degrees().tolist() == [3, 2, 3, 2]
    assert len(mesh.hole_loops()) == 1


def test_from_faces_fan_triangulates_polygons() -> None:
    verts = [(0.0, 0.0), (1.0, 0.0), (1.5, 1.0), (0.5, 1.5), (-0.5, 1.0)]
    mesh = HalfEdgeMesh.from_faces(verts, [(0, 1, 2, 3, 4)])
    mesh.validate()
    assert mesh.n_faces == 3
    assert sorted(mesh.vertex_neighbors(0)) == [1, 2, 3, 4]


def test_fan_interior_vertex_is_not_boundary() -> None:
    mesh = _fan(6)
    mesh.validate()
    assert not mesh.is_boundary_vertex(0)
    assert all(mesh.is_boundary_vertex(v) for v in range(1, 7))
    assert sorted(mesh.vertex_neighbors(0)) == [1, 2, 3, 4, 5, 6]
    assert sum(1 for _ in mesh.circulate_vertex(0)) == 6


def test_closed_mesh_has_no_boundary() -> None:
    mesh = icosphere(0)
    mesh.validate()
    assert mesh.n_vertices == 12
    assert mesh.n_edges == 30
    assert mesh.n_faces == 20
    assert not mesh.boundary_mask().any()
    assert mesh.hole_loops() == []
    assert np.all(mesh.degrees() == 5)


@pytest.mark.parametrize(
    ("verts", "faces"),
    [
        (np.zeros((0, 3)), [(0, 1, 2)]),
        ([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)], []),
        ([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)], [(0, 1, 5)]),
        ([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)], [(0, 1, 1)]),
        # 同じ向きの辺 0->1 を 2 回使う。
        ([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (0.0, -1.0)], [(0, 1, 2), (0, 1, 3)]),
        # 頂点 3 はどの面にも属さない。
        ([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0), (5.0, 5.0)], [(0, 1, 2)]),
        # 頂点 0 で 2 つの三角形が接するだけの蝶ネクタイ。
        (
            [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (-1.0, 0.0), (-1.0, -1.0)],
            [(0, 1, 2), (0, 3, 4)],
        ),
    ],
)
def test_from_faces_rejects_invalid_input(verts, faces) -> None:
    with pytest.raises(InvalidConfigurationError):
        HalfEdgeMesh.from_faces(verts, faces)


def test_split_interior_edge_keeps_topology_valid() -> None:
    mesh = _square()
    e = _edge_of(mesh, 0, 2)
    a, _b = mesh.edge_endpoints(e)
    nv, ne, nf = mesh.n_vertices, mesh.n_edges, mesh.n_faces

    m, new_edges = mesh.split_edge(e)
    mesh.validate()

    assert m == nv
    assert mesh.n_vertices == nv + 1
    assert mesh.n_edges == ne + 3
    assert mesh.n_faces == nf + 2
    assert len(new_edges) == 3
    np.testing.assert_allclose(mesh.positions[m], [0.5, 0.5, 0.0])
    assert sorted(mesh.vertex_neighbors(m)) == [0, 1, 2, 3]
    assert not mesh.is_boundary_vertex(m)
    # 辺 e は前半（元の始点 -> 新頂点）として残る。
    assert mesh.edge_endpoints(e) == (a, m)


def test_split_boundary_edge_adds_one_face() -> None:
    mesh = _square()
    e = _edge_of(mesh, 0, 1)
    m, new_edges = mesh.split_edge(e)
    mesh.validate()
    assert mesh.n_faces == 3
    assert len(new_edges) == 2
    assert mesh.is_boundary_vertex(m)
    assert sorted(mesh.vertex_neighbors(m)) == [0, 1, 2]
    assert len(mesh.hole_loops()) == 1


def test_repeated_splits_stay_valid() -> None:
    mesh = disc_mesh(2, 1.0)
    for _ in range(3):
        for e in range(mesh.n_edges):
            mesh.split_edge(e)
        mesh.validate()
    faces = mesh.faces()
    assert faces.shape == (mesh.n_faces, 3)
    assert int(faces.max()) < mesh.n_vertices


def test_spin_edge_flips_to_opposite_diagonal() -> None:
    mesh = disc_mesh(2, 1.0)
    center = int(np.argmin(np.linalg.norm(mesh.positions, axis=1)))
    other = mesh.vertex_neighbors(center)[0]
    e = _edge_of(mesh, center, other)
    c_d = set(mesh.vertex_neighbors(center)) & set(mesh.vertex_neighbors(other))
    assert len(c_d) == 2

    mesh.spin_edge(e)
    mesh.validate()
    assert set(mesh.edge_endpoints(e)) == c_d
    assert other not in mesh.vertex_neighbors(center)


def test_spin_edge_rejects_boundary_edges_and_low_degree_vertices() -> None:
    mesh = _square()
    with pytest.raises(TopologyDefectError):
        mesh.spin_edge(_edge_of(mesh, 0, 1))

    # 頂点 1 と 3 は次数 2 なので、対角線 0-2 のフリップは不可。
    before = mesh.edge_pairs().copy()
    with pytest.raises(TopologyDefectError):
        mesh.spin_edge(_edge_of(mesh, 0, 2))
    np.testing.assert_array_equal(mesh.edge_pairs(), before)


def test_edge_index_out_of_range_raises() -> None:
    mesh = _square()
    with pytest.raises(IndexError):
        mesh.split_edge(mesh.n_edges)


def test_copy_is_independent() -> None:
    mesh = _square()
    other = mesh.copy()
    other.split_edge(0)
    other.positions[0] = (9.0, 9.0, 9.0)
    assert mesh.n_vertices == 4
    np.testing.assert_allclose(mesh.positions[0], [0.0, 0.0, 0.0])
    mesh.validate()
    other.validate()


def test_neighbor_csr_and_quad_corners() -> None:
    mesh = _fan(5)
    indptr, indices = mesh.neighbor_csr()
    assert indptr[-1] == 2 * mesh.n_edges
    assert sorted(indices[indptr[0] : indptr[1]].tolist()) == [1, 2, 3, 4, 5]

    edge_ids, corners = mesh.quad_corners()
    assert edge_ids.shape == (5,)
    for row in corners.tolist():
        assert 0 in row[:2]
        assert len(set(row)) == 4


def test_walk_loop_returns_boundary_cycle() -> None:
    mesh = disc_mesh(1, 1.0)
    (h,) = mesh.hole_loops()
    loop = list(mesh.walk_loop(h))
    assert len(loop) == 6
    assert all(mesh.he_face[g] == -1 for g in loop)
