"""
どこで: `src/diffgrowth/core/scheduler.py`。
何を: 成長と再分割（静止長の増加・長い辺の分割・valence 均等化・曲線への点挿入/再サンプリング）。
なぜ: トポロジ変更と、それに付随する属性配列（静止長・速度）の伸長を 1 箇所にまとめ、常に同じ長さに保つため。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from diffgrowth.core.curve_kernel import laplacian_smooth
from diffgrowth.core.errors import TopologyDefectError
from diffgrowth.core.params import GrowthParams
from diffgrowth.core.topology.halfedge import HalfEdgeMesh
from diffgrowth.core.topology.polyline import Polyline

logger = logging.getLogger(__name__)

_TARGET_VALENCE_INTERIOR = 6
_TARGET_VALENCE_BOUNDARY = 4


@dataclass(slots=True)
class MeshState:
    """メッシュと、それに並走する属性配列。

    Attributes
    ----------
    mesh:
        half-edge メッシュ。
    rest_lengths:
        (E,) float64 の辺ごとの静止長。
    velocities:
        (V,3) float64 の頂点速度。
    """

    mesh: HalfEdgeMesh
    rest_lengths: np.ndarray
    velocities: np.ndarray

    @classmethod
    def from_mesh(cls, mesh: HalfEdgeMesh) -> MeshState:
        return cls(
            mesh=mesh,
            rest_lengths=mesh.edge_lengths(),
            velocities=np.zeros((mesh.n_vertices, 3), dtype=np.float64),
        )

    def copy(self) -> MeshState:
        return MeshState(self.mesh.copy(), self.rest_lengths.copy(), self.velocities.copy())

    def in_lockstep(self) -> bool:
        return (
            self.rest_lengths.shape[0] == self.mesh.n_edges
            and self.velocities.shape[0] == self.mesh.n_vertices
        )


def grow_rest_lengths(state: MeshState, rate: float) -> None:
    state.rest_lengths += float(rate)


def split_long_edges(
    state: MeshState, max_length: float, *, max_vertices: int
) -> tuple[int, int]:
    """`max_length` より長い辺を中点で分割する。

    分割前から存在する辺だけを index 順に 1 回ずつ調べ、頂点数が `max_vertices` に
    達した時点で打ち切る。分割された辺の 2 つの半分は静止長 `len / 2`、
    新しい対角線は現在の長さを静止長として持つ。

    Returns
    -------
    tuple[int, int]
        `(分割数, 拒否数)`。
    """
    mesh = state.mesh
    ne0 = mesh.n_edges
    nv0 = mesh.n_vertices
    limit = float(max_length) ** 2
    lengths = mesh.edge_lengths()
    halves: dict[int, float] = {}
    splits = 0
    rejected = 0

    for e in range(ne0):
        if mesh.n_vertices >= int(max_vertices):
            break
        # 同じパスで先に分割された辺の端点は動かないので、長さは分割前と同じ。
        length = float(lengths[e])
        if length * length <= limit:
            continue
        try:
            _m, new_edges = mesh.split_edge(e)
        except TopologyDefectError as exc:
            rejected += 1
            logger.debug("split rejected: edge=%d (%s)", e, exc)
            continue
        halves[e] = 0.5 * length
        halves[new_edges[0]] = 0.5 * length
        splits += 1

    if splits:
        added = mesh.edge_lengths()[ne0:]
        state.rest_lengths = np.concatenate([state.rest_lengths, added])
        for e, v in halves.items():
            state.rest_lengths[e] = v
        state.velocities = np.concatenate(
            [state.velocities, np.zeros((mesh.n_vertices - nv0, 3), dtype=np.float64)]
        )
    return splits, rejected


def valence_targets(mesh: HalfEdgeMesh) -> np.ndarray:
    return np.where(
        mesh.boundary_mask(), _TARGET_VALENCE_BOUNDARY, _TARGET_VALENCE_INTERIOR
    ).astype(np.int64)


def valence_error(mesh: HalfEdgeMesh) -> int:
    """メッシュ全体の valence 偏差の二乗和。"""
    dev = mesh.degrees() - valence_targets(mesh)
    return int(np.sum(dev * dev))


def equalize_valence(state: MeshState, rng: np.random.Generator) -> tuple[int, int]:
    """内部辺をシャッフル順に調べ、4 頂点の valence 偏差二乗和が減る場合だけフリップする。

    Returns
    -------
    tuple[int, int]
        `(フリップ数, 拒否数)`。
    """
    mesh = state.mesh
    degrees = mesh.degrees()
    targets = valence_targets(mesh)
    flips = 0
    rejected = 0

    for e in rng.permutation(mesh.n_edges).tolist():
        if mesh.is_boundary_edge(e):
            continue
        h = 2 * e
        start = mesh.he_start
        prev = mesh.he_prev
        i0 = int(start[h])
        i1 = int(start[prev[h]])
        i2 = int(start[h + 1])
        i3 = int(start[prev[h + 1]])

        t0 = int(degrees[i0] - targets[i0])
        t1 = int(degrees[i1] - targets[i1])
        t2 = int(degrees[i2] - targets[i2])
        t3 = int(degrees[i3] - targets[i3])
        before = t0 * t0 + t1 * t1 + t2 * t2 + t3 * t3
        after = (t0 - 1) ** 2 + (t1 + 1) ** 2 + (t2 - 1) ** 2 + (t3 + 1) ** 2
        if after >= before:
            continue

        try:
            mesh.spin_edge(e)
        except TopologyDefectError as exc:
            rejected += 1
            logger.debug("flip rejected: edge=%d (%s)", e, exc)
            continue
        p = mesh.positions
        state.rest_lengths[e] = float(np.linalg.norm(p[i3] - p[i1]))
        degrees[i0] -= 1
        degrees[i1] += 1
        degrees[i2] -= 1
        degrees[i3] += 1
        flips += 1
    return flips, rejected


def grow_curve(polyline: Polyline, params: GrowthParams) -> int:
    """曲線を 1 ステップ分成長させ、増えた点数を返す。

    `insert` は長い区間へ中点を挿入し、`resample` は補間曲線を等間隔で作り直す。
    どちらも要素数の上限を超えない。
    """
    cd = float(params.collision_distance)
    cap = int(params.max_element_count)
    if params.growth_mode == "resample":
        return max(0, polyline.resample(float(params.sampling_ratio) * cd, cap))
    return polyline.insert_midpoints(cd - float(params.insert_tolerance), cap)


def relax_curve(polyline: Polyline, params: GrowthParams) -> None:
    """曲線ラプラシアン平滑化を直接位置へ適用する。

    曲線では `weights.smoothing` が平滑化の有効化を兼ね、0 なら何もしない。
    """
    if float(params.weights.smoothing) == 0.0:
        return
    if int(params.laplacian_iterations) <= 0 or float(params.laplacian_strength) == 0.0:
        return
    polyline.positions = laplacian_smooth(
        polyline.positions,
        closed=polyline.closed,
        strength=float(params.laplacian_strength),
        iterations=int(params.laplacian_iterations),
    )


__all__ = [
    "MeshState",
    "equalize_valence",
    "grow_curve",
    "grow_rest_lengths",
    "relax_curve",
    "split_long_edges",
    "valence_error",
    "valence_targets",
]
