"""
どこで: `src/diffgrowth/core/forces.py`。
何を: 各力項（辺長・衝突・1-ring 相殺・ラプラシアン・境界平滑化・曲げ・field）を重み付き移動量として集計する。
なぜ: 全項が同じ位置スナップショットを読み、`move_sum` / `weight_sum` に足し込むだけにすることで、
      項の評価順に依存しない 1 ステップを作るため。

要素ごとの項は prange で並列に評価し、各タスクは自分の要素スロットだけに書く。
ペア（辺・衝突）の寄与はペアの両端に書くため、直列カーネルで 1 ペア 1 回だけ適用する。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
from numba import njit, prange  # type: ignore[import-untyped]


@njit(cache=True)
def _edge_length_numba(
    points: np.ndarray,
    pairs: np.ndarray,
    rest: np.ndarray,
    weight: float,
    tension_only: bool,
    move: np.ndarray,
    wsum: np.ndarray,
) -> int:
    degenerate = 0
    for k in range(pairs.shape[0]):
        i = pairs[k, 0]
        j = pairs[k, 1]
        dx = points[j, 0] - points[i, 0]
        dy = points[j, 1] - points[i, 1]
        dz = points[j, 2] - points[i, 2]
        length = math.sqrt(dx * dx + dy * dy + dz * dz)
        if length == 0.0:
            degenerate += 1
            continue
        if tension_only and length <= rest[k]:
            continue
        s = 0.5 * (length - rest[k]) / length * weight
        move[i, 0] += dx * s
        move[i, 1] += dy * s
        move[i, 2] += dz * s
        move[j, 0] -= dx * s
        move[j, 1] -= dy * s
        move[j, 2] -= dz * s
        wsum[i] += weight
        wsum[j] += weight
    return degenerate


@njit(cache=True)
def _collision_numba(
    points: np.ndarray,
    pi: np.ndarray,
    pj: np.ndarray,
    dist: np.ndarray,
    radii: np.ndarray,
    weight: float,
    move: np.ndarray,
    wsum: np.ndarray,
) -> int:
    degenerate = 0
    for k in range(pi.shape[0]):
        i = pi[k]
        j = pj[k]
        d = dist[k]
        if d == 0.0:
            degenerate += 1
            continue
        ri = radii[i]
        rj = radii[j]
        dx = points[i, 0] - points[j, 0]
        dy = points[i, 1] - points[j, 1]
        dz = points[i, 2] - points[j, 2]
        if d < ri:
            s = ri / (ri + rj) * (ri - d) / d * weight
            move[i, 0] += dx * s
            move[i, 1] += dy * s
            move[i, 2] += dz * s
            wsum[i] += weight
        if d < rj:
            s = rj / (ri + rj) * (rj - d) / d * weight
            move[j, 0] -= dx * s
            move[j, 1] -= dy * s
            move[j, 2] -= dz * s
            wsum[j] += weight
    return degenerate


@njit(cache=True, parallel=True)
def _one_ring_cancel_numba(
    points: np.ndarray,
    indptr: np.ndarray,
    indices: np.ndarray,
    radii: np.ndarray,
    weight: float,
    move: np.ndarray,
    wsum: np.ndarray,
) -> None:
    n = points.shape[0]
    for i in prange(n):
        ri = radii[i]
        for k in range(indptr[i], indptr[i + 1]):
            j = indices[k]
            dx = points[i, 0] - points[j, 0]
            dy = points[i, 1] - points[j, 1]
            dz = points[i, 2] - points[j, 2]
            d = math.sqrt(dx * dx + dy * dy + dz * dz)
            if d > 0.0 and d < ri:
                s = ri / (ri + radii[j]) * (ri - d) / d * weight
                move[i, 0] -= dx * s
                move[i, 1] -= dy * s
                move[i, 2] -= dz * s
                wsum[i] += weight


@njit(cache=True, parallel=True)
def _laplacian_numba(
    points: np.ndarray,
    indptr: np.ndarray,
    indices: np.ndarray,
    excluded: np.ndarray,
    weight: float,
    move: np.ndarray,
    wsum: np.ndarray,
) -> None:
    n = points.shape[0]
    for i in prange(n):
        s = indptr[i]
        e = indptr[i + 1]
        if not excluded[i] and e > s:
            cx = 0.0
            cy = 0.0
            cz = 0.0
            for k in range(s, e):
                j = indices[k]
                cx += points[j, 0]
                cy += points[j, 1]
                cz += points[j, 2]
            inv = 1.0 / float(e - s)
            move[i, 0] += (cx * inv - points[i, 0]) * weight
            move[i, 1] += (cy * inv - points[i, 1]) * weight
            move[i, 2] += (cz * inv - points[i, 2]) * weight
            wsum[i] += weight


@njit(cache=True)
def _boundary_smooth_numba(
    points: np.ndarray,
    loop_vertices: np.ndarray,
    loop_offsets: np.ndarray,
    weight: float,
    move: np.ndarray,
    wsum: np.ndarray,
) -> None:
    for li in range(loop_offsets.shape[0] - 1):
        s = loop_offsets[li]
        e = loop_offsets[li + 1]
        m = e - s
        if m < 3:
            continue
        for k in range(m):
            v0 = loop_vertices[s + k]
            v1 = loop_vertices[s + (k + 1) % m]
            v2 = loop_vertices[s + (k + m - 1) % m]
            for c in range(3):
                mv = (0.5 * (points[v1, c] + points[v2, c]) - points[v0, c]) * weight
                move[v0, c] += mv
                move[v1, c] -= 0.5 * mv
                move[v2, c] -= 0.5 * mv
            wsum[v0] += weight
            wsum[v1] += weight
            wsum[v2] += weight


@njit(cache=True)
def _bending_numba(
    points: np.ndarray,
    corners: np.ndarray,
    weight: float,
    move: np.ndarray,
    wsum: np.ndarray,
) -> int:
    degenerate = 0
    for k in range(corners.shape[0]):
        i = corners[k, 0]
        j = corners[k, 1]
        p = corners[k, 2]
        q = corners[k, 3]
        ijx = points[j, 0] - points[i, 0]
        ijy = points[j, 1] - points[i, 1]
        ijz = points[j, 2] - points[i, 2]
        ipx = points[p, 0] - points[i, 0]
        ipy = points[p, 1] - points[i, 1]
        ipz = points[p, 2] - points[i, 2]
        iqx = points[q, 0] - points[i, 0]
        iqy = points[q, 1] - points[i, 1]
        iqz = points[q, 2] - points[i, 2]
        # nP = ij x ip, nQ = iq x ij
        nx = (ijy * ipz - ijz * ipy) + (iqy * ijz - iqz * ijy)
        ny = (ijz * ipx - ijx * ipz) + (iqz * ijx - iqx * ijz)
        nz = (ijx * ipy - ijy * ipx) + (iqx * ijy - iqy * ijx)
        nn = math.sqrt(nx * nx + ny * ny + nz * nz)
        if nn == 0.0:
            degenerate += 1
            continue
        nx /= nn
        ny /= nn
        nz /= nn
        ox = 0.25 * (points[i, 0] + points[j, 0] + points[p, 0] + points[q, 0])
        oy = 0.25 * (points[i, 1] + points[j, 1] + points[p, 1] + points[q, 1])
        oz = 0.25 * (points[i, 2] + points[j, 2] + points[p, 2] + points[q, 2])
        for c in range(4):
            v = corners[k, c]
            h = (points[v, 0] - ox) * nx + (points[v, 1] - oy) * ny + (points[v, 2] - oz) * nz
            move[v, 0] -= h * nx * weight
            move[v, 1] -= h * ny * weight
            move[v, 2] -= h * nz * weight
            wsum[v] += weight
    return degenerate


@dataclass(slots=True)
class ForceAccumulator:
    """1 サブステップ分の `move_sum` / `weight_sum`。

    Attributes
    ----------
    move_sum:
        (N,3) float64 の重み付き移動量の和。
    weight_sum:
        (N,) float64 の重みの和。
    degenerate:
        長さ 0 などで寄与をスキップした回数（集計のみ）。
    """

    move_sum: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))
    weight_sum: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.float64))
    degenerate: int = 0

    def reset(self, n: int) -> None:
        """要素数 n に合わせてゼロクリアする（要素数が変わった場合は作り直す）。"""
        n = int(n)
        if self.move_sum.shape[0] != n:
            self.move_sum = np.zeros((n, 3), dtype=np.float64)
            self.weight_sum = np.zeros((n,), dtype=np.float64)
        else:
            self.move_sum.fill(0.0)
            self.weight_sum.fill(0.0)

    def add_edge_length(
        self,
        points: np.ndarray,
        pairs: np.ndarray,
        rest_lengths: np.ndarray,
        weight: float,
        *,
        tension_only: bool = False,
    ) -> None:
        """各辺を静止長へ近づける。`tension_only` では伸びた辺だけを縮める。"""
        if weight == 0.0 or pairs.shape[0] == 0:
            return
        self.degenerate += int(
            _edge_length_numba(
                points,
                np.ascontiguousarray(pairs, dtype=np.int64),
                np.ascontiguousarray(rest_lengths, dtype=np.float64),
                float(weight),
                bool(tension_only),
                self.move_sum,
                self.weight_sum,
            )
        )

    def add_collisions(
        self,
        points: np.ndarray,
        pairs: tuple[np.ndarray, np.ndarray, np.ndarray],
        radii: np.ndarray,
        weight: float,
    ) -> None:
        """近接ペアを押し離す。要素 i は `d < r_i` のときだけ半径比で寄与を受ける。"""
        pi, pj, dist = pairs
        if weight == 0.0 or pi.shape[0] == 0:
            return
        self.degenerate += int(
            _collision_numba(
                points, pi, pj, dist, radii, float(weight), self.move_sum, self.weight_sum
            )
        )

    def add_one_ring_cancellation(
        self,
        points: np.ndarray,
        csr: tuple[np.ndarray, np.ndarray],
        radii: np.ndarray,
        weight: float,
    ) -> None:
        """隣接頂点どうしの衝突寄与を打ち消す（重みは加算する）。"""
        if weight == 0.0:
            return
        indptr, indices = csr
        _one_ring_cancel_numba(
            points, indptr, indices, radii, float(weight), self.move_sum, self.weight_sum
        )

    def add_laplacian(
        self,
        points: np.ndarray,
        csr: tuple[np.ndarray, np.ndarray],
        excluded: np.ndarray,
        weight: float,
    ) -> None:
        if weight == 0.0:
            return
        indptr, indices = csr
        _laplacian_numba(
            points,
            indptr,
            indices,
            np.ascontiguousarray(excluded, dtype=np.bool_),
            float(weight),
            self.move_sum,
            self.weight_sum,
        )

    def add_boundary_smoothing(
        self, points: np.ndarray, loops: list[np.ndarray], weight: float
    ) -> None:
        """穴ループの各頂点をループ上の両隣の中点へ寄せ、両隣へ半分の逆向き移動を与える。"""
        if weight == 0.0 or not loops:
            return
        offsets = np.zeros((len(loops) + 1,), dtype=np.int64)
        np.cumsum([int(lp.shape[0]) for lp in loops], out=offsets[1:])
        verts = np.concatenate(loops).astype(np.int64, copy=False)
        _boundary_smooth_numba(points, verts, offsets, float(weight), self.move_sum, self.weight_sum)

    def add_bending(self, points: np.ndarray, corners: np.ndarray, weight: float) -> None:
        """内部辺の 4 頂点を、それらに当てはめた平面へ引き寄せる。"""
        if weight == 0.0 or corners.shape[0] == 0:
            return
        self.degenerate += int(
            _bending_numba(
                points,
                np.ascontiguousarray(corners, dtype=np.int64),
                float(weight),
                self.move_sum,
                self.weight_sum,
            )
        )

    def add_field(self, vectors: np.ndarray, weight: float) -> None:
        if weight == 0.0:
            return
        self.move_sum += np.asarray(vectors, dtype=np.float64) * float(weight)
        self.weight_sum += float(weight)


__all__ = ["ForceAccumulator"]
