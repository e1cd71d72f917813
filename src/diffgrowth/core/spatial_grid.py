"""
どこで: `src/diffgrowth/core/spatial_grid.py`。
何を: 3D 一様グリッドによる近傍探索（挿入・再構築・box/球探索・ペア列挙）を提供する。
なぜ: 成長で要素数と外形が増え続けても、衝突判定を近傍セルだけの走査に抑えるため。

セルは「head（セル → 先頭エントリ）+ next（エントリ → 次エントリ）」の連結リストで持つ。
ペア列挙はクエリ中にグリッドを読むだけなので、要素ごとに prange で並列化できる。
"""

from __future__ import annotations

import math
from collections.abc import Iterator

import numpy as np
from numba import njit, prange  # type: ignore[import-untyped]

_DEFAULT_MAX_CELLS = 2_000_000
# bin の大きさが target_scale のこの倍率を超えたらグリッドを作り直す。
_REBUILD_RATIO = 2.0


@njit(cache=True)
def _cell_index_1d(x: float, lo: float, inv: float, n: int) -> int:
    c = int(math.floor((x - lo) * inv))
    if c < 0:
        return 0
    if c >= n:
        return n - 1
    return c


@njit(cache=True)
def _bin_points_numba(
    points: np.ndarray,
    lo: np.ndarray,
    inv: np.ndarray,
    counts: np.ndarray,
    head: np.ndarray,
    nxt: np.ndarray,
) -> None:
    nx = int(counts[0])
    ny = int(counts[1])
    nz = int(counts[2])
    for i in range(points.shape[0]):
        cx = _cell_index_1d(points[i, 0], lo[0], inv[0], nx)
        cy = _cell_index_1d(points[i, 1], lo[1], inv[1], ny)
        cz = _cell_index_1d(points[i, 2], lo[2], inv[2], nz)
        ci = cx + nx * (cy + ny * cz)
        nxt[i] = head[ci]
        head[ci] = i


@njit(cache=True, parallel=True)
def _count_pairs_numba(
    points: np.ndarray,
    cutoffs: np.ndarray,
    max_cut: float,
    lo: np.ndarray,
    inv: np.ndarray,
    counts: np.ndarray,
    head: np.ndarray,
    nxt: np.ndarray,
    ids: np.ndarray,
) -> np.ndarray:
    n = points.shape[0]
    nx = int(counts[0])
    ny = int(counts[1])
    nz = int(counts[2])
    out = np.zeros(n, dtype=np.int64)
    for i in prange(n):
        px = points[i, 0]
        py = points[i, 1]
        pz = points[i, 2]
        x0 = _cell_index_1d(px - max_cut, lo[0], inv[0], nx)
        x1 = _cell_index_1d(px + max_cut, lo[0], inv[0], nx)
        y0 = _cell_index_1d(py - max_cut, lo[1], inv[1], ny)
        y1 = _cell_index_1d(py + max_cut, lo[1], inv[1], ny)
        z0 = _cell_index_1d(pz - max_cut, lo[2], inv[2], nz)
        z1 = _cell_index_1d(pz + max_cut, lo[2], inv[2], nz)
        c = 0
        for cz in range(z0, z1 + 1):
            for cy in range(y0, y1 + 1):
                for cx in range(x0, x1 + 1):
                    e = head[cx + nx * (cy + ny * cz)]
                    while e != -1:
                        j = ids[e]
                        if j > i:
                            dx = points[j, 0] - px
                            dy = points[j, 1] - py
                            dz = points[j, 2] - pz
                            cut = max(cutoffs[i], cutoffs[j])
                            if dx * dx + dy * dy + dz * dz < cut * cut:
                                c += 1
                        e = nxt[e]
        out[i] = c
    return out


@njit(cache=True, parallel=True)
def _fill_pairs_numba(
    points: np.ndarray,
    cutoffs: np.ndarray,
    max_cut: float,
    lo: np.ndarray,
    inv: np.ndarray,
    counts: np.ndarray,
    head: np.ndarray,
    nxt: np.ndarray,
    ids: np.ndarray,
    offsets: np.ndarray,
    out_i: np.ndarray,
    out_j: np.ndarray,
    out_d: np.ndarray,
) -> None:
    n = points.shape[0]
    nx = int(counts[0])
    ny = int(counts[1])
    nz = int(counts[2])
    for i in prange(n):
        px = points[i, 0]
        py = points[i, 1]
        pz = points[i, 2]
        x0 = _cell_index_1d(px - max_cut, lo[0], inv[0], nx)
        x1 = _cell_index_1d(px + max_cut, lo[0], inv[0], nx)
        y0 = _cell_index_1d(py - max_cut, lo[1], inv[1], ny)
        y1 = _cell_index_1d(py + max_cut, lo[1], inv[1], ny)
        z0 = _cell_index_1d(pz - max_cut, lo[2], inv[2], nz)
        z1 = _cell_index_1d(pz + max_cut, lo[2], inv[2], nz)
        k = offsets[i]
        for cz in range(z0, z1 + 1):
            for cy in range(y0, y1 + 1):
                for cx in range(x0, x1 + 1):
                    e = head[cx + nx * (cy + ny * cz)]
                    while e != -1:
                        j = ids[e]
                        if j > i:
                            dx = points[j, 0] - px
                            dy = points[j, 1] - py
                            dz = points[j, 2] - pz
                            d2 = dx * dx + dy * dy + dz * dz
                            cut = max(cutoffs[i], cutoffs[j])
                            if d2 < cut * cut:
                                out_i[k] = i
                                out_j[k] = j
                                out_d[k] = math.sqrt(d2)
                                k += 1
                        e = nxt[e]


@njit(cache=True)
def _brute_force_pairs_numba(
    points: np.ndarray, cutoffs: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    n = points.shape[0]
    cap = 16
    out_i = np.empty(cap, dtype=np.int64)
    out_j = np.empty(cap, dtype=np.int64)
    out_d = np.empty(cap, dtype=np.float64)
    k = 0
    for i in range(n - 1):
        for j in range(i + 1, n):
            dx = points[j, 0] - points[i, 0]
            dy = points[j, 1] - points[i, 1]
            dz = points[j, 2] - points[i, 2]
            d2 = dx * dx + dy * dy + dz * dz
            cut = max(cutoffs[i], cutoffs[j])
            if d2 >= cut * cut:
                continue
            if k >= cap:
                cap *= 2
                ni = np.empty(cap, dtype=np.int64)
                nj = np.empty(cap, dtype=np.int64)
                nd = np.empty(cap, dtype=np.float64)
                ni[:k] = out_i[:k]
                nj[:k] = out_j[:k]
                nd[:k] = out_d[:k]
                out_i = ni
                out_j = nj
                out_d = nd
            out_i[k] = i
            out_j[k] = j
            out_d[k] = math.sqrt(d2)
            k += 1
    return out_i[:k], out_j[:k], out_d[:k]


def brute_force_pairs(
    points: np.ndarray, cutoffs: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """総当たりで `dist < max(cutoff_i, cutoff_j)` のペア（i < j）を列挙する。"""
    pts = np.ascontiguousarray(points, dtype=np.float64)
    cuts = np.ascontiguousarray(cutoffs, dtype=np.float64)
    if pts.shape[0] < 2:
        empty_i = np.zeros((0,), dtype=np.int64)
        return empty_i, empty_i.copy(), np.zeros((0,), dtype=np.float64)
    return _brute_force_pairs_numba(pts, cuts)


class SpatialGrid:
    """軸平行な直方体領域を一様な bin に分割した空間インデックス。

    Parameters
    ----------
    bounds_min, bounds_max : array-like
        shape (3,) の領域下限・上限。領域外の点は境界セルへ寄せて格納する。
    counts : tuple[int, int, int]
        各軸の bin 数（1 以上）。
    max_cells : int
        `fit()` で作り直す際のセル総数上限。

    Notes
    -----
    内容は 1 ステップ内だけの一時データ。`rebuild()` / `insert()` の後に探索し、
    次のステップの前に `clear()` する。探索（`search_*` / `query_pairs`）は内容を変更しない。
    """

    def __init__(
        self,
        bounds_min: np.ndarray | tuple[float, float, float],
        bounds_max: np.ndarray | tuple[float, float, float],
        counts: tuple[int, int, int],
        *,
        max_cells: int = _DEFAULT_MAX_CELLS,
    ) -> None:
        self._max_cells = max(1, int(max_cells))
        self._lo = np.zeros((3,), dtype=np.float64)
        self._hi = np.zeros((3,), dtype=np.float64)
        self._counts = np.ones((3,), dtype=np.int64)
        self._inv = np.zeros((3,), dtype=np.float64)
        self._head = np.full((1,), -1, dtype=np.int64)
        self._nxt = np.empty((16,), dtype=np.int64)
        self._ids = np.empty((16,), dtype=np.int64)
        self._pos = np.empty((16, 3), dtype=np.float64)
        self._size = 0
        self._set_resolution(counts)
        self.set_bounds(bounds_min, bounds_max)

    @classmethod
    def from_points(
        cls,
        points: np.ndarray,
        target_scale: float,
        *,
        max_cells: int = _DEFAULT_MAX_CELLS,
    ) -> SpatialGrid:
        """点群の bbox を `target_scale` 程度の bin で覆う空のグリッドを作る。"""
        lo, hi = _bounds_of(points)
        counts = _counts_for(hi - lo, float(target_scale), int(max_cells))
        return cls(lo, hi, counts, max_cells=max_cells)

    @property
    def bounds_min(self) -> np.ndarray:
        return self._lo.copy()

    @property
    def bounds_max(self) -> np.ndarray:
        return self._hi.copy()

    @property
    def counts(self) -> tuple[int, int, int]:
        return (int(self._counts[0]), int(self._counts[1]), int(self._counts[2]))

    @property
    def bin_scale(self) -> np.ndarray:
        """各軸の bin 幅を返す。"""
        return (self._hi - self._lo) / self._counts.astype(np.float64)

    def __len__(self) -> int:
        return int(self._size)

    def _set_resolution(self, counts: tuple[int, int, int]) -> None:
        c = np.asarray([max(1, int(v)) for v in counts], dtype=np.int64)
        if c.shape != (3,):
            raise ValueError(f"counts は 3 要素である必要があります: got={counts!r}")
        self._counts = c
        self._head = np.full((int(np.prod(c)),), -1, dtype=np.int64)
        self._size = 0

    def set_bounds(
        self,
        bounds_min: np.ndarray | tuple[float, float, float],
        bounds_max: np.ndarray | tuple[float, float, float],
    ) -> None:
        """解像度を保ったまま領域だけを差し替える（内容は破棄する）。"""
        lo = np.asarray(bounds_min, dtype=np.float64).reshape(3)
        hi = np.asarray(bounds_max, dtype=np.float64).reshape(3)
        if not (np.all(np.isfinite(lo)) and np.all(np.isfinite(hi))):
            raise ValueError("bounds は有限値である必要があります")
        hi = np.maximum(hi, lo)
        span = hi - lo
        self._lo = lo.copy()
        self._hi = hi.copy()
        self._inv = np.where(span > 0.0, self._counts / np.where(span > 0.0, span, 1.0), 0.0)
        self.clear()

    def fit(self, points: np.ndarray, target_scale: float) -> bool:
        """領域を点群の bbox に合わせ、bin が粗くなり過ぎていれば作り直す。

        セル数上限のために bin を細かくできない場合は、解像度を変えず作り直しもしない。

        Returns
        -------
        bool
            解像度を作り直した場合 True。
        """
        lo, hi = _bounds_of(points)
        self.set_bounds(lo, hi)
        limit = _REBUILD_RATIO * float(target_scale)
        if not np.any(self.bin_scale > limit):
            return False
        counts = _counts_for(hi - lo, float(target_scale), self._max_cells)
        if counts == self.counts:
            return False
        self._set_resolution(counts)
        self.set_bounds(lo, hi)
        return True

    def clear(self) -> None:
        """格納済みの id を全て取り除く。"""
        self._head.fill(-1)
        self._size = 0

    def _reserve(self, n: int) -> None:
        cap = int(self._nxt.shape[0])
        if n <= cap:
            return
        new_cap = max(n, cap * 2)
        nxt = np.empty((new_cap,), dtype=np.int64)
        ids = np.empty((new_cap,), dtype=np.int64)
        pos = np.empty((new_cap, 3), dtype=np.float64)
        nxt[: self._size] = self._nxt[: self._size]
        ids[: self._size] = self._ids[: self._size]
        pos[: self._size] = self._pos[: self._size]
        self._nxt = nxt
        self._ids = ids
        self._pos = pos

    def _cell_of(self, point: np.ndarray) -> tuple[int, int, int]:
        c = np.floor((point - self._lo) * self._inv).astype(np.int64)
        c = np.clip(c, 0, self._counts - 1)
        return int(c[0]), int(c[1]), int(c[2])

    def _flat(self, cx: int, cy: int, cz: int) -> int:
        nx = int(self._counts[0])
        ny = int(self._counts[1])
        return cx + nx * (cy + ny * cz)

    def insert(self, point: np.ndarray | tuple[float, float, float], item_id: int) -> None:
        """1 点を id 付きで格納する。"""
        p = np.asarray(point, dtype=np.float64).reshape(3)
        e = self._size
        self._reserve(e + 1)
        ci = self._flat(*self._cell_of(p))
        self._pos[e] = p
        self._ids[e] = int(item_id)
        self._nxt[e] = self._head[ci]
        self._head[ci] = e
        self._size = e + 1

    def rebuild(self, points: np.ndarray) -> None:
        """内容を破棄し、`points[i]` を id=i として一括格納する。"""
        pts = np.ascontiguousarray(points, dtype=np.float64)
        n = int(pts.shape[0])
        self.clear()
        self._reserve(n)
        self._pos[:n] = pts
        self._ids[:n] = np.arange(n, dtype=np.int64)
        _bin_points_numba(pts, self._lo, self._inv, self._counts, self._head, self._nxt)
        self._size = n

    def search_box(
        self,
        box_min: np.ndarray | tuple[float, float, float],
        box_max: np.ndarray | tuple[float, float, float],
    ) -> Iterator[int]:
        """box と重なるセルの id を遅延列挙する（box 内判定は行わない候補列）。"""
        lo = np.asarray(box_min, dtype=np.float64).reshape(3)
        hi = np.asarray(box_max, dtype=np.float64).reshape(3)
        x0, y0, z0 = self._cell_of(lo)
        x1, y1, z1 = self._cell_of(hi)
        for cz in range(z0, z1 + 1):
            for cy in range(y0, y1 + 1):
                for cx in range(x0, x1 + 1):
                    e = int(self._head[self._flat(cx, cy, cz)])
                    while e != -1:
                        yield int(self._ids[e])
                        e = int(self._nxt[e])

    def search_sphere(
        self, center: np.ndarray | tuple[float, float, float], radius: float
    ) -> Iterator[int]:
        """中心から `radius` 以内に格納された id を遅延列挙する。"""
        c = np.asarray(center, dtype=np.float64).reshape(3)
        r = float(radius)
        x0, y0, z0 = self._cell_of(c - r)
        x1, y1, z1 = self._cell_of(c + r)
        r2 = r * r
        for cz in range(z0, z1 + 1):
            for cy in range(y0, y1 + 1):
                for cx in range(x0, x1 + 1):
                    e = int(self._head[self._flat(cx, cy, cz)])
                    while e != -1:
                        d = self._pos[e] - c
                        if float(d @ d) <= r2:
                            yield int(self._ids[e])
                        e = int(self._nxt[e])

    def query_pairs(
        self, points: np.ndarray, cutoffs: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """`dist < max(cutoff_i, cutoff_j)` を満たすペアを i < j で 1 回ずつ返す。

        Parameters
        ----------
        points : np.ndarray
            shape (N,3)。格納済み id は `points` の行番号である必要がある。
        cutoffs : np.ndarray
            shape (N,) の要素ごとの判定距離。

        Returns
        -------
        tuple[np.ndarray, np.ndarray, np.ndarray]
            `(i, j, dist)`。i の昇順、同じ i の中はセル走査順。
        """
        pts = np.ascontiguousarray(points, dtype=np.float64)
        cuts = np.ascontiguousarray(cutoffs, dtype=np.float64)
        n = int(pts.shape[0])
        if n < 2 or self._size == 0:
            empty_i = np.zeros((0,), dtype=np.int64)
            return empty_i, empty_i.copy(), np.zeros((0,), dtype=np.float64)

        max_cut = float(np.max(cuts))
        nxt = self._nxt[: self._size]
        ids = self._ids[: self._size]
        per = _count_pairs_numba(
            pts, cuts, max_cut, self._lo, self._inv, self._counts, self._head, nxt, ids
        )
        offsets = np.zeros((n + 1,), dtype=np.int64)
        np.cumsum(per, out=offsets[1:])
        total = int(offsets[-1])
        out_i = np.empty((total,), dtype=np.int64)
        out_j = np.empty((total,), dtype=np.int64)
        out_d = np.empty((total,), dtype=np.float64)
        _fill_pairs_numba(
            pts,
            cuts,
            max_cut,
            self._lo,
            self._inv,
            self._counts,
            self._head,
            nxt,
            ids,
            offsets,
            out_i,
            out_j,
            out_d,
        )
        return out_i, out_j, out_d


def _bounds_of(points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    pts = np.asarray(points, dtype=np.float64)
    if pts.shape[0] == 0:
        z = np.zeros((3,), dtype=np.float64)
        return z, z.copy()
    return np.min(pts, axis=0), np.max(pts, axis=0)


def _counts_for(span: np.ndarray, target_scale: float, max_cells: int) -> tuple[int, int, int]:
    """bin 幅が `target_scale` 程度になる bin 数を、セル総数上限内で返す。"""
    scale = float(target_scale)
    if not math.isfinite(scale) or scale <= 0.0:
        scale = 1.0
    limit = max(1, int(max_cells))
    for _ in range(64):
        c = [max(1, int(math.ceil(float(s) / scale))) for s in span]
        if c[0] * c[1] * c[2] <= limit:
            return c[0], c[1], c[2]
        scale *= (float(c[0] * c[1] * c[2]) / float(limit)) ** (1.0 / 3.0) * 1.01
    return 1, 1, 1


__all__ = ["SpatialGrid", "brute_force_pairs"]
