"""
どこで: `src/diffgrowth/core/topology/polyline.py`。
何を: 開/閉のポリライン（順序付き点列）と、点挿入・再サンプリングを提供する。
なぜ: 曲線の差分成長では隣接が `i±1` だけで決まるため、配列 1 本で十分に表せるから。
"""

from __future__ import annotations

import numpy as np

from diffgrowth.core.errors import InvalidConfigurationError


class Polyline:
    """順序付き点列。

    Parameters
    ----------
    points : array-like
        shape (N,3) または (N,2)。
    closed : bool
        True なら最後の点と最初の点も隣接する（重複した終点は持たない）。
    """

    def __init__(self, points: np.ndarray, closed: bool) -> None:
        p = np.array(points, dtype=np.float64)
        if p.ndim != 2 or p.shape[1] not in (2, 3):
            raise InvalidConfigurationError(
                f"points は shape (N,2|3) である必要があります: got={p.shape}"
            )
        if p.shape[1] == 2:
            p = np.concatenate([p, np.zeros((p.shape[0], 1), dtype=np.float64)], axis=1)
        min_n = 3 if closed else 2
        if p.shape[0] < min_n:
            raise InvalidConfigurationError(
                f"{'閉' if closed else '開'}曲線は {min_n} 点以上である必要があります: got={p.shape[0]}"
            )
        if not np.all(np.isfinite(p)):
            raise InvalidConfigurationError("points は有限値である必要があります")
        self._pos = np.ascontiguousarray(p)
        self.closed = bool(closed)

    @property
    def positions(self) -> np.ndarray:
        return self._pos

    @positions.setter
    def positions(self, value: np.ndarray) -> None:
        self._pos = np.ascontiguousarray(value, dtype=np.float64)

    @property
    def element_count(self) -> int:
        return int(self._pos.shape[0])

    def copy(self) -> Polyline:
        return Polyline(self._pos.copy(), self.closed)

    def neighbors(self, i: int) -> tuple[int | None, int | None]:
        """`(prev, next)` を返す。開曲線の端では該当側が None。"""
        n = self.element_count
        i = int(i)
        if not 0 <= i < n:
            raise IndexError(f"point index が範囲外です: got={i}, n={n}")
        if self.closed:
            return (i - 1) % n, (i + 1) % n
        return (i - 1 if i > 0 else None), (i + 1 if i + 1 < n else None)

    def edge_pairs(self) -> np.ndarray:
        n = self.element_count
        i = np.arange(n if self.closed else n - 1, dtype=np.int64)
        return np.stack([i, (i + 1) % n], axis=1)

    def segment_lengths(self) -> np.ndarray:
        pairs = self.edge_pairs()
        d = self._pos[pairs[:, 1]] - self._pos[pairs[:, 0]]
        return np.sqrt(np.einsum("ij,ij->i", d, d))

    def neighbor_csr(self) -> tuple[np.ndarray, np.ndarray]:
        n = self.element_count
        i = np.arange(n, dtype=np.int64)
        if self.closed:
            indptr = np.arange(0, 2 * n + 1, 2, dtype=np.int64)
            indices = np.stack([(i - 1) % n, (i + 1) % n], axis=1).reshape(-1)
            return indptr, indices
        counts = np.full((n,), 2, dtype=np.int64)
        counts[0] = 1
        counts[-1] = 1
        indptr = np.zeros((n + 1,), dtype=np.int64)
        np.cumsum(counts, out=indptr[1:])
        indices = np.empty((int(indptr[-1]),), dtype=np.int64)
        k = 0
        for v in range(n):
            if v > 0:
                indices[k] = v - 1
                k += 1
            if v + 1 < n:
                indices[k] = v + 1
                k += 1
        return indptr, indices

    def boundary_mask(self) -> np.ndarray:
        mask = np.zeros((self.element_count,), dtype=np.bool_)
        if not self.closed:
            mask[0] = True
            mask[-1] = True
        return mask

    def insert_after(self, i: int, point: np.ndarray) -> int:
        """点 i の直後に点を挿入し、新しい点の index を返す。"""
        n = self.element_count
        if not 0 <= int(i) < n:
            raise IndexError(f"point index が範囲外です: got={i}, n={n}")
        p = np.asarray(point, dtype=np.float64).reshape(3)
        self._pos = np.insert(self._pos, int(i) + 1, p, axis=0)
        return int(i) + 1

    def insert_midpoints(self, threshold: float, max_count: int) -> int:
        """`threshold` より長い区間の中点に点を挿入する。

        区間は先頭から走査し、要素数が `max_count` に達した時点で打ち切る。

        Returns
        -------
        int
            挿入した点数。
        """
        n = self.element_count
        budget = int(max_count) - n
        if budget <= 0:
            return 0
        lengths = self.segment_lengths()
        long_seg = np.flatnonzero(lengths > float(threshold))
        if long_seg.size == 0:
            return 0
        long_seg = long_seg[:budget]

        pairs = self.edge_pairs()[long_seg]
        mids = 0.5 * (self._pos[pairs[:, 0]] + self._pos[pairs[:, 1]])
        # np.insert は挿入位置を元配列基準で受け取る。
        self._pos = np.ascontiguousarray(np.insert(self._pos, long_seg + 1, mids, axis=0))
        return int(long_seg.size)

    def resample(self, spacing: float, max_count: int) -> int:
        """滑らかな補間曲線を概ね等間隔 `spacing` で再サンプリングする。

        Returns
        -------
        int
            要素数の増分（減った場合は負）。
        """
        from diffgrowth.core.curve_kernel import resample_curve

        before = self.element_count
        out = resample_curve(self._pos, closed=self.closed, spacing=float(spacing))
        if out.shape[0] > int(max_count):
            out = resample_curve(
                self._pos, closed=self.closed, count=max(int(max_count), 3 if self.closed else 2)
            )
        self._pos = np.ascontiguousarray(out, dtype=np.float64)
        return self.element_count - before


__all__ = ["Polyline"]
