"""
どこで: `src/diffgrowth/core/topology/base.py`。
何を: メッシュ / 曲線 / 点群が共通に満たす `Topology` プロトコルを定義する。
なぜ: 力の集計・積分・ドライバを、変種ごとに書き分けず 1 つのエンジンで扱うため。
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class Topology(Protocol):
    """成長対象の幾何と隣接関係。

    `positions` は (N,3) float64 の書き込み可能な配列で、積分器がその場で更新する。
    """

    @property
    def positions(self) -> np.ndarray: ...

    @property
    def element_count(self) -> int: ...

    def edge_pairs(self) -> np.ndarray:
        """(E,2) int64 の辺（端点 index の組）を返す。"""
        ...

    def neighbor_csr(self) -> tuple[np.ndarray, np.ndarray]:
        """要素ごとの隣接要素を CSR 形式 `(indptr, indices)` で返す。"""
        ...

    def boundary_mask(self) -> np.ndarray:
        """(N,) bool。平滑化から除外する要素（境界 / 開曲線の端点）が True。"""
        ...

    def copy(self) -> Topology: ...


__all__ = ["Topology"]
