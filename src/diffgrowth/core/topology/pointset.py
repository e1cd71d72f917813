"""隣接を持たない点群（粒子の群れ）。"""

from __future__ import annotations

import numpy as np

from diffgrowth.core.errors import InvalidConfigurationError


class PointSet:
    """順序に意味のない点の集合。辺・境界を持たない。"""

    def __init__(self, points: np.ndarray) -> None:
        p = np.array(points, dtype=np.float64)
        if p.ndim != 2 or p.shape[0] == 0 or p.shape[1] not in (2, 3):
            raise InvalidConfigurationError(
                f"points は shape (N,2|3) の非空配列である必要があります: got={p.shape}"
            )
        if p.shape[1] == 2:
            p = np.concatenate([p, np.zeros((p.shape[0], 1), dtype=np.float64)], axis=1)
        if not np.all(np.isfinite(p)):
            raise InvalidConfigurationError("points は有限値である必要があります")
        self._pos = np.ascontiguousarray(p)

    @property
    def positions(self) -> np.ndarray:
        return self._pos

    @property
    def element_count(self) -> int:
        return int(self._pos.shape[0])

    def copy(self) -> PointSet:
        return PointSet(self._pos.copy())

    def append(self, point: np.ndarray) -> int:
        p = np.asarray(point, dtype=np.float64).reshape(1, 3)
        self._pos = np.ascontiguousarray(np.concatenate([self._pos, p], axis=0))
        return self.element_count - 1

    def edge_pairs(self) -> np.ndarray:
        return np.zeros((0, 2), dtype=np.int64)

    def neighbor_csr(self) -> tuple[np.ndarray, np.ndarray]:
        return np.zeros((self.element_count + 1,), dtype=np.int64), np.zeros((0,), dtype=np.int64)

    def boundary_mask(self) -> np.ndarray:
        return np.zeros((self.element_count,), dtype=np.bool_)


__all__ = ["PointSet"]
