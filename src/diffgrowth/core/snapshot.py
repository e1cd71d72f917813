# src/diffgrowth/core/snapshot.py
# シミュレーション状態の読み取り専用スナップショットと、ポリライン集合表現への変換。

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

GeomTuple = tuple[np.ndarray, np.ndarray]
"""`(coords, offsets)` で表すポリライン集合の最小表現。

- `coords`: shape `(N,3)` の float32 座標配列
- `offsets`: shape `(M+1,)` の int32 境界配列
"""


@dataclass(frozen=True, slots=True)
class GrowthSnapshot:
    """ある時点の成長状態を表現する。

    Parameters
    ----------
    variant : str
        `"mesh"` / `"curve"` / `"points"`。
    step_count : int
        これまでに実行した物理サブステップ数。
    positions : np.ndarray
        float64 型 shape (N, 3) の要素位置。
    radii : np.ndarray
        float64 型 shape (N,) の衝突半径。
    faces : np.ndarray or None
        int64 型 shape (F, 3) の三角形（メッシュのみ）。
    closed : bool or None
        曲線が閉じているか（曲線のみ）。
    grid_rebuilds : int
        空間グリッドを作り直した回数。

    Notes
    -----
    不変性を契約とし、配列はコピーした上で writeable=False にする。
    """

    variant: str
    step_count: int
    positions: np.ndarray
    radii: np.ndarray
    faces: np.ndarray | None = None
    closed: bool | None = None
    grid_rebuilds: int = 0

    def __post_init__(self) -> None:
        """配列形状と整合性を検証し、不変条件を満たす形に固定する。"""
        positions = np.array(self.positions, dtype=np.float64, copy=True)
        radii = np.array(self.radii, dtype=np.float64, copy=True)

        if positions.ndim != 2 or positions.shape[1] != 3:
            raise ValueError("positions は shape (N,3) の 2 次元配列である必要がある")
        if radii.shape != (positions.shape[0],):
            raise ValueError("radii は positions と同じ要素数の 1 次元配列である必要がある")

        faces = self.faces
        if faces is not None:
            faces = np.array(faces, dtype=np.int64, copy=True)
            if faces.ndim != 2 or faces.shape[1] != 3:
                raise ValueError("faces は shape (F,3) の 2 次元配列である必要がある")
            if faces.size and (faces.min() < 0 or faces.max() >= positions.shape[0]):
                raise ValueError("faces の頂点 index が範囲外")
            faces.setflags(write=False)

        positions.setflags(write=False)
        radii.setflags(write=False)

        object.__setattr__(self, "positions", positions)
        object.__setattr__(self, "radii", radii)
        object.__setattr__(self, "faces", faces)

    @property
    def element_count(self) -> int:
        return int(self.positions.shape[0])

    def as_geom_tuple(self) -> GeomTuple:
        """ポリライン集合 `(coords, offsets)` に変換する。

        - メッシュ: 各三角形を、開始点を終端に重ねた 4 点の閉ポリラインにする。
        - 曲線: 1 本のポリライン。閉曲線は開始点を終端に重ねる。
        - 点群: 各点を 1 点のポリラインにする。
        """
        p = self.positions
        if self.faces is not None:
            loops = self.faces[:, [0, 1, 2, 0]]
            coords = p[loops.reshape(-1)].astype(np.float32)
            offsets = np.arange(0, 4 * loops.shape[0] + 1, 4, dtype=np.int32)
            return coords, offsets

        if self.closed is not None:
            line = np.concatenate([p, p[:1]], axis=0) if self.closed and p.shape[0] else p
            coords = line.astype(np.float32)
            offsets = np.array([0, coords.shape[0]], dtype=np.int32)
            return coords, offsets

        coords = p.astype(np.float32)
        offsets = np.arange(0, coords.shape[0] + 1, dtype=np.int32)
        return coords, offsets


__all__ = ["GeomTuple", "GrowthSnapshot"]
