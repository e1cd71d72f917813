"""
どこで: `src/diffgrowth/core/seeds.py`。
何を: 成長の初期形状（円・揺らぎ付きリング・直線・六角形の円盤メッシュ・icosphere）を生成する。
なぜ: CLI・ベンチマーク・テストが、同じ種形状から再現可能に成長を始められるようにするため。
"""

from __future__ import annotations

import math

import numpy as np

from diffgrowth.core.errors import InvalidConfigurationError
from diffgrowth.core.topology.halfedge import HalfEdgeMesh


def circle_points(
    n: int,
    radius: float,
    *,
    center: tuple[float, float, float] = (0.0, 0.0, 0.0),
    phase: float = 0.0,
) -> np.ndarray:
    """xy 平面上の正 n 角形の頂点（終点の重複なし）を返す。

    Parameters
    ----------
    n : int
        頂点数。3 以上。
    radius : float
        外接円の半径。
    center : tuple[float, float, float], optional
        中心 (cx, cy, cz)。
    phase : float, optional
        開始角 [rad]。

    Returns
    -------
    np.ndarray
        float64 型 shape (n, 3)。
    """
    n = int(n)
    if n < 3:
        raise InvalidConfigurationError(f"n は 3 以上である必要があります: got={n}")
    t = float(phase) + (2.0 * math.pi) * (np.arange(n, dtype=np.float64) / float(n))
    cx, cy, cz = (float(v) for v in center)
    r = float(radius)
    return np.stack([cx + r * np.cos(t), cy + r * np.sin(t), np.full_like(t, cz)], axis=1)


def jittered_circle(
    rng: np.random.Generator,
    *,
    spacing: float,
    center: tuple[float, float, float] = (0.0, 0.0, 0.0),
) -> np.ndarray:
    """半径 `2 * spacing` 付近に、半径方向の小さな揺らぎを持つ閉リングを返す。"""
    sp = float(spacing)
    if not math.isfinite(sp) or sp <= 0.0:
        raise InvalidConfigurationError(f"spacing は正の値である必要があります: got={spacing!r}")
    r0 = sp * 2.0
    n = int(math.ceil(2.0 * math.pi * r0 / sp))
    n = max(8, min(64, n))

    theta0 = float(rng.uniform(0.0, 2.0 * math.pi))
    angles = theta0 + (2.0 * math.pi) * (np.arange(n, dtype=np.float64) / float(n))
    radial = r0 + rng.normal(0.0, sp * 0.08, size=(n,))

    cx, cy, cz = (float(v) for v in center)
    x = cx + radial * np.cos(angles)
    y = cy + radial * np.sin(angles)
    return np.stack([x, y, np.full_like(x, cz)], axis=1)


def line_points(
    n: int,
    length: float,
    *,
    center: tuple[float, float, float] = (0.0, 0.0, 0.0),
    angle: float = 0.0,
) -> np.ndarray:
    """中心 `center`、向き `angle` [rad] の線分上に等間隔な n 点を返す。"""
    n = int(n)
    if n < 2:
        raise InvalidConfigurationError(f"n は 2 以上である必要があります: got={n}")
    t = np.linspace(-0.5, 0.5, n) * float(length)
    cx, cy, cz = (float(v) for v in center)
    return np.stack(
        [cx + t * math.cos(float(angle)), cy + t * math.sin(float(angle)), np.full_like(t, cz)],
        axis=1,
    )


def disc_mesh(rings: int, spacing: float) -> HalfEdgeMesh:
    """三角格子で埋めた六角形の円盤メッシュ（外周が 1 つの穴ループ）を返す。

    Parameters
    ----------
    rings : int
        中心からの格子リング数。1 以上。
    spacing : float
        格子の辺長。
    """
    r_max = int(rings)
    if r_max < 1:
        raise InvalidConfigurationError(f"rings は 1 以上である必要があります: got={rings}")
    sp = float(spacing)
    h = math.sqrt(3.0) * 0.5

    index: dict[tuple[int, int], int] = {}
    verts: list[tuple[float, float, float]] = []
    for r in range(-r_max, r_max + 1):
        for q in range(-r_max, r_max + 1):
            if abs(q + r) > r_max:
                continue
            index[(q, r)] = len(verts)
            verts.append((sp * (q + 0.5 * r), sp * h * r, 0.0))

    faces: list[tuple[int, int, int]] = []
    for (q, r), a in index.items():
        c = index.get((q, r + 1))
        if c is None:
            continue
        b = index.get((q + 1, r))
        if b is not None:
            faces.append((a, b, c))
        d = index.get((q - 1, r + 1))
        if d is not None:
            faces.append((a, c, d))
    return HalfEdgeMesh.from_faces(np.asarray(verts, dtype=np.float64), faces)


_ICOSAHEDRON_FACES = (
    (0, 11, 5), (0, 5, 1), (0, 1, 7), (0, 7, 10), (0, 10, 11),
    (1, 5, 9), (5, 11, 4), (11, 10, 2), (10, 7, 6), (7, 1, 8),
    (3, 9, 4), (3, 4, 2), (3, 2, 6), (3, 6, 8), (3, 8, 9),
    (4, 9, 5), (2, 4, 11), (6, 2, 10), (8, 6, 7), (9, 8, 1),
)  # fmt: skip


def icosphere(subdivisions: int = 1, radius: float = 1.0) -> HalfEdgeMesh:
    """正二十面体を中点分割して球面へ射影した閉メッシュ（境界なし）を返す。"""
    level = int(subdivisions)
    if level < 0:
        raise InvalidConfigurationError(f"subdivisions は 0 以上である必要があります: got={level}")
    t = (1.0 + math.sqrt(5.0)) * 0.5
    verts = [
        (-1.0, t, 0.0), (1.0, t, 0.0), (-1.0, -t, 0.0), (1.0, -t, 0.0),
        (0.0, -1.0, t), (0.0, 1.0, t), (0.0, -1.0, -t), (0.0, 1.0, -t),
        (t, 0.0, -1.0), (t, 0.0, 1.0), (-t, 0.0, -1.0), (-t, 0.0, 1.0),
    ]  # fmt: skip
    pts = [np.asarray(v, dtype=np.float64) / np.linalg.norm(v) for v in verts]
    faces = list(_ICOSAHEDRON_FACES)

    for _ in range(level):
        cache: dict[tuple[int, int], int] = {}

        def midpoint(a: int, b: int) -> int:
            key = (a, b) if a < b else (b, a)
            hit = cache.get(key)
            if hit is not None:
                return hit
            m = pts[a] + pts[b]
            pts.append(m / np.linalg.norm(m))
            cache[key] = len(pts) - 1
            return cache[key]

        refined: list[tuple[int, int, int]] = []
        for a, b, c in faces:
            ab = midpoint(a, b)
            bc = midpoint(b, c)
            ca = midpoint(c, a)
            refined.extend([(a, ab, ca), (b, bc, ab), (c, ca, bc), (ab, bc, ca)])
        faces = refined

    return HalfEdgeMesh.from_faces(np.asarray(pts) * float(radius), faces)


__all__ = ["circle_points", "disc_mesh", "icosphere", "jittered_circle", "line_points"]
