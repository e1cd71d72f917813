"""
どこで: `src/diffgrowth/core/fields.py`。
何を: 外部 field の既定実装（3D improved Perlin noise と、その curl による発散ゼロのベクトル場）。
なぜ: 成長に空間的なゆらぎ（流れ・衝突半径の変調）を与える差し替え可能な部品として。

field は「点群 → 同数のベクトル」のバッチ関数 `field(points, scale, offset)` として扱う。
"""

from __future__ import annotations

import math
from collections.abc import Callable

import numpy as np
from numba import njit, prange  # type: ignore[import-untyped]

VectorField = Callable[[np.ndarray, float, float], np.ndarray]
ScalarField = Callable[[np.ndarray, float, float], np.ndarray]

# 数値微分の刻み（noise 空間）。
_CURL_EPS = 1e-4
# ベクトルポテンシャル 3 成分を互いに無相関にするための座標ずらし。
_POTENTIAL_SHIFT = np.array(
    [[0.0, 0.0, 0.0], [31.416, 47.853, 12.793], [-23.137, 19.271, 73.119]],
    dtype=np.float64,
)


def _make_permutation() -> np.ndarray:
    p = np.random.default_rng(0).permutation(256).astype(np.int64)
    return np.concatenate([p, p])


_PERM = _make_permutation()


@njit(cache=True)
def _fade(t: float) -> float:
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


@njit(cache=True)
def _lerp(t: float, a: float, b: float) -> float:
    return a + t * (b - a)


@njit(cache=True)
def _grad(h: int, x: float, y: float, z: float) -> float:
    h = h & 15
    u = x if h < 8 else y
    if h < 4:
        v = y
    elif h == 12 or h == 14:
        v = x
    else:
        v = z
    a = u if (h & 1) == 0 else -u
    b = v if (h & 2) == 0 else -v
    return a + b


@njit(cache=True)
def _perlin3(perm: np.ndarray, x: float, y: float, z: float) -> float:
    fx = math.floor(x)
    fy = math.floor(y)
    fz = math.floor(z)
    xi = int(fx) & 255
    yi = int(fy) & 255
    zi = int(fz) & 255
    x -= fx
    y -= fy
    z -= fz
    u = _fade(x)
    v = _fade(y)
    w = _fade(z)
    a = perm[xi] + yi
    aa = perm[a] + zi
    ab = perm[a + 1] + zi
    b = perm[xi + 1] + yi
    ba = perm[b] + zi
    bb = perm[b + 1] + zi
    return _lerp(
        w,
        _lerp(
            v,
            _lerp(u, _grad(perm[aa], x, y, z), _grad(perm[ba], x - 1.0, y, z)),
            _lerp(u, _grad(perm[ab], x, y - 1.0, z), _grad(perm[bb], x - 1.0, y - 1.0, z)),
        ),
        _lerp(
            v,
            _lerp(
                u,
                _grad(perm[aa + 1], x, y, z - 1.0),
                _grad(perm[ba + 1], x - 1.0, y, z - 1.0),
            ),
            _lerp(
                u,
                _grad(perm[ab + 1], x, y - 1.0, z - 1.0),
                _grad(perm[bb + 1], x - 1.0, y - 1.0, z - 1.0),
            ),
        ),
    )


@njit(cache=True, parallel=True)
def _noise_numba(perm: np.ndarray, points: np.ndarray, scale: float, offset: float) -> np.ndarray:
    n = points.shape[0]
    out = np.empty(n, dtype=np.float64)
    for i in prange(n):
        v = _perlin3(
            perm,
            points[i, 0] * scale + offset,
            points[i, 1] * scale + offset,
            points[i, 2] * scale + offset,
        )
        out[i] = min(1.0, max(-1.0, v))
    return out


@njit(cache=True)
def _gradient(
    perm: np.ndarray, x: float, y: float, z: float, eps: float
) -> tuple[float, float, float]:
    inv = 0.5 / eps
    dx = (_perlin3(perm, x + eps, y, z) - _perlin3(perm, x - eps, y, z)) * inv
    dy = (_perlin3(perm, x, y + eps, z) - _perlin3(perm, x, y - eps, z)) * inv
    dz = (_perlin3(perm, x, y, z + eps) - _perlin3(perm, x, y, z - eps)) * inv
    return dx, dy, dz


@njit(cache=True, parallel=True)
def _curl_noise_numba(
    perm: np.ndarray,
    points: np.ndarray,
    scale: float,
    offset: float,
    shift: np.ndarray,
    planar: bool,
    eps: float,
) -> np.ndarray:
    n = points.shape[0]
    out = np.zeros((n, 3), dtype=np.float64)
    for i in prange(n):
        x = points[i, 0] * scale + offset
        y = points[i, 1] * scale + offset
        z = points[i, 2] * scale + offset
        if planar:
            gx, gy, _gz = _gradient(perm, x, y, z, eps)
            out[i, 0] = gy
            out[i, 1] = -gx
        else:
            ax, ay, az = _gradient(perm, x + shift[0, 0], y + shift[0, 1], z + shift[0, 2], eps)
            bx, by, bz = _gradient(perm, x + shift[1, 0], y + shift[1, 1], z + shift[1, 2], eps)
            cx, cy, cz = _gradient(perm, x + shift[2, 0], y + shift[2, 1], z + shift[2, 2], eps)
            # psi = (A, B, C), curl psi = (dC/dy - dB/dz, dA/dz - dC/dx, dB/dx - dA/dy)
            out[i, 0] = cy - bz
            out[i, 1] = az - cx
            out[i, 2] = bx - ay
    return out


def noise(points: np.ndarray, scale: float, offset: float) -> np.ndarray:
    """各点の scalar noise（[-1, 1]）を返す。

    Parameters
    ----------
    points : np.ndarray
        (N,3) の座標。
    scale : float
        座標に掛ける周波数。
    offset : float
        noise 空間での平行移動（全軸共通）。

    Returns
    -------
    np.ndarray
        (N,) float64。
    """
    pts = np.ascontiguousarray(points, dtype=np.float64)
    if pts.shape[0] == 0:
        return np.zeros((0,), dtype=np.float64)
    return _noise_numba(_PERM, pts, float(scale), float(offset))


def curl_noise(
    points: np.ndarray, scale: float, offset: float, *, planar: bool = False
) -> np.ndarray:
    """各点の curl noise ベクトル（発散ゼロ）を返す。

    `planar=True` では scalar noise N の 2D curl `(dN/dy, -dN/dx, 0)` を返し、
    点群を xy 平面内に保つ。
    """
    pts = np.ascontiguousarray(points, dtype=np.float64)
    if pts.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)
    return _curl_noise_numba(
        _PERM, pts, float(scale), float(offset), _POTENTIAL_SHIFT, bool(planar), _CURL_EPS
    )


def planar_curl_noise(points: np.ndarray, scale: float, offset: float) -> np.ndarray:
    """xy 平面内の curl noise（`curl_noise(..., planar=True)`）。"""
    return curl_noise(points, scale, offset, planar=True)


def remap_radii(values: np.ndarray, r_min: float, r_max: float) -> np.ndarray:
    """[-1, 1] の値を [r_min, r_max] の衝突半径へ線形に写す。"""
    t = 0.5 * (np.clip(np.asarray(values, dtype=np.float64), -1.0, 1.0) + 1.0)
    return float(r_min) + t * (float(r_max) - float(r_min))


__all__ = [
    "ScalarField",
    "VectorField",
    "curl_noise",
    "noise",
    "planar_curl_noise",
    "remap_radii",
]
