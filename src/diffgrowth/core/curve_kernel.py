"""
どこで: `src/diffgrowth/core/curve_kernel.py`。
何を: 点列を通る滑らかな曲線（補間 B-spline）の構築と、弧長ほぼ等間隔での再サンプリング、曲線ラプラシアン平滑化。
なぜ: 曲線成長の `resample` モードで、点数と間隔を曲線形状から作り直すため。

補間は `scipy.interpolate.splprep(s=0)`（閉曲線は `per=1`）で行う。
パラメータは弦長で与え、連続する重複点は事前に取り除く。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np
from numba import njit  # type: ignore[import-untyped]

from diffgrowth.core.errors import InvalidConfigurationError

_DUP_EPS = 1e-12
# 弧長テーブルの密度（入力 1 区間あたりの評価点数）。
_ARC_SAMPLES_PER_SEGMENT = 8
_ARC_SAMPLES_MIN = 64


def _dedupe(points: np.ndarray, *, closed: bool) -> np.ndarray:
    p = np.asarray(points, dtype=np.float64)
    if p.shape[0] < 2:
        return p
    d = np.linalg.norm(np.diff(p, axis=0), axis=1)
    keep = np.concatenate([[True], d > _DUP_EPS])
    p = p[keep]
    if closed and p.shape[0] >= 2 and float(np.linalg.norm(p[-1] - p[0])) <= _DUP_EPS:
        p = p[:-1]
    return p


@dataclass(frozen=True, slots=True)
class FittedCurve:
    """点列を通る補間曲線。

    Attributes
    ----------
    tck:
        `scipy.interpolate.splprep` の戻り値（knots, coefficients, degree）。
    closed:
        周期曲線かどうか。
    arc_u, arc_s:
        パラメータ u と累積弧長の対応表（単調増加）。
    """

    tck: Any
    closed: bool
    arc_u: np.ndarray
    arc_s: np.ndarray

    @property
    def length(self) -> float:
        return float(self.arc_s[-1])

    def evaluate(self, u: np.ndarray) -> np.ndarray:
        """パラメータ u（[0,1]）の位置を (K,3) で返す。"""
        from scipy.interpolate import splev

        x, y, z = splev(np.asarray(u, dtype=np.float64), self.tck)
        return np.stack([np.asarray(x), np.asarray(y), np.asarray(z)], axis=1)

    def at_lengths(self, s: np.ndarray) -> np.ndarray:
        """曲線の先頭からの弧長 s の位置を返す。"""
        u = np.interp(np.asarray(s, dtype=np.float64), self.arc_s, self.arc_u)
        return self.evaluate(u)


def fit_curve(points: np.ndarray, *, closed: bool) -> FittedCurve | None:
    """点列を通る補間曲線を作る。有効な点が 2 未満（閉曲線は 3 未満）なら None。"""
    from scipy.interpolate import splev, splprep

    p = _dedupe(points, closed=closed)
    n = int(p.shape[0])
    if n < (3 if closed else 2):
        return None

    data = np.concatenate([p, p[:1]], axis=0) if closed else p
    seg = np.linalg.norm(np.diff(data, axis=0), axis=1)
    u = np.concatenate([[0.0], np.cumsum(seg)])
    u /= float(u[-1])

    k = min(3, n - 1)
    tck, _ = splprep(data.T, u=u, k=k, s=0, per=1 if closed else 0)

    m = max(_ARC_SAMPLES_MIN, _ARC_SAMPLES_PER_SEGMENT * int(seg.size))
    arc_u = np.linspace(0.0, 1.0, m + 1)
    xs, ys, zs = splev(arc_u, tck)
    dense = np.stack([np.asarray(xs), np.asarray(ys), np.asarray(zs)], axis=1)
    arc_s = np.concatenate([[0.0], np.cumsum(np.linalg.norm(np.diff(dense, axis=0), axis=1))])
    return FittedCurve(tck=tck, closed=bool(closed), arc_u=arc_u, arc_s=arc_s)


def resample_curve(
    points: np.ndarray,
    *,
    closed: bool,
    spacing: float | None = None,
    count: int | None = None,
) -> np.ndarray:
    """点列を滑らかに補間し、弧長ほぼ等間隔で再サンプリングする。

    Parameters
    ----------
    points : np.ndarray
        (N,3) の点列。閉曲線でも終点の重複は持たない。
    closed : bool
        周期曲線として扱うか。
    spacing : float or None
        目標間隔。`count` と排他。
    count : int or None
        出力点数。`spacing` と排他。

    Returns
    -------
    np.ndarray
        (M,3) float64。開曲線は両端点を保ち、閉曲線は終点を重複させない。
        補間できない入力（有効点が少なすぎる）はコピーをそのまま返す。
    """
    if (spacing is None) == (count is None):
        raise InvalidConfigurationError("spacing と count はどちらか一方だけを指定してください")
    curve = fit_curve(points, closed=closed)
    if curve is None:
        return np.array(points, dtype=np.float64, copy=True)

    total = curve.length
    min_n = 3 if closed else 2
    if count is None:
        sp = float(spacing)  # type: ignore[arg-type]
        if not math.isfinite(sp) or sp <= 0.0:
            raise InvalidConfigurationError(f"spacing は正の値である必要があります: got={spacing!r}")
        segments = max(1, int(round(total / sp)))
        n_out = segments if closed else segments + 1
    else:
        n_out = int(count)
    n_out = max(min_n, n_out)

    if closed:
        s = np.arange(n_out, dtype=np.float64) * (total / float(n_out))
    else:
        s = np.linspace(0.0, total, n_out)
    out = curve.at_lengths(s)
    if not closed:
        p = np.asarray(points, dtype=np.float64)
        out[0] = p[0]
        out[-1] = p[-1]
    return out


@njit(cache=True)
def _laplacian_smooth_numba(
    points: np.ndarray, closed: bool, strength: float, iterations: int
) -> np.ndarray:
    n = points.shape[0]
    cur = points.copy()
    nxt = points.copy()
    for _ in range(iterations):
        for i in range(n):
            if not closed and (i == 0 or i == n - 1):
                continue
            a = (i - 1) % n
            b = (i + 1) % n
            for k in range(3):
                mid = 0.5 * (cur[a, k] + cur[b, k])
                nxt[i, k] = (1.0 - strength) * cur[i, k] + strength * mid
        tmp = cur
        cur = nxt
        nxt = tmp
    return cur


def laplacian_smooth(
    points: np.ndarray, *, closed: bool, strength: float, iterations: int
) -> np.ndarray:
    """曲線を Jacobi 反復で平滑化した新しい点列を返す。

    `p' = (1 - s) * p + s * (p_prev + p_next) / 2`。開曲線の両端点は動かさない。
    """
    p = np.ascontiguousarray(points, dtype=np.float64)
    n = int(p.shape[0])
    if n < 3 or int(iterations) <= 0 or float(strength) == 0.0:
        return p.copy()
    return _laplacian_smooth_numba(p, bool(closed), float(strength), int(iterations))


__all__ = ["FittedCurve", "fit_curve", "laplacian_smooth", "resample_curve"]
