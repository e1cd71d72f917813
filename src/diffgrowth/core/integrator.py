# どこで: `src/diffgrowth/core/integrator.py`。
# 何を: 集計済みの重み付き移動量を、速度（メッシュ）または位置（曲線・点群）へ反映する。
# なぜ: 重みの和で割った「重み付き平均」の一歩にすることで、項の数や重みの大小に依らず安定させるため。

from __future__ import annotations

import numpy as np
from numba import njit, prange  # type: ignore[import-untyped]

from diffgrowth.core.forces import ForceAccumulator


@njit(cache=True, parallel=True)
def _velocity_step_numba(
    points: np.ndarray,
    velocities: np.ndarray,
    move: np.ndarray,
    wsum: np.ndarray,
    time_step: float,
    decay: float,
) -> None:
    n = points.shape[0]
    for i in prange(n):
        w = wsum[i]
        if w > 0.0:
            s = time_step / w
            velocities[i, 0] += move[i, 0] * s
            velocities[i, 1] += move[i, 1] * s
            velocities[i, 2] += move[i, 2] * s
        points[i, 0] += velocities[i, 0]
        points[i, 1] += velocities[i, 1]
        points[i, 2] += velocities[i, 2]
        velocities[i, 0] *= decay
        velocities[i, 1] *= decay
        velocities[i, 2] *= decay
        move[i, 0] = 0.0
        move[i, 1] = 0.0
        move[i, 2] = 0.0
        wsum[i] = 0.0


@njit(cache=True, parallel=True)
def _direct_step_numba(points: np.ndarray, move: np.ndarray, wsum: np.ndarray) -> None:
    n = points.shape[0]
    for i in prange(n):
        w = wsum[i]
        if w > 0.0:
            inv = 1.0 / w
            points[i, 0] += move[i, 0] * inv
            points[i, 1] += move[i, 1] * inv
            points[i, 2] += move[i, 2] * inv
        move[i, 0] = 0.0
        move[i, 1] = 0.0
        move[i, 2] = 0.0
        wsum[i] = 0.0


def integrate_velocity(
    positions: np.ndarray,
    velocities: np.ndarray,
    acc: ForceAccumulator,
    *,
    time_step: float,
    decay: float,
) -> None:
    """`v += m * dt / w`（w > 0 の要素のみ）、`p += v`、`v *= decay` をその場で行い、集計をクリアする。"""
    _velocity_step_numba(
        positions, velocities, acc.move_sum, acc.weight_sum, float(time_step), float(decay)
    )


def integrate_direct(positions: np.ndarray, acc: ForceAccumulator) -> None:
    """`p += m / w`（w > 0 の要素のみ）をその場で行い、集計をクリアする。"""
    _direct_step_numba(positions, acc.move_sum, acc.weight_sum)


__all__ = ["integrate_direct", "integrate_velocity"]
