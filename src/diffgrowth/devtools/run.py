"""
どこで: `src/diffgrowth/devtools/run.py`。
何を: 変種ごとの種形状から seed 付きでシミュレーションを回し、ステップごとの要素数を表示する。
なぜ: config.yaml の既定値を手元で素早く確かめられるようにするため。
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any

import numpy as np

from diffgrowth.core.errors import InvalidConfigurationError
from diffgrowth.core.params import GrowthParams
from diffgrowth.core.runtime_config import VARIANTS, runtime_config, set_config_path
from diffgrowth.core.seeds import disc_mesh, jittered_circle
from diffgrowth.core.simulation import GrowthSimulation

logger = logging.getLogger(__name__)


def seed_geometry(variant: str, params: GrowthParams) -> tuple[Any, bool | None]:
    """変種に対応する種形状と、曲線の場合の閉じ指定を返す。"""
    cd = float(params.collision_distance)
    rng = np.random.default_rng(int(params.seed))
    if variant == "mesh":
        return disc_mesh(3, cd * 0.8), None
    if variant == "curve":
        return jittered_circle(rng, spacing=cd * 0.8), True
    # 点群は半径 4cd の円盤に一様に撒く。
    n = 200
    r = 4.0 * cd * np.sqrt(rng.uniform(0.0, 1.0, size=(n,)))
    t = rng.uniform(0.0, 2.0 * np.pi, size=(n,))
    return np.stack([r * np.cos(t), r * np.sin(t), np.zeros_like(r)], axis=1), None


def build_simulation(
    variant: str, *, seed: int | None = None
) -> GrowthSimulation:
    """runtime config の既定値で初期化済みのシミュレーションを返す。"""
    cfg = runtime_config()
    params = cfg.params_for(variant)
    if seed is not None:
        params = params.with_overrides(seed=int(seed))
    sim = GrowthSimulation(params, grid_max_cells=cfg.grid_max_cells)
    geometry, closed = seed_geometry(variant, params)
    sim.reset(geometry, closed=closed)
    return sim


def _parse_args(argv: list[str] | None, *, prog: str) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog=prog)
    p.add_argument("--variant", choices=VARIANTS, default="curve", help="成長させる変種")
    p.add_argument("--steps", type=int, default=50, help="実行するステップ数")
    p.add_argument("--config", default=None, help="config.yaml のパス（省略時: 探索）")
    p.add_argument("--seed", type=int, default=None, help="乱数 seed（省略時: config の値）")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """`python -m diffgrowth run` のエントリポイント。

    Returns
    -------
    int
        終了コード（0: 成功、2: 入力不備）。
    """
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv, prog="python -m diffgrowth run")
    if int(args.steps) < 0:
        print("--steps は 0 以上である必要があります。")  # noqa: T201
        return 2
    if args.config:
        set_config_path(args.config)

    try:
        sim = build_simulation(str(args.variant), seed=args.seed)
    except (FileNotFoundError, InvalidConfigurationError) as exc:
        print(f"config を読み込めません: {exc}")  # noqa: T201
        return 2
    print(f"[diffgrowth] variant={args.variant} elements={sim.element_count}")  # noqa: T201
    for i in range(int(args.steps)):
        report = sim.step()
        print(  # noqa: T201
            f"step {i + 1:4d}: elements={report.element_count}"
            f" splits={report.splits} flips={report.flips} inserted={report.inserted}"
        )
        if report.capped:
            logger.info("element cap reached: %d", report.element_count)
            break
    return 0


__all__ = ["build_simulation", "main", "seed_geometry"]
