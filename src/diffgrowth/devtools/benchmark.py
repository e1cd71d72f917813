"""
どこで: `src/diffgrowth/devtools/benchmark.py`。
何を: 変種ごとに `GrowthSimulation.step()` の所要時間を計測し、ms/step を表示する。
なぜ: 空間グリッドや numba カーネルの変更が、どの変種の何ステップ目で効くかを比較するため。

主な流れ:
- `build_simulation()` で config 既定値の種形状から初期化する。
- warmup 回は計測せずに step（numba の JIT コンパイルを除外）。
- 続く `--steps` 回を `time.perf_counter_ns()` で計測し、要約を表示する。
"""

from __future__ import annotations

import argparse
import gc
import sys
import time
from dataclasses import dataclass

from diffgrowth.core.errors import InvalidConfigurationError
from diffgrowth.core.runtime_config import VARIANTS, set_config_path
from diffgrowth.devtools.run import build_simulation


@dataclass(frozen=True, slots=True)
class _BenchStats:
    """計測結果（ns の列）を ms 単位で要約した統計量。"""

    mean_ms: float
    stdev_ms: float
    min_ms: float
    max_ms: float
    n: int


def _summarize(times_ns: list[int]) -> _BenchStats:
    """ns の計測列を、平均/標準偏差/最小/最大（ms）に要約する。"""
    if not times_ns:
        return _BenchStats(mean_ms=0.0, stdev_ms=0.0, min_ms=0.0, max_ms=0.0, n=0)

    n = int(len(times_ns))
    mean_ns = float(sum(times_ns)) / float(n)
    if n <= 1:
        stdev_ns = 0.0
    else:
        var = float(sum((float(t) - mean_ns) ** 2 for t in times_ns)) / float(n - 1)
        stdev_ns = float(var**0.5)

    return _BenchStats(
        mean_ms=mean_ns / 1_000_000.0,
        stdev_ms=stdev_ns / 1_000_000.0,
        min_ms=float(min(times_ns)) / 1_000_000.0,
        max_ms=float(max(times_ns)) / 1_000_000.0,
        n=n,
    )


def bench_variant(
    variant: str,
    *,
    steps: int,
    warmup: int = 2,
    seed: int | None = None,
    disable_gc: bool = False,
) -> tuple[_BenchStats, int]:
    """1 変種を計測し、`(統計量, 最終要素数)` を返す。"""
    sim = build_simulation(variant, seed=seed)
    for _ in range(max(0, int(warmup))):
        sim.step()

    times_ns: list[int] = []
    was_gc_enabled = False
    if disable_gc:
        was_gc_enabled = gc.isenabled()
        gc.disable()
    try:
        for _ in range(max(1, int(steps))):
            t0 = time.perf_counter_ns()
            report = sim.step()
            times_ns.append(int(time.perf_counter_ns() - t0))
            if report.capped:
                break
    finally:
        if disable_gc and was_gc_enabled:
            gc.enable()
    return _summarize(times_ns), sim.element_count


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="python -m diffgrowth benchmark")
    p.add_argument(
        "--variant",
        default="all",
        choices=(*VARIANTS, "all"),
        help="計測する変種（省略時: all）",
    )
    p.add_argument("--steps", type=int, default=20, help="本計測のステップ数")
    p.add_argument("--warmup", type=int, default=2, help="ウォームアップ回数（JIT 除外用）")
    p.add_argument("--config", default=None, help="config.yaml のパス（省略時: 探索）")
    p.add_argument("--seed", type=int, default=None, help="乱数 seed（省略時: config の値）")
    p.add_argument(
        "--disable-gc",
        action="store_true",
        help="計測中の GC を無効化する（ノイズ低減）",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """ベンチマーク CLI のエントリポイント。

    Returns
    -------
    int
        終了コード（0: 成功、2: 入力不備）。
    """
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if int(args.steps) < 1:
        print("--steps は 1 以上である必要があります。")  # noqa: T201
        return 2
    if args.config:
        set_config_path(args.config)

    variants = VARIANTS if args.variant == "all" else (str(args.variant),)
    for variant in variants:
        try:
            stats, elements = bench_variant(
                variant,
                steps=int(args.steps),
                warmup=int(args.warmup),
                seed=args.seed,
                disable_gc=bool(args.disable_gc),
            )
        except (FileNotFoundError, InvalidConfigurationError) as exc:
            print(f"config を読み込めません: {exc}")  # noqa: T201
            return 2
        print(  # noqa: T201
            f"[diffgrowth-bench] {variant:6s} mean={stats.mean_ms:.3f}ms"
            f" stdev={stats.stdev_ms:.3f}ms min={stats.min_ms:.3f}ms"
            f" max={stats.max_ms:.3f}ms n={stats.n} elements={elements}"
        )
    return 0


__all__ = ["bench_variant", "main"]
