"""
どこで: `src/diffgrowth/core/params.py`。
何を: 1 ステップの挙動を決めるパラメータ（力の重み・成長率・再分割周期など）を不変データとして定義する。
なぜ: ホスト（CLI / config.yaml / テスト）から渡る値を 1 箇所で検証し、ステップ開始前に失敗させるため。
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

from diffgrowth.core.errors import InvalidConfigurationError

GROWTH_MODES = ("rest_length", "split", "insert", "resample")


@dataclass(frozen=True, slots=True)
class ForceWeights:
    """各力項の重み。0 の項はステップ中に評価しない。"""

    length: float = 1.0
    collision: float = 0.1
    smoothing: float = 10.0
    bending: float = 0.0
    boundary: float = 0.01
    field: float = 0.0

    def __post_init__(self) -> None:
        for f in fields(self):
            raw = getattr(self, f.name)
            try:
                v = float(raw)
            except Exception as exc:
                raise InvalidConfigurationError(
                    f"weights.{f.name} は数値である必要があります: got={raw!r}"
                ) from exc
            if not math.isfinite(v) or v < 0.0:
                raise InvalidConfigurationError(
                    f"weights.{f.name} は 0 以上の有限値である必要があります: got={v!r}"
                )
            object.__setattr__(self, f.name, v)

    def is_zero(self) -> bool:
        """全ての重みが 0 なら True を返す。"""
        return all(float(getattr(self, f.name)) == 0.0 for f in fields(self))


@dataclass(frozen=True, slots=True)
class GrowthParams:
    """成長シミュレーションのパラメータ。

    Attributes
    ----------
    grow:
        False の場合、静止長の増加・分割・点挿入を行わず緩和だけを行う。
    growth_rate:
        `rest_length` モードで 1 サブステップごとに静止長へ足す量（0 以上）。
    growth_mode:
        `"rest_length"` / `"split"`（メッシュ）、`"insert"` / `"resample"`（曲線）。
    collision_distance:
        要素間の最小距離。衝突半径の上限でもある。
    radius_min_ratio:
        `dynamic_radius` 時に noise で変調した半径の下限（`collision_distance` 比）。
    dynamic_radius:
        True なら衝突半径を scalar noise で空間的に変調する。
    weights:
        力項の重み。
    max_element_count:
        要素数の上限。到達後の `step()` は no-op になる。
    sub_steps:
        1 回の `step()` で回す物理反復回数（曲線では衝突反復回数）。
    refine_frequency:
        何サブステップごとにメッシュを再分割・valence 均等化するか（0 で無効）。
    time_step, decay:
        速度積分の時間刻みと減衰率（メッシュのみ）。
    split_length:
        `rest_length` モードの分割長。None なら `0.75 * collision_distance`。
    split_ratio:
        `split` モードで `split_ratio * collision_distance` を超えた辺を分割する。
    insert_tolerance:
        `insert` モードで `collision_distance - insert_tolerance` を超えた区間に点を挿入する。
    sampling_ratio:
        `resample` モードの再サンプリング間隔（`collision_distance` 比）。
    laplacian_iterations, laplacian_strength:
        曲線の成長後に毎ステップ行う平滑化の反復回数と強さ（どちらかが 0 なら無効）。
        `weights.smoothing` が 0 の場合も行わない（曲線ではこの重みが平滑化の有効化を兼ねる）。
    field_scale, field_offset:
        外部 field（curl noise）に渡す座標スケールとオフセット。
    use_spatial_index:
        False なら衝突判定を総当たりで行う（検証用）。
    seed:
        valence 均等化のシャッフルに使う乱数 seed。
    """

    grow: bool = True
    growth_rate: float = 0.01
    growth_mode: str = "rest_length"
    collision_distance: float = 1.0
    radius_min_ratio: float = 0.3
    dynamic_radius: bool = False
    weights: ForceWeights = field(default_factory=ForceWeights)
    max_element_count: int = 20_000
    sub_steps: int = 10
    refine_frequency: int = 3
    time_step: float = 1.0
    decay: float = 0.2
    split_length: float | None = None
    split_ratio: float = 0.99
    insert_tolerance: float = 0.1
    sampling_ratio: float = 0.7
    laplacian_iterations: int = 1
    laplacian_strength: float = 0.5
    field_scale: float = 0.1
    field_offset: float = 0.0
    use_spatial_index: bool = True
    seed: int = 1

    def __post_init__(self) -> None:
        """値域を検証し、違反があれば InvalidConfigurationError を送出する。"""
        if str(self.growth_mode) not in GROWTH_MODES:
            raise InvalidConfigurationError(
                f"growth_mode は {GROWTH_MODES} のいずれかである必要があります"
                f": got={self.growth_mode!r}"
            )

        cd = _finite(self.collision_distance, key="collision_distance")
        if cd <= 0.0:
            raise InvalidConfigurationError(
                f"collision_distance は正の値である必要があります: got={cd}"
            )
        if _finite(self.growth_rate, key="growth_rate") < 0.0:
            raise InvalidConfigurationError(
                f"growth_rate は 0 以上である必要があります: got={self.growth_rate}"
            )
        ratio = _finite(self.radius_min_ratio, key="radius_min_ratio")
        if not 0.0 < ratio <= 1.0:
            raise InvalidConfigurationError(
                f"radius_min_ratio は (0, 1] の範囲である必要があります: got={ratio}"
            )
        if not isinstance(self.weights, ForceWeights):
            raise InvalidConfigurationError(
                f"weights は ForceWeights である必要があります: got={type(self.weights)!r}"
            )
        if int(self.max_element_count) < 1:
            raise InvalidConfigurationError(
                f"max_element_count は 1 以上である必要があります: got={self.max_element_count}"
            )
        if int(self.sub_steps) < 0 or int(self.refine_frequency) < 0:
            raise InvalidConfigurationError(
                "sub_steps / refine_frequency は 0 以上である必要があります"
                f": got=({self.sub_steps}, {self.refine_frequency})"
            )
        if _finite(self.time_step, key="time_step") <= 0.0:
            raise InvalidConfigurationError(
                f"time_step は正の値である必要があります: got={self.time_step}"
            )
        decay = _finite(self.decay, key="decay")
        if not 0.0 <= decay < 1.0:
            raise InvalidConfigurationError(f"decay は [0, 1) の範囲である必要があります: got={decay}")
        if self.split_length is not None and _finite(self.split_length, key="split_length") <= 0.0:
            raise InvalidConfigurationError(
                f"split_length は正の値である必要があります: got={self.split_length}"
            )
        if _finite(self.split_ratio, key="split_ratio") <= 0.0:
            raise InvalidConfigurationError(
                f"split_ratio は正の値である必要があります: got={self.split_ratio}"
            )
        tol = _finite(self.insert_tolerance, key="insert_tolerance")
        if not 0.0 <= tol < cd:
            raise InvalidConfigurationError(
                "insert_tolerance は [0, collision_distance) の範囲である必要があります"
                f": got={tol}"
            )
        if _finite(self.sampling_ratio, key="sampling_ratio") <= 0.0:
            raise InvalidConfigurationError(
                f"sampling_ratio は正の値である必要があります: got={self.sampling_ratio}"
            )
        if int(self.laplacian_iterations) < 0:
            raise InvalidConfigurationError(
                f"laplacian_iterations は 0 以上である必要があります: got={self.laplacian_iterations}"
            )
        strength = _finite(self.laplacian_strength, key="laplacian_strength")
        if not 0.0 <= strength <= 1.0:
            raise InvalidConfigurationError(
                f"laplacian_strength は [0, 1] の範囲である必要があります: got={strength}"
            )
        _finite(self.field_scale, key="field_scale")
        _finite(self.field_offset, key="field_offset")

    @property
    def effective_split_length(self) -> float:
        """`rest_length` モードで使う分割長を返す。"""
        if self.split_length is not None:
            return float(self.split_length)
        return 0.75 * float(self.collision_distance)

    @property
    def growth_active(self) -> bool:
        """静止長の増加が実質的に有効かどうか。"""
        return bool(self.grow) and float(self.growth_rate) > 0.0

    def with_overrides(self, **changes: Any) -> GrowthParams:
        """一部の値だけを差し替えた新しいパラメータを返す。"""
        return replace(self, **changes)

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[str, Any],
        *,
        base: GrowthParams | None = None,
        context: str = "params",
    ) -> GrowthParams:
        """YAML 由来の mapping から GrowthParams を構築する。

        Parameters
        ----------
        mapping : Mapping[str, Any]
            `GrowthParams` のフィールド名をキーにした mapping。
            `weights` はネストした mapping（部分指定可）。
        base : GrowthParams or None
            未指定キーの既定値。None ならクラス既定値。
        context : str
            エラーメッセージに含める文脈（config のキーなど）。

        Returns
        -------
        GrowthParams
            検証済みのパラメータ。

        Raises
        ------
        InvalidConfigurationError
            未知のキー、型変換の失敗、値域違反。
        """
        base_params = base if base is not None else cls()
        known = {f.name: f for f in fields(cls)}
        changes: dict[str, Any] = {}

        for key, value in mapping.items():
            name = str(key)
            if name not in known:
                raise InvalidConfigurationError(f"{context}.{name} は未知のキーです")
            if name == "weights":
                changes["weights"] = _weights_from_mapping(
                    value, base=base_params.weights, context=f"{context}.weights"
                )
                continue
            changes[name] = _coerce(name, value, context=context)

        return replace(base_params, **changes)


_INT_FIELDS = frozenset(
    {"max_element_count", "sub_steps", "refine_frequency", "laplacian_iterations", "seed"}
)
_BOOL_FIELDS = frozenset({"grow", "dynamic_radius", "use_spatial_index"})


def _finite(value: Any, *, key: str) -> float:
    v = float(value)
    if not math.isfinite(v):
        raise InvalidConfigurationError(f"{key} は有限値である必要があります: got={value!r}")
    return v


def _coerce(name: str, value: Any, *, context: str) -> Any:
    key = f"{context}.{name}"
    if name == "growth_mode":
        return str(value)
    if name == "split_length" and value is None:
        return None
    if name in _BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and int(value) in (0, 1):
            return bool(int(value))
        raise InvalidConfigurationError(f"{key} は bool である必要があります: got={value!r}")
    if name in _INT_FIELDS:
        if isinstance(value, bool):
            raise InvalidConfigurationError(f"{key} は整数である必要があります: got={value!r}")
        try:
            return int(value)
        except Exception as exc:
            raise InvalidConfigurationError(f"{key} は整数である必要があります: got={value!r}") from exc
    try:
        return float(value)
    except Exception as exc:
        raise InvalidConfigurationError(f"{key} は数値である必要があります: got={value!r}") from exc


def _weights_from_mapping(value: Any, *, base: ForceWeights, context: str) -> ForceWeights:
    if value is None:
        return base
    if not isinstance(value, Mapping):
        raise InvalidConfigurationError(f"{context} は mapping である必要があります: got={value!r}")
    known = {f.name for f in fields(ForceWeights)}
    changes: dict[str, float] = {}
    for key, v in value.items():
        name = str(key)
        if name not in known:
            raise InvalidConfigurationError(f"{context}.{name} は未知のキーです")
        try:
            changes[name] = float(v)
        except Exception as exc:
            raise InvalidConfigurationError(
                f"{context}.{name} は数値である必要があります: got={v!r}"
            ) from exc
    return replace(base, **changes)


__all__ = ["GROWTH_MODES", "ForceWeights", "GrowthParams"]
