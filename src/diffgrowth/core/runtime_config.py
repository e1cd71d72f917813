# どこで: `src/diffgrowth/core/runtime_config.py`。
# 何を: config.yaml による実行時設定（探索・ロード・キャッシュ）を提供する。
# なぜ: 変種（mesh / curve / points）ごとの既定パラメータを、コード変更なしに差し替えられるようにするため。

"""実行時設定（`config.yaml`）の探索・ロード・キャッシュを担当する。

このモジュールは、以下を提供する:

- `config.yaml` を「同梱デフォルト → ユーザー設定（任意）」の順に適用して `RuntimeConfig` を構築
- 探索パス（CWD / HOME）と、明示指定（`set_config_path()`）の両方に対応
- 1 回ロードした結果をプロセス内でキャッシュ（設定を切り替える場合は `set_config_path()` で破棄）

実装メモ
--------
- ユーザー設定の適用は `dict.update()`（トップレベルの浅い上書き）で行う。
  ネストした mapping は「部分的にマージ」されず「丸ごと置換」される。
- 値の検証は `GrowthParams.from_mapping()` に委ね、失敗は `InvalidConfigurationError` に揃える。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

from diffgrowth.core.errors import InvalidConfigurationError
from diffgrowth.core.params import GrowthParams

VARIANTS = ("mesh", "curve", "points")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """diffgrowth の実行時設定。

    Attributes
    ----------
    config_path:
        実際に採用されたユーザー設定ファイルのパス。ユーザー設定が無い場合は None。
    log_level:
        CLI が logging に設定するレベル名。
    grid_max_cells:
        空間グリッドのセル数上限。
    variants:
        変種名 → 既定 `GrowthParams`。
    """

    config_path: Path | None
    log_level: str
    grid_max_cells: int
    variants: dict[str, GrowthParams]

    def params_for(self, variant: str) -> GrowthParams:
        """変種名に対応する既定パラメータを返す。"""
        try:
            return self.variants[str(variant)]
        except KeyError as exc:
            raise InvalidConfigurationError(
                f"未知の variant です: got={variant!r}, expected={VARIANTS}"
            ) from exc


# `set_config_path()` で指定される「明示 config」のパス。
_EXPLICIT_CONFIG_PATH: Path | None = None
# `runtime_config()` のプロセス内キャッシュ。
_CONFIG_CACHE: RuntimeConfig | None = None


def set_config_path(path: str | Path | None) -> None:
    """以降の設定探索で使う明示 config パスを設定する。

    Parameters
    ----------
    path:
        `config.yaml` のパス。None の場合は明示指定を解除する。

    Notes
    -----
    設定が変わるため、`runtime_config()` のキャッシュを破棄する。
    """

    global _EXPLICIT_CONFIG_PATH, _CONFIG_CACHE
    _EXPLICIT_CONFIG_PATH = None if path is None else Path(str(path)).expanduser()
    _CONFIG_CACHE = None


def _default_config_candidates() -> tuple[Path, ...]:
    """既定の `config.yaml` 探索候補を返す。

    探索順（先勝ち）:
    - `./.diffgrowth/config.yaml`
    - `~/.config/diffgrowth/config.yaml`
    """

    return (
        Path.cwd() / ".diffgrowth" / "config.yaml",
        Path.home() / ".config" / "diffgrowth" / "config.yaml",
    )


def _as_mapping(value: Any, *, key: str) -> dict[str, Any]:
    """任意値を mapping として解釈し、dict に正規化して返す。"""

    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    raise InvalidConfigurationError(f"{key} は mapping である必要があります: got={value!r}")


def _load_yaml_text(text: str, *, source: str) -> dict[str, Any]:
    """YAML テキストを読み、トップレベル mapping を dict として返す。"""

    import yaml

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise InvalidConfigurationError(
            f"config.yaml の読み込みに失敗しました: source={source}"
        ) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidConfigurationError(
            f"config.yaml は mapping である必要があります: source={source}"
        )
    return dict(data)


def _load_yaml_config(path: Path) -> dict[str, Any]:
    """UTF-8 の YAML ファイルを読み、dict を返す。"""

    return _load_yaml_text(path.read_text(encoding="utf-8"), source=str(path))


def _load_packaged_default_config() -> dict[str, Any]:
    """同梱デフォルト config（`diffgrowth/resource/default_config.yaml`）を読む。"""

    blob = (
        resources.files("diffgrowth")
        .joinpath("resource", "default_config.yaml")
        .read_text(encoding="utf-8")
    )
    return _load_yaml_text(blob, source="diffgrowth/resource/default_config.yaml")


def runtime_config() -> RuntimeConfig:
    """実行時設定をロードして返す（キャッシュ）。

    読み込み元の優先順位（後勝ち）:
    1) 同梱 `diffgrowth/resource/default_config.yaml`
    2) 探索で見つかった `config.yaml`（任意）
    3) `set_config_path()` で明示指定された `config.yaml`（任意）
    """

    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE

    explicit_path = _EXPLICIT_CONFIG_PATH
    if explicit_path is not None and not explicit_path.is_file():
        raise FileNotFoundError(f"config.yaml が見つかりません: {explicit_path}")

    discovered_path: Path | None = None
    for p in _default_config_candidates():
        if p.is_file():
            discovered_path = p
            break

    payload = _load_packaged_default_config()
    if discovered_path is not None:
        payload.update(_load_yaml_config(discovered_path))
    if explicit_path is not None:
        payload.update(_load_yaml_config(explicit_path))

    version = payload.get("version")
    try:
        version_i = int(version)  # type: ignore[arg-type]
    except Exception as exc:
        raise InvalidConfigurationError(
            f"config.yaml の version は整数である必要があります: got={version!r}"
        ) from exc
    if version_i != 1:
        raise InvalidConfigurationError(f"未対応の config.yaml version です: got={version_i}")

    simulation = _as_mapping(payload.get("simulation"), key="simulation")
    log_level = str(simulation.get("log_level", "INFO")).strip().upper()
    if log_level not in _LOG_LEVELS:
        raise InvalidConfigurationError(
            f"simulation.log_level は {_LOG_LEVELS} のいずれかである必要があります: got={log_level!r}"
        )
    try:
        grid_max_cells = int(simulation.get("grid_max_cells", 2_000_000))
    except Exception as exc:
        raise InvalidConfigurationError(
            "simulation.grid_max_cells は整数である必要があります"
            f": got={simulation.get('grid_max_cells')!r}"
        ) from exc
    if grid_max_cells < 1:
        raise InvalidConfigurationError(
            f"simulation.grid_max_cells は 1 以上である必要があります: got={grid_max_cells}"
        )

    variants_raw = _as_mapping(payload.get("variants"), key="variants")
    missing = [v for v in VARIANTS if v not in variants_raw]
    if missing:
        raise InvalidConfigurationError(
            "variants が不足しています（config.yaml はトップレベル浅い上書きのため、"
            "variants: を上書きする場合は mesh / curve / points を全て含めてください）"
            f": missing={missing}"
        )
    variants: dict[str, GrowthParams] = {}
    for name in VARIANTS:
        variants[name] = GrowthParams.from_mapping(
            _as_mapping(variants_raw[name], key=f"variants.{name}"),
            context=f"variants.{name}",
        )

    cfg = RuntimeConfig(
        config_path=explicit_path or discovered_path,
        log_level=log_level,
        grid_max_cells=grid_max_cells,
        variants=variants,
    )
    logging.getLogger(__name__).debug("runtime config loaded: source=%s", cfg.config_path)
    _CONFIG_CACHE = cfg
    return cfg


__all__ = [
    "RuntimeConfig",
    "VARIANTS",
    "runtime_config",
    "set_config_path",
]
