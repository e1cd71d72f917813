"""config.yaml の探索・ロード・キャッシュに関するテスト群。"""

from __future__ import annotations

from pathlib import Path

import pytest

from diffgrowth.core.errors import InvalidConfigurationError
from diffgrowth.core.runtime_config import VARIANTS, runtime_config, set_config_path


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # 探索候補（CWD / HOME）にユーザー設定が無い状態にする。
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    set_config_path(None)
    yield
    set_config_path(None)


def test_packaged_default_config_defines_all_variants() -> None:
    cfg = runtime_config()
    assert cfg.config_path is None
    assert cfg.log_level == "INFO"
    assert set(cfg.variants) == set(VARIANTS)
    assert cfg.params_for("mesh").growth_mode == "rest_length"
    assert cfg.params_for("curve").growth_mode == "insert"
    assert cfg.params_for("points").dynamic_radius is True


def test_runtime_config_is_cached_until_path_changes() -> None:
    assert runtime_config() is runtime_config()


def test_explicit_config_overrides_top_level_keys(tmp_path: Path) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "\n".join(
            [
                "version: 1",
                "simulation:",
                '  log_level: "debug"',
                "  grid_max_cells: 1000",
                "",
            ]
        ),
        encoding="utf-8",
    )
    set_config_path(cfg_path)
    cfg = runtime_config()
    assert cfg.config_path == cfg_path
    assert cfg.log_level == "DEBUG"
    assert cfg.grid_max_cells == 1000
    # variants は上書きしていないので同梱デフォルトのまま。
    assert cfg.params_for("curve").growth_mode == "insert"


def test_discovered_config_in_cwd_is_used(tmp_path: Path) -> None:
    cfg_dir = tmp_path / ".diffgrowth"
    cfg_dir.mkdir()
    (cfg_dir / "config.yaml").write_text("version: 1\nsimulation:\n  log_level: WARNING\n")
    set_config_path(None)
    assert runtime_config().log_level == "WARNING"


def test_missing_explicit_config_raises(tmp_path: Path) -> None:
    set_config_path(tmp_path / "nope.yaml")
    with pytest.raises(FileNotFoundError):
        runtime_config()


@pytest.mark.parametrize(
    "text",
    [
        "version: 2\n",
        "- not\n- a mapping\n",
        "version: 1\nvariants:\n  mesh: {}\n",
        "version: 1\nsimulation:\n  log_level: LOUD\n",
        "version: 1\nvariants:\n  mesh: {}\n  curve: {}\n  points: {sub_steps: -1}\n",
    ],
)
def test_invalid_config_raises(tmp_path: Path, text: str) -> None:
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(text, encoding="utf-8")
    set_config_path(cfg_path)
    with pytest.raises(InvalidConfigurationError):
        runtime_config()


def test_unknown_variant_raises() -> None:
    with pytest.raises(InvalidConfigurationError):
        runtime_config().params_for("voxels")
