"""`python -m diffgrowth` の run / benchmark サブコマンドに関するテスト群。"""

from __future__ import annotations

from pathlib import Path

import pytest

from diffgrowth.__main__ import main
from diffgrowth.core.runtime_config import set_config_path
from diffgrowth.devtools.benchmark import _summarize
from diffgrowth.devtools.run import build_simulation


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    set_config_path(None)
    yield
    set_config_path(None)


def test_run_prints_one_line_per_step(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["run", "--variant", "curve", "--steps", "3", "--seed", "2"]) == 0
    out = capsys.readouterr().out
    assert "variant=curve" in out
    assert "step    3: elements=" in out


def test_run_uses_explicit_config(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    cfg_path = tmp_path / "custom.yaml"
    cfg_path.write_text(
        "\n".join(
            [
                "version: 1",
                "variants:",
                "  mesh: {}",
                "  curve: {growth_mode: insert, max_element_count: 1}",
                "  points: {growth_mode: insert}",
                "",
            ]
        ),
        encoding="utf-8",
    )
    assert main(["run", "--variant", "curve", "--steps", "5", "--config", str(cfg_path)]) == 0
    out = capsys.readouterr().out
    # 上限 1 の曲線は最初のステップで打ち切られる。
    assert "step    1:" in out
    assert "step    2:" not in out


def test_run_rejects_negative_steps(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["run", "--steps", "-1"]) == 2


def test_missing_config_returns_exit_code_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = tmp_path / "nonexistent.yaml"
    assert main(["run", "--config", str(missing), "--steps", "1"]) == 2
    assert main(["benchmark", "--config", str(missing), "--steps", "1"]) == 2
    err = capsys.readouterr().err
    assert "config を読み込めません" in err
    assert "nonexistent.yaml" in err


def test_invalid_config_returns_exit_code_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cfg_path = tmp_path / "broken.yaml"
    cfg_path.write_text("- not\n- a mapping\n", encoding="utf-8")
    assert main(["run", "--config", str(cfg_path), "--steps", "1"]) == 2
    assert "config を読み込めません" in capsys.readouterr().err


def test_run_module_reports_missing_config(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    from diffgrowth.devtools import run

    assert run.main(["--config", str(tmp_path / "nonexistent.yaml"), "--steps", "1"]) == 2
    assert "config を読み込めません" in capsys.readouterr().out


def test_benchmark_reports_each_variant(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["benchmark", "--variant", "points", "--steps", "2", "--warmup", "0"]) == 0
    out = capsys.readouterr().out
    assert "[diffgrowth-bench] points" in out
    assert "n=2" in out


def test_build_simulation_seeds_every_variant() -> None:
    for variant, expected in (("mesh", "mesh"), ("curve", "curve"), ("points", "points")):
        sim = build_simulation(variant, seed=4)
        assert sim.variant == expected
        assert sim.params.seed == 4
        assert sim.element_count > 0


def test_summarize_converts_ns_to_ms() -> None:
    stats = _summarize([1_000_000, 3_000_000])
    assert stats.mean_ms == pytest.approx(2.0)
    assert stats.min_ms == pytest.approx(1.0)
    assert stats.max_ms == pytest.approx(3.0)
    assert stats.n == 2
    assert _summarize([]).n == 0
