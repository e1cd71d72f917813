# どこで: `src/diffgrowth/__main__.py`。
# 何を: `python -m diffgrowth ...` の CLI エントリポイントを提供する。
# なぜ: 開発用コマンド（実行/ベンチ）を短い導線で実行できるようにするため。

from __future__ import annotations

import argparse
import logging
import sys


def _configure_logging() -> None:
    from diffgrowth.core.runtime_config import runtime_config

    logging.basicConfig(
        level=getattr(logging, runtime_config().log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _apply_config_arg(argv: list[str]) -> None:
    from diffgrowth.core.runtime_config import set_config_path

    for i, a in enumerate(argv):
        if a == "--config" and i + 1 < len(argv):
            set_config_path(argv[i + 1])
        elif a.startswith("--config="):
            set_config_path(a.split("=", 1)[1])


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    p = argparse.ArgumentParser(prog="python -m diffgrowth")
    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", help="種形状から成長させ、ステップごとの要素数を表示する", add_help=False)
    sub.add_parser("benchmark", help="変種ごとの ms/step を計測する", add_help=False)

    args, rest = p.parse_known_args(argv)
    sub_argv = list(rest)
    if sub_argv and sub_argv[0] == "--":
        sub_argv = sub_argv[1:]

    if not any(a in {"-h", "--help"} for a in sub_argv):
        from diffgrowth.core.errors import InvalidConfigurationError

        try:
            _apply_config_arg(sub_argv)
            _configure_logging()
        except (FileNotFoundError, InvalidConfigurationError) as exc:
            print(f"config を読み込めません: {exc}", file=sys.stderr)  # noqa: T201
            return 2

    if args.cmd == "run":
        from diffgrowth.devtools import run

        return int(run.main(sub_argv))

    if args.cmd == "benchmark":
        from diffgrowth.devtools import benchmark

        return int(benchmark.main(sub_argv))

    raise AssertionError(f"unknown cmd: {args.cmd!r}")


if __name__ == "__main__":
    raise SystemExit(main())
