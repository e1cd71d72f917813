# どこで: `src/diffgrowth/core/errors.py`。
# 何を: シミュレーションが送出する例外型を定義する。
# なぜ: 設定不正（即失敗）/ 位相欠陥（局所スキップ）/ 数値破綻（巻き戻し）を呼び出し側で区別するため。

from __future__ import annotations


class DiffGrowthError(Exception):
    """diffgrowth が送出する例外の基底クラス。"""


class InvalidConfigurationError(DiffGrowthError, ValueError):
    """パラメータや初期ジオメトリが不正で、ステップを開始できないことを表す。

    半径・重みが負、初期点列が空、非多様体メッシュなど。
    `reset()` / `GrowthParams` の検証時点で送出され、ステップは 1 度も実行されない。
    """


class TopologyDefectError(DiffGrowthError, RuntimeError):
    """split / spin を適用すると非多様体になることを表す。

    送出元の操作はトポロジを一切変更しない（適用前に検査する）。
    スケジューラはこれを捕捉して診断として数え、処理を続行する。
    """


class NumericalInstabilityError(DiffGrowthError, RuntimeError):
    """ステップ中に非有限値が発生し、状態を直前ステップへ巻き戻したことを表す。"""


__all__ = [
    "DiffGrowthError",
    "InvalidConfigurationError",
    "NumericalInstabilityError",
    "TopologyDefectError",
]
