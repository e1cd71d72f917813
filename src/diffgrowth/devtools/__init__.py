"""開発用コマンド（シミュレーション実行・ベンチマーク）。"""
