"""シミュレーションの中核（トポロジ・空間グリッド・力・積分・再分割・ドライバ）。"""
