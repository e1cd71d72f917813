"""diffgrowth: メッシュ / 曲線 / 点群の差分成長シミュレーション。

公開 API は `diffgrowth` 直下から import できる。

Examples
--------
>>> from diffgrowth import GrowthParams, GrowthSimulation
>>> from diffgrowth.core.seeds import circle_points
>>> sim = GrowthSimulation(GrowthParams(growth_mode="insert"))
>>> sim.reset(circle_points(16, 2.0), closed=True)
>>> snap = sim.update(go=True)
"""

from __future__ import annotations

from diffgrowth.core.errors import (
    DiffGrowthError,
    InvalidConfigurationError,
    NumericalInstabilityError,
    TopologyDefectError,
)
from diffgrowth.core.params import ForceWeights, GrowthParams
from diffgrowth.core.simulation import GrowthSimulation, StepReport
from diffgrowth.core.snapshot import GeomTuple, GrowthSnapshot
from diffgrowth.core.topology import HalfEdgeMesh, PointSet, Polyline

__all__ = [
    "DiffGrowthError",
    "ForceWeights",
    "GeomTuple",
    "GrowthParams",
    "GrowthSimulation",
    "GrowthSnapshot",
    "HalfEdgeMesh",
    "InvalidConfigurationError",
    "NumericalInstabilityError",
    "PointSet",
    "Polyline",
    "StepReport",
    "TopologyDefectError",
]
