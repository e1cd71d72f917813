"""成長対象のトポロジ（half-edge メッシュ / ポリライン / 点群）。"""

from __future__ import annotations

from diffgrowth.core.topology.base import Topology
from diffgrowth.core.topology.halfedge import HalfEdgeMesh
from diffgrowth.core.topology.pointset import PointSet
from diffgrowth.core.topology.polyline import Polyline

__all__ = ["HalfEdgeMesh", "PointSet", "Polyline", "Topology"]
