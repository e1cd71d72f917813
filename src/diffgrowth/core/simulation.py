"""
どこで: `src/diffgrowth/core/simulation.py`。
何を: 成長シミュレーションのドライバ `GrowthSimulation`（reset / step / snapshot / update）。
なぜ: トポロジ・空間グリッド・力の集計・積分・再分割を 1 つの所有者にまとめ、
      1 ステップを「全部反映するか、何も反映しないか」にするため。

変種
----
- mesh: `HalfEdgeMesh`。速度積分。`rest_length`（静止長の増加 + 周期的な分割）か
  `split`（閾値を超えた辺を毎サブステップ分割）で成長する。
- curve: `Polyline`。直接積分。`insert`（中点挿入）か `resample`（再サンプリング）で成長する。
- points: `PointSet`。直接積分。field と衝突だけで動き、要素は増えない。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from diffgrowth.core.errors import (
    DiffGrowthError,
    InvalidConfigurationError,
    NumericalInstabilityError,
)
from diffgrowth.core.fields import ScalarField, VectorField, curl_noise, noise, remap_radii
from diffgrowth.core.forces import ForceAccumulator
from diffgrowth.core.integrator import integrate_direct, integrate_velocity
from diffgrowth.core.params import GrowthParams
from diffgrowth.core.scheduler import (
    MeshState,
    equalize_valence,
    grow_curve,
    grow_rest_lengths,
    relax_curve,
    split_long_edges,
)
from diffgrowth.core.snapshot import GrowthSnapshot
from diffgrowth.core.spatial_grid import SpatialGrid, brute_force_pairs
from diffgrowth.core.topology.halfedge import HalfEdgeMesh
from diffgrowth.core.topology.pointset import PointSet
from diffgrowth.core.topology.polyline import Polyline

logger = logging.getLogger(__name__)

_MODES_BY_VARIANT = {
    "mesh": ("rest_length", "split"),
    "curve": ("insert", "resample"),
    "points": ("rest_length", "split", "insert", "resample"),
}
# 空間グリッドの目標 bin 幅（collision_distance 比）。
_GRID_TARGET_RATIO = 0.5


@dataclass(frozen=True, slots=True)
class StepReport:
    """1 回の `step()` の結果。

    Attributes
    ----------
    sub_steps_run:
        実行した物理サブステップ数。
    element_count:
        ステップ後の要素数。
    splits, flips, inserted:
        辺分割数、辺フリップ数、曲線へ挿入（再サンプリングで増加）した点数。
    rejected:
        非多様体になるため拒否した分割・フリップの数。
    degenerate:
        長さ 0 などでスキップした力の寄与の数。
    grid_rebuilds:
        このステップで空間グリッドを作り直した回数。
    capped:
        要素数が上限に達していたため何もしなかった場合 True。
    """

    sub_steps_run: int = 0
    element_count: int = 0
    splits: int = 0
    flips: int = 0
    inserted: int = 0
    rejected: int = 0
    degenerate: int = 0
    grid_rebuilds: int = 0
    capped: bool = False


@dataclass(slots=True)
class _Counters:
    sub_steps_run: int = 0
    splits: int = 0
    flips: int = 0
    inserted: int = 0
    rejected: int = 0
    grid_rebuilds: int = 0


@dataclass(slots=True)
class _Checkpoint:
    topology: Any
    mesh_state: MeshState | None
    step_count: int
    grid_rebuilds: int
    grid_bounds: tuple[np.ndarray, np.ndarray, tuple[int, int, int]]
    extra: dict[str, Any] = field(default_factory=dict)


class GrowthSimulation:
    """差分成長シミュレーションのドライバ。

    Parameters
    ----------
    params : GrowthParams or None
        既定のパラメータ。`step()` / `update()` で差し替えられる。
    field : VectorField or None
        `field(points, scale, offset) -> (N,3)`。None なら curl noise
        （xy 平面上の入力では平面版）を使う。
    scalar_field : ScalarField or None
        `dynamic_radius` 用の `noise(points, scale, offset) -> (N,)`。None なら Perlin noise。
    grid_max_cells : int
        空間グリッドのセル数上限。

    Examples
    --------
    >>> sim = GrowthSimulation(GrowthParams(growth_mode="insert"))
    >>> sim.reset(circle_points(12, 2.0), closed=True)
    >>> report = sim.step()
    """

    def __init__(
        self,
        params: GrowthParams | None = None,
        *,
        field: VectorField | None = None,
        scalar_field: ScalarField | None = None,
        grid_max_cells: int = 2_000_000,
    ) -> None:
        self._params = params if params is not None else GrowthParams()
        self._field = field
        self._scalar_field: ScalarField = scalar_field if scalar_field is not None else noise
        self._grid_max_cells = int(grid_max_cells)

        self._variant: str | None = None
        self._topology: HalfEdgeMesh | Polyline | PointSet | None = None
        self._mesh_state: MeshState | None = None
        self._grid: SpatialGrid | None = None
        self._acc = ForceAccumulator()
        self._rng = np.random.default_rng(int(self._params.seed))
        self._planar = False
        self._step_count = 0
        self._grid_rebuilds = 0

    # ---- 状態

    @property
    def params(self) -> GrowthParams:
        return self._params

    @property
    def variant(self) -> str | None:
        return self._variant

    @property
    def is_initialized(self) -> bool:
        return self._topology is not None

    @property
    def step_count(self) -> int:
        return int(self._step_count)

    @property
    def grid_rebuilds(self) -> int:
        return int(self._grid_rebuilds)

    @property
    def topology(self) -> HalfEdgeMesh | Polyline | PointSet:
        return self._require_topology()

    @property
    def mesh_state(self) -> MeshState | None:
        return self._mesh_state

    @property
    def element_count(self) -> int:
        return self._require_topology().element_count

    def _require_topology(self) -> HalfEdgeMesh | Polyline | PointSet:
        if self._topology is None:
            raise InvalidConfigurationError("reset() で初期形状を与える必要があります")
        return self._topology

    # ---- reset

    def reset(
        self,
        geometry: Any,
        *,
        params: GrowthParams | None = None,
        closed: bool | None = None,
    ) -> None:
        """状態を破棄し、初期形状から作り直す。

        Parameters
        ----------
        geometry : HalfEdgeMesh | Polyline | PointSet | tuple | array-like
            初期形状。`(vertices, faces)` タプルはメッシュ、点配列は `closed` 指定時に曲線、
            未指定時に点群として扱う。渡したオブジェクトはコピーされる。
        params : GrowthParams or None
            差し替えるパラメータ。
        closed : bool or None
            点配列を曲線として扱う場合の閉じ指定。

        Raises
        ------
        InvalidConfigurationError
            空・非多様体の形状、変種と `growth_mode` の不一致。
        """
        p = params if params is not None else self._params

        topology: HalfEdgeMesh | Polyline | PointSet
        if isinstance(geometry, HalfEdgeMesh):
            topology = geometry.copy()
        elif isinstance(geometry, (Polyline, PointSet)):
            topology = geometry.copy()
        elif isinstance(geometry, tuple) and len(geometry) == 2:
            topology = HalfEdgeMesh.from_faces(geometry[0], geometry[1])
        elif closed is not None:
            topology = Polyline(np.asarray(geometry, dtype=np.float64), closed=bool(closed))
        else:
            topology = PointSet(np.asarray(geometry, dtype=np.float64))

        if isinstance(topology, HalfEdgeMesh):
            variant = "mesh"
        elif isinstance(topology, Polyline):
            variant = "curve"
        else:
            variant = "points"
        _check_mode(variant, p)
        pts = topology.positions
        grid = SpatialGrid.from_points(pts, self._grid_target(p), max_cells=self._grid_max_cells)

        # ここまでで失敗した場合、状態（params を含む）は変更しない。
        self._params = p
        self._variant = variant
        self._topology = topology
        self._mesh_state = MeshState.from_mesh(topology) if variant == "mesh" else None
        self._rng = np.random.default_rng(int(p.seed))
        self._step_count = 0
        self._grid_rebuilds = 0
        self._acc = ForceAccumulator()
        self._planar = bool(np.ptp(pts[:, 2]) == 0.0) if pts.shape[0] else True
        self._grid = grid
        logger.info(
            "reset: variant=%s elements=%d grid=%s",
            variant,
            topology.element_count,
            self._grid.counts,
        )

    # ---- step

    def step(self, params: GrowthParams | None = None) -> StepReport:
        """`sub_steps` 回の物理反復（と成長・再分割）を 1 ステップとして実行する。

        要素数が `max_element_count` に達している場合は何もせず `capped=True` を返す。

        Raises
        ------
        NumericalInstabilityError
            ステップ中の例外、または非有限な位置。状態はステップ前に戻る。
        """
        topology = self._require_topology()
        if params is not None:
            _check_mode(str(self._variant), params)
            self._params = params
        p = self._params

        if topology.element_count >= int(p.max_element_count):
            return StepReport(element_count=topology.element_count, capped=True)

        checkpoint = self._checkpoint()
        counters = _Counters()
        self._acc.degenerate = 0
        try:
            if self._variant == "mesh":
                self._step_mesh(p, counters)
            elif self._variant == "curve":
                self._step_curve(p, counters)
            else:
                self._step_points(p, counters)
            if not np.all(np.isfinite(self._require_topology().positions)):
                raise NumericalInstabilityError("位置に非有限値が含まれています")
        except NumericalInstabilityError:
            self._restore(checkpoint)
            logger.error("step rolled back: step_count=%d", self._step_count)
            raise
        except Exception as exc:
            self._restore(checkpoint)
            logger.error("step rolled back: step_count=%d (%s)", self._step_count, exc)
            if isinstance(exc, DiffGrowthError):
                raise
            raise NumericalInstabilityError(f"ステップに失敗しました: {exc}") from exc

        report = StepReport(
            sub_steps_run=counters.sub_steps_run,
            element_count=self._require_topology().element_count,
            splits=counters.splits,
            flips=counters.flips,
            inserted=counters.inserted,
            rejected=counters.rejected,
            degenerate=int(self._acc.degenerate),
            grid_rebuilds=counters.grid_rebuilds,
        )
        if report.rejected:
            logger.warning(
                "rejected %d topology operations (non-manifold result): step_count=%d",
                report.rejected,
                self._step_count,
            )
        logger.debug("step: %s", report)
        return report

    def _step_mesh(self, p: GrowthParams, c: _Counters) -> None:
        state = self._mesh_state
        assert state is not None
        mesh = state.mesh
        w = p.weights
        cd = float(p.collision_distance)
        split_mode = p.growth_mode == "split"
        topology_cache: dict[str, Any] = {}

        for _ in range(int(p.sub_steps)):
            if split_mode and p.grow:
                n, r = split_long_edges(
                    state, float(p.split_ratio) * cd, max_vertices=int(p.max_element_count)
                )
                c.splits += n
                c.rejected += r
                if n:
                    topology_cache.clear()

            pts = mesh.positions
            self._acc.reset(mesh.n_vertices)
            radii = self._radii(pts, p)
            if w.length:
                rest = np.full((mesh.n_edges,), cd) if split_mode else state.rest_lengths
                self._acc.add_edge_length(
                    pts, mesh.edge_pairs(), rest, w.length, tension_only=split_mode
                )
            if w.collision or w.smoothing:
                if "csr" not in topology_cache:
                    topology_cache["csr"] = mesh.neighbor_csr()
                csr = topology_cache["csr"]
            if w.collision:
                self._acc.add_collisions(pts, self._collision_pairs(pts, radii, p), radii, w.collision)
                self._acc.add_one_ring_cancellation(pts, csr, radii, w.collision)
            if w.smoothing:
                self._acc.add_laplacian(pts, csr, mesh.boundary_mask(), w.smoothing)
            if w.boundary:
                if "loops" not in topology_cache:
                    start = mesh.he_start
                    topology_cache["loops"] = [
                        start[np.fromiter(mesh.walk_loop(h), dtype=np.int64)]
                        for h in mesh.hole_loops()
                    ]
                self._acc.add_boundary_smoothing(pts, topology_cache["loops"], w.boundary)
            if w.bending:
                self._acc.add_bending(pts, mesh.quad_corners()[1], w.bending)
            if w.field:
                self._acc.add_field(self._field_vectors(pts, p), w.field)

            integrate_velocity(
                pts, state.velocities, self._acc, time_step=float(p.time_step), decay=float(p.decay)
            )
            self._step_count += 1
            c.sub_steps_run += 1

            if not split_mode and p.grow:
                grow_rest_lengths(state, float(p.growth_rate))
            self._refresh_grid(pts, p, c)

            freq = int(p.refine_frequency)
            if freq > 0 and self._step_count % freq == 0:
                if not split_mode and p.grow:
                    n, r = split_long_edges(
                        state, p.effective_split_length, max_vertices=int(p.max_element_count)
                    )
                    c.splits += n
                    c.rejected += r
                f, r = equalize_valence(state, self._rng)
                c.flips += f
                c.rejected += r
                topology_cache.clear()

    def _step_curve(self, p: GrowthParams, c: _Counters) -> None:
        curve = self._topology
        assert isinstance(curve, Polyline)
        w = p.weights
        if p.grow:
            c.inserted += grow_curve(curve, p)
        relax_curve(curve, p)

        for _ in range(int(p.sub_steps)):
            pts = curve.positions
            self._acc.reset(curve.element_count)
            radii = self._radii(pts, p)
            if w.length:
                rest = np.full((curve.edge_pairs().shape[0],), float(p.collision_distance))
                self._acc.add_edge_length(pts, curve.edge_pairs(), rest, w.length, tension_only=True)
            if w.field:
                self._acc.add_field(self._field_vectors(pts, p), w.field)
            if w.collision:
                self._acc.add_collisions(pts, self._collision_pairs(pts, radii, p), radii, w.collision)
            integrate_direct(pts, self._acc)
            self._step_count += 1
            c.sub_steps_run += 1
            self._refresh_grid(pts, p, c)

    def _step_points(self, p: GrowthParams, c: _Counters) -> None:
        cloud = self._topology
        assert isinstance(cloud, PointSet)
        w = p.weights
        for _ in range(int(p.sub_steps)):
            pts = cloud.positions
            self._acc.reset(cloud.element_count)
            radii = self._radii(pts, p)
            if w.field:
                self._acc.add_field(self._field_vectors(pts, p), w.field)
            if w.collision:
                self._acc.add_collisions(pts, self._collision_pairs(pts, radii, p), radii, w.collision)
            integrate_direct(pts, self._acc)
            self._step_count += 1
            c.sub_steps_run += 1
            self._refresh_grid(pts, p, c)

    # ---- 補助

    @staticmethod
    def _grid_target(p: GrowthParams) -> float:
        return _GRID_TARGET_RATIO * float(p.collision_distance)

    def _radii(self, points: np.ndarray, p: GrowthParams) -> np.ndarray:
        cd = float(p.collision_distance)
        if not p.dynamic_radius:
            return np.full((points.shape[0],), cd, dtype=np.float64)
        values = self._scalar_field(points, float(p.field_scale), float(p.field_offset))
        return np.ascontiguousarray(
            remap_radii(values, float(p.radius_min_ratio) * cd, cd), dtype=np.float64
        )

    def _field_vectors(self, points: np.ndarray, p: GrowthParams) -> np.ndarray:
        if self._field is not None:
            vectors = self._field(points, float(p.field_scale), float(p.field_offset))
        else:
            vectors = curl_noise(
                points, float(p.field_scale), float(p.field_offset), planar=self._planar
            )
        out = np.asarray(vectors, dtype=np.float64)
        if out.shape != points.shape:
            raise InvalidConfigurationError(
                f"field の戻り値は shape {points.shape} である必要があります: got={out.shape}"
            )
        return out

    def _collision_pairs(
        self, points: np.ndarray, radii: np.ndarray, p: GrowthParams
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        if not p.use_spatial_index:
            return brute_force_pairs(points, radii)
        grid = self._grid
        assert grid is not None
        grid.rebuild(points)
        try:
            return grid.query_pairs(points, radii)
        finally:
            grid.clear()

    def _refresh_grid(self, points: np.ndarray, p: GrowthParams, c: _Counters) -> None:
        grid = self._grid
        assert grid is not None
        if grid.fit(points, self._grid_target(p)):
            self._grid_rebuilds += 1
            c.grid_rebuilds += 1
            logger.debug("grid rebuilt: counts=%s step_count=%d", grid.counts, self._step_count)

    def _checkpoint(self) -> _Checkpoint:
        grid = self._grid
        assert grid is not None
        topology = self._require_topology()
        mesh_state = self._mesh_state.copy() if self._mesh_state is not None else None
        return _Checkpoint(
            topology=mesh_state.mesh if mesh_state is not None else topology.copy(),
            mesh_state=mesh_state,
            step_count=self._step_count,
            grid_rebuilds=self._grid_rebuilds,
            grid_bounds=(grid.bounds_min, grid.bounds_max, grid.counts),
            extra={"rng": self._rng.bit_generator.state},
        )

    def _restore(self, cp: _Checkpoint) -> None:
        self._topology = cp.topology
        self._mesh_state = cp.mesh_state
        self._step_count = cp.step_count
        self._grid_rebuilds = cp.grid_rebuilds
        lo, hi, counts = cp.grid_bounds
        self._grid = SpatialGrid(lo, hi, counts, max_cells=self._grid_max_cells)
        self._rng.bit_generator.state = cp.extra["rng"]
        self._acc = ForceAccumulator()

    # ---- 出力 / ホスト向け

    def snapshot(self) -> GrowthSnapshot:
        """現在の状態の読み取り専用コピーを返す。"""
        topology = self._require_topology()
        pts = topology.positions
        return GrowthSnapshot(
            variant=str(self._variant),
            step_count=self._step_count,
            positions=pts,
            radii=self._radii(pts, self._params),
            faces=topology.faces() if isinstance(topology, HalfEdgeMesh) else None,
            closed=topology.closed if isinstance(topology, Polyline) else None,
            grid_rebuilds=self._grid_rebuilds,
        )

    def update(
        self,
        geometry: Any = None,
        params: GrowthParams | None = None,
        *,
        reset: bool = False,
        go: bool = False,
        closed: bool | None = None,
    ) -> GrowthSnapshot:
        """ホストからの 1 回の呼び出しに相当する入口。

        `reset` または未初期化なら `geometry` から作り直し、`go` なら 1 ステップ進める。
        """
        if reset or self._topology is None:
            if geometry is None:
                raise InvalidConfigurationError("初期化には geometry が必要です")
            self.reset(geometry, params=params, closed=closed)
        elif params is not None:
            _check_mode(str(self._variant), params)
            self._params = params
        if go:
            self.step()
        return self.snapshot()

    def query_radius(self, center: Any, radius: float) -> list[int]:
        """中心から `radius` 以内にある要素 index を返す。"""
        pts = self._require_topology().positions
        grid = self._grid
        assert grid is not None
        grid.rebuild(pts)
        try:
            return sorted(grid.search_sphere(center, float(radius)))
        finally:
            grid.clear()


def _check_mode(variant: str, params: GrowthParams) -> None:
    allowed = _MODES_BY_VARIANT.get(variant, ())
    if params.growth_mode not in allowed:
        raise InvalidConfigurationError(
            f"{variant} の growth_mode は {allowed} のいずれかである必要があります"
            f": got={params.growth_mode!r}"
        )


__all__ = ["GrowthSimulation", "StepReport"]
