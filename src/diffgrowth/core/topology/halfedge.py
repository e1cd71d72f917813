"""
どこで: `src/diffgrowth/core/topology/halfedge.py`。
何を: 追記専用の配列（arena）で持つ half-edge 三角形メッシュと、その局所操作（分割・フリップ・巡回）。
なぜ: 成長中に辺の分割と valence 均等化を繰り返しても、頂点・辺 index を安定に保つため。

表現
----
- 辺 e は half-edge `2e` と `2e+1` を持つ。twin は `h ^ 1`。
- `he_start[h]` は h の始点。終点は `he_start[h ^ 1]`。
- `he_face[h] == -1` は境界（穴ループ）側の half-edge。
- 境界頂点の `vertex_he` は、その頂点から出る境界 half-edge を指す。
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

import numpy as np

from diffgrowth.core.errors import InvalidConfigurationError, TopologyDefectError

# 巡回の安全上限。正しいメッシュでは到達しない。
_MAX_CIRCULATION = 1_000_000


def _grow(arr: np.ndarray, n: int, fill: float | int | None = None) -> np.ndarray:
    cap = int(arr.shape[0])
    if n <= cap:
        return arr
    new_cap = max(n, cap * 2, 16)
    out = np.empty((new_cap,) + arr.shape[1:], dtype=arr.dtype)
    out[:cap] = arr
    if fill is not None:
        out[cap:] = fill
    return out


class HalfEdgeMesh:
    """half-edge 三角形メッシュ。

    通常は `from_faces()` で構築する。分割とフリップは配列に追記するだけで、
    既存の頂点・辺・面 index は変わらない。
    """

    def __init__(self) -> None:
        self._nv = 0
        self._nh = 0
        self._nf = 0
        self._pos = np.zeros((0, 3), dtype=np.float64)
        self._vertex_he = np.zeros((0,), dtype=np.int64)
        self._he_start = np.zeros((0,), dtype=np.int64)
        self._he_face = np.zeros((0,), dtype=np.int64)
        self._he_next = np.zeros((0,), dtype=np.int64)
        self._he_prev = np.zeros((0,), dtype=np.int64)
        self._face_he = np.zeros((0,), dtype=np.int64)

    # ---- 構築

    @classmethod
    def from_faces(
        cls, vertices: np.ndarray | Sequence[Sequence[float]], faces: Sequence[Sequence[int]]
    ) -> HalfEdgeMesh:
        """頂点配列と多角形面リストからメッシュを構築する。

        Parameters
        ----------
        vertices : array-like
            shape (V,3) または (V,2)。2 列の場合は z=0 を補う。
        faces : Sequence[Sequence[int]]
            向きの揃った多角形面。4 角形以上は先頭頂点からの扇で三角形化する。

        Returns
        -------
        HalfEdgeMesh
            構築済みメッシュ。

        Raises
        ------
        InvalidConfigurationError
            空の入力、範囲外 index、孤立頂点、非多様体（同じ向きの辺の重複、
            3 枚以上の面が共有する辺、境界扇を 2 つ持つ頂点）。
        """
        v = np.asarray(vertices, dtype=np.float64)
        if v.ndim != 2 or v.shape[0] == 0 or v.shape[1] not in (2, 3):
            raise InvalidConfigurationError(
                f"vertices は shape (V,2|3) の非空配列である必要があります: got={v.shape}"
            )
        if v.shape[1] == 2:
            v = np.concatenate([v, np.zeros((v.shape[0], 1), dtype=np.float64)], axis=1)
        if not np.all(np.isfinite(v)):
            raise InvalidConfigurationError("vertices は有限値である必要があります")
        nv = int(v.shape[0])

        tris: list[tuple[int, int, int]] = []
        for fi, face in enumerate(faces):
            idx = [int(x) for x in face]
            if len(idx) < 3:
                raise InvalidConfigurationError(f"面は 3 頂点以上である必要があります: face={fi}")
            if len(set(idx)) != len(idx):
                raise InvalidConfigurationError(f"面に同じ頂点が重複しています: face={fi}")
            if min(idx) < 0 or max(idx) >= nv:
                raise InvalidConfigurationError(f"面の頂点 index が範囲外です: face={fi}")
            for k in range(1, len(idx) - 1):
                tris.append((idx[0], idx[k], idx[k + 1]))
        if not tris:
            raise InvalidConfigurationError("faces は 1 枚以上である必要があります")

        mesh = cls()
        mesh._reserve(nv, 6 * len(tris) + 6, len(tris))
        mesh._pos[:nv] = v
        mesh._nv = nv

        directed: dict[tuple[int, int], int] = {}
        for f, (a, b, c) in enumerate(tris):
            hs = []
            for u, w in ((a, b), (b, c), (c, a)):
                h = directed.get((u, w))
                if h is None:
                    e = mesh._add_edge(u, w)
                    h = 2 * e
                    directed[(u, w)] = h
                    directed[(w, u)] = h ^ 1
                elif int(mesh._he_face[h]) != -1:
                    raise InvalidConfigurationError(
                        f"非多様体の辺です（同じ向きで 2 回以上使われています）: edge=({u}, {w})"
                    )
                mesh._he_face[h] = f
                hs.append(h)
            for k in range(3):
                mesh._he_next[hs[k]] = hs[(k + 1) % 3]
                mesh._he_prev[hs[k]] = hs[(k + 2) % 3]
            mesh._face_he[f] = hs[0]
        mesh._nf = len(tris)

        nh = mesh._nh
        he_face = mesh._he_face[:nh]
        he_start = mesh._he_start[:nh]
        boundary_out: dict[int, int] = {}
        for h in np.flatnonzero(he_face == -1).tolist():
            s = int(he_start[h])
            if s in boundary_out:
                raise InvalidConfigurationError(f"頂点が複数の境界扇を持っています: vertex={s}")
            boundary_out[s] = int(h)
        for s, h in boundary_out.items():
            end = int(he_start[h ^ 1])
            n = boundary_out[end]
            mesh._he_next[h] = n
            mesh._he_prev[n] = h

        mesh._vertex_he[:nv] = -1
        for h in range(nh):
            s = int(he_start[h])
            if mesh._vertex_he[s] == -1:
                mesh._vertex_he[s] = h
        for s, h in boundary_out.items():
            mesh._vertex_he[s] = h
        isolated = np.flatnonzero(mesh._vertex_he[:nv] == -1)
        if isolated.size:
            raise InvalidConfigurationError(
                f"どの面にも属さない頂点があります: vertices={isolated[:8].tolist()}"
            )

        degrees = mesh.degrees()
        for vi in range(nv):
            if sum(1 for _ in mesh.circulate_vertex(vi)) != int(degrees[vi]):
                raise InvalidConfigurationError(f"頂点の周りが 1 つの扇になっていません: vertex={vi}")
        return mesh

    def _reserve(self, nv: int, nh: int, nf: int) -> None:
        self._pos = _grow(self._pos, nv)
        self._vertex_he = _grow(self._vertex_he, nv, -1)
        self._he_start = _grow(self._he_start, nh)
        self._he_face = _grow(self._he_face, nh, -1)
        self._he_next = _grow(self._he_next, nh)
        self._he_prev = _grow(self._he_prev, nh)
        self._face_he = _grow(self._face_he, nf)

    def _add_vertex(self, p: np.ndarray) -> int:
        v = self._nv
        self._reserve(v + 1, self._nh, self._nf)
        self._pos[v] = p
        self._vertex_he[v] = -1
        self._nv = v + 1
        return v

    def _add_edge(self, a: int, b: int) -> int:
        h = self._nh
        self._reserve(self._nv, h + 2, self._nf)
        self._he_start[h] = a
        self._he_start[h + 1] = b
        self._he_face[h] = -1
        self._he_face[h + 1] = -1
        self._he_next[h] = -1
        self._he_next[h + 1] = -1
        self._he_prev[h] = -1
        self._he_prev[h + 1] = -1
        self._nh = h + 2
        return h // 2

    def _add_face(self, h: int) -> int:
        f = self._nf
        self._reserve(self._nv, self._nh, f + 1)
        self._face_he[f] = h
        self._nf = f + 1
        return f

    def _link(self, *hs: int) -> None:
        """hs を 1 周の next/prev 鎖として繋ぐ。"""
        n = len(hs)
        for k in range(n):
            self._he_next[hs[k]] = hs[(k + 1) % n]
            self._he_prev[hs[(k + 1) % n]] = hs[k]

    # ---- 配列ビュー

    @property
    def positions(self) -> np.ndarray:
        return self._pos[: self._nv]

    @property
    def element_count(self) -> int:
        return int(self._nv)

    @property
    def n_vertices(self) -> int:
        return int(self._nv)

    @property
    def n_halfedges(self) -> int:
        return int(self._nh)

    @property
    def n_edges(self) -> int:
        return int(self._nh) // 2

    @property
    def n_faces(self) -> int:
        return int(self._nf)

    @property
    def vertex_he(self) -> np.ndarray:
        return self._vertex_he[: self._nv]

    @property
    def he_start(self) -> np.ndarray:
        return self._he_start[: self._nh]

    @property
    def he_face(self) -> np.ndarray:
        return self._he_face[: self._nh]

    @property
    def he_next(self) -> np.ndarray:
        return self._he_next[: self._nh]

    @property
    def he_prev(self) -> np.ndarray:
        return self._he_prev[: self._nh]

    @property
    def face_he(self) -> np.ndarray:
        return self._face_he[: self._nf]

    def copy(self) -> HalfEdgeMesh:
        out = HalfEdgeMesh()
        out._nv = self._nv
        out._nh = self._nh
        out._nf = self._nf
        out._pos = self._pos[: self._nv].copy()
        out._vertex_he = self._vertex_he[: self._nv].copy()
        out._he_start = self._he_start[: self._nh].copy()
        out._he_face = self._he_face[: self._nh].copy()
        out._he_next = self._he_next[: self._nh].copy()
        out._he_prev = self._he_prev[: self._nh].copy()
        out._face_he = self._face_he[: self._nf].copy()
        return out

    # ---- 問い合わせ

    def edge_endpoints(self, e: int) -> tuple[int, int]:
        self._check_edge(e)
        return int(self._he_start[2 * e]), int(self._he_start[2 * e + 1])

    def is_boundary_edge(self, e: int) -> bool:
        self._check_edge(e)
        return int(self._he_face[2 * e]) == -1 or int(self._he_face[2 * e + 1]) == -1

    def is_boundary_vertex(self, v: int) -> bool:
        return int(self._he_face[self._vertex_he[int(v)]]) == -1

    def boundary_mask(self) -> np.ndarray:
        return self.he_face[self.vertex_he] == -1

    def degrees(self) -> np.ndarray:
        """頂点ごとの辺数（出ていく half-edge 数）。"""
        return np.bincount(self.he_start, minlength=self._nv).astype(np.int64)

    def edge_pairs(self) -> np.ndarray:
        s = self.he_start
        return np.stack([s[0::2], s[1::2]], axis=1)

    def edge_lengths(self) -> np.ndarray:
        pairs = self.edge_pairs()
        d = self.positions[pairs[:, 1]] - self.positions[pairs[:, 0]]
        return np.sqrt(np.einsum("ij,ij->i", d, d))

    def faces(self) -> np.ndarray:
        """(F,3) int64 の三角形頂点 index。"""
        h0 = self.face_he
        h1 = self._he_next[h0]
        h2 = self._he_next[h1]
        s = self._he_start
        return np.stack([s[h0], s[h1], s[h2]], axis=1)

    def neighbor_csr(self) -> tuple[np.ndarray, np.ndarray]:
        start = self.he_start
        order = np.argsort(start, kind="stable")
        indices = start[order ^ 1]
        indptr = np.zeros((self._nv + 1,), dtype=np.int64)
        np.cumsum(np.bincount(start, minlength=self._nv), out=indptr[1:])
        return indptr, indices.astype(np.int64, copy=False)

    def quad_corners(self) -> tuple[np.ndarray, np.ndarray]:
        """内部辺ごとの 4 頂点 `(i, j, p, q)` を返す。

        Returns
        -------
        tuple[np.ndarray, np.ndarray]
            `(edge_ids (K,), corners (K,4))`。i, j は辺の端点、p, q は両側の対角頂点。
        """
        face = self.he_face
        interior = np.flatnonzero((face[0::2] != -1) & (face[1::2] != -1))
        h = 2 * interior
        t = h + 1
        s = self._he_start
        corners = np.stack(
            [s[h], s[t], s[self._he_prev[h]], s[self._he_prev[t]]], axis=1
        ).astype(np.int64, copy=False)
        return interior.astype(np.int64, copy=False), corners

    def circulate_vertex(self, v: int) -> Iterator[int]:
        """頂点 v から出る half-edge を 1 周分、遅延列挙する。"""
        start = int(self._vertex_he[int(v)])
        if start < 0:
            return
        h = start
        for _ in range(_MAX_CIRCULATION):
            yield h
            h = int(self._he_next[h ^ 1])
            if h == start:
                return
        raise TopologyDefectError(f"頂点の巡回が閉じません: vertex={v}")

    def vertex_neighbors(self, v: int) -> list[int]:
        return [int(self._he_start[h ^ 1]) for h in self.circulate_vertex(v)]

    def walk_loop(self, h: int) -> Iterator[int]:
        """h を含む面または穴ループの half-edge を 1 周分列挙する。"""
        start = int(h)
        cur = start
        for _ in range(_MAX_CIRCULATION):
            yield cur
            cur = int(self._he_next[cur])
            if cur == start:
                return
        raise TopologyDefectError(f"ループが閉じません: halfedge={h}")

    def hole_loops(self) -> list[int]:
        """穴（境界）ループごとに代表 half-edge を 1 つ返す。"""
        boundary = np.flatnonzero(self.he_face == -1)
        seen = np.zeros((self._nh,), dtype=np.bool_)
        loops: list[int] = []
        for h in boundary.tolist():
            if seen[h]:
                continue
            loops.append(int(h))
            for g in self.walk_loop(h):
                seen[g] = True
        return loops

    def _check_edge(self, e: int) -> None:
        if not 0 <= int(e) < self._nh // 2:
            raise IndexError(f"edge index が範囲外です: got={e}, n_edges={self._nh // 2}")

    def _is_triangle(self, h: int) -> bool:
        n = self._he_next
        return int(n[n[n[h]]]) == int(h)

    # ---- 局所操作

    def split_edge(self, e: int) -> tuple[int, tuple[int, ...]]:
        """辺 e の中点に頂点を追加し、隣接三角形をそれぞれ 2 分割する。

        Returns
        -------
        tuple[int, tuple[int, ...]]
            `(新頂点, 新しい辺)`。新しい辺の先頭は e の後半（新頂点 → 元の終点）で、
            残りは隣接面ごとの対角線。

        Raises
        ------
        TopologyDefectError
            隣接面が三角形でない。この場合メッシュは変更されない。
        """
        self._check_edge(e)
        h0 = 2 * int(e)
        h1 = h0 + 1
        f0 = int(self._he_face[h0])
        f1 = int(self._he_face[h1])
        if (f0 != -1 and not self._is_triangle(h0)) or (f1 != -1 and not self._is_triangle(h1)):
            raise TopologyDefectError(f"三角形でない面に接する辺は分割できません: edge={e}")

        a = int(self._he_start[h0])
        b = int(self._he_start[h1])
        p0 = int(self._he_prev[h0])
        n0 = int(self._he_next[h0])
        p1 = int(self._he_prev[h1])
        n1 = int(self._he_next[h1])

        m = self._add_vertex(0.5 * (self._pos[a] + self._pos[b]))
        e1 = self._add_edge(m, b)
        g0 = 2 * e1
        g1 = g0 + 1
        self._he_start[h1] = m
        self._he_face[g0] = f0
        self._he_face[g1] = f1

        # h0: a->m, g0: m->b, g1: b->m, h1: m->a
        self._he_next[h0] = g0
        self._he_prev[g0] = h0
        self._he_next[g0] = n0
        self._he_prev[n0] = g0
        self._he_next[p1] = g1
        self._he_prev[g1] = p1
        self._he_next[g1] = h1
        self._he_prev[h1] = g1

        if int(self._vertex_he[b]) == h1:
            self._vertex_he[b] = g1
        if f1 == -1:
            self._vertex_he[m] = h1
        else:
            self._vertex_he[m] = g0

        new_edges = [e1]
        if f0 != -1:
            c = int(self._he_start[p0])
            ed = self._add_edge(m, c)
            x = 2 * ed
            y = x + 1
            f_new = self._add_face(g0)
            self._link(h0, x, p0)
            self._link(g0, n0, y)
            self._he_face[x] = f0
            for h in (g0, n0, y):
                self._he_face[h] = f_new
            self._face_he[f0] = h0
            new_edges.append(ed)
        if f1 != -1:
            d = int(self._he_start[p1])
            ed = self._add_edge(m, d)
            w = 2 * ed
            u = w + 1
            f_new = self._add_face(g1)
            self._link(h1, n1, u)
            self._link(g1, w, p1)
            self._he_face[u] = f1
            for h in (g1, w, p1):
                self._he_face[h] = f_new
            self._face_he[f1] = h1
            new_edges.append(ed)
        return m, tuple(new_edges)

    def spin_edge(self, e: int) -> None:
        """内部辺 e を、2 つの隣接三角形の対角線へ付け替える（edge flip）。

        Raises
        ------
        TopologyDefectError
            境界辺、三角形でない隣接面、対角頂点の一致・既存接続、
            端点の次数が 3 を下回る場合。いずれもメッシュは変更されない。
        """
        self._check_edge(e)
        h = 2 * int(e)
        t = h + 1
        f = int(self._he_face[h])
        g = int(self._he_face[t])
        if f == -1 or g == -1:
            raise TopologyDefectError(f"境界辺はフリップできません: edge={e}")
        if not (self._is_triangle(h) and self._is_triangle(t)):
            raise TopologyDefectError(f"三角形でない面に接する辺はフリップできません: edge={e}")

        a = int(self._he_start[h])
        b = int(self._he_start[t])
        hn = int(self._he_next[h])
        hp = int(self._he_prev[h])
        tn = int(self._he_next[t])
        tp = int(self._he_prev[t])
        c = int(self._he_start[hp])
        d = int(self._he_start[tp])
        if c == d:
            raise TopologyDefectError(f"対角頂点が一致しています: edge={e}")
        if d in self.vertex_neighbors(c):
            raise TopologyDefectError(f"対角頂点が既に接続されています: edge={e}")
        deg_a = sum(1 for _ in self.circulate_vertex(a))
        deg_b = sum(1 for _ in self.circulate_vertex(b))
        if deg_a <= 3 or deg_b <= 3:
            raise TopologyDefectError(f"端点の次数が 3 を下回ります: edge={e}")

        if int(self._vertex_he[a]) == h:
            self._vertex_he[a] = tn
        if int(self._vertex_he[b]) == t:
            self._vertex_he[b] = hn

        # h: d->c, t: c->d
        self._he_start[h] = d
        self._he_start[t] = c
        self._link(h, hp, tn)
        self._link(t, tp, hn)
        self._he_face[tn] = f
        self._he_face[hn] = g
        self._face_he[f] = h
        self._face_he[g] = t

    # ---- 検証

    def validate(self) -> None:
        """接続の整合性を検査し、破綻していれば TopologyDefectError を送出する。"""
        nh = self._nh
        h = np.arange(nh, dtype=np.int64)
        nxt = self.he_next
        prv = self.he_prev
        start = self.he_start
        face = self.he_face
        if nh % 2 != 0:
            raise TopologyDefectError(f"half-edge 数が奇数です: got={nh}")
        if np.any(nxt < 0) or np.any(prv < 0):
            raise TopologyDefectError("next/prev が未接続の half-edge があります")
        if not np.array_equal(prv[nxt], h) or not np.array_equal(nxt[prv], h):
            raise TopologyDefectError("next と prev が互いに逆になっていません")
        if not np.array_equal(start[nxt], start[h ^ 1]):
            raise TopologyDefectError("next の始点が終点と一致しません")
        if not np.array_equal(face[nxt], face):
            raise TopologyDefectError("next が別の面へ渡っています")
        if np.any(start == start[h ^ 1]):
            raise TopologyDefectError("始点と終点が同じ辺があります")
        fh = self.face_he
        if not np.array_equal(face[fh], np.arange(self._nf, dtype=np.int64)):
            raise TopologyDefectError("face_he が自面の half-edge を指していません")
        if np.any(nxt[nxt[nxt[fh]]] != fh):
            raise TopologyDefectError("三角形でない面があります")
        vh = self.vertex_he
        if np.any(vh < 0) or not np.array_equal(start[vh], np.arange(self._nv, dtype=np.int64)):
            raise TopologyDefectError("vertex_he が自頂点から出る half-edge を指していません")
        has_boundary_out = np.zeros((self._nv,), dtype=np.bool_)
        has_boundary_out[start[face == -1]] = True
        if not np.array_equal(has_boundary_out, face[vh] == -1):
            raise TopologyDefectError("境界頂点の vertex_he が境界 half-edge を指していません")


__all__ = ["HalfEdgeMesh"]
