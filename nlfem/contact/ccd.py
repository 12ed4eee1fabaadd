"""連続衝突判定（CCD, 2D 点–辺, 線形軌道）.

各節点が t ∈ [0, 1] で V0 → V1 を線形に移動するとき、点 p(t) が辺 a(t)b(t)
を横切るかを判定する。

共線条件:
    c(t) = e(t) × r(t) = 0,   e = b - a,  r = p - a
は t の 2 次式 c(t) = c₂t² + c₁t + c₀ になる。[0, 1] 内の各実根で
辺パラメータ s = (r·e) / (e·e) が [0, 1] に入れば衝突。
"""

from __future__ import annotations

import numpy as np

from nlfem.contact.broadphase import broadphase_aabb, compute_point_aabb, compute_segment_aabb


def _cross(u: np.ndarray, v: np.ndarray) -> float:
    return float(u[0] * v[1] - u[1] * v[0])


def _edge_parameter(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> float | None:
    e = b - a
    e2 = float(e @ e)
    if e2 <= 0.0:
        return None
    return float((p - a) @ e) / e2


def point_edge_ccd(
    p0: np.ndarray,
    a0: np.ndarray,
    b0: np.ndarray,
    p1: np.ndarray,
    a1: np.ndarray,
    b1: np.ndarray,
    *,
    tol: float = 1e-12,
) -> bool:
    """点–辺の線形軌道 CCD.

    Args:
        p0, a0, b0: t=0 の点・辺端点 (2,)
        p1, a1, b1: t=1 の点・辺端点 (2,)
        tol: 根と辺パラメータの許容幅

    Returns:
        衝突するなら True
    """
    r0, dr = p0 - a0, (p1 - a1) - (p0 - a0)
    e0, de = b0 - a0, (b1 - a1) - (b0 - a0)

    c2 = _cross(de, dr)
    c1 = _cross(e0, dr) + _cross(de, r0)
    c0 = _cross(e0, r0)

    def on_segment(t: float) -> bool:
        p = p0 + t * (p1 - p0)
        a = a0 + t * (a1 - a0)
        b = b0 + t * (b1 - b0)
        s = _edge_parameter(p, a, b)
        if s is None:
            # 辺が点に縮退: 点と一致するか
            return bool(np.linalg.norm(p - a) <= tol)
        return -tol <= s <= 1.0 + tol

    if c2 == 0.0 and c1 == 0.0 and c0 == 0.0:
        # 全時刻で共線: 辺パラメータが [0, 1] を通過するか（端点と中間点で判定）
        s_samples = []
        for t in np.linspace(0.0, 1.0, 9):
            p = p0 + t * (p1 - p0)
            a = a0 + t * (a1 - a0)
            b = b0 + t * (b1 - b0)
            s = _edge_parameter(p, a, b)
            if s is None:
                continue
            if -tol <= s <= 1.0 + tol:
                return True
            s_samples.append(s)
        return bool(s_samples) and min(s_samples) < 0.0 < 1.0 < max(s_samples)

    roots = np.roots([c2, c1, c0])
    for t in roots:
        if abs(t.imag) > tol:
            continue
        t_real = float(t.real)
        if -tol <= t_real <= 1.0 + tol and on_segment(min(max(t_real, 0.0), 1.0)):
            return True
    return False


def is_step_collision_free(
    V0: np.ndarray,
    V1: np.ndarray,
    edges: np.ndarray,
    faces: np.ndarray,
) -> bool:
    """V0 → V1 の線形軌道で境界が交差しないか判定する.

    Args:
        V0: (n_nodes, 2) 開始配置
        V1: (n_nodes, 2) 終了配置
        edges: (ne, 2) 境界辺
        faces: (nf, 3) 境界三角形（2D では空）

    Returns:
        交差がなければ True
    """
    V0 = np.asarray(V0, dtype=float)
    V1 = np.asarray(V1, dtype=float)
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    if V0.shape[1] != 2 or np.asarray(faces).size > 0:
        raise NotImplementedError("3D（点–三角形・辺–辺）の CCD は未対応です。")
    if edges.shape[0] == 0:
        return True

    vertices = np.unique(edges)

    # 掃引 AABB による候補抽出
    lo_v, hi_v = compute_point_aabb(V0[vertices], V1[vertices])
    ea, eb = edges[:, 0], edges[:, 1]
    lo_e0, hi_e0 = compute_segment_aabb(V0[ea], V0[eb])
    lo_e1, hi_e1 = compute_segment_aabb(V1[ea], V1[eb])
    lo_e = np.minimum(lo_e0, lo_e1)
    hi_e = np.maximum(hi_e0, hi_e1)
    pairs = broadphase_aabb(lo_v, hi_v, lo_e, hi_e)

    for iv, ie in pairs:
        v = int(vertices[iv])
        a, b = edges[ie]
        if v == a or v == b:
            continue
        if point_edge_ccd(V0[v], V0[a], V0[b], V1[v], V1[a], V1[b]):
            return False
    return True
