"""IPC 型バリアポテンシャル（2D 点–辺）.

バリア関数（二乗距離 x = d², 閾値 x̂ = d̂²）:
    b(x)   = -(x - x̂)² ln(x / x̂)                        (0 < x < x̂)
    b'(x)  = -2(x - x̂) ln(x / x̂) - (x - x̂)² / x
    b''(x) = -2 ln(x / x̂) - 4(x - x̂) / x + (x - x̂)² / x²
    x >= x̂ では b = b' = b'' = 0（C² 連続に 0 へ接続）

ポテンシャル:
    B(V) = Σ_{(辺, 頂点) ∈ C} b(d²(頂点, 辺))
    ∇B  = Σ b'(d²) ∇d²
    ∇²B = Σ b''(d²) ∇d² ∇d²ᵀ + b'(d²) ∇²d²

拘束集合 C は construct_constraint_set で構築する
（broadphase → 自辺除外 → 厳密距離で d² < d̂² を判定）。
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from nlfem.contact.broadphase import broadphase_aabb, compute_point_aabb, compute_segment_aabb
from nlfem.contact.geometry import point_edge_distance, point_edge_distance_squared
from nlfem.core.results import ConstraintSet
from nlfem.sparse_cache import SparseMatrixCache


def _check_2d(V: np.ndarray, faces: np.ndarray) -> None:
    if V.shape[1] != 2 or np.asarray(faces).size > 0:
        raise NotImplementedError("3D（点–三角形・辺–辺）のバリアは未対応です。")


# ====================================================================
# スカラーバリア関数
# ====================================================================


def barrier(x: np.ndarray | float, x_hat: float) -> np.ndarray:
    """b(x)。x は二乗距離."""
    x = np.asarray(x, dtype=float)
    out = np.zeros_like(x)
    m = (x > 0.0) & (x < x_hat)
    xm = x[m]
    out[m] = -((xm - x_hat) ** 2) * np.log(xm / x_hat)
    out[x <= 0.0] = np.inf
    return out


def barrier_gradient(x: np.ndarray | float, x_hat: float) -> np.ndarray:
    """b'(x)."""
    x = np.asarray(x, dtype=float)
    out = np.zeros_like(x)
    m = (x > 0.0) & (x < x_hat)
    xm = x[m]
    out[m] = -2.0 * (xm - x_hat) * np.log(xm / x_hat) - (xm - x_hat) ** 2 / xm
    return out


def barrier_hessian(x: np.ndarray | float, x_hat: float) -> np.ndarray:
    """b''(x)."""
    x = np.asarray(x, dtype=float)
    out = np.zeros_like(x)
    m = (x > 0.0) & (x < x_hat)
    xm = x[m]
    out[m] = (
        -2.0 * np.log(xm / x_hat)
        - 4.0 * (xm - x_hat) / xm
        + (xm - x_hat) ** 2 / xm**2
    )
    return out


# ====================================================================
# 拘束集合
# ====================================================================


def construct_constraint_set(
    V: np.ndarray,
    edges: np.ndarray,
    faces: np.ndarray,
    dhat_squared: float,
) -> ConstraintSet:
    """d² < dhat_squared となる (辺, 頂点) の組を集める.

    Args:
        V: (n_nodes, 2) 現配置の節点座標
        edges: (ne, 2) 境界辺
        faces: (nf, 3) 境界三角形（2D では空）
        dhat_squared: 活性化閾値 d̂²

    Returns:
        ConstraintSet
    """
    V = np.asarray(V, dtype=float)
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    _check_2d(V, faces)
    if edges.shape[0] == 0:
        return ConstraintSet(edge_vertex=np.zeros((0, 2), dtype=np.int64))

    vertices = np.unique(edges)
    dhat = float(np.sqrt(dhat_squared))

    lo_v, hi_v = compute_point_aabb(V[vertices], margin=dhat)
    lo_e, hi_e = compute_segment_aabb(V[edges[:, 0]], V[edges[:, 1]])
    pairs = broadphase_aabb(lo_v, hi_v, lo_e, hi_e)

    found = []
    for iv, ie in pairs:
        v = int(vertices[iv])
        a, b = edges[ie]
        if v == a or v == b:
            continue
        if point_edge_distance_squared(V[v], V[a], V[b]) < dhat_squared:
            found.append((int(ie), v))

    if not found:
        return ConstraintSet(edge_vertex=np.zeros((0, 2), dtype=np.int64))
    return ConstraintSet(edge_vertex=np.array(sorted(found), dtype=np.int64))


def _local_dofs(v: int, a: int, b: int) -> np.ndarray:
    return np.array([2 * v, 2 * v + 1, 2 * a, 2 * a + 1, 2 * b, 2 * b + 1], dtype=np.int64)


def _project_to_psd(H: np.ndarray) -> np.ndarray:
    """負の固有値を 0 にクリップして半正定値化する."""
    w, Q = np.linalg.eigh(H)
    return (Q * np.maximum(w, 0.0)) @ Q.T


# ====================================================================
# ポテンシャル・勾配・Hessian
# ====================================================================


def compute_barrier_potential(
    V_rest: np.ndarray,
    V: np.ndarray,
    edges: np.ndarray,
    faces: np.ndarray,
    constraint_set: ConstraintSet,
    dhat_squared: float,
) -> float:
    """バリアポテンシャル Σ b(d²).

    V_rest は 3D 辺–辺拘束の mollifier で使う引数で、2D では参照しない。
    """
    V = np.asarray(V, dtype=float)
    _check_2d(V, faces)
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    total = 0.0
    for ie, v in constraint_set.edge_vertex:
        a, b = edges[ie]
        d2 = point_edge_distance_squared(V[v], V[a], V[b])
        total += float(barrier(d2, dhat_squared))
    return total


def compute_barrier_potential_gradient(
    V_rest: np.ndarray,
    V: np.ndarray,
    edges: np.ndarray,
    faces: np.ndarray,
    constraint_set: ConstraintSet,
    dhat_squared: float,
) -> np.ndarray:
    """バリアポテンシャルの勾配 (n_nodes * 2,)（node-major）."""
    V = np.asarray(V, dtype=float)
    _check_2d(V, faces)
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    grad = np.zeros(V.size, dtype=float)
    for ie, v in constraint_set.edge_vertex:
        a, b = edges[ie]
        d2, g, _ = point_edge_distance(V[v], V[a], V[b])
        np.add.at(grad, _local_dofs(v, a, b), float(barrier_gradient(d2, dhat_squared)) * g)
    return grad


def compute_barrier_potential_hessian(
    V_rest: np.ndarray,
    V: np.ndarray,
    edges: np.ndarray,
    faces: np.ndarray,
    constraint_set: ConstraintSet,
    dhat_squared: float,
    *,
    project_to_psd: bool = False,
) -> sp.csr_matrix:
    """バリアポテンシャルの Hessian (n_nodes * 2, n_nodes * 2).

    拘束集合は反復ごとに変わるため、SparseMatrixCache は triplet mode のまま使う。

    Args:
        project_to_psd: 局所 Hessian を半正定値に射影する
    """
    V = np.asarray(V, dtype=float)
    _check_2d(V, faces)
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    cache = SparseMatrixCache(V.size)
    for ie, v in constraint_set.edge_vertex:
        a, b = edges[ie]
        d2, g, h = point_edge_distance(V[v], V[a], V[b])
        local = float(barrier_hessian(d2, dhat_squared)) * np.outer(g, g) + float(
            barrier_gradient(d2, dhat_squared)
        ) * h
        if project_to_psd:
            local = _project_to_psd(local)
        dofs = _local_dofs(v, a, b)
        cache.add_values(np.repeat(dofs, 6), np.tile(dofs, 6), local.ravel())
    return cache.get_matrix(compute_mapping=False)
