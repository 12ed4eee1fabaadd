"""一次単体要素（TRI3 / TET4）の要素量.

  TRI3: 2D 一次三角形（定ひずみ、平面ひずみ）
  TET4: 3D 一次四面体（定ひずみ）

形状関数勾配は要素内で一定なので、全要素分を (ne, nv, d) 配列として一括計算する。
"""

from __future__ import annotations

import math

import numpy as np


def shape_gradients(nodes: np.ndarray, elements: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """全要素の形状関数勾配と体積（2D は面積）を返す.

    参照単体: N_0 = 1 - Σξ, N_a = ξ_a
    J = ∂x/∂ξ = (X_a - X_0)ᵀ,  ∇N = ∇_ξN · J⁻¹

    Args:
        nodes: (n_nodes, d) 参照配置の節点座標
        elements: (ne, d+1) 接続配列

    Returns:
        G: (ne, d+1, d) G[e, a, :] = ∇N_a
        vol: (ne,) 要素体積

    Raises:
        ValueError: 零体積または反転要素
    """
    nodes = np.asarray(nodes, dtype=float)
    elements = np.asarray(elements, dtype=np.int64)
    d = nodes.shape[1]
    if elements.shape[1] != d + 1:
        raise ValueError(f"elements は (ne, {d + 1}) が必要。実際: {elements.shape}")

    X = nodes[elements]  # (ne, d+1, d)
    J = np.swapaxes(X[:, 1:, :] - X[:, :1, :], 1, 2)  # (ne, d, d)
    detJ = np.linalg.det(J)
    if np.any(detJ <= 0.0):
        bad = int(np.argmin(detJ))
        raise ValueError(f"零体積または反転要素（detJ<=0）: element={bad}, detJ={detJ[bad]:.3e}")

    grad_ref = np.vstack([-np.ones((1, d)), np.eye(d)])  # (d+1, d)
    Jinv = np.linalg.inv(J)
    G = np.einsum("ak,ekj->eaj", grad_ref, Jinv)
    vol = detJ / math.factorial(d)
    return G, vol


def element_dofs(elements: np.ndarray, dim: int) -> np.ndarray:
    """要素 DOF インデックス (ne, (d+1)*dim) を返す（node-major）."""
    elements = np.asarray(elements, dtype=np.int64)
    offsets = np.arange(dim, dtype=np.int64)
    n_elem, nv = elements.shape
    return (elements[:, :, None] * dim + offsets[None, None, :]).reshape(n_elem, nv * dim)


def deformation_gradient(G: np.ndarray, u_elem: np.ndarray) -> np.ndarray:
    """要素ごとの変形勾配 F = I + H を返す.

    Args:
        G: (ne, nv, d) 形状関数勾配
        u_elem: (ne, nv, d) 要素節点変位

    Returns:
        F: (ne, d, d)  H_ij = Σ_a u_ai ∂N_a/∂X_j
    """
    d = G.shape[-1]
    H = np.einsum("eai,eaj->eij", u_elem, G)
    return H + np.eye(d)


def b_matrix(G: np.ndarray) -> np.ndarray:
    """定ひずみ要素の Voigt B マトリクスを返す.

    2D: ε = [εxx, εyy, γxy]
    3D: ε = [εxx, εyy, εzz, γyz, γxz, γxy]

    Args:
        G: (ne, nv, d) 形状関数勾配

    Returns:
        B: (ne, nvoigt, nv*d)
    """
    ne, nv, d = G.shape
    if d == 2:
        B = np.zeros((ne, 3, nv * 2), dtype=float)
        for a in range(nv):
            c = 2 * a
            B[:, 0, c] = G[:, a, 0]
            B[:, 1, c + 1] = G[:, a, 1]
            B[:, 2, c] = G[:, a, 1]
            B[:, 2, c + 1] = G[:, a, 0]
        return B

    B = np.zeros((ne, 6, nv * 3), dtype=float)
    for a in range(nv):
        c = 3 * a
        B[:, 0, c] = G[:, a, 0]
        B[:, 1, c + 1] = G[:, a, 1]
        B[:, 2, c + 2] = G[:, a, 2]
        B[:, 3, c + 1] = G[:, a, 2]
        B[:, 3, c + 2] = G[:, a, 1]
        B[:, 4, c] = G[:, a, 2]
        B[:, 4, c + 2] = G[:, a, 0]
        B[:, 5, c] = G[:, a, 1]
        B[:, 5, c + 1] = G[:, a, 0]
    return B


def linear_stiffness(G: np.ndarray, vol: np.ndarray, D: np.ndarray) -> np.ndarray:
    """線形弾性の要素剛性 Ke = Bᵀ D B · V を一括計算する.

    Returns:
        Ke: (ne, nv*d, nv*d)
    """
    B = b_matrix(G)
    return np.einsum("eki,kl,elj->eij", B, D, B) * vol[:, None, None]


def consistent_mass(vol: np.ndarray, dim: int, density: float = 1.0) -> np.ndarray:
    """一次単体の整合質量行列を一括計算する.

    M_ab = ρ V (1 + δ_ab) / ((d+1)(d+2)) を各方向成分に配置。

    Returns:
        Me: (ne, nv*dim, nv*dim)
    """
    nv = dim + 1
    scalar = (np.ones((nv, nv)) + np.eye(nv)) / ((dim + 1) * (dim + 2))
    block = np.kron(scalar, np.eye(dim))
    return density * vol[:, None, None] * block[None, :, :]
