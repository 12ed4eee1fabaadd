"""全 DOF ↔ 縮約 DOF の写像（Dirichlet 境界の消去）.

full:    拘束 DOF を含む全 DOF ベクトル (full_size,)
reduced: 自由 DOF のみ (reduced_size = full_size - n_fixed,)

full_to_reduced は拘束 DOF を取り除き、残りの順序を保つ。
reduced_to_full は自由 DOF をそのまま戻し、拘束 DOF には右辺（境界条件評価）の
値を入れる。自由 DOF 部分空間上で両者は厳密に逆写像である:

    full_to_reduced(reduced_to_full(r, b, rhs), b) == r
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp


def build_reduced_index_table(full_size: int, boundary_dofs: np.ndarray) -> np.ndarray:
    """全 DOF → 縮約 DOF のインデックス表を作る.

    Args:
        full_size: 全 DOF 数
        boundary_dofs: 拘束 DOF（昇順）

    Returns:
        table: (full_size,) int64。拘束 DOF は -1、自由 DOF は縮約インデックス
    """
    boundary_dofs = np.asarray(boundary_dofs, dtype=np.int64)
    free = np.ones(full_size, dtype=bool)
    free[boundary_dofs] = False
    table = np.full(full_size, -1, dtype=np.int64)
    table[free] = np.arange(int(free.sum()), dtype=np.int64)
    return table


def free_dofs(full_size: int, boundary_dofs: np.ndarray) -> np.ndarray:
    """自由 DOF インデックス（昇順）を返す."""
    mask = np.ones(full_size, dtype=bool)
    mask[np.asarray(boundary_dofs, dtype=np.int64)] = False
    return np.flatnonzero(mask)


def full_to_reduced(full: np.ndarray, boundary_dofs: np.ndarray) -> np.ndarray:
    """全 DOF ベクトルから拘束 DOF を取り除く.

    Args:
        full: (full_size,) 全 DOF ベクトル
        boundary_dofs: 拘束 DOF（昇順）

    Returns:
        reduced: (full_size - n_fixed,)
    """
    full = np.asarray(full, dtype=float).ravel()
    return full[free_dofs(full.size, boundary_dofs)]


def reduced_to_full(
    reduced: np.ndarray,
    boundary_dofs: np.ndarray,
    rhs: np.ndarray,
) -> np.ndarray:
    """縮約ベクトルを全 DOF に戻し、拘束 DOF に rhs の値を入れる.

    Args:
        reduced: (reduced_size,) 縮約ベクトル
        boundary_dofs: 拘束 DOF（昇順）
        rhs: (full_size,) 境界条件適用済みの右辺。rhs[boundary_dofs] を使う

    Returns:
        full: (full_size,)
    """
    reduced = np.asarray(reduced, dtype=float).ravel()
    rhs = np.asarray(rhs, dtype=float).ravel()
    boundary_dofs = np.asarray(boundary_dofs, dtype=np.int64)
    full_size = rhs.size
    assert reduced.size + boundary_dofs.size == full_size

    full = np.empty(full_size, dtype=float)
    full[free_dofs(full_size, boundary_dofs)] = reduced
    full[boundary_dofs] = rhs[boundary_dofs]
    return full


def reduce_matrix(H: sp.spmatrix, index_table: np.ndarray, reduced_size: int) -> sp.csr_matrix:
    """自由 DOF の主小行列を取り出す（拘束行・列は削除）.

    Args:
        H: (full_size, full_size) 全 DOF 行列
        index_table: build_reduced_index_table の出力
        reduced_size: 自由 DOF 数

    Returns:
        H_ff: (reduced_size, reduced_size) CSR
    """
    coo = sp.coo_matrix(H)
    r = index_table[coo.row]
    c = index_table[coo.col]
    keep = (r >= 0) & (c >= 0)
    out = sp.csr_matrix(
        (coo.data[keep], (r[keep], c[keep])),
        shape=(reduced_size, reduced_size),
    )
    out.sum_duplicates()
    return out
