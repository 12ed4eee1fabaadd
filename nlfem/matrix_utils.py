"""行列診断ユーティリティ.

小規模行列（要素剛性・縮約 Hessian のデバッグ等）の
行列式・最大/最小特異値・条件数・正則性を表示する。密行列に変換するため
大規模行列には使わないこと。
"""

from __future__ import annotations

import numpy as np
import scipy.linalg as la
import scipy.sparse as sp

from nlfem.core.results import MatrixStats


def show_matrix_stats(M: np.ndarray | sp.spmatrix, *, verbose: bool = True) -> MatrixStats:
    """行列の診断値を計算し、verbose なら表示する.

    正則性は数値ランク（特異値 > s_max · n · eps）で判定する。

    Args:
        M: (n, n) 正方行列（密 or 疎）
        verbose: 表示する

    Returns:
        MatrixStats
    """
    A = M.toarray() if sp.issparse(M) else np.asarray(M, dtype=float)
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise ValueError(f"正方行列が必要です: {A.shape}")

    n = A.shape[0]
    s = la.svdvals(A)
    s_max = float(s[0]) if n > 0 else 0.0
    s_min = float(s[-1]) if n > 0 else 0.0
    cond = s_max / s_min if s_min > 0.0 else float("inf")
    determinant = float(la.det(A)) if n > 0 else 1.0
    tol = s_max * n * np.finfo(float).eps
    invertible = n > 0 and bool(np.all(s > tol))

    if verbose:
        print("----------------------------------------")
        print(f"-- Determinant: {determinant}")
        print(f"-- Singular values: {s_max} {s_min}")
        print(f"-- Cond: {cond}")
        print(f"-- Invertible: {invertible}")
        print("----------------------------------------")

    return MatrixStats(
        determinant=determinant,
        s_max=s_max,
        s_min=s_min,
        cond=cond,
        invertible=invertible,
    )
