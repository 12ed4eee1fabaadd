"""メソッド戻り値の型定義.

各モジュールの公開メソッドが返すデータ構造を NamedTuple で統一的に定義する。
NamedTuple を採用する理由:
  - 名前付きフィールドアクセス（result.u, result.info 等）
  - タプルアンパッキングとの後方互換性（u, info = solve_linear_system(...)）
  - 不変（immutable）で安全
"""

from __future__ import annotations

from typing import Any, NamedTuple

import numpy as np


class LinearSolveResult(NamedTuple):
    """線形ソルバーの結果.

    Attributes:
        u: (ndof,) 解ベクトル
        info: ソルバー情報辞書 (method, nit, success, residual_norm, setup_time, solve_time 等)
    """

    u: np.ndarray
    info: dict[str, Any]


class MatrixStats(NamedTuple):
    """行列診断値.

    Attributes:
        determinant: 行列式
        s_max: 最大特異値
        s_min: 最小特異値
        cond: 条件数 s_max / s_min
        invertible: 数値的に正則か
    """

    determinant: float
    s_max: float
    s_min: float
    cond: float
    invertible: bool


class ConstraintSet(NamedTuple):
    """接触バリアの活性拘束集合（2D 点–辺）.

    Attributes:
        edge_vertex: (k, 2) [辺インデックス, 頂点インデックス] の組
    """

    edge_vertex: np.ndarray

    def __len__(self) -> int:  # type: ignore[override]
        return int(self.edge_vertex.shape[0])


class NewtonResult(NamedTuple):
    """Newton 法（エネルギー最小化）の結果.

    Attributes:
        x: (reduced_size,) 最終縮約 DOF ベクトル
        converged: 収束したかどうか
        n_iterations: 反復回数
        grad_norm: 最終勾配ノルム
        energy: 最終エネルギー
        grad_norm_history: 各反復の勾配ノルム
    """

    x: np.ndarray
    converged: bool
    n_iterations: int
    grad_norm: float
    energy: float
    grad_norm_history: list[float]
