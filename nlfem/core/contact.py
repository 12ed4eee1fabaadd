"""接触評価器（外部協調オブジェクト）の抽象インタフェース定義.

座標はすべて (n_nodes, dim) の節点位置配列で受け渡す。
勾配・Hessian は node-major の DOF 順（n_nodes * dim）で返す。
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import numpy as np
import scipy.sparse as sp


@runtime_checkable
class ContactEvaluatorProtocol(Protocol):
    """接触・衝突評価の共通インタフェース.

    適合クラス例:
      - BarrierContact（2D 点–辺 IPC バリア + 線形軌道 CCD）
      - IPCToolkitContact（ipctk による 3D 点–三角形・辺–辺バリア + CCD）

    拘束集合の型は評価器ごとに異なる（ConstraintSet, ipctk.NormalCollisions）。
    NLProblem は construct_constraint_set の戻り値をそのまま他のメソッドへ渡す。
    """

    def is_step_collision_free(
        self,
        V0: np.ndarray,
        V1: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
    ) -> bool:
        """V0 → V1 の線形軌道上で交差が起きないか."""
        ...

    def construct_constraint_set(
        self,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        dhat_squared: float,
    ) -> Any:
        """距離² が dhat_squared 未満の拘束候補を集める."""
        ...

    def compute_barrier_potential(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set: Any,
        dhat_squared: float,
    ) -> float:
        """バリアポテンシャルの総和."""
        ...

    def compute_barrier_potential_gradient(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set: Any,
        dhat_squared: float,
    ) -> np.ndarray:
        """バリアポテンシャルの勾配 (n_nodes * dim,)."""
        ...

    def compute_barrier_potential_hessian(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set: Any,
        dhat_squared: float,
    ) -> sp.csr_matrix:
        """バリアポテンシャルの Hessian (n_nodes * dim, n_nodes * dim)."""
        ...
