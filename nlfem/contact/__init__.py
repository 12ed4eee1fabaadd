"""接触（衝突）モジュール.

モジュール構成:
- geometry: 2D 点–辺の二乗距離と勾配・Hessian
- broadphase: AABB格子による候補ペア探索
- barrier: IPC 型対数バリア・拘束集合・ポテンシャル/勾配/Hessian
- ccd: 線形軌道の連続衝突判定
- ipc: ipctk による 3D 接触評価器（IPCToolkitContact）

BarrierContact は上記 2D 実装を ContactEvaluatorProtocol の形にまとめた評価器。
"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sp

from nlfem.contact import barrier as _barrier
from nlfem.contact import ccd as _ccd
from nlfem.contact.barrier import (
    barrier,
    barrier_gradient,
    barrier_hessian,
    compute_barrier_potential,
    compute_barrier_potential_gradient,
    compute_barrier_potential_hessian,
    construct_constraint_set,
)
from nlfem.contact.broadphase import broadphase_aabb, compute_point_aabb, compute_segment_aabb
from nlfem.contact.ccd import is_step_collision_free, point_edge_ccd
from nlfem.contact.ipc import IPCToolkitContact
from nlfem.core.results import ConstraintSet


class BarrierContact:
    """2D 点–辺バリア + CCD の接触評価器（ContactEvaluatorProtocol 適合）.

    Args:
        project_hessian_to_psd: バリア Hessian の局所ブロックを半正定値化する
    """

    def __init__(self, *, project_hessian_to_psd: bool = False) -> None:
        self.project_hessian_to_psd = project_hessian_to_psd

    def is_step_collision_free(
        self, V0: np.ndarray, V1: np.ndarray, edges: np.ndarray, faces: np.ndarray
    ) -> bool:
        return _ccd.is_step_collision_free(V0, V1, edges, faces)

    def construct_constraint_set(
        self, V: np.ndarray, edges: np.ndarray, faces: np.ndarray, dhat_squared: float
    ) -> ConstraintSet:
        return _barrier.construct_constraint_set(V, edges, faces, dhat_squared)

    def compute_barrier_potential(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set: ConstraintSet,
        dhat_squared: float,
    ) -> float:
        return _barrier.compute_barrier_potential(
            V_rest, V, edges, faces, constraint_set, dhat_squared
        )

    def compute_barrier_potential_gradient(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set: ConstraintSet,
        dhat_squared: float,
    ) -> np.ndarray:
        return _barrier.compute_barrier_potential_gradient(
            V_rest, V, edges, faces, constraint_set, dhat_squared
        )

    def compute_barrier_potential_hessian(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set: ConstraintSet,
        dhat_squared: float,
    ) -> sp.csr_matrix:
        return _barrier.compute_barrier_potential_hessian(
            V_rest,
            V,
            edges,
            faces,
            constraint_set,
            dhat_squared,
            project_to_psd=self.project_hessian_to_psd,
        )


__all__ = [
    "BarrierContact",
    "IPCToolkitContact",
    "barrier",
    "barrier_gradient",
    "barrier_hessian",
    "broadphase_aabb",
    "compute_barrier_potential",
    "compute_barrier_potential_gradient",
    "compute_barrier_potential_hessian",
    "compute_point_aabb",
    "compute_segment_aabb",
    "construct_constraint_set",
    "is_step_collision_free",
    "point_edge_ccd",
]
