"""IPC Toolkit（ipctk）による 3D 接触評価器.

点–三角形・辺–辺の距離、バリアポテンシャル、線形軌道 CCD を ipctk に委ねる。
ipctk は dhat を距離で受け取るため、dhat_squared の平方根を渡す。

座標は全節点 (n_nodes, 3) で受け取り、CollisionMesh で表面頂点へ写像して評価し、
勾配・Hessian は to_full_dof で全 DOF（node-major）へ戻す。
"""

from __future__ import annotations

import math

import numpy as np
import scipy.sparse as sp


def _import_ipctk():
    try:
        import ipctk  # type: ignore
    except ImportError as exc:
        raise ImportError(
            "3D 接触には ipctk が必要です（pip install 'nlfem[ipc]'）。"
        ) from exc
    return ipctk


def _mesh_edges(ipctk, edges: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """指定辺と三角形の辺の和集合（各行 昇順・重複なし）."""
    edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
    faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    if faces.size > 0:
        face_edges = np.asarray(ipctk.edges(faces.astype(np.int32)), dtype=np.int64)
        edges = np.vstack([edges, face_edges.reshape(-1, 2)])
    if edges.size == 0:
        return np.zeros((0, 2), dtype=np.int32)
    edges = np.unique(np.sort(edges, axis=1), axis=0)
    return edges.astype(np.int32)


class IPCToolkitContact:
    """ipctk による接触評価器（ContactEvaluatorProtocol 適合）.

    CollisionMesh は参照配置から 1 度だけ構築する。
    construct_constraint_set は ipctk.NormalCollisions を返す。

    Args:
        rest_positions: (n_nodes, dim) 参照配置の節点座標
        edges: (k, 2) 接触判定に使う境界辺
        faces: (k, 3) 接触判定に使う境界三角形
        project_hessian_to_psd: バリア Hessian を半正定値化する（PSDProjectionMethod.CLAMP）
    """

    def __init__(
        self,
        rest_positions: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        *,
        project_hessian_to_psd: bool = False,
    ) -> None:
        self._ipctk = _import_ipctk()
        self.project_hessian_to_psd = project_hessian_to_psd

        rest = np.asarray(rest_positions, dtype=float)
        faces = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        self.mesh = self._ipctk.CollisionMesh.build_from_full_mesh(
            rest, _mesh_edges(self._ipctk, edges, faces), faces.astype(np.int32)
        )

    def _vertices(self, V: np.ndarray) -> np.ndarray:
        return self.mesh.vertices(np.asarray(V, dtype=float))

    # ------------------------------------------------------------------
    # CCD
    # ------------------------------------------------------------------

    def is_step_collision_free(
        self, V0: np.ndarray, V1: np.ndarray, edges: np.ndarray, faces: np.ndarray
    ) -> bool:
        return bool(
            self._ipctk.is_step_collision_free(self.mesh, self._vertices(V0), self._vertices(V1))
        )

    # ------------------------------------------------------------------
    # バリア
    # ------------------------------------------------------------------

    def construct_constraint_set(
        self, V: np.ndarray, edges: np.ndarray, faces: np.ndarray, dhat_squared: float
    ):
        collisions = self._ipctk.NormalCollisions()
        collisions.build(self.mesh, self._vertices(V), math.sqrt(dhat_squared))
        return collisions

    def compute_barrier_potential(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set,
        dhat_squared: float,
    ) -> float:
        B = self._ipctk.BarrierPotential(math.sqrt(dhat_squared))
        return float(B(constraint_set, self.mesh, self._vertices(V)))

    def compute_barrier_potential_gradient(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set,
        dhat_squared: float,
    ) -> np.ndarray:
        B = self._ipctk.BarrierPotential(math.sqrt(dhat_squared))
        grad = B.gradient(constraint_set, self.mesh, self._vertices(V))
        return np.asarray(self.mesh.to_full_dof(grad), dtype=float).ravel()

    def compute_barrier_potential_hessian(
        self,
        V_rest: np.ndarray,
        V: np.ndarray,
        edges: np.ndarray,
        faces: np.ndarray,
        constraint_set,
        dhat_squared: float,
    ) -> sp.csr_matrix:
        ipctk = self._ipctk
        B = ipctk.BarrierPotential(math.sqrt(dhat_squared))
        method = (
            ipctk.PSDProjectionMethod.CLAMP
            if self.project_hessian_to_psd
            else ipctk.PSDProjectionMethod.NONE
        )
        H = B.hessian(
            constraint_set, self.mesh, self._vertices(V), project_hessian_to_psd=method
        )
        return sp.csr_matrix(self.mesh.to_full_dof(H))
