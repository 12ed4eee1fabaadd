"""離散化状態（メッシュ・境界・質量行列）.

NLProblem はこの FEModel を読み取り専用で参照する。
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp


@dataclass
class FEModel:
    """有限要素離散化の状態.

    Attributes:
        nodes: (n_nodes, dim) 参照配置の節点座標
        elements: (ne, dim+1) 一次単体の接続配列
        boundary_dofs: 拘束 DOF インデックス（昇順・重複なし）
        formulation: 定式化名（"LinearElasticity" | "SaintVenant" | "NeoHookean"）
        density: 密度（質量行列用）
        thickness: 厚み（2D 平面ひずみ用。3D では無視）
        collision_edges: (k, 2) 接触判定に使う境界辺
        collision_faces: (k, 3) 接触判定に使う境界三角形（3D）
        mass: (ndof, ndof) 質量行列。None なら整合質量を自動計算
    """

    nodes: np.ndarray
    elements: np.ndarray
    boundary_dofs: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    formulation: str = "LinearElasticity"
    density: float = 1.0
    thickness: float = 1.0
    collision_edges: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), dtype=np.int64))
    collision_faces: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.int64))
    mass: sp.csr_matrix | None = None

    def __post_init__(self) -> None:
        self.nodes = np.asarray(self.nodes, dtype=float)
        self.elements = np.asarray(self.elements, dtype=np.int64)
        self.boundary_dofs = np.asarray(self.boundary_dofs, dtype=np.int64).ravel()
        self.collision_edges = np.asarray(self.collision_edges, dtype=np.int64).reshape(-1, 2)
        self.collision_faces = np.asarray(self.collision_faces, dtype=np.int64).reshape(-1, 3)

        if self.nodes.ndim != 2 or self.dim not in (2, 3):
            raise ValueError(f"nodes は (n, 2) または (n, 3): {self.nodes.shape}")
        if self.density <= 0.0:
            raise ValueError(f"density は正値: {self.density}")
        if self.thickness <= 0.0:
            raise ValueError(f"thickness は正値: {self.thickness}")

        b = self.boundary_dofs
        if b.size > 0:
            if np.any(np.diff(b) <= 0):
                raise ValueError("boundary_dofs は昇順かつ重複なしである必要があります。")
            if b[0] < 0 or b[-1] >= self.ndof:
                raise ValueError(f"boundary_dofs が範囲外です: [{b[0]}, {b[-1]}], ndof={self.ndof}")

        if self.mass is None:
            from nlfem.assembly import assemble_mass_matrix

            self.mass = assemble_mass_matrix(self)
        else:
            self.mass = sp.csr_matrix(self.mass)
            if self.mass.shape != (self.ndof, self.ndof):
                raise ValueError(f"mass の形状が不正: {self.mass.shape}, ndof={self.ndof}")

    @property
    def dim(self) -> int:
        return int(self.nodes.shape[1])

    @property
    def n_nodes(self) -> int:
        return int(self.nodes.shape[0])

    @property
    def ndof(self) -> int:
        return self.n_nodes * self.dim

    @property
    def is_volume(self) -> bool:
        return self.dim == 3

    @property
    def n_pressure_bases(self) -> int:
        """混合定式化の圧力基底数（本実装では常に 0）."""
        return 0

    @property
    def volume_scale(self) -> float:
        """要素体積に掛ける係数（2D は厚み）."""
        return 1.0 if self.is_volume else self.thickness
