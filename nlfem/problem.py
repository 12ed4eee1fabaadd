"""非線形 FEM 問題（エネルギー最小化の目的関数）.

最適化器（Newton 法など）に対して、縮約 DOF 上の
  - 目的関数値 value(x)
  - 勾配 gradient(x)
  - Hessian hessian(x)
  - ステップ可否判定 is_step_valid(x0, x1)
を提供する。x は縮約 DOF ベクトル・全 DOF ベクトルのどちらでもよい（長さで判定）。

エネルギー:
    Π(u) = s · (W_el(u) + Π_ext(u, t) + κ · B(u)) + I(u)

    s     = Δt² / 2（過渡問題）, 1（静的問題）
    W_el  = ひずみエネルギー（要素アセンブラ）
    Π_ext = 外力ポテンシャル -f(t)·u（右辺アセンブラ）
    B     = 接触バリアポテンシャル（ContactConfig.has_collision 時のみ）
    κ     = ContactConfig.barrier_stiffness
    I     = ½ (u - ũ)ᵀ M (u - ũ),  ũ = x_prev + Δt v_prev（過渡問題のみ）

勾配（全 DOF）:
    ∇Π = s (∇W_el + κ ∇B) + M u - r,   r = s f(t) + M ũ

    r は current_rhs() で時刻ごとに 1 回だけ計算しキャッシュする。
    拘束 DOF の行は縮約時に落とす。

Hessian（全 DOF）:
    ∇²Π = s (K + κ ∇²B) + M

    線形定式化では K は状態に依存しないため、初回に組み立てた剛性行列を
    以後すべての反復で再利用する（compute_cached_stiffness）。
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp

from nlfem.bc import build_reduced_index_table, reduce_matrix
from nlfem.bc import full_to_reduced as _full_to_reduced
from nlfem.bc import reduced_to_full as _reduced_to_full
from nlfem.contact import BarrierContact, IPCToolkitContact
from nlfem.core.assembler import ElementAssemblerProtocol, RhsAssemblerProtocol
from nlfem.core.contact import ContactEvaluatorProtocol
from nlfem.model import FEModel

# ====================================================================
# コンフィグ
# ====================================================================


@dataclass
class ContactConfig:
    """接触バリアの設定.

    Attributes:
        has_collision: 接触（バリア + CCD）を有効にする
        barrier_stiffness: バリアポテンシャルの重み κ
        dhat_squared: バリアの活性化距離の二乗 d̂²
        project_hessian_to_psd: バリア Hessian の局所ブロックを半正定値化する
    """

    has_collision: bool = False
    barrier_stiffness: float = 1e8
    dhat_squared: float = 1e-6
    project_hessian_to_psd: bool = False

    def __post_init__(self) -> None:
        if self.barrier_stiffness <= 0.0:
            raise ValueError(f"barrier_stiffness は正値: {self.barrier_stiffness}")
        if self.dhat_squared <= 0.0:
            raise ValueError(f"dhat_squared は正値: {self.dhat_squared}")


@dataclass
class ProblemConfig:
    """非線形問題の設定.

    Attributes:
        is_time_dependent: 過渡問題（慣性項・Δt²/2 スケーリングを含む）
        contact: 接触設定
    """

    is_time_dependent: bool = False
    contact: ContactConfig = field(default_factory=ContactConfig)


# ====================================================================
# 非線形問題
# ====================================================================


class NLProblem:
    """境界拘束・接触付き非線形弾性問題.

    Args:
        model: 離散化状態（読み取り専用で参照）
        assembler: 要素アセンブラ（ElementAssemblerProtocol）
        rhs_assembler: 右辺アセンブラ（RhsAssemblerProtocol）
        t: 初期時刻
        config: 問題設定。None なら静的・接触なし
        contact: 接触評価器（ContactEvaluatorProtocol）。None かつ接触有効なら
            2D は BarrierContact、3D は IPCToolkitContact を生成する
    """

    def __init__(
        self,
        model: FEModel,
        assembler: ElementAssemblerProtocol,
        rhs_assembler: RhsAssemblerProtocol,
        t: float = 0.0,
        *,
        config: ProblemConfig | None = None,
        contact: ContactEvaluatorProtocol | None = None,
    ) -> None:
        self.model = model
        self.assembler = assembler
        self.rhs_assembler = rhs_assembler
        self.config = config if config is not None else ProblemConfig()
        self.formulation = model.formulation

        assert not assembler.is_mixed(self.formulation), "混合定式化は未対応です。"

        self._full_size = model.ndof
        self._reduced_size = self._full_size - model.boundary_dofs.size
        self._index_table = build_reduced_index_table(self._full_size, model.boundary_dofs)

        self._t = float(t)
        self._dt = 1.0
        self._x_prev = np.zeros(self._full_size, dtype=float)
        self._v_prev = np.zeros(self._full_size, dtype=float)
        self._timestep_initialized = False

        self._rhs: np.ndarray | None = None
        self._cached_stiffness: sp.csr_matrix | None = None

        if contact is None and self.has_collision:
            psd = self.config.contact.project_hessian_to_psd
            if model.dim == 3:
                contact = IPCToolkitContact(
                    model.nodes,
                    model.collision_edges,
                    model.collision_faces,
                    project_hessian_to_psd=psd,
                )
            else:
                contact = BarrierContact(project_hessian_to_psd=psd)
        self.contact = contact

    # ------------------------------------------------------------------
    # 状態
    # ------------------------------------------------------------------

    @property
    def full_size(self) -> int:
        return self._full_size

    @property
    def reduced_size(self) -> int:
        return self._reduced_size

    @property
    def t(self) -> float:
        return self._t

    @property
    def dt(self) -> float:
        return self._dt

    @property
    def x_prev(self) -> np.ndarray:
        return self._x_prev

    @property
    def v_prev(self) -> np.ndarray:
        return self._v_prev

    @property
    def is_time_dependent(self) -> bool:
        return self.config.is_time_dependent

    @property
    def has_collision(self) -> bool:
        return self.config.contact.has_collision

    @property
    def scaling(self) -> float:
        """エネルギーのスケーリング s（過渡: Δt²/2, 静的: 1）."""
        if self.is_time_dependent:
            return self._dt * self._dt / 2.0
        return 1.0

    def init_timestep(self, x_prev: np.ndarray, v_prev: np.ndarray, dt: float) -> None:
        """時間ステップを初期化する（前ステップ変位・速度・時間刻み）."""
        x_prev = np.asarray(x_prev, dtype=float).ravel()
        v_prev = np.asarray(v_prev, dtype=float).ravel()
        assert x_prev.size == self._full_size and v_prev.size == self._full_size
        if dt <= 0.0:
            raise ValueError(f"dt は正値: {dt}")
        self._x_prev = x_prev.copy()
        self._v_prev = v_prev.copy()
        self._dt = float(dt)
        self._timestep_initialized = True
        self._rhs = None

    def _check_timestep(self) -> None:
        if self.is_time_dependent:
            assert self._timestep_initialized, "過渡問題では init_timestep を先に呼んでください。"

    def update_quantities(self, t: float, x: np.ndarray) -> None:
        """受理されたステップで時刻を進める.

        過渡問題では v_prev = (x - x_prev) / Δt, x_prev = x に更新する。
        いずれの場合もキャッシュ済みの右辺は破棄する。
        """
        self._check_timestep()
        if self.is_time_dependent:
            full = self._to_full(x)
            self._v_prev = (full - self._x_prev) / self._dt
            self._x_prev = full.copy()
        self._t = float(t)
        self._rhs = None

    def current_rhs(self) -> np.ndarray:
        """現時刻の右辺 r（全 DOF, 拘束 DOF は規定変位で上書き済み）."""
        self._check_timestep()
        if self._rhs is None:
            rhs = np.asarray(self.rhs_assembler.compute_energy_grad(self._t), dtype=float).ravel()
            assert rhs.size == self._full_size
            rhs = rhs.copy()
            if self.is_time_dependent:
                rhs *= self.scaling
                rhs += self.model.mass @ (self._x_prev + self._dt * self._v_prev)
            self.rhs_assembler.set_bc(rhs, self._t)
            self._rhs = rhs
        return self._rhs

    # ------------------------------------------------------------------
    # DOF 写像
    # ------------------------------------------------------------------

    def full_to_reduced(self, full: np.ndarray) -> np.ndarray:
        full = np.asarray(full, dtype=float).ravel()
        assert full.size == self._full_size
        return _full_to_reduced(full, self.model.boundary_dofs)

    def reduced_to_full(self, reduced: np.ndarray) -> np.ndarray:
        reduced = np.asarray(reduced, dtype=float).ravel()
        assert reduced.size == self._reduced_size
        return _reduced_to_full(reduced, self.model.boundary_dofs, self.current_rhs())

    def _to_full(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=float).ravel()
        if x.size == self._reduced_size:
            return self.reduced_to_full(x)
        assert x.size == self._full_size, (
            f"DOF ベクトル長が不正: {x.size} (reduced={self._reduced_size}, full={self._full_size})"
        )
        return x

    # ------------------------------------------------------------------
    # 接触
    # ------------------------------------------------------------------

    def _displaced(self, full: np.ndarray) -> np.ndarray:
        """変形後の節点座標 (n_nodes, dim)."""
        return self.model.nodes + full.reshape(-1, self.model.dim)

    def _constraint_set(self, V: np.ndarray):
        model = self.model
        return self.contact.construct_constraint_set(
            V, model.collision_edges, model.collision_faces, self.config.contact.dhat_squared
        )

    def _collision_energy(self, full: np.ndarray) -> float:
        model = self.model
        V = self._displaced(full)
        cs = self._constraint_set(V)
        return self.contact.compute_barrier_potential(
            model.nodes,
            V,
            model.collision_edges,
            model.collision_faces,
            cs,
            self.config.contact.dhat_squared,
        )

    def _collision_gradient(self, full: np.ndarray) -> np.ndarray:
        model = self.model
        V = self._displaced(full)
        cs = self._constraint_set(V)
        return self.contact.compute_barrier_potential_gradient(
            model.nodes,
            V,
            model.collision_edges,
            model.collision_faces,
            cs,
            self.config.contact.dhat_squared,
        )

    def _collision_hessian(self, full: np.ndarray) -> sp.csr_matrix:
        model = self.model
        V = self._displaced(full)
        cs = self._constraint_set(V)
        return self.contact.compute_barrier_potential_hessian(
            model.nodes,
            V,
            model.collision_edges,
            model.collision_faces,
            cs,
            self.config.contact.dhat_squared,
        )

    def is_step_valid(self, x0: np.ndarray, x1: np.ndarray) -> bool:
        """x0 → x1 の線形軌道で境界が交差しないか判定する.

        接触が無効なら常に True。
        """
        if not self.has_collision:
            return True
        full0 = self._to_full(x0)
        full1 = self._to_full(x1)
        model = self.model
        return bool(
            self.contact.is_step_collision_free(
                self._displaced(full0),
                self._displaced(full1),
                model.collision_edges,
                model.collision_faces,
            )
        )

    # ------------------------------------------------------------------
    # 目的関数
    # ------------------------------------------------------------------

    def value(self, x: np.ndarray) -> float:
        """全エネルギー Π(x)."""
        self._check_timestep()
        full = self._to_full(x)

        elastic_energy = self.assembler.assemble_energy(self.formulation, self.model, full)
        body_energy = self.rhs_assembler.compute_energy(full, self._t)

        collision_energy = 0.0
        if self.has_collision:
            collision_energy = self._collision_energy(full)

        inertia_energy = 0.0
        if self.is_time_dependent:
            tmp = full - (self._x_prev + self._dt * self._v_prev)
            inertia_energy = 0.5 * float(tmp @ (self.model.mass @ tmp))

        kappa = self.config.contact.barrier_stiffness
        return (
            self.scaling * (elastic_energy + body_energy + kappa * collision_energy)
            + inertia_energy
        )

    def gradient_no_rhs(self, x: np.ndarray) -> np.ndarray:
        """右辺・慣性を含まない勾配 ∇W_el + κ ∇B（全 DOF）."""
        full = self._to_full(x)
        grad = np.asarray(
            self.assembler.assemble_energy_gradient(self.formulation, self.model, full),
            dtype=float,
        ).ravel()
        if self.has_collision:
            grad = grad + self.config.contact.barrier_stiffness * self._collision_gradient(full)
        assert grad.size == self._full_size
        return grad

    def gradient(self, x: np.ndarray) -> np.ndarray:
        """縮約 DOF 上の勾配 ∇Π."""
        self._check_timestep()
        full = self._to_full(x)
        grad = self.gradient_no_rhs(full)
        if self.is_time_dependent:
            grad = grad * self.scaling + self.model.mass @ full
        grad = grad - self.current_rhs()
        return self.full_to_reduced(grad)

    def compute_cached_stiffness(self) -> None:
        """線形定式化の剛性行列を 1 度だけ組み立ててキャッシュする."""
        if self._cached_stiffness is None and self.assembler.is_linear(self.formulation):
            self._cached_stiffness = sp.csr_matrix(
                self.assembler.assemble_problem(self.formulation, self.model)
            )

    def hessian_full(self, x: np.ndarray) -> sp.csr_matrix:
        """全 DOF の Hessian ∇²Π."""
        self._check_timestep()
        full = self._to_full(x)

        if self.assembler.is_linear(self.formulation):
            self.compute_cached_stiffness()
            H = self._cached_stiffness.copy()
        else:
            H = sp.csr_matrix(
                self.assembler.assemble_energy_hessian(self.formulation, self.model, full)
            )

        if self.has_collision:
            H = H + self.config.contact.barrier_stiffness * self._collision_hessian(full)

        if self.is_time_dependent:
            H = self.scaling * H + self.model.mass

        H = sp.csr_matrix(H)
        assert H.shape == (self._full_size, self._full_size)
        return H

    def hessian(self, x: np.ndarray) -> sp.csr_matrix:
        """縮約 DOF 上の Hessian（拘束行・列は削除）."""
        return reduce_matrix(self.hessian_full(x), self._index_table, self._reduced_size)
