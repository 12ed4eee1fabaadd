"""超弾性エネルギーの全体アセンブリ.

一次単体要素（TRI3 / TET4）について、全 DOF 上の
  - ひずみエネルギー
  - エネルギー勾配（内力ベクトル）
  - エネルギー Hessian（接線剛性）
  - 線形剛性行列（Bᵀ D B）
  - 整合質量行列
を計算する（ElementAssemblerProtocol 適合）。

要素量は numpy.einsum で全要素一括計算し、Hessian は SparseMatrixCache に
COO で scatter する。初回にパターンを捕捉し、2 回目以降の Newton 反復では
値配列への加算だけで CSR を再構成する。

並列化:
  n_jobs >= 2 かつ要素数が閾値以上のとき、要素をチャンクに分割して
  ThreadPoolExecutor で scatter する。各ワーカーは SparseMatrixCache.like() で
  作った専用キャッシュに書き込み、最後に += で合算する（ロック不要）。
"""

from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

import numpy as np
import scipy.sparse as sp

from nlfem.elements.simplex import (
    consistent_mass,
    deformation_gradient,
    element_dofs,
    linear_stiffness,
    shape_gradients,
)
from nlfem.materials.elastic import constitutive_matrix
from nlfem.materials.hyperelastic import MIXED_FORMULATIONS, is_known_formulation, make_material
from nlfem.sparse_cache import SparseMatrixCache

if TYPE_CHECKING:
    from nlfem.model import FEModel

# 並列化の最小要素数閾値（これ未満は逐次実行）
_PARALLEL_MIN_ELEMENTS = 4096

_LINEAR_FORMULATIONS = frozenset({"LinearElasticity", "Stokes", "IncompressibleLinearElasticity"})


# ========== COO ベクトル化ヘルパー ==========


def _vectorized_coo_indices(edofs: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """要素 DOF 配列から COO row/col インデックスを一括計算する.

    Args:
        edofs: (n_elem, m) 要素 DOF インデックス

    Returns:
        (rows, cols): それぞれ (n_elem, m * m) の int64 配列
    """
    n_elem, m = edofs.shape
    rows = np.repeat(edofs, m, axis=1)
    cols = np.tile(edofs, (1, m))
    return rows.reshape(n_elem, m * m), cols.reshape(n_elem, m * m)


def assemble_mass_matrix(model: FEModel) -> sp.csr_matrix:
    """整合質量行列を組み立てる.

    Args:
        model: 離散化状態

    Returns:
        M: (ndof, ndof) CSR 質量行列
    """
    _, vol = shape_gradients(model.nodes, model.elements)
    Me = consistent_mass(vol * model.volume_scale, model.dim, model.density)
    edofs = element_dofs(model.elements, model.dim)
    rows, cols = _vectorized_coo_indices(edofs)
    M = sp.csr_matrix(
        (Me.ravel(), (rows.ravel(), cols.ravel())),
        shape=(model.ndof, model.ndof),
    )
    M.sum_duplicates()
    return M


class ElasticityAssembler:
    """一次単体要素の超弾性アセンブラ.

    1 つのアセンブラは 1 つのメッシュに対して使う（Hessian のスパースパターンを
    定式化ごとにキャッシュするため）。

    Args:
        E: ヤング率
        nu: ポアソン比
        n_jobs: scatter の並列ワーカー数。1=逐次、-1=全CPUコア使用
        parallel_min_elements: 並列化する最小要素数
        show_progress: アセンブリ時間を表示
        verbose_cache: SparseMatrixCache のキャッシュ計算/再利用を表示
    """

    def __init__(
        self,
        E: float,
        nu: float,
        *,
        n_jobs: int = 1,
        parallel_min_elements: int = _PARALLEL_MIN_ELEMENTS,
        show_progress: bool = False,
        verbose_cache: bool = False,
    ) -> None:
        self.E = E
        self.nu = nu
        if n_jobs == -1:
            n_jobs = os.cpu_count() or 1
        self.n_jobs = max(1, n_jobs)
        self.parallel_min_elements = parallel_min_elements
        self.show_progress = show_progress
        self.verbose_cache = verbose_cache
        self._materials: dict[str, object] = {}
        self._caches: dict[str, SparseMatrixCache] = {}

    # ------------------------------------------------------------------
    # 定式化
    # ------------------------------------------------------------------

    def _check(self, formulation: str) -> None:
        if not is_known_formulation(formulation):
            raise ValueError(f"未対応の定式化: '{formulation}'")

    def is_linear(self, formulation: str) -> bool:
        self._check(formulation)
        return formulation in _LINEAR_FORMULATIONS

    def is_mixed(self, formulation: str) -> bool:
        self._check(formulation)
        return formulation in MIXED_FORMULATIONS

    def material(self, formulation: str):
        """定式化に対応する構成則オブジェクト（生成済みなら再利用）."""
        if formulation not in self._materials:
            self._materials[formulation] = make_material(formulation, self.E, self.nu)
        return self._materials[formulation]

    # ------------------------------------------------------------------
    # 要素量
    # ------------------------------------------------------------------

    def _element_state(
        self, model: FEModel, u: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        u = np.asarray(u, dtype=float).ravel()
        assert u.size == model.ndof
        G, vol = shape_gradients(model.nodes, model.elements)
        vol = vol * model.volume_scale
        edofs = element_dofs(model.elements, model.dim)
        u_elem = u[edofs].reshape(G.shape)
        F = deformation_gradient(G, u_elem)
        return G, vol, edofs, F

    def assemble_energy(self, formulation: str, model: FEModel, u: np.ndarray) -> float:
        """全体ひずみエネルギー Σ_e W(F_e) V_e."""
        G, vol, _, F = self._element_state(model, u)
        W = self.material(formulation).energy_density(F)
        return float(np.dot(W, vol))

    def assemble_energy_gradient(
        self, formulation: str, model: FEModel, u: np.ndarray
    ) -> np.ndarray:
        """内力ベクトル f_a = V P ∇N_a を全体に足し込む."""
        G, vol, edofs, F = self._element_state(model, u)
        P = self.material(formulation).first_piola(F)
        fe = np.einsum("eij,eaj->eai", P, G) * vol[:, None, None]
        return np.bincount(edofs.ravel(), weights=fe.ravel(), minlength=model.ndof)

    def assemble_energy_hessian(
        self, formulation: str, model: FEModel, u: np.ndarray
    ) -> sp.csr_matrix:
        """接線剛性 K_(ai)(bk) = V Σ ∇N_a,j A_ijkl ∇N_b,l を組み立てる."""
        t0 = time.time()
        G, vol, edofs, F = self._element_state(model, u)
        A = self.material(formulation).tangent(F)
        ne, nv, d = G.shape
        Ke = np.einsum("eaj,eijkl,ebl->eaibk", G, A, G) * vol[:, None, None, None, None]
        K = self._scatter(f"hessian:{formulation}", model.ndof, edofs, Ke.reshape(ne, nv * d, -1))
        if self.show_progress:
            print(
                f"[assemble_hessian] {formulation}: ne={ne}, nnz={K.nnz}, "
                f"elapsed={time.time() - t0:.3f} s"
            )
        return K

    def assemble_problem(self, formulation: str, model: FEModel) -> sp.csr_matrix:
        """線形定式化の剛性行列 K = Σ Bᵀ D B V を組み立てる."""
        assert self.is_linear(formulation) and not self.is_mixed(formulation)
        G, vol = shape_gradients(model.nodes, model.elements)
        vol = vol * model.volume_scale
        D = constitutive_matrix(self.E, self.nu, model.dim)
        Ke = linear_stiffness(G, vol, D)
        edofs = element_dofs(model.elements, model.dim)
        return self._scatter(f"problem:{formulation}", model.ndof, edofs, Ke)

    # ------------------------------------------------------------------
    # scatter
    # ------------------------------------------------------------------

    def _cache(self, key: str, ndof: int) -> SparseMatrixCache:
        cache = self._caches.get(key)
        if cache is None:
            cache = SparseMatrixCache(ndof, verbose=self.verbose_cache)
            self._caches[key] = cache
        else:
            cache.init(ndof)
        return cache

    def _scatter(
        self, key: str, ndof: int, edofs: np.ndarray, Ke: np.ndarray
    ) -> sp.csr_matrix:
        """要素行列 (ne, m, m) を全体行列へ scatter する."""
        cache = self._cache(key, ndof)
        rows, cols = _vectorized_coo_indices(edofs)
        n_elem = edofs.shape[0]
        data = Ke.reshape(n_elem, -1)

        if self.n_jobs >= 2 and n_elem >= self.parallel_min_elements:
            chunks = np.array_split(np.arange(n_elem), self.n_jobs)
            partials = [SparseMatrixCache.like(cache) for _ in chunks]

            def work(partial: SparseMatrixCache, idx: np.ndarray) -> None:
                partial.add_values(rows[idx], cols[idx], data[idx])

            with ThreadPoolExecutor(self.n_jobs) as pool:
                list(pool.map(work, partials, chunks))
            for partial in partials:
                cache += partial
        else:
            cache.add_values(rows, cols, data)

        return cache.get_matrix(compute_mapping=True)
