"""アセンブラ（外部協調オブジェクト）の抽象インタフェース定義.

Protocol 階層:
  ElementAssemblerProtocol: 弾性エネルギー・勾配・Hessian（全 DOF）
  RhsAssemblerProtocol    : 外力ベクトル・外力ポテンシャル・Dirichlet 値

NLProblem はこの 2 つの契約だけに依存する。要素・構成則の実装は
nlfem.assembly.ElasticityAssembler / nlfem.rhs.RhsAssembler が提供するが、
同じ契約を満たせば任意の実装に差し替えられる。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np
import scipy.sparse as sp

if TYPE_CHECKING:
    from nlfem.model import FEModel


@runtime_checkable
class ElementAssemblerProtocol(Protocol):
    """要素アセンブラの共通インタフェース.

    すべての量は拘束を含まない全 DOF（full）上で定義される。
    u は (ndof,) の節点変位（node-major: [u0x, u0y, u1x, u1y, ...]）。
    """

    def is_linear(self, formulation: str) -> bool:
        """定式化が線形（Hessian が u に依存しない）か."""
        ...

    def is_mixed(self, formulation: str) -> bool:
        """定式化が混合型（速度–圧力など）か."""
        ...

    def assemble_energy(self, formulation: str, model: FEModel, u: np.ndarray) -> float:
        """全体ひずみエネルギーを返す."""
        ...

    def assemble_energy_gradient(
        self, formulation: str, model: FEModel, u: np.ndarray
    ) -> np.ndarray:
        """エネルギー勾配（内力ベクトル）(ndof,) を返す."""
        ...

    def assemble_energy_hessian(
        self, formulation: str, model: FEModel, u: np.ndarray
    ) -> sp.csr_matrix:
        """エネルギー Hessian（接線剛性）(ndof, ndof) を返す."""
        ...

    def assemble_problem(self, formulation: str, model: FEModel) -> sp.csr_matrix:
        """線形定式化の剛性行列 (ndof, ndof) を返す."""
        ...


@runtime_checkable
class RhsAssemblerProtocol(Protocol):
    """右辺（外力・境界条件）アセンブラの共通インタフェース."""

    def compute_energy_grad(self, t: float) -> np.ndarray:
        """時刻 t の外力ベクトル (ndof,) を返す."""
        ...

    def compute_energy(self, u: np.ndarray, t: float) -> float:
        """時刻 t の外力ポテンシャル（-f·u）を返す."""
        ...

    def set_bc(self, vec: np.ndarray, t: float) -> None:
        """拘束 DOF の成分を時刻 t の規定値で上書きする（in place）."""
        ...
