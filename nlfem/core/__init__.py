"""nlfem.core - 協調オブジェクト・構成則の抽象インタフェース定義・戻り値型.

Protocol 階層:
  ElementAssemblerProtocol  : 弾性エネルギー・勾配・Hessian（全 DOF）
  RhsAssemblerProtocol      : 外力・Dirichlet 値
  ContactEvaluatorProtocol  : CCD・バリアポテンシャル
  HyperelasticProtocol      : 構成則（W, P, A）
"""

from nlfem.core.assembler import ElementAssemblerProtocol, RhsAssemblerProtocol
from nlfem.core.constitutive import HyperelasticProtocol
from nlfem.core.contact import ContactEvaluatorProtocol
from nlfem.core.results import ConstraintSet, LinearSolveResult, MatrixStats, NewtonResult

__all__ = [
    "ElementAssemblerProtocol",
    "RhsAssemblerProtocol",
    "ContactEvaluatorProtocol",
    "HyperelasticProtocol",
    "ConstraintSet",
    "LinearSolveResult",
    "MatrixStats",
    "NewtonResult",
]
