"""構成則（超弾性材料）の抽象インタフェース定義.

非線形問題ではエネルギー最小化の形で平衡を解くため、構成則は
ひずみエネルギー密度 W(F) とその 1 階・2 階微分を返す。

  energy_density(F)  → W        (ne,)
  first_piola(F)     → P = ∂W/∂F           (ne, d, d)
  tangent(F)         → A = ∂²W/∂F∂F        (ne, d, d, d, d)

F は要素ごとの変形勾配を並べた (ne, d, d) 配列。
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class HyperelasticProtocol(Protocol):
    """超弾性構成則の共通インタフェース.

    Attributes:
        is_linear: エネルギーが変位の 2 次形式か（接線が F に依存しない）

    適合クラス例:
      - LinearElastic          (微小ひずみ)
      - SaintVenantKirchhoff   (TL, Green-Lagrange ひずみ)
      - NeoHookean             (圧縮性 Neo-Hooke)
    """

    is_linear: bool

    def energy_density(self, F: np.ndarray) -> np.ndarray:
        """ひずみエネルギー密度 W(F) を返す."""
        ...

    def first_piola(self, F: np.ndarray) -> np.ndarray:
        """第一 Piola-Kirchhoff 応力 P = ∂W/∂F を返す."""
        ...

    def tangent(self, F: np.ndarray) -> np.ndarray:
        """4 階接線テンソル A_ijkl = ∂P_ij/∂F_kl を返す."""
        ...
