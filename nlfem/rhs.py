"""右辺（外力・Dirichlet 境界条件）アセンブラ.

外力ベクトル:
    f(t) = f_body(t) + f_nodal(t)
    f_body: 体積力 b(X, t) を集中化（各節点に V_e / (d+1) ずつ）
    f_nodal: 節点荷重（定数ベクトル or 時刻関数）

外力ポテンシャル:
    Π_ext(u, t) = -f(t) · u

Dirichlet 値:
    set_bc(vec, t) で vec[boundary_dofs] を規定変位で上書きする。
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import numpy as np

from nlfem.elements.simplex import shape_gradients

if TYPE_CHECKING:
    from nlfem.model import FEModel

BodyForce = Callable[[np.ndarray, float], np.ndarray]
TimeVector = Callable[[float], np.ndarray]


class RhsAssembler:
    """外力・Dirichlet 値のアセンブラ（RhsAssemblerProtocol 適合）.

    Args:
        model: 離散化状態
        body_force: b(X, t) → (n_nodes, dim)。単位体積あたりの体積力。None = なし
        nodal_loads: (ndof,) 定数節点荷重、または t → (ndof,) の関数。None = なし
        dirichlet_values: 拘束 DOF の規定変位。スカラー / (n_fixed,) 配列 /
            t → (n_fixed,) の関数
    """

    def __init__(
        self,
        model: FEModel,
        *,
        body_force: BodyForce | None = None,
        nodal_loads: TimeVector | np.ndarray | None = None,
        dirichlet_values: TimeVector | np.ndarray | float = 0.0,
    ) -> None:
        self.model = model
        self.body_force = body_force
        self.nodal_loads = nodal_loads
        self._dirichlet = dirichlet_values

        _, vol = shape_gradients(model.nodes, model.elements)
        vol = vol * model.volume_scale
        nv = model.elements.shape[1]
        # 集中化した節点体積
        self._nodal_volume = np.bincount(
            model.elements.ravel(),
            weights=np.repeat(vol / nv, nv),
            minlength=model.n_nodes,
        )

        if not callable(nodal_loads) and nodal_loads is not None:
            loads = np.asarray(nodal_loads, dtype=float).ravel()
            if loads.size != model.ndof:
                raise ValueError(f"nodal_loads の長さが ndof と一致しません: {loads.size} != {model.ndof}")
            self.nodal_loads = loads

    @property
    def formulation(self) -> str:
        return self.model.formulation

    def compute_energy_grad(self, t: float) -> np.ndarray:
        """時刻 t の外力ベクトル f(t) (ndof,) を返す."""
        model = self.model
        f = np.zeros(model.ndof, dtype=float)

        if self.body_force is not None:
            b = np.asarray(self.body_force(model.nodes, t), dtype=float)
            b = b.reshape(model.n_nodes, model.dim)
            f += (b * self._nodal_volume[:, None]).ravel()

        if self.nodal_loads is not None:
            loads = self.nodal_loads(t) if callable(self.nodal_loads) else self.nodal_loads
            f += np.asarray(loads, dtype=float).ravel()

        return f

    def compute_energy(self, u: np.ndarray, t: float) -> float:
        """外力ポテンシャル -f(t)·u."""
        return -float(np.dot(self.compute_energy_grad(t), np.asarray(u, dtype=float).ravel()))

    def dirichlet_values(self, t: float) -> np.ndarray:
        """時刻 t の規定変位 (n_fixed,) を返す."""
        n_fixed = self.model.boundary_dofs.size
        vals = self._dirichlet(t) if callable(self._dirichlet) else self._dirichlet
        if np.isscalar(vals):
            return np.full(n_fixed, float(vals))  # type: ignore[arg-type]
        vals = np.asarray(vals, dtype=float).ravel()
        if vals.size != n_fixed:
            raise ValueError(
                f"dirichlet_values の長さと boundary_dofs の長さが一致していません: "
                f"{vals.size} != {n_fixed}"
            )
        return vals

    def set_bc(self, vec: np.ndarray, t: float) -> None:
        """vec の拘束 DOF 成分を規定変位で上書きする（in place）."""
        vec[self.model.boundary_dofs] = self.dirichlet_values(t)
