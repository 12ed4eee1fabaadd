"""超弾性構成則（HyperelasticProtocol 適合）.

すべての関数は要素ごとの変形勾配 F (ne, d, d) をまとめて処理する。

LinearElastic:
    ε = sym(F - I)
    W = μ ε:ε + λ/2 (tr ε)²
    P = 2μ ε + λ tr(ε) I
    A_ijkl = μ(δik δjl + δil δjk) + λ δij δkl

SaintVenantKirchhoff（TL, continuum_nl と同じ Green-Lagrange 定式化）:
    E = 0.5 (FᵀF - I),  S = λ tr(E) I + 2μ E,  P = F S
    W = λ/2 (tr E)² + μ E:E
    A_ijkl = δik S_lj + λ F_ij F_kl + μ F_il F_kj + μ (F Fᵀ)_ik δjl

NeoHookean（圧縮性）:
    W = μ/2 (tr(FᵀF) - d) - μ ln J + λ/2 (ln J)²
    P = μ (F - F⁻ᵀ) + λ ln J F⁻ᵀ
    A_ijkl = μ δik δjl + (μ - λ ln J) F⁻¹_jk F⁻¹_li + λ F⁻¹_lk F⁻¹_ji
"""

from __future__ import annotations

import numpy as np

from nlfem.materials.elastic import lame_parameters


def _identity_like(F: np.ndarray) -> np.ndarray:
    d = F.shape[-1]
    return np.broadcast_to(np.eye(d), F.shape)


class LinearElastic:
    """微小ひずみ線形弾性.

    Args:
        E: ヤング率
        nu: ポアソン比
    """

    is_linear = True

    def __init__(self, E: float, nu: float) -> None:
        self.E = E
        self.nu = nu
        self.lam, self.mu = lame_parameters(E, nu)

    def _strain(self, F: np.ndarray) -> np.ndarray:
        H = F - _identity_like(F)
        return 0.5 * (H + np.swapaxes(H, -1, -2))

    def energy_density(self, F: np.ndarray) -> np.ndarray:
        eps = self._strain(F)
        tr = np.trace(eps, axis1=-2, axis2=-1)
        return self.mu * np.einsum("eij,eij->e", eps, eps) + 0.5 * self.lam * tr**2

    def first_piola(self, F: np.ndarray) -> np.ndarray:
        eps = self._strain(F)
        tr = np.trace(eps, axis1=-2, axis2=-1)
        return 2.0 * self.mu * eps + self.lam * tr[:, None, None] * _identity_like(F)

    def tangent(self, F: np.ndarray) -> np.ndarray:
        d = F.shape[-1]
        I = np.eye(d)
        A = (
            self.mu * (np.einsum("ik,jl->ijkl", I, I) + np.einsum("il,jk->ijkl", I, I))
            + self.lam * np.einsum("ij,kl->ijkl", I, I)
        )
        return np.broadcast_to(A, (F.shape[0], d, d, d, d)).copy()


class SaintVenantKirchhoff:
    """Saint-Venant Kirchhoff 材料（幾何学的非線形・線形材料）.

    Args:
        E: ヤング率
        nu: ポアソン比
    """

    is_linear = False

    def __init__(self, E: float, nu: float) -> None:
        self.E = E
        self.nu = nu
        self.lam, self.mu = lame_parameters(E, nu)

    def _green_lagrange(self, F: np.ndarray) -> np.ndarray:
        C = np.einsum("eki,ekj->eij", F, F)
        return 0.5 * (C - _identity_like(F))

    def _second_piola(self, E_gl: np.ndarray) -> np.ndarray:
        tr = np.trace(E_gl, axis1=-2, axis2=-1)
        return self.lam * tr[:, None, None] * _identity_like(E_gl) + 2.0 * self.mu * E_gl

    def energy_density(self, F: np.ndarray) -> np.ndarray:
        E_gl = self._green_lagrange(F)
        tr = np.trace(E_gl, axis1=-2, axis2=-1)
        return 0.5 * self.lam * tr**2 + self.mu * np.einsum("eij,eij->e", E_gl, E_gl)

    def first_piola(self, F: np.ndarray) -> np.ndarray:
        S = self._second_piola(self._green_lagrange(F))
        return np.einsum("eik,ekj->eij", F, S)

    def tangent(self, F: np.ndarray) -> np.ndarray:
        d = F.shape[-1]
        I = np.eye(d)
        S = self._second_piola(self._green_lagrange(F))
        FFt = np.einsum("eik,ejk->eij", F, F)
        return (
            np.einsum("ik,elj->eijkl", I, S)
            + self.lam * np.einsum("eij,ekl->eijkl", F, F)
            + self.mu * np.einsum("eil,ekj->eijkl", F, F)
            + self.mu * np.einsum("eik,jl->eijkl", FFt, I)
        )


class NeoHookean:
    """圧縮性 Neo-Hooke 材料.

    J <= 0（反転要素）ではエネルギー密度を inf とする。

    Args:
        E: ヤング率
        nu: ポアソン比
    """

    is_linear = False

    def __init__(self, E: float, nu: float) -> None:
        self.E = E
        self.nu = nu
        self.lam, self.mu = lame_parameters(E, nu)

    def energy_density(self, F: np.ndarray) -> np.ndarray:
        d = F.shape[-1]
        J = np.linalg.det(F)
        W = np.full(F.shape[0], np.inf)
        ok = J > 0.0
        if np.any(ok):
            logJ = np.log(J[ok])
            I1 = np.einsum("eij,eij->e", F[ok], F[ok])
            W[ok] = 0.5 * self.mu * (I1 - d) - self.mu * logJ + 0.5 * self.lam * logJ**2
        return W

    def first_piola(self, F: np.ndarray) -> np.ndarray:
        J = np.linalg.det(F)
        if np.any(J <= 0.0):
            raise ValueError("J<=0（反転要素）で応力を評価できません。")
        FinvT = np.swapaxes(np.linalg.inv(F), -1, -2)
        logJ = np.log(J)
        return self.mu * (F - FinvT) + self.lam * logJ[:, None, None] * FinvT

    def tangent(self, F: np.ndarray) -> np.ndarray:
        d = F.shape[-1]
        I = np.eye(d)
        J = np.linalg.det(F)
        if np.any(J <= 0.0):
            raise ValueError("J<=0（反転要素）で接線を評価できません。")
        Finv = np.linalg.inv(F)
        coef = self.mu - self.lam * np.log(J)
        return (
            self.mu * np.broadcast_to(np.einsum("ik,jl->ijkl", I, I), (F.shape[0], d, d, d, d))
            + coef[:, None, None, None, None] * np.einsum("ejk,eli->eijkl", Finv, Finv)
            + self.lam * np.einsum("elk,eji->eijkl", Finv, Finv)
        )


_MATERIALS = {
    "LinearElasticity": LinearElastic,
    "SaintVenant": SaintVenantKirchhoff,
    "NeoHookean": NeoHookean,
}

MIXED_FORMULATIONS = frozenset({"Stokes", "IncompressibleLinearElasticity"})


def make_material(formulation: str, E: float, nu: float):
    """定式化名から構成則オブジェクトを生成する.

    Args:
        formulation: "LinearElasticity" | "SaintVenant" | "NeoHookean"
        E: ヤング率
        nu: ポアソン比

    Returns:
        HyperelasticProtocol 適合オブジェクト
    """
    try:
        cls = _MATERIALS[formulation]
    except KeyError:
        raise ValueError(
            f"未対応の定式化: '{formulation}'（対応: {sorted(_MATERIALS)}）"
        ) from None
    return cls(E, nu)


def is_known_formulation(formulation: str) -> bool:
    return formulation in _MATERIALS or formulation in MIXED_FORMULATIONS
