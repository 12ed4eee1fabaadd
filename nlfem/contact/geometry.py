"""2D 点–辺距離とその微分.

距離はすべて二乗距離 d² で扱う（バリア関数も d² の関数として定義）。
局所自由度は x = [p, a, b]（各 2 成分, 計 6）。

距離タイプ（点 p と辺 ab の最近接特徴）:
  POINT_A   : 端点 a:  d² = |p - a|²
  POINT_B   : 端点 b:  d² = |p - b|²
  LINE      : 辺内部:  d² = c² / |e|²,  c = e × r,  e = b - a,  r = p - a
"""

from __future__ import annotations

import numpy as np

POINT_A = 0
POINT_B = 1
LINE = 2

_I2 = np.eye(2)
_Z2 = np.zeros((2, 2))
# 選択行列: e = S_E x, r = S_R x
_S_E = np.hstack([_Z2, -_I2, _I2])
_S_R = np.hstack([_I2, -_I2, _Z2])
# 2D 外積: e × r = eᵀ R r
_R = np.array([[0.0, 1.0], [-1.0, 0.0]])


def point_edge_distance_type(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> int:
    """点 p に対する辺 ab の最近接特徴を返す."""
    e = b - a
    e2 = float(e @ e)
    if e2 <= 0.0:
        return POINT_A
    s = float((p - a) @ e) / e2
    if s <= 0.0:
        return POINT_A
    if s >= 1.0:
        return POINT_B
    return LINE


def point_point_distance(
    p: np.ndarray, q: np.ndarray
) -> tuple[float, np.ndarray, np.ndarray]:
    """点–点の二乗距離と [p, q] に関する勾配 (4,)・Hessian (4, 4)."""
    diff = p - q
    d2 = float(diff @ diff)
    grad = np.concatenate([2.0 * diff, -2.0 * diff])
    hess = 2.0 * np.block([[_I2, -_I2], [-_I2, _I2]])
    return d2, grad, hess


def point_line_distance(
    p: np.ndarray, a: np.ndarray, b: np.ndarray
) -> tuple[float, np.ndarray, np.ndarray]:
    """点–直線の二乗距離と [p, a, b] に関する勾配 (6,)・Hessian (6, 6).

    d² = g·h,  g = c²,  h = 1 / L,  L = |e|²
    """
    e = b - a
    r = p - a
    c = float(e @ _R @ r)
    L = float(e @ e)

    dc = _S_E.T @ (_R @ r) + _S_R.T @ (_R.T @ e)
    ddc = _S_E.T @ _R @ _S_R + _S_R.T @ _R.T @ _S_E
    dL = 2.0 * _S_E.T @ e
    ddL = 2.0 * _S_E.T @ _S_E

    g = c * c
    dg = 2.0 * c * dc
    ddg = 2.0 * np.outer(dc, dc) + 2.0 * c * ddc

    h = 1.0 / L
    dh = -dL / L**2
    ddh = -ddL / L**2 + 2.0 * np.outer(dL, dL) / L**3

    d2 = g * h
    grad = h * dg + g * dh
    hess = h * ddg + np.outer(dg, dh) + np.outer(dh, dg) + g * ddh
    return d2, grad, hess


def point_edge_distance(
    p: np.ndarray, a: np.ndarray, b: np.ndarray
) -> tuple[float, np.ndarray, np.ndarray]:
    """点–辺（線分）の二乗距離と [p, a, b] に関する勾配 (6,)・Hessian (6, 6)."""
    kind = point_edge_distance_type(p, a, b)
    if kind == LINE:
        return point_line_distance(p, a, b)

    grad = np.zeros(6)
    hess = np.zeros((6, 6))
    q, off = (a, 2) if kind == POINT_A else (b, 4)
    d2, g_pp, h_pp = point_point_distance(p, q)
    idx = np.array([0, 1, off, off + 1])
    grad[idx] = g_pp
    hess[np.ix_(idx, idx)] = h_pp
    return d2, grad, hess


def point_edge_distance_squared(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    """点–辺の二乗距離のみ（微分なし）."""
    e = b - a
    e2 = float(e @ e)
    s = 0.0 if e2 <= 0.0 else min(max(float((p - a) @ e) / e2, 0.0), 1.0)
    diff = p - (a + s * e)
    return float(diff @ diff)
