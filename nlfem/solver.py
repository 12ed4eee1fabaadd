"""線形・非線形ソルバーモジュール.

線形:
  - solve_linear_system(): pyamg / spsolve 適応選択

非線形（NLProblem のエネルギー最小化）:
  - backtracking_line_search(): 接触可否判定 + Armijo 条件
  - minimize(): Newton 法（降下方向でなければ最急降下にフォールバック）
  - solve_static(): Dirichlet 値を入れたゼロ状態からの静的解析
"""

from __future__ import annotations

import time
import warnings
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from nlfem.core.results import LinearSolveResult, NewtonResult

if TYPE_CHECKING:
    from nlfem.problem import NLProblem


def _spsolve(K: sp.csr_matrix, f: np.ndarray) -> np.ndarray:
    # 特異行列では MatrixRankWarning と共に nan を返す（success で判定）
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", spla.MatrixRankWarning)
        return np.atleast_1d(spla.spsolve(sp.csc_matrix(K), f))


def solve_linear_system(
    K: sp.spmatrix,
    f: np.ndarray,
    *,
    rtol: float = 1e-8,
    maxiter: int = 100000,
    size_threshold: int = 2000,
    show_progress: bool = False,
    use_pyamg: bool = True,
) -> LinearSolveResult:
    """pyamgを主体としたソルバ。小規模はspsolveにフォールバック。

    解が有限でない（特異行列など）場合は info["success"] = False を返す。

    Args:
        K: 正方疎行列（pyamg 使用時は SPD 前提）
        f: 右辺ベクトル
        rtol: pyamgの収束tol（||f|| に対する相対残差）
        maxiter: pyamg反復上限（V-cycle回数）
        size_threshold: これ未満の規模はspsolveで直接解く
        show_progress: セットアップ/ソルブ時間を表示
        use_pyamg: False なら常に spsolve

    Returns:
        LinearSolveResult: (u, info) の NamedTuple
    """
    K = sp.csr_matrix(K)
    f = np.asarray(f, dtype=float).ravel()
    n = K.shape[0]
    info: dict[str, Any] = {
        "method": None,
        "nit": None,
        "success": True,
        "residual_norm": None,
        "setup_time": None,
        "solve_time": None,
    }

    if n == 0:
        info["method"] = "empty"
        info["nit"] = 0
        info["residual_norm"] = 0.0
        return LinearSolveResult(u=np.zeros(0, dtype=float), info=info)

    if n >= size_threshold and use_pyamg:
        try:
            import pyamg  # type: ignore
        except ImportError:
            use_pyamg = False
    else:
        use_pyamg = False

    if not use_pyamg:
        method = "spsolve" if n < size_threshold else "spsolve(no-pyamg)"
        t0 = time.time()
        u = _spsolve(K, f)
        elapsed = time.time() - t0
        finite = bool(np.all(np.isfinite(u)))
        info["method"] = method
        info["nit"] = 1
        info["success"] = finite
        info["residual_norm"] = float(np.linalg.norm(K @ u - f)) if finite else float("inf")
        info["setup_time"] = 0.0
        info["solve_time"] = elapsed
        if show_progress:
            print(f"[{method}] n={n}, nnz={K.nnz}, elapsed={elapsed:.3f} s")
        return LinearSolveResult(u=u, info=info)

    # pyamg setup
    t0 = time.time()
    ml = pyamg.smoothed_aggregation_solver(
        K,
        symmetry="symmetric",
        presmoother=("gauss_seidel", {"sweep": "symmetric"}),
        postsmoother=("gauss_seidel", {"sweep": "symmetric"}),
    )
    setup_time = time.time() - t0

    residuals: list[float] = []
    t1 = time.time()
    u = ml.solve(b=f, tol=rtol, maxiter=maxiter, cycle="V", residuals=residuals)
    solve_time = time.time() - t1

    res_norm = float(residuals[-1]) if residuals else float(np.linalg.norm(K @ u - f))
    f_norm = max(float(np.linalg.norm(f)), 1e-30)

    info["method"] = "pyamg-V"
    info["nit"] = len(residuals)
    info["success"] = bool(np.all(np.isfinite(u))) and res_norm <= rtol * f_norm
    info["residual_norm"] = res_norm
    info["setup_time"] = setup_time
    info["solve_time"] = solve_time

    if show_progress:
        print(
            f"[pyamg-V] n={n}, nnz={K.nnz}, it={info['nit']}, "
            f"res={res_norm:.3e}, setup={setup_time:.3f}s, solve={solve_time:.3f}s"
        )

    return LinearSolveResult(u=u, info=info)


# ====================================================================
# Line search
# ====================================================================


def backtracking_line_search(
    x: np.ndarray,
    dx: np.ndarray,
    energy: float,
    slope: float,
    eval_energy: Callable[[np.ndarray], float],
    *,
    is_valid: Callable[[np.ndarray, np.ndarray], bool] | None = None,
    max_steps: int = 30,
    shrink: float = 0.5,
    c_armijo: float = 1e-4,
) -> tuple[float, int]:
    """Backtracking line search で step length eta を決定する.

    1. is_valid(x, x + eta*dx) が True になるまで eta を縮小（接触の貫通防止）
    2. Armijo 条件
           E(x + eta*dx) <= E(x) + c * eta * slope,   slope = ∇E·dx
       を満たす最初の eta を返す。

    条件未達なら、E を減少させた最良の eta を返す。減少しなければ 0。

    Args:
        x: 現在の縮約 DOF
        dx: 探索方向
        energy: E(x)
        slope: 方向微分 ∇E(x)·dx（降下方向なら負）
        eval_energy: x_trial → E(x_trial)
        is_valid: (x0, x1) → ステップ可否。None なら常に可
        max_steps: 最大縮小ステップ数
        shrink: 縮小率（0 < shrink < 1）
        c_armijo: Armijo パラメータ

    Returns:
        (eta, n_ls_steps): 採用された step length と line search ステップ数
    """
    eta = 1.0
    n_steps = 0

    if is_valid is not None:
        while not is_valid(x, x + eta * dx):
            n_steps += 1
            if n_steps >= max_steps:
                return 0.0, n_steps
            eta *= shrink

    best_eta = 0.0
    best_energy = energy

    while n_steps < max_steps:
        n_steps += 1
        e_trial = eval_energy(x + eta * dx)

        if np.isfinite(e_trial) and e_trial < best_energy:
            best_energy = e_trial
            best_eta = eta

        # Armijo 条件
        if np.isfinite(e_trial) and e_trial <= energy + c_armijo * eta * slope:
            return eta, n_steps

        eta *= shrink

    return best_eta, n_steps


# ====================================================================
# Newton 法
# ====================================================================


@dataclass
class NewtonConfig:
    """Newton 法の設定.

    Attributes:
        max_iter: 最大反復回数
        tol_grad: 収束判定 ||∇E|| <= tol_grad · max(||∇E₀||, 1)
        line_search_max_steps: line search の最大縮小回数
        shrink: line search の縮小率
        c_armijo: Armijo パラメータ
        show_progress: 反復ごとの進捗表示
    """

    max_iter: int = 50
    tol_grad: float = 1e-6
    line_search_max_steps: int = 30
    shrink: float = 0.5
    c_armijo: float = 1e-4
    show_progress: bool = False

    def __post_init__(self) -> None:
        if self.max_iter < 1:
            raise ValueError(f"max_iter は1以上: {self.max_iter}")
        if self.tol_grad <= 0.0:
            raise ValueError(f"tol_grad は正値: {self.tol_grad}")
        if self.line_search_max_steps < 1:
            raise ValueError(f"line_search_max_steps は1以上: {self.line_search_max_steps}")
        if not (0.0 < self.shrink < 1.0):
            raise ValueError(f"shrink は (0, 1): {self.shrink}")
        if not (0.0 < self.c_armijo < 1.0):
            raise ValueError(f"c_armijo は (0, 1): {self.c_armijo}")


def minimize(
    problem: NLProblem,
    x0: np.ndarray | None = None,
    config: NewtonConfig | None = None,
) -> NewtonResult:
    """NLProblem のエネルギーを縮約 DOF 上で最小化する.

    各反復:
      1. H Δx = -∇E を解く（Newton 方向）
      2. 解けない・降下方向でない場合は Δx = -∇E（最急降下）
      3. backtracking_line_search で step length を決めて更新

    Args:
        problem: 非線形問題
        x0: 初期値（縮約 or 全 DOF）。None = 縮約ゼロベクトル
        config: NewtonConfig

    Returns:
        NewtonResult
    """
    cfg = config if config is not None else NewtonConfig()

    if x0 is None:
        x = np.zeros(problem.reduced_size, dtype=float)
    else:
        x0 = np.asarray(x0, dtype=float).ravel()
        if x0.size == problem.reduced_size:
            x = x0.copy()
        else:
            x = problem.full_to_reduced(x0)

    grad_history: list[float] = []
    g_ref: float | None = None
    energy = problem.value(x)
    gnorm = float("inf")

    # 初期点で E が有限でない（反転要素など）場合は反復しない
    if not np.isfinite(energy):
        if cfg.show_progress:
            print("  WARNING: Newton initial state has non-finite energy (inverted elements?)")
        return NewtonResult(
            x=x,
            converged=False,
            n_iterations=0,
            grad_norm=gnorm,
            energy=float(energy),
            grad_norm_history=grad_history,
        )

    for it in range(cfg.max_iter):
        g = problem.gradient(x)
        gnorm = float(np.linalg.norm(g))
        grad_history.append(gnorm)
        if g_ref is None:
            g_ref = max(gnorm, 1.0)

        if gnorm <= cfg.tol_grad * g_ref:
            if cfg.show_progress:
                print(f"  [newton] iter {it}, ||g|| = {gnorm:.3e} (converged)")
            return NewtonResult(
                x=x,
                converged=True,
                n_iterations=it,
                grad_norm=gnorm,
                energy=energy,
                grad_norm_history=grad_history,
            )

        H = problem.hessian(x)
        lin = solve_linear_system(H, -g)
        dx = lin.u
        method = "newton"
        if not lin.info["success"] or float(g @ dx) >= 0.0:
            dx = -g
            method = "gradient"

        eta, n_ls = backtracking_line_search(
            x,
            dx,
            energy,
            float(g @ dx),
            problem.value,
            is_valid=problem.is_step_valid,
            max_steps=cfg.line_search_max_steps,
            shrink=cfg.shrink,
            c_armijo=cfg.c_armijo,
        )
        if eta == 0.0 and method == "newton":
            dx = -g
            method = "gradient"
            eta, n_ls = backtracking_line_search(
                x,
                dx,
                energy,
                float(g @ dx),
                problem.value,
                is_valid=problem.is_step_valid,
                max_steps=cfg.line_search_max_steps,
                shrink=cfg.shrink,
                c_armijo=cfg.c_armijo,
            )

        if eta == 0.0:
            if cfg.show_progress:
                print(f"  [newton] iter {it}, ||g|| = {gnorm:.3e}, line search failed")
            break

        x = x + eta * dx
        energy = problem.value(x)

        if cfg.show_progress:
            print(
                f"  [newton] iter {it}, ||g|| = {gnorm:.3e}, E = {energy:.6e}, "
                f"dir={method}, eta={eta:.3e}, ls={n_ls}"
            )

    else:
        g = problem.gradient(x)
        gnorm = float(np.linalg.norm(g))
        grad_history.append(gnorm)
        if g_ref is not None and gnorm <= cfg.tol_grad * g_ref:
            return NewtonResult(
                x=x,
                converged=True,
                n_iterations=cfg.max_iter,
                grad_norm=gnorm,
                energy=energy,
                grad_norm_history=grad_history,
            )

    if cfg.show_progress:
        print(f"  WARNING: Newton did not converge. ||g|| = {gnorm:.3e}")
    return NewtonResult(
        x=x,
        converged=False,
        n_iterations=len(grad_history),
        grad_norm=gnorm,
        energy=energy,
        grad_norm_history=grad_history,
    )


def solve_static(
    problem: NLProblem,
    *,
    config: NewtonConfig | None = None,
) -> tuple[np.ndarray, NewtonResult]:
    """静的解析: 縮約ゼロ（拘束 DOF は規定変位）から minimize する.

    Returns:
        (u, result): u は (full_size,) 全 DOF 解
    """
    result = minimize(problem, None, config)
    return problem.reduced_to_full(result.x), result
