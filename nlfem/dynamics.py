"""時間領域の非線形過渡応答解析モジュール.

陰的時間積分（incremental potential）:
  各ステップで
      Π(x) = Δt²/2 (W_el(x) + Π_ext(x, t) + κ B(x)) + ½ (x - ũ)ᵀ M (x - ũ),
      ũ = x_prev + Δt v_prev
  を最小化し、受理後に v = (x - x_prev) / Δt で速度を更新する。

運動方程式: M·ä + ∇W_el(u) + κ ∇B(u) = f(t)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from nlfem.solver import NewtonConfig, minimize

if TYPE_CHECKING:
    from nlfem.problem import NLProblem

# ====================================================================
# コンフィグ・結果データクラス
# ====================================================================


@dataclass
class TransientConfig:
    """過渡応答解析の設定.

    Attributes:
        dt: 時間刻み [s]
        n_steps: 時間ステップ数
    """

    dt: float
    n_steps: int

    def __post_init__(self) -> None:
        if self.dt <= 0:
            raise ValueError(f"dt は正値: {self.dt}")
        if self.n_steps < 1:
            raise ValueError(f"n_steps は1以上: {self.n_steps}")


@dataclass
class TransientResult:
    """過渡応答解析の結果.

    Attributes:
        time: (n+1,) 時刻配列
        displacement: (n+1, ndof) 変位履歴
        velocity: (n+1, ndof) 速度履歴
        config: 解析設定
        converged: 全ステップで Newton 法が収束したか
        newton_iterations: 各ステップの Newton 反復回数
    """

    time: np.ndarray
    displacement: np.ndarray
    velocity: np.ndarray
    config: TransientConfig = field(default_factory=lambda: TransientConfig(dt=1.0, n_steps=1))
    converged: bool = True
    newton_iterations: list[int] = field(default_factory=list)


# ====================================================================
# incremental potential 時間積分
# ====================================================================


def solve_nonlinear_transient(
    problem: NLProblem,
    u0: np.ndarray,
    v0: np.ndarray,
    config: TransientConfig,
    newton_config: NewtonConfig | None = None,
) -> TransientResult:
    """非線形過渡応答解析.

    problem は第 1 ステップの終了時刻 t₀ + Δt で構築しておく
    （荷重・規定変位はステップ終了時刻で評価される）。

    手順:
        init_timestep(u0, v0, Δt)
        for each step:
            minimize（予測子 ũ = x_prev + Δt v_prev から開始。
                      ũ でエネルギーが有限でなければ x_prev から開始）
            update_quantities(t + Δt, x)

    Newton 法が収束しなかったステップで打ち切り、それまでの履歴を返す。

    Args:
        problem: 過渡問題（ProblemConfig.is_time_dependent=True）
        u0: (ndof,) 初期変位
        v0: (ndof,) 初期速度
        config: TransientConfig
        newton_config: 各ステップの NewtonConfig

    Returns:
        TransientResult: 時刻歴結果
    """
    if not problem.is_time_dependent:
        raise ValueError("solve_nonlinear_transient には過渡問題（is_time_dependent=True）が必要です。")

    dt = config.dt
    n_steps = config.n_steps
    ndof = problem.full_size

    u0 = np.asarray(u0, dtype=float).ravel()
    v0 = np.asarray(v0, dtype=float).ravel()
    if u0.size != ndof or v0.size != ndof:
        raise ValueError(f"u0, v0 の長さは ndof={ndof}: {u0.size}, {v0.size}")

    t_start = problem.t - dt
    time_hist = np.zeros(n_steps + 1, dtype=float)
    u_hist = np.zeros((n_steps + 1, ndof), dtype=float)
    v_hist = np.zeros((n_steps + 1, ndof), dtype=float)
    time_hist[0] = t_start
    u_hist[0] = u0
    v_hist[0] = v0

    newton_iters: list[int] = []
    show = newton_config is not None and newton_config.show_progress

    problem.init_timestep(u0, v0, dt)

    for step in range(1, n_steps + 1):
        t_now = problem.t
        x0 = problem.full_to_reduced(problem.x_prev + dt * problem.v_prev)
        if not np.isfinite(problem.value(x0)):
            # 予測子で要素が反転する場合は前ステップ変位から開始
            x0 = problem.full_to_reduced(problem.x_prev)
        result = minimize(problem, x0, newton_config)
        newton_iters.append(result.n_iterations)

        if not result.converged:
            if show:
                print(f"  WARNING: Step {step}/{n_steps} (t={t_now:.6e}) did not converge.")
            return TransientResult(
                time=time_hist[:step],
                displacement=u_hist[:step],
                velocity=v_hist[:step],
                config=config,
                converged=False,
                newton_iterations=newton_iters,
            )

        x = problem.reduced_to_full(result.x)
        problem.update_quantities(t_now + dt, x)

        time_hist[step] = t_now
        u_hist[step] = problem.x_prev
        v_hist[step] = problem.v_prev

        if show:
            print(f"  Step {step}/{n_steps}, t={t_now:.6e}, newton iters={result.n_iterations}")

    return TransientResult(
        time=time_hist,
        displacement=u_hist,
        velocity=v_hist,
        config=config,
        newton_iterations=newton_iters,
    )
