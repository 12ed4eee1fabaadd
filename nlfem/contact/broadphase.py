"""Broadphase 接触候補探索（AABB格子）.

2 つの AABB 群（例: 頂点の膨張ボックスと辺のボックス）について、
空間ハッシュ格子による候補ペア抽出を行う。次元は任意（2D / 3D）。
"""

from __future__ import annotations

import itertools
from collections import defaultdict

import numpy as np


def compute_segment_aabb(
    x0: np.ndarray,
    x1: np.ndarray,
    margin: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """セグメント群の AABB を一括計算する.

    Args:
        x0: (n, d) 始点
        x1: (n, d) 終点
        margin: 追加マージン（探索余裕）

    Returns:
        (lo, hi): 各 (n, d)
    """
    lo = np.minimum(x0, x1) - margin
    hi = np.maximum(x0, x1) + margin
    return lo, hi


def compute_point_aabb(
    x0: np.ndarray,
    x1: np.ndarray | None = None,
    margin: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """点群（x1 を与えれば掃引軌道）の AABB を一括計算する."""
    if x1 is None:
        x1 = x0
    return compute_segment_aabb(x0, x1, margin)


def broadphase_aabb(
    lo_a: np.ndarray,
    hi_a: np.ndarray,
    lo_b: np.ndarray,
    hi_b: np.ndarray,
    *,
    cell_size: float | None = None,
) -> np.ndarray:
    """AABB 空間ハッシュによる A–B 候補ペア探索.

    B の AABB を均一格子にビニングし、A の各 AABB が占めるセル内の B を
    候補とする。最後に AABB 重複判定を一括で行う。

    Args:
        lo_a, hi_a: (na, d) A 群の AABB
        lo_b, hi_b: (nb, d) B 群の AABB
        cell_size: 格子セルサイズ。None なら自動推定

    Returns:
        (k, 2) 候補ペア [i (A 側), j (B 側)]
    """
    na = lo_a.shape[0]
    nb = lo_b.shape[0]
    if na == 0 or nb == 0:
        return np.zeros((0, 2), dtype=np.intp)

    # セルサイズ自動推定
    if cell_size is None:
        sizes = np.concatenate([np.max(hi_a - lo_a, axis=1), np.max(hi_b - lo_b, axis=1)])
        cell_size = float(np.mean(sizes)) * 1.5
        if cell_size <= 0.0:
            # 全ボックスが退化（点）: 任意の正値でよい
            cell_size = 1.0

    inv_cell = 1.0 / cell_size

    ilo_b = np.floor(lo_b * inv_cell).astype(np.intp)
    ihi_b = np.floor(hi_b * inv_cell).astype(np.intp)

    # 空間ハッシュ: B の各ボックスが占めるセルにビニング
    grid: dict[tuple[int, ...], list[int]] = defaultdict(list)
    for j in range(nb):
        ranges = [range(int(ilo_b[j, k]), int(ihi_b[j, k]) + 1) for k in range(lo_b.shape[1])]
        for cell in itertools.product(*ranges):
            grid[cell].append(j)

    ilo_a = np.floor(lo_a * inv_cell).astype(np.intp)
    ihi_a = np.floor(hi_a * inv_cell).astype(np.intp)

    seen: set[tuple[int, int]] = set()
    for i in range(na):
        ranges = [range(int(ilo_a[i, k]), int(ihi_a[i, k]) + 1) for k in range(lo_a.shape[1])]
        for cell in itertools.product(*ranges):
            for j in grid.get(cell, ()):
                seen.add((i, j))

    if not seen:
        return np.zeros((0, 2), dtype=np.intp)

    # バッチ AABB 重複判定（全ペア一括で numpy 演算）
    pairs = np.array(sorted(seen), dtype=np.intp)
    pi, pj = pairs[:, 0], pairs[:, 1]
    overlap = np.all(lo_a[pi] <= hi_b[pj], axis=1) & np.all(lo_b[pj] <= hi_a[pi], axis=1)
    return pairs[overlap]
