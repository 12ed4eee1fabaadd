"""疎行列アセンブリキャッシュ.

非線形反復ごとに同じメッシュトポロジーで剛性行列を組み直す場合、
非ゼロパターンは不変である。初回アセンブリでパターン（CSR の indptr/indices）を
捕捉し、以降は値配列への加算だけで行列を再構成する。

状態（一方向遷移）:
  _TripletState: (row, col, value) の未整列リスト。パターン未確定。
  _MappedState : 固定パターン + フラット値配列。add_value は既存スロットへ加算のみ。

並列アセンブリ:
  SparseMatrixCache.like(template) でワーカーごとの部分キャッシュを作成し、
  各ワーカーがロックなしで蓄積、最後に += で合算する。
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp


@dataclass
class _TripletState:
    """パターン未確定状態.

    Attributes:
        rows, cols, vals: 保留中の COO 寄与（配列のリスト）
        mat: prune 済みの圧縮行列
    """

    mat: sp.csr_matrix
    rows: list[np.ndarray] = field(default_factory=list)
    cols: list[np.ndarray] = field(default_factory=list)
    vals: list[np.ndarray] = field(default_factory=list)


@dataclass
class _MappedState:
    """パターン確定状態.

    Attributes:
        indptr: (size+1,) CSR 行ポインタ
        indices: (nnz,) CSR 列インデックス（行内で昇順）
        values: (nnz,) 値配列
        row_slots: 行ごとの (列配列, スロット配列)
        keys: (nnz,) row * size + col（昇順）。一括スロット検索用
    """

    indptr: np.ndarray
    indices: np.ndarray
    values: np.ndarray
    row_slots: list[tuple[np.ndarray, np.ndarray]]
    keys: np.ndarray

    def copy_pattern(self) -> _MappedState:
        """パターンを共有し、値だけゼロの新しい状態を返す."""
        return _MappedState(
            indptr=self.indptr,
            indices=self.indices,
            values=np.zeros_like(self.values),
            row_slots=self.row_slots,
            keys=self.keys,
        )


class SparseMatrixCache:
    """スパース行列の蓄積キャッシュ.

    Args:
        size: 行列サイズ (size × size)
        verbose: キャッシュ計算・再利用時にメッセージを表示する
    """

    def __init__(self, size: int = 0, *, verbose: bool = False) -> None:
        self._size = int(size)
        self.verbose = verbose
        self._state: _TripletState | _MappedState = _TripletState(mat=self._empty())

    @classmethod
    def like(cls, other: SparseMatrixCache) -> SparseMatrixCache:
        """other と同じサイズ・パターンで値ゼロのキャッシュを作る."""
        out = cls(other.size, verbose=other.verbose)
        out.init(other)
        return out

    # ------------------------------------------------------------------
    # 状態
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return self._size

    @property
    def is_mapped(self) -> bool:
        """パターン確定（mapped mode）か."""
        return isinstance(self._state, _MappedState)

    @property
    def nnz(self) -> int:
        if isinstance(self._state, _MappedState):
            return int(self._state.values.size)
        return int(self._state.mat.nnz)

    def _empty(self) -> sp.csr_matrix:
        return sp.csr_matrix((self._size, self._size), dtype=float)

    def init(self, other: int | SparseMatrixCache) -> None:
        """サイズ指定で再初期化、または他キャッシュのパターンをコピーする.

        Args:
            other: 行列サイズ、またはパターンのコピー元キャッシュ
        """
        if isinstance(other, SparseMatrixCache):
            self._size = other._size
            if isinstance(other._state, _MappedState):
                self._state = other._state.copy_pattern()
            else:
                self._state = _TripletState(mat=self._empty())
            return

        size = int(other)
        # パターン確定後のサイズ変更は契約違反
        assert not self.is_mapped or size == self._size
        self._size = size
        if isinstance(self._state, _TripletState):
            self._state = _TripletState(mat=self._empty())

    def set_zero(self) -> None:
        """パターンを保持したまま値をゼロにする."""
        state = self._state
        if isinstance(state, _MappedState):
            state.values.fill(0.0)
        else:
            self._state = _TripletState(mat=self._empty())

    # ------------------------------------------------------------------
    # 蓄積
    # ------------------------------------------------------------------

    def add_value(self, i: int, j: int, value: float) -> None:
        """(i, j) に value を加算する."""
        state = self._state
        if isinstance(state, _TripletState):
            state.rows.append(np.array([i], dtype=np.int64))
            state.cols.append(np.array([j], dtype=np.int64))
            state.vals.append(np.array([value], dtype=float))
            return

        cols, slots = state.row_slots[i]
        hit = slots[cols == j]
        # パターン外の非ゼロは契約違反
        assert hit.size > 0
        state.values[hit] += value

    def add_values(self, rows: np.ndarray, cols: np.ndarray, values: np.ndarray) -> None:
        """COO 寄与を一括加算する（要素行列の scatter 用）.

        Args:
            rows: (k,) 行インデックス
            cols: (k,) 列インデックス
            values: (k,) 値
        """
        rows = np.asarray(rows, dtype=np.int64).ravel()
        cols = np.asarray(cols, dtype=np.int64).ravel()
        values = np.asarray(values, dtype=float).ravel()
        assert rows.shape == cols.shape == values.shape

        state = self._state
        if isinstance(state, _TripletState):
            state.rows.append(rows)
            state.cols.append(cols)
            state.vals.append(values)
            return

        query = rows * self._size + cols
        pos = np.searchsorted(state.keys, query)
        assert np.all(pos < state.keys.size)
        assert np.array_equal(state.keys[pos], query)
        np.add.at(state.values, pos, values)

    def _merge(
        self,
        mat: sp.csr_matrix,
        rows: list[np.ndarray],
        cols: list[np.ndarray],
        vals: list[np.ndarray],
    ) -> sp.csr_matrix:
        """圧縮行列と COO 寄与を合算する.

        CSR どうしの + は結果が 0 の成分を落とすため、COO から組み直して
        数値的にゼロになった成分もパターンに残す。
        """
        coo = mat.tocoo()
        out = sp.csr_matrix(
            (
                np.concatenate([coo.data, *vals]),
                (np.concatenate([coo.row, *rows]), np.concatenate([coo.col, *cols])),
            ),
            shape=(self._size, self._size),
        )
        out.sum_duplicates()
        out.sort_indices()
        return out

    def prune(self) -> None:
        """保留中の triplet を圧縮行列へ反映する（重複は合算）."""
        state = self._state
        if not isinstance(state, _TripletState) or not state.rows:
            return
        mat = self._merge(state.mat, state.rows, state.cols, state.vals)
        self._state = _TripletState(mat=mat)

    def _pending_matrix(self) -> sp.csr_matrix:
        """状態を変えずに現在の蓄積値を CSR で返す."""
        state = self._state
        if isinstance(state, _MappedState):
            return sp.csr_matrix(
                (state.values.copy(), state.indices, state.indptr),
                shape=(self._size, self._size),
            )
        return self._merge(state.mat, state.rows, state.cols, state.vals)

    # ------------------------------------------------------------------
    # 取り出し
    # ------------------------------------------------------------------

    def get_matrix(self, compute_mapping: bool = True) -> sp.csr_matrix:
        """蓄積した行列を返し、内部の値をゼロにリセットする.

        triplet mode で compute_mapping=True の場合、この行列の非ゼロパターンを
        捕捉して mapped mode に移行する。mapped mode では保存済みの
        indptr/indices/values から直接行列を再構成する。

        Args:
            compute_mapping: パターンを捕捉して以降 mapped mode にするか

        Returns:
            K: (size, size) CSR 行列（呼び出し側が所有）
        """
        self.prune()
        state = self._state

        if isinstance(state, _MappedState):
            mat = sp.csr_matrix(
                (state.values.copy(), state.indices, state.indptr),
                shape=(self._size, self._size),
            )
            state.values.fill(0.0)
            if self.verbose:
                print("[SparseMatrixCache] Using cache")
            return mat

        mat = state.mat
        if compute_mapping:
            self._state = self._compute_mapping(mat)
            if self.verbose:
                print(f"[SparseMatrixCache] Cache computed: n={self._size}, nnz={mat.nnz}")
        else:
            self._state = _TripletState(mat=self._empty())
        return mat

    def _compute_mapping(self, mat: sp.csr_matrix) -> _MappedState:
        indptr = mat.indptr.astype(np.int64, copy=True)
        indices = mat.indices.astype(np.int64, copy=True)

        row_slots: list[tuple[np.ndarray, np.ndarray]] = []
        for i in range(self._size):
            start, end = indptr[i], indptr[i + 1]
            row_slots.append((indices[start:end], np.arange(start, end, dtype=np.int64)))

        row_of_slot = np.repeat(np.arange(self._size, dtype=np.int64), np.diff(indptr))
        keys = row_of_slot * self._size + indices

        return _MappedState(
            indptr=indptr,
            indices=indices,
            values=np.zeros(indices.size, dtype=float),
            row_slots=row_slots,
            keys=keys,
        )

    # ------------------------------------------------------------------
    # 合算
    # ------------------------------------------------------------------

    def __add__(self, other: SparseMatrixCache) -> SparseMatrixCache:
        out = SparseMatrixCache.like(self)
        out += self
        out += other
        return out

    def __iadd__(self, other: SparseMatrixCache) -> SparseMatrixCache:
        assert self._size == other._size
        state = self._state
        other_state = other._state

        if isinstance(state, _MappedState) and isinstance(other_state, _MappedState):
            assert state.indptr.size == other_state.indptr.size
            assert state.indices.size == other_state.indices.size
            assert state.values.size == other_state.values.size
            state.values += other_state.values
            return self

        # どちらかがパターン未確定: 圧縮行列どうしを加算（高コスト経路）
        other_mat = other._pending_matrix().tocoo()
        if isinstance(state, _MappedState):
            self.add_values(other_mat.row, other_mat.col, other_mat.data)
        else:
            state.rows.append(other_mat.row.astype(np.int64))
            state.cols.append(other_mat.col.astype(np.int64))
            state.vals.append(other_mat.data.astype(float))
            self.prune()
        return self
