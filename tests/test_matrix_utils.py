"""行列診断ユーティリティのテスト."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from nlfem.matrix_utils import show_matrix_stats


class TestShowMatrixStats:
    """show_matrix_stats."""

    def test_identity(self):
        stats = show_matrix_stats(np.eye(4), verbose=False)
        assert stats.determinant == pytest.approx(1.0)
        assert stats.s_max == pytest.approx(1.0)
        assert stats.s_min == pytest.approx(1.0)
        assert stats.cond == pytest.approx(1.0)
        assert stats.invertible

    def test_diagonal(self):
        stats = show_matrix_stats(np.diag([4.0, 2.0, 0.5]), verbose=False)
        assert stats.determinant == pytest.approx(4.0)
        assert stats.cond == pytest.approx(8.0)

    def test_singular(self):
        stats = show_matrix_stats(np.diag([3.0, 0.0]), verbose=False)
        assert not stats.invertible
        assert stats.cond == np.inf
        assert stats.determinant == pytest.approx(0.0)

    def test_sparse_input(self):
        K = sp.diags([-np.ones(4), 2.0 * np.ones(5), -np.ones(4)], [-1, 0, 1], format="csr")
        stats = show_matrix_stats(K, verbose=False)
        assert stats.invertible
        assert stats.determinant == pytest.approx(6.0)

    def test_non_square(self):
        with pytest.raises(ValueError):
            show_matrix_stats(np.zeros((2, 3)))

    def test_print(self, capsys):
        show_matrix_stats(np.eye(2))
        out = capsys.readouterr().out
        assert "-- Determinant:" in out
        assert "-- Cond:" in out
        assert "-- Invertible: True" in out
