"""IPC 型バリアポテンシャルのテスト."""

from __future__ import annotations

import numpy as np
import pytest

from nlfem.contact import BarrierContact
from nlfem.contact.barrier import (
    barrier,
    barrier_gradient,
    barrier_hessian,
    compute_barrier_potential,
    compute_barrier_potential_gradient,
    compute_barrier_potential_hessian,
    construct_constraint_set,
)
from nlfem.core.contact import ContactEvaluatorProtocol
from nlfem.core.results import ConstraintSet

DHAT2 = 0.01
NO_FACES = np.zeros((0, 3), dtype=np.int64)


def _t_config() -> tuple[np.ndarray, np.ndarray]:
    """水平辺 0–1 と、その直上 0.05 に下端を持つ鉛直辺 2–3."""
    V = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 0.05], [0.5, 1.0]])
    edges = np.array([[0, 1], [2, 3]])
    return V, edges


def _fd(f, x: np.ndarray, h: float = 1e-7) -> np.ndarray:
    cols = []
    for i in range(x.size):
        e = np.zeros_like(x)
        e[i] = h
        cols.append((f(x + e) - f(x - e)) / (2.0 * h))
    return np.array(cols).T


# ---------------------------------------------------------------------------
# スカラーバリア関数
# ---------------------------------------------------------------------------
class TestBarrierFunction:
    """b(x), b'(x), b''(x)."""

    def test_support(self):
        x = np.array([0.5 * DHAT2, DHAT2, 2.0 * DHAT2])
        b = barrier(x, DHAT2)
        assert b[0] > 0.0
        assert b[1] == 0.0
        assert b[2] == 0.0

    def test_nonpositive_is_inf(self):
        assert barrier(0.0, DHAT2) == np.inf
        assert barrier(-1e-3, DHAT2) == np.inf

    def test_value(self):
        x = 0.25 * DHAT2
        expected = -((x - DHAT2) ** 2) * np.log(0.25)
        assert float(barrier(x, DHAT2)) == pytest.approx(expected)

    @pytest.mark.parametrize("x", [1e-4, 2.5e-3, 9e-3])
    def test_derivatives_fd(self, x):
        h = 1e-9
        g_fd = (barrier(x + h, DHAT2) - barrier(x - h, DHAT2)) / (2 * h)
        H_fd = (barrier_gradient(x + h, DHAT2) - barrier_gradient(x - h, DHAT2)) / (2 * h)
        assert float(barrier_gradient(x, DHAT2)) == pytest.approx(float(g_fd), rel=1e-5)
        assert float(barrier_hessian(x, DHAT2)) == pytest.approx(float(H_fd), rel=1e-5)

    def test_smooth_at_threshold(self):
        """x → x̂ で b, b' は 0 に近づく."""
        x = DHAT2 * (1.0 - 1e-6)
        assert abs(float(barrier(x, DHAT2))) < 1e-20
        assert abs(float(barrier_gradient(x, DHAT2))) < 1e-12

    def test_repulsive(self):
        """b' < 0（距離が縮むほどエネルギー増）, b'' > 0."""
        x = np.linspace(1e-4, 0.99 * DHAT2, 20)
        assert np.all(barrier_gradient(x, DHAT2) < 0.0)
        assert np.all(barrier_hessian(x, DHAT2) > 0.0)


# ---------------------------------------------------------------------------
# 拘束集合
# ---------------------------------------------------------------------------
class TestConstraintSet:
    """construct_constraint_set."""

    def test_close_vertex(self):
        V, edges = _t_config()
        cs = construct_constraint_set(V, edges, NO_FACES, DHAT2)
        assert isinstance(cs, ConstraintSet)
        np.testing.assert_array_equal(cs.edge_vertex, [[0, 2]])
        assert len(cs) == 1

    def test_far_apart(self):
        V, edges = _t_config()
        V[2:, 1] += 1.0
        assert len(construct_constraint_set(V, edges, NO_FACES, DHAT2)) == 0

    def test_own_endpoints_excluded(self):
        """辺の端点自身は拘束に入らない."""
        V = np.array([[0.0, 0.0], [1.0, 0.0]])
        cs = construct_constraint_set(V, np.array([[0, 1]]), NO_FACES, DHAT2)
        assert len(cs) == 0

    def test_no_edges(self):
        V, _ = _t_config()
        assert len(construct_constraint_set(V, np.zeros((0, 2)), NO_FACES, DHAT2)) == 0

    def test_3d_not_implemented(self):
        V = np.zeros((3, 3))
        with pytest.raises(NotImplementedError):
            construct_constraint_set(V, np.array([[0, 1]]), NO_FACES, DHAT2)

    def test_faces_not_implemented(self):
        V, edges = _t_config()
        with pytest.raises(NotImplementedError):
            construct_constraint_set(V, edges, np.array([[0, 1, 2]]), DHAT2)


# ---------------------------------------------------------------------------
# ポテンシャル
# ---------------------------------------------------------------------------
class TestBarrierPotential:
    """ポテンシャル・勾配・Hessian."""

    def _setup(self):
        V, edges = _t_config()
        # 一般位置にずらす
        V = V + np.array([[0.0, 0.01], [0.0, -0.01], [0.02, 0.0], [0.0, 0.0]])
        cs = construct_constraint_set(V, edges, NO_FACES, DHAT2)
        assert len(cs) == 1
        return V, edges, cs

    def test_potential_value(self):
        V, edges = _t_config()
        cs = construct_constraint_set(V, edges, NO_FACES, DHAT2)
        E = compute_barrier_potential(V, V, edges, NO_FACES, cs, DHAT2)
        assert E == pytest.approx(float(barrier(0.05**2, DHAT2)))

    def test_gradient_fd(self):
        V, edges, cs = self._setup()

        def energy(x):
            return compute_barrier_potential(V, x.reshape(-1, 2), edges, NO_FACES, cs, DHAT2)

        g = compute_barrier_potential_gradient(V, V, edges, NO_FACES, cs, DHAT2)
        np.testing.assert_allclose(g, _fd(energy, V.ravel()), rtol=1e-5, atol=1e-9)
        # 頂点 3 は拘束に関与しない
        np.testing.assert_array_equal(g[6:], 0.0)

    def test_hessian_fd(self):
        V, edges, cs = self._setup()

        def grad(x):
            return compute_barrier_potential_gradient(V, x.reshape(-1, 2), edges, NO_FACES, cs, DHAT2)

        H = compute_barrier_potential_hessian(V, V, edges, NO_FACES, cs, DHAT2).toarray()
        np.testing.assert_allclose(H, _fd(grad, V.ravel()), rtol=1e-5, atol=1e-6)
        np.testing.assert_allclose(H, H.T, atol=1e-10)

    def test_psd_projection(self):
        V, edges, cs = self._setup()
        H = compute_barrier_potential_hessian(
            V, V, edges, NO_FACES, cs, DHAT2, project_to_psd=True
        ).toarray()
        np.testing.assert_allclose(H, H.T, atol=1e-10)
        assert np.linalg.eigvalsh(H).min() >= -1e-8 * np.abs(H).max()

    def test_empty_set(self):
        V, edges = _t_config()
        cs = ConstraintSet(edge_vertex=np.zeros((0, 2), dtype=np.int64))
        assert compute_barrier_potential(V, V, edges, NO_FACES, cs, DHAT2) == 0.0
        assert compute_barrier_potential_hessian(V, V, edges, NO_FACES, cs, DHAT2).nnz == 0


class TestBarrierContact:
    """ContactEvaluatorProtocol 適合の評価器."""

    def test_protocol(self):
        assert isinstance(BarrierContact(), ContactEvaluatorProtocol)

    def test_delegates(self):
        V, edges = _t_config()
        contact = BarrierContact(project_hessian_to_psd=True)
        cs = contact.construct_constraint_set(V, edges, NO_FACES, DHAT2)
        assert len(cs) == 1
        assert contact.compute_barrier_potential(V, V, edges, NO_FACES, cs, DHAT2) > 0.0
        g = contact.compute_barrier_potential_gradient(V, V, edges, NO_FACES, cs, DHAT2)
        # 頂点 2 は上向き（離れる向き）の力 = 勾配は負
        assert g[5] < 0.0
        H = contact.compute_barrier_potential_hessian(V, V, edges, NO_FACES, cs, DHAT2)
        assert H.shape == (8, 8)
        assert contact.is_step_collision_free(V, V, edges, NO_FACES)
