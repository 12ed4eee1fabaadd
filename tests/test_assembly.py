"""超弾性アセンブリ（ElasticityAssembler）と離散化状態（FEModel）のテスト."""

from __future__ import annotations

import numpy as np
import pytest

from nlfem.assembly import ElasticityAssembler, assemble_mass_matrix
from nlfem.core.assembler import ElementAssemblerProtocol
from nlfem.elements.simplex import element_dofs, shape_gradients
from nlfem.model import FEModel

E_MOD = 100.0
NU = 0.3

# ====================================================================
# ヘルパー
# ====================================================================


def _rect_mesh(nx: int, ny: int, lx: float = 1.0, ly: float = 1.0) -> tuple[np.ndarray, np.ndarray]:
    """矩形領域の TRI3 メッシュ（各セルを 2 三角形に分割）."""
    xs = np.linspace(0.0, lx, nx + 1)
    ys = np.linspace(0.0, ly, ny + 1)
    X, Y = np.meshgrid(xs, ys)
    nodes = np.column_stack([X.ravel(), Y.ravel()])
    elems = []
    for j in range(ny):
        for i in range(nx):
            n0 = j * (nx + 1) + i
            n1 = n0 + 1
            n3 = n0 + nx + 1
            n2 = n3 + 1
            elems.append([n0, n1, n2])
            elems.append([n0, n2, n3])
    return nodes, np.array(elems, dtype=np.int64)


def _unit_tet() -> tuple[np.ndarray, np.ndarray]:
    nodes = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    return nodes, np.array([[0, 1, 2, 3]])


def _fd_gradient(f, x: np.ndarray, h: float = 1e-6) -> np.ndarray:
    g = np.zeros_like(x)
    for i in range(x.size):
        e = np.zeros_like(x)
        e[i] = h
        g[i] = (f(x + e) - f(x - e)) / (2.0 * h)
    return g


def _fd_jacobian(f, x: np.ndarray, h: float = 1e-6) -> np.ndarray:
    cols = []
    for i in range(x.size):
        e = np.zeros_like(x)
        e[i] = h
        cols.append((f(x + e) - f(x - e)) / (2.0 * h))
    return np.column_stack(cols)


# ====================================================================
# 要素量
# ====================================================================


class TestSimplex:
    """形状関数勾配・体積."""

    def test_area(self):
        nodes, elems = _rect_mesh(2, 3, lx=2.0, ly=1.5)
        _, vol = shape_gradients(nodes, elems)
        assert vol.sum() == pytest.approx(3.0)

    def test_partition_of_unity(self):
        """Σ_a ∇N_a = 0."""
        nodes, elems = _rect_mesh(2, 2)
        G, _ = shape_gradients(nodes, elems)
        np.testing.assert_allclose(G.sum(axis=1), 0.0, atol=1e-12)

    def test_tet_volume(self):
        nodes, elems = _unit_tet()
        _, vol = shape_gradients(nodes, elems)
        assert vol[0] == pytest.approx(1.0 / 6.0)

    def test_inverted_raises(self):
        nodes = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0]])
        with pytest.raises(ValueError):
            shape_gradients(nodes, np.array([[0, 1, 2]]))

    def test_element_dofs(self):
        edofs = element_dofs(np.array([[0, 2, 3]]), 2)
        np.testing.assert_array_equal(edofs, [[0, 1, 4, 5, 6, 7]])


# ====================================================================
# FEModel
# ====================================================================


class TestFEModel:
    """離散化状態の検証と質量行列."""

    def test_sizes(self):
        nodes, elems = _rect_mesh(2, 2)
        model = FEModel(nodes, elems)
        assert model.dim == 2
        assert model.n_nodes == 9
        assert model.ndof == 18
        assert not model.is_volume
        assert model.mass.shape == (18, 18)

    def test_unsorted_boundary(self):
        nodes, elems = _rect_mesh(1, 1)
        with pytest.raises(ValueError):
            FEModel(nodes, elems, boundary_dofs=np.array([3, 1]))

    def test_duplicate_boundary(self):
        nodes, elems = _rect_mesh(1, 1)
        with pytest.raises(ValueError):
            FEModel(nodes, elems, boundary_dofs=np.array([1, 1]))

    def test_out_of_range_boundary(self):
        nodes, elems = _rect_mesh(1, 1)
        with pytest.raises(ValueError):
            FEModel(nodes, elems, boundary_dofs=np.array([0, 8]))

    def test_invalid_density(self):
        nodes, elems = _rect_mesh(1, 1)
        with pytest.raises(ValueError):
            FEModel(nodes, elems, density=0.0)

    def test_mass_total(self):
        """質量行列の総和 = dim · ρ · A · t."""
        nodes, elems = _rect_mesh(3, 2, lx=2.0, ly=1.0)
        model = FEModel(nodes, elems, density=2.5, thickness=0.1)
        assert model.mass.sum() == pytest.approx(2 * 2.5 * 2.0 * 0.1)

    def test_mass_symmetric_positive(self):
        nodes, elems = _unit_tet()
        model = FEModel(nodes, elems)
        M = model.mass.toarray()
        np.testing.assert_allclose(M, M.T)
        assert np.all(np.linalg.eigvalsh(M) > 0.0)
        assert M.sum() == pytest.approx(3.0 / 6.0)

    def test_explicit_mass(self):
        nodes, elems = _rect_mesh(1, 1)
        model0 = FEModel(nodes, elems)
        model = FEModel(nodes, elems, mass=2.0 * assemble_mass_matrix(model0))
        assert model.mass.sum() == pytest.approx(2.0 * model0.mass.sum())


# ====================================================================
# ElasticityAssembler
# ====================================================================


class TestElasticityAssembler:
    """エネルギー・勾配・Hessian の整合性."""

    @pytest.mark.parametrize("formulation", ["LinearElasticity", "SaintVenant", "NeoHookean"])
    def test_gradient_fd(self, formulation):
        nodes, elems = _rect_mesh(2, 2)
        model = FEModel(nodes, elems, formulation=formulation)
        asm = ElasticityAssembler(E_MOD, NU)
        u = 0.02 * np.random.default_rng(0).standard_normal(model.ndof)

        g = asm.assemble_energy_gradient(formulation, model, u)
        g_fd = _fd_gradient(lambda v: asm.assemble_energy(formulation, model, v), u)
        np.testing.assert_allclose(g, g_fd, rtol=1e-5, atol=1e-6)

    @pytest.mark.parametrize("formulation", ["LinearElasticity", "SaintVenant", "NeoHookean"])
    def test_hessian_fd(self, formulation):
        nodes, elems = _rect_mesh(2, 1)
        model = FEModel(nodes, elems, formulation=formulation)
        asm = ElasticityAssembler(E_MOD, NU)
        u = 0.02 * np.random.default_rng(1).standard_normal(model.ndof)

        H = asm.assemble_energy_hessian(formulation, model, u).toarray()
        H_fd = _fd_jacobian(lambda v: asm.assemble_energy_gradient(formulation, model, v), u)
        np.testing.assert_allclose(H, H_fd, rtol=1e-5, atol=1e-5)
        np.testing.assert_allclose(H, H.T, atol=1e-10)

    def test_hessian_fd_3d(self):
        nodes, elems = _unit_tet()
        model = FEModel(nodes, elems, formulation="NeoHookean")
        asm = ElasticityAssembler(E_MOD, NU)
        u = 0.02 * np.random.default_rng(2).standard_normal(model.ndof)
        H = asm.assemble_energy_hessian("NeoHookean", model, u).toarray()
        H_fd = _fd_jacobian(lambda v: asm.assemble_energy_gradient("NeoHookean", model, v), u)
        np.testing.assert_allclose(H, H_fd, rtol=1e-5, atol=1e-5)

    @pytest.mark.parametrize("dim", [2, 3])
    def test_linear_problem_matches_hessian(self, dim):
        """線形定式化: Bᵀ D B と接線剛性が一致."""
        nodes, elems = _rect_mesh(2, 2) if dim == 2 else _unit_tet()
        model = FEModel(nodes, elems, thickness=0.5)
        asm = ElasticityAssembler(E_MOD, NU)
        K = asm.assemble_problem("LinearElasticity", model).toarray()
        H = asm.assemble_energy_hessian("LinearElasticity", model, np.zeros(model.ndof)).toarray()
        np.testing.assert_allclose(K, H, rtol=1e-10, atol=1e-10)

    def test_rigid_translation(self):
        """剛体並進で内力ゼロ・エネルギーゼロ."""
        nodes, elems = _rect_mesh(2, 2)
        model = FEModel(nodes, elems, formulation="NeoHookean")
        asm = ElasticityAssembler(E_MOD, NU)
        u = np.tile([0.3, -0.2], model.n_nodes)
        assert asm.assemble_energy("NeoHookean", model, u) == pytest.approx(0.0, abs=1e-12)
        np.testing.assert_allclose(asm.assemble_energy_gradient("NeoHookean", model, u), 0.0, atol=1e-12)

    def test_formulation_queries(self):
        asm = ElasticityAssembler(E_MOD, NU)
        assert asm.is_linear("LinearElasticity")
        assert not asm.is_linear("NeoHookean")
        assert asm.is_mixed("Stokes")
        assert not asm.is_mixed("SaintVenant")
        with pytest.raises(ValueError):
            asm.is_linear("Ogden")

    def test_assemble_problem_requires_linear(self):
        nodes, elems = _rect_mesh(1, 1)
        model = FEModel(nodes, elems, formulation="NeoHookean")
        with pytest.raises(AssertionError):
            ElasticityAssembler(E_MOD, NU).assemble_problem("NeoHookean", model)

    def test_protocol(self):
        assert isinstance(ElasticityAssembler(E_MOD, NU), ElementAssemblerProtocol)


class TestAssemblyCache:
    """Hessian のパターンキャッシュと並列 scatter."""

    def test_pattern_cached(self, capsys):
        """2 回目の Hessian 組み立ては mapped mode."""
        nodes, elems = _rect_mesh(2, 2)
        model = FEModel(nodes, elems, formulation="NeoHookean")
        asm = ElasticityAssembler(E_MOD, NU, verbose_cache=True)
        u0 = np.zeros(model.ndof)
        u1 = 0.01 * np.random.default_rng(3).standard_normal(model.ndof)

        asm.assemble_energy_hessian("NeoHookean", model, u0)
        H1 = asm.assemble_energy_hessian("NeoHookean", model, u1)
        out = capsys.readouterr().out
        assert "Cache computed" in out
        assert "Using cache" in out

        fresh = ElasticityAssembler(E_MOD, NU).assemble_energy_hessian("NeoHookean", model, u1)
        np.testing.assert_allclose(H1.toarray(), fresh.toarray(), atol=1e-12)

    def test_parallel_matches_serial(self):
        """並列 scatter（部分キャッシュの += 合算）が逐次と一致."""
        nodes, elems = _rect_mesh(4, 3)
        model = FEModel(nodes, elems, formulation="SaintVenant")
        serial = ElasticityAssembler(E_MOD, NU)
        parallel = ElasticityAssembler(E_MOD, NU, n_jobs=3, parallel_min_elements=1)
        rng = np.random.default_rng(4)

        # 1 回目は triplet mode、2 回目は mapped mode の合算経路
        for _ in range(2):
            u = 0.01 * rng.standard_normal(model.ndof)
            Hs = serial.assemble_energy_hessian("SaintVenant", model, u)
            Hp = parallel.assemble_energy_hessian("SaintVenant", model, u)
            np.testing.assert_allclose(Hp.toarray(), Hs.toarray(), atol=1e-12)

    def test_show_progress(self, capsys):
        nodes, elems = _rect_mesh(1, 1)
        model = FEModel(nodes, elems, formulation="NeoHookean")
        ElasticityAssembler(E_MOD, NU, show_progress=True).assemble_energy_hessian(
            "NeoHookean", model, np.zeros(model.ndof)
        )
        assert "[assemble_hessian]" in capsys.readouterr().out
