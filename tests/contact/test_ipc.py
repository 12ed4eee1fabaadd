"""ipctk による 3D 接触評価器のテスト."""

from __future__ import annotations

import numpy as np
import pytest

pytest.importorskip("ipctk")

from nlfem.assembly import ElasticityAssembler  # noqa: E402
from nlfem.contact import BarrierContact, IPCToolkitContact  # noqa: E402
from nlfem.core.contact import ContactEvaluatorProtocol  # noqa: E402
from nlfem.model import FEModel  # noqa: E402
from nlfem.problem import ContactConfig, NLProblem, ProblemConfig  # noqa: E402
from nlfem.rhs import RhsAssembler  # noqa: E402

DHAT2 = 0.04
E_MOD = 100.0
NU = 0.3

_UNIT_TET = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])


def _tet_faces(tet: list[int]) -> list[list[int]]:
    a, b, c, d = tet
    return [[a, c, b], [a, b, d], [a, d, c], [b, c, d]]


def _two_tets(gap: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """下の四面体 A の頂点 (0,0,1) の真上 gap に、上の四面体 B の底面がある配置."""
    upper = _UNIT_TET * np.array([1.2, 1.2, 1.0]) + np.array([-0.2, -0.2, 1.0 + gap])
    nodes = np.vstack([_UNIT_TET, upper])
    elems = np.array([[0, 1, 2, 3], [4, 5, 6, 7]], dtype=np.int64)
    faces = np.array(_tet_faces([0, 1, 2, 3]) + _tet_faces([4, 5, 6, 7]), dtype=np.int64)
    return nodes, elems, faces


def _evaluator(gap: float) -> tuple[IPCToolkitContact, np.ndarray, np.ndarray]:
    nodes, _, faces = _two_tets(gap)
    edges = np.zeros((0, 2), dtype=np.int64)
    return IPCToolkitContact(nodes, edges, faces), nodes, faces


def _potential(contact: IPCToolkitContact, rest, V, faces) -> float:
    edges = np.zeros((0, 2), dtype=np.int64)
    cs = contact.construct_constraint_set(V, edges, faces, DHAT2)
    return contact.compute_barrier_potential(rest, V, edges, faces, cs, DHAT2)


def _gradient(contact: IPCToolkitContact, rest, V, faces) -> np.ndarray:
    edges = np.zeros((0, 2), dtype=np.int64)
    cs = contact.construct_constraint_set(V, edges, faces, DHAT2)
    return contact.compute_barrier_potential_gradient(rest, V, edges, faces, cs, DHAT2)


def _rel_err(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b) / max(np.linalg.norm(b), 1e-30))


def _problem(gap: float) -> NLProblem:
    nodes, elems, faces = _two_tets(gap)
    model = FEModel(nodes, elems, formulation="LinearElasticity", collision_faces=faces)
    contact = ContactConfig(has_collision=True, barrier_stiffness=1.0, dhat_squared=DHAT2)
    return NLProblem(
        model,
        ElasticityAssembler(E_MOD, NU),
        RhsAssembler(model),
        config=ProblemConfig(contact=contact),
    )


def _drop_upper(problem: NLProblem, dz: float) -> np.ndarray:
    """上の四面体だけを z 方向に dz 動かす全 DOF 変位."""
    u = np.zeros((problem.model.n_nodes, 3))
    u[4:, 2] = dz
    return u.ravel()


# ====================================================================
# 評価器
# ====================================================================


class TestIPCToolkitContact:
    """IPCToolkitContact 単体."""

    def test_protocol(self):
        contact, _, _ = _evaluator(0.1)
        assert isinstance(contact, ContactEvaluatorProtocol)

    def test_barrier_active_and_inactive(self):
        """d < d̂ で正、d > d̂ で 0."""
        near, rest, faces = _evaluator(0.1)
        assert _potential(near, rest, rest, faces) > 0.0

        far, rest_far, faces_far = _evaluator(1.0)
        assert _potential(far, rest_far, rest_far, faces_far) == pytest.approx(0.0, abs=1e-14)

    def test_gradient_matches_fd(self):
        contact, rest, faces = _evaluator(0.1)
        V = rest + 1e-3 * np.random.default_rng(21).standard_normal(rest.shape)
        g = _gradient(contact, rest, V, faces)
        assert g.shape == (rest.size,)

        h = 1e-6
        fd = np.zeros(rest.size)
        flat = V.ravel()
        for i in range(rest.size):
            xp = flat.copy()
            xm = flat.copy()
            xp[i] += h
            xm[i] -= h
            fd[i] = (
                _potential(contact, rest, xp.reshape(V.shape), faces)
                - _potential(contact, rest, xm.reshape(V.shape), faces)
            ) / (2.0 * h)
        assert _rel_err(g, fd) < 1e-4

    def test_hessian_symmetric(self):
        contact, rest, faces = _evaluator(0.1)
        edges = np.zeros((0, 2), dtype=np.int64)
        cs = contact.construct_constraint_set(rest, edges, faces, DHAT2)
        H = contact.compute_barrier_potential_hessian(rest, rest, edges, faces, cs, DHAT2).toarray()
        assert H.shape == (rest.size, rest.size)
        np.testing.assert_allclose(H, H.T, atol=1e-10 * np.abs(H).max())
        assert np.abs(H).max() > 0.0

    def test_psd_projection(self):
        """CLAMP 射影後の Hessian は半正定値."""
        nodes, _, faces = _two_tets(0.1)
        contact = IPCToolkitContact(
            nodes, np.zeros((0, 2), dtype=np.int64), faces, project_hessian_to_psd=True
        )
        edges = np.zeros((0, 2), dtype=np.int64)
        cs = contact.construct_constraint_set(nodes, edges, faces, DHAT2)
        H = contact.compute_barrier_potential_hessian(nodes, nodes, edges, faces, cs, DHAT2)
        eig = np.linalg.eigvalsh(H.toarray())
        assert eig.min() >= -1e-8 * max(abs(eig.max()), 1.0)


# ====================================================================
# NLProblem との結合
# ====================================================================


class TestProblem3D:
    """3D 接触付き NLProblem."""

    def test_default_evaluator_by_dimension(self):
        assert isinstance(_problem(0.1).contact, IPCToolkitContact)

        nodes = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        model = FEModel(nodes, np.array([[0, 1, 2]]), collision_edges=[[0, 1], [1, 2], [2, 0]])
        problem = NLProblem(
            model,
            ElasticityAssembler(E_MOD, NU),
            RhsAssembler(model),
            config=ProblemConfig(contact=ContactConfig(has_collision=True)),
        )
        assert isinstance(problem.contact, BarrierContact)

    def test_barrier_in_energy(self):
        near = _problem(0.1)
        assert near.value(np.zeros(near.reduced_size)) > 0.0
        far = _problem(1.0)
        assert far.value(np.zeros(far.reduced_size)) == pytest.approx(0.0, abs=1e-12)

    def test_penetrating_step_invalid(self):
        """上の四面体が下の四面体の頂点を通り抜けるステップは無効."""
        problem = _problem(0.1)
        x0 = np.zeros(problem.full_size)
        assert not problem.is_step_valid(x0, _drop_upper(problem, -1.5))
        assert problem.is_step_valid(x0, _drop_upper(problem, -0.05))
        assert problem.is_step_valid(x0, x0)
