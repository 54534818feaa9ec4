import io

import numpy as np
import pytest

from slamopt.pose_graph import (
    PoseGraph,
    g2o_to_gtsam_information,
    gtsam_to_g2o_information,
    jr_inv,
)
from slamopt.se3 import SE3, SO3

IDENTITY_INFO = "1 0 0 0 0 0 1 0 0 0 0 1 0 0 0 1 0 0 1 0 1"

SAMPLE = (
    "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
    "VERTEX_SE3:QUAT 1 1 2 3 0 0 0 1\n"
    f"EDGE_SE3:QUAT 0 1 1 2 3 0 0 0 1 {IDENTITY_INFO}\n"
)


def _graph_from_truth(truth, pairs, perturb):
    graph = PoseGraph()
    lines = []
    for vid, pose in truth.items():
        start = perturb.get(vid, SE3()) @ pose
        w, x, y, z = start.rotation.quaternion()
        t = start.translation
        lines.append(f"VERTEX_SE3:QUAT {vid} {t[0]!r} {t[1]!r} {t[2]!r} {x!r} {y!r} {z!r} {w!r}")
    for i, j in pairs:
        m = truth[i].inverse() @ truth[j]
        w, x, y, z = m.rotation.quaternion()
        t = m.translation
        lines.append(
            f"EDGE_SE3:QUAT {i} {j} {t[0]!r} {t[1]!r} {t[2]!r} {x!r} {y!r} {z!r} {w!r} {IDENTITY_INFO}"
        )
    graph = PoseGraph.read(io.StringIO("\n".join(lines)))
    return graph


def test_read_parses_vertices_and_edges():
    graph = PoseGraph.read(io.StringIO(SAMPLE))
    assert list(graph.vertices) == [0, 1]
    assert graph.vertices[0].fixed
    assert not graph.vertices[1].fixed
    np.testing.assert_allclose(graph.vertices[1].pose.translation, [1, 2, 3])
    assert len(graph.edges) == 1
    edge = graph.edges[0]
    assert (edge.id, edge.source, edge.target) == (0, 0, 1)
    np.testing.assert_allclose(edge.information, np.eye(6))


def test_read_fills_symmetric_information():
    values = " ".join(str(k) for k in range(1, 22))
    text = (
        "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
        "VERTEX_SE3:QUAT 1 0 0 0 0 0 0 1\n"
        f"EDGE_SE3:QUAT 0 1 0 0 0 0 0 0 1 {values}\n"
    )
    info = PoseGraph.read(io.StringIO(text)).edges[0].information
    np.testing.assert_allclose(info, info.T)
    assert info[0, 5] == 6.0
    assert info[5, 5] == 21.0


def test_read_normalises_quaternion():
    text = "VERTEX_SE3:QUAT 3 0 0 0 0 0 2 2\n"
    q = PoseGraph.read(io.StringIO(text)).vertices[3].pose.rotation.quaternion()
    assert np.linalg.norm(q) == pytest.approx(1.0)
    assert q[0] == pytest.approx(q[3])


def test_unknown_tokens_are_skipped():
    graph = PoseGraph.read(io.StringIO("FIX 0\n" + SAMPLE))
    assert len(graph.vertices) == 2
    assert len(graph.edges) == 1


def test_edge_to_unknown_vertex_raises():
    text = f"VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\nEDGE_SE3:QUAT 0 7 0 0 0 0 0 0 1 {IDENTITY_INFO}\n"
    with pytest.raises(ValueError):
        PoseGraph.read(io.StringIO(text))


def test_truncated_input_raises():
    with pytest.raises(ValueError):
        PoseGraph.read(io.StringIO("VERTEX_SE3:QUAT 0 1 2 3"))


def test_duplicate_vertex_raises():
    text = "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\nVERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
    with pytest.raises(ValueError):
        PoseGraph.read(io.StringIO(text))


def test_load_reads_file(tmp_path):
    path = tmp_path / "graph.g2o"
    path.write_text(SAMPLE)
    graph = PoseGraph.load(path)
    assert len(graph.vertices) == 2


def test_load_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        PoseGraph.load(tmp_path / "missing.g2o")


def test_consistent_graph_has_zero_error():
    graph = PoseGraph.read(io.StringIO(SAMPLE))
    assert graph.error() == pytest.approx(0.0, abs=1e-12)


def test_error_is_weighted_by_information():
    text = (
        "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
        "VERTEX_SE3:QUAT 1 0 0 0 0 0 0 1\n"
        f"EDGE_SE3:QUAT 0 1 1 0 0 0 0 0 1 {IDENTITY_INFO}\n"
    )
    graph = PoseGraph.read(io.StringIO(text))
    base = graph.error()
    assert base == pytest.approx(1.0)
    graph.edges[0].information = 2.0 * np.eye(6)
    assert graph.error() == pytest.approx(2.0 * base)


def test_optimize_recovers_consistent_poses(capsys):
    truth = {
        0: SE3(),
        1: SE3(SO3.exp([0.0, 0.0, 0.3]), [1.0, 0.0, 0.0]),
        2: SE3(SO3.exp([0.1, 0.0, 0.5]), [1.5, 1.0, 0.2]),
    }
    perturb = {
        1: SE3(SO3.exp([0.05, -0.02, 0.03]), [0.1, -0.1, 0.05]),
        2: SE3(SO3.exp([-0.03, 0.04, 0.02]), [-0.1, 0.2, 0.1]),
    }
    graph = _graph_from_truth(truth, [(0, 1), (1, 2), (0, 2)], perturb)
    start = graph.error()
    assert start > 1e-3
    history = graph.optimize(30, verbose=True)
    assert history
    assert all(later <= earlier for earlier, later in zip(history, history[1:]))
    assert graph.error() < 1e-8
    np.testing.assert_allclose(graph.vertices[0].pose.translation, np.zeros(3))
    for vid in (1, 2):
        np.testing.assert_allclose(
            graph.vertices[vid].pose.translation, truth[vid].translation, atol=1e-4
        )
    assert "iteration= 0" in capsys.readouterr().out


def test_optimize_without_free_vertices_returns_empty():
    graph = PoseGraph.read(io.StringIO("VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"))
    assert graph.optimize(5) == []


def test_write_read_round_trip():
    graph = PoseGraph.read(io.StringIO(SAMPLE))
    graph.vertices[1].pose = SE3(SO3.exp([0.1, 0.2, 0.3]), [1.5, -2.25, 0.5])
    out = io.StringIO()
    graph.write(out)
    text = out.getvalue()
    assert text.splitlines()[0].startswith("VERTEX_SE3:QUAT 0 ")
    again = PoseGraph.read(io.StringIO(text))
    assert list(again.vertices) == list(graph.vertices)
    np.testing.assert_allclose(
        again.vertices[1].pose.translation, graph.vertices[1].pose.translation, rtol=1e-5
    )
    np.testing.assert_allclose(
        again.vertices[1].pose.rotation.quaternion(),
        graph.vertices[1].pose.rotation.quaternion(),
        atol=1e-5,
    )
    np.testing.assert_allclose(again.edges[0].information, graph.edges[0].information)


def test_jr_inv_is_identity_at_zero():
    np.testing.assert_allclose(jr_inv(np.zeros(6)), np.eye(6))


def test_jr_inv_structure_and_inputs_agree():
    xi = np.array([0.3, -0.2, 0.1, 0.05, 0.2, -0.1])
    j = jr_inv(xi)
    np.testing.assert_allclose(j, jr_inv(SE3.exp(xi)))
    np.testing.assert_allclose(j[3:, :3], np.zeros((3, 3)))
    np.testing.assert_allclose(j[:3, :3], j[3:, 3:])


def test_information_conversion_swaps_diagonal_blocks():
    info = np.diag([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    np.testing.assert_allclose(
        g2o_to_gtsam_information(info), np.diag([4.0, 5.0, 6.0, 1.0, 2.0, 3.0])
    )


def test_information_conversion_round_trip():
    rng = np.random.default_rng(3)
    a = rng.normal(size=(6, 6))
    info = a @ a.T
    back = gtsam_to_g2o_information(g2o_to_gtsam_information(info))
    np.testing.assert_allclose(back, info)
    np.testing.assert_allclose(g2o_to_gtsam_information(info)[:3, 3:], info[:3, 3:])


def test_information_conversion_rejects_bad_shape():
    with pytest.raises(ValueError):
        g2o_to_gtsam_information(np.eye(3))