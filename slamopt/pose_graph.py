"""Pose-graph optimisation over SE(3) poses stored in the g2o text format.

Vertices are lines ``VERTEX_SE3:QUAT id tx ty tz qx qy qz qw``. Edges are
lines ``EDGE_SE3:QUAT id1 id2 tx ty tz qx qy qz qw`` followed by the 21
upper-triangular entries of the 6x6 information matrix, row by row. The
information matrix is ordered translation first, then rotation, like the
tangent vectors of :class:`~slamopt.se3.SE3`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from os import PathLike
from typing import Callable, Iterator, Sequence, TextIO, TypeVar

import numpy as np
from scipy.sparse import coo_matrix
from scipy.sparse import identity as sparse_identity
from scipy.sparse.linalg import spsolve

from .se3 import SE3, SO3, hat

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"

_T = TypeVar("_T")

_TAU = 1e-5
_MAX_LEVENBERG_TRIES = 10
_GOOD_STEP_UPPER_SCALE = 2.0 / 3.0
_GOOD_STEP_LOWER_SCALE = 1.0 / 3.0


def jr_inv(error: SE3 | Sequence[float]) -> np.ndarray:
    """Return the approximate inverse right Jacobian of SE(3) for ``error``.

    ``error`` is either a motion or its tangent vector ``(upsilon, omega)``.
    """
    motion = error if isinstance(error, SE3) else SE3.exp(error)
    phi_hat = hat(motion.rotation.log())
    j = np.zeros((6, 6))
    j[:3, :3] = phi_hat
    j[:3, 3:] = hat(motion.translation)
    j[3:, 3:] = phi_hat
    return 0.5 * j + np.eye(6)


def _information(info: Sequence[Sequence[float]]) -> np.ndarray:
    matrix = np.asarray(info, dtype=float)
    if matrix.shape != (6, 6):
        raise ValueError(f"information matrix must be 6x6, got shape {matrix.shape}")
    return matrix


def _swap_diagonal_blocks(info: Sequence[Sequence[float]]) -> np.ndarray:
    m = _information(info)
    out = np.array(m)
    out[:3, :3] = m[3:, 3:]
    out[3:, 3:] = m[:3, :3]
    return out


def g2o_to_gtsam_information(info: Sequence[Sequence[float]]) -> np.ndarray:
    """Reorder a g2o information matrix (translation first) for rotation-first use.

    The two diagonal blocks trade places; the off-diagonal blocks stay put.
    """
    return _swap_diagonal_blocks(info)


def gtsam_to_g2o_information(info: Sequence[Sequence[float]]) -> np.ndarray:
    """Undo :func:`g2o_to_gtsam_information`."""
    return _swap_diagonal_blocks(info)


@dataclass
class PoseVertex:
    """A pose to be estimated; fixed vertices are never moved."""

    id: int
    pose: SE3
    fixed: bool = False


@dataclass
class PoseEdge:
    """A relative-pose measurement from ``source`` to ``target``."""

    id: int
    source: int
    target: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))


def _take(tokens: Iterator[str], convert: Callable[[str], _T], what: str) -> _T:
    try:
        token = next(tokens)
    except StopIteration:
        raise ValueError(f"unexpected end of input while reading {what}") from None
    try:
        return convert(token)
    except ValueError:
        raise ValueError(f"invalid {what}: {token!r}") from None


def _read_pose(tokens: Iterator[str]) -> SE3:
    data = [_take(tokens, float, "pose value") for _ in range(7)]
    rotation = SO3.from_quaternion(data[6], data[3], data[4], data[5])
    return SE3(rotation, np.array(data[:3]))


def _format_pose(pose: SE3) -> str:
    tx, ty, tz = pose.translation
    w, x, y, z = pose.rotation.quaternion()
    return f"{tx:g} {ty:g} {tz:g} {x:g} {y:g} {z:g} {w:g}"


@dataclass
class PoseGraph:
    """Vertices keyed by id, in insertion order, and the edges between them."""

    vertices: dict[int, PoseVertex] = field(default_factory=dict)
    edges: list[PoseEdge] = field(default_factory=list)

    @classmethod
    def read(cls, stream: TextIO) -> PoseGraph:
        """Read a graph from g2o text; vertex 0 is fixed.

        Tokens that are neither a vertex nor an edge tag are skipped. An edge
        must refer to vertices read before it.
        """
        graph = cls()
        tokens = iter(stream.read().split())
        for tag in tokens:
            if tag == VERTEX_TAG:
                index = _take(tokens, int, "vertex id")
                if index in graph.vertices:
                    raise ValueError(f"duplicate vertex id {index}")
                pose = _read_pose(tokens)
                graph.vertices[index] = PoseVertex(index, pose, fixed=index == 0)
            elif tag == EDGE_TAG:
                source = _take(tokens, int, "edge vertex id")
                target = _take(tokens, int, "edge vertex id")
                for vid in (source, target):
                    if vid not in graph.vertices:
                        raise ValueError(f"edge refers to unknown vertex {vid}")
                measurement = _read_pose(tokens)
                info = np.zeros((6, 6))
                for i in range(6):
                    for j in range(i, 6):
                        value = _take(tokens, float, "information entry")
                        info[i, j] = value
                        info[j, i] = value
                graph.edges.append(
                    PoseEdge(len(graph.edges), source, target, measurement, info)
                )
        return graph

    @classmethod
    def load(cls, path: str | PathLike[str]) -> PoseGraph:
        """Read a graph from the g2o file at ``path``."""
        with open(path, encoding="utf-8") as stream:
            return cls.read(stream)

    def _edge_error(self, edge: PoseEdge) -> np.ndarray:
        vi = self.vertices[edge.source].pose
        vj = self.vertices[edge.target].pose
        return (edge.measurement.inverse() @ vi.inverse() @ vj).log()

    def _edge_jacobians(self, edge: PoseEdge, error: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        vj = self.vertices[edge.target].pose
        j = jr_inv(SE3.exp(error))
        adj = vj.inverse().adjoint()
        return -j @ adj, j @ adj

    def error(self) -> float:
        """Return the sum over edges of ``e^T Omega e``."""
        total = 0.0
        for edge in self.edges:
            e = self._edge_error(edge)
            total += float(e @ edge.information @ e)
        return total

    def _build_system(self, index: dict[int, int]):
        n = 6 * len(index)
        rows: list[np.ndarray] = []
        cols: list[np.ndarray] = []
        vals: list[np.ndarray] = []
        b = np.zeros(n)
        chi2 = 0.0
        for edge in self.edges:
            e = self._edge_error(edge)
            omega = edge.information
            chi2 += float(e @ omega @ e)
            ji, jj = self._edge_jacobians(edge, e)
            blocks = [
                (index[vid], jac)
                for vid, jac in ((edge.source, ji), (edge.target, jj))
                if vid in index
            ]
            for a, ja in blocks:
                b[a:a + 6] -= ja.T @ omega @ e
                for c, jc in blocks:
                    rows.append(np.repeat(np.arange(a, a + 6), 6))
                    cols.append(np.tile(np.arange(c, c + 6), 6))
                    vals.append((ja.T @ omega @ jc).ravel())
        if vals:
            h = coo_matrix(
                (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                shape=(n, n),
            ).tocsc()
        else:
            h = coo_matrix((n, n)).tocsc()
        return h, b, chi2

    def _apply(self, dx: np.ndarray, index: dict[int, int]) -> None:
        for vid, offset in index.items():
            vertex = self.vertices[vid]
            delta = dx[offset:offset + 6]
            step = SE3(SO3.exp(delta[3:]), delta[:3])
            vertex.pose = step @ vertex.pose

    def optimize(self, iterations: int = 30, verbose: bool = False) -> list[float]:
        """Run Levenberg-Marquardt for at most ``iterations`` iterations.

        Poses are updated by left multiplication. Returns the total error
        after each accepted iteration; stops early when no step improves it.
        """
        if iterations < 0:
            raise ValueError("iterations must not be negative")
        free = [vid for vid, vertex in self.vertices.items() if not vertex.fixed]
        index = {vid: 6 * k for k, vid in enumerate(free)}
        history: list[float] = []
        if not index:
            return history

        n = 6 * len(index)
        eye = sparse_identity(n, format="csc")
        lam: float | None = None
        ni = 2.0
        for iteration in range(iterations):
            h, b, chi2 = self._build_system(index)
            if lam is None:
                max_diag = float(h.diagonal().max()) if n else 0.0
                lam = _TAU * max_diag if max_diag > 0.0 else _TAU
            backup = {vid: self.vertices[vid].pose for vid in index}
            accepted = False
            new_chi2 = chi2
            tries = 0
            while tries < _MAX_LEVENBERG_TRIES and math.isfinite(lam):
                tries += 1
                dx = np.asarray(spsolve(h + lam * eye, b), dtype=float).ravel()
                rho = -1.0
                if np.all(np.isfinite(dx)):
                    self._apply(dx, index)
                    new_chi2 = self.error()
                    scale = float(dx @ (lam * dx + b)) + 1e-3
                    if math.isfinite(new_chi2):
                        rho = (chi2 - new_chi2) / scale
                if rho > 0.0:
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, _GOOD_STEP_UPPER_SCALE)
                    lam *= max(_GOOD_STEP_LOWER_SCALE, alpha)
                    ni = 2.0
                    accepted = True
                    break
                for vid, pose in backup.items():
                    self.vertices[vid].pose = pose
                new_chi2 = chi2
                lam *= ni
                ni *= 2.0
            if verbose:
                print(
                    f"iteration= {iteration}\t chi2= {new_chi2:f}\t "
                    f"edges= {len(self.edges)}\t lambda= {lam:f}\t levenbergIter= {tries}"
                )
            if not accepted:
                break
            history.append(new_chi2)
        return history

    def write(self, stream: TextIO) -> None:
        """Write all vertices, then all edges, in g2o text form."""
        for vertex in self.vertices.values():
            stream.write(f"{VERTEX_TAG} {vertex.id} {_format_pose(vertex.pose)}\n")
        for edge in self.edges:
            info = edge.information
            entries = " ".join(f"{info[i, j]:g}" for i in range(6) for j in range(i, 6))
            stream.write(
                f"{EDGE_TAG} {edge.source} {edge.target} "
                f"{_format_pose(edge.measurement)} {entries} \n"
            )