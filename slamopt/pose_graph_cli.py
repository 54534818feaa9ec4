"""Command-line programs that optimise a pose graph read from a g2o file.

Each program takes the path of a g2o file, optimises the graph and writes
the result into the current directory.
"""

from __future__ import annotations

import sys
from typing import Sequence

from .pose_graph import PoseGraph


def _load_graph(argv: Sequence[str] | None, usage: str, announce: str = "") -> PoseGraph | None:
    """Read the graph named on the command line, or report why it cannot be read."""
    args = list(sys.argv if argv is None else argv)
    if len(args) != 2:
        print(f"Usage: {usage}")
        return None
    path = args[1]
    try:
        stream = open(path, encoding="utf-8")
    except OSError:
        print(f"file {path} does not exist.")
        return None
    if announce:
        print(announce)
    with stream:
        try:
            graph = PoseGraph.read(stream)
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return None
    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    return graph


def _save(graph: PoseGraph, filename: str) -> None:
    with open(filename, "w", encoding="utf-8") as out:
        graph.write(out)


def _run_g2o_style(argv: Sequence[str] | None, usage: str, output: str) -> int:
    graph = _load_graph(argv, usage)
    if graph is None:
        return 1
    print("prepare optimizing ...")
    print("calling optimizing ...")
    graph.optimize(30, verbose=True)
    print("saving optimization results ...")
    _save(graph, output)
    return 0


def main_se3(argv: Sequence[str] | None = None) -> int:
    """Optimise the graph in ``argv[1]`` and save it to ``result.g2o``."""
    return _run_g2o_style(argv, "pose_graph_g2o_SE3 sphere.g2o", "result.g2o")


def main_lie_algebra(argv: Sequence[str] | None = None) -> int:
    """Optimise the graph in ``argv[1]`` and save it to ``result_lie.g2o``."""
    return _run_g2o_style(argv, "pose_graph_g2o_SE3_lie sphere.g2o", "result_lie.g2o")


def main_gtsam(argv: Sequence[str] | None = None) -> int:
    """Optimise the graph in ``argv[1]`` with the vertex of smallest id held
    fixed, report the errors before and after, and save to ``result_gtsam.g2o``.

    Errors are reported as half the sum of ``e^T Omega e`` over the edges.
    """
    graph = _load_graph(argv, "pose_graph_gtsam sphere.g2o", announce="reading from g2o file")
    if graph is None:
        return 1

    graph.vertices = dict(sorted(graph.vertices.items()))
    for vertex in graph.vertices.values():
        vertex.fixed = False
    first = next(iter(graph.vertices.values()), None)
    if first is not None:
        print("Adding prior to g2o file ")
        first.fixed = True

    print("optimizing the factor graph")
    initial_error = 0.5 * graph.error()
    graph.optimize(20, verbose=True)
    print("Optimization complete")
    print(f"initial error: {initial_error:g}")
    print(f"final error: {0.5 * graph.error():g}")

    print("done. write to g2o ... ")
    _save(graph, "result_gtsam.g2o")
    print("done.")
    return 0