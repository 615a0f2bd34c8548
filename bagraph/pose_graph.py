"""Pose graphs of SE(3) vertices in the g2o text format, optimised on the Lie algebra."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass, field
from os import PathLike
from typing import Callable, Iterator, Sequence, TextIO, TypeVar

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from .se3 import SE3, jr_inv, so3_exp

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
RESULT_FILE = "result_lie.g2o"

_TAU = 1e-5
_MAX_TRIALS = 10
_GOOD_STEP_LOWER = 1.0 / 3.0
_GOOD_STEP_UPPER = 2.0 / 3.0

_T = TypeVar("_T")


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
    return SE3.from_quaternion([data[6], data[3], data[4], data[5]], data[:3])


def _format_pose(pose: SE3) -> str:
    w, x, y, z = pose.unit_quaternion()
    translation = " ".join(f"{v:g}" for v in pose.translation)
    return f"{translation} {x:g} {y:g} {z:g} {w:g}"


def _oplus(update: np.ndarray) -> SE3:
    rotation = (
        so3_exp([update[3], 0.0, 0.0])
        @ so3_exp([0.0, update[4], 0.0])
        @ so3_exp([0.0, 0.0, update[5]])
    )
    return SE3(rotation, update[:3])


@dataclass
class PoseVertex:
    """A pose to be estimated; fixed vertices are not moved by optimisation."""

    id: int
    estimate: SE3 = field(default_factory=SE3)
    fixed: bool = False


@dataclass
class PoseEdge:
    """A relative-pose measurement from vertex ``source`` to vertex ``target``."""

    id: int
    source: int
    target: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))

    def _poses(self, graph: "PoseGraph") -> tuple[SE3, SE3]:
        return graph.vertices[self.source].estimate, graph.vertices[self.target].estimate

    def error(self, graph: "PoseGraph") -> np.ndarray:
        """Return ``log(Z^-1 Ti^-1 Tj)`` for the current estimates."""
        first, second = self._poses(graph)
        return (self.measurement.inverse() @ first.inverse() @ second).log()

    def jacobians(self, graph: "PoseGraph") -> tuple[np.ndarray, np.ndarray]:
        """Return the error's Jacobians with respect to the source and target poses."""
        _, second = self._poses(graph)
        j = jr_inv(SE3.exp(self.error(graph)))
        adj = second.inverse().adjoint()
        return -j @ adj, j @ adj


@dataclass
class PoseGraph:
    """Pose vertices keyed by id, in insertion order, and the edges between them."""

    vertices: dict[int, PoseVertex] = field(default_factory=dict)
    edges: list[PoseEdge] = field(default_factory=list)

    @classmethod
    def read(cls, stream: TextIO) -> "PoseGraph":
        """Read vertices and edges from g2o text; unknown tokens are skipped.

        Vertex 0 is fixed. Edge ids are assigned in reading order.
        """
        graph = cls()
        tokens = iter(stream.read().split())
        for tag in tokens:
            if tag == VERTEX_TAG:
                index = _take(tokens, int, "vertex id")
                pose = _read_pose(tokens)
                if index in graph.vertices:
                    raise ValueError(f"duplicate vertex id {index}")
                graph.vertices[index] = PoseVertex(index, pose, fixed=index == 0)
            elif tag == EDGE_TAG:
                source = _take(tokens, int, "vertex id")
                target = _take(tokens, int, "vertex id")
                for index in (source, target):
                    if index not in graph.vertices:
                        raise ValueError(f"edge refers to unknown vertex {index}")
                measurement = _read_pose(tokens)
                information = np.zeros((6, 6))
                for i in range(6):
                    for j in range(i, 6):
                        value = _take(tokens, float, "information value")
                        information[i, j] = value
                        information[j, i] = value
                graph.edges.append(
                    PoseEdge(len(graph.edges), source, target, measurement, information)
                )
        return graph

    @classmethod
    def load(cls, path: str | PathLike) -> "PoseGraph":
        """Read a graph from a g2o file."""
        with open(path, encoding="utf-8") as handle:
            return cls.read(handle)

    def write(self, stream: TextIO) -> None:
        """Write the graph as g2o SE3 quaternion vertices and edges."""
        for vertex in self.vertices.values():
            stream.write(f"{VERTEX_TAG} {vertex.id} {_format_pose(vertex.estimate)}\n")
        for edge in self.edges:
            info = "".join(
                f"{edge.information[i, j]:g} " for i in range(6) for j in range(i, 6)
            )
            stream.write(
                f"{EDGE_TAG} {edge.source} {edge.target} "
                f"{_format_pose(edge.measurement)} {info}\n"
            )

    def save(self, path: str | PathLike) -> None:
        """Write the graph to a g2o file."""
        with open(path, "w", encoding="utf-8") as handle:
            self.write(handle)

    def total_error(self) -> float:
        """Return the sum of ``e^T Ω e`` over all edges."""
        total = 0.0
        for edge in self.edges:
            e = edge.error(self)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, index: dict[int, int]):
        size = 6 * len(index)
        gradient = np.zeros(size)
        rows: list[np.ndarray] = []
        cols: list[np.ndarray] = []
        data: list[np.ndarray] = []
        offsets = np.arange(6)
        for edge in self.edges:
            e = edge.error(self)
            ji, jj = edge.jacobians(self)
            omega = edge.information
            blocks = [(index.get(edge.source), ji), (index.get(edge.target), jj)]
            for a, ja in blocks:
                if a is None:
                    continue
                gradient[6 * a : 6 * a + 6] -= ja.T @ omega @ e
                for c, jc in blocks:
                    if c is None:
                        continue
                    rows.append(np.repeat(6 * a + offsets, 6))
                    cols.append(np.tile(6 * c + offsets, 6))
                    data.append((ja.T @ omega @ jc).ravel())
        if data:
            hessian = coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(size, size),
            ).tocsc()
        else:
            hessian = coo_matrix((size, size)).tocsc()
        return hessian, gradient

    def optimize(self, iterations: int = 30, verbose: bool = False) -> int:
        """Run Levenberg-Marquardt on the free vertices; return the iterations done."""
        free = [vertex for vertex in self.vertices.values() if not vertex.fixed]
        if iterations <= 0 or not free or not self.edges:
            return 0
        index = {vertex.id: k for k, vertex in enumerate(free)}
        size = 6 * len(free)
        chi = self.total_error()
        lam: float | None = None
        ni = 2.0
        done = 0
        for iteration in range(iterations):
            hessian, gradient = self._linearize(index)
            if lam is None:
                lam = _TAU * float(np.abs(hessian.diagonal()).max())
                if lam <= 0.0:
                    lam = _TAU
            rho = -1.0
            tries = 0
            while rho < 0.0 and tries < _MAX_TRIALS:
                tries += 1
                damped = (hessian + lam * identity(size, format="csc")).tocsc()
                dx = np.atleast_1d(spsolve(damped, gradient))
                saved = {vertex.id: vertex.estimate for vertex in free}
                new_chi = math.inf
                if np.all(np.isfinite(dx)):
                    for vertex in free:
                        k = index[vertex.id]
                        vertex.estimate = _oplus(dx[6 * k : 6 * k + 6]) @ vertex.estimate
                    new_chi = self.total_error()
                scale = lam * float(dx @ dx) + float(dx @ gradient) + 1e-3
                rho = (chi - new_chi) / scale if math.isfinite(new_chi) else -1.0
                if rho > 0.0 and math.isfinite(new_chi):
                    alpha = min(1.0 - (2.0 * rho - 1.0) ** 3, _GOOD_STEP_UPPER)
                    lam *= max(_GOOD_STEP_LOWER, alpha)
                    ni = 2.0
                    chi = new_chi
                else:
                    for vertex in free:
                        vertex.estimate = saved[vertex.id]
                    lam *= ni
                    ni *= 2.0
                    rho = -1.0
            done += 1
            if verbose:
                print(
                    f"iteration= {iteration}\t chi2= {chi:.6f}\t edges= {len(self.edges)}"
                    f"\t lambda= {lam:.6f}\t levenbergIter= {tries}"
                )
            if rho < 0.0:
                break
        return done


def main(argv: Sequence[str] | None = None) -> int:
    """Optimise the pose graph in the file named on the command line."""
    args = list(sys.argv if argv is None else argv)
    if len(args) != 2:
        print("Usage: pose_graph_g2o_SE3_lie sphere.g2o")
        return 1
    path = args[1]
    try:
        graph = PoseGraph.load(path)
    except OSError:
        print(f"file {path} does not exist.")
        return 1
    except ValueError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("prepare optimizing ...")
    print("calling optimizing ...")
    graph.optimize(30, verbose=True)
    print("saving optimization results ...")
    graph.save(RESULT_FILE)
    return 0