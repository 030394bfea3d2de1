"""Feature-preserving Laplacian smoothing.

Each pass moves every movable vertex a fraction *relaxation* of the way
toward the mean of its smoothing neighbours.  Vertices are classified once,
before the first pass:

* **simple** vertices touch no feature edge and relax toward all of their
  edge neighbours;
* vertices on exactly two feature edges that continue within
  ``EDGE_ANGLE`` of a straight line relax along those two edges only;
* all other vertices (corners, ends of feature lines, vertices on three or
  more feature edges, unreferenced vertices) stay fixed.

A feature edge is a boundary edge, a non-manifold edge, or an interior edge
whose two faces meet at more than ``FEATURE_ANGLE`` degrees.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

import numpy as np
import numpy.typing as npt
from scipy import sparse

from ._math import _face_normals, _unique_edges
from .progress import ProgressReporter, ensure_reporter

logger = logging.getLogger(__name__)

_Array = npt.NDArray[np.floating]
_IndexArray = npt.NDArray[np.integer]

FEATURE_ANGLE = 45.0
EDGE_ANGLE = 15.0
RELAXATION_FACTOR = 0.05


class Smoother(Protocol):
    """Return smoothed vertex positions; connectivity is left untouched."""

    def __call__(
        self,
        vertices: _Array,
        faces: _IndexArray,
        iterations: int,
        progress: Optional[ProgressReporter] = None,
    ) -> _Array:
        ...


def _feature_edges(vertices: _Array, faces: _IndexArray, feature_angle: float) -> Tuple[_IndexArray, _IndexArray]:
    """Return ``(edges, is_feature)`` for the undirected edges of *faces*."""
    edges, edge_face, inverse = _unique_edges(faces)
    counts = np.bincount(inverse, minlength=len(edges))
    feature = counts != 2

    interior = np.flatnonzero(counts[inverse] == 2)
    if interior.size:
        order = interior[np.argsort(inverse[interior], kind="stable")]
        pairs = order.reshape(-1, 2)
        normals = _face_normals(vertices, faces)
        f0, f1 = edge_face[pairs[:, 0]], edge_face[pairs[:, 1]]
        cos = np.einsum("ij,ij->i", normals[f0], normals[f1])
        sharp = cos < np.cos(np.radians(feature_angle))
        feature[inverse[pairs[sharp, 0]]] = True
    return edges, feature


def _smoothing_operator(
    vertices: _Array, faces: _IndexArray, feature_angle: float, edge_angle: float
) -> Tuple[sparse.csr_matrix, _IndexArray]:
    """Neighbour-mean operator and the indices of movable vertices."""
    n = len(vertices)
    edges, feature = _feature_edges(vertices, faces, feature_angle)
    used = np.zeros(n, dtype=bool)
    used[faces.ravel()] = True

    fe = edges[feature]
    n_feature = np.bincount(fe.ravel(), minlength=n)
    simple = used & (n_feature == 0)

    # simple vertices: every incident edge
    src = np.concatenate([edges[:, 0], edges[:, 1]])
    dst = np.concatenate([edges[:, 1], edges[:, 0]])
    keep = simple[src]
    rows, cols = [src[keep]], [dst[keep]]

    # two-feature-edge vertices: the two feature edges, if nearly collinear
    fsrc = np.concatenate([fe[:, 0], fe[:, 1]])
    fdst = np.concatenate([fe[:, 1], fe[:, 0]])
    on_line = n_feature[fsrc] == 2
    fsrc, fdst = fsrc[on_line], fdst[on_line]
    order = np.argsort(fsrc, kind="stable")
    fsrc, fdst = fsrc[order], fdst[order]
    line_vertices = fsrc[0::2]
    if line_vertices.size:
        prev, nxt = fdst[0::2], fdst[1::2]
        p = vertices[line_vertices]
        l1 = p - vertices[prev]
        l2 = vertices[nxt] - p
        n1 = np.linalg.norm(l1, axis=1)
        n2 = np.linalg.norm(l2, axis=1)
        denom = np.where((n1 > 0) & (n2 > 0), n1 * n2, 1.0)
        cos = np.einsum("ij,ij->i", l1, l2) / denom
        straight = (cos >= np.cos(np.radians(edge_angle))) & (n1 > 0) & (n2 > 0)
        line_vertices = line_vertices[straight]
        rows += [line_vertices, line_vertices]
        cols += [prev[straight], nxt[straight]]

    r = np.concatenate(rows)
    c = np.concatenate(cols)
    adj = sparse.csr_matrix((np.ones(len(r)), (r, c)), shape=(n, n))
    degree = np.asarray(adj.sum(axis=1)).ravel()
    movable = np.flatnonzero(degree > 0)
    inv = np.zeros(n)
    inv[movable] = 1.0 / degree[movable]
    return sparse.diags(inv) @ adj, movable


class LaplacianSmoother:
    """Iterative relaxation with fixed feature and boundary handling.

    Parameters
    ----------
    relaxation:
        Fraction of the distance to the neighbour mean moved per pass.
    feature_angle:
        Dihedral angle in degrees above which an edge counts as a feature.
    edge_angle:
        Maximum bend in degrees along a feature line for its vertices to
        remain movable.
    """

    stage = "Smooth"

    def __init__(
        self,
        relaxation: float = RELAXATION_FACTOR,
        feature_angle: float = FEATURE_ANGLE,
        edge_angle: float = EDGE_ANGLE,
    ) -> None:
        self.relaxation = relaxation
        self.feature_angle = feature_angle
        self.edge_angle = edge_angle

    def __call__(
        self,
        vertices: _Array,
        faces: _IndexArray,
        iterations: int,
        progress: Optional[ProgressReporter] = None,
    ) -> _Array:
        progress = ensure_reporter(progress)
        pos = np.array(vertices, dtype=np.float64)
        if iterations <= 0 or len(faces) == 0:
            progress.update(self.stage, 1.0)
            return pos

        op, movable = _smoothing_operator(pos, np.asarray(faces, dtype=np.int64), self.feature_angle, self.edge_angle)
        logger.debug("%d of %d vertices movable", len(movable), len(pos))
        for it in range(iterations):
            target = op @ pos
            pos[movable] += self.relaxation * (target[movable] - pos[movable])
            progress.update(self.stage, (it + 1) / iterations)
        return pos
