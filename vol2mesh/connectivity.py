"""Connected-component labelling of triangle meshes."""

from __future__ import annotations

from typing import Protocol

import numpy as np
import numpy.typing as npt
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components

from ._math import _face_edges

_IndexArray = npt.NDArray[np.integer]


class ConnectivityAnalyzer(Protocol):
    """Label the vertices of a mesh by connected component.

    Returns an ``(V,)`` int array.  Vertices that belong to a face get a label
    in ``[0, n_components)``; vertices no face references get ``-1``.
    """

    def __call__(self, n_vertices: int, faces: _IndexArray) -> _IndexArray:
        ...


class ScipyConnectivity:
    """Components of the vertex graph spanned by the face edges.

    Two faces belong to the same component when they are linked through a
    chain of shared vertices.  Labels are renumbered so that components
    appear in order of their lowest vertex index.
    """

    def __call__(self, n_vertices: int, faces: _IndexArray) -> _IndexArray:
        labels = np.full(n_vertices, -1, dtype=np.int64)
        if n_vertices == 0 or len(faces) == 0:
            return labels

        edges = _face_edges(np.asarray(faces, dtype=np.int64))
        graph = coo_matrix(
            (np.ones(len(edges), dtype=np.int8), (edges[:, 0], edges[:, 1])),
            shape=(n_vertices, n_vertices),
        )
        _, raw = connected_components(graph, directed=False)

        used = np.zeros(n_vertices, dtype=bool)
        used[faces.ravel()] = True
        # first occurrence order of the raw labels among used vertices
        uniq, first = np.unique(raw[used], return_index=True)
        order = np.argsort(first)
        remap = np.full(raw.max() + 1, -1, dtype=np.int64)
        remap[uniq[order]] = np.arange(len(uniq), dtype=np.int64)
        labels[used] = remap[raw[used]]
        return labels


def component_sizes(labels: _IndexArray) -> _IndexArray:
    """Vertex count per component label (``-1`` entries ignored)."""
    valid = labels[labels >= 0]
    if valid.size == 0:
        return np.zeros(0, dtype=np.int64)
    return np.bincount(valid).astype(np.int64)
