"""Internal geometry helpers shared by the pipeline stages and the codecs.

All symbols here are private (underscore-prefixed).  Arrays follow one
convention throughout: ``vertices`` is ``(V, 3)`` float64 and ``faces`` is
``(F, 3)`` int64 with indices into ``vertices``.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
import numpy.typing as npt

_Array = npt.NDArray[np.floating]
_IndexArray = npt.NDArray[np.integer]


# ---------------------------------------------------------------------------
# Normals
# ---------------------------------------------------------------------------

def _unit_rows(v: _Array) -> _Array:
    """Normalise each row of *v*; zero-length rows stay zero."""
    n = np.linalg.norm(v, axis=-1, keepdims=True)
    return np.divide(v, n, out=np.zeros_like(v), where=n > 0.0)


def _face_normals(vertices: _Array, faces: _IndexArray, *, normalize: bool = True) -> _Array:
    """Per-face normals ``(v1 - v0) x (v2 - v0)``, shape ``(F, 3)``.

    With ``normalize=False`` the length of each normal is twice the face area,
    which is what area weighting and the quadric construction need.
    """
    if len(faces) == 0:
        return np.zeros((0, 3), dtype=np.float64)
    v0 = vertices[faces[:, 0]]
    v1 = vertices[faces[:, 1]]
    v2 = vertices[faces[:, 2]]
    fn = np.cross(v1 - v0, v2 - v0)
    return _unit_rows(fn) if normalize else fn


def _last_face_per_vertex(n_vertices: int, faces: _IndexArray) -> Tuple[_IndexArray, _IndexArray]:
    """Return ``(vertex_ids, face_ids)`` where ``face_ids[i]`` is the last face
    (in face order) that references ``vertex_ids[i]``.

    Vertices that no face references are absent from ``vertex_ids``.
    """
    flat = faces.ravel()
    if flat.size == 0:
        empty = np.zeros(0, dtype=np.int64)
        return empty, empty
    rev = flat[::-1]
    vertex_ids, first_in_rev = np.unique(rev, return_index=True)
    last_pos = flat.size - 1 - first_in_rev
    return vertex_ids.astype(np.int64), (last_pos // 3).astype(np.int64)


# ---------------------------------------------------------------------------
# Edge tables
# ---------------------------------------------------------------------------

def _face_edges(faces: _IndexArray) -> _IndexArray:
    """All directed half-edges ``(3F, 2)`` in face order: (a,b), (b,c), (c,a)."""
    return np.concatenate(
        [faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]], axis=0
    ) if len(faces) else np.zeros((0, 2), dtype=np.int64)


def _unique_edges(faces: _IndexArray) -> Tuple[_IndexArray, _IndexArray, _IndexArray]:
    """Undirected edges of *faces*.

    Returns
    -------
    edges:
        ``(E, 2)`` sorted vertex pairs, each undirected edge once.
    edge_face:
        ``(3F,)`` face index owning each half-edge (same order as
        :func:`_face_edges`).
    inverse:
        ``(3F,)`` index into *edges* for each half-edge.
    """
    half = np.sort(_face_edges(faces), axis=1)
    edge_face = np.tile(np.arange(len(faces), dtype=np.int64), 3)
    if len(half) == 0:
        return half, edge_face, np.zeros(0, dtype=np.int64)
    edges, inverse = np.unique(half, axis=0, return_inverse=True)
    return edges, edge_face, inverse.reshape(-1)


# ---------------------------------------------------------------------------
# Compaction
# ---------------------------------------------------------------------------

def _compact(vertices: _Array, faces: _IndexArray) -> Tuple[_Array, _IndexArray, _IndexArray]:
    """Drop unreferenced vertices and renumber *faces*.

    Kept vertices retain their relative order.  Returns
    ``(vertices, faces, kept)`` where ``kept`` lists the old indices of the
    surviving vertices.
    """
    used = np.zeros(len(vertices), dtype=bool)
    used[faces.ravel()] = True
    kept = np.flatnonzero(used)
    remap = np.full(len(vertices), -1, dtype=np.int64)
    remap[kept] = np.arange(len(kept), dtype=np.int64)
    return vertices[kept], remap[faces], kept


def _drop_degenerate(faces: _IndexArray) -> _IndexArray:
    """Remove faces that reference the same vertex twice."""
    if len(faces) == 0:
        return faces
    ok = (faces[:, 0] != faces[:, 1]) & (faces[:, 1] != faces[:, 2]) & (faces[:, 0] != faces[:, 2])
    return faces[ok]
