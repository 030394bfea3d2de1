"""Indexed triangle mesh shared by every pipeline stage."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np
import numpy.typing as npt

_Array = npt.NDArray[np.floating]
_IndexArray = npt.NDArray[np.integer]


class Mesh:
    """An indexed triangle surface.

    A ``Mesh`` owns a ``(V, 3)`` float64 vertex array and an ``(F, 3)`` int64
    face array whose entries index into the vertices.  The surface may be
    non-manifold and may consist of several disconnected parts.

    Pipeline stages mutate a mesh in place through :meth:`replace` and report
    statistics instead of returning a new object, so a single instance flows
    from extraction (or import) to export.

    Parameters
    ----------
    vertices:
        ``(V, 3)`` vertex positions.
    faces:
        ``(F, 3)`` vertex indices, each in ``[0, V)``.
    point_data, cell_data:
        Optional per-vertex / per-face attribute arrays.  They are carried
        along but not interpreted by the core transforms; stages that change
        topology drop them.
    """

    def __init__(
        self,
        vertices: npt.ArrayLike,
        faces: npt.ArrayLike,
        *,
        point_data: Optional[Dict[str, np.ndarray]] = None,
        cell_data: Optional[Dict[str, np.ndarray]] = None,
    ) -> None:
        self.vertices, self.faces = self._validate(vertices, faces)
        self.point_data: Dict[str, np.ndarray] = dict(point_data or {})
        self.cell_data: Dict[str, np.ndarray] = dict(cell_data or {})

    @staticmethod
    def _validate(vertices: npt.ArrayLike, faces: npt.ArrayLike) -> Tuple[_Array, _IndexArray]:
        v = np.array(vertices, dtype=np.float64)
        if v.size == 0:
            v = v.reshape(0, 3)
        f = np.array(faces, dtype=np.int64)
        if f.size == 0:
            f = f.reshape(0, 3)
        if v.ndim != 2 or v.shape[1] != 3:
            raise ValueError(f"vertices must have shape (V, 3), got {v.shape}")
        if f.ndim != 2 or f.shape[1] != 3:
            raise ValueError(f"faces must have shape (F, 3), got {f.shape}")
        if len(f) and (f.min() < 0 or f.max() >= len(v)):
            raise ValueError(
                f"face indices must lie in [0, {len(v)}), got [{f.min()}, {f.max()}]"
            )
        return np.ascontiguousarray(v), np.ascontiguousarray(f)

    @classmethod
    def empty(cls) -> Mesh:
        """A mesh without vertices or faces."""
        return cls(np.zeros((0, 3)), np.zeros((0, 3), dtype=np.int64))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def n_vertices(self) -> int:
        return int(len(self.vertices))

    @property
    def n_faces(self) -> int:
        return int(len(self.faces))

    @property
    def is_empty(self) -> bool:
        """True when the mesh has no faces."""
        return self.n_faces == 0

    def centroid(self) -> _Array:
        """Unweighted mean of all vertex positions (zeros for an empty mesh)."""
        if self.n_vertices == 0:
            return np.zeros(3)
        return self.vertices.mean(axis=0)

    def bounds(self) -> Tuple[_Array, _Array]:
        """``(min_xyz, max_xyz)`` of the vertex positions."""
        if self.n_vertices == 0:
            return np.zeros(3), np.zeros(3)
        return self.vertices.min(axis=0), self.vertices.max(axis=0)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def replace(self, vertices: npt.ArrayLike, faces: npt.ArrayLike) -> None:
        """Swap in new geometry, keeping this instance.

        Attribute arrays survive only when their length still matches.
        """
        self.vertices, self.faces = self._validate(vertices, faces)
        self.point_data = {k: a for k, a in self.point_data.items() if len(a) == self.n_vertices}
        self.cell_data = {k: a for k, a in self.cell_data.items() if len(a) == self.n_faces}

    def translate(self, offset: npt.ArrayLike) -> None:
        """Move every vertex by *offset* ``(3,)``."""
        self.vertices += np.asarray(offset, dtype=np.float64)

    def copy(self) -> Mesh:
        return Mesh(
            self.vertices.copy(),
            self.faces.copy(),
            point_data={k: a.copy() for k, a in self.point_data.items()},
            cell_data={k: a.copy() for k, a in self.cell_data.items()},
        )

    def __repr__(self) -> str:
        return f"Mesh(n_vertices={self.n_vertices}, n_faces={self.n_faces})"
