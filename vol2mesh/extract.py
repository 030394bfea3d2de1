"""Iso-surface extraction from a :class:`~vol2mesh.volume.ScalarVolume`.

The extraction itself is delegated to an :class:`IsosurfaceExtractor`; the
default wraps scikit-image's Lewiner marching cubes.  This module adds the
band-pass threshold handling and the conversion from array index order
``(z, y, x)`` to world coordinates ``(x, y, z)``.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

import numpy as np
import numpy.typing as npt
from skimage import measure

from .mesh import Mesh
from .progress import ProgressReporter, ensure_reporter
from .volume import ScalarVolume

logger = logging.getLogger(__name__)

_Array = npt.NDArray[np.floating]
_IndexArray = npt.NDArray[np.integer]


class IsosurfaceExtractor(Protocol):
    """Triangulate the *level* iso-surface of a z-first scalar grid.

    *spacing* is given in array axis order ``(sz, sy, sx)``.  Returns
    ``(vertices_zyx, faces)``; vertices are in the same axis order.
    """

    def __call__(
        self, data: np.ndarray, level: float, spacing: Tuple[float, float, float]
    ) -> Tuple[_Array, _IndexArray]:
        ...


class MarchingCubesExtractor:
    """Lewiner marching cubes from :func:`skimage.measure.marching_cubes`."""

    def __init__(self, allow_degenerate: bool = False) -> None:
        self.allow_degenerate = allow_degenerate

    def __call__(
        self, data: np.ndarray, level: float, spacing: Tuple[float, float, float]
    ) -> Tuple[_Array, _IndexArray]:
        try:
            verts, faces, _normals, _values = measure.marching_cubes(
                data,
                level=level,
                spacing=spacing,
                method="lewiner",
                allow_degenerate=self.allow_degenerate,
            )
        except RuntimeError:
            # raised by scikit-image when the level is never crossed
            return np.zeros((0, 3)), np.zeros((0, 3), dtype=np.int64)
        return verts.astype(np.float64), faces.astype(np.int64)


def band_pass(data: np.ndarray, lower: float, upper: float) -> _Array:
    """Return a float copy of *data* where every voxel ``> upper`` is set to
    ``lower - 1`` so it falls outside the ``lower`` iso-surface."""
    out = np.array(data, dtype=np.float64)
    out[out > upper] = lower - 1.0
    return out


def extract_surface(
    volume: ScalarVolume,
    lower: float,
    upper: Optional[float] = None,
    *,
    extractor: Optional[IsosurfaceExtractor] = None,
    progress: Optional[ProgressReporter] = None,
) -> Mesh:
    """Extract the iso-surface of *volume* at *lower*.

    Parameters
    ----------
    volume:
        Source grid; it is not modified.
    lower:
        Iso value.  Voxels ``>= lower`` count as inside.
    upper:
        Optional upper bound of a band-pass threshold: voxels above it are
        pushed below *lower* before extraction, so only values in
        ``[lower, upper]`` count as inside.
    extractor:
        Iso-surface primitive, :class:`MarchingCubesExtractor` by default.
    progress:
        Receives ``0.0`` before and ``1.0`` after extraction.

    Returns
    -------
    Mesh
        Vertices in world coordinates (spacing and origin applied).  The mesh
        may have no faces; callers decide whether that is fatal.
    """
    progress = ensure_reporter(progress)
    extractor = extractor or MarchingCubesExtractor()
    stage = "Extract surface"

    if upper is None:
        logger.info("Create surface mesh with iso value = %s", lower)
        data = volume.data
    else:
        logger.info("Create surface mesh with iso value range = %s to %s", lower, upper)
        if upper < lower:
            logger.warning("Upper threshold %s is below lower threshold %s", upper, lower)
        data = band_pass(volume.data, lower, upper)

    progress.update(stage, 0.0)
    if min(data.shape) < 2:
        logger.warning("Volume %s is too thin for surface extraction", data.shape)
        progress.update(stage, 1.0)
        return Mesh.empty()

    lo, hi = float(np.min(data)), float(np.max(data))
    if not lo <= lower <= hi:
        logger.warning("Iso value %s outside of data range [%s, %s]", lower, lo, hi)
        progress.update(stage, 1.0)
        return Mesh.empty()

    sx, sy, sz = volume.spacing
    verts_zyx, faces = extractor(data, float(lower), (sz, sy, sx))
    progress.update(stage, 1.0)

    if len(faces) == 0:
        return Mesh.empty()

    vertices = verts_zyx[:, ::-1] + np.asarray(volume.origin)
    # the z/x swap mirrors the surface; reverse winding to keep orientation
    mesh = Mesh(vertices, faces[:, ::-1])
    logger.info("Extracted %d vertices, %d faces", mesh.n_vertices, mesh.n_faces)
    return mesh
