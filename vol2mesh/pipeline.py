"""Mesh post-processing stages.

Each stage takes the live :class:`~vol2mesh.mesh.Mesh`, mutates it in place
and returns a :class:`StageResult`.  Invalid parameters never raise: the
stage logs a warning and leaves the mesh untouched.

Stages
------
- :func:`center`: move the vertex centroid to the origin.
- :func:`decimate`: remove a fraction of the faces.
- :func:`limit_polygons`: decimate down to a face budget.
- :func:`remove_small_components`: drop fragments relative to the largest part.
- :func:`smooth`: feature-preserving Laplacian relaxation.

:class:`MeshPipeline` runs the stages selected by a
:class:`~vol2mesh.config.PipelineConfig` in the fixed order
center → decimate / polygon cap → filter → smooth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ._math import _compact
from .config import SMOOTHING_ITERATIONS, PipelineConfig
from .connectivity import ConnectivityAnalyzer, ScipyConnectivity, component_sizes
from .decimate import Decimator, QuadricDecimator
from .mesh import Mesh
from .progress import ProgressReporter, ensure_reporter
from .smooth import Smoother, LaplacianSmoother

logger = logging.getLogger(__name__)


@dataclass
class StageResult:
    """Statistics of one pipeline stage."""

    name: str
    applied: bool
    faces_before: int
    faces_after: int
    vertices_before: int
    vertices_after: int
    message: str = ""
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @classmethod
    def skipped(cls, name: str, mesh: Mesh, message: str) -> StageResult:
        return cls(name, False, mesh.n_faces, mesh.n_faces, mesh.n_vertices, mesh.n_vertices, message)


def _in_unit_range(value: float) -> bool:
    return 0.0 <= value <= 1.0


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def center(mesh: Mesh) -> np.ndarray:
    """Translate *mesh* so that its unweighted vertex centroid is the origin.

    Returns
    -------
    numpy.ndarray
        The applied translation ``(3,)``, i.e. the negated centroid.
    """
    translation = -mesh.centroid()
    logger.info("Center mesh: translate by (%g, %g, %g)", *translation)
    mesh.translate(translation)
    return translation


def decimate(
    mesh: Mesh,
    ratio: float,
    *,
    decimator: Optional[Decimator] = None,
    progress: Optional[ProgressReporter] = None,
) -> StageResult:
    """Remove roughly ``ratio * n_faces`` faces.

    Parameters
    ----------
    ratio:
        Fraction of faces to remove, ``0`` (none) to ``1`` (as many as the
        decimator allows).  Values outside ``[0, 1]`` skip the stage.
    decimator:
        Simplification primitive, :class:`QuadricDecimator` by default.
    """
    name = "decimate"
    if not _in_unit_range(ratio):
        logger.warning("Invalid mesh reduction rate %s (must be in [0, 1]) - skip reduction.", ratio)
        return StageResult.skipped(name, mesh, "invalid ratio")
    if ratio == 0.0 or mesh.is_empty:
        return StageResult.skipped(name, mesh, "nothing to reduce")

    decimator = decimator or QuadricDecimator()
    faces_before, vertices_before = mesh.n_faces, mesh.n_vertices
    target = int(round(faces_before * (1.0 - ratio)))
    logger.info("Mesh reduction by %s (%d -> %d faces)", ratio, faces_before, target)

    vertices, faces = decimator(mesh.vertices, mesh.faces, target, progress)
    if len(faces) > faces_before:
        logger.warning("Decimator returned more faces than it was given - result discarded.")
        return StageResult.skipped(name, mesh, "decimator increased face count")
    mesh.replace(vertices, faces)
    logger.info("Mesh reduced to %d faces, %d vertices", mesh.n_faces, mesh.n_vertices)
    return StageResult(name, True, faces_before, mesh.n_faces, vertices_before, mesh.n_vertices)


def limit_polygons(
    mesh: Mesh,
    limit: int,
    *,
    decimator: Optional[Decimator] = None,
    progress: Optional[ProgressReporter] = None,
) -> StageResult:
    """Decimate *mesh* to at most *limit* faces when it has more."""
    name = "limit_polygons"
    if limit < 0:
        logger.warning("Invalid polygon limit %s - skip reduction.", limit)
        return StageResult.skipped(name, mesh, "invalid limit")
    n = mesh.n_faces
    if n <= limit:
        logger.info("Reducing polygons not necessary (%d <= %d)", n, limit)
        return StageResult.skipped(name, mesh, "reduction not necessary")

    result = decimate(mesh, 1.0 - limit / n, decimator=decimator, progress=progress)
    result.name = name
    return result


def remove_small_components(
    mesh: Mesh,
    ratio: float,
    *,
    analyzer: Optional[ConnectivityAnalyzer] = None,
) -> StageResult:
    """Discard connected components with ``size <= max_size * ratio``.

    Component size is the number of vertices.  Kept vertices and faces
    retain their relative order; unreferenced vertices are dropped.
    """
    name = "remove_small_components"
    if not _in_unit_range(ratio):
        logger.warning("Invalid object size ratio %s (must be in [0, 1]) - skip filtering.", ratio)
        return StageResult.skipped(name, mesh, "invalid ratio")
    if mesh.is_empty:
        return StageResult.skipped(name, mesh, "empty mesh")

    analyzer = analyzer or ScipyConnectivity()
    labels = analyzer(mesh.n_vertices, mesh.faces)
    sizes = component_sizes(labels)
    max_size = int(sizes.max())
    keep_label = sizes > max_size * ratio
    logger.info(
        "Remove small connected objects: %d regions, largest %d vertices, keeping %d",
        len(sizes), max_size, int(keep_label.sum()),
    )

    faces_before, vertices_before = mesh.n_faces, mesh.n_vertices
    keep_face = keep_label[labels[mesh.faces[:, 0]]]
    vertices, faces, _ = _compact(mesh.vertices, mesh.faces[keep_face])
    mesh.replace(vertices, faces)
    return StageResult(
        name, True, faces_before, mesh.n_faces, vertices_before, mesh.n_vertices,
        f"{len(sizes)} components, {int(keep_label.sum())} kept",
    )


def smooth(
    mesh: Mesh,
    iterations: int = SMOOTHING_ITERATIONS,
    *,
    smoother: Optional[Smoother] = None,
    progress: Optional[ProgressReporter] = None,
) -> StageResult:
    """Relax vertex positions for *iterations* passes."""
    name = "smooth"
    if iterations < 0:
        logger.warning("Invalid number of smoothing iterations %s - skip smoothing.", iterations)
        return StageResult.skipped(name, mesh, "invalid iterations")
    if iterations == 0 or mesh.is_empty:
        return StageResult.skipped(name, mesh, "nothing to smooth")

    smoother = smoother or LaplacianSmoother()
    logger.info("Mesh smoothing with %d iterations.", iterations)
    mesh.replace(smoother(mesh.vertices, mesh.faces, iterations, progress), mesh.faces)
    return StageResult(name, True, mesh.n_faces, mesh.n_faces, mesh.n_vertices, mesh.n_vertices)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class MeshPipeline:
    """Apply the stages enabled in *config* to a mesh.

    The primitives default to :class:`QuadricDecimator`,
    :class:`ScipyConnectivity` and :class:`LaplacianSmoother`; any object
    following the matching protocol can be passed instead.
    """

    def __init__(
        self,
        config: PipelineConfig,
        progress: Optional[ProgressReporter] = None,
        *,
        decimator: Optional[Decimator] = None,
        analyzer: Optional[ConnectivityAnalyzer] = None,
        smoother: Optional[Smoother] = None,
    ) -> None:
        self.config = config
        self.progress = ensure_reporter(progress)
        self.decimator = decimator or QuadricDecimator()
        self.analyzer = analyzer or ScipyConnectivity()
        self.smoother = smoother or LaplacianSmoother()

    def run(self, mesh: Mesh) -> List[StageResult]:
        cfg = self.config
        results: List[StageResult] = []

        if cfg.center:
            n_f, n_v = mesh.n_faces, mesh.n_vertices
            translation = center(mesh)
            results.append(StageResult("center", True, n_f, n_f, n_v, n_v, translation=translation))

        if cfg.reduction is not None:
            results.append(decimate(mesh, cfg.reduction, decimator=self.decimator, progress=self.progress))
        elif cfg.polygon_limit is not None:
            results.append(limit_polygons(mesh, cfg.polygon_limit, decimator=self.decimator, progress=self.progress))

        if cfg.filter_ratio is not None:
            results.append(remove_small_components(mesh, cfg.filter_ratio, analyzer=self.analyzer))

        if cfg.smooth:
            results.append(smooth(mesh, cfg.smoothing_iterations, smoother=self.smoother, progress=self.progress))

        return results
