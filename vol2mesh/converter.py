"""End-to-end conversion: volume (or mesh file) in, processed mesh out."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .codec import FORMATS, export_mesh, import_mesh, mesh_format
from .config import PipelineConfig
from .errors import ConfigurationError, EmptyMesh
from .extract import extract_surface
from .mesh import Mesh
from .pipeline import MeshPipeline, StageResult
from .progress import ProgressReporter, ensure_reporter
from .volume import crop_volume, load_image_stack, load_volume

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    mesh: Mesh
    stages: List[StageResult] = field(default_factory=list)
    output_path: Optional[Path] = None
    info_path: Optional[Path] = None
    seconds: float = 0.0


def info_path_for(output_path: Path) -> Path:
    """``<stem>.info`` beside *output_path*."""
    return output_path.with_suffix(".info")


def _is_mesh_file(path: Path) -> bool:
    return path.suffix[1:].lower() in FORMATS and not path.is_dir()


class Converter:
    """Run load → crop → extract → pipeline → export for one configuration.

    Parameters
    ----------
    config:
        The run settings.
    progress:
        Passed to every long-running step.
    pipeline:
        Optional pre-built :class:`MeshPipeline` (e.g. with custom
        primitives); built from *config* otherwise.
    """

    def __init__(
        self,
        config: PipelineConfig,
        progress: Optional[ProgressReporter] = None,
        *,
        pipeline: Optional[MeshPipeline] = None,
    ) -> None:
        self.config = config
        self.progress = ensure_reporter(progress)
        self.pipeline = pipeline or MeshPipeline(config, self.progress)

    def load_mesh(self) -> Mesh:
        """Produce the initial mesh, either by extraction or by import.

        Raises
        ------
        ConfigurationError
            No input configured.
        InputNotFound, NoDataFound, CodecError
            Loading failed.
        EmptyMesh
            Extraction produced no faces.
        """
        cfg = self.config
        if not cfg.has_input:
            raise ConfigurationError("no input given (use -i or -ipng)")

        if cfg.input_path is not None and _is_mesh_file(Path(cfg.input_path)):
            mesh = import_mesh(cfg.input_path, progress=self.progress)
        else:
            if cfg.image_paths:
                volume = load_image_stack(cfg.image_paths, cfg.spacing, progress=self.progress)
            else:
                volume = load_volume(cfg.input_path, series=cfg.series, progress=self.progress)
            if cfg.crop:
                crop_volume(volume, cfg.crop_range)
            mesh = extract_surface(volume, cfg.threshold, cfg.upper_threshold, progress=self.progress)

        if mesh.is_empty:
            raise EmptyMesh("No mesh could be created. Wrong input data or wrong iso value.")
        return mesh

    def run(self) -> ConversionResult:
        """Convert and, when an output path is configured, export.

        The ``.info`` settings file is written next to the exported mesh.
        """
        t0 = time.perf_counter()
        logger.info("\n%s", self.config.settings_text())

        if self.config.output_path is not None:
            mesh_format(self.config.output_path)
        mesh = self.load_mesh()
        result = ConversionResult(mesh)
        result.stages = self.pipeline.run(mesh)

        cfg = self.config
        if cfg.output_path is not None:
            out = export_mesh(mesh, cfg.output_path, binary=cfg.binary, normals=cfg.normals, progress=self.progress)
            info = info_path_for(out)
            info.write_text(cfg.settings_text(), encoding="utf-8")
            logger.info("Parameters written to file: %s", info)
            result.output_path, result.info_path = out, info

        result.seconds = time.perf_counter() - t0
        logger.info("Required computing time: %.1f seconds", result.seconds)
        return result
