"""Run configuration.

:class:`PipelineConfig` is built once (usually by the command-line parser)
and never mutated; the converter and the mesh pipeline only read it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import ConfigurationError

DEFAULT_THRESHOLD = 400
DEFAULT_REDUCTION = 0.5
DEFAULT_POLYGON_LIMIT = 100_000
DEFAULT_FILTER_RATIO = 0.1
DEFAULT_OUTPUT = "mesh.stl"
SMOOTHING_ITERATIONS = 20


def _enabled(value: Optional[float], label: str) -> str:
    return "disabled" if value is None else f"enabled ({label}={value:f})"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable settings of one conversion run.

    ``reduction``, ``polygon_limit`` and ``filter_ratio`` are ``None`` when the
    corresponding stage is disabled.  ``upper_threshold`` turns the iso value
    into a band ``[threshold, upper_threshold]``.  ``output_path`` ``None``
    means the mesh is processed but not written.
    """

    input_path: Optional[str] = None
    image_paths: Tuple[str, ...] = ()
    spacing: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    threshold: float = DEFAULT_THRESHOLD
    upper_threshold: Optional[float] = None
    center: bool = False
    reduction: Optional[float] = None
    polygon_limit: Optional[int] = None
    filter_ratio: Optional[float] = None
    smooth: bool = False
    smoothing_iterations: int = SMOOTHING_ITERATIONS
    crop: bool = False
    crop_range: Optional[Tuple[int, int]] = None
    output_path: Optional[str] = None
    binary: bool = False
    series: Optional[int] = None
    normals: str = "trivial"
    visualize: bool = False
    show_as_volume: bool = False

    def __post_init__(self) -> None:
        if self.reduction is not None and self.polygon_limit is not None:
            raise ConfigurationError(
                "mesh reduction (-r) and polygon limitation (-p) cannot be combined"
            )
        if self.input_path is not None and self.image_paths:
            raise ConfigurationError("give either an input path (-i) or an image list (-ipng), not both")
        if self.normals not in ("trivial", "averaged"):
            raise ConfigurationError(f"unknown normals mode {self.normals!r}")
        if len(self.spacing) != 3 or not all(math.isfinite(s) and s > 0 for s in self.spacing):
            raise ConfigurationError(f"spacing must be three positive numbers, got {self.spacing}")

    @property
    def has_input(self) -> bool:
        return self.input_path is not None or bool(self.image_paths)

    def settings_text(self) -> str:
        """Human-readable summary, also written to the ``.info`` file."""
        if self.image_paths:
            source = "[" + ", ".join(self.image_paths) + "]"
        else:
            source = self.input_path or ""
        iso = f"{self.threshold:g}"
        if self.upper_threshold is not None:
            iso += f" - {self.upper_threshold:g}"
        crop = "disabled"
        if self.crop:
            crop = "enabled" if self.crop_range is None else "enabled (slices {} - {})".format(*self.crop_range)

        lines = [
            "vol2mesh Settings",
            "-----------------",
            f"Input: {source}",
            f"Output file path: {self.output_path or ''}",
            f"Surface segmentation: {iso}",
            f"Mesh reduction: {_enabled(self.reduction, 'rate')}",
            "Mesh polygon limitation: "
            + ("disabled" if self.polygon_limit is None else f"enabled (nbr={self.polygon_limit})"),
            f"Mesh smoothing: {'enabled' if self.smooth else 'disabled'}",
            f"Mesh centering: {'enabled' if self.center else 'disabled'}",
            f"Mesh filtering: {_enabled(self.filter_ratio, 'size-ratio')}",
            f"Volume cropping: {crop}",
        ]
        if self.image_paths:
            lines.append("Spacing: ({:g}, {:g}, {:g})".format(*self.spacing))
        return "\n".join(lines) + "\n"
