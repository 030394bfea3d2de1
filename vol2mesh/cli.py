"""Command-line interface.

Usage::

    vol2mesh -i <dicom_dir> -o mesh.stl -t 500 -r 0.6 -e 0.1 -s -c
    vol2mesh -ipng "[a.png, b.png, c.png]" -sxyz 0.5 0.5 2 -o out.obj
    vol2mesh -i mesh.ply -o mesh.obj -s          # import, modify, export

Exit status is 0 on success and 1 on any error (missing input, no data,
empty mesh, unsupported output extension, conflicting options).
"""

from __future__ import annotations

import argparse
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from . import __version__
from .config import (
    DEFAULT_FILTER_RATIO,
    DEFAULT_OUTPUT,
    DEFAULT_POLYGON_LIMIT,
    DEFAULT_REDUCTION,
    DEFAULT_THRESHOLD,
    PipelineConfig,
)
from .converter import Converter
from .errors import Vol2MeshError
from .logging_config import setup_logging
from .progress import NullProgress, TqdmProgress

logger = logging.getLogger(__name__)


def parse_image_list(text: str) -> List[str]:
    """Split ``"[a.png, b.png]"`` into ``["a.png", "b.png"]``.

    Brackets are optional; entries are whitespace-trimmed and empty entries
    dropped.
    """
    text = text.strip()
    if text.startswith("["):
        text = text[1:]
    if text.endswith("]"):
        text = text[:-1]
    return [p.strip() for p in text.split(",") if p.strip()]


def prompt_slice_range(ask: Callable[[str], str] = input) -> Optional[Tuple[int, int]]:
    """Ask for ``START END`` on the console; ``None`` on unusable input."""
    try:
        answer = ask("Enter slice range to keep (START END): ")
    except EOFError:
        return None
    parts = answer.replace(",", " ").split()
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vol2mesh",
        description="Create a surface mesh from a DICOM series or an image stack.",
        allow_abbrev=False,
    )
    src = parser.add_argument_group("input")
    src.add_argument("-i", dest="input", metavar="PATH",
                     help="DICOM directory, or an obj/stl/ply mesh to modify")
    src.add_argument("-ipng", dest="image_list", metavar="LIST",
                     help='ordered image list, e.g. "[a.png, b.png]"')
    src.add_argument("-sxyz", dest="spacing", nargs=3, type=float, metavar=("X", "Y", "Z"),
                     help="voxel spacing for image-list input (default 1 1 1)")
    src.add_argument("--series", type=int, metavar="N",
                     help="DICOM series index (default: the series with most slices)")

    seg = parser.add_argument_group("segmentation")
    seg.add_argument("-t", dest="threshold", type=float, default=DEFAULT_THRESHOLD,
                     help=f"iso value (default {DEFAULT_THRESHOLD})")
    seg.add_argument("-tu", dest="upper_threshold", type=float,
                     help="upper iso value; voxels above it count as outside")
    seg.add_argument("-z", dest="crop", nargs="*", type=int, metavar="SLICE",
                     help="crop to slices START END (prompted when omitted)")

    post = parser.add_argument_group("mesh post-processing")
    post.add_argument("-r", dest="reduction", nargs="?", type=float, const=DEFAULT_REDUCTION,
                      help=f"reduce faces by RATE (default {DEFAULT_REDUCTION})")
    post.add_argument("-p", dest="polygon_limit", nargs="?", type=int, const=DEFAULT_POLYGON_LIMIT,
                      help=f"reduce faces to at most N (default {DEFAULT_POLYGON_LIMIT})")
    post.add_argument("-e", dest="filter_ratio", nargs="?", type=float, const=DEFAULT_FILTER_RATIO,
                      help=f"drop objects smaller than RATIO times the largest (default {DEFAULT_FILTER_RATIO})")
    post.add_argument("-c", dest="center", action="store_true", help="move the centroid to the origin")
    post.add_argument("-s", dest="smooth", action="store_true", help="smooth the mesh")

    out = parser.add_argument_group("output")
    out.add_argument("-o", dest="output", nargs="?", const=DEFAULT_OUTPUT, metavar="PATH",
                     help=f"output mesh (.obj, .stl, .ply; default name {DEFAULT_OUTPUT})")
    out.add_argument("-b", dest="binary", action="store_true", help="binary output where supported")
    out.add_argument("--normals", choices=("trivial", "averaged"), default="trivial",
                     help="obj vertex normals (default trivial: last face wins)")
    out.add_argument("-v", dest="visualize", action="store_true", help="show the mesh (not available)")
    out.add_argument("-vo", dest="show_as_volume", action="store_true", help="show the volume (not available)")

    misc = parser.add_argument_group("logging")
    misc.add_argument("--log-level", default="INFO",
                      choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    misc.add_argument("--log-file", metavar="PATH")
    misc.add_argument("--no-progress", action="store_true", help="disable progress bars")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_config(
    args: argparse.Namespace,
    ask: Callable[[str], str] = input,
) -> PipelineConfig:
    """Turn parsed arguments into a :class:`PipelineConfig`.

    ``-z`` without values prompts for the slice range through *ask*.

    Raises
    ------
    ConfigurationError
        Conflicting options (e.g. ``-r`` with ``-p``).
    """
    crop_range = None
    if args.crop is not None:
        if len(args.crop) == 2:
            crop_range = (args.crop[0], args.crop[1])
        elif not args.crop:
            crop_range = prompt_slice_range(ask)

    return PipelineConfig(
        input_path=args.input,
        image_paths=tuple(parse_image_list(args.image_list)) if args.image_list else (),
        spacing=tuple(args.spacing) if args.spacing else (1.0, 1.0, 1.0),
        threshold=args.threshold,
        upper_threshold=args.upper_threshold,
        center=args.center,
        reduction=args.reduction,
        polygon_limit=args.polygon_limit,
        filter_ratio=args.filter_ratio,
        smooth=args.smooth,
        crop=args.crop is not None,
        crop_range=crop_range,
        output_path=args.output,
        binary=args.binary,
        series=args.series,
        normals=args.normals,
        visualize=args.visualize,
        show_as_volume=args.show_as_volume,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(getattr(logging, args.log_level), args.log_file)

    if args.crop is not None and len(args.crop) not in (0, 2):
        logger.error("-z takes no value or exactly two slice indices (START END)")
        return 1

    try:
        config = build_config(args)
    except Vol2MeshError as exc:
        logger.error("%s", exc)
        return 1

    if config.visualize or config.show_as_volume:
        logger.warning("Visualization is not available; -v / -vo are ignored.")

    progress = NullProgress() if args.no_progress else TqdmProgress()
    try:
        Converter(config, progress).run()
    except Vol2MeshError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        if isinstance(progress, TqdmProgress):
            progress.close()
    return 0
