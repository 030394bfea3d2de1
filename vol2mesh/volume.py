"""Scalar volumes built from stacks of cross-sectional images.

Two sources are supported:

* a directory of DICOM slices, read with **pydicom**
  (:func:`load_dicom_series`);
* an explicit, ordered list of raster images (PNG, TIFF, …) plus a voxel
  spacing, read with **scikit-image** (:func:`load_image_stack`).

:func:`load_volume` dispatches between the two.  Volumes use the z-first
``(nz, ny, nx)`` layout: axis 0 is the slice index, the slowest-varying axis.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt
import pydicom
from pydicom.errors import InvalidDicomError
from skimage import io as skio

from .errors import InputNotFound, InvalidParameter, NoDataFound
from .progress import ProgressReporter, ensure_reporter

logger = logging.getLogger(__name__)

_Array = npt.NDArray[np.floating]
_Spacing = Tuple[float, float, float]
_PathLike = Union[str, "os.PathLike[str]"]


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class ScalarVolume:
    """A 3-D grid of scalar samples.

    Parameters
    ----------
    data:
        ``(nz, ny, nx)`` intensity array.
    spacing:
        ``(sx, sy, sz)`` voxel size along x, y and z.  Must be positive and
        finite.
    origin:
        ``(x0, y0, z0)`` world position of voxel ``[0, 0, 0]``.
    """

    data: np.ndarray
    spacing: _Spacing = (1.0, 1.0, 1.0)
    origin: _Spacing = (0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data)
        if self.data.ndim != 3:
            raise NoDataFound(f"volume data must be 3-D, got shape {self.data.shape}")
        if min(self.data.shape) < 1:
            raise NoDataFound(f"volume has a zero extent: shape {self.data.shape}")
        spacing = tuple(float(s) for s in self.spacing)
        if len(spacing) != 3 or not all(math.isfinite(s) and s > 0.0 for s in spacing):
            raise InvalidParameter(f"spacing must be three positive finite numbers, got {self.spacing}")
        self.spacing = spacing  # type: ignore[assignment]
        self.origin = tuple(float(o) for o in self.origin)  # type: ignore[assignment]

    @property
    def dimensions(self) -> Tuple[int, int, int]:
        """Grid size as ``(nx, ny, nz)``."""
        nz, ny, nx = self.data.shape
        return nx, ny, nz

    @property
    def n_slices(self) -> int:
        return int(self.data.shape[0])

    def value_range(self) -> Tuple[float, float]:
        return float(self.data.min()), float(self.data.max())


@dataclass(frozen=True)
class DicomSeries:
    """One DICOM series found in a directory."""

    uid: str
    description: str
    files: Tuple[Path, ...]

    def __len__(self) -> int:
        return len(self.files)


# ---------------------------------------------------------------------------
# DICOM
# ---------------------------------------------------------------------------

def list_dicom_series(directory: _PathLike) -> List[DicomSeries]:
    """Group the DICOM image files in *directory* by ``SeriesInstanceUID``.

    Files that are not DICOM, or carry no image, are skipped.  Series are
    returned in the order in which their first file appears (sorted by name).
    """
    path = Path(directory)
    if not path.is_dir():
        raise InputNotFound(f"DICOM directory not found: {path}")

    groups: Dict[str, List[Path]] = {}
    descriptions: Dict[str, str] = {}
    for f in sorted(p for p in path.iterdir() if p.is_file()):
        try:
            ds = pydicom.dcmread(f, stop_before_pixels=True)
        except (InvalidDicomError, OSError, EOFError):
            logger.debug("Skipping non-DICOM file %s", f)
            continue
        if "Rows" not in ds or "Columns" not in ds:
            continue
        uid = str(ds.get("SeriesInstanceUID", ""))
        groups.setdefault(uid, []).append(f)
        descriptions.setdefault(uid, str(ds.get("SeriesDescription", "")))

    return [DicomSeries(uid, descriptions[uid], tuple(files)) for uid, files in groups.items()]


def _slice_normal(ds: pydicom.Dataset) -> _Array:
    """Unit normal of the image plane, ``row x col`` of ``ImageOrientationPatient``."""
    if "ImageOrientationPatient" in ds and len(ds.ImageOrientationPatient) == 6:
        cosines = np.array([float(v) for v in ds.ImageOrientationPatient])
        normal = np.cross(cosines[:3], cosines[3:])
        length = float(np.linalg.norm(normal))
        if length > 0.0:
            return normal / length
    return np.array([0.0, 0.0, 1.0])


def _slice_position(ds: pydicom.Dataset, fallback: int) -> float:
    # distance along the slice normal; plain z for axial or untagged slices
    if "ImagePositionPatient" in ds:
        position = np.array([float(v) for v in ds.ImagePositionPatient])
        return float(position @ _slice_normal(ds))
    if "InstanceNumber" in ds and ds.InstanceNumber is not None:
        return float(ds.InstanceNumber)
    return float(fallback)


def _dicom_spacing(first: pydicom.Dataset, positions: Sequence[float]) -> _Spacing:
    sx = sy = 1.0
    if "PixelSpacing" in first:
        row, col = (float(v) for v in first.PixelSpacing)
        sx, sy = col, row

    sz = 0.0
    if "ImagePositionPatient" in first and len(positions) > 1:
        gaps = np.abs(np.diff(positions))
        gaps = gaps[gaps > 0.0]
        if gaps.size:
            sz = float(np.median(gaps))
    if sz <= 0.0 and first.get("SliceThickness"):
        sz = float(first.SliceThickness)
    if sz <= 0.0:
        sz = 1.0
    return sx, sy, sz


def load_dicom_series(
    directory: _PathLike,
    *,
    series: Optional[int] = None,
    progress: Optional[ProgressReporter] = None,
) -> ScalarVolume:
    """Read a DICOM series from *directory* into a :class:`ScalarVolume`.

    Parameters
    ----------
    directory:
        Directory holding the slice files (not searched recursively).
    series:
        Index into :func:`list_dicom_series` selecting the series to load.
        When omitted and the directory holds several series, the one with
        the most slices is used.
    progress:
        Receives one update per slice read.

    Returns
    -------
    ScalarVolume
        Intensities with ``RescaleSlope``/``RescaleIntercept`` applied,
        slices ordered by the projection of ``ImagePositionPatient`` onto
        the slice normal (or by ``InstanceNumber``); the z spacing is the
        median gap between those projections.

    Raises
    ------
    InputNotFound
        *directory* does not exist.
    NoDataFound
        No readable DICOM image, an invalid *series* index, or slices of
        differing sizes.
    """
    progress = ensure_reporter(progress)
    found = list_dicom_series(directory)
    if not found:
        raise NoDataFound(f"No DICOM data in directory {directory}")

    for i, s in enumerate(found):
        logger.info("Series (%d): %d files, name = %s", i, len(s), s.description)

    if series is not None:
        if not 0 <= series < len(found):
            raise NoDataFound(f"Wrong DICOM series index {series}; {len(found)} series available")
        chosen = found[series]
    else:
        chosen = max(found, key=len)
        if len(found) > 1:
            logger.warning(
                "%d DICOM series found, loading the largest one (%s, %d slices)",
                len(found), chosen.description or chosen.uid, len(chosen),
            )

    stage = "Load DICOM"
    records = []
    n = len(chosen.files)
    for i, f in enumerate(chosen.files):
        ds = pydicom.dcmread(f)
        pixels = ds.pixel_array
        if pixels.ndim != 2:
            logger.warning("Skipping %s: expected a single 2-D frame, got shape %s", f, pixels.shape)
            progress.update(stage, (i + 1) / n)
            continue
        slope = float(ds.get("RescaleSlope", 1.0) or 1.0)
        intercept = float(ds.get("RescaleIntercept", 0.0) or 0.0)
        records.append((_slice_position(ds, i), pixels.astype(np.float64) * slope + intercept, ds))
        progress.update(stage, (i + 1) / n)

    if not records:
        raise NoDataFound(f"No DICOM image slices in {directory}")

    records.sort(key=lambda r: r[0])
    shapes = {r[1].shape for r in records}
    if len(shapes) != 1:
        raise NoDataFound(f"DICOM slices differ in size: {sorted(shapes)}")

    first = records[0][2]
    positions = [r[0] for r in records]
    spacing = _dicom_spacing(first, positions)
    origin = (0.0, 0.0, 0.0)
    if "ImagePositionPatient" in first:
        origin = tuple(float(v) for v in first.ImagePositionPatient)  # type: ignore[assignment]

    volume = ScalarVolume(np.stack([r[1] for r in records], axis=0), spacing, origin)
    logger.info("Loaded DICOM volume %s with spacing %s", volume.dimensions, volume.spacing)
    return volume


# ---------------------------------------------------------------------------
# Raster image stacks
# ---------------------------------------------------------------------------

def _read_intensity(path: Path) -> _Array:
    img = np.asarray(skio.imread(path))
    if img.ndim == 3:
        if img.shape[-1] in (2, 4):
            img = img[..., :-1]  # drop alpha
        img = img.mean(axis=-1)
    if img.ndim != 2:
        raise NoDataFound(f"{path} is not a single-plane image (shape {img.shape})")
    return img.astype(np.float64)


def load_image_stack(
    paths: Sequence[_PathLike],
    spacing: _Spacing = (1.0, 1.0, 1.0),
    *,
    progress: Optional[ProgressReporter] = None,
) -> ScalarVolume:
    """Stack 2-D raster images into a volume, one image per slice.

    Parameters
    ----------
    paths:
        Ordered image paths; ``paths[k]`` becomes slice ``k``.
    spacing:
        ``(sx, sy, sz)``: pixel width, pixel height and slice distance.

    Raises
    ------
    InputNotFound
        One of the paths does not exist.
    NoDataFound
        No paths, or images of differing sizes.
    """
    progress = ensure_reporter(progress)
    files = [Path(p) for p in paths]
    if not files:
        raise NoDataFound("No image files given")
    for f in files:
        if not f.is_file():
            raise InputNotFound(f"Image file does not exist: {f}")

    slices = []
    for i, f in enumerate(files):
        slices.append(_read_intensity(f))
        progress.update("Load images", (i + 1) / len(files))

    shapes = {s.shape for s in slices}
    if len(shapes) != 1:
        raise NoDataFound(f"Images differ in size: {sorted(shapes)}")

    volume = ScalarVolume(np.stack(slices, axis=0), spacing)
    logger.info("Loaded %d images into volume %s", len(files), volume.dimensions)
    return volume


def load_volume(
    source: Union[_PathLike, Sequence[_PathLike]],
    spacing: Optional[_Spacing] = None,
    *,
    series: Optional[int] = None,
    progress: Optional[ProgressReporter] = None,
) -> ScalarVolume:
    """Load a volume from a DICOM directory or an ordered list of images.

    *spacing* only applies to image lists (default ``(1, 1, 1)``); DICOM
    volumes take their spacing from the file headers.  *series* only applies
    to DICOM directories.
    """
    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        if not path.is_dir():
            raise InputNotFound(f"Input directory not found: {path}")
        return load_dicom_series(path, series=series, progress=progress)
    return load_image_stack(source, spacing or (1.0, 1.0, 1.0), progress=progress)


# ---------------------------------------------------------------------------
# Cropping
# ---------------------------------------------------------------------------

def crop_volume(volume: ScalarVolume, slice_range: Optional[Tuple[int, int]]) -> bool:
    """Restrict *volume* in place to the inclusive slice range ``(start, end)``.

    An absent, inverted or out-of-range *slice_range* leaves the volume
    untouched and logs a warning.  Returns whether the volume was cropped.
    """
    nz = volume.n_slices
    if slice_range is None:
        logger.warning("No slice range given - skip cropping.")
        return False
    start, end = (int(v) for v in slice_range)
    if start < 0 or start > end or end >= nz:
        logger.warning(
            "Invalid slice range [%d, %d] for slices 0 - %d - skip cropping.", start, end, nz - 1
        )
        return False

    logger.info("Crop from slice %d to %d", start, end)
    volume.data = volume.data[start:end + 1].copy()
    x0, y0, z0 = volume.origin
    volume.origin = (x0, y0, z0 + start * volume.spacing[2])
    return True
