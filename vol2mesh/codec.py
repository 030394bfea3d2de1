"""Mesh file import and export: OBJ, STL and PLY.

The format is chosen from the file extension (case-insensitive).

Export
------
- **OBJ**: ``v`` / ``vn`` / ``f a//a b//b c//c`` records.  Vertex normals
  are *last-write-wins* by default: each vertex carries the normal of the
  last face (in face order) that references it.  ``normals="averaged"``
  writes area-weighted averages instead.
- **STL**: ASCII, or binary with ``binary=True``.
- **PLY**: ASCII only.

Import
------
- **OBJ**: ``v`` and ``f`` records; ``v/vt/vn`` index forms, negative
  (relative) indices, polygons fan-triangulated.
- **STL**: binary (detected by the ``84 + 50 * F`` size invariant) or ASCII.
  Coincident corner positions are merged back into shared vertices.
- **PLY**: ASCII, ``binary_little_endian`` and ``binary_big_endian``.
"""

from __future__ import annotations

import logging
import os
import struct
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import numpy.typing as npt

from ._math import _face_normals, _last_face_per_vertex, _unit_rows
from .errors import InputNotFound, MeshFormatError, MissingExtension, UnsupportedFormat
from .mesh import Mesh
from .progress import ProgressReporter, ensure_reporter

logger = logging.getLogger(__name__)

_Array = npt.NDArray[np.floating]
_PathLike = Union[str, "os.PathLike[str]"]

FORMATS = ("obj", "stl", "ply")
NORMAL_MODES = ("trivial", "averaged")


def mesh_format(path: _PathLike) -> str:
    """Return the lower-case format name for *path*.

    Raises
    ------
    MissingExtension
        *path* has no extension.
    UnsupportedFormat
        The extension is not one of :data:`FORMATS`.
    """
    suffix = Path(path).suffix
    if not suffix or suffix == ".":
        raise MissingExtension(f"No file extension in {os.fspath(path)!r}")
    fmt = suffix[1:].lower()
    if fmt not in FORMATS:
        raise UnsupportedFormat(f"Unknown mesh file type {suffix!r} (expected one of {', '.join(FORMATS)})")
    return fmt


# ---------------------------------------------------------------------------
# Vertex normals
# ---------------------------------------------------------------------------

def compute_vertex_normals_trivial(mesh: Mesh) -> _Array:
    """Per-vertex normals where the last referencing face wins.

    Vertices no face references keep the default ``(1, 0, 0)``.
    """
    normals = np.tile(np.array([1.0, 0.0, 0.0]), (mesh.n_vertices, 1))
    if mesh.n_faces:
        face_n = _face_normals(mesh.vertices, mesh.faces)
        vids, fids = _last_face_per_vertex(mesh.n_vertices, mesh.faces)
        normals[vids] = face_n[fids]
    return normals


def compute_vertex_normals_averaged(mesh: Mesh) -> _Array:
    """Area-weighted average of the incident face normals, unit length.

    Vertices without faces (or whose faces cancel out) get ``(1, 0, 0)``.
    """
    acc = np.zeros((mesh.n_vertices, 3))
    if mesh.n_faces:
        face_n = _face_normals(mesh.vertices, mesh.faces, normalize=False)
        for k in range(3):
            np.add.at(acc, mesh.faces[:, k], face_n)
    normals = _unit_rows(acc)
    normals[np.linalg.norm(normals, axis=1) == 0.0] = (1.0, 0.0, 0.0)
    return normals


# ---------------------------------------------------------------------------
# OBJ
# ---------------------------------------------------------------------------

def _write_obj(mesh: Mesh, path: Path, binary: bool, normals: str, progress: ProgressReporter) -> None:
    if binary:
        logger.debug("OBJ has no binary variant; writing ASCII")
    vn = compute_vertex_normals_averaged(mesh) if normals == "averaged" else compute_vertex_normals_trivial(mesh)
    progress.update("Export", 0.2)
    idx = mesh.faces + 1
    with open(path, "w", encoding="ascii") as fh:
        fh.write("#vol2mesh obj exporter\n")
        fh.write("g default\n")
        np.savetxt(fh, mesh.vertices, fmt="v %f %f %f")
        np.savetxt(fh, vn, fmt="vn %f %f %f")
        progress.update("Export", 0.6)
        fh.write("\ng polyDefault\n")
        fh.write("s off\n")
        np.savetxt(fh, np.repeat(idx, 2, axis=1), fmt="f %d//%d %d//%d %d//%d")
        fh.write("\n\n#end of obj file\n")


def _obj_index(token: str, n_vertices: int, lineno: int) -> int:
    raw = token.split("/", 1)[0]
    try:
        i = int(raw)
    except ValueError:
        raise MeshFormatError(f"line {lineno}: bad face index {token!r}") from None
    i = n_vertices + i if i < 0 else i - 1
    if not 0 <= i < n_vertices:
        raise MeshFormatError(f"line {lineno}: face index {token!r} out of range")
    return i


def _read_obj(path: Path, progress: ProgressReporter) -> Mesh:
    verts: List[List[float]] = []
    faces: List[Tuple[int, int, int]] = []
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        for lineno, line in enumerate(fh, start=1):
            parts = line.split()
            if not parts:
                continue
            if parts[0] == "v":
                try:
                    verts.append([float(parts[1]), float(parts[2]), float(parts[3])])
                except (IndexError, ValueError):
                    raise MeshFormatError(f"line {lineno}: bad vertex record") from None
            elif parts[0] == "f":
                ids = [_obj_index(t, len(verts), lineno) for t in parts[1:]]
                if len(ids) < 3:
                    raise MeshFormatError(f"line {lineno}: face with fewer than 3 vertices")
                for k in range(1, len(ids) - 1):
                    faces.append((ids[0], ids[k], ids[k + 1]))
    progress.update("Import", 0.9)
    return Mesh(np.array(verts).reshape(-1, 3), np.array(faces, dtype=np.int64).reshape(-1, 3))


# ---------------------------------------------------------------------------
# STL
# ---------------------------------------------------------------------------

_STL_RECORD = np.dtype([
    ("normal", "<f4", (3,)),
    ("vertices", "<f4", (3, 3)),
    ("attr", "<u2"),
])


def _write_stl(mesh: Mesh, path: Path, binary: bool, normals: str, progress: ProgressReporter) -> None:
    fn = _face_normals(mesh.vertices, mesh.faces)
    tris = mesh.vertices[mesh.faces]
    progress.update("Export", 0.3)
    if binary:
        records = np.zeros(mesh.n_faces, dtype=_STL_RECORD)
        records["normal"] = fn
        records["vertices"] = tris
        header = b"vol2mesh binary STL".ljust(80, b" ")
        with open(path, "wb") as fh:
            fh.write(header)
            fh.write(struct.pack("<I", mesh.n_faces))
            fh.write(records.tobytes())
        return

    with open(path, "w", encoding="ascii") as fh:
        fh.write("solid vol2mesh\n")
        for n, t in zip(fn, tris):
            fh.write(f" facet normal {n[0]:e} {n[1]:e} {n[2]:e}\n")
            fh.write("  outer loop\n")
            for p in t:
                fh.write(f"   vertex {p[0]:e} {p[1]:e} {p[2]:e}\n")
            fh.write("  endloop\n endfacet\n")
        fh.write("endsolid vol2mesh\n")


def _merge_corners(tris: _Array) -> Mesh:
    """Indexed mesh from ``(F, 3, 3)`` triangle corners, sharing equal points.

    Vertices are numbered in order of first appearance.
    """
    corners = tris.reshape(-1, 3)
    if len(corners) == 0:
        return Mesh.empty()
    uniq, first, inverse = np.unique(corners, axis=0, return_index=True, return_inverse=True)
    order = np.argsort(first)
    rank = np.empty(len(order), dtype=np.int64)
    rank[order] = np.arange(len(order))
    return Mesh(uniq[order], rank[inverse.reshape(-1)].reshape(-1, 3))


def _read_stl(path: Path, progress: ProgressReporter) -> Mesh:
    raw = path.read_bytes()
    if len(raw) >= 84:
        count = struct.unpack_from("<I", raw, 80)[0]
        if len(raw) == 84 + 50 * count:
            records = np.frombuffer(raw, dtype=_STL_RECORD, count=count, offset=84)
            progress.update("Import", 0.5)
            return _merge_corners(records["vertices"].astype(np.float64))

    verts: List[List[float]] = []
    for lineno, line in enumerate(raw.decode("ascii", errors="replace").splitlines(), start=1):
        parts = line.split()
        if parts and parts[0] == "vertex":
            try:
                verts.append([float(parts[1]), float(parts[2]), float(parts[3])])
            except (IndexError, ValueError):
                raise MeshFormatError(f"line {lineno}: bad vertex record") from None
    if len(verts) % 3:
        raise MeshFormatError(f"{path}: vertex count {len(verts)} is not a multiple of 3")
    progress.update("Import", 0.5)
    return _merge_corners(np.array(verts, dtype=np.float64).reshape(-1, 3, 3))


# ---------------------------------------------------------------------------
# PLY
# ---------------------------------------------------------------------------

_PLY_TYPES: Dict[str, str] = {
    "char": "i1", "int8": "i1", "uchar": "u1", "uint8": "u1",
    "short": "i2", "int16": "i2", "ushort": "u2", "uint16": "u2",
    "int": "i4", "int32": "i4", "uint": "u4", "uint32": "u4",
    "float": "f4", "float32": "f4", "double": "f8", "float64": "f8",
}


class _PlyElement:
    """One ``element`` block of a PLY header."""

    def __init__(self, name: str, count: int) -> None:
        self.name = name
        self.count = count
        # (name, value type, list count type or None)
        self.properties: List[Tuple[str, str, Optional[str]]] = []

    @property
    def has_list(self) -> bool:
        return any(p[2] is not None for p in self.properties)


def _ply_type(name: str) -> str:
    try:
        return _PLY_TYPES[name]
    except KeyError:
        raise MeshFormatError(f"unknown PLY property type {name!r}") from None


def _parse_ply_header(raw: bytes) -> Tuple[str, List[_PlyElement], int]:
    end = raw.find(b"end_header")
    if not raw.startswith(b"ply") or end < 0:
        raise MeshFormatError("not a PLY file")
    body = raw.index(b"\n", end) + 1
    fmt = ""
    elements: List[_PlyElement] = []
    for line in raw[:end].decode("ascii", errors="replace").splitlines()[1:]:
        parts = line.split()
        if not parts or parts[0] in ("comment", "obj_info"):
            continue
        if parts[0] == "format":
            fmt = parts[1]
        elif parts[0] == "element":
            elements.append(_PlyElement(parts[1], int(parts[2])))
        elif parts[0] == "property":
            if not elements:
                raise MeshFormatError("PLY property before any element")
            if parts[1] == "list":
                elements[-1].properties.append((parts[4], _ply_type(parts[3]), _ply_type(parts[2])))
            else:
                elements[-1].properties.append((parts[2], _ply_type(parts[1]), None))
    if fmt not in ("ascii", "binary_little_endian", "binary_big_endian"):
        raise MeshFormatError(f"unsupported PLY format {fmt!r}")
    return fmt, elements, body


def _ply_face_list(element: _PlyElement) -> str:
    for name, _, count_type in element.properties:
        if count_type is not None and name in ("vertex_indices", "vertex_index"):
            return name
    raise MeshFormatError("PLY face element has no vertex_indices list")


def _read_ply_ascii(text: str, elements: List[_PlyElement]) -> Tuple[_Array, List[List[int]]]:
    lines = iter(text.splitlines())
    verts = np.zeros((0, 3))
    polys: List[List[int]] = []
    for el in elements:
        rows = []
        for _ in range(el.count):
            try:
                rows.append(next(lines).split())
            except StopIteration:
                raise MeshFormatError(f"PLY body ends inside element {el.name!r}") from None
        if el.name == "vertex":
            names = [p[0] for p in el.properties]
            cols = [names.index(c) for c in ("x", "y", "z")]
            verts = np.array([[float(r[c]) for c in cols] for r in rows]).reshape(-1, 3)
        elif el.name == "face":
            key = _ply_face_list(el)
            for r in rows:
                pos = 0
                for name, _, count_type in el.properties:
                    if count_type is None:
                        pos += 1
                        continue
                    n = int(r[pos])
                    if name == key:
                        polys.append([int(v) for v in r[pos + 1:pos + 1 + n]])
                    pos += 1 + n
    return verts, polys


def _read_ply_binary(raw: bytes, offset: int, elements: List[_PlyElement], endian: str) -> Tuple[_Array, List[List[int]]]:
    verts = np.zeros((0, 3))
    polys: List[List[int]] = []
    for el in elements:
        if not el.has_list:
            dtype = np.dtype([(name, endian + t) for name, t, _ in el.properties])
            data = np.frombuffer(raw, dtype=dtype, count=el.count, offset=offset)
            offset += dtype.itemsize * el.count
            if el.name == "vertex":
                verts = np.stack([data["x"], data["y"], data["z"]], axis=1).astype(np.float64)
            continue

        key = _ply_face_list(el) if el.name == "face" else None
        for _ in range(el.count):
            for name, t, count_type in el.properties:
                if count_type is None:
                    offset += np.dtype(t).itemsize
                    continue
                n = int(np.frombuffer(raw, dtype=endian + count_type, count=1, offset=offset)[0])
                offset += np.dtype(count_type).itemsize
                values = np.frombuffer(raw, dtype=endian + t, count=n, offset=offset)
                offset += np.dtype(t).itemsize * n
                if name == key:
                    polys.append(values.astype(np.int64).tolist())
    return verts, polys


def _read_ply(path: Path, progress: ProgressReporter) -> Mesh:
    raw = path.read_bytes()
    fmt, elements, body = _parse_ply_header(raw)
    try:
        if fmt == "ascii":
            verts, polys = _read_ply_ascii(raw[body:].decode("ascii", errors="replace"), elements)
        else:
            endian = "<" if fmt == "binary_little_endian" else ">"
            verts, polys = _read_ply_binary(raw, body, elements, endian)
    except (ValueError, IndexError) as exc:
        raise MeshFormatError(f"{path}: {exc}") from exc
    progress.update("Import", 0.8)

    faces = [(p[0], p[k], p[k + 1]) for p in polys for k in range(1, len(p) - 1)]
    return Mesh(verts, np.array(faces, dtype=np.int64).reshape(-1, 3))


def _write_ply(mesh: Mesh, path: Path, binary: bool, normals: str, progress: ProgressReporter) -> None:
    if binary:
        logger.debug("PLY export is ASCII only; ignoring the binary flag")
    header = "\n".join([
        "ply",
        "format ascii 1.0",
        "comment vol2mesh",
        f"element vertex {mesh.n_vertices}",
        "property float x",
        "property float y",
        "property float z",
        f"element face {mesh.n_faces}",
        "property list uchar int vertex_indices",
        "end_header",
    ])
    with open(path, "w", encoding="ascii") as fh:
        fh.write(header + "\n")
        np.savetxt(fh, mesh.vertices, fmt="%.9g")
        progress.update("Export", 0.5)
        np.savetxt(fh, mesh.faces, fmt="3 %d %d %d")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

_Reader = Callable[[Path, ProgressReporter], Mesh]
_Writer = Callable[[Mesh, Path, bool, str, ProgressReporter], None]

_READERS: Dict[str, _Reader] = {"obj": _read_obj, "stl": _read_stl, "ply": _read_ply}
_WRITERS: Dict[str, _Writer] = {"obj": _write_obj, "stl": _write_stl, "ply": _write_ply}


def import_mesh(path: _PathLike, *, progress: Optional[ProgressReporter] = None) -> Mesh:
    """Read an OBJ, STL or PLY file.

    Raises
    ------
    MissingExtension, UnsupportedFormat
        The extension does not select a reader.
    InputNotFound
        *path* does not exist.
    MeshFormatError
        The file content could not be parsed.
    """
    progress = ensure_reporter(progress)
    fmt = mesh_format(path)
    path = Path(path)
    if not path.is_file():
        raise InputNotFound(f"Mesh file not found: {path}")

    logger.info("Load %s file %s", fmt, path)
    progress.update("Import", 0.0)
    try:
        mesh = _READERS[fmt](path, progress)
    except ValueError as exc:
        raise MeshFormatError(f"{path}: {exc}") from exc
    progress.update("Import", 1.0)
    logger.info("Imported %d vertices, %d faces", mesh.n_vertices, mesh.n_faces)
    return mesh


def export_mesh(
    mesh: Mesh,
    path: _PathLike,
    *,
    binary: bool = False,
    normals: str = "trivial",
    progress: Optional[ProgressReporter] = None,
) -> Path:
    """Write *mesh* to *path*, choosing the format from the extension.

    Parameters
    ----------
    binary:
        Binary output where the format has one (STL).
    normals:
        ``"trivial"`` (last-write-wins) or ``"averaged"`` vertex normals for
        OBJ output.
    progress:
        Receives ``"Export"`` updates.

    Returns
    -------
    pathlib.Path
        The written file.
    """
    progress = ensure_reporter(progress)
    fmt = mesh_format(path)
    if normals not in NORMAL_MODES:
        raise ValueError(f"normals must be one of {NORMAL_MODES}, got {normals!r}")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Mesh export as %s file: %s", fmt, path)
    progress.update("Export", 0.0)
    _WRITERS[fmt](mesh, path, binary, normals, progress)
    progress.update("Export", 1.0)
    return path
