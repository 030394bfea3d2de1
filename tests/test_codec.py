"""Tests for vol2mesh.codec: OBJ, STL and PLY import/export."""
from __future__ import annotations

import struct

import numpy as np
import numpy.testing as npt
import pytest

from vol2mesh import (
    InputNotFound,
    Mesh,
    MeshFormatError,
    MissingExtension,
    RecordingProgress,
    UnsupportedFormat,
    compute_vertex_normals_averaged,
    compute_vertex_normals_trivial,
    export_mesh,
    import_mesh,
    mesh_format,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _box_mesh(h: float = 0.5) -> Mesh:
    """12-triangle watertight box [-h, h]^3."""
    verts = np.array([
        [-h, -h, -h], [h, -h, -h], [h, h, -h], [-h, h, -h],
        [-h, -h, h], [h, -h, h], [h, h, h], [-h, h, h],
    ])
    faces = [
        (0, 2, 1), (0, 3, 2),   # -Z
        (4, 5, 6), (4, 6, 7),   # +Z
        (0, 4, 7), (0, 7, 3),   # -X
        (1, 2, 6), (1, 6, 5),   # +X
        (0, 1, 5), (0, 5, 4),   # -Y
        (3, 7, 6), (3, 6, 2),   # +Y
    ]
    return Mesh(verts, faces)


def _lines(path) -> list[str]:
    return path.read_text().splitlines()


# ---------------------------------------------------------------------------
# Format selection
# ---------------------------------------------------------------------------

class TestMeshFormat:
    @pytest.mark.parametrize("name, fmt", [
        ("a.obj", "obj"), ("a.STL", "stl"), ("dir/b.Ply", "ply"), ("x.y.obj", "obj"),
    ])
    def test_known(self, name, fmt):
        assert mesh_format(name) == fmt

    def test_missing_extension(self):
        with pytest.raises(MissingExtension):
            mesh_format("mesh")

    def test_unsupported(self):
        with pytest.raises(UnsupportedFormat):
            mesh_format("mesh.vtk")

    def test_export_unsupported(self, tmp_path):
        with pytest.raises(UnsupportedFormat):
            export_mesh(_box_mesh(), tmp_path / "m.off")
        assert not (tmp_path / "m.off").exists()

    def test_import_missing_file(self, tmp_path):
        with pytest.raises(InputNotFound):
            import_mesh(tmp_path / "nope.stl")


# ---------------------------------------------------------------------------
# Vertex normals
# ---------------------------------------------------------------------------

class TestVertexNormals:
    def test_last_write_wins(self):
        # vertices 0 and 1 are shared by a z-facing and a y-facing triangle
        m = Mesh(
            [[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1], [5, 5, 5]],
            [[0, 1, 2], [0, 3, 1]],
        )
        n = compute_vertex_normals_trivial(m)
        npt.assert_allclose(n[0], [0, 1, 0])
        npt.assert_allclose(n[1], [0, 1, 0])
        npt.assert_allclose(n[2], [0, 0, 1])
        npt.assert_allclose(n[3], [0, 1, 0])
        # unreferenced vertex keeps the default
        npt.assert_allclose(n[4], [1, 0, 0])

    def test_face_order_decides(self):
        m = Mesh([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], [[0, 3, 1], [0, 1, 2]])
        npt.assert_allclose(compute_vertex_normals_trivial(m)[0], [0, 0, 1])

    def test_averaged_unit_length(self):
        n = compute_vertex_normals_averaged(_box_mesh())
        npt.assert_allclose(np.linalg.norm(n, axis=1), 1.0)
        # box corner normals point outward along the diagonal
        npt.assert_allclose(n[6], np.ones(3) / np.sqrt(3), atol=0.2)

    def test_averaged_empty_default(self):
        m = Mesh([[0, 0, 0.0]], np.zeros((0, 3), dtype=int))
        npt.assert_array_equal(compute_vertex_normals_averaged(m), [[1, 0, 0]])


# ---------------------------------------------------------------------------
# OBJ
# ---------------------------------------------------------------------------

class TestObj:
    def test_layout(self, tmp_path):
        p = export_mesh(_box_mesh(), tmp_path / "box.obj")
        lines = _lines(p)
        assert lines[0].startswith("#")
        assert lines[1] == "g default"
        assert sum(l.startswith("v ") for l in lines) == 8
        assert sum(l.startswith("vn ") for l in lines) == 8
        assert "g polyDefault" in lines and "s off" in lines
        faces = [l for l in lines if l.startswith("f ")]
        assert len(faces) == 12
        assert faces[0] == "f 1//1 3//3 2//2"
        assert lines[-1] == "#end of obj file"

    def test_vertex_precision(self, tmp_path):
        m = Mesh([[0.1234567, 1, 2], [0, 1, 0], [0, 0, 1]], [[0, 1, 2]])
        lines = _lines(export_mesh(m, tmp_path / "t.obj"))
        assert "v 0.123457 1.000000 2.000000" in lines

    def test_round_trip(self, tmp_path):
        m = _box_mesh()
        back = import_mesh(export_mesh(m, tmp_path / "box.obj"))
        assert back.n_faces == m.n_faces
        npt.assert_array_equal(back.faces, m.faces)
        npt.assert_allclose(back.vertices, m.vertices, atol=1e-6)

    def test_averaged_normals_written(self, tmp_path):
        p = export_mesh(_box_mesh(), tmp_path / "box.obj", normals="averaged")
        vn = [l for l in _lines(p) if l.startswith("vn ")]
        assert all(abs(float(c)) > 0.5 for c in vn[6].split()[1:])

    def test_bad_normals_mode(self, tmp_path):
        with pytest.raises(ValueError):
            export_mesh(_box_mesh(), tmp_path / "box.obj", normals="smooth")

    def test_import_polygons_and_index_forms(self, tmp_path):
        p = tmp_path / "quad.obj"
        p.write_text(
            "# quad and a triangle\n"
            "v 0 0 0\nv 1 0 0\nv 1 1 0\nv 0 1 0\n"
            "vt 0 0\nvn 0 0 1\n"
            "f 1/1/1 2/1/1 3/1/1 4/1/1\n"
            "v 0 0 1\n"
            "f -1 1//1 2\n"
        )
        m = import_mesh(p)
        npt.assert_array_equal(m.faces, [[0, 1, 2], [0, 2, 3], [4, 0, 1]])

    def test_import_bad_index(self, tmp_path):
        p = tmp_path / "bad.obj"
        p.write_text("v 0 0 0\nv 1 0 0\nf 1 2 3\n")
        with pytest.raises(MeshFormatError):
            import_mesh(p)


# ---------------------------------------------------------------------------
# STL
# ---------------------------------------------------------------------------

class TestStl:
    def test_ascii_round_trip_merges_vertices(self, tmp_path):
        m = _box_mesh()
        p = export_mesh(m, tmp_path / "box.stl")
        assert p.read_text().startswith("solid")
        back = import_mesh(p)
        assert back.n_faces == 12
        assert back.n_vertices == 8
        npt.assert_allclose(back.vertices[back.faces], m.vertices[m.faces])

    def test_binary_size_invariant(self, tmp_path):
        p = export_mesh(_box_mesh(), tmp_path / "box.stl", binary=True)
        raw = p.read_bytes()
        assert len(raw) == 84 + 50 * 12
        assert struct.unpack_from("<I", raw, 80)[0] == 12

    def test_binary_round_trip(self, tmp_path):
        m = _box_mesh()
        back = import_mesh(export_mesh(m, tmp_path / "box.stl", binary=True))
        assert back.n_faces == 12
        assert back.n_vertices == 8
        npt.assert_allclose(back.vertices[back.faces], m.vertices[m.faces], atol=1e-6)

    def test_binary_header_starting_with_solid(self, tmp_path):
        p = tmp_path / "solid.stl"
        tri = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype="<f4")
        rec = struct.pack("<3f", 0, 0, 1) + tri.tobytes() + struct.pack("<H", 0)
        p.write_bytes(b"solid but binary".ljust(80, b" ") + struct.pack("<I", 1) + rec)
        assert import_mesh(p).n_faces == 1

    def test_binary_normals(self, tmp_path):
        p = export_mesh(_box_mesh(), tmp_path / "box.stl", binary=True)
        normal = struct.unpack_from("<3f", p.read_bytes(), 84)
        npt.assert_allclose(normal, [0, 0, -1])

    def test_ascii_truncated(self, tmp_path):
        p = tmp_path / "bad.stl"
        p.write_text("solid x\nfacet normal 0 0 1\nouter loop\nvertex 0 0 0\nvertex 1 0 0\nendloop\nendfacet\nendsolid x\n")
        with pytest.raises(MeshFormatError):
            import_mesh(p)


# ---------------------------------------------------------------------------
# PLY
# ---------------------------------------------------------------------------

class TestPly:
    def test_ascii_export(self, tmp_path):
        p = export_mesh(_box_mesh(), tmp_path / "box.ply", binary=True)
        lines = _lines(p)
        assert lines[:2] == ["ply", "format ascii 1.0"]
        assert "element vertex 8" in lines and "element face 12" in lines
        assert lines[lines.index("end_header") + 9] == "3 0 2 1"

    def test_round_trip(self, tmp_path):
        m = _box_mesh()
        back = import_mesh(export_mesh(m, tmp_path / "box.ply"))
        assert back.n_faces == m.n_faces
        npt.assert_array_equal(back.faces, m.faces)
        npt.assert_allclose(back.vertices, m.vertices)

    @pytest.mark.parametrize("fmt, endian", [("binary_little_endian", "<"), ("binary_big_endian", ">")])
    def test_binary_import(self, tmp_path, fmt, endian):
        header = (
            "ply\n"
            f"format {fmt} 1.0\n"
            "element vertex 4\n"
            "property float x\nproperty float y\nproperty float z\n"
            "property uchar red\n"
            "element face 1\n"
            "property list uchar int vertex_indices\n"
            "end_header\n"
        ).encode("ascii")
        body = b""
        for v in ([0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]):
            body += struct.pack(endian + "3fB", *v, 255)
        body += struct.pack(endian + "B4i", 4, 0, 1, 2, 3)
        p = tmp_path / "quad.ply"
        p.write_bytes(header + body)
        m = import_mesh(p)
        npt.assert_array_equal(m.faces, [[0, 1, 2], [0, 2, 3]])
        npt.assert_allclose(m.vertices[2], [1, 1, 0])

    def test_ascii_import_extra_properties(self, tmp_path):
        p = tmp_path / "tri.ply"
        p.write_text(
            "ply\nformat ascii 1.0\ncomment made by hand\n"
            "element vertex 3\nproperty double z\nproperty double x\nproperty double y\n"
            "element face 1\nproperty uchar flags\nproperty list uchar int vertex_index\n"
            "end_header\n"
            "3 1 2\n6 4 5\n9 7 8\n"
            "0 3 0 1 2\n"
        )
        m = import_mesh(p)
        npt.assert_array_equal(m.faces, [[0, 1, 2]])
        npt.assert_allclose(m.vertices[0], [1, 2, 3])

    def test_not_a_ply(self, tmp_path):
        p = tmp_path / "x.ply"
        p.write_text("hello\n")
        with pytest.raises(MeshFormatError):
            import_mesh(p)


# ---------------------------------------------------------------------------
# Round trips and progress
# ---------------------------------------------------------------------------

class TestRoundTrip:
    @pytest.mark.parametrize("name, binary", [
        ("m.obj", False), ("m.stl", False), ("m.stl", True), ("m.ply", False),
    ])
    def test_face_count_invariant(self, tmp_path, name, binary):
        rng = np.random.default_rng(3)
        m = Mesh(rng.normal(size=(30, 3)), rng.integers(0, 30, size=(40, 3)))
        m.replace(m.vertices, m.faces[(m.faces[:, 0] != m.faces[:, 1]) & (m.faces[:, 1] != m.faces[:, 2]) & (m.faces[:, 0] != m.faces[:, 2])])
        back = import_mesh(export_mesh(m, tmp_path / name, binary=binary))
        assert back.n_faces == m.n_faces

    def test_parent_directory_created(self, tmp_path):
        p = export_mesh(_box_mesh(), tmp_path / "a" / "b" / "box.stl")
        assert p.exists()

    def test_progress(self, tmp_path):
        rec = RecordingProgress()
        p = export_mesh(_box_mesh(), tmp_path / "box.obj", progress=rec)
        import_mesh(p, progress=rec)
        assert rec.stages() == ["Export", "Import"]
        assert rec.fractions("Export")[-1] == 1.0
        assert rec.fractions("Import")[-1] == 1.0
