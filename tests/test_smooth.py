"""Tests for vol2mesh.smooth.LaplacianSmoother."""
from __future__ import annotations

import numpy as np
import numpy.testing as npt

from vol2mesh import LaplacianSmoother
from vol2mesh.smooth import FEATURE_ANGLE, RELAXATION_FACTOR, _feature_edges


def _grid(n: int = 7):
    xs, ys = np.meshgrid(np.arange(n, dtype=float), np.arange(n, dtype=float))
    verts = np.stack([xs.ravel(), ys.ravel(), np.zeros(n * n)], axis=1)
    faces = []
    for j in range(n - 1):
        for i in range(n - 1):
            a = j * n + i
            faces += [(a, a + 1, a + n + 1), (a, a + n + 1, a + n)]
    return verts, np.array(faces)


def _box():
    verts = np.array([
        [-1, -1, -1], [1, -1, -1], [1, 1, -1], [-1, 1, -1],
        [-1, -1, 1], [1, -1, 1], [1, 1, 1], [-1, 1, 1],
    ], dtype=np.float64)
    faces = np.array([
        (0, 2, 1), (0, 3, 2), (4, 5, 6), (4, 6, 7),
        (0, 4, 7), (0, 7, 3), (1, 2, 6), (1, 6, 5),
        (0, 1, 5), (0, 5, 4), (3, 7, 6), (3, 6, 2),
    ])
    return verts, faces


class TestDefaults:
    def test_constants(self):
        assert FEATURE_ANGLE == 45.0
        assert RELAXATION_FACTOR == 0.05
        s = LaplacianSmoother()
        assert s.feature_angle == 45.0 and s.relaxation == 0.05


class TestFeatureEdges:
    def test_box_edges(self):
        verts, faces = _box()
        edges, feature = _feature_edges(verts, faces, 45.0)
        # 12 cube edges are sharp, 6 face diagonals are flat
        assert len(edges) == 18
        assert feature.sum() == 12

    def test_grid_boundary(self):
        verts, faces = _grid(4)
        edges, feature = _feature_edges(verts, faces, 45.0)
        assert feature.sum() == 12


class TestLaplacianSmoother:
    def test_bump_flattened(self):
        verts, faces = _grid()
        bump = 3 * 7 + 3
        verts[bump, 2] = 0.1
        out = LaplacianSmoother()(verts, faces, 20)
        assert 0.0 < out[bump, 2] < 0.1

    def test_single_pass_relaxation(self):
        verts, faces = _grid()
        bump = 3 * 7 + 3
        verts[bump, 2] = 0.1
        out = LaplacianSmoother()(verts, faces, 1)
        # all neighbours of the bump lie at z=0
        npt.assert_allclose(out[bump, 2], 0.1 * (1 - RELAXATION_FACTOR))

    def test_corners_fixed(self):
        verts, faces = _grid()
        verts[:, 2] = np.random.default_rng(1).normal(scale=0.01, size=len(verts))
        out = LaplacianSmoother()(verts, faces, 10)
        for corner in (0, 6, 42, 48):
            npt.assert_array_equal(out[corner], verts[corner])

    def test_straight_boundary_slides_only_along_line(self):
        verts, faces = _grid()
        verts[3, 0] += 0.2  # boundary vertex on y=0
        out = LaplacianSmoother()(verts, faces, 5)
        assert out[3, 1] == 0.0 and out[3, 2] == 0.0
        assert out[3, 0] < verts[3, 0]

    def test_box_unchanged(self):
        verts, faces = _box()
        npt.assert_array_equal(LaplacianSmoother()(verts, faces, 20), verts)

    def test_input_not_modified(self):
        verts, faces = _grid()
        verts[24, 2] = 0.1
        before = verts.copy()
        LaplacianSmoother()(verts, faces, 5)
        npt.assert_array_equal(verts, before)

    def test_unreferenced_vertex_fixed(self):
        verts, faces = _grid(3)
        verts = np.vstack([verts, [[9.0, 9.0, 9.0]]])
        out = LaplacianSmoother()(verts, faces, 5)
        npt.assert_array_equal(out[-1], [9.0, 9.0, 9.0])
