"""Tests for vol2mesh.converter.Converter."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from skimage import io as skio

from vol2mesh import (
    ConfigurationError,
    Converter,
    EmptyMesh,
    InputNotFound,
    Mesh,
    PipelineConfig,
    RecordingProgress,
    UnsupportedFormat,
    export_mesh,
    import_mesh,
)


def _cube_pngs(directory: Path) -> tuple[str, ...]:
    """Five 16x16 slices with a bright 6x6x3 block in the middle."""
    paths = []
    for k in range(5):
        img = np.zeros((16, 16), dtype=np.uint8)
        if 1 <= k <= 3:
            img[5:11, 5:11] = 200
        p = directory / f"img_{k}.png"
        skio.imsave(p, img, check_contrast=False)
        paths.append(str(p))
    return tuple(paths)


class TestConverter:
    def test_extract_and_export(self, tmp_path):
        out = tmp_path / "out" / "cube.obj"
        cfg = PipelineConfig(image_paths=_cube_pngs(tmp_path), threshold=100, output_path=str(out))
        result = Converter(cfg).run()
        assert out.exists()
        assert result.output_path == out
        assert result.info_path == tmp_path / "out" / "cube.info"
        assert result.info_path.read_text() == cfg.settings_text()
        assert import_mesh(out).n_faces == result.mesh.n_faces

    def test_no_output_path_means_no_export(self, tmp_path):
        cfg = PipelineConfig(image_paths=_cube_pngs(tmp_path), threshold=100)
        result = Converter(cfg).run()
        assert result.output_path is None
        assert result.mesh.n_faces > 0
        assert not list(tmp_path.glob("*.info"))

    def test_threshold_out_of_range_is_empty_mesh(self, tmp_path):
        cfg = PipelineConfig(image_paths=_cube_pngs(tmp_path), threshold=400)
        with pytest.raises(EmptyMesh):
            Converter(cfg).run()

    def test_band_pass_threshold(self, tmp_path):
        paths = _cube_pngs(tmp_path)
        plain = Converter(PipelineConfig(image_paths=paths, threshold=100)).run()
        band = Converter(PipelineConfig(image_paths=paths, threshold=100, upper_threshold=250)).run()
        assert band.mesh.n_faces == plain.mesh.n_faces

    def test_pipeline_stages_run(self, tmp_path):
        cfg = PipelineConfig(
            image_paths=_cube_pngs(tmp_path), threshold=100,
            center=True, filter_ratio=0.1, smooth=True,
        )
        result = Converter(cfg).run()
        assert [s.name for s in result.stages] == ["center", "remove_small_components", "smooth"]
        np.testing.assert_allclose(result.mesh.centroid(), 0.0, atol=0.25)

    def test_crop(self, tmp_path):
        paths = _cube_pngs(tmp_path)
        full = Converter(PipelineConfig(image_paths=paths, threshold=100)).run()
        cropped = Converter(PipelineConfig(image_paths=paths, threshold=100, crop=True, crop_range=(0, 2))).run()
        assert cropped.mesh.n_faces != full.mesh.n_faces
        # an invalid range leaves the volume as it is
        same = Converter(PipelineConfig(image_paths=paths, threshold=100, crop=True, crop_range=(3, 1))).run()
        assert same.mesh.n_faces == full.mesh.n_faces

    def test_mesh_input_is_modified_and_exported(self, tmp_path):
        src = tmp_path / "in.ply"
        box = Mesh(
            [[-1, -1, -1], [1, -1, -1], [1, 1, -1], [-1, 1, -1], [-1, -1, 1], [1, -1, 1], [1, 1, 1], [-1, 1, 1]],
            [(0, 2, 1), (0, 3, 2), (4, 5, 6), (4, 6, 7), (0, 4, 7), (0, 7, 3),
             (1, 2, 6), (1, 6, 5), (0, 1, 5), (0, 5, 4), (3, 7, 6), (3, 6, 2)],
        )
        box.translate([3.0, 0.0, 0.0])
        export_mesh(box, src)
        out = tmp_path / "out.stl"
        result = Converter(PipelineConfig(input_path=str(src), center=True, output_path=str(out))).run()
        assert result.mesh.n_faces == 12
        np.testing.assert_allclose(import_mesh(out).centroid(), 0.0, atol=1e-5)

    def test_progress_stages(self, tmp_path):
        rec = RecordingProgress()
        cfg = PipelineConfig(image_paths=_cube_pngs(tmp_path), threshold=100, output_path=str(tmp_path / "m.stl"))
        Converter(cfg, rec).run()
        assert rec.stages() == ["Load images", "Extract surface", "Export"]


class TestConverterErrors:
    def test_no_input(self):
        with pytest.raises(ConfigurationError):
            Converter(PipelineConfig()).run()

    def test_missing_directory(self, tmp_path):
        with pytest.raises(InputNotFound):
            Converter(PipelineConfig(input_path=str(tmp_path / "missing"))).run()

    def test_missing_mesh_file(self, tmp_path):
        with pytest.raises(InputNotFound):
            Converter(PipelineConfig(input_path=str(tmp_path / "missing.stl"))).run()

    def test_unsupported_output_checked_first(self, tmp_path):
        cfg = PipelineConfig(input_path=str(tmp_path / "missing"), output_path=str(tmp_path / "m.vtk"))
        with pytest.raises(UnsupportedFormat):
            Converter(cfg).run()
