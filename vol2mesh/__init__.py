"""vol2mesh: surface meshes from volumetric scan data (numpy).

Turns a DICOM series or an ordered stack of raster images into a triangle
surface with marching cubes, post-processes the mesh and writes it as OBJ,
STL or PLY.

Quick start
-----------
>>> from vol2mesh import load_volume, extract_surface, center, decimate, export_mesh
>>> volume = load_volume("path/to/dicom_dir")
>>> mesh = extract_surface(volume, 400)
>>> center(mesh)
>>> decimate(mesh, 0.5)
>>> export_mesh(mesh, "bone.stl", binary=True)

Pipeline
--------
centering → decimation or polygon cap → small-object filter → smoothing.
Each stage mutates the mesh in place and returns a :class:`StageResult`;
invalid parameters are logged and the stage is skipped.

Decimation (quadric edge collapse), connectivity (scipy sparse graphs) and
smoothing (feature-preserving Laplacian) sit behind small protocols
(:class:`Decimator`, :class:`ConnectivityAnalyzer`, :class:`Smoother`,
:class:`IsosurfaceExtractor`) so they can be swapped out.
"""

__version__ = "0.1.0"

from .codec import (
    compute_vertex_normals_averaged,
    compute_vertex_normals_trivial,
    export_mesh,
    import_mesh,
    mesh_format,
)
from .config import PipelineConfig
from .connectivity import ConnectivityAnalyzer, ScipyConnectivity
from .converter import ConversionResult, Converter
from .decimate import Decimator, QuadricDecimator
from .errors import (
    CodecError,
    ConfigurationError,
    EmptyMesh,
    InputNotFound,
    InvalidParameter,
    MeshFormatError,
    MissingExtension,
    NoDataFound,
    UnsupportedFormat,
    Vol2MeshError,
)
from .extract import IsosurfaceExtractor, MarchingCubesExtractor, extract_surface
from .mesh import Mesh
from .pipeline import (
    MeshPipeline,
    StageResult,
    center,
    decimate,
    limit_polygons,
    remove_small_components,
    smooth,
)
from .progress import (
    CallbackProgress,
    LoggingProgress,
    NullProgress,
    ProgressEvent,
    ProgressReporter,
    RecordingProgress,
    TqdmProgress,
)
from .smooth import LaplacianSmoother, Smoother
from .volume import (
    DicomSeries,
    ScalarVolume,
    crop_volume,
    list_dicom_series,
    load_dicom_series,
    load_image_stack,
    load_volume,
)

__all__ = [
    "__version__",
    # data model
    "Mesh", "ScalarVolume", "DicomSeries", "PipelineConfig", "StageResult", "ConversionResult",
    # volume
    "load_volume", "load_dicom_series", "list_dicom_series", "load_image_stack", "crop_volume",
    # extraction
    "extract_surface", "IsosurfaceExtractor", "MarchingCubesExtractor",
    # pipeline
    "center", "decimate", "limit_polygons", "remove_small_components", "smooth", "MeshPipeline",
    "Decimator", "QuadricDecimator", "ConnectivityAnalyzer", "ScipyConnectivity",
    "Smoother", "LaplacianSmoother",
    # codec
    "import_mesh", "export_mesh", "mesh_format",
    "compute_vertex_normals_trivial", "compute_vertex_normals_averaged",
    # orchestration
    "Converter",
    # progress
    "ProgressReporter", "ProgressEvent", "NullProgress", "CallbackProgress",
    "RecordingProgress", "LoggingProgress", "TqdmProgress",
    # errors
    "Vol2MeshError", "InputNotFound", "NoDataFound", "EmptyMesh", "InvalidParameter",
    "ConfigurationError", "CodecError", "UnsupportedFormat", "MissingExtension", "MeshFormatError",
]
