"""Exception hierarchy for vol2mesh.

Loading failures (:class:`InputNotFound`, :class:`NoDataFound`) and an empty
extraction result (:class:`EmptyMesh`) abort a conversion run.
:class:`InvalidParameter` is only raised by the data-model constructors; the
mesh pipeline stages log the problem and skip themselves instead.
"""

from __future__ import annotations


class Vol2MeshError(Exception):
    """Base class for every error raised by vol2mesh."""


class InputNotFound(Vol2MeshError, FileNotFoundError):
    """An input path (directory, image or mesh file) does not exist."""


class NoDataFound(Vol2MeshError):
    """The loaded volume is empty or degenerate (zero extent on an axis)."""


class EmptyMesh(Vol2MeshError):
    """Surface extraction produced a mesh without faces."""


class InvalidParameter(Vol2MeshError, ValueError):
    """A numeric parameter lies outside its admissible range."""


class ConfigurationError(Vol2MeshError, ValueError):
    """Mutually exclusive or incomplete options were combined."""


class CodecError(Vol2MeshError):
    """Base class for mesh file import/export errors."""


class UnsupportedFormat(CodecError):
    """The file extension does not name a supported mesh format."""


class MissingExtension(CodecError):
    """The mesh file path has no extension to select a format from."""


class MeshFormatError(CodecError):
    """A mesh file could not be parsed."""
