"""Exceptions raised by the shapefile decoders.

All errors derive from :class:`ShapefileException`. Codec level problems
(bad format strings, buffers of the wrong size, undecodable text) are also
``ValueError`` subclasses so callers that only expect ``ValueError`` from a
parser keep working.
"""

from __future__ import annotations


class ShapefileException(Exception):
    """Base class for shapefile specific problems."""


class CodecError(ShapefileException, ValueError):
    """The structure codec could not decode or encode a buffer."""


class FormatStringError(CodecError):
    """The format string is malformed or does not match the values."""


class SizeMismatchError(CodecError):
    """The buffer length differs from the size implied by the format."""

    def __init__(self, fmt: str, expected: int, actual: int) -> None:
        super().__init__(
            "Format %r expects %d bytes but data is %d bytes"
            % (fmt, expected, actual)
        )
        self.fmt = fmt
        self.expected = expected
        self.actual = actual


class TextDecodeError(CodecError):
    """A text token could not be decoded with the configured encoding."""


class HeaderError(ShapefileException, ValueError):
    """A file header is truncated or internally inconsistent."""


class ShapeTypeError(ShapefileException, ValueError):
    """A shape type code is not part of the Shapefile enumeration."""


class FieldTypeError(ShapefileException, ValueError):
    """A DBF field descriptor carries an unsupported type tag."""


class RecordError(ShapefileException, ValueError):
    """A DBF record value cannot be converted to its declared type."""


__all__ = [
    "ShapefileException",
    "CodecError",
    "FormatStringError",
    "SizeMismatchError",
    "TextDecodeError",
    "HeaderError",
    "ShapeTypeError",
    "FieldTypeError",
    "RecordError",
]
