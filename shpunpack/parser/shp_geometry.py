"""SHP geometry reader.

Header, 100 bytes:
- file_code: big-endian ``i32`` at 0 (9994, not checked)
- file_length: big-endian ``i32`` at 24, in 16-bit words
- version, shape_type: little-endian ``i32`` pair at 28
- bbox: 4 x little-endian ``f64`` at 36 (xmin, ymin, xmax, ymax)
- z and m ranges: 4 x little-endian ``f64`` at 68 (zmin, zmax, mmin, mmax)

Record:
- record_number, content_length: big-endian ``i32`` pair, length in words
- shape_type: little-endian ``i32``
- a body whose sections depend on the shape type, all little-endian:
  bbox, part count, point count, part starts, part types (multipatch only),
  points, Z range and values, M range and values, then the single point,
  single Z and single M of the point types.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Tuple

from attrs import define, field

from shpunpack.parser.binutils import calcsize, unpack
from shpunpack.parser.exceptions import (
    HeaderError,
    ShapefileException,
    ShapeTypeError,
)

logger = logging.getLogger(__name__)


HEADER_SIZE = 100

# Measures smaller than this are "no data" per the ESRI whitepaper.
NODATA = -1e38

# Composed types used throughout this module.
BBox = Tuple[float, float, float, float]
Range = Tuple[float, float]
Point2D = Tuple[float, float]


class ShapeType(IntEnum):
    """Geometry kinds defined by the Shapefile specification."""

    NULL_SHAPE = 0
    POINT = 1
    POLYLINE = 3
    POLYGON = 5
    MULTIPOINT = 8
    POINTZ = 11
    POLYLINEZ = 13
    POLYGONZ = 15
    MULTIPOINTZ = 18
    POINTM = 21
    POLYLINEM = 23
    POLYGONM = 25
    MULTIPOINTM = 28
    MULTIPATCH = 31

    @property
    def has_bounding_box(self) -> bool:
        return self.value in (3, 5, 8, 13, 15, 18, 23, 25, 28, 31)

    @property
    def has_parts(self) -> bool:
        return self.value in (3, 5, 13, 15, 23, 25, 31)

    @property
    def has_points(self) -> bool:
        return self.value in (3, 5, 8, 13, 15, 23, 25, 31)

    @property
    def has_z_values(self) -> bool:
        return self.value in (13, 15, 18, 31)

    @property
    def has_m_values(self) -> bool:
        return self.value in (13, 15, 18, 23, 25, 28, 31)

    @property
    def has_single_point(self) -> bool:
        return self.value in (1, 11, 21)

    @property
    def has_single_z(self) -> bool:
        return self.value == 11

    @property
    def has_single_m(self) -> bool:
        return self.value in (11, 21)


def shape_type_from_code(code: int) -> ShapeType:
    """Map a numeric shape type to :class:`ShapeType`.

    Raises:
        ShapeTypeError: If ``code`` is not a known shape type.
    """

    try:
        return ShapeType(code)
    except ValueError as exc:
        raise ShapeTypeError("Unknown shape type %r" % (code,)) from exc


def _measure(value: float) -> Optional[float]:
    return None if value < NODATA else value


@dataclass(frozen=True)
class ShpHeader:
    """SHP file header.

    Attributes:
        file_code: Magic number, 9994 for valid files.
        declared_length: File length in bytes according to the header.
        version: Format version, 1000 for valid files.
        shape_type: Shape type shared by the records of the file.
        bbox: Extents of all shapes (xmin, ymin, xmax, ymax).
        z_range: Elevation range (zmin, zmax).
        m_range: Measure range (mmin, mmax).
    """

    file_code: int
    declared_length: int
    version: int
    shape_type: ShapeType
    bbox: BBox
    z_range: Range
    m_range: Range

    @property
    def has_measures(self) -> bool:
        """True if the file declares a non-zero measure range."""

        return self.m_range != (0.0, 0.0)


@dataclass(frozen=True)
class Shape:
    """A single geometry record.

    Attributes:
        shape_type: Type of this record; may differ from the file type only
            for null shapes.
        record_number: One-based record number from the record header.
        bbox: Extents of the shape, zeros for types without a bounding box.
        points: Vertices as ``(x, y)`` tuples.
        parts: Index of the first point of every part.
        part_types: Part kinds, multipatch only.
        z: Elevation of every point, empty for types without Z.
        z_range: Elevation range of the record.
        m: Measure of every point, ``None`` for "no data".
        m_range: Measure range of the record.
    """

    shape_type: ShapeType
    record_number: int
    bbox: BBox
    points: List[Point2D]
    parts: List[int]
    part_types: List[int]
    z: List[float]
    z_range: Range
    m: List[Optional[float]]
    m_range: Range

    def part_points(self) -> Iterator[List[Point2D]]:
        """Yield the points of each part in turn."""

        if not self.parts:
            return
        bounds = list(self.parts) + [len(self.points)]
        for start, end in zip(bounds, bounds[1:]):
            yield self.points[start:end]


@define
class ShpReader:
    """Reader for the ``.shp`` geometry file.

    Attributes:
        path: Location of the ``.shp`` file.
        header: Header read on construction.
        total_length: File length in bytes after reconciliation with the
            measured size of the file.
    """

    path: Path
    header: Optional[ShpHeader] = field(init=False, default=None)
    total_length: int = field(init=False, default=0)

    _file: Optional[BinaryIO] = field(init=False, default=None, repr=False)

    def __attrs_post_init__(self) -> None:
        self._file = open(self.path, "rb")
        try:
            self.read_header()
        except BaseException:
            self.close()
            raise

    def __enter__(self) -> "ShpReader":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the file handle. Safe to call more than once."""

        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def shape_type(self) -> ShapeType:
        assert self.header is not None
        return self.header.shape_type

    def _handle(self) -> BinaryIO:
        if self._file is None:
            raise ShapefileException("SHP file %s is closed" % (self.path,))
        return self._file

    def _read(self, fmt: str) -> list:
        return unpack(fmt, self._handle().read(calcsize(fmt)))

    def read_header(self) -> ShpHeader:
        """Read the 100-byte header.

        Returns:
            The parsed :class:`ShpHeader`.

        Raises:
            HeaderError: If the file is shorter than the header.
            ShapeTypeError: If the declared shape type is unknown.
        """

        f = self._handle()
        f.seek(0, os.SEEK_END)
        measured = f.tell()
        if measured < HEADER_SIZE:
            raise HeaderError("File too small for SHP header: %s" % self.path)

        f.seek(0)
        raw = f.read(HEADER_SIZE)
        file_code, half_length = unpack(">i20xi", raw[:28])
        version, type_code = unpack("<2i", raw[28:36])
        x_min, y_min, x_max, y_max = unpack("<4d", raw[36:68])
        z_min, z_max, m_min, m_max = unpack("<4d", raw[68:100])

        header = ShpHeader(
            file_code=file_code,
            declared_length=half_length * 2,
            version=version,
            shape_type=shape_type_from_code(type_code),
            bbox=(x_min, y_min, x_max, y_max),
            z_range=(z_min, z_max),
            m_range=(m_min, m_max),
        )

        # The length in the header is not trusted.
        if header.declared_length != measured:
            logger.warning(
                "SHP length in header %d != actual length %d, using %d",
                header.declared_length,
                measured,
                measured,
            )

        self.header = header
        self.total_length = measured
        logger.debug(
            "SHP %s: %s, %d bytes",
            self.path,
            header.shape_type.name,
            measured,
        )
        return header

    def shape_at(self, offset: int) -> Optional[Tuple[int, Shape]]:
        """Read the shape record starting at ``offset``.

        Args:
            offset: Byte offset of the record header.

        Returns:
            ``(next_offset, shape)`` or ``None`` if ``offset`` is the end of
            the file.

        Raises:
            ShapefileException: If ``offset`` lies outside the file, the
                record header is inconsistent or the part and point counts
                do not fit the record length.
            ShapeTypeError: If the record uses an unknown shape type.
            SizeMismatchError: If the record is truncated.
        """

        assert self.header is not None
        if offset == self.total_length:
            return None
        if offset < 0 or offset > self.total_length:
            raise ShapefileException(
                "Trying to read shape at offset %d, but shp length is only %d"
                % (offset, self.total_length)
            )

        f = self._handle()
        f.seek(offset)

        record_number, length_words = self._read(">2i")
        if length_words < 0:
            raise ShapefileException(
                "Negative content length %d for record at offset %d"
                % (length_words, offset)
            )
        next_offset = f.tell() + 2 * length_words

        shape_type = shape_type_from_code(self._read("<i")[0])

        bbox: BBox = (0.0, 0.0, 0.0, 0.0)
        n_parts = 0
        n_points = 0
        parts: List[int] = []
        part_types: List[int] = []
        points: List[Point2D] = []
        z: List[float] = []
        z_range: Range = (0.0, 0.0)
        m: List[Optional[float]] = []
        m_range: Range = (0.0, 0.0)

        if shape_type.has_bounding_box:
            x_min, y_min, x_max, y_max = self._read("<4d")
            bbox = (x_min, y_min, x_max, y_max)

        if shape_type.has_parts:
            (n_parts,) = self._read("<i")

        if shape_type.has_points:
            (n_points,) = self._read("<i")

        if n_parts < 0 or n_points < 0:
            raise ShapefileException(
                "Negative part or point count in record %d" % record_number
            )

        # Counts must fit the record before anything is allocated for them.
        part_words = n_parts
        if shape_type == ShapeType.MULTIPATCH:
            part_words *= 2
        if 4 * part_words + 16 * n_points > next_offset - f.tell():
            raise ShapefileException(
                "Record %d declares %d parts and %d points but holds only "
                "%d bytes"
                % (record_number, n_parts, n_points, 2 * length_words)
            )

        if n_parts > 0:
            parts = self._read("<%di" % n_parts)
            if shape_type == ShapeType.MULTIPATCH:
                part_types = self._read("<%di" % n_parts)

        if n_points > 0:
            coords = self._read("<%dd" % (2 * n_points))
            points = list(zip(coords[::2], coords[1::2]))

        if shape_type.has_z_values:
            z_min, z_max = self._read("<2d")
            z_range = (z_min, z_max)
            if n_points > 0:
                z = self._read("<%dd" % n_points)

        # M values are optional for the Z types; skip them when absent.
        if (
            shape_type.has_m_values
            and self.header.has_measures
            and next_offset - f.tell() >= 16 + 8 * n_points
        ):
            m_min, m_max = self._read("<2d")
            m_range = (m_min, m_max)
            if n_points > 0:
                m = [_measure(v) for v in self._read("<%dd" % n_points)]

        if shape_type.has_single_point:
            x, y = self._read("<2d")
            points = [(x, y)]

        if shape_type.has_single_z:
            z = self._read("<d")

        if shape_type.has_single_m and next_offset - f.tell() >= 8:
            m = [_measure(self._read("<d")[0])]

        shape = Shape(
            shape_type=shape_type,
            record_number=record_number,
            bbox=bbox,
            points=points,
            parts=parts,
            part_types=part_types,
            z=z,
            z_range=z_range,
            m=m,
            m_range=m_range,
        )
        return next_offset, shape

    def iter_shapes(self) -> Iterator[Shape]:
        """Yield every shape following the record chain from the header.

        Each call returns a new iterator starting at the first record.
        """

        offset = HEADER_SIZE
        while True:
            result = self.shape_at(offset)
            if result is None:
                return
            offset, shape = result
            yield shape

    def shapes(self) -> List[Shape]:
        """Return all shapes as a list."""

        return list(self.iter_shapes())


__all__ = [
    "NODATA",
    "ShapeType",
    "ShpHeader",
    "Shape",
    "ShpReader",
    "shape_type_from_code",
]
