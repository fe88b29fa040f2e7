"""Helpers that build minimal shapefile sets in memory for the tests."""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Iterable, Optional, Sequence

Field = tuple[str, str, int, int]


def _file_header(
    shape_type: int,
    length: int,
    bbox: Sequence[float] = (0.0, 0.0, 10.0, 10.0),
    zm: Sequence[float] = (0.0, 0.0, 0.0, 0.0),
) -> bytes:
    """100-byte header shared by ``.shp`` and ``.shx`` files."""

    return (
        struct.pack(">i20xi", 9994, length // 2)
        + struct.pack("<2i", 1000, shape_type)
        + struct.pack("<4d", *bbox)
        + struct.pack("<4d", *zm)
    )


def null_content() -> bytes:
    return struct.pack("<i", 0)


def point_content(x: float, y: float) -> bytes:
    return struct.pack("<i2d", 1, x, y)


def point_m_content(x: float, y: float, m: float) -> bytes:
    return struct.pack("<i3d", 21, x, y, m)


def point_z_content(x: float, y: float, z: float, m: float) -> bytes:
    return struct.pack("<i4d", 11, x, y, z, m)


def multi_content(
    shape_type: int,
    points: Sequence[tuple[float, float]],
    parts: Optional[Sequence[int]] = (0,),
    part_types: Optional[Sequence[int]] = None,
    z: Optional[Sequence[float]] = None,
    m: Optional[Sequence[float]] = None,
) -> bytes:
    """Record content for the multi-point, line, polygon and patch types.

    ``parts=None`` omits the part count, as multipoints do.
    """

    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    body = struct.pack("<i4d", shape_type, min(xs), min(ys), max(xs), max(ys))
    if parts is not None:
        body += struct.pack("<2i", len(parts), len(points))
        body += struct.pack("<%di" % len(parts), *parts)
        if part_types is not None:
            body += struct.pack("<%di" % len(part_types), *part_types)
    else:
        body += struct.pack("<i", len(points))
    body += b"".join(struct.pack("<2d", x, y) for x, y in points)
    if z is not None:
        body += struct.pack("<2d", min(z), max(z))
        body += struct.pack("<%dd" % len(z), *z)
    if m is not None:
        body += struct.pack("<2d", 0.0, 10.0)
        body += struct.pack("<%dd" % len(m), *m)
    return body


def build_shp(
    shape_type: int,
    contents: Iterable[bytes],
    zm: Sequence[float] = (0.0, 0.0, 0.0, 0.0),
    declared_length: Optional[int] = None,
) -> tuple[bytes, list[int], list[int]]:
    """Return the ``.shp`` bytes plus record offsets and content lengths."""

    records = b""
    offsets: list[int] = []
    lengths: list[int] = []
    offset = 100
    for number, content in enumerate(contents, start=1):
        record = struct.pack(">2i", number, len(content) // 2) + content
        offsets.append(offset)
        lengths.append(len(content))
        records += record
        offset += len(record)

    length = offset if declared_length is None else declared_length
    return _file_header(shape_type, length, zm=zm) + records, offsets, lengths


def build_shx(
    shape_type: int,
    offsets: Sequence[int],
    lengths: Sequence[int],
    declared_length: Optional[int] = None,
) -> bytes:
    length = 100 + 8 * len(offsets)
    if declared_length is not None:
        length = declared_length
    body = b"".join(
        struct.pack(">2i", offset // 2, size // 2)
        for offset, size in zip(offsets, lengths)
    )
    return _file_header(shape_type, length) + body


def build_dbf(
    fields: Sequence[Field],
    rows: Sequence[Sequence[str]],
    deleted: Iterable[int] = (),
    num_records: Optional[int] = None,
    record_length: Optional[int] = None,
    terminator: bytes = b"\r",
    date_parts: tuple[int, int, int] = (124, 3, 15),
) -> bytes:
    """Build a dBase III table; row values are the raw field texts."""

    deleted = set(deleted)
    actual_length = 1 + sum(length for _, _, length, _ in fields)
    header_length = 32 + 32 * len(fields) + 1
    header = struct.pack(
        "<4BIHH20x",
        3,
        *date_parts,
        len(rows) if num_records is None else num_records,
        header_length,
        actual_length if record_length is None else record_length,
    )
    descriptors = b"".join(
        struct.pack(
            "<11sc4xBB14x",
            name.encode("ascii"),
            field_type.encode("ascii"),
            length,
            decimals,
        )
        for name, field_type, length, decimals in fields
    )

    body = b""
    for idx, row in enumerate(rows):
        body += b"*" if idx in deleted else b" "
        for (_, _, length, _), value in zip(fields, row):
            body += value.encode("cp1252")[:length].ljust(length, b" ")

    return header + descriptors + terminator + body + b"\x1a"


def write_shapefile(
    directory: Path,
    name: str,
    shape_type: int,
    contents: Sequence[bytes],
    fields: Sequence[Field] = (("NAME", "C", 10, 0),),
    rows: Optional[Sequence[Sequence[str]]] = None,
    with_shx: bool = True,
    with_dbf: bool = True,
) -> Path:
    """Write ``name.shp`` and, optionally, ``.shx`` and ``.dbf`` siblings.

    Without ``rows`` the table gets one ``NAME`` row per shape.

    Returns:
        Path of the ``.shp`` file.
    """

    shp_bytes, offsets, lengths = build_shp(shape_type, contents)
    shp_path = directory / f"{name}.shp"
    shp_path.write_bytes(shp_bytes)

    if with_shx:
        (directory / f"{name}.shx").write_bytes(
            build_shx(shape_type, offsets, lengths)
        )

    if with_dbf:
        if rows is None:
            rows = [[f"SHAPE{i}"] for i in range(len(contents))]
        (directory / f"{name}.dbf").write_bytes(build_dbf(fields, rows))

    return shp_path
