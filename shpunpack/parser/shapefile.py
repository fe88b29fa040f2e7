"""Composed reader for a ``.shp``/``.shx``/``.dbf`` file set.

``ShapefileReader.open`` derives the three sibling paths from one base path
(the extension of the given path is stripped and each suffix is tried in
lower then upper case). The geometry file is mandatory; the index and the
attribute table are optional and every operation that depends on a missing
sibling reports "unavailable" (``None`` or an empty iterator) instead of
failing. A sibling that exists but cannot be read is treated as missing.
"""

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple, TypeVar, Union

from attrs import define, field

from shpunpack.parser.binutils import DEFAULT_ENCODING
from shpunpack.parser.dbf_table import DbfField, DbfReader, DbfRecord
from shpunpack.parser.exceptions import ShapefileException
from shpunpack.parser.shp_geometry import Shape, ShpReader
from shpunpack.parser.shx_index import ShxReader

logger = logging.getLogger(__name__)

T = TypeVar("T")


def find_sibling(base: Path, extension: str) -> Optional[Path]:
    """Return the existing file ``base.<extension>``, if any.

    Args:
        base: Path without extension.
        extension: Extension without the dot, e.g. ``"shx"``.

    Returns:
        The lower case variant if it exists, else the upper case variant if
        it exists, else ``None``.
    """

    for suffix in (extension.lower(), extension.upper()):
        candidate = base.with_name("%s.%s" % (base.name, suffix))
        if candidate.is_file():
            return candidate
    return None


def _open_sibling(
    base: Path, extension: str, factory: Callable[[Path], T]
) -> Optional[T]:
    """Open ``base.<extension>`` with ``factory``.

    Returns:
        The reader, or ``None`` if the file is missing or unreadable.
    """

    path = find_sibling(base, extension)
    if path is None:
        logger.warning(
            "No .%s file for %s, it is unavailable", extension, base
        )
        return None
    try:
        return factory(path)
    except (OSError, ShapefileException) as exc:
        logger.warning("Ignoring unreadable %s: %s", path, exc)
        return None


@define
class ShapefileReader:
    """Geometry, index and attributes of one shapefile.

    Attributes:
        base_path: The common path of the three files, without extension.
        shp: Geometry reader, always present.
        shx: Index reader or ``None`` if the ``.shx`` file is missing.
        dbf: Attribute reader or ``None`` if the ``.dbf`` file is missing.
    """

    base_path: Path
    shp: ShpReader
    shx: Optional[ShxReader] = field(default=None)
    dbf: Optional[DbfReader] = field(default=None)

    @classmethod
    def open(
        cls,
        path: Union[str, "os.PathLike[str]"],
        encoding: str = DEFAULT_ENCODING,
    ) -> "ShapefileReader":
        """Open the file set that ``path`` belongs to.

        Args:
            path: Any of the three files, or their common base path.
            encoding: Encoding of the text in the ``.dbf`` file.

        Returns:
            A ready to use reader.

        Raises:
            FileNotFoundError: If no ``.shp`` file exists.
            ShapefileException: If the geometry file cannot be parsed. An
                unreadable ``.shx`` or ``.dbf`` is logged and left as
                ``None``.
        """

        base = Path(path).with_suffix("")
        shp_path = find_sibling(base, "shp")
        if shp_path is None:
            raise FileNotFoundError(
                errno.ENOENT, "No .shp file found", "%s.shp" % base
            )

        shp = ShpReader(shp_path)
        shx: Optional[ShxReader] = None
        try:
            shx = _open_sibling(base, "shx", ShxReader)
            dbf = _open_sibling(
                base, "dbf", lambda p: DbfReader(p, encoding=encoding)
            )
        except BaseException:
            if shx is not None:
                shx.close()
            shp.close()
            raise

        result = cls(base_path=base, shp=shp, shx=shx, dbf=dbf)
        if (
            result.num_shapes is not None
            and result.num_records is not None
            and not result.is_consistent
        ):
            logger.warning(
                "%s: %d shapes in .shx but %d records in .dbf",
                base,
                result.num_shapes,
                result.num_records,
            )
        return result

    def __enter__(self) -> "ShapefileReader":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def __getitem__(self, index: int) -> Optional[Shape]:
        return self.shape(index)

    def __iter__(self) -> Iterator[Shape]:
        return self.iter_shapes()

    def close(self) -> None:
        """Release all file handles."""

        self.shp.close()
        if self.shx is not None:
            self.shx.close()
        if self.dbf is not None:
            self.dbf.close()

    @property
    def num_shapes(self) -> Optional[int]:
        """Number of shapes in the index, ``None`` without ``.shx``."""

        return self.shx.num_shapes if self.shx is not None else None

    @property
    def num_records(self) -> Optional[int]:
        """Number of attribute records, ``None`` without ``.dbf``."""

        return self.dbf.num_records if self.dbf is not None else None

    @property
    def is_consistent(self) -> bool:
        """True if index and attribute table agree on the record count."""

        return (
            self.num_shapes is not None
            and self.num_shapes == self.num_records
        )

    @property
    def fields(self) -> List[DbfField]:
        """Attribute fields, without the deletion flag."""

        return self.dbf.fields[1:] if self.dbf is not None else []

    def shape(self, index: int) -> Optional[Shape]:
        """Return shape ``index`` through the index file.

        Returns:
            The shape, or ``None`` if there is no ``.shx`` file or ``index``
            is out of range.
        """

        if self.shx is None:
            return None
        offset = self.shx.shape_offset_at(index)
        if offset is None:
            return None
        result = self.shp.shape_at(offset)
        return result[1] if result is not None else None

    def record(self, index: int) -> Optional[DbfRecord]:
        """Return record ``index``, or ``None`` if unavailable."""

        if self.dbf is None:
            return None
        return self.dbf.record_at(index)

    def iter_shapes(self) -> Iterator[Shape]:
        """Yield every shape of the geometry file in file order."""

        return self.shp.iter_shapes()

    def iter_records(self) -> Iterator[DbfRecord]:
        """Yield every attribute record; nothing without ``.dbf``."""

        if self.dbf is None:
            return iter(())
        return self.dbf.iter_records()

    def iter_shape_records(self) -> Iterator[Tuple[Shape, DbfRecord]]:
        """Yield ``(shape, record)`` pairs by index.

        The iteration stops at the first index for which either the shape
        or the record is unavailable, even if the other side has more
        entries.
        """

        index = 0
        while True:
            shape = self.shape(index)
            if shape is None:
                return
            record = self.record(index)
            if record is None:
                return
            yield shape, record
            index += 1


__all__ = ["ShapefileReader", "find_sibling"]
