"""SHX spatial index reader.

The index shares the 100-byte header of the ``.shp`` file; only the file
length (big-endian ``i32`` at offset 24, counted in 16-bit words) is used
here. The header is followed by one 8-byte record per shape:

- offset: big-endian ``i32``, in 16-bit words from the start of the ``.shp``
- length: big-endian ``i32``, in 16-bit words (content length, unused here)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO, List, Optional

from attrs import define, field

from shpunpack.parser.binutils import unpack
from shpunpack.parser.exceptions import HeaderError, ShapefileException

logger = logging.getLogger(__name__)


HEADER_SIZE = 100
_RECORD_SIZE = 8


@define
class ShxReader:
    """Reader for the ``.shx`` index of a shapefile.

    Offsets are read once on construction and kept in memory.

    Attributes:
        path: Location of the ``.shx`` file.
        shape_offsets: Byte offset of every shape record in the ``.shp``.
    """

    path: Path
    shape_offsets: List[int] = field(init=False, factory=list)

    _file: Optional[BinaryIO] = field(init=False, default=None, repr=False)

    def __attrs_post_init__(self) -> None:
        self._file = open(self.path, "rb")
        try:
            self.shape_offsets = self.read_offsets()
        except BaseException:
            self.close()
            raise

    def __enter__(self) -> "ShxReader":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the file handle. Safe to call more than once."""

        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def num_shapes(self) -> int:
        """Number of shapes referenced by the index."""

        return len(self.shape_offsets)

    def read_offsets(self) -> List[int]:
        """Read the byte offset of every shape from the index.

        The record count derived from the header is checked against the
        size of the file; the measured count wins on disagreement.

        Returns:
            Byte offsets into the ``.shp`` file, in shape order.

        Raises:
            HeaderError: If the file is shorter than its header.
        """

        if self._file is None:
            raise ShapefileException("SHX file %s is closed" % (self.path,))
        f = self._file

        f.seek(0, os.SEEK_END)
        eof = f.tell()
        if eof < HEADER_SIZE:
            raise HeaderError("File too small for SHX header: %s" % self.path)

        f.seek(24)
        (half_length,) = unpack(">i", f.read(4))
        num_records = (half_length * 2 - HEADER_SIZE) // _RECORD_SIZE

        measured = (eof - HEADER_SIZE) // _RECORD_SIZE
        if num_records != measured:
            logger.warning(
                "SHX header implies %d records but file holds %d, using %d",
                num_records,
                measured,
                measured,
            )
            num_records = measured

        if num_records == 0:
            return []

        f.seek(HEADER_SIZE)
        words = unpack(
            ">%di" % (2 * num_records), f.read(num_records * _RECORD_SIZE)
        )
        # Only the offset half of each (offset, length) pair is used.
        return [offset * 2 for offset in words[::2]]

    def shape_offset_at(self, index: int) -> Optional[int]:
        """Return the byte offset of shape ``index`` or ``None``."""

        if 0 <= index < len(self.shape_offsets):
            return self.shape_offsets[index]
        return None


__all__ = ["ShxReader"]
