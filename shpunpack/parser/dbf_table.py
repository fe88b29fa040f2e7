"""DBF (dBase III+) attribute table reader.

Layout (little-endian):

Header, 32 bytes:
- file_type: ``u8``
- last update: 3 x ``u8`` (year since 1900, month, day)
- num_records: ``u32``
- header_length: ``u16``
- record_length: ``u16``
- reserved: 20 pad bytes

Field descriptor, 32 bytes, repeated ``(header_length - 33) // 32`` times:
- name: 11 bytes, NUL terminated
- type: 1 character (``C``, ``N``, ``F``, ``D``, ``L``, ``M``)
- reserved: 4 pad bytes
- length: ``u8``
- decimals: ``u8``
- reserved: 14 pad bytes

The descriptors are followed by a single ``\\r`` terminator. Records are
fixed-width text, each starting with a one byte deletion flag (a space for
live records, usually ``*`` for deleted ones).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Union

from attrs import define, field

from shpunpack.parser.binutils import DEFAULT_ENCODING, unpack
from shpunpack.parser.exceptions import (
    FieldTypeError,
    HeaderError,
    RecordError,
    ShapefileException,
)

logger = logging.getLogger(__name__)


_HEADER_FORMAT = "<4BIHH20x"
_HEADER_SIZE = 32
_FIELD_FORMAT = "<11xc4xBB14x"
_FIELD_NAME_SIZE = 11
_FIELD_SIZE = 32
_TERMINATOR = b"\r"

# Characters removed around every decoded value.
_TRIM_CHARS = " \t\r\n\x00"
_TRUE_VALUES = ("T", "t", "Y", "y")

FIELD_TYPES = {
    "C": "Character",
    "N": "Numeric",
    "F": "Float",
    "D": "Date",
    "L": "Logical",
    "M": "Memo",
}

# Composed types used throughout this module.
RecordValue = Union[str, int, float, bool]
DbfRecord = List[RecordValue]


@dataclass(frozen=True)
class DbfHeader:
    """DBF file header as stored on disk.

    Attributes:
        file_type: First byte of the file (dBase version marker).
        last_update: Date of the last update or ``None`` if the stored
            values do not form a valid date.
        num_records: Record count declared in the header.
        header_length: Size of header plus field descriptors in bytes.
        record_length: Record size declared in the header.
    """

    file_type: int
    last_update: Optional[date]
    num_records: int
    header_length: int
    record_length: int


@dataclass(frozen=True)
class DbfField:
    """A single DBF field descriptor.

    Attributes:
        name: Field name, at most 11 characters.
        field_type: One of the ``FIELD_TYPES`` tags.
        length: Width of the field in the record, in bytes.
        decimals: Decimal count for numeric fields.
    """

    name: str
    field_type: str
    length: int
    decimals: int


DELETION_FLAG = DbfField("DeletionFlag", "C", 1, 0)


def _last_update(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(1900 + year, month, day)
    except ValueError:
        return None


def _field_name(raw: bytes, encoding: str) -> str:
    # Bytes after the first NUL are often garbage; never decode them.
    name = raw.split(b"\x00", 1)[0]
    if not name:
        return ""
    (text,) = unpack("<%ds" % len(name), name, encoding)
    return text.strip()


def convert_value(fld: DbfField, value: str) -> RecordValue:
    """Convert the raw text of one field to its Python value.

    Args:
        fld: Descriptor of the field.
        value: Raw decoded text, including padding.

    Returns:
        ``""`` for empty values whatever the type, otherwise an ``int`` or
        ``float`` for numeric fields, a ``bool`` for logical fields and the
        trimmed text for everything else.

    Raises:
        RecordError: If a numeric value cannot be parsed.
    """

    trimmed = value.strip(_TRIM_CHARS)
    if not trimmed:
        return ""

    field_type = fld.field_type
    try:
        if field_type == "N":
            if fld.decimals > 0 or "." in trimmed:
                return float(trimmed)
            return int(trimmed)
        if field_type == "F":
            return float(trimmed)
    except ValueError as exc:
        raise RecordError(
            "Invalid %s value %r in field %s"
            % (FIELD_TYPES[field_type], trimmed, fld.name)
        ) from exc

    if field_type == "L":
        return trimmed in _TRUE_VALUES

    return trimmed


@define
class DbfReader:
    """Random access reader for a ``.dbf`` file.

    The file is opened on construction and the header is read right away.
    Records are read on demand, one ``seek`` and one ``read`` per record.

    Attributes:
        path: Location of the ``.dbf`` file.
        encoding: Encoding of the text stored in the file.
        header: The header as stored on disk.
        fields: Field descriptors, starting with the synthetic deletion flag.
        num_records: Record count after reconciliation with the file size.
        record_length: Record size after reconciliation with the fields.
    """

    path: Path
    encoding: str = DEFAULT_ENCODING

    header: Optional[DbfHeader] = field(init=False, default=None)
    fields: List[DbfField] = field(init=False, factory=list)
    num_records: int = field(init=False, default=0)
    record_length: int = field(init=False, default=0)

    _record_format: str = field(init=False, default="", repr=False)
    _file: Optional[BinaryIO] = field(init=False, default=None, repr=False)

    def __attrs_post_init__(self) -> None:
        self._file = open(self.path, "rb")
        try:
            self.read_header()
        except BaseException:
            self.close()
            raise

    def __enter__(self) -> "DbfReader":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the file handle. Safe to call more than once."""

        if self._file is not None:
            self._file.close()
            self._file = None

    def _handle(self) -> BinaryIO:
        if self._file is None:
            raise ShapefileException("DBF file %s is closed" % (self.path,))
        return self._file

    @property
    def field_names(self) -> List[str]:
        """Names of the fields present in a record, in record order."""

        return [fld.name for fld in self.fields[1:]]

    def read_header(self) -> DbfHeader:
        """Read the header and field descriptors.

        Returns:
            The parsed :class:`DbfHeader`.

        Raises:
            HeaderError: If the header is truncated or the descriptor block
                is not followed by the ``\\r`` terminator.
            FieldTypeError: If a field uses an unsupported type tag.
        """

        f = self._handle()
        f.seek(0)
        raw = f.read(_HEADER_SIZE)
        if len(raw) < _HEADER_SIZE:
            raise HeaderError("File too small for DBF header: %s" % self.path)

        (
            file_type,
            year,
            month,
            day,
            num_records,
            header_length,
            record_length,
        ) = unpack(_HEADER_FORMAT, raw, self.encoding)

        if header_length < _HEADER_SIZE + 1:
            raise HeaderError(
                "Invalid DBF header length %d in %s"
                % (header_length, self.path)
            )

        header = DbfHeader(
            file_type=file_type,
            last_update=_last_update(year, month, day),
            num_records=num_records,
            header_length=header_length,
            record_length=record_length,
        )

        fields: List[DbfField] = []
        for _ in range((header_length - 33) // _FIELD_SIZE):
            raw = f.read(_FIELD_SIZE)
            if len(raw) < _FIELD_SIZE:
                raise HeaderError(
                    "Truncated DBF field descriptor in %s" % self.path
                )
            field_type, length, decimals = unpack(
                _FIELD_FORMAT, raw, self.encoding
            )
            name = _field_name(raw[:_FIELD_NAME_SIZE], self.encoding)
            if field_type not in FIELD_TYPES:
                raise FieldTypeError(
                    "Unknown type %r for DBF field %s" % (field_type, name)
                )
            fields.append(DbfField(name, field_type, length, decimals))

        if f.read(1) != _TERMINATOR:
            raise HeaderError(
                "DBF header lacks expected terminator (likely corrupt): %s"
                % self.path
            )

        fields.insert(0, DELETION_FLAG)

        self.header = header
        self.fields = fields
        self.record_length = record_length
        self.num_records = num_records
        self._record_format = self._build_record_format()
        self._reconcile_record_count()

        logger.debug(
            "DBF %s: %d fields, %d records of %d bytes",
            self.path,
            len(fields) - 1,
            self.num_records,
            self.record_length,
        )
        return header

    def _build_record_format(self) -> str:
        sizes = [fld.length for fld in self.fields]
        total = sum(sizes)
        if total != self.record_length:
            logger.warning(
                "Record length declared in DBF header %d != sum of field "
                "lengths %d, using %d",
                self.record_length,
                total,
                total,
            )
            self.record_length = total
        return "<" + "".join("%ds" % size for size in sizes)

    def _reconcile_record_count(self) -> None:
        assert self.header is not None
        f = self._handle()
        f.seek(0, os.SEEK_END)
        data_size = max(f.tell() - self.header.header_length, 0)
        measured = data_size // self.record_length if self.record_length else 0
        if measured != self.num_records:
            logger.warning(
                "DBF header declares %d records but file holds %d, using %d",
                self.num_records,
                measured,
                measured,
            )
            self.num_records = measured

    def _read_record(self, index: int) -> DbfRecord:
        assert self.header is not None
        f = self._handle()
        f.seek(self.header.header_length + index * self.record_length)
        values = unpack(
            self._record_format, f.read(self.record_length), self.encoding
        )

        if values[0] != " ":
            logger.debug("Record %d is marked as deleted", index)
            return []

        return [
            convert_value(fld, value)
            for fld, value in zip(self.fields[1:], values[1:])
        ]

    def record_at(self, index: int) -> Optional[DbfRecord]:
        """Return the record at ``index``.

        Args:
            index: Zero-based record index.

        Returns:
            The list of values, ``[]`` for a deleted record or ``None`` if
            ``index`` is outside ``[0, num_records)``.
        """

        if index < 0 or index >= self.num_records:
            return None
        return self._read_record(index)

    def iter_records(self) -> Iterator[DbfRecord]:
        """Yield every record in file order.

        Each call returns a new iterator starting at the first record.
        """

        for index in range(self.num_records):
            yield self._read_record(index)

    def records(self) -> List[DbfRecord]:
        """Return all records as a list."""

        return list(self.iter_records())


__all__ = [
    "FIELD_TYPES",
    "DELETION_FLAG",
    "DbfHeader",
    "DbfField",
    "DbfReader",
    "DbfRecord",
    "RecordValue",
    "convert_value",
]
