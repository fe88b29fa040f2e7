"""Structure codec driven by a compact format mini-language.

The format strings look like the ones understood by :mod:`struct`, with a
few deliberate differences:

- the first character is mandatory and must be a byte-order marker:
  ``<`` (little-endian), ``=`` (native, assumed little-endian), ``>`` or
  ``!`` (big-endian). Native size and alignment (``@``) is not supported;
- sizes are always the standard ones (``l`` is 4 bytes on every platform);
- a repeat count of ``0`` means ``1``, for ``s`` as well;
- the buffer handed to :func:`unpack` must have exactly the size implied by
  the format, there is no silent truncation or padding;
- ``s`` and ``c`` produce text decoded with a configurable single-byte
  encoding (Windows-1252 by default) instead of ``bytes``.

Supported type codes:

====== ============================ =====
code   meaning                      width
====== ============================ =====
``c``  one character                1
``b``  signed 8-bit integer         1
``B``  unsigned 8-bit integer       1
``?``  boolean                      1
``h``  signed 16-bit integer        2
``H``  unsigned 16-bit integer      2
``i``  signed 32-bit integer        4
``l``  signed 32-bit integer        4
``I``  unsigned 32-bit integer      4
``L``  unsigned 32-bit integer      4
``q``  signed 64-bit integer        8
``Q``  unsigned 64-bit integer      8
``f``  32-bit float                 4
``d``  64-bit float                 8
``x``  pad byte, no value           1
``s``  text block, one value        count
`` ``  separator, ignored           0
====== ============================ =====

Formats are tokenized once into a tuple of :class:`FormatToken` and the
result is cached, so decoding a record is a loop over prepared tokens.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Sequence, Tuple

from shpunpack.parser.exceptions import (
    CodecError,
    FormatStringError,
    SizeMismatchError,
    TextDecodeError,
)


DEFAULT_ENCODING = "cp1252"

#
# Byte-order markers; the value tells whether the order is big-endian.
#
_BYTE_ORDER = {"<": False, "=": False, ">": True, "!": True}

#
# Width in bytes of a single occurrence of each type code.
#
_WIDTHS = {
    "c": 1,
    "b": 1,
    "B": 1,
    "?": 1,
    "h": 2,
    "H": 2,
    "i": 4,
    "l": 4,
    "I": 4,
    "L": 4,
    "q": 8,
    "Q": 8,
    "f": 4,
    "d": 8,
    "x": 1,
    "s": 1,
    " ": 0,
}

_INTEGER_CODES = frozenset("bBhHiIlLqQ")
_UNSIGNED_BY_WIDTH = {1: "B", 2: "H", 4: "I", 8: "Q"}
_DIGITS = "0123456789"

# Composed types used throughout this module.
TokenList = Tuple["FormatToken", ...]


@dataclass(frozen=True)
class FormatToken:
    """A single ``[count]code`` element of a format string.

    Attributes:
        count: Repeat count, at least 1. For ``s`` this is the text length.
        code: The type code.
    """

    count: int
    code: str

    @property
    def size(self) -> int:
        """Number of bytes covered by the token."""

        return self.count * _WIDTHS[self.code]

    @property
    def emits_values(self) -> int:
        """Number of decoded values produced (or consumed) by the token."""

        if self.code == "x":
            return 0
        if self.code == "s":
            return 1
        return self.count


@lru_cache(maxsize=256)
def tokenize_format(fmt: str) -> Tuple[bool, TokenList]:
    """Split ``fmt`` into its byte order and list of tokens.

    Args:
        fmt: Format string starting with a byte-order marker.

    Returns:
        A tuple ``(big_endian, tokens)``.

    Raises:
        FormatStringError: If the marker is missing or unsupported, if a type
            code is unknown or if a repeat count is not followed by a code.
    """

    if not fmt:
        raise FormatStringError("Empty format string")

    marker = fmt[0]
    if marker == "@":
        raise FormatStringError(
            "Native size and alignment '@' is unsupported in %r" % (fmt,)
        )
    if marker not in _BYTE_ORDER:
        raise FormatStringError(
            "Format %r must start with one of '<', '=', '>', '!'" % (fmt,)
        )

    tokens: List[FormatToken] = []
    pending = ""
    for char in fmt[1:]:
        if char in _DIGITS:
            pending += char
            continue

        if char not in _WIDTHS:
            raise FormatStringError(
                "Unsupported type code %r in format %r" % (char, fmt)
            )

        if char == " ":
            if pending:
                raise FormatStringError(
                    "Repeat count %s is not followed by a type code in %r"
                    % (pending, fmt)
                )
            continue

        count = max(int(pending), 1) if pending else 1
        tokens.append(FormatToken(count=count, code=char))
        pending = ""

    if pending:
        raise FormatStringError(
            "Trailing repeat count %s in format %r" % (pending, fmt)
        )

    return _BYTE_ORDER[marker], tuple(tokens)


def calcsize(fmt: str) -> int:
    """Return the number of bytes described by ``fmt``."""

    _, tokens = tokenize_format(fmt)
    return sum(token.size for token in tokens)


@lru_cache(maxsize=512)
def _token_struct(big_endian: bool, count: int, code: str) -> struct.Struct:
    order = ">" if big_endian else "<"
    return struct.Struct("%s%d%s" % (order, count, code))


def _decode_text(raw: bytes, encoding: str) -> str:
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as exc:
        raise TextDecodeError(
            "Cannot decode %r using %s" % (raw, encoding)
        ) from exc


def _encode_text(value: Any, encoding: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return str(value).encode(encoding)
    except UnicodeEncodeError as exc:
        raise TextDecodeError(
            "Cannot encode %r using %s" % (value, encoding)
        ) from exc


def unpack(
    fmt: str, data: bytes, encoding: str = DEFAULT_ENCODING
) -> List[Any]:
    """Decode ``data`` according to ``fmt``.

    Args:
        fmt: Format string.
        data: Buffer whose length must equal ``calcsize(fmt)``.
        encoding: Encoding used for ``s`` and ``c`` tokens.

    Returns:
        The decoded values in format order. Pad bytes produce no value and
        each ``s`` token produces a single string.

    Raises:
        FormatStringError: If ``fmt`` is malformed.
        SizeMismatchError: If ``len(data)`` does not match the format.
        TextDecodeError: If a text token cannot be decoded.
    """

    big_endian, tokens = tokenize_format(fmt)
    expected = sum(token.size for token in tokens)
    if len(data) != expected:
        raise SizeMismatchError(fmt, expected, len(data))

    values: List[Any] = []
    loc = 0
    for token in tokens:
        code = token.code
        if code == "s":
            values.append(
                _decode_text(bytes(data[loc : loc + token.count]), encoding)
            )
        elif code == "c":
            for i in range(token.count):
                values.append(
                    _decode_text(bytes(data[loc + i : loc + i + 1]), encoding)
                )
        elif code != "x":
            values.extend(
                _token_struct(big_endian, token.count, code).unpack_from(
                    data, loc
                )
            )
        loc += token.size

    return values


def _pack_scalar(
    big_endian: bool, code: str, value: Any, encoding: str
) -> bytes:
    if code == "c":
        raw = _encode_text(value, encoding)
        if len(raw) != 1:
            raise FormatStringError(
                "Value %r for 'c' must encode to one byte" % (value,)
            )
        return raw

    if code in _INTEGER_CODES:
        width = _WIDTHS[code]
        masked = int(value) & ((1 << (8 * width)) - 1)
        return _token_struct(
            big_endian, 1, _UNSIGNED_BY_WIDTH[width]
        ).pack(masked)

    if code == "?":
        return b"\x01" if value else b"\x00"

    try:
        return _token_struct(big_endian, 1, code).pack(float(value))
    except (OverflowError, struct.error) as exc:
        raise CodecError(
            "Cannot pack %r as %r: %s" % (value, code, exc)
        ) from exc


def pack(
    fmt: str, values: Sequence[Any], encoding: str = DEFAULT_ENCODING
) -> bytes:
    """Encode ``values`` according to ``fmt``.

    Integers are narrowed to the width of their token by truncation, text is
    padded with NUL bytes or truncated to the declared ``s`` length and pad
    bytes are written as zeros without consuming a value.

    Args:
        fmt: Format string.
        values: One value per value-producing token occurrence.
        encoding: Encoding used for ``s`` and ``c`` tokens.

    Returns:
        The encoded buffer, always ``calcsize(fmt)`` bytes long.

    Raises:
        FormatStringError: If ``fmt`` is malformed or the number of values
            does not match the format.
        CodecError: If a float does not fit its token.
    """

    big_endian, tokens = tokenize_format(fmt)
    needed = sum(token.emits_values for token in tokens)
    if len(values) != needed:
        raise FormatStringError(
            "Format %r expects %d values but %d were given"
            % (fmt, needed, len(values))
        )

    chunks: List[bytes] = []
    index = 0
    for token in tokens:
        code = token.code
        if code == "x":
            chunks.append(b"\x00" * token.count)
        elif code == "s":
            raw = _encode_text(values[index], encoding)[: token.count]
            chunks.append(raw.ljust(token.count, b"\x00"))
            index += 1
        else:
            for _ in range(token.count):
                chunks.append(
                    _pack_scalar(big_endian, code, values[index], encoding)
                )
                index += 1

    return b"".join(chunks)


__all__ = [
    "DEFAULT_ENCODING",
    "FormatToken",
    "tokenize_format",
    "calcsize",
    "unpack",
    "pack",
]
