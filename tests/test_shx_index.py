"""Tests for the SHX index reader."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from shapefile_builders import build_shx
from shpunpack.parser.exceptions import HeaderError
from shpunpack.parser.shx_index import ShxReader


def _write(tmp_path: Path, data: bytes) -> Path:
    path = tmp_path / "index.shx"
    path.write_bytes(data)
    return path


def test_offsets_are_converted_to_bytes(tmp_path: Path) -> None:
    path = _write(tmp_path, build_shx(5, [100, 236, 500], [128, 256, 40]))
    with ShxReader(path) as shx:
        assert shx.shape_offsets == [100, 236, 500]
        assert shx.num_shapes == 3


def test_shape_offset_at(tmp_path: Path) -> None:
    path = _write(tmp_path, build_shx(1, [100, 128], [20, 20]))
    with ShxReader(path) as shx:
        assert shx.shape_offset_at(0) == 100
        assert shx.shape_offset_at(1) == 128
        assert shx.shape_offset_at(2) is None
        assert shx.shape_offset_at(-1) is None


def test_empty_index(tmp_path: Path) -> None:
    path = _write(tmp_path, build_shx(1, [], []))
    with ShxReader(path) as shx:
        assert shx.shape_offsets == []
        assert shx.shape_offset_at(0) is None


def test_count_is_reconciled_with_file_size(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    # Header claims four records, the file holds two.
    data = build_shx(1, [100, 128], [20, 20], declared_length=100 + 8 * 4)
    path = _write(tmp_path, data)
    with caplog.at_level(logging.WARNING):
        shx = ShxReader(path)
    with shx:
        assert shx.shape_offsets == [100, 128]
    assert "implies 4 records but file holds 2" in caplog.text


def test_understated_count_uses_file_size(tmp_path: Path) -> None:
    data = build_shx(1, [100, 128, 156], [20, 20, 20], declared_length=100)
    path = _write(tmp_path, data)
    with ShxReader(path) as shx:
        assert shx.shape_offsets == [100, 128, 156]


def test_partial_trailing_record_is_ignored(tmp_path: Path) -> None:
    data = build_shx(1, [100, 128], [20, 20]) + b"\x00\x00\x00"
    path = _write(tmp_path, data)
    with ShxReader(path) as shx:
        assert shx.shape_offsets == [100, 128]


def test_file_shorter_than_header(tmp_path: Path) -> None:
    path = _write(tmp_path, b"\x00" * 40)
    with pytest.raises(HeaderError):
        ShxReader(path)


def test_close_is_idempotent(tmp_path: Path) -> None:
    path = _write(tmp_path, build_shx(1, [100], [20]))
    shx = ShxReader(path)
    shx.close()
    shx.close()
    # Offsets stay available after the handle is released.
    assert shx.shape_offset_at(0) == 100
