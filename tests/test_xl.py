"""Tests for the XLSX exporter in ``shpunpack.xl``.

These tests write a small shapefile set to disk, export it and verify that
the generated workbook contains the expected sheets, columns and basic
formatting (notably the 3-decimal format for floats).
"""

from __future__ import annotations

from pathlib import Path

from openpyxl import load_workbook

from shapefile_builders import build_dbf, multi_content, write_shapefile
from shpunpack.parser.shapefile import ShapefileReader
from shpunpack.xl import SHAPE_COLUMNS, export_to_xlsx

LINE = [(0.5, 1.25), (2.0, 3.0), (4.0, 1.0)]


def _export(tmp_path: Path, **kwargs: object) -> Path:
    shp = write_shapefile(
        tmp_path, "lines", 3, [multi_content(3, LINE)] * 2, **kwargs
    )
    out = tmp_path / "out.xlsx"
    with ShapefileReader.open(shp) as reader:
        export_to_xlsx(reader, out)
    return out


def test_export_creates_expected_sheets_and_columns(tmp_path: Path) -> None:
    out = _export(
        tmp_path,
        fields=[("NAME", "C", 10, 0), ("LEN", "N", 8, 2)],
        rows=[["Main", "12.50"], ["Side", "3.00"]],
    )

    assert out.exists(), "Workbook file should be created"
    wb = load_workbook(out)
    assert wb.sheetnames == ["Shapes", "Records", "Headers"]

    ws = wb["Shapes"]
    headers = [c.value for c in next(ws.iter_rows(min_row=1, max_row=1))]
    assert headers == SHAPE_COLUMNS
    assert ws.max_row == 3
    assert ws.cell(row=2, column=3).value == "POLYLINE"
    assert ws.cell(row=2, column=5).value == 3

    # Floats should have 0.000 number format (x_min).
    x_min = ws.cell(row=2, column=headers.index("x_min") + 1)
    assert x_min.value == 0.5
    assert x_min.number_format == "0.000"
    assert "Tbl_Shapes" in ws.tables

    rs = wb["Records"]
    rows = [[c.value for c in row] for row in rs.iter_rows()]
    assert rows[0] == ["idx", "deleted", "NAME", "LEN"]
    assert rows[1] == [0, False, "Main", 12.5]
    assert rows[2] == [1, False, "Side", 3.0]
    assert "Tbl_Records" in rs.tables


def test_headers_sheet_lists_every_file(tmp_path: Path) -> None:
    out = _export(tmp_path)
    hs = load_workbook(out)["Headers"]
    flat = [cell.value for row in hs.iter_rows(max_col=2) for cell in row]
    for title in ("SHP", "SHX", "DBF", "DBF.Fields"):
        assert title in flat
    assert "POLYLINE" in flat
    assert "C(10.0)" in flat
    assert not hs.tables


def test_deleted_records_are_flagged(tmp_path: Path) -> None:
    shp = write_shapefile(tmp_path, "lines", 3, [multi_content(3, LINE)] * 2)
    shp.with_suffix(".dbf").write_bytes(
        build_dbf([("NAME", "C", 10, 0)], [["A"], ["B"]], deleted=[0])
    )
    out = tmp_path / "out.xlsx"
    with ShapefileReader.open(shp) as reader:
        export_to_xlsx(reader, out)

    rs = load_workbook(out)["Records"]
    rows = [[c.value for c in row] for row in rs.iter_rows(min_row=2)]
    assert rows[0][:2] == [0, True]
    assert rows[1] == [1, False, "B"]


def test_export_without_table(tmp_path: Path) -> None:
    out = _export(tmp_path, with_dbf=False)
    wb = load_workbook(out)
    rs = wb["Records"]
    assert [c.value for c in rs[1]] == ["idx", "deleted"]
    assert rs.max_row == 1
    flat = [cell.value for row in wb["Headers"].iter_rows() for cell in row]
    assert "DBF.Fields" not in flat
