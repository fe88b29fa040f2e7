"""XLSX export of a shapefile.

The workbook produced by :func:`export_to_xlsx` contains:

- ``Shapes``: one row per geometry record with its type, part and point
  counts and its bounding box and Z/M ranges;
- ``Records``: one row per attribute record, one column per DBF field, plus
  a ``deleted`` column flagging tombstoned records;
- ``Headers``: the SHP, SHX and DBF headers as titled key/value sections,
  separated by an empty row. This sheet has no Excel table.

Both data sheets carry a single Excel table over the header row and the data
rows. Floats are shown with 3 decimals.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, List, Sequence, Tuple

from openpyxl import Workbook
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo
from openpyxl.worksheet.worksheet import Worksheet

from shpunpack.parser.shapefile import ShapefileReader

logger = logging.getLogger(__name__)


SHAPE_COLUMNS = [
    "idx",
    "record_number",
    "shape_type",
    "parts",
    "points",
    "x_min",
    "y_min",
    "x_max",
    "y_max",
    "z_min",
    "z_max",
    "m_min",
    "m_max",
]

# Composed types used throughout this module.
Section = Tuple[str, List[Tuple[str, Any]]]


def _unique_columns(names: Sequence[str]) -> List[str]:
    """Make column titles non-empty and unique, as Excel tables require."""

    result: List[str] = []
    seen: set[str] = set()
    for position, name in enumerate(names):
        title = name or "column_%d" % position
        candidate = title
        suffix = 2
        while candidate in seen:
            candidate = "%s_%d" % (title, suffix)
            suffix += 1
        seen.add(candidate)
        result.append(candidate)
    return result


def _fill_table_sheet(
    ws: Worksheet, columns: List[str], rows: Iterable[List[Any]]
) -> None:
    """Write ``columns`` and ``rows`` to ``ws`` and wrap them in a table."""

    ws.append(columns)
    float_columns: set[int] = set()
    for row in rows:
        ws.append(row)
        for col_idx, value in enumerate(row, start=1):
            if isinstance(value, float):
                float_columns.add(col_idx)

    for col_idx in float_columns:
        for cells in ws.iter_cols(min_col=col_idx, max_col=col_idx, min_row=2):
            for cell in cells:
                if isinstance(cell.value, float):
                    cell.number_format = "0.000"

    ref = "A1:%s%d" % (get_column_letter(len(columns)), ws.max_row)
    table = Table(displayName="Tbl_%s" % ws.title, ref=ref)
    table.tableStyleInfo = TableStyleInfo(
        name="TableStyleMedium2",
        showFirstColumn=False,
        showLastColumn=False,
        showRowStripes=True,
        showColumnStripes=False,
    )
    ws.add_table(table)


def _shape_rows(reader: ShapefileReader) -> Iterable[List[Any]]:
    for idx, shape in enumerate(reader.iter_shapes()):
        yield [
            idx,
            shape.record_number,
            shape.shape_type.name,
            len(shape.parts),
            len(shape.points),
            *shape.bbox,
            *shape.z_range,
            *shape.m_range,
        ]


def _record_rows(reader: ShapefileReader) -> Iterable[List[Any]]:
    for idx, record in enumerate(reader.iter_records()):
        # Tombstones decode to an empty record.
        yield [idx, not record, *record]


def _header_sections(reader: ShapefileReader) -> List[Section]:
    """Collect the header values of every file of the set."""

    shp = reader.shp
    assert shp.header is not None
    header = shp.header
    sections: List[Section] = [
        (
            "SHP",
            [
                ("path", str(shp.path)),
                ("file_code", header.file_code),
                ("version", header.version),
                ("shape_type", header.shape_type.name),
                ("declared_length", header.declared_length),
                ("total_length", shp.total_length),
                ("x_min", header.bbox[0]),
                ("y_min", header.bbox[1]),
                ("x_max", header.bbox[2]),
                ("y_max", header.bbox[3]),
                ("z_min", header.z_range[0]),
                ("z_max", header.z_range[1]),
                ("m_min", header.m_range[0]),
                ("m_max", header.m_range[1]),
            ],
        )
    ]

    if reader.shx is None:
        sections.append(("SHX", [("path", None)]))
    else:
        sections.append(
            (
                "SHX",
                [
                    ("path", str(reader.shx.path)),
                    ("count", reader.shx.num_shapes),
                ],
            )
        )

    if reader.dbf is None or reader.dbf.header is None:
        sections.append(("DBF", [("path", None)]))
    else:
        dbf = reader.dbf
        dbf_header = reader.dbf.header
        sections.append(
            (
                "DBF",
                [
                    ("path", str(dbf.path)),
                    ("file_type", dbf_header.file_type),
                    ("last_update", dbf_header.last_update),
                    ("declared_records", dbf_header.num_records),
                    ("count", dbf.num_records),
                    ("header_length", dbf_header.header_length),
                    ("record_length", dbf.record_length),
                ],
            )
        )
        sections.append(
            (
                "DBF.Fields",
                [
                    (
                        fld.name,
                        "%s(%d.%d)"
                        % (fld.field_type, fld.length, fld.decimals),
                    )
                    for fld in reader.fields
                ],
            )
        )

    return sections


def _write_sections(ws: Worksheet, sections: List[Section]) -> None:
    row = 1
    for title, items in sections:
        ws.cell(row=row, column=1, value=title)
        row += 1
        for key, value in items:
            ws.cell(row=row, column=1, value=key)
            cell = ws.cell(row=row, column=2, value=value)
            if isinstance(value, float):
                cell.number_format = "0.000"
            row += 1
        # Empty row between sections.
        row += 1


def _auto_size_columns(ws: Worksheet) -> None:
    """Size each column after its longest value, within [8, 60]."""

    for col_idx, cells in enumerate(ws.iter_cols(), start=1):
        longest = max(
            (len(str(cell.value)) for cell in cells if cell.value is not None),
            default=0,
        )
        ws.column_dimensions[get_column_letter(col_idx)].width = min(
            60, max(8, longest + 2)
        )


def export_to_xlsx(reader: ShapefileReader, xlsx_path: Path) -> None:
    """Export the shapes, records and headers of ``reader`` to ``xlsx_path``.

    The file is created or overwritten.
    """

    wb = Workbook()
    default = wb.active
    if default is not None:
        wb.remove(default)

    _fill_table_sheet(
        wb.create_sheet("Shapes"), SHAPE_COLUMNS, _shape_rows(reader)
    )

    record_columns = _unique_columns(
        ["idx", "deleted", *(fld.name for fld in reader.fields)]
    )
    _fill_table_sheet(
        wb.create_sheet("Records"), record_columns, _record_rows(reader)
    )

    _write_sections(wb.create_sheet("Headers"), _header_sections(reader))

    for sheet in wb.worksheets:
        _auto_size_columns(sheet)

    logger.debug("Writing %s", xlsx_path)
    wb.save(Path(xlsx_path).as_posix())


__all__ = ["SHAPE_COLUMNS", "export_to_xlsx"]
