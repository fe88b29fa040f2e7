import logging
from pathlib import Path
from typing import Any, Callable, List, Optional

import click
from dotenv import find_dotenv, load_dotenv  # type: ignore[import-not-found]

from shpunpack.__version__ import __version__
from shpunpack.parser.binutils import DEFAULT_ENCODING
from shpunpack.parser.exceptions import ShapefileException
from shpunpack.parser.shapefile import ShapefileReader


class DotenvGroup(click.Group):
    """Command group that loads ``.env`` before parsing its options.

    Options backed by environment variables (``--log-file``) can then be
    set from a ``.env`` file in the working directory.
    """

    def make_context(
        self,
        info_name: Optional[str],
        args: List[str],
        parent: Optional[click.Context] = None,
        **extra: Any,
    ) -> click.Context:
        load_dotenv(find_dotenv(usecwd=True))
        return super().make_context(info_name, args, parent=parent, **extra)


@click.group(cls=DotenvGroup)
@click.option(
    "--debug/--no-debug", default=False, help="Enable verbose debug logging."
)
@click.option(
    "--trace/--no-trace", default=False, help="Enable trace level logging."
)
@click.option(
    "--log-file",
    type=click.Path(file_okay=True, dir_okay=False),
    envvar="SHPUNPACK_LOG_FILE",
    help=("Path to write log output to instead of stderr."),
)
@click.version_option(__version__, prog_name="shpunpack")
def cli(debug: bool, trace: bool, log_file: Optional[str] = None) -> None:
    """Inspect ESRI Shapefile datasets."""
    if trace:
        level = 1
    elif debug:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        filename=log_file or None,
        level=level,
        format="[%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if trace:
        logging.debug("Trace mode is on")
    if debug:
        logging.debug("Debug mode is on")


def dataset_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add the PATH argument and the --encoding option to a command."""

    func = click.option(
        "--encoding",
        type=str,
        default=DEFAULT_ENCODING,
        show_default=True,
        envvar="SHPUNPACK_ENCODING",
        help="Encoding of the text stored in the .dbf file.",
    )(func)
    return click.argument(
        "path",
        type=click.Path(
            file_okay=True, dir_okay=False, exists=True, path_type=Path
        ),
    )(func)


def _open_reader(path: Path, encoding: str) -> ShapefileReader:
    try:
        return ShapefileReader.open(path, encoding=encoding)
    except (OSError, ShapefileException) as exc:
        logging.debug("Failed to open %s", path, exc_info=True)
        raise click.ClickException(
            "Cannot read %s: %s" % (path, exc)
        ) from exc


def _fmt_range(values: Any) -> str:
    return ", ".join("%.3f" % v for v in values)


@cli.command(name="info")
@dataset_options
def shapefile_info(path: Path, encoding: str) -> None:
    """Print the headers and counts of the shapefile at PATH."""

    with _open_reader(path, encoding) as reader:
        header = reader.shp.header
        assert header is not None
        click.echo(f"Dataset: {reader.base_path}")
        click.echo(f"Shape type: {header.shape_type.name}")
        click.echo(f"Bounding box: {_fmt_range(header.bbox)}")
        click.echo(f"Z range: {_fmt_range(header.z_range)}")
        click.echo(f"M range: {_fmt_range(header.m_range)}")
        click.echo(f"Length: {reader.shp.total_length} bytes")

        shapes = reader.num_shapes
        records = reader.num_records
        click.echo(
            "Shapes: %s" % (shapes if shapes is not None else "unavailable")
        )
        click.echo(
            "Records: %s" % (records if records is not None else "unavailable")
        )
        if shapes is not None and records is not None:
            click.echo(
                "Consistent: %s" % ("yes" if reader.is_consistent else "no")
            )

        if reader.dbf is not None:
            click.echo("Fields:")
            for fld in reader.fields:
                size = str(fld.length)
                if fld.decimals:
                    size += f".{fld.decimals}"
                click.echo(f"  {fld.name} {fld.field_type}({size})")


@cli.command(name="shapes")
@dataset_options
@click.option(
    "--limit",
    type=int,
    default=-1,
    show_default=True,
    help="Maximum number of shapes to print (-1 for all).",
)
def shapefile_shapes(path: Path, encoding: str, limit: int) -> None:
    """Print one summary line per shape of PATH."""

    with _open_reader(path, encoding) as reader:
        try:
            for idx, shape in enumerate(reader.iter_shapes()):
                if 0 <= limit <= idx:
                    break
                click.echo(
                    f"{idx}: {shape.shape_type.name} "
                    f"parts={len(shape.parts)} points={len(shape.points)} "
                    f"bbox=({_fmt_range(shape.bbox)})"
                )
        except ShapefileException as exc:
            raise click.ClickException(str(exc)) from exc


@cli.command(name="records")
@dataset_options
@click.option(
    "--limit",
    type=int,
    default=-1,
    show_default=True,
    help="Maximum number of records to print (-1 for all).",
)
def shapefile_records(path: Path, encoding: str, limit: int) -> None:
    """Print the attribute records of PATH."""

    with _open_reader(path, encoding) as reader:
        if reader.dbf is None:
            click.echo("No .dbf file found.", err=True)
            return

        names = reader.dbf.field_names
        try:
            for idx, record in enumerate(reader.iter_records()):
                if 0 <= limit <= idx:
                    break
                if not record:
                    click.echo(f"{idx}: (deleted)")
                    continue
                values = ", ".join(
                    f"{name}={value!r}" for name, value in zip(names, record)
                )
                click.echo(f"{idx}: {values}")
        except ShapefileException as exc:
            raise click.ClickException(str(exc)) from exc


@cli.command(name="to-xlsx")
@dataset_options
@click.option(
    "--xlsx",
    "xlsx_path",
    type=click.Path(
        file_okay=True, dir_okay=False, writable=True, path_type=Path
    ),
    default=None,
    help="Path to the XLSX file to create [default: next to PATH].",
)
def shapefile_to_xlsx(
    path: Path, encoding: str, xlsx_path: Optional[Path]
) -> None:
    """Export shapes, records and headers of PATH to an XLSX workbook."""

    from shpunpack.xl import export_to_xlsx

    if xlsx_path is None:
        xlsx_path = path.with_suffix(".xlsx")

    with _open_reader(path, encoding) as reader:
        try:
            export_to_xlsx(reader, xlsx_path)
        except ShapefileException as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(f"{xlsx_path} was created")
    click.echo("Done")
