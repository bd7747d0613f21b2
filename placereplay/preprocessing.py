import csv
import gzip
import logging
from pathlib import Path

import polars as pl

from .decoder import HEADERS, Schema, detect_schema
from .errors import MalformedRecord
from .palette import COLOR_NAME_TO_HEX, PALETTE_2017

logger = logging.getLogger(__name__)

# column layout of the compact parquet file, in this order
COMPACT_COLUMNS = ("timestamp_ms", "user_id", "pixel_color", "x", "y", "x2", "y2", "radius", "is_undo")

USER_COLUMN = {
    Schema.V2017: "user_hash",
    Schema.V2022: "user_id",
    Schema.V2022_MODERATION: "user_id",
    Schema.V2023: "user",
}

TIMESTAMP_COLUMN = {
    Schema.V2017: "ts",
    Schema.V2022: "timestamp",
    Schema.V2022_MODERATION: "timestamp",
    Schema.V2023: "timestamp",
}

_CIRCLE = r"^\{\s*X:\s*(-?\d+),\s*Y:\s*(-?\d+),\s*R:\s*(\d+)\s*\}$"


def read_header(inp: Path) -> list[str]:
    opener = gzip.open if inp.suffix == ".gz" else open
    with opener(inp, "rt", newline="", encoding="utf-8", errors="replace") as f:
        header = next(csv.reader(f), None)
    if header is None:
        raise MalformedRecord(1, "missing CSV header")
    return header


def timestamp_ms(col: str) -> pl.Expr:
    """'2022-04-04 00:55:57.168 UTC' -> epoch milliseconds (Int64)."""
    seconds = (
        pl.col(col)
          .str.slice(0, 19)
          .str.strptime(pl.Datetime("ms"), format="%Y-%m-%d %H:%M:%S", strict=True)
          .dt.epoch(time_unit="ms")
    )
    # fractional part is optional in the dumps and not always 3 digits
    millis = (
        pl.col(col)
          .str.extract(r"^.{19}\.(\d+)", 1)
          .str.slice(0, 3)
          .str.pad_end(3, "0")
          .cast(pl.Int64)
          .fill_null(0)
    )
    return (seconds + millis).cast(pl.Int64).alias("timestamp_ms")


def coordinate_columns(col: str) -> list[pl.Expr]:
    """Split "x,y", "x1,y1,x2,y2" or "{X: x, Y: y, R: r}" into x, y, x2, y2, radius."""
    raw = pl.col(col).str.strip_chars('" ')
    is_circle = raw.str.starts_with("{")
    parts = raw.str.split(",")
    n_parts = parts.list.len()

    def part(i: int) -> pl.Expr:
        return parts.list.get(i, null_on_oob=True).str.strip_chars()

    # anything but 2 or 4 parts leaves x null, which compact reports
    is_flat = ~is_circle & n_parts.is_in([2, 4])
    is_rect = ~is_circle & (n_parts == 4)
    return [
        pl.when(is_circle).then(raw.str.extract(_CIRCLE, 1)).when(is_flat).then(part(0)).cast(pl.Int32).alias("x"),
        pl.when(is_circle).then(raw.str.extract(_CIRCLE, 2)).when(is_flat).then(part(1)).cast(pl.Int32).alias("y"),
        pl.when(is_rect).then(part(2)).cast(pl.Int32).alias("x2"),
        pl.when(is_rect).then(part(3)).cast(pl.Int32).alias("y2"),
        raw.str.extract(_CIRCLE, 3).cast(pl.Int32).alias("radius"),
    ]


def colour_column(col: str) -> pl.Expr:
    """
    "#rrggbb", "RRGGBB" or a palette name -> "#RRGGBB", the same forms the
    row decoder accepts. Empty or unknown colours become null.
    """
    raw = pl.col(col).str.strip_chars()
    digits = raw.str.strip_prefix("#").str.to_uppercase()
    name = (
        raw.str.to_lowercase()
          .str.replace_all(r"[_\-\s]+", " ")
          .str.replace_all("grey", "gray", literal=True)
          .replace_strict(COLOR_NAME_TO_HEX, default=None, return_dtype=pl.Utf8)
    )
    return (
        pl.when(digits.str.contains(r"^[0-9A-F]{6}$"))
          .then(pl.concat_str([pl.lit("#"), digits]))
          .otherwise(name)
    )


def invalid_rows() -> pl.Expr:
    """Compact rows the row decoder would have rejected."""
    return (
        pl.col("timestamp_ms").is_null()
        | pl.col("user_id").is_null()
        | (pl.col("user_id") == "")
        | pl.col("x").is_null()
        | pl.col("y").is_null()
        | (pl.col("pixel_color").is_null() & ~pl.col("is_undo"))
    )


def conversion_helper(inp: Path, schema: Schema, header: list[str]) -> pl.LazyFrame:
    """
    Read a raw dump and create the compact columns:
      - timestamp_ms (Int64)
      - user_id (Utf8)
      - pixel_color (Utf8, "#RRGGBB", null for colourless undo rows)
      - x, y, x2, y2, radius (Int32, x2/y2 only for rectangles, radius only for circles)
      - is_undo (Boolean)
    """
    overrides = {name: pl.Utf8 for name in header}
    if inp.suffix == ".gz":
        # scan_csv can't stream gzip, this loads the whole file
        logger.warning("%s is gzip compressed; reading it fully into memory", inp)
        lf = pl.read_csv(inp, has_header=True, schema_overrides=overrides).lazy()
    else:
        lf = pl.scan_csv(inp, has_header=True, schema_overrides=overrides)

    if schema is Schema.V2017:
        palette = {str(k): v for k, v in PALETTE_2017.items()}
        no_int = pl.lit(None, dtype=pl.Int32)
        shape = [
            pl.col("x_coordinate").str.strip_chars().cast(pl.Int32).alias("x"),
            pl.col("y_coordinate").str.strip_chars().cast(pl.Int32).alias("y"),
            no_int.alias("x2"),
            no_int.alias("y2"),
            no_int.alias("radius"),
        ]
        colour = pl.col("color").str.strip_chars().replace_strict(palette, default=None, return_dtype=pl.Utf8)
    else:
        shape = coordinate_columns("coordinate")
        colour = colour_column("pixel_color")

    if schema is Schema.V2022_MODERATION:
        undo = pl.col("undo").str.strip_chars().str.to_lowercase().is_in(["true", "t", "1", "yes"])
    else:
        undo = pl.lit(False)

    return (
        lf.select(
            timestamp_ms(TIMESTAMP_COLUMN[schema]),
            pl.col(USER_COLUMN[schema]).str.strip_chars().alias("user_id"),
            colour.alias("pixel_color"),
            *shape,
            undo.alias("is_undo"),
        )
        # rectangles are stored with x <= x2 and y <= y2
        .with_columns(
            pl.when(pl.col("x2").is_not_null()).then(pl.min_horizontal("x", "x2")).otherwise(pl.col("x")).alias("x"),
            pl.when(pl.col("y2").is_not_null()).then(pl.min_horizontal("y", "y2")).otherwise(pl.col("y")).alias("y"),
            pl.when(pl.col("x2").is_not_null()).then(pl.max_horizontal("x", "x2")).otherwise(pl.lit(None, dtype=pl.Int32)).alias("x2"),
            pl.when(pl.col("y2").is_not_null()).then(pl.max_horizontal("y", "y2")).otherwise(pl.lit(None, dtype=pl.Int32)).alias("y2"),
        )
        .select(list(COMPACT_COLUMNS))
    )


def compact(inp: Path, out: Path, schema: Schema | None = None) -> int:
    """
    Convert a raw dump into a time sorted compact parquet file that
    `parquet_events` can replay. Ties keep their file order (stable sort).
    Returns the number of rows written.
    """
    inp, out = Path(inp), Path(out)
    header = read_header(inp)
    if schema is None:
        schema = detect_schema(header)
    elif tuple(h.strip().lower() for h in header) not in HEADERS:
        logger.warning("Header of %s does not match any known schema, trusting %s", inp, schema.value)

    events = conversion_helper(inp, schema, header).sort("timestamp_ms", maintain_order=True)
    try:
        events.sink_parquet(out, compression="zstd", compression_level=10)
    except (pl.exceptions.ComputeError, pl.exceptions.InvalidOperationError) as e:
        out.unlink(missing_ok=True)
        raise _first_malformed(inp, schema, str(e)) from e

    bad = pl.scan_parquet(out).filter(invalid_rows()).select(pl.len()).collect().item()
    if bad:
        out.unlink()
        raise _first_malformed(inp, schema, f"{bad} rows have a missing or invalid field")

    rows = pl.scan_parquet(out).select(pl.len()).collect().item()
    logger.info("Wrote compact events: %s (%d rows, %s schema)", out, rows, schema.value)
    return rows


def _first_malformed(inp: Path, schema: Schema, detail: str) -> MalformedRecord:
    """Run the raw file through the row decoder to find the line polars rejected."""
    # ingest imports this module for COMPACT_COLUMNS
    from .ingest import csv_events

    try:
        for _ in csv_events(inp, schema):
            pass
    except MalformedRecord as e:
        return e
    return MalformedRecord(None, detail)
