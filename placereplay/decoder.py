"""
Turn raw canvas log rows into EventRecords.

Every dump of the canvas history ships as a CSV with a header line, but the
column order and the coordinate encoding changed between years. The header
picks the schema; after that each row decodes independently, which is what
lets ingest.py hand chunks of rows to worker processes.
"""
import csv
import re
from enum import Enum
from functools import lru_cache
from typing import Iterable, Sequence

from .errors import MalformedRecord
from .palette import PALETTE_2017, normalise_colour
from .records import Circle, EventRecord, Point, Rect, Shape, parse_timestamp


class Schema(str, Enum):
    V2017 = "2017"
    V2022 = "2022"
    V2022_MODERATION = "2022-moderation"
    V2023 = "2023"


HEADERS = {
    ("ts", "user_hash", "x_coordinate", "y_coordinate", "color"): Schema.V2017,
    ("timestamp", "user_id", "pixel_color", "coordinate"): Schema.V2022,
    ("timestamp", "user_id", "pixel_color", "coordinate", "undo"): Schema.V2022_MODERATION,
    ("timestamp", "user", "coordinate", "pixel_color"): Schema.V2023,
}

FIELD_COUNTS = {schema: len(header) for header, schema in HEADERS.items()}

_CIRCLE_RE = re.compile(r"^\{\s*X:\s*(-?\d+),\s*Y:\s*(-?\d+),\s*R:\s*(\d+)\s*\}$")

_TRUE = {"true", "t", "1", "yes"}
_FALSE = {"false", "f", "0", "no", ""}

# same colour string object for every row that uses it
_colour = lru_cache(maxsize=256)(normalise_colour)


def detect_schema(header: Sequence[str]) -> Schema:
    key = tuple(field.strip().strip('"').lower() for field in header)
    try:
        return HEADERS[key]
    except KeyError:
        raise MalformedRecord(1, f"unrecognised header: {','.join(header)}") from None


def parse_coordinate(raw: str) -> Shape:
    """
    "x,y" is a single pixel, "x1,y1,x2,y2" a moderator rectangle (both corners
    inclusive) and "{X: x, Y: y, R: r}" a 2023 circle.
    """
    raw = raw.strip().strip('"')
    if raw.startswith("{"):
        m = _CIRCLE_RE.match(raw)
        if m is None:
            raise ValueError(f"bad circle coordinate: {raw!r}")
        return Circle(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    parts = raw.split(",")
    if len(parts) == 2:
        return Point(int(parts[0]), int(parts[1]))
    if len(parts) == 4:
        x1, y1, x2, y2 = (int(p) for p in parts)
        return Rect(min(x1, x2), min(y1, y2), max(x1, x2), max(y1, y2))
    raise ValueError(f"bad coordinate: {raw!r}")


def _parse_flag(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"bad undo flag: {raw!r}")


def _build(ts: str, user: str, colour: str, coordinate: Shape, undo: bool = False) -> EventRecord:
    user = user.strip()
    if not user:
        raise ValueError("empty user id")
    colour = colour.strip()
    if colour:
        hex_code = _colour(colour)
    elif undo:
        hex_code = None
    else:
        raise ValueError("empty colour")
    return EventRecord(parse_timestamp(ts), user, coordinate, hex_code, undo)


def decode_row(fields: Sequence[str], schema: Schema, line_number: int) -> EventRecord:
    """Decode one already-split CSV row; raises MalformedRecord on any problem."""
    expected = FIELD_COUNTS[schema]
    if len(fields) != expected:
        raise MalformedRecord(line_number, f"expected {expected} fields, got {len(fields)}")

    try:
        if schema is Schema.V2017:
            ts, user, x, y, color = fields
            try:
                colour = PALETTE_2017[int(color)]
            except KeyError:
                raise ValueError(f"colour index out of range: {color!r}") from None
            return _build(ts, user, colour, Point(int(x), int(y)))

        if schema is Schema.V2022:
            ts, user, colour, coordinate = fields
            return _build(ts, user, colour, parse_coordinate(coordinate))

        if schema is Schema.V2022_MODERATION:
            ts, user, colour, coordinate, undo = fields
            return _build(ts, user, colour, parse_coordinate(coordinate), _parse_flag(undo))

        ts, user, coordinate, colour = fields
        return _build(ts, user, colour, parse_coordinate(coordinate))
    except ValueError as e:
        raise MalformedRecord(line_number, str(e)) from e


def decode_line(line: str, schema: Schema, line_number: int) -> EventRecord:
    line = line.rstrip("\r\n")
    if not line:
        raise MalformedRecord(line_number, "empty line")
    try:
        fields = next(csv.reader([line]))
    except csv.Error as e:
        raise MalformedRecord(line_number, str(e)) from e
    return decode_row(fields, schema, line_number)


def decode_rows(rows: Iterable[tuple[int, Sequence[str]]], schema: Schema) -> list[tuple[int, EventRecord]]:
    """Worker entry point: decode a chunk of (line_number, fields) pairs."""
    return [(n, decode_row(fields, schema, n)) for n, fields in rows]
