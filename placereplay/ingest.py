"""
Event sources. Both yield (line_number, EventRecord) pairs in file order.

* csv_events streams a raw dump (plain or .gz) row by row. Decoding can be
  fanned out to worker processes; results come back in submission order so
  the replay still sees the file order.
* parquet_events reads the compact file written by `placereplay compact`
  in record batches.
"""
import csv
import gzip
import logging
from collections import deque
from concurrent.futures import Future, ProcessPoolExecutor
from itertools import islice
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import polars as pl
import pyarrow.parquet as pq

from .decoder import Schema, decode_row, decode_rows, detect_schema
from .errors import MalformedRecord
from .preprocessing import COMPACT_COLUMNS
from .records import Circle, EventRecord, Point, Rect

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10_000

Row = tuple[int, Sequence[str]]


def _open_text(path: Path):
    # bad bytes surface as lone surrogates so _read_rows can name the line
    if path.suffix == ".gz":
        return gzip.open(path, "rt", newline="", encoding="utf-8", errors="surrogateescape")
    return open(path, "r", newline="", encoding="utf-8", errors="surrogateescape")


def _read_rows(reader) -> Iterator[Row]:
    """(line_number, fields) pairs; unreadable rows raise MalformedRecord."""
    while True:
        try:
            fields = next(reader)
        except StopIteration:
            return
        except csv.Error as e:
            raise MalformedRecord(reader.line_num + 1, f"unreadable CSV row: {e}") from e
        # line_num is read after the row is pulled, so it is that row's line
        n = reader.line_num
        text = "".join(fields)
        if not text.isascii():
            try:
                text.encode("utf-8")
            except UnicodeEncodeError:
                raise MalformedRecord(n, "invalid UTF-8") from None
        yield n, fields


def _chunks(rows: Iterable[Row], size: int) -> Iterator[list[Row]]:
    it = iter(rows)
    while True:
        chunk = list(islice(it, size))
        if not chunk:
            return
        yield chunk


def parallel_decode(
    rows: Iterable[Row], schema: Schema, workers: int, chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[tuple[int, EventRecord]]:
    """
    Decode chunks of rows on a process pool. At most 2 * workers chunks are in
    flight, and chunks are yielded in the order they were read.
    """
    max_in_flight = workers * 2
    pending: deque[Future] = deque()
    with ProcessPoolExecutor(max_workers=workers) as executor:
        try:
            for chunk in _chunks(rows, chunk_size):
                pending.append(executor.submit(decode_rows, chunk, schema))
                if len(pending) >= max_in_flight:
                    yield from pending.popleft().result()
            while pending:
                yield from pending.popleft().result()
        finally:
            # a failed chunk aborts the run; don't decode the rest
            for future in pending:
                future.cancel()


def csv_events(
    path: Path,
    schema: Schema | None = None,
    workers: int = 1,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[tuple[int, EventRecord]]:
    path = Path(path)
    with _open_text(path) as f:
        rows = _read_rows(csv.reader(f))
        first = next(rows, None)
        if first is None:
            raise MalformedRecord(1, "missing CSV header")
        if schema is None:
            schema = detect_schema(first[1])
        logger.info("Reading %s as the %s schema with %d decode worker(s)", path, schema.value, workers)

        if workers <= 1:
            for n, fields in rows:
                yield n, decode_row(fields, schema, n)
        else:
            yield from parallel_decode(rows, schema, workers, chunk_size)


def _compact_event(n: int, ts, user, colour, x, y, x2, y2, radius, undo) -> EventRecord:
    if ts is None or not user or x is None or y is None:
        raise MalformedRecord(n, "missing timestamp, user or coordinate")
    if colour is None and not undo:
        raise MalformedRecord(n, "empty colour")
    if radius is not None:
        shape = Circle(x, y, radius)
    elif x2 is not None and y2 is not None:
        shape = Rect(x, y, x2, y2)
    else:
        shape = Point(x, y)
    return EventRecord(ts, user, shape, colour, bool(undo))


def parquet_events(path: Path, batch_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[tuple[int, EventRecord]]:
    pf = pq.ParquetFile(path)
    missing = [c for c in COMPACT_COLUMNS if c not in pf.schema_arrow.names]
    if missing:
        raise MalformedRecord(1, f"compact file is missing columns: {', '.join(missing)}")
    logger.info("Reading compact events from %s (%d rows)", path, pf.metadata.num_rows)

    n = 0
    for batch in pf.iter_batches(batch_size=batch_size, columns=list(COMPACT_COLUMNS)):
        frame = pl.from_arrow(batch).select(list(COMPACT_COLUMNS))
        for row in frame.iter_rows():
            n += 1
            yield n, _compact_event(n, *row)


def open_events(
    path: Path,
    schema: Schema | None = None,
    workers: int = 1,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[tuple[int, EventRecord]]:
    path = Path(path)
    if path.suffix == ".parquet":
        return parquet_events(path, batch_size=chunk_size)
    return csv_events(path, schema=schema, workers=workers, chunk_size=chunk_size)
