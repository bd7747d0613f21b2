import csv
import gzip
from pathlib import Path

import polars as pl
import pytest

from conftest import BLUE, GREEN, RED, WHITE, stamp
from placereplay.decoder import Schema
from placereplay.errors import MalformedRecord, OutOfOrderInput
from placereplay.ingest import csv_events, open_events, parallel_decode, parquet_events
from placereplay.preprocessing import COMPACT_COLUMNS, compact
from placereplay.records import Circle, Point, Rect, parse_timestamp
from placereplay.search import CanvasHistory


def test_csv_events_decode_in_file_order(write_log, sample_rows) -> None:
    path = write_log(sample_rows)
    events = list(csv_events(path))
    assert [n for n, _ in events] == list(range(2, 2 + len(sample_rows)))
    assert [e.user_id for _, e in events] == [row[1] for row in sample_rows]
    assert events[0][1].shape == Point(0, 0)
    assert events[0][1].timestamp == parse_timestamp(stamp(1))


def test_gzip_log_reads_the_same(tmp_path: Path, write_log, sample_rows) -> None:
    plain = write_log(sample_rows)
    packed = tmp_path / "log.csv.gz"
    with open(plain, "rb") as src, gzip.open(packed, "wb") as dst:
        dst.write(src.read())
    assert list(csv_events(packed)) == list(csv_events(plain))


def test_parallel_decode_matches_inline(write_log) -> None:
    rows = [[stamp(i // 10, i % 10), f"user{i % 7}", [RED, BLUE, GREEN][i % 3], f"{i % 13},{i % 17}"] for i in range(500)]
    path = write_log(rows)
    inline = list(csv_events(path, workers=1))
    pooled = list(csv_events(path, workers=2, chunk_size=37))
    assert pooled == inline


def test_parallel_decode_propagates_malformed_line() -> None:
    rows = [(n, ["2022-04-04 00:00:01 UTC", "u", "#FFFFFF", "1,2"]) for n in range(2, 40)]
    rows[25] = (27, ["2022-04-04 00:00:01 UTC", "u", "#FFFFFF", "oops"])
    with pytest.raises(MalformedRecord) as exc:
        list(parallel_decode(rows, Schema.V2022, workers=2, chunk_size=5))
    assert exc.value.line_number == 27


def test_malformed_line_aborts_ingestion(write_log, sample_rows) -> None:
    sample_rows.insert(3, [stamp(3), "mallory", RED, "not-a-coordinate"])
    history = CanvasHistory(final_image=parse_timestamp(stamp(8)))
    with pytest.raises(MalformedRecord) as exc:
        history.ingest(csv_events(write_log(sample_rows)))
    assert exc.value.line_number == 5


def test_out_of_order_log_aborts_ingestion(write_log, sample_rows) -> None:
    sample_rows.append([stamp(2), "late", RED, "3,3"])
    history = CanvasHistory(final_image=parse_timestamp(stamp(8)))
    with pytest.raises(OutOfOrderInput) as exc:
        history.ingest(csv_events(write_log(sample_rows)))
    assert exc.value.line_number == len(sample_rows) + 1


def test_missing_header(tmp_path: Path) -> None:
    empty = tmp_path / "empty.csv"
    empty.write_text("")
    with pytest.raises(MalformedRecord):
        list(csv_events(empty))


def test_compact_round_trip_replays_identically(tmp_path: Path, write_log, sample_rows) -> None:
    sample_rows.append([stamp(11), "mod", WHITE, "5,5,3,4"])
    path = write_log(sample_rows)
    out = tmp_path / "events.parquet"

    assert compact(path, out) == len(sample_rows)
    assert tuple(pl.read_parquet(out).columns) == COMPACT_COLUMNS
    assert list(parquet_events(out)) == [
        (i, e) for i, (_, e) in enumerate(csv_events(path), start=1)
    ]
    # moderator rectangle is stored with ordered corners
    assert list(open_events(out))[-1][1].shape == Rect(3, 4, 5, 5)


def test_compact_sorts_by_time_keeping_file_order_for_ties(tmp_path: Path, write_log) -> None:
    rows = [
        [stamp(5), "c", RED, "0,0"],
        [stamp(1), "a", RED, "0,0"],
        [stamp(5), "d", BLUE, "0,0"],
        [stamp(1, 500), "b", RED, "0,0"],
    ]
    out = tmp_path / "sorted.parquet"
    compact(write_log(rows), out)
    assert [e.user_id for _, e in parquet_events(out)] == ["a", "b", "c", "d"]

    history = CanvasHistory(final_image=parse_timestamp(stamp(5)))
    history.ingest(parquet_events(out))
    assert history.report("d").survived_final_image == 1


def test_compact_2023_circles_and_2017_palette(tmp_path: Path, write_log) -> None:
    rows_2023 = [
        ["2023-07-20 13:00:26.088 UTC", "u", "{X: -12, Y: 40, R: 3}", "#ff4500"],
        ["2023-07-20 13:00:27 UTC", "v", "-5,-6", "#000000"],
    ]
    path = write_log(rows_2023, header=["timestamp", "user", "coordinate", "pixel_color"], name="2023.csv")
    out = tmp_path / "2023.parquet"
    compact(path, out)
    events = [e for _, e in parquet_events(out)]
    assert events[0].shape == Circle(-12, 40, 3)
    assert events[0].colour == RED
    assert events[1].shape == Point(-5, -6)
    assert events[1].timestamp == parse_timestamp("2023-07-20 13:00:27 UTC")

    rows_2017 = [["2017-04-01 12:00:00.123 UTC", "h", "5", "7", "13"]]
    path = write_log(rows_2017, header=["ts", "user_hash", "x_coordinate", "y_coordinate", "color"], name="2017.csv")
    out = tmp_path / "2017.parquet"
    compact(path, out)
    (_, event), = parquet_events(out)
    assert event.colour == "#0000EA"
    assert event.shape == Point(5, 7)


def test_compact_moderation_undo_rows(tmp_path: Path) -> None:
    path = tmp_path / "mod.csv"
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["timestamp", "user_id", "pixel_color", "coordinate", "undo"])
        writer.writerow([stamp(1), "u", RED, "1,1", "false"])
        writer.writerow([stamp(2), "mod", "", "1,1", "true"])
    out = tmp_path / "mod.parquet"
    compact(path, out)
    events = [e for _, e in parquet_events(out)]
    assert [e.is_undo for e in events] == [False, True]
    assert events[1].colour is None
    assert events == [e for _, e in csv_events(path)]


def _log_with_bad_bytes(tmp_path: Path) -> Path:
    path = tmp_path / "bad.csv"
    path.write_bytes(
        b"timestamp,user_id,pixel_color,coordinate\n"
        + f'{stamp(1)},alice,{RED},"0,0"\n'.encode()
        + f"{stamp(2)},".encode() + b"\xff\xfe" + f',{RED},"1,1"\n'.encode()
        + f'{stamp(3)},bob,{RED},"2,2"\n'.encode()
    )
    return path


@pytest.mark.parametrize("workers", [1, 2])
def test_invalid_utf8_is_a_malformed_record(tmp_path: Path, workers: int) -> None:
    with pytest.raises(MalformedRecord) as exc:
        list(csv_events(_log_with_bad_bytes(tmp_path), workers=workers, chunk_size=1))
    assert exc.value.line_number == 3
    assert "UTF-8" in exc.value.reason


def test_invalid_utf8_in_gzip_log(tmp_path: Path) -> None:
    plain = _log_with_bad_bytes(tmp_path)
    packed = tmp_path / "bad.csv.gz"
    with gzip.open(packed, "wb") as dst:
        dst.write(plain.read_bytes())
    with pytest.raises(MalformedRecord) as exc:
        list(csv_events(packed))
    assert exc.value.line_number == 3


def test_compact_reports_the_malformed_line(tmp_path: Path, write_log, sample_rows) -> None:
    sample_rows.insert(1, [stamp(1), "mallory", RED, "a,b"])
    out = tmp_path / "events.parquet"
    with pytest.raises(MalformedRecord) as exc:
        compact(write_log(sample_rows), out)
    assert exc.value.line_number == 3
    assert not out.exists()


def test_compact_rejects_colours_the_row_decoder_rejects(tmp_path: Path, write_log, sample_rows) -> None:
    sample_rows.insert(2, [stamp(2), "mallory", "#GGGGGG", "0,0"])
    with pytest.raises(MalformedRecord) as exc:
        compact(write_log(sample_rows), tmp_path / "events.parquet")
    assert exc.value.line_number == 4


def test_compact_normalises_colours_like_the_row_decoder(tmp_path: Path, write_log) -> None:
    rows = [
        [stamp(1), "a", "ff4500", "0,0"],
        [stamp(2), "b", " #3690ea ", "1,1"],
        [stamp(3), "c", "Dark Red", "2,2"],
    ]
    path = write_log(rows)
    out = tmp_path / "events.parquet"
    compact(path, out)
    compacted = [e for _, e in parquet_events(out)]
    assert [e.colour for e in compacted] == [RED, BLUE, "#BE0039"]
    assert compacted == [e for _, e in csv_events(path)]
