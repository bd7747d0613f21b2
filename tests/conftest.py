import csv
import sys
from pathlib import Path

import pytest

# make the checkout importable without an install
_ROOT = str(Path(__file__).resolve().parents[1])
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

from placereplay.records import EventRecord, Point  # noqa: E402

RED = "#FF4500"
BLUE = "#3690EA"
GREEN = "#00CC78"
WHITE = "#FFFFFF"

HEADER_2022 = ["timestamp", "user_id", "pixel_color", "coordinate"]


def paint(ts: int, user: str, x: int, y: int, colour: str = RED) -> EventRecord:
    return EventRecord(ts, user, Point(x, y), colour)


def stamp(second: int, millis: int = 0) -> str:
    """Timestamp string a few seconds after 2022-04-04 00:00 UTC, as the dumps write it."""
    minutes, seconds = divmod(second, 60)
    return f"2022-04-04 00:{minutes:02d}:{seconds:02d}.{millis:03d} UTC"


@pytest.fixture
def write_log(tmp_path: Path):
    def _write(rows, header=HEADER_2022, name: str = "log.csv") -> Path:
        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(header)
            writer.writerows(rows)
        return path

    return _write


@pytest.fixture
def sample_rows():
    """A small 2022-style log: alice draws a flag corner, bob paints over part of it."""
    return [
        [stamp(1), "alice", RED, "0,0"],
        [stamp(2), "alice", RED, "1,0"],
        [stamp(3), "bob", BLUE, "0,0"],
        [stamp(4), "carol", GREEN, "50,50"],
        [stamp(5), "alice", WHITE, "1,1"],
        [stamp(6), "bob", BLUE, "60,60"],
        [stamp(10), "carol", GREEN, "1,0"],
    ]
