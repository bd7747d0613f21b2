from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from math import isqrt
from typing import Iterator, Union

Cell = tuple[int, int]


@dataclass(frozen=True, slots=True)
class Rect:
    """Rectangle of cells, every bound inclusive."""

    left: int
    top: int
    right: int
    bottom: int

    @property
    def size(self) -> int:
        return (self.right - self.left + 1) * (self.bottom - self.top + 1)

    def contains(self, x: int, y: int) -> bool:
        return self.left <= x <= self.right and self.top <= y <= self.bottom

    def cells(self) -> Iterator[Cell]:
        for x in range(self.left, self.right + 1):
            for y in range(self.top, self.bottom + 1):
                yield (x, y)

    def touches(self, rect: "Rect") -> bool:
        return (
            self.left <= rect.right and rect.left <= self.right
            and self.top <= rect.bottom and rect.top <= self.bottom
        )

    def within(self, rect: "Rect") -> bool:
        return (
            rect.left <= self.left and self.right <= rect.right
            and rect.top <= self.top and self.bottom <= rect.bottom
        )


@dataclass(frozen=True, slots=True)
class Point:
    x: int
    y: int

    @property
    def size(self) -> int:
        return 1

    def cells(self) -> Iterator[Cell]:
        yield (self.x, self.y)

    def touches(self, rect: Rect) -> bool:
        return rect.contains(self.x, self.y)

    def within(self, rect: Rect) -> bool:
        return rect.contains(self.x, self.y)


@dataclass(frozen=True, slots=True)
class Circle:
    """Filled circle from the 2023 dump: cells with dx^2 + dy^2 <= r^2."""

    x: int
    y: int
    radius: int

    @property
    def size(self) -> int:
        r = self.radius
        return sum(2 * isqrt(r * r - dy * dy) + 1 for dy in range(-r, r + 1))

    def cells(self) -> Iterator[Cell]:
        r = self.radius
        for dy in range(-r, r + 1):
            span = isqrt(r * r - dy * dy)
            for dx in range(-span, span + 1):
                yield (self.x + dx, self.y + dy)

    def touches(self, rect: Rect) -> bool:
        # closest cell of the rectangle to the centre
        nx = min(max(self.x, rect.left), rect.right)
        ny = min(max(self.y, rect.top), rect.bottom)
        return (nx - self.x) ** 2 + (ny - self.y) ** 2 <= self.radius ** 2

    def within(self, rect: Rect) -> bool:
        r = self.radius
        return Rect(self.x - r, self.y - r, self.x + r, self.y + r).within(rect)


Shape = Union[Point, Rect, Circle]


@dataclass(frozen=True, slots=True)
class EventRecord:
    """
    One decoded placement. timestamp is epoch milliseconds (UTC), colour is
    "#RRGGBB" or None for undo rows without a colour.
    """

    timestamp: int
    user_id: str
    shape: Shape
    colour: str | None
    is_undo: bool = False

    def cells(self) -> Iterator[Cell]:
        return self.shape.cells()


@lru_cache(maxsize=4096)
def _epoch_seconds(prefix: str) -> int:
    # prefix is "YYYY-MM-DD HH:MM:SS"; neighbouring rows mostly share it
    if len(prefix) != 19 or prefix[4] != "-" or prefix[7] != "-" or prefix[10] != " ":
        raise ValueError(f"bad timestamp: {prefix!r}")
    return int(datetime(
        int(prefix[0:4]),   # year
        int(prefix[5:7]),   # month
        int(prefix[8:10]),  # day
        int(prefix[11:13]), # hour
        int(prefix[14:16]), # minute
        int(prefix[17:19]), # second
        tzinfo=timezone.utc,
    ).timestamp())


def parse_timestamp(ts: str) -> int:
    """Parse "YYYY-MM-DD HH:MM:SS[.fff] UTC" into epoch milliseconds."""
    ts = ts.strip()
    if ts.endswith(" UTC"):
        ts = ts[:-4]
    millis = 0
    if len(ts) > 19:
        if ts[19] != ".":
            raise ValueError(f"bad timestamp: {ts!r}")
        frac = ts[20:]
        if not frac.isdigit():
            raise ValueError(f"bad timestamp: {ts!r}")
        # keep millisecond precision, pad ".5" to 500
        millis = int(frac[:3].ljust(3, "0"))
    return _epoch_seconds(ts[:19]) * 1000 + millis


def format_timestamp(ms: int) -> str:
    dt = datetime.fromtimestamp(ms // 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S") + f".{ms % 1000:03d} UTC"
