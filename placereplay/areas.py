from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import InvalidAreaBounds
from .records import EventRecord, Rect


@dataclass(frozen=True)
class SearchArea:
    """
    A rectangle on the canvas (bounds inclusive) plus optional time window
    (epoch ms, inclusive) and optional colour filter. colours=None means any
    colour.
    """

    name: str
    bounds: Rect
    start_time: int | None = None
    end_time: int | None = None
    colours: frozenset[str] | None = None
    is_optional: bool = False

    def __post_init__(self) -> None:
        b = self.bounds
        if b.right < b.left:
            raise InvalidAreaBounds(self.name, f"right ({b.right}) is less than left ({b.left})")
        if b.bottom < b.top:
            raise InvalidAreaBounds(self.name, f"bottom ({b.bottom}) is less than top ({b.top})")
        if self.start_time is not None and self.end_time is not None and self.end_time < self.start_time:
            raise InvalidAreaBounds(self.name, "end_time is before start_time")
        if self.colours is not None and not self.colours:
            raise InvalidAreaBounds(self.name, "colour filter is empty")

    def accepts(self, event: EventRecord) -> bool:
        """True when the event satisfies the area's spatial, time and colour constraints."""
        ts = event.timestamp
        if self.start_time is not None and ts < self.start_time:
            return False
        if self.end_time is not None and ts > self.end_time:
            return False
        if self.colours is not None and event.colour not in self.colours:
            return False
        return event.shape.touches(self.bounds)


def matches(history: Iterable[EventRecord], area: SearchArea) -> bool:
    # any() stops at the first event that fits
    return any(area.accepts(event) for event in history)


def outside_all(event: EventRecord, areas: Sequence[SearchArea]) -> bool:
    """
    Spatial check only: some cell of the event lies outside the union of the
    areas' rectangles. A rectangle or circle that spills past an area counts
    as an edit outside.
    """
    shape = event.shape
    rects = [area.bounds for area in areas]
    if any(shape.within(rect) for rect in rects):
        return False
    if not any(shape.touches(rect) for rect in rects):
        return True
    # straddles several areas, check cell by cell
    return any(not any(rect.contains(x, y) for rect in rects) for x, y in shape.cells())
