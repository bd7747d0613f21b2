import logging
from enum import Enum

from .errors import OutOfOrderInput, PipelineStateError
from .records import Cell, EventRecord, format_timestamp

logger = logging.getLogger(__name__)


class Cutoff(Enum):
    FINAL_IMAGE = "final_image"
    ACTUAL_END = "actual_end"


class CanvasStateTracker:
    """
    Replays events in timestamp order and remembers which colour every cell
    showed at each cutoff.

    Only one live cell map is kept. The first event that lands strictly after
    a cutoff freezes a copy of the map for that cutoff, so memory stays
    O(cells) no matter how many events are replayed. A cutoff of None means
    "end of the log" and is frozen by finish().
    """

    def __init__(self, final_image: int | None, actual_end: int | None = None) -> None:
        self._instants = {Cutoff.FINAL_IMAGE: final_image, Cutoff.ACTUAL_END: actual_end}
        self._live: dict[Cell, str] = {}
        self._frozen: dict[Cutoff, dict[Cell, str]] = {}
        self._last_ts: int | None = None
        self._finished = False
        # earliest cutoff first so a single comparison per event is enough
        self._pending = sorted(
            (c for c in Cutoff if self._instants[c] is not None),
            key=lambda c: self._instants[c],
        )

    def cutoff_instant(self, cutoff: Cutoff) -> int | None:
        return self._instants[cutoff]

    def observe(self, event: EventRecord, line_number: int | None = None) -> None:
        if self._finished:
            raise PipelineStateError("tracker already finished, no more events accepted")
        ts = event.timestamp
        if self._last_ts is not None and ts < self._last_ts:
            raise OutOfOrderInput(line_number, ts, self._last_ts)
        self._last_ts = ts

        while self._pending and ts > self._instants[self._pending[0]]:
            self._freeze(self._pending.pop(0))

        live = self._live
        if event.is_undo:
            for cell in event.cells():
                live.pop(cell, None)
        else:
            colour = event.colour
            for cell in event.cells():
                live[cell] = colour

    def finish(self) -> None:
        """Freeze every cutoff the stream never got past."""
        if self._finished:
            return
        for cutoff in Cutoff:
            if cutoff not in self._frozen:
                self._freeze(cutoff)
        self._finished = True
        # nothing reads the live map past this point
        self._live = {}

    def _freeze(self, cutoff: Cutoff) -> None:
        instant = self._instants[cutoff]
        when = format_timestamp(instant) if instant is not None else "end of log"
        logger.info("Snapshot %s at %s (%d painted cells)", cutoff.value, when, len(self._live))
        self._frozen[cutoff] = dict(self._live)

    def colour_at(self, cell: Cell, cutoff: Cutoff) -> str | None:
        """Colour of cell as of cutoff, None when it was never painted (or undone)."""
        try:
            return self._frozen[cutoff].get(cell)
        except KeyError:
            raise PipelineStateError("tracker has not been finished yet") from None

    def painted_cells(self, cutoff: Cutoff) -> int:
        try:
            return len(self._frozen[cutoff])
        except KeyError:
            raise PipelineStateError("tracker has not been finished yet") from None
