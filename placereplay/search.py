"""
Two phase pipeline over one canvas log.

CanvasHistory starts INGESTING, consumes the whole event stream exactly once
(feeding every event to both the canvas tracker and the per-user index) and
then switches to READY, after which it only answers queries:

* find_candidates: which users fit the configured search areas
* report: how many of one user's pixels survived to each cutoff
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

import polars as pl

from .areas import SearchArea, matches, outside_all
from .errors import PipelineStateError
from .history import UserHistoryIndex
from .records import Cell, EventRecord
from .tracker import CanvasStateTracker, Cutoff

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 1_000_000


class Phase(Enum):
    INGESTING = "ingesting"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class Candidate:
    user_id: str
    placements: int
    optional_matches: tuple[str, ...]


@dataclass(frozen=True)
class UserReport:
    user_id: str
    total_placements: int
    undo_count: int
    survived_final_image: int
    survived_actual_end: int
    # (cell, colour) pairs still showing at the actual end, sorted by cell
    surviving_cells: tuple[tuple[Cell, str], ...]


class CanvasHistory:
    def __init__(self, final_image: int | None, actual_end: int | None = None) -> None:
        self.tracker = CanvasStateTracker(final_image, actual_end)
        self.index = UserHistoryIndex()
        self.phase = Phase.INGESTING
        self._started = False

    def ingest(self, events: Iterable[tuple[int, EventRecord]], progress_every: int = PROGRESS_EVERY) -> int:
        """
        Replay (line_number, event) pairs in order. Any error aborts the run and
        leaves the history FAILED; partial state is never queryable.
        """
        if self._started:
            raise PipelineStateError(f"ingest() can only run once (phase is {self.phase.value})")
        self._started = True

        t0 = time.perf_counter()
        count = 0
        try:
            for line_number, event in events:
                self.tracker.observe(event, line_number)
                self.index.observe(event)
                count += 1
                if count % progress_every == 0:
                    logger.info("Replayed %d events (%d users so far)", count, len(self.index))
        except BaseException:
            self.phase = Phase.FAILED
            raise

        self.tracker.finish()
        self.index.freeze()
        self.phase = Phase.READY
        logger.info(
            "Ingestion finished: %d events, %d users in %.1fs",
            count, len(self.index), time.perf_counter() - t0,
        )
        return count

    def _require_ready(self) -> None:
        if self.phase is not Phase.READY:
            raise PipelineStateError(f"queries need a READY history (phase is {self.phase.value})")

    def find_candidates(self, areas: Sequence[SearchArea], no_edits_outside: bool = True) -> list[Candidate]:
        """
        Users who matched every required area (and, with no_edits_outside, never
        touched a cell outside all areas). Best first: most optional areas
        matched, then most placements.
        """
        self._require_ready()
        required = [a for a in areas if not a.is_optional]
        optional = [a for a in areas if a.is_optional]

        found = []
        for user_id in self.index.users():
            history = self.index.history_of(user_id)
            if not all(matches(history, area) for area in required):
                continue
            if no_edits_outside and any(outside_all(event, areas) for event in history):
                continue
            optional_hits = tuple(a.name for a in optional if matches(history, a))
            placements = sum(1 for event in history if not event.is_undo)
            found.append(Candidate(user_id, placements, optional_hits))

        found.sort(key=lambda c: (-len(c.optional_matches), -c.placements, c.user_id))
        logger.info("Found %d candidate users", len(found))
        return found

    def _survivors(self, history: Sequence[EventRecord], cutoff: Cutoff) -> dict[Cell, str]:
        instant = self.tracker.cutoff_instant(cutoff)
        # user's own last word on every cell they touched before the cutoff
        last: dict[Cell, str | None] = {}
        for event in history:
            if instant is not None and event.timestamp > instant:
                break
            colour = None if event.is_undo else event.colour
            for cell in event.cells():
                last[cell] = colour

        return {
            cell: colour
            for cell, colour in last.items()
            if colour is not None and self.tracker.colour_at(cell, cutoff) == colour
        }

    def report(self, user_id: str) -> UserReport:
        """Raises UnknownUser when the id never appeared in the log."""
        self._require_ready()
        history = self.index.history_of(user_id)

        undo_count = sum(1 for event in history if event.is_undo)
        final_image = self._survivors(history, Cutoff.FINAL_IMAGE)
        actual_end = self._survivors(history, Cutoff.ACTUAL_END)

        return UserReport(
            user_id=user_id,
            total_placements=len(history) - undo_count,
            undo_count=undo_count,
            survived_final_image=len(final_image),
            survived_actual_end=len(actual_end),
            surviving_cells=tuple(sorted(actual_end.items())),
        )


def candidates_frame(candidates: Sequence[Candidate], areas: Sequence[SearchArea]) -> pl.DataFrame:
    """One row per candidate, one boolean column per optional area."""
    optional = [a.name for a in areas if a.is_optional]
    data = {
        "user_id": [c.user_id for c in candidates],
        "placements": [c.placements for c in candidates],
    }
    schema = {"user_id": pl.Utf8, "placements": pl.Int64}
    for name in optional:
        data[name] = [name in c.optional_matches for c in candidates]
        schema[name] = pl.Boolean
    return pl.DataFrame(data, schema=schema)
