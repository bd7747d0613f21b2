from .areas import SearchArea, matches
from .decoder import Schema, decode_line, decode_row, detect_schema
from .errors import (
    ConfigurationError,
    InvalidAreaBounds,
    MalformedRecord,
    OutOfOrderInput,
    PipelineStateError,
    PlaceReplayError,
    UnknownUser,
)
from .history import UserHistoryIndex
from .records import Circle, EventRecord, Point, Rect
from .search import CanvasHistory, Candidate, UserReport
from .tracker import CanvasStateTracker, Cutoff

__version__ = "0.1.0"
