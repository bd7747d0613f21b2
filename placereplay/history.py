from typing import Iterator

from .errors import PipelineStateError, UnknownUser
from .records import EventRecord


class UserHistoryIndex:
    """
    user id -> that user's events, in the order the log listed them.

    Built during the single ingestion pass so per-user queries afterwards
    never rescan the log. Memory is O(events); that is the price of
    answering arbitrary users without a second pass.
    """

    def __init__(self) -> None:
        self._records: dict[str, list[EventRecord]] = {}
        self._event_count = 0
        self._frozen = False

    def observe(self, event: EventRecord) -> None:
        if self._frozen:
            raise PipelineStateError("history index is read-only after ingestion")
        record = self._records.get(event.user_id)
        if record is None:
            record = self._records[event.user_id] = []
        record.append(event)
        self._event_count += 1

    def freeze(self) -> None:
        self._frozen = True

    def history_of(self, user_id: str) -> tuple[EventRecord, ...]:
        try:
            return tuple(self._records[user_id])
        except KeyError:
            raise UnknownUser(user_id) from None

    def users(self) -> Iterator[str]:
        # dicts keep insertion order, i.e. first time each user showed up
        return iter(self._records)

    @property
    def event_count(self) -> int:
        return self._event_count

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._records

    def __len__(self) -> int:
        return len(self._records)
