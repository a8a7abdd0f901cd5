"""
In-memory document store for match records.

Each record has its own lock and every mutation is a targeted, conditional
write applied under that lock (status compare-and-set, per-handle score
upsert, at-most-once problem assignment, credit-if-not-credited). Callers
only ever receive copies, so nobody can write a whole stale record back.
"""

import copy
import threading
from contextlib import contextmanager
from typing import Callable, Iterable

from duels.errors import AlreadyGenerated, InvalidTransition, NotFound, NotParticipant
from duels.models import Match, Problem


class DuplicateMatchId(Exception):
    pass


# Timestamp fields that follow first-write-wins
TIMESTAMP_FIELDS = ("starting_at", "started_at", "ended_at")


class MatchStore:

    def __init__(self):
        self._records: dict[str, Match] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._index_lock = threading.Lock()

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._records)

    def ids(self) -> list[str]:
        with self._index_lock:
            return list(self._records)

    @contextmanager
    def _locked(self, match_id: str):
        with self._index_lock:
            lock = self._locks.get(match_id)
        if lock is None:
            raise NotFound(f"Duel with ID {match_id} not found")
        with lock:
            record = self._records.get(match_id)
            # Deleted while we were waiting for the lock
            if record is None:
                raise NotFound(f"Duel with ID {match_id} not found")
            yield record

    # ── Reads ──────────────────────────────────────────────────────────

    def get(self, match_id: str) -> Match:
        with self._locked(match_id) as record:
            return copy.deepcopy(record)

    def query(self, predicate: Callable[[Match], bool] | None = None, *,
              sort_key: Callable[[Match], object] | None = None, reverse: bool = False,
              skip: int = 0, limit: int | None = None) -> tuple[list[Match], int]:
        """Filter, sort and page over snapshots; returns (page, total matching)."""
        snapshots = []
        for match_id in self.ids():
            try:
                snapshots.append(self.get(match_id))
            except NotFound:
                continue
        if predicate is not None:
            snapshots = [m for m in snapshots if predicate(m)]
        if sort_key is not None:
            snapshots.sort(key=sort_key, reverse=reverse)
        total = len(snapshots)
        end = None if limit is None else skip + limit
        return snapshots[skip:end], total

    # ── Writes ─────────────────────────────────────────────────────────

    def insert(self, match: Match) -> Match:
        with self._index_lock:
            if match.id in self._records:
                raise DuplicateMatchId(match.id)
            self._records[match.id] = copy.deepcopy(match)
            self._locks[match.id] = threading.Lock()
        return copy.deepcopy(match)

    def delete(self, match_id: str) -> Match:
        with self._locked(match_id) as record:
            with self._index_lock:
                self._records.pop(match_id, None)
                self._locks.pop(match_id, None)
            return copy.deepcopy(record)

    def add_participant(self, match_id: str, handle: str,
                        allowed_statuses: Iterable[str] | None = None) -> tuple[Match, bool]:
        """Append ``handle`` and seed its score at 0; no-op if already present.

        When ``allowed_statuses`` is given, the stored status is checked under the
        same lock.
        """
        with self._locked(match_id) as record:
            if allowed_statuses is not None and record.status not in tuple(allowed_statuses):
                raise InvalidTransition(f"Cannot add handle to a {record.status} duel")
            if handle in record.participants:
                return copy.deepcopy(record), False
            record.participants.append(handle)
            record.scores.setdefault(handle, 0)
            return copy.deepcopy(record), True

    def set_problems(self, match_id: str, problems: list[Problem]) -> Match:
        with self._locked(match_id) as record:
            if record.problems_generated:
                raise AlreadyGenerated("Problems already generated for this duel")
            record.problems = list(problems)
            record.problems_generated = True
            return copy.deepcopy(record)

    def set_score(self, match_id: str, handle: str, value: int) -> tuple[Match, bool]:
        """Upsert one participant's score; a lower value than stored is ignored."""
        with self._locked(match_id) as record:
            if handle not in record.participants:
                raise NotParticipant(f'Handle "{handle}" is not a participant in this duel')
            current = record.scores.get(handle, 0)
            if value <= current:
                return copy.deepcopy(record), False
            record.scores[handle] = value
            return copy.deepcopy(record), True

    def credit(self, match_id: str, key: str, handle: str, points: int) -> bool:
        """Credit ``handle`` for problem ``key`` unless it already was."""
        with self._locked(match_id) as record:
            if handle not in record.participants:
                return False
            credited = record.credits.setdefault(key, [])
            if handle in credited:
                return False
            credited.append(handle)
            record.scores[handle] = record.scores.get(handle, 0) + points
            return True

    def compare_and_set_status(self, match_id: str, expected: Iterable[str], new_status: str, *,
                               timestamps: dict | None = None, **fields) -> tuple[Match, bool]:
        """Set ``status`` to ``new_status`` only if the stored status is in ``expected``.

        Timestamps are first-write-wins; other ``fields`` are applied as given.
        Returns the current record and whether the write happened.
        """
        timestamps = timestamps or {}
        for name in timestamps:
            if name not in TIMESTAMP_FIELDS:
                raise AttributeError(name)
        with self._locked(match_id) as record:
            for name in fields:
                if not hasattr(record, name):
                    raise AttributeError(name)
            if record.status not in tuple(expected):
                return copy.deepcopy(record), False
            record.status = new_status
            for name, value in timestamps.items():
                if getattr(record, name) is None and value is not None:
                    setattr(record, name, value)
            for name, value in fields.items():
                setattr(record, name, value)
            return copy.deepcopy(record), True
