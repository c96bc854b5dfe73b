"""
In-memory snapshot store for tally input collections.

One writer (the active refresh cycle) replaces the whole snapshot at once;
any number of readers hold on to whichever snapshot they fetched. A snapshot
is never mutated after it is built, so publishing is a single reference swap.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Iterable, List, Optional, Set, Tuple

from core.tallies.models import CategoryRef, NomineeRef, UserRef, VoteRecord
from shared.logging.logger import get_logger

_log = get_logger("shared.snapshot_store")


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable set of input records for one aggregation cycle.

    Generation 0 is the empty "no data yet" snapshot.
    """

    generation: int = 0
    votes: Tuple[VoteRecord, ...] = ()
    categories: Tuple[CategoryRef, ...] = ()
    nominees: Tuple[NomineeRef, ...] = ()
    users: Tuple[UserRef, ...] = ()
    duplicate_votes: int = 0
    loaded_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not (self.votes or self.categories or self.nominees or self.users)

    @property
    def latest_vote_at(self) -> Optional[datetime]:
        if not self.votes:
            return None
        return max(vote.cast_at for vote in self.votes)


def _dedupe_votes(votes: Iterable[VoteRecord]) -> Tuple[Tuple[VoteRecord, ...], int]:
    seen: Set[str] = set()
    kept: List[VoteRecord] = []
    duplicates = 0
    for vote in votes:
        if vote.vote_id in seen:
            duplicates += 1
            continue
        seen.add(vote.vote_id)
        kept.append(vote)
    return tuple(kept), duplicates


def _first_by_key(records: Iterable, key: str) -> Tuple:
    seen: Set[str] = set()
    kept = []
    for record in records:
        value = getattr(record, key)
        if value in seen:
            continue
        seen.add(value)
        kept.append(record)
    return tuple(kept)


class SnapshotStore:
    """
    Holds the latest consistent snapshot.

    build() prepares a complete Snapshot without publishing it; commit()
    swaps it in. A concurrent reader calling current() sees either the
    previous snapshot or the new one, never a mix, and a cycle that fails
    between build() and commit() leaves current() untouched. Empty
    collections are a normal state.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._current = Snapshot()

    def build(
        self,
        votes: Iterable[VoteRecord],
        categories: Iterable[CategoryRef],
        nominees: Iterable[NomineeRef],
        users: Iterable[UserRef],
    ) -> Snapshot:
        unique_votes, duplicates = _dedupe_votes(votes)
        if duplicates:
            _log.warning(f"Dropped {duplicates} duplicate vote record(s) at snapshot load")

        return Snapshot(
            generation=self.current().generation + 1,
            votes=unique_votes,
            categories=_first_by_key(categories, "category_id"),
            nominees=_first_by_key(nominees, "nominee_id"),
            users=_first_by_key(users, "user_id"),
            duplicate_votes=duplicates,
            loaded_at=datetime.now(timezone.utc),
        )

    def commit(self, snapshot: Snapshot) -> Snapshot:
        with self._lock:
            if snapshot.generation <= self._current.generation:
                raise ValueError(
                    f"Snapshot generation {snapshot.generation} is not newer than "
                    f"current generation {self._current.generation}"
                )
            self._current = snapshot

        _log.debug(
            f"Snapshot generation {snapshot.generation} committed: "
            f"votes={len(snapshot.votes)} categories={len(snapshot.categories)} "
            f"nominees={len(snapshot.nominees)} users={len(snapshot.users)}"
        )
        return snapshot

    def load(
        self,
        votes: Iterable[VoteRecord],
        categories: Iterable[CategoryRef],
        nominees: Iterable[NomineeRef],
        users: Iterable[UserRef],
    ) -> Snapshot:
        """build() + commit() in one step."""
        return self.commit(self.build(votes, categories, nominees, users))

    def current(self) -> Snapshot:
        with self._lock:
            return self._current
