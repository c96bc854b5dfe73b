from __future__ import annotations

from typing import Protocol, Sequence

from core.tallies.models import CategoryRef, NomineeRef, UserRef, VoteRecord


class VoteDataSource(Protocol):
    """
    Upstream reads consumed by the refresh scheduler.

    Implementations must be idempotent and side-effect free. Any exception
    aborts the current cycle without touching the published snapshot.
    """

    async def fetch_votes(self) -> Sequence[VoteRecord]: ...

    async def fetch_categories(self) -> Sequence[CategoryRef]: ...

    async def fetch_nominees(self) -> Sequence[NomineeRef]: ...

    async def fetch_users(self) -> Sequence[UserRef]: ...
