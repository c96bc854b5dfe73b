from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx

from core.tallies.models import CategoryRef, NomineeRef, UserRef, VoteRecord
from shared.logging.logger import get_logger

log = get_logger("awards_api.client")

T = TypeVar("T")


# ======================================================================
# Exceptions
# ======================================================================

class FetchFailure(RuntimeError):
    """
    One of the upstream reads failed (network, non-2xx status, timeout or
    an unusable payload). Aborts the current refresh cycle.
    """

    def __init__(self, resource: str, message: str, *, status_code: Optional[int] = None):
        super().__init__(f"{resource}: {message}")
        self.resource = resource
        self.status_code = status_code


# ======================================================================
# Client
# ======================================================================

class AwardsApiClient:
    """
    Read-only client for the awards platform REST API.

    Responsibilities:
    - Fetch votes, categories, nominees and users for tally snapshots
    - Normalize payloads into tally input records
    - Raise FetchFailure on any transport or payload problem

    Every call is an idempotent GET and is safe to repeat.
    """

    VOTES_PATH = "/votes/all"
    CATEGORIES_PATH = "/categories"
    NOMINEES_PATH = "/nominees"
    USERS_PATH = "/profile"

    def __init__(
        self,
        *,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise RuntimeError("Awards API base URL is required")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------
    # Public fetches
    # ------------------------------------------------------------

    async def fetch_votes(self) -> List[VoteRecord]:
        return await self._fetch_records(self.VOTES_PATH, "votes", VoteRecord.from_dict)

    async def fetch_categories(self) -> List[CategoryRef]:
        return await self._fetch_records(self.CATEGORIES_PATH, "categories", CategoryRef.from_dict)

    async def fetch_nominees(self) -> List[NomineeRef]:
        return await self._fetch_records(self.NOMINEES_PATH, "nominees", NomineeRef.from_dict)

    async def fetch_users(self) -> List[UserRef]:
        return await self._fetch_records(self.USERS_PATH, "users", UserRef.from_dict)

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get_json(self, path: str, resource: str) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            try:
                resp = await client.get(path)
                resp.raise_for_status()
                return resp.json()

            except httpx.HTTPStatusError as e:
                log.error(
                    f"Failed to fetch {resource}: "
                    f"{e.response.status_code} {e.response.reason_phrase}"
                )
                raise FetchFailure(
                    resource,
                    f"HTTP {e.response.status_code}",
                    status_code=e.response.status_code,
                ) from e

            except httpx.HTTPError as e:
                log.error(f"Failed to fetch {resource}: {e!r}")
                raise FetchFailure(resource, f"transport error ({e.__class__.__name__})") from e

            except ValueError as e:
                log.error(f"Failed to decode {resource} payload: {e}")
                raise FetchFailure(resource, "invalid JSON payload") from e

    async def _fetch_records(
        self,
        path: str,
        resource: str,
        parse: Callable[[Dict[str, Any]], Optional[T]],
    ) -> List[T]:
        data = await self._get_json(path, resource)

        # Some endpoints wrap collections as {"data": [...]}
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            data = data["data"]

        if not isinstance(data, list):
            log.error(f"{resource} endpoint returned non-list payload")
            raise FetchFailure(resource, "expected a JSON array")

        records: List[T] = []
        skipped = 0
        for item in data:
            record = parse(item) if isinstance(item, dict) else None
            if record is None:
                skipped += 1
                continue
            records.append(record)

        if skipped:
            log.warning(f"Skipped {skipped} malformed {resource} record(s)")
        log.debug(f"Fetched {len(records)} {resource}")
        return records
