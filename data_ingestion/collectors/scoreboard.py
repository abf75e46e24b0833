"""
Scoreboard Source Client.

============================================================
WIRING
============================================================
Source: cycle API (CYCLE_API_URL, optional ?cycle_id=)
        scoreboard API (SCOREBOARD_API_URL, ?cycle_id=
        and optional from_ts/to_ts window)
Output: GroupInfo / ScoreboardRow records

Transient HTTP failures are retried with exponential backoff;
exhaustion raises SourceFetchError.

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from core.config import IngestionConfig
from core.exceptions import SourceFetchError
from data_ingestion.types import ScoreboardRow, parse_group, parse_scoreboard_row
from storage.types import GroupInfo


logger = logging.getLogger(__name__)


class ScoreboardClient:
    """
    Fetches cycles and per-cycle scoreboards over HTTP.
    """

    def __init__(
        self,
        config: IngestionConfig,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            config: Source URLs and timeout
            client: Optional shared httpx client (tests inject a mock transport)
            max_retries: Attempts per request
            sleep: Backoff sleep, injected for tests
        """
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._max_retries = max(1, max_retries)
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout_seconds)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise SourceFetchError(
                f"Unexpected status code: {e.response.status_code}",
                endpoint=url,
                status_code=e.response.status_code,
                cause=e,
            )
        except httpx.RequestError as e:
            raise SourceFetchError(f"Request failed: {e}", endpoint=url, cause=e)
        except ValueError as e:
            raise SourceFetchError("Response body is not JSON", endpoint=url, cause=e)

    async def _fetch_with_retry(self, url: str, params: Dict[str, Any]) -> Any:
        last_error: Optional[SourceFetchError] = None

        for attempt in range(self._max_retries):
            try:
                return await self._get_json(url, params)
            except SourceFetchError as e:
                last_error = e
                # Client errors other than throttling will not improve on retry
                if e.status_code is not None and 400 <= e.status_code < 500 and e.status_code != 429:
                    raise
                if attempt + 1 < self._max_retries:
                    wait_time = 2 ** attempt
                    logger.warning(
                        f"Fetch attempt {attempt + 1} failed for {url}, retrying in {wait_time}s: {e.message}"
                    )
                    await self._sleep(wait_time)

        raise last_error

    # --------------------------------------------------------
    # SOURCE CALLS
    # --------------------------------------------------------

    async def fetch_groups(self, group_id: Optional[int] = None) -> List[GroupInfo]:
        """Current cycles, or the single cycle with this id."""
        if not self._config.cycle_api_url:
            raise SourceFetchError("CYCLE_API_URL is not configured")

        params: Dict[str, Any] = {}
        if group_id is not None:
            params["cycle_id"] = group_id

        data = await self._fetch_with_retry(self._config.cycle_api_url, params)
        if not isinstance(data, list):
            raise SourceFetchError("Cycle response is not a list", endpoint=self._config.cycle_api_url)
        return [parse_group(item) for item in data]

    async def fetch_scoreboard(
        self,
        group_id: int,
        from_ts: Optional[int] = None,
        to_ts: Optional[int] = None,
    ) -> List[ScoreboardRow]:
        """Scoreboard for one cycle, optionally limited to a window."""
        if not self._config.scoreboard_api_url:
            raise SourceFetchError("SCOREBOARD_API_URL is not configured")

        params: Dict[str, Any] = {"cycle_id": group_id}
        if from_ts and to_ts:
            params["from_ts"] = from_ts
            params["to_ts"] = to_ts

        data = await self._fetch_with_retry(self._config.scoreboard_api_url, params)
        if not isinstance(data, dict):
            raise SourceFetchError("Scoreboard response is not an object", endpoint=self._config.scoreboard_api_url)
        return [parse_scoreboard_row(row) for row in data.get("scoreboard") or []]
