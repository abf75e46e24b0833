"""
Monitoring - Aggregation Query Service.

============================================================
PURPOSE
============================================================
Answers read requests by combining the cache and the
time-series store (cache-aside).

READ OPERATIONS:
- Efficiency chart for one or more entities
- Status grid: entity -> bucket_start -> value
- Descriptive metadata per entity
- Status history per entity

============================================================
RANGE NORMALIZATION
============================================================
One rule for every read path:
1. Round start and end to the nearest minute
2. If the rounded end lies in the future, shift the window so
   it ends one minute before the rounded current minute,
   keeping its duration
3. Reject a non-positive duration before any cache or store I/O

Rounded bounds feed both cache keys and bucket boundaries, so
jittered requests for the same window share a key.

============================================================
CACHE POLICY
============================================================
- Payloads are deterministic JSON of the raw store result
- Cold and warm paths both decode the serialized payload, so
  they return identical values
- Cache read failures raise CacheError
- Cache write failures are logged; the fresh result is returned

============================================================
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from core.clock import ClockProtocol
from core.config import CacheConfig
from core.exceptions import CacheError, InvalidQueryError
from storage import keys
from storage.cache import CacheLayer, decode_json, encode_json
from storage.timeseries import DEFAULT_HISTORY_LIMIT, TimeSeriesStore
from storage.types import IntervalBucket, StatusRecord, TimeRange, ValidatorMeta, ValidatorStatus


logger = logging.getLogger(__name__)

T = TypeVar("T")

ROUNDING_SECONDS = 60


def round_to_minute(ts: int) -> int:
    """Nearest whole minute; halves round up."""
    return (ts + ROUNDING_SECONDS // 2) // ROUNDING_SECONDS * ROUNDING_SECONDS


def normalize_range(start: int, end: int, now: int) -> TimeRange:
    """
    Round a requested range and clamp it out of the future.

    Raises:
        InvalidQueryError: If the rounded duration is not positive
    """
    start_r = round_to_minute(int(start))
    end_r = round_to_minute(int(end))

    if end_r > now:
        duration = end_r - start_r
        end_r = round_to_minute(int(now)) - ROUNDING_SECONDS
        start_r = end_r - duration

    if end_r - start_r <= 0:
        raise InvalidQueryError(
            "invalid date interval",
            context={"from": start, "to": end},
        )
    return TimeRange(start_r, end_r)


# ============================================================
# PAYLOAD CODECS
# ============================================================

def _buckets_to_raw(buckets: Sequence[IntervalBucket]) -> List[Dict[str, Any]]:
    return [
        {
            "bucket_start": b.bucket_start,
            "value": b.value,
            "group_id": b.group_id,
            "sample_count": b.sample_count,
        }
        for b in buckets
    ]


def _buckets_from_raw(entity_id: str, raw: List[Dict[str, Any]]) -> List[IntervalBucket]:
    return [
        IntervalBucket(
            entity_id=entity_id,
            bucket_start=int(item["bucket_start"]),
            value=item["value"],
            group_id=item["group_id"],
            sample_count=int(item["sample_count"]),
        )
        for item in raw
    ]


def _intervals_to_raw(intervals: Dict[int, Optional[float]]) -> Dict[str, Optional[float]]:
    return {str(start): value for start, value in intervals.items()}


def _intervals_from_raw(raw: Dict[str, Optional[float]]) -> Dict[int, Optional[float]]:
    return {int(start): raw[start] for start in sorted(raw, key=int)}


# ============================================================
# QUERY SERVICE
# ============================================================

class AggregationQueryService:
    """
    Cache-aside read paths over the time-series store.

    Handles are long-lived and shared; the service keeps no
    per-request state.
    """

    def __init__(
        self,
        store: TimeSeriesStore,
        cache: CacheLayer,
        clock: ClockProtocol,
        config: Optional[CacheConfig] = None,
    ):
        self._store = store
        self._cache = cache
        self._clock = clock
        self._config = config or CacheConfig()

    def now(self) -> int:
        return self._clock.unix()

    def resolve_range(self, start: int, end: int) -> TimeRange:
        return normalize_range(start, end, self._clock.unix())

    # --------------------------------------------------------
    # CACHE-ASIDE
    # --------------------------------------------------------

    async def _read(self, key: str) -> Optional[Any]:
        found, payload = await self._cache.get(key)
        if not found:
            return None
        try:
            return decode_json(payload)
        except ValueError as e:
            raise CacheError("decode", key=key, cause=e)

    async def _write(self, key: str, payload: bytes, ttl: int) -> None:
        try:
            await self._cache.set(key, payload, ttl)
        except CacheError as e:
            logger.warning(f"Cache write failed for {key}: {e.message}")

    async def _cached(
        self,
        key: str,
        ttl: int,
        load: Callable[[], Awaitable[Any]],
        decode: Callable[[Any], T],
    ) -> T:
        """Return decode(raw) from cache, or load, cache and decode."""
        raw = await self._read(key)
        if raw is not None:
            logger.debug(f"Cache hit: {key}")
            return decode(raw)

        logger.debug(f"Cache miss: {key}")
        payload = encode_json(await load())
        await self._write(key, payload, ttl)
        return decode(decode_json(payload))

    # --------------------------------------------------------
    # CHART
    # --------------------------------------------------------

    async def get_efficiency_chart(self, entity_id: str, start: int, end: int) -> List[Dict[str, Any]]:
        """
        Ordered chart points for one entity.

        Returns:
            List of {timestamp, value, cycle_id}
        """
        time_range = self.resolve_range(start, end)
        return await self._chart_for_range(entity_id, time_range)

    async def get_efficiency_charts(
        self,
        entity_ids: Sequence[str],
        start: int,
        end: int,
    ) -> List[Dict[str, Any]]:
        """Chart series for several entities, in request order."""
        time_range = self.resolve_range(start, end)
        results = []
        for entity_id in entity_ids:
            points = await self._chart_for_range(entity_id, time_range)
            results.append({"adnl": entity_id, "efficiency": points})
        return results

    async def _chart_for_range(self, entity_id: str, time_range: TimeRange) -> List[Dict[str, Any]]:
        async def load():
            series = await self._store.query_buckets([entity_id], time_range)
            return _buckets_to_raw(series.get(entity_id, []))

        buckets = await self._cached(
            keys.chart_key(entity_id, time_range),
            self._config.query_ttl_seconds,
            load,
            lambda raw: _buckets_from_raw(entity_id, raw),
        )
        return [b.to_point() for b in buckets]

    # --------------------------------------------------------
    # STATUS GRID
    # --------------------------------------------------------

    async def get_validator_statuses(
        self,
        start: int,
        end: int,
        group_id: Optional[int] = None,
    ) -> Dict[str, Dict[int, Optional[float]]]:
        """entity -> bucket_start -> value for every entity active in the range."""
        time_range = self.resolve_range(start, end)
        entity_ids = await self._candidate_entities(time_range)
        return await self._statuses_for(entity_ids, time_range, group_id)

    async def _candidate_entities(self, time_range: TimeRange) -> List[str]:
        async def load():
            return sorted(await self._store.query_distinct_entities(time_range))

        return await self._cached(
            keys.entity_list_key(time_range),
            self._config.query_ttl_seconds,
            load,
            list,
        )

    async def _statuses_for(
        self,
        entity_ids: Sequence[str],
        time_range: TimeRange,
        group_id: Optional[int],
    ) -> Dict[str, Dict[int, Optional[float]]]:
        statuses: Dict[str, Dict[int, Optional[float]]] = {}
        missing: List[str] = []

        for entity_id in entity_ids:
            raw = await self._read(keys.entity_status_key(entity_id, time_range, group_id))
            if raw is not None:
                statuses[entity_id] = _intervals_from_raw(raw)
            else:
                missing.append(entity_id)

        if missing:
            logger.debug(f"Status grid: {len(statuses)} cached, {len(missing)} from store")
            fetched = await self._store.query_aggregates(missing, time_range, group_id)
            for entity_id in missing:
                payload = encode_json(_intervals_to_raw(fetched.get(entity_id, {})))
                await self._write(
                    keys.entity_status_key(entity_id, time_range, group_id),
                    payload,
                    self._config.query_ttl_seconds,
                )
                statuses[entity_id] = _intervals_from_raw(decode_json(payload))

        return {entity_id: statuses[entity_id] for entity_id in entity_ids}

    async def get_validators_meta(
        self,
        start: int,
        end: int,
        group_id: Optional[int] = None,
    ) -> Dict[str, ValidatorMeta]:
        """Descriptive aggregates keyed by entity, highest average stake first."""
        time_range = self.resolve_range(start, end)

        async def load():
            rows = await self._store.query_meta(time_range, group_id)
            return [[m.entity_id, m.to_dict()] for m in rows]

        def decode(raw) -> Dict[str, ValidatorMeta]:
            meta: Dict[str, ValidatorMeta] = {}
            for entity_id, data in raw:
                # One row per (entity, cycle); the highest-stake row wins
                meta.setdefault(entity_id, ValidatorMeta.from_dict(entity_id, data))
            return meta

        return await self._cached(
            keys.meta_key(time_range, group_id),
            self._config.query_ttl_seconds,
            load,
            decode,
        )

    async def get_status_grid(
        self,
        start: int,
        end: int,
        group_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Statuses plus metadata for the same normalized range."""
        statuses = await self.get_validator_statuses(start, end, group_id)
        meta = await self.get_validators_meta(start, end, group_id)
        return {"statuses": statuses, "meta": meta}

    # --------------------------------------------------------
    # STATUS HISTORY
    # --------------------------------------------------------

    async def get_status_history(
        self,
        entity_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[StatusRecord]:
        """Status log for an entity, newest first, briefly cached."""

        async def load():
            records = await self._store.query_status_history(entity_id, limit)
            return [
                {"validator_id": r.validator_id, "timestamp": r.timestamp, "status": r.status.value}
                for r in records
            ]

        def decode(raw) -> List[StatusRecord]:
            return [
                StatusRecord(entity_id, item["validator_id"], int(item["timestamp"]), ValidatorStatus(item["status"]))
                for item in raw
            ]

        return await self._cached(
            keys.status_history_key(entity_id, limit),
            self._config.history_ttl_seconds,
            load,
            decode,
        )
