"""
Storage - Time-Series Store.

============================================================
PURPOSE
============================================================
Durable store of efficiency samples and status changes,
queryable with interval bucketing.

RESPONSIBILITIES:
- Append samples and status-change records
- Upsert cycle reference data (latest wins)
- Bucketed aggregates with gap filling
- Distinct entities, descriptive metadata, status history

============================================================
BUCKETING
============================================================
A range [start, end) is split into buckets of width
ceil(duration / 60). Bucket index is computed in SQL as
(ts - start) // width, so bucket starts are aligned to the
range start. Every requested entity receives a complete,
gap-free bucket sequence; empty buckets carry value None.

Query failures are wrapped in StoreError and never retried.

============================================================
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import and_, desc, func, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import InvalidQueryError, StoreError

from .models import (
    CycleInfoModel,
    CycleModel,
    ValidatorEfficiencyModel,
    ValidatorReferenceModel,
    ValidatorStatusHistoryModel,
)
from .types import (
    GroupInfo,
    IntervalBucket,
    Sample,
    StatusRecord,
    TimeRange,
    ValidatorMeta,
    ValidatorStatus,
)


logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 1000
STAKE_UNIT = 1_000_000_000


def _utc_day(ts: int):
    return datetime.fromtimestamp(ts, tz=timezone.utc).date()


# ============================================================
# TIME-SERIES STORE
# ============================================================

class TimeSeriesStore:
    """
    Repository over the monitor tables.

    Every call opens its own session; there are no client-side
    transactions spanning calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize store.

        Args:
            session_factory: Process-wide async session factory
        """
        self._session_factory = session_factory

    # --------------------------------------------------------
    # WRITES
    # --------------------------------------------------------

    async def append(self, samples: Sequence[Sample]) -> int:
        """
        Insert samples as new rows.

        Returns:
            Number of rows inserted
        """
        if not samples:
            return 0

        rows = [
            ValidatorEfficiencyModel(
                day=_utc_day(s.timestamp),
                ts=s.timestamp,
                adnl_addr=s.entity_id,
                validator_adnl=s.validator_id,
                cycle_id=s.group_id,
                efficiency=s.efficiency,
                stake=s.stake,
                weight=s.weight,
                index=s.ordinal_index,
                pub_key_hash=s.pubkey_hash,
                utime_since=s.valid_since,
                utime_until=s.valid_until,
            )
            for s in samples
        ]

        try:
            async with self._session_factory() as session:
                session.add_all(rows)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to append {len(rows)} samples: {e}")
            raise StoreError("append_samples", cause=e)

        logger.debug(f"Appended {len(rows)} samples")
        return len(rows)

    async def append_status_change(self, record: StatusRecord) -> None:
        row = ValidatorStatusHistoryModel(
            adnl_addr=record.group_key,
            validator_adnl=record.validator_id,
            ts=record.timestamp,
            status=record.status.value,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError("append_status_change", cause=e)

    async def append_groups(self, groups: Iterable[GroupInfo]) -> int:
        """
        Upsert cycles, cycle windows and entity reference rows.

        Existing rows with the same key are replaced.
        """
        count = 0
        try:
            async with self._session_factory() as session:
                for group in groups:
                    await session.merge(CycleModel(cycle_id=group.group_id))
                    await session.merge(CycleInfoModel(
                        cycle_id=group.group_id,
                        utime_since=group.valid_since,
                        utime_until=group.valid_until,
                        total_weight=group.total_weight,
                    ))
                    for member in group.members:
                        await session.merge(ValidatorReferenceModel(
                            cycle_id=group.group_id,
                            adnl_addr=member.entity_id,
                            pubkey=member.pubkey,
                            weight=member.weight,
                            index=member.index,
                            stake=member.stake,
                            max_factor=member.max_factor,
                            wallet_address=member.wallet_address,
                        ))
                    count += 1
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError("append_groups", cause=e)
        return count

    # --------------------------------------------------------
    # AGGREGATES
    # --------------------------------------------------------

    async def query_buckets(
        self,
        entity_ids: Sequence[str],
        time_range: TimeRange,
        group_id: Optional[int] = None,
        bucket_width: Optional[int] = None,
    ) -> Dict[str, List[IntervalBucket]]:
        """
        Bucketed averages, one row per (entity, bucket, group).

        Buckets with no samples appear once with value None.
        Rows are ordered by bucket start, then group id.
        """
        if time_range.duration <= 0:
            raise InvalidQueryError(
                "invalid date interval",
                context={"start": time_range.start, "end": time_range.end},
            )
        if not entity_ids:
            return {}

        width = bucket_width or time_range.bucket_width
        M = ValidatorEfficiencyModel
        bucket_index = ((M.ts - time_range.start) // width).label("bucket_index")

        conditions = [
            M.adnl_addr.in_(list(entity_ids)),
            M.day >= _utc_day(time_range.start),
            M.day <= _utc_day(time_range.end),
            M.ts >= time_range.start,
            M.ts < time_range.end,
        ]
        if group_id:
            conditions.append(M.cycle_id == group_id)

        stmt = (
            select(
                M.adnl_addr,
                bucket_index,
                M.cycle_id,
                func.sum(M.efficiency).label("total"),
                func.count(M.id).label("samples"),
            )
            .where(and_(*conditions))
            .group_by(M.adnl_addr, literal_column("bucket_index"), M.cycle_id)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            raise StoreError("query_buckets", cause=e)

        found: Dict[str, Dict[int, list]] = defaultdict(lambda: defaultdict(list))
        for entity_id, idx, cycle_id, total, samples in rows:
            bucket_start = time_range.start + int(idx) * width
            found[entity_id][bucket_start].append(
                IntervalBucket(
                    entity_id=entity_id,
                    bucket_start=bucket_start,
                    value=float(total) / samples,
                    group_id=int(cycle_id),
                    sample_count=int(samples),
                )
            )

        starts = time_range.bucket_starts(width)
        series: Dict[str, List[IntervalBucket]] = {}
        for entity_id in dict.fromkeys(entity_ids):
            by_start = found.get(entity_id, {})
            buckets: List[IntervalBucket] = []
            for start in starts:
                present = by_start.get(start)
                if present:
                    buckets.extend(sorted(present, key=lambda b: b.group_id))
                else:
                    buckets.append(IntervalBucket(entity_id, start, None, None, 0))
            series[entity_id] = buckets
        return series

    async def query_aggregates(
        self,
        entity_ids: Sequence[str],
        time_range: TimeRange,
        group_id: Optional[int] = None,
        bucket_width: Optional[int] = None,
    ) -> Dict[str, Dict[int, Optional[float]]]:
        """
        entity -> bucket_start -> average efficiency.

        Groups sharing a bucket are merged weighted by sample count.
        """
        series = await self.query_buckets(entity_ids, time_range, group_id, bucket_width)
        return {entity_id: merge_buckets(buckets) for entity_id, buckets in series.items()}

    # --------------------------------------------------------
    # REFERENCE QUERIES
    # --------------------------------------------------------

    async def query_distinct_entities(self, time_range: TimeRange) -> Set[str]:
        """Entities with any sample on the days the range touches."""
        M = ValidatorEfficiencyModel
        stmt = select(M.adnl_addr).where(
            M.day >= _utc_day(time_range.start),
            M.day <= _utc_day(time_range.end),
        ).distinct()
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError("query_distinct_entities", cause=e)

    async def query_meta(
        self,
        time_range: TimeRange,
        group_id: Optional[int] = None,
    ) -> List[ValidatorMeta]:
        """Per-entity descriptive aggregates ordered by average stake, highest first."""
        M = ValidatorEfficiencyModel
        R = ValidatorReferenceModel
        avg_stake = func.avg(M.stake / float(STAKE_UNIT)).label("avg_stake")

        conditions = [
            M.day >= _utc_day(time_range.start),
            M.day <= _utc_day(time_range.end),
            M.ts >= time_range.start,
            M.ts < time_range.end,
        ]
        if group_id:
            conditions.append(M.cycle_id == group_id)

        stmt = (
            select(
                M.adnl_addr,
                avg_stake,
                func.avg(M.weight).label("avg_weight"),
                func.min(M.index).label("index"),
                R.wallet_address,
                func.avg(M.efficiency).label("avg_efficiency"),
                M.cycle_id,
            )
            .select_from(M)
            .outerjoin(R, and_(R.adnl_addr == M.adnl_addr, R.cycle_id == M.cycle_id))
            .where(and_(*conditions))
            .group_by(M.adnl_addr, R.wallet_address, M.cycle_id)
            .order_by(desc("avg_stake"), M.adnl_addr)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            raise StoreError("query_meta", cause=e)

        return [
            ValidatorMeta(
                entity_id=adnl,
                weight=str(int(avg_weight or 0)),
                stake=str(int(stake or 0)),
                index=int(index or 0),
                wallet_address=wallet or "",
                avg_efficiency=float(avg_efficiency or 0.0),
                group_id=int(cycle_id),
            )
            for adnl, stake, avg_weight, index, wallet, avg_efficiency, cycle_id in rows
        ]

    async def query_status_history(
        self,
        entity_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[StatusRecord]:
        """Status log for an entity, newest first."""
        H = ValidatorStatusHistoryModel
        stmt = (
            select(H)
            .where(H.adnl_addr == entity_id)
            .order_by(desc(H.ts), desc(H.id))
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreError("query_status_history", cause=e)

        records = []
        for row in rows:
            try:
                status = ValidatorStatus(row.status)
            except ValueError:
                logger.warning(f"Skipping status row {row.id} with unknown status {row.status!r}")
                continue
            records.append(StatusRecord(row.adnl_addr, row.validator_adnl, row.ts, status))
        return records


def merge_buckets(buckets: Iterable[IntervalBucket]) -> Dict[int, Optional[float]]:
    """Collapse per-group rows into one sample-weighted value per bucket."""
    totals: Dict[int, List[float]] = {}
    for bucket in buckets:
        acc = totals.setdefault(bucket.bucket_start, [0.0, 0])
        if bucket.value is not None and bucket.sample_count:
            acc[0] += bucket.value * bucket.sample_count
            acc[1] += bucket.sample_count
    return {
        start: (total / count if count else None)
        for start, (total, count) in totals.items()
    }
