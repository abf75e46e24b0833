"""
Storage Package.

Persistence for the validator monitor.

Modules:
- database: Async engine and session factory
- models: ORM tables
- timeseries: TimeSeriesStore repository
- cache: CacheLayer over Redis
- keys: Cache key builders
- types: Shared domain records
"""

from .cache import CacheLayer, connect_cache
from .database import connect_database, create_engine, create_session_factory, create_tables
from .timeseries import TimeSeriesStore
from .types import (
    GroupInfo,
    GroupMember,
    IntervalBucket,
    Sample,
    StatusRecord,
    TimeRange,
    ValidatorMeta,
    ValidatorStatus,
)


__all__ = [
    "CacheLayer",
    "connect_cache",
    "connect_database",
    "create_engine",
    "create_session_factory",
    "create_tables",
    "TimeSeriesStore",
    "GroupInfo",
    "GroupMember",
    "IntervalBucket",
    "Sample",
    "StatusRecord",
    "TimeRange",
    "ValidatorMeta",
    "ValidatorStatus",
]
