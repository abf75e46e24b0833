"""
Validator Monitor ORM Models.

============================================================
PURPOSE
============================================================
Tables backing the time-series store.

============================================================
MODELS
============================================================
- ValidatorEfficiencyModel: efficiency samples (append-only)
- ValidatorStatusHistoryModel: status-change log (append-only)
- CycleModel: known cycles (latest-wins by cycle_id)
- CycleInfoModel: cycle window + total weight (latest-wins)
- ValidatorReferenceModel: per-cycle entity reference
  (latest-wins by cycle_id + adnl_addr)

Timestamps are Unix seconds. ``day`` on the sample table is the
UTC date of the sample, used as the partition/pruning column.

============================================================
"""

from datetime import date
from typing import Optional

from sqlalchemy import BigInteger, Date, Float, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Autoincrement surrogate keys need INTEGER on SQLite
SurrogateKey = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    """Declarative base for all monitor tables."""


class ValidatorEfficiencyModel(Base):
    """
    One efficiency sample.

    Logical identity is (validator_adnl, cycle_id, ts); the store
    does not deduplicate.
    """

    __tablename__ = "validator_efficiency"

    id: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)

    day: Mapped[date] = mapped_column(Date, nullable=False, comment="UTC date of ts")
    ts: Mapped[int] = mapped_column(BigInteger, nullable=False, comment="Unix seconds")

    adnl_addr: Mapped[str] = mapped_column(String(64), nullable=False)
    validator_adnl: Mapped[str] = mapped_column(String(64), nullable=False)
    cycle_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    efficiency: Mapped[float] = mapped_column(Float, nullable=False)
    stake: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    weight: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pub_key_hash: Mapped[str] = mapped_column(String(128), nullable=False, default="")

    utime_since: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    utime_until: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        Index("ix_validator_efficiency_validator_cycle_ts", "validator_adnl", "cycle_id", "ts"),
        Index("ix_validator_efficiency_adnl_ts", "adnl_addr", "ts"),
        Index("ix_validator_efficiency_day", "day"),
    )


class ValidatorStatusHistoryModel(Base):
    """Status-change log entry."""

    __tablename__ = "validator_status_history"

    id: Mapped[int] = mapped_column(SurrogateKey, primary_key=True, autoincrement=True)
    adnl_addr: Mapped[str] = mapped_column(String(64), nullable=False)
    validator_adnl: Mapped[str] = mapped_column(String(64), nullable=False)
    ts: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    __table_args__ = (
        Index("ix_validator_status_history_validator_ts", "validator_adnl", "ts"),
    )


class CycleModel(Base):
    __tablename__ = "cycles"

    cycle_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)


class CycleInfoModel(Base):
    __tablename__ = "cycles_info"

    cycle_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    utime_since: Mapped[int] = mapped_column(BigInteger, nullable=False)
    utime_until: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_weight: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class ValidatorReferenceModel(Base):
    """Reference row for an entity within a cycle."""

    __tablename__ = "validators"

    cycle_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    adnl_addr: Mapped[str] = mapped_column(String(64), primary_key=True)
    pubkey: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    weight: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stake: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    max_factor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
