"""
Pydantic schemas for the read API responses.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel


# =======================
# COMMON
# =======================

class HealthResponse(BaseModel):
    status: str


# =======================
# 1. EFFICIENCY CHART
# =======================

class EfficiencyPoint(BaseModel):
    timestamp: int
    value: Optional[float] = None
    cycle_id: Optional[int] = None


class ChartSeries(BaseModel):
    adnl: str
    efficiency: List[EfficiencyPoint]


# =======================
# 2. STATUS GRID
# =======================

class ValidatorMetaSchema(BaseModel):
    weight: str
    index: int
    stake: str
    wallet_address: str
    avg_efficiency: float
    cycle_id: int


class ValidatorStatusesResponse(BaseModel):
    statuses: Dict[str, Dict[int, Optional[float]]]
    meta: Dict[str, ValidatorMetaSchema]


# =======================
# 3. STATUS HISTORY
# =======================

class StatusHistoryEntry(BaseModel):
    timestamp: int
    status: str
    validator_adnl: str
