import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from core.exceptions import InvalidQueryError
from dashboard.schemas import (
    ChartSeries,
    StatusHistoryEntry,
    ValidatorMetaSchema,
    ValidatorStatusesResponse,
)
from monitoring.aggregation import AggregationQueryService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Validators"])

DEFAULT_CHART_WINDOW_SECONDS = 24 * 3600


def get_query_service(request: Request) -> AggregationQueryService:
    return request.app.state.query_service


def _parse_timestamp(value: str, name: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise InvalidQueryError(f"Invalid '{name}' timestamp", context={name: value})


@router.get("/chart", response_model=List[ChartSeries])
async def get_chart(
    adnl: List[str] = Query(default=[]),
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = Query(default=None),
    service: AggregationQueryService = Depends(get_query_service),
):
    """
    Efficiency series per requested entity.

    Without both bounds the last 24 hours are returned.
    """
    if from_ and to:
        start = _parse_timestamp(from_, "from")
        end = _parse_timestamp(to, "to")
    else:
        end = service.now()
        start = end - DEFAULT_CHART_WINDOW_SECONDS

    logger.info(f"Chart request for {len(adnl)} entities, from: {start}, to: {end}")
    return await service.get_efficiency_charts(adnl, start, end)


@router.get("/validator-statuses", response_model=ValidatorStatusesResponse)
async def get_validator_statuses(
    from_: Optional[str] = Query(default=None, alias="from"),
    to: Optional[str] = Query(default=None),
    cycle_id: Optional[str] = Query(default=None),
    service: AggregationQueryService = Depends(get_query_service),
):
    """Status grid plus metadata for every entity active in the range."""
    if not from_ or not to:
        raise InvalidQueryError("Required params: 'from' 'to'")

    start = _parse_timestamp(from_, "from")
    end = _parse_timestamp(to, "to")
    group_id = None
    if cycle_id:
        try:
            group_id = int(cycle_id)
        except ValueError:
            raise InvalidQueryError("Invalid param 'cycle_id'", context={"cycle_id": cycle_id})

    grid = await service.get_status_grid(start, end, group_id or None)
    return ValidatorStatusesResponse(
        statuses=grid["statuses"],
        meta={
            entity_id: ValidatorMetaSchema(**meta.to_dict())
            for entity_id, meta in grid["meta"].items()
        },
    )


@router.get("/status-history", response_model=List[StatusHistoryEntry])
async def get_status_history(
    adnl: str = Query(...),
    limit: int = Query(default=1000, ge=1, le=1000),
    service: AggregationQueryService = Depends(get_query_service),
):
    """Status changes for one entity, newest first."""
    records = await service.get_status_history(adnl, limit)
    return [
        StatusHistoryEntry(timestamp=r.timestamp, status=r.status.value, validator_adnl=r.validator_id)
        for r in records
    ]
