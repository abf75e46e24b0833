from fastapi import APIRouter

from dashboard.schemas import HealthResponse

router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health():
    """Liveness probe."""
    return HealthResponse(status="healthy")
