"""
监控 API 路由
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
import logging

from ... import __version__
from ..models import HealthCheckResponse, LifecycleEventResponse
from ..dependencies import get_engine
from ...models.common import utcnow


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(engine=Depends(get_engine)) -> HealthCheckResponse:
    """健康检查"""
    checks = {}

    try:
        await engine.execution_repo.get("health-check")
        checks["database"] = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = False

    checks["scheduler"] = engine.is_running

    return HealthCheckResponse(
        status="healthy" if all(checks.values()) else "unhealthy",
        version=__version__,
        timestamp=utcnow(),
        checks=checks
    )


@router.get("/events", response_model=List[LifecycleEventResponse])
async def recent_events(
    limit: int = Query(50, ge=1, le=500),
    execution_id: Optional[str] = Query(None),
    engine=Depends(get_engine)
) -> List[LifecycleEventResponse]:
    """最近的执行生命周期事件，新事件在前"""
    return [
        LifecycleEventResponse(**event.to_dict())
        for event in engine.event_bus.recent(limit=limit, execution_id=execution_id)
    ]
