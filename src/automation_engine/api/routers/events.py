"""
事件接入 API 路由
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
import logging

from ..models import EventRequest, RouteResponse
from ..dependencies import get_engine


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "",
    response_model=RouteResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": RouteResponse}}
)
async def ingest_event(request: EventRequest, engine=Depends(get_engine)):
    """接收 CRM 事件并路由到匹配的工作流"""
    result = await engine.route_event(request.event_type, request.event_data)
    response = RouteResponse(
        success=result.success,
        error=result.error,
        workflows_triggered=result.workflows_triggered,
        execution_ids=result.execution_ids,
        executions_resumed=result.executions_resumed
    )

    if not result.success:
        logger.warning(f"Event {request.event_type} rejected: {result.error}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=response.model_dump())
    return response
