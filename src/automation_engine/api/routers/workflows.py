"""
工作流 API 路由
"""
from fastapi import APIRouter, HTTPException, Depends, status
from fastapi.responses import JSONResponse
import logging

from ..models import (
    WorkflowCreateRequest, WorkflowResponse, WorkflowStatsResponse,
    TriggerRequest, RouteResponse
)
from ..dependencies import get_engine, get_parser
from ...exceptions import WorkflowParseError, WorkflowValidationError


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    request: WorkflowCreateRequest,
    engine=Depends(get_engine),
    parser=Depends(get_parser)
) -> WorkflowResponse:
    """注册工作流定义"""
    try:
        workflow = parser.parse_dict(request.definition)
    except (WorkflowParseError, WorkflowValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"error": "invalid_workflow", "message": str(e)}
        )

    await engine.register_workflow(workflow)
    return WorkflowResponse(
        id=workflow.id,
        name=workflow.name,
        trigger_type=workflow.trigger_type.value,
        is_active=workflow.is_active,
        is_paused=workflow.is_paused,
        step_count=len(workflow.steps)
    )


@router.get("/{workflow_id}/stats", response_model=WorkflowStatsResponse)
async def get_workflow_stats(workflow_id: str, engine=Depends(get_engine)) -> WorkflowStatsResponse:
    """获取工作流执行统计"""
    stats = await engine.get_workflow_stats(workflow_id)
    if stats is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "not_found",
                "message": f"Workflow {workflow_id} not found"
            }
        )

    return WorkflowStatsResponse(
        workflow_id=stats["workflowId"],
        name=stats["name"],
        trigger_type=stats["triggerType"],
        is_active=stats["isActive"],
        is_paused=stats["isPaused"],
        execution_count=stats["executionCount"],
        success_count=stats["successCount"],
        failure_count=stats["failureCount"],
        success_rate=stats["successRate"],
        last_executed_at=stats["lastExecutedAt"],
        executions_by_status=stats["executionsByStatus"]
    )


@router.post(
    "/{workflow_id}/trigger",
    response_model=RouteResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={400: {"model": RouteResponse}}
)
async def trigger_workflow(workflow_id: str, request: TriggerRequest, engine=Depends(get_engine)):
    """手动触发单个工作流"""
    result = await engine.trigger_workflow(workflow_id, request.trigger_data)
    response = RouteResponse(
        success=result.success,
        error=result.error,
        workflows_triggered=result.workflows_triggered,
        execution_ids=result.execution_ids
    )
    if not result.success:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=response.model_dump())
    return response
