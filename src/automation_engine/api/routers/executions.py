"""
执行查询 API 路由
"""
from fastapi import APIRouter, HTTPException, Depends, status

from ..models import ExecutionResponse
from ..dependencies import get_engine


router = APIRouter()


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(execution_id: str, engine=Depends(get_engine)) -> ExecutionResponse:
    """获取执行详情（含执行日志）"""
    execution = await engine.get_execution(execution_id)
    if execution is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "not_found",
                "message": f"Execution {execution_id} not found"
            }
        )
    return ExecutionResponse.from_execution(execution)
