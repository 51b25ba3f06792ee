"""
FastAPI 依赖注入
"""
from fastapi import HTTPException, Request, status

from ..core.engine import AutomationEngine
from ..core.parser import WorkflowParser


def get_engine(request: Request) -> AutomationEngine:
    """获取引擎实例"""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": "Automation engine not initialized"
            }
        )
    return engine


def get_parser() -> WorkflowParser:
    return WorkflowParser()
