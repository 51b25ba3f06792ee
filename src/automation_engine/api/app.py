"""
FastAPI 应用
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import EngineConfig
from ..core.engine import AutomationEngine
from ..exceptions import AutomationEngineError
from .middleware import RequestLoggingMiddleware
from .routers import events, executions, workflows, monitoring


logger = logging.getLogger(__name__)


def create_app(
    engine: Optional[AutomationEngine] = None,
    config: Optional[EngineConfig] = None,
    start_scheduler: bool = True
) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        engine: 已组装的引擎；为空时在启动阶段按配置连接数据库创建
        config: 引擎配置，默认读取环境变量
        start_scheduler: 是否随应用启动后台调度循环
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Automation Engine API...")

        owned = engine is None
        app.state.engine = engine or await AutomationEngine.from_database(
            config or EngineConfig.from_env()
        )
        if start_scheduler:
            await app.state.engine.start()

        logger.info("Automation Engine API started successfully")

        yield

        logger.info("Shutting down Automation Engine API...")
        if owned:
            await app.state.engine.close()
        else:
            await app.state.engine.stop()
        logger.info("Automation Engine API shut down successfully")

    app = FastAPI(
        title="CRM Automation Engine API",
        description="CRM 自动化工作流执行引擎 API",
        version=__version__,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(events.router, prefix="/api/v1/events", tags=["events"])
    app.include_router(executions.router, prefix="/api/v1/executions", tags=["executions"])
    app.include_router(workflows.router, prefix="/api/v1/workflows", tags=["workflows"])
    app.include_router(monitoring.router, prefix="/api/v1/monitoring", tags=["monitoring"])

    @app.exception_handler(AutomationEngineError)
    async def engine_exception_handler(request: Request, exc: AutomationEngineError):
        logger.error(f"Engine error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": type(exc).__name__,
                "message": str(exc),
                "request_id": getattr(request.state, "request_id", None)
            }
        )

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": "CRM Automation Engine API",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/api/v1/monitoring/health"
        }

    return app
