"""
API 路由器
"""

from . import events, executions, workflows, monitoring

__all__ = ["events", "executions", "workflows", "monitoring"]
