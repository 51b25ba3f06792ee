"""
Pytest 配置和公共 fixtures
"""
from typing import List, Dict, Any

import pytest

from automation_engine.config import EngineConfig
from automation_engine.core.engine import AutomationEngine
from automation_engine.models import Workflow, Step, StepType, TriggerType, Execution
from automation_engine.storage.record_store import InMemoryRecordStore


# 配置 pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


LEAD_ID = "lead-1"
CONTACT_ID = "contact-1"
DEAL_ID = "deal-1"


def seed_records() -> Dict[str, List[Dict[str, Any]]]:
    """测试用 CRM 数据"""
    return {
        "leads": [
            {
                "id": LEAD_ID,
                "name": "Ada Lovelace",
                "email": "ada@example.com",
                "status": "NEW",
                "source": "WEBSITE",
                "lead_score": 85,
                "is_active": True,
                "tags": ["prospect"],
                "version": 1,
            },
            {
                "id": "lead-no-email",
                "name": "No Mail",
                "email": None,
                "status": "NEW",
                "lead_score": 10,
                "tags": [],
                "version": 1,
            },
        ],
        "contacts": [
            {"id": CONTACT_ID, "first_name": "Grace", "email": "grace@example.com", "version": 1},
        ],
        "deals": [
            {"id": DEAL_ID, "title": "Big deal", "amount": 5000, "tags": [], "version": 1},
        ],
    }


def make_step(step_id: str, step_type: StepType, parent_id: str = None,
              position: int = None, branch: str = None, **config) -> Step:
    """构造步骤，position 缺省时根据是否有父步骤决定"""
    if position is None:
        position = 0 if parent_id is None else 1
    return Step(
        id=step_id,
        type=step_type,
        name=step_id,
        config=config,
        position=position,
        parent_id=parent_id,
        branch=branch
    )


def make_workflow(*steps: Step, trigger_type: TriggerType = TriggerType.LEAD_CREATED,
                  **kwargs) -> Workflow:
    return Workflow(name="Test workflow", trigger_type=trigger_type, steps=list(steps), **kwargs)


def make_execution(workflow: Workflow, entity_type: str = "LEAD",
                   entity_id: str = LEAD_ID) -> Execution:
    return Execution(
        workflow_id=workflow.id,
        trigger_entity_type=entity_type,
        trigger_entity_id=entity_id,
        trigger_data={"entityType": entity_type, "entityId": entity_id}
    )


@pytest.fixture
def config() -> EngineConfig:
    """短轮询间隔的测试配置"""
    return EngineConfig(
        database_url="sqlite+aiosqlite:///:memory:",
        execution_poll_interval=0.05,
        message_poll_interval=0.05,
        schedule_sweep_interval=0.05,
        resume_sweep_interval=0.05,
        step_timeout=1.0
    )


@pytest.fixture
def records() -> InMemoryRecordStore:
    return InMemoryRecordStore(seed_records())


@pytest.fixture
def engine(config, records) -> AutomationEngine:
    """创建使用内存存储的自动化引擎"""
    return AutomationEngine.in_memory(config, records=records)
