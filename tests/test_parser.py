"""
工作流解析器测试
"""
import json

import pytest

from automation_engine.core.parser import WorkflowParser
from automation_engine.exceptions import WorkflowParseError, WorkflowValidationError
from automation_engine.models import StepType, TriggerType
from automation_engine.models.step_config import (
    DelayStepConfig, BranchConditionStepConfig, WebhookStepConfig
)


WELCOME_YAML = """
workflow:
  id: welcome-series
  name: Welcome series
  triggerType: LEAD_CREATED
  steps:
    - id: trigger
      type: TRIGGER
    - id: welcome
      type: EMAIL
      parentId: trigger
      config:
        subject: Welcome aboard
        body: Thanks for signing up
    - id: wait
      type: DELAY
      parentId: welcome
      config:
        delayAmount: 2
        delayUnit: days
    - id: score
      type: BRANCH_CONDITION
      parentId: wait
      config:
        condition:
          field: lead_score
          operator: greater_than
          value: 50
    - id: vip
      type: TAG_ASSIGNMENT
      parentId: score
      branch: true
      config:
        tagsToAdd: [vip]
    - id: nurture
      type: WEBHOOK
      parentId: score
      branch: false
      config:
        url: https://hooks.example.com/nurture
        method: put
"""


def sample_workflow_dict():
    return {
        "id": "wf1",
        "name": "Test Workflow",
        "trigger_type": "FORM_SUBMITTED",
        "steps": [
            {"id": "start", "type": "TRIGGER"},
            {"id": "task", "type": "TASK_CREATION", "parent_id": "start",
             "config": {"title": "Call back"}},
        ],
    }


class TestWorkflowParser:
    """工作流解析器测试类"""

    @pytest.fixture
    def parser(self):
        """创建解析器实例"""
        return WorkflowParser()

    def test_parse_yaml_string(self, parser):
        workflow = parser.parse(WELCOME_YAML)

        assert workflow.id == "welcome-series"
        assert workflow.trigger_type == TriggerType.LEAD_CREATED
        assert [step.id for step in workflow.steps] == [
            "trigger", "welcome", "wait", "score", "vip", "nurture"
        ]
        assert workflow.get_entry_step().id == "trigger"
        assert workflow.get_step("vip").branch == "true"
        assert workflow.get_step("nurture").branch == "false"

    def test_typed_step_configs(self, parser):
        workflow = parser.parse(WELCOME_YAML)

        delay = workflow.get_step("wait").typed_config
        branch = workflow.get_step("score").typed_config
        webhook = workflow.get_step("nurture").typed_config

        assert isinstance(delay, DelayStepConfig)
        assert delay.total_minutes == 2 * 24 * 60
        assert isinstance(branch, BranchConditionStepConfig)
        assert branch.condition.operator == "GREATER_THAN"
        assert isinstance(webhook, WebhookStepConfig)
        assert webhook.method == "PUT"

    def test_parse_dict(self, parser):
        workflow = parser.parse_dict(sample_workflow_dict())

        assert workflow.id == "wf1"
        assert workflow.trigger_type == TriggerType.FORM_SUBMITTED
        assert workflow.is_active and not workflow.is_paused
        task = workflow.get_step("task")
        assert task.type == StepType.TASK_CREATION
        assert task.parent_id == "start"
        assert task.position == 1

    def test_parse_files(self, parser, tmp_path):
        yaml_file = tmp_path / "welcome.yaml"
        yaml_file.write_text(WELCOME_YAML, encoding="utf-8")
        json_file = tmp_path / "form.json"
        json_file.write_text(json.dumps(sample_workflow_dict()), encoding="utf-8")

        assert parser.parse_file(yaml_file).name == "Welcome series"
        assert parser.parse(str(json_file)).id == "wf1"

    def test_unsupported_file_format(self, parser, tmp_path):
        path = tmp_path / "workflow.txt"
        path.write_text("name: x", encoding="utf-8")

        with pytest.raises(WorkflowParseError):
            parser.parse_file(path)

    def test_invalid_yaml(self, parser):
        with pytest.raises(WorkflowParseError):
            parser.parse_string("name: [unclosed\nsteps: {")

    def test_schema_errors(self, parser):
        definition = sample_workflow_dict()
        del definition["trigger_type"]
        definition["steps"][1]["type"] = "SMS"

        errors = parser.schema_errors(definition)

        assert any("steps.1.type" in error for error in errors)
        assert any(error.startswith("root") for error in errors)
        with pytest.raises(WorkflowValidationError):
            parser.parse_dict(definition)

    def test_cycle_detection(self, parser):
        definition = sample_workflow_dict()
        definition["steps"][0]["parent_id"] = "task"

        with pytest.raises(WorkflowValidationError, match="cycles"):
            parser.parse_dict(definition)

    def test_multiple_entry_steps(self, parser):
        definition = sample_workflow_dict()
        definition["steps"].append({"id": "orphan", "type": "TRIGGER"})

        with pytest.raises(WorkflowValidationError, match="Multiple entry steps"):
            parser.parse_dict(definition)

    def test_unknown_parent(self, parser):
        definition = sample_workflow_dict()
        definition["steps"][1]["parent_id"] = "ghost"

        with pytest.raises(WorkflowValidationError, match="not found"):
            parser.parse_dict(definition)

    @pytest.mark.parametrize("step_type,config,message", [
        ("WEBHOOK", {}, "url"),
        ("WAIT_FOR_EVENT", {}, "eventType"),
        ("BRANCH_CONDITION", {}, "condition"),
        ("DELAY", {"delayAmount": 1, "delayUnit": "fortnights"}, "delay unit"),
        ("DELAY", {"delayMinutes": "soon"}, "delayMinutes"),
        ("FIELD_UPDATE", {"fieldUpdates": ["status"]}, "fieldUpdates"),
    ])
    def test_invalid_step_config(self, parser, step_type, config, message):
        definition = sample_workflow_dict()
        definition["steps"][1] = {
            "id": "bad", "type": step_type, "parent_id": "start", "config": config
        }

        with pytest.raises(WorkflowValidationError, match=message):
            parser.parse_dict(definition)
