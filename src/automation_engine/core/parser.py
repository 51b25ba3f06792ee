"""
工作流定义解析器

支持 YAML / JSON 文件、字符串和字典。先用 JSON Schema 校验结构，
再转换为领域模型并做图结构校验（单一入口、父步骤存在、无环、步骤配置合法）。
"""
import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Union

import yaml
from jsonschema import Draft7Validator

from ..exceptions import WorkflowParseError, WorkflowValidationError
from ..models.common import generate_id
from ..models.workflow import Workflow, Step, StepType, TriggerType


logger = logging.getLogger(__name__)


WORKFLOW_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "steps"],
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string", "minLength": 1},
        "trigger_type": {"enum": [t.value for t in TriggerType]},
        "triggerType": {"enum": [t.value for t in TriggerType]},
        "trigger_config": {"type": "object"},
        "triggerConfig": {"type": "object"},
        "is_active": {"type": "boolean"},
        "is_paused": {"type": "boolean"},
        "steps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "type"],
                "properties": {
                    "id": {"type": ["string", "integer"]},
                    "type": {"enum": [t.value for t in StepType]},
                    "name": {"type": "string"},
                    "position": {"type": "integer", "minimum": 0},
                    "parent_id": {"type": ["string", "integer", "null"]},
                    "parentId": {"type": ["string", "integer", "null"]},
                    "branch": {"type": ["string", "boolean", "null"]},
                    "config": {"type": "object"}
                }
            }
        }
    },
    "oneOf": [
        {"required": ["trigger_type"]},
        {"required": ["triggerType"]}
    ]
}


class WorkflowParser:
    """工作流解析器"""

    def __init__(self):
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }
        self.validator = Draft7Validator(WORKFLOW_SCHEMA)

    def parse(self, source: Union[str, Path, Dict[str, Any]]) -> Workflow:
        """
        解析工作流定义

        Args:
            source: 文件路径、YAML/JSON 字符串或字典

        Returns:
            Workflow: 通过校验的工作流对象
        """
        if isinstance(source, dict):
            return self.parse_dict(source)

        if isinstance(source, Path):
            return self.parse_file(source)

        if isinstance(source, str):
            if "\n" not in source and Path(source).is_file():
                return self.parse_file(Path(source))
            return self.parse_string(source)

        raise WorkflowParseError(f"Unsupported source type: {type(source)}")

    def parse_file(self, file_path: Union[str, Path]) -> Workflow:
        """解析工作流文件"""
        file_path = Path(file_path)
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise WorkflowParseError(f"Unsupported file format: {suffix}")

        try:
            content = file_path.read_text(encoding='utf-8')
        except OSError as e:
            raise WorkflowParseError(f"Failed to read {file_path}: {e}")

        logger.debug(f"Parsing workflow definition {file_path}")
        return self.parse_dict(self.parsers[suffix](content))

    def parse_string(self, content: str) -> Workflow:
        """解析 YAML 或 JSON 字符串（JSON 是 YAML 的子集）"""
        data = self._parse_yaml(content)
        if not isinstance(data, dict):
            raise WorkflowParseError("Workflow definition must be a mapping")
        return self.parse_dict(data)

    def parse_dict(self, data: Dict[str, Any]) -> Workflow:
        """解析字典格式的工作流定义"""
        if 'workflow' in data and isinstance(data['workflow'], dict):
            data = data['workflow']

        errors = self.schema_errors(data)
        if errors:
            raise WorkflowValidationError(f"Workflow definition is invalid: {errors}")

        workflow = Workflow(
            id=str(data.get('id') or generate_id()),
            name=data['name'],
            trigger_type=TriggerType(data.get('trigger_type') or data.get('triggerType')),
            trigger_config=dict(data.get('trigger_config') or data.get('triggerConfig') or {}),
            is_active=data.get('is_active', True),
            is_paused=data.get('is_paused', False),
            steps=[self._parse_step(step, index) for index, step in enumerate(data['steps'])]
        )

        errors = workflow.validate()
        if errors:
            raise WorkflowValidationError(f"Workflow validation failed: {errors}")

        return workflow

    def schema_errors(self, data: Any) -> List[str]:
        """JSON Schema 校验错误列表"""
        errors = []
        for error in self.validator.iter_errors(data):
            path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
            errors.append(f"{path}: {error.message}")
        return errors

    def _parse_step(self, data: Dict[str, Any], index: int) -> Step:
        parent_id = data.get('parent_id', data.get('parentId'))
        branch = data.get('branch')
        if isinstance(branch, bool):
            branch = "true" if branch else "false"

        return Step(
            id=str(data['id']),
            type=StepType(data['type']),
            name=data.get('name', str(data['id'])),
            config=dict(data.get('config') or {}),
            position=data.get('position', index),
            parent_id=str(parent_id) if parent_id is not None else None,
            branch=branch
        )

    def _parse_yaml(self, content: str) -> Any:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowParseError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Any:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowParseError(f"Failed to parse JSON: {e}")
