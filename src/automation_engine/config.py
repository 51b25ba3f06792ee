"""
引擎配置
"""
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Dict, Any, Optional, Union
import logging
import os

import yaml

from .exceptions import AutomationEngineError


logger = logging.getLogger(__name__)


ENV_PREFIX = "AUTOMATION_"


class ConfigurationError(AutomationEngineError):
    """配置异常"""
    pass


@dataclass
class EngineConfig:
    """自动化引擎配置"""
    database_url: str = "sqlite+aiosqlite:///automation.db"

    # 执行循环
    execution_poll_interval: float = 5.0
    execution_batch_size: int = 10

    # 消息发送循环
    message_poll_interval: float = 10.0
    message_batch_size: int = 5

    # 定时触发扫描
    schedule_sweep_interval: float = 60.0

    # 挂起执行恢复扫描
    resume_sweep_interval: float = 10.0

    # 步骤执行
    step_timeout: float = 30.0
    webhook_timeout: float = 10.0
    default_from_address: str = "noreply@example.com"
    optimistic_update_attempts: int = 3

    # 重试策略（max_attempts 为 1 时不重试）
    retry_max_attempts: int = 1
    retry_initial_delay: float = 60.0
    retry_backoff_factor: float = 2.0
    retry_max_delay: float = 3600.0

    def __post_init__(self):
        self.validate()

    def validate(self):
        """验证配置取值"""
        positive = [
            "execution_poll_interval", "message_poll_interval",
            "schedule_sweep_interval", "resume_sweep_interval",
            "step_timeout", "webhook_timeout"
        ]
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"'{name}' must be positive")

        at_least_one = [
            "execution_batch_size", "message_batch_size",
            "optimistic_update_attempts", "retry_max_attempts"
        ]
        for name in at_least_one:
            if getattr(self, name) < 1:
                raise ConfigurationError(f"'{name}' must be at least 1")

        if self.retry_backoff_factor < 1:
            raise ConfigurationError("'retry_backoff_factor' must be at least 1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """从字典创建配置，拒绝未知键"""
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        values = {}
        for key, value in data.items():
            values[key] = _coerce(known[key].type, key, value)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "EngineConfig":
        """从环境变量读取配置（AUTOMATION_<FIELD>，数据库地址也读取 DATABASE_URL）"""
        environ = os.environ if environ is None else environ
        data = {}
        for f in fields(cls):
            env_key = f"{ENV_PREFIX}{f.name.upper()}"
            if env_key in environ:
                data[f.name] = environ[env_key]

        if "database_url" not in data and environ.get("DATABASE_URL"):
            data["database_url"] = environ["DATABASE_URL"]

        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "EngineConfig":
        """从 YAML 文件读取配置"""
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}")

        if "engine" in data:
            data = data["engine"]
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        logger.info(f"Loaded engine configuration from {path}")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(field_type, key: str, value: Any) -> Any:
    """把环境变量/YAML 的取值转换为字段类型"""
    type_name = field_type if isinstance(field_type, str) else field_type.__name__
    try:
        if type_name == "int":
            return int(value)
        if type_name == "float":
            return float(value)
        if type_name == "str":
            return str(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid value for '{key}': {value!r}")
    return value
