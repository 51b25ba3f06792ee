"""
引擎配置测试
"""
import pytest

from automation_engine.config import EngineConfig, ConfigurationError
from automation_engine.core.retry import RetryPolicy
from automation_engine.models import Execution, ExecutionStatus


def test_defaults():
    config = EngineConfig()

    assert config.execution_poll_interval == 5.0
    assert config.execution_batch_size == 10
    assert config.message_poll_interval == 10.0
    assert config.message_batch_size == 5
    assert config.schedule_sweep_interval == 60.0
    assert config.retry_max_attempts == 1


def test_from_env():
    config = EngineConfig.from_env({
        "AUTOMATION_EXECUTION_BATCH_SIZE": "25",
        "AUTOMATION_STEP_TIMEOUT": "2.5",
        "DATABASE_URL": "postgresql+asyncpg://crm@localhost/crm",
        "UNRELATED": "ignored",
    })

    assert config.execution_batch_size == 25
    assert config.step_timeout == 2.5
    assert config.database_url == "postgresql+asyncpg://crm@localhost/crm"


def test_prefixed_database_url_wins():
    config = EngineConfig.from_env({
        "AUTOMATION_DATABASE_URL": "sqlite+aiosqlite:///crm.db",
        "DATABASE_URL": "postgresql+asyncpg://crm@localhost/crm",
    })

    assert config.database_url == "sqlite+aiosqlite:///crm.db"


def test_from_file(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "engine:\n"
        "  message_batch_size: 50\n"
        "  retry_max_attempts: 3\n",
        encoding="utf-8"
    )

    config = EngineConfig.from_file(path)

    assert config.message_batch_size == 50
    assert config.retry_max_attempts == 3


@pytest.mark.parametrize("data", [
    {"unknown_key": 1},
    {"execution_batch_size": "many"},
    {"execution_poll_interval": 0},
    {"optimistic_update_attempts": 0},
    {"retry_backoff_factor": 0.5},
])
def test_invalid_configuration(data):
    with pytest.raises(ConfigurationError):
        EngineConfig.from_dict(data)


class TestRetryPolicy:
    """重试策略测试"""

    def test_exponential_backoff_is_capped(self):
        policy = RetryPolicy(max_attempts=5, initial_delay=10, backoff_factor=3, max_delay=60)

        assert [policy.calculate_delay(attempt) for attempt in range(1, 5)] == [10, 30, 60, 60]

    def test_only_failed_executions_under_limit_are_retried(self):
        policy = RetryPolicy(max_attempts=2)

        failed = Execution(status=ExecutionStatus.FAILED, attempt=1)
        exhausted = Execution(status=ExecutionStatus.FAILED, attempt=2)
        completed = Execution(status=ExecutionStatus.COMPLETED, attempt=1)

        assert policy.should_retry(failed)
        assert not policy.should_retry(exhausted)
        assert not policy.should_retry(completed)
        assert policy.next_attempt(completed) is None

    def test_default_policy_never_retries(self):
        policy = RetryPolicy.from_config(EngineConfig())

        assert policy.next_attempt(Execution(status=ExecutionStatus.FAILED)) is None
