"""
自动化引擎异常定义
"""


class AutomationEngineError(Exception):
    """自动化引擎基础异常"""
    pass


class WorkflowParseError(AutomationEngineError):
    """工作流解析异常"""
    pass


class WorkflowValidationError(AutomationEngineError):
    """工作流验证异常"""
    pass


class WorkflowLoadError(AutomationEngineError):
    """工作流加载异常"""
    def __init__(self, workflow_id: str, message: str = None):
        self.workflow_id = workflow_id
        msg = f"Failed to load workflow '{workflow_id}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)


class StepExecutionError(AutomationEngineError):
    """步骤执行异常"""
    def __init__(self, step_id: str, message: str, cause: Exception = None):
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"Step '{step_id}' execution failed: {message}")


class StepTimeoutError(StepExecutionError):
    """步骤超时异常"""
    def __init__(self, step_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(step_id, f"timed out after {timeout}s")


class UnknownStepTypeError(StepExecutionError):
    """未知步骤类型"""
    def __init__(self, step_id: str, step_type: str):
        self.step_type = step_type
        super().__init__(step_id, f"Unknown step type: {step_type}")


class WebhookError(StepExecutionError):
    """Webhook 调用异常"""
    def __init__(self, step_id: str, message: str, status_code: int = None, cause: Exception = None):
        self.status_code = status_code
        super().__init__(step_id, message, cause)


class CycleDetectedError(AutomationEngineError):
    """步骤图存在环"""
    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Cycle detected at step '{step_id}'")


class StateTransitionError(AutomationEngineError):
    """状态转换异常"""
    def __init__(self, current_state: str, target_state: str, message: str = None):
        self.current_state = current_state
        self.target_state = target_state
        msg = f"Invalid state transition from '{current_state}' to '{target_state}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)


class RecordNotFoundError(AutomationEngineError):
    """记录不存在"""
    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Record '{record_id}' not found in '{table}'")


class ConcurrentUpdateError(AutomationEngineError):
    """并发更新冲突"""
    def __init__(self, table: str, record_id: str, attempts: int):
        self.table = table
        self.record_id = record_id
        self.attempts = attempts
        super().__init__(
            f"Record '{record_id}' in '{table}' changed concurrently, "
            f"gave up after {attempts} attempts"
        )
