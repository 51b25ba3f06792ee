"""
条件求值

对实体字段和字面量做比较，供 CONDITION / BRANCH_CONDITION 步骤使用。
求值函数对任意输入都返回布尔值，不抛出异常。
"""
import logging
from typing import Any, Dict, Optional, Union

from ..models.step_config import ConditionSpec


logger = logging.getLogger(__name__)


TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
FALSE_STRINGS = {"false", "0", "no", "n", "off", ""}

_MISSING = object()


def _to_number(value: Any) -> Optional[float]:
    """尽量转换为数字，布尔值不参与数值比较"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        return None
    return bool(value)


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _loose_equals(left: Any, right: Any) -> bool:
    """宽松相等：数字字符串按数值比较，布尔值按字符串形式比较"""
    if left is None or right is None:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return _to_text(left).lower() == _to_text(right).lower()

    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    if isinstance(left, (list, tuple, dict)) or isinstance(right, (list, tuple, dict)):
        return left == right
    return _to_text(left) == _to_text(right)


def _compare(left: Any, right: Any) -> Optional[int]:
    """返回 -1/0/1；无法比较时返回 None"""
    left_num, right_num = _to_number(left), _to_number(right)
    if left_num is not None and right_num is not None:
        return (left_num > right_num) - (left_num < right_num)
    if isinstance(left, str) and isinstance(right, str):
        return (left > right) - (left < right)
    return None


def _contains(container: Any, needle: Any) -> bool:
    if isinstance(container, (list, tuple, set)):
        text = _to_text(needle)
        return any(_to_text(item) == text for item in container)
    return _to_text(needle) in _to_text(container)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    return not value


def _compare_op(predicate):
    def check(actual, literal):
        result = _compare(actual, literal)
        return result is not None and predicate(result)
    return check


OPERATORS = {
    "EQUALS": lambda actual, literal: _loose_equals(actual, literal),
    "NOT_EQUALS": lambda actual, literal: not _loose_equals(actual, literal),
    "GREATER_THAN": _compare_op(lambda c: c > 0),
    "LESS_THAN": _compare_op(lambda c: c < 0),
    "GREATER_THAN_OR_EQUAL": _compare_op(lambda c: c >= 0),
    "LESS_THAN_OR_EQUAL": _compare_op(lambda c: c <= 0),
    "CONTAINS": lambda actual, literal: _contains(actual, literal),
    "NOT_CONTAINS": lambda actual, literal: not _contains(actual, literal),
    "IS_EMPTY": lambda actual, literal: _is_empty(actual),
    "IS_NOT_EMPTY": lambda actual, literal: not _is_empty(actual),
    "IS_TRUE": lambda actual, literal: _to_bool(actual) is True,
    "IS_FALSE": lambda actual, literal: _to_bool(actual) is False,
}


def _lookup(entity_data: Dict[str, Any], field: str) -> Any:
    """按字段名取值，支持 a.b 形式的嵌套路径"""
    if field in entity_data:
        return entity_data[field]

    current: Any = entity_data
    for part in field.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def evaluate(field: str, operator: str, literal: Any, entity_data: Optional[Dict[str, Any]]) -> bool:
    """
    对单个条件求值

    Args:
        field: 实体字段名
        operator: 运算符（大小写不敏感）
        literal: 比较的字面量
        entity_data: 实体数据

    Returns:
        字段不存在或运算符未知时返回 False
    """
    try:
        if not field or not isinstance(entity_data, dict):
            return False

        actual = _lookup(entity_data, field)
        if actual is _MISSING:
            return False

        check = OPERATORS.get(str(operator).upper())
        if check is None:
            logger.warning(f"Unknown condition operator: {operator}")
            return False

        return bool(check(actual, literal))
    except Exception as e:
        logger.warning(f"Condition evaluation failed for field '{field}': {e}")
        return False


def evaluate_condition(
    condition: Union[ConditionSpec, Dict[str, Any], None],
    entity_data: Optional[Dict[str, Any]]
) -> bool:
    """字典或 ConditionSpec 形式的条件求值"""
    if condition is None:
        return False
    if isinstance(condition, ConditionSpec):
        return evaluate(condition.field, condition.operator, condition.value, entity_data)
    if isinstance(condition, dict):
        return evaluate(
            condition.get("field"),
            condition.get("operator", ""),
            condition.get("value"),
            entity_data
        )
    return False
