"""
条件求值测试
"""
import pytest

from automation_engine.core.conditions import evaluate, evaluate_condition
from automation_engine.models import ConditionSpec


@pytest.mark.parametrize("field,operator,literal,data,expected", [
    ("score", "GREATER_THAN", 50, {"score": 80}, True),
    ("tags", "CONTAINS", "vip", {"tags": "vip,gold"}, True),
    ("missing", "EQUALS", "x", {}, False),
    ("active", "IS_FALSE", None, {"active": False}, True),
])
def test_reference_cases(field, operator, literal, data, expected):
    assert evaluate(field, operator, literal, data) is expected


@pytest.mark.parametrize("field,operator,literal,data,expected", [
    # 数值与数字字符串按数值比较
    ("score", "EQUALS", "80", {"score": 80}, True),
    ("score", "NOT_EQUALS", 80, {"score": 80}, False),
    ("score", "LESS_THAN", "100", {"score": 80}, True),
    ("score", "GREATER_THAN_OR_EQUAL", 80, {"score": 80}, True),
    ("score", "LESS_THAN_OR_EQUAL", 79, {"score": 80}, False),
    # 字符串之间按字典序比较
    ("status", "GREATER_THAN", "A", {"status": "NEW"}, True),
    # 无法比较时为 False
    ("status", "GREATER_THAN", 5, {"status": "NEW"}, False),
    ("status", "EQUALS", "NEW", {"status": "NEW"}, True),
    ("status", "equals", "NEW", {"status": "NEW"}, True),
    ("tags", "CONTAINS", "vip", {"tags": ["vip", "gold"]}, True),
    ("tags", "CONTAINS", "vi", {"tags": ["vip", "gold"]}, False),
    ("tags", "NOT_CONTAINS", "silver", {"tags": ["vip", "gold"]}, True),
    ("email", "IS_EMPTY", None, {"email": "  "}, True),
    ("email", "IS_EMPTY", None, {"email": None}, True),
    ("tags", "IS_NOT_EMPTY", None, {"tags": []}, False),
    ("active", "IS_TRUE", None, {"active": "yes"}, True),
    ("active", "IS_TRUE", None, {"active": "false"}, False),
    ("active", "IS_FALSE", None, {"active": "false"}, True),
    ("active", "IS_FALSE", None, {"active": "maybe"}, False),
    ("active", "EQUALS", "true", {"active": True}, True),
    ("company.size", "GREATER_THAN", 10, {"company": {"size": 50}}, True),
])
def test_operator_semantics(field, operator, literal, data, expected):
    assert evaluate(field, operator, literal, data) is expected


def test_missing_field_is_false_for_every_operator():
    """字段不存在时任何运算符都返回 False"""
    for operator in ["EQUALS", "NOT_EQUALS", "IS_EMPTY", "IS_FALSE", "NOT_CONTAINS"]:
        assert evaluate("missing", operator, "x", {"other": 1}) is False


def test_unknown_operator_and_bad_input_are_false():
    assert evaluate("score", "BETWEEN", 1, {"score": 1}) is False
    assert evaluate("score", "EQUALS", 1, None) is False
    assert evaluate("", "EQUALS", 1, {"": 1}) is False


def test_evaluate_condition_accepts_spec_and_dict():
    data = {"lead_score": 85}
    spec = ConditionSpec(field="lead_score", operator="GREATER_THAN", value=50)

    assert evaluate_condition(spec, data) is True
    assert evaluate_condition({"field": "lead_score", "operator": "LESS_THAN", "value": 50}, data) is False
    assert evaluate_condition(None, data) is False
