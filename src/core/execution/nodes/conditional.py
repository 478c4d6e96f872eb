"""
Conditional Node
Evaluates one comparison and selects the "true" or "false" branch
"""
from typing import Dict, Any, Optional, Set

from ..node_base import BaseTaskHandler, ExecutionContext, parse_json_value
from ...errors import ConfigurationError
from ...types import NodeKind

TRUE_HANDLE = "true"
FALSE_HANDLE = "false"
CONDITION_TYPES = ("equals", "contains", "greater", "less", "exists")
_EMPTY = (None, '', 'null', 'undefined')


def _as_number(value: Any, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{label}: cannot compare non-numeric value {value!r}")


def evaluate_condition(condition_type: str, check_value: Any, compare_value: Any, label: str = "Conditional") -> bool:
    """
    Evaluate a single comparison

    Operands usually arrive as interpolated strings; numeric strings compare
    as numbers for equals/greater/less.
    """
    if condition_type == "exists":
        return check_value not in _EMPTY

    if condition_type == "equals":
        try:
            return float(check_value) == float(compare_value)
        except (TypeError, ValueError):
            return str(check_value if check_value is not None else '') == str(compare_value if compare_value is not None else '')

    if condition_type == "contains":
        container = parse_json_value(check_value)
        if isinstance(container, list):
            needle = parse_json_value(compare_value)
            return needle in container or str(compare_value) in [str(item) for item in container]
        return str(compare_value) in str(check_value if check_value is not None else '')

    if condition_type == "greater":
        return _as_number(check_value, label) > _as_number(compare_value, label)

    if condition_type == "less":
        return _as_number(check_value, label) < _as_number(compare_value, label)

    raise ConfigurationError(f"{label}: unknown condition type '{condition_type}'")


class ConditionalHandler(BaseTaskHandler):
    """
    Conditional handler

    Config:
        condition_type: equals, contains, greater, less, exists
        check_value: Left operand (interpolated)
        compare_value: Right operand (interpolated, unused by exists)

    Outputs:
        result: Boolean outcome
        branch: Selected handle ("true" or "false")
    """

    kind = NodeKind.CONDITIONAL

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'condition_type': 'equals', 'check_value': '', 'compare_value': ''}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        condition_type = config.get('condition_type') or 'equals'
        outcome = evaluate_condition(
            condition_type,
            config.get('check_value'),
            config.get('compare_value'),
            label=context.label,
        )
        return {
            'result': outcome,
            'branch': TRUE_HANDLE if outcome else FALSE_HANDLE,
            'condition_type': condition_type,
            'check_value': config.get('check_value'),
            'compare_value': config.get('compare_value'),
        }

    def select_handles(self, config: Dict[str, Any], result: Any) -> Optional[Set[str]]:
        return {result['branch']}
