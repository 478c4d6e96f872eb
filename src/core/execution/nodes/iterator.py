"""
Iterator Node
Splits an array into items or batches; the orchestrator drives the
downstream body once per entry
"""
from typing import Dict, Any, List

from ..node_base import BaseTaskHandler, BodyMode, ExecutionContext, parse_json_value
from ...errors import ConfigurationError
from ...types import NodeKind


def chunk(items: List[Any], size: int) -> List[Any]:
    """Items unchanged for size 1, otherwise consecutive lists of `size`"""
    if size <= 1:
        return list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]


class IteratorHandler(BaseTaskHandler):
    """
    Iterator handler

    Config:
        array_path: Array or token resolving to one, e.g. "{{HTTP 1.body.items}}"
        item_variable: Name the current entry is exposed under (default: item)
        batch_size: Entries per iteration (default: 1)

    Outputs:
        items, batches, count, batch_size, item_variable
    """

    kind = NodeKind.ITERATOR
    body_mode = BodyMode.ITERATE

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'array_path': '', 'item_variable': 'item', 'batch_size': 1}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        items = parse_json_value(config.get('array_path'))
        if items in (None, ''):
            items = []
        if not isinstance(items, list):
            raise ConfigurationError(f"{context.label}: array_path did not resolve to an array")

        try:
            batch_size = int(config.get('batch_size') or 1)
        except (TypeError, ValueError):
            raise ConfigurationError(f"{context.label}: batch_size must be an integer")
        if batch_size < 1:
            raise ConfigurationError(f"{context.label}: batch_size must be at least 1")

        return {
            'items': items,
            'batches': chunk(items, batch_size),
            'count': len(items),
            'batch_size': batch_size,
            'item_variable': config.get('item_variable') or 'item',
        }
