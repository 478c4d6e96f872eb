"""
Data Transform Node
Applies add/remove/modify operations to the upstream data
"""
import copy
from typing import Dict, Any

from ..node_base import BaseTaskHandler, ExecutionContext
from ...errors import ConfigurationError
from ...types import NodeKind


class DataTransformHandler(BaseTaskHandler):
    """
    Data transform handler

    Config:
        transformations: [{operation: add|remove|modify, field, value}]
            modify only touches fields that already exist
    """

    kind = NodeKind.DATA_TRANSFORM

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'transformations': []}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        data = copy.deepcopy(context.merged_upstream())

        for transform in config.get('transformations') or []:
            operation = transform.get('operation')
            field = transform.get('field')
            if not field:
                raise ConfigurationError(f"{context.label}: transformation is missing a field")
            if operation == 'add':
                data[field] = transform.get('value')
            elif operation == 'remove':
                data.pop(field, None)
            elif operation == 'modify':
                if field in data:
                    data[field] = transform.get('value')
            else:
                raise ConfigurationError(f"{context.label}: unknown operation '{operation}'")

        return data
