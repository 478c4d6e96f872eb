"""
Router Node
Fans out to every outgoing branch with identical input
"""
from typing import Dict, Any

from ..node_base import BaseTaskHandler, BodyMode, ExecutionContext
from ...errors import ConfigurationError
from ...types import NodeKind

EXECUTION_MODES = ("parallel", "sequential")


class RouterHandler(BaseTaskHandler):
    """
    Router handler

    Config:
        execution_mode: parallel or sequential (default: parallel)
        wait_for_all: In parallel mode, let every branch settle before a
            failure surfaces (default: True)
        output_handles: Number of handles shown in the editor (default: 3)
    """

    kind = NodeKind.ROUTER
    body_mode = BodyMode.FAN_OUT

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'execution_mode': 'parallel', 'wait_for_all': True, 'output_handles': 3}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        mode = config.get('execution_mode') or 'parallel'
        if mode not in EXECUTION_MODES:
            raise ConfigurationError(f"{context.label}: execution_mode must be parallel or sequential")
        return {
            'input': context.merged_upstream(),
            'execution_mode': mode,
            'wait_for_all': bool(config.get('wait_for_all', True)),
        }
