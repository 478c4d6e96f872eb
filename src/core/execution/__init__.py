"""
Execution Engine for FlowBatch Core
Provides graph traversal, scheduling and task handlers
"""
from .engine import ExecutionEngine, PlanUnit
from .records import ExecutionOptions, ExecutionRun, Step
from .node_base import BaseTaskHandler, BodyMode, ExecutionContext
from .node_registry import HANDLER_REGISTRY, register_handler, get_handler_class

__all__ = [
    'ExecutionEngine',
    'PlanUnit',
    'ExecutionOptions',
    'ExecutionRun',
    'Step',
    'BaseTaskHandler',
    'BodyMode',
    'ExecutionContext',
    'HANDLER_REGISTRY',
    'register_handler',
    'get_handler_class',
]
