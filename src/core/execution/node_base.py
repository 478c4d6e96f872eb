"""
Base task handler class for execution engine
"""
import asyncio
import functools
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Set

from ..types import NodeID, NodeKind


class BodyMode(Enum):
    """
    How the orchestrator drives the nodes downstream of a handler

    NONE: Downstream nodes are scheduled normally
    ITERATE: Downstream body runs once per item (iterator)
    FAN_OUT: One branch per outgoing edge (router)
    """
    NONE = "none"
    ITERATE = "iterate"
    FAN_OUT = "fan_out"


@dataclass
class ExecutionContext:
    """Read-only view of the run passed to a handler"""
    node_id: NodeID
    label: str
    scope: Dict[str, Any] = field(default_factory=dict)  # label -> result of predecessors
    upstream: List[Any] = field(default_factory=list)  # Results of direct predecessors, edge order
    iteration_results: Dict[NodeID, List[Any]] = field(default_factory=dict)
    upstream_ids: List[NodeID] = field(default_factory=list)
    upstream_labels: List[str] = field(default_factory=list)
    trigger_payload: Optional[Dict[str, Any]] = None
    run_id: Optional[str] = None

    def merged_upstream(self) -> Dict[str, Any]:
        """Shallow merge of every dict-shaped direct predecessor result"""
        merged: Dict[str, Any] = {}
        for result in self.upstream:
            if isinstance(result, dict):
                merged.update(result)
        return merged


class BaseTaskHandler(ABC):
    """
    Base class for all task handlers

    A handler:
    - Declares the node kind it executes and a default config
    - Receives an already-interpolated config and a read-only context
    - Returns a result or raises; it never touches the graph or node status
    """

    kind: NodeKind
    body_mode: BodyMode = BodyMode.NONE

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        """Default config for a freshly added node (override in subclasses)"""
        return {}

    @abstractmethod
    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Any:
        """
        Execute the task

        Args:
            config: Node config with tokens already resolved
            context: Execution context with predecessor results

        Returns:
            Result value, stored in the run's result map
        """
        pass

    def select_handles(self, config: Dict[str, Any], result: Any) -> Optional[Set[str]]:
        """
        Outgoing handles that stay active after this node ran

        Returns:
            None when every outgoing edge continues (default)
        """
        return None


async def run_blocking(func, *args, **kwargs) -> Any:
    """Run a blocking adapter call in the default executor"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def parse_json_value(value: Any) -> Any:
    """Decode interpolated JSON text back into a value; other inputs pass through"""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ('{', '[') or stripped in ('true', 'false', 'null'):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value
