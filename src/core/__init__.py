"""
Core service container and bootstrap module
Provides the workflow graph, execution engine and centralized service initialization
"""
from .container import ServiceContainer
from .bootstrap import get_container
from .graph import WorkflowGraph, Node, Edge

__all__ = ["ServiceContainer", "get_container", "WorkflowGraph", "Node", "Edge"]
