"""
Shared fixtures for FlowBatch Core tests
"""
import os
import sys
import shutil
import tempfile

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))


@pytest.fixture
def temp_storage():
    """Create a temporary local storage (completely isolated)"""
    from src.storage import LocalJSONStorage

    temp_dir = tempfile.mkdtemp(prefix='flowbatch_test_')
    storage = LocalJSONStorage(storage_path=temp_dir)
    yield storage
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def graph():
    from src.core.graph import WorkflowGraph
    return WorkflowGraph(workflow_id="wf-test", name="Test workflow")


@pytest.fixture
def chain_graph():
    """n1 -> n2 -> n3, all data transforms"""
    from src.core.graph import WorkflowGraph
    from src.core.types import NodeKind

    g = WorkflowGraph(workflow_id="wf-chain")
    for node_id in ("n1", "n2", "n3"):
        g.add_node(NodeKind.DATA_TRANSFORM, node_id=node_id)
    g.connect("n1", "n2", edge_id="e12")
    g.connect("n2", "n3", edge_id="e23")
    return g

