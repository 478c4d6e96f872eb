"""
Execution history and flashback

HistoryStore persists runs through a storage backend. FlashbackProjector
temporarily projects the live graph onto the subgraph a past run executed.
"""
import copy
from datetime import timedelta
from typing import Dict, Any, List, Optional, Union

from .execution.records import ExecutionRun, parse_timestamp, utc_now
from .graph import WorkflowGraph, WorkflowSnapshot
from .status import has_content
from .types import NodeID, NodeStatus, NodeStatusView, RunID, RunStatus, WorkflowID
from ..storage.base import StorageInterface
from ..utils.logger import get_logger

logger = get_logger(__name__)

STALE_RUN_MESSAGE = "Execution timed out or failed to complete"


class HistoryStore:
    """
    Run history on top of a storage backend

    Args:
        storage: Storage backend
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    def start_run(self, run: ExecutionRun) -> RunID:
        """Insert a running record for a new run"""
        record = run.to_dict()
        record['status'] = RunStatus.RUNNING.value
        record['completed_at'] = None
        return self.storage.save_execution(record)

    def finish_run(self, run: ExecutionRun) -> Optional[Dict[str, Any]]:
        """Write the terminal state of a run"""
        record = run.to_dict()
        updates = {
            'status': record['status'],
            'completed_at': record['completed_at'],
            'current_node_id': record['current_node_id'],
            'executed_nodes': record['executed_nodes'],
            'steps': record['steps'],
            'result_data': record['result_data'],
            'error_message': record['error_message'],
        }
        updated = self.storage.update_execution(run.id, updates)
        if updated is None:
            # Start record missing (e.g. storage was unavailable at start)
            self.storage.save_execution(record)
            return record
        return updated

    def list_runs(self, workflow_id: WorkflowID, limit: int = 50) -> List[ExecutionRun]:
        """Runs for a workflow, most recent first"""
        records = self.storage.list_executions(workflow_id, limit=limit)
        runs = [ExecutionRun.from_dict(r) for r in records]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]

    def get_run(self, run_id: RunID) -> Optional[ExecutionRun]:
        record = self.storage.get_execution(run_id)
        return ExecutionRun.from_dict(record) if record else None

    def cleanup_stale(self, threshold_minutes: float = 10) -> List[RunID]:
        """
        Mark running records older than the threshold as failed

        Returns:
            Ids of the runs that were reclassified
        """
        cutoff = utc_now() - timedelta(minutes=threshold_minutes)
        cleaned: List[RunID] = []
        for record in self.storage.list_running_executions():
            started_at = parse_timestamp(record.get('started_at'))
            if started_at is None or started_at >= cutoff:
                continue
            self.storage.update_execution(record['id'], {
                'status': RunStatus.FAILED.value,
                'error_message': STALE_RUN_MESSAGE,
                'completed_at': utc_now().isoformat(),
            })
            cleaned.append(record['id'])

        if cleaned:
            logger.info(f"Marked {len(cleaned)} stale run(s) as failed")
        return cleaned


class FlashbackProjector:
    """
    Projects a live graph onto a past run's executed subgraph

    enter() snapshots the live nodes and edges the first time it is called;
    exit() restores that snapshot exactly. Entering again while a flashback is
    active switches runs without re-snapshotting.
    """

    def __init__(self, graph: WorkflowGraph):
        self.graph = graph
        self._snapshot: Optional[WorkflowSnapshot] = None
        self.run: Optional[ExecutionRun] = None

    @property
    def active(self) -> bool:
        return self._snapshot is not None

    def enter(self, run: Union[ExecutionRun, Dict[str, Any]]) -> Dict[NodeID, NodeStatusView]:
        """
        Project the graph onto the nodes a run executed

        Returns:
            A completed status view for every projected node
        """
        if isinstance(run, dict):
            run = ExecutionRun.from_dict(run)

        if self._snapshot is None:
            self._snapshot = self.graph.snapshot()
        source = self._snapshot

        executed = set(run.executed_node_ids)
        nodes = [copy.deepcopy(n) for n in source.nodes if n.id in executed]
        edges = [copy.deepcopy(e) for e in source.edges if e.source in executed and e.target in executed]
        for node in nodes:
            node.last_result = copy.deepcopy(run.results.get(node.id))

        self.graph.replace_contents(nodes, edges)
        self.run = run
        logger.debug(f"Flashback to run {run.id}: {len(nodes)} node(s), {len(edges)} edge(s)")

        return {
            node.id: {
                'status': NodeStatus.COMPLETED.value,
                'has_result': has_content(node.last_result),
                'result': node.last_result,
                'has_completed_execution': True,
            }
            for node in nodes
        }

    def exit(self) -> bool:
        """Restore the live graph; returns False if no flashback was active"""
        if self._snapshot is None:
            return False
        snapshot = self._snapshot
        self.graph.replace_contents(copy.deepcopy(snapshot.nodes), copy.deepcopy(snapshot.edges))
        self._snapshot = None
        self.run = None
        return True
