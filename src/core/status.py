"""
Status Synchronizer
Reduces status events from every source into one canonical node-status view
per workflow

The synchronizer is the only writer of node status. Events may arrive in any
order and more than once; the reduction rules make the final view depend only
on which events arrived, with terminal run states taking priority.
"""
import copy
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Set, Callable

from .events import StatusEvent, StatusEventBus
from .types import EventSource, NodeID, NodeStatus, NodeStatusView, RunID, RunStatus, WorkflowID
from ..utils.logger import get_logger

logger = get_logger(__name__)

ChangeListener = Callable[[Dict[NodeID, NodeStatusView]], None]

# Run ids remembered for superseded-run detection
MAX_TRACKED_RUNS = 1000


def idle_view() -> NodeStatusView:
    return {
        'status': NodeStatus.IDLE.value,
        'has_result': False,
        'result': None,
        'has_completed_execution': False,
    }


def has_content(value: Any) -> bool:
    """True for a result worth showing (not None and not an empty container/string)"""
    if value is None:
        return False
    if isinstance(value, (dict, list, str)) and len(value) == 0:
        return False
    return True


@dataclass
class WorkflowStatus:
    """Status state of one workflow; only its latest run is kept"""
    latest_run_id: Optional[RunID] = None
    terminal: Optional[RunStatus] = None
    view: Dict[NodeID, NodeStatusView] = field(default_factory=dict)
    results: Dict[NodeID, Any] = field(default_factory=dict)
    touched: Set[NodeID] = field(default_factory=set)

    def start(self, run_id: RunID) -> None:
        self.latest_run_id = run_id
        self.terminal = None
        self.view.clear()
        self.results.clear()
        self.touched.clear()


class StatusSynchronizer:
    """
    Single subscriber that owns the node-status views

    Each workflow has its own view, scoped to that workflow's latest started
    run, so runs of different workflows never overwrite each other.

    Reduction, in priority order:
    1. completed: executed and current nodes become completed
    2. failed: executed and current nodes become error
    3. running: the current node is running, other executed nodes completed
    4. nodes never mentioned stay idle

    A terminal event also returns to idle any node the run marked running
    without executing it (such as a trigger successor that was never reached).
    Once a run is terminal its later non-terminal events are ignored, and
    events from a workflow's superseded runs are dropped.

    Args:
        bus: Status event bus to subscribe to
        graph: Optional graph, used to find the nodes connected to a trigger
        max_tracked_runs: Run ids remembered for superseded-run detection
    """

    def __init__(self, bus: StatusEventBus, graph=None, max_tracked_runs: int = MAX_TRACKED_RUNS):
        self.bus = bus
        self.graph = graph
        self._workflows: Dict[Optional[WorkflowID], WorkflowStatus] = {}
        self._run_workflows: "OrderedDict[RunID, Optional[WorkflowID]]" = OrderedDict()
        self._max_tracked_runs = max_tracked_runs
        self._current_workflow: Optional[WorkflowID] = None
        self._listeners: Dict[int, ChangeListener] = {}
        self._listener_counter = 0
        self._disposed = False
        self._subscription_id: Optional[str] = bus.subscribe(
            [EventSource.RUN_LIFECYCLE, EventSource.TRIGGER_DELIVERY, EventSource.DIRECT_INVOCATION],
            self._on_event,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def latest_run_id(self) -> Optional[RunID]:
        """Latest run of the workflow that most recently started one"""
        return self.latest_run_for(self._current_workflow)

    def latest_run_for(self, workflow_id: Optional[WorkflowID]) -> Optional[RunID]:
        state = self._workflows.get(workflow_id)
        return state.latest_run_id if state else None

    @property
    def tracked_runs(self) -> int:
        return len(self._run_workflows)

    @property
    def disposed(self) -> bool:
        return self._disposed

    def workflows(self) -> List[Optional[WorkflowID]]:
        return list(self._workflows)

    def view(self, workflow_id: Optional[WorkflowID] = None) -> Dict[NodeID, NodeStatusView]:
        """
        Copy of a workflow's view (nodes never mentioned are absent, i.e. idle)

        Without a workflow id, the workflow that most recently started a run.
        """
        state = self._workflows.get(self._resolve(workflow_id))
        return copy.deepcopy(state.view) if state else {}

    def status_of(self, node_id: NodeID, workflow_id: Optional[WorkflowID] = None) -> NodeStatusView:
        state = self._workflows.get(self._resolve(workflow_id))
        node_view = state.view.get(node_id) if state else None
        return copy.deepcopy(node_view or idle_view())

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        """
        Register a listener called with the changed workflow's view

        Returns:
            Callable that removes the listener
        """
        self._listener_counter += 1
        key = self._listener_counter
        self._listeners[key] = callback

        def unsubscribe() -> None:
            self._listeners.pop(key, None)

        return unsubscribe

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def apply(self, event: StatusEvent) -> bool:
        """
        Reduce one event into its workflow's view

        Returns:
            True if the event was accepted
        """
        if self._disposed:
            return False
        state = self._accept_run(event)
        if state is None:
            return False

        run_id = event.run_id
        if state.terminal is not None and event.run_status != state.terminal:
            logger.debug(f"Ignoring {event.run_status.value} event for terminal run {run_id}")
            return False

        state.results.update(event.results or {})

        if event.source == EventSource.TRIGGER_DELIVERY:
            for node_id in self._trigger_targets(event):
                self._set(state, node_id, NodeStatus.RUNNING, None, False)
                state.touched.add(node_id)
            self._notify(state)
            return True

        involved = list(event.executed_node_ids)
        if event.current_node_id and event.current_node_id not in involved:
            involved.append(event.current_node_id)
        state.touched.update(involved)

        if event.is_terminal:
            state.terminal = event.run_status
            failed = event.run_status == RunStatus.FAILED
            for node_id in involved:
                if failed:
                    self._set(state, node_id, NodeStatus.ERROR, None, False)
                else:
                    self._set(state, node_id, NodeStatus.COMPLETED, state.results.get(node_id), True)
            for node_id in state.touched - set(involved):
                if state.view.get(node_id, {}).get('status') == NodeStatus.RUNNING.value:
                    state.view.pop(node_id)
        else:
            for node_id in event.executed_node_ids:
                if node_id != event.current_node_id:
                    self._set(state, node_id, NodeStatus.COMPLETED, state.results.get(node_id), True)
            if event.current_node_id:
                self._set(state, event.current_node_id, NodeStatus.RUNNING, None, False)

        self._notify(state)
        return True

    def reset(self, run_id: RunID) -> bool:
        """Return a run's nodes to idle, if that run is still its workflow's latest"""
        if self._disposed or run_id not in self._run_workflows:
            return False
        state = self._workflows.get(self._run_workflows[run_id])
        if state is None or state.latest_run_id != run_id:
            return False
        for node_id in state.touched:
            state.view.pop(node_id, None)
        logger.debug(f"Reset node status for run {run_id}")
        self._notify(state)
        return True

    def dispose(self) -> None:
        """Unsubscribe from the bus and drop every listener"""
        if self._subscription_id is not None:
            self.bus.unsubscribe(self._subscription_id)
            self._subscription_id = None
        self._listeners.clear()
        self._disposed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _on_event(self, event: StatusEvent) -> None:
        self.apply(event)

    def _resolve(self, workflow_id: Optional[WorkflowID]) -> Optional[WorkflowID]:
        return self._current_workflow if workflow_id is None else workflow_id

    def _accept_run(self, event: StatusEvent) -> Optional[WorkflowStatus]:
        """The workflow state the event belongs to, or None for a superseded run"""
        run_id = event.run_id
        workflow_id = self._run_workflows.get(run_id, event.workflow_id)
        state = self._workflows.get(workflow_id)
        if state is not None and state.latest_run_id == run_id:
            return state
        if run_id in self._run_workflows:
            logger.debug(f"Ignoring event from superseded run {run_id}")
            return None

        # First event of a new run: it becomes its workflow's latest and owns the view
        if state is None:
            state = self._workflows[workflow_id] = WorkflowStatus()
        state.start(run_id)
        self._current_workflow = workflow_id
        self._run_workflows[run_id] = workflow_id
        while len(self._run_workflows) > self._max_tracked_runs:
            self._run_workflows.popitem(last=False)
        return state

    def _trigger_targets(self, event: StatusEvent) -> List[NodeID]:
        targets: List[NodeID] = []
        if event.current_node_id:
            targets.append(event.current_node_id)
            if self.graph is not None and event.current_node_id in self.graph:
                for edge in self.graph.outgoing_edges(event.current_node_id):
                    if edge.target not in targets:
                        targets.append(edge.target)
        for node_id in event.related_node_ids:
            if node_id not in targets:
                targets.append(node_id)
        return targets

    @staticmethod
    def _set(state: WorkflowStatus, node_id: NodeID, status: NodeStatus, result: Any, completed: bool) -> None:
        state.view[node_id] = {
            'status': status.value,
            'has_result': status == NodeStatus.COMPLETED and has_content(result),
            'result': copy.deepcopy(result) if status == NodeStatus.COMPLETED else None,
            'has_completed_execution': completed,
        }

    def _notify(self, state: WorkflowStatus) -> None:
        if not self._listeners:
            return
        snapshot = copy.deepcopy(state.view)
        for listener in list(self._listeners.values()):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)
