"""
Execution Engine for FlowBatch Core
Traverses a workflow graph and drives task handlers sequentially or in
parallel batches
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Set, Callable
from uuid import uuid4

from .node_base import BaseTaskHandler, BodyMode, ExecutionContext, run_blocking
from .node_registry import get_handler_class
from .records import ExecutionOptions, ExecutionRun, Step, utc_now
from ..errors import ConcurrentRunError, ConfigurationError
from ..events import StatusEvent, StatusEventBus
from ..graph import WorkflowGraph
from ..interpolation import ParameterInterpolator, scope_labels
from ..types import EventSource, NodeID, NodeKind, NodeResultMap, RunID, RunStatus, StepStatus, WorkflowID
from ...utils.logger import get_logger, run_logger

logger = get_logger(__name__)


@dataclass
class PlanUnit:
    """
    One schedulable entry of an execution plan

    body: nodes an iterator drives once per item
    branches: one sub-plan per router handle
    """
    node_id: NodeID
    body: List["PlanUnit"] = field(default_factory=list)
    branches: List[List["PlanUnit"]] = field(default_factory=list)

    def node_ids(self) -> List[NodeID]:
        ids = [self.node_id]
        for unit in self.body:
            ids.extend(unit.node_ids())
        for branch in self.branches:
            for unit in branch:
                ids.extend(unit.node_ids())
        return ids


@dataclass
class RunState:
    """Mutable bookkeeping for one run"""
    graph: WorkflowGraph
    run: ExecutionRun
    executable: Set[NodeID]
    results: NodeResultMap = field(default_factory=dict)
    completed: Set[NodeID] = field(default_factory=set)
    skipped: Set[NodeID] = field(default_factory=set)
    failed: Set[NodeID] = field(default_factory=set)
    selected_handles: Dict[NodeID, Set[str]] = field(default_factory=dict)
    iteration_results: Dict[NodeID, List[Any]] = field(default_factory=dict)
    trigger_payload: Optional[Dict[str, Any]] = None
    failed_node_id: Optional[NodeID] = None


class ExecutionEngine:
    """
    Executes workflow graphs

    Features:
    - Executable set from forward reachability, in discovery order
    - Sequential or parallel-batched scheduling, fail-fast
    - Cross-node parameter interpolation
    - Conditional branch pruning, iterator bodies and router fan-out
    - Status events on the bus, run records in history

    Args:
        bus: Status event bus (optional)
        history: HistoryStore used to persist runs (optional)
        synchronizer: StatusSynchronizer reset to idle after each run (optional)
        reset_delay: Seconds between run end and the idle reset
        handlers: Handler instances overriding the registry, keyed by kind
    """

    def __init__(
        self,
        bus: Optional[StatusEventBus] = None,
        history=None,
        synchronizer=None,
        reset_delay: Optional[float] = 3.0,
        handlers: Optional[Dict[NodeKind, BaseTaskHandler]] = None
    ):
        self.bus = bus
        self.history = history
        self.synchronizer = synchronizer
        self.reset_delay = reset_delay
        self.handlers: Dict[NodeKind, BaseTaskHandler] = dict(handlers or {})
        self._active_runs: Dict[WorkflowID, RunID] = {}
        self._reset_handles: Dict[RunID, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def active_run(self, workflow_id: WorkflowID) -> Optional[RunID]:
        return self._active_runs.get(workflow_id)

    @property
    def pending_resets(self) -> int:
        return len(self._reset_handles)

    async def execute(
        self,
        graph: WorkflowGraph,
        start_node_id: Optional[NodeID] = None,
        mode: Optional[ExecutionOptions] = None,
        trigger_payload: Optional[Dict[str, Any]] = None,
        run_id: Optional[RunID] = None,
        webhook_request_id: Optional[str] = None,
        trigger_node_id: Optional[NodeID] = None
    ) -> ExecutionRun:
        """
        Run a workflow graph

        Args:
            graph: Workflow graph
            start_node_id: Node to start from (default: the execution start
                node, else every non-trigger node)
            mode: Scheduling options (default: from graph settings)
            trigger_payload: Inbound request exposed by trigger nodes
            run_id: Explicit run id (default: new uuid)
            webhook_request_id: Inbound request that caused this run
            trigger_node_id: Trigger that received the request; its delivery
                is announced once the run has been admitted

        Returns:
            The terminal ExecutionRun; a failed run is returned, not raised

        Raises:
            ConcurrentRunError: If the workflow already has an active run
            GraphIntegrityError: If start_node_id or trigger_node_id is not in the graph
        """
        options = mode or ExecutionOptions.from_settings(graph.settings)
        self._check_not_running(graph.id)

        executable = self.resolve_executable(graph, start_node_id)
        if trigger_node_id is not None:
            graph.require_node(trigger_node_id)
        run = ExecutionRun(
            id=run_id or str(uuid4()),
            workflow_id=graph.id,
            webhook_request_id=webhook_request_id,
        )
        self._active_runs[graph.id] = run.id

        try:
            if trigger_node_id is not None:
                await self.deliver_trigger(graph, trigger_node_id, run.id)
            plan = self.build_plan(graph, executable)
            state = RunState(
                graph=graph,
                run=run,
                executable=set(executable),
                trigger_payload=trigger_payload,
            )
            logger.info(
                f"Executing workflow {graph.id}: run {run.id}, {len(executable)} node(s), "
                f"{'parallel' if options.parallel else 'sequential'} mode"
            )
            await self._record('start_run', run)

            try:
                await self._run_units(plan, state, {}, options.parallel, options.batch_size)
                run.status = RunStatus.COMPLETED
                run.current_node_id = None
            except Exception as e:
                run.status = RunStatus.FAILED
                run.error_message = str(e)
                run.current_node_id = state.failed_node_id

            run.results = state.results
            run.completed_at = utc_now()
            await self._publish(
                EventSource.RUN_LIFECYCLE, run, run.status,
                current_node_id=run.current_node_id, results=state.results,
            )
            await self._record('finish_run', run)
        finally:
            self._active_runs.pop(graph.id, None)

        if run.status == RunStatus.COMPLETED:
            run_logger(logger, run.id).info(f"Completed: {len(run.steps)} step(s) in {run.duration:.3f}s")
        else:
            run_logger(logger, run.id).error(
                f"Failed at {run.current_node_id} after {len(run.steps)} step(s): {run.error_message}"
            )

        self._schedule_reset(run.id)
        return run

    async def deliver_trigger(self, graph: WorkflowGraph, trigger_id: NodeID, run_id: RunID) -> None:
        """
        Announce an inbound trigger delivery for an admitted run

        Raises:
            ConcurrentRunError: If another run of the workflow is in flight
        """
        graph.require_node(trigger_id)
        self._check_not_running(graph.id, allowed_run_id=run_id)
        await self._emit(StatusEvent(
            source=EventSource.TRIGGER_DELIVERY,
            run_id=run_id,
            run_status=RunStatus.RUNNING,
            current_node_id=trigger_id,
            related_node_ids=[edge.target for edge in graph.outgoing_edges(trigger_id)],
            workflow_id=graph.id,
        ))

    async def invoke_node(
        self,
        graph: WorkflowGraph,
        node_id: NodeID,
        trigger_payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Run a single node outside a normal run

        Predecessor results come from each predecessor's last_result. The
        node's own last_result is updated on success.

        Raises:
            Whatever the handler raises
        """
        node = graph.require_node(node_id)
        run = ExecutionRun(id=f"direct-{uuid4().hex[:12]}", workflow_id=graph.id)
        results = {
            pred_id: graph.get_node(pred_id).last_result
            for pred_id in graph.predecessors(node_id)
            if graph.get_node(pred_id).last_result is not None
        }
        state = RunState(
            graph=graph,
            run=run,
            executable={node_id},
            results=results,
            trigger_payload=trigger_payload,
        )

        try:
            result = await self._execute_node(node_id, state, {}, source=EventSource.DIRECT_INVOCATION)
        except Exception:
            run.status = RunStatus.FAILED
            await self._publish(EventSource.DIRECT_INVOCATION, run, RunStatus.FAILED, current_node_id=node_id)
            raise

        node.last_result = result
        run.status = RunStatus.COMPLETED
        await self._publish(EventSource.DIRECT_INVOCATION, run, RunStatus.COMPLETED, results={node_id: result})
        self._schedule_reset(run.id)
        return result

    def cancel_pending_resets(self) -> None:
        for handle in self._reset_handles.values():
            handle.cancel()
        self._reset_handles.clear()

    def _check_not_running(self, workflow_id: WorkflowID, allowed_run_id: Optional[RunID] = None) -> None:
        active = self._active_runs.get(workflow_id)
        if active is not None and active != allowed_run_id:
            raise ConcurrentRunError(workflow_id, active)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    @staticmethod
    def resolve_executable(graph: WorkflowGraph, start_node_id: Optional[NodeID] = None) -> List[NodeID]:
        """
        Nodes a run executes, in order

        An explicit start wins, then the graph's execution-start node, then
        every non-trigger node in graph order.
        """
        if start_node_id is not None:
            return graph.find_reachable(start_node_id)
        start = graph.execution_start
        if start is not None:
            return graph.find_reachable(start.id)
        return [node.id for node in graph.nodes if node.kind != NodeKind.TRIGGER]

    def build_plan(self, graph: WorkflowGraph, executable: List[NodeID]) -> List[PlanUnit]:
        """
        Group the executable nodes into plan units

        Iterators claim their body and routers claim their exclusive branches;
        every other node is a unit of its own.
        """
        order = {node_id: index for index, node_id in enumerate(executable)}
        claimed: Set[NodeID] = set()
        return self._plan(graph, executable, order, set(executable), claimed)

    def _plan(
        self,
        graph: WorkflowGraph,
        node_ids: List[NodeID],
        order: Dict[NodeID, int],
        allowed: Set[NodeID],
        claimed: Set[NodeID]
    ) -> List[PlanUnit]:
        units = []
        for node_id in node_ids:
            if node_id in claimed:
                continue
            claimed.add(node_id)
            unit = PlanUnit(node_id=node_id)
            handler_class = get_handler_class(graph.require_node(node_id).kind)
            body_mode = handler_class.body_mode if handler_class else BodyMode.NONE

            if body_mode == BodyMode.ITERATE:
                body = self._reach(
                    graph, node_id, allowed - claimed,
                    stop=lambda n: graph.get_node(n).kind == NodeKind.ARRAY_AGGREGATOR,
                )
                body_ids = sorted(body, key=order.get)
                unit.body = self._plan(graph, body_ids, order, set(body_ids), claimed)

            elif body_mode == BodyMode.FAN_OUT:
                reaches = []
                for edge in graph.outgoing_edges(node_id):
                    if edge.target in allowed and edge.target not in claimed:
                        reaches.append(self._reach(graph, edge.target, allowed - claimed, include_start=True))
                counts: Dict[NodeID, int] = {}
                for reach in reaches:
                    for n in reach:
                        counts[n] = counts.get(n, 0) + 1
                for reach in reaches:
                    branch_ids = sorted((n for n in reach if counts[n] == 1 and n not in claimed), key=order.get)
                    if branch_ids:
                        unit.branches.append(self._plan(graph, branch_ids, order, set(branch_ids), claimed))

            units.append(unit)
        return units

    @staticmethod
    def _reach(
        graph: WorkflowGraph,
        start_id: NodeID,
        allowed: Set[NodeID],
        stop: Optional[Callable[[NodeID], bool]] = None,
        include_start: bool = False
    ) -> Set[NodeID]:
        """Forward reachability restricted to `allowed`, not entering nodes matching `stop`"""
        found: Set[NodeID] = {start_id} if include_start and start_id in allowed else set()
        stack = [start_id]
        visited = {start_id}
        while stack:
            current = stack.pop()
            for edge in graph.outgoing_edges(current):
                target = edge.target
                if target in visited or target not in allowed:
                    continue
                visited.add(target)
                if stop is not None and stop(target):
                    continue
                found.add(target)
                stack.append(target)
        return found

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _run_units(
        self,
        units: List[PlanUnit],
        state: RunState,
        overrides: Dict[NodeID, Any],
        parallel: bool = False,
        batch_size: int = 1
    ) -> None:
        if not parallel or len(units) <= 1:
            for unit in units:
                await self._run_unit(unit, state, overrides)
            return

        batch_size = max(1, batch_size)
        for start in range(0, len(units), batch_size):
            batch = units[start:start + batch_size]
            logger.debug(f"Run {state.run.id}: batch {start // batch_size + 1} with {len(batch)} node(s)")
            settled = {unit.node_id: asyncio.Event() for unit in batch}
            members = []
            for index, unit in enumerate(batch):
                earlier = {u.node_id: settled[u.node_id] for u in batch[:index]}
                members.append(self._run_batch_member(unit, state, overrides, earlier, settled[unit.node_id]))
            outcomes = await asyncio.gather(*members, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

    async def _run_batch_member(
        self,
        unit: PlanUnit,
        state: RunState,
        overrides: Dict[NodeID, Any],
        earlier: Dict[NodeID, asyncio.Event],
        settled: asyncio.Event
    ) -> None:
        """
        Run one member of a parallel batch

        A member behind a handle-tagged edge from an earlier member of the same
        batch waits until that member has chosen its handles.
        """
        try:
            for edge in state.graph.incoming_edges(unit.node_id):
                if edge.handle and edge.source in earlier:
                    await earlier[edge.source].wait()
            await self._run_unit(unit, state, overrides)
        finally:
            settled.set()

    async def _run_unit(self, unit: PlanUnit, state: RunState, overrides: Dict[NodeID, Any]) -> None:
        if self._is_pruned(unit.node_id, state):
            state.skipped.update(unit.node_ids())
            logger.debug(f"Skipping {unit.node_id}: no active incoming branch")
            return

        result = await self._execute_node(unit.node_id, state, overrides)

        if unit.body:
            await self._run_iterations(unit, result, state, overrides)
        if unit.branches:
            await self._run_branches(unit, result, state, overrides)

    def _is_pruned(self, node_id: NodeID, state: RunState) -> bool:
        """
        A node is pruned when every incoming edge from inside the run is inactive

        An edge is inactive when its source was skipped or failed, or when the
        source ran and selected handles that exclude the edge's handle.
        Unlabelled edges from sources that have not run yet count as active.
        """
        incoming = [e for e in state.graph.incoming_edges(node_id) if e.source in state.executable]
        if not incoming:
            return False
        for edge in incoming:
            if edge.source in state.skipped or edge.source in state.failed:
                continue
            selected = state.selected_handles.get(edge.source)
            if edge.handle and selected is not None and edge.source in state.completed and edge.handle not in selected:
                continue
            return False
        return True

    async def _run_iterations(
        self,
        unit: PlanUnit,
        result: Dict[str, Any],
        state: RunState,
        overrides: Dict[NodeID, Any]
    ) -> None:
        entries = result.get('batches') or []
        item_variable = result.get('item_variable') or 'item'
        body_ids = [n for body_unit in unit.body for n in body_unit.node_ids()]
        collected: Dict[NodeID, List[Any]] = {n: [] for n in body_ids}

        for index, entry in enumerate(entries):
            view = dict(result)
            view.update({
                'item': entry,
                'index': index,
                'batch': entry if isinstance(entry, list) and result.get('batch_size', 1) > 1 else [entry],
                item_variable: entry,
            })
            for node_id in body_ids:
                state.skipped.discard(node_id)
                state.completed.discard(node_id)
                state.selected_handles.pop(node_id, None)

            first_step = len(state.run.steps)
            await self._run_units(unit.body, state, {**overrides, unit.node_id: view})
            for step in state.run.steps[first_step:]:
                if step.status == StepStatus.COMPLETED and step.node_id in collected:
                    collected[step.node_id].append(step.result)

        for node_id, values in collected.items():
            state.iteration_results[node_id] = values
        result['iterations'] = len(entries)
        logger.debug(f"Iterator {unit.node_id} ran its body {len(entries)} time(s)")

    async def _run_branches(
        self,
        unit: PlanUnit,
        result: Dict[str, Any],
        state: RunState,
        overrides: Dict[NodeID, Any]
    ) -> None:
        if result.get('execution_mode') == 'sequential':
            for branch in unit.branches:
                await self._run_units(branch, state, overrides)
            return

        tasks = [asyncio.ensure_future(self._run_units(branch, state, overrides)) for branch in unit.branches]
        if result.get('wait_for_all', True):
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            return

        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        for task in tasks:
            if task in done and task.exception() is not None:
                raise task.exception()

    # ------------------------------------------------------------------
    # Node execution
    # ------------------------------------------------------------------

    def _handler_for(self, kind: NodeKind) -> BaseTaskHandler:
        handler = self.handlers.get(kind)
        if handler is not None:
            return handler
        handler_class = get_handler_class(kind)
        if handler_class is None:
            raise ConfigurationError(f"No handler registered for node kind: {kind}")
        return handler_class()

    async def _execute_node(
        self,
        node_id: NodeID,
        state: RunState,
        overrides: Dict[NodeID, Any],
        source: EventSource = EventSource.RUN_LIFECYCLE
    ) -> Any:
        graph = state.graph
        run = state.run
        node = graph.require_node(node_id)
        label = node.namespace_label

        run.current_node_id = node_id
        await self._publish(source, run, RunStatus.RUNNING, current_node_id=node_id)

        started = time.time()
        try:
            handler = self._handler_for(node.kind)
            visible = {**state.results, **overrides}
            labels = scope_labels(graph, node_id)
            scope = {lbl: visible[pid] for lbl, pid in labels.items() if pid in visible}

            config = type(handler).default_config()
            config.update(node.config)
            interpolator = ParameterInterpolator(scope, known_labels=labels)
            config = interpolator.render(config)
            for error in interpolator.errors:
                logger.debug(f"[{label}] {error}")

            upstream_ids = [pid for pid in graph.direct_predecessors(node_id) if pid in visible]
            context = ExecutionContext(
                node_id=node_id,
                label=label,
                scope=scope,
                upstream=[visible[pid] for pid in upstream_ids],
                iteration_results=dict(state.iteration_results),
                upstream_ids=upstream_ids,
                upstream_labels=[graph.get_node(pid).namespace_label for pid in upstream_ids],
                trigger_payload=state.trigger_payload,
                run_id=run.id,
            )
            result = await handler.execute(config, context)
            selected = handler.select_handles(config, result)
        except Exception as e:
            run.steps.append(Step(
                node_id=node_id,
                node_label=node.display_label,
                status=StepStatus.ERROR,
                duration=time.time() - started,
                timestamp=time.time(),
                error=str(e),
                error_status=getattr(e, 'status', None),
                error_body=getattr(e, 'body', None),
            ))
            state.failed.add(node_id)
            if state.failed_node_id is None:
                state.failed_node_id = node_id
            run_logger(logger, run.id, node=label).error(f"Node {node_id} failed: {e}", exc_info=True)
            raise

        state.results[node_id] = result
        state.completed.add(node_id)
        if selected is not None:
            state.selected_handles[node_id] = set(selected)
        if node_id not in run.executed_node_ids:
            run.executed_node_ids.append(node_id)
        run.steps.append(Step(
            node_id=node_id,
            node_label=node.display_label,
            status=StepStatus.COMPLETED,
            duration=time.time() - started,
            timestamp=time.time(),
            result=result,
        ))
        run_logger(logger, run.id, node=label).debug(f"Completed in {time.time() - started:.3f}s")

        await self._publish(source, run, RunStatus.RUNNING, results={node_id: result})
        return result

    # ------------------------------------------------------------------
    # Side effects
    # ------------------------------------------------------------------

    async def _publish(
        self,
        source: EventSource,
        run: ExecutionRun,
        status: RunStatus,
        current_node_id: Optional[NodeID] = None,
        results: Optional[NodeResultMap] = None
    ) -> None:
        await self._emit(StatusEvent(
            source=source,
            run_id=run.id,
            run_status=status,
            executed_node_ids=list(run.executed_node_ids),
            current_node_id=current_node_id,
            results=dict(results or {}),
            workflow_id=run.workflow_id,
        ))

    async def _emit(self, event: StatusEvent) -> None:
        if self.bus is not None:
            await self.bus.publish(event)

    async def _record(self, method: str, run: ExecutionRun) -> None:
        """Write a run to history; storage failures are logged and the run goes on"""
        if self.history is None:
            return
        try:
            await run_blocking(getattr(self.history, method), run)
        except Exception as e:
            logger.error(f"Failed to {method.replace('_', ' ')} {run.id} in history: {e}", exc_info=True)

    def _schedule_reset(self, run_id: RunID) -> None:
        if self.synchronizer is None or self.reset_delay is None:
            return
        loop = asyncio.get_running_loop()
        self._reset_handles[run_id] = loop.call_later(self.reset_delay, self._fire_reset, run_id)

    def _fire_reset(self, run_id: RunID) -> None:
        self._reset_handles.pop(run_id, None)
        if self.synchronizer is not None:
            self.synchronizer.reset(run_id)
