"""
Tests for the execution engine: scheduling, fail-fast, branch pruning,
iterator bodies, router fan-out and the single-active-run rule.
"""
import asyncio
import time

import pytest

from src.core.errors import ConcurrentRunError, GraphIntegrityError
from src.core.events import StatusEventBus
from src.core.execution.engine import ExecutionEngine
from src.core.execution.node_base import BaseTaskHandler
from src.core.execution.records import ExecutionOptions
from src.core.graph import WorkflowGraph
from src.core.status import StatusSynchronizer
from src.core.types import EventSource, NodeKind, RunStatus, StepStatus


def _add(field, value):
    return {'transformations': [{'operation': 'add', 'field': field, 'value': value}]}


BROKEN = {'transformations': [{'operation': 'explode', 'field': 'x'}]}


class RecordingDelay(BaseTaskHandler):
    """Stands in for the delay kind and records start/end order"""

    kind = NodeKind.DELAY

    def __init__(self):
        self.events = []

    async def execute(self, config, context):
        self.events.append(('start', context.node_id))
        await asyncio.sleep(0.02)
        self.events.append(('end', context.node_id))
        return {'node': context.node_id}

    def batches(self):
        """Group node ids by overlapping execution"""
        groups, current, active = [], [], set()
        for event, node_id in self.events:
            if event == 'start':
                active.add(node_id)
                current.append(node_id)
            else:
                active.discard(node_id)
                if not active:
                    groups.append(sorted(current))
                    current = []
        return groups


# ---------------------------------------------------------------------------
# 1. Executable set
# ---------------------------------------------------------------------------


class TestResolveExecutable:

    def test_explicit_start_uses_reachability(self, chain_graph):
        assert ExecutionEngine.resolve_executable(chain_graph, "n2") == ["n2", "n3"]

    def test_execution_start_node(self, chain_graph):
        chain_graph.set_execution_start("n3")
        assert ExecutionEngine.resolve_executable(chain_graph) == ["n3"]

    def test_default_skips_triggers(self, graph):
        trigger = graph.add_node(NodeKind.TRIGGER)
        delay = graph.add_node(NodeKind.DELAY)
        graph.connect(trigger.id, delay.id)
        assert ExecutionEngine.resolve_executable(graph) == [delay.id]

    @pytest.mark.asyncio
    async def test_unknown_start_rejected(self, chain_graph):
        with pytest.raises(GraphIntegrityError):
            await ExecutionEngine().execute(chain_graph, start_node_id="ghost")


# ---------------------------------------------------------------------------
# 2. Sequential and parallel scheduling
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sequential_run_passes_data_downstream(chain_graph):
    chain_graph.update_config("n1", _add('name', 'Ada'))
    chain_graph.update_config("n2", _add('greeting', 'Hello {{Transform 1.name}}'))

    run = await ExecutionEngine().execute(chain_graph)

    assert run.status == RunStatus.COMPLETED
    assert run.executed_node_ids == ["n1", "n2", "n3"]
    assert run.results["n3"] == {'name': 'Ada', 'greeting': 'Hello Ada'}
    assert run.current_node_id is None
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_sequential_failure_stops_the_run(chain_graph):
    chain_graph.add_node(NodeKind.DATA_TRANSFORM, node_id="n4")
    chain_graph.connect("n3", "n4")
    chain_graph.update_config("n3", BROKEN)

    run = await ExecutionEngine().execute(chain_graph)

    assert run.status == RunStatus.FAILED
    assert len(run.steps) == 3
    assert [s.status for s in run.steps] == [StepStatus.COMPLETED, StepStatus.COMPLETED, StepStatus.ERROR]
    assert run.current_node_id == "n3"
    assert "explode" in run.error_message
    assert "n4" not in run.results


@pytest.mark.asyncio
async def test_adapter_error_recorded_on_step(graph):
    from unittest.mock import MagicMock
    from src.core.execution.nodes.http_request import HTTPRequestHandler

    client = MagicMock()
    client.request.return_value = {'success': False, 'status': 502, 'statusText': 'Bad Gateway', 'fullResponse': 'upstream down'}
    graph.add_node(NodeKind.HTTP_REQUEST, node_id="h", config={'url': 'https://api.test'})

    engine = ExecutionEngine(handlers={NodeKind.HTTP_REQUEST: HTTPRequestHandler(client=client)})
    run = await engine.execute(graph)

    step = run.steps[-1]
    assert step.status == StepStatus.ERROR
    assert step.error_status == 502
    assert step.error_body == 'upstream down'


@pytest.mark.asyncio
async def test_parallel_batches(graph):
    for index in range(1, 6):
        graph.add_node(NodeKind.DELAY, node_id=f"d{index}")
    recorder = RecordingDelay()
    engine = ExecutionEngine(handlers={NodeKind.DELAY: recorder})

    run = await engine.execute(graph, mode=ExecutionOptions(parallel=True, batch_size=2))

    assert run.status == RunStatus.COMPLETED
    assert recorder.batches() == [["d1", "d2"], ["d3", "d4"], ["d5"]]


@pytest.mark.asyncio
async def test_sequential_mode_never_overlaps(graph):
    for index in range(1, 4):
        graph.add_node(NodeKind.DELAY, node_id=f"d{index}")
    recorder = RecordingDelay()
    engine = ExecutionEngine(handlers={NodeKind.DELAY: recorder})

    await engine.execute(graph, mode=ExecutionOptions(parallel=False, batch_size=3))

    assert recorder.batches() == [["d1"], ["d2"], ["d3"]]


@pytest.mark.asyncio
async def test_parallel_failure_fails_the_run(graph):
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="ok", config=_add('a', 1))
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="bad", config=BROKEN)
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="later", config=_add('b', 2))

    run = await ExecutionEngine().execute(graph, mode=ExecutionOptions(parallel=True, batch_size=2))

    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "bad"
    assert "later" not in run.executed_node_ids


# ---------------------------------------------------------------------------
# 3. Conditional pruning
# ---------------------------------------------------------------------------


def _conditional_graph(check_value):
    graph = WorkflowGraph(workflow_id="wf-cond")
    graph.add_node(NodeKind.CONDITIONAL, node_id="c", config={
        'condition_type': 'equals', 'check_value': check_value, 'compare_value': 'go',
    })
    for node_id in ("t1", "t2", "t3", "t4"):
        graph.add_node(NodeKind.DATA_TRANSFORM, node_id=node_id, config=_add(node_id, True))
    graph.connect("c", "t1", handle="true")
    graph.connect("c", "t2", handle="false")
    graph.connect("t1", "t3")
    graph.connect("t2", "t4")
    return graph


@pytest.mark.asyncio
async def test_true_branch_runs_false_branch_pruned():
    run = await ExecutionEngine().execute(_conditional_graph('go'))

    assert run.status == RunStatus.COMPLETED
    assert run.executed_node_ids == ["c", "t1", "t3"]


@pytest.mark.asyncio
async def test_false_branch_runs_true_branch_pruned():
    run = await ExecutionEngine().execute(_conditional_graph('stop'))

    assert run.executed_node_ids == ["c", "t2", "t4"]
    assert run.results["c"]['branch'] == 'false'


@pytest.mark.asyncio
async def test_join_runs_if_any_branch_is_active():
    graph = _conditional_graph('go')
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="join")
    graph.connect("t3", "join")
    graph.connect("t4", "join")

    run = await ExecutionEngine().execute(graph)

    assert run.executed_node_ids == ["c", "t1", "t3", "join"]


@pytest.mark.asyncio
@pytest.mark.parametrize("check_value, expected", [
    ('go', ["c", "t1", "t3"]),
    ('stop', ["c", "t2", "t4"]),
])
async def test_parallel_batch_follows_only_the_selected_branch(check_value, expected):
    bus = StatusEventBus()
    synchronizer = StatusSynchronizer(bus)
    engine = ExecutionEngine(bus=bus, synchronizer=synchronizer, reset_delay=None)

    run = await engine.execute(_conditional_graph(check_value), mode=ExecutionOptions(parallel=True, batch_size=3))

    assert run.status == RunStatus.COMPLETED
    assert run.executed_node_ids == expected
    pruned = {"t1", "t2", "t3", "t4"} - set(expected)
    assert all(synchronizer.status_of(node_id)['status'] == 'idle' for node_id in pruned)


@pytest.mark.asyncio
async def test_failed_conditional_does_not_release_its_branches():
    graph = _conditional_graph('go')
    graph.update_config("c", {'condition_type': 'no_such_operator'})

    run = await ExecutionEngine().execute(graph, mode=ExecutionOptions(parallel=True, batch_size=3))

    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "c"
    assert run.executed_node_ids == []


# ---------------------------------------------------------------------------
# 4. Iterator bodies
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_iterator_runs_body_per_item(graph):
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="src", config=_add('items', [1, 2, 3]))
    graph.add_node(NodeKind.ITERATOR, node_id="it", config={'array_path': '{{Transform 1.items}}'})
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="body", config=_add('value', '{{Iterator 2.item}}'))
    graph.add_node(NodeKind.ARRAY_AGGREGATOR, node_id="agg")
    graph.connect("src", "it")
    graph.connect("it", "body")
    graph.connect("body", "agg")

    run = await ExecutionEngine().execute(graph)

    assert run.status == RunStatus.COMPLETED
    assert len(run.steps) == 6
    assert [s.node_id for s in run.steps] == ["src", "it", "body", "body", "body", "agg"]
    assert run.results["it"]['iterations'] == 3
    assert [entry['value'] for entry in run.results["agg"]['result']] == ['1', '2', '3']


@pytest.mark.asyncio
async def test_iterator_custom_item_variable(graph):
    graph.add_node(NodeKind.ITERATOR, node_id="it", config={
        'array_path': '["a", "b"]', 'item_variable': 'letter',
    })
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="body", config=_add('seen', '{{Iterator 1.letter}}-{{Iterator 1.index}}'))
    graph.add_node(NodeKind.ARRAY_AGGREGATOR, node_id="agg", config={'merge_mode': 'collect'})
    graph.connect("it", "body")
    graph.connect("body", "agg")

    run = await ExecutionEngine().execute(graph)

    seen = [entry['seen'] for entry in run.results["agg"]['result']["Transform 2"]]
    assert seen == ['a-0', 'b-1']


# ---------------------------------------------------------------------------
# 5. Router fan-out
# ---------------------------------------------------------------------------


def _router_graph(config, branch_a=None, branch_b=None):
    graph = WorkflowGraph(workflow_id="wf-router")
    graph.add_node(NodeKind.ROUTER, node_id="r", config=config)
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="a", config=branch_a or _add('a', 1))
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="b", config=branch_b or _add('b', 2))
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="join")
    graph.connect("r", "a")
    graph.connect("r", "b")
    graph.connect("a", "join")
    graph.connect("b", "join")
    return graph


def test_router_plan_excludes_shared_nodes():
    graph = _router_graph({})
    plan = ExecutionEngine().build_plan(graph, ExecutionEngine.resolve_executable(graph))

    assert [unit.node_id for unit in plan] == ["r", "join"]
    assert [[u.node_id for u in branch] for branch in plan[0].branches] == [["a"], ["b"]]


@pytest.mark.asyncio
async def test_router_branches_then_join():
    run = await ExecutionEngine().execute(_router_graph({'execution_mode': 'parallel'}))

    assert run.status == RunStatus.COMPLETED
    assert set(run.executed_node_ids) == {"r", "a", "b", "join"}
    assert run.executed_node_ids[-1] == "join"
    assert run.results["join"]['a'] == 1
    assert run.results["join"]['b'] == 2


@pytest.mark.asyncio
async def test_router_sequential_order():
    run = await ExecutionEngine().execute(_router_graph({'execution_mode': 'sequential'}))
    assert run.executed_node_ids == ["r", "a", "b", "join"]


@pytest.mark.asyncio
async def test_router_without_wait_cancels_slow_branch():
    graph = WorkflowGraph(workflow_id="wf-router-cancel")
    graph.add_node(NodeKind.ROUTER, node_id="r", config={'execution_mode': 'parallel', 'wait_for_all': False})
    graph.add_node(NodeKind.DATA_TRANSFORM, node_id="bad", config=BROKEN)
    graph.add_node(NodeKind.DELAY, node_id="slow", config={'duration': 5, 'unit': 's'})
    graph.connect("r", "bad")
    graph.connect("r", "slow")

    started = time.monotonic()
    run = await ExecutionEngine().execute(graph)

    assert time.monotonic() - started < 2
    assert run.status == RunStatus.FAILED
    assert run.current_node_id == "bad"
    assert "slow" not in run.executed_node_ids


# ---------------------------------------------------------------------------
# 6. Concurrency, events and direct invocation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_second_run_of_same_workflow_rejected(graph):
    graph.add_node(NodeKind.DELAY, node_id="d", config={'duration': 200, 'unit': 'ms'})
    engine = ExecutionEngine()

    first = asyncio.ensure_future(engine.execute(graph))
    await asyncio.sleep(0.05)
    assert engine.active_run(graph.id) is not None

    with pytest.raises(ConcurrentRunError):
        await engine.execute(graph)

    run = await first
    assert run.status == RunStatus.COMPLETED
    assert engine.active_run(graph.id) is None


@pytest.mark.asyncio
async def test_rejected_trigger_delivery_does_not_take_over_status(graph):
    graph.add_node(NodeKind.TRIGGER, node_id="t")
    graph.add_node(NodeKind.DELAY, node_id="d", config={'duration': 100, 'unit': 'ms'})
    graph.connect("t", "d")
    bus = StatusEventBus()
    synchronizer = StatusSynchronizer(bus, graph=graph)
    engine = ExecutionEngine(bus=bus, synchronizer=synchronizer, reset_delay=None)

    first = asyncio.ensure_future(
        engine.execute(graph, start_node_id="t", trigger_node_id="t", run_id="run-1")
    )
    await asyncio.sleep(0.03)

    with pytest.raises(ConcurrentRunError):
        await engine.execute(graph, start_node_id="t", trigger_node_id="t", run_id="run-2")
    with pytest.raises(ConcurrentRunError):
        await engine.deliver_trigger(graph, "t", "run-2")

    run = await first
    assert run.status == RunStatus.COMPLETED
    assert synchronizer.latest_run_id == "run-1"
    assert synchronizer.status_of("d")['status'] == 'completed'
    assert all(e.run_id == "run-1" for e in bus.history())


@pytest.mark.asyncio
async def test_runs_of_different_workflows_keep_separate_status():
    bus = StatusEventBus()
    synchronizer = StatusSynchronizer(bus)
    engine = ExecutionEngine(bus=bus, synchronizer=synchronizer, reset_delay=None)
    slow = WorkflowGraph(workflow_id="wf-a")
    slow.add_node(NodeKind.DELAY, node_id="a1", config={'duration': 100, 'unit': 'ms'})
    fast = WorkflowGraph(workflow_id="wf-b")
    fast.add_node(NodeKind.DELAY, node_id="b1", config={'duration': 20, 'unit': 'ms'})

    run_a, run_b = await asyncio.gather(engine.execute(slow), engine.execute(fast))

    assert run_a.status == RunStatus.COMPLETED
    assert run_b.status == RunStatus.COMPLETED
    assert synchronizer.latest_run_for("wf-a") == run_a.id
    assert synchronizer.latest_run_for("wf-b") == run_b.id
    assert synchronizer.status_of("a1", "wf-a")['status'] == 'completed'
    assert synchronizer.status_of("b1", "wf-b")['status'] == 'completed'
    assert set(synchronizer.view("wf-a")) == {"a1"}
    assert set(synchronizer.view("wf-b")) == {"b1"}


@pytest.mark.asyncio
async def test_fired_resets_are_released(chain_graph):
    bus = StatusEventBus()
    synchronizer = StatusSynchronizer(bus)
    engine = ExecutionEngine(bus=bus, synchronizer=synchronizer, reset_delay=0)

    for _ in range(5):
        await engine.execute(chain_graph)
    await asyncio.sleep(0.02)

    assert engine.pending_resets == 0
    assert synchronizer.view() == {}


@pytest.mark.asyncio
async def test_run_publishes_status_and_synchronizer_follows(chain_graph):
    bus = StatusEventBus()
    synchronizer = StatusSynchronizer(bus)
    engine = ExecutionEngine(bus=bus, synchronizer=synchronizer, reset_delay=None)

    run = await engine.execute(chain_graph)

    events = bus.history(run_id=run.id)
    assert events[-1].run_status == RunStatus.COMPLETED
    assert all(e.source == EventSource.RUN_LIFECYCLE for e in events)

    view = synchronizer.view()
    assert set(view) == {"n1", "n2", "n3"}
    assert all(v['status'] == 'completed' for v in view.values())
    assert all(v['has_completed_execution'] for v in view.values())


@pytest.mark.asyncio
async def test_status_resets_after_delay(chain_graph):
    bus = StatusEventBus()
    synchronizer = StatusSynchronizer(bus)
    engine = ExecutionEngine(bus=bus, synchronizer=synchronizer, reset_delay=0.01)

    await engine.execute(chain_graph)
    assert synchronizer.view() != {}

    await asyncio.sleep(0.05)
    assert synchronizer.view() == {}


@pytest.mark.asyncio
async def test_history_records_start_and_finish(chain_graph, temp_storage):
    from src.core.history import HistoryStore

    history = HistoryStore(temp_storage)
    run = await ExecutionEngine(history=history).execute(chain_graph)

    stored = history.get_run(run.id)
    assert stored.status == RunStatus.COMPLETED
    assert stored.executed_node_ids == ["n1", "n2", "n3"]
    assert len(stored.steps) == 3


@pytest.mark.asyncio
async def test_invoke_node_uses_last_results(chain_graph):
    bus = StatusEventBus()
    engine = ExecutionEngine(bus=bus, reset_delay=None)
    chain_graph.get_node("n1").last_result = {'name': 'Ada'}
    chain_graph.update_config("n2", _add('hello', '{{Transform 1.name}}'))

    result = await engine.invoke_node(chain_graph, "n2")

    assert result == {'name': 'Ada', 'hello': 'Ada'}
    assert chain_graph.get_node("n2").last_result == result
    assert {e.source for e in bus.history()} == {EventSource.DIRECT_INVOCATION}
