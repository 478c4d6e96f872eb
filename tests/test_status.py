"""
Tests for the status event bus and the status synchronizer
"""
import itertools

import pytest

from src.core.events import StatusEvent, StatusEventBus
from src.core.status import StatusSynchronizer, has_content
from src.core.types import EventSource, NodeKind, RunStatus


def _event(run_id="run-1", status=RunStatus.RUNNING, executed=None, current=None, results=None,
           source=EventSource.RUN_LIFECYCLE, related=None, workflow_id=None):
    return StatusEvent(
        source=source,
        run_id=run_id,
        run_status=status,
        executed_node_ids=list(executed or []),
        current_node_id=current,
        results=dict(results or {}),
        related_node_ids=list(related or []),
        workflow_id=workflow_id,
    )


def _run_events():
    return [
        _event(current="n1"),
        _event(executed=["n1"], results={"n1": {"v": 1}}),
        _event(executed=["n1"], current="n2"),
        _event(status=RunStatus.COMPLETED, executed=["n1", "n2"], results={"n1": {"v": 1}, "n2": {"v": 2}}),
    ]


# ---------------------------------------------------------------------------
# 1. Event bus
# ---------------------------------------------------------------------------


class TestStatusEventBus:

    @pytest.mark.asyncio
    async def test_subscribers_filtered_by_source(self):
        bus = StatusEventBus()
        received = []

        async def on_trigger(event):
            received.append(event.source)

        bus.subscribe([EventSource.TRIGGER_DELIVERY], on_trigger)
        await bus.publish(_event())
        await bus.publish(_event(source=EventSource.TRIGGER_DELIVERY))

        assert received == [EventSource.TRIGGER_DELIVERY]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        bus = StatusEventBus()
        received = []

        async def broken(event):
            raise RuntimeError("boom")

        async def healthy(event):
            received.append(event.run_id)

        bus.subscribe([EventSource.RUN_LIFECYCLE], broken)
        bus.subscribe([EventSource.RUN_LIFECYCLE], healthy)
        await bus.publish(_event(run_id="r"))

        assert received == ["r"]

    @pytest.mark.asyncio
    async def test_workflow_filter_and_unsubscribe(self):
        bus = StatusEventBus()
        received = []

        async def handler(event):
            received.append(event.workflow_id)

        sub_id = bus.subscribe([EventSource.RUN_LIFECYCLE], handler, filter_workflow="wf-a")
        other = _event()
        other.workflow_id = "wf-b"
        mine = _event()
        mine.workflow_id = "wf-a"
        await bus.publish(other)
        await bus.publish(mine)
        assert received == ["wf-a"]

        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False
        assert bus.subscription_count == 0

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        bus = StatusEventBus(max_history=3)
        for index in range(5):
            await bus.publish(_event(run_id=f"r{index}"))

        assert [e.run_id for e in bus.history()] == ["r2", "r3", "r4"]
        assert [e.run_id for e in bus.history(run_id="r3")] == ["r3"]

    def test_event_to_dict(self):
        data = _event(status=RunStatus.FAILED, current="n1").to_dict()
        assert data['run_status'] == 'failed'
        assert data['source'] == 'run_lifecycle'
        assert data['current_node_id'] == 'n1'


# ---------------------------------------------------------------------------
# 2. Reduction rules
# ---------------------------------------------------------------------------


class TestReduction:

    def test_running_then_completed(self):
        sync = StatusSynchronizer(StatusEventBus())
        events = _run_events()

        sync.apply(events[0])
        assert sync.status_of("n1")['status'] == 'running'

        sync.apply(events[2])
        assert sync.status_of("n1")['status'] == 'completed'
        assert sync.status_of("n2")['status'] == 'running'

        sync.apply(events[3])
        view = sync.view()
        assert view["n2"] == {'status': 'completed', 'has_result': True, 'result': {"v": 2}, 'has_completed_execution': True}
        assert sync.status_of("never-mentioned")['status'] == 'idle'

    def test_idempotent(self):
        once = StatusSynchronizer(StatusEventBus())
        twice = StatusSynchronizer(StatusEventBus())
        for event in _run_events():
            once.apply(event)
            twice.apply(event)
            twice.apply(event)

        assert once.view() == twice.view()

    def test_final_view_independent_of_arrival_order(self):
        expected = None
        for ordering in itertools.permutations(_run_events()):
            sync = StatusSynchronizer(StatusEventBus())
            for event in ordering:
                sync.apply(event)
            if expected is None:
                expected = sync.view()
            assert sync.view() == expected

        assert expected["n1"]['status'] == 'completed'
        assert expected["n1"]['result'] == {"v": 1}

    def test_terminal_status_is_sticky(self):
        sync = StatusSynchronizer(StatusEventBus())
        sync.apply(_event(status=RunStatus.FAILED, executed=["n1"], current="n2"))

        accepted = sync.apply(_event(executed=["n1"], current="n2"))

        assert accepted is False
        assert sync.status_of("n2")['status'] == 'error'
        assert sync.status_of("n1")['status'] == 'error'

    def test_failed_nodes_carry_no_result(self):
        sync = StatusSynchronizer(StatusEventBus())
        sync.apply(_event(executed=["n1"], results={"n1": "partial"}))
        sync.apply(_event(status=RunStatus.FAILED, executed=["n1"], current="n2"))

        assert sync.status_of("n2") == {'status': 'error', 'has_result': False, 'result': None, 'has_completed_execution': False}

    def test_empty_results_are_not_content(self):
        assert has_content({}) is False
        assert has_content("") is False
        assert has_content(0) is True
        assert has_content(None) is False


# ---------------------------------------------------------------------------
# 3. Run scoping and lifecycle
# ---------------------------------------------------------------------------


class TestRunScoping:

    def test_new_run_replaces_old_run_nodes(self):
        sync = StatusSynchronizer(StatusEventBus())
        sync.apply(_event(run_id="old", status=RunStatus.COMPLETED, executed=["a"], results={"a": 1}))

        sync.apply(_event(run_id="new", current="b"))

        assert sync.latest_run_id == "new"
        assert set(sync.view()) == {"b"}

    def test_late_events_from_superseded_run_ignored(self):
        sync = StatusSynchronizer(StatusEventBus())
        sync.apply(_event(run_id="old", current="a"))
        sync.apply(_event(run_id="new", current="b"))

        accepted = sync.apply(_event(run_id="old", status=RunStatus.COMPLETED, executed=["a"]))

        assert accepted is False
        assert "a" not in sync.view()

    def test_reset_only_for_latest_run(self):
        sync = StatusSynchronizer(StatusEventBus())
        sync.apply(_event(run_id="old", current="a"))
        sync.apply(_event(run_id="new", status=RunStatus.COMPLETED, executed=["b"]))

        assert sync.reset("old") is False
        assert "b" in sync.view()
        assert sync.reset("new") is True
        assert sync.view() == {}

    def test_trigger_delivery_marks_trigger_and_successors(self, graph):
        trigger = graph.add_node(NodeKind.TRIGGER, node_id="t")
        graph.add_node(NodeKind.AI_COMPLETION, node_id="g")
        graph.add_node(NodeKind.HTTP_REQUEST, node_id="h")
        graph.connect(trigger.id, "g")

        sync = StatusSynchronizer(StatusEventBus(), graph=graph)
        sync.apply(_event(source=EventSource.TRIGGER_DELIVERY, current="t", related=["h"]))

        view = sync.view()
        assert {node_id: v['status'] for node_id, v in view.items()} == {"t": "running", "g": "running", "h": "running"}

    def test_failed_run_settles_unreached_trigger_successors(self, graph):
        graph.add_node(NodeKind.TRIGGER, node_id="t")
        graph.add_node(NodeKind.AI_COMPLETION, node_id="g")
        graph.add_node(NodeKind.HTTP_REQUEST, node_id="h")
        graph.connect("t", "g")
        graph.connect("t", "h")

        sync = StatusSynchronizer(StatusEventBus(), graph=graph)
        sync.apply(_event(source=EventSource.TRIGGER_DELIVERY, current="t"))
        sync.apply(_event(status=RunStatus.FAILED, executed=["t"], current="g"))

        assert sync.status_of("t")['status'] == 'error'
        assert sync.status_of("g")['status'] == 'error'
        assert sync.status_of("h")['status'] == 'idle'
        assert "h" not in sync.view()

    def test_completed_run_settles_unreached_trigger_successors(self, graph):
        graph.add_node(NodeKind.TRIGGER, node_id="t")
        graph.add_node(NodeKind.AI_COMPLETION, node_id="g")
        graph.add_node(NodeKind.HTTP_REQUEST, node_id="h")
        graph.connect("t", "g")
        graph.connect("t", "h")

        sync = StatusSynchronizer(StatusEventBus(), graph=graph)
        sync.apply(_event(source=EventSource.TRIGGER_DELIVERY, current="t"))
        sync.apply(_event(status=RunStatus.COMPLETED, executed=["t", "g"], results={"g": {"text": "hi"}}))

        assert {node_id: v['status'] for node_id, v in sync.view().items()} == {"t": "completed", "g": "completed"}

    def test_tracked_runs_are_bounded(self):
        sync = StatusSynchronizer(StatusEventBus(), max_tracked_runs=3)

        for index in range(5):
            sync.apply(_event(run_id=f"run-{index}", status=RunStatus.COMPLETED, executed=["n1"]))

        assert sync.tracked_runs == 3
        assert sync.latest_run_id == "run-4"
        assert sync.apply(_event(run_id="run-3", current="n1")) is False


# ---------------------------------------------------------------------------
# 4. Per-workflow views
# ---------------------------------------------------------------------------


class TestWorkflowViews:

    def test_workflows_do_not_overwrite_each_other(self):
        sync = StatusSynchronizer(StatusEventBus())
        sync.apply(_event(run_id="ra", current="a1", workflow_id="wf-a"))
        sync.apply(_event(run_id="rb", current="b1", workflow_id="wf-b"))

        accepted = sync.apply(_event(run_id="ra", status=RunStatus.COMPLETED, executed=["a1"], workflow_id="wf-a"))

        assert accepted is True
        assert sync.status_of("a1", "wf-a")['status'] == 'completed'
        assert sync.status_of("b1", "wf-b")['status'] == 'running'
        assert "a1" not in sync.view("wf-b")
        assert sync.latest_run_id == "rb"
        assert sync.latest_run_for("wf-a") == "ra"
        assert sorted(sync.workflows()) == ["wf-a", "wf-b"]

    def test_reset_clears_only_its_workflow(self):
        sync = StatusSynchronizer(StatusEventBus())
        sync.apply(_event(run_id="ra", status=RunStatus.COMPLETED, executed=["a1"], workflow_id="wf-a"))
        sync.apply(_event(run_id="rb", status=RunStatus.COMPLETED, executed=["b1"], workflow_id="wf-b"))

        assert sync.reset("ra") is True

        assert sync.view("wf-a") == {}
        assert set(sync.view("wf-b")) == {"b1"}

    def test_listener_receives_changed_workflow_view(self):
        sync = StatusSynchronizer(StatusEventBus())
        views = []
        sync.on_change(views.append)

        sync.apply(_event(run_id="ra", current="a1", workflow_id="wf-a"))
        sync.apply(_event(run_id="rb", current="b1", workflow_id="wf-b"))

        assert [set(v) for v in views] == [{"a1"}, {"b1"}]

    @pytest.mark.asyncio
    async def test_events_arrive_through_the_bus(self):
        bus = StatusEventBus()
        sync = StatusSynchronizer(bus)

        await bus.publish(_event(source=EventSource.DIRECT_INVOCATION, status=RunStatus.COMPLETED,
                                 executed=["n1"], results={"n1": {"ok": True}}))

        assert sync.status_of("n1")['result'] == {"ok": True}

    def test_dispose_detaches(self):
        bus = StatusEventBus()
        sync = StatusSynchronizer(bus)
        assert bus.subscription_count == 1

        sync.dispose()

        assert bus.subscription_count == 0
        assert sync.disposed
        assert sync.apply(_event(current="n1")) is False
        assert sync.view() == {}

    def test_on_change_listener(self):
        sync = StatusSynchronizer(StatusEventBus())
        views = []
        unsubscribe = sync.on_change(views.append)

        sync.apply(_event(current="n1"))
        unsubscribe()
        sync.apply(_event(executed=["n1"], current="n2"))

        assert len(views) == 1
        assert views[0]["n1"]['status'] == 'running'
