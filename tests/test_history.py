"""
Tests for run history, stale-run cleanup and flashback projection
"""
from datetime import timedelta

from src.core.execution.records import ExecutionRun, Step, utc_now
from src.core.history import FlashbackProjector, HistoryStore, STALE_RUN_MESSAGE
from src.core.types import RunStatus, StepStatus


def _finished_run(run_id, workflow_id="wf-1", minutes_ago=0, executed=None, results=None):
    started = utc_now() - timedelta(minutes=minutes_ago)
    run = ExecutionRun(id=run_id, workflow_id=workflow_id, started_at=started)
    run.executed_node_ids = list(executed or [])
    run.results = dict(results or {})
    run.steps = [
        Step(node_id=n, node_label=n, status=StepStatus.COMPLETED, duration=0.1, timestamp=0.0, result=run.results.get(n))
        for n in run.executed_node_ids
    ]
    run.status = RunStatus.COMPLETED
    run.completed_at = started + timedelta(seconds=1)
    return run


# ---------------------------------------------------------------------------
# 1. Records
# ---------------------------------------------------------------------------


def test_run_record_round_trip():
    run = _finished_run("r1", executed=["n1"], results={"n1": {"text": "hi"}})
    run.error_message = None
    run.webhook_request_id = "req-1"

    data = run.to_dict()
    assert data['executed_nodes'] == ["n1"]
    assert data['result_data'] == {'node_results': {"n1": {"text": "hi"}}}
    assert data['steps'][0]['result'] == {"text": "hi"}

    restored = ExecutionRun.from_dict(data)
    assert restored.to_dict() == data
    assert restored.duration == 1.0


def test_error_step_serializes_error_fields():
    step = Step(node_id="h", node_label="HTTP 1", status=StepStatus.ERROR, duration=0.2, timestamp=1.0,
                error="HTTP 500", error_status=500, error_body="boom")
    data = step.to_dict()
    assert 'result' not in data
    assert data['error_status'] == 500
    assert Step.from_dict(data).error_body == "boom"


# ---------------------------------------------------------------------------
# 2. History store
# ---------------------------------------------------------------------------


class TestHistoryStore:

    def test_start_then_finish(self, temp_storage):
        history = HistoryStore(temp_storage)
        run = ExecutionRun(id="r1", workflow_id="wf-1")
        history.start_run(run)

        stored = history.get_run("r1")
        assert stored.status == RunStatus.RUNNING
        assert stored.completed_at is None

        run.status = RunStatus.FAILED
        run.error_message = "Transform 2: unknown operation"
        run.current_node_id = "n2"
        run.completed_at = utc_now()
        history.finish_run(run)

        stored = history.get_run("r1")
        assert stored.status == RunStatus.FAILED
        assert stored.current_node_id == "n2"
        assert stored.error_message == "Transform 2: unknown operation"

    def test_finish_without_start_saves(self, temp_storage):
        history = HistoryStore(temp_storage)
        history.finish_run(_finished_run("late"))
        assert history.get_run("late").status == RunStatus.COMPLETED

    def test_list_most_recent_first(self, temp_storage):
        history = HistoryStore(temp_storage)
        for run_id, minutes_ago in (("oldest", 30), ("newest", 1), ("middle", 10)):
            history.finish_run(_finished_run(run_id, minutes_ago=minutes_ago))
        history.finish_run(_finished_run("elsewhere", workflow_id="wf-2"))

        runs = history.list_runs("wf-1")
        assert [r.id for r in runs] == ["newest", "middle", "oldest"]
        assert [r.id for r in history.list_runs("wf-1", limit=2)] == ["newest", "middle"]

    def test_cleanup_stale_only_touches_old_running_runs(self, temp_storage):
        history = HistoryStore(temp_storage)
        history.start_run(ExecutionRun(id="stuck", workflow_id="wf-1", started_at=utc_now() - timedelta(minutes=30)))
        history.start_run(ExecutionRun(id="fresh", workflow_id="wf-1"))
        history.finish_run(_finished_run("done", minutes_ago=60))

        cleaned = history.cleanup_stale(threshold_minutes=10)

        assert cleaned == ["stuck"]
        stuck = history.get_run("stuck")
        assert stuck.status == RunStatus.FAILED
        assert stuck.error_message == STALE_RUN_MESSAGE
        assert stuck.completed_at is not None
        assert history.get_run("fresh").status == RunStatus.RUNNING
        assert history.get_run("done").status == RunStatus.COMPLETED

    def test_unknown_run(self, temp_storage):
        assert HistoryStore(temp_storage).get_run("missing") is None


# ---------------------------------------------------------------------------
# 3. Flashback
# ---------------------------------------------------------------------------


class TestFlashback:

    def test_enter_projects_executed_subgraph(self, chain_graph):
        run = _finished_run("r1", workflow_id=chain_graph.id, executed=["n1", "n2"],
                            results={"n1": {"a": 1}, "n2": {}})
        projector = FlashbackProjector(chain_graph)

        view = projector.enter(run)

        assert projector.active
        assert [n.id for n in chain_graph.nodes] == ["n1", "n2"]
        assert [e.id for e in chain_graph.edges] == ["e12"]
        assert chain_graph.get_node("n1").last_result == {"a": 1}
        assert view["n1"] == {'status': 'completed', 'has_result': True, 'result': {"a": 1}, 'has_completed_execution': True}
        assert view["n2"]['has_result'] is False

    def test_exit_restores_document(self, chain_graph):
        before = chain_graph.to_document()
        projector = FlashbackProjector(chain_graph)
        projector.enter(_finished_run("r1", executed=["n1"]))

        assert projector.exit() is True
        assert chain_graph.to_document() == before
        assert chain_graph.predecessors("n3") == ["n1", "n2"]
        assert projector.exit() is False

    def test_switching_runs_keeps_original_snapshot(self, chain_graph):
        before = chain_graph.to_document()
        projector = FlashbackProjector(chain_graph)

        projector.enter(_finished_run("r1", executed=["n1"]))
        projector.enter(_finished_run("r2", executed=["n2", "n3"]).to_dict())

        assert [n.id for n in chain_graph.nodes] == ["n2", "n3"]
        assert projector.run.id == "r2"

        projector.exit()
        assert chain_graph.to_document() == before
