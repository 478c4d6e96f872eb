"""
Execution records: run options, steps and runs
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from ..types import (
    NodeID, RunID, WorkflowID, RunStatus, StepStatus,
    StepData, ExecutionRunData, WorkflowSettings,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (naive values are taken as UTC)"""
    if value is None or isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ExecutionOptions:
    """How a run schedules its nodes"""
    parallel: bool = False
    batch_size: int = 3

    @classmethod
    def from_settings(cls, settings: Optional[WorkflowSettings]) -> "ExecutionOptions":
        settings = settings or {}
        return cls(
            parallel=bool(settings.get('parallel_mode', False)),
            batch_size=max(1, int(settings.get('batch_size', 3))),
        )


@dataclass
class Step:
    """Record of one node's execution within a run"""
    node_id: NodeID
    node_label: str
    status: StepStatus
    duration: float
    timestamp: float
    result: Any = None
    error: Optional[str] = None
    error_status: Optional[int] = None
    error_body: Any = None

    def to_dict(self) -> StepData:
        data: StepData = {
            'node_id': self.node_id,
            'node_label': self.node_label,
            'status': self.status.value,
            'duration': self.duration,
            'timestamp': self.timestamp,
        }
        if self.status == StepStatus.COMPLETED:
            data['result'] = self.result
        else:
            data['error'] = self.error
            data['error_status'] = self.error_status
            data['error_body'] = self.error_body
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        return cls(
            node_id=data['node_id'],
            node_label=data.get('node_label', data['node_id']),
            status=StepStatus(data.get('status', StepStatus.COMPLETED.value)),
            duration=float(data.get('duration', 0.0)),
            timestamp=float(data.get('timestamp', 0.0)),
            result=data.get('result'),
            error=data.get('error'),
            error_status=data.get('error_status'),
            error_body=data.get('error_body'),
        )


@dataclass
class ExecutionRun:
    """
    One execution of a (sub)graph

    Mutated only by the engine while running; treated as immutable once terminal.
    """
    id: RunID
    workflow_id: WorkflowID
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    steps: List[Step] = field(default_factory=list)
    executed_node_ids: List[NodeID] = field(default_factory=list)
    current_node_id: Optional[NodeID] = None
    results: Dict[NodeID, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    webhook_request_id: Optional[str] = None
    user_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    @property
    def duration(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> ExecutionRunData:
        return {
            'id': self.id,
            'workflow_id': self.workflow_id,
            'status': self.status.value,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'current_node_id': self.current_node_id,
            'executed_nodes': list(self.executed_node_ids),
            'steps': [step.to_dict() for step in self.steps],
            'result_data': {'node_results': self.results},
            'error_message': self.error_message,
            'webhook_request_id': self.webhook_request_id,
            'user_id': self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRun":
        result_data = data.get('result_data') or {}
        return cls(
            id=data['id'],
            workflow_id=data['workflow_id'],
            status=RunStatus(data.get('status', RunStatus.RUNNING.value)),
            started_at=parse_timestamp(data.get('started_at')) or utc_now(),
            completed_at=parse_timestamp(data.get('completed_at')),
            steps=[Step.from_dict(s) for s in data.get('steps') or []],
            executed_node_ids=list(data.get('executed_nodes') or []),
            current_node_id=data.get('current_node_id'),
            results=dict(result_data.get('node_results') or {}),
            error_message=data.get('error_message'),
            webhook_request_id=data.get('webhook_request_id'),
            user_id=data.get('user_id'),
        )
