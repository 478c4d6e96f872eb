"""
API routes for FlowBatch Core
"""
import json
import time
from urllib.parse import parse_qsl
from uuid import uuid4

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List

from config import Config
from ..core.container import ServiceContainer
from ..core.errors import ConcurrentRunError, GraphIntegrityError
from ..core.execution.node_base import run_blocking
from ..core.execution.records import ExecutionOptions, ExecutionRun
from ..core.graph import WorkflowGraph
from ..core.types import NodeKind, RunStatus
from ..utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def get_container(request: Request) -> ServiceContainer:
    """Get ServiceContainer from app state (injected by FastAPI)"""
    return request.app.state.container


# Request/Response models
class RunWorkflowRequest(BaseModel):
    """Request model for a manual workflow run"""
    workflow: Dict[str, Any] = Field(..., description="Workflow document {nodes, edges, settings}")
    start_node_id: Optional[str] = Field(default=None, description="Node to start from")
    parallel: Optional[bool] = Field(default=None, description="Override settings.parallel_mode")
    batch_size: Optional[int] = Field(default=None, ge=1, description="Override settings.batch_size")
    trigger_payload: Optional[Dict[str, Any]] = Field(default=None, description="Payload exposed by trigger nodes")


class CleanupRequest(BaseModel):
    threshold_minutes: Optional[float] = Field(default=None, gt=0)


class CleanupResponse(BaseModel):
    cleaned: List[str]
    count: int


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

async def read_request_body(request: Request) -> Any:
    """Parse an inbound body by content type (JSON, url-encoded form, or raw text)"""
    raw = (await request.body()).decode('utf-8', errors='replace')
    content_type = request.headers.get('content-type', '')
    if not raw.strip():
        return {}
    if 'application/x-www-form-urlencoded' in content_type:
        return dict(parse_qsl(raw, keep_blank_values=True))
    try:
        return json.loads(raw)
    except ValueError:
        if 'application/json' in content_type:
            logger.warning("Webhook body declared JSON but did not parse, keeping raw text")
        return {'raw_body': raw}


def check_api_keys(webhook: Dict[str, Any], headers: Dict[str, str]) -> bool:
    """True if the webhook has no keys or any configured key matches its header"""
    api_keys = webhook.get('api_keys') or []
    if not api_keys:
        return True
    for api_key in api_keys:
        header = str(api_key.get('header', '')).lower()
        if header and headers.get(header) == api_key.get('key'):
            return True
    return False


def find_trigger(graph: WorkflowGraph, webhook_id: str) -> Optional[str]:
    """The trigger bound to this webhook, else the first trigger in the graph"""
    triggers = [n for n in graph.nodes if n.kind == NodeKind.TRIGGER]
    for node in triggers:
        if node.config.get('selected_hook') == webhook_id:
            return node.id
    return triggers[0].id if triggers else None


def webhook_reply(run: ExecutionRun, request_body: Any) -> Dict[str, Any]:
    """Status, body and headers of the synchronous reply to a webhook call"""
    for node_id in run.executed_node_ids:
        result = run.results.get(node_id)
        if isinstance(result, dict) and isinstance(result.get('webhook_response'), dict):
            response = result['webhook_response']
            return {
                'status': int(response.get('status_code') or 200),
                'body': response.get('body'),
                'headers': response.get('headers') or {},
            }

    if run.status == RunStatus.FAILED:
        return {
            'status': 500,
            'body': {
                'error': 'Workflow execution failed',
                'message': run.error_message,
                'run_id': run.id,
                'data': request_body,
            },
            'headers': {},
        }

    return {
        'status': 200,
        'body': {
            'message': 'Webhook received successfully',
            'run_id': run.id,
            'status': run.status.value,
            'executed_nodes': run.executed_node_ids,
            'data': request_body,
        },
        'headers': {},
    }


# ------------------------------------------------------------------
# Webhook delivery
# ------------------------------------------------------------------

@router.post("/webhooks/{url_path:path}")
async def receive_webhook(url_path: str, request: Request, container: ServiceContainer = Depends(get_container)):
    """Run the workflow bound to a webhook and reply with its webhook-response node"""
    started = time.time()
    storage = container.storage

    webhook = await run_blocking(storage.get_webhook_by_path, url_path)
    if not webhook or webhook.get('status', 'active') != 'active':
        raise HTTPException(status_code=404, detail=f"No active webhook for path: {url_path}")

    headers = {k.lower(): v for k, v in request.headers.items()}
    if not check_api_keys(webhook, headers):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    request_body = await read_request_body(request)
    document = webhook.get('workflow_data')
    if not document:
        raise HTTPException(status_code=404, detail=f"Webhook {webhook['id']} has no workflow")

    try:
        graph = WorkflowGraph.from_document(document)
    except GraphIntegrityError as e:
        raise HTTPException(status_code=400, detail=str(e))

    trigger_id = find_trigger(graph, webhook['id'])
    if trigger_id is None:
        raise HTTPException(status_code=400, detail="Workflow has no trigger node")

    request_id = await run_blocking(storage.save_webhook_request, {
        'id': str(uuid4()),
        'webhook_id': webhook['id'],
        'request_body': request_body,
        'request_headers': headers,
        'response_body': {'message': 'Processing...'},
        'response_status': 200,
    })

    try:
        run = await container.engine.execute(
            graph,
            start_node_id=trigger_id,
            trigger_node_id=trigger_id,
            trigger_payload={
                'body': request_body,
                'headers': headers,
                'webhook': {'id': webhook['id'], 'name': webhook.get('name')},
            },
            webhook_request_id=request_id,
        )
    except ConcurrentRunError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Webhook {url_path} failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    reply = webhook_reply(run, request_body)
    processing_ms = int((time.time() - started) * 1000)
    await run_blocking(storage.update_webhook_request, request_id, {
        'response_body': reply['body'],
        'response_status': reply['status'],
        'processing_time_ms': processing_ms,
    })
    logger.info(f"Webhook {url_path} answered {reply['status']} in {processing_ms}ms (run {run.id})")

    return JSONResponse(content=reply['body'], status_code=reply['status'], headers=reply['headers'])


# ------------------------------------------------------------------
# Runs and history
# ------------------------------------------------------------------

@router.post("/workflows/run")
async def run_workflow(request: RunWorkflowRequest, container: ServiceContainer = Depends(get_container)):
    """Run a workflow document and return the terminal run record"""
    try:
        graph = WorkflowGraph.from_document(request.workflow)
        options = ExecutionOptions.from_settings(graph.settings)
        if request.parallel is not None:
            options.parallel = request.parallel
        if request.batch_size is not None:
            options.batch_size = request.batch_size

        run = await container.engine.execute(
            graph,
            start_node_id=request.start_node_id,
            mode=options,
            trigger_payload=request.trigger_payload,
        )
        return run.to_dict()
    except ConcurrentRunError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except GraphIntegrityError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/workflows/{workflow_id}/executions")
async def list_executions(
    workflow_id: str,
    limit: int = Config.HISTORY_LIMIT,
    container: ServiceContainer = Depends(get_container)
):
    """Runs of a workflow, most recent first"""
    try:
        runs = await run_blocking(container.history.list_runs, workflow_id, limit)
        return {"workflow_id": workflow_id, "executions": [run.to_dict() for run in runs]}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/executions/{execution_id}")
async def get_execution(execution_id: str, container: ServiceContainer = Depends(get_container)):
    try:
        run = await run_blocking(container.history.get_run, execution_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return run.to_dict()
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/executions/cleanup", response_model=CleanupResponse)
async def cleanup_executions(request: CleanupRequest, container: ServiceContainer = Depends(get_container)):
    """Fail runs stuck in running for longer than the threshold"""
    threshold = request.threshold_minutes or Config.STALE_RUN_MINUTES
    try:
        cleaned = await run_blocking(container.history.cleanup_stale, threshold)
        return CleanupResponse(cleaned=cleaned, count=len(cleaned))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/status")
async def node_status(workflow_id: Optional[str] = None, container: ServiceContainer = Depends(get_container)):
    """Node-status view of a workflow's latest run (default: the most recently started workflow)"""
    synchronizer = container.synchronizer
    if workflow_id is None:
        return {
            "run_id": synchronizer.latest_run_id,
            "nodes": synchronizer.view(),
        }
    return {
        "workflow_id": workflow_id,
        "run_id": synchronizer.latest_run_for(workflow_id),
        "nodes": synchronizer.view(workflow_id),
    }
