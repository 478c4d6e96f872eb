"""
Local JSON storage for solo mode
Stores data in ~/.flowbatch-core/data/ as JSON files
Only accessible to the local user
"""
import os
import json
import threading
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
from uuid import uuid4
from .base import StorageInterface
from ..utils.logger import get_logger

logger = get_logger(__name__)


class LocalJSONStorage(StorageInterface):
    """Local JSON file storage for solo mode, one file per record"""

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize local JSON storage

        Args:
            storage_path: Base path for storage (default: ~/.flowbatch-core/data/)
        """
        if storage_path is None:
            home = Path.home()
            self.base_path = home / ".flowbatch-core" / "data"
        else:
            self.base_path = Path(storage_path)

        self.executions_path = self.base_path / "executions"
        self.webhooks_path = self.base_path / "webhooks"
        self.requests_path = self.base_path / "webhook_requests"

        for path in [self.base_path, self.executions_path, self.webhooks_path, self.requests_path]:
            path.mkdir(parents=True, exist_ok=True)
            # Set file permissions (user only)
            os.chmod(path, 0o700)

        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading {path.name}: {e}")
            return None

    def _write(self, path: Path, data: Dict[str, Any]) -> None:
        with open(path, 'w') as f:
            json.dump(data, f, indent=2, default=str)
        os.chmod(path, 0o600)  # User read/write only

    def _read_all(self, directory: Path) -> List[Dict[str, Any]]:
        records = []
        for path in directory.glob("*.json"):
            record = self._read(path)
            if record is not None:
                records.append(record)
        return records

    def _update(self, path: Path, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._read(path)
            if record is None:
                return None
            record.update(updates)
            self._write(path, record)
            return record

    # ------------------------------------------------------------------
    # Execution runs
    # ------------------------------------------------------------------

    def save_execution(self, execution: Dict[str, Any]) -> str:
        execution_id = execution.get('id') or str(uuid4())
        record = dict(execution, id=execution_id)
        with self._lock:
            self._write(self.executions_path / f"{execution_id}.json", record)
        return execution_id

    def update_execution(self, execution_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(self.executions_path / f"{execution_id}.json", updates)

    def get_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self.executions_path / f"{execution_id}.json")

    def list_executions(self, workflow_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        runs = [r for r in self._read_all(self.executions_path) if r.get('workflow_id') == workflow_id]
        runs.sort(key=lambda r: r.get('started_at') or '', reverse=True)
        return runs[:limit]

    def list_running_executions(self) -> List[Dict[str, Any]]:
        return [r for r in self._read_all(self.executions_path) if r.get('status') == 'running']

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def save_webhook(self, webhook: Dict[str, Any]) -> str:
        webhook_id = webhook.get('id') or str(uuid4())
        record = dict(webhook, id=webhook_id)
        record.setdefault('status', 'active')
        with self._lock:
            self._write(self.webhooks_path / f"{webhook_id}.json", record)
        return webhook_id

    def get_webhook(self, webhook_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self.webhooks_path / f"{webhook_id}.json")

    def get_webhook_by_path(self, url_path: str) -> Optional[Dict[str, Any]]:
        for webhook in self._read_all(self.webhooks_path):
            if webhook.get('url_path') == url_path and webhook.get('status') == 'active':
                return webhook
        return None

    # ------------------------------------------------------------------
    # Webhook requests
    # ------------------------------------------------------------------

    def save_webhook_request(self, request: Dict[str, Any]) -> str:
        request_id = request.get('id') or str(uuid4())
        record = dict(request, id=request_id)
        record.setdefault('created_at', datetime.now(timezone.utc).isoformat())
        with self._lock:
            self._write(self.requests_path / f"{request_id}.json", record)
        return request_id

    def update_webhook_request(self, request_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update(self.requests_path / f"{request_id}.json", updates)

    def list_webhook_requests(self, webhook_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        requests = [r for r in self._read_all(self.requests_path) if r.get('webhook_id') == webhook_id]
        requests.sort(key=lambda r: r.get('created_at') or '', reverse=True)
        return requests[:limit]
