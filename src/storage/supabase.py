"""
Supabase storage for prod mode
Tables: workflow_executions, webhooks, webhook_requests
"""
from typing import Dict, Any, List, Optional
from supabase import create_client, Client
from .base import StorageInterface
from ..utils.logger import get_logger

logger = get_logger(__name__)


class SupabaseStorage(StorageInterface):
    """Supabase storage for prod mode"""

    def __init__(self, supabase_url: str, supabase_key: str):
        """
        Initialize Supabase storage

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase service role key
        """
        self.client: Client = create_client(supabase_url, supabase_key)

    # ------------------------------------------------------------------
    # Execution runs
    # ------------------------------------------------------------------

    def save_execution(self, execution: Dict[str, Any]) -> str:
        result = self.client.table('workflow_executions').insert(execution).execute()
        if result.data:
            return result.data[0].get('id', execution.get('id', ''))
        return execution.get('id', '')

    def update_execution(self, execution_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        result = self.client.table('workflow_executions').update(updates).eq('id', execution_id).execute()
        return result.data[0] if result.data else None

    def get_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.client.table('workflow_executions').select('*').eq('id', execution_id).limit(1).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Error getting execution {execution_id}: {e}")
            return None

    def list_executions(self, workflow_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            result = (
                self.client.table('workflow_executions')
                .select('*')
                .eq('workflow_id', workflow_id)
                .order('started_at', desc=True)
                .limit(limit)
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error(f"Error listing executions for workflow {workflow_id}: {e}")
            return []

    def list_running_executions(self) -> List[Dict[str, Any]]:
        try:
            result = self.client.table('workflow_executions').select('*').eq('status', 'running').execute()
            return result.data or []
        except Exception as e:
            logger.error(f"Error listing running executions: {e}")
            return []

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def save_webhook(self, webhook: Dict[str, Any]) -> str:
        result = self.client.table('webhooks').upsert(webhook).execute()
        if result.data:
            return result.data[0].get('id', '')
        return webhook.get('id', '')

    def get_webhook(self, webhook_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.client.table('webhooks').select('*').eq('id', webhook_id).limit(1).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Error getting webhook {webhook_id}: {e}")
            return None

    def get_webhook_by_path(self, url_path: str) -> Optional[Dict[str, Any]]:
        try:
            result = (
                self.client.table('webhooks')
                .select('*')
                .eq('url_path', url_path)
                .eq('status', 'active')
                .limit(1)
                .execute()
            )
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Error getting webhook for path {url_path}: {e}")
            return None

    # ------------------------------------------------------------------
    # Webhook requests
    # ------------------------------------------------------------------

    def save_webhook_request(self, request: Dict[str, Any]) -> str:
        result = self.client.table('webhook_requests').insert(request).execute()
        if result.data:
            return result.data[0].get('id', request.get('id', ''))
        return request.get('id', '')

    def update_webhook_request(self, request_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        result = self.client.table('webhook_requests').update(updates).eq('id', request_id).execute()
        return result.data[0] if result.data else None

    def list_webhook_requests(self, webhook_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            result = (
                self.client.table('webhook_requests')
                .select('*')
                .eq('webhook_id', webhook_id)
                .order('created_at', desc=True)
                .limit(limit)
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error(f"Error listing requests for webhook {webhook_id}: {e}")
            return []
