"""
Abstract storage interface for FlowBatch Core
Supports both solo mode (local JSON) and prod mode (Supabase)
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    # ------------------------------------------------------------------
    # Execution runs (workflow_executions)
    # ------------------------------------------------------------------

    @abstractmethod
    def save_execution(self, execution: Dict[str, Any]) -> str:
        """Insert an execution run record, returns its id"""
        pass

    @abstractmethod
    def update_execution(self, execution_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply a partial update to an execution run, returns the updated record"""
        pass

    @abstractmethod
    def get_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        """Get one execution run"""
        pass

    @abstractmethod
    def list_executions(self, workflow_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Get a workflow's execution runs

        Returns:
            Runs ordered by started_at, most recent first
        """
        pass

    @abstractmethod
    def list_running_executions(self) -> List[Dict[str, Any]]:
        """Get every execution run still marked running"""
        pass

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @abstractmethod
    def save_webhook(self, webhook: Dict[str, Any]) -> str:
        """Insert or replace a webhook, returns its id"""
        pass

    @abstractmethod
    def get_webhook(self, webhook_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def get_webhook_by_path(self, url_path: str) -> Optional[Dict[str, Any]]:
        """Get the active webhook listening on url_path"""
        pass

    # ------------------------------------------------------------------
    # Webhook requests
    # ------------------------------------------------------------------

    @abstractmethod
    def save_webhook_request(self, request: Dict[str, Any]) -> str:
        """Record an inbound webhook call, returns its id"""
        pass

    @abstractmethod
    def update_webhook_request(self, request_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Attach response and timing to a webhook call record"""
        pass

    def list_webhook_requests(self, webhook_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Get recent calls to a webhook, most recent first

        Default implementation - override in subclasses
        """
        return []
