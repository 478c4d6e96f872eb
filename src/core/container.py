"""
Service Container
Holds all core services in a single, testable container
"""
import time
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..storage.base import StorageInterface
    from .events import StatusEventBus
    from .execution.engine import ExecutionEngine
    from .history import HistoryStore
    from .status import StatusSynchronizer


@dataclass
class ServiceContainer:
    """
    Container holding all core services for FlowBatch Core

    This provides a single source of truth for service instances,
    shared between the API and the CLI.
    """
    storage: 'StorageInterface'
    history: 'HistoryStore'
    bus: 'StatusEventBus'
    synchronizer: 'StatusSynchronizer'
    engine: 'ExecutionEngine'

    # Metadata
    mode: str = "solo"
    initialized_at: Optional[float] = None

    def __post_init__(self):
        """Set initialization timestamp if not provided"""
        if self.initialized_at is None:
            self.initialized_at = time.time()

    def shutdown(self) -> None:
        """Cancel pending status resets and detach the synchronizer"""
        self.engine.cancel_pending_resets()
        self.synchronizer.dispose()
