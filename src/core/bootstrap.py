"""
Bootstrap module for FlowBatch Core
Wires storage, history, the status bus, the synchronizer and the engine

Both the API and the CLI build their services through get_container().
"""
from typing import Dict, List, Optional
import time
import threading

from config import Config
from .container import ServiceContainer
from ..utils.logger import get_logger

logger = get_logger(__name__)

# One container per mode
_container_cache: Dict[str, ServiceContainer] = {}
_container_lock = threading.Lock()


def build_container(storage, mode: str = "solo") -> ServiceContainer:
    """
    Wire services around an existing storage backend

    Build order: storage -> history -> bus -> synchronizer -> engine
    """
    from .events import StatusEventBus
    from .execution.engine import ExecutionEngine
    from .history import HistoryStore
    from .status import StatusSynchronizer

    history = HistoryStore(storage)
    bus = StatusEventBus()
    synchronizer = StatusSynchronizer(bus)
    engine = ExecutionEngine(
        bus=bus,
        history=history,
        synchronizer=synchronizer,
        reset_delay=Config.STATUS_RESET_DELAY,
    )
    return ServiceContainer(
        storage=storage,
        history=history,
        bus=bus,
        synchronizer=synchronizer,
        engine=engine,
        mode=mode,
        initialized_at=time.time(),
    )


def get_container(mode: Optional[str] = None, *, force: bool = False) -> ServiceContainer:
    """
    Return the process-wide container for a mode, building it on first use

    Args:
        mode: 'solo' or 'prod' (defaults to Config.MODE)
        force: Shut down any cached container for the mode and build a new one

    Example:
        container = get_container(mode='solo')
        run = await container.engine.execute(graph)
    """
    resolved_mode = mode or Config.MODE

    with _container_lock:
        cached = _container_cache.get(resolved_mode)
        if cached is not None and not force:
            return cached
        if cached is not None:
            cached.shutdown()

        storage = Config.get_storage(resolved_mode)
        container = build_container(storage, mode=resolved_mode)
        _container_cache[resolved_mode] = container
        logger.info(f"Services ready for {resolved_mode} mode ({type(storage).__name__})")
        return container


def clear_cache() -> List[str]:
    """Shut down and forget every cached container; returns the modes dropped"""
    with _container_lock:
        modes = list(_container_cache)
        for container in _container_cache.values():
            container.shutdown()
        _container_cache.clear()
    return modes
