"""
Logging for FlowBatch Core

Every module logs to stdout under the flowbatch_core.* namespace. Messages
about a specific run go through a RunLogAdapter so each line carries the run id
(and the node label when one is bound).
"""
import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

ROOT_LOGGER = "flowbatch_core"
LOG_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

# Set by set_level so loggers created afterwards pick it up too
_level_override: Optional[int] = None


def _default_level() -> int:
    if _level_override is not None:
        return _level_override
    # Imported lazily: config -> storage -> logger
    from config import Config
    return logging.DEBUG if Config.DEBUG else logging.INFO


def setup_logger(
    name: str = ROOT_LOGGER,
    level: Optional[int] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Create (once) a stdout logger that does not propagate to the root logger

    Args:
        name: Logger name (default: "flowbatch_core")
        level: Log level (default: DEBUG when Config.DEBUG, else INFO)
        format_string: Custom format string (optional)
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = _default_level() if level is None else level
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(format_string or LOG_FORMAT))

    logger.setLevel(level)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module: flowbatch_core.<last part of the dotted name>"""
    return setup_logger(f"{ROOT_LOGGER}.{name.rsplit('.', 1)[-1]}")


def set_level(level: int) -> None:
    """Change the level of every flowbatch_core logger, existing and future"""
    global _level_override
    _level_override = level
    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger):
            continue
        if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
            logger.setLevel(level)
            for handler in logger.handlers:
                handler.setLevel(level)


class RunLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with "[run <short id>]" and an optional "[<node label>]" """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        run_id = str(self.extra.get('run_id') or '-')
        prefix = f"[run {run_id[:8]}]"
        node = self.extra.get('node')
        if node:
            prefix += f" [{node}]"
        return f"{prefix} {msg}", kwargs


def run_logger(logger: logging.Logger, run_id: Optional[str], node: Optional[str] = None) -> RunLogAdapter:
    return RunLogAdapter(logger, {'run_id': run_id, 'node': node})
