"""
Delay Node
Suspends without blocking other in-flight batch members
"""
import asyncio
from typing import Dict, Any

from ..node_base import BaseTaskHandler, ExecutionContext
from ...errors import ConfigurationError
from ...types import NodeKind

UNIT_MILLISECONDS = {
    'ms': 1,
    'milliseconds': 1,
    's': 1000,
    'seconds': 1000,
    'm': 60_000,
    'minutes': 60_000,
}


class DelayHandler(BaseTaskHandler):
    """Waits `duration` `unit`s (default 1000 ms)"""

    kind = NodeKind.DELAY

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'duration': 1000, 'unit': 'ms'}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        unit = str(config.get('unit') or 'ms').lower()
        if unit not in UNIT_MILLISECONDS:
            raise ConfigurationError(f"{context.label}: unknown delay unit '{unit}'")
        try:
            duration = float(config.get('duration', 0))
        except (TypeError, ValueError):
            raise ConfigurationError(f"{context.label}: duration must be a number")
        if duration < 0:
            raise ConfigurationError(f"{context.label}: duration cannot be negative")

        delay_ms = duration * UNIT_MILLISECONDS[unit]
        await asyncio.sleep(delay_ms / 1000)
        return {'delayed_ms': delay_ms, 'duration': duration, 'unit': unit}
