"""
Array Aggregator Node
Merges the results of every direct predecessor
"""
import json
from typing import Dict, Any, List

from ..node_base import BaseTaskHandler, ExecutionContext
from ...errors import ConfigurationError
from ...types import NodeKind

MERGE_MODES = ("concat", "merge", "collect")


def flatten(values: List[Any]) -> List[Any]:
    flat: List[Any] = []
    for value in values:
        if isinstance(value, list):
            flat.extend(flatten(value))
        else:
            flat.append(value)
    return flat


def dedupe(values: List[Any]) -> List[Any]:
    """Drop repeats, keeping first occurrences (unhashable values compared as JSON)"""
    seen = set()
    unique = []
    for value in values:
        key = json.dumps(value, sort_keys=True, default=str)
        if key not in seen:
            seen.add(key)
            unique.append(value)
    return unique


class ArrayAggregatorHandler(BaseTaskHandler):
    """
    Array aggregator handler

    Inputs are the direct predecessors' results; a predecessor that ran inside
    an iterator body contributes one value per iteration.

    Config:
        merge_mode: concat (one list), merge (shallow dict merge) or
            collect (lists bucketed by predecessor label)
        flatten: Flatten nested lists (concat only)
        remove_null: Drop None values
        remove_duplicates: Drop repeated values

    Outputs:
        result: Aggregated value
        count: Number of aggregated entries
        merge_mode: Mode used
    """

    kind = NodeKind.ARRAY_AGGREGATOR

    @classmethod
    def default_config(cls) -> Dict[str, Any]:
        return {'merge_mode': 'concat', 'flatten': False, 'remove_null': False, 'remove_duplicates': False}

    async def execute(self, config: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        mode = config.get('merge_mode') or 'concat'
        if mode not in MERGE_MODES:
            raise ConfigurationError(f"{context.label}: unknown merge_mode '{mode}'")

        buckets: Dict[str, List[Any]] = {}
        for node_id, label, result in zip(context.upstream_ids, context.upstream_labels, context.upstream):
            values = context.iteration_results.get(node_id)
            buckets[label] = list(values) if values is not None else [result]

        if mode == 'merge':
            merged: Dict[str, Any] = {}
            for values in buckets.values():
                for value in values:
                    if isinstance(value, dict):
                        merged.update(value)
            if config.get('remove_null'):
                merged = {k: v for k, v in merged.items() if v is not None}
            return {'result': merged, 'count': len(merged), 'merge_mode': mode}

        if mode == 'collect':
            collected = {label: self._clean(values, config) for label, values in buckets.items()}
            return {'result': collected, 'count': sum(len(v) for v in collected.values()), 'merge_mode': mode}

        combined: List[Any] = []
        for values in buckets.values():
            for value in values:
                if isinstance(value, list):
                    combined.extend(value)
                else:
                    combined.append(value)
        if config.get('flatten'):
            combined = flatten(combined)
        combined = self._clean(combined, config)
        return {'result': combined, 'count': len(combined), 'merge_mode': mode}

    @staticmethod
    def _clean(values: List[Any], config: Dict[str, Any]) -> List[Any]:
        if config.get('remove_null'):
            values = [v for v in values if v is not None]
        if config.get('remove_duplicates'):
            values = dedupe(values)
        return values
