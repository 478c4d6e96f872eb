"""
Parameter Interpolator
Resolves {{Label.path}} tokens against the results of a node's predecessors

Execution mode degrades unresolved tokens to an empty string; preview mode
renders them as a visible <UNRESOLVED:...> marker instead.
"""
import json
import re
from typing import Dict, Any, List, Optional, Iterable, Tuple, Union

from .errors import InterpolationError
from .types import NodeID, NodeKind, NodeResultMap, PlaceholderReport
from ..utils.logger import get_logger

logger = get_logger(__name__)

TOKEN_RE = re.compile(r"\{\{([^}]+)\}\}")
_INDEX_RE = re.compile(r"\[(\d+)\]")
_NUMERIC_SUFFIX_RE = re.compile(r"(\d+)$")

UNRESOLVED_MARKER = "<UNRESOLVED:{token}>"
PENDING_MARKER = "<{token}>"

# Resolution outcomes
RESOLVED = "resolved"
PENDING = "pending"        # Label is in scope but has no result yet
UNRESOLVED = "unresolved"  # Unknown label, or path missing from the result

PathSegment = Union[str, int]


def parse_path(path: str) -> List[PathSegment]:
    """
    Split an accessor path into segments

    "data[0].url" and "data.0.url" both give ["data", 0, "url"].
    """
    if not path:
        return []
    normalized = _INDEX_RE.sub(r".\1", path).lstrip('.')
    segments: List[PathSegment] = []
    for part in normalized.split('.'):
        if part == '':
            continue
        segments.append(int(part) if part.isdigit() else part)
    return segments


def lookup_path(value: Any, segments: List[PathSegment]) -> Tuple[bool, Any]:
    """
    Walk segments into a value

    Returns:
        (found, value) - found is False as soon as a segment is missing
    """
    current = value
    for segment in segments:
        if isinstance(current, dict):
            key = str(segment)
            if key not in current:
                return False, None
            current = current[key]
        elif isinstance(current, (list, tuple)):
            if not isinstance(segment, int) or segment >= len(current):
                return False, None
            current = current[segment]
        else:
            return False, None
    return True, current


def stringify(value: Any) -> str:
    """Objects/arrays become JSON text, None becomes an empty string"""
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list, tuple, bool)):
        return json.dumps(value)
    return str(value)


def split_token(expression: str, labels: Iterable[str]) -> Optional[Tuple[str, str]]:
    """
    Split "Label.path" into (label, path) against the known labels

    An exact label match wins, otherwise the longest label followed by "." or "[".
    """
    expression = expression.strip()
    best: Optional[str] = None
    for label in labels:
        if expression == label:
            return label, ''
        if expression.startswith(label) and expression[len(label):len(label) + 1] in ('.', '['):
            if best is None or len(label) > len(best):
                best = label
    if best is None:
        return None
    return best, expression[len(best):].lstrip('.')


def scope_labels(graph, node_id: NodeID) -> Dict[str, NodeID]:
    """
    Labels a node may reference: those of its transitive predecessors

    On a label collision the first node in graph order keeps the label.
    """
    labels: Dict[str, NodeID] = {}
    for pred_id in graph.predecessors(node_id):
        label = graph.get_node(pred_id).namespace_label
        if label in labels:
            logger.warning(f"Label collision on '{label}': keeping {labels[label]}, ignoring {pred_id}")
            continue
        labels[label] = pred_id
    return labels


def build_scope(graph, node_id: NodeID, results: NodeResultMap) -> Dict[str, Any]:
    """Map label -> result for every predecessor of node_id that has a result"""
    return {
        label: results[pred_id]
        for label, pred_id in scope_labels(graph, node_id).items()
        if pred_id in results
    }


class ParameterInterpolator:
    """
    Renders templates (strings, dicts, lists) against a label scope

    Args:
        scope: label -> result for predecessors that have run
        known_labels: every label in scope, with or without a result
            (defaults to the scope's keys)
    """

    def __init__(self, scope: Dict[str, Any], known_labels: Optional[Iterable[str]] = None):
        self.scope = scope
        self.known_labels = set(known_labels) if known_labels is not None else set(scope)
        self.known_labels.update(scope)
        self.errors: List[InterpolationError] = []

    def render(self, template: Any) -> Any:
        """Execution mode: unresolved tokens become an empty string"""
        return self._walk(template, self._render_string)

    def preview(self, template: Any) -> Any:
        """Preview mode: unresolved tokens render as <UNRESOLVED:token>"""
        return self._walk(template, self._preview_string)

    def report(self, template: Any) -> List[PlaceholderReport]:
        """List every token found in a template with its resolution target"""
        entries: List[PlaceholderReport] = []
        for text in self._strings(template):
            for match in TOKEN_RE.finditer(text):
                expression = match.group(1).strip()
                outcome, label, _ = self.resolve(expression)
                entries.append({
                    'token': expression,
                    'resolved': outcome != UNRESOLVED,
                    'target': label if outcome != UNRESOLVED else None,
                })
        return entries

    def resolve(self, expression: str) -> Tuple[str, Optional[str], Any]:
        """
        Resolve a single token expression

        Returns:
            (outcome, label, value) where outcome is RESOLVED, PENDING or UNRESOLVED
        """
        parts = split_token(expression, self.known_labels)
        if parts is None:
            return UNRESOLVED, None, None
        label, path = parts
        if label not in self.scope:
            return PENDING, label, None
        found, value = lookup_path(self.scope[label], parse_path(path))
        if not found:
            return UNRESOLVED, label, None
        return RESOLVED, label, value

    # ------------------------------------------------------------------

    def _walk(self, template: Any, render_string) -> Any:
        if isinstance(template, str):
            return render_string(template)
        if isinstance(template, dict):
            return {key: self._walk(value, render_string) for key, value in template.items()}
        if isinstance(template, list):
            return [self._walk(item, render_string) for item in template]
        return template

    def _strings(self, template: Any) -> List[str]:
        if isinstance(template, str):
            return [template]
        if isinstance(template, dict):
            return [s for value in template.values() for s in self._strings(value)]
        if isinstance(template, list):
            return [s for item in template for s in self._strings(item)]
        return []

    def _render_string(self, text: str) -> str:
        def replace(match: re.Match) -> str:
            expression = match.group(1).strip()
            outcome, label, value = self.resolve(expression)
            if outcome != RESOLVED:
                reason = "label not in scope" if label is None else (
                    "no result yet" if outcome == PENDING else "path not found"
                )
                error = InterpolationError(expression, reason)
                self.errors.append(error)
                logger.warning(f"Unresolved parameter {match.group(0)} ({reason}), using empty string")
                value = None
            return _serialize(value, _in_json_quotes(match))

        return TOKEN_RE.sub(replace, text)

    def _preview_string(self, text: str) -> str:
        def replace(match: re.Match) -> str:
            expression = match.group(1).strip()
            outcome, _, value = self.resolve(expression)
            if outcome == UNRESOLVED:
                return UNRESOLVED_MARKER.format(token=expression)
            if outcome == PENDING:
                return PENDING_MARKER.format(token=expression)
            return _serialize(value, _in_json_quotes(match))

        return TOKEN_RE.sub(replace, text)


def _in_json_quotes(match: re.Match) -> bool:
    text = match.string
    start, end = match.span()
    return start > 0 and end < len(text) and text[start - 1] == '"' and text[end] == '"'


def _serialize(value: Any, in_json_quotes: bool) -> str:
    rendered = stringify(value)
    if in_json_quotes:
        # Escape for a JSON string literal without adding the surrounding quotes
        return json.dumps(rendered)[1:-1]
    return rendered


def _numeric_sort_key(indexed_key: Tuple[int, str]) -> Tuple[int, int, int]:
    position, key = indexed_key
    match = _NUMERIC_SUFFIX_RE.search(key)
    if match:
        return (0, int(match.group(1)), position)
    return (1, 0, position)


def auto_map(
    template: Dict[str, Any],
    predecessors: List[Any],
    kind: NodeKind = NodeKind.AI_COMPLETION,
    field: str = "text"
) -> Dict[str, Any]:
    """
    Best-effort positional mapping of template keys to predecessor outputs

    Predecessor nodes of `kind` are ordered by ordinal, template keys by their
    numeric suffix; the i-th key maps to {{<i-th label>.<field>}}. Keys beyond
    the available nodes keep their original value.

    Args:
        template: Response template (e.g. {"prompt1": "", "prompt2": ""})
        predecessors: Candidate Node objects
        kind: Node kind to map from
        field: Result field referenced in the generated token

    Returns:
        New template dict with the same key order
    """
    nodes = sorted((n for n in predecessors if n.kind == kind), key=lambda n: n.ordinal)
    ordered_keys = [key for _, key in sorted(enumerate(template), key=_numeric_sort_key)]

    mapped = dict(template)
    for index, key in enumerate(ordered_keys):
        if index >= len(nodes):
            break
        mapped[key] = f"{{{{{nodes[index].namespace_label}.{field}}}}}"
    return mapped
