"""
Workflow graph model for FlowBatch Core
Nodes, edges, adjacency, reachability and the predecessor index
"""
import copy
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Set
from uuid import uuid4

from .errors import ConfigurationError, GraphIntegrityError
from .types import (
    NodeID, EdgeID, WorkflowID, NodeKind, KIND_LABEL_PREFIXES,
    NodeData, EdgeData, WorkflowDocument, WorkflowSettings,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

DUPLICATE_OFFSET = 50
NODE_SPACING = 300


@dataclass
class Node:
    """A unit of work in the workflow graph"""
    id: NodeID
    kind: NodeKind
    position: Dict[str, float]
    config: Dict[str, Any]
    ordinal: int  # Permanent, assigned once at creation
    label: Optional[str] = None
    is_execution_start: bool = False
    last_result: Any = None

    @property
    def namespace_label(self) -> str:
        """Interpolation key for this node ("GPT 2", "Trigger 1", or a configured trigger name)"""
        if self.kind == NodeKind.TRIGGER and self.config.get('name'):
            return str(self.config['name'])
        return f"{KIND_LABEL_PREFIXES[self.kind]} {self.ordinal}"

    @property
    def display_label(self) -> str:
        return self.label or self.namespace_label

    def to_dict(self) -> NodeData:
        data: NodeData = {
            'id': self.id,
            'kind': self.kind.value,
            'position': dict(self.position),
            'config': copy.deepcopy(self.config),
            'ordinal': self.ordinal,
            'is_execution_start': self.is_execution_start,
        }
        if self.label is not None:
            data['label'] = self.label
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Node":
        try:
            kind = NodeKind(data['kind'])
        except ValueError:
            raise GraphIntegrityError(f"Node {data.get('id')} has unknown kind: {data.get('kind')}")
        return cls(
            id=data['id'],
            kind=kind,
            position=dict(data.get('position') or {'x': 0, 'y': 0}),
            config=copy.deepcopy(data.get('config') or {}),
            ordinal=int(data['ordinal']),
            label=data.get('label'),
            is_execution_start=bool(data.get('is_execution_start', False)),
        )


@dataclass
class Edge:
    """Directed connection, optionally tagged with a branch handle"""
    id: EdgeID
    source: NodeID
    target: NodeID
    handle: Optional[str] = None

    def to_dict(self) -> EdgeData:
        return {'id': self.id, 'source': self.source, 'target': self.target, 'handle': self.handle}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        return cls(
            id=data.get('id') or str(uuid4()),
            source=data['source'],
            target=data['target'],
            handle=data.get('handle'),
        )


@dataclass
class WorkflowSnapshot:
    """Deep copy of a graph's nodes and edges"""
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)


class WorkflowGraph:
    """
    Mutable workflow graph

    Invariants enforced at every mutation:
    - node ids are unique
    - every edge references existing nodes
    - at most one node is the execution start

    Ordinals come from a single counter shared by all kinds, so a new node
    always gets a number strictly greater than any previously issued one.
    """

    def __init__(
        self,
        workflow_id: Optional[WorkflowID] = None,
        name: str = "",
        settings: Optional[WorkflowSettings] = None
    ):
        self.id: WorkflowID = workflow_id or str(uuid4())
        self.name = name
        self.settings: WorkflowSettings = settings or {'parallel_mode': False, 'batch_size': 3}
        self.nodes: List[Node] = []
        self.edges: List[Edge] = []
        self._nodes_by_id: Dict[NodeID, Node] = {}
        self._outgoing: Dict[NodeID, List[Edge]] = {}
        self._incoming: Dict[NodeID, List[Edge]] = {}
        self._next_ordinal = 1
        self._predecessor_cache: Dict[NodeID, List[NodeID]] = {}
        self.topology_version = 0

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, node_id: NodeID) -> bool:
        return node_id in self._nodes_by_id

    def __len__(self) -> int:
        return len(self.nodes)

    def get_node(self, node_id: NodeID) -> Optional[Node]:
        return self._nodes_by_id.get(node_id)

    def require_node(self, node_id: NodeID) -> Node:
        node = self._nodes_by_id.get(node_id)
        if node is None:
            raise GraphIntegrityError(f"Unknown node: {node_id}")
        return node

    @property
    def next_ordinal(self) -> int:
        return self._next_ordinal

    @property
    def execution_start(self) -> Optional[Node]:
        for node in self.nodes:
            if node.is_execution_start:
                return node
        return None

    def outgoing_edges(self, node_id: NodeID) -> List[Edge]:
        return list(self._outgoing.get(node_id, []))

    def incoming_edges(self, node_id: NodeID) -> List[Edge]:
        return list(self._incoming.get(node_id, []))

    def direct_predecessors(self, node_id: NodeID) -> List[NodeID]:
        seen: Set[NodeID] = set()
        result = []
        for edge in self._incoming.get(node_id, []):
            if edge.source not in seen:
                seen.add(edge.source)
                result.append(edge.source)
        return result

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_node(
        self,
        kind: NodeKind,
        position: Optional[Dict[str, float]] = None,
        config: Optional[Dict[str, Any]] = None,
        node_id: Optional[NodeID] = None,
        label: Optional[str] = None
    ) -> Node:
        """
        Add a node of the given kind

        Args:
            kind: Node kind
            position: Canvas position (default: to the right of the rightmost node)
            config: Config overrides merged over the kind's default config
            node_id: Explicit id (default: "<kind>-<uuid>")
            label: Optional display label

        Returns:
            The new node, with the next ordinal assigned
        """
        from .execution.node_registry import get_handler_class

        kind = NodeKind(kind)
        node_id = node_id or f"{kind.value}-{uuid4().hex[:12]}"
        if node_id in self._nodes_by_id:
            raise GraphIntegrityError(f"Duplicate node id: {node_id}")

        handler_class = get_handler_class(kind)
        merged_config = handler_class.default_config() if handler_class else {}
        merged_config.update(copy.deepcopy(config or {}))

        node = Node(
            id=node_id,
            kind=kind,
            position=dict(position) if position else self._next_position(),
            config=merged_config,
            ordinal=self._take_ordinal(),
            label=label,
        )
        self._insert_node(node)
        logger.debug(f"Added node {node.id} as '{node.namespace_label}'")
        return node

    def remove_node(self, node_id: NodeID) -> List[Edge]:
        """Remove a node and every edge incident to it; returns the removed edges"""
        node = self.require_node(node_id)
        removed = [e for e in self.edges if e.source == node_id or e.target == node_id]
        for edge in removed:
            self._detach_edge(edge)
        self.nodes.remove(node)
        del self._nodes_by_id[node_id]
        self._outgoing.pop(node_id, None)
        self._incoming.pop(node_id, None)
        self._topology_changed()
        return removed

    def duplicate_node(self, node_id: NodeID) -> Node:
        """
        Clone a node's config under a new id and a new ordinal

        Raises:
            ConfigurationError: If the node is the entry-point (trigger) kind
        """
        source = self.require_node(node_id)
        if source.kind == NodeKind.TRIGGER:
            raise ConfigurationError("Trigger nodes cannot be duplicated")

        node = Node(
            id=f"{source.kind.value}-{uuid4().hex[:12]}",
            kind=source.kind,
            position={
                'x': source.position.get('x', 0) + DUPLICATE_OFFSET,
                'y': source.position.get('y', 0) + DUPLICATE_OFFSET,
            },
            config=copy.deepcopy(source.config),
            ordinal=self._take_ordinal(),
            label=f"{source.label} (Copy)" if source.label else None,
        )
        self._insert_node(node)
        return node

    def update_config(self, node_id: NodeID, config: Dict[str, Any]) -> Node:
        node = self.require_node(node_id)
        node.config.update(copy.deepcopy(config))
        return node

    def connect(
        self,
        source: NodeID,
        target: NodeID,
        handle: Optional[str] = None,
        edge_id: Optional[EdgeID] = None
    ) -> Edge:
        """Append an edge; both endpoints must exist"""
        if source not in self._nodes_by_id:
            raise GraphIntegrityError(f"Edge source does not exist: {source}")
        if target not in self._nodes_by_id:
            raise GraphIntegrityError(f"Edge target does not exist: {target}")
        if source == target:
            raise GraphIntegrityError(f"Self-loop on node {source}")

        edge = Edge(id=edge_id or f"e-{source}-{target}-{uuid4().hex[:6]}", source=source, target=target, handle=handle)
        if any(e.id == edge.id for e in self.edges):
            raise GraphIntegrityError(f"Duplicate edge id: {edge.id}")
        self._attach_edge(edge)
        self._topology_changed()
        return edge

    def disconnect(self, edge_id: EdgeID) -> Edge:
        for edge in self.edges:
            if edge.id == edge_id:
                self._detach_edge(edge)
                self._topology_changed()
                return edge
        raise GraphIntegrityError(f"Unknown edge: {edge_id}")

    def set_execution_start(self, node_id: Optional[NodeID]) -> None:
        """Mark one node as the execution start (None clears it)"""
        if node_id is not None:
            self.require_node(node_id)
        for node in self.nodes:
            node.is_execution_start = node.id == node_id

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def find_reachable(self, start_id: NodeID) -> List[NodeID]:
        """
        Forward BFS from start_id following edges source -> target

        Returns:
            Node ids in discovery order, start_id first
        """
        self.require_node(start_id)
        visited: Set[NodeID] = {start_id}
        order = [start_id]
        queue = deque([start_id])

        while queue:
            current = queue.popleft()
            for edge in self._outgoing.get(current, []):
                if edge.target not in visited:
                    visited.add(edge.target)
                    order.append(edge.target)
                    queue.append(edge.target)

        return order

    def predecessors(self, node_id: NodeID) -> List[NodeID]:
        """
        Transitive predecessors of a node, in graph order

        Served from an index that is only recomputed after a topology change.
        """
        self.require_node(node_id)
        cached = self._predecessor_cache.get(node_id)
        if cached is not None:
            return list(cached)

        visited: Set[NodeID] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            for edge in self._incoming.get(current, []):
                if edge.source not in visited and edge.source != node_id:
                    visited.add(edge.source)
                    stack.append(edge.source)

        ordered = [n.id for n in self.nodes if n.id in visited]
        self._predecessor_cache[node_id] = ordered
        return list(ordered)

    # ------------------------------------------------------------------
    # Snapshots / documents
    # ------------------------------------------------------------------

    def snapshot(self) -> WorkflowSnapshot:
        return WorkflowSnapshot(nodes=copy.deepcopy(self.nodes), edges=copy.deepcopy(self.edges))

    def replace_contents(self, nodes: List[Node], edges: List[Edge]) -> None:
        """Swap in a whole node/edge set (validated, indexes rebuilt)"""
        self.nodes = []
        self.edges = []
        self._nodes_by_id = {}
        self._outgoing = {}
        self._incoming = {}
        for node in nodes:
            if node.id in self._nodes_by_id:
                raise GraphIntegrityError(f"Duplicate node id: {node.id}")
            self._insert_node(node)
        for edge in edges:
            if edge.source not in self._nodes_by_id or edge.target not in self._nodes_by_id:
                raise GraphIntegrityError(f"Edge {edge.id} references a missing node")
            self._attach_edge(edge)
        starts = [n.id for n in self.nodes if n.is_execution_start]
        if len(starts) > 1:
            raise GraphIntegrityError(f"More than one execution start node: {starts}")
        self._topology_changed()

    def to_document(self) -> WorkflowDocument:
        return {
            'id': self.id,
            'name': self.name,
            'nodes': [node.to_dict() for node in self.nodes],
            'edges': [edge.to_dict() for edge in self.edges],
            'settings': dict(self.settings),
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "WorkflowGraph":
        """
        Build a graph from a workflow document

        Raises:
            GraphIntegrityError: If ids collide, an edge dangles, or several start nodes exist
        """
        settings = document.get('settings') or {}
        graph = cls(
            workflow_id=document.get('id'),
            name=document.get('name', ''),
            settings={
                'parallel_mode': bool(settings.get('parallel_mode', settings.get('parallelMode', False))),
                'batch_size': int(settings.get('batch_size', settings.get('batchSize', 3))),
            },
        )
        nodes = [Node.from_dict(n) for n in document.get('nodes', [])]
        edges = [Edge.from_dict(e) for e in document.get('edges', [])]
        graph.replace_contents(nodes, edges)
        graph._next_ordinal = max([n.ordinal for n in nodes], default=0) + 1
        return graph

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _take_ordinal(self) -> int:
        ordinal = self._next_ordinal
        self._next_ordinal += 1
        return ordinal

    def _next_position(self) -> Dict[str, float]:
        if not self.nodes:
            return {'x': 100, 'y': 100}
        rightmost = max(n.position.get('x', 0) for n in self.nodes)
        return {'x': rightmost + NODE_SPACING, 'y': 100}

    def _insert_node(self, node: Node) -> None:
        self.nodes.append(node)
        self._nodes_by_id[node.id] = node
        self._outgoing.setdefault(node.id, [])
        self._incoming.setdefault(node.id, [])
        self._next_ordinal = max(self._next_ordinal, node.ordinal + 1)

    def _attach_edge(self, edge: Edge) -> None:
        self.edges.append(edge)
        self._outgoing.setdefault(edge.source, []).append(edge)
        self._incoming.setdefault(edge.target, []).append(edge)

    def _detach_edge(self, edge: Edge) -> None:
        self.edges.remove(edge)
        self._outgoing[edge.source].remove(edge)
        self._incoming[edge.target].remove(edge)

    def _topology_changed(self) -> None:
        self._predecessor_cache.clear()
        self.topology_version += 1
