# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Graph model and validation

Builds the in-memory graph for a WorkflowDefinition and computes its
execution plan: levels of mutually independent nodes, where every node's
dependencies live in earlier levels (Kahn's algorithm, layer by layer).

Construction is all-or-nothing: any violation raises WorkflowValidationError
before a single node runs.
"""

from collections import deque
from dataclasses import dataclass, field
from itertools import chain
from typing import Dict, Iterator, List, Optional, Set

from .exceptions import WorkflowValidationError
from .models import EdgeDefinition, WorkflowDefinition
from .nodes import NodeType
from .variables import RESERVED_TOKENS, VariableReference, iter_references, match_producer

BRANCH_HANDLES = ("true", "false")
DEFAULT_SWITCH_HANDLE = "default"


@dataclass
class WorkflowGraph:
    """Validated workflow graph plus its execution plan"""
    definition: WorkflowDefinition
    nodes: Dict[str, object]
    predecessors: Dict[str, List[str]]
    successors: Dict[str, List[str]]
    incoming: Dict[str, List[EdgeDefinition]]
    levels: List[List[str]]
    warnings: List[str] = field(default_factory=list)
    _ancestors: Dict[str, Set[str]] = field(default_factory=dict, repr=False)

    def node(self, node_id: str):
        return self.nodes[node_id]

    def node_by_name(self, name: str):
        for node in self.nodes.values():
            if node.name == name:
                return node
        return None

    @property
    def order(self) -> List[str]:
        """Node ids in execution order"""
        return [node_id for level in self.levels for node_id in level]

    def ancestors(self, node_id: str) -> Set[str]:
        """All nodes with a path into node_id"""
        if node_id not in self._ancestors:
            found: Set[str] = set()
            queue = deque(self.predecessors[node_id])
            while queue:
                current = queue.popleft()
                if current in found:
                    continue
                found.add(current)
                queue.extend(self.predecessors[current])
            self._ancestors[node_id] = found
        return self._ancestors[node_id]

    def terminal_nodes(self) -> List[str]:
        """OUTPUT nodes when present, otherwise nodes without successors"""
        outputs = [nid for nid in self.order if self.nodes[nid].type == NodeType.OUTPUT.value]
        if outputs:
            return outputs
        return [nid for nid in self.order if not self.successors[nid]]


def build_graph(definition: WorkflowDefinition) -> WorkflowGraph:
    """
    Validate a workflow definition and build its execution plan.

    Checks, in order: node id/name uniqueness, edge endpoints and branch
    handles, acyclicity, then that every variable reference to a node names
    one of the referencing node's ancestors.

    Raises WorkflowValidationError if validation fails.
    """
    # 1. Empty workflow check
    if len(definition.nodes) == 0:
        raise WorkflowValidationError("Workflow must have at least one node", field="nodes")

    # 2. Unique ids and names
    nodes: Dict[str, object] = {}
    names: Set[str] = set()
    for node in definition.nodes:
        if node.id in nodes:
            raise WorkflowValidationError(f"Duplicate node ID found: {node.id}", field="nodes")
        if node.name in names:
            raise WorkflowValidationError(
                f"Duplicate node name found: {node.name}",
                field=f"nodes[{node.id}].name"
            )
        if node.name in RESERVED_TOKENS:
            raise WorkflowValidationError(
                f"Node name '{node.name}' is reserved",
                field=f"nodes[{node.id}].name"
            )
        nodes[node.id] = node
        names.add(node.name)

    # 3. Edge endpoints and handles
    predecessors: Dict[str, List[str]] = {node_id: [] for node_id in nodes}
    successors: Dict[str, List[str]] = {node_id: [] for node_id in nodes}
    incoming: Dict[str, List[EdgeDefinition]] = {node_id: [] for node_id in nodes}

    for edge in definition.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in nodes:
                raise WorkflowValidationError(
                    f"Edge references non-existent node: {endpoint}",
                    field="edges"
                )
        if edge.source == edge.target:
            raise WorkflowValidationError(
                f"Self-loop not allowed: {edge.source} -> {edge.target}",
                field="edges"
            )
        _validate_handle(edge, nodes[edge.source])

        incoming[edge.target].append(edge)
        if edge.source not in predecessors[edge.target]:
            predecessors[edge.target].append(edge.source)
            successors[edge.source].append(edge.target)

    # 4. Cycle detection
    cycle = find_cycle(list(nodes), successors)
    if cycle:
        raise WorkflowValidationError(
            f"Cycle detected in workflow graph: {' -> '.join(cycle)}",
            field="edges"
        )

    graph = WorkflowGraph(
        definition=definition,
        nodes=nodes,
        predecessors=predecessors,
        successors=successors,
        incoming=incoming,
        levels=compute_levels(list(nodes), predecessors, successors),
    )

    # 5. Producers must precede consumers
    _validate_references(graph)

    return graph


def _validate_handle(edge: EdgeDefinition, source) -> None:
    if not edge.source_handle:
        return
    if source.type == NodeType.CONDITION.value and edge.source_handle not in BRANCH_HANDLES:
        raise WorkflowValidationError(
            f"Edge {edge.id} leaves condition '{source.name}' through unknown handle "
            f"'{edge.source_handle}' (expected 'true' or 'false')",
            field="edges"
        )
    if source.type == NodeType.SWITCH.value:
        handles = {case.id for case in source.config.cases} | {DEFAULT_SWITCH_HANDLE}
        if edge.source_handle not in handles:
            raise WorkflowValidationError(
                f"Edge {edge.id} leaves switch '{source.name}' through unknown case '{edge.source_handle}'",
                field="edges"
            )


def find_cycle(node_ids: List[str], successors: Dict[str, List[str]]) -> Optional[List[str]]:
    """
    Depth-first cycle detection.

    Returns the node ids along the first cycle found (first node repeated at
    the end), or None for an acyclic graph.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {node_id: WHITE for node_id in node_ids}

    for start in node_ids:
        if color[start] != WHITE:
            continue
        stack = [(start, iter(successors[start]))]
        path = [start]
        color[start] = GREY
        while stack:
            node_id, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                path.pop()
                color[node_id] = BLACK
            elif color[child] == GREY:
                return path[path.index(child):] + [child]
            elif color[child] == WHITE:
                color[child] = GREY
                stack.append((child, iter(successors[child])))
                path.append(child)
    return None


def compute_levels(
    node_ids: List[str],
    predecessors: Dict[str, List[str]],
    successors: Dict[str, List[str]]
) -> List[List[str]]:
    """
    Partition an acyclic graph into execution levels.

    Level k holds the nodes whose predecessors all sit in levels 0..k-1.
    Within a level nodes keep their definition order.
    """
    position = {node_id: index for index, node_id in enumerate(node_ids)}
    in_degree = {node_id: len(predecessors[node_id]) for node_id in node_ids}
    current = [node_id for node_id in node_ids if in_degree[node_id] == 0]
    levels: List[List[str]] = []

    while current:
        levels.append(current)
        ready = []
        for node_id in current:
            for child in successors[node_id]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    ready.append(child)
        current = sorted(ready, key=position.__getitem__)

    placed = sum(len(level) for level in levels)
    if placed != len(node_ids):
        unplaced = [node_id for node_id in node_ids if in_degree[node_id] > 0]
        raise WorkflowValidationError(
            f"Cycle detected in workflow graph involving nodes: {unplaced}",
            field="edges"
        )
    return levels


def _raw_references(node) -> Iterator[VariableReference]:
    """
    Bare references (`B.result` without braces) in the fields CONDITION,
    SWITCH and LOOP read through resolve_value.
    """
    config = node.config
    fields: List[str] = []
    if node.type == NodeType.CONDITION.value:
        fields = [condition.variable for condition in config.conditions]
    elif node.type == NodeType.SWITCH.value:
        fields = [config.variable]
    elif node.type == NodeType.LOOP.value:
        if config.for_config is not None:
            fields.append(config.for_config.array_variable)
        if config.while_config is not None:
            fields.append(config.while_config.condition.variable)

    for text in fields:
        text = text.strip()
        # Templated fields are already covered by the template scan
        if text and "{{" not in text:
            yield VariableReference(raw=text, expression=text)


def _validate_references(graph: WorkflowGraph) -> None:
    by_name = {node.name: node_id for node_id, node in graph.nodes.items()}
    global_names = set(graph.definition.global_variables) | {"input", "triggerInput"}

    def resolve_node(candidate: str) -> Optional[str]:
        if candidate in by_name:
            return by_name[candidate]
        if candidate in graph.nodes:
            return candidate
        return None

    for node_id, node in graph.nodes.items():
        config = node.config
        scope_names = _scope_names(node)
        payload = config.model_dump(by_alias=False)
        references = chain(
            iter_references(payload, skip_keys=config.literal_fields),
            _raw_references(node),
        )

        for reference in references:
            if reference.is_reserved:
                continue
            parts = reference.parts
            if parts and parts[0] in scope_names:
                continue

            producer, _ = match_producer(parts, lambda candidate: resolve_node(candidate) is not None)
            if producer is not None:
                producer_id = resolve_node(producer)
                if producer_id == node_id or producer_id not in graph.ancestors(node_id):
                    raise WorkflowValidationError(
                        f"Node '{node.name}' references {reference.raw} but '{producer}' "
                        f"does not run before it",
                        field=f"nodes[{node_id}].config"
                    )
                continue

            if parts and parts[0] in global_names:
                continue

            graph.warnings.append(
                f"Node '{node.name}' references unknown variable {reference.raw}"
            )


def _scope_names(node) -> Set[str]:
    """Names a node's own config may reference without a producer (loop variables)"""
    if node.type != NodeType.LOOP.value:
        return set()
    names = {"loop"}
    if node.config.for_config is not None:
        names |= {node.config.for_config.item_name, node.config.for_config.index_name}
    if node.config.while_config is not None:
        names |= {"item", "index"}
    return names
