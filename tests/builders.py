# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow definition builders shared by the test modules
"""

from typing import Any, Dict, Iterable, Optional


def node(node_id: str, node_type: str, name: Optional[str] = None, timeout: Optional[float] = None, **config: Any) -> Dict[str, Any]:
    data = {
        "id": node_id,
        "type": node_type,
        "name": name or node_id,
        "position": {"x": 0, "y": 0},
        "config": config,
    }
    if timeout is not None:
        data["timeout"] = timeout
    return data


def edge(source: str, target: str, handle: Optional[str] = None) -> Dict[str, Any]:
    data = {"id": f"{source}-{target}", "source": source, "target": target}
    if handle is not None:
        data["sourceHandle"] = handle
    return data


def workflow(
    nodes: Iterable[Dict[str, Any]],
    edges: Iterable[Dict[str, Any]] = (),
    global_variables: Optional[Dict[str, Any]] = None,
    **settings: Any
) -> Dict[str, Any]:
    return {
        "id": "wf_test",
        "name": "Test Workflow",
        "version": 1,
        "nodes": list(nodes),
        "edges": list(edges),
        "settings": settings,
        "globalVariables": global_variables or {},
    }


def process(node_id: str, prompt: str = "run", name: Optional[str] = None, **config: Any) -> Dict[str, Any]:
    return node(node_id, "PROCESS", name=name, userPrompt=prompt, **config)


def diamond(**settings: Any) -> Dict[str, Any]:
    """A -> B, A -> C, B -> D, C -> D"""
    return workflow(
        [process("A"), process("B"), process("C"), process("D")],
        [edge("A", "B"), edge("A", "C"), edge("B", "D"), edge("C", "D")],
        **settings
    )
