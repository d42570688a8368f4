# terrain_graph/document.py

"""
================================================================================
GRAPH DOCUMENT
================================================================================
The authored node/edge graph, as written by the authoring tool.

Data Contract:
---------------
- Inputs:
    - A dict / JSON text / JSON file in the authoring tool's format:
      {"nodes": [{"guid", "nodeType", "position": {"x", "y"},
                  "properties": [{"key", "value", "valueType"}]}],
       "edges": [{"outputNodeGuid", "outputPortIndex",
                  "inputNodeGuid", "inputPortIndex"}],
       "outputNodeGuid": "..."}
      On an edge, "output" names the SOURCE node/port and "input" names the
      DESTINATION node/port.
- Outputs:
    - GraphDocument with ordered nodes and edges. Serializes back to the same
      format, including any keys this module does not understand.
- Side Effects: load() and save() touch the filesystem.
- Invariants: The compiler treats a document as read-only. Node ids are
  unique; a repeated id is dropped on read.
================================================================================
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .diagnostics import DocumentError

logger = logging.getLogger(__name__)

_NODE_KEYS = ("guid", "nodeType", "position", "properties")
_EDGE_KEYS = ("outputNodeGuid", "outputPortIndex", "inputNodeGuid", "inputPortIndex")
_DOCUMENT_KEYS = ("nodes", "edges", "outputNodeGuid")


@dataclass
class NodeProperty:
    value: str
    declared_type: str = "string"


@dataclass
class GraphNode:
    id: str
    type: str
    properties: Dict[str, NodeProperty] = field(default_factory=dict)
    position: Tuple[float, float] = (0.0, 0.0)
    extra: dict = field(default_factory=dict)

    def property_value(self, key: str, default: str = None) -> Optional[str]:
        prop = self.properties.get(key)
        return prop.value if prop is not None else default


@dataclass
class GraphEdge:
    src_node: str
    src_port: int
    dst_node: str
    dst_port: int
    extra: dict = field(default_factory=dict)


def _property_text(value) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _port_index(value) -> int:
    """Port indices must be whole numbers; 1.5 or true is not a port."""
    if isinstance(value, bool):
        raise ValueError(f"port index {value!r} is not an integer")
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"port index {value!r} is not an integer")
    return int(number)


class GraphDocument:
    """Ordered nodes and edges plus the designated output node id."""

    def __init__(self, nodes: List[GraphNode] = None, edges: List[GraphEdge] = None,
                 output_node_id: str = None, extra: dict = None):
        self.nodes: List[GraphNode] = list(nodes or [])
        self.edges: List[GraphEdge] = list(edges or [])
        self.output_node_id = output_node_id
        self.extra = dict(extra or {})
        self._by_id = {node.id: node for node in self.nodes}

    def node(self, node_id: str) -> Optional[GraphNode]:
        return self._by_id.get(node_id)

    def inbound_edges(self, node_id: str) -> List[GraphEdge]:
        return [e for e in self.edges if e.dst_node == node_id]

    def outbound_edges(self, node_id: str) -> List[GraphEdge]:
        return [e for e in self.edges if e.src_node == node_id]

    # --- Reading ---

    @classmethod
    def from_dict(cls, data: dict) -> "GraphDocument":
        if not isinstance(data, dict):
            raise DocumentError(f"Graph document must be a JSON object, got {type(data).__name__}")
        raw_nodes = data.get("nodes", [])
        raw_edges = data.get("edges", [])
        if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
            raise DocumentError("Graph document 'nodes' and 'edges' must be lists")

        nodes = []
        seen = set()
        for index, raw in enumerate(raw_nodes):
            node = cls._read_node(raw, index)
            if node is None:
                continue
            if node.id in seen:
                logger.warning(f"Dropping node #{index}: duplicate id '{node.id}'")
                continue
            seen.add(node.id)
            nodes.append(node)

        edges = []
        for index, raw in enumerate(raw_edges):
            edge = cls._read_edge(raw, index)
            if edge is not None:
                edges.append(edge)

        output_node_id = data.get("outputNodeGuid") or None
        extra = {k: v for k, v in data.items() if k not in _DOCUMENT_KEYS}
        return cls(nodes, edges, output_node_id, extra)

    @staticmethod
    def _read_node(raw, index: int) -> Optional[GraphNode]:
        if not isinstance(raw, dict) or not raw.get("guid"):
            logger.warning(f"Dropping node #{index}: not an object with a 'guid'")
            return None

        raw_properties = raw.get("properties") or []
        if not isinstance(raw_properties, list):
            logger.warning(f"Node '{raw['guid']}': 'properties' is not a list, ignoring it")
            raw_properties = []

        properties = {}
        for prop in raw_properties:
            if not isinstance(prop, dict) or "key" not in prop:
                logger.warning(f"Node '{raw['guid']}': ignoring property entry without a key")
                continue
            properties[str(prop["key"])] = NodeProperty(
                value=_property_text(prop.get("value", "")),
                declared_type=str(prop.get("valueType", "string")),
            )

        position = raw.get("position") or {}
        try:
            pos = (float(position.get("x", 0.0)), float(position.get("y", 0.0)))
        except (AttributeError, TypeError, ValueError):
            pos = (0.0, 0.0)

        return GraphNode(
            id=str(raw["guid"]),
            type=str(raw.get("nodeType", "")),
            properties=properties,
            position=pos,
            extra={k: v for k, v in raw.items() if k not in _NODE_KEYS},
        )

    @staticmethod
    def _read_edge(raw, index: int) -> Optional[GraphEdge]:
        try:
            return GraphEdge(
                src_node=str(raw["outputNodeGuid"]),
                src_port=_port_index(raw.get("outputPortIndex", 0)),
                dst_node=str(raw["inputNodeGuid"]),
                dst_port=_port_index(raw.get("inputPortIndex", 0)),
                extra={k: v for k, v in raw.items() if k not in _EDGE_KEYS},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Dropping edge #{index}: {e!r}")
            return None

    @classmethod
    def from_json(cls, text: str) -> "GraphDocument":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DocumentError(f"Graph document is not valid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: str) -> "GraphDocument":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_json(f.read())

    # --- Writing ---

    def to_dict(self) -> dict:
        nodes = []
        for node in self.nodes:
            entry = {
                "guid": node.id,
                "nodeType": node.type,
                "position": {"x": node.position[0], "y": node.position[1]},
                "properties": [
                    {"key": key, "value": prop.value, "valueType": prop.declared_type}
                    for key, prop in node.properties.items()
                ],
            }
            entry.update(node.extra)
            nodes.append(entry)

        edges = []
        for edge in self.edges:
            entry = {
                "outputNodeGuid": edge.src_node,
                "outputPortIndex": edge.src_port,
                "inputNodeGuid": edge.dst_node,
                "inputPortIndex": edge.dst_port,
            }
            entry.update(edge.extra)
            edges.append(entry)

        data = {"nodes": nodes, "edges": edges, "outputNodeGuid": self.output_node_id or ""}
        data.update(self.extra)
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def save(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_json())
