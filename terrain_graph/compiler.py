# terrain_graph/compiler.py

"""
================================================================================
GRAPH COMPILER
================================================================================
Turns an authored GraphDocument into a tree of bound Fields: one root height
field plus an ordered list of splat layers.

Data Contract:
---------------
- Inputs:
    - document (GraphDocument): read-only.
    - logger (logging.Logger, optional): receives progress and diagnostics.
    - settings (dict, optional): may override the fallback generator
      ('fallback_frequency', 'fallback_octave_count', 'fallback_seed').
- Outputs:
    - CompiledGraph(root, layers, diagnostics, portals, arena).
- Side Effects: Logs messages using the provided logger.
- Invariants: Never raises for a malformed document. Every compiled Field
  has all of its input slots bound. No edge that would close a cycle is
  bound. Given the same document, the same root is selected.

Passes, in order:
    1. Root selection (which document output becomes the root)
    2. Instantiation of every non-marker node
    3. Wiring of ordinary edges
    4. Portal In registration
    5. Portal Out resolution
    6. Wiring of edges leaving Portal Out nodes
    7. Fallback binding of every slot still empty
    8. Layer extraction from SplatOutput nodes
================================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from . import config as DEFAULTS
from . import registry
from .diagnostics import Diagnostic, DiagnosticKind, DiagnosticLog
from .document import GraphDocument, GraphEdge, GraphNode
from .fields import Field, MultiOutputField, fallback_generator
from .registry import NodeKind


@dataclass(frozen=True)
class TextureDescriptor:
    diffuse_path: str = ""
    normal_map_path: str = ""
    metallic: float = DEFAULTS.LAYER_METALLIC
    occlusion: float = DEFAULTS.LAYER_OCCLUSION
    height: float = DEFAULTS.LAYER_HEIGHT
    smoothness: float = DEFAULTS.LAYER_SMOOTHNESS


@dataclass(frozen=True)
class TilingDescriptor:
    size_x: float = DEFAULTS.LAYER_TILE_SIZE[0]
    size_z: float = DEFAULTS.LAYER_TILE_SIZE[1]
    offset_x: float = DEFAULTS.LAYER_TILE_OFFSET[0]
    offset_z: float = DEFAULTS.LAYER_TILE_OFFSET[1]


@dataclass(frozen=True)
class LayerDescriptor:
    priority: int
    field: Field
    texture: TextureDescriptor
    tiling: TilingDescriptor
    node_id: str


class FieldArena:
    """
    Assigns every compiled Field a stable integer id and maps document
    outputs (node id, output index) to those ids.
    """

    def __init__(self):
        self._fields: List[Field] = []
        self._ids: Dict[int, int] = {}
        self._outputs: Dict[Tuple[str, int], int] = {}

    def add(self, f: Field) -> int:
        key = id(f)
        if key not in self._ids:
            self._ids[key] = len(self._fields)
            self._fields.append(f)
        return self._ids[key]

    def register(self, node_id: str, port: int, f: Field) -> int:
        field_id = self.add(f)
        self._outputs[(node_id, port)] = field_id
        return field_id

    def lookup(self, node_id: str, port: int) -> Optional[Field]:
        field_id = self._outputs.get((node_id, port))
        return self._fields[field_id] if field_id is not None else None

    def id_of(self, f: Field) -> int:
        return self._ids[id(f)]

    def get(self, field_id: int) -> Field:
        return self._fields[field_id]

    def children_ids(self, field_id: int) -> List[int]:
        return [self.add(child) for child in self._fields[field_id].children()]

    def reaches(self, start: Field, target: Field) -> bool:
        """True if target is start or is read, directly or not, by start."""
        target_id = self.add(target)
        stack = [self.add(start)]
        visited = set()
        while stack:
            current = stack.pop()
            if current == target_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(self.children_ids(current))
        return False

    def __len__(self):
        return len(self._fields)

    def __iter__(self):
        return iter(self._fields)


@dataclass
class CompiledGraph:
    root: Field
    layers: List[LayerDescriptor]
    diagnostics: List[Diagnostic]
    portals: Dict[str, Field] = field(default_factory=dict)
    arena: Optional[FieldArena] = None

    def fields(self) -> List[Field]:
        """The root followed by every layer field."""
        return [self.root] + [layer.field for layer in self.layers]


class GraphCompiler:
    """Single-use compiler for one document."""

    def __init__(self, document: GraphDocument, logger: logging.Logger = None, settings: dict = None):
        self.document = document
        self.logger = logger or logging.getLogger(__name__)
        self.settings = settings or {}
        self.diagnostics = DiagnosticLog(self.logger)
        self.arena = FieldArena()
        self.portals: Dict[str, Field] = {}

        self._kinds: Dict[str, NodeKind] = {}
        self._owners: Dict[str, Field] = {}           # node id -> Field whose slots get wired
        self._deferred: List[Tuple[int, GraphEdge]] = []
        self._fallback = fallback_generator(
            frequency=self.settings.get('fallback_frequency', DEFAULTS.FALLBACK_FREQUENCY),
            octave_count=self.settings.get('fallback_octave_count', DEFAULTS.FALLBACK_OCTAVE_COUNT),
            seed=self.settings.get('fallback_seed', DEFAULTS.FALLBACK_SEED),
        )
        self.arena.add(self._fallback)

    def compile(self) -> CompiledGraph:
        self._classify_nodes()
        root_source = self._select_root()
        self._instantiate()
        self._wire_edges()
        self._register_portals()
        self._resolve_portal_outs()
        self._wire_deferred_edges()
        self._bind_fallbacks()
        root = self._resolve_root(root_source)
        layers = self._extract_layers()

        self.logger.info(
            f"Compiled graph: {len(self.document.nodes)} nodes -> {len(self.arena)} fields, "
            f"{len(layers)} layer(s), {len(self.diagnostics)} diagnostic(s)"
        )
        return CompiledGraph(root, layers, self.diagnostics.as_list(), dict(self.portals), self.arena)

    # --- Helpers ---

    def _kind(self, node_id: str) -> Optional[NodeKind]:
        return self._kinds.get(node_id)

    def _nodes_of(self, kind: NodeKind) -> List[GraphNode]:
        return [n for n in self.document.nodes if self._kinds.get(n.id) is kind]

    def _input_edge(self, node: GraphNode) -> Optional[GraphEdge]:
        """The edge feeding a single-input marker node, if any."""
        edges = [e for e in self.document.inbound_edges(node.id) if e.dst_port == 0]
        if len(edges) > 1:
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"{node.type} has {len(edges)} inbound edges; using the last one",
                node_id=node.id,
            )
        return edges[-1] if edges else None

    def _source_field(self, edge: GraphEdge, edge_index: int = None) -> Optional[Field]:
        """Field produced at an edge's source, or None with a diagnostic."""
        kind = self._kind(edge.src_node)
        if kind is None:
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"Edge source '{edge.src_node}' is missing or has an unknown type",
                edge_index=edge_index,
            )
            return None
        outputs = registry.spec_for(kind).outputs
        if not 0 <= edge.src_port < outputs:
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"Output port {edge.src_port} is out of range for {kind.value} ({outputs} output(s))",
                node_id=edge.src_node, edge_index=edge_index,
            )
            return None
        source = self.arena.lookup(edge.src_node, edge.src_port)
        if source is None:
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"Edge source '{edge.src_node}' produced no field",
                node_id=edge.src_node, edge_index=edge_index,
            )
        return source

    def _bind(self, target: Field, slot: int, source: Field, node_id: str, edge_index: int = None) -> bool:
        if self.arena.reaches(source, target):
            self.diagnostics.record(
                DiagnosticKind.CYCLE,
                f"Binding {source.kind} into {target.kind} slot {slot} would close a cycle; edge skipped",
                node_id=node_id, edge_index=edge_index,
            )
            return False
        if target.is_bound(slot):
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"{target.kind} slot {slot} has more than one inbound edge; the later edge replaces the earlier",
                node_id=node_id, edge_index=edge_index,
            )
        target[slot] = source
        self.logger.debug(f"Bound {source.kind} -> {target.kind}[{slot}] (node {node_id})")
        return True

    # --- Passes ---

    def _classify_nodes(self):
        for node in self.document.nodes:
            kind = registry.node_kind(node.type)
            if kind is None:
                self.diagnostics.record(
                    DiagnosticKind.STRUCTURAL,
                    f"Unknown node type '{node.type}'; node ignored",
                    node_id=node.id,
                )
                continue
            self._kinds[node.id] = kind

    def _select_root(self) -> Optional[Tuple[str, int]]:
        """
        Returns the (node id, output index) the root field will come from,
        or None when the fallback generator must serve as the root.
        """
        doc = self.document

        # 1. The designated output node.
        if doc.output_node_id:
            node = doc.node(doc.output_node_id)
            kind = self._kind(doc.output_node_id)
            if node is None or kind is None:
                self.diagnostics.record(
                    DiagnosticKind.STRUCTURAL,
                    f"Designated output node '{doc.output_node_id}' does not exist",
                )
            elif kind is NodeKind.OUTPUT:
                return self._follow_output_marker(node)
            elif not registry.is_marker(kind) or kind is NodeKind.PORTAL_OUT:
                return node.id, 0
            else:
                self.diagnostics.record(
                    DiagnosticKind.STRUCTURAL,
                    f"Designated output node is a {kind.value} marker and cannot be the root",
                    node_id=node.id,
                )

        # 2. The first output marker in document order.
        markers = self._nodes_of(NodeKind.OUTPUT)
        if markers:
            return self._follow_output_marker(markers[0])

        # 3. A producing node nothing else reads from, else any producing node.
        producers = [n for n in doc.nodes if self._kind(n.id) is not None and not registry.is_marker(self._kind(n.id))]
        for node in producers:
            if not doc.outbound_edges(node.id):
                return node.id, 0
        if producers:
            return producers[0].id, 0

        self.diagnostics.record(
            DiagnosticKind.MISSING_INPUT,
            "Document contains no node that produces a value; using the fallback generator as root",
        )
        return None

    def _follow_output_marker(self, node: GraphNode) -> Optional[Tuple[str, int]]:
        edge = self._input_edge(node)
        if edge is None:
            self.diagnostics.record(
                DiagnosticKind.MISSING_INPUT,
                "Output node has no inbound edge; using the fallback generator as root",
                node_id=node.id,
            )
            return None
        return edge.src_node, edge.src_port

    def _instantiate(self):
        for node in self.document.nodes:
            kind = self._kind(node.id)
            if kind is None or registry.is_marker(kind):
                continue
            spec = registry.spec_for(kind)
            values = registry.parse_properties(node, spec, self.diagnostics)
            try:
                owner = spec.factory(**registry.constructor_arguments(spec, values))
            except ValueError as e:
                self.diagnostics.record(
                    DiagnosticKind.PROPERTY_PARSE,
                    f"{kind.value} rejected its properties ({e}); using defaults",
                    node_id=node.id,
                )
                defaults = {p.key: p.default for p in spec.properties}
                owner = spec.factory(**registry.constructor_arguments(spec, defaults))

            self._owners[node.id] = owner
            self.arena.add(owner)
            if isinstance(owner, MultiOutputField):
                for index in range(spec.outputs):
                    self.arena.register(node.id, index, owner.output(index))
            else:
                self.arena.register(node.id, 0, owner)

    def _wire_edge(self, edge_index: int, edge: GraphEdge):
        target = self._owners.get(edge.dst_node)
        if target is None:
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"Edge destination '{edge.dst_node}' is missing or has an unknown type",
                edge_index=edge_index,
            )
            return
        if not 0 <= edge.dst_port < target.arity:
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"Input port {edge.dst_port} is out of range for {target.kind} ({target.arity} input(s))",
                node_id=edge.dst_node, edge_index=edge_index,
            )
            return
        source = self._source_field(edge, edge_index)
        if source is not None:
            self._bind(target, edge.dst_port, source, edge.dst_node, edge_index)

    def _wire_edges(self):
        for edge_index, edge in enumerate(self.document.edges):
            dst_kind = self._kind(edge.dst_node)
            if dst_kind is not None and registry.is_marker(dst_kind):
                continue
            if self._kind(edge.src_node) is NodeKind.PORTAL_OUT:
                self._deferred.append((edge_index, edge))
                continue
            self._wire_edge(edge_index, edge)

    def _register_portals(self):
        owners: Dict[str, str] = {}
        for node in self._nodes_of(NodeKind.PORTAL_IN):
            name = registry.parse_properties(node, registry.spec_for(NodeKind.PORTAL_IN), self.diagnostics)["portalName"]
            edge = self._input_edge(node)
            source = None
            if edge is None:
                self.diagnostics.record(
                    DiagnosticKind.MISSING_INPUT,
                    f"Portal In '{name}' has no inbound edge; it forwards the fallback generator",
                    node_id=node.id,
                )
            elif self._kind(edge.src_node) is NodeKind.PORTAL_OUT:
                self.diagnostics.record(
                    DiagnosticKind.STRUCTURAL,
                    f"Portal In '{name}' is fed by another portal; chained portals are not followed",
                    node_id=node.id,
                )
            else:
                source = self._source_field(edge)

            if name in owners:
                self.diagnostics.record(
                    DiagnosticKind.PORTAL_CONFLICT,
                    f"Portal name '{name}' is already registered by node '{owners[name]}'; the later Portal In wins",
                    node_id=node.id,
                )
            owners[name] = node.id
            self.portals[name] = source if source is not None else self._fallback

    def _resolve_portal_outs(self):
        for node in self._nodes_of(NodeKind.PORTAL_OUT):
            name = registry.parse_properties(node, registry.spec_for(NodeKind.PORTAL_OUT), self.diagnostics)["selectedPortalName"]
            target = self.portals.get(name) if name else None
            if target is None:
                self.diagnostics.record(
                    DiagnosticKind.UNRESOLVED_PORTAL,
                    f"Portal Out selects unknown portal '{name}'; using the fallback generator",
                    node_id=node.id,
                )
                target = self._fallback
            self.arena.register(node.id, 0, target)

    def _wire_deferred_edges(self):
        for edge_index, edge in self._deferred:
            self._wire_edge(edge_index, edge)

    def _bind_fallbacks(self):
        for node_id, owner in self._owners.items():
            for slot in owner.unbound_slots():
                self.diagnostics.record(
                    DiagnosticKind.MISSING_INPUT,
                    f"{owner.kind} input {slot} is not connected; bound to the fallback generator",
                    node_id=node_id,
                )
                owner[slot] = self._fallback

    def _resolve_root(self, root_source: Optional[Tuple[str, int]]) -> Field:
        if root_source is None:
            return self._fallback
        node_id, port = root_source
        root = self.arena.lookup(node_id, port)
        if root is None:
            self.diagnostics.record(
                DiagnosticKind.STRUCTURAL,
                f"Root source '{node_id}' output {port} produced no field; using the fallback generator",
                node_id=node_id,
            )
            return self._fallback
        return root

    def _extract_layers(self) -> List[LayerDescriptor]:
        spec = registry.spec_for(NodeKind.SPLAT_OUTPUT)
        layers = []
        for node in self._nodes_of(NodeKind.SPLAT_OUTPUT):
            values = registry.parse_properties(node, spec, self.diagnostics)
            edge = self._input_edge(node)
            source = self._source_field(edge) if edge is not None else None
            if source is None:
                self.diagnostics.record(
                    DiagnosticKind.MISSING_INPUT,
                    "SplatOutput has no usable input; its weight comes from the fallback generator",
                    node_id=node.id,
                )
                source = self._fallback

            layers.append(LayerDescriptor(
                priority=values["orderId"],
                field=source,
                texture=TextureDescriptor(
                    diffuse_path=values["diffuseTexturePath"],
                    normal_map_path=values["normalMapPath"],
                    metallic=values["metallic"],
                    occlusion=values["occlusion"],
                    height=values["height"],
                    smoothness=values["smoothness"],
                ),
                tiling=TilingDescriptor(
                    size_x=values["tileSizeX"],
                    size_z=values["tileSizeY"],
                    offset_x=values["tileOffsetX"],
                    offset_z=values["tileOffsetY"],
                ),
                node_id=node.id,
            ))

        # sorted() is stable, so equal priorities keep document order.
        return sorted(layers, key=lambda layer: layer.priority)


def compile_graph(document: GraphDocument, logger: logging.Logger = None, settings: dict = None) -> CompiledGraph:
    """Compiles a document into a root field and its splat layers."""
    return GraphCompiler(document, logger=logger, settings=settings).compile()
