# terrain_graph/registry.py

"""
================================================================================
NODE REGISTRY
================================================================================
The closed set of node kinds a graph document may contain, and for each kind
its input arity, output count, Field constructor and property table.

Data Contract:
---------------
- Inputs:
    - Document type tags (e.g. "Perlin", "Portal In").
    - GraphNode property strings with their declared types.
- Outputs:
    - NodeKind / NodeSpec lookups.
    - parse_properties(): constructor keyword arguments for one node, with
      the documented default substituted for anything that fails to parse.
- Side Effects: Parse failures are recorded on the supplied DiagnosticLog.
- Invariants: Every NodeKind has exactly one NodeSpec; this is checked when
  the module is imported. Marker kinds have no constructor.
================================================================================
"""

import enum
import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from . import config as DEFAULTS
from . import fields
from . import noise
from . import terrain_ops
from .diagnostics import DiagnosticKind, DiagnosticLog
from .document import GraphNode
from .region_cache import RegionCache


class NodeKind(enum.Enum):
    PERLIN = "Perlin"
    BILLOW = "Billow"
    RIDGED_MULTIFRACTAL = "RidgedMultifractal"
    CONST = "Const"
    ADD = "Add"
    MULTIPLY = "Multiply"
    SUBTRACT = "Subtract"
    MIN = "Min"
    MAX = "Max"
    POWER = "Power"
    BLEND = "Blend"
    SELECT = "Select"
    ABS = "Abs"
    INVERT = "Invert"
    NORMALIZE = "Normalize"
    CLAMP = "Clamp"
    SCALE = "Scale"
    SCALE_BIAS = "ScaleBias"
    CURVE = "Curve"
    EROSION = "Erosion"
    BEACH = "Beach"
    SEDIMENT = "Sediment"
    SLOPE = "Slope"
    HEIGHT_SELECTOR = "Height Selector"
    CACHE = "Cache"
    # Markers: no Field of their own.
    OUTPUT = "Output"
    SPLAT_OUTPUT = "SplatOutput"
    PORTAL_IN = "Portal In"
    PORTAL_OUT = "Portal Out"


MARKER_KINDS = frozenset({
    NodeKind.OUTPUT,
    NodeKind.SPLAT_OUTPUT,
    NodeKind.PORTAL_IN,
    NodeKind.PORTAL_OUT,
})

# Value types a PropertySpec can expect.
FLOAT = "float"
INT = "int"
STRING = "string"
QUALITY = "quality"
CURVE = "curve"


@dataclass(frozen=True)
class PropertySpec:
    key: str
    value_type: str
    default: Any
    argument: Optional[str] = None     # Constructor keyword; None for marker metadata
    choices: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NodeSpec:
    kind: NodeKind
    arity: int
    outputs: int
    factory: Optional[Callable[..., fields.Field]]
    properties: Tuple[PropertySpec, ...] = ()


def _noise_properties(with_persistence: bool = True) -> Tuple[PropertySpec, ...]:
    props = [
        PropertySpec("frequency", FLOAT, DEFAULTS.DEFAULT_FREQUENCY, "frequency"),
        PropertySpec("lacunarity", FLOAT, DEFAULTS.DEFAULT_LACUNARITY, "lacunarity"),
    ]
    if with_persistence:
        props.append(PropertySpec("persistence", FLOAT, DEFAULTS.DEFAULT_PERSISTENCE, "persistence"))
    props += [
        PropertySpec("octaveCount", INT, DEFAULTS.DEFAULT_OCTAVE_COUNT, "octave_count"),
        PropertySpec("seed", INT, DEFAULTS.DEFAULT_SEED, "seed"),
        PropertySpec("quality", QUALITY, DEFAULTS.DEFAULT_QUALITY, "quality"),
    ]
    return tuple(props)


def _binary(kind: NodeKind, cls) -> NodeSpec:
    return NodeSpec(kind, 2, 1, cls)


def _unary(kind: NodeKind, cls, *properties: PropertySpec) -> NodeSpec:
    return NodeSpec(kind, 1, 1, cls, tuple(properties))


_SPLAT_PROPERTIES = (
    PropertySpec("orderId", INT, 0),
    PropertySpec("diffuseTexturePath", STRING, ""),
    PropertySpec("normalMapPath", STRING, ""),
    PropertySpec("metallic", FLOAT, DEFAULTS.LAYER_METALLIC),
    PropertySpec("occlusion", FLOAT, DEFAULTS.LAYER_OCCLUSION),
    PropertySpec("height", FLOAT, DEFAULTS.LAYER_HEIGHT),
    PropertySpec("smoothness", FLOAT, DEFAULTS.LAYER_SMOOTHNESS),
    PropertySpec("tileSizeX", FLOAT, DEFAULTS.LAYER_TILE_SIZE[0]),
    PropertySpec("tileSizeY", FLOAT, DEFAULTS.LAYER_TILE_SIZE[1]),
    PropertySpec("tileOffsetX", FLOAT, DEFAULTS.LAYER_TILE_OFFSET[0]),
    PropertySpec("tileOffsetY", FLOAT, DEFAULTS.LAYER_TILE_OFFSET[1]),
)

_SPECS: Dict[NodeKind, NodeSpec] = {spec.kind: spec for spec in (
    # Generators
    NodeSpec(NodeKind.PERLIN, 0, 1, fields.Perlin, _noise_properties()),
    NodeSpec(NodeKind.BILLOW, 0, 1, fields.Billow, _noise_properties()),
    NodeSpec(NodeKind.RIDGED_MULTIFRACTAL, 0, 1, fields.RidgedMultifractal, _noise_properties(False)),
    NodeSpec(NodeKind.CONST, 0, 1, fields.Const, (PropertySpec("value", FLOAT, 0.0, "value"),)),
    # Combiners
    _binary(NodeKind.ADD, fields.Add),
    _binary(NodeKind.MULTIPLY, fields.Multiply),
    _binary(NodeKind.SUBTRACT, fields.Subtract),
    _binary(NodeKind.MIN, fields.Min),
    _binary(NodeKind.MAX, fields.Max),
    _binary(NodeKind.POWER, fields.Power),
    NodeSpec(NodeKind.BLEND, 3, 1, fields.Blend),
    NodeSpec(NodeKind.SELECT, 3, 1, fields.Select, (
        PropertySpec("minimum", FLOAT, -1.0, "minimum"),
        PropertySpec("maximum", FLOAT, 1.0, "maximum"),
        PropertySpec("fallOff", FLOAT, 0.0, "fall_off"),
    )),
    # Modifiers
    _unary(NodeKind.ABS, fields.Abs),
    _unary(NodeKind.INVERT, fields.Invert),
    _unary(NodeKind.NORMALIZE, fields.Normalize),
    _unary(NodeKind.CLAMP, fields.Clamp,
           PropertySpec("minimum", FLOAT, -1.0, "minimum"),
           PropertySpec("maximum", FLOAT, 1.0, "maximum")),
    _unary(NodeKind.SCALE, fields.Scale,
           PropertySpec("x", FLOAT, 1.0, "x"),
           PropertySpec("y", FLOAT, 1.0, "y"),
           PropertySpec("z", FLOAT, 1.0, "z")),
    _unary(NodeKind.SCALE_BIAS, fields.ScaleBias,
           PropertySpec("scale", FLOAT, 1.0, "scale"),
           PropertySpec("bias", FLOAT, 0.0, "bias")),
    _unary(NodeKind.CURVE, fields.Curve,
           PropertySpec("curve", CURVE, DEFAULTS.DEFAULT_CURVE_POINTS, "points")),
    # Terrain operators
    _unary(NodeKind.EROSION, terrain_ops.Erosion,
           PropertySpec("intensity", FLOAT, 0.5, "intensity"),
           PropertySpec("iterations", FLOAT, 1.0, "iterations"),
           PropertySpec("sampleDistance", FLOAT, 1.0, "sample_distance")),
    NodeSpec(NodeKind.BEACH, 1, 2, terrain_ops.Beach, (
        PropertySpec("waterLevel", FLOAT, 0.0, "water_level"),
        PropertySpec("beachSize", FLOAT, 0.1, "beach_size"),
        PropertySpec("beachHeight", FLOAT, 0.05, "beach_height"),
        PropertySpec("smoothRange", FLOAT, 0.02, "smooth_range"),
        PropertySpec("sandBlur", FLOAT, 0.05, "sand_blur"),
    )),
    NodeSpec(NodeKind.SEDIMENT, 2, 2, terrain_ops.Sediment, (
        PropertySpec("cliffThreshold", FLOAT, 0.1, "cliff_threshold"),
        PropertySpec("sedimentThreshold", FLOAT, 0.01, "sediment_threshold"),
    )),
    _unary(NodeKind.SLOPE, terrain_ops.Slope,
           PropertySpec("sampleDistance", FLOAT, 1.0, "sample_distance"),
           PropertySpec("minAngle", FLOAT, 0.0, "min_angle"),
           PropertySpec("maxAngle", FLOAT, 90.0, "max_angle"),
           PropertySpec("smoothRange", FLOAT, 0.0, "smooth_range"),
           PropertySpec("terrainHeight", FLOAT, 1.0, "terrain_height"),
           PropertySpec("outputMode", STRING, "Delta", "output_mode", terrain_ops.SLOPE_OUTPUT_MODES)),
    _unary(NodeKind.HEIGHT_SELECTOR, terrain_ops.HeightSelector,
           PropertySpec("minHeight", FLOAT, -1.0, "min_height"),
           PropertySpec("maxHeight", FLOAT, 1.0, "max_height")),
    _unary(NodeKind.CACHE, RegionCache,
           PropertySpec("cacheScale", FLOAT, DEFAULTS.CACHE_SCALE, "scale"),
           PropertySpec("cacheResolution", INT, DEFAULTS.CACHE_RESOLUTION, "resolution")),
    # Markers
    NodeSpec(NodeKind.OUTPUT, 1, 0, None),
    NodeSpec(NodeKind.SPLAT_OUTPUT, 1, 0, None, _SPLAT_PROPERTIES),
    NodeSpec(NodeKind.PORTAL_IN, 1, 0, None, (PropertySpec("portalName", STRING, "Portal"),)),
    NodeSpec(NodeKind.PORTAL_OUT, 0, 1, None, (PropertySpec("selectedPortalName", STRING, ""),)),
)}

_missing = [kind.value for kind in NodeKind if kind not in _SPECS]
if _missing:
    raise RuntimeError(f"Node kinds without a registry entry: {_missing}")
for _kind, _spec in _SPECS.items():
    if (_spec.factory is None) != (_kind in MARKER_KINDS):
        raise RuntimeError(f"Registry entry for '{_kind.value}' has the wrong constructor")

_BY_TAG = {kind.value: kind for kind in NodeKind}


def node_kind(type_tag: str) -> Optional[NodeKind]:
    return _BY_TAG.get(type_tag)


def spec_for(kind: NodeKind) -> NodeSpec:
    return _SPECS[kind]


def is_marker(kind: NodeKind) -> bool:
    return kind in MARKER_KINDS


# ==============================================================================
# Property parsing
# ==============================================================================

def _finite(value: float) -> float:
    if not math.isfinite(value):
        raise ValueError(f"{value} is not a finite number")
    return value


def _parse_curve_text(text: str):
    data = json.loads(text)
    keys = data.get("keys", []) if isinstance(data, dict) else data
    points = []
    for key in keys:
        if isinstance(key, dict):
            points.append((float(key["time"]), float(key["value"])))
        else:
            points.append((float(key[0]), float(key[1])))
    return points


def _parse_declared(text: str, declared_type: str):
    """Reads a property string according to the type the document declares."""
    if declared_type in ("double", "float"):
        return _finite(float(text))
    if declared_type == "int":
        number = _finite(float(text))
        if not number.is_integer():
            raise ValueError(f"'{text}' is not an integer")
        return int(number)
    if declared_type == "AnimationCurve":
        return _parse_curve_text(text)
    # 'string', 'QualityMode' and unknown declared types stay text.
    return text


def _coerce(value, prop: PropertySpec):
    """Converts a parsed value to the type the node expects."""
    if prop.value_type == FLOAT:
        if isinstance(value, (list, tuple)):
            raise ValueError("expected a number")
        return _finite(float(value))
    if prop.value_type == INT:
        if isinstance(value, (list, tuple)):
            raise ValueError("expected an integer")
        return int(round(_finite(float(value))))
    if prop.value_type == QUALITY:
        if isinstance(value, str) and value in noise.QUALITY_MODES:
            return value
        # Enumerations are sometimes stored by index.
        number = _finite(float(value))
        if not number.is_integer():
            raise ValueError(f"'{value}' is not a quality index")
        index = int(number)
        names = {code: name for name, code in noise.QUALITY_MODES.items()}
        return names[index]
    if prop.value_type == CURVE:
        if isinstance(value, str):
            value = _parse_curve_text(value)
        points = [(float(i), float(o)) for i, o in value]
        if len(points) < DEFAULTS.MIN_CURVE_POINTS:
            raise ValueError(f"curve has {len(points)} control points, needs {DEFAULTS.MIN_CURVE_POINTS}")
        if len({i for i, _ in points}) != len(points):
            raise ValueError("curve control points repeat an input value")
        if not all(math.isfinite(c) for point in points for c in point):
            raise ValueError("curve control points must be finite")
        return tuple(points)
    text = str(value)
    if prop.choices and text not in prop.choices:
        raise ValueError(f"'{text}' is not one of {list(prop.choices)}")
    return text


def parse_properties(node: GraphNode, spec: NodeSpec, diagnostics: DiagnosticLog) -> Dict[str, Any]:
    """
    Returns {property key: value} for every property the NodeSpec declares. Missing
    properties take their default silently; unparseable ones take their
    default and record a PROPERTY_PARSE diagnostic.
    """
    values = {}
    for prop in spec.properties:
        raw = node.properties.get(prop.key)
        if raw is None:
            values[prop.key] = prop.default
            continue
        try:
            values[prop.key] = _coerce(_parse_declared(raw.value, raw.declared_type), prop)
        except (ValueError, TypeError, KeyError, IndexError, AttributeError, OverflowError) as e:
            diagnostics.record(
                DiagnosticKind.PROPERTY_PARSE,
                f"{node.type} property '{prop.key}' = {raw.value!r} ({raw.declared_type}) is invalid: {e}; "
                f"using default {prop.default!r}",
                node_id=node.id,
            )
            values[prop.key] = prop.default
    return values


def constructor_arguments(spec: NodeSpec, values: Dict[str, Any]) -> Dict[str, Any]:
    return {prop.argument: values[prop.key] for prop in spec.properties if prop.argument}
