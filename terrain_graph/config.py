# terrain_graph/config.py

"""
================================================================================
INTERNAL DEFAULT CONFIGURATION
================================================================================
This module contains the default, fallback internal constants for the terrain
graph compiler and sampling pipeline. These values are used if they are not
explicitly provided by the user's configuration or by a node's properties.

DO NOT MODIFY THIS FILE FOR A SPECIFIC TERRAIN.
Instead, pass a configuration dictionary to the TerrainGenerator instance, or
set the properties on the nodes of the graph document.
================================================================================
"""

# --- Coherent Noise Generators ---
# These match the defaults the authoring tool writes for a fresh generator node.
DEFAULT_SEED = 0
DEFAULT_FREQUENCY = 1.0
DEFAULT_LACUNARITY = 2.0
DEFAULT_PERSISTENCE = 0.5
DEFAULT_OCTAVE_COUNT = 6
DEFAULT_QUALITY = "Medium"

# Octave counts beyond this add nothing visible at double precision.
MAX_OCTAVE_COUNT = 30

# Ridged multifractal shaping constants.
RIDGED_OFFSET = 1.0
RIDGED_GAIN = 2.0
RIDGED_SPECTRAL_EXPONENT = 1.0

# --- Fallback Generator ---
# Bound into every input slot the document left unconnected, so that every
# compiled field can be evaluated at every coordinate.
FALLBACK_FREQUENCY = 1.0
FALLBACK_OCTAVE_COUNT = 1
FALLBACK_SEED = 0

# Root used when no graph is loaded at all.
DEFAULT_ROOT_FREQUENCY = 0.01

# --- Curve ---
# Built-in near-identity curve used when a Curve node has fewer than 4 keys.
DEFAULT_CURVE_POINTS = (
    (-1.0, -1.0),
    (-0.33, -0.33),
    (0.33, 0.33),
    (1.0, 1.0),
)
MIN_CURVE_POINTS = 4

# --- Terrain Operators ---
# Erosion smoothing iterations are capped; later iterations contribute little.
MAX_EROSION_ITERATIONS = 10
EROSION_SMOOTHING_FACTOR = 0.15

# Below this smooth range the beach falloff is linear instead of smoothstep.
BEACH_SMOOTH_EPSILON = 0.0001

# Slope angles above this are treated as vertical (unbounded delta).
SLOPE_VERTICAL_ANGLE = 89.9
SLOPE_UNBOUNDED_DELTA = 20000000.0
SLOPE_FLAT_ANGLE = 0.00001

# --- Region Cache ---
CACHE_RESOLUTION = 128
CACHE_SCALE = 0.1
# Caches sample the horizontal plane at this height.
CACHE_PLANE_Y = 0.0

# --- Tiles & Sampling ---
TILE_SIZE = (100.0, 20.0, 100.0)  # Width, height, length in world units
TILE_RADIUS = 2                   # Tiles generated in each direction from the center
HEIGHTMAP_RESOLUTION = 256        # Height grids are resolution+1 samples per side
ALPHAMAP_RESOLUTION = 256
SAMPLING_WORKERS = None           # None = one worker per CPU

# --- Layer Blending ---
# 'priority': layers consume a shared per-cell alpha budget in priority order.
# 'proportional': every layer's weight is divided by the sum of all weights.
BLEND_MODE = "priority"
# Order in which priority compositing consumes the budget: 'ascending' gives
# the lowest orderId first claim, 'descending' the highest.
BLEND_DIRECTION = "ascending"
# Totals below this fall back to an equal split across all layers.
BLEND_EPSILON = 0.0001

# --- Splat Layer Defaults ---
LAYER_TILE_SIZE = (15.0, 15.0)
LAYER_TILE_OFFSET = (0.0, 0.0)
LAYER_METALLIC = 0.0
LAYER_OCCLUSION = 1.0
LAYER_HEIGHT = 0.0
LAYER_SMOOTHNESS = 0.5
