# terrain_graph/sampling.py

"""
================================================================================
PARALLEL SAMPLING & BLEND PIPELINE
================================================================================
Samples compiled fields over a tile grid and turns the raw samples into a
heightmap and normalized per-layer splat weights.

Data Contract:
---------------
- Inputs:
    - A compiled root Field and/or a list of LayerDescriptors.
    - TileSpec: where the tile sits in the world, and its size.
    - A grid resolution and an optional worker count.
- Outputs:
    - Heightmap: (resolution+1, resolution+1) array, indexed [z, x], values
      (v + 1) * 0.5 of the raw root samples. Not clamped.
    - Weights: (resolution, resolution, n_layers) array, indexed [z, x, layer],
      each cell summing to 1 (empty last axis when there are no layers).
- Side Effects: populate_all_reachable_caches() fills every Region Cache
  reachable from the given fields.
- Invariants: Work is split by row, each task writing only its own row, so no
  locks are needed. Phase 1 (raw samples) finishes before Phase 2 (remap and
  blend) starts. Caches must be populated before sampling, never during it.
================================================================================
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

import numpy as np

from . import config as DEFAULTS
from .compiler import LayerDescriptor
from .fields import Field, OutputPort
from .region_cache import Rectangle, RegionCache

logger = logging.getLogger(__name__)

BLEND_MODES = ("priority", "proportional")
BLEND_DIRECTIONS = ("ascending", "descending")


@dataclass(frozen=True)
class TileSpec:
    tile_x: int
    tile_z: int
    size_x: float = DEFAULTS.TILE_SIZE[0]
    size_z: float = DEFAULTS.TILE_SIZE[2]

    @property
    def origin(self) -> Tuple[float, float]:
        return self.tile_x * self.size_x, self.tile_z * self.size_z

    @property
    def rectangle(self) -> Rectangle:
        x0, z0 = self.origin
        return Rectangle(x0, z0, x0 + self.size_x, z0 + self.size_z)


def _run_rows(task: Callable[[int], None], rows: int, workers: int = None):
    """Runs task(row) for every row on a thread pool and waits for all of them."""
    workers = workers or DEFAULTS.SAMPLING_WORKERS or os.cpu_count() or 1
    with ThreadPoolExecutor(max_workers=workers) as pool:
        # Consuming the results re-raises any exception from a worker.
        for _ in pool.map(task, range(rows)):
            pass


def _axis(origin: float, size: float, samples: int, divisions: int) -> np.ndarray:
    return origin + (np.arange(samples) / divisions) * size


# ==============================================================================
# Heightmaps
# ==============================================================================

def sample_heightmap(root: Field, tile: TileSpec, resolution: int = DEFAULTS.HEIGHTMAP_RESOLUTION,
                     workers: int = None) -> np.ndarray:
    if resolution < 1:
        raise ValueError(f"Heightmap resolution must be at least 1, got {resolution}")
    size = resolution + 1
    x0, z0 = tile.origin
    xs = _axis(x0, tile.size_x, size, resolution)
    zs = _axis(z0, tile.size_z, size, resolution)
    ys = np.full(size, DEFAULTS.CACHE_PLANE_Y)

    raw = np.empty((size, size))
    heights = np.empty((size, size))

    # Phase 1: raw samples.
    def sample_row(row):
        raw[row] = root.compute(xs, ys, np.full(size, zs[row]))

    # Phase 2: [-1, 1] -> [0, 1], unclamped.
    def remap_row(row):
        heights[row] = (raw[row] + 1.0) * 0.5

    _run_rows(sample_row, size, workers)
    _run_rows(remap_row, size, workers)
    return heights


# ==============================================================================
# Layer weights
# ==============================================================================

def composite_priority(weights: np.ndarray, direction: str = DEFAULTS.BLEND_DIRECTION) -> np.ndarray:
    """
    Alpha compositing over the last axis. Layers claim weight * budget of a
    per-cell budget of 1.0 in turn; 'ascending' lets the first layer claim
    first, 'descending' the last.
    """
    alphas = np.zeros_like(weights)
    budget = np.ones(weights.shape[:-1])
    order = range(weights.shape[-1])
    if direction == "descending":
        order = reversed(order)
    for layer in order:
        consumed = weights[..., layer] * budget
        alphas[..., layer] = consumed
        budget = budget - consumed
        if not np.any(budget > 0.0):
            break
    return alphas


def normalize_alphas(alphas: np.ndarray, epsilon: float = DEFAULTS.BLEND_EPSILON) -> np.ndarray:
    """Scales each cell to sum to 1; cells with a near-zero total split evenly."""
    layers = alphas.shape[-1]
    total = alphas.sum(axis=-1, keepdims=True)
    usable = total > epsilon
    scaled = alphas / np.where(usable, total, 1.0)
    return np.where(usable, scaled, 1.0 / layers)


def blend_weights(weights: np.ndarray, mode: str = DEFAULTS.BLEND_MODE,
                  direction: str = DEFAULTS.BLEND_DIRECTION,
                  epsilon: float = DEFAULTS.BLEND_EPSILON) -> np.ndarray:
    """Normalized [0, 1] layer weights -> final alphas summing to 1 per cell."""
    if mode == "priority":
        alphas = composite_priority(weights, direction)
    elif mode == "proportional":
        alphas = weights
    else:
        raise ValueError(f"Unknown blend mode '{mode}', expected one of {BLEND_MODES}")
    return normalize_alphas(alphas, epsilon)


def _sampling_plan(layer_fields: Sequence[Field]):
    """
    Groups layer fields so each distinct field, and each multi-output owner,
    is sampled once per row. Returns (plain, owners):
        plain:  [(field, [layer indices])]
        owners: [(owner, [(output index, layer index)])]
    """
    plain: Dict[int, Tuple[Field, List[int]]] = {}
    owners: Dict[int, Tuple[Field, List[Tuple[int, int]]]] = {}
    for layer_index, f in enumerate(layer_fields):
        if isinstance(f, OutputPort):
            owners.setdefault(id(f.owner), (f.owner, []))[1].append((f.index, layer_index))
        else:
            plain.setdefault(id(f), (f, []))[1].append(layer_index)
    return list(plain.values()), list(owners.values())


def sample_layer_weights(layers: Sequence[LayerDescriptor], tile: TileSpec,
                         resolution: int = DEFAULTS.ALPHAMAP_RESOLUTION,
                         mode: str = DEFAULTS.BLEND_MODE, direction: str = DEFAULTS.BLEND_DIRECTION,
                         workers: int = None, epsilon: float = DEFAULTS.BLEND_EPSILON) -> np.ndarray:
    if mode not in BLEND_MODES:
        raise ValueError(f"Unknown blend mode '{mode}', expected one of {BLEND_MODES}")
    if direction not in BLEND_DIRECTIONS:
        raise ValueError(f"Unknown blend direction '{direction}', expected one of {BLEND_DIRECTIONS}")
    if resolution < 2:
        raise ValueError(f"Alphamap resolution must be at least 2, got {resolution}")

    count = len(layers)
    if count == 0:
        return np.zeros((resolution, resolution, 0))

    x0, z0 = tile.origin
    xs = _axis(x0, tile.size_x, resolution, resolution - 1)
    zs = _axis(z0, tile.size_z, resolution, resolution - 1)
    ys = np.full(resolution, DEFAULTS.CACHE_PLANE_Y)
    plain, owners = _sampling_plan([layer.field for layer in layers])

    raw = np.empty((resolution, resolution, count))
    alphas = np.empty((resolution, resolution, count))

    # Phase 1: raw samples, one evaluation per distinct field or owner.
    def sample_row(row):
        zrow = np.full(resolution, zs[row])
        for f, indices in plain:
            values = f.compute(xs, ys, zrow)
            for layer_index in indices:
                raw[row, :, layer_index] = values
        for owner, ports in owners:
            outputs = owner.compute_outputs(xs, ys, zrow)
            for output_index, layer_index in ports:
                raw[row, :, layer_index] = outputs[output_index]

    # Phase 2: normalize, clamp and blend.
    def blend_row(row):
        weights = np.clip((raw[row] + 1.0) * 0.5, 0.0, 1.0)
        alphas[row] = blend_weights(weights, mode, direction, epsilon)

    _run_rows(sample_row, resolution, workers)
    _run_rows(blend_row, resolution, workers)
    return alphas


# ==============================================================================
# Cache population & seam welding
# ==============================================================================

def reachable_caches(fields: Iterable[Field]) -> List[RegionCache]:
    """
    Every RegionCache reachable from fields, each once, ordered so that a
    cache comes after every cache it reads from.
    """
    ordered: List[RegionCache] = []
    visited = set()
    for start in fields:
        # Iterative post-order walk: (field, children already expanded).
        stack = [(start, False)]
        while stack:
            current, expanded = stack.pop()
            if expanded:
                if isinstance(current, RegionCache):
                    ordered.append(current)
                continue
            if id(current) in visited:
                continue
            visited.add(id(current))
            stack.append((current, True))
            for child in reversed(current.children()):
                if id(child) not in visited:
                    stack.append((child, False))
    return ordered


def populate_all_reachable_caches(fields: Iterable[Field], rectangle: Rectangle,
                                  resolution: int = None) -> List[RegionCache]:
    """
    Populates every RegionCache reachable from fields over rectangle, inner
    caches first. Call once per generation request, before any sampling.
    """
    caches = reachable_caches(fields)
    for cache in caches:
        cache.populate(rectangle, resolution)
    logger.info(f"Populated {len(caches)} region cache(s) over {rectangle}")
    return caches


def weld_tile_edges(heightmaps: Dict[Tuple[int, int], np.ndarray]) -> Dict[Tuple[int, int], np.ndarray]:
    """
    Averages the samples neighbouring tiles share so seams match exactly.
    Keys are (tile_x, tile_z); grids are indexed [z, x]. Returns new arrays.
    """
    welded = {key: grid.copy() for key, grid in heightmaps.items()}
    for (tx, tz), grid in welded.items():
        right = welded.get((tx + 1, tz))
        if right is not None:
            edge = (grid[:, -1] + right[:, 0]) * 0.5
            grid[:, -1] = edge
            right[:, 0] = edge

        top = welded.get((tx, tz + 1))
        if top is not None:
            edge = (grid[-1, :] + top[0, :]) * 0.5
            grid[-1, :] = edge
            top[0, :] = edge

    for (tx, tz), grid in welded.items():
        corners = [(grid, -1, -1)]
        for key, row, col in (((tx + 1, tz), -1, 0), ((tx, tz + 1), 0, -1), ((tx + 1, tz + 1), 0, 0)):
            neighbour = welded.get(key)
            if neighbour is not None:
                corners.append((neighbour, row, col))
        if len(corners) > 1:
            value = sum(g[r, c] for g, r, c in corners) / len(corners)
            for g, r, c in corners:
                g[r, c] = value
    return welded
