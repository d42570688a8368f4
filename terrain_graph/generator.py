# terrain_graph/generator.py

"""
================================================================================
TERRAIN GENERATOR
================================================================================
This module contains the TerrainGenerator class, which drives one generation
request: compile the graph once, populate its region caches once, then sample
every tile in a square around the centre tile and weld the seams.

Data Contract:
---------------
- Inputs (on initialization):
    - config (dict): Parameters overriding the internal defaults. Expected
      keys include 'tile_size', 'tile_radius', 'heightmap_resolution', etc.
    - logger: A configured Python logging object for runtime messages.
- Outputs (from methods):
    - TileResult per tile: a heightmap in [0, 1] (unclamped) and a
      (res, res, n_layers) weight array whose cells sum to 1.
- Side Effects: Logs messages using the provided logger. Populates the
  region caches of the compiled graph.
- Invariants: Given the same document and configuration, the output is
  deterministic.
================================================================================
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from . import config as DEFAULTS
from . import sampling
from .compiler import CompiledGraph, compile_graph
from .document import GraphDocument
from .fields import Perlin
from .region_cache import Rectangle


@dataclass
class TileResult:
    tile_x: int
    tile_z: int
    heights: np.ndarray
    weights: np.ndarray


class TerrainGenerator:
    """
    Generates heightmaps and splat weights for a block of terrain tiles from
    a compiled noise graph.
    """
    def __init__(self, config: dict, logger: logging.Logger):
        """
        Initializes the terrain generator.

        Args:
            config (dict): User-defined parameters to override defaults.
            logger (logging.Logger): The logger instance for all output.
        """
        self.logger = logger
        self.user_config = config
        self.logger.info("TerrainGenerator initializing...")

        # --- Consolidate Configuration ---
        self.settings = {
            'tile_size': tuple(self.user_config.get('tile_size', DEFAULTS.TILE_SIZE)),
            'tile_radius': self.user_config.get('tile_radius', DEFAULTS.TILE_RADIUS),
            'heightmap_resolution': self.user_config.get('heightmap_resolution', DEFAULTS.HEIGHTMAP_RESOLUTION),
            'alphamap_resolution': self.user_config.get('alphamap_resolution', DEFAULTS.ALPHAMAP_RESOLUTION),
            'cache_resolution': self.user_config.get('cache_resolution', DEFAULTS.CACHE_RESOLUTION),
            'blend_mode': self.user_config.get('blend_mode', DEFAULTS.BLEND_MODE),
            'blend_direction': self.user_config.get('blend_direction', DEFAULTS.BLEND_DIRECTION),
            'blend_epsilon': self.user_config.get('blend_epsilon', DEFAULTS.BLEND_EPSILON),
            'sampling_workers': self.user_config.get('sampling_workers', DEFAULTS.SAMPLING_WORKERS),
            'default_root_frequency': self.user_config.get('default_root_frequency', DEFAULTS.DEFAULT_ROOT_FREQUENCY),
            'fallback_frequency': self.user_config.get('fallback_frequency', DEFAULTS.FALLBACK_FREQUENCY),
            'fallback_octave_count': self.user_config.get('fallback_octave_count', DEFAULTS.FALLBACK_OCTAVE_COUNT),
            'fallback_seed': self.user_config.get('fallback_seed', DEFAULTS.FALLBACK_SEED),
        }

        if self.settings['blend_mode'] not in sampling.BLEND_MODES:
            raise ValueError(f"blend_mode must be one of {sampling.BLEND_MODES}, got '{self.settings['blend_mode']}'")
        if self.settings['blend_direction'] not in sampling.BLEND_DIRECTIONS:
            raise ValueError(f"blend_direction must be one of {sampling.BLEND_DIRECTIONS}, got '{self.settings['blend_direction']}'")

        # --- Public Properties for easy access ---
        self.tile_size_x, self.tile_height, self.tile_size_z = self.settings['tile_size']
        self.tile_radius = self.settings['tile_radius']

        self.graph: Optional[CompiledGraph] = None
        self._root = Perlin(frequency=self.settings['default_root_frequency'])
        self._layers = []
        self._caches_ready = False

        tiles_per_side = 2 * self.tile_radius + 1
        self.logger.info(
            f"Terrain block: {tiles_per_side}x{tiles_per_side} tiles of "
            f"{self.tile_size_x}x{self.tile_size_z} units, heightmap resolution "
            f"{self.settings['heightmap_resolution']}, blend '{self.settings['blend_mode']}' "
            f"({self.settings['blend_direction']})"
        )

    # --- Graph ---

    def load_graph(self, document: GraphDocument) -> CompiledGraph:
        """Compiles the document. Call once per generation request."""
        self.graph = compile_graph(document, logger=self.logger, settings=self.settings)
        self._root = self.graph.root
        self._layers = self.graph.layers
        self._caches_ready = False
        if self.graph.diagnostics:
            self.logger.warning(f"Graph compiled with {len(self.graph.diagnostics)} diagnostic(s)")
        return self.graph

    @property
    def root(self):
        return self._root

    @property
    def layers(self):
        return list(self._layers)

    # --- Caches ---

    def world_rectangle(self) -> Rectangle:
        """The area covered by every tile within the radius."""
        r = self.tile_radius
        return Rectangle(
            -r * self.tile_size_x, -r * self.tile_size_z,
            (r + 1) * self.tile_size_x, (r + 1) * self.tile_size_z,
        )

    def populate_caches(self):
        fields = [self._root] + [layer.field for layer in self._layers]
        caches = sampling.populate_all_reachable_caches(
            fields, self.world_rectangle(), self.settings['cache_resolution']
        )
        self._caches_ready = True
        return caches

    # --- Tiles ---

    def tile_spec(self, tile_x: int, tile_z: int) -> sampling.TileSpec:
        return sampling.TileSpec(tile_x, tile_z, self.tile_size_x, self.tile_size_z)

    def tile_coords(self):
        r = self.tile_radius
        return [(tx, tz) for tz in range(-r, r + 1) for tx in range(-r, r + 1)]

    def generate_tile(self, tile_x: int, tile_z: int) -> TileResult:
        if not self._caches_ready:
            self.populate_caches()
        tile = self.tile_spec(tile_x, tile_z)
        heights = sampling.sample_heightmap(
            self._root, tile, self.settings['heightmap_resolution'], self.settings['sampling_workers']
        )
        weights = sampling.sample_layer_weights(
            self._layers, tile, self.settings['alphamap_resolution'],
            mode=self.settings['blend_mode'],
            direction=self.settings['blend_direction'],
            workers=self.settings['sampling_workers'],
            epsilon=self.settings['blend_epsilon'],
        )
        return TileResult(tile_x, tile_z, heights, weights)

    def generate(self, progress: Callable[[Tuple[int, int]], None] = None) -> Dict[Tuple[int, int], TileResult]:
        """
        Generates every tile within the radius and welds their shared edges.
        progress, if given, is called with each tile's coordinates once done.
        """
        start_time = time.perf_counter()
        if not self._caches_ready:
            self.populate_caches()

        results = {}
        for tx, tz in self.tile_coords():
            results[(tx, tz)] = self.generate_tile(tx, tz)
            if progress is not None:
                progress((tx, tz))

        welded = sampling.weld_tile_edges({key: result.heights for key, result in results.items()})
        for key, heights in welded.items():
            results[key].heights = heights

        self.logger.info(f"Generated {len(results)} tiles in {time.perf_counter() - start_time:.2f} seconds.")
        return results
