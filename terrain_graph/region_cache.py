# terrain_graph/region_cache.py

"""
================================================================================
REGION CACHE
================================================================================
A Field that memoizes its child over a rectangle of the horizontal plane and
answers lookups inside that rectangle by bilinear interpolation.

Data Contract:
---------------
- Inputs:
    - source: the child Field to memoize.
    - populate(rectangle, resolution): the area and grid density to sample.
- Outputs:
    - Interpolated values inside the populated rectangle on the cache plane
      (y == CACHE_PLANE_Y); exact child values everywhere else.
- Side Effects: populate() replaces the internal grid. It is the only write
  path, and must complete before any concurrent sampling reads the cache.
- Invariants: The cache is either Uncached or Cached(rectangle, resolution,
  grid). Changing the source, resolution or scale drops back to Uncached.
  Population is all-or-nothing: a failed populate leaves the previous state.
================================================================================
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.ndimage import map_coordinates

from . import config as DEFAULTS
from .fields import Field

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned area of the x/z plane, bounds inclusive."""
    x_min: float
    z_min: float
    x_max: float
    z_max: float

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def depth(self) -> float:
        return self.z_max - self.z_min

    def contains(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        return (x >= self.x_min) & (x <= self.x_max) & (z >= self.z_min) & (z <= self.z_max)


@dataclass(frozen=True)
class _CachedGrid:
    rectangle: Rectangle
    resolution: int
    grid: np.ndarray  # indexed [ix, iz]


class RegionCache(Field):
    arity = 1
    kind = "Cache"

    def __init__(self, source: Field = None, resolution: int = DEFAULTS.CACHE_RESOLUTION,
                 scale: float = DEFAULTS.CACHE_SCALE):
        self._state: Optional[_CachedGrid] = None
        self._resolution = self._check_resolution(resolution)
        self._scale = float(scale)
        super().__init__(source)

    @staticmethod
    def _check_resolution(resolution) -> int:
        resolution = int(resolution)
        if resolution < 2:
            raise ValueError(f"Cache resolution must be at least 2, got {resolution}")
        return resolution

    # --- Mutations that invalidate ---

    def __setitem__(self, index, source):
        super().__setitem__(index, source)
        self.clear()

    @property
    def resolution(self) -> int:
        return self._resolution

    @resolution.setter
    def resolution(self, value: int):
        self._resolution = self._check_resolution(value)
        self.clear()

    @property
    def scale(self) -> float:
        return self._scale

    @scale.setter
    def scale(self, value: float):
        self._scale = float(value)
        self.clear()

    def clear(self):
        self._state = None

    # --- State ---

    @property
    def is_cached(self) -> bool:
        return self._state is not None

    @property
    def rectangle(self) -> Optional[Rectangle]:
        state = self._state
        return state.rectangle if state is not None else None

    @property
    def grid(self) -> Optional[np.ndarray]:
        state = self._state
        return state.grid if state is not None else None

    # --- Population ---

    def populate(self, rectangle: Rectangle, resolution: int = None):
        """Samples the child on a resolution x resolution grid over rectangle."""
        if resolution is not None:
            # Setting resolution would clear the current grid before the new one exists.
            self._resolution = self._check_resolution(resolution)
        if not (rectangle.width > 0.0 and rectangle.depth > 0.0):
            raise ValueError(f"Cannot populate a cache over a degenerate rectangle {rectangle}")

        res = self._resolution
        xs = np.linspace(rectangle.x_min, rectangle.x_max, res)
        zs = np.linspace(rectangle.z_min, rectangle.z_max, res)
        gx, gz = np.meshgrid(xs, zs, indexing="ij")
        gy = np.full(gx.shape, DEFAULTS.CACHE_PLANE_Y)
        grid = np.array(self[0].compute(gx, gy, gz), dtype=np.float64)

        self._state = _CachedGrid(rectangle, res, grid)
        logger.debug(f"Populated cache {id(self):x}: {res}x{res} over {rectangle}")

    def populate_preview(self):
        """Populates a rectangle anchored at the origin, spaced by the cache scale."""
        extent = (self._resolution - 1) * self._scale
        self.populate(Rectangle(0.0, 0.0, extent, extent))

    # --- Evaluation ---

    def compute(self, x, y, z):
        state = self._state
        if state is None:
            return self.source_values(0, x, y, z)

        rect = state.rectangle
        inside = rect.contains(x, z) & (y == DEFAULTS.CACHE_PLANE_Y)
        if inside.all():
            return self._interpolate(state, x, z)
        if not inside.any():
            return self.source_values(0, x, y, z)

        result = np.empty(x.shape)
        result[inside] = self._interpolate(state, x[inside], z[inside])
        outside = ~inside
        result[outside] = self.source_values(0, x[outside], y[outside], z[outside])
        return result

    @staticmethod
    def _interpolate(state: _CachedGrid, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        rect = state.rectangle
        last = state.resolution - 1
        fx = (x - rect.x_min) / rect.width * last
        fz = (z - rect.z_min) / rect.depth * last
        coords = np.array([np.ravel(fx), np.ravel(fz)])
        values = map_coordinates(state.grid, coords, order=1, mode="nearest")
        return values.reshape(np.shape(x))
