# tests/test_region_cache.py

import numpy as np
import pytest

from conftest import CountingField, FunctionField
from terrain_graph import config as DEFAULTS
from terrain_graph.fields import Const, Perlin
from terrain_graph.region_cache import Rectangle, RegionCache


RECT = Rectangle(-10.0, -10.0, 10.0, 10.0)


def _inside_points(n=200):
    rng = np.random.default_rng(3)
    return rng.uniform(-9.9, 9.9, n), np.zeros(n), rng.uniform(-9.9, 9.9, n)


def test_new_cache_is_uncached_and_evaluates_directly():
    source = Perlin(frequency=0.2)
    cache = RegionCache(source)
    assert not cache.is_cached
    assert cache.rectangle is None
    x, y, z = _inside_points()
    assert np.array_equal(cache.get_value(x, y, z), source.get_value(x, y, z))


def test_bilinear_reproduces_bilinear_sources_exactly():
    source = FunctionField(lambda x, y, z: 0.5 * x - 0.25 * z + 0.01 * x * z)
    cache = RegionCache(source, resolution=16)
    cache.populate(RECT)
    x, y, z = _inside_points()
    assert np.allclose(cache.get_value(x, y, z), source.get_value(x, y, z), atol=1e-9)


def test_interpolation_error_is_bounded_inside():
    source = Perlin(frequency=0.3, octave_count=2, seed=8)
    cache = RegionCache(source, resolution=257)
    cache.populate(RECT)
    x, y, z = _inside_points()
    error = np.abs(cache.get_value(x, y, z) - source.get_value(x, y, z))
    assert error.max() < 0.02


def test_outside_rectangle_is_exact():
    source = Perlin(frequency=0.3, seed=8)
    cache = RegionCache(source, resolution=8)
    cache.populate(RECT)
    x = np.array([-10.5, 11.0, 0.0, 50.0])
    z = np.array([0.0, 0.0, 30.0, -40.0])
    assert np.array_equal(cache.get_value(x, 0.0, z), source.get_value(x, 0.0, z))


def test_off_plane_points_are_exact():
    source = Perlin(frequency=0.3, seed=8)
    cache = RegionCache(source, resolution=8)
    cache.populate(RECT)
    x, _, z = _inside_points(20)
    assert np.array_equal(cache.get_value(x, 1.5, z), source.get_value(x, 1.5, z))


def test_mixed_inside_and_outside():
    source = FunctionField(lambda x, y, z: x + z)
    cache = RegionCache(source, resolution=5)
    cache.populate(RECT)
    x = np.array([0.0, 20.0, 5.0])
    z = np.array([0.0, 0.0, 5.0])
    assert np.allclose(cache.get_value(x, 0.0, z), [0.0, 20.0, 10.0])


def test_cached_lookups_do_not_evaluate_source():
    counter = CountingField(Const(0.2))
    cache = RegionCache(counter, resolution=4)
    cache.populate(RECT)
    assert counter.calls == 1
    x, y, z = _inside_points(30)
    cache.get_value(x, y, z)
    assert counter.calls == 1


def test_mutations_invalidate():
    cache = RegionCache(Const(0.0), resolution=4)
    cache.populate(RECT)
    assert cache.is_cached

    cache[0] = Const(1.0)
    assert not cache.is_cached

    cache.populate(RECT)
    cache.resolution = 6
    assert not cache.is_cached

    cache.populate(RECT)
    cache.scale = 0.5
    assert not cache.is_cached


def test_populate_overrides_resolution():
    cache = RegionCache(Const(0.0), resolution=4)
    cache.populate(RECT, resolution=9)
    assert cache.resolution == 9
    assert cache.grid.shape == (9, 9)


def test_preview_rectangle_is_anchored_at_origin():
    cache = RegionCache(Const(0.5))
    cache.populate_preview()
    extent = (DEFAULTS.CACHE_RESOLUTION - 1) * DEFAULTS.CACHE_SCALE
    assert cache.rectangle == Rectangle(0.0, 0.0, extent, extent)
    assert cache.grid.shape == (DEFAULTS.CACHE_RESOLUTION, DEFAULTS.CACHE_RESOLUTION)


def test_invalid_resolution_and_rectangle():
    with pytest.raises(ValueError):
        RegionCache(Const(0.0), resolution=1)

    cache = RegionCache(Const(0.0), resolution=4)
    cache.populate(RECT)
    with pytest.raises(ValueError):
        cache.populate(Rectangle(0.0, 0.0, 0.0, 5.0))
    # The failed call leaves the earlier grid in place.
    assert cache.is_cached
    assert cache.rectangle == RECT
