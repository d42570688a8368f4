# tests/test_sampling.py

import numpy as np
import pytest

from conftest import CountingField, FunctionField
from terrain_graph import sampling
from terrain_graph.compiler import LayerDescriptor, TextureDescriptor, TilingDescriptor
from terrain_graph.fields import Const, Perlin, ScaleBias
from terrain_graph.region_cache import Rectangle, RegionCache
from terrain_graph.terrain_ops import Beach

TILE = sampling.TileSpec(1, -2, 10.0, 20.0)


def layer(f, priority=0, node_id="layer"):
    return LayerDescriptor(priority, f, TextureDescriptor(), TilingDescriptor(), node_id)


def test_tile_spec_placement():
    assert TILE.origin == (10.0, -40.0)
    assert TILE.rectangle == Rectangle(10.0, -40.0, 20.0, -20.0)


def test_heightmap_remaps_without_clamping():
    heights = sampling.sample_heightmap(Const(0.4), TILE, resolution=8, workers=2)
    assert heights.shape == (9, 9)
    assert np.all(heights == 0.7)
    assert np.all(sampling.sample_heightmap(Const(3.0), TILE, resolution=4) == 2.0)


def test_heightmap_coordinates_cover_the_tile_inclusive():
    root = FunctionField(lambda x, y, z: x + 1000.0 * z)
    heights = sampling.sample_heightmap(root, TILE, resolution=4)
    raw = heights * 2.0 - 1.0
    assert raw[0, 0] == pytest.approx(10.0 + 1000.0 * -40.0)
    assert raw[0, -1] == pytest.approx(20.0 + 1000.0 * -40.0)
    assert raw[-1, 0] == pytest.approx(10.0 + 1000.0 * -20.0)
    assert raw[2, 1] == pytest.approx(12.5 + 1000.0 * -30.0)


def test_no_layers_gives_empty_weights():
    assert sampling.sample_layer_weights([], TILE, resolution=6).shape == (6, 6, 0)


def test_layer_weights_sum_to_one():
    layers = [layer(Perlin(frequency=0.3, seed=s), s) for s in range(4)]
    weights = sampling.sample_layer_weights(layers, TILE, resolution=12, workers=3)
    assert weights.shape == (12, 12, 4)
    assert np.allclose(weights.sum(axis=-1), 1.0)
    assert np.all((weights >= 0.0) & (weights <= 1.0))


def test_equal_zero_weights_split_evenly_in_priority_mode():
    layers = [layer(Const(-1.0), i) for i in range(4)]
    weights = sampling.sample_layer_weights(layers, TILE, resolution=5, mode="priority")
    assert np.allclose(weights, 0.25)


def test_equal_weights_split_evenly_in_proportional_mode():
    layers = [layer(Const(0.2), i) for i in range(3)]
    weights = sampling.sample_layer_weights(layers, TILE, resolution=5, mode="proportional")
    assert np.allclose(weights, 1.0 / 3.0)


@pytest.mark.parametrize("direction", ["ascending", "descending"])
@pytest.mark.parametrize("dominant", [0, 1, 2])
def test_single_full_layer_dominates(direction, dominant):
    layers = [layer(Const(1.0 if i == dominant else -1.0), i) for i in range(3)]
    weights = sampling.sample_layer_weights(layers, TILE, resolution=4, direction=direction)
    expected = np.zeros(3)
    expected[dominant] = 1.0
    assert np.allclose(weights, expected)


def test_priority_direction():
    weights = np.array([[0.5, 0.5]])
    assert np.allclose(sampling.composite_priority(weights, "ascending"), [[0.5, 0.25]])
    assert np.allclose(sampling.composite_priority(weights, "descending"), [[0.25, 0.5]])
    assert np.allclose(sampling.blend_weights(weights, "priority", "ascending"), [[2 / 3, 1 / 3]])
    assert np.allclose(sampling.blend_weights(weights, "proportional"), [[0.5, 0.5]])


def test_priority_stops_once_budget_is_spent():
    weights = np.array([[1.0, 0.7, 0.3]])
    assert np.allclose(sampling.composite_priority(weights), [[1.0, 0.0, 0.0]])


def test_multi_output_owner_sampled_once_per_row():
    counter = CountingField(Const(0.0))
    beach = Beach(counter)
    layers = [layer(beach.output(0), 0), layer(beach.output(1), 1)]
    sampling.sample_layer_weights(layers, TILE, resolution=7, workers=2)
    assert counter.calls == 7


def test_shared_layer_field_sampled_once_per_row():
    counter = CountingField(Const(0.5))
    sampling.sample_layer_weights([layer(counter, 0), layer(counter, 1)], TILE, resolution=5)
    assert counter.calls == 5


def test_invalid_blend_settings():
    with pytest.raises(ValueError):
        sampling.sample_layer_weights([layer(Const(0.0))], TILE, resolution=4, mode="additive")
    with pytest.raises(ValueError):
        sampling.sample_layer_weights([layer(Const(0.0))], TILE, resolution=4, direction="sideways")
    with pytest.raises(ValueError):
        sampling.sample_layer_weights([layer(Const(0.0))], TILE, resolution=1)


def test_populates_each_reachable_cache_once_inner_first():
    inner = RegionCache(Perlin(frequency=0.1), resolution=4)
    outer = RegionCache(ScaleBias(inner, scale=0.5), resolution=4)
    unrelated = RegionCache(Const(0.0), resolution=4)
    rect = Rectangle(0.0, 0.0, 10.0, 10.0)

    caches = sampling.populate_all_reachable_caches([outer, inner, ScaleBias(outer)], rect)
    assert caches == [inner, outer]
    assert inner.is_cached and outer.is_cached
    assert not unrelated.is_cached
    assert outer.rectangle == rect


def test_populate_through_output_ports():
    cache = RegionCache(Const(0.1), resolution=3)
    beach = Beach(cache)
    caches = sampling.populate_all_reachable_caches([beach.output(1)], Rectangle(0, 0, 1, 1), resolution=5)
    assert caches == [cache]
    assert cache.grid.shape == (5, 5)


def test_weld_tile_edges_averages_shared_samples():
    left = np.zeros((3, 3))
    right = np.ones((3, 3))
    above = np.full((3, 3), 2.0)
    diagonal = np.full((3, 3), 3.0)
    tiles = {(0, 0): left, (1, 0): right, (0, 1): above, (1, 1): diagonal}
    welded = sampling.weld_tile_edges(tiles)

    assert np.array_equal(welded[(0, 0)][:, -1], welded[(1, 0)][:, 0])
    assert np.array_equal(welded[(0, 0)][-1, :], welded[(0, 1)][0, :])
    assert welded[(0, 0)][0, -1] == 0.5
    corner = welded[(0, 0)][-1, -1]
    assert corner == pytest.approx(1.5)
    assert welded[(1, 0)][-1, 0] == corner
    assert welded[(0, 1)][0, -1] == corner
    assert welded[(1, 1)][0, 0] == corner
    # Inputs are untouched.
    assert np.all(left == 0.0)
