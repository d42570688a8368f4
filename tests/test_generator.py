# tests/test_generator.py

import json
import os

import numpy as np
import pytest

from bake_terrain import bake_terrain
from terrain_graph import sampling
from terrain_graph.fields import Perlin
from terrain_graph.generator import TerrainGenerator
from terrain_graph.region_cache import Rectangle

SMALL = {
    'tile_size': [10.0, 5.0, 10.0],
    'tile_radius': 1,
    'heightmap_resolution': 8,
    'alphamap_resolution': 6,
    'cache_resolution': 16,
    'sampling_workers': 2,
}


def test_settings_consolidate_defaults_and_overrides(logger):
    generator = TerrainGenerator({'tile_radius': 3}, logger)
    assert generator.settings['tile_radius'] == 3
    assert generator.settings['blend_mode'] == "priority"
    assert generator.settings['heightmap_resolution'] == 256
    assert generator.tile_size_x == 100.0


def test_invalid_blend_settings_are_rejected(logger):
    with pytest.raises(ValueError):
        TerrainGenerator({'blend_mode': "additive"}, logger)
    with pytest.raises(ValueError):
        TerrainGenerator({'blend_direction': "up"}, logger)


def test_default_root_without_graph(logger):
    generator = TerrainGenerator(SMALL, logger)
    assert isinstance(generator.root, Perlin)
    assert generator.root.frequency == 0.01
    tile = generator.generate_tile(0, 0)
    assert tile.heights.shape == (9, 9)
    assert tile.weights.shape == (6, 6, 0)


def test_world_rectangle_covers_all_tiles(logger):
    generator = TerrainGenerator(SMALL, logger)
    assert generator.world_rectangle() == Rectangle(-10.0, -10.0, 20.0, 20.0)
    assert len(generator.tile_coords()) == 9


def test_generate_with_graph(graph, logger):
    graph.node("p", "Perlin", frequency=0.05, octaveCount=3)
    graph.node("cache", "Cache", cacheResolution=32)
    graph.node("beach", "Beach", waterLevel=0.0, beachSize=0.3)
    graph.node("out", "Output")
    graph.node("sand", "SplatOutput", orderId=0)
    graph.node("grass", "SplatOutput", orderId=1)
    graph.node("one", "Const", value=1.0)
    graph.edge("p", "cache")
    graph.edge("cache", "beach")
    graph.edge("beach", "out")
    graph.edge("beach", "sand", src_port=1)
    graph.edge("one", "grass")

    generator = TerrainGenerator(SMALL, logger)
    compiled = generator.load_graph(graph.build(output="out"))
    assert compiled.diagnostics == []

    seen = []
    results = generator.generate(progress=seen.append)
    assert len(results) == 9 and len(seen) == 9

    cache = compiled.arena.lookup("cache", 0)
    assert cache.is_cached
    assert cache.rectangle == generator.world_rectangle()
    # Compiled cache resolution is overridden by the request's cache resolution.
    assert cache.grid.shape == (16, 16)

    for result in results.values():
        assert result.heights.shape == (9, 9)
        assert result.weights.shape == (6, 6, 2)
        assert np.allclose(result.weights.sum(axis=-1), 1.0)

    assert np.array_equal(results[(0, 0)].heights[:, -1], results[(1, 0)].heights[:, 0])
    assert np.array_equal(results[(0, 0)].heights[-1, :], results[(0, 1)].heights[0, :])


def test_caches_are_populated_once_per_request(graph, logger, monkeypatch):
    graph.node("p", "Perlin", frequency=0.05)
    graph.node("cache", "Cache")
    graph.edge("p", "cache")
    document = graph.build(output="cache")

    populate = sampling.populate_all_reachable_caches
    calls = []

    def counting_populate(*args, **kwargs):
        calls.append(args)
        return populate(*args, **kwargs)

    monkeypatch.setattr(sampling, "populate_all_reachable_caches", counting_populate)

    generator = TerrainGenerator(dict(SMALL, tile_radius=0), logger)
    generator.load_graph(document)
    generator.populate_caches()
    generator.generate()
    assert len(calls) == 1

    # A new graph is a new request.
    generator.load_graph(document)
    generator.generate()
    assert len(calls) == 2


def test_bake_terrain_writes_outputs(tmp_path, graph):
    graph.node("p", "Perlin", frequency=0.1, octaveCount=2)
    graph.node("layer", "SplatOutput", orderId=0, diffuseTexturePath="rock.png")
    graph.edge("p", "layer")
    graph_path = tmp_path / "graph.json"
    graph.build(output="p").save(str(graph_path))

    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        'graph_path': "graph.json",
        'terrain_generation_parameters': dict(SMALL, tile_radius=0),
    }))
    output_dir = tmp_path / "out"

    assert bake_terrain(str(config_path), output_dir=str(output_dir)) == 0
    files = set(os.listdir(output_dir))
    assert {"heights_0_0.npy", "heights_0_0.png", "weights_0_0.npy",
            "manifest.json", "generation_config.json"} <= files

    manifest = json.loads((output_dir / "manifest.json").read_text())
    assert manifest['tiles'][0]['tile_x'] == 0
    assert manifest['layers'][0]['diffuse_texture_path'] == "rock.png"
    assert np.load(output_dir / "weights_0_0.npy").shape == (6, 6, 1)


def test_bake_terrain_reports_bad_config(tmp_path):
    bad = tmp_path / "config.json"
    bad.write_text("{not json")
    assert bake_terrain(str(bad)) == 1
