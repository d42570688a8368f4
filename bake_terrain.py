# bake_terrain.py

"""
================================================================================
OFFLINE TERRAIN BAKER SCRIPT
================================================================================
This script is a command-line tool for generating a block of terrain tiles
from a noise graph document and writing the results to disk ("baking"):
per-tile heightmaps (.npy and 16-bit grayscale PNG), per-tile splat weight
arrays (.npy), a manifest.json and the consolidated generation settings.

Usage:
    python bake_terrain.py --config path/to/your/config.json
    python bake_terrain.py --config config.json --graph graph.json --output out/
================================================================================
"""
import os
import sys
import json
import logging
import argparse
import time
import numpy as np
from PIL import Image
from tqdm import tqdm

# Add project root to Python path to allow importing from terrain_graph
sys.path.append(os.path.abspath(os.path.dirname(__file__)))

from terrain_graph.diagnostics import DocumentError
from terrain_graph.document import GraphDocument
from terrain_graph.generator import TerrainGenerator


def save_heightmap_png(heights: np.ndarray, file_path: str):
    """Saves a [0, 1] heightmap as a 16-bit grayscale PNG; values outside are clipped."""
    data = np.round(np.clip(heights, 0.0, 1.0) * 65535.0).astype(np.uint16)
    Image.fromarray(data).save(file_path, 'PNG')


def bake_terrain(config_path: str, graph_path: str = None, output_dir: str = None) -> int:
    """
    Loads a configuration and a graph, generates every tile and writes the
    results to output_dir. Returns a process exit code.
    """
    # 1. --- Setup Logging ---
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )
    logger = logging.getLogger("TerrainBaker")

    # 2. --- Load Configuration ---
    logger.info(f"Loading configuration from: {config_path}")
    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError) as e:
        logger.critical(f"Failed to load or parse config file: {e}")
        return 1

    params = config.get('terrain_generation_parameters', {})
    config_dir = os.path.dirname(os.path.abspath(config_path))
    graph_path = graph_path or config.get('graph_path')
    if graph_path and not os.path.isabs(graph_path) and not os.path.exists(graph_path):
        graph_path = os.path.join(config_dir, graph_path)
    output_dir = output_dir or config.get('output_dir', "baked_terrain")

    # 3. --- Initialize the generator and compile the graph ---
    generator = TerrainGenerator(config=params, logger=logger)
    if graph_path:
        logger.info(f"Loading graph document from: {graph_path}")
        try:
            document = GraphDocument.load(graph_path)
        except (OSError, DocumentError) as e:
            logger.critical(f"Failed to load graph document: {e}")
            return 1
        generator.load_graph(document)
    else:
        logger.warning("No graph document given; using the default Perlin terrain.")

    # 4. --- Prepare Output Directory ---
    os.makedirs(output_dir, exist_ok=True)

    # 5. --- Main Baking Loop ---
    start_time = time.perf_counter()
    tiles = generator.tile_coords()
    logger.info(f"Starting bake of {len(tiles)} tiles...")
    with tqdm(total=len(tiles), desc="Baking Tiles") as progress:
        results = generator.generate(progress=lambda _: progress.update(1))

    manifest = {'tiles': [], 'layers': [], 'diagnostics': []}
    for (tx, tz), result in sorted(results.items()):
        heights_npy = f"heights_{tx}_{tz}.npy"
        heights_png = f"heights_{tx}_{tz}.png"
        weights_npy = f"weights_{tx}_{tz}.npy"
        np.save(os.path.join(output_dir, heights_npy), result.heights)
        save_heightmap_png(result.heights, os.path.join(output_dir, heights_png))
        np.save(os.path.join(output_dir, weights_npy), result.weights)
        manifest['tiles'].append({
            'tile_x': tx,
            'tile_z': tz,
            'heights': heights_npy,
            'heights_png': heights_png,
            'weights': weights_npy,
        })

    for layer in generator.layers:
        manifest['layers'].append({
            'node_id': layer.node_id,
            'priority': layer.priority,
            'diffuse_texture_path': layer.texture.diffuse_path,
            'normal_map_path': layer.texture.normal_map_path,
            'tile_size': [layer.tiling.size_x, layer.tiling.size_z],
            'tile_offset': [layer.tiling.offset_x, layer.tiling.offset_z],
        })
    if generator.graph is not None:
        manifest['diagnostics'] = [str(d) for d in generator.graph.diagnostics]

    # --- Finalization ---
    with open(os.path.join(output_dir, "manifest.json"), 'w') as f:
        json.dump(manifest, f, indent=2)
    with open(os.path.join(output_dir, "generation_config.json"), 'w') as f:
        json.dump(generator.settings, f, indent=2)

    end_time = time.perf_counter()
    logger.info(f"Baking complete! Total time: {end_time - start_time:.2f} seconds.")
    logger.info(f"Baked terrain and manifest.json saved to: {output_dir}")
    return 0


# --- Command-Line Interface ---
if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Offline Terrain Baker for the terrain noise graph.")
    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to the JSON configuration file for the terrain to be baked."
    )
    parser.add_argument(
        "--graph",
        type=str,
        default=None,
        help="Path to the graph document (overrides 'graph_path' in the config)."
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory (overrides 'output_dir' in the config)."
    )
    args = parser.parse_args()

    sys.exit(bake_terrain(args.config, args.graph, args.output))
