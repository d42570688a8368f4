# tests/test_terrain_ops.py

import math

import numpy as np
import pytest

from conftest import CountingField, FunctionField
from terrain_graph.fields import Const, smoothstep
from terrain_graph.terrain_ops import Beach, Erosion, HeightSelector, Sediment, Slope


def x_field():
    return FunctionField(lambda x, y, z: x)


def test_erosion_leaves_flat_ground_alone():
    erosion = Erosion(Const(0.3), intensity=0.9, iterations=5, sample_distance=2.0)
    assert erosion.get_value(1.0, 0.0, 1.0) == pytest.approx(0.3)


def test_erosion_pulls_slope_towards_erode_line():
    # Linear ramp: the lowest neighbour is one unit down, erode line half a unit.
    erosion = Erosion(x_field(), intensity=0.5, iterations=1, sample_distance=1.0)
    assert erosion.get_value(3.0, 0.0, 0.0) == pytest.approx(2.5)


def test_erosion_smoothing_iterations():
    erosion = Erosion(x_field(), intensity=0.5, iterations=3, sample_distance=1.0)
    expected = 2.5
    for i in (1, 2):
        blend = 0.5 * 0.15 / i
        expected = expected * (1.0 - blend) + 3.0 * blend
    assert erosion.get_value(3.0, 0.0, 0.0) == pytest.approx(expected)


def test_erosion_iterations_are_capped():
    capped = Erosion(x_field(), intensity=0.5, iterations=10, sample_distance=1.0)
    beyond = Erosion(x_field(), intensity=0.5, iterations=50, sample_distance=1.0)
    assert capped.get_value(3.0, 0, 0) == beyond.get_value(3.0, 0, 0)


def test_beach_flattens_at_water_line():
    beach = Beach(Const(0.0))
    height, sand = beach.compute_outputs(np.zeros(1), np.zeros(1), np.zeros(1))
    assert height[0] == pytest.approx(0.05)
    assert sand[0] == pytest.approx(1.0)


def test_beach_leaves_high_ground_untouched():
    beach = Beach(Const(0.9))
    assert beach.output(0).get_value(0, 0, 0) == pytest.approx(0.9)
    assert beach.output(1).get_value(0, 0, 0) == 0.0


def test_beach_never_sinks_far_below_water():
    beach = Beach(Const(0.0), water_level=0.0, beach_height=-0.2)
    assert beach.output(0).get_value(0, 0, 0) == pytest.approx(-0.1)


def test_beach_linear_falloff_without_smoothing():
    beach = Beach(Const(0.05), water_level=0.0, beach_size=0.1, beach_height=0.0, smooth_range=0.0)
    # influence = 1 - 0.5, so the height is halved towards the target (0.0).
    assert beach.output(0).get_value(0, 0, 0) == pytest.approx(0.025)


def test_sand_mask_reaches_past_beach_with_blur():
    beach = Beach(Const(0.12), beach_size=0.1, sand_blur=0.05)
    assert beach.output(0).get_value(0, 0, 0) == pytest.approx(0.12)
    t = 0.12 / 0.15
    assert beach.output(1).get_value(0, 0, 0) == pytest.approx(1.0 - (3 * t * t - 2 * t ** 3))


def test_beach_outputs_share_one_child_sample():
    counter = CountingField(Const(0.0))
    Beach(counter).compute_outputs(np.zeros(4), np.zeros(4), np.zeros(4))
    assert counter.calls == 1


def test_sediment_cliff_and_deposit():
    removed = Sediment(Const(0.8), Const(0.2))
    expected = float(smoothstep(np.clip((0.6 - 0.1) / 0.9, 0.0, 1.0)))
    assert removed.output(0).get_value(0, 0, 0) == pytest.approx(expected)
    assert removed.output(1).get_value(0, 0, 0) == 0.0

    deposited = Sediment(Const(0.2), Const(0.8))
    assert deposited.output(0).get_value(0, 0, 0) == 0.0
    expected = float(smoothstep(np.clip((0.6 - 0.01) / 0.99, 0.0, 1.0)))
    assert deposited.output(1).get_value(0, 0, 0) == pytest.approx(expected)


def test_sediment_outputs_share_child_samples():
    pre, post = CountingField(Const(0.5)), CountingField(Const(0.1))
    cliff, sediment = Sediment(pre, post).compute_outputs(np.zeros(3), np.zeros(3), np.zeros(3))
    assert (pre.calls, post.calls) == (1, 1)
    assert np.all((cliff >= 0.0) & (cliff <= 1.0))
    assert np.all(sediment == 0.0)


def test_slope_is_zero_on_flat_ground():
    assert Slope(Const(0.4)).get_value(2.0, 0.0, 2.0) == 0.0


def test_slope_delta_mode_passes_raw_delta_by_default():
    assert Slope(x_field(), sample_distance=1.0).get_value(0.0, 0.0, 0.0) == pytest.approx(1.0)


def test_slope_mask_mode_band():
    # Half the max delta (0.5) is compared against tan(angle) * distance / height.
    steep_only = Slope(x_field(), min_angle=60.0, output_mode="Mask")
    assert math.tan(math.radians(60.0)) > 0.5
    assert steep_only.get_value(0.0, 0.0, 0.0) == 0.0

    gentle = Slope(x_field(), min_angle=10.0, output_mode="Mask")
    assert gentle.get_value(0.0, 0.0, 0.0) == 1.0

    flat_only = Slope(x_field(), max_angle=10.0, output_mode="Mask")
    assert flat_only.get_value(0.0, 0.0, 0.0) == 0.0


def test_slope_smoothing_gives_partial_mask():
    # tan(26.565 deg) is 0.5, right at the half delta.
    slope = Slope(x_field(), min_angle=26.565, smooth_range=10.0, output_mode="Mask")
    value = slope.get_value(0.0, 0.0, 0.0)
    assert 0.0 < value < 1.0


def test_slope_rejects_unknown_mode():
    with pytest.raises(ValueError):
        Slope(output_mode="Angle")


def test_height_selector():
    selector = HeightSelector(x_field(), min_height=0.5, max_height=-0.5)
    values = selector.get_value(np.array([-1.0, -0.5, 0.0, 0.5, 1.0]), 0.0, 0.0)
    assert values.tolist() == [-1.0, 1.0, 1.0, 1.0, -1.0]
