# terrain_graph/terrain_ops.py

"""
================================================================================
TERRAIN OPERATORS
================================================================================
Fields that shape an existing height signal: thermal-style erosion, beach
flattening around a water level, cliff/sediment masks from a before/after
pair, slope band-pass filtering and height-range classification.

Data Contract:
---------------
- Inputs:
    - One or two bound child Fields producing heights in [-1, 1].
    - Operator parameters (plain floats, see each class).
- Outputs:
    - Float64 arrays with the shape of the sampled coordinates.
- Side Effects: None.
- Invariants: Operators that read neighbours (Erosion, Slope) sample the child
  at +/- sample_distance along x and z; y is passed through unchanged.
  Multi-output operators compute every output from one set of child samples.
================================================================================
"""

import math

import numpy as np

from . import config as DEFAULTS
from .fields import Field, MultiOutputField, smoothstep


def _neighbour_samples(field: Field, distance: float, x, y, z):
    """Child values at the centre and at -x, +x, -z, +z offsets."""
    return (
        field.compute(x, y, z),
        field.compute(x - distance, y, z),
        field.compute(x + distance, y, z),
        field.compute(x, y, z - distance),
        field.compute(x, y, z + distance),
    )


class Erosion(Field):
    """
    Pulls peaks down towards the midpoint between a point and its lowest
    neighbour, then optionally relaxes the result towards the neighbour
    average for a few iterations.
    """

    arity = 1
    kind = "Erosion"

    def __init__(self, source: Field = None, intensity: float = 0.5,
                 iterations: float = 1.0, sample_distance: float = 1.0):
        super().__init__(source)
        self.intensity = float(intensity)
        self.iterations = float(iterations)
        self.sample_distance = float(sample_distance)

    def compute(self, x, y, z):
        center, left, right, back, front = _neighbour_samples(self[0], self.sample_distance, x, y, z)

        # 1. Erode anything above the line halfway down to the lowest neighbour.
        lowest = np.minimum.reduce([center, left, right, back, front])
        erode_line = (center + lowest) * 0.5
        factor = np.minimum((center - lowest) * self.intensity * 2.0, 1.0)
        result = np.where(center > erode_line, center - (center - erode_line) * factor, center)

        # 2. Relax towards the neighbour average.
        iterations = int(round(self.iterations))
        if iterations > 1:
            average = (left + right + back + front) * 0.25
            for i in range(1, min(iterations, DEFAULTS.MAX_EROSION_ITERATIONS)):
                blend = self.intensity * DEFAULTS.EROSION_SMOOTHING_FACTOR / i
                result = result * (1.0 - blend) + average * blend

        return result


# --- Beach helpers. Both Beach outputs go through water_distance. ---

def water_distance(height: np.ndarray, water_level: float) -> np.ndarray:
    return np.abs(height - water_level)


def beach_influence(distance: np.ndarray, beach_size: float, smooth_range: float) -> np.ndarray:
    """1 at the water line, falling to 0 at beach_size away from it."""
    if beach_size <= 0.0:
        return np.zeros_like(distance)
    normalized = distance / beach_size
    if smooth_range > DEFAULTS.BEACH_SMOOTH_EPSILON:
        t = np.clip(normalized / (1.0 + smooth_range), 0.0, 1.0)
        influence = 1.0 - smoothstep(t)
    else:
        influence = 1.0 - normalized
    return np.where(distance <= beach_size, influence, 0.0)


def beach_height(height: np.ndarray, influence: np.ndarray,
                 water_level: float, beach_height_offset: float) -> np.ndarray:
    target = water_level + beach_height_offset
    result = height * (1.0 - influence) + target * influence
    # Strongly flattened cells may sit below the water line only half as deep.
    sunk = (influence > 0.5) & (result < water_level)
    return np.where(sunk, water_level + (result - water_level) * 0.5, result)


def sand_mask(distance: np.ndarray, beach_size: float, sand_blur: float) -> np.ndarray:
    reach = beach_size + sand_blur
    if reach <= 0.0:
        return np.zeros_like(distance)
    t = np.clip(distance / reach, 0.0, 1.0)
    mask = np.where(distance <= reach, 1.0 - smoothstep(t), 0.0)
    return np.clip(mask, 0.0, 1.0)


class Beach(MultiOutputField):
    """Output 0: flattened beach height. Output 1: 0..1 sand mask."""

    arity = 1
    kind = "Beach"
    output_names = ("height", "sand")

    def __init__(self, source: Field = None, water_level: float = 0.0, beach_size: float = 0.1,
                 beach_height: float = 0.05, smooth_range: float = 0.02, sand_blur: float = 0.05):
        super().__init__(source)
        self.water_level = float(water_level)
        self.beach_size = float(beach_size)
        self.beach_height = float(beach_height)
        self.smooth_range = float(smooth_range)
        self.sand_blur = float(sand_blur)

    def compute_outputs(self, x, y, z):
        height = self.source_values(0, x, y, z)
        distance = water_distance(height, self.water_level)
        influence = beach_influence(distance, self.beach_size, self.smooth_range)
        return (
            beach_height(height, influence, self.water_level, self.beach_height),
            sand_mask(distance, self.beach_size, self.sand_blur),
        )


def _threshold_mask(difference: np.ndarray, threshold: float) -> np.ndarray:
    """Smoothstep of how far difference exceeds threshold, scaled to [0, 1]."""
    span = 1.0 - threshold
    if abs(span) < 1e-12:
        span = 1e-12
    t = np.clip((difference - threshold) / span, 0.0, 1.0)
    return np.where(difference > threshold, smoothstep(t), 0.0)


class Sediment(MultiOutputField):
    """
    Compares a height signal before (slot 0) and after (slot 1) an erosion
    step. Output 0 marks where material was removed (cliffs), output 1 where
    it was deposited.
    """

    arity = 2
    kind = "Sediment"
    output_names = ("cliff", "sediment")

    def __init__(self, pre: Field = None, post: Field = None,
                 cliff_threshold: float = 0.1, sediment_threshold: float = 0.01):
        super().__init__(pre, post)
        self.cliff_threshold = float(cliff_threshold)
        self.sediment_threshold = float(sediment_threshold)

    def compute_outputs(self, x, y, z):
        pre = self.source_values(0, x, y, z)
        post = self.source_values(1, x, y, z)
        return (
            _threshold_mask(pre - post, self.cliff_threshold),
            _threshold_mask(post - pre, self.sediment_threshold),
        )


SLOPE_OUTPUT_MODES = ("Delta", "Mask")


class Slope(Field):
    """
    Band-pass filter on terrain steepness.

    The steepest height change to the four neighbours is compared against
    delta thresholds derived from the min/max angles:
    tan(angle) * sample_distance / terrain_height. Each threshold is softened
    over smooth_range degrees. In 'Delta' mode the band factor scales the raw
    height delta; in 'Mask' mode the band factor itself (0..1) is returned.
    """

    arity = 1
    kind = "Slope"

    def __init__(self, source: Field = None, sample_distance: float = 1.0, min_angle: float = 0.0,
                 max_angle: float = 90.0, smooth_range: float = 0.0, terrain_height: float = 1.0,
                 output_mode: str = "Delta"):
        super().__init__(source)
        if output_mode not in SLOPE_OUTPUT_MODES:
            raise ValueError(f"Unknown slope output mode '{output_mode}'")
        self.sample_distance = float(sample_distance)
        self.min_angle = float(min_angle)
        self.max_angle = float(max_angle)
        self.smooth_range = float(smooth_range)
        self.terrain_height = float(terrain_height)
        self.output_mode = output_mode

    def _angle_to_delta(self, angle: float) -> float:
        if angle > DEFAULTS.SLOPE_VERTICAL_ANGLE:
            return DEFAULTS.SLOPE_UNBOUNDED_DELTA
        height = self.terrain_height if abs(self.terrain_height) > 1e-12 else 1e-12
        return math.tan(math.radians(angle)) * self.sample_distance / height

    def thresholds(self):
        """(min_low, min_high, max_low, max_high) delta thresholds."""
        half = self.smooth_range * 0.5
        if self.min_angle < DEFAULTS.SLOPE_FLAT_ANGLE:
            min_low = min_high = -1.0
        else:
            min_low = self._angle_to_delta(self.min_angle - half)
            min_high = self._angle_to_delta(self.min_angle + half)
        max_low = self._angle_to_delta(self.max_angle - half)
        max_high = self._angle_to_delta(self.max_angle + half)
        return min_low, min_high, max_low, max_high

    def compute(self, x, y, z):
        center, left, right, back, front = _neighbour_samples(self[0], self.sample_distance, x, y, z)
        max_delta = np.maximum.reduce([
            np.abs(left - center), np.abs(right - center),
            np.abs(back - center), np.abs(front - center),
        ])
        delta = max_delta * 0.5

        min_low, min_high, max_low, max_high = self.thresholds()
        with np.errstate(divide="ignore", invalid="ignore"):
            rise = np.where(min_high > min_low, (delta - min_low) / (min_high - min_low), 1.0)
            fall = np.where(max_high > max_low, (max_high - delta) / (max_high - max_low), 1.0)
        band = np.clip(np.minimum(rise, fall), 0.0, 1.0)
        band = np.where((delta > min_high) & (delta < max_low), 1.0, band)
        band = np.where((delta < min_low) | (delta > max_high), 0.0, band)

        if self.output_mode == "Mask":
            return band
        return max_delta * band


class HeightSelector(Field):
    """1.0 where the child lies within [min_height, max_height], else -1.0."""

    arity = 1
    kind = "Height Selector"

    def __init__(self, source: Field = None, min_height: float = -1.0, max_height: float = 1.0):
        super().__init__(source)
        self.min_height = float(min_height)
        self.max_height = float(max_height)

    def compute(self, x, y, z):
        low, high = sorted((self.min_height, self.max_height))
        value = self.source_values(0, x, y, z)
        return np.where((value >= low) & (value <= high), 1.0, -1.0)
