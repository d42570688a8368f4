# terrain_graph/fields.py

"""
================================================================================
EVALUATION LIBRARY: FIELDS
================================================================================
A Field is a pure function from a 3D coordinate to a scalar, composed from
zero or more child Fields bound into numbered input slots.

Data Contract:
---------------
- Inputs:
    - get_value(x, y, z): scalars or NumPy arrays (broadcast together).
- Outputs:
    - A float for scalar coordinates, otherwise a float64 array with the
      broadcast shape of the coordinates.
- Side Effects: None. Evaluation never mutates a field. The only mutable
  field is the RegionCache, and only through its explicit populate call.
- Invariants: A field with every slot bound returns a value for every finite
  coordinate. Evaluating an unbound slot raises UnboundSourceError.

Subclasses implement compute(x, y, z), which always receives float64 arrays
of identical shape and returns an array of that shape. Terrain-specific
operators (erosion, beach, slope, ...) live in terrain_ops.py.
================================================================================
"""

from typing import List, Sequence, Tuple

import numpy as np

from . import config as DEFAULTS
from . import noise
from .diagnostics import UnboundSourceError


def smoothstep(t: np.ndarray) -> np.ndarray:
    """3t^2 - 2t^3 for t already clamped to [0, 1]."""
    return t * t * (3.0 - 2.0 * t)


class Field:
    """Base class for every compiled graph field."""

    arity = 0
    kind = "Field"

    def __init__(self, *sources: "Field"):
        self._sources: List["Field"] = [None] * self.arity
        for index, source in enumerate(sources):
            if source is not None:
                self[index] = source

    # --- Input slots ---

    def __getitem__(self, index: int) -> "Field":
        self._check_slot(index)
        source = self._sources[index]
        if source is None:
            raise UnboundSourceError(f"{self.kind} has no source bound to slot {index}")
        return source

    def __setitem__(self, index: int, source: "Field"):
        self._check_slot(index)
        self._sources[index] = source

    def _check_slot(self, index: int):
        if not 0 <= index < self.arity:
            raise IndexError(f"{self.kind} has {self.arity} input slot(s), got index {index}")

    def is_bound(self, index: int) -> bool:
        self._check_slot(index)
        return self._sources[index] is not None

    def unbound_slots(self) -> List[int]:
        return [i for i, source in enumerate(self._sources) if source is None]

    def children(self) -> List["Field"]:
        """Fields this one reads from when evaluated."""
        return [source for source in self._sources if source is not None]

    # --- Evaluation ---

    def get_value(self, x, y, z):
        xa, ya, za = np.broadcast_arrays(
            np.asarray(x, dtype=np.float64),
            np.asarray(y, dtype=np.float64),
            np.asarray(z, dtype=np.float64),
        )
        result = self.compute(xa, ya, za)
        if xa.ndim == 0:
            return float(result)
        return result

    def compute(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def source_values(self, index: int, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        return self[index].compute(x, y, z)

    def __repr__(self):
        return f"<{self.kind} at 0x{id(self):x}>"


class MultiOutputField(Field):
    """
    A field with more than one logical output. All outputs are computed
    together from one set of child samples; OutputPort exposes one of them
    as an ordinary field.
    """

    output_names: Tuple[str, ...] = ("output",)

    def __init__(self, *sources: Field):
        super().__init__(*sources)
        self._ports = {}

    def compute_outputs(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> Tuple[np.ndarray, ...]:
        raise NotImplementedError

    def compute(self, x, y, z):
        return self.compute_outputs(x, y, z)[0]

    def output(self, index: int) -> "OutputPort":
        if not 0 <= index < len(self.output_names):
            raise IndexError(f"{self.kind} has {len(self.output_names)} output(s), got index {index}")
        port = self._ports.get(index)
        if port is None:
            port = OutputPort(self, index)
            self._ports[index] = port
        return port


class OutputPort(Field):
    """One output of a MultiOutputField."""

    arity = 0

    def __init__(self, owner: MultiOutputField, index: int):
        super().__init__()
        self.owner = owner
        self.index = index
        self.kind = f"{owner.kind}.{owner.output_names[index]}"

    def children(self):
        return [self.owner]

    def compute(self, x, y, z):
        return self.owner.compute_outputs(x, y, z)[self.index]


# ==============================================================================
# Generators
# ==============================================================================

class Const(Field):
    kind = "Const"

    def __init__(self, value: float = 0.0):
        super().__init__()
        self.value = float(value)

    def compute(self, x, y, z):
        return np.full(x.shape, self.value)


class CoherentNoise(Field):
    """Shared parameters of the seeded gradient-noise generators."""

    def __init__(
        self,
        frequency: float = DEFAULTS.DEFAULT_FREQUENCY,
        lacunarity: float = DEFAULTS.DEFAULT_LACUNARITY,
        persistence: float = DEFAULTS.DEFAULT_PERSISTENCE,
        octave_count: int = DEFAULTS.DEFAULT_OCTAVE_COUNT,
        seed: int = DEFAULTS.DEFAULT_SEED,
        quality: str = DEFAULTS.DEFAULT_QUALITY,
    ):
        super().__init__()
        self.frequency = float(frequency)
        self.lacunarity = float(lacunarity)
        self.persistence = float(persistence)
        self.octave_count = int(min(max(octave_count, 1), DEFAULTS.MAX_OCTAVE_COUNT))
        self.quality = quality
        self.seed = seed

    @property
    def seed(self) -> int:
        return self._seed

    @seed.setter
    def seed(self, value: int):
        self._seed = int(value)
        self._p = noise.make_permutation_table(self._seed)

    @property
    def quality(self) -> str:
        return self._quality

    @quality.setter
    def quality(self, value: str):
        if value not in noise.QUALITY_MODES:
            raise ValueError(f"Unknown quality mode '{value}', expected one of {sorted(noise.QUALITY_MODES)}")
        self._quality = value
        self._quality_code = noise.QUALITY_MODES[value]

    def compute(self, x, y, z):
        flat = [np.ascontiguousarray(a, dtype=np.float64).ravel() for a in (x, y, z)]
        return self._kernel(*flat).reshape(x.shape)

    def _kernel(self, x, y, z):
        raise NotImplementedError


class Perlin(CoherentNoise):
    kind = "Perlin"

    def _kernel(self, x, y, z):
        return noise.perlin_noise_3d(
            self._p, x, y, z,
            self.frequency, self.lacunarity, self.persistence,
            self.octave_count, self._quality_code,
        )


class Billow(CoherentNoise):
    kind = "Billow"

    def _kernel(self, x, y, z):
        return noise.billow_noise_3d(
            self._p, x, y, z,
            self.frequency, self.lacunarity, self.persistence,
            self.octave_count, self._quality_code,
        )


class RidgedMultifractal(CoherentNoise):
    kind = "RidgedMultifractal"

    def _kernel(self, x, y, z):
        weights = noise.spectral_weights(self.octave_count, self.lacunarity)
        return noise.ridged_multifractal_3d(
            self._p, x, y, z,
            self.frequency, self.lacunarity, weights, self._quality_code,
            DEFAULTS.RIDGED_OFFSET, DEFAULTS.RIDGED_GAIN,
        )


def fallback_generator(frequency: float = DEFAULTS.FALLBACK_FREQUENCY,
                       octave_count: int = DEFAULTS.FALLBACK_OCTAVE_COUNT,
                       seed: int = DEFAULTS.FALLBACK_SEED) -> Perlin:
    """The single-octave generator bound into unconnected input slots."""
    return Perlin(frequency=frequency, octave_count=octave_count, seed=seed)


# ==============================================================================
# Combiners
# ==============================================================================

class Add(Field):
    arity = 2
    kind = "Add"

    def compute(self, x, y, z):
        return self.source_values(0, x, y, z) + self.source_values(1, x, y, z)


class Multiply(Field):
    arity = 2
    kind = "Multiply"

    def compute(self, x, y, z):
        return self.source_values(0, x, y, z) * self.source_values(1, x, y, z)


class Subtract(Field):
    arity = 2
    kind = "Subtract"

    def compute(self, x, y, z):
        return self.source_values(0, x, y, z) - self.source_values(1, x, y, z)


class Min(Field):
    arity = 2
    kind = "Min"

    def compute(self, x, y, z):
        return np.minimum(self.source_values(0, x, y, z), self.source_values(1, x, y, z))


class Max(Field):
    arity = 2
    kind = "Max"

    def compute(self, x, y, z):
        return np.maximum(self.source_values(0, x, y, z), self.source_values(1, x, y, z))


class Power(Field):
    """
    Base raised to exponent. Negative bases keep their sign so fractional
    exponents stay real; results that are not finite become 0.
    """

    arity = 2
    kind = "Power"

    def compute(self, x, y, z):
        base = self.source_values(0, x, y, z)
        exponent = self.source_values(1, x, y, z)
        with np.errstate(all="ignore"):
            result = np.sign(base) * np.power(np.abs(base), exponent)
        return np.where(np.isfinite(result), result, 0.0)


class Blend(Field):
    """Linear interpolation from A to B, weighted by Control remapped to [0, 1]."""

    arity = 3
    kind = "Blend"

    def compute(self, x, y, z):
        a = self.source_values(0, x, y, z)
        b = self.source_values(1, x, y, z)
        alpha = (self.source_values(2, x, y, z) + 1.0) * 0.5
        return a + alpha * (b - a)


class Select(Field):
    """
    Chooses A where Control is below the band, B where it is above, and a
    smoothstep blend of the two inside. The band spans
    [minimum - fall_off/2, maximum + fall_off/2].
    """

    arity = 3
    kind = "Select"

    def __init__(self, a: Field = None, b: Field = None, control: Field = None,
                 minimum: float = -1.0, maximum: float = 1.0, fall_off: float = 0.0):
        super().__init__(a, b, control)
        self.minimum = float(minimum)
        self.maximum = float(maximum)
        self.fall_off = float(fall_off)

    def band(self) -> Tuple[float, float]:
        low, high = sorted((self.minimum, self.maximum))
        half = abs(self.fall_off) / 2.0
        return low - half, high + half

    def compute(self, x, y, z):
        a = self.source_values(0, x, y, z)
        b = self.source_values(1, x, y, z)
        control = self.source_values(2, x, y, z)
        lower, upper = self.band()
        span = upper - lower
        if span > 0.0:
            t = np.clip((control - lower) / span, 0.0, 1.0)
        else:
            t = (control > upper).astype(np.float64)
        blended = a + smoothstep(t) * (b - a)
        return np.where(control < lower, a, np.where(control > upper, b, blended))


# ==============================================================================
# Modifiers
# ==============================================================================

class Abs(Field):
    arity = 1
    kind = "Abs"

    def compute(self, x, y, z):
        return np.abs(self.source_values(0, x, y, z))


class Invert(Field):
    arity = 1
    kind = "Invert"

    def compute(self, x, y, z):
        return -self.source_values(0, x, y, z)


class Normalize(Field):
    """Maps [-1, 1] to [0, 1] with (v + 1) * 0.5. Linear, unclamped."""

    arity = 1
    kind = "Normalize"

    def compute(self, x, y, z):
        return (self.source_values(0, x, y, z) + 1.0) * 0.5


class Clamp(Field):
    arity = 1
    kind = "Clamp"

    def __init__(self, source: Field = None, minimum: float = -1.0, maximum: float = 1.0):
        super().__init__(source)
        self.minimum = float(minimum)
        self.maximum = float(maximum)

    def compute(self, x, y, z):
        low, high = sorted((self.minimum, self.maximum))
        return np.clip(self.source_values(0, x, y, z), low, high)


class ScaleBias(Field):
    arity = 1
    kind = "ScaleBias"

    def __init__(self, source: Field = None, scale: float = 1.0, bias: float = 0.0):
        super().__init__(source)
        self.scale = float(scale)
        self.bias = float(bias)

    def compute(self, x, y, z):
        return self.source_values(0, x, y, z) * self.scale + self.bias


class Scale(Field):
    """Scales the input coordinates before sampling the source."""

    arity = 1
    kind = "Scale"

    def __init__(self, source: Field = None, x: float = 1.0, y: float = 1.0, z: float = 1.0):
        super().__init__(source)
        self.x = float(x)
        self.y = float(y)
        self.z = float(z)

    def compute(self, x, y, z):
        return self.source_values(0, x * self.x, y * self.y, z * self.z)


class Curve(Field):
    """
    Maps the source value through a cubic spline defined by control points
    (input threshold, output value), kept sorted by input. At least four
    points are required; a new curve starts with the built-in near-identity
    points.
    """

    arity = 1
    kind = "Curve"

    def __init__(self, source: Field = None, points: Sequence[Tuple[float, float]] = None):
        super().__init__(source)
        self.points = points if points is not None else DEFAULTS.DEFAULT_CURVE_POINTS

    @property
    def points(self) -> Tuple[Tuple[float, float], ...]:
        return tuple(zip(self._inputs.tolist(), self._outputs.tolist()))

    @points.setter
    def points(self, points: Sequence[Tuple[float, float]]):
        ordered = sorted((float(i), float(o)) for i, o in points)
        if len(ordered) < DEFAULTS.MIN_CURVE_POINTS:
            raise ValueError(f"Curve needs at least {DEFAULTS.MIN_CURVE_POINTS} control points, got {len(ordered)}")
        inputs = [i for i, _ in ordered]
        if len(set(inputs)) != len(inputs):
            raise ValueError("Curve control points must have distinct input values")
        self._inputs = np.array(inputs)
        self._outputs = np.array([o for _, o in ordered])

    def compute(self, x, y, z):
        value = self.source_values(0, x, y, z)
        inputs, outputs = self._inputs, self._outputs
        last = len(inputs) - 1

        # Index of the first control point whose input is above the value.
        position = np.searchsorted(inputs, value, side="right")
        i0 = np.clip(position - 2, 0, last)
        i1 = np.clip(position - 1, 0, last)
        i2 = np.clip(position, 0, last)
        i3 = np.clip(position + 1, 0, last)

        in0 = inputs[i1]
        in1 = inputs[i2]
        same = i1 == i2
        span = np.where(same, 1.0, in1 - in0)
        alpha = np.where(same, 0.0, (value - in0) / span)

        n0, n1, n2, n3 = outputs[i0], outputs[i1], outputs[i2], outputs[i3]
        p = (n3 - n2) - (n0 - n1)
        q = (n0 - n1) - p
        r = n2 - n0
        cubic = p * alpha ** 3 + q * alpha ** 2 + r * alpha + n1
        return np.where(same, n1, cubic)
