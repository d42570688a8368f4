# terrain_graph/noise.py

"""
================================================================================
COHERENT NOISE KERNELS
================================================================================
This module provides functions for generating 3D gradient (Perlin) noise and
its fractal variants. It is designed to be a pure, stateless utility.

Data Contract:
---------------
- Inputs:
    - p: A pre-shuffled NumPy permutation table (int array, length 512).
    - x, y, z: 1-D NumPy float64 arrays of coordinates (same length).
    - frequency, lacunarity, persistence, octaves, quality: Standard noise
      parameters. Quality is one of QUALITY_LOW, QUALITY_MEDIUM, QUALITY_HIGH.
- Outputs:
    - A 1-D NumPy array of noise values in the canonical range [-1, 1].
- Side Effects: None.
- Invariants: Given the same table and parameters the output is deterministic.
  The kernels release the GIL so that several threads can sample at once.
================================================================================
"""

import numpy as np
from numba import njit

from . import config as DEFAULTS

# Interpolation quality: linear, cubic s-curve, quintic s-curve.
QUALITY_LOW = 0
QUALITY_MEDIUM = 1
QUALITY_HIGH = 2

QUALITY_MODES = {
    "Low": QUALITY_LOW,
    "Medium": QUALITY_MEDIUM,
    "High": QUALITY_HIGH,
}

# The 12 edge midpoints of a cube, the classic 3D gradient set.
_GRADIENT_VECTORS = np.array([
    [1, 1, 0], [-1, 1, 0], [1, -1, 0], [-1, -1, 0],
    [1, 0, 1], [-1, 0, 1], [1, 0, -1], [-1, 0, -1],
    [0, 1, 1], [0, -1, 1], [0, 1, -1], [0, -1, -1],
], dtype=np.float64)

# Each octave samples a shifted copy of the lattice so octaves decorrelate.
_OCTAVE_SHIFT_X = 31.7
_OCTAVE_SHIFT_Y = 11.3
_OCTAVE_SHIFT_Z = 47.9


def make_permutation_table(seed: int) -> np.ndarray:
    """Builds the doubled 512-entry permutation table for a seed."""
    p = np.arange(256, dtype=np.int64)
    rng = np.random.default_rng(seed)
    rng.shuffle(p)
    return np.stack([p, p]).flatten()


@njit(nogil=True)
def _lerp(a, b, x):
    "Linear interpolation."
    return a + x * (b - a)


@njit(nogil=True)
def _s_curve(t, quality):
    if quality == QUALITY_LOW:
        return t
    if quality == QUALITY_MEDIUM:
        return t * t * (3.0 - 2.0 * t)
    # 6t^5 - 15t^4 + 10t^3
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


@njit(nogil=True)
def _clip_unit(v):
    # The gradient set can overshoot 1 by a few percent at some lattice cells.
    if v > 1.0:
        return 1.0
    if v < -1.0:
        return -1.0
    return v


@njit(nogil=True)
def _gradient(h, x, y, z):
    """Calculates the dot product between a gradient vector and coordinates."""
    g = _GRADIENT_VECTORS[h % 12]
    return g[0] * x + g[1] * y + g[2] * z


@njit(nogil=True)
def _gradient_noise_3d(p, x, y, z, quality):
    """Single-octave gradient noise at one point."""
    x0 = np.floor(x)
    y0 = np.floor(y)
    z0 = np.floor(z)

    xf = x - x0
    yf = y - y0
    zf = z - z0

    xi = int(x0) % 256
    yi = int(y0) % 256
    zi = int(z0) % 256

    u = _s_curve(xf, quality)
    v = _s_curve(yf, quality)
    w = _s_curve(zf, quality)

    a = p[xi] + yi
    aa = p[a] + zi
    ab = p[a + 1] + zi
    b = p[xi + 1] + yi
    ba = p[b] + zi
    bb = p[b + 1] + zi

    g000 = _gradient(p[aa], xf, yf, zf)
    g100 = _gradient(p[ba], xf - 1.0, yf, zf)
    g010 = _gradient(p[ab], xf, yf - 1.0, zf)
    g110 = _gradient(p[bb], xf - 1.0, yf - 1.0, zf)
    g001 = _gradient(p[aa + 1], xf, yf, zf - 1.0)
    g101 = _gradient(p[ba + 1], xf - 1.0, yf, zf - 1.0)
    g011 = _gradient(p[ab + 1], xf, yf - 1.0, zf - 1.0)
    g111 = _gradient(p[bb + 1], xf - 1.0, yf - 1.0, zf - 1.0)

    x00 = _lerp(g000, g100, u)
    x10 = _lerp(g010, g110, u)
    x01 = _lerp(g001, g101, u)
    x11 = _lerp(g011, g111, u)

    y0v = _lerp(x00, x10, v)
    y1v = _lerp(x01, x11, v)
    return _lerp(y0v, y1v, w)


@njit(nogil=True)
def perlin_noise_3d(p, x, y, z, frequency, lacunarity, persistence, octaves, quality):
    """
    Fractal sum of gradient noise, normalized by the total amplitude and
    clipped to [-1, 1].
    """
    n = x.shape[0]
    out = np.empty(n)

    total_amplitude = 0.0
    amplitude = 1.0
    for _ in range(octaves):
        total_amplitude += amplitude
        amplitude *= persistence
    if abs(total_amplitude) < 1e-12:
        total_amplitude = 1.0

    for i in range(n):
        sx = x[i] * frequency
        sy = y[i] * frequency
        sz = z[i] * frequency
        value = 0.0
        amplitude = 1.0
        for octave in range(octaves):
            value += amplitude * _gradient_noise_3d(
                p,
                sx + octave * _OCTAVE_SHIFT_X,
                sy + octave * _OCTAVE_SHIFT_Y,
                sz + octave * _OCTAVE_SHIFT_Z,
                quality,
            )
            sx *= lacunarity
            sy *= lacunarity
            sz *= lacunarity
            amplitude *= persistence
        out[i] = _clip_unit(value / total_amplitude)

    return out


@njit(nogil=True)
def billow_noise_3d(p, x, y, z, frequency, lacunarity, persistence, octaves, quality):
    """Like perlin_noise_3d, but each octave is folded with 2|n| - 1."""
    n = x.shape[0]
    out = np.empty(n)

    total_amplitude = 0.0
    amplitude = 1.0
    for _ in range(octaves):
        total_amplitude += amplitude
        amplitude *= persistence
    if abs(total_amplitude) < 1e-12:
        total_amplitude = 1.0

    for i in range(n):
        sx = x[i] * frequency
        sy = y[i] * frequency
        sz = z[i] * frequency
        value = 0.0
        amplitude = 1.0
        for octave in range(octaves):
            signal = _gradient_noise_3d(
                p,
                sx + octave * _OCTAVE_SHIFT_X,
                sy + octave * _OCTAVE_SHIFT_Y,
                sz + octave * _OCTAVE_SHIFT_Z,
                quality,
            )
            value += amplitude * (2.0 * abs(signal) - 1.0)
            sx *= lacunarity
            sy *= lacunarity
            sz *= lacunarity
            amplitude *= persistence
        out[i] = _clip_unit(value / total_amplitude)

    return out


@njit(nogil=True)
def ridged_multifractal_3d(p, x, y, z, frequency, lacunarity, spectral_weights, quality, offset, gain):
    """
    Ridged multifractal noise. Each octave is weighted by the previous
    octave's signal, which sharpens ridges and smooths valleys. The octave
    count is the length of spectral_weights. Output is clipped to [-1, 1].
    """
    n = x.shape[0]
    out = np.empty(n)
    octaves = spectral_weights.shape[0]

    for i in range(n):
        sx = x[i] * frequency
        sy = y[i] * frequency
        sz = z[i] * frequency
        value = 0.0
        weight = 1.0
        for octave in range(octaves):
            signal = _gradient_noise_3d(
                p,
                sx + octave * _OCTAVE_SHIFT_X,
                sy + octave * _OCTAVE_SHIFT_Y,
                sz + octave * _OCTAVE_SHIFT_Z,
                quality,
            )
            signal = offset - abs(signal)
            signal *= signal
            signal *= weight

            weight = signal * gain
            if weight > 1.0:
                weight = 1.0
            elif weight < 0.0:
                weight = 0.0

            value += signal * spectral_weights[octave]
            sx *= lacunarity
            sy *= lacunarity
            sz *= lacunarity

        value = value * 1.25 - 1.0
        if value > 1.0:
            value = 1.0
        elif value < -1.0:
            value = -1.0
        out[i] = value

    return out


def spectral_weights(octaves: int, lacunarity: float, exponent: float = DEFAULTS.RIDGED_SPECTRAL_EXPONENT) -> np.ndarray:
    """Per-octave weights frequency^-exponent used by the ridged generator."""
    weights = np.empty(octaves)
    frequency = 1.0
    for i in range(octaves):
        weights[i] = frequency ** -exponent if frequency != 0.0 else 0.0
        frequency *= lacunarity
    return weights
