"""
Synthetic channel pairs for tests and examples.
"""
import numpy as np
from scipy.ndimage import gaussian_filter

from ..data_wrangling import dtype_range


def mean_based_noise_image(
    shape=(512, 512),
    mean=128.0,
    spread=64.0,
    sigma=(3.0, 3.0),
    random_state=None,
    dtype=np.float32,
):
    """
    Uniform noise around ``mean`` with total width ``spread``, Gaussian smoothed.

    Raises
    ------
    ValueError
        If ``mean < spread`` or ``mean + spread`` exceeds the dtype maximum.
    """
    _, max_value = dtype_range(dtype)
    if mean < spread or mean + spread > max_value:
        raise ValueError(
            "Mean must be larger than spread, and mean plus spread must be smaller than max of the dtype"
        )
    rng = np.random.default_rng(random_state)
    noise = mean + (rng.random(shape) - 0.5) * spread
    smoothed = gaussian_filter(noise, sigma=sigma)
    return smoothed.astype(dtype)


def correlated_channels(
    n_samples=1000,
    slope=2.0,
    intercept=0.0,
    noise=0.01,
    random_state=None,
):
    """
    ``(ch1, ch2)`` with ch2 = slope * ch1 + intercept + N(0, noise), float64.
    ``ch1`` is uniform on [0, 1).
    """
    rng = np.random.default_rng(random_state)
    ch1 = rng.random(n_samples)
    ch2 = slope * ch1 + intercept + rng.normal(0.0, noise, n_samples)
    return ch1, ch2


def colocalized_spots(
    shape=(64, 64),
    n_spots=12,
    radius=3,
    background=20,
    signal=200,
    overlap=1.0,
    random_state=None,
    dtype=np.uint8,
):
    """
    Two channels of bright disks on a noisy background.

    A fraction ``overlap`` of the spots appear at the same position in both
    channels; the remaining spots of channel 2 are placed independently.
    """
    rng = np.random.default_rng(random_state)
    grid = np.indices(shape)

    def draw(centres):
        img = rng.normal(background, background * 0.25, shape)
        for centre in centres:
            dist2 = sum((g - c) ** 2 for g, c in zip(grid, centre))
            img[dist2 <= radius * radius] += signal * rng.uniform(0.7, 1.0)
        lo, hi = dtype_range(dtype)
        return np.clip(np.rint(img), lo, hi).astype(dtype)

    centres1 = [tuple(rng.integers(radius, s - radius) for s in shape) for _ in range(n_spots)]
    n_shared = int(round(overlap * n_spots))
    centres2 = centres1[:n_shared] + [
        tuple(rng.integers(radius, s - radius) for s in shape) for _ in range(n_spots - n_shared)
    ]
    return draw(centres1), draw(centres2)
