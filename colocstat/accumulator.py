import dataclasses
from typing import Callable, Optional

import jax.numpy as jnp
import numpy as np
from jax import jit

from .data_wrangling import PairedSamples


@jit
def _masked_sums(x, y, mask, x_offset, y_offset):
    """
    Sums of (x - x_offset), (y - y_offset) and their products over ``mask``.

    Offsets are removed before squaring and cross-multiplying.
    """
    x = jnp.where(mask, x - x_offset, 0.0)
    y = jnp.where(mask, y - y_offset, 0.0)
    sums = jnp.stack([
        jnp.sum(x),
        jnp.sum(y),
        jnp.sum(x * x),
        jnp.sum(x * y),
        jnp.sum(y * y),
    ])
    return sums, jnp.sum(mask)


@dataclasses.dataclass(frozen=True)
class AccumulatorState:
    """Running sums of one pass. ``count`` is the number of accepted samples."""

    x: float = 0.0
    y: float = 0.0
    xx: float = 0.0
    xy: float = 0.0
    yy: float = 0.0
    count: int = 0


class PairedAccumulator:
    """
    Streams chunks of paired samples into the sums Pearson's R needs.

    ``accept(x, y)`` receives float64 arrays of one chunk and returns a boolean
    array of the same length; ``None`` accepts everything. Rejected samples
    change neither the sums nor the count.

    Example
    -------
    >>> acc = PairedAccumulator(accept=lambda x, y: x > 0)
    >>> _ = acc.update([0, 1, 2], [5, 6, 7]).update([3], [8])
    >>> acc.state.count
    3
    """

    def __init__(
        self,
        accept: Optional[Callable] = None,
        x_offset: float = 0.0,
        y_offset: float = 0.0,
    ):
        self.accept = accept
        self.x_offset = float(x_offset)
        self.y_offset = float(y_offset)
        self._sums = np.zeros(5, dtype=np.float64)
        self._count = 0

    def update(self, x, y):
        x = np.atleast_1d(np.asarray(x, dtype=np.float64)).ravel()
        y = np.atleast_1d(np.asarray(y, dtype=np.float64)).ravel()
        if x.shape != y.shape:
            raise ValueError(
                f"Chunk lengths differ: {x.shape[0]} samples in channel 1, {y.shape[0]} in channel 2."
            )
        if x.size == 0:
            return self
        if self.accept is None:
            mask = np.ones(x.shape, dtype=bool)
        else:
            mask = np.broadcast_to(np.asarray(self.accept(x, y), dtype=bool), x.shape)
        sums, count = _masked_sums(x, y, mask, self.x_offset, self.y_offset)
        self._sums += np.asarray(sums, dtype=np.float64)
        self._count += int(count)
        return self

    @property
    def state(self) -> AccumulatorState:
        x, y, xx, xy, yy = (float(v) for v in self._sums)
        return AccumulatorState(x=x, y=y, xx=xx, xy=xy, yy=yy, count=self._count)


def accumulate(
    samples,
    accept: Optional[Callable] = None,
    x_offset: float = 0.0,
    y_offset: float = 0.0,
) -> AccumulatorState:
    """
    Accumulate Σx, Σy, Σx², Σxy, Σy² and the accepted count in one pass.

    Parameters
    ----------
    samples : PairedSamples or iterable
        Either paired channels, or an iterable of ``(x, y)`` items where each item
        is a pair of scalars (a SamplePair) or a pair of equal-length arrays.
    accept : callable or None
        Vectorised inclusion predicate ``accept(x, y) -> bool array``.
    x_offset, y_offset : float
        Subtracted from every accepted value before the products are formed.

    Returns
    -------
    AccumulatorState
    """
    acc = PairedAccumulator(accept=accept, x_offset=x_offset, y_offset=y_offset)
    if isinstance(samples, PairedSamples):
        return acc.update(samples.x, samples.y).state
    for item in samples:
        x, y = item
        acc.update(x, y)
    return acc.state
