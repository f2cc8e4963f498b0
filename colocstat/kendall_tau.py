"""
Maximum Truncated Kendall Tau (MTKT).

Wang, S. et al. (2017). "Rank-based colocalization analysis with maximum
truncated Kendall tau." Both channels are rank transformed, low ranks below
each channel's threshold are dropped, and Kendall's Tau is evaluated on a
geometrically growing window of the highest ranks. The statistic is the
largest Tau normalised by its asymptotic standard deviation.
"""
import math
import warnings
from typing import Optional

import numpy as np
from skimage.filters import threshold_otsu

from .data_wrangling import pair_samples
from .merge_sort import MergeSort

# Reported when no window holds two samples: the smallest positive double.
MIN_NORMAL_TAU = float(np.nextafter(0.0, 1.0))

TIE_POLICIES = ("stable", "random")


def rank_transform(values, ties="stable", random_state=None):
    """
    Ranks 1..n of ``values``.

    Parameters
    ----------
    values : array-like
        One channel, flattened.
    ties : {"stable", "random"}
        "stable" breaks ties by original position. "random" orders tied values
        by a random jitter drawn from ``random_state``.
    random_state : int, np.random.Generator or None
        Only used with ``ties="random"``.

    Returns
    -------
    np.ndarray of int64
        A permutation of 1..n; equal values always get consecutive ranks.
    """
    values = np.asarray(values, dtype=np.float64).ravel()
    n = values.shape[0]
    if ties == "stable":
        order = np.argsort(values, kind="stable")
    elif ties == "random":
        rng = np.random.default_rng(random_state)
        jitter = rng.random(n)
        order = np.lexsort((jitter, values))
    else:
        raise ValueError(f"ties must be one of {TIE_POLICIES}, got {ties!r}")
    ranks = np.empty(n, dtype=np.int64)
    ranks[order] = np.arange(1, n + 1)
    return ranks


def kendall_tau(rank1, rank2):
    """
    Kendall's Tau of two rank vectors without ties.

    Samples are ordered by ``rank1``; the discordant pairs are then the
    inversions of ``rank2`` under that order, counted by merge sort.
    Tau = (n0 - 2 * swaps) / n0 with n0 = k(k-1)/2.
    """
    rank1 = np.asarray(rank1).ravel()
    rank2 = np.asarray(rank2).ravel()
    k = rank1.shape[0]
    if k < 2:
        raise ValueError(f"Kendall's Tau needs at least 2 samples, got {k}.")
    index = np.argsort(rank1, kind="stable")
    swaps = MergeSort(index, rank2).sort()
    n0 = k * (k - 1) // 2
    return (n0 - 2 * swaps) / float(n0)


def _threshold(channel):
    # Otsu on the channel's histogram
    return float(threshold_otsu(np.asarray(channel)))


def _threshold_rank(values, threshold):
    """Number of samples strictly below ``threshold``."""
    return int(np.count_nonzero(values < threshold))


def max_kendall_tau(
    channel1,
    channel2=None,
    threshold1: Optional[float] = None,
    threshold2: Optional[float] = None,
    ties="stable",
    random_state=None,
):
    """
    Maximum Truncated Kendall Tau between two channels.

    Parameters
    ----------
    channel1, channel2 : array-like
        Co-registered channels of identical shape.
    threshold1, threshold2 : float, optional
        Intensity thresholds. Each missing one is computed with Otsu's method
        on its channel.
    ties : {"stable", "random"}
        Tie-break policy of the rank transform, see :func:`rank_transform`.
    random_state : int, np.random.Generator or None
        Seed for ``ties="random"``.

    Returns
    -------
    float
        The maximum normalised Tau over all window sizes.
    """
    if ties not in TIE_POLICIES:
        raise ValueError(f"ties must be one of {TIE_POLICIES}, got {ties!r}")
    samples = pair_samples(channel1, channel2)
    values1 = samples.x
    values2 = samples.y
    n = values1.shape[0]

    if n < 3:
        warnings.warn(
            f"Maximum truncated Kendall Tau needs at least 3 samples, got {n}.",
            stacklevel=2,
        )
        return MIN_NORMAL_TAU

    if threshold1 is None:
        threshold1 = _threshold(samples.ch1)
    if threshold2 is None:
        threshold2 = _threshold(samples.ch2)

    rng = np.random.default_rng(random_state) if ties == "random" else None
    rank1 = rank_transform(values1, ties, rng)
    rank2 = rank_transform(values2, ties, rng)

    threshold_rank1 = _threshold_rank(values1, threshold1)
    threshold_rank2 = _threshold_rank(values2, threshold2)
    keep = (rank1 > threshold_rank1) & (rank2 > threshold_rank2)
    rank1 = rank1[keep]
    rank2 = rank2[keep]

    return _max_normal_tau(rank1, rank2, threshold_rank1, threshold_rank2, n)


def _max_normal_tau(rank1, rank2, threshold_rank1, threshold_rank2, n):
    step = 1 + 1.0 / math.log(math.log(n))
    max_normal_tau = MIN_NORMAL_TAU

    offset1 = 1.0
    while offset1 * step + threshold_rank1 < n:
        offset1 *= step
        in_window1 = rank1 >= n - offset1
        offset2 = 1.0
        while offset2 * step + threshold_rank2 < n:
            offset2 *= step
            active = in_window1 & (rank2 >= n - offset2)
            an = int(np.count_nonzero(active))
            if an > 1:
                tau = kendall_tau(rank1[active], rank2[active])
                sd_tau = math.sqrt(2.0 * (2 * an + 5) / 9 / an / (an - 1))
                normal_tau = tau / sd_tau
            else:
                normal_tau = MIN_NORMAL_TAU
            if normal_tau > max_normal_tau:
                max_normal_tau = normal_tau
    return max_normal_tau
