import enum
from typing import Optional

import numpy as np
from sklearn.utils import Bunch

from .accumulator import accumulate
from .data_wrangling import pair_samples
from .errors import NumericalInstabilityError, UnsupportedModeError


class ThresholdMode(enum.Enum):
    """Which samples a thresholded Pearson's R includes."""

    NONE = "none"
    BELOW = "below"
    ABOVE = "above"


class Variant(enum.Enum):
    """
    CLASSIC centres every sample on the channel means first.
    FAST accumulates raw moments in a single pass.
    """

    CLASSIC = "classic"
    FAST = "fast"


def _coerce_enum(enum_cls, value, error_cls=ValueError):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        raise error_cls(f"Unknown {enum_cls.__name__}: {value!r}") from e


def threshold_predicate(mode, threshold1=None, threshold2=None):
    """
    Build the inclusion predicate for a threshold mode.

    BELOW accepts a pair if *either* channel is below its threshold, ABOVE if
    *either* channel is above its threshold (logical OR in both cases).

    Returns
    -------
    callable or None
        ``accept(x, y) -> bool array``; None means accept all pairs.
    """
    mode = _coerce_enum(ThresholdMode, mode, UnsupportedModeError)
    if mode is ThresholdMode.NONE:
        return None
    if threshold1 is None or threshold2 is None:
        raise ValueError(f"ThresholdMode.{mode.name} requires both threshold1 and threshold2.")
    t1 = float(threshold1)
    t2 = float(threshold2)
    if mode is ThresholdMode.BELOW:
        return lambda x, y: (x < t1) | (y < t2)
    elif mode is ThresholdMode.ABOVE:
        return lambda x, y: (x > t1) | (y > t2)
    else:
        raise UnsupportedModeError(f"Unsupported threshold mode: {mode!r}")


def check_for_sanity(value, n_samples):
    """Raise NumericalInstabilityError if ``value`` is NaN or infinite."""
    if not np.isfinite(value):
        raise NumericalInstabilityError(n_samples)
    return float(value)


def classic_pearsons(
    samples,
    mean1: float,
    mean2: float,
    mode=ThresholdMode.NONE,
    threshold1=None,
    threshold2=None,
) -> float:
    """
    Pearson's R on mean-centred sums: R = Σxy / √(Σx² Σy²).

    The means are those of the whole channels, also when a threshold mode
    restricts which samples are summed.
    """
    accept = threshold_predicate(mode, threshold1, threshold2)
    acc = accumulate(samples, accept, mean1, mean2)
    with np.errstate(divide="ignore", invalid="ignore"):
        r = np.float64(acc.xy) / np.sqrt(np.float64(acc.xx) * np.float64(acc.yy))
    return check_for_sanity(r, acc.count)


def fast_pearsons(samples, mode=ThresholdMode.NONE, threshold1=None, threshold2=None) -> float:
    """
    Pearson's R from raw moments in one pass::

        R = (Σxy − ΣxΣy/n) / √((Σx² − (Σx)²/n)(Σy² − (Σy)²/n))

    Less stable than the classic form when the means are large relative to
    the spread.
    """
    accept = threshold_predicate(mode, threshold1, threshold2)
    acc = accumulate(samples, accept)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_count = np.float64(1.0) / np.float64(acc.count)
        p1 = acc.xy - acc.x * acc.y * inv_count
        p2 = acc.xx - acc.x * acc.x * inv_count
        p3 = acc.yy - acc.y * acc.y * inv_count
        r = p1 / np.sqrt(p2 * p3)
    return check_for_sanity(r, acc.count)


def pearsons(
    channel1,
    channel2=None,
    mode=ThresholdMode.NONE,
    threshold1=None,
    threshold2=None,
    mean1: Optional[float] = None,
    mean2: Optional[float] = None,
    variant=Variant.FAST,
) -> float:
    """
    Pearson's product-moment correlation between two channels.

    Parameters
    ----------
    channel1, channel2 : array-like
        Co-registered channels of identical shape. A PairedSamples may be
        passed as ``channel1`` with ``channel2=None``.
    mode : ThresholdMode or str
        NONE, BELOW or ABOVE.
    threshold1, threshold2 : float, optional
        Per-channel thresholds, required for BELOW/ABOVE.
    mean1, mean2 : float, optional
        Channel means for the CLASSIC variant; computed when omitted.
    variant : Variant or str
        CLASSIC or FAST.

    Returns
    -------
    float
        R in [-1, 1].

    Raises
    ------
    NumericalInstabilityError
        If R is NaN or infinite, e.g. too few samples pass the threshold.
    ContractViolation
        If the channels do not conform.
    """
    samples = pair_samples(channel1, channel2)
    variant = _coerce_enum(Variant, variant)
    if variant is Variant.CLASSIC:
        if mean1 is None:
            mean1 = float(np.mean(samples.x)) if len(samples) else np.nan
        if mean2 is None:
            mean2 = float(np.mean(samples.y)) if len(samples) else np.nan
        return classic_pearsons(samples, mean1, mean2, mode, threshold1, threshold2)
    return fast_pearsons(samples, mode, threshold1, threshold2)


def pearsons_result(
    channel1,
    channel2=None,
    threshold1=None,
    threshold2=None,
    variant=Variant.FAST,
    mean1: Optional[float] = None,
    mean2: Optional[float] = None,
):
    """
    Pearson's R with no threshold, and below/above the given thresholds.

    Returns
    -------
    Bunch
        ``correlation``, ``below_threshold``, ``above_threshold`` and
        ``n_samples``. The thresholded values are None unless both thresholds
        are given.
    """
    samples = pair_samples(channel1, channel2)
    variant = _coerce_enum(Variant, variant)
    if variant is Variant.CLASSIC:
        # one mean pass shared by the three evaluations
        if mean1 is None:
            mean1 = float(np.mean(samples.x)) if len(samples) else np.nan
        if mean2 is None:
            mean2 = float(np.mean(samples.y)) if len(samples) else np.nan

    def run(mode):
        return pearsons(samples, None, mode, threshold1, threshold2, mean1, mean2, variant)

    result = Bunch(
        correlation=run(ThresholdMode.NONE),
        below_threshold=None,
        above_threshold=None,
        n_samples=len(samples),
        variant=variant,
    )
    if threshold1 is not None and threshold2 is not None:
        result.below_threshold = run(ThresholdMode.BELOW)
        result.above_threshold = run(ThresholdMode.ABOVE)
    return result
