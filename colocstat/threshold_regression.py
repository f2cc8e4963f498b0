import dataclasses
import enum
import math
import warnings

import numpy as np
from sklearn.utils import Bunch

from .data_wrangling import dtype_range, pair_samples
from .errors import NumericalInstabilityError
from .pearsons import ThresholdMode, Variant, _coerce_enum, pearsons

# |intercept / channel-2 mean| above this flags a displaced regression line.
# The mean is used rather than the max, which can be a single bright outlier.
WARN_Y_INTERCEPT_TO_Y_MEAN_RATIO = 0.01


class Implementation(enum.Enum):
    """How the working threshold walks down the regression line."""

    BISECTION = "bisection"
    SIMPLE = "simple"


@dataclasses.dataclass(frozen=True)
class RegressionLine:
    """Orthogonal regression line ch2 = slope * ch1 + intercept."""

    slope: float
    intercept: float


@dataclasses.dataclass(frozen=True)
class ThresholdPair:
    """
    Inclusive intensity bounds of one channel. ``min`` is the dtype minimum,
    ``max`` is the value found by the threshold search.
    """

    min: float
    max: float


def clamp(val, min, max):
    """
    Clamp a value to [min, max]. Below min gives min, above max gives max,
    anything else is returned unchanged.
    """
    return min if min > val else max if max < val else val


def _round_half_up(value):
    return math.floor(value + 0.5)


def fit_regression_line(samples):
    """
    Total-least-squares fit through the (ch1, ch2) scatter.

    The covariance comes from var(x + y) = var(x) + var(y) + 2 cov(x, y), all
    variances using the N-1 denominator.

    Returns
    -------
    Bunch
        ``line`` (RegressionLine), ``mean1``, ``mean2``, ``var1``, ``var2``,
        ``covariance``, ``n_samples`` and ``n_nonzero`` (pixels whose summed
        intensity exceeds 1e-5).
    """
    x = samples.x
    y = samples.y
    n = x.shape[0]
    if n < 2:
        raise ValueError(f"Threshold regression needs at least 2 samples, got {n}.")

    mean1 = float(np.mean(x))
    mean2 = float(np.mean(y))
    combined = x + y
    var1 = float(np.sum((x - mean1) ** 2)) / (n - 1)
    var2 = float(np.sum((y - mean2) ** 2)) / (n - 1)
    var_combined = float(np.sum((combined - (mean1 + mean2)) ** 2)) / (n - 1.0)
    covariance = 0.5 * (var_combined - (var1 + var2))

    denom = 2 * covariance
    num = var2 - var1 + math.sqrt((var2 - var1) * (var2 - var1) + 4 * covariance * covariance)
    with np.errstate(divide="ignore", invalid="ignore"):
        m = float(np.float64(num) / np.float64(denom))
    b = mean2 - m * mean1
    if not (np.isfinite(m) and np.isfinite(b)):
        raise NumericalInstabilityError(
            n,
            f"Regression line is undefined: channel covariance is {covariance!r} over {n} samples.",
        )
    return Bunch(
        line=RegressionLine(slope=m, intercept=b),
        mean1=mean1,
        mean2=mean2,
        var1=var1,
        var2=var2,
        covariance=covariance,
        n_samples=n,
        n_nonzero=int(np.count_nonzero(combined > 0.00001)),
    )


class ChannelMapper:
    """
    Maps the working threshold ``t`` to both channel thresholds along the
    regression line. ``axis`` is the channel (1 or 2) the search walks on.
    """

    def __init__(self, line: RegressionLine, axis: int):
        if axis not in (1, 2):
            raise ValueError(f"axis must be 1 or 2, got {axis}")
        self.line = line
        self.axis = axis

    @classmethod
    def for_line(cls, line: RegressionLine):
        # Walk on channel one when the line leans towards the abscissa.
        return cls(line, 1 if -1 < line.slope < 1.0 else 2)

    def ch1_threshold(self, t):
        if self.axis == 1:
            return t
        return (t - self.line.intercept) / self.line.slope

    def ch2_threshold(self, t):
        if self.axis == 1:
            return t * self.line.slope + self.line.intercept
        return t


class SimpleStepper:
    """
    Linear scan from ``threshold`` down towards zero, one unit per step.

    Stops at the first finite R <= 0, or once the threshold drops below 1.
    Non-finite R (too few samples) keeps the scan going.
    """

    def __init__(self, threshold):
        self.threshold = float(threshold)
        self.current_r = math.inf
        self.last_r = math.inf
        self.n_updates = 0
        self._finished = False

    @property
    def value(self):
        return self.threshold

    def is_finished(self):
        return self._finished

    def update(self, r):
        if self._finished:
            return
        self.last_r = self.current_r
        self.current_r = r
        self.n_updates += 1
        if math.isfinite(r) and r <= 0.0:
            self._finished = True
        elif self.threshold - 1.0 < 0.0:
            self._finished = True
        else:
            self.threshold -= 1.0


class BisectionStepper:
    """
    Bisection on the working threshold.

    Starts at ``threshold`` with half-width ``|threshold - last_threshold|``.
    Positive R moves down by half the last width, negative or non-finite R
    moves up; R == 0 collapses the width. Finishes once the width is below
    ``tolerance`` or after ``max_iterations`` updates.
    """

    def __init__(self, threshold, last_threshold, tolerance=1.0, max_iterations=100):
        self.threshold = float(threshold)
        self.previous = float(last_threshold)
        self.width = abs(self.threshold - self.previous)
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.iterations = 0

    @property
    def value(self):
        return self.threshold

    def is_finished(self):
        return self.iterations > self.max_iterations or self.width < self.tolerance

    def update(self, r):
        self.previous = self.threshold
        if not math.isfinite(r) or r < 0:
            # too far down, or too few samples left below
            self.threshold = self.threshold + self.width * 0.5
        elif r > 0:
            self.threshold = self.threshold - self.width * 0.5
        self.width = abs(self.threshold - self.previous)
        self.iterations += 1


def make_stepper(implementation, channel_max):
    """Stepper for walking from ``channel_max`` down."""
    implementation = _coerce_enum(Implementation, implementation)
    if implementation is Implementation.BISECTION:
        return BisectionStepper(abs(channel_max) * 0.5, channel_max)
    return SimpleStepper(channel_max)


def auto_threshold_regression(
    channel1,
    channel2=None,
    implementation=Implementation.BISECTION,
    variant=Variant.FAST,
):
    """
    Costes-style automatic thresholds from an orthogonal regression line.

    The working threshold walks down the regression line (on channel 1 when
    -1 < slope < 1, else on channel 2). At each step both mapped thresholds are
    rounded, clamped to the channel dtype range, and Pearson's R of the pixels
    *below* them (ThresholdMode.BELOW) steers the stepper. A NaN/infinite R is
    fed to the stepper as a rejected candidate.

    Parameters
    ----------
    channel1, channel2 : array-like
        Co-registered channels of identical shape.
    implementation : Implementation or str
        BISECTION (default) or SIMPLE.
    variant : Variant or str
        Pearson's evaluator used during the search.

    Returns
    -------
    Bunch
        ``line``, ``slope``, ``intercept``, ``ch1``/``ch2`` (ThresholdPair),
        ``b_to_y_mean_ratio``, ``n_steps``, ``n_nonzero``, ``implementation``,
        ``walked_channel``, ``mean1``, ``mean2``.
    """
    samples = pair_samples(channel1, channel2)
    implementation = _coerce_enum(Implementation, implementation)
    variant = _coerce_enum(Variant, variant)

    fit = fit_regression_line(samples)
    line = fit.line
    mapper = ChannelMapper.for_line(line)

    max1 = float(np.max(samples.x))
    max2 = float(np.max(samples.y))
    stepper = make_stepper(implementation, max1 if mapper.axis == 1 else max2)

    min_val1, max_val1 = dtype_range(samples.ch1.dtype)
    min_val2, max_val2 = dtype_range(samples.ch2.dtype)

    ch1_thresh_max = max1
    ch2_thresh_max = max2
    n_steps = 0
    while not stepper.is_finished():
        ch1_thresh_max = _round_half_up(mapper.ch1_threshold(stepper.value))
        ch2_thresh_max = _round_half_up(mapper.ch2_threshold(stepper.value))
        threshold1 = clamp(ch1_thresh_max, min_val1, max_val1)
        threshold2 = clamp(ch2_thresh_max, min_val2, max_val2)
        try:
            r = pearsons(
                samples,
                None,
                ThresholdMode.BELOW,
                threshold1,
                threshold2,
                fit.mean1,
                fit.mean2,
                variant,
            )
        except NumericalInstabilityError:
            r = math.nan
        stepper.update(r)
        n_steps += 1

    with np.errstate(divide="ignore", invalid="ignore"):
        b_to_y_mean_ratio = float(np.float64(line.intercept) / np.float64(fit.mean2))
    if not abs(b_to_y_mean_ratio) <= WARN_Y_INTERCEPT_TO_Y_MEAN_RATIO:
        warnings.warn(
            f"The y-intercept of the regression line is far from zero "
            f"(intercept / channel 2 mean = {b_to_y_mean_ratio:.4g}); "
            "the automatic thresholds may be unreliable.",
            stacklevel=2,
        )

    return Bunch(
        line=line,
        slope=line.slope,
        intercept=line.intercept,
        ch1=ThresholdPair(min=min_val1, max=clamp(float(ch1_thresh_max), min_val1, max_val1)),
        ch2=ThresholdPair(min=min_val2, max=clamp(float(ch2_thresh_max), min_val2, max_val2)),
        b_to_y_mean_ratio=b_to_y_mean_ratio,
        n_steps=n_steps,
        n_nonzero=fit.n_nonzero,
        implementation=implementation,
        walked_channel=mapper.axis,
        mean1=fit.mean1,
        mean2=fit.mean2,
    )
