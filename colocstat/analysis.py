import functools
import json
import warnings
from typing import Callable, Optional, Union

import numpy as np
from sklearn.utils import Bunch

from .data_wrangling import load_data, pair_samples, save_results
from .errors import NumericalInstabilityError
from .kendall_tau import TIE_POLICIES, max_kendall_tau
from .p_value import DEFAULT_SEED, STATISTICS, permutation_test
from .pearsons import ThresholdMode, Variant, _coerce_enum, pearsons, pearsons_result
from .threshold_regression import Implementation, auto_threshold_regression

CONFIG_KEYS = (
    "channel1",
    "channel2",
    "threshold_implementation",
    "pearsons_variant",
    "ties",
    "n_randomizations",
    "random_state",
    "p_value_statistic",
    "n_jobs",
    "output_prefix",
    "verbose",
)


class ColocAnalysis:
    """
    One colocalization run over a pair of channels.

    Runs the automatic threshold regression, Pearson's R (overall, below and
    above the regression thresholds), the maximum truncated Kendall Tau and,
    unless ``p_value_statistic`` is None, a block-shuffling permutation test.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        channel1: Union[str, np.ndarray] = None,
        channel2: Union[str, np.ndarray] = None,
        threshold_implementation: Union[str, Implementation] = Implementation.BISECTION,
        pearsons_variant: Union[str, Variant] = Variant.FAST,
        ties: str = "stable",
        n_randomizations: int = 1000,
        random_state: Optional[int] = DEFAULT_SEED,
        p_value_statistic: Optional[Union[str, Callable]] = "kendall_tau",
        n_jobs: int = 1,
        output_prefix: Optional[str] = None,
        verbose: bool = False,
    ):
        if config_path is not None:
            params = self.parse_config(config_path)
            channel1 = params.get("channel1", channel1)
            channel2 = params.get("channel2", channel2)
            threshold_implementation = params.get("threshold_implementation", threshold_implementation)
            pearsons_variant = params.get("pearsons_variant", pearsons_variant)
            ties = params.get("ties", ties)
            n_randomizations = params.get("n_randomizations", n_randomizations)
            random_state = params.get("random_state", random_state)
            p_value_statistic = params.get("p_value_statistic", p_value_statistic)
            n_jobs = params.get("n_jobs", n_jobs)
            output_prefix = params.get("output_prefix", output_prefix)
            verbose = params.get("verbose", verbose)
        if channel1 is None or channel2 is None:
            raise ValueError("Either config_path or channel1 and channel2 must be provided.")

        self._channel1_input = channel1
        self._channel2_input = channel2

        self.threshold_implementation = _coerce_enum(Implementation, threshold_implementation)
        self.pearsons_variant = _coerce_enum(Variant, pearsons_variant)
        if ties not in TIE_POLICIES:
            raise ValueError(f"ties must be one of {TIE_POLICIES}, got {ties!r}")
        self.ties = ties
        if isinstance(p_value_statistic, str) and p_value_statistic.lower() == "none":
            p_value_statistic = None
        if (
            p_value_statistic is not None
            and not callable(p_value_statistic)
            and p_value_statistic not in STATISTICS
        ):
            raise ValueError(
                f"p_value_statistic must be None, a callable or one of {sorted(STATISTICS)}"
            )
        self.p_value_statistic = p_value_statistic
        if int(n_randomizations) <= 0:
            raise ValueError("n_randomizations must be positive")
        self.n_randomizations = int(n_randomizations)
        self.random_state = random_state
        self.n_jobs = n_jobs
        self.output_prefix = output_prefix
        self.verbose = verbose

        self.channel1 = None
        self.channel2 = None
        self.results = None

    @staticmethod
    def parse_config(config_path: str):
        """Read a JSON config. Keys must be a subset of CONFIG_KEYS."""
        with open(config_path, "r") as f:
            params = json.load(f)
        if not isinstance(params, dict):
            raise ValueError(f"Config {config_path} must hold a JSON object.")
        unknown = sorted(set(params) - set(CONFIG_KEYS))
        if unknown:
            raise ValueError(f"Unknown config keys in {config_path}: {unknown}")
        return params

    def load_data(self):
        """Load both channels and check they are co-registered."""
        self.channel1 = np.asarray(load_data(self._channel1_input))
        self.channel2 = np.asarray(load_data(self._channel2_input))
        # raises ContractViolation on a shape mismatch
        pair_samples(self.channel1, self.channel2)
        return self

    def run(self):
        if self.channel1 is None or self.channel2 is None:
            self.load_data()
        samples = pair_samples(self.channel1, self.channel2)

        if self.verbose:
            print(f"Channels: {self.channel1.shape} {self.channel1.dtype} / {self.channel2.dtype}")
            print(f"Threshold regression ({self.threshold_implementation.value})...")
        regression = auto_threshold_regression(
            samples,
            implementation=self.threshold_implementation,
            variant=self.pearsons_variant,
        )
        correlation = pearsons_result(
            samples,
            variant=self.pearsons_variant,
            mean1=regression.mean1,
            mean2=regression.mean2,
        )
        for mode, key in (
            (ThresholdMode.BELOW, "below_threshold"),
            (ThresholdMode.ABOVE, "above_threshold"),
        ):
            try:
                correlation[key] = pearsons(
                    samples,
                    None,
                    mode,
                    regression.ch1.max,
                    regression.ch2.max,
                    regression.mean1,
                    regression.mean2,
                    self.pearsons_variant,
                )
            except NumericalInstabilityError as e:
                warnings.warn(f"Pearson's R {mode.value} the regression thresholds is undefined: {e}")
                correlation[key] = np.nan

        if self.verbose:
            print("Maximum truncated Kendall Tau...")
        tau = max_kendall_tau(samples, ties=self.ties, random_state=self.random_state)

        permutation = None
        if self.p_value_statistic is not None:
            if self.verbose:
                print(f"Permutation test ({self.n_randomizations} randomizations)...")
            score_fn = self.p_value_statistic
            if score_fn == "kendall_tau":
                score_fn = functools.partial(
                    max_kendall_tau, ties=self.ties, random_state=self.random_state
                )
            permutation = permutation_test(
                self.channel1,
                self.channel2,
                score_fn=score_fn,
                n_randomizations=self.n_randomizations,
                random_state=self.random_state,
                n_jobs=self.n_jobs,
                verbose=self.verbose,
            )

        self.results = Bunch(
            threshold_regression=regression,
            pearsons=correlation,
            max_kendall_tau=tau,
            permutation_test=permutation,
            p_value=None if permutation is None else permutation.p_value,
        )
        if self.output_prefix:
            self.save()
        return self.results

    def save(self):
        if self.results is None:
            raise ValueError("Nothing to save, call run() first.")
        if not self.output_prefix:
            warnings.warn("No output_prefix set; results are not saved.")
            return None
        summary = Bunch(**self.results)
        if callable(self.p_value_statistic):
            summary.p_value_statistic = getattr(self.p_value_statistic, "__name__", "callable")
        else:
            summary.p_value_statistic = self.p_value_statistic
        return save_results(summary, self.output_prefix)


def colocalization_analysis(channel1, channel2, **kwargs):
    """Function form of :class:`ColocAnalysis`; returns the results Bunch."""
    return ColocAnalysis(channel1=channel1, channel2=channel2, **kwargs).run()
