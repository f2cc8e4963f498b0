import math
import time
from typing import Callable, Optional, Union

import numpy as np
from joblib import Parallel, delayed, effective_n_jobs
from sklearn.utils import Bunch
from tqdm import tqdm

from .block_shuffle import BlockShuffler
from .data_wrangling import as_channel, conforms
from .errors import ContractViolation, NumericalInstabilityError, PermutationCancelled
from .kendall_tau import max_kendall_tau
from .pearsons import Variant, pearsons

DEFAULT_SEED = 0x27372034


def _pearsons_fast(channel1, channel2):
    return pearsons(channel1, channel2, variant=Variant.FAST)


def _pearsons_classic(channel1, channel2):
    return pearsons(channel1, channel2, variant=Variant.CLASSIC)


STATISTICS = {
    "pearsons": _pearsons_fast,
    "pearsons_classic": _pearsons_classic,
    "kendall_tau": max_kendall_tau,
}


def select_score_function(score_fn: Union[str, Callable]) -> Callable:
    """Resolve a statistic name from STATISTICS, or pass a callable through."""
    if callable(score_fn):
        return score_fn
    if isinstance(score_fn, str) and score_fn in STATISTICS:
        return STATISTICS[score_fn]
    raise ValueError(
        f"score_fn must be a callable or one of {sorted(STATISTICS)}, got {score_fn!r}"
    )


def compute_p_value(observed, null_distribution):
    """One-sided p-value: fraction of null scores strictly greater than ``observed``."""
    null_distribution = np.asarray(null_distribution, dtype=np.float64)
    if null_distribution.size == 0:
        return math.nan
    return float(np.count_nonzero(null_distribution > observed)) / null_distribution.size


def _checked_score(score_fn, channel1, channel2, label):
    value = float(score_fn(channel1, channel2))
    if not math.isfinite(value):
        raise NumericalInstabilityError(
            np.size(channel1),
            f"Statistic returned {value} for the {label}; aborting the permutation test.",
        )
    return value


def _score_batch(score_fn, shuffler, channel2, seeds):
    return np.array(
        [
            _checked_score(score_fn, shuffler.shuffle(random_state=seed), channel2, "shuffled surrogate")
            for seed in seeds
        ],
        dtype=np.float64,
    )


def _iteration_seeds(random_state, n):
    """One independent SeedSequence per randomization, keyed by its index."""
    if isinstance(random_state, np.random.Generator):
        root = np.random.SeedSequence(int(random_state.integers(2**63)))
    elif isinstance(random_state, np.random.SeedSequence):
        root = random_state
    else:
        root = np.random.SeedSequence(random_state)
    return root.spawn(n)


def _cancelled(should_stop, deadline):
    if should_stop is not None and should_stop():
        return True
    return deadline is not None and time.monotonic() >= deadline


def _partial(observed, null_distribution, n_completed, n_randomizations):
    completed = null_distribution[:n_completed].copy()
    return Bunch(
        observed=observed,
        null_distribution=completed,
        n_completed=n_completed,
        n_randomizations=n_randomizations,
        p_value=compute_p_value(observed, completed),
    )


def permutation_test(
    channel1,
    channel2,
    score_fn: Union[str, Callable] = "kendall_tau",
    n_randomizations: int = 1000,
    random_state=DEFAULT_SEED,
    n_jobs: int = 1,
    batch_size: Optional[int] = None,
    should_stop: Optional[Callable[[], bool]] = None,
    deadline: Optional[float] = None,
    verbose: bool = False,
):
    """
    Block-shuffling permutation test of a colocalization statistic.

    The observed score ``score_fn(channel1, channel2)`` is compared with the
    scores of ``n_randomizations`` block-shuffled surrogates of ``channel1``.

    Parameters
    ----------
    channel1 : np.ndarray
        Image that gets block shuffled (any number of dimensions).
    channel2 : array-like
        Second channel with as many samples as ``channel1``; a flat sequence
        is reshaped to the image shape of ``channel1`` (C order).
    score_fn : callable or str
        ``score_fn(a, b) -> float``, or a name from STATISTICS.
    n_randomizations : int, default 1000
        Number of surrogates K.
    random_state : int, SeedSequence, Generator or None
        Root seed. Randomization i uses the i-th child of
        ``SeedSequence(random_state).spawn(K)``, so the result does not depend
        on ``n_jobs`` or scheduling order.
    n_jobs : int, default 1
        Worker threads; values other than 1 use joblib batches.
    batch_size : int, optional
        Randomizations per parallel batch.
    should_stop : callable, optional
        Checked between iterations (between batch rounds when parallel);
        returning True cancels the run.
    deadline : float, optional
        ``time.monotonic()`` instant after which the run is cancelled.
    verbose : bool
        Show a tqdm progress bar.

    Returns
    -------
    Bunch
        ``p_value``, ``observed``, ``null_distribution`` (K,), ``n_exceeding``
        and ``n_randomizations``.

    Raises
    ------
    PermutationCancelled
        When cancelled; ``.partial`` holds the completed scores.
    NumericalInstabilityError
        If the observed or any surrogate score is not finite. Exceptions raised
        by ``score_fn`` abort the whole test.
    """
    if n_randomizations <= 0:
        raise ValueError("Number of randomizations must be positive")
    channel1 = as_channel(channel1, "channel1")
    channel2 = as_channel(channel2, "channel2")
    if channel1.size != channel2.size:
        raise ContractViolation(
            f"Channels must have the same number of samples, got {channel1.size} and {channel2.size}."
        )
    if not conforms(channel1, channel2):
        channel2 = channel2.reshape(channel1.shape)
    score_fn = select_score_function(score_fn)

    observed = _checked_score(score_fn, channel1, channel2, "observed channels")
    shuffler = BlockShuffler(channel1)
    seeds = _iteration_seeds(random_state, n_randomizations)
    null_distribution = np.empty(n_randomizations, dtype=np.float64)

    n_workers = effective_n_jobs(n_jobs)
    if n_workers == 1:
        iterator = (
            tqdm(range(n_randomizations), desc="Randomizations", unit="perm", leave=False)
            if verbose
            else range(n_randomizations)
        )
        for i in iterator:
            if _cancelled(should_stop, deadline):
                raise PermutationCancelled(
                    _partial(observed, null_distribution, i, n_randomizations)
                )
            surrogate = shuffler.shuffle(random_state=seeds[i])
            null_distribution[i] = _checked_score(score_fn, surrogate, channel2, "shuffled surrogate")
        n_exceeding = int(np.count_nonzero(null_distribution > observed))
    else:
        if batch_size is None:
            batch_size = max(1, math.ceil(n_randomizations / (n_workers * 8)))
        batches = [
            (start, min(start + batch_size, n_randomizations))
            for start in range(0, n_randomizations, batch_size)
        ]
        progress = tqdm(total=n_randomizations, desc="Randomizations", unit="perm", leave=False) if verbose else None
        exceeding_per_batch = []
        n_completed = 0
        try:
            with Parallel(n_jobs=n_workers, prefer="threads") as parallel:
                for round_start in range(0, len(batches), n_workers):
                    if _cancelled(should_stop, deadline):
                        raise PermutationCancelled(
                            _partial(observed, null_distribution, n_completed, n_randomizations)
                        )
                    round_batches = batches[round_start:round_start + n_workers]
                    scores = parallel(
                        delayed(_score_batch)(score_fn, shuffler, channel2, seeds[start:stop])
                        for start, stop in round_batches
                    )
                    for (start, stop), batch_scores in zip(round_batches, scores):
                        null_distribution[start:stop] = batch_scores
                        exceeding_per_batch.append(int(np.count_nonzero(batch_scores > observed)))
                    n_completed = round_batches[-1][1]
                    if progress is not None:
                        progress.update(sum(stop - start for start, stop in round_batches))
        finally:
            if progress is not None:
                progress.close()
        n_exceeding = sum(exceeding_per_batch)

    return Bunch(
        p_value=n_exceeding / n_randomizations,
        observed=observed,
        null_distribution=null_distribution,
        n_exceeding=n_exceeding,
        n_randomizations=n_randomizations,
    )


def permutation_p_value(
    channel1,
    channel2,
    score_fn: Union[str, Callable] = "kendall_tau",
    n_randomizations: int = 1000,
    random_state=DEFAULT_SEED,
    **kwargs,
) -> float:
    """p-value of :func:`permutation_test`; keyword arguments are passed through."""
    return permutation_test(
        channel1,
        channel2,
        score_fn=score_fn,
        n_randomizations=n_randomizations,
        random_state=random_state,
        **kwargs,
    ).p_value
