import jax

jax.config.update("jax_enable_x64", True)

from .accumulator import AccumulatorState, PairedAccumulator, accumulate  # noqa: E402
from .analysis import ColocAnalysis, colocalization_analysis  # noqa: E402
from .block_shuffle import Block, BlockShuffler, block_shuffle  # noqa: E402
from .data_wrangling import (  # noqa: E402
    PairedSamples,
    SamplePair,
    conforms,
    dtype_range,
    load_data,
    pair_samples,
    read_results,
    save_results,
)
from .errors import (  # noqa: E402
    ColocError,
    ContractViolation,
    NumericalInstabilityError,
    PermutationCancelled,
    UnsupportedModeError,
)
from .kendall_tau import kendall_tau, max_kendall_tau, rank_transform  # noqa: E402
from .merge_sort import MergeSort, count_inversions  # noqa: E402
from .p_value import (  # noqa: E402
    compute_p_value,
    permutation_p_value,
    permutation_test,
)
from .pearsons import (  # noqa: E402
    ThresholdMode,
    Variant,
    classic_pearsons,
    fast_pearsons,
    pearsons,
    pearsons_result,
    threshold_predicate,
)
from .threshold_regression import (  # noqa: E402
    BisectionStepper,
    ChannelMapper,
    Implementation,
    RegressionLine,
    SimpleStepper,
    ThresholdPair,
    auto_threshold_regression,
    clamp,
    fit_regression_line,
)
