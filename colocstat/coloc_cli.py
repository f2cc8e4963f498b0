import argparse
import os
import sys

from .analysis import ColocAnalysis
from .p_value import DEFAULT_SEED, STATISTICS

VALID_INPUT_EXTENSIONS = [".npy", ".csv", ".txt"]


def setup_parser():
    """Set up the argument parser for the colocstat command."""
    parser = argparse.ArgumentParser(
        description="Colocalization statistics for two co-registered image channels",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("-1", "--channel1", default=None,
                        help="First channel (.npy, .csv, .txt)")
    parser.add_argument("-2", "--channel2", default=None,
                        help="Second channel, same shape as the first")
    parser.add_argument("-c", "--config", default=None,
                        help="JSON config file; explicit command line options take precedence")
    parser.add_argument("--implementation", choices=["bisection", "simple"], default=None,
                        help="Threshold search of the regression (default: bisection)")
    parser.add_argument("--variant", choices=["fast", "classic"], default=None,
                        help="Pearson's R evaluator (default: fast)")
    parser.add_argument("--statistic", choices=sorted(STATISTICS) + ["none"], default=None,
                        help="Statistic of the permutation test, or none to skip it (default: kendall_tau)")
    parser.add_argument("-n", "--n_randomizations", type=int, default=None,
                        help="Number of block-shuffled randomizations (default: 1000)")
    parser.add_argument("-seed", "--seed", type=int, default=None,
                        help=f"Random seed for reproducibility (default: {DEFAULT_SEED})")
    parser.add_argument("-j", "--n-jobs", dest="n_jobs", type=int, default=None,
                        help="Worker threads for the permutation test (default: 1)")
    parser.add_argument("--ties", choices=["stable", "random"], default=None,
                        help="Tie handling of the Kendall Tau rank transform (default: stable)")
    parser.add_argument("-o", "--output", default=None,
                        help="Output prefix for the saved JSON/.npy results")
    parser.add_argument("-v", "--verbose", action="store_true", default=False,
                        help="Print progress")
    return parser


def validate_args(args):
    """Validate the parsed arguments."""
    if args.config is not None and not os.path.exists(args.config):
        sys.exit(f"Error: Config file '{args.config}' does not exist")
    if args.config is None and (args.channel1 is None or args.channel2 is None):
        sys.exit("Error: Either --config or both -1/--channel1 and -2/--channel2 are required")
    for path, name in [(args.channel1, "Channel 1"), (args.channel2, "Channel 2")]:
        if path is None:
            continue
        if not os.path.exists(path):
            sys.exit(f"Error: {name} file '{path}' does not exist")
        if not any(path.endswith(ext) for ext in VALID_INPUT_EXTENSIONS):
            sys.exit(f"Error: {name} file must be one of: {', '.join(VALID_INPUT_EXTENSIONS)}")
    if args.n_randomizations is not None and args.n_randomizations <= 0:
        sys.exit("Error: Number of randomizations must be positive")
    return args


def build_params(args):
    """Merge the config file (if any) with the explicit command line options."""
    params = ColocAnalysis.parse_config(args.config) if args.config else {}
    overrides = {
        "channel1": args.channel1,
        "channel2": args.channel2,
        "threshold_implementation": args.implementation,
        "pearsons_variant": args.variant,
        "p_value_statistic": args.statistic,
        "n_randomizations": args.n_randomizations,
        "random_state": args.seed,
        "n_jobs": args.n_jobs,
        "ties": args.ties,
        "output_prefix": args.output,
    }
    params.update({k: v for k, v in overrides.items() if v is not None})
    if args.verbose:
        params["verbose"] = True
    return params


def _format(value):
    if value is None:
        return "n/a"
    return f"{value:.4f}"


def print_summary(results):
    regression = results.threshold_regression
    correlation = results.pearsons
    print(f"Regression line: ch2 = {regression.slope:.4f} * ch1 + {regression.intercept:.4f}")
    print(f"Thresholds: ch1 = {regression.ch1.max:g}, ch2 = {regression.ch2.max:g} "
          f"({regression.n_steps} steps, {regression.implementation.value})")
    print(f"Pearson's R: {_format(correlation.correlation)} "
          f"(below thresholds: {_format(correlation.below_threshold)}, "
          f"above thresholds: {_format(correlation.above_threshold)})")
    print(f"Max truncated Kendall Tau: {results.max_kendall_tau:.4f}")
    if results.permutation_test is not None:
        print(f"p-value: {results.p_value:.4f} "
              f"({results.permutation_test.n_exceeding} of {results.permutation_test.n_randomizations} "
              "randomizations exceed the observed score)")


def main(argv=None):
    parser = setup_parser()
    args = validate_args(parser.parse_args(argv))
    params = build_params(args)

    print("COLOCSTAT - Colocalization statistics")
    print("=====================================")
    print(f"Channel 1: {params.get('channel1')}")
    print(f"Channel 2: {params.get('channel2')}")
    if params.get("p_value_statistic", "kendall_tau") != "none":
        print(f"Number of randomizations: {params.get('n_randomizations', 1000)}")
    if params.get("output_prefix"):
        print(f"Output prefix: {params['output_prefix']}")

    analysis = ColocAnalysis(**params)
    results = analysis.run()
    print_summary(results)
    return results


if __name__ == "__main__":
    main()
