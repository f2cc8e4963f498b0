import math
import time
import unittest
import numpy as np
from scipy.stats import kstest

from colocstat.datasets import mean_based_noise_image
from colocstat.errors import ContractViolation, NumericalInstabilityError, PermutationCancelled
from colocstat.p_value import (
    compute_p_value,
    permutation_p_value,
    permutation_test,
    select_score_function,
)
from colocstat.pearsons import pearsons


class TestComputePValue(unittest.TestCase):

    def test_counts_strictly_greater(self):
        self.assertEqual(compute_p_value(0.5, [0.1, 0.5, 0.7, 0.9]), 0.5)
        self.assertEqual(compute_p_value(1.0, [0.1, 0.5]), 0.0)
        self.assertEqual(compute_p_value(-1.0, [0.1, 0.5]), 1.0)

    def test_empty_distribution(self):
        self.assertTrue(math.isnan(compute_p_value(0.3, [])))


class TestPermutationTest(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        rng = np.random.default_rng(8)
        cls.ch1 = mean_based_noise_image((64, 64), 100.0, 80.0, (2.0, 2.0), random_state=1)
        cls.ch2 = cls.ch1 + rng.normal(0, 0.5, (64, 64))
        cls.other = mean_based_noise_image((64, 64), 100.0, 80.0, (2.0, 2.0), random_state=2)

    def test_colocalized_channels_are_significant(self):
        result = permutation_test(self.ch1, self.ch2, "pearsons", n_randomizations=50)
        self.assertEqual(result.n_randomizations, 50)
        self.assertEqual(result.null_distribution.shape, (50,))
        self.assertGreater(result.observed, 0.9)
        self.assertEqual(result.p_value, 0.0)
        self.assertEqual(result.n_exceeding, 0)

    def test_p_value_is_fraction_of_exceeding_scores(self):
        result = permutation_test(self.ch1, self.other, "pearsons", n_randomizations=40)
        self.assertTrue(0.0 <= result.p_value <= 1.0)
        self.assertEqual(
            result.p_value, np.count_nonzero(result.null_distribution > result.observed) / 40
        )

    def test_reproducible_with_seed(self):
        a = permutation_test(self.ch1, self.other, "pearsons", n_randomizations=20, random_state=5)
        b = permutation_test(self.ch1, self.other, "pearsons", n_randomizations=20, random_state=5)
        np.testing.assert_array_equal(a.null_distribution, b.null_distribution)

    def test_parallel_matches_sequential(self):
        sequential = permutation_test(self.ch1, self.other, "pearsons", n_randomizations=24)
        parallel = permutation_test(
            self.ch1, self.other, "pearsons", n_randomizations=24, n_jobs=2, batch_size=5
        )
        np.testing.assert_array_equal(sequential.null_distribution, parallel.null_distribution)
        self.assertEqual(sequential.p_value, parallel.p_value)

    def test_kendall_tau_statistic(self):
        result = permutation_test(self.ch1, self.ch2, "kendall_tau", n_randomizations=10)
        self.assertEqual(result.null_distribution.shape, (10,))
        self.assertTrue(np.all(np.isfinite(result.null_distribution)))

    def test_callable_statistic(self):
        calls = []

        def score(a, b):
            calls.append(a.shape)
            return pearsons(a, b)

        permutation_test(self.ch1, self.ch2, score, n_randomizations=5)
        self.assertEqual(len(calls), 6)
        self.assertTrue(all(shape == (64, 64) for shape in calls))

    def test_p_value_shortcut(self):
        p = permutation_p_value(self.ch1, self.other, "pearsons", n_randomizations=15)
        expected = permutation_test(self.ch1, self.other, "pearsons", n_randomizations=15).p_value
        self.assertEqual(p, expected)

    def test_should_stop_cancels_with_partial_result(self):
        calls = [0]

        def should_stop():
            calls[0] += 1
            return calls[0] > 2

        with self.assertRaises(PermutationCancelled) as ctx:
            permutation_test(self.ch1, self.ch2, "pearsons", n_randomizations=10, should_stop=should_stop)
        partial = ctx.exception.partial
        self.assertEqual(partial.n_completed, 2)
        self.assertEqual(partial.null_distribution.shape, (2,))
        self.assertEqual(partial.n_randomizations, 10)

    def test_deadline_cancels(self):
        with self.assertRaises(PermutationCancelled) as ctx:
            permutation_test(
                self.ch1, self.ch2, "pearsons", n_randomizations=10, deadline=time.monotonic() - 1.0
            )
        self.assertEqual(ctx.exception.partial.n_completed, 0)

    def test_parallel_cancellation(self):
        with self.assertRaises(PermutationCancelled):
            permutation_test(
                self.ch1, self.ch2, "pearsons", n_randomizations=10, n_jobs=2, should_stop=lambda: True
            )

    def test_non_finite_score_aborts(self):
        with self.assertRaises(NumericalInstabilityError):
            permutation_test(self.ch1, self.ch2, lambda a, b: float("nan"), n_randomizations=3)

    def test_scorer_exception_propagates(self):
        def failing(a, b):
            raise RuntimeError("boom")

        with self.assertRaises(RuntimeError):
            permutation_test(self.ch1, self.ch2, failing, n_randomizations=3)

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            permutation_test(self.ch1, self.ch2, "spearman", n_randomizations=3)
        with self.assertRaises(ValueError):
            permutation_test(self.ch1, self.ch2, "pearsons", n_randomizations=0)
        with self.assertRaises(ContractViolation):
            permutation_test(self.ch1, self.ch2[:32], "pearsons", n_randomizations=3)

    def test_flat_second_channel(self):
        image = permutation_test(self.ch1, self.other, "pearsons", n_randomizations=10)
        flat = permutation_test(self.ch1, self.other.ravel().tolist(), "pearsons", n_randomizations=10)
        self.assertEqual(flat.observed, image.observed)
        np.testing.assert_array_equal(flat.null_distribution, image.null_distribution)

    def test_select_score_function(self):
        self.assertIs(select_score_function(pearsons), pearsons)
        self.assertTrue(callable(select_score_function("pearsons_classic")))


class TestNullUniformity(unittest.TestCase):

    def test_p_values_are_uniform_under_the_null(self):
        # One surrogate score stands in for the observed score, so observed and
        # null scores are exchangeable and the p-value is uniform on [0, 1].
        n_trials = 100
        n_randomizations = 19
        p_values = []
        for trial in range(n_trials):
            rng = np.random.default_rng(1000 + trial)
            ch1 = rng.random((16, 16))
            ch2 = rng.random((16, 16))
            result = permutation_test(
                ch1, ch2, "pearsons", n_randomizations=n_randomizations + 1, random_state=trial
            )
            observed = result.null_distribution[0]
            p = compute_p_value(observed, result.null_distribution[1:])
            self.assertTrue(0.0 <= p <= 1.0)
            p_values.append(p)
        p_values = np.asarray(p_values)
        self.assertGreater(kstest(p_values, "uniform").pvalue, 0.001)
        self.assertTrue(0.35 < p_values.mean() < 0.65)
        counts, _ = np.histogram(p_values, bins=5, range=(0.0, 1.0))
        self.assertTrue(np.all(counts > 5), msg=f"bin counts {counts}")


if __name__ == "__main__":
    unittest.main()
