import unittest
import numpy as np
from numpy.testing import assert_allclose
from scipy.stats import pearsonr

from colocstat.datasets import correlated_channels, mean_based_noise_image
from colocstat.errors import ContractViolation, NumericalInstabilityError, UnsupportedModeError
from colocstat.pearsons import (
    ThresholdMode,
    Variant,
    classic_pearsons,
    fast_pearsons,
    pearsons,
    pearsons_result,
    threshold_predicate,
)
from colocstat.data_wrangling import PairedSamples


class TestPearsons(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        rng = np.random.default_rng(7)
        cls.ch1 = rng.uniform(0, 200, (40, 50))
        cls.ch2 = 0.3 * cls.ch1 + rng.normal(0, 20, (40, 50))

    def test_classic_and_fast_agree(self):
        classic = pearsons(self.ch1, self.ch2, variant=Variant.CLASSIC)
        fast = pearsons(self.ch1, self.ch2, variant="fast")
        self.assertAlmostEqual(classic, fast, delta=1e-9)

    def test_matches_scipy(self):
        expected = pearsonr(self.ch1.ravel(), self.ch2.ravel())[0]
        assert_allclose(pearsons(self.ch1, self.ch2), expected, rtol=1e-9)

    def test_result_in_range(self):
        r = pearsons(self.ch1, self.ch2)
        self.assertTrue(-1.0 <= r <= 1.0)

    def test_perfect_linear_relations(self):
        ch1 = np.arange(100)
        for variant in Variant:
            self.assertAlmostEqual(pearsons(ch1, 100 - ch1, variant=variant), -1.0, delta=1e-6)
            self.assertAlmostEqual(pearsons(ch1, 3 * ch1 + 7, variant=variant), 1.0, delta=1e-6)

    def test_linear_relation_gives_high_correlation(self):
        ch1, ch2 = correlated_channels(1000, slope=2.0, noise=0.01, random_state=0)
        self.assertGreater(pearsons(ch1, ch2), 0.999)
        self.assertGreater(pearsons(ch1, ch2, variant=Variant.CLASSIC), 0.999)

    def test_independent_noise_images_are_uncorrelated(self):
        ch1 = mean_based_noise_image((512, 512), 128.0, 64.0, (3.0, 3.0), random_state=0x01234567)
        ch2 = mean_based_noise_image((512, 512), 128.0, 64.0, (3.0, 3.0), random_state=0x98765432)
        self.assertAlmostEqual(pearsons(ch1, ch2), 0.0, delta=0.1)

    def test_below_threshold_uses_either_channel(self):
        t1, t2 = 100.0, 30.0
        mask = (self.ch1 < t1) | (self.ch2 < t2)
        expected = pearsonr(self.ch1[mask], self.ch2[mask])[0]
        r = pearsons(self.ch1, self.ch2, ThresholdMode.BELOW, t1, t2)
        assert_allclose(r, expected, rtol=1e-9)

    def test_above_threshold_uses_either_channel(self):
        t1, t2 = 100.0, 30.0
        mask = (self.ch1 > t1) | (self.ch2 > t2)
        expected = pearsonr(self.ch1[mask], self.ch2[mask])[0]
        r = pearsons(self.ch1, self.ch2, "above", t1, t2)
        assert_allclose(r, expected, rtol=1e-9)

    def test_classic_keeps_whole_channel_means_when_thresholded(self):
        samples = PairedSamples.from_channels(self.ch1, self.ch2)
        m1, m2 = self.ch1.mean(), self.ch2.mean()
        mask = (self.ch1 < 100) | (self.ch2 < 30)
        dx = self.ch1[mask] - m1
        dy = self.ch2[mask] - m2
        expected = np.sum(dx * dy) / np.sqrt(np.sum(dx * dx) * np.sum(dy * dy))
        r = classic_pearsons(samples, m1, m2, ThresholdMode.BELOW, 100, 30)
        assert_allclose(r, expected, rtol=1e-9)

    def test_constant_channel_is_numerically_unstable(self):
        with self.assertRaises(NumericalInstabilityError) as ctx:
            pearsons(np.ones(10), np.arange(10))
        self.assertEqual(ctx.exception.n_samples, 10)

    def test_no_sample_passes_threshold(self):
        samples = PairedSamples.from_channels(self.ch1, self.ch2)
        with self.assertRaises(NumericalInstabilityError) as ctx:
            fast_pearsons(samples, ThresholdMode.ABOVE, 1e6, 1e6)
        self.assertEqual(ctx.exception.n_samples, 0)

    def test_shape_mismatch(self):
        with self.assertRaises(ContractViolation):
            pearsons(np.zeros((4, 5)), np.zeros((5, 4)))

    def test_unknown_mode(self):
        with self.assertRaises(UnsupportedModeError):
            threshold_predicate("sideways", 1, 1)

    def test_missing_thresholds(self):
        with self.assertRaises(ValueError):
            pearsons(self.ch1, self.ch2, ThresholdMode.BELOW)

    def test_result_triple(self):
        result = pearsons_result(self.ch1, self.ch2)
        self.assertIsNone(result.below_threshold)
        self.assertIsNone(result.above_threshold)
        self.assertEqual(result.n_samples, 2000)

        result = pearsons_result(self.ch1, self.ch2, 100.0, 30.0)
        assert_allclose(result.below_threshold, pearsons(self.ch1, self.ch2, "below", 100.0, 30.0))
        assert_allclose(result.above_threshold, pearsons(self.ch1, self.ch2, "above", 100.0, 30.0))


if __name__ == "__main__":
    unittest.main()
