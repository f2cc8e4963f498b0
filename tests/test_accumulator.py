import unittest
import numpy as np
from numpy.testing import assert_allclose

from colocstat.accumulator import AccumulatorState, PairedAccumulator, accumulate
from colocstat.data_wrangling import PairedSamples, SamplePair


class TestAccumulate(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        rng = np.random.default_rng(2024)
        cls.x = rng.uniform(0, 255, 500)
        cls.y = 0.5 * cls.x + rng.normal(0, 10, 500)
        cls.samples = PairedSamples.from_channels(cls.x, cls.y)

    def test_sums_match_numpy(self):
        state = accumulate(self.samples)
        self.assertIsInstance(state, AccumulatorState)
        self.assertEqual(state.count, 500)
        assert_allclose(state.x, np.sum(self.x))
        assert_allclose(state.y, np.sum(self.y))
        assert_allclose(state.xx, np.sum(self.x * self.x))
        assert_allclose(state.xy, np.sum(self.x * self.y))
        assert_allclose(state.yy, np.sum(self.y * self.y))

    def test_offsets_subtracted_before_products(self):
        mx, my = self.x.mean(), self.y.mean()
        state = accumulate(self.samples, x_offset=mx, y_offset=my)
        assert_allclose(state.x, 0.0, atol=1e-8)
        assert_allclose(state.y, 0.0, atol=1e-8)
        assert_allclose(state.xy, np.sum((self.x - mx) * (self.y - my)))
        assert_allclose(state.xx, np.sum((self.x - mx) ** 2))

    def test_rejected_samples_do_not_contribute(self):
        accept = lambda x, y: x < 100
        mask = self.x < 100
        state = accumulate(self.samples, accept)
        self.assertEqual(state.count, int(mask.sum()))
        assert_allclose(state.x, np.sum(self.x[mask]))
        assert_allclose(state.xy, np.sum(self.x[mask] * self.y[mask]))

    def test_nothing_accepted(self):
        state = accumulate(self.samples, lambda x, y: np.zeros_like(x, dtype=bool))
        self.assertEqual(state, AccumulatorState())

    def test_chunked_updates_equal_single_pass(self):
        acc = PairedAccumulator()
        for start in range(0, 500, 64):
            acc.update(self.x[start:start + 64], self.y[start:start + 64])
        single = accumulate(self.samples)
        chunked = acc.state
        self.assertEqual(chunked.count, single.count)
        assert_allclose(
            [chunked.x, chunked.y, chunked.xx, chunked.xy, chunked.yy],
            [single.x, single.y, single.xx, single.xy, single.yy],
        )

    def test_iterable_of_sample_pairs(self):
        pairs = [SamplePair(1.0, 2.0), SamplePair(3.0, 4.0)]
        state = accumulate(pairs)
        self.assertEqual(state.count, 2)
        self.assertEqual(state.xy, 14.0)
        self.assertEqual(state.yy, 20.0)

    def test_iterating_paired_samples_yields_pairs(self):
        samples = PairedSamples.from_channels([1, 2], [3, 4])
        self.assertEqual(list(samples), [SamplePair(1.0, 3.0), SamplePair(2.0, 4.0)])

    def test_mismatched_chunk_raises(self):
        with self.assertRaises(ValueError):
            PairedAccumulator().update([1.0, 2.0], [1.0])


if __name__ == "__main__":
    unittest.main()
