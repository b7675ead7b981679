import unittest

import numpy as np

from specbank.records import (
    Spectrum,
    ChromatographicPeak,
    Feature,
    FilledValue,
    number_of_fragments,
    peak_apex_rt,
    feature_value,
)


def make_peak(sample_id, area, rt_apex=100.0, raw_rt=None):
    return ChromatographicPeak(sample_id + '_0', sample_id, 0, rt_apex - 5, rt_apex, rt_apex + 5,
                               200.0, 200.001, 200.002, area, area / 10, raw_rt=raw_rt)


class TestRecords(unittest.TestCase):

    def test_spectrum_defaults(self):
        spec = Spectrum(0, 1, 1.0, np.array([100.0]), np.array([10.0]))
        self.assertTrue(spec.centroided)
        self.assertIsNone(spec.precursor_mz)
        self.assertIsNone(spec.raw_rtime)

    def test_number_of_fragments_counts_nonzero(self):
        spec = Spectrum(1, 2, 1.0, np.array([50.0, 60.0, 70.0]), np.array([0.0, 5.0, 8.0]))
        self.assertEqual(number_of_fragments(spec), 2)

    def test_peak_apex_rt_uses_raw(self):
        self.assertEqual(peak_apex_rt(make_peak('a', 10)), 100.0)
        self.assertEqual(peak_apex_rt(make_peak('a', 10, raw_rt=(90.0, 97.0, 104.0))), 97.0)

    def test_feature_value(self):
        peak = make_peak('a', 1000.0)
        fills = {'b': FilledValue('b', 'filled', 50.0, 0, 0, 0, 0),
                 'c': FilledValue('c', 'unavailable', None, 0, 0, 0, 0)}
        f = Feature('F1', 'M200T100', 200.0, 100.0, 95, 105, 200.0, 200.002, {'a': peak}, fills, 0)
        self.assertEqual(feature_value(f, 'a'), 1000.0)
        self.assertEqual(feature_value(f, 'b'), 50.0)
        self.assertIsNone(feature_value(f, 'c'))
        self.assertIsNone(feature_value(f, 'd'))
        self.assertFalse(f.fill_exceeds_detected)

if __name__ == '__main__':
    unittest.main()
