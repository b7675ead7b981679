import unittest

import numpy as np

from specbank.correspondence import (
    kde_maxima,
    assign_to_maxima,
    cluster_rtimes,
    passes_min_fraction,
    group_peaks,
    name_features,
    make_feature,
)
from specbank.errors import ParameterError, MissingMetadataError
from specbank.records import ChromatographicPeak


def peak(sample_id, n, mz, rt, area=1e6):
    return ChromatographicPeak('%s_%d' %(sample_id, n), sample_id, n, rt - 5, rt, rt + 5,
                               mz - 0.001, mz, mz + 0.001, area, area / 10)


class TestKDE(unittest.TestCase):

    def test_two_modes(self):
        positions, densities = kde_maxima([10, 11, 12, 60, 61], bandwidth=3)
        self.assertEqual(len(positions), 2)
        self.assertLess(abs(positions[0] - 11), 0.5)
        self.assertLess(abs(positions[1] - 60.5), 0.5)
        self.assertGreater(densities[0], densities[1])

    def test_tie_goes_to_higher_density(self):
        labels = assign_to_maxima([50.0], np.array([40.0, 60.0]), np.array([1.0, 2.0]))
        self.assertEqual(labels[0], 1)
        labels = assign_to_maxima([50.0], np.array([40.0, 60.0]), np.array([2.0, 2.0]))
        self.assertEqual(labels[0], 0)

    def test_bandwidth_controls_split(self):
        rtimes = [100, 101, 112, 113]
        self.assertEqual(len(set(cluster_rtimes(rtimes, 30))), 1)
        self.assertEqual(len(set(cluster_rtimes(rtimes, 2))), 2)

    def test_invalid_bandwidth(self):
        with self.assertRaises(ParameterError):
            cluster_rtimes([1, 2], 0)


class TestGrouping(unittest.TestCase):

    def setUp(self):
        self.groups = {'a': 'g1', 'b': 'g1', 'c': 'g1'}

    def test_median_of_apexes(self):
        peaks = [peak('a', 0, 200.0, 100.0), peak('b', 0, 200.0002, 102.0), peak('c', 0, 199.9998, 98.0)]
        features = group_peaks(peaks, self.groups, bandwidth=30)
        self.assertEqual(len(features), 1)
        f = features[0]
        self.assertEqual(f.rtime, 100.0)
        self.assertAlmostEqual(f.mz, 200.0)
        self.assertEqual(f.feature_id, 'F1')
        self.assertEqual(f.name, 'M200T100')
        self.assertEqual(set(f.peaks), {'a', 'b', 'c'})
        self.assertEqual(f.rt_min, 93.0)
        self.assertEqual(f.rt_max, 107.0)

    def test_each_peak_in_at_most_one_feature(self):
        peaks = [peak('a', 0, 200.0, 100.0), peak('a', 1, 200.0, 103.0, area=5e5),
                 peak('b', 0, 200.0, 101.0), peak('c', 0, 200.0, 99.0),
                 peak('a', 2, 300.0, 50.0), peak('b', 1, 300.0, 51.0)]
        features = group_peaks(peaks, self.groups, bandwidth=30)
        members = [p.peak_id for f in features for p in f.peaks.values()]
        self.assertEqual(len(members), len(set(members)))
        first = [f for f in features if f.mz < 250][0]
        self.assertEqual(first.peaks['a'].peak_id, 'a_0')
        self.assertEqual(first.extra_peaks, 1)

    def test_min_fraction(self):
        peaks = [peak('a', 0, 200.0, 100.0), peak('a', 1, 300.0, 100.0), peak('b', 0, 300.0, 100.0)]
        features = group_peaks(peaks, self.groups, bandwidth=30, min_fraction=0.5)
        self.assertEqual([round(f.mz) for f in features], [300])

    def test_min_fraction_per_group(self):
        groups = {'a': 'g1', 'b': 'g2', 'c': 'g2', 'd': 'g2'}
        peaks = [peak('a', 0, 200.0, 100.0)]
        self.assertEqual(len(group_peaks(peaks, groups, min_fraction=0.5)), 1)
        self.assertEqual(len(group_peaks(peaks, groups, min_fraction=0.5, min_samples=2)), 0)

    def test_sorted_and_named(self):
        peaks = [peak(s, 0, 300.0, 50.0) for s in 'abc'] + [peak(s, 1, 200.0, 80.0) for s in 'abc'] + [
                 peak(s, 2, 200.0, 200.0) for s in 'abc']
        features = group_peaks(peaks, self.groups, bandwidth=5)
        self.assertEqual([f.feature_id for f in features], ['F1', 'F2', 'F3'])
        self.assertEqual([f.name for f in features], ['M200T80', 'M200T200', 'M300T50'])

    def test_ungrouped_sample(self):
        with self.assertRaises(MissingMetadataError):
            group_peaks([peak('x', 0, 200.0, 100.0)], self.groups)

    def test_passes_min_fraction(self):
        sizes = {'g1': 4}
        groups = {s: 'g1' for s in 'abcd'}
        self.assertTrue(passes_min_fraction(['a', 'b'], groups, sizes, 0.5))
        self.assertFalse(passes_min_fraction(['a'], groups, sizes, 0.5))

    def test_duplicated_names(self):
        f = make_feature({'a': peak('a', 0, 200.0, 100.0)})
        g = make_feature({'a': peak('a', 1, 200.2, 100.2)})
        named = name_features([f, g])
        self.assertEqual([x.name for x in named], ['M200T100_1', 'M200T100_2'])

if __name__ == '__main__':
    unittest.main()
