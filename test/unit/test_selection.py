import unittest

import numpy as np

from specbank.records import Spectrum, Feature, PrecursorAnnotation
from specbank.selection import (
    Candidate,
    candidate_precursor_mz,
    link_spectra_to_features,
    top_fraction,
    select_representative,
    select_spectra,
)


def candidate(scan_index, rtime=50.0, precursor_mz=200.0, purity=1.0, intensity=1e5,
              fragments=3, reported_mz=None, sample_id='s'):
    spectrum = Spectrum(scan_index, 2, rtime, np.arange(1, fragments + 1) * 20.0,
                        np.full(fragments, 100.0), precursor_mz=precursor_mz)
    annotation = PrecursorAnnotation(sample_id, scan_index, 0, reported_mz or precursor_mz,
                                     precursor_mz, purity, intensity)
    return Candidate(sample_id, spectrum, annotation)

def feature(feature_id, mz, rtime, rt_min, rt_max):
    return Feature(feature_id, feature_id, mz, rtime, rt_min, rt_max, mz - 0.001, mz + 0.001, {}, {}, 0)


class TestTopFraction(unittest.TestCase):

    def test_ceiling(self):
        items = list(range(20))
        self.assertEqual(top_fraction(items, lambda x: x, 0.1), [18, 19])
        self.assertEqual(top_fraction(items[:5], lambda x: x, 0.1), [4])
        self.assertEqual(top_fraction([], lambda x: x, 0.1), [])

    def test_ties_kept(self):
        self.assertEqual(top_fraction([5, 1, 5, 5], lambda x: x, 0.1), [5, 5, 5])


class TestRepresentative(unittest.TestCase):

    def test_cascade(self):
        # 20 candidates: 2 kept by purity, then 1 by intensity
        cands = [candidate(ii, purity=ii / 20, intensity=1e5, fragments=10) for ii in range(20)]
        cands[18] = candidate(18, purity=18 / 20, intensity=2e5, fragments=2)
        rep = select_representative('F1', cands, 0.1)
        self.assertEqual(rep.scan_index, 18)
        self.assertEqual(rep.n_candidates, 20)
        self.assertEqual(rep.feature_id, 'F1')
        self.assertEqual(len(rep.mz), 2)

    def test_most_fragments(self):
        cands = [candidate(0, fragments=3), candidate(1, fragments=8), candidate(2, fragments=5)]
        self.assertEqual(select_representative('F1', cands).scan_index, 1)

    def test_fragment_tie_first_in_order(self):
        cands = [candidate(7, fragments=4), candidate(3, fragments=4)]
        self.assertEqual(select_representative('F1', cands).scan_index, 7)

    def test_no_candidates(self):
        self.assertIsNone(select_representative('F1', []))


class TestLinking(unittest.TestCase):

    def setUp(self):
        self.features = [feature('F1', 200.0, 50.0, 40.0, 60.0), feature('F2', 200.001, 50.0, 40.0, 60.0),
                         feature('F3', 300.0, 100.0, 95.0, 105.0)]

    def test_closest_mz(self):
        linked = link_spectra_to_features(self.features, [candidate(0, precursor_mz=200.0008)], ppm=10)
        self.assertEqual(list(linked), ['F2'])

    def test_each_spectrum_linked_once(self):
        cands = [candidate(ii, precursor_mz=200.0003) for ii in range(3)]
        linked = link_spectra_to_features(self.features, cands, ppm=10)
        self.assertEqual(sum(len(v) for v in linked.values()), 3)
        self.assertEqual(list(linked), ['F1'])

    def test_rt_range(self):
        c = candidate(0, rtime=107.0, precursor_mz=300.0)
        self.assertEqual(link_spectra_to_features(self.features, [c]), {})
        self.assertEqual(list(link_spectra_to_features(self.features, [c], expand_rt=2)), ['F3'])

    def test_reported_mz_used_without_estimate(self):
        c = candidate(0, precursor_mz=None, reported_mz=300.0, rtime=100.0)
        self.assertEqual(candidate_precursor_mz(c), 300.0)
        self.assertEqual(list(link_spectra_to_features(self.features, [c])), ['F3'])

    def test_select_spectra(self):
        cands = [candidate(0, precursor_mz=200.0), candidate(1, rtime=100.0, precursor_mz=300.0, fragments=5)]
        reps, without = select_spectra(self.features, cands, ppm=10)
        self.assertEqual(sorted(reps), ['F1', 'F3'])
        self.assertEqual(without, ['F2'])
        self.assertEqual(reps['F3'].scan_index, 1)

if __name__ == '__main__':
    unittest.main()
