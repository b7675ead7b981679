import unittest

import numpy as np

from specbank.errors import UnsortedAcquisitionError
from specbank.precursors import (
    precursor_purity,
    estimate_precursor_mz,
    resolve_precursors,
    apply_precursor_annotations,
    resolve_sample_precursors,
)
from specbank.records import Spectrum
from specbank.samples import Sample


def ms1(scan_index, rtime, mzs, ints):
    return Spectrum(scan_index, 1, rtime, np.array(mzs, dtype=float), np.array(ints, dtype=float))

def ms2(scan_index, rtime, precursor_mz, low=None, high=None):
    return Spectrum(scan_index, 2, rtime, np.array([50.0, 80.0]), np.array([100.0, 200.0]),
                    precursor_mz=precursor_mz, isolation_low=low, isolation_high=high)


class TestPrecursors(unittest.TestCase):

    def setUp(self):
        self.ms1 = ms1(1, 10.0, [199.99, 200.001, 200.004, 250.0], [10000, 9000, 1000, 5000])
        self.sample = Sample('s', [
            ms2(0, 9.5, 200.0),
            self.ms1,
            ms2(2, 10.5, 200.0, 199.5, 200.5),
            ms2(3, 10.6, 300.0),
        ])

    def test_purity(self):
        purity, intensity = precursor_purity(self.ms1, 199.993, 200.007)
        self.assertAlmostEqual(purity, 0.9)
        self.assertEqual(intensity, 9000)
        self.assertEqual(precursor_purity(self.ms1, 300, 301), (0.0, 0.0))

    def test_estimate(self):
        self.assertEqual(estimate_precursor_mz(self.ms1, 200.0), 200.001)
        self.assertIsNone(estimate_precursor_mz(self.ms1, 300.0))

    def test_resolve(self):
        annotations = resolve_precursors(self.sample)
        self.assertEqual([a.scan_index for a in annotations], [0, 2, 3])
        first, second, third = annotations
        # no preceding MS1 scan
        self.assertIsNone(first.ms1_scan_index)
        self.assertIsNone(first.precursor_mz)
        self.assertEqual(second.ms1_scan_index, 1)
        self.assertEqual(second.reported_mz, 200.0)
        self.assertEqual(second.precursor_mz, 200.001)
        self.assertAlmostEqual(second.purity, 0.9)
        self.assertEqual(second.intensity, 9000)
        # no MS1 peak in tolerance, reported value not substituted
        self.assertIsNone(third.precursor_mz)
        self.assertEqual(third.reported_mz, 300.0)
        self.assertEqual(third.purity, 0.0)

    def test_isolation_window(self):
        second = resolve_precursors(self.sample, use_isolation_window=True)[1]
        self.assertAlmostEqual(second.purity, 0.5)
        self.assertEqual(second.intensity, 10000)
        self.assertEqual(second.precursor_mz, 200.001)

    def test_unsorted(self):
        sample = Sample('s', [ms1(0, 10.0, [100.0], [1.0]), ms2(1, 9.0, 100.0)], validate=False)
        with self.assertRaises(UnsortedAcquisitionError):
            resolve_precursors(sample)

    def test_apply(self):
        annotations = resolve_precursors(self.sample)
        corrected = apply_precursor_annotations(self.sample, annotations)
        spectra = {s.scan_index: s for s in corrected.spectra}
        self.assertEqual(spectra[2].precursor_mz, 200.001)
        self.assertEqual(spectra[2].raw_precursor_mz, 200.0)
        self.assertIsNone(spectra[3].precursor_mz)
        self.assertEqual(spectra[3].raw_precursor_mz, 300.0)
        # resolved again from reported values
        self.assertEqual(resolve_precursors(corrected), annotations)

    def test_job(self):
        params = {'precursor_tolerance': 0.005, 'precursor_ppm': 10, 'use_isolation_window': False}
        sid, annotations = resolve_sample_precursors((self.sample, params))
        self.assertEqual(sid, 's')
        self.assertEqual(len(annotations), 3)

if __name__ == '__main__':
    unittest.main()
