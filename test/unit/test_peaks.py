import unittest

import numpy as np

from specbank.peaks import (
    ricker_wavelet,
    wavelet_scales,
    estimate_baseline_noise,
    descend_to_baseline,
    half_height_width,
    detect_peaks,
    get_peak_area,
    evaluate_gaussian_peak,
    refine_peaks,
    merge_two_peaks,
    detect_sample_peaks,
)
from specbank.chromatograms import build_trace
from specbank.default_parameters import PARAMETERS
from specbank.records import Trace, ChromatographicPeak
from specbank.testing import gaussian_profile, make_sample


def make_trace(intensity, rtime=None, mz=200.0):
    intensity = np.asarray(intensity, dtype=float)
    if rtime is None:
        rtime = np.arange(intensity.size, dtype=float)
    scan_mz = np.where(intensity > 0, mz, np.nan)
    return Trace('s', 0, mz, mz, mz, np.asarray(rtime, dtype=float), intensity, scan_mz)


class TestWavelet(unittest.TestCase):

    def test_ricker_symmetric(self):
        w = ricker_wavelet(21, 3.0)
        np.testing.assert_allclose(w, w[::-1])
        self.assertEqual(int(np.argmax(w)), 10)

    def test_scales_from_peak_width(self):
        scales = wavelet_scales(np.arange(0, 100, 0.5), (4, 40))
        self.assertAlmostEqual(scales[0], 2.0)
        self.assertAlmostEqual(scales[-1], 20.0)


class TestDetection(unittest.TestCase):

    def test_baseline_noise_floor(self):
        baseline, noise = estimate_baseline_noise(np.zeros(50), noise_floor=100)
        self.assertEqual((baseline, noise), (100, 100))

    def test_descend_to_baseline(self):
        values = np.array([0, 1, 5, 10, 5, 1, 0, 0])
        self.assertEqual(descend_to_baseline(values, 3, 0.5), (0, 6, False))

    def test_single_gaussian(self):
        rtime = np.arange(0, 120, 1.0)
        trace = make_trace(gaussian_profile(rtime, 60, 1e6, 3), rtime)
        peaks = detect_peaks(trace, peak_width=(5, 60), noise_floor=1000, min_peak_height=10000)
        self.assertEqual(len(peaks), 1)
        p = peaks[0]
        self.assertEqual(p.rt_apex, 60.0)
        self.assertLess(p.rt_min, p.rt_apex)
        self.assertLess(p.rt_apex, p.rt_max)
        self.assertAlmostEqual(p.area, 1e6 * 3 * np.sqrt(2 * np.pi), delta=0.02 * 1e6 * 3 * np.sqrt(2 * np.pi))
        self.assertGreater(p.gaussian_fit, 0.9)
        self.assertGreater(p.snr, 3)
        self.assertFalse(p.low_confidence)
        self.assertEqual(p.mz_apex, 200.0)

    def test_flat_and_empty_traces(self):
        self.assertEqual(detect_peaks(make_trace(np.zeros(50))), [])
        self.assertEqual(detect_peaks(make_trace(np.full(50, 5000.0)), noise_floor=1000), [])
        self.assertEqual(detect_peaks(make_trace([])), [])

    def test_two_separated_peaks(self):
        rtime = np.arange(0, 200, 1.0)
        intensity = gaussian_profile(rtime, 50, 1e6, 3) + gaussian_profile(rtime, 140, 5e5, 3)
        peaks = detect_peaks(make_trace(intensity, rtime), noise_floor=1000, min_peak_height=10000)
        self.assertEqual([p.rt_apex for p in peaks], [50.0, 140.0])

    def test_intense_peaks_are_kept(self):
        rtime = np.arange(0, 300, 1.0)
        for height in (1e6, 1e8, 1e9, 1e11):
            trace = make_trace(gaussian_profile(rtime, 150, height, 6), rtime)
            peaks = detect_peaks(trace, noise_floor=1000, min_peak_height=10000)
            self.assertEqual(len(peaks), 1, height)
            p = peaks[0]
            self.assertEqual(p.rt_apex, 150.0)
            self.assertLessEqual(p.rt_max - p.rt_min, 60)
            self.assertAlmostEqual(p.area, height * 6 * np.sqrt(2 * np.pi),
                                   delta=0.01 * height * 6 * np.sqrt(2 * np.pi))

    def test_half_height_width(self):
        rtime = np.arange(0, 100, 0.5)
        intensity = gaussian_profile(rtime, 50, 1e6, 4)
        width = half_height_width(rtime, intensity, 100, 0, rtime.size - 1)
        self.assertAlmostEqual(width, 2 * np.sqrt(2 * np.log(2)) * 4, delta=0.05)

    def test_broad_peak_is_discarded(self):
        rtime = np.arange(0, 600, 1.0)
        trace = make_trace(gaussian_profile(rtime, 300, 1e6, 30), rtime)
        self.assertEqual(detect_peaks(trace, peak_width=(5, 60), noise_floor=1000, min_peak_height=10000), [])

    def test_min_peak_height(self):
        rtime = np.arange(0, 120, 1.0)
        trace = make_trace(gaussian_profile(rtime, 60, 5e4, 3), rtime)
        self.assertEqual(detect_peaks(trace, noise_floor=1000, min_peak_height=1e5), [])

    def test_peak_at_trace_end_is_clipped(self):
        rtime = np.arange(0, 60, 1.0)
        trace = make_trace(gaussian_profile(rtime, 52, 1e6, 3), rtime)
        peaks = detect_peaks(trace, noise_floor=1000, min_peak_height=10000)
        self.assertEqual(len(peaks), 1)
        self.assertTrue(peaks[0].low_confidence)
        self.assertEqual(peaks[0].rt_max, 59.0)

    def test_integrate_mode_1(self):
        rtime = np.arange(0, 120, 1.0)
        trace = make_trace(gaussian_profile(rtime, 60, 1e6, 3), rtime)
        peaks = detect_peaks(trace, integrate=1, noise_floor=1000, min_peak_height=10000)
        self.assertEqual(len(peaks), 1)
        self.assertEqual(peaks[0].rt_apex, 60.0)

    def test_peak_area_methods(self):
        self.assertEqual(get_peak_area([0, 1, 2], [0, 2, 0], 'auc'), 2.0)
        self.assertEqual(get_peak_area([0, 1, 2], [0, 2, 0], 'sum'), 2.0)
        self.assertEqual(get_peak_area([0, 2, 4], [1, 1, 1], 'auc'), 4.0)
        self.assertEqual(get_peak_area([0], [5], 'auc'), 0.0)

    def test_gaussian_fit_of_noise_is_poor(self):
        rtime = np.arange(20, dtype=float)
        intensity = np.array([1, 9, 1, 9, 1, 9, 1, 9, 1, 9, 1, 9, 1, 9, 1, 9, 1, 9, 1, 9], dtype=float)
        self.assertLess(evaluate_gaussian_peak(rtime, intensity, 9, 10), 0.5)

    def test_detect_sample_peaks_ids(self):
        sample = make_sample('s', [(150.0, 30.0, 1e6, 3.0), (250.0, 60.0, 5e5, 3.0)], rt_range=(0, 100))
        sid, peaks = detect_sample_peaks((sample, PARAMETERS))
        self.assertEqual(sid, 's')
        self.assertEqual(len(peaks), 2)
        self.assertEqual([p.peak_id for p in peaks], ['s_0', 's_1'])


class TestRefinement(unittest.TestCase):

    def setUp(self):
        # one broad compound, split into two peaks by detection
        self.sample = make_sample('s', [(200.0, 50.0, 1e6, 4.0)], rt_range=(0, 100))
        rt = self.sample.ms1_rtimes
        self.left = ChromatographicPeak('s_0', 's', 0, rt[40], rt[48], rt[50], 200.0, 200.0, 200.0,
                                        5e6, 9e5, 10.0, 0.9, False)
        self.right = ChromatographicPeak('s_1', 's', 0, rt[50], rt[52], rt[60], 200.0, 200.0, 200.0,
                                         4e6, 8e5, 12.0, 0.9, True)
        self.other = ChromatographicPeak('s_2', 's', 1, rt[40], rt[50], rt[60], 300.0, 300.0, 300.0,
                                         1e6, 1e5, 5.0, 0.9, False)

    def test_merge_split_peaks(self):
        refined = refine_peaks([self.left, self.right, self.other], self.sample)
        self.assertEqual(len(refined), 2)
        merged = [p for p in refined if p.mz_apex == 200.0][0]
        self.assertEqual(merged.peak_id, 's_0')
        self.assertEqual(merged.rt_min, self.left.rt_min)
        self.assertEqual(merged.rt_max, self.right.rt_max)
        self.assertEqual(merged.snr, 12.0)
        self.assertTrue(merged.low_confidence)

    def test_merged_area_is_integrated_again(self):
        merged = merge_two_peaks(self.left, self.right, self.sample)
        trace = build_trace(self.sample, (200.0, 200.0), (self.left.rt_min, self.right.rt_max))
        self.assertAlmostEqual(merged.area, get_peak_area(trace.rtime, trace.intensity))

    def test_refinement_is_idempotent(self):
        once = refine_peaks([self.left, self.right, self.other], self.sample)
        twice = refine_peaks(once, self.sample)
        self.assertEqual(once, twice)

    def test_valley_keeps_resolved_peaks(self):
        sample = make_sample('s', [(200.0, 40.0, 1e6, 2.0), (200.0, 52.0, 1e6, 2.0)], rt_range=(0, 100))
        rt = sample.ms1_rtimes
        a = ChromatographicPeak('s_0', 's', 0, rt[34], rt[40], rt[46], 200.0, 200.0, 200.0,
                                5e6, 1e6, 10.0, 0.9, False)
        b = ChromatographicPeak('s_1', 's', 0, rt[46], rt[52], rt[58], 200.0, 200.0, 200.0,
                                5e6, 1e6, 10.0, 0.9, False)
        self.assertEqual(len(refine_peaks([a, b], sample)), 2)

if __name__ == '__main__':
    unittest.main()
