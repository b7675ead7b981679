'''
Fixed-schema records passed between processing stages.

All records are namedtuples, thus immutable.
A stage that changes a value (e.g. retention time after alignment)
creates a derived copy via `_replace`, keeping the raw value in the `raw_*` field.

Retention times are in seconds.
m/z and intensity arrays of a Spectrum are numpy arrays, m/z strictly increasing.
'''

from collections import namedtuple

import numpy as np

# -----------------------------------------------------------------------------
# raw data
# raw_rtime and raw_precursor_mz are None until alignment or precursor correction
# creates a derived copy. scan_window_low/high are the acquisition m/z limits, None if not reported.
Spectrum = namedtuple('Spectrum', ['scan_index', 'ms_level', 'rtime', 'mz', 'intensity',
                                   'centroided', 'precursor_mz', 'isolation_low', 'isolation_high',
                                   'raw_rtime', 'raw_precursor_mz', 'scan_window_low', 'scan_window_high'],
                      defaults=(True, None, None, None, None, None, None, None))

# transient, not kept beyond the stage that built it.
# scan_mz holds per-scan m/z of the max intensity data point, NaN if no data.
Trace = namedtuple('Trace', ['sample_id', 'trace_id', 'mz', 'mz_min', 'mz_max',
                             'rtime', 'intensity', 'scan_mz'])

# -----------------------------------------------------------------------------
# peaks and features
ChromatographicPeak = namedtuple('ChromatographicPeak', ['peak_id', 'sample_id', 'trace_id',
                                 'rt_min', 'rt_apex', 'rt_max', 'mz_min', 'mz_apex', 'mz_max',
                                 'area', 'height', 'snr', 'gaussian_fit', 'low_confidence',
                                 'raw_rt'],
                                 defaults=(0.0, 0.0, False, None))

# status is 'filled' or 'unavailable'; area is None when unavailable, which is not zero.
FilledValue = namedtuple('FilledValue', ['sample_id', 'status', 'area',
                                         'mz_min', 'mz_max', 'rt_min', 'rt_max'])

# peaks: {sample_id: ChromatographicPeak}, fills: {sample_id: FilledValue}
Feature = namedtuple('Feature', ['feature_id', 'name', 'mz', 'rtime', 'rt_min', 'rt_max',
                                 'mz_min', 'mz_max', 'peaks', 'fills', 'extra_peaks',
                                 'fill_exceeds_detected'],
                     defaults=(False,))

# -----------------------------------------------------------------------------
# MS2 related
# precursor_mz is None when no MS1 peak is found within tolerance (not the reported value).
PrecursorAnnotation = namedtuple('PrecursorAnnotation', ['sample_id', 'scan_index', 'ms1_scan_index',
                                 'reported_mz', 'precursor_mz', 'purity', 'intensity'])

RepresentativeSpectrum = namedtuple('RepresentativeSpectrum', ['feature_id', 'sample_id', 'scan_index',
                                    'rtime', 'mz', 'intensity', 'precursor_mz', 'purity',
                                    'precursor_intensity', 'n_candidates'])


def number_of_fragments(spectrum):
    '''
    Number of fragment peaks in a spectrum, counting nonzero intensities only.
    '''
    return int(np.count_nonzero(np.asarray(spectrum.intensity) > 0))


def peak_apex_rt(peak):
    '''
    Apex retention time in raw (unaligned) coordinates.
    '''
    if peak.raw_rt is None:
        return peak.rt_apex
    return peak.raw_rt[1]


def feature_value(feature, sample_id):
    '''
    Intensity value of a feature in a sample: peak area if detected,
    filled area if gap-filled, None if missing or unavailable.
    '''
    if sample_id in feature.peaks:
        return feature.peaks[sample_id].area
    fill = feature.fills.get(sample_id)
    if fill is not None:
        return fill.area
    return None
