'''
Gap filling: integrating signal at the expected location of a feature
in samples where no peak was detected.

The integration window is centered at the feature (mz, rtime),
with half widths from the median peak width and m/z range of detected members.
A filled value can exceed the largest detected value of the feature
if background is high in the window. This is kept and flagged
(Feature.fill_exceeds_detected) as a data quality signal, not corrected.
'''
import numpy as np

from .chromatograms import build_trace
from .mass_functions import ppm_tolerance
from .peaks import get_peak_area
from .records import FilledValue


def fill_window(feature, ppm=5, expand_rt=0):
    '''
    Integration window of a feature.

    Returns
    -------
    (mz_low, mz_high), (rt_low, rt_high)
    '''
    members = list(feature.peaks.values())
    d_rt = float(np.median([(p.rt_max - p.rt_min) / 2 for p in members])) + expand_rt
    d_mz = float(np.median([(p.mz_max - p.mz_min) / 2 for p in members]))
    d_mz = max(d_mz, ppm_tolerance(feature.mz, ppm))
    return (feature.mz - d_mz, feature.mz + d_mz), (feature.rtime - d_rt, feature.rtime + d_rt)

def sample_covers(sample, mz_range, rt_range):
    '''
    True if the MS1 data of a sample have scans within rt_range
    and an m/z range overlapping mz_range. The m/z range is the acquisition scan window
    where reported, else the observed range of data points (Sample.mz_range).
    '''
    rtimes = sample.ms1_rtimes
    if not rtimes.size:
        return False
    lo = np.searchsorted(rtimes, rt_range[0], side='left')
    hi = np.searchsorted(rtimes, rt_range[1], side='right')
    if hi <= lo:
        return False
    sample_mz = sample.mz_range
    if sample_mz is None:
        return False
    return sample_mz[0] <= mz_range[1] and mz_range[0] <= sample_mz[1]

def fill_sample(features, sample, ppm=5, expand_rt=0, peak_area='auc'):
    '''
    Filled values of one sample for all features lacking a real peak in it.

    Returns
    -------
    dict of feature_id to FilledValue. Status is 'unavailable' (area None)
    when the sample data do not cover the integration window at all.
    '''
    fills = {}
    mz_range_ = sample.mz_range
    for f in features:
        if sample.sample_id in f.peaks:
            continue
        mz_range, rt_range = fill_window(f, ppm, expand_rt)
        if mz_range_ is None or not sample_covers(sample, mz_range, rt_range):
            fills[f.feature_id] = FilledValue(sample.sample_id, 'unavailable', None,
                                              mz_range[0], mz_range[1], rt_range[0], rt_range[1])
            continue
        trace = build_trace(sample, mz_range, rt_range, aggregate='max')
        fills[f.feature_id] = FilledValue(sample.sample_id, 'filled',
                                          get_peak_area(trace.rtime, trace.intensity, peak_area),
                                          mz_range[0], mz_range[1], rt_range[0], rt_range[1])
    return fills

def apply_fills(features, fills_by_sample):
    '''
    New features with filled values and the fill_exceeds_detected flag.

    Parameters
    ----------
    features : list[Feature]
    fills_by_sample : dict
        sample_id to {feature_id: FilledValue}, from `fill_sample`.
    '''
    new = []
    for f in features:
        fills = {}
        for sid, sample_fills in fills_by_sample.items():
            if f.feature_id in sample_fills:
                fills[sid] = sample_fills[f.feature_id]
        max_detected = max(p.area for p in f.peaks.values())
        exceeds = any(v.area is not None and v.area > max_detected for v in fills.values())
        new.append(f._replace(fills=fills, fill_exceeds_detected=exceeds))
    return new

def fill_gaps(features, samples, ppm=5, expand_rt=0, peak_area='auc'):
    '''
    Gap filling over all samples. After this, every feature has a real or filled value
    for every sample, or an explicit 'unavailable' value.

    Parameters
    ----------
    features : list[Feature]
        post alignment features.
    samples : iterable of samples.Sample

    Returns
    -------
    list of Features with fills.
    '''
    fills_by_sample = {}
    for sample in samples:
        fills_by_sample[sample.sample_id] = fill_sample(features, sample, ppm, expand_rt, peak_area)
    return apply_fills(features, fills_by_sample)
