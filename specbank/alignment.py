'''
Retention time alignment between samples.

Anchors are well replicated features from the first round of correspondence.
For each sample, (raw apex rtime, reference rtime) pairs of the anchors are fitted
by LOWESS (Locally Weighted Scatterplot Smoothing) on the deltas,
giving a correction function of retention time.
The fitted curve is forced monotonic, so that aligned retention times keep the scan order.
After alignment, correspondence is run again with a smaller bandwidth.
'''
import numpy as np
from statsmodels.nonparametric.smoothers_lowess import lowess

from .errors import InsufficientAnchorsError, InsufficientDataError
from .records import peak_apex_rt


class AlignmentModel:
    '''
    Retention time correction of one sample, a piecewise linear function
    through fitted knots, with constant correction beyond the first and last knots.

    `correction(rt)` returns the delta; calling the model returns aligned retention time.
    '''
    def __init__(self, sample_id, knots, deltas, anchor_pairs=None, method='loess'):
        '''
        Parameters
        ----------
        sample_id : str
        knots : array
            raw retention times, strictly increasing.
        deltas : array
            corrections at the knots.
        anchor_pairs : list[tuple]
            (raw rtime, reference rtime) used to fit.
        method : str
            'loess' or 'linear'.
        '''
        self.sample_id = sample_id
        self.knots = np.asarray(knots, dtype=float)
        self.deltas = enforce_monotonic(self.knots, np.asarray(deltas, dtype=float))
        self.anchor_pairs = list(anchor_pairs or [])
        self.method = method

    def __repr__(self):
        return "AlignmentModel(%s, %s, %d anchors)" %(self.sample_id, self.method, len(self.anchor_pairs))

    def correction(self, rtime):
        return np.interp(rtime, self.knots, self.deltas)

    def __call__(self, rtime):
        return np.asarray(rtime, dtype=float) + self.correction(rtime)

    def records(self):
        '''
        For export to project.json.
        '''
        return {
            'sample_id': self.sample_id,
            'method': self.method,
            'knots': self.knots,
            'deltas': self.deltas,
            'number_anchors': len(self.anchor_pairs),
        }


def enforce_monotonic(knots, deltas, min_slope=1e-6):
    '''
    Adjust deltas so that knots + deltas is strictly increasing,
    which keeps the order of scans and of peak boundaries after alignment.
    '''
    aligned = knots + deltas
    for ii in range(1, len(aligned)):
        floor = aligned[ii-1] + min_slope * (knots[ii] - knots[ii-1])
        if aligned[ii] < floor:
            aligned[ii] = floor
    return aligned - knots

def clean_rt_calibration_points(rt_cal_pairs):
    '''
    Remove redundant RT calibration data points and outliers (out of 3x stdev of deltas).
    Not applied to fewer than 10 pairs.

    Parameters
    ----------
    rt_cal_pairs : list of paired retention times from this sample and from the reference.

    Returns
    -------
    rt_cal_pairs : clean and sorted version of rt_cal_pairs.
    '''
    rt_cal_pairs = sorted(set(rt_cal_pairs))
    if len(rt_cal_pairs) < 10:
        return rt_cal_pairs
    _deltas = np.array([x[1] - x[0] for x in rt_cal_pairs])
    m, std3x = _deltas.mean(), _deltas.std() * 3
    if std3x == 0:
        return rt_cal_pairs
    return [x for x, d in zip(rt_cal_pairs, _deltas) if m - std3x <= d <= m + std3x]

def select_anchors(features, sample_ids, min_fraction=0.9, max_extra_features=1):
    '''
    Anchor features are present in at least min_fraction of all samples
    and have no more than max_extra_features extra peaks.
    '''
    n = len(sample_ids)
    return [f for f in features
            if len(f.peaks) >= min_fraction * n and f.extra_peaks <= max_extra_features]

def anchor_pairs_by_sample(anchors, sample_ids):
    '''
    For each sample, (raw apex rtime, reference rtime) of the anchors it has a peak in.
    Reference rtime is the median apex of the anchor across samples.
    '''
    pairs = {sid: [] for sid in sample_ids}
    for f in anchors:
        ref = float(np.median([peak_apex_rt(p) for p in f.peaks.values()]))
        for sid, p in f.peaks.items():
            if sid in pairs:
                pairs[sid].append((peak_apex_rt(p), ref))
    return pairs

def fit_alignment(sample_id, pairs, smoothing_span=0.4, smooth='loess', num_iterations=3, rt_range=None):
    '''
    Fit the correction function of one sample.

    Parameters
    ----------
    sample_id : str
    pairs : list[tuple]
        (raw rtime, reference rtime) of anchors.
    smoothing_span : float
        fraction of anchors used in each local regression.
    smooth : str
        'loess' or 'linear'. Linear fit is also used with fewer than 4 anchors.
    num_iterations : int
        robustifying iterations in LOWESS.
    rt_range : tuple, optional
        (min, max) raw retention time of the sample; linear fits are extended to it.

    Returns
    -------
    AlignmentModel

    Raises
    ------
    InsufficientAnchorsError if fewer than 2 distinct anchor retention times.
    '''
    pairs = clean_rt_calibration_points(pairs)
    xx = np.array([x[0] for x in pairs], dtype=float)
    if np.unique(xx).size < 2:
        raise InsufficientAnchorsError(sample_id, int(np.unique(xx).size))
    yy = np.array([x[1] - x[0] for x in pairs], dtype=float)

    knots, deltas, method = None, None, smooth
    if smooth == 'loess' and len(xx) >= 4:
        frac = min(1.0, max(smoothing_span, 3.0 / len(xx)))
        fitted = lowess(yy, xx, frac=frac, it=num_iterations, return_sorted=True)
        if np.all(np.isfinite(fitted)):
            knots, deltas = _collapse_duplicates(fitted[:, 0], fitted[:, 1])
    if knots is None:
        method = 'linear'
        slope, intercept = np.polyfit(xx, yy, 1)
        knots = np.unique(xx)
        if rt_range is not None:
            knots = np.unique(np.concatenate((knots, rt_range)))
        deltas = slope * knots + intercept
    return AlignmentModel(sample_id, knots, deltas, pairs, method)

def _collapse_duplicates(xx, yy):
    '''
    Average yy over equal xx, xx sorted.
    '''
    knots, inverse = np.unique(xx, return_inverse=True)
    sums = np.bincount(inverse, weights=yy)
    counts = np.bincount(inverse)
    return knots, sums / counts

def align_samples(features, sample_ids, min_fraction=0.9, max_extra_features=1,
                  smoothing_span=0.4, smooth='loess', num_iterations=3, rt_ranges=None):
    '''
    Fit alignment models of all samples from pre-alignment features.

    Parameters
    ----------
    features : list[Feature]
        features from the first correspondence, in raw retention time.
    sample_ids : list
    rt_ranges : dict, optional
        sample_id to (min, max) raw retention time.

    Returns
    -------
    models : dict
        sample_id to AlignmentModel, for samples that could be fitted.
    failures : dict
        sample_id to InsufficientDataError, for samples that could not.
        These samples must be excluded from downstream correspondence.
    '''
    rt_ranges = rt_ranges or {}
    anchors = select_anchors(features, sample_ids, min_fraction, max_extra_features)
    pairs = anchor_pairs_by_sample(anchors, sample_ids)
    models, failures = {}, {}
    for sid in sample_ids:
        try:
            models[sid] = fit_alignment(sid, pairs[sid], smoothing_span, smooth, num_iterations,
                                        rt_ranges.get(sid))
        except InsufficientDataError as err:
            failures[sid] = err
    return models, failures

def alignment_parameters(parameters):
    return {
        'min_fraction': parameters['anchor_min_fraction'],
        'max_extra_features': parameters['max_extra_features'],
        'smoothing_span': parameters['smoothing_span'],
        'smooth': parameters['smooth'],
        'num_iterations': parameters['num_lowess_iterations'],
    }

def realign_peaks(peaks, model):
    '''
    Re-express retention times of peaks by an alignment model.
    Raw values are kept in raw_rt as (rt_min, rt_apex, rt_max);
    the model is always applied to raw values.
    '''
    new = []
    for p in peaks:
        raw = p.raw_rt if p.raw_rt is not None else (p.rt_min, p.rt_apex, p.rt_max)
        rt_min, rt_apex, rt_max = model(np.array(raw))
        new.append(p._replace(rt_min=float(rt_min), rt_apex=float(rt_apex), rt_max=float(rt_max),
                              raw_rt=tuple(float(x) for x in raw)))
    return new
