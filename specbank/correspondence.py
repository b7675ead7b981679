'''
Correspondence: grouping peaks detected independently per sample into cross-sample features.

Peaks are first bucketed by m/z proximity. Within a bucket, a Gaussian kernel density
of apex retention times is computed; each local density maximum seeds a cluster
and every peak goes to its nearest maximum.
A cluster becomes a feature if enough samples of at least one sample group have a peak in it.

The KDE bandwidth is the dominant parameter: too small splits one compound into several features,
too large joins co-eluting compounds. It is set larger before retention time alignment
(`bandwidth`) and smaller after (`bandwidth_aligned`).
'''
from collections import Counter

import numpy as np
from scipy.signal import find_peaks

from .errors import ParameterError, MissingMetadataError
from .mass_functions import bucket_by_mz_gaps
from .records import Feature

MAX_KDE_POINTS = 20000


def kde_density(rtimes, bandwidth, grid):
    '''
    Gaussian kernel density (unnormalized) of rtimes evaluated on grid.
    '''
    d = (np.asarray(grid)[:, None] - np.asarray(rtimes)[None, :]) / bandwidth
    return np.exp(-0.5 * d**2).sum(axis=1)

def kde_maxima(rtimes, bandwidth):
    '''
    Local maxima of the kernel density of rtimes.
    Grid step is bandwidth/10, padded by 3 bandwidths on both sides.

    Returns
    -------
    positions, densities: arrays of the maxima in ascending retention time.
    '''
    lo, hi = min(rtimes) - 3 * bandwidth, max(rtimes) + 3 * bandwidth
    step = bandwidth / 10
    if (hi - lo) / step > MAX_KDE_POINTS:
        step = (hi - lo) / MAX_KDE_POINTS
    grid = np.arange(lo, hi + step, step)
    density = kde_density(rtimes, bandwidth, grid)
    maxima, _ = find_peaks(np.concatenate(([0], density, [0])))
    maxima = maxima - 1
    if not maxima.size:
        maxima = np.array([int(np.argmax(density))])
    return grid[maxima], density[maxima]

def assign_to_maxima(rtimes, positions, densities, tie_tolerance=1e-9):
    '''
    Assign each retention time to its nearest density maximum.
    A value equidistant to two maxima goes to the one with higher density,
    then to the one with lower retention time.

    Returns
    -------
    np.array of cluster index per value.
    '''
    labels = np.empty(len(rtimes), dtype=int)
    for ii, rt in enumerate(rtimes):
        dist = np.abs(positions - rt)
        nearest = np.nonzero(dist <= dist.min() + tie_tolerance)[0]
        if nearest.size > 1:
            # highest density first, lowest position on equal density
            nearest = sorted(nearest, key=lambda k: (-densities[k], positions[k]))
        labels[ii] = nearest[0]
    return labels

def cluster_rtimes(rtimes, bandwidth):
    '''
    Cluster retention times by kernel density.

    Returns
    -------
    np.array of cluster labels, co-indexed with rtimes.
    '''
    if bandwidth is None or not bandwidth > 0:
        raise ParameterError("bandwidth must be positive, got %s" %bandwidth)
    if len(rtimes) == 1:
        return np.zeros(1, dtype=int)
    positions, densities = kde_maxima(rtimes, bandwidth)
    return assign_to_maxima(np.asarray(rtimes, dtype=float), positions, densities)

def passes_min_fraction(sample_ids, sample_groups, group_sizes, min_fraction=0.5, min_samples=1):
    '''
    True if peaks are present in at least min_fraction (and at least min_samples)
    of the samples of at least one sample group.
    '''
    present = Counter(sample_groups[s] for s in set(sample_ids))
    for group, count in present.items():
        if count >= min_fraction * group_sizes[group] and count >= min_samples:
            return True
    return False

def _pick_one_per_sample(members):
    '''
    Keep one peak per sample, the one with largest area; ties go to lower peak_id.
    Returns (dict of sample_id to peak, number of extra peaks).
    '''
    chosen = {}
    for p in sorted(members, key=lambda p: (-p.area, str(p.peak_id))):
        if p.sample_id not in chosen:
            chosen[p.sample_id] = p
    return chosen, len(members) - len(chosen)

def group_peaks(peaks, sample_groups, bandwidth=30, min_fraction=0.5, min_samples=1,
                ppm=10, bin_size=0.001):
    '''
    Partition peaks from all samples into Features.

    Parameters
    ----------
    peaks : list[ChromatographicPeak]
        peaks from all samples.
    sample_groups : dict
        sample_id to group; group sizes are counted from this dict.
    bandwidth : float, optional, default: 30
        seconds, standard deviation of the Gaussian kernel on apex retention time.
    min_fraction : float, optional, default: 0.5
        fraction of samples within a group that must have a peak in the feature.
    min_samples : int, optional, default: 1
        absolute minimal number of samples within that group.
    ppm : float, optional, default: 10
        m/z gap tolerance in bucketing.
    bin_size : float, optional, default: 0.001
        absolute m/z gap tolerance in bucketing.

    Returns
    -------
    list of Features sorted by (mz, rtime), with feature_id 'F1', 'F2', ... and xcms style names.

    Note
    ----
    Each peak belongs to at most one feature. When a sample has several peaks in one cluster,
    the one with largest area is kept as member and the others are counted in extra_peaks.
    Peaks in clusters that fail the min_fraction rule are dropped as noise.
    mz and rtime of a feature are the medians of member apexes.
    '''
    if bandwidth is None or not bandwidth > 0:
        raise ParameterError("bandwidth must be positive, got %s" %bandwidth)
    missing = set(p.sample_id for p in peaks) - set(sample_groups)
    if missing:
        raise MissingMetadataError(sorted(missing, key=str)[0], "Sample has no group assignment")
    group_sizes = Counter(sample_groups.values())

    features = []
    for bucket in bucket_by_mz_gaps(peaks, ppm, bin_size, key=lambda p: p.mz_apex):
        rtimes = np.array([p.rt_apex for p in bucket])
        labels = cluster_rtimes(rtimes, bandwidth)
        for label in np.unique(labels):
            members = [bucket[ii] for ii in np.nonzero(labels == label)[0]]
            chosen, extra = _pick_one_per_sample(members)
            if not passes_min_fraction(chosen.keys(), sample_groups, group_sizes, min_fraction, min_samples):
                continue
            features.append(make_feature(chosen, extra))

    features.sort(key=lambda f: (f.mz, f.rtime))
    return name_features([f._replace(feature_id='F%d' %(ii+1)) for ii, f in enumerate(features)])

def make_feature(chosen, extra_peaks=0):
    '''
    Feature from a dict of sample_id to member peak.
    '''
    members = list(chosen.values())
    return Feature(
        feature_id=None,
        name=None,
        mz=float(np.median([p.mz_apex for p in members])),
        rtime=float(np.median([p.rt_apex for p in members])),
        rt_min=float(min(p.rt_min for p in members)),
        rt_max=float(max(p.rt_max for p in members)),
        mz_min=float(min(p.mz_min for p in members)),
        mz_max=float(max(p.mz_max for p in members)),
        peaks=dict(chosen),
        fills={},
        extra_peaks=int(extra_peaks),
    )

def name_features(features):
    '''
    Name features as M<rounded mz>T<rounded rtime>, adding _1, _2 ... to duplicated names.
    '''
    names = ['M%dT%d' %(round(f.mz), round(f.rtime)) for f in features]
    counts = Counter(names)
    seen = Counter()
    new = []
    for f, name in zip(features, names):
        if counts[name] > 1:
            seen[name] += 1
            name = '%s_%d' %(name, seen[name])
        new.append(f._replace(name=name))
    return new

def grouping_parameters(parameters, aligned=False):
    '''
    Select keyword arguments of `group_peaks` from the main parameters.
    '''
    return {
        'bandwidth': parameters['bandwidth_aligned'] if aligned else parameters['bandwidth'],
        'min_fraction': parameters['min_fraction'],
        'min_samples': parameters['min_samples'],
        'ppm': parameters['group_ppm'],
        'bin_size': parameters['group_bin_size'],
    }
