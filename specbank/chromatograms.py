'''
Functions related to chromatograms and mass tracks.

A Trace is the aggregated intensity of MS1 data over retention time,
optionally restricted to an m/z window and a retention time window.
A mass track is a Trace over the full retention time range of a sample,
built by flexible binning of all MS1 data points based on ppm accuracy.
Both use max intensity when multiple data points fall in the same scan,
unless `sum` is requested for a window.
'''
import numpy as np
from scipy.ndimage import uniform_filter1d

from .mass_functions import ppm_tolerance, nn_cluster_by_mz_seeds
from .records import Trace

# -----------------------------------------------------------------------------
# Traces in windows
# -----------------------------------------------------------------------------

def build_trace(sample, mz_range=None, rt_range=None, aggregate='max', trace_id=None):
    '''
    Build an aggregated ion trace from the MS1 spectra of a sample.

    Parameters
    ----------
    sample : samples.Sample
        sample with MS1 spectra in acquisition order.
    mz_range : tuple, optional
        (low, high) m/z, inclusive. None for all data points (TIC or BPC).
    rt_range : tuple, optional
        (low, high) retention time in seconds, inclusive. None for full range.
    aggregate : str, optional, default: 'max'
        'max' (base peak) or 'sum' (total ion) per scan.
    trace_id : optional
        identifier of the trace.

    Returns
    -------
    A Trace. Scans without data points in the m/z window have intensity 0 and scan_mz NaN.
    '''
    if aggregate not in ('max', 'sum'):
        raise ValueError("aggregate must be 'max' or 'sum', got %s" %aggregate)
    ms1 = sample.ms1_spectra
    rtimes = sample.ms1_rtimes
    if rt_range is not None:
        lo = np.searchsorted(rtimes, rt_range[0], side='left')
        hi = np.searchsorted(rtimes, rt_range[1], side='right')
    else:
        lo, hi = 0, len(ms1)

    intensity = np.zeros(hi - lo)
    scan_mz = np.full(hi - lo, np.nan)
    for ii, spec in enumerate(ms1[lo:hi]):
        mzs, ints = spec.mz, spec.intensity
        if mz_range is not None:
            a = np.searchsorted(mzs, mz_range[0], side='left')
            b = np.searchsorted(mzs, mz_range[1], side='right')
            mzs, ints = mzs[a:b], ints[a:b]
        if len(ints):
            k = int(np.argmax(ints))
            scan_mz[ii] = mzs[k]
            intensity[ii] = ints[k] if aggregate == 'max' else ints.sum()

    if mz_range is not None:
        mz_min, mz_max = mz_range
    elif np.any(np.isfinite(scan_mz)):
        mz_min, mz_max = np.nanmin(scan_mz), np.nanmax(scan_mz)
    else:
        mz_min, mz_max = np.nan, np.nan
    return Trace(sample_id=sample.sample_id,
                 trace_id=trace_id,
                 mz=0.5 * (mz_min + mz_max),
                 mz_min=mz_min,
                 mz_max=mz_max,
                 rtime=rtimes[lo:hi].copy(),
                 intensity=intensity,
                 scan_mz=scan_mz)


def extract_xics(sample, list_mz, mz_tolerance_ppm=5, aggregate='max'):
    '''
    Extract ion traces at target m/z values, full retention time range.
    Used by `xic` subcommand.

    Returns
    -------
    list of Traces, trace_id as the index in list_mz.
    '''
    traces = []
    for ii, mz in enumerate(list_mz):
        _d = ppm_tolerance(mz, mz_tolerance_ppm)
        traces.append(build_trace(sample, (mz-_d, mz+_d), None, aggregate, trace_id=ii))
    return traces


# -----------------------------------------------------------------------------
# mass Tracks
# -----------------------------------------------------------------------------

def extract_mass_tracks(sample,
                        mz_tolerance_ppm=5, min_intensity=100, min_timepoints=5,
                        min_peak_height=1000):
    '''
    Extract mass tracks from the MS1 data of a sample.
    A mass track is an EIC for full RT range, without separating the mass traces of same m/z.

    Parameters
    ----------
    sample : samples.Sample
        sample with MS1 spectra.
    mz_tolerance_ppm : float, optional, default: 5
        m/z tolerance in part-per-million. Used to seggregate m/z regsions here.
    min_intensity : float, optional, default: 100
        minimal intentsity value, needed because some instruments keep 0s
    min_timepoints : int, optional, default: 5
        minimal consecutive scans to be considered real signal.
    min_peak_height : float, optional, default: 1000
        a bin is not considered if the max intensity < min_peak_height.

    Returns
    -------
    list of Traces in ascending m/z order, trace_id as the index in the list.
    '''
    mzTree = {}
    for ii, spec in enumerate(sample.ms1_spectra):
        good_positions = spec.intensity > min_intensity
        for mz, inten in zip(spec.mz[good_positions], spec.intensity[good_positions]):
            mzTree.setdefault(int(mz*1000), []).append((float(mz), ii, float(inten)))

    if not mzTree:
        return []
    rt_length = len(sample.ms1_rtimes)
    good_bins = get_thousandth_bins(mzTree, mz_tolerance_ppm, min_timepoints, min_peak_height)
    bins = []
    for bin in good_bins:
        bins += bin_to_track_bins(bin, mz_tolerance_ppm)

    # merge bins if consensus m/z values are within tolerance
    bins = [(consensus_mz(b), b) for b in bins]
    bins.sort(key=lambda x: x[0])
    merged = []
    for mz, b in bins:
        if merged and mz - merged[-1][0] < ppm_tolerance(mz, mz_tolerance_ppm):
            combined = merged[-1][1] + b
            merged[-1] = (consensus_mz(combined), combined)
        else:
            merged.append((mz, b))

    tracks = []
    for mz, b in merged:
        tracks.append(bin_to_trace(b, sample, len(tracks), rt_length))
    return tracks


def consensus_mz(bin):
    '''
    Consensus m/z is taken as the mean of median m/z and the m/z of highest intensity, to be more robust.
    '''
    mzs = [x[0] for x in bin]
    ints = [x[2] for x in bin]
    return 0.5 * (np.median(mzs) + mzs[int(np.argmax(ints))])


def bin_to_trace(bin, sample, trace_id, rt_length):
    '''
    Build a mass track from a bin of data points already in limited m/z range.
    When multiple data points exist in the same scan (same RT), max intensity is used.

    Parameters
    ----------
    bin : list[tuple]
        data points, in format of [(mz, scan_num, intensity), ...].
    sample : samples.Sample
    trace_id : int
    rt_length : int
        full number of MS1 scans.

    Returns
    -------
    a Trace over the full MS1 retention time range.
    '''
    intensity = np.zeros(rt_length)
    scan_mz = np.full(rt_length, np.nan)
    for mz, scan, inten in bin:
        if inten > intensity[scan]:
            intensity[scan] = inten
            scan_mz[scan] = mz
    mzs = [x[0] for x in bin]
    return Trace(sample_id=sample.sample_id,
                 trace_id=trace_id,
                 mz=consensus_mz(bin),
                 mz_min=min(mzs),
                 mz_max=max(mzs),
                 rtime=sample.ms1_rtimes.copy(),
                 intensity=intensity,
                 scan_mz=scan_mz)


def bin_to_track_bins(bin_data_tuples, mz_tolerance_ppm=5):
    '''
    Separate data that may exceed proper m/z range (i.e. over mz_tolerance_ppm) into bins for mass tracks.

    Parameters
    ----------
    bin_data_tuples : list[tuple]
        a flexible bin by units of 0.001 amu, in format of
        [(mz, scan_num, intensity), ...]. This may or may not be within mz_tolerance_ppm.
    mz_tolerance_ppm: float, optional, default: 5

    Returns
    -------
    a list of bins, each within about 2x mz_tolerance_ppm.
    '''
    bin_data_tuples.sort()   # by m/z, ascending
    mz_range = bin_data_tuples[-1][0] - bin_data_tuples[0][0]
    mz_tolerance = ppm_tolerance(bin_data_tuples[0][0], mz_tolerance_ppm)
    # double tol_ range here as mean_mz falls in single tol_
    if mz_range < mz_tolerance * 2:
        return [bin_data_tuples]
    else:
        return nn_cluster_by_mz_seeds(bin_data_tuples, mz_tolerance, presorted=True)


def get_thousandth_bins(mzTree, mz_tolerance_ppm=5, min_timepoints=5, min_peak_height=1000):
    '''
    Bin an mzTree into a list of data bins, to feed to `bin_to_track_bins`.
    These data bins can form a single mass track, or span larger m/z region
    if the m/z values cannot be resolved into discrete tracks here.

    Parameters
    ----------
    mzTree: dict[list[tuples]]
        indexed data points, {thousandth_mz: [(mz, ii, intensity)...], ...}.
        (all data points indexed by m/z to thousandth precision, i.e. 0.001 amu).
    mz_tolerance_ppm:  float, optional, default: 5
        m/z tolerance in part-per-million. Used to seggregate m/z regsions here.
    min_timepoints: int, optional, default: 5
        minimal consecutive scans to be considered real signal.
    min_peak_height: float, optional, default: 1000
        a bin is not considered if the max intensity < min_peak_height.

    Returns
    -------
    a list of flexible bins, [ [(mz, scan_num, intensity), ...], ... ]
    '''
    def __rough_check_consecutive_scans__(datatuples, gap_allowed=2, min_timepoints=min_timepoints):
        # check if the mass trace has at least min_timepoints scans without large gaps
        rts = sorted(set([x[1] for x in datatuples]))
        if len(rts) < min_timepoints:
            return False
        if len(rts) >= 4 * min_timepoints:                  # give longer traces a pass
            return True
        min_check_val = gap_allowed + min_timepoints - 1
        steps = [rts[ii]-rts[ii-min_timepoints+1] for ii in range(min_timepoints-1, len(rts))]
        return min(steps) <= min_check_val

    def __check_min_peak_height__(datatuples, min_peak_height):
        return max([x[2] for x in datatuples]) >= min_peak_height

    tol_ = 0.000001 * mz_tolerance_ppm
    ks = sorted(mzTree.keys())
    bins_of_bins = []
    tmp = [ks[0]]
    for ii in range(1, len(ks)):
        _delta = ks[ii] - ks[ii-1]
        # merge adjacent bins if they are next to each other or within ppm tolerance
        if _delta==1 or _delta < tol_ * ks[ii]:
            tmp.append(ks[ii])
        else:
            bins_of_bins.append(tmp)
            tmp = [ks[ii]]

    bins_of_bins.append(tmp)
    good_bins = []
    for bin in bins_of_bins:
        datatuples = []
        for b in bin:
            datatuples += mzTree[b]
        if __check_min_peak_height__(datatuples, min_peak_height) and __rough_check_consecutive_scans__(datatuples):
            good_bins.append(datatuples)

    return good_bins


# -----------------------------------------------------------------------------
# smoothing functions
# -----------------------------------------------------------------------------

def smooth_moving_average(list_intensity, size=9):
    '''
    Smooth data of a noisy mass track using simple moving average.

    Parameters
    ----------
    list_intensity : list[float]
        list of intensity values from a mass track.
    size : int, optional, default: 9
        window size for moving average.

    Returns
    -------
    New list of smoothed intensity values.
    '''
    return uniform_filter1d(np.asarray(list_intensity, dtype=float), max(1, int(size)), mode='nearest')
