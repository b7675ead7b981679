'''
Functions related to mass operations, inlcuding tolerance windows,
bucketing and clustering of m/z values.
'''

import numpy as np
from scipy.signal import find_peaks
from scipy.ndimage import uniform_filter1d
from intervaltree import IntervalTree


def ppm_tolerance(mz, ppm=5):
    '''
    Absolute m/z tolerance of ppm at mz, e.g. 5 ppm of 80 = 0.0004;  5 ppm of 800 = 0.0040.
    '''
    return mz * ppm * 0.000001

def mz_window(mz, tolerance=0, ppm=0):
    '''
    Returns (low, high) m/z window around mz, using absolute tolerance plus relative ppm.
    '''
    _d = tolerance + ppm_tolerance(mz, ppm)
    return mz - _d, mz + _d

def bucket_by_mz_gaps(list_items, ppm=10, bin_size=0.001, key=lambda x: x[0]):
    '''
    Separate items into m/z buckets, splitting the m/z sorted list wherever
    the gap between neighbors exceeds both ppm tolerance and bin_size.

    Parameters
    ----------
    list_items : list
        items with an m/z value retrieved by key.
    ppm : float
        relative gap tolerance.
    bin_size : float
        absolute gap tolerance.
    key : function
        returns m/z of an item.

    Returns
    -------
    A list of buckets, each a list of items in ascending m/z order.
    '''
    if not list_items:
        return []
    list_items = sorted(list_items, key=key)
    buckets = [[list_items[0]]]
    for item in list_items[1:]:
        _mz, _prev = key(item), key(buckets[-1][-1])
        if _mz - _prev <= max(ppm_tolerance(_mz, ppm), bin_size):
            buckets[-1].append(item)
        else:
            buckets.append([item])
    return buckets

def build_mz_interval_tree(list_mz, ppm=5, tolerance=0):
    '''
    Index m/z values by their tolerance windows.
    Data of each interval is the index in list_mz.
    '''
    mz_tree = IntervalTree()
    for ii, mz in enumerate(list_mz):
        low, high = mz_window(mz, tolerance, ppm)
        mz_tree.addi(low, high + 1e-9, ii)
    return mz_tree

def find_mz_matches(query_mz, mz_tree):
    '''
    Returns sorted indices of all m/z windows in mz_tree containing query_mz.
    '''
    return sorted([m.data for m in mz_tree.at(query_mz)])


# -----------------------------------------------------------------------------
# Clustering of data points for mass tracks
# -----------------------------------------------------------------------------

def gap_divide_mz_cluster(bin_data_tuples, mz_tolerance):
    '''
    Divides bin_data_tuples by the largest gap in  m/z values.
    This is a fallback method when `identify_mass_peaks` fails.
    See `nn_cluster_by_mz_seeds`.

    Parameters
    ----------
    bin_data_tuples: list[tuple]
        a flexible bin in format of [(mz, scan_num, intensity), ...], sorted by m/z.
    mz_tolerance:
        the allowed tolerance in m/z values; a bin within it is not divided.

    Returns
    -------
    One or two lists after dividing bin_data_tuples by the largest gap.
    '''
    if len(bin_data_tuples) < 2 or bin_data_tuples[-1][0] - bin_data_tuples[0][0] < mz_tolerance:
        return [bin_data_tuples]
    gaps = [bin_data_tuples[ii][0]-bin_data_tuples[ii-1][0] for ii in range(1, len(bin_data_tuples))]
    largest = int(np.argmax(gaps)) + 1
    return [bin_data_tuples[:largest], bin_data_tuples[largest:]]

def identify_mass_peaks(bin_data_tuples, mz_tolerance, presorted=True):
    '''
    Get the centroid m/z values as peaks in m/z values distribution,
    at least mz_tolerance apart.
    See `nn_cluster_by_mz_seeds`.

    Parameters
    ----------
    bin_data_tuples : list[tuple]
        a flexible bin in format of [(mz, scan_num, intensity), ...].
    mz_tolerance : float
        precomputed based on m/z and ppm,
        e.g. 5 ppm of 80 = 0.0004;  5 ppm of 800 = 0.0040.
    presorted : boolean, optional, default: True
        flag to determine if sorting is needed on bin_data_tuples.

    Returns
    -------
    A list of m/z values, peaks in m/z values distribution, at least mz_tolerance apart.
    '''
    tol4 = max(1, int(mz_tolerance * 10000))
    size = max(2, int(0.5 * tol4))
    mz4 = [int(x[0]*10000) for x in bin_data_tuples]
    if not presorted:
        mz4.sort()
    positioned = range(mz4[0], mz4[-1]+1)
    counts = np.zeros(len(positioned))
    for x in mz4:
        counts[x - mz4[0]] += 1
    values = uniform_filter1d(counts, size=size, mode='nearest')
    peaks, _ = find_peaks( values, distance = tol4 )

    return [0.0001*positioned[ii] for ii in peaks]

def nn_cluster_by_mz_seeds(bin_data_tuples, mz_tolerance, presorted=True):
    '''
    Complete NN clustering, by assigning each data tuple to its closest m/z seed.
    Used for mass track construction in `chromatograms.bin_to_mass_tracks`.

    Parameters
    ----------
    bin_data_tuples : list[tuple]
        a flexible bin in format of [(mz, scan_num, intensity), ...].
    mz_tolerance : float
        precomputed based on m/z and ppm.
    presorted : boolean, optional, default: True
        flag to determine if sorting is needed on bin_data_tuples.

    Returns
    -------
    A list of clusters as separated bins, each bin as [(mz, scan_num, intensity), ...]
    '''
    if not presorted:
        bin_data_tuples = sorted(bin_data_tuples)
    mz_seeds = identify_mass_peaks(bin_data_tuples, mz_tolerance, presorted=True)
    if mz_seeds:
        seeds = np.array(mz_seeds)
        clusters = [[] for _ in mz_seeds]
        # assign cluster number by nearest distance to a seed
        for x in bin_data_tuples:
            clusters[int(np.argmin(np.abs(seeds - x[0])))].append(x)
        clusters = [C for C in clusters if C]
    else:
        clusters = gap_divide_mz_cluster(bin_data_tuples, mz_tolerance)

    return clusters
