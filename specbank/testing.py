'''
Deterministic synthetic LC-MS/MS data, for tests and examples.

Compounds are given as (mz, rtime, height, sigma), eluting as Gaussian profiles
on irregular scan times. MS2 scans are interleaved after the MS1 scan nearest
to the requested retention time, with the precursor reported slightly off the true m/z.
'''
import numpy as np

from .records import Spectrum
from .samples import Sample

# (mz, rtime, height, sigma)
DEFAULT_COMPOUNDS = [
    (133.0137, 40.0, 2.0e6, 3.0),
    (146.0459, 70.0, 1.5e6, 3.0),
    (175.1190, 100.0, 3.0e6, 3.5),
    (204.0899, 130.0, 1.0e6, 3.0),
    (251.0773, 160.0, 2.5e6, 3.0),
    (301.1410, 190.0, 8.0e5, 3.0),
    (365.1054, 220.0, 1.2e6, 4.0),
    (428.0372, 250.0, 9.0e5, 3.0),
]


def gaussian_profile(rtimes, apex, height, sigma):
    rtimes = np.asarray(rtimes, dtype=float)
    return height * np.exp(-(rtimes - apex)**2 / (2 * sigma**2))

def scan_times(rt_range=(0, 300), scan_interval=1.0, jitter=0.2, seed=0):
    '''
    Irregular but strictly increasing scan times; each scan is moved
    by at most jitter * scan_interval from a regular grid.
    '''
    rng = np.random.default_rng(seed)
    n = int((rt_range[1] - rt_range[0]) / scan_interval) + 1
    grid = rt_range[0] + np.arange(n) * scan_interval
    return grid + rng.uniform(-jitter, jitter, n) * scan_interval

def fragment_pattern(mz, number=6):
    '''
    Fixed fragment list of a precursor: (mz, relative intensity), m/z ascending.
    '''
    mzs = [round(mz * (ii + 1) / (number + 1), 4) for ii in range(number)]
    intensities = [1000.0 * (number - ii) for ii in range(number)]
    return list(zip(mzs, intensities))

def make_ms1_spectrum(scan_index, rtime, compounds, rt_shift=0.0, min_intensity=100):
    '''
    Centroided MS1 spectrum of compounds at rtime. Data points below min_intensity are left out.
    '''
    points = {}
    for mz, rt, height, sigma in compounds:
        value = float(gaussian_profile(rtime, rt + rt_shift, height, sigma))
        if value >= min_intensity:
            points[mz] = points.get(mz, 0.0) + value
    mzs = sorted(points)
    return Spectrum(scan_index, 1, float(rtime),
                    np.array(mzs, dtype=float), np.array([points[x] for x in mzs], dtype=float))

def make_ms2_spectrum(scan_index, rtime, precursor_mz, fragments, isolation_width=None):
    '''
    Centroided MS2 spectrum. fragments are (mz, intensity) in ascending m/z.
    '''
    low = high = None
    if isolation_width is not None:
        low, high = precursor_mz - isolation_width / 2, precursor_mz + isolation_width / 2
    return Spectrum(scan_index, 2, float(rtime),
                    np.array([f[0] for f in fragments], dtype=float),
                    np.array([f[1] for f in fragments], dtype=float),
                    precursor_mz=precursor_mz, isolation_low=low, isolation_high=high)

def make_sample(sample_id, compounds=DEFAULT_COMPOUNDS, rt_shift=0.0, rt_range=(0, 300),
                scan_interval=1.0, ms2=None, group=None, name=None, seed=0, precursor_offset=0.001):
    '''
    Build a Sample of interleaved MS1 and MS2 scans.

    Parameters
    ----------
    sample_id : str
    compounds : list of (mz, rtime, height, sigma)
    rt_shift : float
        retention time drift of this sample, added to all compounds and MS2 events.
    ms2 : list of (precursor_mz, rtime, fragments), optional
        fragments as from `fragment_pattern`; rtime before rt_shift.
    precursor_offset : float
        added to the reported precursor m/z, imitating instrument reporting.
    '''
    times = scan_times(rt_range, scan_interval, seed=seed)
    events = {}
    for precursor_mz, rt, fragments in (ms2 or []):
        ii = int(np.argmin(np.abs(times - (rt + rt_shift))))
        events.setdefault(ii, []).append((precursor_mz, fragments))

    spectra = []
    for ii, rt in enumerate(times):
        spectra.append(make_ms1_spectrum(len(spectra), rt, compounds, rt_shift))
        for k, (precursor_mz, fragments) in enumerate(events.get(ii, [])):
            spectra.append(make_ms2_spectrum(len(spectra), rt + 0.05 * (k + 1) * scan_interval,
                                             precursor_mz + precursor_offset, fragments))
    return Sample(sample_id, spectra, name=name, group=group)

def default_ms2_events(compounds=DEFAULT_COMPOUNDS, offsets=(-1.0, 0.0, 2.0)):
    '''
    MS2 events for each compound at apex + offsets (seconds).
    '''
    return [(mz, rt + d, fragment_pattern(mz)) for mz, rt, _, _ in compounds for d in offsets]

def make_experiment_samples(rt_shifts=(0.0, 2.0, -2.0, 4.0), compounds=DEFAULT_COMPOUNDS,
                            with_ms2=True, groups=None, missing=None):
    '''
    Samples of one experiment, with retention time drift per sample.

    Parameters
    ----------
    rt_shifts : tuple
        one shift per sample; the number of samples.
    groups : list, optional
        group of each sample.
    missing : dict, optional
        sample index to list of compound indices left out of that sample.
    '''
    missing = missing or {}
    samples = []
    for ii, shift in enumerate(rt_shifts):
        these = [c for jj, c in enumerate(compounds) if jj not in missing.get(ii, [])]
        ms2 = default_ms2_events(these) if with_ms2 else None
        samples.append(make_sample('sample_%d' %ii, these, rt_shift=shift, ms2=ms2,
                                   group=groups[ii] if groups else None, seed=ii))
    return samples
