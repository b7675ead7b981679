'''
Precursor resolution for MS2 spectra, using the nearest preceding MS1 scan of the same sample.

For each MS2 spectrum:
- the precursor m/z is re-estimated as the m/z of the most intense MS1 peak
  within `tolerance` + `ppm` of the reported precursor m/z; None if no peak is found.
  The reported value is not used as a substitute, so that the two stay distinguishable.
- precursor purity is the intensity of the most intense MS1 peak in the isolation window
  divided by the sum of intensities of all MS1 peaks in the window.
- precursor intensity is the max intensity in the same window.

The isolation window is the reported one when available and requested,
otherwise the same tolerance window as above.
'''
import numpy as np

from .mass_functions import mz_window
from .records import PrecursorAnnotation
from .samples import validate_scan_order


def _window_slice(spectrum, low, high):
    a = np.searchsorted(spectrum.mz, low, side='left')
    b = np.searchsorted(spectrum.mz, high, side='right')
    return spectrum.mz[a:b], spectrum.intensity[a:b]

def precursor_purity(ms1_spectrum, low, high):
    '''
    Purity and intensity of the precursor in an m/z window of an MS1 spectrum.

    Returns
    -------
    (purity, intensity), (0.0, 0.0) if no signal in the window.
    '''
    _, ints = _window_slice(ms1_spectrum, low, high)
    total = float(ints.sum()) if ints.size else 0.0
    if total <= 0:
        return 0.0, 0.0
    top = float(ints.max())
    return top / total, top

def estimate_precursor_mz(ms1_spectrum, reported_mz, tolerance=0.005, ppm=10):
    '''
    m/z of the most intense MS1 peak within tolerance + ppm of reported_mz, None if none.
    '''
    low, high = mz_window(reported_mz, tolerance, ppm)
    mzs, ints = _window_slice(ms1_spectrum, low, high)
    if not ints.size or ints.max() <= 0:
        return None
    return float(mzs[int(np.argmax(ints))])

def resolve_precursors(sample, tolerance=0.005, ppm=10, use_isolation_window=False):
    '''
    Annotate all MS2 spectra of a sample with estimated precursor m/z, purity and intensity.

    Parameters
    ----------
    sample : samples.Sample
    tolerance : float, optional, default: 0.005
        absolute m/z tolerance.
    ppm : float, optional, default: 10
        relative m/z tolerance.
    use_isolation_window : bool, optional, default: False
        use reported isolation window (if present) for purity and intensity.

    Returns
    -------
    list of PrecursorAnnotation, in scan order.

    Raises
    ------
    UnsortedAcquisitionError if scans are not in retention time order,
    because the nearest preceding MS1 lookup depends on it.
    '''
    validate_scan_order(sample.spectra, sample.sample_id)
    annotations = []
    last_ms1 = None
    for spec in sample.spectra:
        if spec.ms_level == 1:
            last_ms1 = spec
            continue
        if spec.ms_level != 2:
            continue
        reported = spec.precursor_mz if spec.raw_precursor_mz is None else spec.raw_precursor_mz
        if reported is None or last_ms1 is None:
            annotations.append(PrecursorAnnotation(
                sample.sample_id, spec.scan_index,
                None if last_ms1 is None else last_ms1.scan_index,
                reported, None, 0.0, 0.0))
            continue
        estimated = estimate_precursor_mz(last_ms1, reported, tolerance, ppm)
        if use_isolation_window and spec.isolation_low is not None and spec.isolation_high is not None:
            low, high = spec.isolation_low, spec.isolation_high
        else:
            low, high = mz_window(reported, tolerance, ppm)
        purity, intensity = precursor_purity(last_ms1, low, high)
        annotations.append(PrecursorAnnotation(
            sample.sample_id, spec.scan_index, last_ms1.scan_index,
            float(reported), estimated, purity, intensity))
    return annotations

def apply_precursor_annotations(sample, annotations):
    '''
    New Sample with MS2 precursor m/z replaced by the estimated value.
    Reported values move to Spectrum.raw_precursor_mz; a missing estimate stays None.
    '''
    by_scan = {a.scan_index: a for a in annotations}
    spectra = []
    for spec in sample.spectra:
        a = by_scan.get(spec.scan_index)
        if spec.ms_level == 2 and a is not None:
            spec = spec._replace(precursor_mz=a.precursor_mz, raw_precursor_mz=a.reported_mz)
        spectra.append(spec)
    return sample.with_spectra(spectra)

def resolve_sample_precursors(job):
    '''
    Job for utils.bulk_process. job = (sample, parameters).
    Returns (sample_id, list of PrecursorAnnotation).
    '''
    sample, parameters = job
    return sample.sample_id, resolve_precursors(sample,
                                                tolerance=parameters['precursor_tolerance'],
                                                ppm=parameters['precursor_ppm'],
                                                use_isolation_window=parameters['use_isolation_window'])
