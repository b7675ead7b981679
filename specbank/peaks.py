'''
Chromatographic peak detection and refinement on Traces.

Detection uses a continuous wavelet transform (Mexican hat, i.e. Ricker wavelet)
as a matched filter at multiple scales, derived from the expected range of peak widths.
Peak boundaries are taken from the wavelet scale (integrate = 1)
or by descent from the apex to the baseline (integrate = 2).

Refinement merges peaks of the same sample that are split by detection artifacts.
'''
import numpy as np
from scipy.signal import find_peaks
from scipy.optimize import curve_fit
from scipy.integrate import trapezoid

from .chromatograms import extract_mass_tracks, build_trace, smooth_moving_average
from .mass_functions import ppm_tolerance
from .records import ChromatographicPeak

# base width of a Gaussian peak (4 sigma) per full width at half maximum
FWHM_TO_BASE = 4 / (2 * np.sqrt(2 * np.log(2)))

# -----------------------------------------------------------------------------
# per sample jobs, used via utils.bulk_process
# -----------------------------------------------------------------------------

def detection_parameters(parameters):
    '''
    Select keyword arguments of `detect_peaks` from the main parameters.
    '''
    return {
        'peak_width': tuple(parameters['peak_width']),
        'integrate': parameters['integrate'],
        'signal_noise_ratio': parameters['signal_noise_ratio'],
        'min_peak_height': parameters['min_peak_height'],
        'noise_floor': parameters['min_intensity_threshold'],
        'peak_area': parameters['peak_area'],
        'gaussian_fit': parameters.get('gaussian_fit', True),
    }

def detect_sample_peaks(job):
    '''
    Peak detection on all mass tracks of a single sample.

    Parameters
    ----------
    job : tuple
        (sample, parameters).

    Returns
    -------
    (sample_id, list of ChromatographicPeak), peak_id as sample_id + running number.
    '''
    sample, parameters = job
    tracks = extract_mass_tracks(sample,
                                 mz_tolerance_ppm=parameters['mz_tolerance_ppm'],
                                 min_intensity=parameters['min_intensity_threshold'],
                                 min_timepoints=parameters['min_timepoints'],
                                 min_peak_height=parameters['min_peak_height'])
    kwargs = detection_parameters(parameters)
    peaks = []
    for trace in tracks:
        peaks += detect_peaks(trace, **kwargs)
    peaks = [p._replace(peak_id="%s_%d" %(sample.sample_id, ii)) for ii, p in enumerate(peaks)]
    return sample.sample_id, peaks

def refine_sample_peaks(job):
    '''
    Peak refinement of a single sample.

    Parameters
    ----------
    job : tuple
        (sample, list of peaks from this sample, parameters).

    Returns
    -------
    (sample_id, list of refined ChromatographicPeak)
    '''
    sample, peaks, parameters = job
    return sample.sample_id, refine_peaks(peaks, sample,
                                          expand_rt=parameters['expand_rt'],
                                          expand_mz=parameters['expand_mz'],
                                          ppm=parameters['merge_ppm'],
                                          min_prop=parameters['merge_min_prop'],
                                          peak_area=parameters['peak_area'])


# -----------------------------------------------------------------------------
# wavelet functions
# -----------------------------------------------------------------------------

def ricker_wavelet(points, a):
    '''
    Ricker wavelet, also known as the "Mexican hat wavelet",
    sampled at `points` positions centered in the array.

    Parameters
    ----------
    points : int
        number of points in returned vector.
    a : float
        width parameter of the wavelet; zero crossings are at +/- a.
    '''
    A = 2 / (np.sqrt(3 * a) * (np.pi**0.25))
    wsq = a**2
    vec = np.arange(0, points) - (points - 1.0) / 2
    xsq = vec**2
    mod = (1 - xsq / wsq)
    gauss = np.exp(-xsq / (2 * wsq))
    return A * mod * gauss

def cwt_ricker(data, widths):
    '''
    Continuous wavelet transform of data with Ricker wavelets of the given widths.

    Returns
    -------
    array of shape (len(widths), len(data)).
    '''
    # scipy.signal.find_peaks_cwt reports positions only; boundaries need the best scale per peak.
    # scipy.signal.cwt and ricker were removed in scipy 1.15.
    output = np.empty((len(widths), len(data)))
    for ind, width in enumerate(widths):
        N = int(min(10 * width, len(data)))
        wavelet_data = ricker_wavelet(max(N, 1), width)[::-1]
        output[ind] = np.convolve(data, wavelet_data, mode='same')
    return output

def wavelet_scales(rtime, peak_width, num=8):
    '''
    Wavelet widths in number of scans, covering peak_width in seconds.
    The positive lobe of a Ricker wavelet of width a matches a Gaussian of sigma about a,
    whose base is about 4 sigma wide.
    '''
    dt = np.median(np.diff(rtime)) if len(rtime) > 1 else 1.0
    if not dt > 0:
        dt = 1.0
    a_min = max(1.0, peak_width[0] / (4 * dt))
    a_max = max(a_min, peak_width[1] / (4 * dt))
    return np.unique(np.round(np.linspace(a_min, a_max, num), 1))


# -----------------------------------------------------------------------------
# detection
# -----------------------------------------------------------------------------

def estimate_baseline_noise(list_intensity, noise_floor=0):
    '''
    Estimate baseline and noise levels of a trace.
    The bottom signals are taken as intensity values below the lower quartile plus noise_floor.
    Baseline and noise are the mean and standard deviation of the bottom signals,
    both no lower than noise_floor.

    Returns
    -------
    baseline, noise_level
    '''
    LOW = noise_floor
    bottom = list_intensity[list_intensity <= LOW + np.quantile(list_intensity, 0.25)]
    _baseline_, noise_level = LOW, LOW
    if bottom.size:
        _baseline_, noise_level = bottom.mean(), bottom.std()
    return max(_baseline_, LOW), max(noise_level, LOW)

def descend_to_baseline(values, apex, baseline):
    '''
    Walk from apex to both sides until values reach baseline or a local minimum.

    Returns
    -------
    left, right, clipped. clipped is True if either side hits the end of data
    before returning to baseline.
    '''
    n = len(values)
    left = max(apex - 1, 0)
    while left > 0 and values[left] > baseline and values[left-1] <= values[left]:
        left -= 1
    right = min(apex + 1, n - 1)
    while right < n - 1 and values[right] > baseline and values[right+1] <= values[right]:
        right += 1
    clipped = (left == 0 and values[0] > baseline) or (right == n - 1 and values[n-1] > baseline)
    return left, right, clipped

def half_height_width(rtime, intensity, apex, left, right, baseline=0):
    '''
    Full width at half maximum (FWHM) of a peak within [left, right],
    half maximum taken between baseline and apex height.
    Crossings are linearly interpolated; a side that does not drop below half maximum
    within the boundaries ends at the boundary.
    '''
    half = baseline + (intensity[apex] - baseline) / 2

    def _crossing(inner, outer):
        y0, y1 = intensity[inner], intensity[outer]
        if y0 == y1:
            return rtime[outer]
        return rtime[inner] + (y0 - half) / (y0 - y1) * (rtime[outer] - rtime[inner])

    ii = apex
    while ii > left and intensity[ii-1] > half:
        ii -= 1
    rt_left = _crossing(ii, ii-1) if ii > left else rtime[left]
    jj = apex
    while jj < right and intensity[jj+1] > half:
        jj += 1
    rt_right = _crossing(jj, jj+1) if jj < right else rtime[right]
    return float(rt_right - rt_left)

def detect_peaks(trace,
                 peak_width=(5, 60),
                 integrate=2,
                 signal_noise_ratio=3,
                 min_peak_height=0,
                 noise_floor=0,
                 peak_area='auc',
                 gaussian_fit=True):
    '''
    Detect chromatographic peaks in a Trace.

    Parameters
    ----------
    trace : Trace
        retention time and intensity arrays, optionally per-scan m/z (scan_mz).
    peak_width : tuple, optional, default: (5, 60)
        min and max peak width in seconds. Wavelet scales are derived from these.
        Peak width is estimated as the base width (4 sigma) of a Gaussian of the same FWHM,
        and peaks with width outside are discarded. Integration boundaries are limited
        to the max width around the apex, since descent to baseline widens with peak height.
    integrate : int, optional, default: 2
        1: boundaries at +/- 2 wavelet widths from the filter maximum;
        2: descent from apex to baseline or local minimum on lightly smoothed data.
    signal_noise_ratio : float, optional, default: 3
        min (height - baseline) / noise.
    min_peak_height : float, optional, default: 0
    noise_floor : float, optional, default: 0
        lower bound of baseline and noise levels.
    peak_area : str, optional, default: 'auc'
        'auc' for trapezoidal area over retention time, 'sum' for simple sum.
    gaussian_fit : bool, optional, default: True
        compute R^2 of a Gaussian fit.

    Returns
    -------
    list of ChromatographicPeak, ordered by apex; peak_id is None.
    Flat or empty traces yield no peaks.

    Note
    ----
    Peaks that do not return to baseline before the end of data are clipped
    to the trace extent and flagged low_confidence.
    An apex on the first or last scan cannot satisfy rt_min < rt_apex < rt_max, and is not reported.
    '''
    rtime = np.asarray(trace.rtime, dtype=float)
    intensity = np.asarray(trace.intensity, dtype=float)
    n = intensity.size
    if n < 3 or not np.any(intensity > 0):
        return []

    baseline, noise = estimate_baseline_noise(intensity, noise_floor)
    signal = intensity - baseline
    if signal.max() <= 0:
        return []

    scales = wavelet_scales(rtime, peak_width)
    coefs = cwt_ricker(signal, scales)
    best_scale, response = coefs.argmax(axis=0), coefs.max(axis=0)
    # pad so that maxima on the first or last scan are also found
    _pad = [response.min() - 1]
    candidates, _ = find_peaks(np.concatenate((_pad, response, _pad)))
    candidates = candidates - 1

    smoothed = smooth_moving_average(intensity, size=3)
    peaks, seen = [], set()
    for c in candidates:
        if response[c] <= 0:
            continue
        a = scales[best_scale[c]]
        half = int(np.ceil(a))
        lo, hi = max(0, c - half), min(n, c + half + 1)
        apex = lo + int(np.argmax(intensity[lo:hi]))
        if apex in seen:
            continue
        if integrate == 1:
            reach = int(np.ceil(2 * a))
            left, right = c - reach, c + reach
            clipped = left < 0 or right > n - 1
            left, right = max(0, left), min(n - 1, right)
        else:
            left, right, clipped = descend_to_baseline(smoothed, apex, baseline)

        height = intensity[apex]
        width = half_height_width(rtime, intensity, apex, left, right, baseline) * FWHM_TO_BASE
        if width < peak_width[0] or width > peak_width[1]:
            continue
        # integration window is limited to the max peak width, centered on apex
        left = max(left, int(np.searchsorted(rtime, rtime[apex] - peak_width[1] / 2)))
        right = min(right, int(np.searchsorted(rtime, rtime[apex] + peak_width[1] / 2, side='right')) - 1)
        if not rtime[left] < rtime[apex] < rtime[right]:
            continue
        snr = (height - baseline) / noise if noise > 0 else np.inf
        if height < min_peak_height or snr < signal_noise_ratio:
            continue

        seen.add(apex)
        mz_min, mz_apex, mz_max = _peak_mz_values(trace, left, apex, right)
        goodness = 0
        if gaussian_fit:
            goodness = evaluate_gaussian_peak(rtime[left: right+1], intensity[left: right+1],
                                              height, rtime[apex])
        peaks.append(ChromatographicPeak(
            peak_id=None,
            sample_id=trace.sample_id,
            trace_id=trace.trace_id,
            rt_min=float(rtime[left]),
            rt_apex=float(rtime[apex]),
            rt_max=float(rtime[right]),
            mz_min=mz_min,
            mz_apex=mz_apex,
            mz_max=mz_max,
            area=get_peak_area(rtime[left: right+1], intensity[left: right+1], peak_area),
            height=float(height),
            snr=float(snr),
            gaussian_fit=float(goodness),
            low_confidence=bool(clipped),
        ))

    peaks.sort(key=lambda p: p.rt_apex)
    return peaks

def _peak_mz_values(trace, left, apex, right):
    '''
    m/z range and apex m/z of a peak, from per-scan m/z of the trace if available.
    '''
    if trace.scan_mz is None:
        return float(trace.mz_min), float(trace.mz), float(trace.mz_max)
    seg = np.asarray(trace.scan_mz[left: right+1], dtype=float)
    valid = seg[np.isfinite(seg)]
    if not valid.size:
        return float(trace.mz_min), float(trace.mz), float(trace.mz_max)
    mz_apex = trace.scan_mz[apex]
    if not np.isfinite(mz_apex):
        mz_apex = np.median(valid)
    return float(min(valid.min(), mz_apex)), float(mz_apex), float(max(valid.max(), mz_apex))

def get_peak_area(rtime, intensity, method='auc'):
    '''
    Peak area by trapezoidal integration over retention time ('auc') or simple sum ('sum').
    '''
    intensity = np.asarray(intensity, dtype=float)
    if method == 'sum':
        return float(intensity.sum())
    if intensity.size < 2:
        return 0.0
    return float(trapezoid(intensity, np.asarray(rtime, dtype=float)))


# -----------------------------------------------------------------------------
# Generic functions for evaluation
# -----------------------------------------------------------------------------

def gaussian_function__(x, a, mu, sigma):
    """
    Gaussian function.

    Parameters
    ----------
    x : float
        input variable.
    a : float
        constant for magnitude or height
    mu : float
        constant for center position
    sigma : float
        constant for standard deviation

    Returns
    -------
    A computed float value
    """
    return a*np.exp(-(x-mu)**2/(2*sigma**2))

def goodness_fitting__(y_orignal, y_fitted):
    """
    Returns R^2 as goodness of fitting.
    """
    ss_tot = np.sum((y_orignal-np.mean(y_orignal))**2)
    if ss_tot == 0:
        return 0
    return 1 - (np.sum((y_fitted-y_orignal)**2) / ss_tot)

def evaluate_gaussian_peak(rtime, intensity, height, apex_rt):
    '''
    Use Gaussian models to fit peaks, R^2 as goodness of fitting.

    Parameters
    ----------
    rtime : np.array
        retention time of data points within peak boundaries.
    intensity : np.array
        intensity values of the same data points.
    height : float
        estimated height of a peak
    apex_rt : float
        estimated apex of a peak

    Returns
    -------
    goodness_fitting, 0 if fitting fails.
    '''
    sigma = max((rtime[-1] - rtime[0]) / 4, 1e-3)
    try:
        popt, pcov = curve_fit(gaussian_function__, rtime, intensity, p0=[height, apex_rt, sigma])
        a, mu, sigma = popt
        goodness_fitting = goodness_fitting__(intensity, gaussian_function__(rtime, a, mu, sigma))
    # failure to fit
    except (RuntimeError, ValueError, TypeError):
        goodness_fitting = 0

    return max(0, goodness_fitting)


# -----------------------------------------------------------------------------
# refinement
# -----------------------------------------------------------------------------

def _peak_order(peak):
    return (peak.mz_min, peak.rt_min, str(peak.peak_id))

def _boxes_overlap(p1, p2, expand_rt, expand_mz, ppm):
    if p1.rt_min - expand_rt > p2.rt_max + expand_rt or p2.rt_min - expand_rt > p1.rt_max + expand_rt:
        return False
    tol1 = expand_mz + ppm_tolerance(p1.mz_max, ppm)
    tol2 = expand_mz + ppm_tolerance(p2.mz_max, ppm)
    return not (p1.mz_min - tol1 > p2.mz_max + tol2 or p2.mz_min - tol2 > p1.mz_max + tol1)

def valley_intensity(p1, p2, sample):
    '''
    Lowest intensity between the apexes of two peaks, using max intensity per scan
    in the union m/z range of both peaks.
    '''
    rt_a, rt_b = sorted([p1.rt_apex, p2.rt_apex])
    trace = build_trace(sample, (min(p1.mz_min, p2.mz_min), max(p1.mz_max, p2.mz_max)),
                        (rt_a, rt_b), aggregate='max')
    if trace.intensity.size == 0:
        return min(p1.height, p2.height)
    return float(trace.intensity.min())

def is_split_peak(p1, p2, sample, expand_rt=2.0, expand_mz=0.0, ppm=10, min_prop=0.75):
    '''
    Merge predicate of two peaks from the same sample:
    expanded boundaries overlap in both retention time and m/z,
    and the intensity valley between the apexes is no lower than
    min_prop of the smaller apex height.
    '''
    if not _boxes_overlap(p1, p2, expand_rt, expand_mz, ppm):
        return False
    return valley_intensity(p1, p2, sample) >= min_prop * min(p1.height, p2.height)

def merge_two_peaks(p1, p2, sample, peak_area='auc'):
    '''
    Merge two peaks into a new one. Boundaries are the union of both;
    apex from the peak with the larger area; area is integrated again over the union window,
    not the sum of the two areas, to avoid double counting.
    '''
    big, small = (p1, p2) if p1.area >= p2.area else (p2, p1)
    rt_min, rt_max = min(p1.rt_min, p2.rt_min), max(p1.rt_max, p2.rt_max)
    mz_min, mz_max = min(p1.mz_min, p2.mz_min), max(p1.mz_max, p2.mz_max)
    trace = build_trace(sample, (mz_min, mz_max), (rt_min, rt_max), aggregate='max')
    return big._replace(
        rt_min=rt_min, rt_max=rt_max,
        mz_min=mz_min, mz_max=mz_max,
        area=get_peak_area(trace.rtime, trace.intensity, peak_area),
        snr=max(p1.snr, p2.snr),
        low_confidence=bool(p1.low_confidence or p2.low_confidence),
    )

def refine_peaks(peaks, sample, expand_rt=2.0, expand_mz=0.0, ppm=10, min_prop=0.75, peak_area='auc'):
    '''
    Merge peaks of one sample that are judged to be one chromatographic event split by detection.
    Merging repeats until no two peaks satisfy the merge predicate,
    thus refining an already refined peak set changes nothing.

    Parameters
    ----------
    peaks : list[ChromatographicPeak]
        peaks from one sample.
    sample : samples.Sample
        the sample, for valley check and area integration.
    expand_rt : float
        seconds added to both sides of peak boundaries.
    expand_mz : float
        m/z added to both sides of peak boundaries.
    ppm : float
        relative m/z added to both sides of peak boundaries.
    min_prop : float
        valley height required as a fraction of the smaller apex.
    peak_area : str
        'auc' or 'sum'.

    Returns
    -------
    list of peaks, sorted by (mz_min, rt_min, peak_id).
    '''
    peaks = sorted(peaks, key=_peak_order)
    if len(peaks) < 2:
        return peaks
    tol_max = expand_mz + ppm_tolerance(max(p.mz_max for p in peaks), ppm)
    merged = True
    while merged:
        merged = False
        for ii in range(len(peaks)):
            for jj in range(ii+1, len(peaks)):
                if peaks[jj].mz_min - peaks[ii].mz_max > 2 * tol_max:
                    break
                if is_split_peak(peaks[ii], peaks[jj], sample, expand_rt, expand_mz, ppm, min_prop):
                    new = merge_two_peaks(peaks[ii], peaks[jj], sample, peak_area)
                    peaks = [p for k, p in enumerate(peaks) if k not in (ii, jj)] + [new]
                    peaks.sort(key=_peak_order)
                    merged = True
                    break
            if merged:
                break
    return peaks
