'''
Linking MS2 spectra to features and selecting one representative spectrum per feature.

Selection is a cascade, each percentile computed per feature:
(a) top fraction by precursor purity,
(b) of those, top fraction by precursor intensity,
(c) of those, the spectrum with most fragment peaks; first in input order on ties.
The number kept at (a) and (b) is ceil(n * fraction), at least 1,
plus any candidates tied with the cutoff value.
'''
from collections import namedtuple

import numpy as np

from .mass_functions import build_mz_interval_tree, find_mz_matches
from .records import RepresentativeSpectrum, number_of_fragments

# one MS2 spectrum with its precursor annotation, as selection input
Candidate = namedtuple('Candidate', ['sample_id', 'spectrum', 'annotation'])


def candidate_precursor_mz(candidate):
    '''
    Estimated precursor m/z, or the reported one when no estimate was found.
    '''
    if candidate.annotation.precursor_mz is not None:
        return candidate.annotation.precursor_mz
    return candidate.annotation.reported_mz

def link_spectra_to_features(features, candidates, ppm=10, expand_rt=0):
    '''
    Link MS2 spectra to features by precursor m/z within ppm of the feature m/z
    and retention time within the feature retention time range.
    A spectrum matching several features goes to the closest in m/z, then in retention time.

    Parameters
    ----------
    features : list[Feature]
    candidates : list[Candidate]
        in stable input order (sample order, then scan order).
    ppm : float
    expand_rt : float
        seconds added to both sides of feature retention time range.

    Returns
    -------
    dict of feature_id to list of Candidates, input order kept.
    '''
    mz_tree = build_mz_interval_tree([f.mz for f in features], ppm)
    linked = {}
    for c in candidates:
        mz = candidate_precursor_mz(c)
        if mz is None:
            continue
        rt = c.spectrum.rtime
        matched = [features[ii] for ii in find_mz_matches(mz, mz_tree)
                   if features[ii].rt_min - expand_rt <= rt <= features[ii].rt_max + expand_rt]
        if matched:
            best = min(matched, key=lambda f: (abs(f.mz - mz), abs(f.rtime - rt), f.feature_id))
            linked.setdefault(best.feature_id, []).append(c)
    return linked

def top_fraction(candidates, score, fraction=0.1):
    '''
    Keep candidates with score no lower than the k-th highest score,
    k = max(1, ceil(n * fraction)). Ties at the cutoff are all kept.
    Input order is kept.
    '''
    n = len(candidates)
    if n == 0:
        return []
    k = max(1, int(np.ceil(round(n * fraction, 9))))
    scores = [score(c) for c in candidates]
    cutoff = sorted(scores, reverse=True)[k-1]
    return [c for c, s in zip(candidates, scores) if s >= cutoff]

def select_representative(feature_id, candidates, fraction=0.1):
    '''
    Select one representative MS2 spectrum for a feature.

    Returns
    -------
    RepresentativeSpectrum, or None if there is no candidate.
    '''
    if not candidates:
        return None
    stage_a = top_fraction(candidates, lambda c: c.annotation.purity, fraction)
    stage_b = top_fraction(stage_a, lambda c: c.annotation.intensity, fraction)
    # max returns the first of equal values, i.e. stable input order
    best = max(stage_b, key=lambda c: number_of_fragments(c.spectrum))
    return RepresentativeSpectrum(
        feature_id=feature_id,
        sample_id=best.sample_id,
        scan_index=best.spectrum.scan_index,
        rtime=best.spectrum.rtime,
        mz=np.asarray(best.spectrum.mz),
        intensity=np.asarray(best.spectrum.intensity),
        precursor_mz=best.annotation.precursor_mz,
        purity=best.annotation.purity,
        precursor_intensity=best.annotation.intensity,
        n_candidates=len(candidates),
    )

def select_spectra(features, candidates, ppm=10, expand_rt=0, fraction=0.1):
    '''
    Link candidates to features and select representatives.

    Returns
    -------
    representatives : dict of feature_id to RepresentativeSpectrum
    without_spectra : list of feature_ids with no linked MS2 spectrum,
        excluded from the library.
    '''
    linked = link_spectra_to_features(features, candidates, ppm, expand_rt)
    representatives, without_spectra = {}, []
    for f in features:
        rep = select_representative(f.feature_id, linked.get(f.feature_id, []), fraction)
        if rep is None:
            without_spectra.append(f.feature_id)
        else:
            representatives[f.feature_id] = rep
    return representatives, without_spectra
