'''
Inclusion list: expected (mz, rtime, identity) entries, used only for validation and reporting.
Each entry is reported as matched to the closest feature within tolerances, or as unmatched.
'''
import pandas as pd

from .errors import MissingMetadataError
from .mass_functions import build_mz_interval_tree, find_mz_matches

INCLUSION_COLUMNS = ['mz', 'rtime', 'identity']


def read_inclusion_list(infile):
    '''
    Read an inclusion list from a tab delimited (or .csv) file
    with columns mz, rtime and identity. rtime is in seconds.

    Returns
    -------
    pandas DataFrame with columns mz, rtime, identity.
    '''
    sep = ',' if infile.endswith('.csv') else '\t'
    table = pd.read_csv(infile, sep=sep)
    missing = [c for c in INCLUSION_COLUMNS if c not in table.columns]
    if missing:
        raise MissingMetadataError(None, "Inclusion list %s lacks columns %s" %(infile, missing))
    return table[INCLUSION_COLUMNS]

def match_inclusion_list(entries, features, ppm=5, rt_tolerance=10):
    '''
    Match inclusion list entries to features.

    Parameters
    ----------
    entries : pandas DataFrame or list of (mz, rtime, identity)
    features : list[Feature]
    ppm : float
        m/z tolerance.
    rt_tolerance : float
        seconds.

    Returns
    -------
    pandas DataFrame, one row per entry, with status 'matched' or 'unmatched',
    and the id, name, mz and rtime of the closest feature (by retention time, then m/z) if matched.
    '''
    if not isinstance(entries, pd.DataFrame):
        entries = pd.DataFrame(list(entries), columns=INCLUSION_COLUMNS)
    mz_tree = build_mz_interval_tree([f.mz for f in features], ppm)
    rows = []
    for _, entry in entries.iterrows():
        # windows are centered on feature m/z
        candidates = [features[ii] for ii in find_mz_matches(entry['mz'], mz_tree)
                      if abs(features[ii].rtime - entry['rtime']) <= rt_tolerance]
        row = {'identity': entry['identity'], 'mz': entry['mz'], 'rtime': entry['rtime'],
               'status': 'unmatched', 'feature_id': None, 'feature_name': None,
               'feature_mz': None, 'feature_rtime': None, 'delta_ppm': None, 'delta_rtime': None}
        if candidates:
            best = min(candidates, key=lambda f: (abs(f.rtime - entry['rtime']), abs(f.mz - entry['mz'])))
            row.update({
                'status': 'matched',
                'feature_id': best.feature_id,
                'feature_name': best.name,
                'feature_mz': round(best.mz, 4),
                'feature_rtime': round(best.rtime, 2),
                'delta_ppm': round((best.mz - entry['mz']) / entry['mz'] * 1e6, 2),
                'delta_rtime': round(best.rtime - entry['rtime'], 2),
            })
        rows.append(row)
    return pd.DataFrame(rows, columns=['identity', 'mz', 'rtime', 'status', 'feature_id', 'feature_name',
                                       'feature_mz', 'feature_rtime', 'delta_ppm', 'delta_rtime'])
