# Here are default values of parameters. Please do NOT modify unless necesssary.
#
# One can specify parameters via
# 1) custom parameters.yaml
# 2) commandline arguments
# Priority is: commandline overwriting parameters.yaml overwriting this file.
#
# Retention time values are in seconds.
# Default values should be acceptable for most Orbitrap DDA studies. The parameters that
# most often need attention are peak_width, bandwidth and mz_tolerance_ppm.
#

PARAMETERS = {
    'project_name': 'specbank_project',
    'outdir': 'output',
    'input': None,                      # directory of centroided mzML files
    'manifest': None,                   # tab delimited file with columns sample_id, sample_name, group
    'inclusion_list': None,             # tab delimited file with columns mz, rtime, identity; for reporting only
    'target': None,                     # file of target m/z values, one per line, for `xic`
    'database_mode': 'memory',          # 'memory' or 'ondisk' (pickled samples, chunk_size kept in memory)
    'chunk_size': 10,                   # number of samples materialized in memory at a time
    'multicores': 4,                    # number of cores allowed in parallel processing; 1 runs sequentially
    'keep_intermediates': False,        # if true, keep on-disk sample pickles
    'verbose': True,

    # mass track extraction
    'mz_tolerance_ppm': 5,              # ppm, used in mass track extraction and inclusion list matching
    'min_intensity_threshold': 1000,    # minimal intensity for mass track extraction, also the noise floor
    'min_timepoints': 5,                # minimal number of data points in elution profile
    'min_peak_height': 10000,           # minimal peak height
    'xic_aggregate': 'max',             # 'max' or 'sum' of intensities per scan within an m/z window

    # chromatographic peak detection
    'peak_width': (5, 60),              # (min, max) peak width in seconds, also sets wavelet scales
    'integrate': 2,                     # 1: boundaries from wavelet scale; 2: descent to baseline from apex
    'signal_noise_ratio': 3,            # (height - baseline) at least x fold over noise level
    'peak_area': 'auc',                 # `auc` for area under the curve, `sum` for simple sum
    'gaussian_fit': True,               # report R^2 of a Gaussian fit per peak

    # peak refinement
    'expand_rt': 2.0,                   # seconds added to both sides of a peak when checking overlap
    'expand_mz': 0.0,                   # m/z added to both sides of a peak when checking overlap
    'merge_ppm': 10,                    # ppm added to both sides of a peak when checking overlap
    'merge_min_prop': 0.75,             # lowest intensity between apexes, as fraction of the smaller apex, to merge

    # correspondence
    'bandwidth': 30,                    # seconds, KDE bandwidth before retention time alignment
    'bandwidth_aligned': 5,             # seconds, KDE bandwidth after retention time alignment
    'min_fraction': 0.5,                # fraction of samples of at least one group with a peak in a feature
    'min_samples': 1,                   # absolute minimal number of samples of that group
    'group_ppm': 10,                    # m/z bucketing before KDE, ppm of gap between sorted peaks
    'group_bin_size': 0.001,            # m/z bucketing before KDE, absolute gap; max of the two is used

    # retention time alignment
    'rt_align_on': True,                # False to bypass retention time alignment
    'anchor_min_fraction': 0.9,         # anchors are features with peaks in this fraction of all samples
    'max_extra_features': 1,            # anchors can have at most this number of extra peaks in total
    'smoothing_span': 0.4,              # fraction of anchors used in local regression (LOWESS frac)
    'smooth': 'loess',                  # 'loess' or 'linear'
    'num_lowess_iterations': 3,         # robustifying iterations in LOWESS

    # gap filling
    'fill_ppm': None,                   # ppm for integration window, defaults to mz_tolerance_ppm
    'fill_expand_rt': 0,                # seconds added to both sides of the integration window

    # precursor resolution
    'precursor_tolerance': 0.005,       # absolute m/z tolerance for precursor peak search in MS1
    'precursor_ppm': 10,                # relative m/z tolerance for precursor peak search in MS1
    'use_isolation_window': False,      # True to use reported isolation window for purity

    # MS2 linking and spectrum selection
    'ms2_link_ppm': 10,                 # ppm between precursor m/z and feature m/z
    'ms2_link_expand_rt': 0,            # seconds added to the feature retention time range
    'selection_fraction': 0.1,          # fraction kept at purity and at intensity stages

    # inclusion list reporting
    'inclusion_rt_tolerance': 10,       # seconds

    # default output names
    'output_feature_table': 'Feature_table.tsv',
    'output_peak_table': 'peak_table.tsv',
    'output_spectra': 'representative_spectra',
    'output_state': 'pipeline_state.pickle',
    'output_inclusion_report': 'inclusion_report.tsv',
    }


readme_doc_str = """
The feature table is `Feature_table.tsv`: one row per feature,
one intensity column per sample. Filled values are included and counted
in the column `filled`; empty cells mean the raw data do not cover the feature region.
Features with `fill_exceeds_detected` true have a filled value higher than
any detected peak, usually due to high background.

Representative MS2 spectra, one per feature when available, are in
`representative_spectra.msp` and `representative_spectra.json`.

All refined peaks are in `export/peak_table.tsv`.
The full pipeline state is in `export/pipeline_state.pickle`,
which can be loaded by `specbank.experiment.load_state`.

The processing parameters, history and sample failures are in `project.json`.
"""
