'''
Workflows behind the command line subcommands.

Samples are registered from a directory of centroided mzML files, with metadata
from an optional manifest, read into Sample objects via pymzml,
kept in a SampleStore and processed by experiment.Experiment.
Reading of mzML files is the only place that depends on the file format.
'''
import os
import time

import numpy as np
import pandas as pd
import pymzml

from .chromatograms import extract_xics
from .errors import MalformedInputError, MissingMetadataError, NoSamplesError
from .experiment import Experiment
from .records import Spectrum
from .samples import Sample, SampleStore
from .utils import bulk_process, checksum_file, chunked

MANIFEST_COLUMNS = ['file', 'sample_id', 'sample_name', 'group']

# -----------------------------------------------------------------------------
# main workflow for `process`
# -----------------------------------------------------------------------------

def process_project(list_input_files, parameters):
    '''
    This defines the main work flow in processing a list of LC-MS/MS files,
    creates the output folder with a time stamp, reads samples into a SampleStore,
    and runs all stages of experiment.Experiment.

    Parameters
    ----------
    list_input_files : list[str]
        list of centroided mzML filepaths. Usually found in a folder.
    parameters : dict
        parameter dictionary passed from main.py,
        which imports from default_parameters and updates the dict by user arguments.

    Returns
    -------
    The Experiment instance, after all stages and exports.

    Outputs
    -------
    A local folder with processing result, e.g::

        myproject_specbank_project_1018150210
        ├── Feature_table.tsv
        ├── representative_spectra.json
        ├── representative_spectra.msp
        ├── export
        │   ├── inclusion_report.tsv
        │   ├── peak_table.tsv
        │   ├── pipeline_state.json
        │   └── pipeline_state.pickle
        ├── project.json
        └── README.txt

    The pickle folder of ondisk mode is removed after the processing by default.
    '''
    sample_registry = register_samples(list_input_files, parameters.get('manifest'))
    time_stamp = ''.join([str(x) for x in time.localtime()[1:6]])
    parameters['time_stamp'] = time_stamp
    create_export_folders(parameters, time_stamp)
    store = read_samples(sample_registry, parameters)

    EE = Experiment(store, parameters)
    print("Processing Experiment of %d samples ..." %len(store))
    EE.process_all()
    print("Exporting...")
    EE.export_all()
    workflow_cleanup(store, parameters)
    print("Done")
    return EE

def workflow_cleanup(store, parameters):
    '''
    Remove sample pickles of ondisk mode, unless keep_intermediates.
    '''
    if not parameters['keep_intermediates'] and parameters['database_mode'] == 'ondisk':
        print("Removing temporary pickle files...")
        store.clear_disk()
        if store.cache_dir and os.path.isdir(store.cache_dir) and not os.listdir(store.cache_dir):
            os.rmdir(store.cache_dir)

def read_project_dir(directory, file_pattern='.mzML'):
    '''
    This reads centroided LC-MS files from directory.
    Returns a sorted list of files that match file_pattern.

    Parameters
    ----------
    directory: str
        path to a directory containing mzML files
    file_pattern: str, optional, default: '.mzML'
        files with this substring will be ingested
    '''
    print("Working on ~~ %s ~~ \n\n" %directory)
    return sorted([os.path.join(directory, f) for f in os.listdir(directory) if file_pattern in f])

def file_stem(infile):
    return os.path.basename(infile).replace('.mzML', '').replace('.mzml', '')

def read_manifest(infile):
    '''
    Read sample manifest, a tab delimited (or .csv) file with columns
    file (mzML file name), sample_id, sample_name and group.
    Only `file` and `group` are required; sample_id and sample_name default to the file name stem.

    Returns
    -------
    dict of file name stem to {'sample_id', 'name', 'group'}.
    '''
    sep = ',' if infile.endswith('.csv') else '\t'
    table = pd.read_csv(infile, sep=sep, dtype=str)
    for col in ('file', 'group'):
        if col not in table.columns:
            raise MissingMetadataError(None, "Manifest %s lacks column '%s'" %(infile, col))
    manifest = {}
    for _, row in table.iterrows():
        stem = file_stem(str(row['file']))
        if pd.isna(row['group']) or not str(row['group']).strip():
            raise MissingMetadataError(stem, "Manifest has no group for this sample")
        sample_id = row['sample_id'] if 'sample_id' in table.columns and not pd.isna(row['sample_id']) else stem
        name = row['sample_name'] if 'sample_name' in table.columns and not pd.isna(row['sample_name']) else sample_id
        manifest[stem] = {'sample_id': str(sample_id), 'name': str(name), 'group': str(row['group']).strip()}
    return manifest

def register_samples(list_input_files, manifest=None):
    '''
    Establish sample_id here, return sample_registry as a dictionary.
    Without manifest, sample_id and name are the file name stem and all samples are in one group.

    Parameters
    ---------
    list_input_files: list[str]
        list of input filepaths, each representing a sample
    manifest: str, optional
        path to manifest file, see `read_manifest`.

    Return
    ------
    sample_registry, a dictionary of sample_id to {'sample_id', 'input_file', 'name', 'group'},
    in the order of list_input_files.

    Raises
    ------
    NoSamplesError if list_input_files is empty;
    MissingMetadataError if a file is not in the manifest;
    MalformedInputError if sample ids or names are not unique.
    '''
    if not list_input_files:
        raise NoSamplesError("No input files to process")
    meta = read_manifest(manifest) if manifest else {}
    sample_registry, names = {}, set()
    for infile in list_input_files:
        stem = file_stem(infile)
        if meta:
            if stem not in meta:
                raise MissingMetadataError(stem, "Input file is not listed in the manifest")
            entry = dict(meta[stem])
        else:
            entry = {'sample_id': stem, 'name': stem, 'group': 'default'}
        if entry['sample_id'] in sample_registry or entry['name'] in names:
            raise MalformedInputError(entry['sample_id'], "Duplicated sample id or name")
        names.add(entry['name'])
        entry['input_file'] = infile
        sample_registry[entry['sample_id']] = entry
    return sample_registry

def create_export_folders(parameters, time_stamp=None):
    '''
    Creates local directory for storing temporary files and output result.
    A time stamp is added to directory name to avoid overwriting existing projects.

    Parameters
    ----------
    paramaters: dict
        passed from main.py to get outdir and project_name
    time_stamp: str
        a time_stamp string to prevent overwriting existing projects
    '''
    if time_stamp is None:
        time_stamp = ''.join([str(x) for x in time.localtime()[1:6]])
    parameters['outdir'] = '_'.join([parameters['outdir'], parameters['project_name'], time_stamp])
    os.makedirs(parameters['outdir'], exist_ok=True)
    parameters['export_outdir'] = os.path.join(parameters['outdir'], 'export')
    os.makedirs(parameters['export_outdir'], exist_ok=True)
    parameters['tmp_pickle_dir'] = os.path.join(parameters['outdir'], 'pickle')

# -----------------------------------------------------------------------------
# reading mzML files
# -----------------------------------------------------------------------------

def _sorted_peaks(mz, intensity):
    '''
    Sort data points by m/z; duplicated m/z values keep the max intensity,
    so that m/z is strictly increasing.
    '''
    mz = np.asarray(mz, dtype=float)
    intensity = np.asarray(intensity, dtype=float)
    if mz.size < 2:
        return mz, intensity
    uniq, inverse = np.unique(mz, return_inverse=True)
    if uniq.size == mz.size:
        order = np.argsort(mz)
        return mz[order], intensity[order]
    new_intensity = np.zeros(uniq.size)
    np.maximum.at(new_intensity, inverse, intensity)
    return uniq, new_intensity

def _cv_values(spec, accessions):
    '''
    Values of cvParams of a pymzml spectrum element, as {accession: [float, ...]}.
    '''
    values = {acc: [] for acc in accessions}
    for el in spec.element.iter():
        accession = el.get('accession')
        if accession in values and el.get('value') not in (None, ''):
            values[accession].append(float(el.get('value')))
    return values

def _isolation_window(spec):
    '''
    Absolute (low, high) isolation window from cvParams of a pymzml spectrum,
    (None, None) if not reported.
    '''
    cv = _cv_values(spec, ('MS:1000827', 'MS:1000828', 'MS:1000829'))
    if not (cv['MS:1000827'] and cv['MS:1000828'] and cv['MS:1000829']):
        return None, None
    target = cv['MS:1000827'][0]
    return target - cv['MS:1000828'][0], target + cv['MS:1000829'][0]

def _scan_window(spec):
    '''
    Acquisition (low, high) m/z limits from scan window cvParams,
    the union of all scan windows; (None, None) if not reported.
    '''
    cv = _cv_values(spec, ('MS:1000501', 'MS:1000500'))
    if not (cv['MS:1000501'] and cv['MS:1000500']):
        return None, None
    return min(cv['MS:1000501']), max(cv['MS:1000500'])

def read_mzml_spectra(infile):
    '''
    Read MS1 and MS2 spectra from a centroided mzML file via pymzml.

    Returns
    -------
    list of Spectrum in acquisition order, scan_index counting from 0, retention time in seconds.
    Scans of other MS levels are skipped.
    '''
    spectra = []
    with pymzml.run.Reader(infile) as exp:
        for ii, spec in enumerate(exp):
            if spec.ms_level not in (1, 2):
                continue
            mz, intensity = _sorted_peaks(spec.mz, spec.i)
            precursor_mz, low, high = None, None, None
            window_low, window_high = _scan_window(spec)
            if spec.ms_level == 2:
                precursors = spec.selected_precursors
                if precursors and precursors[0].get('mz') is not None:
                    precursor_mz = float(precursors[0]['mz'])
                low, high = _isolation_window(spec)
            spectra.append(Spectrum(
                scan_index=ii,
                ms_level=spec.ms_level,
                rtime=spec.scan_time_in_minutes() * 60,
                mz=mz,
                intensity=intensity,
                centroided='MS:1000128' not in spec,  # profile spectrum
                precursor_mz=precursor_mz,
                isolation_low=low,
                isolation_high=high,
                scan_window_low=window_low,
                scan_window_high=window_high,
            ))
    return spectra

def load_mzml_sample(infile, sample_id=None, name=None, group=None):
    '''
    Read a mzML file into a validated Sample.

    Raises
    ------
    UnsortedAcquisitionError if scans are not in retention time order.
    '''
    return Sample(sample_id or file_stem(infile), read_mzml_spectra(infile),
                  name=name, group=group, input_file=infile, checksum=checksum_file(infile))

def read_sample(entry):
    '''
    Job for utils.bulk_process, entry from sample_registry.
    '''
    return load_mzml_sample(entry['input_file'], entry['sample_id'], entry['name'], entry['group'])

def read_samples(sample_registry, parameters):
    '''
    Read all registered samples into a SampleStore, chunk_size files at a time.
    Any malformed sample aborts the run.
    '''
    store = SampleStore(parameters, cache_dir=parameters.get('tmp_pickle_dir'))
    for chunk in chunked(list(sample_registry.values()), parameters['chunk_size']):
        for sample in bulk_process(read_sample, chunk, parameters['multicores'], desc="Reading mzML"):
            store[sample.sample_id] = sample
    return store

# -----------------------------------------------------------------------------
# workflow for `check`
# -----------------------------------------------------------------------------

def check_sample(entry):
    '''
    Job for utils.bulk_process. Reads and validates one sample,
    returns (sample_id, status, message or summary).
    '''
    try:
        sample = read_sample(entry)
    except (MalformedInputError, OSError) as err:
        return entry['sample_id'], 'failed', str(err)
    return entry['sample_id'], 'passed', sample.summary()

def check_project(list_input_files, parameters):
    '''
    Validate scan order and metadata of all input files without processing.
    All problems are reported; nothing is raised for individual samples.

    Returns
    -------
    dict of sample_id to (status, message or summary).
    '''
    sample_registry = register_samples(list_input_files, parameters.get('manifest'))
    results = {}
    for sid, status, info in bulk_process(check_sample, list(sample_registry.values()),
                                          parameters['multicores'], desc="Checking mzML"):
        results[sid] = (status, info)
        if status == 'failed':
            print("FAILED  %s: %s" %(sid, info))
        elif parameters.get('verbose', True):
            print("passed  %s: %d MS1 and %d MS2 scans." %(
                sid, info['number_ms1_scans'], info['number_ms2_scans']))
    number_failed = sum(1 for v in results.values() if v[0] == 'failed')
    print("\n%d of %d samples passed the check.\n" %(len(results) - number_failed, len(results)))
    return results

# -----------------------------------------------------------------------------
# workflow for `xic`
# -----------------------------------------------------------------------------

def xic_sample(job):
    '''
    Job for utils.bulk_process, job = (entry, list_mz, parameters).
    Writes one table per sample: rtime and one intensity column per target m/z.
    '''
    entry, list_mz, parameters = job
    sample = read_sample(entry)
    traces = extract_xics(sample, list_mz, parameters['mz_tolerance_ppm'], parameters['xic_aggregate'])
    table = pd.DataFrame({'rtime': sample.ms1_rtimes})
    for mz, trace in zip(list_mz, traces):
        table['mz_%s' %mz] = trace.intensity
    outfile = os.path.join(parameters['export_outdir'], 'xic_%s.tsv' %entry['name'])
    table.to_csv(outfile, index=False, sep="\t")
    return outfile

def process_xics(list_input_files, parameters):
    '''
    Get XICs (extracted ion chromatograms) at target m/z values
    from a folder of centroid mzML files and store in local tsv files.

    Parameters
    ----------
    list_input_files : list[str]
        list of centroided mzML filepaths.
    parameters : dict
        parameter dictionary passed from main.py; `target` is a file of m/z values.

    Outputs
    -------
    One tab delimited file per sample under outdir/export.
    '''
    list_mz = get_mz_list(parameters['target'])
    print("Retrieved %d target m/z values from %s.\n" %(len(list_mz), parameters['target']))
    sample_registry = register_samples(list_input_files, parameters.get('manifest'))
    create_export_folders(parameters)
    jobs = [(entry, list_mz, parameters) for entry in sample_registry.values()]
    outfiles = bulk_process(xic_sample, jobs, parameters['multicores'], desc="Extracting XICs")
    print("XICs were stored as tsv files under %s" %parameters['export_outdir'])
    return outfiles

def get_mz_list(infile):
    '''
    Get a list of m/z values from infile, to be used as targets.

    Parameters
    ----------
    infile : str
        filepath to input table, which is tab or comma delimited and has m/z in the first column,
        header as first row.

    Returns
    -------
    A list of m/z values.
    '''
    with open(infile) as f:
        lines = f.read().splitlines()[1:]
    return [float(x.split('\t')[0].split(",")[0]) for x in lines if x.strip()]
