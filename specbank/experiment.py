'''
Experiment is the container of a whole project: samples, processing parameters
and the sequence of pipeline states.

Each processing stage reads the latest PipelineState and appends a new one,
with an incremented version, to Experiment.history. States are never modified in place.
Per-sample stages run chunk by chunk over the SampleStore, via utils.bulk_process;
cross-sample stages start only after all samples finished the previous stage.

Default workflow is in `Experiment.process_all`.
'''
import os
import json
import pickle
from collections import namedtuple

import json_tricks
import numpy as np
import pandas as pd
from matchms import Spectrum
from matchms.exporting import save_as_msp

from . import __version__
from .alignment import align_samples, alignment_parameters, realign_peaks
from .correspondence import group_peaks, grouping_parameters
from .default_parameters import readme_doc_str
from .errors import NoSamplesError, PipelineCancelled
from .gapfill import fill_sample, apply_fills
from .inclusion import read_inclusion_list, match_inclusion_list
from .json_encoder import NpEncoder
from .peaks import detect_sample_peaks, refine_sample_peaks
from .precursors import resolve_sample_precursors, apply_precursor_annotations
from .records import feature_value
from .samples import SampleStore
from .selection import Candidate, select_spectra
from .utils import bulk_process

STATE_FORMAT_VERSION = 1

# peaks: {sample_id: [ChromatographicPeak]}, alignment_models: {sample_id: AlignmentModel},
# precursor_annotations: {sample_id: [PrecursorAnnotation]},
# representatives: {feature_id: RepresentativeSpectrum},
# failures: {sample_id: {'stage', 'error', 'message'}}
PipelineState = namedtuple('PipelineState', ['version', 'stage', 'sample_ids', 'peaks', 'features',
                                             'alignment_models', 'precursor_annotations',
                                             'representatives', 'failures'])


class Experiment:
    '''
    This encapsulates a set of LC-MS/MS acquisitions using the same experimental method
    (chromatography and ionization) to be processed together.

    Stages, in the order of `process_all`:
    detect_peaks, refine_peaks, group_features, align_retention_time, regroup_features,
    fill_gaps, resolve_precursors, select_spectra.

    Cancellation via `cancel()` takes effect at the next stage boundary,
    by raising PipelineCancelled. The completed states stay in history.
    '''
    STAGES = ['detect_peaks', 'refine_peaks', 'group_features', 'align_retention_time',
              'regroup_features', 'fill_gaps', 'resolve_precursors', 'select_spectra']

    def __init__(self, samples, parameters):
        '''
        Parameters
        ----------
        samples : SampleStore or iterable of samples.Sample
            validated samples. Sample order here is the order of output columns.
        parameters : dict
            processing parameters passed from main.py.

        Raises
        ------
        NoSamplesError if there is no sample.
        '''
        self.parameters = parameters
        self.verbose = parameters.get('verbose', True)
        if isinstance(samples, SampleStore):
            self.store = samples
        else:
            self.store = SampleStore(parameters, cache_dir=parameters.get('tmp_pickle_dir'))
            for sample in samples:
                self.store[sample.sample_id] = sample
        if not len(self.store):
            raise NoSamplesError()

        self.sample_names, self.sample_groups, self.sample_summaries = {}, {}, {}
        for sid in self.store:
            sample = self.store[sid]
            self.sample_names[sid] = sample.name
            self.sample_groups[sid] = sample.group
            self.sample_summaries[sid] = sample.summary()

        self._cancel_requested = False
        self.history = [PipelineState(
            version=0, stage='ingested', sample_ids=tuple(self.store.ids()), peaks={}, features=[],
            alignment_models={}, precursor_annotations={}, representatives={}, failures={},
        )]

    def __repr__(self):
        return "Experiment(%d samples, stage=%s)" %(len(self.state.sample_ids), self.state.stage)

    @property
    def state(self):
        return self.history[-1]

    @property
    def number_of_samples(self):
        return len(self.state.sample_ids)

    def _print(self, msg):
        if self.verbose:
            print(msg)

    def _advance(self, stage, **changes):
        '''
        Append a new state derived from the current one.
        '''
        new = self.state._replace(version=self.state.version + 1, stage=stage, **changes)
        self.history.append(new)
        return new

    def cancel(self):
        '''
        Request cancellation. Running stage completes; the next one raises PipelineCancelled.
        '''
        self._cancel_requested = True

    def _check_cancelled(self):
        if self._cancel_requested:
            raise PipelineCancelled(self.state.stage)

    def _active_chunks(self):
        '''
        Chunks of sample ids that are still in the pipeline, in sample order.
        '''
        active = set(self.state.sample_ids)
        for chunk in self.store.chunks():
            chunk = [sid for sid in chunk if sid in active]
            if chunk:
                yield chunk

    def _run_per_sample(self, command, make_job, desc):
        '''
        Run a per-sample job over all active samples, chunk_size samples in memory at a time.
        Returns dict of sample_id to result.
        '''
        results = {}
        for chunk in self._active_chunks():
            jobs = [make_job(sid) for sid in chunk]
            for sid, result in bulk_process(command, jobs, self.parameters['multicores'], desc=desc):
                results[sid] = result
        return results

    def process_all(self):
        '''
        This is the default workflow.

        1. Peak detection on mass tracks of each sample, then peak refinement (merging split peaks).
        2. Correspondence of peaks across samples by m/z bucketing and retention time KDE.
        3. Retention time alignment via LOWESS on well replicated features (anchors),
           then correspondence again with a narrower bandwidth.
        4. Gap filling, so that every feature has a value or 'unavailable' in every sample.
        5. Precursor resolution for MS2 spectra, linking to features and
           selection of one representative spectrum per feature.

        Updates
        -------
        self.history, one PipelineState per stage.
        '''
        for stage in self.STAGES:
            getattr(self, stage)()

    # -------------------------------------------------------------------------
    # stages
    # -------------------------------------------------------------------------

    def detect_peaks(self):
        self._check_cancelled()
        self._print("Detecting peaks in %d samples ..." %self.number_of_samples)
        peaks = self._run_per_sample(detect_sample_peaks,
                                     lambda sid: (self.store[sid], self.parameters),
                                     desc="Peak detection")
        self._print("    %d peaks detected." %sum(len(v) for v in peaks.values()))
        return self._advance('peaks_detected', peaks=peaks)

    def refine_peaks(self):
        self._check_cancelled()
        old = self.state.peaks
        peaks = self._run_per_sample(refine_sample_peaks,
                                     lambda sid: (self.store[sid], old.get(sid, []), self.parameters),
                                     desc="Peak refinement")
        self._print("    %d peaks after refinement." %sum(len(v) for v in peaks.values()))
        return self._advance('peaks_refined', peaks=peaks)

    def _group(self, aligned=False):
        sample_ids = self.state.sample_ids
        all_peaks = [p for sid in sample_ids for p in self.state.peaks.get(sid, [])]
        return group_peaks(all_peaks, {sid: self.sample_groups[sid] for sid in sample_ids},
                           **grouping_parameters(self.parameters, aligned=aligned))

    def group_features(self):
        self._check_cancelled()
        features = self._group(aligned=False)
        self._print("Grouped peaks into %d features before alignment." %len(features))
        return self._advance('features_grouped', features=features)

    def align_retention_time(self):
        '''
        Fit one AlignmentModel per sample and re-express retention times of spectra and peaks.
        Samples that cannot be aligned (too few anchors) are excluded from downstream stages
        and recorded in failures.

        Raises
        ------
        NoSamplesError if no sample could be aligned.
        '''
        self._check_cancelled()
        sample_ids = self.state.sample_ids
        if not self.parameters['rt_align_on'] or len(sample_ids) < 2:
            self._print("Retention time alignment is skipped.")
            return self._advance('rt_aligned', alignment_models={})

        models, errors = align_samples(
            self.state.features, list(sample_ids),
            rt_ranges={sid: self.store[sid].rt_range for sid in sample_ids},
            **alignment_parameters(self.parameters))
        failures = dict(self.state.failures)
        for sid, err in errors.items():
            print("Sample %s is excluded: %s" %(sid, err))
            failures[sid] = {'stage': 'rt_aligned', 'error': type(err).__name__, 'message': str(err)}
        kept = tuple(sid for sid in sample_ids if sid in models)
        if not kept:
            raise NoSamplesError("No sample could be aligned")

        peaks = {}
        for chunk in self._active_chunks():
            for sid in chunk:
                if sid in models:
                    self.store[sid] = self.store[sid].realigned(models[sid])
                    peaks[sid] = realign_peaks(self.state.peaks.get(sid, []), models[sid])
        self._print("Aligned %d samples, %d excluded." %(len(kept), len(errors)))
        return self._advance('rt_aligned', sample_ids=kept, peaks=peaks,
                             alignment_models=models, failures=failures)

    def regroup_features(self):
        '''
        Correspondence after alignment, with bandwidth_aligned.
        Without alignment, features from the first round are kept.
        '''
        self._check_cancelled()
        if not self.state.alignment_models:
            return self._advance('features_regrouped')
        features = self._group(aligned=True)
        self._print("Grouped peaks into %d features after alignment." %len(features))
        return self._advance('features_regrouped', features=features)

    def fill_gaps(self):
        self._check_cancelled()
        ppm = self.parameters['fill_ppm'] or self.parameters['mz_tolerance_ppm']
        features = self.state.features
        fills_by_sample = {}
        for chunk in self._active_chunks():
            for sid in chunk:
                fills_by_sample[sid] = fill_sample(features, self.store[sid], ppm,
                                                   self.parameters['fill_expand_rt'],
                                                   self.parameters['peak_area'])
        features = apply_fills(features, fills_by_sample)
        filled = sum(1 for f in features for v in f.fills.values() if v.status == 'filled')
        self._print("Filled %d missing values; %d features have a filled value above detected ones." %(
            filled, sum(1 for f in features if f.fill_exceeds_detected)))
        return self._advance('gaps_filled', features=features)

    def resolve_precursors(self):
        '''
        Estimate precursor m/z, purity and intensity of all MS2 spectra,
        and replace reported precursor m/z of the stored samples by the estimates.
        '''
        self._check_cancelled()
        annotations = self._run_per_sample(resolve_sample_precursors,
                                           lambda sid: (self.store[sid], self.parameters),
                                           desc="Precursor resolution")
        for chunk in self._active_chunks():
            for sid in chunk:
                self.store[sid] = apply_precursor_annotations(self.store[sid], annotations[sid])
        number = sum(len(v) for v in annotations.values())
        missing = sum(1 for v in annotations.values() for a in v if a.precursor_mz is None)
        self._print("Resolved precursors of %d MS2 spectra, %d without MS1 precursor peak." %(number, missing))
        return self._advance('precursors_resolved', precursor_annotations=annotations)

    def select_spectra(self):
        self._check_cancelled()
        candidates = []
        for sid in self.state.sample_ids:
            by_scan = {a.scan_index: a for a in self.state.precursor_annotations.get(sid, [])}
            for spec in self.store[sid].ms2_spectra:
                if spec.scan_index in by_scan:
                    candidates.append(Candidate(sid, spec, by_scan[spec.scan_index]))
        representatives, without_spectra = select_spectra(
            self.state.features, candidates,
            ppm=self.parameters['ms2_link_ppm'],
            expand_rt=self.parameters['ms2_link_expand_rt'],
            fraction=self.parameters['selection_fraction'])
        self._print("Selected %d representative spectra; %d features have no MS2 spectrum." %(
            len(representatives), len(without_spectra)))
        return self._advance('spectra_selected', representatives=representatives)

    # -------------------------------------------------------------------------
    # export
    # -------------------------------------------------------------------------

    def _outfile(self, name, subdir=None):
        outdir = self.parameters['outdir']
        if subdir:
            outdir = os.path.join(outdir, subdir)
        os.makedirs(outdir, exist_ok=True)
        return os.path.join(outdir, name)

    def export_all(self):
        '''
        Export all files. The inclusion report is only written if an inclusion list is given.
        '''
        self.export_feature_table()
        self.export_peak_table()
        self.export_spectra()
        self.export_state()
        if self.parameters.get('inclusion_list'):
            self.export_inclusion_report(self.parameters['inclusion_list'])
        self.export_log()
        self.export_readme()

    def feature_table(self):
        '''
        Feature table as a pandas DataFrame, one row per feature, one intensity column per sample.
        Values are peak areas, filled areas, or empty (NaN) when unavailable.
        '''
        sample_ids = self.state.sample_ids
        rows = []
        for f in self.state.features:
            row = {
                'name': f.name,
                'id': f.feature_id,
                'mz': round(f.mz, 4),
                'rtime': round(f.rtime, 2),
                'rtime_left_base': round(f.rt_min, 2),
                'rtime_right_base': round(f.rt_max, 2),
                'detection_counts': len(f.peaks),
                'filled': sum(1 for v in f.fills.values() if v.status == 'filled'),
                'fill_exceeds_detected': f.fill_exceeds_detected,
            }
            for sid in sample_ids:
                row[self.sample_names[sid]] = feature_value(f, sid)
            rows.append(row)
        columns = ['name', 'id', 'mz', 'rtime', 'rtime_left_base', 'rtime_right_base',
                   'detection_counts', 'filled', 'fill_exceeds_detected'] + [
                   self.sample_names[sid] for sid in sample_ids]
        return pd.DataFrame(rows, columns=columns)

    def export_feature_table(self):
        table = self.feature_table()
        outfile = self._outfile(self.parameters['output_feature_table'])
        table.to_csv(outfile, index=False, sep="\t", na_rep='')
        self._print("\nFeature table (%d x %d) was written to %s." %(
            table.shape[0], self.number_of_samples, outfile))
        return outfile

    def export_peak_table(self):
        '''
        All refined peaks, with the feature each belongs to (empty if none).
        '''
        membership = {}
        for f in self.state.features:
            for p in f.peaks.values():
                membership[p.peak_id] = f.feature_id
        rows = []
        for sid in self.state.sample_ids:
            for p in self.state.peaks.get(sid, []):
                raw = p.raw_rt if p.raw_rt is not None else (p.rt_min, p.rt_apex, p.rt_max)
                rows.append({
                    'peak_id': p.peak_id,
                    'sample': self.sample_names[sid],
                    'trace_id': p.trace_id,
                    'mz': round(p.mz_apex, 4),
                    'mz_min': round(p.mz_min, 4),
                    'mz_max': round(p.mz_max, 4),
                    'rtime': round(p.rt_apex, 2),
                    'rtime_left_base': round(p.rt_min, 2),
                    'rtime_right_base': round(p.rt_max, 2),
                    'raw_rtime': round(raw[1], 2),
                    'peak_area': p.area,
                    'height': p.height,
                    'snr': round(p.snr, 2),
                    'goodness_fitting': round(p.gaussian_fit, 2),
                    'low_confidence': p.low_confidence,
                    'feature_id': membership.get(p.peak_id),
                })
        table = pd.DataFrame(rows)
        outfile = self._outfile(self.parameters['output_peak_table'], 'export')
        table.to_csv(outfile, index=False, sep="\t", na_rep='')
        self._print("Peak table (%d peaks) was written to %s." %(len(rows), outfile))
        return outfile

    def export_spectra(self):
        '''
        Representative spectra in JSON and in MSP library format.
        Features without MS2 spectrum are not in the library.
        '''
        features = {f.feature_id: f for f in self.state.features}
        reps = [self.state.representatives[f.feature_id] for f in self.state.features
                if f.feature_id in self.state.representatives]
        records = []
        for r in reps:
            f = features[r.feature_id]
            records.append({
                'feature_id': r.feature_id,
                'name': f.name,
                'feature_mz': f.mz,
                'feature_rtime': f.rtime,
                'sample': self.sample_names.get(r.sample_id, r.sample_id),
                'scan_index': r.scan_index,
                'rtime': r.rtime,
                'precursor_mz': r.precursor_mz,
                'precursor_purity': r.purity,
                'precursor_intensity': r.precursor_intensity,
                'number_candidates': r.n_candidates,
                'mz': r.mz,
                'intensity': r.intensity,
            })
        outfile = self._outfile(self.parameters['output_spectra'] + '.json')
        with open(outfile, 'w', encoding='utf-8') as f:
            json.dump(records, f, cls=NpEncoder, ensure_ascii=False, indent=2)

        msp = self._outfile(self.parameters['output_spectra'] + '.msp')
        # save_as_msp appends to an existing file
        if os.path.exists(msp):
            os.remove(msp)
        if records:
            save_as_msp([to_matchms_spectrum(rec) for rec in records], msp)
        else:
            open(msp, 'w').close()
        self._print("%d representative spectra were written to %s and %s." %(len(records), outfile, msp))
        return outfile, msp

    def export_state(self):
        '''
        Serialize the current PipelineState and the processed samples to a pickle file,
        readable by `load_state`. A human readable header is written alongside in JSON.
        '''
        header = self.state_header()
        outfile = self._outfile(self.parameters['output_state'], 'export')
        with open(outfile, 'wb') as f:
            pickle.dump({'header': header, 'state': self.state, 'parameters': self.parameters},
                        f, pickle.HIGHEST_PROTOCOL)
            # one sample at a time, as only chunk_size samples may be in memory
            for sid in self.state.sample_ids:
                pickle.dump(self.store[sid], f, pickle.HIGHEST_PROTOCOL)
        with open(os.path.splitext(outfile)[0] + '.json', 'w') as f:
            json_tricks.dump(header, f, indent=2)
        self._print("Pipeline state (version %d) was written to %s." %(self.state.version, outfile))
        return outfile

    def state_header(self):
        return {
            'format_version': STATE_FORMAT_VERSION,
            'specbank_version': __version__,
            'version': self.state.version,
            'stage': self.state.stage,
            'sample_ids': list(self.state.sample_ids),
            'samples': [self.sample_summaries[sid] for sid in self.state.sample_ids],
            'number_of_features': len(self.state.features),
            'alignment_models': [m.records() for m in self.state.alignment_models.values()],
            'failures': self.state.failures,
        }

    def export_inclusion_report(self, inclusion_list):
        '''
        Report of inclusion list entries matched, or not, to features.

        Parameters
        ----------
        inclusion_list : str or pandas DataFrame
            path to inclusion list file, or entries with columns mz, rtime, identity.
        '''
        entries = read_inclusion_list(inclusion_list) if isinstance(inclusion_list, str) else inclusion_list
        report = match_inclusion_list(entries, self.state.features,
                                      ppm=self.parameters['mz_tolerance_ppm'],
                                      rt_tolerance=self.parameters['inclusion_rt_tolerance'])
        outfile = self._outfile(self.parameters['output_inclusion_report'], 'export')
        report.to_csv(outfile, index=False, sep="\t", na_rep='')
        self._print("Inclusion list: %d of %d entries matched, report written to %s." %(
            (report['status'] == 'matched').sum(), report.shape[0], outfile))
        return report

    def export_log(self):
        '''
        Export project parameters, stage history and failures to project.json.
        '''
        log = dict(self.parameters)
        log.update({
            'specbank_version': __version__,
            'number_of_samples': self.number_of_samples,
            'samples': [self.sample_summaries[sid] for sid in self.store.ids()],
            'history': [{'version': s.version,
                         'stage': s.stage,
                         'number_of_samples': len(s.sample_ids),
                         'number_of_peaks': sum(len(v) for v in s.peaks.values()),
                         'number_of_features': len(s.features),
                         'number_of_representatives': len(s.representatives),
                         } for s in self.history],
            'failures': self.state.failures,
            'alignment': [m.records() for m in self.state.alignment_models.values()],
        })
        outfile = self._outfile('project.json')
        with open(outfile, 'w', encoding='utf-8') as f:
            json.dump(log, f, cls=NpEncoder, ensure_ascii=False, indent=2)
        return outfile

    def export_readme(self):
        '''
        Export a README.txt file as simple instruction to end users.
        '''
        outfile = self._outfile('README.txt')
        with open(outfile, 'w', encoding='utf-8') as f:
            f.write(readme_doc_str)
        return outfile


def to_matchms_spectrum(record):
    '''
    matchms Spectrum of an exported record, for MSP output.
    precursor_mz falls back to feature m/z when no precursor peak was found in MS1.
    '''
    precursor = record['precursor_mz'] if record['precursor_mz'] is not None else record['feature_mz']
    return Spectrum(mz=np.asarray(record['mz'], dtype=float),
                    intensities=np.asarray(record['intensity'], dtype=float),
                    metadata={
                        'compound_name': record['name'],
                        'feature_id': record['feature_id'],
                        'precursor_mz': float(precursor),
                        'retention_time': round(float(record['feature_rtime']), 2),
                        'precursor_purity': round(float(record['precursor_purity']), 3),
                        'precursor_intensity': float(record['precursor_intensity']),
                        'sample': record['sample'],
                        'scan_index': int(record['scan_index']),
                    })

def load_state(infile):
    '''
    Load a pipeline state written by `Experiment.export_state`.

    Returns
    -------
    dict with 'header', 'state' (PipelineState), 'parameters'
    and 'samples' (dict of sample_id to Sample, in sample order).
    '''
    with open(infile, 'rb') as f:
        data = pickle.load(f)
        data['samples'] = {}
        for sid in data['state'].sample_ids:
            data['samples'][sid] = pickle.load(f)
    return data