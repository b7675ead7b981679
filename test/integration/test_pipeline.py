import json
import os
import tempfile
import unittest
from unittest import mock

import json_tricks
import pandas as pd
from matchms.importing import load_from_msp

from specbank.default_parameters import PARAMETERS
from specbank.experiment import Experiment, load_state
from specbank.main import main
from specbank.testing import DEFAULT_COMPOUNDS, make_experiment_samples
from specbank.workflow import process_project

SAMPLES = {s.sample_id: s for s in make_experiment_samples()}


def fake_loader(infile, sample_id=None, name=None, group=None):
    sample = SAMPLES[sample_id]
    return sample.with_spectra(sample.spectra)


class TestExperimentPipeline(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        cls.tmpdir = tempfile.TemporaryDirectory()
        cls.params = PARAMETERS.copy()
        cls.params.update({'multicores': 1, 'verbose': False, 'outdir': cls.tmpdir.name})
        cls.EE = Experiment(list(SAMPLES.values()), cls.params)
        cls.EE.process_all()

    @classmethod
    def tearDownClass(cls):
        cls.tmpdir.cleanup()

    def test_features(self):
        features = self.EE.state.features
        self.assertEqual(len(features), len(DEFAULT_COMPOUNDS))
        for f, compound in zip(features, DEFAULT_COMPOUNDS):
            self.assertAlmostEqual(f.mz, compound[0], places=3)
            self.assertEqual(len(f.peaks), 4)
        self.assertEqual([f.feature_id for f in features], ['F%d' %(ii+1) for ii in range(len(features))])

    def test_alignment_reduces_spread(self):
        self.assertEqual(sorted(self.EE.state.alignment_models), sorted(SAMPLES))
        grouped = [s for s in self.EE.history if s.stage == 'features_grouped'][0]
        for before, after in zip(grouped.features, self.EE.state.features):
            spread_before = max(p.rt_apex for p in before.peaks.values()) - min(p.rt_apex for p in before.peaks.values())
            spread_after = max(p.rt_apex for p in after.peaks.values()) - min(p.rt_apex for p in after.peaks.values())
            self.assertLess(spread_after, spread_before)
            self.assertLess(spread_after, 3.0)

    def test_representatives(self):
        reps = self.EE.state.representatives
        self.assertEqual(len(reps), len(DEFAULT_COMPOUNDS))
        for f in self.EE.state.features:
            rep = reps[f.feature_id]
            self.assertEqual(rep.n_candidates, 12)
            self.assertAlmostEqual(rep.precursor_mz, f.mz, places=3)
            self.assertEqual(len(rep.mz), 6)

    def test_precursors_corrected(self):
        annotations = self.EE.state.precursor_annotations['sample_0']
        self.assertEqual(len(annotations), 3 * len(DEFAULT_COMPOUNDS))
        self.assertTrue(all(a.precursor_mz is not None for a in annotations))
        for a in annotations:
            self.assertAlmostEqual(a.reported_mz - a.precursor_mz, 0.001, places=6)

    def test_exports(self):
        self.EE.export_all()
        outdir = self.params['outdir']
        for name in ('Feature_table.tsv', 'representative_spectra.json', 'representative_spectra.msp',
                     'project.json', 'README.txt', 'export/peak_table.tsv',
                     'export/pipeline_state.pickle', 'export/pipeline_state.json'):
            self.assertTrue(os.path.exists(os.path.join(outdir, name)), name)

        table = pd.read_csv(os.path.join(outdir, 'Feature_table.tsv'), sep='\t')
        self.assertEqual(table.shape, (len(DEFAULT_COMPOUNDS), 9 + len(SAMPLES)))
        self.assertEqual(list(table.columns[-4:]), list(SAMPLES))

        library = list(load_from_msp(os.path.join(outdir, 'representative_spectra.msp')))
        self.assertEqual(len(library), len(DEFAULT_COMPOUNDS))
        self.assertTrue(all(len(s.peaks.mz) == 6 for s in library))
        with open(os.path.join(outdir, 'project.json')) as f:
            log = json.load(f)
        self.assertEqual(log['history'][-1]['stage'], 'spectra_selected')
        self.assertEqual(log['failures'], {})

        data = load_state(os.path.join(outdir, 'export', 'pipeline_state.pickle'))
        self.assertEqual(data['state'].version, self.EE.state.version)
        self.assertEqual(list(data['samples']), list(SAMPLES))
        self.assertEqual(len(data['state'].features), len(DEFAULT_COMPOUNDS))
        with open(os.path.join(outdir, 'export', 'pipeline_state.json')) as f:
            header = json_tricks.load(f)
        self.assertEqual(header['stage'], 'spectra_selected')
        self.assertEqual(header['number_of_features'], len(DEFAULT_COMPOUNDS))

    def test_inclusion_report(self):
        entries = pd.DataFrame([(DEFAULT_COMPOUNDS[2][0], DEFAULT_COMPOUNDS[2][1], 'compound_2'),
                                (500.0, 100.0, 'absent')], columns=['mz', 'rtime', 'identity'])
        report = self.EE.export_inclusion_report(entries)
        self.assertEqual(list(report['status']), ['matched', 'unmatched'])
        self.assertEqual(report['feature_id'][0], 'F3')


class TestProjectWorkflow(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.input = os.path.join(self.tmpdir.name, 'input')
        os.makedirs(self.input)
        for sid in SAMPLES:
            open(os.path.join(self.input, sid + '.mzML'), 'w').close()

    def tearDown(self):
        self.tmpdir.cleanup()

    @mock.patch('specbank.workflow.load_mzml_sample', side_effect=fake_loader)
    def test_process_project(self, loader):
        params = PARAMETERS.copy()
        params.update({'multicores': 1, 'verbose': False, 'database_mode': 'ondisk', 'chunk_size': 2,
                       'outdir': os.path.join(self.tmpdir.name, 'out')})
        files = sorted(os.path.join(self.input, f) for f in os.listdir(self.input))
        EE = process_project(files, params)
        self.assertEqual(len(EE.state.features), len(DEFAULT_COMPOUNDS))
        self.assertEqual(len(EE.state.representatives), len(DEFAULT_COMPOUNDS))
        self.assertTrue(os.path.exists(os.path.join(params['outdir'], 'Feature_table.tsv')))
        self.assertFalse(os.path.exists(params['tmp_pickle_dir']))

    @mock.patch('specbank.workflow.load_mzml_sample', side_effect=fake_loader)
    def test_command_line(self, loader):
        inclusion = os.path.join(self.tmpdir.name, 'inclusion.tsv')
        with open(inclusion, 'w') as f:
            f.write("mz\trtime\tidentity\n%s\t%s\tcompound_0\n" %DEFAULT_COMPOUNDS[0][:2])
        EE = main(['process', '-i', self.input, '-o', os.path.join(self.tmpdir.name, 'cli'),
                   '-c', '1', '--inclusion_list', inclusion, '--verbose', 'False'])
        outdir = EE.parameters['outdir']
        report = pd.read_csv(os.path.join(outdir, 'export', 'inclusion_report.tsv'), sep='\t')
        self.assertEqual(list(report['status']), ['matched'])

if __name__ == '__main__':
    unittest.main()
