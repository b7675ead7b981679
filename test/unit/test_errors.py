import pickle
import unittest

from specbank.errors import (
    SpecbankError,
    MalformedInputError,
    UnsortedAcquisitionError,
    MissingMetadataError,
    NoSamplesError,
    InsufficientDataError,
    InsufficientAnchorsError,
    ParameterError,
    PipelineCancelled,
)


class TestErrors(unittest.TestCase):

    def test_hierarchy(self):
        for cls in (MalformedInputError, InsufficientDataError, ParameterError, PipelineCancelled):
            self.assertTrue(issubclass(cls, SpecbankError))
        self.assertTrue(issubclass(UnsortedAcquisitionError, MalformedInputError))
        self.assertTrue(issubclass(MissingMetadataError, MalformedInputError))
        self.assertTrue(issubclass(NoSamplesError, MalformedInputError))
        self.assertTrue(issubclass(InsufficientAnchorsError, InsufficientDataError))

    def test_unsorted_carries_sample(self):
        err = UnsortedAcquisitionError('s1', 12)
        self.assertEqual(err.sample_id, 's1')
        self.assertEqual(err.scan_index, 12)
        self.assertIn('s1', str(err))
        self.assertIn('12', str(err))

    def test_insufficient_anchors(self):
        err = InsufficientAnchorsError('s2', 1)
        self.assertEqual(err.sample_id, 's2')
        self.assertEqual(err.unit_id, 's2')
        self.assertEqual(err.number_anchors, 1)

    def test_no_samples_default_message(self):
        err = NoSamplesError()
        self.assertIsNone(err.sample_id)
        self.assertIn('No samples', str(err))

    def test_pickle_keeps_attributes(self):
        # errors are passed back from worker processes
        for err in (UnsortedAcquisitionError('s1', 3), MissingMetadataError('s3', 'no group'),
                    InsufficientAnchorsError('s2', 0), PipelineCancelled('peaks_detected'),
                    NoSamplesError(), ParameterError('bad')):
            new = pickle.loads(pickle.dumps(err))
            self.assertIs(type(new), type(err))
            self.assertEqual(str(new), str(err))
            self.assertEqual(new.__dict__, err.__dict__)

if __name__ == '__main__':
    unittest.main()
