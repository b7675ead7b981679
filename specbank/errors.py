'''
Exception hierarchy for specbank.

Malformed input (unsorted scans, missing metadata, no samples at all) is fatal 
for the sample or the run it concerns.
Insufficient data (too few alignment anchors) is recoverable: the pipeline 
excludes the sample, records the failure and continues with the rest.

Misses in tolerance windows and ties in rankings are not errors; 
they are carried as data (None, 'unmatched') or resolved by fixed rules.
'''


class SpecbankError(Exception):
    '''
    Base exception for specbank. All errors raised on purpose inherit from this class.
    '''
    def __reduce__(self):
        # subclasses take different constructor arguments; rebuilt from attributes
        # when passed back from worker processes
        return (_rebuild_error, (self.__class__, self.args, self.__dict__))


def _rebuild_error(cls, args, attributes):
    err = cls.__new__(cls)
    Exception.__init__(err, *args)
    err.__dict__.update(attributes)
    return err


class MalformedInputError(SpecbankError):
    '''
    Raised when the raw data or metadata of a sample cannot be used.

    Attributes
    ----------
    sample_id : str
        the offending sample, None if not specific to one sample.
    message : str
        description of the problem.
    '''
    def __init__(self, sample_id, message):
        self.sample_id = sample_id
        self.message = message
        super().__init__(f"{message} (sample: {sample_id})")


class UnsortedAcquisitionError(MalformedInputError):
    '''
    Raised when scan retention times of a sample are not in acquisition order.
    Lookups of the nearest preceding MS1 scan depend on this order.
    '''
    def __init__(self, sample_id, scan_index=None):
        self.scan_index = scan_index
        message = "Scans are not sorted by retention time"
        if scan_index is not None:
            message += f" at scan {scan_index}"
        super().__init__(sample_id, message)


class MissingMetadataError(MalformedInputError):
    '''Raised when a sample or the manifest lacks a required field.'''


class NoSamplesError(MalformedInputError):
    '''Raised when there is no sample left to process.'''
    def __init__(self, message="No samples available for processing"):
        super().__init__(None, message)


class InsufficientDataError(SpecbankError):
    '''
    Raised when a sample or a feature has too little data for a computation.
    The unit is excluded or flagged by the caller; processing continues.
    '''
    def __init__(self, unit_id, message):
        self.unit_id = unit_id
        self.message = message
        super().__init__(f"{message} ({unit_id})")


class InsufficientAnchorsError(InsufficientDataError):
    '''
    Raised when fewer than 2 anchor features are available 
    to fit the retention time alignment of a sample.

    Attributes
    ----------
    sample_id : str
    number_anchors : int
        number of anchors found in this sample.
    '''
    def __init__(self, sample_id, number_anchors):
        self.sample_id = sample_id
        self.number_anchors = number_anchors
        super().__init__(
            sample_id, 
            f"Only {number_anchors} anchor feature(s) for retention time alignment, at least 2 needed")


class ParameterError(SpecbankError, ValueError):
    '''Raised for invalid parameter values.'''


class PipelineCancelled(SpecbankError):
    '''
    Raised at a stage boundary after cancellation was requested.

    Attributes
    ----------
    stage : str
        the last completed stage.
    '''
    def __init__(self, stage):
        self.stage = stage
        super().__init__(f"Pipeline cancelled after stage '{stage}'")
