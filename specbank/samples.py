'''
Sample container and the sample store that bounds memory use.

A Sample is immutable after construction: alignment and precursor correction
return new Sample instances with derived spectra.
Scan order is validated once here, at ingestion.
'''

import os
import pickle
import shutil
import tempfile
import weakref

import numpy as np

from .errors import UnsortedAcquisitionError, MissingMetadataError


def validate_scan_order(spectra, sample_id=None):
    '''
    Check that retention times of spectra are monotonically non-decreasing
    in acquisition order. Raises UnsortedAcquisitionError on the first violation.

    Parameters
    ----------
    spectra : list[Spectrum]
        spectra in acquisition order.
    sample_id : str
        reported with the error.
    '''
    rtimes = np.array([s.rtime for s in spectra], dtype=float)
    if rtimes.size > 1:
        bad = np.nonzero(np.diff(rtimes) < 0)[0]
        if bad.size:
            raise UnsortedAcquisitionError(sample_id, spectra[bad[0]+1].scan_index)


class Sample:
    '''
    One acquisition: an ordered sequence of spectra plus metadata.

    Group membership partitions samples for correspondence, e.g. replicate groups.
    '''
    def __init__(self, sample_id, spectra, name=None, group=None, input_file=None, checksum=None, validate=True):
        '''
        Parameters
        ----------
        sample_id : str
            unique identifier in the experiment.
        spectra : list[Spectrum]
            in acquisition order.
        name : str, optional
            sample name, default to sample_id.
        group : str, optional
            sample group, default to 'default'.
        input_file : str, optional
            path of the raw data file.
        checksum : str, optional
            md5 of the raw data file.
        validate : bool, optional, default: True
            check scan order; only skipped for derived copies of a validated sample.
        '''
        if sample_id is None or sample_id == '':
            raise MissingMetadataError(input_file, "Sample has no sample_id")
        self.sample_id = sample_id
        self.name = name if name else str(sample_id)
        self.group = group if group not in (None, '') else 'default'
        self.input_file = input_file
        self.checksum = checksum
        self.spectra = tuple(spectra)
        if validate:
            validate_scan_order(self.spectra, sample_id)
        self._ms1 = None
        self._ms1_rtimes = None
        self._mz_range = None

    def __repr__(self):
        return "Sample(%s, group=%s, %d spectra)" %(self.sample_id, self.group, len(self.spectra))

    def __getstate__(self):
        state = self.__dict__.copy()
        state['_ms1'], state['_ms1_rtimes'], state['_mz_range'] = None, None, None
        return state

    @property
    def ms1_spectra(self):
        if self._ms1 is None:
            self._ms1 = [s for s in self.spectra if s.ms_level == 1]
        return self._ms1

    @property
    def ms2_spectra(self):
        return [s for s in self.spectra if s.ms_level == 2]

    @property
    def ms1_rtimes(self):
        if self._ms1_rtimes is None:
            self._ms1_rtimes = np.array([s.rtime for s in self.ms1_spectra], dtype=float)
        return self._ms1_rtimes

    @property
    def rt_range(self):
        '''(min, max) retention time of MS1 scans, None if no MS1 scan.'''
        if self.ms1_rtimes.size == 0:
            return None
        return float(self.ms1_rtimes[0]), float(self.ms1_rtimes[-1])

    @property
    def mz_range(self):
        '''
        (min, max) m/z covered by MS1 scans, None if no MS1 data.
        The acquisition scan window is used where reported, else the observed m/z of data points.
        '''
        if self._mz_range is None:
            lows, highs = [], []
            for s in self.ms1_spectra:
                if s.scan_window_low is not None and s.scan_window_high is not None:
                    lows.append(s.scan_window_low)
                    highs.append(s.scan_window_high)
                elif len(s.mz):
                    lows.append(s.mz[0])
                    highs.append(s.mz[-1])
            if not lows:
                return None
            self._mz_range = float(min(lows)), float(max(highs))
        return self._mz_range

    def with_spectra(self, spectra):
        '''
        Returns a new Sample with same metadata and the given spectra.
        '''
        return Sample(self.sample_id, spectra, name=self.name, group=self.group,
                      input_file=self.input_file, checksum=self.checksum, validate=False)

    def realigned(self, model):
        '''
        Returns a new Sample with retention times re-expressed by an alignment model.
        Raw retention times are kept in Spectrum.raw_rtime;
        the model is always applied to raw values, so realigning again replaces the previous alignment.

        Parameters
        ----------
        model : alignment.AlignmentModel
            callable mapping raw retention time to aligned retention time.
        '''
        raw = np.array([s.rtime if s.raw_rtime is None else s.raw_rtime for s in self.spectra], dtype=float)
        aligned = model(raw) if raw.size else raw
        spectra = [
            s._replace(rtime=float(rt), raw_rtime=float(r)) for s, rt, r in zip(self.spectra, aligned, raw)
        ]
        return self.with_spectra(spectra)

    def summary(self):
        '''
        Sample record for project.json.
        '''
        return {
            'sample_id': self.sample_id,
            'name': self.name,
            'group': self.group,
            'input_file': self.input_file,
            'md5': self.checksum,
            'number_ms1_scans': len(self.ms1_rtimes),
            'number_ms2_scans': len(self.spectra) - len(self.ms1_rtimes),
            'rt_range': self.rt_range,
        }


class SampleStore:
    '''
    Keyed store of Samples, bounding the number of samples kept in memory.

    In 'memory' mode all samples stay in memory.
    In 'ondisk' mode at most chunk_size samples are materialized;
    the least recently used are pickled to cache_dir and reloaded on access.
    Without a cache_dir, a temporary directory is created on first eviction
    and removed by `cleanup()` or when the store is garbage collected.
    Samples are immutable, thus a pickle stays valid until the key is reassigned.
    '''
    def __init__(self, parameters, cache_dir=None):
        self.database_mode = parameters.get('database_mode', 'memory')
        self.chunk_size = max(1, int(parameters.get('chunk_size', 10)))
        self.cache_dir = cache_dir
        self._finalizer = None
        self.cache = {}
        self.in_memory = []
        self.order = []

    def __len__(self):
        return len(self.order)

    def __contains__(self, key):
        return key in self.cache

    def __iter__(self):
        return iter(list(self.order))

    def __setitem__(self, key, value):
        self.add_key(key, value)
        self.evict()

    def __getitem__(self, key):
        if key not in self.cache:
            raise KeyError(key)
        if key in self.in_memory:
            self.in_memory.remove(key)
            self.in_memory.append(key)
            return self.cache[key]['value']
        value = self.load_from_disk(self.cache[key]['disk'])
        self.cache[key]['value'] = value
        self.in_memory.append(key)
        self.evict(keep=key)
        return value

    def __delitem__(self, key):
        entry = self.cache.pop(key)
        if key in self.in_memory:
            self.in_memory.remove(key)
        self.order.remove(key)
        if entry['disk'] and os.path.exists(entry['disk']):
            os.remove(entry['disk'])

    def ids(self):
        return list(self.order)

    def add_key(self, key, value):
        if key in self.cache:
            old = self.cache[key]['disk']
            if old and os.path.exists(old):
                os.remove(old)
            self.cache[key] = {'value': value, 'disk': None}
            if key in self.in_memory:
                self.in_memory.remove(key)
        else:
            self.order.append(key)
            self.cache[key] = {'value': value, 'disk': None}
        self.in_memory.append(key)

    def evict(self, keep=None):
        '''
        Move least recently used samples to disk until at most chunk_size stay in memory.
        '''
        if self.database_mode != 'ondisk':
            return
        while len(self.in_memory) > self.chunk_size:
            candidates = [k for k in self.in_memory if k != keep]
            k = candidates[0]
            if self.cache[k]['disk'] is None:
                self.cache[k]['disk'] = self.save_to_disk(self._pickle_path(k), self.cache[k]['value'])
            self.cache[k]['value'] = None
            self.in_memory.remove(k)

    def chunks(self):
        '''
        Yield lists of sample ids, chunk_size at a time, in insertion order.
        '''
        for ii in range(0, len(self.order), self.chunk_size):
            yield self.order[ii: ii+self.chunk_size]

    def clear_disk(self):
        '''
        Remove all pickled samples. Samples not in memory are lost.
        '''
        for key in list(self.cache):
            path = self.cache[key]['disk']
            if path and os.path.exists(path):
                os.remove(path)
            self.cache[key]['disk'] = None

    def cleanup(self):
        '''
        Remove the temporary cache directory created by this store, with all pickled samples.
        A cache_dir given by the caller is left to the caller.
        '''
        if self._finalizer is not None:
            self._finalizer()
            for key in self.cache:
                self.cache[key]['disk'] = None
            self.cache_dir, self._finalizer = None, None

    def _pickle_path(self, key):
        if self.cache_dir is None:
            self.cache_dir = tempfile.mkdtemp(prefix='specbank_')
            self._finalizer = weakref.finalize(self, shutil.rmtree, self.cache_dir, ignore_errors=True)
        os.makedirs(self.cache_dir, exist_ok=True)
        return os.path.join(self.cache_dir, "%s.pickle" %str(key).replace(os.sep, '_'))

    @staticmethod
    def save_to_disk(path, data):
        with open(path, 'wb') as fh:
            pickle.dump(data, fh, pickle.HIGHEST_PROTOCOL)
        return path

    @staticmethod
    def load_from_disk(path):
        with open(path, 'rb') as fh:
            data = pickle.load(fh)
        return data
