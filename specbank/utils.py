# specbank utils is a catchall for reused code that doesn't fit into a specific module.

import multiprocessing as mp
import os
import hashlib

import tqdm


def build_boolean_dict():
    return {
        'T': True, 
        'F': False, 
        1: True, 
        0: False, 
        'True': True, 
        'False': False, 
        'TRUE': True, 
        'FALSE': False, 
        'true': True, 
        'false': False
    }

def checksum_file(file, chunksize=16384):
    assert os.path.isfile(file)
    hash_md5 = hashlib.md5()
    with open(file, 'rb') as f:
        for chunk in iter(lambda: f.read(chunksize), b''):
            hash_md5.update(chunk)
    return hash_md5.hexdigest()

def chunked(list_items, chunk_size):
    '''
    Split list_items into consecutive lists of at most chunk_size items.
    '''
    chunk_size = max(1, int(chunk_size))
    return [list_items[ii: ii+chunk_size] for ii in range(0, len(list_items), chunk_size)]

def bulk_process(command, arguments, multicores=4, desc="processing..."):
    '''
    Run command on each of arguments, via a multiprocessing pool 
    of multicores workers, or sequentially if multicores <= 1.
    Results are returned in the order of arguments.

    Parameters
    ----------
    command : function
        a picklable, module level function taking one argument.
    arguments : list
        one item per job.
    multicores : int, optional, default: 4
        number of worker processes.
    desc : str
        label of the progress bar.
    '''
    if not arguments:
        raise ValueError("No Arguments Provided")
    if multicores is None or multicores <= 1 or len(arguments) == 1:
        return [command(x) for x in tqdm.tqdm(arguments, total=len(arguments), desc=desc)]
    with mp.Pool(min(multicores, len(arguments))) as client:
        pbar = tqdm.tqdm(client.imap(command, arguments), total=len(arguments), desc=desc)
        return [x for x in pbar]
