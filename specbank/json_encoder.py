import json
import numpy as np

class NpEncoder(json.JSONEncoder):
    '''
    To handle numpy data types in JSON, using
    Jie Young's solution at StackOverflow:
    https://stackoverflow.com/questions/50916422/python-typeerror-object-of-type-int64-is-not-json-serializable
    '''
    def default(self, obj):
        '''
        This function converts obj into something that can be serialized by JSON, 
        for numpy datatypes and sets that have no native JSON representation.

        Parameters
        ----------
        obj: np.integer or np.floating or np.bool_ or np.ndarray or set or other serializable object
            np.integer -> int, np.floating -> float, np.bool_ -> bool, 
            np.ndarray -> list, set -> sorted list; else, the object
            is converted to its default serialization representation.
        '''
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, (set, frozenset)):
            return sorted(obj, key=str)
        return super(NpEncoder, self).default(obj)
