__version__ = "0.3.1"

from . import errors
from . import records
from . import default_parameters
from . import json_encoder
from . import utils
from . import mass_functions
from . import samples
from . import chromatograms
from . import peaks
from . import correspondence
from . import alignment
from . import gapfill
from . import precursors
from . import selection
from . import inclusion
from . import experiment
from . import workflow
from . import main
