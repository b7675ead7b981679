import argparse
import os
import json
import time
from functools import partial

import yaml

from specbank import __version__
from .workflow import (
    check_project,
    process_project,
    process_xics,
    read_project_dir,
)
from .default_parameters import PARAMETERS
from .errors import NoSamplesError, ParameterError
from .utils import build_boolean_dict

# -----------------------------------------------------------------------------
# GLOBALS
# -----------------------------------------------------------------------------

booleandict = build_boolean_dict()
SUBCOMMANDS = {
    "process": lambda p, a: _process(p),
    "check": lambda p, a: _check(p),
    "xic": lambda p, a: _xic(p),
}

# -----------------------------------------------------------------------------
# UTILS
# -----------------------------------------------------------------------------

def _debug(msg: str, enabled: bool):
    if enabled:
        print(msg)

def _input_files(params):
    files = read_project_dir(params["input"])
    if not files:
        raise NoSamplesError("No valid mzML files found in the input directory %s" %params["input"])
    return files

def _process(params):
    return process_project(_input_files(params), params)

def _check(params):
    return check_project(_input_files(params), params)

def _xic(params):
    if not params.get("target"):
        raise ParameterError("xic requires --target, a file of m/z values")
    return process_xics(_input_files(params), params)

# -----------------------------------------------------------------------------
# PARAMETER HANDLING
# -----------------------------------------------------------------------------

def _boolean(v):
    if isinstance(v, bool):
        return v
    if v not in booleandict:
        raise ParameterError(f"Not a boolean value: {v}")
    return booleandict[v]

def _peak_width(v):
    if isinstance(v, str):
        v = v.replace('(', '').replace(')', '').split(',')
    try:
        low, high = [float(x) for x in v]
    except (TypeError, ValueError):
        raise ParameterError(f"peak_width must be two numbers 'min,max', got {v}")
    return (low, high)

# Mapping of CLI argument names to post‑processing lambdas (validator/transformer)
SPECIAL_RULES = {
    # boolean-like strings
    "rt_align_on": _boolean,
    "keep_intermediates": _boolean,
    "use_isolation_window": _boolean,
    "gaussian_fit": _boolean,
    "verbose": _boolean,
    "peak_width": _peak_width,
    # numeric fields that must be > 0
    **{k: float for k in (
        "mz_tolerance_ppm",
        "min_intensity_threshold",
        "min_peak_height",
        "signal_noise_ratio",
        "bandwidth",
        "bandwidth_aligned",
        "merge_ppm",
        "precursor_ppm",
        "ms2_link_ppm",
        "selection_fraction",
        "smoothing_span",
    )},
    **{k: int for k in (
        "multicores",
        "chunk_size",
        "min_timepoints",
        "num_lowess_iterations",
    )},
}

CHOICES = {
    "integrate": {1, 2},
    "peak_area": {"auc", "sum"},
    "smooth": {"loess", "linear"},
    "database_mode": {"memory", "ondisk"},
    "xic_aggregate": {"max", "sum"},
}

PATH_VARS = {
    "input": (os.path.isdir, "Input must be a directory."),
    "target": (os.path.isfile, "Target file not found."),
    "manifest": (os.path.isfile, "Manifest file not found."),
    "inclusion_list": (os.path.isfile, "Inclusion list file not found."),
    "outdir": (lambda p: True, ""),  # allow auto-creation
}

FRACTIONS = ("min_fraction", "anchor_min_fraction", "selection_fraction", "merge_min_prop", "smoothing_span")


def validate_parameters(params: dict) -> dict:
    """Check enumerations and ranges of the full parameter dict; raises ParameterError."""
    for key, allowed in CHOICES.items():
        if params.get(key) not in allowed:
            raise ParameterError(f"Invalid {key}: {params.get(key)}, must be one of {sorted(allowed)}")
    params["peak_width"] = _peak_width(params["peak_width"])
    if not 0 < params["peak_width"][0] < params["peak_width"][1]:
        raise ParameterError(f"peak_width must be 0 < min < max, got {params['peak_width']}")
    for key in FRACTIONS:
        if not 0 < params[key] <= 1:
            raise ParameterError(f"{key} must be in (0, 1], got {params[key]}")
    for key in ("bandwidth", "bandwidth_aligned", "mz_tolerance_ppm", "chunk_size"):
        if not params[key] > 0:
            raise ParameterError(f"{key} must be > 0, got {params[key]}")
    return params


def _apply_cli_overrides(params: dict, args, verbose: bool = True) -> dict:
    """Overlay CLI args (non‑None) onto parameter dict with minimal boilerplate."""
    pr = partial(_debug, enabled=verbose)

    for key, val in vars(args).items():
        if val is None or key in ("run", "parameters"):
            continue
        if key in PATH_VARS:
            check, msg = PATH_VARS[key]
            if not check(val):
                raise ParameterError(f"{msg} ({val})")
        # cast / validate
        if key in SPECIAL_RULES:
            caster = SPECIAL_RULES[key]
            try:
                val = caster(val)
            except ValueError as err:
                raise ParameterError(f"Invalid value for {key}: {val} ({err})")
            if isinstance(caster, type) and not val > 0:
                raise ParameterError(f"{key} must be > 0")
        if key in CHOICES and val not in CHOICES[key]:
            raise ParameterError(f"Invalid {key}: {val}")
        pr(f"Setting {key} -> {val}")
        params[key] = val
    return params


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="specbank – LC-MS/MS preprocessing for spectral libraries",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("run", metavar="subcommand", choices=SUBCOMMANDS.keys())

    # simple one‑liners – defaults taken from default_parameters
    simple = {
        "-i --input": dict(),
        "-o --outdir": dict(),
        "-j --project": dict(dest="project_name"),
        "-c --multicores": dict(type=int),
        "--manifest": dict(),
        "--inclusion_list": dict(),
        "--target": dict(),
        "--database_mode": dict(),
        "--chunk_size": dict(type=int),
        "--ppm": dict(dest="mz_tolerance_ppm", type=float),
        "--min_intensity_threshold": dict(type=float),
        "--min_timepoints": dict(type=int),
        "--min_peak_height": dict(type=float),
        "--peak_width": dict(),
        "--integrate": dict(type=int),
        "--signal_noise_ratio": dict(type=float),
        "--peak_area": dict(),
        "--gaussian_fit": dict(),
        "--bandwidth": dict(type=float),
        "--bandwidth_aligned": dict(type=float),
        "--rt_align_on": dict(),
        "--smooth": dict(),
        "--smoothing_span": dict(type=float),
        "--num_lowess_iterations": dict(type=int),
        "--precursor_ppm": dict(type=float),
        "--use_isolation_window": dict(),
        "--ms2_link_ppm": dict(type=float),
        "--selection_fraction": dict(type=float),
        "--xic_aggregate": dict(),
        "--keep_intermediates": dict(),
        "--verbose": dict(),
    }

    for flags, kw in simple.items():
        flag_list = flags.split()
        parser.add_argument(*flag_list, **kw)

    parser.add_argument("-p", "--parameters", help="YAML/JSON parameter file")
    parser.add_argument("-v", "--version", action="version", version=__version__)

    return parser


def load_parameters(args) -> dict:
    """Defaults, overlaid by the parameter file, overlaid by the command line."""
    # clone default parameters so we don't mutate the import
    params = PARAMETERS.copy()

    # stamp
    params.update({"specbank_version": __version__, "timestamp": time.strftime("%Y%m%d-%H%M%S")})

    # parameter file overlay (takes priority over defaults)
    if args.parameters:
        with open(args.parameters) as fh:
            content = fh.read()
        try:
            params.update(yaml.safe_load(content) or {})
        except yaml.YAMLError:
            params.update(json.loads(content))

    # CLI overrides (highest priority)
    params = _apply_cli_overrides(params, args, verbose=_boolean(params.get("verbose", True)))
    return validate_parameters(params)


# -----------------------------------------------------------------------------
# MAIN CONTROL FLOW
# -----------------------------------------------------------------------------

def main(argv=None):
    print(f"\n\n~~~~~~~ Hello from specbank ({__version__}) ~~~~~~~~~\n")

    args = _build_parser().parse_args(argv)
    params = load_parameters(args)

    # launch requested sub‑command
    return SUBCOMMANDS[args.run](params, args)


# -----------------------------------------------------------------------------
# ENTRY POINT
# -----------------------------------------------------------------------------

if __name__ == "__main__":
    main()
