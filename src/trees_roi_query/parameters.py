"""
Parameter configuration for ROI queries.

Defaults live in QUERY_PARAMS. Each layer below overrides the previous one:
    defaults < QUERY_* environment variables < config file < --param key=value

    QUERY_WORKERS=8 trees-roi-query --catalog tiles/ --plots plots.csv
    trees-roi-query --config site_a.py --param timeout=600 ...

A config file is a Python module defining QUERY_PARAMS (a partial dictionary).
The resulting dictionary is turned into a SchedulerConfig by the caller; the
engine itself never reads it as process-wide state.
"""

import importlib.util
import os
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


QUERY_PARAMS = {
    'workers': 4,                 # Parallel extraction workers
    'serial_threshold': 2,        # Batches of this many queries or fewer run serially
    'executor': 'process',        # 'process' or 'thread'
    'timeout': None,              # Seconds before pending queries are cancelled
    'progress': False,            # One progress line per completed query
    'verbose': True,              # [catalog]/[queries]/[scheduler] diagnostics
    'chunk_size': 1_000_000,      # Points per laspy chunk
    'index_threshold': 256,       # Tile count above which an STRtree is used
    'pattern': '*.la[sz]',        # Glob for directory catalogs
}

ENV_PREFIX = 'QUERY_'

_LITERALS = {
    'true': True, 'yes': True,
    'false': False, 'no': False,
    'none': None, 'null': None, '': None,
}


def _parse_value(text: str) -> Any:
    """Interpret a command line / environment string as bool, None, int, float or str."""
    lowered = text.strip().lower()
    if lowered in _LITERALS:
        return _LITERALS[lowered]
    for cast in (int, float):
        try:
            return cast(text)
        except ValueError:
            continue
    return text.strip()


def _check_names(params: Mapping[str, Any], origin: str) -> None:
    unknown = sorted(set(params) - set(QUERY_PARAMS))
    if unknown:
        raise ValueError(f"Unknown parameter(s) in {origin}: {', '.join(unknown)}")


def load_params_from_file(config_file: Path) -> Dict[str, Any]:
    """Read QUERY_PARAMS from a Python config file (empty if it defines none)."""
    config_file = Path(config_file)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file}")

    module_spec = importlib.util.spec_from_file_location("query_config", config_file)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)

    params = dict(getattr(module, 'QUERY_PARAMS', {}))
    _check_names(params, str(config_file))
    return params


def load_params_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Collect QUERY_* environment variables (QUERY_WORKERS=8 -> workers=8).

    Variables that do not name a known parameter are reported and ignored.
    """
    if environ is None:
        environ = os.environ

    params = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name not in QUERY_PARAMS:
            print(f"[parameters] ignoring unknown environment variable {key}", file=sys.stderr)
            continue
        params[name] = _parse_value(value)
    return params


def parse_param_override(param_str: str) -> Tuple[str, Any]:
    """
    Split "name=value" (optionally "QUERY.name=value") into (name, parsed value).

    Raises:
        ValueError: on a missing '=', a foreign category, or an unknown name
    """
    key, sep, value = param_str.partition('=')
    if not sep:
        raise ValueError(f"Invalid parameter format: {param_str}. Expected format: param=value")

    category, dot, name = key.strip().rpartition('.')
    if dot and category.upper() not in ('QUERY', 'QUERY_PARAMS'):
        raise ValueError(f"Unknown parameter category: {category}")

    _check_names({name: None}, f"--param {param_str}")
    return name, _parse_value(value)


def load_params(
    config_file: Optional[Path] = None,
    param_overrides: Optional[Iterable[str]] = None,
    use_env: bool = True,
) -> Dict[str, Any]:
    """Merge defaults, environment, config file and CLI overrides (in that order)."""
    params = dict(QUERY_PARAMS)
    if use_env:
        params.update(load_params_from_env())
    if config_file:
        params.update(load_params_from_file(config_file))
    for override in param_overrides or ():
        name, value = parse_param_override(override)
        params[name] = value
    return params


def print_params(params: Dict[str, Any]):
    print("=" * 60)
    print("Query Parameters")
    print("=" * 60)
    width = max(len(k) for k in params)
    for key in sorted(params):
        marker = '' if params[key] == QUERY_PARAMS.get(key) else '  (overridden)'
        print(f"  {key:<{width}} = {params[key]!r}{marker}")
    print("=" * 60)


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Show the effective query parameters")
    parser.add_argument("--config", type=Path, help="Config file defining QUERY_PARAMS")
    parser.add_argument("--param", action="append", help="Parameter override (param=value)")
    parser.add_argument("--no-env", action="store_true", help="Ignore QUERY_* environment variables")
    args = parser.parse_args()

    print_params(load_params(config_file=args.config, param_overrides=args.param, use_env=not args.no_env))
