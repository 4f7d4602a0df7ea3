import json
import logging
import subprocess
from pathlib import Path
from typing import Dict

from ..config import NIX_INSTANTIATE
from .nixer import nix_string

logger = logging.getLogger(__name__)

# path sources are dropped before conversion to json; nix would copy them to the store
EVAL_GEMSET = (
    "builtins.mapAttrs (name: gem: (removeAttrs gem [ \"source\" ]) // "
    "(if !(gem ? source) || (gem.source.type or \"\") == \"path\" then { } "
    "else { inherit (gem) source; })) (import {path})"
)


def load_gemset(path: Path) -> Dict[str, dict]:
    """
    read a previously written gemset so unchanged gems need no refetch.

    .json gemsets are read directly, anything else is evaluated with
    nix-instantiate. a missing or unreadable gemset yields an empty mapping.
    """
    if not path.is_file():
        return {}

    if path.suffix == ".json":
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("ignoring unreadable gemset %s: %s", path, e)
            return {}

    expr = EVAL_GEMSET.replace("{path}", nix_string(str(path.resolve())))
    args = [NIX_INSTANTIATE, "--eval", "--strict", "--json", "-E", expr]
    try:
        result = subprocess.run(args, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        logger.warning("cannot read existing gemset without %s: %s", NIX_INSTANTIATE, e)
        return {}
    if result.returncode != 0:
        logger.warning("ignoring existing gemset %s: %s", path, result.stderr.strip())
        return {}

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        logger.warning("ignoring existing gemset %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}
