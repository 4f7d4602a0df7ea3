import json
import logging
import os
import subprocess
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import ValidationError

from ..domain.errors import GemfileLoadError
from ..domain.models import DirectDependency, Lockfile

logger = logging.getLogger(__name__)

# a Gemfile is ruby code; only bundler can tell us its groups and platforms
DUMP_DEPENDENCIES = """
require "bundler"
require "json"
definition = Bundler::Definition.build(ARGV[0], ARGV[1], false)
deps = definition.dependencies.map do |dep|
  {
    name: dep.name,
    requirement: dep.requirement.to_s,
    groups: dep.groups.map(&:to_s),
    platforms: dep.platforms.map(&:to_s),
  }
end
puts JSON.generate(deps)
"""


def load_direct_dependencies(
    gemfile: Path,
    lockfile: Path,
    ruby: str = "ruby",
    env: Optional[Mapping[str, str]] = None,
) -> List[DirectDependency]:
    """
    evaluate a Gemfile with bundler and return its declared dependencies.

    raises:
        GemfileLoadError: if ruby is missing or the Gemfile does not evaluate
    """
    child_env = dict(os.environ if env is None else env, BUNDLE_GEMFILE=str(gemfile))
    args = [ruby, "-e", DUMP_DEPENDENCIES, str(gemfile), str(lockfile)]
    try:
        result = subprocess.run(
            args, capture_output=True, text=True, env=child_env, cwd=str(gemfile.parent), check=False
        )
    except FileNotFoundError as e:
        raise GemfileLoadError(f"could not run {ruby}: {e}") from e

    if result.returncode != 0:
        raise GemfileLoadError(f"failed to evaluate {gemfile}:\n{result.stderr.strip()}")

    try:
        deps = [DirectDependency(**item) for item in json.loads(result.stdout.strip().splitlines()[-1])]
    except (IndexError, json.JSONDecodeError, TypeError, ValidationError) as e:
        raise GemfileLoadError(f"unexpected output while evaluating {gemfile}: {e}") from e

    logger.debug("loaded %d direct dependencies from %s", len(deps), gemfile)
    return deps


def direct_dependencies_from_lockfile(lockfile: Lockfile) -> List[DirectDependency]:
    """
    direct dependencies as recorded in the lockfile's DEPENDENCIES section.

    the lockfile does not record groups or platforms, so every gem lands in
    the default group on all platforms.
    """
    return [
        DirectDependency(name=req.name, requirement=req.constraint or None)
        for req in lockfile.dependencies
    ]
