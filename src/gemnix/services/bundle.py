import logging
import os
import subprocess
from typing import Dict, Mapping, Optional, Sequence

from ..config import BUNDLE, NIX_SHELL, ConvertOptions
from ..domain.errors import CommandError

logger = logging.getLogger(__name__)

# bundler settings that would make `bundle lock` reuse a frozen or vendored setup
STALE_BUNDLE_SETTINGS = ("BUNDLE_PATH", "BUNDLE_FROZEN", "BUNDLE_BIN_PATH")


class BundleService:
    """runs bundler to produce the inputs gemnix converts."""

    def __init__(self, options: ConvertOptions, env: Optional[Mapping[str, str]] = None):
        self.options = options
        self.env: Dict[str, str] = dict(os.environ if env is None else env)
        self.env["BUNDLE_GEMFILE"] = str(options.gemfile)

    def run_command(self, args: Sequence[str], env: Optional[Mapping[str, str]] = None) -> None:
        logger.debug("$ %s", " ".join(args))
        try:
            result = subprocess.run(
                list(args), env=dict(env or self.env), cwd=str(self.options.project_root), check=False
            )
        except FileNotFoundError as e:
            raise CommandError(args, 127, str(e)) from e
        if result.returncode != 0:
            raise CommandError(args, result.returncode)

    def lock_is_stale(self) -> bool:
        lockfile, gemfile = self.options.lockfile, self.options.gemfile
        if not lockfile.is_file():
            return True
        return gemfile.is_file() and gemfile.stat().st_mtime > lockfile.stat().st_mtime

    def lock(self) -> bool:
        """
        regenerate Gemfile.lock if it is missing or older than the Gemfile.

        returns:
            whether bundle lock was run
        """
        if not self.lock_is_stale():
            return False
        env = {key: value for key, value in self.env.items() if key not in STALE_BUNDLE_SETTINGS}
        self.run_command([BUNDLE, "lock", f"--lockfile={self.options.lockfile}"], env=env)
        return True

    def _nix_shell(self, command: str) -> None:
        ruby = self.options.ruby
        self.run_command(
            [NIX_SHELL, "-p", ruby, f"bundler.override {{ ruby = {ruby}; }}", "--command", command]
        )

    def magic(self) -> None:
        """lock and vendor all gems with the requested ruby, inside nix-shell."""
        self._nix_shell(f"bundle lock --lockfile={self.options.lockfile}")
        self._nix_shell(f"bundle pack --all --path {self.options.bundle_pack_path}")
