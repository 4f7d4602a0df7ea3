import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

NIX_INSTANTIATE = "nix-instantiate"
NIX_PREFETCH_GIT = "nix-prefetch-git"
NIX_SHELL = "nix-shell"
BUNDLE = "bundle"

DEFAULT_REMOTE = "https://rubygems.org"


def default_download_cache_dir() -> Path:
    """where downloaded .gem files are kept between runs."""
    base = os.environ.get("XDG_CACHE_HOME")
    if base:
        return Path(base) / "gemnix"
    return Path.home() / ".cache" / "gemnix"


class ConvertOptions(BaseModel):
    """
    everything a conversion needs, passed explicitly to each component.

    relative paths are resolved against `project_root`.
    """
    project_root: Path = Field(default_factory=Path.cwd)
    gemfile: Optional[Path] = None
    lockfile: Optional[Path] = None
    gemset: Optional[Path] = None
    bundle_pack_path: Path = Path("vendor/bundle")
    cache_dirs: List[Path] = Field(default_factory=list)
    download_cache_dir: Path = Field(default_factory=default_download_cache_dir)
    ruby: str = "ruby"
    jobs: int = Field(default=8, ge=1)
    quiet: bool = False
    eval_gemfile: bool = True

    @model_validator(mode="after")
    def _resolve_paths(self) -> "ConvertOptions":
        root = self.project_root
        self.gemfile = root / (self.gemfile or "Gemfile")
        self.lockfile = root / (self.lockfile or "Gemfile.lock")
        self.gemset = root / (self.gemset or "gemset.nix")
        self.bundle_pack_path = root / self.bundle_pack_path
        if not self.cache_dirs:
            self.cache_dirs = [root / "vendor" / "cache", self.bundle_pack_path]
        else:
            self.cache_dirs = [root / path for path in self.cache_dirs]
        return self
