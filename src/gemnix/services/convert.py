import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..config import ConvertOptions
from ..domain.models import DirectDependency, Gemset, Lockfile
from ..fetching.cache import LocalGemCache
from ..fetching.fetcher import HashFetcher
from ..fetching.nix import NixPrefetcher
from ..fetching.prefetcher import Prefetcher
from ..gemset.assembler import GemsetAssembler
from ..gemset.existing import load_gemset
from ..gemset.nixer import save_gemset
from ..lockfile.gemfile import direct_dependencies_from_lockfile, load_direct_dependencies
from ..lockfile.parser import load_lockfile
from ..ui.progress import ProgressManager

logger = logging.getLogger(__name__)


class ConvertService:
    """turns a Gemfile/Gemfile.lock pair into a gemset.nix."""

    def __init__(
        self,
        options: ConvertOptions,
        prefetcher: Optional[Prefetcher] = None,
        progress_manager: Optional[ProgressManager] = None,
    ):
        self.options = options
        self.progress_manager = progress_manager or ProgressManager(enabled=False)
        self.prefetcher = prefetcher or NixPrefetcher(options.download_cache_dir)
        self.fetcher = HashFetcher(self.prefetcher, LocalGemCache(options.cache_dirs))
        self.assembler = GemsetAssembler(self.fetcher, jobs=options.jobs, progress_manager=self.progress_manager)

    def load_lockfile(self) -> Lockfile:
        if not self.options.lockfile.is_file():
            raise FileNotFoundError(f"missing {self.options.lockfile}")
        return load_lockfile(self.options.lockfile)

    def load_direct_dependencies(self, lockfile: Lockfile) -> List[DirectDependency]:
        if not self.options.eval_gemfile:
            return direct_dependencies_from_lockfile(lockfile)
        with self.progress_manager.spinner("evaluating Gemfile"):
            return load_direct_dependencies(self.options.gemfile, self.options.lockfile, ruby=self.options.ruby)

    def load_cached(self) -> Dict[str, dict]:
        return load_gemset(self.options.gemset)

    def convert(self) -> Gemset:
        """
        build the gemset without writing it.

        raises:
            GemnixError: on any reconciliation, platform or fetch failure
        """
        lockfile = self.load_lockfile()
        direct = self.load_direct_dependencies(lockfile)
        cached = self.load_cached()
        gemset = self.assembler.assemble(direct, lockfile, cached)
        logger.debug("assembled %d gems from %s", len(gemset), lockfile.path)
        return gemset

    def save(self, gemset: Gemset) -> Path:
        save_gemset(gemset.to_nix_data(), self.options.gemset)
        return self.options.gemset

    def run(self) -> Path:
        return self.save(self.convert())
