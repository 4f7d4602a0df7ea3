import logging
from typing import Dict, Iterator, Optional, Sequence

from ..domain.errors import UnresolvedDependencyError
from ..domain.models import BUNDLER, DEFAULT_GROUP, DirectDependency, ReconciledEntry, ResolvedSpec

logger = logging.getLogger(__name__)


class Reconciler:
    """
    propagates groups and platforms from gems to everything they depend on.

    every pass walks all dependency edges of the resolved specs; an edge
    widens its target entry to the owner's groups (minus "default") and
    platforms. passes repeat until one makes no change. sets only ever grow
    and are bounded by the declared values, so the loop always terminates,
    cycles in the resolved graph included.
    """

    def __init__(
        self,
        direct: Sequence[DirectDependency],
        specs: Sequence[ResolvedSpec],
        lockfile_path: str = "Gemfile.lock",
        bundler_version: Optional[str] = None,
    ):
        self.direct = list(direct)
        self.specs = list(specs)
        self.lockfile_path = lockfile_path
        self.bundler_version = bundler_version

    def seed(self) -> Dict[str, ReconciledEntry]:
        entries: Dict[str, ReconciledEntry] = {}
        for dep in self.direct:
            entries[dep.name] = dep
        for spec in self.specs:
            if spec.name not in entries:
                entries[spec.name] = ReconciledEntry(name=spec.name)
        return entries

    def passes(self) -> Iterator[Dict[str, ReconciledEntry]]:
        """
        run the fixed-point iteration, yielding a snapshot after each pass.

        the last snapshot yielded is the result; it is the first pass that
        changed nothing.

        raises:
            UnresolvedDependencyError: if an edge names an unknown gem
        """
        entries = self.seed()
        changed = True
        while changed:
            changed = self._run_pass(entries)
            yield dict(entries)

    def reconcile(self) -> Dict[str, ReconciledEntry]:
        result = {}
        count = 0
        for result in self.passes():
            count += 1
        logger.debug("reconciled %d entries in %d passes", len(result), count)
        return result

    def _run_pass(self, entries: Dict[str, ReconciledEntry]) -> bool:
        changed = False
        for spec in self.specs:
            for dep in spec.dependencies:
                # re-read the owner: an earlier edge in this pass may have widened it
                owner = entries[spec.name]
                target = entries.get(dep.name)
                if target is None:
                    if dep.name != BUNDLER:
                        raise UnresolvedDependencyError(dep.name, self.lockfile_path)
                    target = ReconciledEntry(name=BUNDLER, requirement=self.bundler_version)
                    entries[BUNDLER] = target
                    changed = True

                groups = (owner.groups - {DEFAULT_GROUP}) | target.groups
                platforms = owner.platforms | target.platforms
                if groups != target.groups or platforms != target.platforms:
                    entries[dep.name] = target.model_copy(
                        update={"groups": frozenset(groups), "platforms": frozenset(platforms)}
                    )
                    changed = True
        return changed


def reconcile(
    direct: Sequence[DirectDependency],
    specs: Sequence[ResolvedSpec],
    lockfile_path: str = "Gemfile.lock",
    bundler_version: Optional[str] = None,
) -> Dict[str, ReconciledEntry]:
    """merge visibility of direct dependencies into every resolved gem."""
    return Reconciler(direct, specs, lockfile_path, bundler_version).reconcile()
