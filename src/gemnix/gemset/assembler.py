import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import TypeAdapter, ValidationError

from ..domain.models import (
    BUNDLER,
    DirectDependency,
    Gemset,
    Lockfile,
    PackageDescriptor,
    ReconciledEntry,
    ResolvedSpec,
    SourceDescriptor,
    TargetDescriptor,
)
from ..fetching.fetcher import HashFetcher
from ..platforms.aliases import expand_platform_aliases
from ..platforms.normalizer import normalize_targets
from ..resolution.reconciler import reconcile
from ..ui.progress import ProgressManager

logger = logging.getLogger(__name__)

ArtifactKey = Tuple[str, str, str]

_source_adapter = TypeAdapter(SourceDescriptor)


def group_specs(specs: Sequence[ResolvedSpec]) -> Dict[str, List[ResolvedSpec]]:
    """specs by name, in order of first appearance in the lockfile."""
    grouped: Dict[str, List[ResolvedSpec]] = {}
    for spec in specs:
        grouped.setdefault(spec.name, []).append(spec)
    return grouped


def cached_sources(specs: Sequence[ResolvedSpec], cached: Optional[Mapping]) -> Dict[ArtifactKey, SourceDescriptor]:
    """
    sources recorded in an existing gemset entry that are still valid.

    a registry gem is reused when its version is unchanged, a git gem when
    its revision is unchanged. path gems cost nothing and are never reused.
    """
    if not cached or cached.get("version") is None:
        return {}

    reused: Dict[ArtifactKey, SourceDescriptor] = {}
    for spec in specs:
        if cached["version"] != spec.version:
            continue

        if spec.is_native:
            for target in cached.get("targets") or []:
                if target.get("target") == spec.platform and target.get("sha256"):
                    reused[spec.artifact_key] = _source_adapter.validate_python(
                        {"type": "gem", "remotes": target.get("remotes", []), "sha256": target["sha256"]}
                    )
            continue

        source = cached.get("source") or {}
        if not source.get("sha256"):
            continue
        kind = spec.source.kind
        unchanged = (kind == "registry" and source.get("type") == "gem") or (
            kind == "git" and source.get("type") == "git" and source.get("rev") == spec.source.revision
        )
        if not unchanged:
            continue
        try:
            reused[spec.artifact_key] = _source_adapter.validate_python(source)
        except ValidationError as e:
            logger.debug("not reusing cached source of %s: %s", spec.full_name, e)
    return reused


class GemsetAssembler:
    """
    builds the gemset: reconciles visibility, normalizes targets, fetches hashes.

    remote fetches of independent gems run concurrently on a thread pool
    bounded by `jobs`. any error aborts the whole conversion, so a gemset is
    either complete or not produced at all.
    """

    def __init__(self, fetcher: HashFetcher, jobs: int = 8, progress_manager: Optional[ProgressManager] = None):
        self.fetcher = fetcher
        self.jobs = jobs
        self.progress_manager = progress_manager or ProgressManager(enabled=False)

    def assemble(
        self,
        direct: Sequence[DirectDependency],
        lockfile: Lockfile,
        cached: Optional[Mapping[str, Mapping]] = None,
    ) -> Gemset:
        return asyncio.run(self.assemble_async(direct, lockfile, cached))

    async def assemble_async(
        self,
        direct: Sequence[DirectDependency],
        lockfile: Lockfile,
        cached: Optional[Mapping[str, Mapping]] = None,
    ) -> Gemset:
        cached = cached or {}
        entries = reconcile(direct, lockfile.specs, lockfile.path, lockfile.bundler_version)
        grouped = group_specs(lockfile.specs)

        # normalize every platform up front so unknown ones fail before any download
        targets = {spec.artifact_key: normalize_targets(spec) for spec in lockfile.specs}

        sources: Dict[ArtifactKey, SourceDescriptor] = {}
        pending: List[ResolvedSpec] = []
        for name, specs in grouped.items():
            reused = cached_sources(specs, cached.get(name))
            sources.update(reused)
            pending.extend(spec for spec in specs if spec.artifact_key not in reused)
        if sources:
            logger.debug("reusing %d hashes from the existing gemset", len(sources))

        sources.update(await self._fetch_all(pending))

        gemset = Gemset()
        for name, specs in grouped.items():
            gemset.packages[name] = self.describe(specs, entries[name], sources, targets)

        bundler = entries.get(BUNDLER)
        if bundler is not None and BUNDLER not in gemset:
            # provided by the host ruby, so nothing to fetch
            gemset.packages[BUNDLER] = PackageDescriptor(
                version=lockfile.bundler_version or bundler.requirement or "",
                groups=sorted(bundler.groups),
                platforms=expand_platform_aliases(bundler.platforms),
            )
        return gemset

    async def _fetch_all(self, specs: Sequence[ResolvedSpec]) -> Dict[ArtifactKey, SourceDescriptor]:
        if not specs:
            return {}

        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(self.jobs)
        executor = ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="gemnix-fetch")

        with self.progress_manager.task_progress("fetching hashes", total=len(specs)) as (progress, task_id):

            async def fetch_one(spec: ResolvedSpec):
                async with semaphore:
                    source = await loop.run_in_executor(executor, self.fetcher.fetch_source, spec)
                if task_id is not None:
                    progress.advance(task_id, 1)
                return spec.artifact_key, source

            tasks = [asyncio.ensure_future(fetch_one(spec)) for spec in specs]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                raise
            finally:
                executor.shutdown(wait=True, cancel_futures=True)

        return dict(results)

    def describe(
        self,
        specs: Sequence[ResolvedSpec],
        entry: ReconciledEntry,
        sources: Mapping[ArtifactKey, SourceDescriptor],
        targets: Mapping[ArtifactKey, List[TargetDescriptor]],
    ) -> PackageDescriptor:
        portable = next((spec for spec in specs if not spec.is_native), None)
        version = (portable or specs[0]).version

        described_targets = []
        for spec in specs:
            fetched = sources[spec.artifact_key]
            for target in targets.get(spec.artifact_key, []):
                described_targets.append(
                    target.model_copy(
                        update={
                            "remotes": list(getattr(fetched, "remotes", [])),
                            "sha256": getattr(fetched, "sha256", None),
                        }
                    )
                )

        return PackageDescriptor(
            version=version,
            source=sources[portable.artifact_key] if portable is not None else None,
            dependencies=sorted({dep.name for spec in specs for dep in spec.dependencies}),
            groups=sorted(entry.groups),
            platforms=expand_platform_aliases(entry.platforms),
            targets=described_targets,
        )
