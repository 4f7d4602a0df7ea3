import logging
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Dict, Hashable, List, Optional, Tuple, TypeVar

import httpx

from ..config import DEFAULT_REMOTE
from ..domain.errors import FetchFailedError, GemnixError
from ..domain.models import (
    GemSourceDescriptor,
    GitSourceDescriptor,
    PathSourceDescriptor,
    ResolvedSpec,
    SourceDescriptor,
)
from ..utils.hash import sha256_file
from .cache import LocalGemCache
from .prefetcher import Prefetcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

FETCH_ERRORS = (httpx.HTTPError, OSError, ValueError, GemnixError)


class HashFetcher:
    """
    turns resolved specs into source descriptors carrying a content hash.

    registry gems are hashed from the vendored cache when possible and
    downloaded otherwise. remote fetches are memoized per artifact for the
    lifetime of the fetcher, and safe to call from several threads.
    """

    def __init__(self, prefetcher: Prefetcher, cache: LocalGemCache):
        self.prefetcher = prefetcher
        self.cache = cache
        self._lock = threading.Lock()
        self._fetches: Dict[Hashable, Future] = {}

    def _memoized(self, key: Hashable, fetch: Callable[[], T]) -> T:
        with self._lock:
            future = self._fetches.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._fetches[key] = future
        if owner:
            try:
                future.set_result(fetch())
            except BaseException as e:
                future.set_exception(e)
        return future.result()

    def fetch_local_hash(self, spec: ResolvedSpec) -> Optional[str]:
        """hash of the vendored .gem for a spec, without touching the network."""
        path = self.cache.find_gem(spec)
        if path is None:
            return None
        try:
            sha256 = sha256_file(path)
        except OSError as e:
            logger.debug("could not read %s: %s", path, e)
            return None
        logger.debug("found %s in local cache at %s", spec.full_name, path)
        return sha256

    def fetch_remote_hash(self, spec: ResolvedSpec) -> Tuple[str, str]:
        """
        download a registry gem and hash it, at most once per artifact.

        returns:
            (remote the gem was found on, sha256)

        raises:
            FetchFailedError: if no remote serves the gem
        """
        return self._memoized(("gem",) + spec.artifact_key, lambda: self._fetch_from_remotes(spec))

    def _fetch_from_remotes(self, spec: ResolvedSpec) -> Tuple[str, str]:
        last_error: Optional[BaseException] = None
        for remote in self.remotes_for(spec):
            url = f"{remote}/gems/{spec.full_name}.gem"
            try:
                return remote, self.prefetcher.fetch_and_hash_url(url)
            except FETCH_ERRORS as e:
                logger.warning("ignoring error during fetching %s: %s", url, e)
                last_error = e
        raise FetchFailedError(spec.name, spec.version, "registry", last_error)

    @staticmethod
    def remotes_for(spec: ResolvedSpec) -> List[str]:
        remotes = [remote.rstrip("/") for remote in getattr(spec.source, "remotes", [])]
        return remotes or [DEFAULT_REMOTE]

    def fetch_source(self, spec: ResolvedSpec) -> SourceDescriptor:
        """
        describe where a spec comes from, including its content hash.

        raises:
            FetchFailedError: if the hash could not be obtained
        """
        source = spec.source
        if source.kind == "registry":
            sha256 = self.fetch_local_hash(spec)
            remotes = self.remotes_for(spec)
            if sha256 is None:
                remote, sha256 = self.fetch_remote_hash(spec)
                remotes = [remote]
            logger.info("%s => %s.gem", sha256, spec.full_name)
            return GemSourceDescriptor(remotes=remotes, sha256=sha256)

        if source.kind == "git":
            key = ("git", source.uri, source.revision, source.submodules)
            try:
                repo = self._memoized(
                    key,
                    lambda: self.prefetcher.fetch_and_hash_repo(source.uri, source.revision, source.submodules),
                )
            except FETCH_ERRORS as e:
                raise FetchFailedError(spec.name, spec.version, "git", e) from e
            logger.info("%s => %s", repo.sha256, source.uri)
            return GitSourceDescriptor(
                url=source.uri,
                rev=source.revision,
                sha256=repo.sha256,
                fetch_submodules=source.submodules,
            )

        if source.kind == "path":
            return PathSourceDescriptor(path=Path(source.path))

        raise ValueError(f"unknown source kind: {source.kind}")

    def fetch_hash(self, spec: ResolvedSpec) -> Optional[str]:
        """content hash of a spec; None for path sources, which are not verified."""
        return getattr(self.fetch_source(spec), "sha256", None)
