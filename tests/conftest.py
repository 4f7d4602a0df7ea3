"""shared fixtures: the sample rails app and a prefetcher that never touches the network."""
import hashlib
import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from gemnix.domain.models import DirectDependency
from gemnix.fetching.prefetcher import Prefetcher, RepoHash
from gemnix.lockfile.parser import load_lockfile
from gemnix.utils.hash import to_nix_base32

DATA_DIR = Path(__file__).parent / "data"


class PrefetchStub(Prefetcher):
    """hashes the request itself instead of downloading anything."""

    def __init__(self, fail_urls=()):
        self.urls = []
        self.repos = []
        self.fail_urls = set(fail_urls)
        self._lock = threading.Lock()

    def fetch_and_hash_url(self, url: str) -> str:
        with self._lock:
            self.urls.append(url)
        if url in self.fail_urls:
            raise OSError(f"connection refused: {url}")
        return to_nix_base32(hashlib.sha256(url.encode()).digest())

    def fetch_and_hash_repo(self, url: str, rev: str, fetch_submodules: bool = False) -> RepoHash:
        with self._lock:
            self.repos.append((url, rev, fetch_submodules))
        digest = hashlib.sha256(f"{url}@{rev}".encode()).digest()
        return RepoHash(url=url, rev=rev, sha256=to_nix_base32(digest), fetch_submodules=fetch_submodules)


@pytest.fixture
def prefetcher():
    return PrefetchStub()


@pytest.fixture
def rails_lockfile():
    return load_lockfile(DATA_DIR / "Gemfile.lock")


@pytest.fixture
def rails_direct():
    """what bundler reports for tests/data/Gemfile."""
    return [
        DirectDependency(name="rails", requirement="~> 7.0.4"),
        DirectDependency(name="sqlite3", requirement="~> 1.4"),
        DirectDependency(name="tzinfo-data", platforms={"mingw", "mswin", "x64_mingw", "jruby"}),
        DirectDependency(name="phony_gem"),
        DirectDependency(name="debug", groups={"development", "test"}, platforms={"mri", "windows"}),
        DirectDependency(name="capybara", groups={"test"}),
        DirectDependency(name="apparition", groups={"test"}),
    ]
