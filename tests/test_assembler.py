"""end-to-end gemset assembly over the sample rails app."""
import hashlib
import shutil
import sys
import tempfile
import threading
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import PrefetchStub
from gemnix.domain.errors import FetchFailedError, UnknownPlatformError, UnresolvedDependencyError
from gemnix.domain.models import DirectDependency, Lockfile, Requirement, ResolvedSpec
from gemnix.fetching.cache import LocalGemCache
from gemnix.fetching.fetcher import HashFetcher
from gemnix.gemset.assembler import GemsetAssembler, cached_sources, group_specs
from gemnix.utils.hash import to_nix_base32


def url_hash(url):
    return to_nix_base32(hashlib.sha256(url.encode()).digest())


@pytest.fixture
def cache_dir():
    temp_dir = Path(tempfile.mkdtemp())
    yield temp_dir
    shutil.rmtree(temp_dir)


def make_assembler(prefetcher, cache_dir, jobs=4):
    return GemsetAssembler(HashFetcher(prefetcher, LocalGemCache([cache_dir])), jobs=jobs)


class TestRailsGemset:
    @pytest.fixture
    def gemset(self, prefetcher, cache_dir, rails_direct, rails_lockfile):
        return make_assembler(prefetcher, cache_dir).assemble(rails_direct, rails_lockfile)

    def test_lockfile_order_is_kept(self, gemset):
        names = gemset.names()
        assert names[:3] == ["apparition", "phony_gem", "addressable"]
        assert names[-1] == "bundler"
        assert len(names) == len(set(names))

    def test_registry_gem(self, gemset):
        rake = gemset["rake"]
        assert rake.version == "13.0.6"
        assert rake.source.type == "gem"
        assert rake.source.remotes == ["https://rubygems.org"]
        assert rake.hash == url_hash("https://rubygems.org/gems/rake-13.0.6.gem")
        assert rake.targets == []

    def test_path_gem(self, gemset):
        phony = gemset["phony_gem"]
        assert phony.version == "0.1.0"
        assert phony.source.type == "path"
        assert phony.source.path == Path("lib/phony_gem")
        assert phony.hash is None

    def test_git_gem(self, gemset):
        apparition = gemset["apparition"]
        assert apparition.source.type == "git"
        assert apparition.source.url == "https://github.com/twalpole/apparition.git"
        assert apparition.source.rev == "ca86be4d54af835d531dbcd2b86e7b2c77f85f34"
        assert apparition.source.fetch_submodules is False
        assert apparition.targets == []
        assert apparition.dependencies == ["capybara", "websocket-driver"]
        assert apparition.groups == ["test"]

    def test_native_only_gem(self, gemset):
        sqlite = gemset["sqlite3"]
        assert sqlite.version == "1.6.1"
        assert sqlite.source is None
        assert [t.target for t in sqlite.targets] == ["arm64-darwin", "x64-mingw-ucrt", "x86_64-darwin", "x86_64-linux"]
        assert [t.target_cpu for t in sqlite.targets] == ["arm64", "x64", "x86_64", "x86_64"]
        assert [t.target_os for t in sqlite.targets] == ["darwin", "mingw", "darwin", "linux"]
        assert all(t.type == "gem" for t in sqlite.targets)
        assert sqlite.targets[3].sha256 == url_hash("https://rubygems.org/gems/sqlite3-1.6.1-x86_64-linux.gem")
        assert sqlite.targets[3].remotes == ["https://rubygems.org"]

    def test_native_gem_dependencies(self, gemset):
        nokogiri = gemset["nokogiri"]
        assert nokogiri.dependencies == ["racc"]
        assert nokogiri.groups == ["default", "test"]
        assert len(nokogiri.targets) == 2

    def test_dependencies_are_names_only(self, gemset):
        assert gemset["rails"].dependencies == ["bundler", "railties"]
        assert gemset["rake"].dependencies == []

    def test_platforms_expand_aliases(self, gemset):
        io_console = gemset["io-console"]
        assert [p["engine"] for p in io_console.platforms] == ["maglev", "mingw", "mswin", "mswin64", "ruby"]
        assert io_console.groups == ["default", "development", "test"]
        assert gemset["rake"].platforms == []

    def test_bundler_sentinel(self, gemset):
        bundler = gemset["bundler"]
        assert bundler.version == "2.4.6"
        assert bundler.source is None
        assert bundler.groups == ["default"]

    def test_each_artifact_fetched_once(self, prefetcher, gemset):
        assert len(prefetcher.urls) == len(set(prefetcher.urls))
        registry_artifacts = len([name for name in gemset.names() if name not in ("apparition", "phony_gem", "bundler")])
        # nokogiri ships two builds and sqlite3 four, each one its own download
        assert len(prefetcher.urls) == registry_artifacts + 1 + 3
        assert len(prefetcher.repos) == 1

    def test_nix_data(self, gemset):
        data = gemset.to_nix_data()
        assert data["apparition"]["source"]["fetchSubmodules"] is False
        assert data["sqlite3"]["targets"][0]["targetCPU"] == "arm64"
        assert "source" not in data["sqlite3"]


class TestAssemblyBehaviour:
    def test_single_job(self, prefetcher, cache_dir, rails_direct, rails_lockfile):
        serial = make_assembler(prefetcher, cache_dir, jobs=1).assemble(rails_direct, rails_lockfile)
        parallel = make_assembler(PrefetchStub(), cache_dir, jobs=8).assemble(rails_direct, rails_lockfile)

        assert serial.to_nix_data() == parallel.to_nix_data()
        assert serial.names() == parallel.names()

    def test_existing_gemset_is_reused(self, prefetcher, cache_dir, rails_direct, rails_lockfile):
        first = make_assembler(prefetcher, cache_dir).assemble(rails_direct, rails_lockfile)

        again = PrefetchStub()
        second = make_assembler(again, cache_dir).assemble(rails_direct, rails_lockfile, cached=first.to_nix_data())

        assert again.urls == []
        assert again.repos == []
        assert second.to_nix_data() == first.to_nix_data()

    def test_stale_entries_are_refetched(self, prefetcher, cache_dir, rails_direct, rails_lockfile):
        cached = make_assembler(prefetcher, cache_dir).assemble(rails_direct, rails_lockfile).to_nix_data()
        cached["rake"]["version"] = "13.0.5"
        cached["apparition"]["source"]["rev"] = "0000000000000000000000000000000000000000"

        again = PrefetchStub()
        make_assembler(again, cache_dir).assemble(rails_direct, rails_lockfile, cached=cached)

        assert again.urls == ["https://rubygems.org/gems/rake-13.0.6.gem"]
        assert len(again.repos) == 1

    def test_fetch_failure_aborts(self, cache_dir, rails_direct, rails_lockfile):
        prefetcher = PrefetchStub(fail_urls={"https://rubygems.org/gems/thor-1.2.1.gem"})

        with pytest.raises(FetchFailedError) as exc_info:
            make_assembler(prefetcher, cache_dir).assemble(rails_direct, rails_lockfile)
        assert exc_info.value.name == "thor"

    def test_failure_waits_for_running_fetches(self, cache_dir):
        class SlowStub(PrefetchStub):
            def __init__(self):
                super().__init__(fail_urls={"https://rubygems.org/gems/rake-13.0.6.gem"})
                self.thor_started = threading.Event()
                self.finished = []

            def fetch_and_hash_url(self, url):
                if "thor" in url:
                    self.thor_started.set()
                    time.sleep(0.2)
                    digest = super().fetch_and_hash_url(url)
                    self.finished.append(url)
                    return digest
                self.thor_started.wait(timeout=5)
                return super().fetch_and_hash_url(url)

        prefetcher = SlowStub()
        lockfile = Lockfile(specs=[
            ResolvedSpec(name="rake", version="13.0.6"),
            ResolvedSpec(name="thor", version="1.2.1"),
        ])

        with pytest.raises(FetchFailedError):
            make_assembler(prefetcher, cache_dir, jobs=2).assemble([], lockfile)

        # the slow download ran to completion before the error surfaced
        assert prefetcher.finished == ["https://rubygems.org/gems/thor-1.2.1.gem"]
        assert not [t for t in threading.enumerate() if t.name.startswith("gemnix-fetch")]

    def test_unknown_platform_fails_before_fetching(self, prefetcher, cache_dir):
        lockfile = Lockfile(specs=[
            ResolvedSpec(name="rake", version="13.0.6"),
            ResolvedSpec(name="oddball", version="1.0", platform="vax-vms"),
        ])

        with pytest.raises(UnknownPlatformError):
            make_assembler(prefetcher, cache_dir).assemble([], lockfile)
        assert prefetcher.urls == []

    def test_unresolved_dependency(self, prefetcher, cache_dir):
        lockfile = Lockfile(
            path="/app/Gemfile.lock",
            specs=[ResolvedSpec(name="rake", version="13.0.6", dependencies=[Requirement(name="ghost")])],
        )

        with pytest.raises(UnresolvedDependencyError) as exc_info:
            make_assembler(prefetcher, cache_dir).assemble([], lockfile)
        assert str(exc_info.value) == "Gem dependency 'ghost' not specified in /app/Gemfile.lock"
        assert prefetcher.urls == []

    def test_empty_lockfile(self, prefetcher, cache_dir):
        gemset = make_assembler(prefetcher, cache_dir).assemble([], Lockfile())
        assert len(gemset) == 0

    def test_bundler_without_bundled_with(self, prefetcher, cache_dir):
        lockfile = Lockfile(specs=[
            ResolvedSpec(name="rails", version="7.0.4.2", dependencies=[Requirement(name="bundler")]),
        ])
        gemset = make_assembler(prefetcher, cache_dir).assemble([DirectDependency(name="rails")], lockfile)

        assert gemset["bundler"].version == ""
        assert gemset.names() == ["rails", "bundler"]


class TestHelpers:
    def test_group_specs(self, rails_lockfile):
        grouped = group_specs(rails_lockfile.specs)
        assert len(grouped["sqlite3"]) == 4
        assert list(grouped)[0] == "apparition"

    def test_cached_sources_ignores_missing_entry(self):
        assert cached_sources([ResolvedSpec(name="rake", version="13.0.6")], None) == {}

    def test_cached_sources_requires_hash(self):
        cached = {"version": "13.0.6", "source": {"type": "gem", "remotes": ["https://rubygems.org"]}}
        assert cached_sources([ResolvedSpec(name="rake", version="13.0.6")], cached) == {}

    def test_cached_native_target(self):
        spec = ResolvedSpec(name="sqlite3", version="1.6.1", platform="x86_64-linux")
        cached = {
            "version": "1.6.1",
            "targets": [
                {"type": "gem", "target": "arm64-darwin", "sha256": "a" * 52},
                {"type": "gem", "target": "x86_64-linux", "remotes": ["https://rubygems.org"], "sha256": "b" * 52},
            ],
        }
        reused = cached_sources([spec], cached)
        assert reused[spec.artifact_key].sha256 == "b" * 52


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
