"""test suite for Gemfile evaluation."""
import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import DATA_DIR
from gemnix.domain.errors import GemfileLoadError
from gemnix.lockfile.gemfile import direct_dependencies_from_lockfile, load_direct_dependencies

GEMFILE = DATA_DIR / "Gemfile"
LOCKFILE = DATA_DIR / "Gemfile.lock"


def completed(stdout="", returncode=0, stderr=""):
    result = MagicMock()
    result.stdout = stdout
    result.stderr = stderr
    result.returncode = returncode
    return result


class TestLoadDirectDependencies:
    def test_parses_bundler_output(self):
        output = json.dumps([
            {"name": "rails", "requirement": "~> 7.0.4", "groups": ["default"], "platforms": []},
            {"name": "debug", "requirement": ">= 0", "groups": ["development", "test"], "platforms": ["mri", "windows"]},
        ])
        with patch("gemnix.lockfile.gemfile.subprocess.run", return_value=completed(output + "\n")) as run:
            deps = load_direct_dependencies(GEMFILE, LOCKFILE, env={"PATH": "/bin"})

        assert [d.name for d in deps] == ["rails", "debug"]
        assert deps[1].groups == frozenset({"development", "test"})
        assert deps[1].platforms == frozenset({"mri", "windows"})

        args = run.call_args.args[0]
        assert args[0] == "ruby"
        assert args[-2:] == [str(GEMFILE), str(LOCKFILE)]
        assert run.call_args.kwargs["env"]["BUNDLE_GEMFILE"] == str(GEMFILE)
        assert run.call_args.kwargs["cwd"] == str(DATA_DIR)

    def test_warnings_before_json_are_ignored(self):
        output = "Your Gemfile lists the gem rake twice\n" + json.dumps([{"name": "rake"}])
        with patch("gemnix.lockfile.gemfile.subprocess.run", return_value=completed(output)):
            deps = load_direct_dependencies(GEMFILE, LOCKFILE, env={})

        assert deps[0].groups == frozenset({"default"})

    def test_custom_ruby(self):
        with patch("gemnix.lockfile.gemfile.subprocess.run", return_value=completed("[]")) as run:
            load_direct_dependencies(GEMFILE, LOCKFILE, ruby="/opt/ruby/bin/ruby", env={})
        assert run.call_args.args[0][0] == "/opt/ruby/bin/ruby"

    def test_evaluation_error(self):
        with patch("gemnix.lockfile.gemfile.subprocess.run", return_value=completed(returncode=1, stderr="Gemfile syntax error")):
            with pytest.raises(GemfileLoadError) as exc_info:
                load_direct_dependencies(GEMFILE, LOCKFILE, env={})
        assert "Gemfile syntax error" in str(exc_info.value)

    def test_ruby_missing(self):
        with patch("gemnix.lockfile.gemfile.subprocess.run", side_effect=FileNotFoundError("ruby")):
            with pytest.raises(GemfileLoadError):
                load_direct_dependencies(GEMFILE, LOCKFILE, env={})

    def test_unexpected_output(self):
        with patch("gemnix.lockfile.gemfile.subprocess.run", return_value=completed("")):
            with pytest.raises(GemfileLoadError):
                load_direct_dependencies(GEMFILE, LOCKFILE, env={})


class TestLockfileFallback:
    def test_from_dependencies_section(self, rails_lockfile):
        deps = {d.name: d for d in direct_dependencies_from_lockfile(rails_lockfile)}

        assert set(deps) == {"apparition", "capybara", "debug", "phony_gem", "rails", "sqlite3", "tzinfo-data"}
        assert deps["rails"].requirement == "~> 7.0.4"
        assert deps["capybara"].requirement is None
        assert all(d.groups == frozenset({"default"}) and not d.platforms for d in deps.values())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
