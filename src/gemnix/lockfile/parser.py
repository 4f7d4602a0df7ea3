"""parser for bundler's Gemfile.lock format.

a lockfile is a sequence of sections introduced by an unindented header.
source sections (GIT, PATH, GEM) carry two-space indented options, a
`specs:` list of four-space indented `name (version[-platform])` lines and
six-space indented dependency lines below each spec.
"""
import re
from pathlib import Path
from typing import Dict, List, Optional

from ..domain.errors import LockfileParseError
from ..domain.models import (
    GitSource,
    Lockfile,
    PathSource,
    RegistrySource,
    Requirement,
    ResolvedSpec,
)

SOURCE_SECTIONS = ("GIT", "PATH", "GEM")
ENTRY = re.compile(r"^(?P<name>[^\s(!]+)(?: \((?P<version>[^)]*)\))?!?$")
OPTION = re.compile(r"^(?P<key>[a-z_]+):(?: (?P<value>.*))?$")


def _split_version(version: str):
    """'1.6.1-x86_64-linux' -> ('1.6.1', 'x86_64-linux')"""
    number, _, platform = version.partition("-")
    return number, platform or "ruby"


class LockfileParser:
    def __init__(self, text: str, path: str = "Gemfile.lock"):
        self.lines = text.splitlines()
        self.path = path
        self.lockfile = Lockfile(path=path)
        self._section: Optional[str] = None
        self._options: Dict[str, List[str]] = {}
        self._pending: List[ResolvedSpec] = []
        self._in_specs = False

    def error(self, line_number: int, message: str) -> LockfileParseError:
        return LockfileParseError(self.path, line_number, message)

    def parse(self) -> Lockfile:
        for number, raw in enumerate(self.lines, start=1):
            line = raw.rstrip()
            if not line.strip():
                continue
            if not line[0].isspace():
                self._finish_section(number)
                self._section = line.strip()
                continue
            self._parse_line(number, line)
        self._finish_section(len(self.lines))
        return self.lockfile

    def _parse_line(self, number: int, line: str):
        indent = len(line) - len(line.lstrip(" "))
        content = line.strip()
        section = self._section

        if section in SOURCE_SECTIONS:
            self._parse_source_line(number, indent, content)
        elif section == "PLATFORMS":
            self.lockfile.platforms.append(content)
        elif section == "DEPENDENCIES":
            self.lockfile.dependencies.append(self._requirement(number, content))
        elif section == "BUNDLED WITH":
            self.lockfile.bundler_version = content
        elif section == "RUBY VERSION":
            self.lockfile.ruby_version = content
        elif section is None:
            raise self.error(number, "content before the first section")
        # other sections (CHECKSUMS, PLUGIN SOURCE, ...) carry nothing we need

    def _parse_source_line(self, number: int, indent: int, content: str):
        if indent == 2:
            if content == "specs:":
                self._in_specs = True
                return
            match = OPTION.match(content)
            if not match:
                raise self.error(number, f"malformed source option: {content!r}")
            self._options.setdefault(match.group("key"), []).append(match.group("value") or "")
        elif indent == 4 and self._in_specs:
            match = ENTRY.match(content)
            if not match or not match.group("version"):
                raise self.error(number, f"malformed spec: {content!r}")
            version, platform = _split_version(match.group("version"))
            self._pending.append(ResolvedSpec(name=match.group("name"), version=version, platform=platform))
        elif indent == 6 and self._pending:
            self._pending[-1].dependencies.append(self._requirement(number, content))
        else:
            raise self.error(number, f"unexpected line in {self._section}: {content!r}")

    def _requirement(self, number: int, content: str) -> Requirement:
        match = ENTRY.match(content)
        if not match:
            raise self.error(number, f"malformed dependency: {content!r}")
        return Requirement(
            name=match.group("name"),
            constraint=match.group("version") or "",
        )

    def _option(self, key: str) -> Optional[str]:
        values = self._options.get(key)
        return values[0] if values else None

    def _finish_section(self, number: int):
        if self._section in SOURCE_SECTIONS:
            source = self._build_source(number)
            for spec in self._pending:
                spec.source = source
                self.lockfile.specs.append(spec)
        self._options = {}
        self._pending = []
        self._in_specs = False

    def _build_source(self, number: int):
        section = self._section
        if section == "GEM":
            return RegistrySource(remotes=self._options.get("remote", []))

        remote = self._option("remote")
        if remote is None:
            raise self.error(number, f"{section} section without remote")
        if section == "PATH":
            return PathSource(path=remote)

        revision = self._option("revision")
        if revision is None:
            raise self.error(number, f"GIT section for {remote} without revision")
        return GitSource(
            uri=remote,
            revision=revision,
            ref=self._option("ref"),
            branch=self._option("branch"),
            tag=self._option("tag"),
            submodules=self._option("submodules") == "true",
            glob=self._option("glob"),
        )


def parse_lockfile(text: str, path: str = "Gemfile.lock") -> Lockfile:
    """
    parse the contents of a Gemfile.lock.

    raises:
        LockfileParseError: on lines that do not fit the format
    """
    return LockfileParser(text, path).parse()


def load_lockfile(path: Path) -> Lockfile:
    with open(path, "r", encoding="utf-8") as f:
        return parse_lockfile(f.read(), str(path))
