from typing import Dict, Iterable, List

from ..domain.errors import UnknownPlatformError

# bundler platform families and the ruby engines they cover, c.f. Bundler::CurrentRuby
PLATFORM_FAMILIES: Dict[str, List[str]] = {
    "ruby": ["ruby", "rbx", "maglev"],
    "mri": ["ruby", "maglev"],
    "rbx": ["rbx"],
    "jruby": ["jruby"],
    "maglev": ["maglev"],
    "truffleruby": ["ruby"],
    "mswin": ["mswin"],
    "mswin64": ["mswin64"],
    "mingw": ["mingw"],
    "x64_mingw": ["mingw"],
    "windows": ["mswin", "mswin64", "mingw"],
}

RUBY_VERSIONS = [
    "1.8", "1.9", "2.0", "2.1", "2.2", "2.3", "2.4", "2.5", "2.6", "2.7",
    "3.0", "3.1", "3.2", "3.3", "3.4",
]


def _build_mapping() -> Dict[str, List[Dict[str, str]]]:
    mapping = {}
    for family, engines in PLATFORM_FAMILIES.items():
        mapping[family] = [{"engine": engine} for engine in engines]
        for version in RUBY_VERSIONS:
            mapping[f"{family}_{version.replace('.', '')}"] = [
                {"engine": engine, "version": version} for engine in engines
            ]
    return mapping


PLATFORM_MAPPING = _build_mapping()


def expand_platform_aliases(platforms: Iterable[str]) -> List[Dict[str, str]]:
    """
    expand declared bundler platforms into the engines nix should match.

    the result is deduplicated and sorted by (engine, version) so the same
    declaration always yields the same list.

    raises:
        UnknownPlatformError: if a platform has no mapping
    """
    expanded = {}
    for name in platforms:
        try:
            entries = PLATFORM_MAPPING[str(name)]
        except KeyError:
            raise UnknownPlatformError(str(name), "unknown bundler platform") from None
        for entry in entries:
            key = (entry["engine"], entry.get("version", ""))
            expanded[key] = entry
    return [dict(expanded[key]) for key in sorted(expanded)]
