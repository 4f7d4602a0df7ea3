"""normalization of rubygems platform tokens into (cpu, os, version)."""
import re
from typing import List, NamedTuple, Optional

from ..domain.errors import UnknownPlatformError
from ..domain.models import RUBY_PLATFORM, ResolvedSpec, TargetDescriptor

KNOWN_CPUS = {
    "aarch64", "arm", "arm64", "armv5", "armv6", "armv7", "armv7l", "armv8",
    "loongarch64", "mips", "mips64", "mips64el", "mipsel", "powerpc", "powerpc64",
    "powerpc64le", "ppc", "ppc64", "ppc64le", "riscv64", "s390", "s390x",
    "sparc", "sparc64", "universal", "x64", "x86", "x86_64",
}

# ordered: the first rule matching the whole os token wins.
# a trailing "-NN" (darwin-22, java-11, mswin32-60) carries no version.
OS_RULES = [
    (re.compile(r"aix(\d+)?"), "aix"),
    (re.compile(r"cygwin"), "cygwin"),
    (re.compile(r"darwin(\d+)?(?:-\d+)?"), "darwin"),
    (re.compile(r"macruby"), "macruby"),
    (re.compile(r"freebsd(\d+)?"), "freebsd"),
    (re.compile(r"jruby"), "java"),
    (re.compile(r"java([\d.]*)(?:-[\d.]+)?"), "java"),
    (re.compile(r"dalvik(\d+)?"), "dalvik"),
    (re.compile(r"dotnet([\d.]*)"), "dotnet"),
    (re.compile(r"linux(?:-(\w+))?"), "linux"),
    (re.compile(r"mingw32"), "mingw32"),
    (re.compile(r"mingw(?:-(\w+))?"), "mingw"),
    (re.compile(r"(mswin\d+)(?:_(\d+))?(?:-\d+)?"), None),
    (re.compile(r"netbsdelf"), "netbsdelf"),
    (re.compile(r"openbsd(\d+\.\d+)?"), "openbsd"),
    (re.compile(r"solaris(\d+\.\d+)?"), "solaris"),
    (re.compile(r"wasi"), "wasi"),
]


class Platform(NamedTuple):
    cpu: Optional[str]
    os: str
    version: Optional[str] = None


def _normalize_cpu(cpu: str, token: str) -> str:
    if re.fullmatch(r"i\d86", cpu):
        return "x86"
    if cpu not in KNOWN_CPUS:
        raise UnknownPlatformError(token, f"unknown cpu '{cpu}'")
    return cpu


def _normalize_os(os_token: str, token: str):
    for pattern, name in OS_RULES:
        match = pattern.fullmatch(os_token)
        if not match:
            continue
        if name is None:
            # mswin32 / mswin64 keep their own name, with the optional _NN version
            return match.group(1), match.group(2)
        version = match.group(1) if match.groups() else None
        return name, version or None
    raise UnknownPlatformError(token, f"unknown os '{os_token}'")


def parse_platform(token: str) -> Platform:
    """
    split a composite platform token such as "x64-mingw-ucrt" into its parts.

    follows the rules rubygems applies in Gem::Platform, but fails on any
    cpu or os it has no rule for instead of guessing.

    raises:
        UnknownPlatformError: if the token has no normalization rule
    """
    if not token or token == RUBY_PLATFORM:
        raise UnknownPlatformError(token, "not a native platform")

    parts = token.split("-")
    if len(parts) > 2 and "linux" not in parts:
        # reassemble the os suffix, e.g. x64-mingw-ucrt
        extra = parts.pop()
        parts[-1] = f"{parts[-1]}-{extra}"

    if len(parts) == 1:
        # legacy single-word platform such as "java" or "mswin32"
        os_name, version = _normalize_os(parts[0], token)
        cpu = "x86" if os_name == "mswin32" else None
        return Platform(cpu, os_name, version)

    cpu = _normalize_cpu(parts[0], token)
    rest = parts[1:]
    if len(rest) == 2 and re.fullmatch(r"\d+(\.\d+)?", rest[1]):
        os_name, _ = _normalize_os(rest[0], token)
        return Platform(cpu, os_name, rest[1])

    os_name, version = _normalize_os("-".join(rest), token)
    return Platform(cpu, os_name, version)


def normalize_targets(spec: ResolvedSpec) -> List[TargetDescriptor]:
    """
    target descriptors for a resolved spec.

    portable specs yield an empty list; native specs yield one descriptor
    carrying the cpu/os pair of their platform token.
    """
    if not spec.is_native:
        return []
    platform = parse_platform(spec.platform)
    return [
        TargetDescriptor(
            type="gem",
            target=spec.platform,
            target_cpu=platform.cpu,
            target_os=platform.os,
        )
    ]
