"""rendering of plain python data as nix expressions."""
import os
import re
import tempfile
from pathlib import Path, PurePath
from typing import Any, Mapping

IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_'-]*$")
PATH_LITERAL = re.compile(r"^[a-zA-Z0-9._+\-/~]+$")
NIX_KEYWORDS = {"if", "then", "else", "assert", "with", "let", "in", "rec", "inherit", "or"}


def nix_string(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("${", "\\${")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )
    return f'"{escaped}"'


def nix_key(key: str) -> str:
    if IDENTIFIER.match(key) and key not in NIX_KEYWORDS:
        return key
    return nix_string(key)


def nix_path(path: PurePath) -> str:
    text = path.as_posix()
    if not PATH_LITERAL.match(text):
        base = "/." if path.is_absolute() else "./."
        return f"({base} + {nix_string(text if path.is_absolute() else '/' + text)})"
    if "/" not in text:
        return f"./{text}"
    return text


def _is_scalar(obj: Any) -> bool:
    return obj is None or isinstance(obj, (bool, int, float, str, PurePath))


def serialize(obj: Any, indent: int = 0) -> str:
    """
    render a value as nix.

    attribute sets are written with sorted keys, one per line, so output is
    stable across runs; lists of scalars stay on one line.

    raises:
        TypeError: for values with no nix equivalent
    """
    pad = "  " * indent
    if obj is None:
        return "null"
    if isinstance(obj, bool):
        return "true" if obj else "false"
    if isinstance(obj, (int, float)):
        return str(obj)
    if isinstance(obj, str):
        return nix_string(obj)
    if isinstance(obj, PurePath):
        return nix_path(obj)
    if isinstance(obj, (set, frozenset)):
        return serialize(sorted(obj), indent)
    if isinstance(obj, (list, tuple)):
        if not obj:
            return "[]"
        if all(_is_scalar(item) for item in obj):
            return "[" + " ".join(serialize(item, indent) for item in obj) + "]"
        items = [f"{pad}  {serialize(item, indent + 1)}" for item in obj]
        return "[\n" + "\n".join(items) + f"\n{pad}]"
    if isinstance(obj, Mapping):
        if not obj:
            return "{ }"
        lines = ["{"]
        for key in sorted(obj):
            lines.append(f"{pad}  {nix_key(str(key))} = {serialize(obj[key], indent + 1)};")
        lines.append(f"{pad}}}")
        return "\n".join(lines)
    raise TypeError(f"Cannot convert to nix: {obj!r}")


def save_gemset(data: Mapping[str, Any], path: Path) -> None:
    """write a gemset atomically, readable by everyone."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".gemset-", suffix=".nix", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(serialize(data))
            f.write("\n")
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
