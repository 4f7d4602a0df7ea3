import base64
import hashlib
import re
from pathlib import Path

# nix's base32 alphabet omits e, o, u and t
NIX_BASE32_CHARS = "0123456789abcdfghijklmnpqrsvwxyz"

SHA256_32 = re.compile(r"^[0-9a-df-np-sv-z]{52}$")
SHA256_16 = re.compile(r"^[0-9a-fA-F]{64}$")


def to_nix_base32(digest: bytes) -> str:
    """
    encode a raw digest the way `nix-hash --to-base32` does.

    nix reads the digest from its last bit backwards, so this is not
    rfc 4648 base32.
    """
    length = (len(digest) * 8 - 1) // 5 + 1
    chars = []
    for n in range(length - 1, -1, -1):
        bit = n * 5
        i, j = divmod(bit, 8)
        c = digest[i] >> j
        if i + 1 < len(digest):
            c |= digest[i + 1] << (8 - j)
        chars.append(NIX_BASE32_CHARS[c & 0x1F])
    return "".join(chars)


def sha256_file(path: Path) -> str:
    """sha256 of a file, in nix base32."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 16), b""):
            digest.update(chunk)
    return to_nix_base32(digest.digest())


def format_hash(value: str) -> str:
    """
    normalize a sha256 given as hex, nix base32 or sri into nix base32.

    raises:
        ValueError: if the value is not a sha256 in any of those forms
    """
    value = value.strip()
    if SHA256_32.match(value):
        return value
    if SHA256_16.match(value):
        return to_nix_base32(bytes.fromhex(value))
    if value.startswith("sha256-"):
        digest = base64.b64decode(value[len("sha256-"):])
        if len(digest) == 32:
            return to_nix_base32(digest)
    raise ValueError(f"not a sha256 hash: {value!r}")
