import json
import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import httpx

from ..config import NIX_PREFETCH_GIT, default_download_cache_dir
from ..domain.errors import CommandError
from ..utils.hash import format_hash, sha256_file
from .prefetcher import Prefetcher, RepoHash

logger = logging.getLogger(__name__)


def bundler_credentials_key(host: str) -> str:
    """name of the env var bundler reads credentials for `host` from."""
    return "BUNDLE_" + host.upper().replace("-", "___").replace(".", "__")


def split_credentials(url: str, env: Mapping[str, str]) -> Tuple[str, Optional[Tuple[str, str]]]:
    """
    strip userinfo from a url and return it as basic auth.

    credentials embedded in the url win; otherwise bundler's
    BUNDLE_<HOST>="user:password" setting is used if present.
    """
    parts = urlsplit(url)
    host = parts.hostname or ""
    netloc = host if parts.port is None else f"{host}:{parts.port}"
    bare = urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    if parts.username:
        return bare, (parts.username, parts.password or "")

    setting = env.get(bundler_credentials_key(host)) if host else None
    if setting:
        user, _, password = setting.partition(":")
        return bare, (user, password)
    return bare, None


class NixPrefetcher(Prefetcher):
    """downloads gems with httpx and checks out git sources with nix-prefetch-git."""

    def __init__(
        self,
        download_cache_dir: Optional[Path] = None,
        client: Optional[httpx.Client] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: float = 60.0,
    ):
        self.download_cache_dir = download_cache_dir or default_download_cache_dir()
        self.client = client or httpx.Client(follow_redirects=True, timeout=timeout)
        self.env: Dict[str, str] = dict(os.environ if env is None else env)

    def cache_path(self, url: str) -> Path:
        return self.download_cache_dir / re.sub(r"[^\w-]+", "_", url)

    def fetch_and_hash_url(self, url: str) -> str:
        target = self.cache_path(url)
        if not (target.is_file() and target.stat().st_size > 0):
            self.download(url, target)
        return sha256_file(target)

    def download(self, url: str, target: Path) -> None:
        bare_url, auth = split_credentials(url, self.env)
        logger.info("Downloading %s from %s", target.name, bare_url)

        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")
        try:
            with self.client.stream("GET", bare_url, auth=auth) as response:
                if response.status_code in (401, 403):
                    host = urlsplit(bare_url).hostname or ""
                    logger.warning(
                        "access to %s was denied; set %s=\"user:password\" to authenticate",
                        host, bundler_credentials_key(host),
                    )
                response.raise_for_status()
                with open(partial, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)
            partial.replace(target)
        finally:
            if partial.exists():
                partial.unlink()

    def fetch_and_hash_repo(self, url: str, rev: str, fetch_submodules: bool = False) -> RepoHash:
        args = [NIX_PREFETCH_GIT, "--url", url, "--rev", rev, "--hash", "sha256"]
        if fetch_submodules:
            args.append("--fetch-submodules")

        # keep nix-prefetch-git away from the user's git config
        env = dict(self.env, HOME="/homeless-shelter")
        try:
            result = subprocess.run(args, capture_output=True, text=True, env=env, check=False)
        except FileNotFoundError as e:
            raise CommandError(args, 127, str(e)) from e
        if result.returncode != 0:
            raise CommandError(args, result.returncode, result.stderr)

        match = re.search(r"(\{[^}]+\})\s*\Z", result.stdout, re.DOTALL)
        if not match:
            raise CommandError(args, result.returncode, "no json in nix-prefetch-git output")
        data = json.loads(match.group(1))
        sha256 = data.get("sha256") or data.get("hash")
        if not sha256:
            raise CommandError(args, result.returncode, "nix-prefetch-git reported no hash")

        return RepoHash(
            url=data.get("url", url),
            rev=data.get("rev", rev),
            sha256=format_hash(sha256),
            fetch_submodules=data.get("fetchSubmodules", fetch_submodules),
        )
