from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field


class RepoHash(BaseModel):
    """result of prefetching a git checkout."""
    model_config = ConfigDict(populate_by_name=True)

    url: str
    rev: str
    sha256: str
    fetch_submodules: bool = Field(default=False, alias="fetchSubmodules")


class Prefetcher(ABC):
    """the only component allowed to touch the network or spawn fetch tools."""

    @abstractmethod
    def fetch_and_hash_url(self, url: str) -> str:
        """Download a url and return its sha256 in nix base32."""
        pass

    @abstractmethod
    def fetch_and_hash_repo(self, url: str, rev: str, fetch_submodules: bool = False) -> RepoHash:
        """Check out a git revision and return its nix store hash."""
        pass
