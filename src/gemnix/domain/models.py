from pathlib import Path
from typing import Annotated, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

RUBY_PLATFORM = "ruby"
DEFAULT_GROUP = "default"
BUNDLER = "bundler"


class Requirement(BaseModel):
    """a dependency edge as written in the lockfile: name plus constraint."""
    name: str
    constraint: str = ""


class DirectDependency(BaseModel):
    """
    a gem declared in the Gemfile, with its visibility groups and platforms.

    an empty platform set means the gem is not restricted to any platform.
    reconciled entries share this shape; they are replaced, never mutated.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    requirement: Optional[str] = None
    groups: FrozenSet[str] = frozenset({DEFAULT_GROUP})
    platforms: FrozenSet[str] = frozenset()


ReconciledEntry = DirectDependency


class RegistrySource(BaseModel):
    kind: Literal["registry"] = "registry"
    remotes: List[str] = Field(default_factory=list)


class GitSource(BaseModel):
    kind: Literal["git"] = "git"
    uri: str
    revision: str
    ref: Optional[str] = None
    branch: Optional[str] = None
    tag: Optional[str] = None
    submodules: bool = False
    glob: Optional[str] = None


class PathSource(BaseModel):
    kind: Literal["path"] = "path"
    path: str


LockSource = Annotated[Union[RegistrySource, GitSource, PathSource], Field(discriminator="kind")]


class ResolvedSpec(BaseModel):
    """one fully pinned entry of the lockfile."""
    name: str
    version: str
    platform: str = RUBY_PLATFORM
    source: LockSource = Field(default_factory=RegistrySource)
    dependencies: List[Requirement] = Field(default_factory=list)

    @property
    def is_native(self) -> bool:
        return self.platform != RUBY_PLATFORM

    @property
    def full_name(self) -> str:
        if self.is_native:
            return f"{self.name}-{self.version}-{self.platform}"
        return f"{self.name}-{self.version}"

    @property
    def artifact_key(self):
        return (self.name, self.version, self.platform)


class Lockfile(BaseModel):
    path: str = "Gemfile.lock"
    specs: List[ResolvedSpec] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    dependencies: List[Requirement] = Field(default_factory=list)
    bundler_version: Optional[str] = None
    ruby_version: Optional[str] = None


class GemSourceDescriptor(BaseModel):
    type: Literal["gem"] = "gem"
    remotes: List[str] = Field(default_factory=list)
    sha256: str


class GitSourceDescriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["git"] = "git"
    url: str
    rev: str
    sha256: str
    fetch_submodules: bool = Field(default=False, alias="fetchSubmodules")


class PathSourceDescriptor(BaseModel):
    type: Literal["path"] = "path"
    path: Path


SourceDescriptor = Annotated[
    Union[GemSourceDescriptor, GitSourceDescriptor, PathSourceDescriptor],
    Field(discriminator="type"),
]


class TargetDescriptor(BaseModel):
    """a platform-specific build of a gem."""
    model_config = ConfigDict(populate_by_name=True)

    type: str = "gem"
    target: str
    target_cpu: Optional[str] = Field(default=None, alias="targetCPU")
    target_os: str = Field(alias="targetOS")
    remotes: List[str] = Field(default_factory=list)
    sha256: Optional[str] = None


class PackageDescriptor(BaseModel):
    version: str
    source: Optional[SourceDescriptor] = None
    dependencies: List[str] = Field(default_factory=list)
    groups: List[str] = Field(default_factory=list)
    platforms: List[Dict[str, str]] = Field(default_factory=list)
    targets: List[TargetDescriptor] = Field(default_factory=list)

    @property
    def hash(self) -> Optional[str]:
        return getattr(self.source, "sha256", None)


class Gemset(BaseModel):
    """ordered mapping of gem name to its descriptor."""
    packages: Dict[str, PackageDescriptor] = Field(default_factory=dict)

    def __getitem__(self, name: str) -> PackageDescriptor:
        return self.packages[name]

    def __contains__(self, name: str) -> bool:
        return name in self.packages

    def __len__(self) -> int:
        return len(self.packages)

    def names(self) -> List[str]:
        return list(self.packages.keys())

    def to_nix_data(self) -> Dict[str, dict]:
        """plain data ready for the nix serializer, with nix attribute names."""
        return {
            name: descriptor.model_dump(by_alias=True, exclude_none=True)
            for name, descriptor in self.packages.items()
        }
