from pathlib import Path
from typing import Iterator, Optional, Sequence

from ..domain.models import ResolvedSpec


class LocalGemCache:
    """
    read-only view of already vendored .gem files.

    only `bundle pack` / `bundle install` write here; lookups never create
    or modify anything.
    """

    def __init__(self, cache_dirs: Sequence[Path]):
        self.cache_dirs = list(cache_dirs)

    def _search_dirs(self) -> Iterator[Path]:
        for cache_dir in self.cache_dirs:
            if not cache_dir.is_dir():
                continue
            yield cache_dir
            # bundle install --path <dir> keeps gems in <dir>/ruby/<abi>/cache
            yield from sorted(cache_dir.glob("ruby/*/cache"))

    def find_gem(self, spec: ResolvedSpec) -> Optional[Path]:
        """
        locate the vendored artifact for a spec.

        only the file named exactly like the artifact the registry serves
        counts; a build for a neighbouring platform (x86_64-linux-musl for
        x86_64-linux) would carry a different hash.

        returns:
            path of the first match, or None
        """
        filename = f"{spec.full_name}.gem"
        for directory in self._search_dirs():
            path = directory / filename
            if path.is_file():
                return path
        return None
