"""Repository catalog.

Maps the repository names users may pick to their checkout paths on this
host. Built once at startup from settings and never mutated.
"""

import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import List, Mapping, Optional


@dataclass(frozen=True)
class Repository:
    """A selectable repository checkout.

    Attributes:
        name: Lower-case repository name users type.
        path: Absolute filesystem path of the checkout.
    """

    name: str
    path: str

    def exists(self) -> bool:
        return os.path.isdir(self.path)


class RepositoryCatalog:
    """Immutable name → path lookup with case-insensitive matching.

    Example:
        >>> catalog = RepositoryCatalog({"gisbot": "/app/mnt/repos/gisbot"})
        >>> catalog.resolve("  GisBot ")
        Repository(name='gisbot', path='/app/mnt/repos/gisbot')
    """

    def __init__(self, repositories: Mapping[str, str]):
        self._paths = MappingProxyType(
            {name.strip().lower(): path for name, path in repositories.items()}
        )

    def __len__(self) -> int:
        return len(self._paths)

    def names(self) -> List[str]:
        return list(self._paths)

    def resolve(self, name: str) -> Optional[Repository]:
        key = name.strip().lower()
        path = self._paths.get(key)
        if path is None:
            return None
        return Repository(name=key, path=path)

    def format_choices(self) -> str:
        """Bulleted list of names for a chat reply."""
        return "\n".join(f"• {name}" for name in self._paths)
