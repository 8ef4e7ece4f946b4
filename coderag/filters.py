"""Extension allow-list and directory exclusion rules for repository traversal."""

from __future__ import annotations

import os
from typing import Iterable, Optional

from .config import FilterConfig


def get_file_extension(path: str) -> str:
    return os.path.splitext(path)[1].lower()


class FileFilter:
    """Decides which files get indexed and which directories are pruned.

    Both checks are pure functions of the configured sets: file content is
    never inspected.
    """

    def __init__(
        self,
        code_extensions: Optional[Iterable[str]] = None,
        doc_extensions: Optional[Iterable[str]] = None,
        excluded_dirs: Optional[Iterable[str]] = None,
    ) -> None:
        defaults = FilterConfig()
        self.code_extensions = frozenset(
            e.lower() for e in (defaults.code_extensions if code_extensions is None else code_extensions)
        )
        self.doc_extensions = frozenset(
            e.lower() for e in (defaults.doc_extensions if doc_extensions is None else doc_extensions)
        )
        self.excluded_dirs = frozenset(defaults.excluded_dirs if excluded_dirs is None else excluded_dirs)
        self._allowed = self.code_extensions | self.doc_extensions

    @classmethod
    def from_config(cls, config: FilterConfig) -> "FileFilter":
        return cls(config.code_extensions, config.doc_extensions, config.excluded_dirs)

    def should_process(self, path: str) -> bool:
        """True iff the lowercase extension of ``path`` is a code or doc extension."""
        return get_file_extension(path) in self._allowed

    def should_exclude_dir(self, name: str) -> bool:
        """True iff ``name`` is exactly one of the excluded directory names."""
        return name in self.excluded_dirs
