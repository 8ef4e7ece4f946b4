"""
Repository traversal.

Walks a cloned repository with an explicit stack instead of recursion and
yields one ``Document`` per file accepted by the ``FileFilter``.  Files that
cannot be read or decoded are logged and skipped; they never stop the walk.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from .filters import FileFilter
from .models import Document, DocumentMetadata

logger = logging.getLogger(__name__)


class RepositoryWalker:
    def __init__(self, file_filter: Optional[FileFilter] = None, encoding: str = "utf-8") -> None:
        self.file_filter = file_filter or FileFilter()
        self.encoding = encoding

    def walk(self, root_path: str, repo_name: str) -> Iterator[Document]:
        """Yield documents under ``root_path`` lazily.

        Entries are visited in sorted order so that an unchanged tree always
        produces the same sequence.  Calling ``walk`` again restarts from the
        root.  Symlinked directories are not followed.
        """
        root = Path(root_path)
        stack: List[Path] = [root]
        while stack:
            directory = stack.pop()
            try:
                entries = sorted(os.scandir(directory), key=lambda e: e.name)
            except OSError as exc:
                logger.warning(f"Cannot list directory {directory}: {exc}")
                continue

            subdirs: List[Path] = []
            for entry in entries:
                try:
                    is_dir = entry.is_dir(follow_symlinks=False)
                    is_file = entry.is_file()
                except OSError as exc:
                    logger.warning(f"Cannot stat {entry.path}: {exc}")
                    continue

                if is_dir:
                    if not self.file_filter.should_exclude_dir(entry.name):
                        subdirs.append(Path(entry.path))
                elif is_file and self.file_filter.should_process(entry.name):
                    document = self._read(root, Path(entry.path), repo_name)
                    if document is not None:
                        yield document

            # Reverse so the stack pops subdirectories in name order.
            stack.extend(reversed(subdirs))

    def _read(self, root: Path, full_path: Path, repo_name: str) -> Optional[Document]:
        try:
            stat = full_path.stat()
            content = full_path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(f"Unable to read file {full_path}: {exc}")
            return None

        metadata = DocumentMetadata(
            repo=repo_name,
            path=full_path.relative_to(root).as_posix(),
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )
        return Document(content=content, metadata=metadata)
