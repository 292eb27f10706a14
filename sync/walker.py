"""
Local directory enumeration.

Produces the upload target set (flat list of relative file paths) and the
nested directory tree used for browsing the local root.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from storage.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class FileWalker:
    """
    Recursive walker over the local sync root.

    Hidden entries (name starting with ".") and excluded directory names are
    skipped at every level. Returned paths are relative to the root and use
    forward slashes.
    """

    def __init__(
        self,
        excluded_dirs: Optional[Iterable[str]] = None,
        exclude_hidden: bool = True,
    ):
        self.excluded_dirs = set(excluded_dirs if excluded_dirs is not None else ["node_modules"])
        self.exclude_hidden = exclude_hidden

    def _skip(self, name: str) -> bool:
        if self.exclude_hidden and name.startswith("."):
            return True
        return name in self.excluded_dirs

    def _scan(self, directory: Path) -> List[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted((e for e in it if not self._skip(e.name)), key=lambda e: e.name)

    def walk(self, root: Union[str, Path]) -> List[str]:
        """
        List every regular file below root.

        Args:
            root: Local directory to enumerate

        Returns:
            Sorted relative file paths ("chats/a.json", ...)

        Raises:
            NotFoundError: If root is not a directory
        """
        root = Path(root)
        if not root.is_dir():
            raise NotFoundError(f"Local directory not found: {root}")

        files: List[str] = []
        pending = [(root, "")]
        while pending:
            directory, prefix = pending.pop()
            for entry in self._scan(directory):
                rel = f"{prefix}/{entry.name}" if prefix else entry.name
                if entry.is_dir(follow_symlinks=False):
                    pending.append((Path(entry.path), rel))
                elif entry.is_file():
                    files.append(rel)

        files.sort()
        logger.debug(f"[FileWalker] Found {len(files)} files under {root}")
        return files

    def build_tree(self, root: Union[str, Path], relative_path: str = "") -> List[Dict[str, Any]]:
        """
        Build a nested tree of the local root.

        Directories come first, then files, each group sorted by name.
        Directory nodes carry ``children``; file nodes carry ``size``.
        """
        root = Path(root)
        if not root.is_dir():
            raise NotFoundError(f"Local directory not found: {root}")

        nodes = []
        for entry in self._scan(root):
            rel = f"{relative_path}/{entry.name}" if relative_path else entry.name
            if entry.is_dir(follow_symlinks=False):
                nodes.append({
                    "name": entry.name,
                    "path": rel,
                    "type": "directory",
                    "children": self.build_tree(entry.path, rel),
                })
            elif entry.is_file():
                nodes.append({
                    "name": entry.name,
                    "path": rel,
                    "type": "file",
                    "size": entry.stat().st_size,
                })

        nodes.sort(key=lambda n: (n["type"] != "directory", n["name"]))
        return nodes
