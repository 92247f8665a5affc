"""File system operations implementation."""

import logging
from typing import List, Optional, Sequence

from .search import SearchFilter, search_all
from .security import IOFailureError, NotFoundError, PathSandbox, ResolvedPath

logger = logging.getLogger(__name__)

NO_MATCHES = "No matching files found"


class FileSystem:
    """Filesystem tool operations. Every path goes through the sandbox before any I/O."""

    def __init__(self, sandbox: PathSandbox) -> None:
        self.sandbox = sandbox
        logger.debug("FileSystem initialized. Allowed directories: %s", [str(d) for d in sandbox.allowed_roots])

    async def read_file(self, path: str) -> str:
        """Read the complete contents of a UTF-8 text file."""
        full_path = self.sandbox.authorize(path)
        if not full_path.path.is_file():
            raise NotFoundError(f"Path is not a file: {full_path}")
        try:
            with open(full_path, "r", encoding="utf-8") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise IOFailureError(f"Failed to read file {full_path}: {e}") from e

    async def write_file(self, path: str, content: str) -> ResolvedPath:
        """Create a new file or overwrite an existing one."""
        full_path = self.sandbox.authorize(path)
        try:
            with open(full_path, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise IOFailureError(f"Failed to write file {full_path}: {e}") from e
        return full_path

    async def list_directory(self, path: str) -> List[str]:
        """List directory contents as ``[DIR] name`` / ``[FILE] name`` lines."""
        full_path = self.sandbox.authorize(path)
        if not full_path.path.is_dir():
            raise NotFoundError(f"Path is not a directory: {full_path}")
        try:
            items = sorted(full_path.path.iterdir(), key=lambda p: p.name)
            return [f"{'[DIR]' if item.is_dir() else '[FILE]'} {item.name}" for item in items]
        except OSError as e:
            raise IOFailureError(f"Failed to list directory {full_path}: {e}") from e

    async def create_directory(self, path: str) -> ResolvedPath:
        """Create a directory. Succeeds silently if it already exists."""
        full_path = self.sandbox.authorize(path)
        try:
            full_path.path.mkdir(parents=True, exist_ok=True)
        except FileExistsError as e:
            raise IOFailureError(f"Path exists but is not a directory: {full_path}") from e
        except OSError as e:
            raise IOFailureError(f"Failed to create directory {full_path}: {e}") from e
        return full_path

    async def search_files(self, path: str, pattern: str, exclude_patterns: Optional[Sequence[str]] = None) -> List[ResolvedPath]:
        """Recursively search for entries whose name matches ``pattern`` (case-insensitive glob)."""
        root_path = self.sandbox.authorize(path)
        if not root_path.path.is_dir():
            raise NotFoundError(f"Path is not a directory: {root_path}")
        search_filter = SearchFilter.build(pattern, exclude_patterns or ())
        matches = await search_all(self.sandbox, root_path, search_filter)
        logger.debug("Found %d matches for %r under %s", len(matches), pattern, root_path)
        return matches

    async def list_allowed_directories(self) -> List[str]:
        """List all directories the server is allowed to access."""
        return [str(d) for d in self.sandbox.allowed_roots]
