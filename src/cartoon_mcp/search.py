"""Recursive, sandboxed file search with include/exclude globs."""

import asyncio
import logging
import os
import re
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from fnmatch import fnmatchcase
from functools import cached_property
from pathlib import Path, PurePath
from typing import List, Optional, Tuple

from .security import IOFailureError, PathSandbox, ResolvedPath, SandboxError

logger = logging.getLogger(__name__)

GLOBSTAR = "**"


def _split_pattern(pattern: str) -> Tuple[str, ...]:
    return tuple(p for p in re.split(r"[\\/]", pattern) if p)


def _match_segments(parts: Sequence[str], pattern_parts: Sequence[str]) -> bool:
    """Segment-wise glob match where ``**`` spans zero or more whole segments."""
    if not pattern_parts:
        return not parts
    head = pattern_parts[0]
    if head == GLOBSTAR:
        return any(_match_segments(parts[i:], pattern_parts[1:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatchcase(parts[0], head) and _match_segments(parts[1:], pattern_parts[1:])


@dataclass(frozen=True)
class SearchFilter:
    """Include glob for entry names plus exclude globs for root-relative paths."""
    include: str
    exclude: Tuple[str, ...] = ()

    @classmethod
    def build(cls, include: str, exclude: Sequence[str] = ()) -> "SearchFilter":
        return cls(include=include, exclude=tuple(p for p in exclude if p))

    @cached_property
    def _exclude_parts(self) -> List[Tuple[str, ...]]:
        compiled = []
        for pattern in self.exclude:
            # Without a "*" the pattern names a path segment to prune anywhere in the tree
            if "*" in pattern:
                compiled.append(_split_pattern(pattern))
            else:
                compiled.append((GLOBSTAR, *_split_pattern(pattern), GLOBSTAR))
        return compiled

    def excludes(self, relative_path: PurePath) -> bool:
        parts = relative_path.parts
        return any(_match_segments(parts, pattern) for pattern in self._exclude_parts)

    def includes(self, name: str) -> bool:
        # Wildcards never match a leading dot unless the pattern spells it out
        if name.startswith(".") and not self.include.startswith("."):
            return False
        return fnmatchcase(name.lower(), self.include.lower())


def _scan_directory(sandbox: PathSandbox, directory: Path) -> List[Tuple[str, bool, Optional[ResolvedPath]]]:
    """Read ``directory`` and authorize each entry. Runs in a worker thread."""
    with os.scandir(directory) as it:
        entries = sorted((entry.name, entry.is_dir(follow_symlinks=False)) for entry in it)

    scanned = []
    for name, is_dir in entries:
        full_path = directory / name
        try:
            resolved = sandbox.authorize(str(full_path))
        except SandboxError as e:
            logger.debug("Skipping %s: %s", full_path, e)
            resolved = None
        scanned.append((name, is_dir, resolved))
    return scanned


async def _walk(
    sandbox: PathSandbox,
    root: Path,
    directory: Path,
    search_filter: SearchFilter,
) -> AsyncIterator[ResolvedPath]:
    try:
        entries = await asyncio.to_thread(_scan_directory, sandbox, directory)
    except OSError as e:
        if directory == root:
            raise IOFailureError(f"Failed to read directory {directory}: {e}") from e
        logger.debug("Skipping unreadable directory %s: %s", directory, e)
        return

    for name, is_dir, resolved in entries:
        if resolved is None:
            continue
        full_path = directory / name

        if search_filter.excludes(full_path.relative_to(root)):
            continue

        if search_filter.includes(name):
            yield resolved

        if is_dir:
            async for match in _walk(sandbox, root, full_path, search_filter):
                yield match


async def search(sandbox: PathSandbox, root: ResolvedPath, search_filter: SearchFilter) -> AsyncIterator[ResolvedPath]:
    """Lazily yield matching entries under ``root`` in depth-first pre-order.

    Entries the sandbox rejects are pruned along with their subtrees. Each
    directory read runs in a worker thread, so cancelling the consuming task
    stops the walk at the next directory.
    """
    async for match in _walk(sandbox, root.path, root.path, search_filter):
        yield match


async def search_all(sandbox: PathSandbox, root: ResolvedPath, search_filter: SearchFilter) -> List[ResolvedPath]:
    return [match async for match in search(sandbox, root, search_filter)]
