"""Path sandbox for Cartoon MCP filesystem tools."""

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class SandboxError(Exception):
    """Base exception for sandboxed tool errors."""
    pass


class AccessDeniedError(SandboxError, PermissionError):
    """A path (or its symlink target) resolves outside every allowed root."""

    def __init__(self, path: str, allowed_roots: Iterable[Path], detail: str = "path outside allowed directories") -> None:
        self.path = path
        self.allowed_roots = tuple(allowed_roots)
        roots = ", ".join(str(r) for r in self.allowed_roots)
        super().__init__(f"Access denied - {detail}: {path} not in [{roots}]")


class NotFoundError(SandboxError, FileNotFoundError):
    """Neither the path nor its parent directory exists."""
    pass


class ParentOutsideRootsError(AccessDeniedError, NotFoundError):
    """A new path's parent directory resolves outside every allowed root."""
    pass


class IOFailureError(SandboxError, OSError):
    """A filesystem call failed after the path was authorized."""
    pass


class UpstreamError(SandboxError, RuntimeError):
    """The image generation service returned nothing usable."""
    pass


def expand_home(path: str, home: Path) -> str:
    """Expand a leading ``~`` or ``~/`` to ``home``. ``~user`` is left alone."""
    if path == "~":
        return str(home)
    if path.startswith("~/") or (os.sep == "\\" and path.startswith("~\\")):
        return os.path.join(str(home), path[2:])
    return path


def canonicalize(path: str, base_dir: Path) -> Path:
    """Absolute, normalized path. Symlinks are not followed."""
    if not os.path.isabs(path):
        path = os.path.join(str(base_dir), path)
    return Path(os.path.normpath(os.path.abspath(path)))


@dataclass(frozen=True)
class AllowedRootSet:
    """Ordered, immutable set of directories the sandbox may act within."""
    roots: Tuple[Path, ...]
    # Canonical spellings of roots that differ from their resolved form (symlinked roots)
    aliases: Tuple[Path, ...] = ()

    @classmethod
    def from_entries(cls, entries: Iterable[str], home: Path, base_dir: Path) -> "AllowedRootSet":
        roots: list[Path] = []
        aliases: list[Path] = []
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue
            canonical = canonicalize(expand_home(entry, home), base_dir)
            root = canonical
            if root.exists():
                root = root.resolve()
            else:
                logger.warning("Allowed directory does not exist: %s", root)
            if root not in roots:
                roots.append(root)
            if canonical != root and canonical not in aliases:
                aliases.append(canonical)
        return cls(tuple(roots), tuple(aliases))

    @classmethod
    def defaults(cls, home: Path, base_dir: Path) -> "AllowedRootSet":
        return cls.from_entries([str(home), str(base_dir)], home, base_dir)

    @staticmethod
    def _under(path: Path, roots: Iterable[Path]) -> bool:
        # is_relative_to compares whole segments, so /home/alice never admits /home/alice2
        return any(path == root or path.is_relative_to(root) for root in roots)

    def contains(self, path: Path) -> bool:
        """True if the resolved ``path`` lies within a resolved root."""
        return self._under(path, self.roots)

    def contains_nominal(self, path: Path) -> bool:
        """True if the unresolved ``path`` lies within a root as resolved or as configured."""
        return self._under(path, self.roots) or self._under(path, self.aliases)

    def __iter__(self):
        return iter(self.roots)

    def __len__(self) -> int:
        return len(self.roots)


@dataclass(frozen=True)
class ResolvedPath(os.PathLike):
    """An authorized absolute path. The only path form filesystem tools act on."""
    path: Path
    existed: bool = field(default=True, compare=False)

    def __fspath__(self) -> str:
        return str(self.path)

    def __str__(self) -> str:
        return str(self.path)

    @property
    def name(self) -> str:
        return self.path.name


class PathSandbox:
    """Confines caller-supplied paths to an AllowedRootSet."""

    def __init__(self, allowed_roots: AllowedRootSet, home: Optional[Path] = None, base_dir: Optional[Path] = None) -> None:
        """
        Args:
            allowed_roots: The fixed root set established at startup.
            home: Directory that ``~`` expands to. Defaults to the user's home.
            base_dir: Directory relative paths are resolved against.
                      Defaults to the working directory at construction time.
        """
        if not allowed_roots.roots:
            raise ValueError("At least one allowed directory is required")
        self.allowed_roots = allowed_roots
        self.home = home or Path.home()
        self.base_dir = base_dir or Path(os.getcwd())

    def authorize(self, requested_path: str) -> ResolvedPath:
        """Validate ``requested_path`` against the allowed roots and return the authorized path."""
        candidate = canonicalize(expand_home(requested_path, self.home), self.base_dir)

        if not self.allowed_roots.contains_nominal(candidate):
            raise AccessDeniedError(str(candidate), self.allowed_roots)

        try:
            real_path = candidate.resolve(strict=True)
        except FileNotFoundError:
            return self._authorize_missing(candidate)
        except (OSError, RuntimeError) as e:
            raise AccessDeniedError(str(candidate), self.allowed_roots, f"error resolving path ({e})") from e

        if not self.allowed_roots.contains(real_path):
            raise AccessDeniedError(
                f"{candidate} -> {real_path}", self.allowed_roots,
                "symlink target outside allowed directories",
            )
        return ResolvedPath(candidate, existed=True)

    def _authorize_missing(self, candidate: Path) -> ResolvedPath:
        if candidate.is_symlink():
            # Dangling link: writing through it would create the target
            target = candidate.resolve(strict=False)
            if not self.allowed_roots.contains(target):
                raise AccessDeniedError(
                    f"{candidate} -> {target}", self.allowed_roots,
                    "symlink target outside allowed directories",
                )

        parent = candidate.parent
        try:
            real_parent = parent.resolve(strict=True)
        except FileNotFoundError as e:
            raise NotFoundError(f"Parent directory does not exist: {parent}") from e
        except (OSError, RuntimeError) as e:
            raise AccessDeniedError(str(parent), self.allowed_roots, f"error resolving parent ({e})") from e

        if not self.allowed_roots.contains(real_parent):
            raise ParentOutsideRootsError(
                f"{parent} -> {real_parent}", self.allowed_roots,
                "parent directory outside allowed directories",
            )
        return ResolvedPath(candidate, existed=False)

