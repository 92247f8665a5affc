"""Cartoon MCP - 3D cartoon image generation and sandboxed filesystem tools over MCP."""

__version__ = "1.0.0"

from .filesystem import FileSystem
from .security import AllowedRootSet, PathSandbox, ResolvedPath

__all__ = ["AllowedRootSet", "FileSystem", "PathSandbox", "ResolvedPath"]
