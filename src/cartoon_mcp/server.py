"""MCP server implementation."""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, Field

from . import __version__
from .config import ServerConfig, configure_logging, load_server_config
from .filesystem import NO_MATCHES, FileSystem
from .imaging import CartoonGenerator, save_cartoon
from .locations import PlatformFacts
from .opener import open_best_effort
from .security import AllowedRootSet, PathSandbox

logger = logging.getLogger(__name__)

# --- Pydantic Models for Tool Inputs ---

class GenerateCartoonInput(BaseModel):
    prompt: str = Field(..., description="The prompt describing the 3D cartoon image to generate")
    fileName: str = Field(..., description="The name of the output file (without extension)")

class ReadFileInput(BaseModel):
    path: str = Field(..., description="Path to the file to read")

class WriteFileInput(BaseModel):
    path: str = Field(..., description="Path to the file to write")
    content: str = Field(..., description="Content to write to the file")

class ListDirectoryInput(BaseModel):
    path: str = Field(..., description="Path to the directory to list")

class CreateDirectoryInput(BaseModel):
    path: str = Field(..., description="Path to the directory to create")

class SearchFilesInput(BaseModel):
    path: str = Field(..., description="Base directory to search from")
    pattern: str = Field(..., description="Search pattern (glob format, matched case-insensitively against names)")
    excludePatterns: List[str] = Field([], description="Patterns to exclude from search (glob format, relative to path)")

class NoInput(BaseModel):
    pass

# --- End Pydantic Models ---

ToolHandler = Callable[[dict[str, Any]], Awaitable[list[TextContent]]]


def build_sandbox(config: ServerConfig, home: Optional[Path] = None, base_dir: Optional[Path] = None) -> PathSandbox:
    """Build the process-wide sandbox from the configured (or default) allowed directories."""
    home = home or Path.home()
    base_dir = base_dir or Path(os.getcwd())
    if config.allowed_directories:
        roots = AllowedRootSet.from_entries(config.allowed_directories, home, base_dir)
    else:
        roots = AllowedRootSet.defaults(home, base_dir)
    return PathSandbox(roots, home=home, base_dir=base_dir)


class CartoonServer:
    def __init__(
        self,
        config: ServerConfig,
        sandbox: Optional[PathSandbox] = None,
        generator: Optional[CartoonGenerator] = None,
    ) -> None:
        self.config = config
        self.server: Server = Server(
            name="mcp-cartoon-filesystem-server",
            version=__version__,
            instructions="Generates 3D cartoon images for kids and provides sandboxed filesystem tools.",
        )
        self.sandbox = sandbox or build_sandbox(config)
        self.filesystem = FileSystem(self.sandbox)
        self.generator = generator or CartoonGenerator.from_config(config)
        self._tools: dict[str, ToolHandler] = {
            "generate_3d_cartoon": self.generate_3d_cartoon,
            "read_file": self.read_file,
            "write_file": self.write_file,
            "list_directory": self.list_directory,
            "create_directory": self.create_directory,
            "search_files": self.search_files,
            "list_allowed_directories": self.list_allowed_directories,
        }

        self._register_handlers()

    # --- Handler Registration (Called from __init__) ---
    def _register_handlers(self) -> None:

        @self.server.call_tool()  # type: ignore[misc]
        async def _dispatch_tool_call(tool_name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return await self.call_tool(tool_name, arguments)

        @self.server.list_tools()  # type: ignore[misc]
        async def list_tools_handler() -> list[Tool]:
            return await self.list_tools_impl()

    async def call_tool(self, tool_name: str, arguments: Optional[dict[str, Any]]) -> list[TextContent]:
        """Dispatches a tool call to its implementation. Errors propagate to the MCP layer verbatim."""
        handler = self._tools.get(tool_name)
        if handler is None:
            raise ValueError(f"Unknown tool: {tool_name}")
        try:
            return await handler(arguments or {})
        except Exception as e:
            logger.error("Error processing %s: %s", tool_name, e)
            raise

    # --- Tool Implementations ---

    async def generate_3d_cartoon(self, arguments: dict[str, Any]) -> list[TextContent]:
        """Generate an image, save it with an HTML preview, and try to open the preview."""
        args = GenerateCartoonInput.model_validate(arguments)
        image = await self.generator.generate(args.prompt)

        facts = PlatformFacts.current()
        saved = await asyncio.to_thread(save_cartoon, self.config, image, args.fileName, args.prompt, facts)

        if self.config.open_preview:
            result = await open_best_effort(saved.html_path, facts)
            if not result.opened:
                logger.info("Preview not opened (%s). File saved at: %s", result.reason, saved.html_path)

        return [TextContent(type="text", text=f"Image saved to: {saved.image_path}\nPreview HTML: {saved.html_path}")]

    async def read_file(self, arguments: dict[str, Any]) -> list[TextContent]:
        args = ReadFileInput.model_validate(arguments)
        content = await self.filesystem.read_file(args.path)
        return [TextContent(type="text", text=content)]

    async def write_file(self, arguments: dict[str, Any]) -> list[TextContent]:
        args = WriteFileInput.model_validate(arguments)
        written = await self.filesystem.write_file(args.path, args.content)
        return [TextContent(type="text", text=f"File written successfully to: {written}")]

    async def list_directory(self, arguments: dict[str, Any]) -> list[TextContent]:
        args = ListDirectoryInput.model_validate(arguments)
        lines = await self.filesystem.list_directory(args.path)
        return [TextContent(type="text", text="\n".join(lines) if lines else f"Directory is empty: {args.path}")]

    async def create_directory(self, arguments: dict[str, Any]) -> list[TextContent]:
        args = CreateDirectoryInput.model_validate(arguments)
        created = await self.filesystem.create_directory(args.path)
        return [TextContent(type="text", text=f"Directory created: {created}")]

    async def search_files(self, arguments: dict[str, Any]) -> list[TextContent]:
        args = SearchFilesInput.model_validate(arguments)
        matches = await self.filesystem.search_files(args.path, args.pattern, args.excludePatterns)
        text = "\n".join(str(m) for m in matches) if matches else NO_MATCHES
        return [TextContent(type="text", text=text)]

    async def list_allowed_directories(self, arguments: dict[str, Any]) -> list[TextContent]:
        allowed_dirs = await self.filesystem.list_allowed_directories()
        return [TextContent(type="text", text="Allowed directories:\n" + "\n".join(allowed_dirs))]

    # --- Tool Listing Implementation ---

    async def list_tools_impl(self) -> list[Tool]:
        """Provides the list of available tools and their schemas using Pydantic."""
        allowed_dirs_desc = "\n".join(f"- {d}" for d in self.sandbox.allowed_roots)

        return [
            Tool(
                name="generate_3d_cartoon",
                description="Generates a 3D style cartoon image for kids based on the given prompt",
                inputSchema=GenerateCartoonInput.model_json_schema(),
            ),
            Tool(
                name="read_file",
                description=(
                    "Read the contents of a file. "
                    f"Only works within allowed directories:\n{allowed_dirs_desc}"
                ),
                inputSchema=ReadFileInput.model_json_schema(),
            ),
            Tool(
                name="write_file",
                description=(
                    "Write content to a file, replacing it if it exists. The parent directory must exist. "
                    f"Only works within allowed directories:\n{allowed_dirs_desc}"
                ),
                inputSchema=WriteFileInput.model_json_schema(),
            ),
            Tool(
                name="list_directory",
                description=(
                    "List the contents of a directory with [FILE] or [DIR] prefixes. "
                    f"Only works within allowed directories:\n{allowed_dirs_desc}"
                ),
                inputSchema=ListDirectoryInput.model_json_schema(),
            ),
            Tool(
                name="create_directory",
                description=(
                    "Create a new directory. Succeeds silently if it already exists. "
                    f"Only works within allowed directories:\n{allowed_dirs_desc}"
                ),
                inputSchema=CreateDirectoryInput.model_json_schema(),
            ),
            Tool(
                name="search_files",
                description=(
                    "Recursively search for files and directories whose names match a glob pattern (case-insensitive). "
                    "Use `excludePatterns` (glob format relative to the search path; a bare name excludes that "
                    "directory anywhere) to skip subtrees. "
                    f"Only searches within allowed directories:\n{allowed_dirs_desc}"
                ),
                inputSchema=SearchFilesInput.model_json_schema(),
            ),
            Tool(
                name="list_allowed_directories",
                description="List all directories the filesystem tools are allowed to access.",
                inputSchema=NoInput.model_json_schema(),
            ),
        ]

    # --- Server Run ---

    async def run(self) -> None:
        """Run the server using stdio."""
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


async def main() -> None:
    config = load_server_config()
    configure_logging(config.debug)
    server = CartoonServer(config)
    logger.debug("MCP Cartoon & Filesystem Server running. Allowed directories: %s",
                 ", ".join(str(d) for d in server.sandbox.allowed_roots))
    await server.run()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
