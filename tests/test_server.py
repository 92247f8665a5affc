"""Tests for cartoon_mcp.server — tool dispatch end-to-end against a temporary tree."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from cartoon_mcp import server as server_module
from cartoon_mcp.config import ServerConfig
from cartoon_mcp.locations import PlatformFacts
from cartoon_mcp.opener import OpenResult
from cartoon_mcp.security import AccessDeniedError, PathSandbox
from cartoon_mcp.server import CartoonServer, build_sandbox


@pytest.fixture
def generator() -> AsyncMock:
    fake = AsyncMock()
    fake.generate.return_value = b"\x89PNG"
    return fake


@pytest.fixture
def cartoon_server(sandbox: PathSandbox, generator: AsyncMock) -> CartoonServer:
    return CartoonServer(ServerConfig(open_preview=False), sandbox=sandbox, generator=generator)


def _text(result) -> str:
    assert len(result) == 1
    return result[0].text


class TestBuildSandbox:
    def test_defaults_to_home_and_cwd(self, tmp_path: Path) -> None:
        home, cwd = tmp_path / "home", tmp_path / "cwd"
        home.mkdir()
        cwd.mkdir()
        sandbox = build_sandbox(ServerConfig(), home=home, base_dir=cwd)
        assert sandbox.allowed_roots.roots == (home, cwd)

    def test_configured_directories(self, tmp_path: Path) -> None:
        (tmp_path / "data").mkdir()
        sandbox = build_sandbox(ServerConfig(allowed_directories=("data",)), home=tmp_path, base_dir=tmp_path)
        assert sandbox.allowed_roots.roots == (tmp_path / "data",)


class TestTools:
    @pytest.mark.asyncio
    async def test_list_tools(self, cartoon_server: CartoonServer) -> None:
        tools = await cartoon_server.list_tools_impl()
        assert [t.name for t in tools] == [
            "generate_3d_cartoon",
            "read_file",
            "write_file",
            "list_directory",
            "create_directory",
            "search_files",
            "list_allowed_directories",
        ]
        assert tools[0].inputSchema["required"] == ["prompt", "fileName"]

    @pytest.mark.asyncio
    async def test_filesystem_round_trip(self, cartoon_server: CartoonServer, allowed_root: Path) -> None:
        await cartoon_server.call_tool("create_directory", {"path": str(allowed_root / "sub")})
        await cartoon_server.call_tool("write_file", {"path": str(allowed_root / "sub" / "a.png"), "content": "x"})

        listing = await cartoon_server.call_tool("list_directory", {"path": str(allowed_root)})
        assert _text(listing) == "[DIR] sub"

        content = await cartoon_server.call_tool("read_file", {"path": str(allowed_root / "sub" / "a.png")})
        assert _text(content) == "x"

        found = await cartoon_server.call_tool("search_files", {"path": str(allowed_root), "pattern": "*.PNG"})
        assert _text(found) == str(allowed_root / "sub" / "a.png")

    @pytest.mark.asyncio
    async def test_search_without_matches(self, cartoon_server: CartoonServer, allowed_root: Path) -> None:
        result = await cartoon_server.call_tool(
            "search_files", {"path": str(allowed_root), "pattern": "*.gif", "excludePatterns": ["node_modules"]},
        )
        assert _text(result) == "No matching files found"

    @pytest.mark.asyncio
    async def test_empty_directory_listing(self, cartoon_server: CartoonServer, allowed_root: Path) -> None:
        result = await cartoon_server.call_tool("list_directory", {"path": str(allowed_root)})
        assert _text(result).startswith("Directory is empty")

    @pytest.mark.asyncio
    async def test_access_denied_propagates(self, cartoon_server: CartoonServer) -> None:
        with pytest.raises(AccessDeniedError, match="/etc/passwd"):
            await cartoon_server.call_tool("read_file", {"path": "/etc/passwd"})

    @pytest.mark.asyncio
    async def test_missing_argument(self, cartoon_server: CartoonServer) -> None:
        with pytest.raises(ValidationError):
            await cartoon_server.call_tool("write_file", {"path": "x.txt"})

    @pytest.mark.asyncio
    async def test_unknown_tool(self, cartoon_server: CartoonServer) -> None:
        with pytest.raises(ValueError, match="Unknown tool"):
            await cartoon_server.call_tool("delete_everything", {})

    @pytest.mark.asyncio
    async def test_list_allowed_directories(self, cartoon_server: CartoonServer, allowed_root: Path) -> None:
        result = await cartoon_server.call_tool("list_allowed_directories", None)
        assert _text(result) == f"Allowed directories:\n{allowed_root}"


class TestGenerateCartoon:
    @pytest.mark.asyncio
    async def test_generates_and_saves(
        self, sandbox: PathSandbox, generator: AsyncMock, facts: PlatformFacts, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(server_module.PlatformFacts, "current", classmethod(lambda cls: facts))
        opened = AsyncMock(return_value=OpenResult(opened=False, reason="headless"))
        monkeypatch.setattr(server_module, "open_best_effort", opened)

        cartoon_server = CartoonServer(ServerConfig(), sandbox=sandbox, generator=generator)
        result = await cartoon_server.call_tool("generate_3d_cartoon", {"prompt": "a robot", "fileName": "robot.png"})

        image_path = facts.cwd / "generated-images" / "robot.png"
        html_path = facts.cwd / "generated-images" / "robot_preview.html"
        assert _text(result) == f"Image saved to: {image_path}\nPreview HTML: {html_path}"
        assert image_path.read_bytes() == b"\x89PNG"
        generator.generate.assert_awaited_once_with("a robot")
        opened.assert_awaited_once_with(html_path, facts)

    @pytest.mark.asyncio
    async def test_preview_can_be_disabled(
        self, cartoon_server: CartoonServer, facts: PlatformFacts, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(server_module.PlatformFacts, "current", classmethod(lambda cls: facts))
        opened = AsyncMock()
        monkeypatch.setattr(server_module, "open_best_effort", opened)
        await cartoon_server.call_tool("generate_3d_cartoon", {"prompt": "a cat", "fileName": "cat"})
        opened.assert_not_called()
