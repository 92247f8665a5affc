from pathlib import Path

import pytest

from cartoon_mcp.config import ServerConfig
from cartoon_mcp.locations import PlatformFacts
from cartoon_mcp.security import AllowedRootSet, PathSandbox


@pytest.fixture
def allowed_root(tmp_path: Path) -> Path:
    root = tmp_path / "allowed"
    root.mkdir()
    return root


@pytest.fixture
def outside_dir(tmp_path: Path) -> Path:
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("top secret")
    return outside


@pytest.fixture
def sandbox(allowed_root: Path) -> PathSandbox:
    roots = AllowedRootSet.from_entries([str(allowed_root)], home=allowed_root, base_dir=allowed_root)
    return PathSandbox(roots, home=allowed_root, base_dir=allowed_root)


@pytest.fixture
def facts(tmp_path: Path) -> PlatformFacts:
    home = tmp_path / "home"
    cwd = tmp_path / "cwd"
    home.mkdir()
    cwd.mkdir()
    return PlatformFacts(platform="linux", home=home, cwd=cwd, username="kid", environ={})


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig()
