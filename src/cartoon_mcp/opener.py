"""Best-effort launch of the platform viewer for a generated file."""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .locations import PlatformFacts

logger = logging.getLogger(__name__)

OPEN_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class OpenResult:
    """Outcome of a viewer launch. Callers are free to ignore it."""
    opened: bool
    command: Optional[str] = None
    reason: str = ""


def is_headless(facts: PlatformFacts) -> bool:
    if facts.is_windows or facts.is_macos:
        return False
    return not (facts.environ.get("DISPLAY") or facts.environ.get("WAYLAND_DISPLAY"))


def viewer_command(facts: PlatformFacts) -> str:
    if facts.is_windows:
        return "explorer"
    if facts.is_macos:
        return "open"
    return "xdg-open"


async def open_best_effort(path: Path, facts: Optional[PlatformFacts] = None) -> OpenResult:
    """Open ``path`` in the desktop's default viewer. Never raises."""
    facts = facts or PlatformFacts.current()
    if is_headless(facts):
        logger.info("Headless environment detected, skipping preview for %s", path)
        return OpenResult(opened=False, reason="headless")

    command = viewer_command(facts)
    executable = shutil.which(command)
    if executable is None:
        logger.warning("Viewer command %r not found. File saved at: %s", command, path)
        return OpenResult(opened=False, command=command, reason="viewer not found")

    try:
        # Keep the child off our stdout, which carries the protocol stream
        process = await asyncio.create_subprocess_exec(
            executable, str(path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await asyncio.wait_for(process.wait(), timeout=OPEN_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.debug("Viewer %s still running after %.0fs, leaving it", command, OPEN_TIMEOUT_SECONDS)
        return OpenResult(opened=True, command=command)
    except (OSError, ValueError) as e:
        logger.warning("Unable to open %s with %s: %s", path, command, e)
        return OpenResult(opened=False, command=command, reason=str(e))

    # explorer.exe exits with 1 even on success
    if process.returncode != 0 and not facts.is_windows:
        logger.warning("Viewer %s exited with code %s for %s", command, process.returncode, path)
        return OpenResult(opened=False, command=command, reason=f"exit code {process.returncode}")

    logger.debug("Opened %s with %s", path, command)
    return OpenResult(opened=True, command=command)
