"""Output directory resolution for generated images.

Candidates come from platform facts (home, desktop, documents, working
directory) and the server configuration, never from caller-supplied strings,
so they are not run through the path sandbox. The first candidate that passes
a probe write wins; ``<cwd>/output`` is the last resort and is always created.
"""

import enum
import getpass
import logging
import os
import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from .config import ServerConfig
from .security import IOFailureError, expand_home

logger = logging.getLogger(__name__)

FALLBACK_DIRNAME = "output"


class LocationReason(str, enum.Enum):
    OVERRIDE = "override"
    DESKTOP = "desktop"
    DOCUMENTS = "documents"
    HOME = "home"
    WORKING_DIRECTORY = "working_directory"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class CandidateLocation:
    directory: Path
    reason: LocationReason


@dataclass(frozen=True)
class PlatformFacts:
    """Snapshot of the hosting environment the resolver and opener depend on."""
    platform: str
    home: Path
    cwd: Path
    username: str = ""
    environ: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def current(cls) -> "PlatformFacts":
        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = ""
        return cls(
            platform=sys.platform,
            home=Path.home(),
            cwd=Path(os.getcwd()),
            username=username,
            environ=dict(os.environ),
        )

    @property
    def is_windows(self) -> bool:
        return self.platform.startswith("win")

    @property
    def is_macos(self) -> bool:
        return self.platform == "darwin"


def _user_folder(facts: PlatformFacts, name: str, xdg_var: str) -> Path:
    """Desktop/Documents style folder for the platform, which may not exist."""
    if facts.is_windows:
        profile = facts.environ.get("USERPROFILE")
        if profile:
            return Path(profile) / name
        if facts.username:
            return Path("C:\\", "Users", facts.username, name)
        return facts.home / name
    if facts.is_macos:
        return facts.home / name
    xdg_dir = facts.environ.get(xdg_var)
    if xdg_dir:
        return Path(expand_home(xdg_dir.replace("$HOME", str(facts.home)), facts.home))
    return facts.home / name


def desktop_directory(facts: PlatformFacts) -> Path:
    return _user_folder(facts, "Desktop", "XDG_DESKTOP_DIR")


def documents_directory(facts: PlatformFacts) -> Path:
    return _user_folder(facts, "Documents", "XDG_DOCUMENTS_DIR")


def candidate_locations(config: ServerConfig, facts: PlatformFacts) -> List[CandidateLocation]:
    """Ordered output directory candidates, highest priority first."""
    subfolder = config.output_subfolder
    candidates: List[CandidateLocation] = []

    if config.output_directory:
        override = Path(expand_home(config.output_directory, facts.home))
        if not override.is_absolute():
            override = facts.cwd / override
        candidates.append(CandidateLocation(override, LocationReason.OVERRIDE))

    if config.save_to_desktop:
        candidates.extend([
            CandidateLocation(desktop_directory(facts) / subfolder, LocationReason.DESKTOP),
            CandidateLocation(documents_directory(facts) / subfolder, LocationReason.DOCUMENTS),
            CandidateLocation(facts.home / subfolder, LocationReason.HOME),
        ])
    else:
        candidates.append(CandidateLocation(facts.cwd / subfolder, LocationReason.WORKING_DIRECTORY))

    candidates.append(CandidateLocation(facts.cwd / FALLBACK_DIRNAME, LocationReason.FALLBACK))
    return candidates


def is_writable_directory(directory: Path) -> bool:
    """Create ``directory`` if missing, else probe it with a throwaway file."""
    if not directory.exists():
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug("Cannot create %s: %s", directory, e)
            return False
        return True

    if not directory.is_dir():
        logger.debug("Not a directory: %s", directory)
        return False

    probe = directory / f".write-probe-{time.time_ns()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"
    try:
        with open(probe, "xb"):
            pass
    except OSError as e:
        logger.debug("Probe write failed in %s: %s", directory, e)
        return False
    try:
        probe.unlink()
    except OSError as e:
        logger.warning("Could not remove probe file %s: %s", probe, e)
    return True


def resolve_output_directory(config: ServerConfig, facts: Optional[PlatformFacts] = None) -> Path:
    """Return an existing, writable directory for generated files.

    Platform facts are read fresh on every call unless supplied. Only a
    failure to create the final ``<cwd>/output`` tier propagates.
    """
    facts = facts or PlatformFacts.current()
    candidates = candidate_locations(config, facts)
    logger.debug("Platform: %s, home: %s, user: %s", facts.platform, facts.home, facts.username)

    for candidate in candidates[:-1]:
        if is_writable_directory(candidate.directory):
            logger.debug("Using %s directory: %s", candidate.reason.value, candidate.directory)
            return candidate.directory
        logger.debug("Skipping %s directory: %s", candidate.reason.value, candidate.directory)

    fallback = candidates[-1].directory
    try:
        fallback.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise IOFailureError(f"Cannot create fallback output directory {fallback}: {e}") from e
    logger.debug("Using fallback directory: %s", fallback)
    return fallback
