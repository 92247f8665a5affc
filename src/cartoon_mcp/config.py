"""Configuration and logging setup for Cartoon MCP."""

import logging
import os
import sys
from typing import Optional, Tuple

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, SecretStr

# Environment variable names
ENV_ALLOWED_DIRECTORIES = "ALLOWED_DIRECTORIES"
ENV_OUTPUT_DIRECTORY = "OUTPUT_DIRECTORY"
ENV_SAVE_TO_DESKTOP = "SAVE_TO_DESKTOP"
ENV_OUTPUT_SUBFOLDER = "OUTPUT_SUBFOLDER"
ENV_OPEN_PREVIEW = "OPEN_PREVIEW"
ENV_DEBUG = "DEBUG"
ENV_GEMINI_API_KEY = "GEMINI_API_KEY"
ENV_GEMINI_MODEL = "GEMINI_MODEL"

DEFAULT_OUTPUT_SUBFOLDER = "generated-images"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-exp-image-generation"

_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off", ""}


class ServerConfig(BaseModel):
    """Process-wide settings, read once at startup and never mutated."""
    model_config = ConfigDict(frozen=True)

    # Empty means "home directory plus working directory"
    allowed_directories: Tuple[str, ...] = ()
    output_directory: Optional[str] = None
    save_to_desktop: bool = False
    output_subfolder: str = DEFAULT_OUTPUT_SUBFOLDER
    open_preview: bool = True
    debug: bool = False
    gemini_api_key: Optional[SecretStr] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL


def _parse_bool(name: str, raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {raw!r}")


def _split_list(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(d.strip() for d in raw.split(",") if d.strip())


def load_server_config(env_file: Optional[str] = None) -> ServerConfig:
    """Loads server configuration from environment variables (and a .env file if present)."""
    load_dotenv(env_file or find_dotenv(usecwd=True))

    output_directory = os.getenv(ENV_OUTPUT_DIRECTORY, "").strip() or None
    api_key = os.getenv(ENV_GEMINI_API_KEY, "").strip()

    return ServerConfig(
        allowed_directories=_split_list(os.getenv(ENV_ALLOWED_DIRECTORIES)),
        output_directory=output_directory,
        save_to_desktop=_parse_bool(ENV_SAVE_TO_DESKTOP, os.getenv(ENV_SAVE_TO_DESKTOP), False),
        output_subfolder=os.getenv(ENV_OUTPUT_SUBFOLDER, "").strip() or DEFAULT_OUTPUT_SUBFOLDER,
        open_preview=_parse_bool(ENV_OPEN_PREVIEW, os.getenv(ENV_OPEN_PREVIEW), True),
        debug=_parse_bool(ENV_DEBUG, os.getenv(ENV_DEBUG), False),
        gemini_api_key=SecretStr(api_key) if api_key else None,
        gemini_model=os.getenv(ENV_GEMINI_MODEL, "").strip() or DEFAULT_GEMINI_MODEL,
    )


def configure_logging(debug: bool) -> logging.Logger:
    """Send package logs to stderr. stdout carries the MCP stream and must stay clean."""
    package_logger = logging.getLogger("cartoon_mcp")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if debug else logging.WARNING)
    package_logger.propagate = False
    return package_logger
