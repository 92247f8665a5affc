"""3D cartoon image generation and the save/preview workflow."""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import ServerConfig
from .locations import FALLBACK_DIRNAME, PlatformFacts, resolve_output_directory
from .security import IOFailureError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_FILE_STEM = "cartoon"
IMAGE_SUFFIX = ".png"

CARTOON_PROMPT_TEMPLATE = (
    "Generate a 3D style cartoon image for kids: {prompt}. "
    "The image should be colorful, playful, and child-friendly. "
    "Use bright colors, soft shapes, and a fun, engaging style that appeals to children. "
    "Make it look like a high-quality 3D animated character or scene."
)

PREVIEW_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>3D Cartoon Preview</title>
  <style>
    body {{ font-family: Arial, sans-serif; margin: 20px; }}
    .image-container {{ max-width: 800px; margin: 0 auto; }}
    img {{ max-width: 100%; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }}
    .prompt {{ margin: 10px 0; color: #666; }}
    .path {{ font-family: monospace; margin: 10px 0; }}
  </style>
</head>
<body>
  <h1>3D Cartoon Image</h1>
  <div class="prompt">Prompt: {prompt}</div>
  <div class="path">Saved to: {path}</div>
  <div class="image-container">
    <img src="{src}" alt="Generated cartoon image">
  </div>
</body>
</html>
"""


@dataclass(frozen=True)
class SavedCartoon:
    image_path: Path
    html_path: Path


class CartoonGenerator:
    """Thin wrapper around the Gemini streaming image API."""

    def __init__(self, api_key: Optional[str], model: str, client: Optional[Any] = None) -> None:
        self.model = model
        self._api_key = api_key
        self._client = client

    @classmethod
    def from_config(cls, config: ServerConfig) -> "CartoonGenerator":
        api_key = config.gemini_api_key.get_secret_value() if config.gemini_api_key else None
        return cls(api_key=api_key, model=config.gemini_model)

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise UpstreamError("GEMINI_API_KEY environment variable is required for image generation")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def generate(self, prompt: str) -> bytes:
        """Return the first image streamed back for ``prompt``."""
        contents = [
            types.Content(role="user", parts=[types.Part(text=CARTOON_PROMPT_TEMPLATE.format(prompt=prompt))]),
        ]
        config = types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"])

        try:
            stream = await self.client.aio.models.generate_content_stream(
                model=self.model,
                contents=contents,
                config=config,
            )
            async for chunk in stream:
                if not chunk.candidates or not chunk.candidates[0].content or not chunk.candidates[0].content.parts:
                    continue
                for part in chunk.candidates[0].content.parts:
                    if part.inline_data and part.inline_data.data:
                        logger.debug("Received %d bytes of %s", len(part.inline_data.data), part.inline_data.mime_type)
                        return part.inline_data.data
        except genai_errors.APIError as e:
            raise UpstreamError(f"Failed to generate image: {e}") from e

        raise UpstreamError("No image data received from the API")


def build_output_filename(file_name: str, now: Optional[datetime] = None) -> str:
    """Keep a ``.png`` name as given, otherwise append a sortable UTC timestamp."""
    # Only the base name is honoured; the directory comes from the resolver
    name = Path(file_name.strip().replace("\\", "/")).name or DEFAULT_FILE_STEM
    if name.endswith(IMAGE_SUFFIX):
        return name
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
    return f"{name}_{timestamp}{IMAGE_SUFFIX}"


def render_preview_html(prompt: str, image_path: Path) -> str:
    return PREVIEW_TEMPLATE.format(
        prompt=html.escape(prompt),
        path=html.escape(str(image_path)),
        src=html.escape(image_path.as_uri(), quote=True),
    )


def _write_artifacts(directory: Path, file_name: str, image: bytes, prompt: str) -> SavedCartoon:
    image_path = directory / file_name
    image_path.write_bytes(image)
    html_path = directory / f"{file_name[:-len(IMAGE_SUFFIX)]}_preview.html"
    html_path.write_text(render_preview_html(prompt, image_path), encoding="utf-8")
    return SavedCartoon(image_path=image_path, html_path=html_path)


def save_cartoon(
    config: ServerConfig,
    image: bytes,
    file_name: str,
    prompt: str,
    facts: Optional[PlatformFacts] = None,
) -> SavedCartoon:
    """Write the image and its HTML preview into the resolved output directory."""
    facts = facts or PlatformFacts.current()
    output_name = build_output_filename(file_name)
    directory = resolve_output_directory(config, facts)

    try:
        saved = _write_artifacts(directory, output_name, image, prompt)
    except OSError as e:
        fallback = facts.cwd / FALLBACK_DIRNAME
        if directory == fallback:
            raise IOFailureError(f"Failed to save image to {directory}: {e}") from e
        logger.error("Error saving image to %s: %s. Falling back to %s", directory, e, fallback)
        try:
            fallback.mkdir(parents=True, exist_ok=True)
            saved = _write_artifacts(fallback, output_name, image, prompt)
        except OSError as e2:
            raise IOFailureError(f"Failed to save image to {fallback}: {e2}") from e2

    logger.debug("Image saved to %s, preview at %s", saved.image_path, saved.html_path)
    return saved
