"""Short descriptions of shared images, stored as a message's derived context."""

from __future__ import annotations

import asyncio
import base64
import logging

from recallbot.errors import CapabilityUnavailable
from recallbot.settings import VISION_INSTRUCTION, VISION_TIMEOUT_SECONDS
from recallbot.text_generators.base import TextGeneratorAPI

_LOG = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


class ImageDescriber:
    """Describes an image with a multimodal text generator."""

    def __init__(self, generator: TextGeneratorAPI, timeout: float = VISION_TIMEOUT_SECONDS) -> None:
        self.generator = generator
        self.timeout = timeout

    async def describe(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
        """Return a trimmed description of the image.

        Raises:
            CapabilityUnavailable: unsupported format, backend failure,
                timeout, or empty output.
        """
        mime_type = (mime_type or "image/jpeg").split(";")[0].strip().lower()
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise CapabilityUnavailable(f"Unsupported image type: {mime_type}")

        data = base64.b64encode(image_bytes).decode("ascii")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "image", "source": {"type": "base64", "media_type": mime_type, "data": data}},
                    {"type": "text", "text": VISION_INSTRUCTION},
                ],
            }
        ]
        try:
            text = await asyncio.wait_for(
                self.generator.generate(messages, temperature=0.2), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise CapabilityUnavailable(f"Image description timed out after {self.timeout:.0f}s") from exc
        except Exception as exc:
            raise CapabilityUnavailable(f"Image description failed: {exc}") from exc

        text = (text or "").strip()
        if not text:
            raise CapabilityUnavailable("Image description was empty")
        _LOG.debug("Image described in %d chars", len(text))
        return text
