"""
Client-side image compression.

Downloads a generated image, re-encodes it as JPEG at the configured quality
and returns it as a base64 data URL. Callers treat any CompressionError as
"no compressed variant" and keep the original URL.
"""
import asyncio
import base64
from io import BytesIO

import httpx
from PIL import Image, UnidentifiedImageError

from multimodal.core.logging import get_logger

logger = get_logger(__name__)

JPEG_MIME = "image/jpeg"


class CompressionError(Exception):
    """Raised when an image cannot be downloaded or re-encoded."""


def reencode_jpeg(image_bytes: bytes, quality: float) -> bytes:
    """
    Re-encode raw image bytes as JPEG.

    Args:
        image_bytes: Any format Pillow can open
        quality: Fraction in (0, 1], mapped to Pillow's 1-95 scale

    Returns:
        JPEG bytes
    """
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            # JPEG has no alpha channel
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            buffer = BytesIO()
            image.save(
                buffer,
                format="JPEG",
                quality=max(1, min(95, int(round(quality * 100)))),
                optimize=True,
            )
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise CompressionError(f"Could not re-encode image: {exc}") from exc
    return buffer.getvalue()


def to_data_url(jpeg_bytes: bytes) -> str:
    encoded = base64.b64encode(jpeg_bytes).decode("ascii")
    return f"data:{JPEG_MIME};base64,{encoded}"


async def compress_image_url(http_client: httpx.AsyncClient, image_url: str, quality: float) -> str:
    """
    Download and compress an image.

    Returns:
        data: URL of the JPEG re-encoding

    Raises:
        CompressionError: on download or decode failure
    """
    try:
        response = await http_client.get(image_url)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise CompressionError(f"Could not download image: {exc}") from exc

    jpeg_bytes = await asyncio.to_thread(reencode_jpeg, response.content, quality)
    logger.debug(
        "image_compressed",
        original_bytes=len(response.content),
        compressed_bytes=len(jpeg_bytes),
    )
    return to_data_url(jpeg_bytes)
