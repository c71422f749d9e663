import logging
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO
from typing import Callable, Iterable, List, Optional

import requests
from PIL import Image

from .config import Config
from .retry import with_retry


def download_image(image_url: str, timeout: float = 10) -> bytes:
    """Download an image, retrying transient HTTP failures."""

    def _get() -> bytes:
        response = requests.get(image_url, timeout=timeout)
        response.raise_for_status()
        return response.content

    return with_retry(_get, label=f"GET {image_url}")


def to_jpeg(data: bytes, max_size: Optional[int] = None, quality: Optional[int] = None) -> bytes:
    """Shrink an image to fit within ``max_size`` x ``max_size`` and re-encode as JPEG."""
    max_size = max_size or Config.IMAGE_MAX_SIZE
    quality = quality or Config.JPEG_QUALITY
    with Image.open(BytesIO(data)) as img:
        img = img.convert("RGB")
        # thumbnail keeps the aspect ratio and never enlarges
        img.thumbnail((max_size, max_size))
        buffer = BytesIO()
        img.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def fetch_image(image_url: str) -> Optional[bytes]:
    """Download and resize one image; ``None`` if either step fails."""
    try:
        return to_jpeg(download_image(image_url))
    except Exception as e:
        logging.warning(f"Dropping image {image_url}: {e}")
        return None


def fetch_images(
    image_urls: Iterable[str],
    limit: Optional[int] = None,
    fetch: Callable[[str], Optional[bytes]] = fetch_image,
) -> List[bytes]:
    """Fetch up to ``limit`` images concurrently, keeping the ones that succeeded in order."""
    limit = limit or Config.MAX_IMAGES
    urls = [url for url in image_urls if url][:limit]
    if not urls:
        return []
    with ThreadPoolExecutor(max_workers=len(urls)) as executor:
        results = list(executor.map(fetch, urls))
    return [image for image in results if image]
