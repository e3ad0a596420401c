"""Stack several garment photos into one image for a single try-on pass."""

import asyncio
import io
from functools import partial
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from PIL import Image

from tryon.io.image_fetch import DEFAULT_TIMEOUT_SECONDS, fetch_image_bytes

Fetcher = Callable[[str], Awaitable[bytes]]

BACKGROUND = (255, 255, 255)


def compose_vertical(
    images: Sequence[Image.Image],
    width: int = 768,
    gap: int = 20,
    background: Tuple[int, int, int] = BACKGROUND,
) -> Image.Image:
    """Scale every image to ``width`` and stack them top to bottom.

    Transparent regions are flattened onto ``background`` so the try-on model
    sees a plain studio backdrop.
    """
    if not images:
        raise ValueError("At least one garment image is required")

    scaled = []
    for img in images:
        img = img.convert("RGBA")
        w, h = img.size
        new_h = max(1, round(h * width / w))
        if (w, new_h) != (width, h):
            img = img.resize((width, new_h), Image.LANCZOS)
        scaled.append(img)

    total_h = sum(img.height for img in scaled) + gap * (len(scaled) - 1)
    canvas = Image.new("RGB", (width, total_h), background)
    y = 0
    for img in scaled:
        canvas.paste(img, (0, y), mask=img)
        y += img.height + gap
    return canvas


def _compose_png(blobs: List[bytes], width: int, gap: int) -> bytes:
    images = []
    for n, blob in enumerate(blobs):
        try:
            img = Image.open(io.BytesIO(blob))
            img.load()
        except Exception as exc:
            raise ValueError(f"Garment image {n + 1} could not be decoded: {exc}") from exc
        images.append(img)

    combined = compose_vertical(images, width=width, gap=gap)
    out = io.BytesIO()
    combined.save(out, format="PNG")
    return out.getvalue()


class GarmentCombiner:
    """Downloads garment images and composites them into one PNG."""

    def __init__(
        self,
        width: int = 768,
        gap: int = 20,
        download_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        fetcher: Optional[Fetcher] = None,
    ):
        self._width = width
        self._gap = gap
        self._fetch = fetcher or partial(fetch_image_bytes, timeout_seconds=download_timeout)

    async def combine(self, urls: Sequence[str]) -> bytes:
        if not urls:
            raise ValueError("At least one garment URL is required")
        # Downloads are sequential: steps within one job never overlap
        blobs = []
        for url in urls:
            blobs.append(await self._fetch(url))

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, _compose_png, blobs, self._width, self._gap)

    async def combine_pair(self, upper_url: str, lower_url: str) -> bytes:
        return await self.combine([upper_url, lower_url])
