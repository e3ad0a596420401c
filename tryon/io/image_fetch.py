"""Download remote images with a bounded timeout.

Garment and result images come from arbitrary third-party URLs; unreachable
hosts are a routine failure, so every download is capped.
"""

import asyncio
from typing import Optional

import aiohttp

DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_IMAGE_BYTES = 50 * 1024 * 1024


class ImageDownloadError(RuntimeError):
    pass


async def fetch_image_bytes(
    url: str,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    session: Optional[aiohttp.ClientSession] = None,
) -> bytes:
    """GET ``url`` and return the body.

    Raises ImageDownloadError on non-200 responses, oversize bodies, network
    errors and timeouts.
    """
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    own_session = session is None
    if own_session:
        session = aiohttp.ClientSession(timeout=timeout)
    try:
        async with session.get(url, timeout=timeout) as response:
            if response.status != 200:
                raise ImageDownloadError(f"Failed to download {url}: HTTP {response.status}")
            if response.content_length and response.content_length > MAX_IMAGE_BYTES:
                raise ImageDownloadError(f"Image at {url} is too large ({response.content_length} bytes)")
            data = await response.read()
    except aiohttp.ClientError as exc:
        raise ImageDownloadError(f"Failed to download {url}: {exc}") from exc
    except asyncio.TimeoutError as exc:
        raise ImageDownloadError(f"Timed out downloading {url} after {timeout_seconds:.0f}s") from exc
    finally:
        if own_session:
            await session.close()

    if len(data) > MAX_IMAGE_BYTES:
        raise ImageDownloadError(f"Image at {url} is too large ({len(data)} bytes)")
    return data
