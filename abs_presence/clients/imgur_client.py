import logging
import httpx
from typing import Optional

logger = logging.getLogger(__name__)

IMGUR_UPLOAD_URL = "https://api.imgur.com/3/image"


class ImgurClient:
    """Re-hosts cover images so Discord can load them without reaching the library server."""

    def __init__(self, client_id: str, timeout: float = 30, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = httpx.AsyncClient(
            headers={"Authorization": f"Client-ID {client_id}"},
            timeout=timeout,
            transport=transport
        )

    async def close(self):
        await self.client.aclose()

    async def upload(self, image: bytes, filename: str = "cover.jpg") -> Optional[str]:
        """Uploads JPEG bytes. Returns the hosted URL, or None on any failure."""
        try:
            resp = await self.client.post(
                IMGUR_UPLOAD_URL,
                files={"image": (filename, image, "image/jpeg")}
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Imgur upload failed: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Imgur upload returned unexpected body: {data!r}")
            return None
        link = (data.get("data") or {}).get("link")
        if not data.get("success", True) or not link:
            logger.warning(f"Imgur upload returned no link: {data}")
            return None
        return link
