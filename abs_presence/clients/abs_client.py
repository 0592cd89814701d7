import logging
import httpx
from typing import List, Optional
from ..config import Settings
from ..models import Chapter, CoverSearchResponse, LibraryItem, ListeningSessionsResponse, Session

logger = logging.getLogger(__name__)

COVER_PARAMS = {"width": 400, "format": "jpeg"}


class ABSClient:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.audiobookshelf_url
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {settings.audiobookshelf_token}"},
            timeout=settings.request_timeout_seconds,
            transport=transport
        )

    async def close(self):
        await self.client.aclose()

    async def get_current_session(self) -> Optional[Session]:
        """
        Returns the most recent listening session, or None if there is none.
        HTTP and decoding errors propagate so the caller can skip the tick.
        """
        resp = await self.client.get("/api/me/listening-sessions", params={"itemsPerPage": 1})
        resp.raise_for_status()
        data = ListeningSessionsResponse.model_validate(resp.json())
        if not data.sessions:
            return None
        return data.sessions[0]

    async def get_item_chapters(self, item_id: str) -> Optional[List[Chapter]]:
        """Returns the item's chapters, or None if the lookup failed and should be retried."""
        try:
            resp = await self.client.get(f"/api/items/{item_id}", params={"include": "chapters"})
            resp.raise_for_status()
            item = LibraryItem.model_validate(resp.json())
            return item.media.chapters
        except Exception as e:
            logger.warning(f"Failed to fetch chapters for {item_id}: {e}")
            return None

    def cover_url(self, item_id: str) -> str:
        """Public URL of the server's own cover for an item."""
        return str(httpx.URL(f"{self.base_url}/api/items/{item_id}/cover", params=COVER_PARAMS))

    async def get_cover(self, item_id: str) -> Optional[bytes]:
        """Returns the cover image bytes, or None if the item has no cover."""
        try:
            resp = await self.client.get(f"/api/items/{item_id}/cover", params=COVER_PARAMS)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch cover for {item_id}: {e}")
            return None
        if resp.status_code != 200 or not resp.content:
            logger.debug(f"No server cover for {item_id} (HTTP {resp.status_code})")
            return None
        return resp.content

    async def search_cover(self, title: str, author: str, provider: str) -> Optional[str]:
        """
        Queries one metadata provider through the server's cover search.
        Errors propagate; the resolver decides how to treat them.
        """
        resp = await self.client.get(
            "/api/search/covers",
            params={"title": title, "author": author, "provider": provider}
        )
        resp.raise_for_status()
        data = CoverSearchResponse.model_validate(resp.json())
        for url in data.results:
            if url:
                return url
        return None
