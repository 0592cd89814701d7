import asyncio
import logging
import re
from typing import List, Optional, Sequence
from .config import Settings
from .models import Session
from .state import CoverCache

logger = logging.getLogger(__name__)

# Priority order; the first provider with a result wins regardless of response time
COVER_PROVIDERS = (
    "audible",
    "google",
    "audible.jp",
    "openlibrary",
    "itunes",
    "audible.ca",
    "audible.uk",
    "audible.au",
    "audible.fr",
    "audible.de",
    "audible.it",
    "audible.in",
    "audible.es",
    "fantlab",
)

_BOOK_NUMBER = re.compile(r"\bbook\s+(\d+)\b", re.IGNORECASE)


def search_title(title: str) -> str:
    """
    Title used for provider searches: subtitle decoration after ':' or '(' is dropped,
    but a "Book N" series marker survives.
    """
    base = re.split(r"[:(]", title, maxsplit=1)[0].strip() or title.strip()
    match = _BOOK_NUMBER.search(title)
    if match and not _BOOK_NUMBER.search(base):
        base = f"{base} Book {match.group(1)}"
    return base


class CoverResolver:
    def __init__(self, settings: Settings, abs_client, cache: CoverCache, imgur=None,
                 providers: Sequence[str] = COVER_PROVIDERS):
        self.settings = settings
        self.abs = abs_client
        self.cache = cache
        self.imgur = imgur
        self.providers = tuple(providers)

    async def resolve(self, session: Session) -> Optional[str]:
        item_id = session.library_item_id

        # 1. Cache
        cached = self.cache.get(item_id)
        if cached:
            logger.debug(f"Cover cache hit for {item_id}")
            return cached

        # 2. Library server cover, optionally re-hosted
        url = await self._server_cover(item_id)
        if url:
            self.cache.set(item_id, url)
            return url

        # 3. Podcasts are not searched externally
        if session.is_podcast:
            logger.info(f"No cover for podcast item {item_id}")
            return None

        # 4./5. Provider fan-out
        title = search_title(session.display_title)
        url = await self.search_providers(title, session.display_author)
        if url:
            logger.info(f"Resolved cover for {title!r} from provider search")
            self.cache.set(item_id, url)
            return url

        logger.info(f"No cover found for {title!r}")
        return None

    async def _server_cover(self, item_id: str) -> Optional[str]:
        image = await self.abs.get_cover(item_id)
        if not image:
            return None

        server_url = self.abs.cover_url(item_id)
        if self.settings.use_abs_cover:
            return server_url

        if self.imgur is None:
            logger.warning("No imgur_client_id configured; using the Audiobookshelf cover URL directly")
            return server_url

        hosted = await self.imgur.upload(image)
        if not hosted:
            logger.warning(f"Re-hosting cover for {item_id} failed; using the Audiobookshelf cover URL")
            return server_url
        logger.info(f"Re-hosted cover for {item_id} at {hosted}")
        return hosted

    async def search_providers(self, title: str, author: str) -> Optional[str]:
        """
        Queries every provider concurrently, waits for all of them, then takes the
        first hit in priority order.
        """
        tasks = [self.abs.search_cover(title, author, p) for p in self.providers]
        results: List = await asyncio.gather(*tasks, return_exceptions=True)

        for provider, result in zip(self.providers, results):
            if isinstance(result, BaseException):
                logger.debug(f"Cover search via {provider} failed: {result}")
                continue
            if result:
                logger.debug(f"Using cover from {provider}")
                return result
        return None
