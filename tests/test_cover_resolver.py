import asyncio
import tempfile
import unittest
from pathlib import Path
import httpx
from abs_presence.config import Settings
from abs_presence.covers import COVER_PROVIDERS, CoverResolver, search_title
from abs_presence.models import Session
from abs_presence.state import CoverCache


def make_settings(**overrides):
    values = dict(
        discord_client_id="1283070638088650752",
        audiobookshelf_url="http://abs.local",
        audiobookshelf_token="token",
    )
    values.update(overrides)
    return Settings(**values)


def make_session(**overrides):
    data = {
        "libraryItemId": "li_1",
        "mediaType": "book",
        "displayTitle": "The Way of Kings: The Stormlight Archive, Book 1",
        "displayAuthor": "Brandon Sanderson",
        "currentTime": 100.0,
        "duration": 3600.0,
        "mediaMetadata": {"genres": ["Fantasy"]},
    }
    data.update(overrides)
    return Session.model_validate(data)


class MockABSClient:
    def __init__(self, cover=None, results=None, delays=None, errors=()):
        self.cover = cover
        self.results = results or {}
        self.delays = delays or {}
        self.errors = set(errors)
        self.calls = []
        self.completed = []

    async def get_cover(self, item_id):
        self.calls.append(("cover", item_id))
        return self.cover

    def cover_url(self, item_id):
        return f"http://abs.local/api/items/{item_id}/cover?width=400&format=jpeg"

    async def search_cover(self, title, author, provider):
        self.calls.append(("search", title, author, provider))
        delay = self.delays.get(provider)
        if delay:
            await asyncio.sleep(delay)
        self.completed.append(provider)
        if provider in self.errors:
            raise httpx.ConnectError("provider down")
        return self.results.get(provider)


class MockImgur:
    def __init__(self, link=None):
        self.link = link
        self.uploads = []

    async def upload(self, image, filename="cover.jpg"):
        self.uploads.append(image)
        return self.link


class TestSearchTitle(unittest.TestCase):
    def test_strips_subtitle_and_keeps_book_number(self):
        self.assertEqual(search_title("The Way of Kings: The Stormlight Archive, Book 1"), "The Way of Kings Book 1")

    def test_strips_parenthesised_decoration(self):
        self.assertEqual(search_title("Dune (Unabridged)"), "Dune")

    def test_book_number_already_in_base(self):
        self.assertEqual(search_title("Mistborn Book 2: The Well of Ascension"), "Mistborn Book 2")

    def test_plain_title(self):
        self.assertEqual(search_title("Project Hail Mary"), "Project Hail Mary")


class TestCoverResolver(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.cache = CoverCache(Path(self.tmp.name) / "cover_cache.json")

    def tearDown(self):
        self.tmp.cleanup()

    def resolver(self, abs_client, imgur=None, **settings):
        return CoverResolver(make_settings(**settings), abs_client, self.cache, imgur)

    async def test_cache_hit_makes_no_calls(self):
        self.cache.set("li_1", "https://covers.example/li_1.jpg")
        abs_client = MockABSClient(cover=b"jpeg")
        url = await self.resolver(abs_client).resolve(make_session())
        self.assertEqual(url, "https://covers.example/li_1.jpg")
        self.assertEqual(abs_client.calls, [])

    async def test_server_cover_used_directly(self):
        abs_client = MockABSClient(cover=b"jpeg")
        imgur = MockImgur(link="https://i.imgur.com/abc.jpg")
        url = await self.resolver(abs_client, imgur, use_abs_cover=True).resolve(make_session())
        self.assertEqual(url, "http://abs.local/api/items/li_1/cover?width=400&format=jpeg")
        self.assertEqual(imgur.uploads, [])
        self.assertEqual(self.cache.get("li_1"), url)

    async def test_server_cover_rehosted(self):
        abs_client = MockABSClient(cover=b"jpeg")
        imgur = MockImgur(link="https://i.imgur.com/abc.jpg")
        url = await self.resolver(abs_client, imgur).resolve(make_session())
        self.assertEqual(url, "https://i.imgur.com/abc.jpg")
        self.assertEqual(imgur.uploads, [b"jpeg"])
        self.assertEqual(self.cache.get("li_1"), "https://i.imgur.com/abc.jpg")

    async def test_rehost_failure_falls_back_to_server_url(self):
        abs_client = MockABSClient(cover=b"jpeg")
        url = await self.resolver(abs_client, MockImgur(link=None)).resolve(make_session())
        self.assertEqual(url, "http://abs.local/api/items/li_1/cover?width=400&format=jpeg")
        self.assertEqual(self.cache.get("li_1"), url)

    async def test_no_imgur_credential_uses_server_url(self):
        abs_client = MockABSClient(cover=b"jpeg")
        with self.assertLogs("abs_presence.covers", level="WARNING"):
            url = await self.resolver(abs_client).resolve(make_session())
        self.assertEqual(url, "http://abs.local/api/items/li_1/cover?width=400&format=jpeg")

    async def test_podcast_without_server_cover_is_not_searched(self):
        abs_client = MockABSClient(cover=None, results={"audible": "https://x/1.jpg"})
        session = make_session(mediaType="podcast", episodeId="ep_1")
        url = await self.resolver(abs_client).resolve(session)
        self.assertIsNone(url)
        self.assertFalse([c for c in abs_client.calls if c[0] == "search"])
        self.assertNotIn("li_1", self.cache)

    async def test_provider_search_uses_normalised_title(self):
        abs_client = MockABSClient(results={"google": "https://google/cover.jpg"})
        url = await self.resolver(abs_client).resolve(make_session())
        self.assertEqual(url, "https://google/cover.jpg")
        self.assertEqual(self.cache.get("li_1"), "https://google/cover.jpg")

        searches = [c for c in abs_client.calls if c[0] == "search"]
        self.assertEqual(len(searches), len(COVER_PROVIDERS))
        self.assertTrue(all(c[1] == "The Way of Kings Book 1" for c in searches))
        self.assertTrue(all(c[2] == "Brandon Sanderson" for c in searches))

    async def test_priority_order_beats_arrival_order(self):
        abs_client = MockABSClient(
            results={"audible": "https://audible/cover.jpg", "google": "https://google/cover.jpg"},
            delays={"audible": 0.05},
        )
        url = await self.resolver(abs_client).resolve(make_session())
        self.assertEqual(url, "https://audible/cover.jpg")
        # google answered first, audible last
        self.assertLess(abs_client.completed.index("google"), abs_client.completed.index("audible"))

    async def test_provider_errors_are_ignored(self):
        abs_client = MockABSClient(
            results={"audible": "https://audible/cover.jpg", "openlibrary": "https://ol/cover.jpg"},
            errors={"audible", "google"},
        )
        url = await self.resolver(abs_client).resolve(make_session())
        self.assertEqual(url, "https://ol/cover.jpg")

    async def test_nothing_found(self):
        abs_client = MockABSClient()
        url = await self.resolver(abs_client).resolve(make_session())
        self.assertIsNone(url)
        self.assertEqual(len(self.cache), 0)


class TestCoverCache(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_round_trip(self):
        path = self.dir / "cover_cache.json"
        cache = CoverCache(path)
        entries = {f"li_{i}": f"https://covers.example/{i}.jpg" for i in range(5)}
        for item_id, url in entries.items():
            cache.set(item_id, url)

        reloaded = CoverCache(path)
        self.assertEqual(reloaded.entries, entries)

    def test_overwrite(self):
        path = self.dir / "cover_cache.json"
        cache = CoverCache(path)
        cache.set("li_1", "https://old")
        cache.set("li_1", "https://new")
        self.assertEqual(CoverCache(path).get("li_1"), "https://new")

    def test_missing_file_starts_empty(self):
        cache = CoverCache(self.dir / "nope.json")
        self.assertEqual(len(cache), 0)

    def test_corrupt_file_starts_empty(self):
        path = self.dir / "cover_cache.json"
        path.write_text("{not json", encoding="utf-8")
        self.assertEqual(len(CoverCache(path)), 0)

    def test_wrong_shape_starts_empty(self):
        path = self.dir / "cover_cache.json"
        path.write_text('["a", "b"]', encoding="utf-8")
        self.assertEqual(len(CoverCache(path)), 0)

    def test_legacy_fallback(self):
        legacy = self.dir / "legacy" / "cover_cache.json"
        legacy.parent.mkdir()
        legacy.write_text('{"li_9": "https://legacy/9.jpg"}', encoding="utf-8")

        primary = self.dir / "config" / "cover_cache.json"
        cache = CoverCache(primary, legacy)
        self.assertEqual(cache.get("li_9"), "https://legacy/9.jpg")

        # New entries go to the primary location
        cache.set("li_10", "https://new/10.jpg")
        self.assertTrue(primary.exists())
        self.assertEqual(CoverCache(primary).entries, {"li_9": "https://legacy/9.jpg", "li_10": "https://new/10.jpg"})

    def test_primary_wins_over_legacy(self):
        legacy = self.dir / "legacy.json"
        legacy.write_text('{"li_1": "https://legacy"}', encoding="utf-8")
        primary = self.dir / "cover_cache.json"
        primary.write_text('{"li_1": "https://primary"}', encoding="utf-8")
        self.assertEqual(CoverCache(primary, legacy).get("li_1"), "https://primary")


if __name__ == '__main__':
    unittest.main()
