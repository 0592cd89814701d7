import argparse
import asyncio
import logging
import signal
import sys
import time
import uvicorn
from enum import Enum
from typing import Optional

from .config import DEFAULT_CONFIG_PATH, ConfigError, Settings, load_settings
from .state import CoverCache, LoopContext, cover_cache_paths
from .clients.abs_client import ABSClient
from .clients.discord_client import DiscordSink, SinkConnectionError
from .clients.imgur_client import ImgurClient
from .covers import CoverResolver
from .engine import PlaybackTracker
from .models import PresencePayload
from .presence import build_presence, select_caption
from . import server

logger = logging.getLogger("main")


class StartupError(Exception):
    pass


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


class PresenceService:
    def __init__(self, settings: Settings, config_path: str = DEFAULT_CONFIG_PATH,
                 abs_client=None, sink=None, cache: Optional[CoverCache] = None, imgur=None):
        self.settings = settings
        self.running = True

        if cache is None:
            primary, legacy = cover_cache_paths(config_path)
            cache = CoverCache(primary, legacy)
        self.cache = cache

        self.abs = abs_client or ABSClient(settings)
        if imgur is None and settings.imgur_client_id and not settings.use_abs_cover:
            imgur = ImgurClient(settings.imgur_client_id, timeout=settings.request_timeout_seconds)
        self.imgur = imgur
        self.sink = sink or DiscordSink(settings.discord_client_id)

        self.tracker = PlaybackTracker(settings)
        self.covers = CoverResolver(settings, self.abs, self.cache, self.imgur)
        self.ctx = LoopContext()

        self.connection_state = ConnectionState.CONNECTED
        self.last_tick_at = 0.0
        self.last_successful_tick = 0.0

        # Link service to status server module
        server.service = self

    async def setup(self):
        try:
            await self.sink.connect()
        except Exception as e:
            raise StartupError(f"Could not connect to Discord: {e}") from e

    async def _clear(self, ctx: LoopContext):
        await self.sink.clear_activity()
        if ctx.has_presence:
            logger.info("Cleared presence")
        ctx.has_presence = False

    async def _publish(self, ctx: LoopContext, payload: PresencePayload):
        await self.sink.set_activity(payload)
        ctx.has_presence = True
        logger.info(f"Updated presence: {payload.details} - {payload.state} (start={payload.start}, end={payload.end})")

    async def tick(self, ctx: Optional[LoopContext] = None, now: Optional[float] = None) -> Optional[PresencePayload]:
        """
        One pipeline run: session -> tracker -> cover -> payload -> Discord.
        Returns the published payload, or None if the presence was cleared.
        """
        if ctx is None:
            ctx = self.ctx

        session = await self.abs.get_current_session()
        if session is None:
            logger.info("No active listening session")
            await self._clear(ctx)
            return None

        if now is None:
            now = time.time()

        self.tracker.track_book(ctx, session.display_title)
        output = self.tracker.infer(ctx, session.current_time, session.duration, now)

        if output.first_sample:
            logger.debug(f"First sample for {session.display_title!r}, waiting for a second one")
            await self._clear(ctx)
            return None

        if not output.is_playing:
            if not self.settings.show_paused:
                await self._clear(ctx)
                return None
            payload = build_presence(session, output, None, None, now)
            await self._publish(ctx, payload)
            return payload

        chapters = None
        if self.settings.show_chapters and not session.chapters and not session.has_podcast_metadata:
            if ctx.chapters is None:
                # Left unset on failure so the next tick retries
                ctx.chapters = await self.abs.get_item_chapters(session.library_item_id)
            chapters = ctx.chapters

        artwork = await self.covers.resolve(session)
        caption = select_caption(session, output.position, self.settings.show_chapters, chapters)
        payload = build_presence(session, output, artwork, caption, now)
        await self._publish(ctx, payload)
        return payload

    async def reconnect(self) -> bool:
        self.connection_state = ConnectionState.RECONNECTING
        await self.sink.close()
        logger.info(f"Reconnecting to Discord in {self.settings.reconnect_backoff_seconds}s...")
        await asyncio.sleep(self.settings.reconnect_backoff_seconds)
        try:
            await self.sink.connect()
        except Exception as e:
            logger.error(f"Reconnect to Discord failed: {e}. Will retry.")
            return False

        self.connection_state = ConnectionState.CONNECTED
        self.ctx.has_presence = False
        logger.info("Reconnected to Discord")
        return True

    async def run_once(self):
        """Runs one tick. Nothing raised inside a tick escapes from here."""
        self.last_tick_at = time.time()
        try:
            await self.tick()
            self.last_successful_tick = time.time()
        except SinkConnectionError as e:
            logger.error(f"Error setting activity: {e}")
            await self.reconnect()
        except Exception as e:
            logger.error(f"Error setting activity: {e}", exc_info=True)

    async def poll_loop(self):
        logger.info("Watching Audiobookshelf listening sessions")
        while self.running:
            start_time = time.monotonic()
            await self.run_once()

            # Wait for remainder of interval
            elapsed = time.monotonic() - start_time
            await asyncio.sleep(max(0, self.settings.poll_interval_seconds - elapsed))

    async def shutdown(self):
        self.running = False
        await self.sink.close()
        await self.abs.close()
        if self.imgur is not None:
            await self.imgur.close()

    async def start(self):
        try:
            await self.setup()
        except StartupError:
            await self.shutdown()
            raise

        tasks = [asyncio.create_task(self.poll_loop())]

        if self.settings.http_server_enabled:
            config = uvicorn.Config(server.app, host="0.0.0.0", port=self.settings.http_server_port, log_level="warning")
            tasks.append(asyncio.create_task(uvicorn.Server(config).serve()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            await self.shutdown()


def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show Audiobookshelf listening activity as Discord Rich Presence")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH, help="path to config.json")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        configure_logging("INFO")
        logger.error(str(e))
        return 1

    configure_logging(settings.log_level)
    logger.info(f"Using config file: {args.config}")

    signal.signal(signal.SIGTERM, handle_sigterm)
    service = PresenceService(settings, args.config)
    try:
        asyncio.run(service.start())
    except StartupError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
