import logging
from typing import Any, Callable, Optional
from pypresence import AioPresence
from pypresence.exceptions import PipeClosed
from pypresence.types import ActivityType
from ..models import PresencePayload

logger = logging.getLogger(__name__)

# Everything that means the IPC pipe to Discord is gone
BROKEN_CONNECTION_ERRORS = (PipeClosed, BrokenPipeError, ConnectionResetError, ConnectionAbortedError, EOFError)


class SinkConnectionError(Exception):
    """The Discord IPC connection broke; the caller has to reconnect."""


class DiscordSink:
    def __init__(self, client_id: str, presence_factory: Optional[Callable[[str], Any]] = None):
        self.client_id = client_id
        self.presence_factory = presence_factory or AioPresence
        self.rpc: Optional[Any] = None

    @property
    def connected(self) -> bool:
        return self.rpc is not None

    async def connect(self):
        rpc = self.presence_factory(self.client_id)
        await rpc.connect()
        self.rpc = rpc
        logger.info("Connected to Discord Rich Presence")

    async def close(self):
        rpc, self.rpc = self.rpc, None
        if rpc is None:
            return
        # AioPresence.close() also closes the event loop it runs on, so only the pipe is shut here
        writer = getattr(rpc, "sock_writer", None)
        if writer is None:
            return
        try:
            writer.close()
        except OSError as e:
            # The old pipe is usually already dead when we get here
            logger.debug(f"Ignoring error while closing Discord pipe: {e}")

    async def set_activity(self, payload: PresencePayload):
        if self.rpc is None:
            raise SinkConnectionError("Not connected to Discord")
        try:
            await self.rpc.update(activity_type=ActivityType.LISTENING, **payload.to_activity())
        except BROKEN_CONNECTION_ERRORS as e:
            raise SinkConnectionError(f"Discord connection lost: {e!r}") from e

    async def clear_activity(self):
        if self.rpc is None:
            raise SinkConnectionError("Not connected to Discord")
        try:
            await self.rpc.clear()
        except BROKEN_CONNECTION_ERRORS as e:
            raise SinkConnectionError(f"Discord connection lost: {e!r}") from e
