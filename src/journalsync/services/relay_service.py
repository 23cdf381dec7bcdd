from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.exceptions

from journalsync.config import RelayConfig
from journalsync.database.relay_manager import RedisRelayManager, RelayStore, mailbox_key
from journalsync.errors import MalformedEnvelope, RelayUploadError
from journalsync.schemas.envelopes import Envelope, PairingConfirmation, SyncRequest, SyncResponse, decode_envelope
from journalsync.services.events import EventBus, EventKind

logger = logging.getLogger(__name__)

EnvelopeHandler = Callable[[Envelope], Awaitable[None]]

RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0

_PERMISSION_ERRORS = (
    PermissionError,
    redis.exceptions.AuthenticationError,
    redis.exceptions.AuthenticationWrongNumberOfArgsError,
    redis.exceptions.NoPermissionError,
)
_MISSING_STORE_ERRORS = (
    ConnectionError,
    FileNotFoundError,
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
)


def classify_relay_error(exc: BaseException) -> RelayUploadError:
    if isinstance(exc, RelayUploadError):
        return exc
    # AuthenticationError subclasses ConnectionError, so permission is checked first.
    if isinstance(exc, _PERMISSION_ERRORS):
        return RelayUploadError(RelayUploadError.PERMISSION_DENIED, exc)
    if isinstance(exc, redis.exceptions.ResponseError) and str(exc).startswith(("NOPERM", "WRONGPASS", "NOAUTH")):
        return RelayUploadError(RelayUploadError.PERMISSION_DENIED, exc)
    if isinstance(exc, _MISSING_STORE_ERRORS):
        return RelayUploadError(RelayUploadError.STORE_MISSING, exc)
    return RelayUploadError(RelayUploadError.UNKNOWN, exc)


def create_relay_store(config: RelayConfig) -> RedisRelayManager:
    return RedisRelayManager(
        host=config.host,
        port=config.port,
        db=config.db,
        password=config.password,
        username=config.username,
        ssl=config.ssl,
    )


class RelayService:
    """Store-and-forward mailboxes: one key per device, consumed on read."""

    def __init__(self, store: RelayStore, device_id: str, events: Optional[EventBus] = None,
                 retry_delay: float = RETRY_DELAY, max_retry_delay: float = MAX_RETRY_DELAY):
        self.store = store
        self.device_id = device_id
        self.events = events
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self._listener: Optional[asyncio.Task] = None
        self._handler: Optional[EnvelopeHandler] = None

    async def send(self, target_device_id: str, envelope: PairingConfirmation | SyncRequest | SyncResponse) -> None:
        """Write ``envelope`` to the target's mailbox.

        Raises:
            RelayUploadError: with a reason describing why the write failed.
        """
        try:
            await self.store.put(mailbox_key(target_device_id), envelope.to_json())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = classify_relay_error(e)
            logger.error(f"Relay upload to {target_device_id} failed ({error.reason}): {e}")
            raise error from e
        logger.debug(f"Relayed {type(envelope).__name__} to {target_device_id}")

    async def receive(self) -> Optional[Envelope]:
        """Consume this device's mailbox; None when it is empty or held garbage."""
        raw = await self.store.take(mailbox_key(self.device_id))
        if raw is None:
            return None
        try:
            return decode_envelope(raw)
        except MalformedEnvelope as e:
            logger.warning(f"Discarded malformed relay envelope: {e}")
            return None

    async def drain(self) -> int:
        if self._handler is None:
            return 0
        envelope = await self.receive()
        if envelope is None:
            return 0
        try:
            await self._handler(envelope)
        except Exception as e:
            logger.error(f"Relay envelope handling error: {e}")
        return 1

    async def _listen(self) -> None:
        """Watch the mailbox until cancelled, resubscribing with backoff whenever the store drops."""
        key = mailbox_key(self.device_id)
        delay = self.retry_delay
        while True:
            try:
                async for _ in self.store.watch(key):
                    delay = self.retry_delay
                    await self.drain()
                logger.warning("Relay watch ended, resubscribing")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Relay listener dropped: {e}; retrying in {delay:.1f}s")
                if self.events is not None:
                    self.events.publish(EventKind.RELAY_DROPPED, self.device_id, error=str(e), retry_in=delay)

            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_delay)

    def listen(self, handler: EnvelopeHandler) -> asyncio.Task:
        self._handler = handler
        self._listener = asyncio.create_task(self._listen())
        return self._listener

    @property
    def listening(self) -> bool:
        return self._listener is not None and not self._listener.done()

    async def rearm(self) -> asyncio.Task:
        """Restart the listener, e.g. after the process was suspended."""
        if self._handler is None:
            raise RuntimeError("listen() must be called before rearm()")
        await self.stop()
        logger.info("Relay listener re-armed")
        return self.listen(self._handler)

    async def stop(self) -> None:
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None
