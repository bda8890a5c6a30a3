import os
import json
import logging
from typing import Any, Dict, Optional
from datetime import datetime
import nats
from nats.js import JetStreamContext
from nats.js.api import StreamConfig

logger = logging.getLogger(__name__)

EVENT_STREAM = "TRANSCODE_EVENTS"
SUBJECT_PREFIX = "transcodeops"


class NATSService:
    """
    Publishes transcode lifecycle events to NATS.

    An event of type `transcode.complete` goes to
    `transcodeops.<instance>.transcode.complete`, so consumers can follow one
    instance or all of them. The JetStream stream keeps a day of history.
    """

    def __init__(self, instance_name: str = "default"):
        self.url = os.getenv("NATS_URL", "nats://localhost:4222")
        self.instance_name = instance_name.lower().replace(" ", "-")
        self.nc: Optional[nats.NATS] = None
        self.js: Optional[JetStreamContext] = None
        self._connected = False
        self.published = 0
        self.failed = 0

    async def connect(self) -> None:
        """Connect to NATS server and ensure the event stream exists"""
        try:
            self.nc = await nats.connect(
                servers=[self.url],
                name=f"transcodeops-{self.instance_name}",
                reconnect_time_wait=2,
                max_reconnect_attempts=60,
                error_cb=self._error_callback,
                disconnected_cb=self._disconnected_callback,
                reconnected_cb=self._reconnected_callback,
            )
            self.js = self.nc.jetstream()
            await self._ensure_stream()

            self._connected = True
            logger.info(f"Connected to NATS at {self.url} as {self.instance_name}")

        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def disconnect(self) -> None:
        if self.nc and not self.nc.is_closed:
            await self.nc.drain()
            await self.nc.close()
            self._connected = False
            logger.info(f"Disconnected from NATS ({self.published} published, {self.failed} failed)")

    async def _ensure_stream(self) -> None:
        config = StreamConfig(
            name=EVENT_STREAM,
            subjects=[f"{SUBJECT_PREFIX}.>"],
            max_age=86400,  # 1 day
            max_msgs=50000,
            storage="memory",
            retention="limits",
            discard="old",
        )
        try:
            await self.js.add_stream(config)
            logger.info(f"Event stream {EVENT_STREAM} ready")
        except Exception as e:
            if "stream name already in use" not in str(e):
                logger.error(f"Failed to create stream {EVENT_STREAM}: {e}")

    def subject_for(self, event_type: str) -> str:
        return f"{SUBJECT_PREFIX}.{self.instance_name}.{event_type}"

    async def publish_event(self, event_type: str, event_data: Dict[str, Any]) -> None:
        """Publish an event. Dropped silently while disconnected."""
        if not self._connected:
            return

        message = {
            "type": event_type,
            "instance": self.instance_name,
            "data": event_data,
            "timestamp": datetime.utcnow().isoformat(),
        }

        try:
            await self.nc.publish(
                self.subject_for(event_type),
                json.dumps(message, default=str).encode(),
            )
            self.published += 1
        except Exception as e:
            self.failed += 1
            logger.error(f"Failed to publish {event_type}: {e}")

    async def _error_callback(self, e):
        logger.error(f"NATS error: {e}")

    async def _disconnected_callback(self):
        logger.warning("Disconnected from NATS")
        self._connected = False

    async def _reconnected_callback(self):
        logger.info("Reconnected to NATS")
        self._connected = True

    @property
    def is_connected(self) -> bool:
        return bool(self._connected and self.nc and not self.nc.is_closed)
