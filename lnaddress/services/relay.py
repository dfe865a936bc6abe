import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import websockets

from config import settings
from lnaddress.errors import PublishFailure

logger = logging.getLogger(__name__)


class RelayPublisher:
    def __init__(self, relays: Optional[List[str]] = None, timeout: Optional[float] = None):
        self.relays = relays if relays is not None else settings.nostr_relays_list
        self.timeout = timeout if timeout is not None else settings.RELAY_TIMEOUT_SECONDS

    async def _send_event_to_relay(self, relay_url: str, event: Dict[str, Any]) -> bool:
        """Send event to a single relay and wait for its OK"""
        try:
            async with websockets.connect(relay_url, open_timeout=self.timeout) as websocket:
                await websocket.send(json.dumps(["EVENT", event]))
                return await asyncio.wait_for(self._wait_for_ok(websocket, relay_url, event["id"]), timeout=self.timeout)

        except asyncio.TimeoutError:
            logger.warning(f"Timeout waiting for response from {relay_url}")
            return False
        except Exception as e:
            logger.warning(f"Failed to send event to {relay_url}: {str(e)}")
            return False

    async def _wait_for_ok(self, websocket, relay_url: str, event_id: str) -> bool:
        # Relays may interleave NOTICE messages before the OK
        while True:
            response = await websocket.recv()
            try:
                response_data = json.loads(response)
            except json.JSONDecodeError:
                continue

            if not response_data or response_data[0] != "OK" or len(response_data) < 3:
                continue
            if response_data[1] != event_id:
                continue

            if response_data[2]:
                logger.debug(f"Event {event_id[:16]}... accepted by {relay_url}")
                return True

            reason = response_data[3] if len(response_data) > 3 else 'Unknown error'
            logger.warning(f"Event rejected by {relay_url}: {reason}")
            return False

    async def publish(self, event: Dict[str, Any]) -> str:
        """Publish a signed event to every relay. Returns the event id if any relay accepted it."""
        if not self.relays:
            raise PublishFailure("No relays configured")

        results = await asyncio.gather(
            *(self._send_event_to_relay(relay_url, event) for relay_url in self.relays)
        )
        success_count = sum(1 for accepted in results if accepted)

        if success_count == 0:
            raise PublishFailure(f"Event {event['id']} rejected by all {len(self.relays)} relays")

        logger.info(f"Event {event['id'][:16]}... published to {success_count}/{len(self.relays)} relays")
        return event["id"]


# Global publisher instance
relay_publisher = RelayPublisher()
