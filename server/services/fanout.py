"""
Topic fanout for room updates.

Each room code is a topic. A player connection subscribes on
create/join/rejoin and unsubscribes on leave/disconnect; each player id maps
to at most one connection, and subscribing again for the same id replaces
the previous connection (the old socket stops receiving updates).

Projections are personalized (each viewer sees only their own hand), so
publishing is one direct send per subscribed connection rather than a
single shared payload.

Privileged observers subscribe to a parallel observation topic per room
and receive the unredacted projection.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from fastapi import WebSocket

from config import config

logger = logging.getLogger(__name__)

# Maximum observers per room to prevent resource exhaustion
MAX_OBSERVERS_PER_ROOM = config.MAX_OBSERVERS_PER_ROOM


@dataclass
class ObserverInfo:
    """Information about an observer connection."""
    websocket: WebSocket
    session_id: str
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TopicFanout:
    """
    Room-keyed publish/subscribe for player and observer connections.

    Send failures are logged and swallowed: a dead socket never blocks
    delivery to the rest of the room, and the WebSocket loop that owns the
    socket handles its disconnect.
    """

    def __init__(self, max_observers: int = MAX_OBSERVERS_PER_ROOM):
        self.max_observers = max_observers
        # room_code -> player_id -> websocket
        self._topics: Dict[str, Dict[str, WebSocket]] = {}
        # room_code -> list of ObserverInfo
        self._observers: Dict[str, List[ObserverInfo]] = {}
        # websocket -> room_code (for reverse lookup on disconnect)
        self._ws_to_observed: Dict[WebSocket, str] = {}

    # -------------------------------------------------------------------------
    # Player topics
    # -------------------------------------------------------------------------

    def subscribe(self, room_code: str, player_id: str, websocket: WebSocket) -> Optional[WebSocket]:
        """
        Subscribe a player's connection to a room topic.

        Args:
            room_code: Room code.
            player_id: Player identity.
            websocket: The player's current connection.

        Returns:
            The connection this one superseded, if any.
        """
        topic = self._topics.setdefault(room_code, {})
        previous = topic.get(player_id)
        topic[player_id] = websocket
        if previous is not None and previous is not websocket:
            logger.info(f"Connection for {player_id} in room {room_code} superseded")
            return previous
        return None

    def unsubscribe(
        self,
        room_code: str,
        player_id: str,
        websocket: Optional[WebSocket] = None,
    ) -> bool:
        """
        Remove a player from a room topic.

        Args:
            room_code: Room code.
            player_id: Player identity.
            websocket: If given, only unsubscribe when this is still the
                player's current connection (a superseded socket closing
                must not drop its replacement).

        Returns:
            True if a subscription was removed.
        """
        topic = self._topics.get(room_code)
        if not topic or player_id not in topic:
            return False
        if websocket is not None and topic[player_id] is not websocket:
            return False

        del topic[player_id]
        if not topic:
            del self._topics[room_code]
        return True

    def connection_for(self, room_code: str, player_id: str) -> Optional[WebSocket]:
        """Get a player's current connection in a room."""
        return self._topics.get(room_code, {}).get(player_id)

    def subscribers(self, room_code: str) -> Dict[str, WebSocket]:
        """Get a snapshot of a room's player subscriptions."""
        return dict(self._topics.get(room_code, {}))

    async def send_to(self, room_code: str, player_id: str, message: dict) -> bool:
        """
        Send a message to one subscribed player.

        Returns:
            True if the message was handed to the socket.
        """
        websocket = self.connection_for(room_code, player_id)
        if websocket is None:
            return False
        return await self._send(websocket, message)

    async def publish(self, room_code: str, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send the same message to every player subscribed to a room.

        Args:
            room_code: Room code.
            message: JSON-serializable message dict.
            exclude: Optional player ID to skip.
        """
        for player_id, websocket in self.subscribers(room_code).items():
            if player_id != exclude:
                await self._send(websocket, message)

    async def publish_personalized(self, room_code: str, build: Callable[[str], dict]) -> None:
        """
        Send each subscribed player a message built for them.

        Args:
            room_code: Room code.
            build: Called with each player id; returns that player's message.
        """
        for player_id, websocket in self.subscribers(room_code).items():
            await self._send(websocket, build(player_id))

    # -------------------------------------------------------------------------
    # Observation topics
    # -------------------------------------------------------------------------

    def add_observer(self, room_code: str, websocket: WebSocket, session_id: str) -> bool:
        """
        Subscribe an observer to a room's observation topic.

        An observer watches one room at a time; watching a new room drops
        the previous subscription.

        Returns:
            True if added, False if the room is at its observer limit.
        """
        self.remove_observer_by_ws(websocket)

        observers = self._observers.setdefault(room_code, [])
        if len(observers) >= self.max_observers:
            logger.warning(f"Room {room_code} at observer limit ({self.max_observers})")
            if not observers:
                del self._observers[room_code]
            return False

        observers.append(ObserverInfo(websocket=websocket, session_id=session_id))
        self._ws_to_observed[websocket] = room_code
        logger.info(f"Observer {session_id} watching room {room_code} (total: {len(observers)})")
        return True

    def remove_observer(self, room_code: str, websocket: WebSocket) -> None:
        """Unsubscribe an observer from a room's observation topic."""
        if room_code in self._observers:
            self._observers[room_code] = [
                info for info in self._observers[room_code]
                if info.websocket is not websocket
            ]
            if not self._observers[room_code]:
                del self._observers[room_code]

        self._ws_to_observed.pop(websocket, None)

    def remove_observer_by_ws(self, websocket: WebSocket) -> None:
        """Unsubscribe an observer from whatever room it watches."""
        room_code = self._ws_to_observed.get(websocket)
        if room_code:
            self.remove_observer(room_code, websocket)

    def observed_room(self, websocket: WebSocket) -> Optional[str]:
        """Get the room an observer is watching."""
        return self._ws_to_observed.get(websocket)

    def has_observers(self, room_code: str) -> bool:
        return bool(self._observers.get(room_code))

    async def publish_observers(self, room_code: str, message: dict) -> None:
        """Send a message to every observer of a room."""
        for info in list(self._observers.get(room_code, [])):
            await self._send(info.websocket, message)

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def close_topic(self, room_code: str) -> None:
        """Drop every subscription for a room (room destroyed)."""
        self._topics.pop(room_code, None)
        for info in self._observers.pop(room_code, []):
            self._ws_to_observed.pop(info.websocket, None)

    def connection_count(self) -> int:
        return sum(len(topic) for topic in self._topics.values())

    def observer_count(self) -> int:
        return sum(len(observers) for observers in self._observers.values())

    async def _send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
