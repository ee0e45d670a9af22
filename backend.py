from typing import Dict, List, Optional

from exceptions import JoinRejected
from logging_config import get_logger
from schemas.signals import ExistingPeersMessage, NewPeerMessage, PeerLeftMessage

logger = get_logger(__name__)


class RoomDirectory:
    """In-memory room membership: room id -> {client id -> connection}.

    Every method is synchronous and only queues frames on connections, so a
    join/leave/relay runs to completion before any other connection's
    message is handled.
    """

    def __init__(self):
        self._rooms: Dict[str, Dict[str, object]] = {}
        logger.info("Initializing RoomDirectory")

    def join(self, room_id: str, client_id: str, connection) -> List[str]:
        """Add ``connection`` to ``room_id`` as ``client_id``.

        The joiner gets ``existing-peers`` and the current members get
        ``new-peer`` before the joiner is inserted, so it never hears about
        itself. Returns the peer ids sent to the joiner.
        """
        self.check_join(room_id, client_id, connection)

        room = self._rooms.get(room_id)
        if room is None:
            room = {}
            self._rooms[room_id] = room
            logger.debug(f"Room {room_id} created")

        peers = list(room.keys())
        members = list(room.values())
        connection.send(ExistingPeersMessage(peers=peers).model_dump())

        announcement = NewPeerMessage(clientId=client_id).model_dump()
        for peer in members:
            if peer.is_open:
                peer.send(announcement)

        room[client_id] = connection
        logger.info(f"Client {client_id} joined room {room_id} ({len(room)} members)")
        return peers

    def check_join(self, room_id: str, client_id: str, connection):
        """Raise ``JoinRejected`` if ``join`` would refuse this request. Changes nothing."""
        if not room_id or not client_id:
            raise JoinRejected("join requires roomId and clientId")
        holder = self._rooms.get(room_id, {}).get(client_id)
        if holder is not None and holder is not connection:
            logger.warning(f"Join rejected: clientId {client_id} already in use in room {room_id}")
            raise JoinRejected("clientId already in use")

    def leave(self, room_id: Optional[str], client_id: Optional[str], connection=None) -> bool:
        """Remove ``client_id`` from ``room_id``. No-op for unknown rooms or clients.

        When ``connection`` is given the entry is only removed if it still
        belongs to that connection.
        """
        if not room_id or not client_id:
            return False
        room = self._rooms.get(room_id)
        if room is None or client_id not in room:
            return False
        if connection is not None and room[client_id] is not connection:
            return False

        del room[client_id]
        logger.info(f"Client {client_id} left room {room_id} ({len(room)} members)")

        if not room:
            del self._rooms[room_id]
            logger.debug(f"Room {room_id} is empty, deleted")
            return True

        departure = PeerLeftMessage(clientId=client_id).model_dump()
        for peer in list(room.values()):
            if peer.is_open:
                peer.send(departure)
        return True

    def relay(self, room_id: str, target_client_id: str, message: dict, from_client_id: Optional[str]) -> bool:
        """Forward ``message`` to one member with ``from`` overwritten. Silent on a miss."""
        room = self._rooms.get(room_id)
        target = room.get(target_client_id) if room else None
        if target is None or not target.is_open:
            logger.debug(f"Relay miss in room {room_id}: {from_client_id} -> {target_client_id}")
            return False
        payload = dict(message)
        payload["from"] = from_client_id
        return target.send(payload)

    def get_room(self, room_id: str) -> Optional[Dict[str, object]]:
        room = self._rooms.get(room_id)
        return dict(room) if room is not None else None

    def get_users_in_room(self, room_id: str) -> List[str]:
        return list(self._rooms.get(room_id, {}).keys())

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    @property
    def room_count(self) -> int:
        return len(self._rooms)
