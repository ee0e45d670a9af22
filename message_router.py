from backend import RoomDirectory
from exceptions import SignalingError
from logging_config import get_logger
from schemas.signals import (
    JOIN,
    ErrorMessage,
    JoinMessage,
    MalformedMessage,
    RelayMessage,
    SignalMessage,
    UnknownMessage,
)

logger = get_logger(__name__)


class MessageRouter:
    """Single dispatch step per inbound message. Holds no state of its own."""

    def __init__(self, directory: RoomDirectory):
        self.directory = directory

    def dispatch(self, connection, message: SignalMessage):
        if isinstance(message, JoinMessage):
            self.handle_join(connection, message)
        elif isinstance(message, RelayMessage):
            self.handle_relay(connection, message)
        elif isinstance(message, MalformedMessage):
            if message.type == JOIN:
                self.send_error(connection, "join requires roomId and clientId")
            else:
                logger.debug(f"Dropping malformed {message.type} from {connection!r}: {message.errors}")
        elif isinstance(message, UnknownMessage):
            logger.debug(f"Unknown message type from {connection!r}: {message.type!r}")

    def handle_join(self, connection, message: JoinMessage):
        if not message.roomId or not message.clientId:
            self.send_error(connection, "join requires roomId and clientId")
            return

        try:
            self.directory.check_join(message.roomId, message.clientId, connection)
        except SignalingError as e:
            self.send_error(connection, e.message)
            return

        # A connection holds one membership; a second join moves it.
        previous_room, previous_client = connection.room_id, connection.client_id
        if previous_room and previous_client:
            logger.info(f"{connection!r} re-joining, leaving room {previous_room} first")
            self.directory.leave(previous_room, previous_client, connection)
            connection.unbind()

        try:
            self.directory.join(message.roomId, message.clientId, connection)
        except SignalingError as e:
            self.send_error(connection, e.message)
            return
        connection.bind(message.roomId, message.clientId)

    def handle_relay(self, connection, message: RelayMessage):
        if not connection.room_id or not message.to:
            logger.debug(f"Dropping {message.type} from {connection!r}: no room or no target")
            return
        self.directory.relay(
            connection.room_id,
            message.to,
            message.payload(),
            connection.client_id,
        )

    @staticmethod
    def send_error(connection, text: str):
        logger.debug(f"Sending error to {connection!r}: {text}")
        connection.send(ErrorMessage(message=text).model_dump())
