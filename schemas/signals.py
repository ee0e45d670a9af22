"""Wire models for the signaling protocol.

Inbound frames are parsed into one of the message classes below. Known types
that fail validation become ``MalformedMessage``; unknown types become
``UnknownMessage`` so the router can log them without guessing at fields.
"""
import json
import time
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

JOIN = "join"
OFFER = "offer"
ANSWER = "answer"
ICE_CANDIDATE = "ice-candidate"

EXISTING_PEERS = "existing-peers"
NEW_PEER = "new-peer"
PEER_LEFT = "peer-left"
ERROR = "error"

RELAY_TYPES = frozenset({OFFER, ANSWER, ICE_CANDIDATE})


# Inbound

class JoinMessage(BaseModel):
    type: Literal["join"]
    roomId: Optional[str] = None
    clientId: Optional[str] = None


class RelayMessage(BaseModel):
    """offer / answer / ice-candidate. Payload fields ride along as extras."""
    model_config = ConfigDict(extra="allow")

    type: Literal["offer", "answer", "ice-candidate"]
    to: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        return self.model_dump()


class MalformedMessage(BaseModel):
    type: str
    errors: List[str] = []


class UnknownMessage(BaseModel):
    type: Any = None
    raw: Dict[str, Any] = {}


SignalMessage = Union[JoinMessage, RelayMessage, MalformedMessage, UnknownMessage]

_INBOUND_MODELS = {
    JOIN: JoinMessage,
    OFFER: RelayMessage,
    ANSWER: RelayMessage,
    ICE_CANDIDATE: RelayMessage,
}


def parse_signal(raw: Union[str, bytes, None]) -> Optional[SignalMessage]:
    """Parse one inbound frame. Returns None when the frame is not a JSON object."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None

    kind = data.get("type")
    model = _INBOUND_MODELS.get(kind) if isinstance(kind, str) else None
    if model is None:
        return UnknownMessage(type=kind, raw=data)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        return MalformedMessage(type=kind, errors=[err["msg"] for err in e.errors()])


# Outbound

class ExistingPeersMessage(BaseModel):
    type: Literal["existing-peers"] = EXISTING_PEERS
    peers: List[str]


class NewPeerMessage(BaseModel):
    type: Literal["new-peer"] = NEW_PEER
    clientId: str


class PeerLeftMessage(BaseModel):
    type: Literal["peer-left"] = PEER_LEFT
    clientId: str


class ErrorMessage(BaseModel):
    type: Literal["error"] = ERROR
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    ts: int


def epoch_millis() -> int:
    return int(time.time() * 1000)
