# pairing.py

import logging
import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "You're now connected with a stranger. Say hi!"
NO_PARTNER_MESSAGE = "You need to be connected to a partner to send messages."
WAITING_EXPIRED_MESSAGE = "No partner found in time. Send ready to try again."


class Outbound(NamedTuple):
    to: str
    type: str
    payload: Dict[str, Any]


class PairingState:
    """The three shared structures of the pairing server.

    ``waiting`` maps client id to its enqueue time; dict insertion order
    is the FIFO matching order. ``partners`` is kept symmetric.
    """

    def __init__(self):
        self.connected: Set[str] = set()
        self.waiting: Dict[str, float] = {}
        self.partners: Dict[str, str] = {}

    def stats(self) -> Dict[str, int]:
        return {
            "connections": len(self.connected),
            "waiting": len(self.waiting),
            "sessions": len(self.partners) // 2,
        }


def _is_empty(data: Any) -> bool:
    if data is None:
        return True
    if isinstance(data, (str, bytes, dict, list)):
        return not data
    return False


class Matchmaker:
    """Pairs ready clients and relays between them.

    Every ``on_*`` method is a synchronous transition over ``state`` that
    returns the events to deliver. Nothing here performs I/O, so callers
    can run a transition under a lock and send afterwards.
    """

    def __init__(
        self,
        state: Optional[PairingState] = None,
        chat_max_length: int = 2000,
        strict_signaling: bool = False,
        greeting: str = DEFAULT_GREETING,
        waiting_ttl: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        if chat_max_length < 1:
            raise ValueError(f"chat_max_length must be positive, got {chat_max_length}")
        self.state = state if state is not None else PairingState()
        self.chat_max_length = chat_max_length
        self.strict_signaling = strict_signaling
        self.greeting = greeting
        self.waiting_ttl = waiting_ttl
        self.clock = clock

    def _timestamp(self) -> int:
        return int(self.clock() * 1000)

    def _system_message(self, to: str, message: str) -> Outbound:
        return Outbound(to, "systemMessage", {"message": message, "timestamp": self._timestamp()})

    def _detach(self, client_id: str) -> Optional[str]:
        partner = self.state.partners.pop(client_id, None)
        if partner is None:
            return None
        if self.state.partners.get(partner) == client_id:
            self.state.partners.pop(partner)
        logger.info(f"Session ended: {client_id} <-> {partner}")
        return partner

    def _next_candidate(self, client_id: str) -> Optional[str]:
        for candidate in list(self.state.waiting):
            if candidate == client_id:
                continue
            del self.state.waiting[candidate]
            if candidate not in self.state.connected or candidate in self.state.partners:
                logger.info(f"Dropped stale waiting entry: {candidate}")
                continue
            return candidate
        return None

    def on_connect(self, client_id: str) -> List[Outbound]:
        self.state.connected.add(client_id)
        logger.info(f"Client connected: {client_id}")
        return []

    def on_ready(self, client_id: str) -> List[Outbound]:
        if client_id not in self.state.connected:
            return []
        logger.info(f"User ready: {client_id}")

        events: List[Outbound] = []
        former = self._detach(client_id)
        if former is not None:
            events.append(Outbound(former, "partnerLeft", {}))
        self.state.waiting.pop(client_id, None)

        peer = self._next_candidate(client_id)
        if peer is None:
            self.state.waiting[client_id] = self.clock()
            logger.info(f"Added to waiting queue: {client_id}")
            events.append(Outbound(client_id, "waiting", {"position": len(self.state.waiting)}))
            return events

        self.state.partners[client_id] = peer
        self.state.partners[peer] = client_id
        logger.info(f"Pairing: {client_id} with {peer}")

        # the client that completed the match creates the offer
        events.append(Outbound(client_id, "matched", {"peerId": peer, "initiator": True}))
        events.append(Outbound(peer, "matched", {"peerId": client_id, "initiator": False}))
        if self.greeting:
            events.append(self._system_message(client_id, self.greeting))
            events.append(self._system_message(peer, self.greeting))
        return events

    def on_signal(self, sender: str, to: Any, data: Any) -> List[Outbound]:
        if not isinstance(to, str) or not to or _is_empty(data):
            return []
        if sender not in self.state.connected or to not in self.state.connected:
            return []
        if self.strict_signaling and self.state.partners.get(sender) != to:
            logger.debug(f"Refused signal from {sender} to non-partner {to}")
            return []
        return [Outbound(to, "signal", {"from": sender, "data": data})]

    def on_chat_message(self, sender: str, raw_text: Any) -> List[Outbound]:
        if sender not in self.state.connected or not isinstance(raw_text, str):
            return []
        text = raw_text.strip()
        if not text:
            return []
        text = text[:self.chat_max_length]

        partner = self.state.partners.get(sender)
        if partner is None:
            return [self._system_message(sender, NO_PARTNER_MESSAGE)]
        return [Outbound(partner, "chatMessage", {
            "from": sender,
            "message": text,
            "timestamp": self._timestamp(),
        })]

    def on_leave(self, client_id: str) -> List[Outbound]:
        if client_id not in self.state.connected:
            return []
        self.state.waiting.pop(client_id, None)
        partner = self._detach(client_id)
        if partner is None:
            return []
        return [Outbound(partner, "partnerLeft", {})]

    def on_disconnect(self, client_id: str) -> List[Outbound]:
        self.state.connected.discard(client_id)
        if self.state.waiting.pop(client_id, None) is not None:
            logger.info(f"Removed from waiting queue: {client_id}")
        partner = self._detach(client_id)
        if partner is None:
            return []
        return [Outbound(partner, "partnerLeft", {})]

    def reap(self, now: Optional[float] = None) -> List[Outbound]:
        now = self.clock() if now is None else now
        events: List[Outbound] = []
        for client_id, enqueued_at in list(self.state.waiting.items()):
            if client_id not in self.state.connected:
                del self.state.waiting[client_id]
                logger.info(f"Cleaning up stale waiting peer: {client_id}")
            elif self.waiting_ttl > 0 and now - enqueued_at > self.waiting_ttl:
                del self.state.waiting[client_id]
                logger.info(f"Waiting peer expired: {client_id}")
                events.append(self._system_message(client_id, WAITING_EXPIRED_MESSAGE))
        return events
