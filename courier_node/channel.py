# courier_node/channel.py

import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from courier_node.codec import TransportRecord

logger = logging.getLogger(__name__)

BatchCallback = Callable[[List[TransportRecord]], None]


@dataclass(eq=False)
class Subscription:
    conversation_id: str
    callback: BatchCallback
    session: str = field(default_factory=lambda: secrets.token_hex(8))
    active: bool = True
    _channel: "Channel" = field(default=None, repr=False)

    def cancel(self):
        self.active = False
        if self._channel is not None:
            self._channel._remove(self)


class Channel:
    """
    In-process push delivery.

    publish() hands every subscriber of a conversation the *full* ordered
    batch; subscribers replace their visible set rather than apply diffs.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subs: Dict[str, List[Subscription]] = {}

    def subscribe(self, conversation_id: str, callback: BatchCallback) -> Subscription:
        sub = Subscription(conversation_id=conversation_id, callback=callback, _channel=self)
        with self._lock:
            self._subs.setdefault(conversation_id, []).append(sub)
        logger.debug(f"Channel: subscribed session {sub.session} to {conversation_id}")
        return sub

    def _remove(self, sub: Subscription):
        with self._lock:
            subs = self._subs.get(sub.conversation_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subs.pop(sub.conversation_id, None)

    def subscriber_count(self, conversation_id: str) -> int:
        with self._lock:
            return len(self._subs.get(conversation_id, []))

    def publish(self, conversation_id: str, batch: List[TransportRecord]) -> int:
        """
        Deliver batch to every active subscriber. A failing subscriber is
        logged and does not stop delivery to the others.
        Returns the number of subscribers reached.
        """
        with self._lock:
            subs = list(self._subs.get(conversation_id, []))

        delivered = 0
        for sub in subs:
            if not sub.active:
                continue
            try:
                sub.callback(list(batch))
                delivered += 1
            except Exception as e:
                logger.error(f"Channel subscriber {sub.session} failed on {conversation_id}: {e!r}")
        return delivered
