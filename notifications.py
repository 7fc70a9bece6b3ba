"""
New-message notifications.

Chat delivery is poll based; listeners registered here are told about each
new message as it is stored, e.g. to ring a bell or push to another channel.
"""
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class MessageNotifier:
    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, message: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                # a broken listener must not lose the sender's message
                logger.exception("Message listener %r failed", listener)


notifier = MessageNotifier()
