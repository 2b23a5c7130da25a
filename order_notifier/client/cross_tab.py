"""
MODULE OVERVIEW:
Cross-tab messaging: one admin, several tabs, one toast source.

WHAT IS HAPPENING HERE:
`BroadcastChannel` stands in for the browser's same-origin channel: every channel
object opened under the same name (in the same process) receives what the others
post, never its own posts. `CrossTabBus` wraps it with a typed envelope
`{sender, type, payload}`, a per-tab sender id kept in session storage, and
listeners by message type. Messages carrying our own sender id are dropped, which
matters once a tab's storage is shared by more than one channel object.
"""
import uuid
from typing import Any, Callable

from loguru import logger

from order_notifier.shared.storage import KeyValueStore

SENDER_ID_KEY = "broadcast_sender_id"

Listener = Callable[[Any], None]


class BroadcastChannel:
    _hubs: dict[str, list["BroadcastChannel"]] = {}

    def __init__(self, name: str):
        self.name = name
        self.onmessage: Callable[[dict], None] | None = None
        self.closed = False
        self._hubs.setdefault(name, []).append(self)

    def post_message(self, message: dict) -> None:
        if self.closed:
            raise RuntimeError(f"channel {self.name} is closed")
        for peer in list(self._hubs.get(self.name, [])):
            if peer is not self and peer.onmessage is not None:
                peer.onmessage(message)

    def close(self) -> None:
        self.closed = True
        peers = self._hubs.get(self.name, [])
        if self in peers:
            peers.remove(self)

    @classmethod
    def reset(cls) -> None:
        cls._hubs.clear()


class CrossTabBus:
    def __init__(self, channel_name: str, session_storage: KeyValueStore):
        self.sender_id = self._sender_id(session_storage)
        self.listeners: dict[str, list[Listener]] = {}
        self.channel = BroadcastChannel(channel_name)
        self.channel.onmessage = self._handle_message

    @staticmethod
    def _sender_id(session_storage: KeyValueStore) -> str:
        sender_id = session_storage.get(SENDER_ID_KEY) or uuid.uuid4().hex[:10]
        session_storage.set(SENDER_ID_KEY, sender_id)
        return sender_id

    def _handle_message(self, message: dict) -> None:
        if not isinstance(message, dict) or not message.get("type"):
            return
        if message.get("sender") == self.sender_id:
            return
        for callback in list(self.listeners.get(message["type"], [])):
            try:
                callback(message.get("payload"))
            except Exception as e:
                logger.error(f"sender_id={self.sender_id} type={message['type']} event=listener_error reason='{e}'")

    def send(self, type: str, payload: Any) -> None:
        self.channel.post_message({"sender": self.sender_id, "type": type, "payload": payload})

    def on(self, type: str, callback: Listener) -> None:
        if not callable(callback):
            return
        self.listeners.setdefault(type, []).append(callback)

    def off(self, type: str, callback: Listener) -> None:
        callbacks = [cb for cb in self.listeners.get(type, []) if cb != callback]
        if callbacks:
            self.listeners[type] = callbacks
        else:
            self.listeners.pop(type, None)

    def close(self) -> None:
        self.channel.close()
        self.listeners.clear()
