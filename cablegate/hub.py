"""Registry of sessions and their stream subscriptions, with broadcasting."""

from __future__ import annotations

import functools
import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Protocol

from .common import REMOTE_DISCONNECT_REASON, DisconnectMessage, RemoteDisconnectMessage, StreamMessage
from .encoders import CachedEncodedMessage, EncodedMessage

_log = logging.getLogger("cablegate.hub")


class HubSession(Protocol):
    """What the hub needs from a client session."""

    @property
    def sid(self) -> str: ...

    @property
    def identifiers(self) -> str: ...

    def send(self, msg: EncodedMessage) -> None: ...

    def disconnect_with_message(self, msg: EncodedMessage, code: str) -> None: ...


def build_message(msg: StreamMessage, identifier: str) -> CachedEncodedMessage:
    """Build the cached reply delivered to subscribers of a channel."""
    return CachedEncodedMessage(msg.to_reply_for(identifier))


class Hub:
    """Stores sessions and subscriptions and delivers broadcasts to them.

    Queued operations (broadcasts, remote disconnects, delayed removals) are
    processed in order by ``run``; delivery itself happens on a worker pool.
    """

    def __init__(self, pool_size: int = 16) -> None:
        self._sessions: dict[str, HubSession] = {}
        # identifiers -> session ids
        self._identifiers: dict[str, set[str]] = {}
        # stream -> sid -> identifiers
        self._streams: dict[str, dict[str, dict[str, None]]] = {}
        # sid -> identifier -> streams
        self._sessions_streams: dict[str, dict[str, list[str]]] = {}

        self._events: queue.SimpleQueue[Optional[Callable[[], None]]] = queue.SimpleQueue()
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, pool_size), thread_name_prefix="broadcast"
        )
        self._streams_lock = threading.RLock()
        self._sessions_lock = threading.RLock()
        self._running = False
        self._stopped = threading.Event()

    def run(self) -> None:
        """Process queued operations until ``shutdown`` is called."""
        self._running = True
        self._stopped.clear()
        try:
            while (task := self._events.get()) is not None:
                try:
                    task()
                except Exception:
                    _log.exception("Hub operation failed")
        finally:
            self._running = False
            self._stopped.set()

    def remove_session_later(self, session: HubSession) -> None:
        """Queue the removal of a session."""
        self._events.put(functools.partial(self.remove_session, session))

    def broadcast(self, stream: str, data: str) -> None:
        """Queue broadcasting data to a stream."""
        self.broadcast_message(StreamMessage(stream=stream, data=data))

    def broadcast_message(self, msg: StreamMessage) -> None:
        """Queue broadcasting a prepared stream message."""
        self._events.put(functools.partial(self._broadcast_to_stream, msg))

    def remote_disconnect(self, msg: RemoteDisconnectMessage) -> None:
        """Queue disconnecting all sessions with the given identifiers."""
        self._events.put(
            functools.partial(self._disconnect_by_identifier, msg.identifier, msg.reconnect)
        )

    def shutdown(self) -> None:
        """Stop processing queued operations and wait for ``run`` to return."""
        self._events.put(None)
        if self._running:
            self._stopped.wait()
        self._pool.shutdown(wait=True)

    def size(self) -> int:
        """Return the number of registered sessions."""
        with self._sessions_lock:
            return len(self._sessions)

    def uniq_size(self) -> int:
        """Return the number of distinct identifiers."""
        with self._sessions_lock:
            return len(self._identifiers)

    def streams_size(self) -> int:
        """Return the number of streams with subscribers."""
        with self._streams_lock:
            return len(self._streams)

    def add_session(self, session: HubSession) -> None:
        with self._sessions_lock:
            sid = session.sid
            identifiers = session.identifiers
            self._sessions[sid] = session
            self._identifiers.setdefault(identifiers, set()).add(sid)
        _log.debug("Registered with identifiers: %s", identifiers, extra={"sid": sid})

    def remove_session(self, session: HubSession) -> None:
        sid = session.sid
        with self._sessions_lock:
            if sid not in self._sessions:
                _log.warning("Session hasn't been registered", extra={"sid": sid})
                return

        identifiers = session.identifiers
        self.unsubscribe_session_from_all_channels(sid)

        with self._sessions_lock:
            self._sessions.pop(sid, None)
            sids = self._identifiers.get(identifiers)
            if sids is not None:
                sids.discard(sid)
                if not sids:
                    del self._identifiers[identifiers]

        _log.debug("Unregistered", extra={"sid": sid})

    def unsubscribe_session_from_all_channels(self, sid: str) -> None:
        with self._streams_lock:
            for identifier in list(self._sessions_streams.get(sid, {})):
                self._unsubscribe_from_channel(sid, identifier)
            self._sessions_streams.pop(sid, None)

    def unsubscribe_session_from_channel(self, sid: str, identifier: str) -> None:
        with self._streams_lock:
            self._unsubscribe_from_channel(sid, identifier)

    def _unsubscribe_from_channel(self, sid: str, identifier: str) -> None:
        channels = self._sessions_streams.get(sid)
        if channels is None:
            return

        for stream in channels.pop(identifier, []):
            subscribers = self._streams.get(stream)
            if subscribers is None:
                continue
            ids = subscribers.get(sid)
            if ids is not None:
                ids.pop(identifier, None)
                if not ids:
                    del subscribers[sid]
            if not subscribers:
                del self._streams[stream]

        _log.debug("Unsubscribed", extra={"sid": sid, "channel": identifier})

    def subscribe_session(self, sid: str, stream: str, identifier: str) -> None:
        with self._streams_lock:
            self._streams.setdefault(stream, {}).setdefault(sid, {})[identifier] = None
            self._sessions_streams.setdefault(sid, {}).setdefault(identifier, []).append(stream)
        _log.debug(
            "Subscribed", extra={"sid": sid, "channel": identifier, "stream": stream}
        )

    def unsubscribe_session(self, sid: str, stream: str, identifier: str) -> None:
        with self._streams_lock:
            ids = self._streams.get(stream, {}).get(sid)
            if ids is None or identifier not in ids:
                return
            del ids[identifier]
        _log.debug(
            "Unsubscribed", extra={"sid": sid, "channel": identifier, "stream": stream}
        )

    def find_by_identifier(self, identifier: str) -> HubSession | None:
        """Return any session registered with the given identifiers."""
        with self._sessions_lock:
            for sid in self._identifiers.get(identifier, ()):
                session = self._sessions.get(sid)
                if session is not None:
                    return session
        return None

    def disconnect_sessions(self, msg: EncodedMessage, code: str) -> None:
        """Disconnect every registered session with the given message."""
        with self._sessions_lock:
            for session in list(self._sessions.values()):
                session.disconnect_with_message(msg, code)

    def _schedule(self, task: Callable[[], None]) -> None:
        def guarded() -> None:
            try:
                task()
            except Exception:
                _log.exception("Hub task failed")

        try:
            self._pool.submit(guarded)
        except RuntimeError:
            _log.debug("Hub pool is shut down; task dropped")

    def _broadcast_to_stream(self, msg: StreamMessage) -> None:
        stream = msg.stream
        _log.debug("Broadcast message: %s", msg, extra={"stream": stream})

        with self._streams_lock:
            if stream not in self._streams:
                _log.debug("No sessions", extra={"stream": stream})
                return

        self._schedule(functools.partial(self._deliver, msg))

    def _deliver(self, msg: StreamMessage) -> None:
        with self._streams_lock:
            snapshot = {
                sid: list(ids) for sid, ids in self._streams.get(msg.stream, {}).items()
            }

        replies: dict[str, CachedEncodedMessage] = {}

        for sid, identifiers in snapshot.items():
            with self._sessions_lock:
                session = self._sessions.get(sid)
            if session is None:
                continue

            for identifier in identifiers:
                reply = replies.get(identifier)
                if reply is None:
                    reply = replies[identifier] = build_message(msg, identifier)
                session.send(reply)

    def _disconnect_by_identifier(self, identifier: str, reconnect: bool) -> None:
        with self._sessions_lock:
            sids = self._identifiers.get(identifier)

        if sids is None:
            _log.debug("Can not disconnect sessions: unknown identifier %s", identifier)
            return

        msg = DisconnectMessage(reason=REMOTE_DISCONNECT_REASON, reconnect=reconnect)

        def task() -> None:
            with self._sessions_lock:
                for sid in list(sids):
                    session = self._sessions.get(sid)
                    if session is not None:
                        session.disconnect_with_message(msg, REMOTE_DISCONNECT_REASON)

        self._schedule(task)