"""The client capability surface the proctoring core subscribes to.

A surface bundles the event source (visibility, focus, keyboard, context menu,
fullscreen changes), the fullscreen display controls, user notifications and
the media devices used for the webcam.
"""
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import asyncio
import inspect
import logging

from fastapi import WebSocket
from fastapi.websockets import WebSocketState

from .media_devices import BrowserMediaDevices, MediaDevices

logger = logging.getLogger(__name__)


class FullscreenDenied(Exception):
    """The client refused or could not enter fullscreen."""


@dataclass
class ClientEvent:
    type: str
    hidden: Optional[bool] = None
    fullscreen: Optional[bool] = None
    key: Optional[str] = None
    ctrl_key: bool = False
    meta_key: bool = False
    shift_key: bool = False
    default_prevented: bool = field(default=False, compare=False)

    def prevent_default(self):
        self.default_prevented = True


Listener = Callable[[ClientEvent], Any]


class EventBus:
    """Per-attempt listener registry.

    Coroutine handlers run as independent tasks so a slow handler never holds
    up the next event.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._pending = set()

    def add_listener(self, event_type: str, listener: Listener):
        if listener not in self._listeners[event_type]:
            self._listeners[event_type].append(listener)

    def remove_listener(self, event_type: str, listener: Listener):
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)
            if not listeners:
                del self._listeners[event_type]

    def listener_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(v) for v in self._listeners.values())

    def dispatch(self, event: ClientEvent) -> List[asyncio.Task]:
        tasks = []
        for listener in list(self._listeners.get(event.type, [])):
            try:
                result = listener(event)
            except Exception:
                logger.exception("Listener for %s failed", event.type)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._task_done)
                tasks.append(task)
        return tasks

    def _task_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async listener failed", exc_info=task.exception())

    async def drain(self):
        """Wait for every handler task started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ClientSurface(ABC):

    def __init__(self, media: MediaDevices):
        self.events = EventBus()
        self.media = media

    @property
    @abstractmethod
    def is_fullscreen(self) -> bool:
        ...

    @abstractmethod
    async def request_fullscreen(self):
        """Ask the client to enter fullscreen; raise FullscreenDenied if it cannot."""

    @abstractmethod
    async def exit_fullscreen(self):
        ...

    @abstractmethod
    async def notify(self, level: str, message: str):
        """Show a transient message (info, success, warning, error) to the student."""

    async def publish_guard_policy(self, policy: Dict[str, Any]):
        pass


class WebSocketSurface(ClientSurface):
    """Surface backed by the browser shim connected on /ws/attempts/{id}.

    Commands sent while no socket is connected are queued and flushed when the
    browser (re)connects. Without explicit media devices the student's own
    camera is used, its frames arriving as binary messages on the same socket.
    """

    def __init__(self, media: Optional[MediaDevices] = None):
        super().__init__(media or BrowserMediaDevices(self._send))
        self.websocket: Optional[WebSocket] = None
        self._fullscreen = False
        self._outbox: List[Dict[str, Any]] = []
        self._guard_policy: Optional[Dict[str, Any]] = None

    @property
    def is_fullscreen(self) -> bool:
        return self._fullscreen

    @property
    def connected(self) -> bool:
        return self.websocket is not None and self.websocket.client_state == WebSocketState.CONNECTED

    async def attach(self, websocket: WebSocket):
        self.websocket = websocket
        if self._guard_policy is not None:
            await self._send({'type': 'guard_policy', 'policy': self._guard_policy})
        queued, self._outbox = self._outbox, []
        for message in queued:
            await self._send(message)

    def detach(self, websocket: WebSocket):
        if self.websocket is websocket:
            self.websocket = None

    async def _send(self, message: Dict[str, Any]):
        if not self.connected:
            self._outbox.append(message)
            return
        try:
            await self.websocket.send_json(message)
        except Exception:
            logger.warning("Could not send %s to client; queued", message.get('type'))
            self._outbox.append(message)

    def handle_message(self, message: Dict[str, Any]) -> List[asyncio.Task]:
        kind = message.get('type')
        if kind in ("camera_ready", "camera_error"):
            if isinstance(self.media, BrowserMediaDevices):
                if kind == "camera_ready":
                    self.media.camera_ready()
                else:
                    self.media.camera_error(message.get('message'))
            return []
        event = ClientEvent(**{k: v for k, v in message.items() if k in ClientEvent.__dataclass_fields__ and k != 'default_prevented'})
        if event.type == "fullscreenchange" and event.fullscreen is not None:
            self._fullscreen = event.fullscreen
        return self.events.dispatch(event)

    async def handle_frame(self, data: bytes) -> bool:
        if not isinstance(self.media, BrowserMediaDevices):
            return False
        return await self.media.push_jpeg(data)

    async def request_fullscreen(self):
        # the browser answers with fullscreenchange or fullscreenerror
        await self._send({'type': 'request_fullscreen'})

    async def exit_fullscreen(self):
        await self._send({'type': 'exit_fullscreen'})
        self._fullscreen = False

    async def notify(self, level: str, message: str):
        await self._send({'type': 'notify', 'level': level, 'message': message})

    async def publish_guard_policy(self, policy: Dict[str, Any]):
        self._guard_policy = policy
        if self.connected:
            await self._send({'type': 'guard_policy', 'policy': policy})
