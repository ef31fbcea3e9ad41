"""Integrity monitoring for one proctored attempt.

The monitor subscribes to the client surface while armed, turns client events
into proctoring records and tells the session owner, once, when the tab-switch
budget is used up. Lifecycle: idle -> armed -> active -> torn down.
"""
from typing import Any, Callable, Dict, Optional
import inspect
import logging

from ..schemas.proctoring_schema import ProctoringConfig, ViolationType
from .client_surface import ClientEvent, ClientSurface
from .fullscreen_service import FullscreenController
from .session_state import MonitorPhase, SessionState
from .violation_logger import ViolationLogger
from .webcam_service import WebcamController

logger = logging.getLogger(__name__)

COPY_KEYS = {"c", "x", "v", "a"}
DEV_TOOLS_SHIFT_KEYS = {"i", "j", "c"}

DEV_TOOLS = "dev_tools"
COPY = "copy"
ESCAPE = "escape"


def classify_shortcut(key: Optional[str], ctrl: bool = False, meta: bool = False, shift: bool = False) -> Optional[str]:
    """Return DEV_TOOLS, COPY, ESCAPE or None for a keydown."""
    if not key:
        return None
    modifier = ctrl or meta
    lowered = key.lower()
    if key == "F12" or (modifier and shift and lowered in DEV_TOOLS_SHIFT_KEYS) or (modifier and lowered == "u"):
        return DEV_TOOLS
    if modifier and lowered in COPY_KEYS:
        return COPY
    if key == "Escape":
        return ESCAPE
    return None


class IntegrityMonitor:

    def __init__(self, config: ProctoringConfig, surface: ClientSurface, state: SessionState,
                 violation_logger: ViolationLogger, fullscreen: FullscreenController,
                 webcam: Optional[WebcamController] = None,
                 on_budget_exceeded: Optional[Callable[[], Any]] = None):
        self.config = config
        self.surface = surface
        self.state = state
        self.violation_logger = violation_logger
        self.fullscreen = fullscreen
        self.webcam = webcam
        self.on_budget_exceeded = on_budget_exceeded
        self._budget_exceeded_sent = False
        self._listeners = {
            "fullscreenchange": self._on_fullscreen_change,
            "fullscreenerror": self._on_fullscreen_error,
            "visibilitychange": self._on_visibility_change,
            "blur": self._on_blur,
            "contextmenu": self._on_context_menu,
            "keydown": self._on_key_down,
            "selectstart": self._on_suppressed,
            "dragstart": self._on_suppressed,
        }

    @property
    def phase(self) -> MonitorPhase:
        return self.state.monitor_phase

    def guard_policy(self) -> Dict[str, Any]:
        """What the client has to block locally; it cannot wait for a round trip."""
        shortcuts = [f"Ctrl+{k.upper()}" for k in sorted(COPY_KEYS)]
        shortcuts += ["F12", "Ctrl+U"] + [f"Ctrl+Shift+{k.upper()}" for k in sorted(DEV_TOOLS_SHIFT_KEYS)]
        return {
            'blocked_shortcuts': shortcuts,
            'block_context_menu': True,
            'block_selection': True,
            'block_drag': True,
            'block_escape': self.config.fullscreen_required,
            'fullscreen_required': self.config.fullscreen_required,
            'tab_switch_limit': self.config.tab_switch_limit,
        }

    async def arm(self) -> bool:
        if not self.config.enabled:
            logger.debug("Proctoring disabled for attempt %s", self.config.attempt_id)
            return False
        if self.state.monitor_phase != MonitorPhase.IDLE:
            return self.state.monitoring

        for event_type, listener in self._listeners.items():
            self.surface.events.add_listener(event_type, listener)
        self.state.monitor_phase = MonitorPhase.ARMED
        logger.info("Proctoring armed for attempt %s", self.config.attempt_id)

        await self.surface.publish_guard_policy(self.guard_policy())
        if self.config.fullscreen_required:
            await self.fullscreen.enter()
        return True

    def activate(self):
        if self.state.monitor_phase == MonitorPhase.ARMED:
            self.state.monitor_phase = MonitorPhase.ACTIVE

    async def disarm(self):
        previous = self.state.monitor_phase
        if previous == MonitorPhase.TORN_DOWN:
            return
        self.state.monitor_phase = MonitorPhase.TORN_DOWN
        if previous == MonitorPhase.IDLE:
            return

        for event_type, listener in self._listeners.items():
            self.surface.events.remove_listener(event_type, listener)
        if self.fullscreen.is_fullscreen or self.surface.is_fullscreen:
            await self.fullscreen.exit()
        logger.info("Proctoring torn down for attempt %s", self.config.attempt_id)

    async def __aenter__(self):
        await self.arm()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disarm()

    async def _on_fullscreen_change(self, event: ClientEvent):
        inside = event.fullscreen if event.fullscreen is not None else self.surface.is_fullscreen
        self.fullscreen.on_change(inside)
        if not inside and self.state.monitoring and self.config.fullscreen_required:
            await self.violation_logger.log(ViolationType.FULLSCREEN_EXIT, "Student exited fullscreen mode")
            await self.surface.notify("warning", "Please stay in fullscreen mode during the exam")

    async def _on_fullscreen_error(self, event: ClientEvent):
        await self.fullscreen.on_error()

    async def _on_visibility_change(self, event: ClientEvent):
        if not event.hidden or not self.state.monitoring:
            return
        # counted before any await so concurrent hides each get their own number
        self.state.tab_switch_count += 1
        count = self.state.tab_switch_count
        limit = self.config.tab_switch_limit

        snapshot_url = None
        if self.config.webcam_required and self.webcam is not None:
            snapshot_url = await self.webcam.capture_snapshot()
        await self.violation_logger.log(ViolationType.TAB_SWITCH, f"Tab switch detected ({count}/{limit})", snapshot_url)

        if count >= limit:
            await self.surface.notify("error", "Maximum tab switches reached! Exam will be auto-submitted.")
            await self._budget_exceeded()
        else:
            await self.surface.notify("warning", f"Warning: Tab switch detected ({count}/{limit})")

    async def _budget_exceeded(self):
        if self._budget_exceeded_sent:
            return
        self._budget_exceeded_sent = True
        logger.warning("Tab switch budget exhausted for attempt %s", self.config.attempt_id)
        if self.on_budget_exceeded is None:
            return
        result = self.on_budget_exceeded()
        if inspect.isawaitable(result):
            await result

    async def _on_blur(self, event: ClientEvent):
        if not self.state.monitoring:
            return
        if self.fullscreen.pending:
            # the fullscreen permission prompt takes focus
            logger.debug("Ignoring blur during fullscreen request for attempt %s", self.config.attempt_id)
            return
        await self.violation_logger.log(ViolationType.WINDOW_BLUR, "Window lost focus")

    async def _on_context_menu(self, event: ClientEvent):
        event.prevent_default()
        if not self.state.monitoring:
            return
        await self.violation_logger.log(ViolationType.RIGHT_CLICK, "Right-click attempted")
        await self.surface.notify("error", "Right-click is disabled during the exam")

    async def _on_key_down(self, event: ClientEvent):
        kind = classify_shortcut(event.key, event.ctrl_key, event.meta_key, event.shift_key)
        if kind is None:
            return
        if kind == ESCAPE:
            if self.config.fullscreen_required:
                event.prevent_default()
                await self.surface.notify("warning", "Please stay in fullscreen mode")
            return

        event.prevent_default()
        if not self.state.monitoring:
            return
        if kind == DEV_TOOLS:
            await self.violation_logger.log(ViolationType.DEV_TOOLS, "Developer tools shortcut attempted")
        else:
            modifier = "Ctrl" if event.ctrl_key else "Meta"
            await self.violation_logger.log(ViolationType.COPY_ATTEMPT, f"Keyboard shortcut attempted: {modifier}+{event.key}")
            await self.surface.notify("error", "Copy/Paste is disabled during the exam")

    def _on_suppressed(self, event: ClientEvent):
        event.prevent_default()
