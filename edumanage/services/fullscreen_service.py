import logging

from .client_surface import ClientSurface, FullscreenDenied
from .session_state import SessionState

logger = logging.getLogger(__name__)


class FullscreenController:

    def __init__(self, surface: ClientSurface, state: SessionState):
        self.surface = surface
        self.state = state
        # set between a request and the client's answer
        self.pending = False

    @property
    def is_fullscreen(self) -> bool:
        return self.state.is_fullscreen

    async def enter(self) -> bool:
        self.pending = True
        try:
            await self.surface.request_fullscreen()
        except FullscreenDenied as e:
            self.pending = False
            logger.warning("Fullscreen request refused: %s", e)
            await self.surface.notify("error", "Please enable fullscreen mode to continue the exam")
            return False
        self.state.is_fullscreen = self.surface.is_fullscreen
        self.pending = not self.state.is_fullscreen
        return True

    async def exit(self):
        self.pending = False
        if self.surface.is_fullscreen or self.state.is_fullscreen:
            try:
                await self.surface.exit_fullscreen()
            except Exception as e:
                logger.debug("Ignoring fullscreen exit failure: %s", e)
        self.state.is_fullscreen = False

    def on_change(self, fullscreen: bool):
        self.pending = False
        self.state.is_fullscreen = fullscreen

    async def on_error(self):
        self.pending = False
        self.state.is_fullscreen = False
        await self.surface.notify("error", "Please enable fullscreen mode to continue the exam")
