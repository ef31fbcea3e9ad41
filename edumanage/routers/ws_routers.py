from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
import json
import logging

from ..dependencies import get_store
from ..schemas.proctoring_schema import ClientEventMessage
from ..security import get_jwt_strategy, get_user_manager
from ..services.client_surface import WebSocketSurface
from ..services.session_service import sessions

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/attempts/{attempt_id}")
async def proctoring_socket(websocket: WebSocket, attempt_id: str, token: str = Query(...),
                            user_manager = Depends(get_user_manager), store = Depends(get_store)):
    # browsers cannot set headers on a WebSocket, so the JWT comes as ?token=
    user = await get_jwt_strategy().read_token(token, user_manager)
    controller = sessions.get(attempt_id)
    if user is None or controller is None or not isinstance(controller.surface, WebSocketSurface):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    students = await store.read("students", {'user_id': str(user.id)})
    if not students or str(students[0]['id']) != controller.student_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    surface = controller.surface
    await websocket.accept()
    await surface.attach(websocket)
    try:
        while True:
            received = await websocket.receive()
            if received['type'] == "websocket.disconnect":
                raise WebSocketDisconnect(received.get('code', status.WS_1000_NORMAL_CLOSURE))
            if received.get('bytes') is not None:
                # camera frames come as binary JPEG
                await surface.handle_frame(received['bytes'])
                continue
            try:
                message = ClientEventMessage(**json.loads(received.get('text') or ""))
            except (ValueError, TypeError) as e:
                logger.warning("Dropping malformed client event for attempt %s: %s", attempt_id, e)
                continue
            surface.handle_message(message.model_dump())
    except WebSocketDisconnect:
        logger.info("Proctoring socket closed for attempt %s", attempt_id)
    finally:
        surface.detach(websocket)
