"""
WebSocket stream of live group snapshots.

Protocol:
- Server -> Client: {"type": "snapshot", "group": {...}} on connect and after
  every change; {"type": "deleted"}, {"type": "removed"} or {"type": "closed"}
  as the final frame before the server closes the socket
- Client -> Server: {"type": "ping"} answered with {"type": "pong"}

Snapshots are rendered for the connected viewer: their hidden words are masked
in other members' messages. A slow client skips intermediate snapshots but
always receives the latest one.
"""

import asyncio

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from groupchat.core.exceptions import AuthError, NotFoundError
from groupchat.core.logging_config import get_logger
from groupchat.dependencies import ensure_caller, get_messaging_service, get_profile_service
from groupchat.schemas.group import GroupResponse
from groupchat.services.group_feed import CLOSED, SNAPSHOT, Subscription
from groupchat.services.messaging_service import MessagingService
from groupchat.services.profile_service import ProfileService

router = APIRouter()
logger = get_logger(__name__)

REMOVED = "removed"


async def _forward_events(
    websocket: WebSocket,
    subscription: Subscription,
    viewer_id: str,
    profiles: ProfileService,
) -> int:
    """Send feed events until a terminal one. Returns the close code to use."""
    async for event in subscription:
        if event.type != SNAPSHOT:
            await websocket.send_json({"type": event.type, "group_id": event.group_id})
            if event.type == CLOSED:
                return status.WS_1001_GOING_AWAY
            return status.WS_1000_NORMAL_CLOSURE

        if not event.group.is_member(viewer_id):
            await websocket.send_json({"type": REMOVED, "group_id": event.group_id})
            return status.WS_1000_NORMAL_CLOSURE

        hidden_words = await profiles.get_hidden_words(viewer_id)
        view = GroupResponse.for_viewer(event.group, viewer_id, hidden_words)
        await websocket.send_json({"type": SNAPSHOT, "group": view.model_dump(mode="json")})

    return status.WS_1000_NORMAL_CLOSURE


async def _receive_commands(websocket: WebSocket, group_id: str, viewer_id: str) -> None:
    while True:
        data = await websocket.receive_json()

        if data.get("type") == "ping":
            await websocket.send_json({"type": "pong"})
        else:
            logger.debug(
                "stream_message_ignored",
                group_id=group_id,
                user_id=viewer_id,
                message_type=data.get("type", "unknown")
            )


@router.websocket("/groups/{group_id}/stream")
async def group_stream(
    websocket: WebSocket,
    group_id: str,
    user_id: str = Query(..., min_length=1, description="Subscribing member"),
    messaging: MessagingService = Depends(get_messaging_service),
    profiles: ProfileService = Depends(get_profile_service)
):
    """
    Subscribe to a group. Members only; others, and callers whose
    ``X-User-ID`` differs from ``user_id``, are rejected with 1008.

    The subscription is released when the client disconnects, when the group is
    deleted or the viewer removed, and on server shutdown.
    """
    accepted = False

    try:
        ensure_caller(websocket, user_id)
        async with messaging.subscribe(group_id, user_id) as subscription:
            await websocket.accept()
            accepted = True
            logger.info("stream_connected", group_id=group_id, user_id=user_id)

            forward = asyncio.create_task(_forward_events(websocket, subscription, user_id, profiles))
            receive = asyncio.create_task(_receive_commands(websocket, group_id, user_id))

            try:
                done, _ = await asyncio.wait({forward, receive}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (forward, receive):
                    task.cancel()
                await asyncio.gather(forward, receive, return_exceptions=True)

            if receive in done:
                error = receive.exception()
                if error is not None and not isinstance(error, WebSocketDisconnect):
                    raise error
                logger.info("stream_disconnected", group_id=group_id, user_id=user_id)
                return

            close_code = forward.result()
            await websocket.close(code=close_code)
            logger.info("stream_ended", group_id=group_id, user_id=user_id, close_code=close_code)

    except (NotFoundError, AuthError) as e:
        logger.warning(
            "stream_rejected",
            group_id=group_id,
            user_id=user_id,
            reason=e.detail
        )
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)

    except WebSocketDisconnect:
        logger.info("stream_disconnected", group_id=group_id, user_id=user_id)

    except Exception as e:
        logger.error(
            "stream_error",
            error_type=type(e).__name__,
            error=str(e),
            group_id=group_id,
            user_id=user_id,
            exc_info=True
        )
        if accepted:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
