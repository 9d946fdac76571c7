import logging

import socketio

from app.core.request_meta import extract_client_ip_from_environ
from app.realtime.authenticator import SessionAuthenticator
from app.realtime.coordinator import (
    EVENT_BAN,
    EVENT_JOIN,
    EVENT_LEAVE,
    EVENT_MESSAGE,
    EVENT_PROGRESS,
    EVENT_STATUS,
    EVENT_UNBAN,
    DiscussionCoordinator,
    Emit,
    EnterRoom,
    LeaveRoom,
    Outbound,
)
from app.services.discussion_service import DiscussionRegistry
from app.services.message_service import MessageStore
from app.services.presence_service import key_value_store

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")

coordinator = DiscussionCoordinator(
    registry=DiscussionRegistry(),
    presence=key_value_store,
    messages=MessageStore(),
    authenticator=SessionAuthenticator(),
)


async def _apply_outbound(outbound: list[Outbound]) -> None:
    for instruction in outbound:
        if isinstance(instruction, EnterRoom):
            await sio.enter_room(instruction.sid, instruction.room)
        elif isinstance(instruction, LeaveRoom):
            await sio.leave_room(instruction.sid, instruction.room)
        elif isinstance(instruction, Emit):
            await sio.emit(instruction.event, instruction.payload, room=instruction.to)


async def _handle_event(sid: str, event: str, data: dict | None) -> dict:
    try:
        result = await coordinator.dispatch(sid, event, data)
        await _apply_outbound(result.outbound)
    except Exception:
        logger.exception("Failed to deliver %s for connection %s", event, sid)
        return {"ok": False, "error": "Unexpected server error.", "code": "InternalError"}
    return result.ack


@sio.event
async def connect(sid: str, environ: dict, auth: dict | None = None) -> bool:
    client_ip = extract_client_ip_from_environ(environ)
    identity = None
    try:
        identity = coordinator.authenticator.authenticate(environ, auth)
        await coordinator.connect(sid, identity)
    except Exception:
        # the connection stays open as anonymous
        logger.exception("Failed to authenticate connection %s from %s", sid, client_ip)
        identity = None
        await coordinator.connect(sid, None)
    logger.info(
        "Connection %s from %s as %s",
        sid,
        client_ip,
        identity.nickname if identity else "anonymous",
    )
    return True


@sio.event
async def disconnect(sid: str, reason: str | None = None) -> None:
    try:
        await coordinator.disconnect(sid)
    except Exception:
        logger.exception("Failed to clean up connection %s", sid)
    logger.info("Connection %s closed (%s)", sid, reason or "client")


@sio.on(EVENT_JOIN)
async def join(sid: str, data: dict | None = None) -> dict:
    return await _handle_event(sid, EVENT_JOIN, data)


@sio.on(EVENT_LEAVE)
async def leave(sid: str, data: dict | None = None) -> dict:
    return await _handle_event(sid, EVENT_LEAVE, data)


@sio.on(EVENT_MESSAGE)
async def message(sid: str, data: dict | None = None) -> dict:
    return await _handle_event(sid, EVENT_MESSAGE, data)


@sio.on(EVENT_PROGRESS)
async def discussion_progress(sid: str, data: dict | None = None) -> dict:
    return await _handle_event(sid, EVENT_PROGRESS, data)


@sio.on(EVENT_STATUS)
async def status(sid: str, data: dict | None = None) -> dict:
    return await _handle_event(sid, EVENT_STATUS, data)


@sio.on(EVENT_BAN)
async def ban(sid: str, data: dict | None = None) -> dict:
    return await _handle_event(sid, EVENT_BAN, data)


@sio.on(EVENT_UNBAN)
async def unban(sid: str, data: dict | None = None) -> dict:
    return await _handle_event(sid, EVENT_UNBAN, data)


def build_socket_app(api_app) -> socketio.ASGIApp:
    return socketio.ASGIApp(sio, other_asgi_app=api_app, socketio_path="socket.io")
