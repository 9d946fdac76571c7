"""Room coordination for real-time discussions.

Every inbound event is handled by an entry in a dispatch table. A handler
validates the event against the discussion registry, mutates the in-memory
room state and returns the outbound instructions (emits and room changes) in
the order the transport must apply them. Handlers interleave only at awaits
on the registry or the presence store; room set mutations never await.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import logging
from typing import Any

from app.core.config import get_settings
from app.realtime.authenticator import SessionAuthenticator
from app.realtime.errors import (
    Banned,
    DiscussionEventError,
    DiscussionNotFound,
    InvalidPayload,
    NotJoined,
    PresenceTargetOffline,
    Unauthorized,
    UnknownConnection,
    UserNotFound,
)
from app.services.discussion_service import DiscussionRegistry, ParticipantIdentity
from app.services.message_service import MessageStore
from app.services.presence_service import MemoryKeyValueStore, RedisKeyValueStore, presence_key

logger = logging.getLogger(__name__)

EVENT_JOIN = "join"
EVENT_LEAVE = "leave"
EVENT_MESSAGE = "message"
EVENT_PROGRESS = "discussionProgress"
EVENT_STATUS = "status"
EVENT_BAN = "ban"
EVENT_UNBAN = "unban"
EVENT_INFO = "info"
EVENT_ERROR = "error"
EVENT_HISTORY = "history"


def discussion_room(discussion_id: str) -> str:
    return f"discussion:{discussion_id}"


@dataclass(frozen=True)
class Emit:
    event: str
    payload: Any
    to: str


@dataclass(frozen=True)
class EnterRoom:
    sid: str
    room: str


@dataclass(frozen=True)
class LeaveRoom:
    sid: str
    room: str


Outbound = Emit | EnterRoom | LeaveRoom


@dataclass
class EventResult:
    outbound: list[Outbound] = field(default_factory=list)
    error: DiscussionEventError | None = None

    @property
    def ack(self) -> dict:
        if self.error is None:
            return {"ok": True}
        return {"ok": False, "error": self.error.message, "code": self.error.code}


@dataclass
class Connection:
    sid: str
    identity: ParticipantIdentity | None = None
    joined: set[str] = field(default_factory=set)


class RoomState:
    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._members: dict[str, set[str]] = {}

    def add_connection(self, connection: Connection) -> None:
        self._connections[connection.sid] = connection

    def get(self, sid: str) -> Connection | None:
        return self._connections.get(sid)

    def connection(self, sid: str) -> Connection:
        existing = self._connections.get(sid)
        if existing is None:
            existing = Connection(sid=sid)
            self._connections[sid] = existing
        return existing

    def remove_connection(self, sid: str) -> Connection | None:
        connection = self._connections.pop(sid, None)
        if connection is None:
            return None
        for discussion_id in list(connection.joined):
            self._discard_member(discussion_id, sid)
        connection.joined.clear()
        return connection

    def join(self, sid: str, discussion_id: str) -> bool:
        connection = self.connection(sid)
        if discussion_id in connection.joined:
            return False
        connection.joined.add(discussion_id)
        self._members.setdefault(discussion_id, set()).add(sid)
        return True

    def leave(self, sid: str, discussion_id: str) -> bool:
        connection = self._connections.get(sid)
        if connection is None or discussion_id not in connection.joined:
            return False
        connection.joined.discard(discussion_id)
        self._discard_member(discussion_id, sid)
        return True

    def is_joined(self, sid: str, discussion_id: str) -> bool:
        return sid in self._members.get(discussion_id, set())

    def members_of(self, discussion_id: str) -> set[str]:
        return set(self._members.get(discussion_id, set()))

    def live_connections(self, discussion_id: str) -> list[Connection]:
        return [
            self._connections[sid]
            for sid in self._members.get(discussion_id, set())
            if sid in self._connections
        ]

    def clear(self) -> None:
        self._connections.clear()
        self._members.clear()

    def _discard_member(self, discussion_id: str, sid: str) -> None:
        members = self._members.get(discussion_id)
        if members is None:
            return
        members.discard(sid)
        if len(members) == 0:
            self._members.pop(discussion_id, None)


def _required_string(payload: dict, key: str) -> str:
    value = payload.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidPayload(f"{key} is required.")
    return value.strip()


Handler = Callable[[Connection, dict], Awaitable[list[Outbound]]]


class DiscussionCoordinator:
    def __init__(
        self,
        registry: DiscussionRegistry,
        presence: MemoryKeyValueStore | RedisKeyValueStore,
        messages: MessageStore,
        authenticator: SessionAuthenticator,
    ) -> None:
        self.registry = registry
        self.presence = presence
        self.messages = messages
        self.authenticator = authenticator
        self.rooms = RoomState()
        self._max_message_length = max(1, get_settings().chat_message_max_length)
        self._handlers: dict[str, Handler] = {
            EVENT_JOIN: self._handle_join,
            EVENT_LEAVE: self._handle_leave,
            EVENT_MESSAGE: self._handle_message,
            EVENT_PROGRESS: self._handle_progress,
            EVENT_STATUS: self._handle_status,
            EVENT_BAN: self._handle_ban,
            EVENT_UNBAN: self._handle_unban,
        }

    @property
    def events(self) -> list[str]:
        return list(self._handlers)

    async def connect(self, sid: str, identity: ParticipantIdentity | None) -> None:
        self.rooms.add_connection(Connection(sid=sid, identity=identity))
        if identity is not None:
            # last connection wins; the previous holder is not notified
            await self.presence.set(presence_key(identity.nickname), sid)

    async def disconnect(self, sid: str) -> None:
        connection = self.rooms.remove_connection(sid)
        if connection is None or connection.identity is None:
            return
        removed = await self.presence.delete_if_equals(presence_key(connection.identity.nickname), sid)
        if not removed:
            logger.debug(
                "Presence entry for %s already points at a newer connection; kept",
                connection.identity.nickname,
            )

    async def dispatch(self, sid: str, event: str, data: Any) -> EventResult:
        handler = self._handlers.get(event)
        try:
            if handler is None:
                raise InvalidPayload(f"Unknown event: {event}")
            if not isinstance(data, dict):
                raise InvalidPayload("Payload must be an object.")
            connection = self.rooms.get(sid)
            if connection is None:
                raise UnknownConnection()
            outbound = await handler(connection, data)
        except DiscussionEventError as exc:
            return EventResult(outbound=[Emit(EVENT_ERROR, exc.as_payload(), sid)], error=exc)
        except Exception:
            logger.exception("Unhandled error in %s handler for connection %s", event, sid)
            error = DiscussionEventError("Unexpected server error.")
            error.code = "InternalError"
            return EventResult(outbound=[Emit(EVENT_ERROR, error.as_payload(), sid)], error=error)
        return EventResult(outbound=outbound)

    async def snapshot(self, discussion_id: str) -> dict:
        members = await self.registry.list_known_members(discussion_id)
        banned = await self.registry.get_ban_list(discussion_id)
        banned_ids = {identity.user_id for identity in banned}
        # read live membership after the awaits so the snapshot is current
        live = self.rooms.live_connections(discussion_id)
        participants = {
            connection.identity.nickname
            for connection in live
            if connection.identity is not None and connection.identity.user_id not in banned_ids
        }
        return {
            "discussionId": discussion_id,
            "participants": sorted(participants),
            "anonymousCount": sum(1 for connection in live if connection.identity is None),
            "members": sorted(
                identity.nickname for identity in members if identity.user_id not in banned_ids
            ),
            "bannedUsers": sorted(identity.nickname for identity in banned),
        }

    async def _require_discussion(self, discussion_id: str) -> None:
        if not await self.registry.exists(discussion_id):
            raise DiscussionNotFound()

    async def _require_author(self, connection: Connection, discussion_id: str) -> ParticipantIdentity:
        await self._require_discussion(discussion_id)
        if connection.identity is None or not await self.registry.verify_author(
            discussion_id, connection.identity
        ):
            raise Unauthorized()
        return connection.identity

    async def _handle_join(self, connection: Connection, payload: dict) -> list[Outbound]:
        discussion_id = _required_string(payload, "discussionId")
        await self._require_discussion(discussion_id)

        identity = connection.identity
        if identity is not None:
            if await self.registry.is_banned(discussion_id, identity):
                raise Banned()
            await self.registry.record_member(discussion_id, identity)

        newly_joined = self.rooms.join(connection.sid, discussion_id)
        room = discussion_room(discussion_id)
        snapshot = await self.snapshot(discussion_id)

        outbound: list[Outbound] = []
        if newly_joined:
            outbound.append(EnterRoom(connection.sid, room))
        outbound.append(Emit(EVENT_STATUS, snapshot, room))
        outbound.append(
            Emit(EVENT_HISTORY, {"discussionId": discussion_id, "messages": []}, connection.sid)
        )
        if identity is not None and newly_joined:
            outbound.append(
                Emit(
                    EVENT_INFO,
                    {
                        "discussionId": discussion_id,
                        "message": f"{identity.nickname} joined the discussion.",
                    },
                    room,
                )
            )
        return outbound

    async def _handle_leave(self, connection: Connection, payload: dict) -> list[Outbound]:
        discussion_id = _required_string(payload, "discussionId")
        if not self.rooms.leave(connection.sid, discussion_id):
            raise NotJoined()
        room = discussion_room(discussion_id)
        snapshot = await self.snapshot(discussion_id)
        return [LeaveRoom(connection.sid, room), Emit(EVENT_STATUS, snapshot, room)]

    async def _handle_message(self, connection: Connection, payload: dict) -> list[Outbound]:
        discussion_id = _required_string(payload, "discussionId")
        sender = connection.identity or self.authenticator.identity_from_token(payload.get("jwt"))
        if sender is None:
            raise Unauthorized("Sign in to send messages.")
        if not self.rooms.is_joined(connection.sid, discussion_id):
            raise NotJoined()
        if await self.registry.is_banned(discussion_id, sender):
            raise Banned()

        text = payload.get("message")
        if not isinstance(text, str) or not text.strip():
            raise InvalidPayload("Message is empty.")
        text = text.strip()[: self._max_message_length]

        stored = await self.messages.persist_message(discussion_id, sender, text)
        return [
            Emit(
                EVENT_MESSAGE,
                {
                    "discussionId": discussion_id,
                    "nickname": sender.nickname,
                    "messageId": stored.message_id,
                    "message": stored.text,
                    "createdAt": stored.created_at.isoformat(),
                },
                discussion_room(discussion_id),
            )
        ]

    async def _handle_progress(self, connection: Connection, payload: dict) -> list[Outbound]:
        discussion_id = _required_string(payload, "discussionId")
        if "progress" not in payload:
            raise InvalidPayload("progress is required.")
        progress = payload["progress"]
        await self._require_author(connection, discussion_id)

        # no version check; concurrent author updates race and the last write wins
        await self.registry.set_progress(discussion_id, progress)
        return [
            Emit(
                EVENT_PROGRESS,
                {"discussionId": discussion_id, "progress": progress},
                discussion_room(discussion_id),
            )
        ]

    async def _handle_status(self, connection: Connection, payload: dict) -> list[Outbound]:
        discussion_id = _required_string(payload, "discussionId")
        await self._require_discussion(discussion_id)
        return [Emit(EVENT_STATUS, await self.snapshot(discussion_id), connection.sid)]

    async def _handle_ban(self, connection: Connection, payload: dict) -> list[Outbound]:
        discussion_id = _required_string(payload, "discussionId")
        nickname = _required_string(payload, "nickname")
        author = await self._require_author(connection, discussion_id)
        target = await self.registry.resolve_nickname(nickname)
        if target is None:
            raise UserNotFound()
        if target.user_id == author.user_id:
            raise InvalidPayload("You cannot ban yourself.")

        await self.registry.add_ban(discussion_id, target)

        room = discussion_room(discussion_id)
        notice = Banned("You have been banned from this discussion.").as_payload()
        notice["discussionId"] = discussion_id
        outbound: list[Outbound] = []

        target_sid = await self.presence.get(presence_key(target.nickname))
        if target_sid:
            outbound.append(Emit(EVENT_ERROR, dict(notice), target_sid))
            if self.rooms.leave(target_sid, discussion_id):
                outbound.append(LeaveRoom(target_sid, room))
        else:
            logger.info(
                "%s: ban on %s recorded for discussion %s",
                PresenceTargetOffline.code,
                target.nickname,
                discussion_id,
            )

        # other live connections of the same user that the presence entry does not address
        for member in self.rooms.live_connections(discussion_id):
            if member.identity is None or member.identity.user_id != target.user_id:
                continue
            self.rooms.leave(member.sid, discussion_id)
            outbound.append(Emit(EVENT_ERROR, dict(notice), member.sid))
            outbound.append(LeaveRoom(member.sid, room))

        outbound.append(
            Emit(
                EVENT_INFO,
                {"discussionId": discussion_id, "message": f"[{target.nickname}] has been banned."},
                connection.sid,
            )
        )
        outbound.append(Emit(EVENT_STATUS, await self.snapshot(discussion_id), room))
        return outbound

    async def _handle_unban(self, connection: Connection, payload: dict) -> list[Outbound]:
        discussion_id = _required_string(payload, "discussionId")
        nickname = _required_string(payload, "nickname")
        await self._require_author(connection, discussion_id)
        target = await self.registry.resolve_nickname(nickname)
        if target is None:
            raise UserNotFound()

        removed = await self.registry.remove_ban(discussion_id, target)
        message = (
            f"[{target.nickname}] is no longer banned."
            if removed
            else f"[{target.nickname}] was not banned."
        )
        return [
            Emit(EVENT_INFO, {"discussionId": discussion_id, "message": message}, connection.sid),
            Emit(EVENT_STATUS, await self.snapshot(discussion_id), discussion_room(discussion_id)),
        ]
