"""Message types shared by the dispatcher and command handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import nio
import structlog

from .client.content_builders import _build_reply_content

logger = structlog.get_logger("matrix_commands.types")


def is_private_room(room: nio.MatrixRoom) -> bool:
    """Whether `room` looks like a direct chat.

    An unnamed room (no name and no canonical alias) with at most two
    members counts as direct. The `m.direct` account data is not
    consulted, so an unnamed two-person room created as a group is still
    treated as a direct chat.
    """
    return room.is_group and room.member_count <= 2


def _server_name(room_id: str) -> str | None:
    _, sep, server = room_id.partition(":")
    if not sep or not server:
        return None
    return server


@dataclass(frozen=True, slots=True)
class Homeserver:
    """The server owning a room, taken from the room id."""

    name: str

    @classmethod
    def for_room(cls, room_id: str) -> Homeserver | None:
        server = _server_name(room_id)
        if server is None:
            return None
        return cls(name=server)


@dataclass(frozen=True, slots=True)
class Receiver:
    """Reply target of a message."""

    client: nio.AsyncClient
    room_id: str
    reply_to_event_id: str
    reply_to_sender: str | None = None
    notice: bool = False

    async def send(self, text: str) -> bool:
        """Send `text` as a reply; failures are logged and reported as False."""
        content = _build_reply_content(
            text,
            reply_to_event_id=self.reply_to_event_id,
            reply_to_sender=self.reply_to_sender,
            notice=self.notice,
        )
        try:
            response = await self.client.room_send(
                self.room_id,
                message_type="m.room.message",
                content=content,
                ignore_unverified_devices=True,
            )
        except Exception:
            logger.warning(
                "matrix.reply.send_error",
                room_id=self.room_id,
                reply_to=self.reply_to_event_id,
                exc_info=True,
            )
            return False
        if isinstance(response, nio.ErrorResponse):
            logger.warning(
                "matrix.reply.send_failed",
                room_id=self.room_id,
                reply_to=self.reply_to_event_id,
                error=str(response),
            )
            return False
        return True


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    room_id: str
    event_id: str
    sender: str
    text: str
    is_private: bool = False
    room: nio.MatrixRoom | None = None
    author: nio.MatrixUser | None = None
    event: Any = None

    @classmethod
    def from_nio(
        cls, room: nio.MatrixRoom, event: nio.RoomMessageText
    ) -> IncomingMessage:
        author = room.users.get(event.sender) or nio.MatrixUser(event.sender)
        return cls(
            room_id=room.room_id,
            event_id=event.event_id,
            sender=event.sender,
            text=event.body or "",
            is_private=is_private_room(room),
            room=room,
            author=author,
            event=event,
        )

    @property
    def channel(self) -> nio.MatrixRoom | None:
        """The room when the message arrived outside a direct chat."""
        if self.is_private:
            return None
        return self.room

    @property
    def server(self) -> Homeserver | None:
        if self.channel is None:
            return None
        return Homeserver.for_room(self.room_id)

    def receiver(self, client: nio.AsyncClient, *, notice: bool = False) -> Receiver:
        return Receiver(
            client=client,
            room_id=self.room_id,
            reply_to_event_id=self.event_id,
            reply_to_sender=self.sender,
            notice=notice,
        )
