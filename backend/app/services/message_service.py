from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from app.services.discussion_service import ParticipantIdentity


@dataclass(frozen=True)
class StoredMessage:
    message_id: str
    discussion_id: str
    sender: ParticipantIdentity
    text: str
    created_at: datetime


class MessageStore:
    """Assigns ids and timestamps to chat messages; history is not kept."""

    async def persist_message(
        self,
        discussion_id: str,
        sender: ParticipantIdentity,
        text: str,
    ) -> StoredMessage:
        return StoredMessage(
            message_id=uuid4().hex,
            discussion_id=discussion_id,
            sender=sender,
            text=text,
            created_at=datetime.now(timezone.utc),
        )
